from __future__ import annotations

import datetime as dt

import pytest

from friendfinder.models.user import User
from friendfinder.models.user_location import UserLocation
from friendfinder.utils.geohash import encode


def test_reindex_geohashes_task_rewrites_to_storage_precision(
    run_db, app_env: None, monkeypatch: pytest.MonkeyPatch
) -> None:
    now = dt.datetime(2026, 1, 1, tzinfo=dt.timezone.utc)

    async def seed(sm) -> None:
        async with sm() as session:
            for n, (lat, lon) in enumerate([(37.77, -122.41), (48.85, 2.35)]):
                uid = f"user{n}"
                session.add(
                    User(id=uid, email=f"{uid}@test.com", display_name=uid, hashed_password="x")
                )
                session.add(
                    UserLocation(
                        user_id=uid,
                        latitude=lat,
                        longitude=lon,
                        # Written under an older 5-char configuration.
                        geohash=encode(lat, lon, precision=5),
                        reported_at=now,
                        last_updated=now,
                    )
                )
            await session.commit()

    run_db(seed)

    from friendfinder.tasks.locations import reindex_geohashes_task

    result = reindex_geohashes_task.apply(kwargs={"precision": 8}).get()
    assert result == {"precision": 8, "updated": 2}

    async def load(sm) -> dict[str, str]:
        async with sm() as session:
            rows = (await session.execute(UserLocation.__table__.select())).all()
        return {r.user_id: r.geohash for r in rows}

    hashes = run_db(load)
    assert hashes == {
        "user0": encode(37.77, -122.41, precision=8),
        "user1": encode(48.85, 2.35, precision=8),
    }

    # Default precision comes from settings.
    from friendfinder.db import session as db_session

    db_session._engine = None  # noqa: SLF001
    db_session._sessionmaker = None  # noqa: SLF001
    monkeypatch.setenv("FRIENDFINDER_GEOHASH_STORAGE_PRECISION", "8")
    from friendfinder.core.settings import get_settings

    get_settings.cache_clear()
    assert reindex_geohashes_task.apply().get() == {"precision": 8, "updated": 0}


def test_reindex_geohashes_task_rejects_bad_batch_size(app_env: None) -> None:
    from friendfinder.tasks.locations import reindex_geohashes_task

    with pytest.raises(ValueError):
        reindex_geohashes_task.apply(kwargs={"batch_size": 0}).get()
