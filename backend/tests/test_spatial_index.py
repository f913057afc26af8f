from __future__ import annotations

import datetime as dt

import pytest

from friendfinder.core.errors import ValidationError
from friendfinder.models.user import User
from friendfinder.services.spatial_index import LocationReport, SpatialIndex
from friendfinder.utils.geohash import encode, prefix_range


T0 = dt.datetime(2026, 1, 1, 12, 0, tzinfo=dt.timezone.utc)


async def _add_user(sessionmaker, user_id: str, *, sharing: bool = True) -> None:
    async with sessionmaker() as session:
        session.add(
            User(
                id=user_id,
                email=f"{user_id}@test.com",
                display_name=user_id.title(),
                hashed_password="x",
                sharing_enabled=sharing,
            )
        )
        await session.commit()


def _report(user_id: str, lat: float, lon: float, *, at: dt.datetime = T0) -> LocationReport:
    return LocationReport(user_id=user_id, latitude=lat, longitude=lon, reported_at=at)


def test_upsert_derives_geohash_and_get_returns_record(run_db) -> None:
    async def scenario(sm) -> None:
        await _add_user(sm, "alice")
        index = SpatialIndex(sm, precision=7)

        assert await index.get("alice") is None
        assert await index.upsert(_report("alice", 37.7749, -122.4194)) is True

        record = await index.get("alice")
        assert record is not None
        assert record.geohash == encode(37.7749, -122.4194, precision=7)
        assert record.sharing_enabled is True
        assert record.reported_at == T0
        assert record.last_updated.tzinfo is not None

    run_db(scenario)


def test_older_report_does_not_overwrite_newer(run_db) -> None:
    async def scenario(sm) -> None:
        await _add_user(sm, "alice")
        index = SpatialIndex(sm)

        newer = _report("alice", 10.0, 10.0, at=T0 + dt.timedelta(seconds=30))
        older = _report("alice", 20.0, 20.0, at=T0)

        assert await index.upsert(newer) is True
        assert await index.upsert(older) is False

        record = await index.get("alice")
        assert record is not None
        assert (record.latitude, record.longitude) == (10.0, 10.0)
        assert record.geohash == encode(10.0, 10.0, precision=7)

        # Same timestamp re-applies (idempotent resend).
        assert await index.upsert(newer) is True

    run_db(scenario)


def test_range_query_filters_prefix_and_ghost_mode(run_db) -> None:
    async def scenario(sm) -> None:
        await _add_user(sm, "near")
        await _add_user(sm, "ghost", sharing=False)
        await _add_user(sm, "far")
        index = SpatialIndex(sm)

        await index.upsert(_report("near", 37.7750, -122.4190))
        await index.upsert(_report("ghost", 37.7751, -122.4191))
        await index.upsert(_report("far", 48.8566, 2.3522))

        lower, upper = prefix_range(encode(37.7749, -122.4194, precision=4))
        ids = {r.user_id for r in await index.range_query(lower, upper)}
        assert ids == {"near"}

        # Ghost mode hides the record without deleting it.
        ghost = await index.get("ghost")
        assert ghost is not None and ghost.sharing_enabled is False

    run_db(scenario)


def test_upsert_rejects_invalid_coordinates(run_db) -> None:
    async def scenario(sm) -> None:
        await _add_user(sm, "alice")
        index = SpatialIndex(sm)
        with pytest.raises(ValidationError) as exc:
            await index.upsert(_report("alice", 95.0, 0.0))
        assert exc.value.code == "LOCATION_INVALID"
        assert await index.get("alice") is None

    run_db(scenario)


def test_rebuild_geohashes_after_precision_change(run_db) -> None:
    async def scenario(sm) -> None:
        for uid in ("a", "b", "c"):
            await _add_user(sm, uid)
        old = SpatialIndex(sm, precision=7)
        await old.upsert(_report("a", 1.0, 1.0))
        await old.upsert(_report("b", 2.0, 2.0))
        await old.upsert(_report("c", 3.0, 3.0))

        new = SpatialIndex(sm, precision=9)
        assert await new.rebuild_geohashes(batch_size=2) == 3
        record = await new.get("b")
        assert record is not None
        assert record.geohash == encode(2.0, 2.0, precision=9)

        # Already consistent: nothing left to rewrite.
        assert await new.rebuild_geohashes() == 0

    run_db(scenario)
