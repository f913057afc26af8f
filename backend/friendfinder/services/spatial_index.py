from __future__ import annotations

import contextlib
import datetime as dt
import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass

import sqlalchemy as sa
from sqlalchemy import exc as sa_exc
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from friendfinder.core.errors import TransientIOError, ValidationError
from friendfinder.db.base import as_utc, utcnow
from friendfinder.models.user import User
from friendfinder.models.user_location import UserLocation
from friendfinder.utils.geo import validate_coordinates
from friendfinder.utils.geohash import encode


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class UserLocationRecord:
    user_id: str
    latitude: float
    longitude: float
    geohash: str
    sharing_enabled: bool
    last_updated: dt.datetime
    accuracy: float | None = None
    reported_at: dt.datetime | None = None


@dataclass(frozen=True, slots=True)
class LocationReport:
    """A position as reported by one user's device."""

    user_id: str
    latitude: float
    longitude: float
    reported_at: dt.datetime
    accuracy: float | None = None


@contextlib.contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Translate driver connectivity failures into TransientIOError."""

    try:
        yield
    except (sa_exc.OperationalError, sa_exc.InterfaceError, sa_exc.TimeoutError) as e:
        logger.warning("Storage failure during %s: %s", operation, e)
        raise TransientIOError(code="STORAGE_UNAVAILABLE") from e
    except sa_exc.DBAPIError as e:
        if e.connection_invalidated:
            logger.warning("Connection lost during %s", operation)
            raise TransientIOError(code="STORAGE_UNAVAILABLE") from e
        raise


def _dialect_name(session: AsyncSession) -> str:
    bind = session.bind or session.get_bind()
    if bind is None or getattr(bind, "dialect", None) is None:
        return ""
    return str(bind.dialect.name or "")


def _upsert_stmt(*, dialect: str, values: dict[str, object]) -> sa.sql.Insert:
    if dialect == "postgresql":
        stmt = pg_insert(UserLocation).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite_insert(UserLocation).values(**values)
    else:
        raise RuntimeError(f"Unsupported database dialect: {dialect!r}")

    excluded = stmt.excluded
    # Conditional write: an older report never overwrites a newer one.
    return stmt.on_conflict_do_update(
        index_elements=[UserLocation.user_id],
        set_={
            "latitude": excluded.latitude,
            "longitude": excluded.longitude,
            "accuracy": excluded.accuracy,
            "geohash": excluded.geohash,
            "reported_at": excluded.reported_at,
            "last_updated": excluded.last_updated,
        },
        where=UserLocation.reported_at <= excluded.reported_at,
    )


def _to_record(loc: UserLocation, sharing_enabled: bool) -> UserLocationRecord:
    return UserLocationRecord(
        user_id=loc.user_id,
        latitude=float(loc.latitude),
        longitude=float(loc.longitude),
        geohash=loc.geohash,
        sharing_enabled=bool(sharing_enabled),
        last_updated=as_utc(loc.last_updated),
        accuracy=(float(loc.accuracy) if loc.accuracy is not None else None),
        reported_at=as_utc(loc.reported_at),
    )


class SpatialIndex:
    """Authoritative user -> location mapping with a geohash-ordered index.

    Each call runs in its own session and transaction, so a cancelled caller
    never leaves a row half-written.
    """

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        *,
        precision: int = 7,
        clock: Callable[[], dt.datetime] = utcnow,
    ) -> None:
        self._sessionmaker = sessionmaker
        self._precision = precision
        self._clock = clock

    @property
    def precision(self) -> int:
        return self._precision

    async def upsert(self, report: LocationReport) -> bool:
        """Store the report; return False when a newer report is already stored."""

        reason = validate_coordinates(report.latitude, report.longitude)
        if reason is not None:
            raise ValidationError(reason, code="LOCATION_INVALID")

        values: dict[str, object] = {
            "user_id": report.user_id,
            "latitude": float(report.latitude),
            "longitude": float(report.longitude),
            "accuracy": report.accuracy,
            # Always derived here; a caller-supplied hash is never trusted.
            "geohash": encode(
                report.latitude, report.longitude, precision=self._precision
            ),
            "reported_at": as_utc(report.reported_at),
            "last_updated": self._clock(),
        }

        with storage_errors("upsert"):
            async with self._sessionmaker() as session:
                stmt = _upsert_stmt(dialect=_dialect_name(session), values=values)
                result = await session.execute(stmt)
                applied = bool(result.rowcount)
                await session.commit()
        return applied

    async def get(self, user_id: str) -> UserLocationRecord | None:
        stmt = (
            sa.select(UserLocation, User.sharing_enabled)
            .join(User, User.id == UserLocation.user_id)
            .where(UserLocation.user_id == user_id)
        )
        with storage_errors("get"):
            async with self._sessionmaker() as session:
                row = (await session.execute(stmt)).first()
        if row is None:
            return None
        loc, sharing_enabled = row
        return _to_record(loc, sharing_enabled)

    async def range_query(self, lower: str, upper: str) -> list[UserLocationRecord]:
        """Records with lower <= geohash < upper whose owners share their location."""

        stmt = (
            sa.select(UserLocation, User.sharing_enabled)
            .join(User, User.id == UserLocation.user_id)
            .where(
                UserLocation.geohash >= lower,
                UserLocation.geohash < upper,
                User.sharing_enabled.is_(True),
            )
        )
        with storage_errors("range_query"):
            async with self._sessionmaker() as session:
                rows = (await session.execute(stmt)).all()
        return [_to_record(loc, sharing_enabled) for loc, sharing_enabled in rows]

    async def rebuild_geohashes(self, *, batch_size: int = 500) -> int:
        """Re-derive every stored geohash at the current precision.

        Needed after the storage precision changes. Returns rows rewritten.
        """

        changed = 0
        last_user_id = ""
        with storage_errors("rebuild_geohashes"):
            async with self._sessionmaker() as session:
                while True:
                    stmt = (
                        sa.select(UserLocation)
                        .where(UserLocation.user_id > last_user_id)
                        .order_by(UserLocation.user_id.asc())
                        .limit(batch_size)
                    )
                    batch = list((await session.execute(stmt)).scalars().all())
                    if not batch:
                        break
                    for loc in batch:
                        expected = encode(
                            loc.latitude, loc.longitude, precision=self._precision
                        )
                        if loc.geohash != expected:
                            loc.geohash = expected
                            changed += 1
                    last_user_id = batch[-1].user_id
                    await session.commit()
        logger.info("Rebuilt geohashes: %d rows changed", changed)
        return changed
