from __future__ import annotations

import asyncio
import datetime as dt
import enum
import logging
import math
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any, Protocol

from friendfinder.core.errors import (
    PermissionDeniedError,
    TransientIOError,
    ValidationError,
)
from friendfinder.db.base import as_utc, utcnow
from friendfinder.services.spatial_index import LocationReport, SpatialIndex
from friendfinder.utils.geo import validate_coordinates


logger = logging.getLogger(__name__)


class ReportOutcome(str, enum.Enum):
    APPLIED = "applied"
    # A newer report from the same user replaced this one before it was written.
    SUPERSEDED = "superseded"
    # The index already holds a report with a later client timestamp.
    STALE = "stale"


class LocationPermissionDenied(PermissionDeniedError):
    code = "LOCATION_PERMISSION_DENIED"
    default_message = "Location access was denied; enable it in your device settings"


@dataclass(frozen=True, slots=True)
class Position:
    latitude: float
    longitude: float
    accuracy: float | None = None
    timestamp: dt.datetime | None = None


class LocationProvider(Protocol):
    async def current_position(self) -> Position:
        """Return the device position or raise LocationPermissionDenied."""
        ...


@dataclass
class _UserSlot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    queued: LocationReport | None = None
    waiters: int = 0


class LocationUpdatePipeline:
    """Validates reports and applies them to the spatial index.

    At most one write is in flight per user. Reports arriving meanwhile queue
    behind it, and only the newest queued one is written; the others resolve
    as SUPERSEDED. Different users never wait on each other.
    """

    def __init__(
        self,
        index: SpatialIndex,
        *,
        clock: Callable[[], dt.datetime] = utcnow,
    ) -> None:
        self._index = index
        self._clock = clock
        self._slots: dict[str, _UserSlot] = {}

    def in_flight_users(self) -> int:
        return len(self._slots)

    async def report_location(
        self,
        user_id: str,
        latitude: float,
        longitude: float,
        accuracy: float | None = None,
        client_timestamp: dt.datetime | None = None,
    ) -> ReportOutcome:
        if not user_id:
            raise ValidationError("user_id is required", code="LOCATION_INVALID")
        reason = validate_coordinates(latitude, longitude)
        if reason is not None:
            raise ValidationError(reason, code="LOCATION_INVALID")
        if accuracy is not None and (not math.isfinite(accuracy) or accuracy < 0):
            raise ValidationError(
                "accuracy must be a non-negative number", code="LOCATION_INVALID"
            )

        report = LocationReport(
            user_id=user_id,
            latitude=float(latitude),
            longitude=float(longitude),
            accuracy=accuracy,
            reported_at=(
                as_utc(client_timestamp) if client_timestamp is not None else self._clock()
            ),
        )

        slot = self._slots.get(user_id)
        if slot is None:
            slot = self._slots[user_id] = _UserSlot()
        if slot.queued is not None and slot.queued.reported_at > report.reported_at:
            return ReportOutcome.SUPERSEDED
        slot.queued = report

        slot.waiters += 1
        try:
            async with slot.lock:
                if slot.queued is not report:
                    return ReportOutcome.SUPERSEDED
                slot.queued = None
                applied = await self._index.upsert(report)
        finally:
            # A caller cancelled while queued leaves nothing behind.
            if slot.queued is report:
                slot.queued = None
            slot.waiters -= 1
            if slot.waiters == 0 and slot.queued is None:
                self._slots.pop(user_id, None)

        if not applied:
            logger.info(
                "Stale location report ignored user=%s reported_at=%s",
                user_id,
                report.reported_at.isoformat(),
            )
            return ReportOutcome.STALE
        return ReportOutcome.APPLIED


class SessionState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    PERMISSION_DENIED = "permission_denied"
    STOPPED = "stopped"


class LocationSession:
    """Drives one user's location reports while they are logged in.

    `refresh()` is the immediate trigger (foreground, manual refresh);
    `start()` runs a recurring report every `interval_s`. A permission denial
    is terminal until `grant_permission()`; a transient storage failure is
    only recorded and retried on the next tick.
    """

    def __init__(
        self,
        *,
        user_id: str,
        provider: LocationProvider,
        pipeline: LocationUpdatePipeline,
        interval_s: float,
        sleep: Callable[[float], Any] | None = None,
    ) -> None:
        self.user_id = user_id
        self._provider = provider
        self._pipeline = pipeline
        self._interval_s = interval_s
        self._sleep = sleep or asyncio.sleep
        self._task: asyncio.Task[None] | None = None
        self.state = SessionState.IDLE
        self.last_error: Exception | None = None
        self.last_position: Position | None = None
        self.last_outcome: ReportOutcome | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def refresh(self) -> ReportOutcome:
        if self.state is SessionState.PERMISSION_DENIED:
            raise LocationPermissionDenied()

        try:
            position = await self._provider.current_position()
        except LocationPermissionDenied:
            self.state = SessionState.PERMISSION_DENIED
            logger.warning("Location permission denied user=%s", self.user_id)
            raise

        self.last_position = position
        outcome = await self._pipeline.report_location(
            self.user_id,
            position.latitude,
            position.longitude,
            accuracy=position.accuracy,
            client_timestamp=position.timestamp,
        )
        self.last_outcome = outcome
        return outcome

    def start(self) -> None:
        if self.running:
            return
        if self.state is SessionState.PERMISSION_DENIED:
            raise LocationPermissionDenied()
        self.state = SessionState.RUNNING
        self._task = asyncio.create_task(
            self._run(), name=f"location-session:{self.user_id}"
        )

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if self.state is SessionState.RUNNING:
            self.state = SessionState.STOPPED
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    def grant_permission(self) -> None:
        if self.state is SessionState.PERMISSION_DENIED:
            self.state = SessionState.IDLE

    async def _run(self) -> None:
        while True:
            try:
                await self.refresh()
                self.last_error = None
            except LocationPermissionDenied:
                return
            except (TransientIOError, ValidationError) as e:
                self.last_error = e
                logger.warning(
                    "Location update failed user=%s code=%s; retrying next tick",
                    self.user_id,
                    e.code,
                )
            except Exception as e:
                self.last_error = e
                logger.exception(
                    "Unexpected location update failure user=%s; retrying next tick",
                    self.user_id,
                )
            await self._sleep(self._interval_s)
