from __future__ import annotations

import asyncio
import datetime as dt

import pytest

from friendfinder.core.errors import ValidationError
from friendfinder.models.user import User
from friendfinder.services.location_pipeline import (
    LocationUpdatePipeline,
    ReportOutcome,
)
from friendfinder.services.spatial_index import LocationReport, SpatialIndex


T0 = dt.datetime(2026, 3, 1, 8, 0, tzinfo=dt.timezone.utc)


class _GatedIndex:
    """Index stand-in whose first write blocks until the test opens the gate."""

    def __init__(self) -> None:
        self.applied: list[LocationReport] = []
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()
        self._calls = 0

    async def upsert(self, report: LocationReport) -> bool:
        self._calls += 1
        if self._calls == 1:
            self.entered.set()
            await self.gate.wait()
        self.applied.append(report)
        return True


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


def test_reports_applied_in_timestamp_order(run_db) -> None:
    async def scenario(sm) -> None:
        async with sm() as session:
            session.add(
                User(id="alice", email="a@test.com", display_name="A", hashed_password="x")
            )
            await session.commit()
        index = SpatialIndex(sm)
        pipeline = LocationUpdatePipeline(index)

        late = await pipeline.report_location(
            "alice", 1.0, 1.0, client_timestamp=T0 + dt.timedelta(seconds=60)
        )
        early = await pipeline.report_location("alice", 2.0, 2.0, client_timestamp=T0)

        assert late is ReportOutcome.APPLIED
        assert early is ReportOutcome.STALE
        record = await index.get("alice")
        assert record is not None
        assert (record.latitude, record.longitude) == (1.0, 1.0)
        assert pipeline.in_flight_users() == 0

    run_db(scenario)


def test_latest_queued_report_wins() -> None:
    async def scenario() -> None:
        index = _GatedIndex()
        pipeline = LocationUpdatePipeline(index)

        first = asyncio.create_task(
            pipeline.report_location("alice", 1.0, 1.0, client_timestamp=T0)
        )
        await asyncio.wait_for(index.entered.wait(), 1)

        second = asyncio.create_task(
            pipeline.report_location(
                "alice", 2.0, 2.0, client_timestamp=T0 + dt.timedelta(seconds=1)
            )
        )
        third = asyncio.create_task(
            pipeline.report_location(
                "alice", 3.0, 3.0, client_timestamp=T0 + dt.timedelta(seconds=2)
            )
        )
        await _settle()
        index.gate.set()

        outcomes = await asyncio.gather(first, second, third)
        assert outcomes == [
            ReportOutcome.APPLIED,
            ReportOutcome.SUPERSEDED,
            ReportOutcome.APPLIED,
        ]
        assert [r.latitude for r in index.applied] == [1.0, 3.0]
        assert pipeline.in_flight_users() == 0

    asyncio.run(scenario())


def test_older_report_than_queued_one_is_superseded_immediately() -> None:
    async def scenario() -> None:
        index = _GatedIndex()
        pipeline = LocationUpdatePipeline(index)

        first = asyncio.create_task(
            pipeline.report_location("alice", 1.0, 1.0, client_timestamp=T0)
        )
        await asyncio.wait_for(index.entered.wait(), 1)
        queued = asyncio.create_task(
            pipeline.report_location(
                "alice", 5.0, 5.0, client_timestamp=T0 + dt.timedelta(seconds=10)
            )
        )
        await _settle()

        late_arrival = await pipeline.report_location(
            "alice", 4.0, 4.0, client_timestamp=T0 + dt.timedelta(seconds=5)
        )
        assert late_arrival is ReportOutcome.SUPERSEDED

        index.gate.set()
        assert await first is ReportOutcome.APPLIED
        assert await queued is ReportOutcome.APPLIED
        assert [r.latitude for r in index.applied] == [1.0, 5.0]

    asyncio.run(scenario())


def test_users_do_not_block_each_other() -> None:
    async def scenario() -> None:
        index = _GatedIndex()
        pipeline = LocationUpdatePipeline(index)

        blocked = asyncio.create_task(
            pipeline.report_location("alice", 1.0, 1.0, client_timestamp=T0)
        )
        await asyncio.wait_for(index.entered.wait(), 1)

        other = await asyncio.wait_for(
            pipeline.report_location("bob", 2.0, 2.0, client_timestamp=T0), 1
        )
        assert other is ReportOutcome.APPLIED
        assert not blocked.done()

        index.gate.set()
        assert await blocked is ReportOutcome.APPLIED

    asyncio.run(scenario())


def test_cancelled_queued_report_leaves_no_state() -> None:
    async def scenario() -> None:
        index = _GatedIndex()
        pipeline = LocationUpdatePipeline(index)

        first = asyncio.create_task(
            pipeline.report_location("alice", 1.0, 1.0, client_timestamp=T0)
        )
        await asyncio.wait_for(index.entered.wait(), 1)
        queued = asyncio.create_task(
            pipeline.report_location(
                "alice", 2.0, 2.0, client_timestamp=T0 + dt.timedelta(seconds=1)
            )
        )
        await _settle()
        queued.cancel()
        with pytest.raises(asyncio.CancelledError):
            await queued

        index.gate.set()
        assert await first is ReportOutcome.APPLIED
        assert [r.latitude for r in index.applied] == [1.0]
        assert pipeline.in_flight_users() == 0

    asyncio.run(scenario())


@pytest.mark.parametrize(
    ("lat", "lon", "accuracy"),
    [
        (91.0, 0.0, None),
        (0.0, -180.5, None),
        (float("nan"), 0.0, None),
        (0.0, 0.0, -1.0),
        (0.0, 0.0, float("inf")),
    ],
)
def test_invalid_reports_rejected_before_write(lat: float, lon: float, accuracy) -> None:
    async def scenario() -> None:
        index = _GatedIndex()
        pipeline = LocationUpdatePipeline(index)
        with pytest.raises(ValidationError) as exc:
            await pipeline.report_location("alice", lat, lon, accuracy=accuracy)
        assert exc.value.code == "LOCATION_INVALID"
        assert index.applied == []

    asyncio.run(scenario())


def test_missing_timestamp_uses_clock() -> None:
    async def scenario() -> None:
        index = _GatedIndex()
        index.gate.set()
        pipeline = LocationUpdatePipeline(index, clock=lambda: T0)

        assert await pipeline.report_location("alice", 1.0, 1.0) is ReportOutcome.APPLIED
        assert index.applied[0].reported_at == T0

    asyncio.run(scenario())
