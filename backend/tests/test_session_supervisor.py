from __future__ import annotations

import asyncio

import pytest

from friendfinder.services.live import LiveHub
from friendfinder.services.location_pipeline import (
    Position,
    ReportOutcome,
    SessionState,
)
from friendfinder.services.session import SessionSupervisor


class _Provider:
    async def current_position(self) -> Position:
        return Position(latitude=1.0, longitude=2.0)


class _Pipeline:
    def __init__(self) -> None:
        self.users: list[str] = []

    async def report_location(self, user_id, latitude, longitude, accuracy=None, client_timestamp=None):
        self.users.append(user_id)
        return ReportOutcome.APPLIED


def test_login_starts_session_and_logout_tears_down() -> None:
    async def scenario() -> None:
        hub = LiveHub()
        pipeline = _Pipeline()
        supervisor = SessionSupervisor(
            hub=hub,
            pipeline=pipeline,
            interval_s=3600.0,
            provider_factory=lambda user_id: _Provider(),
        )

        session = await supervisor.login("alice")
        assert session is not None and session.running
        for _ in range(10):
            if pipeline.users:
                break
            await asyncio.sleep(0)
        assert pipeline.users == ["alice"]

        # Logging in again reuses the running session.
        assert await supervisor.login("alice") is session

        sub = hub.subscribe("buzzes:pending:alice", owner="alice")
        other = hub.subscribe("buzzes:pending:bob", owner="bob")
        await supervisor.logout("alice")

        assert not session.running
        assert session.state is SessionState.STOPPED
        assert supervisor.session_for("alice") is None
        assert sub.closed
        assert not other.closed

        await supervisor.shutdown()
        assert other.closed

    asyncio.run(scenario())


def test_without_provider_only_subscriptions_are_managed() -> None:
    async def scenario() -> None:
        hub = LiveHub()
        supervisor = SessionSupervisor(hub=hub, pipeline=_Pipeline(), interval_s=30.0)

        assert await supervisor.login("alice") is None
        assert supervisor.active_users == []

        sub = hub.subscribe("chats:user:alice", owner="alice")
        await supervisor.logout("alice")
        assert sub.closed

    asyncio.run(scenario())


class _BrokenProvider:
    async def current_position(self) -> Position:
        raise RuntimeError("gps timeout")


def test_logout_survives_failing_session() -> None:
    async def scenario() -> None:
        hub = LiveHub()
        supervisor = SessionSupervisor(
            hub=hub,
            pipeline=_Pipeline(),
            interval_s=3600.0,
            provider_factory=lambda user_id: _BrokenProvider(),
        )
        session = await supervisor.login("alice")
        assert session is not None
        for _ in range(10):
            if session.last_error is not None:
                break
            await asyncio.sleep(0)
        assert isinstance(session.last_error, RuntimeError)

        sub = hub.subscribe("chats:user:alice", owner="alice")
        await supervisor.logout("alice")

        assert not session.running
        assert sub.closed

    asyncio.run(scenario())


def test_logout_closes_subscriptions_even_if_stop_fails(monkeypatch) -> None:
    async def scenario() -> None:
        hub = LiveHub()
        supervisor = SessionSupervisor(
            hub=hub,
            pipeline=_Pipeline(),
            interval_s=3600.0,
            provider_factory=lambda user_id: _Provider(),
        )
        session = await supervisor.login("alice")

        async def broken_stop() -> None:
            raise RuntimeError("stop failed")

        real_stop = session.stop
        monkeypatch.setattr(session, "stop", broken_stop)
        sub = hub.subscribe("buzzes:pending:alice", owner="alice")

        with pytest.raises(RuntimeError):
            await supervisor.logout("alice")
        assert sub.closed
        assert supervisor.session_for("alice") is None
        await real_stop()

    asyncio.run(scenario())
