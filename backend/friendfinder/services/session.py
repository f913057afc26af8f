from __future__ import annotations

import logging
from collections.abc import Callable

from friendfinder.services.live import LiveHub
from friendfinder.services.location_pipeline import (
    LocationProvider,
    LocationSession,
    LocationUpdatePipeline,
)


logger = logging.getLogger(__name__)

ProviderFactory = Callable[[str], LocationProvider]


class SessionSupervisor:
    """Starts per-user work on login and tears it down on logout.

    Server-side there is no device GPS, so the recurring location session only
    runs when a provider factory is configured (tests, simulators). Logout
    always closes the user's live subscriptions.
    """

    def __init__(
        self,
        *,
        hub: LiveHub,
        pipeline: LocationUpdatePipeline,
        interval_s: float,
        provider_factory: ProviderFactory | None = None,
    ) -> None:
        self._hub = hub
        self._pipeline = pipeline
        self._interval_s = interval_s
        self._provider_factory = provider_factory
        self._sessions: dict[str, LocationSession] = {}

    def session_for(self, user_id: str) -> LocationSession | None:
        return self._sessions.get(user_id)

    @property
    def active_users(self) -> list[str]:
        return sorted(self._sessions)

    async def login(self, user_id: str) -> LocationSession | None:
        if self._provider_factory is None:
            return None
        session = self._sessions.get(user_id)
        if session is None:
            session = LocationSession(
                user_id=user_id,
                provider=self._provider_factory(user_id),
                pipeline=self._pipeline,
                interval_s=self._interval_s,
            )
            self._sessions[user_id] = session
        session.grant_permission()
        session.start()
        logger.info("Location session started user=%s", user_id)
        return session

    async def logout(self, user_id: str) -> None:
        session = self._sessions.pop(user_id, None)
        try:
            if session is not None:
                await session.stop()
                logger.info("Location session stopped user=%s", user_id)
        finally:
            self._hub.close_owner(user_id)

    async def shutdown(self) -> None:
        for user_id in list(self._sessions):
            await self.logout(user_id)
        self._hub.close_all()
