from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import suppress
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from friendfinder.api.deps import user_from_query_token
from friendfinder.core.errors import APIError, DomainError
from friendfinder.models.user import User
from friendfinder.services.live import Subscription


logger = logging.getLogger(__name__)

# Application close codes (4000-4999): 4401 unauthenticated, 4403 forbidden, 4404 missing.
_CLOSE_CODES = {401: 4401, 403: 4403, 404: 4404}


def close_code(status_code: int) -> int:
    return _CLOSE_CODES.get(status_code, 4400)


async def authenticate(websocket: WebSocket) -> User | None:
    """Resolve `?token=`; on failure the socket is closed and None returned."""

    try:
        return await user_from_query_token(
            websocket.query_params.get("token"), websocket.app.state.sessionmaker
        )
    except APIError as e:
        await websocket.close(code=close_code(e.status_code), reason=e.code)
        return None


async def open_subscription(
    websocket: WebSocket, factory: Callable[[], Awaitable[Subscription[Any]]]
) -> Subscription[Any] | None:
    try:
        return await factory()
    except DomainError as e:
        await websocket.close(code=close_code(e.status_code), reason=e.code)
        return None


async def stream(
    websocket: WebSocket,
    sub: Subscription[Any],
    render: Callable[[Any], dict[str, Any]],
) -> None:
    """Push each snapshot as JSON until the client leaves or the subscription ends."""

    await websocket.accept()

    async def _watch_disconnect() -> None:
        # Inbound frames are ignored; this only notices the client going away.
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
        finally:
            sub.close()

    watcher = asyncio.create_task(_watch_disconnect())
    try:
        async with sub:
            async for snapshot in sub:
                await websocket.send_json(render(snapshot))
    except WebSocketDisconnect:
        logger.debug("Client left live stream topic=%s", sub.topic)
    finally:
        watcher.cancel()
        with suppress(asyncio.CancelledError):
            await watcher

    if (
        websocket.client_state == WebSocketState.CONNECTED
        and websocket.application_state == WebSocketState.CONNECTED
    ):
        await websocket.close(code=1000)
