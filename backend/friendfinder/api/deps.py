from __future__ import annotations

import jwt
from fastapi import Depends, Header, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from friendfinder.core.errors import APIError
from friendfinder.core.security import access_token_subject
from friendfinder.core.settings import get_settings
from friendfinder.db.session import get_db
from friendfinder.models.user import User
from friendfinder.services.buzz import BuzzService
from friendfinder.services.chat import ChatService
from friendfinder.services.location_pipeline import LocationUpdatePipeline
from friendfinder.services.proximity import ProximityEngine
from friendfinder.services.session import SessionSupervisor
from friendfinder.services.spatial_index import SpatialIndex
from friendfinder.services.users import UserService


def user_id_from_token(token: str) -> str:
    try:
        return access_token_subject(token=token, settings=get_settings())
    except jwt.ExpiredSignatureError:
        raise APIError(
            code="AUTH_TOKEN_EXPIRED",
            message="Access token expired",
            status_code=401,
        )
    except jwt.InvalidTokenError:
        raise APIError(
            code="AUTH_TOKEN_INVALID",
            message="Invalid access token",
            status_code=401,
        )


async def _load_user(db: AsyncSession, user_id: str) -> User:
    user = (
        await db.execute(select(User).where(User.id == user_id))
    ).scalar_one_or_none()
    if user is None:
        raise APIError(
            code="AUTH_TOKEN_INVALID",
            message="User not found",
            status_code=401,
        )
    return user


async def get_current_user(
    authorization: str | None = Header(default=None, alias="Authorization"),
    db: AsyncSession = Depends(get_db),
) -> User:
    if not authorization or not authorization.startswith("Bearer "):
        raise APIError(
            code="AUTH_TOKEN_INVALID",
            message="Missing bearer token",
            status_code=401,
        )

    token = authorization.removeprefix("Bearer ").strip()
    return await _load_user(db, user_id_from_token(token))


async def user_from_query_token(
    token: str | None, sessionmaker: async_sessionmaker[AsyncSession]
) -> User:
    """Authenticate a WebSocket, which passes the access token as `?token=`."""

    if not token:
        raise APIError(
            code="AUTH_TOKEN_INVALID",
            message="Missing token query parameter",
            status_code=401,
        )
    user_id = user_id_from_token(token)
    async with sessionmaker() as db:
        return await _load_user(db, user_id)


def get_spatial_index(request: Request) -> SpatialIndex:
    return request.app.state.spatial_index


def get_proximity_engine(request: Request) -> ProximityEngine:
    return request.app.state.proximity


def get_location_pipeline(request: Request) -> LocationUpdatePipeline:
    return request.app.state.location_pipeline


def get_user_service(request: Request) -> UserService:
    return request.app.state.users


def get_buzz_service(request: Request) -> BuzzService:
    return request.app.state.buzzes


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chats


def get_session_supervisor(request: Request) -> SessionSupervisor:
    return request.app.state.supervisor
