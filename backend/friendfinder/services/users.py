from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Iterable
from dataclasses import dataclass

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from friendfinder.core.errors import NotFoundError, ValidationError
from friendfinder.db.base import as_utc
from friendfinder.models.user import User
from friendfinder.models.user_location import UserLocation
from friendfinder.services.media import MediaStorage
from friendfinder.services.spatial_index import storage_errors


logger = logging.getLogger(__name__)

PICTURE_CONTENT_TYPES = ("image/jpeg", "image/png", "image/webp")
MAX_DISPLAY_NAME_LENGTH = 80


@dataclass(frozen=True, slots=True)
class UserProfile:
    id: str
    email: str
    display_name: str
    profile_picture_url: str
    sharing_enabled: bool
    created_at: dt.datetime
    latitude: float | None = None
    longitude: float | None = None


def _to_profile(user: User, loc: UserLocation | None) -> UserProfile:
    return UserProfile(
        id=user.id,
        email=user.email,
        display_name=user.display_name,
        profile_picture_url=user.profile_picture_url or "",
        sharing_enabled=bool(user.sharing_enabled),
        created_at=as_utc(user.created_at),
        latitude=(float(loc.latitude) if loc is not None else None),
        longitude=(float(loc.longitude) if loc is not None else None),
    )


def clean_display_name(value: str) -> str:
    name = " ".join(value.split())
    if not name:
        raise ValidationError("display_name must not be empty", code="PROFILE_INVALID")
    if len(name) > MAX_DISPLAY_NAME_LENGTH:
        raise ValidationError(
            f"display_name must be at most {MAX_DISPLAY_NAME_LENGTH} characters",
            code="PROFILE_INVALID",
        )
    return name


class UserService:
    """Profile reads/writes plus the ghost-mode toggle and picture upload."""

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        *,
        media: MediaStorage,
        max_picture_bytes: int,
    ) -> None:
        self._sessionmaker = sessionmaker
        self._media = media
        self._max_picture_bytes = max_picture_bytes

    @property
    def max_picture_bytes(self) -> int:
        return self._max_picture_bytes

    async def get_profile(self, user_id: str) -> UserProfile | None:
        profiles = await self.get_profiles([user_id])
        return profiles.get(user_id)

    async def require_profile(self, user_id: str) -> UserProfile:
        profile = await self.get_profile(user_id)
        if profile is None:
            raise NotFoundError(f"User {user_id} not found", code="USER_NOT_FOUND")
        return profile

    async def get_profiles(self, user_ids: Iterable[str]) -> dict[str, UserProfile]:
        ids = list({uid for uid in user_ids})
        if not ids:
            return {}
        stmt = (
            sa.select(User, UserLocation)
            .outerjoin(UserLocation, UserLocation.user_id == User.id)
            .where(User.id.in_(ids))
        )
        with storage_errors("get_profiles"):
            async with self._sessionmaker() as session:
                rows = (await session.execute(stmt)).all()
        return {user.id: _to_profile(user, loc) for user, loc in rows}

    async def _update(self, user_id: str, **values: object) -> UserProfile:
        with storage_errors("update_profile"):
            async with self._sessionmaker() as session:
                user = await session.get(User, user_id)
                if user is None:
                    raise NotFoundError(
                        f"User {user_id} not found", code="USER_NOT_FOUND"
                    )
                for key, value in values.items():
                    setattr(user, key, value)
                await session.commit()
        return await self.require_profile(user_id)

    async def update_profile(self, user_id: str, *, display_name: str) -> UserProfile:
        return await self._update(user_id, display_name=clean_display_name(display_name))

    async def set_sharing_enabled(self, user_id: str, enabled: bool) -> UserProfile:
        profile = await self._update(user_id, sharing_enabled=bool(enabled))
        logger.info("Location sharing user=%s enabled=%s", user_id, bool(enabled))
        return profile

    async def upload_profile_picture(
        self, user_id: str, data: bytes, content_type: str | None
    ) -> str:
        media_type = (content_type or "").split(";", 1)[0].strip().lower()
        if media_type not in PICTURE_CONTENT_TYPES:
            raise ValidationError(
                f"Unsupported picture type {media_type or 'unknown'!r}",
                code="PICTURE_INVALID",
            )
        if not data:
            raise ValidationError("Picture is empty", code="PICTURE_INVALID")
        if len(data) > self._max_picture_bytes:
            raise ValidationError(
                f"Picture exceeds {self._max_picture_bytes} bytes",
                code="PICTURE_TOO_LARGE",
            )

        await self.require_profile(user_id)
        url = await self._media.upload(data, f"profile_pictures/{user_id}")
        await self._update(user_id, profile_picture_url=url)
        return url
