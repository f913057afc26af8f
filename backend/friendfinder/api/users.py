from __future__ import annotations

import datetime as dt

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from friendfinder.api.deps import get_current_user, get_user_service
from friendfinder.core.errors import ValidationError
from friendfinder.models.user import User
from friendfinder.services.users import UserProfile, UserService


router = APIRouter(prefix="/v1/users", tags=["users"])


def _iso(value: dt.datetime) -> str:
    out = value.isoformat()
    if out.endswith("+00:00"):
        out = out.removesuffix("+00:00") + "Z"
    return out


class MeResponse(BaseModel):
    user_id: str
    email: str
    display_name: str
    profile_picture_url: str
    sharing_enabled: bool
    latitude: float | None
    longitude: float | None
    created_at: str


class PublicProfileResponse(BaseModel):
    user_id: str
    display_name: str
    profile_picture_url: str


class UpdateProfileRequest(BaseModel):
    display_name: str = Field(min_length=1, max_length=80)


class SharingRequest(BaseModel):
    enabled: bool


class PictureResponse(BaseModel):
    profile_picture_url: str


def _me(profile: UserProfile) -> MeResponse:
    return MeResponse(
        user_id=profile.id,
        email=profile.email,
        display_name=profile.display_name,
        profile_picture_url=profile.profile_picture_url,
        sharing_enabled=profile.sharing_enabled,
        latitude=profile.latitude,
        longitude=profile.longitude,
        created_at=_iso(profile.created_at),
    )


@router.get("/me", response_model=MeResponse)
async def me(
    user: User = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
) -> MeResponse:
    return _me(await users.require_profile(user.id))


@router.patch("/me", response_model=MeResponse)
async def update_me(
    payload: UpdateProfileRequest,
    user: User = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
) -> MeResponse:
    return _me(await users.update_profile(user.id, display_name=payload.display_name))


@router.put("/me/sharing", response_model=MeResponse)
async def set_sharing(
    payload: SharingRequest,
    user: User = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
) -> MeResponse:
    return _me(await users.set_sharing_enabled(user.id, payload.enabled))


@router.put("/me/picture", response_model=PictureResponse)
async def upload_picture(
    request: Request,
    user: User = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
) -> PictureResponse:
    # Raw image body; the Content-Type header carries the media type.
    declared = request.headers.get("Content-Length")
    if declared is not None and declared.isdigit() and int(declared) > users.max_picture_bytes:
        raise ValidationError(
            f"Picture exceeds {users.max_picture_bytes} bytes", code="PICTURE_TOO_LARGE"
        )
    data = await request.body()
    url = await users.upload_profile_picture(
        user.id, data, request.headers.get("Content-Type")
    )
    return PictureResponse(profile_picture_url=url)


@router.get("/{user_id}", response_model=PublicProfileResponse)
async def get_user(
    user_id: str,
    _: User = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
) -> PublicProfileResponse:
    profile = await users.require_profile(user_id)
    return PublicProfileResponse(
        user_id=profile.id,
        display_name=profile.display_name,
        profile_picture_url=profile.profile_picture_url,
    )
