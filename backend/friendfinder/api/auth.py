from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from friendfinder.api.deps import get_current_user, get_session_supervisor
from friendfinder.core.errors import APIError
from friendfinder.core.security import (
    MIN_PASSWORD_LENGTH,
    hash_password,
    issue_access_token,
    verify_password,
)
from friendfinder.core.settings import get_settings
from friendfinder.db.session import get_db
from friendfinder.models.user import User
from friendfinder.services.session import SessionSupervisor
from friendfinder.services.users import clean_display_name


router = APIRouter(prefix="/v1/auth", tags=["auth"])


class RegisterRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    display_name: str = Field(min_length=1, max_length=80)
    password: str = Field(min_length=MIN_PASSWORD_LENGTH)


class RegisterResponse(BaseModel):
    user_id: str
    email: str
    display_name: str


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    user_id: str


def _normalize_email(value: str) -> str:
    email = value.strip().lower()
    if "@" not in email:
        raise APIError(
            code="VALIDATION_ERROR",
            message="Invalid email address",
            status_code=422,
        )
    return email


@router.post("/register", status_code=201, response_model=RegisterResponse)
async def register(
    payload: RegisterRequest, db: AsyncSession = Depends(get_db)
) -> RegisterResponse:
    email = _normalize_email(payload.email)
    display_name = clean_display_name(payload.display_name)
    try:
        hashed = hash_password(payload.password)
    except ValueError:
        raise APIError(
            code="AUTH_INVALID_CREDENTIALS",
            message="Password does not meet policy",
            status_code=400,
        )

    user = User(email=email, display_name=display_name, hashed_password=hashed)
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise APIError(
            code="AUTH_EMAIL_TAKEN",
            message="An account with this email already exists",
            status_code=409,
        )

    return RegisterResponse(
        user_id=user.id, email=user.email, display_name=user.display_name
    )


@router.post("/login", response_model=TokenResponse)
async def login(
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
    supervisor: SessionSupervisor = Depends(get_session_supervisor),
) -> TokenResponse:
    email = payload.email.strip().lower()
    user = (
        await db.execute(select(User).where(User.email == email))
    ).scalar_one_or_none()
    if user is None or not verify_password(payload.password, user.hashed_password):
        raise APIError(
            code="AUTH_INVALID_CREDENTIALS",
            message="Invalid email or password",
            status_code=401,
        )

    access_token, expires_in = issue_access_token(
        user_id=user.id, settings=get_settings()
    )
    await supervisor.login(user.id)
    return TokenResponse(
        access_token=access_token, expires_in=expires_in, user_id=user.id
    )


@router.post("/logout", status_code=204)
async def logout(
    user: User = Depends(get_current_user),
    supervisor: SessionSupervisor = Depends(get_session_supervisor),
) -> Response:
    # Access tokens are stateless; logout ends the user's server-side session work.
    await supervisor.logout(user.id)
    return Response(status_code=204)
