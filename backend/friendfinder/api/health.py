from __future__ import annotations

import json

from fastapi import APIRouter
from fastapi import Depends
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from friendfinder.core.settings import Settings
from friendfinder.core.settings import get_settings
from friendfinder.db.session import get_db
from friendfinder.models import UserLocation


router = APIRouter(tags=["health"])


def _jwt_config_ready(settings: Settings) -> bool:
    if not settings.jwt_signing_keys_json:
        return False
    try:
        key_map = json.loads(settings.jwt_signing_keys_json)
    except json.JSONDecodeError:
        return False
    if not isinstance(key_map, dict):
        return False
    secret = key_map.get(settings.jwt_kid_current)
    return isinstance(secret, str) and bool(secret)


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    # Ready means tokens can be issued and the location schema is migrated.
    if not _jwt_config_ready(settings):
        return JSONResponse(status_code=503, content={"status": "not_ready"})

    try:
        await db.execute(select(UserLocation.geohash).limit(1))
    except SQLAlchemyError:
        return JSONResponse(status_code=503, content={"status": "not_ready"})

    return JSONResponse(status_code=200, content={"status": "ready"})
