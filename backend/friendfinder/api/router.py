from __future__ import annotations

from fastapi import APIRouter

from friendfinder.api.auth import router as auth_router
from friendfinder.api.buzzes import router as buzzes_router
from friendfinder.api.chats import router as chats_router
from friendfinder.api.health import router as health_router
from friendfinder.api.locations import router as locations_router
from friendfinder.api.users import router as users_router


api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(auth_router)
api_router.include_router(users_router)
api_router.include_router(locations_router)
api_router.include_router(buzzes_router)
api_router.include_router(chats_router)
