from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from friendfinder.api.router import api_router
from friendfinder.core.errors import APIError, DomainError, make_error_payload
from friendfinder.core.settings import get_settings
from friendfinder.db.session import get_engine, get_sessionmaker
from friendfinder.services.buzz import BuzzService
from friendfinder.services.chat import ChatService
from friendfinder.services.live import LiveHub
from friendfinder.services.location_pipeline import LocationUpdatePipeline
from friendfinder.services.media import LocalMediaStorage
from friendfinder.services.proximity import ProximityEngine
from friendfinder.services.session import ProviderFactory, SessionSupervisor
from friendfinder.services.spatial_index import SpatialIndex
from friendfinder.services.users import UserService


logger = logging.getLogger(__name__)


def create_app(*, provider_factory: ProviderFactory | None = None) -> FastAPI:
    """Build the API app and its service graph.

    `provider_factory` supplies device positions for server-driven location
    sessions (simulators, tests); without it clients push reports themselves.
    """

    settings = get_settings()
    sessionmaker = get_sessionmaker()

    hub = LiveHub(maxsize=settings.live_queue_maxsize)
    index = SpatialIndex(sessionmaker, precision=settings.geohash_storage_precision)
    pipeline = LocationUpdatePipeline(index)
    chats = ChatService(sessionmaker, hub=hub)
    supervisor = SessionSupervisor(
        hub=hub,
        pipeline=pipeline,
        interval_s=settings.location_update_interval_s,
        provider_factory=provider_factory,
    )

    @asynccontextmanager
    async def _lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        await supervisor.shutdown()
        await get_engine().dispose()

    app = FastAPI(title="FriendFinder API", lifespan=_lifespan)

    app.state.settings = settings
    app.state.sessionmaker = sessionmaker
    app.state.hub = hub
    app.state.spatial_index = index
    app.state.proximity = ProximityEngine(
        index,
        search_precision=settings.geohash_search_precision,
        search_neighbors=settings.proximity_search_neighbors,
    )
    app.state.location_pipeline = pipeline
    app.state.users = UserService(
        sessionmaker,
        media=LocalMediaStorage(
            root_dir=settings.media_dir, base_url=settings.media_base_url
        ),
        max_picture_bytes=settings.max_picture_bytes,
    )
    app.state.chats = chats
    app.state.buzzes = BuzzService(sessionmaker, hub=hub, chats=chats)
    app.state.supervisor = supervisor

    def _with_trace_id_header(
        headers: dict[str, str] | None, trace_id: str | None
    ) -> dict[str, str] | None:
        """Return headers merged with X-Trace-Id when trace_id is present."""

        if not trace_id:
            return headers
        merged: dict[str, str] = dict(headers or {})
        merged["X-Trace-Id"] = trace_id
        return merged

    def _error_response(
        request, *, status_code: int, code: str, message: str, details=None
    ) -> JSONResponse:
        trace_id = getattr(request.state, "trace_id", None)
        return JSONResponse(
            status_code=status_code,
            headers=_with_trace_id_header(None, trace_id),
            content=make_error_payload(
                code=code, message=message, trace_id=trace_id, details=details
            ),
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.cors_allow_origin],
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["*"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.middleware("http")
    async def _trace_id_middleware(request, call_next):
        trace_id = request.headers.get("X-Trace-Id") or str(uuid.uuid4())
        request.state.trace_id = trace_id
        response = await call_next(request)
        response.headers["X-Trace-Id"] = trace_id
        return response

    @app.exception_handler(APIError)
    async def _api_error_handler(request, exc: APIError):
        return _error_response(
            request,
            status_code=exc.status_code,
            code=exc.code,
            message=exc.message,
            details=exc.details,
        )

    @app.exception_handler(DomainError)
    async def _domain_error_handler(request, exc: DomainError):
        if exc.status_code >= 500:
            logger.warning(
                "Service unavailable (trace_id=%s code=%s): %s",
                getattr(request.state, "trace_id", None),
                exc.code,
                exc.__cause__ or exc,
            )
        return _error_response(
            request,
            status_code=exc.status_code,
            code=exc.code,
            message=exc.message,
            details=exc.details,
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(request, exc: RequestValidationError):
        return _error_response(
            request,
            status_code=422,
            code="VALIDATION_ERROR",
            message="Request validation failed",
            details=exc.errors(),
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error_handler(request, exc: StarletteHTTPException):
        return _error_response(
            request,
            status_code=exc.status_code,
            code="HTTP_ERROR",
            message=exc.detail if isinstance(exc.detail, str) else "HTTP error",
        )

    @app.exception_handler(Exception)
    async def _unhandled_error_handler(request, exc: Exception):
        trace_id = getattr(request.state, "trace_id", None)
        method = getattr(request, "method", None)
        path = getattr(getattr(request, "url", None), "path", None)
        logger.error(
            "Unhandled exception (trace_id=%s method=%s path=%s)",
            trace_id,
            method,
            path,
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        return _error_response(
            request,
            status_code=500,
            code="INTERNAL_ERROR",
            message="Internal error",
        )

    app.include_router(api_router)

    # Uploaded pictures are served from the local media directory.
    if settings.media_base_url.startswith("/"):
        app.mount(
            settings.media_base_url.rstrip("/") or "/media",
            StaticFiles(directory=settings.media_dir, check_dir=False),
            name="media",
        )

    return app


app = create_app()
