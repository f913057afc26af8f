from __future__ import annotations

import asyncio
import datetime as dt
import logging
from contextlib import suppress

from fastapi import APIRouter, Depends, Query, WebSocket
from pydantic import BaseModel, Field

from friendfinder.api import live
from friendfinder.api.deps import (
    get_current_user,
    get_location_pipeline,
    get_proximity_engine,
    get_spatial_index,
    get_user_service,
)
from friendfinder.core.errors import DomainError, NotFoundError, ValidationError
from friendfinder.models.user import User
from friendfinder.services.live import LiveHub, nearby_topic
from friendfinder.services.location_pipeline import LocationUpdatePipeline
from friendfinder.services.proximity import ProximityEngine, ProximityResult, RadiusClass
from friendfinder.services.spatial_index import SpatialIndex, UserLocationRecord
from friendfinder.services.users import UserService


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/locations", tags=["locations"])


class LocationReportRequest(BaseModel):
    latitude: float
    longitude: float
    accuracy: float | None = Field(default=None, ge=0)
    # Client capture time; reports are ordered by it. Defaults to server time.
    timestamp: dt.datetime | None = None


class LocationReportResponse(BaseModel):
    outcome: str


class LocationResponse(BaseModel):
    user_id: str
    latitude: float
    longitude: float
    accuracy: float | None
    geohash: str
    sharing_enabled: bool
    last_updated: dt.datetime


class NearbyUser(BaseModel):
    user_id: str
    display_name: str
    profile_picture_url: str
    distance_meters: float
    latitude: float
    longitude: float
    last_updated: dt.datetime


class NearbyResponse(BaseModel):
    radius: str
    radius_meters: int
    items: list[NearbyUser]


def _location(record: UserLocationRecord) -> LocationResponse:
    return LocationResponse(
        user_id=record.user_id,
        latitude=record.latitude,
        longitude=record.longitude,
        accuracy=record.accuracy,
        geohash=record.geohash,
        sharing_enabled=record.sharing_enabled,
        last_updated=record.last_updated,
    )


async def _nearby_response(
    results: list[ProximityResult], radius_class: RadiusClass, users: UserService
) -> NearbyResponse:
    profiles = await users.get_profiles(r.user_id for r in results)

    items: list[NearbyUser] = []
    for r in results:
        profile = profiles.get(r.user_id)
        items.append(
            NearbyUser(
                user_id=r.user_id,
                display_name=profile.display_name if profile else "",
                profile_picture_url=profile.profile_picture_url if profile else "",
                distance_meters=round(r.distance_meters, 2),
                latitude=r.location.latitude,
                longitude=r.location.longitude,
                last_updated=r.location.last_updated,
            )
        )
    return NearbyResponse(
        radius=radius_class.name.lower(),
        radius_meters=int(radius_class.value),
        items=items,
    )


@router.post("", response_model=LocationReportResponse)
async def report_location(
    payload: LocationReportRequest,
    user: User = Depends(get_current_user),
    pipeline: LocationUpdatePipeline = Depends(get_location_pipeline),
) -> LocationReportResponse:
    # The reporting user is always the token subject; a client cannot move someone else.
    outcome = await pipeline.report_location(
        user.id,
        payload.latitude,
        payload.longitude,
        accuracy=payload.accuracy,
        client_timestamp=payload.timestamp,
    )
    return LocationReportResponse(outcome=outcome.value)


@router.get("/me", response_model=LocationResponse)
async def my_location(
    user: User = Depends(get_current_user),
    index: SpatialIndex = Depends(get_spatial_index),
) -> LocationResponse:
    record = await index.get(user.id)
    if record is None:
        raise NotFoundError("No location reported yet", code="LOCATION_NOT_FOUND")
    return _location(record)


@router.get("/nearby", response_model=NearbyResponse)
async def nearby(
    latitude: float | None = Query(default=None),
    longitude: float | None = Query(default=None),
    radius: str = Query(default="medium"),
    user: User = Depends(get_current_user),
    index: SpatialIndex = Depends(get_spatial_index),
    engine: ProximityEngine = Depends(get_proximity_engine),
    users: UserService = Depends(get_user_service),
) -> NearbyResponse:
    radius_class = RadiusClass.parse(radius)
    if (latitude is None) != (longitude is None):
        raise ValidationError(
            "latitude and longitude must be given together", code="LOCATION_INVALID"
        )

    # Without explicit coordinates, search around the caller's last report.
    if latitude is None or longitude is None:
        own = await index.get(user.id)
        if own is None:
            raise NotFoundError(
                "No location reported yet; pass latitude and longitude",
                code="LOCATION_NOT_FOUND",
            )
        latitude, longitude = own.latitude, own.longitude

    results = await engine.find_nearby(user.id, latitude, longitude, radius_class)
    return await _nearby_response(results, radius_class, users)


@router.websocket("/nearby/ws")
async def nearby_ws(websocket: WebSocket) -> None:
    """Live nearby list around the caller's latest stored location.

    The query re-runs every `location_update_interval_s`; each result is pushed
    as a `NearbyResponse`. `?radius=` defaults to medium.
    """

    user = await live.authenticate(websocket)
    if user is None:
        return
    state = websocket.app.state
    index: SpatialIndex = state.spatial_index
    engine: ProximityEngine = state.proximity
    users: UserService = state.users
    hub: LiveHub = state.hub

    try:
        radius_class = RadiusClass.parse(websocket.query_params.get("radius", "medium"))
        if await index.get(user.id) is None:
            raise NotFoundError("No location reported yet", code="LOCATION_NOT_FOUND")
    except DomainError as e:
        await websocket.close(code=live.close_code(e.status_code), reason=e.code)
        return

    async def _position() -> tuple[float, float] | None:
        record = await index.get(user.id)
        return (record.latitude, record.longitude) if record is not None else None

    sub = hub.subscribe(nearby_topic(user.id), owner=user.id)
    feed = engine.watch_nearby(
        user.id,
        _position,
        radius_class,
        interval_s=state.settings.location_update_interval_s,
    )

    async def _pump() -> None:
        try:
            async for results in feed:
                version = hub.reserve_version()
                snapshot = await _nearby_response(results, radius_class, users)
                if not sub.offer(version, snapshot.model_dump(mode="json")) and sub.closed:
                    break
        except DomainError as e:
            logger.warning("Nearby feed stopped user=%s code=%s", user.id, e.code)
        finally:
            await feed.aclose()
            sub.close()

    pump = asyncio.create_task(_pump(), name=f"nearby-feed:{user.id}")
    try:
        await live.stream(websocket, sub, lambda snapshot: snapshot)
    finally:
        pump.cancel()
        with suppress(asyncio.CancelledError):
            await pump
