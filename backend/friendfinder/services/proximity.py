from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from friendfinder.core.errors import ValidationError
from friendfinder.services.spatial_index import SpatialIndex, UserLocationRecord
from friendfinder.utils.geo import haversine_m, validate_coordinates
from friendfinder.utils.geohash import encode, neighbors, prefix_range


logger = logging.getLogger(__name__)


class RadiusClass(int, enum.Enum):
    SMALL = 100
    MEDIUM = 1000
    LARGE = 10000

    @classmethod
    def parse(cls, value: "str | int | RadiusClass") -> "RadiusClass":
        """Accept a member, its name (any case) or its metre value."""

        if isinstance(value, RadiusClass):
            return value
        if isinstance(value, str):
            raw = value.strip()
            try:
                return cls[raw.upper()]
            except KeyError:
                pass
            if raw.isdigit():
                value = int(raw)
        if isinstance(value, int) and not isinstance(value, bool):
            try:
                return cls(value)
            except ValueError:
                pass
        allowed = ", ".join(f"{m.name.lower()}={m.value}" for m in cls)
        raise ValidationError(
            f"Unsupported radius {value!r}; expected one of {allowed}",
            code="RADIUS_INVALID",
        )


@dataclass(frozen=True, slots=True)
class ProximityResult:
    user_id: str
    distance_meters: float
    location: UserLocationRecord


class ProximityEngine:
    """Geohash-prefix candidate scan followed by an exact haversine filter.

    A single prefix cell can miss users just across a cell edge (no false
    positives, possible false negatives). Enabling `search_neighbors` scans the
    8 adjacent cells as well.
    """

    def __init__(
        self,
        index: SpatialIndex,
        *,
        search_precision: int = 4,
        search_neighbors: bool = False,
    ) -> None:
        self._index = index
        self._search_precision = search_precision
        self._search_neighbors = search_neighbors

    def candidate_cells(self, latitude: float, longitude: float) -> list[str]:
        cell = encode(latitude, longitude, precision=self._search_precision)
        if not self._search_neighbors:
            return [cell]
        return [cell, *neighbors(cell)]

    async def find_nearby(
        self,
        requester_id: str,
        latitude: float,
        longitude: float,
        radius: "RadiusClass | str | int",
    ) -> list[ProximityResult]:
        reason = validate_coordinates(latitude, longitude)
        if reason is not None:
            raise ValidationError(reason, code="LOCATION_INVALID")
        radius_class = RadiusClass.parse(radius)
        limit_m = float(radius_class.value)

        seen: set[str] = set()
        results: list[ProximityResult] = []
        for cell in self.candidate_cells(latitude, longitude):
            lower, upper = prefix_range(cell)
            for record in await self._index.range_query(lower, upper):
                if record.user_id == requester_id or record.user_id in seen:
                    continue
                seen.add(record.user_id)
                # Ghost-mode users are never returned.
                if not record.sharing_enabled:
                    continue
                distance = haversine_m(
                    latitude, longitude, record.latitude, record.longitude
                )
                if distance > limit_m:
                    continue
                results.append(
                    ProximityResult(
                        user_id=record.user_id,
                        distance_meters=distance,
                        location=record,
                    )
                )

        results.sort(key=lambda r: (r.distance_meters, r.user_id))
        logger.debug(
            "find_nearby requester=%s radius=%s candidates=%d matched=%d",
            requester_id,
            radius_class.name,
            len(seen),
            len(results),
        )
        return results

    async def watch_nearby(
        self,
        requester_id: str,
        position: Callable[[], Awaitable[tuple[float, float] | None]],
        radius: "RadiusClass | str | int",
        *,
        interval_s: float,
        sleep: Callable[[float], Any] | None = None,
    ) -> AsyncIterator[list[ProximityResult]]:
        """Yield a fresh nearby list every interval, using the latest known position.

        `position` is awaited before each query; a tick where it returns None
        (nothing reported yet) yields nothing.

        Snapshots are produced sequentially, so consumers never see an older
        result after a newer one. Stop by closing the generator (`aclose()`).
        """

        radius_class = RadiusClass.parse(radius)
        do_sleep = sleep or asyncio.sleep
        while True:
            center = await position()
            if center is not None:
                yield await self.find_nearby(requester_id, *center, radius_class)
            await do_sleep(interval_s)
