"""
Lightweight spatial indexing (grid bucket) for lng/lat points.

Entities are bucketed into square cells measured in degrees; proximity queries
scan the cells covering the search square, then refine with exact Haversine
distance. The index keeps references only; callers own the entities.
"""

from __future__ import annotations

import math
from typing import Callable, Generic, Iterable, Protocol, TypeVar

from merchantgeo.core.geo import KM_PER_DEGREE, haversine_distance_km


class Locatable(Protocol):
    """Anything with a lng/lat pair and a "has a location" predicate."""

    longitude: float
    latitude: float

    def has_location(self) -> bool: ...


T = TypeVar("T")


def locatable_lnglat(item: Locatable) -> tuple[float, float] | None:
    """Default accessor: read `longitude`/`latitude`, or None when unset."""
    if not item.has_location():
        return None
    return float(item.longitude), float(item.latitude)


class SpatialGridIndex(Generic[T]):
    def __init__(
        self,
        grid_size: float,
        *,
        get_lnglat: Callable[[T], tuple[float, float] | None] = locatable_lnglat,
    ):
        if float(grid_size) <= 0:
            raise ValueError("grid_size must be > 0")
        self._grid_size = float(grid_size)
        self._get_lnglat = get_lnglat
        self._grid: dict[str, list[T]] = {}
        self._count = 0

    @property
    def grid_size(self) -> float:
        return self._grid_size

    @property
    def cell_count(self) -> int:
        return len(self._grid)

    def __len__(self) -> int:
        return self._count

    def _cell(self, lng: float, lat: float) -> tuple[int, int]:
        return int(math.floor(lng / self._grid_size)), int(math.floor(lat / self._grid_size))

    def grid_key(self, lng: float, lat: float) -> str:
        gx, gy = self._cell(lng, lat)
        return f"{gx},{gy}"

    def _location(self, item: T) -> tuple[float, float] | None:
        loc = self._get_lnglat(item)
        if loc is None:
            return None
        lng, lat = loc
        if lng == 0 and lat == 0:
            return None
        return lng, lat

    def add(self, item: T) -> None:
        """Bucket `item` by its location; items without one are ignored."""
        loc = self._location(item)
        if loc is None:
            return
        self._grid.setdefault(self.grid_key(*loc), []).append(item)
        self._count += 1

    def add_all(self, items: Iterable[T]) -> None:
        for it in items:
            self.add(it)

    def cells_in_radius(self, lng: float, lat: float, radius_km: float) -> list[str]:
        """Keys of every cell touching the square of half-width radius_km/111 degrees."""
        radius_deg = float(radius_km) / KM_PER_DEGREE
        min_x, min_y = self._cell(lng - radius_deg, lat - radius_deg)
        max_x, max_y = self._cell(lng + radius_deg, lat + radius_deg)
        return [f"{gx},{gy}" for gx in range(min_x, max_x + 1) for gy in range(min_y, max_y + 1)]

    def find_nearby(self, lng: float, lat: float, radius_km: float) -> list[T]:
        """Return indexed items within `radius_km` of (lng, lat), in scan order."""
        out: list[T] = []
        for key in self.cells_in_radius(lng, lat, radius_km):
            cell = self._grid.get(key)
            if not cell:
                continue
            for item in cell:
                loc = self._location(item)
                if loc is None:
                    continue
                if haversine_distance_km(lng, lat, loc[0], loc[1]) <= radius_km:
                    out.append(item)
        return out
