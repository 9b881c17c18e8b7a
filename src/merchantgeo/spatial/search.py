"""
In-process spatial search over located entities.

These helpers reproduce the merchant directory's radius, bounding-box, nearest
and polygon queries with plain Python filtering, for callers that already hold
the candidate entities in memory (or want to double-check database output).
Entities without a location never match.

Defaults (nearest radius and limit, polygon limit, grid cell size) come from the
`spatial` settings section when a `Settings` object is passed; the module
constants below mirror `defaults.yaml` for callers that pass none.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, Iterable, Sequence, TypeVar

from merchantgeo.config.settings import Settings
from merchantgeo.core.geo import haversine_distance_km, point_in_polygon, polygon_bounds
from merchantgeo.core.spatial_index import SpatialGridIndex, locatable_lnglat
from merchantgeo.domain.models import SpatialQueryOptions

T = TypeVar("T")

NEAREST_RADIUS_KM = 50.0
NEAREST_DEFAULT_LIMIT = 10
DEFAULT_LIMIT = 100


@dataclass(frozen=True)
class Neighbor(Generic[T]):
    """A search hit; `distance_km` is None unless distances were requested."""

    item: T
    distance_km: float | None = None


LngLatGetter = Callable[[T], "tuple[float, float] | None"]


def _located(entities: Iterable[T], get_lnglat: LngLatGetter) -> list[tuple[T, float, float]]:
    out: list[tuple[T, float, float]] = []
    for it in entities:
        loc = get_lnglat(it)
        if loc is None or (loc[0] == 0 and loc[1] == 0):
            continue
        out.append((it, float(loc[0]), float(loc[1])))
    return out


def _in_box(lng: float, lat: float, min_lng: float, min_lat: float, max_lng: float, max_lat: float) -> bool:
    return min_lng <= lng <= max_lng and min_lat <= lat <= max_lat


def find_within_radius(
    entities: Iterable[T],
    options: SpatialQueryOptions,
    *,
    get_lnglat: LngLatGetter = locatable_lnglat,
) -> list[Neighbor[T]]:
    """Entities within `options.radius_km` of the center.

    With `include_distance` the hits carry their distance and are sorted
    nearest first; otherwise they keep input order. At most `options.limit`.
    """
    hits: list[Neighbor[T]] = []
    for it, lng, lat in _located(entities, get_lnglat):
        if options.has_bounding_box and not _in_box(
            lng, lat, options.min_lng, options.min_lat, options.max_lng, options.max_lat
        ):
            continue
        d = haversine_distance_km(options.center_lng, options.center_lat, lng, lat)
        if d <= options.radius_km:
            hits.append(Neighbor(item=it, distance_km=d if options.include_distance else None))

    if options.include_distance:
        hits.sort(key=lambda n: n.distance_km)
    return hits[: options.limit]


def find_in_bounding_box(
    entities: Iterable[T],
    options: SpatialQueryOptions,
    *,
    get_lnglat: LngLatGetter = locatable_lnglat,
) -> list[T]:
    """Entities inside the inclusive box `[min_lng, max_lng] x [min_lat, max_lat]`."""
    if not options.has_bounding_box:
        raise ValueError("bounding box search requires min_lng, min_lat, max_lng and max_lat")

    out: list[T] = []
    for it, lng, lat in _located(entities, get_lnglat):
        if _in_box(lng, lat, options.min_lng, options.min_lat, options.max_lng, options.max_lat):
            out.append(it)
            if len(out) >= options.limit:
                break
    return out


def build_spatial_index(
    settings: Settings,
    items: Iterable[T] = (),
    *,
    get_lnglat: LngLatGetter = locatable_lnglat,
) -> SpatialGridIndex[T]:
    """Grid index sized by `spatial.grid_size_degrees`, pre-filled with `items`."""
    index: SpatialGridIndex[T] = SpatialGridIndex(settings.spatial.grid_size_degrees, get_lnglat=get_lnglat)
    index.add_all(items)
    return index


def find_nearest(
    entities: Iterable[T],
    lng: float,
    lat: float,
    limit: int | None = None,
    *,
    radius_km: float | None = None,
    settings: Settings | None = None,
    get_lnglat: LngLatGetter = locatable_lnglat,
) -> list[Neighbor[T]]:
    """The `limit` closest entities within `radius_km`, nearest first.

    Unset (or non-positive) `limit` and unset `radius_km` fall back to
    `spatial.nearest_limit` / `spatial.nearest_radius_km`.
    """
    if radius_km is None:
        radius_km = settings.spatial.nearest_radius_km if settings is not None else NEAREST_RADIUS_KM
    if limit is None or limit <= 0:
        limit = settings.spatial.nearest_limit if settings is not None else NEAREST_DEFAULT_LIMIT

    options = SpatialQueryOptions(
        center_lng=lng,
        center_lat=lat,
        radius_km=radius_km,
        limit=limit,
        include_distance=True,
    )
    return find_within_radius(entities, options, get_lnglat=get_lnglat)


def find_in_polygon(
    entities: Iterable[T],
    polygon: Sequence[Sequence[float]],
    limit: int | None = None,
    *,
    settings: Settings | None = None,
    get_lnglat: LngLatGetter = locatable_lnglat,
) -> list[T]:
    """Entities inside `polygon` (ray casting).

    Candidates are first narrowed to the polygon's bounding box and capped at
    `2 * limit`, so very dense boxes can miss matches beyond the cap.
    """
    if limit is None or limit <= 0:
        limit = settings.spatial.default_limit if settings is not None else DEFAULT_LIMIT
    if len(polygon) < 3:
        return []
    bounds = polygon_bounds(polygon)
    if bounds is None:
        return []

    min_lng, min_lat, max_lng, max_lat = bounds
    candidates = find_in_bounding_box(
        entities,
        SpatialQueryOptions(min_lng=min_lng, min_lat=min_lat, max_lng=max_lng, max_lat=max_lat, limit=limit * 2),
        get_lnglat=get_lnglat,
    )

    out: list[T] = []
    for it in candidates:
        lng, lat = get_lnglat(it)
        if point_in_polygon(lng, lat, polygon):
            out.append(it)
            if len(out) >= limit:
                break
    return out
