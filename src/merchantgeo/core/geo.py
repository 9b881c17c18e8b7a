"""
Geospatial helpers.

A tiny geometry layer (distance, bounding boxes, polygon containment) so the
spatial index and search helpers work without heavier GIS dependencies.

Points are (longitude, latitude) in decimal degrees, matching the order used by
the binary point encoding and by the upstream geocoding API.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

from merchantgeo.core.errors import CoordinateRangeError

EARTH_RADIUS_KM = 6371.0
KM_PER_DEGREE = 111.0


@dataclass(frozen=True)
class Point:
    """A longitude/latitude pair in decimal degrees.

    `(0, 0)` doubles as the "no location" sentinel, so a place that really sits
    at the equator/prime-meridian intersection is indistinguishable from an
    unset one.
    """

    lng: float
    lat: float

    def is_empty(self) -> bool:
        return self.lng == 0 and self.lat == 0

    def is_valid(self) -> bool:
        return -180 <= self.lng <= 180 and -90 <= self.lat <= 90

    def __str__(self) -> str:
        return f"POINT({self.lng:f} {self.lat:f})"


def validate_coordinates(lng: float, lat: float) -> None:
    """Raise `CoordinateRangeError` unless lng is in [-180, 180] and lat in [-90, 90]."""
    if not -180 <= lng <= 180:
        raise CoordinateRangeError(f"longitude must be between -180 and 180, got {lng:f}")
    if not -90 <= lat <= 90:
        raise CoordinateRangeError(f"latitude must be between -90 and 90, got {lat:f}")


def normalize_coordinates(lng: float, lat: float) -> tuple[float, float]:
    """Wrap longitude into [-180, 180] and clamp latitude into [-90, 90].

    The wrap subtracts (or adds) whole turns in one step, so the result equals
    repeatedly adding +/-360 until the value is in range: anything above 180
    lands in (-180, 180], anything below -180 lands in [-180, 180).
    """
    lng = float(lng)
    lat = float(lat)
    if math.isfinite(lng):
        if lng > 180:
            lng -= 360.0 * math.ceil((lng - 180.0) / 360.0)
        elif lng < -180:
            lng += 360.0 * math.ceil((-180.0 - lng) / 360.0)

    lat = min(90.0, max(-90.0, lat))
    return lng, lat


def haversine_distance_km(lng1: float, lat1: float, lng2: float, lat2: float) -> float:
    """Great-circle distance in kilometers between two points."""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlng / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def bounding_box(center_lng: float, center_lat: float, radius_km: float) -> tuple[float, float, float, float]:
    """Return (min_lng, min_lat, max_lng, max_lat) around a center point.

    Uses flat degrees-per-km factors. Near the poles cos(lat) approaches zero
    and the longitude span blows up; callers get a very wide box, not an error.
    """
    lat_offset = radius_km / KM_PER_DEGREE
    lng_offset = radius_km / (KM_PER_DEGREE * math.cos(math.radians(center_lat)))

    min_lng, min_lat = normalize_coordinates(center_lng - lng_offset, center_lat - lat_offset)
    max_lng, max_lat = normalize_coordinates(center_lng + lng_offset, center_lat + lat_offset)
    return min_lng, min_lat, max_lng, max_lat


def polygon_centroid(points: Sequence[Sequence[float]]) -> tuple[float, float]:
    """Unweighted mean of the polygon vertices (not the area centroid).

    Short vertices add nothing to the sums but still count in the divisor.
    """
    if not points:
        return 0.0, 0.0

    sum_lng = 0.0
    sum_lat = 0.0
    for coord in points:
        if len(coord) >= 2:
            sum_lng += coord[0]
            sum_lat += coord[1]

    count = float(len(points))
    return sum_lng / count, sum_lat / count


def point_in_polygon(lng: float, lat: float, polygon: Sequence[Sequence[float]]) -> bool:
    """Ray-casting containment test against an open ring of (lng, lat) vertices."""
    if len(polygon) < 3:
        return False

    inside = False
    j = len(polygon) - 1
    for i in range(len(polygon)):
        if len(polygon[i]) < 2 or len(polygon[j]) < 2:
            j = i
            continue

        xi, yi = polygon[i][0], polygon[i][1]
        xj, yj = polygon[j][0], polygon[j][1]
        if (yi > lat) != (yj > lat) and lng < (xj - xi) * (lat - yi) / (yj - yi) + xi:
            inside = not inside
        j = i

    return inside


def polygon_bounds(polygon: Sequence[Sequence[float]]) -> tuple[float, float, float, float] | None:
    """Return (min_lng, min_lat, max_lng, max_lat) over usable vertices, or None."""
    coords = [(c[0], c[1]) for c in polygon if len(c) >= 2]
    if not coords:
        return None
    lngs = [c[0] for c in coords]
    lats = [c[1] for c in coords]
    return min(lngs), min(lats), max(lngs), max(lats)
