"""
Domain models (Pydantic).

These types are the contract between the geocoding layer, the spatial helpers
and whatever persists merchants:
- provider output (`GeocodeResult`, `ReverseGeocodeResult`)
- spatial query knobs (`SpatialQueryOptions`)
- the located entity (`Merchant`) and distance-annotated results

Results are frozen once built; `Merchant` is mutable because geocoding writes
coordinates back onto it.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from merchantgeo.core.geo import Point

FAILED_SERVICE = "failed"


class GeocodeResult(BaseModel):
    """Coordinates for one address, as returned by a provider."""

    model_config = ConfigDict(frozen=True)

    longitude: float = 0.0
    latitude: float = 0.0
    formatted_address: str = ""
    accuracy: float = Field(0.0, ge=0, le=1)
    service: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    is_manual: bool = False

    @classmethod
    def failed(cls, address: str, error: Exception | str) -> "GeocodeResult":
        """Placeholder used in batch output when one address could not be geocoded."""
        return cls(
            formatted_address=address,
            accuracy=0.0,
            service=FAILED_SERVICE,
            metadata={"error": str(error)},
        )

    @property
    def is_failed(self) -> bool:
        return self.service == FAILED_SERVICE

    @property
    def point(self) -> Point:
        return Point(lng=self.longitude, lat=self.latitude)


class ReverseGeocodeResult(BaseModel):
    """Address for one coordinate pair."""

    model_config = ConfigDict(frozen=True)

    formatted_address: str = ""
    components: dict[str, str] = Field(default_factory=dict)
    service: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class SpatialQueryOptions(BaseModel):
    """Per-query knobs for radius and bounding-box searches."""

    center_lng: float = 0.0
    center_lat: float = 0.0
    radius_km: float = 0.0
    min_lng: float | None = None
    min_lat: float | None = None
    max_lng: float | None = None
    max_lat: float | None = None
    limit: int = 100
    include_distance: bool = False

    @model_validator(mode="after")
    def _default_limit(self) -> "SpatialQueryOptions":
        if self.limit <= 0:
            self.limit = 100
        return self

    @property
    def has_bounding_box(self) -> bool:
        return None not in (self.min_lng, self.min_lat, self.max_lng, self.max_lat)


class Merchant(BaseModel):
    """A merchant with the location fields the geocoding layer maintains."""

    id: int = 0
    title: str = ""
    business_address: str = ""
    business_district: str = ""
    longitude: float = 0.0
    latitude: float = 0.0
    geocode_accuracy: float = 0.0
    geocode_address: str = ""
    geocode_service: str = ""
    is_manual_location: bool = False

    def has_location(self) -> bool:
        return not (self.longitude == 0 and self.latitude == 0)

    @property
    def location(self) -> Point:
        return Point(lng=self.longitude, lat=self.latitude)

    def apply_geocode(self, result: GeocodeResult) -> None:
        self.longitude = result.longitude
        self.latitude = result.latitude
        self.geocode_accuracy = result.accuracy
        self.geocode_address = result.formatted_address
        self.geocode_service = result.service
        self.is_manual_location = result.is_manual


def serialize_metadata(metadata: dict[str, Any] | None) -> str:
    """JSON-encode provider metadata for storage; "" when absent or unencodable."""
    if metadata is None:
        return ""
    try:
        return json.dumps(metadata, ensure_ascii=False)
    except (TypeError, ValueError):
        return ""


def deserialize_metadata(data: str) -> dict[str, Any] | None:
    """Inverse of `serialize_metadata`; None for empty or malformed input."""
    if not data:
        return None
    try:
        value = json.loads(data)
    except ValueError:
        return None
    return value if isinstance(value, dict) else None
