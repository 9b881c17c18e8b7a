"""
Deterministic offline geocoder.

Coordinates are derived from a rolling hash of the address and land in a small
box (0.1 x 0.1 degrees by default, around Beijing). The same address always
maps to the same point, which makes this provider the always-available
fallback at the end of the chain and a convenient test double.
"""

from __future__ import annotations

from merchantgeo.core.rate_limit import DelayPolicy
from merchantgeo.domain.models import GeocodeResult, ReverseGeocodeResult
from merchantgeo.geocoding.base import GeocodingProvider

MOCK_ACCURACY = 0.8

_INT64_MASK = (1 << 64) - 1
_INT64_SIGN = 1 << 63


def _wrap_int64(value: int) -> int:
    value &= _INT64_MASK
    return value - (1 << 64) if value & _INT64_SIGN else value


def _trunc_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


def _trunc_mod(a: int, b: int) -> int:
    return a - b * _trunc_div(a, b)


def address_hash(address: str) -> int:
    """Rolling `h * 31 + ord(ch)` hash with signed 64-bit wraparound."""
    h = 0
    for ch in address:
        h = _wrap_int64(h * 31 + ord(ch))
    return h


class MockGeocodingProvider(GeocodingProvider):
    def __init__(
        self,
        *,
        name: str = "mock",
        base_lng: float = 116.0,
        base_lat: float = 39.8,
        batch_delay: DelayPolicy | None = None,
    ):
        super().__init__(batch_delay=batch_delay)
        self._name = name
        self._base_lng = float(base_lng)
        self._base_lat = float(base_lat)

    @property
    def service_name(self) -> str:
        return self._name

    def geocode(self, address: str) -> GeocodeResult:
        h = address_hash(address)
        # Remainders keep the sign of the hash, so negative hashes land just below the base.
        lng = self._base_lng + _trunc_mod(h, 1000) / 10000.0
        lat = self._base_lat + _trunc_mod(_trunc_div(h, 1000), 1000) / 10000.0
        return GeocodeResult(
            longitude=lng,
            latitude=lat,
            formatted_address=f"Mock Address for: {address}",
            accuracy=MOCK_ACCURACY,
            service=self.service_name,
            metadata={"mock": True, "hash": h},
            is_manual=False,
        )

    def reverse_geocode(self, lng: float, lat: float) -> ReverseGeocodeResult:
        return ReverseGeocodeResult(
            formatted_address=f"Mock Address at {lng:.6f}, {lat:.6f}",
            components={
                "country": "中国",
                "province": "北京市",
                "city": "北京市",
                "district": "朝阳区",
            },
            service=self.service_name,
            metadata={"mock": True},
        )
