"""
Amap (高德地图) geocoding provider.

Talks to the Amap REST v3 API:
- `GET {base_url}/geocode/geo`   address -> coordinates
- `GET {base_url}/geocode/regeo` coordinates -> address

Both responses share a JSON envelope (`status`, `info`, `infocode`); `status`
must be the string "1". Geocode records carry `location` as a `"lng,lat"`
string and a textual `level` that we map to a 0..1 accuracy score.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from merchantgeo.core.errors import GeocodingError, ProviderNotConfiguredError
from merchantgeo.core.http import DEFAULT_TIMEOUT_SECONDS, get_json
from merchantgeo.core.rate_limit import DelayPolicy, FixedDelay
from merchantgeo.domain.models import GeocodeResult, ReverseGeocodeResult
from merchantgeo.geocoding.base import GeocodingProvider

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://restapi.amap.com/v3"
DEFAULT_BATCH_DELAY_SECONDS = 0.2

LEVEL_ACCURACY: dict[str, float] = {
    "门牌号": 0.98,  # house number
    "道路": 0.95,  # street
    "兴趣点": 0.90,  # POI
    "区县": 0.70,  # district
    "城市": 0.50,  # city
    "省份": 0.30,  # province
}
DEFAULT_LEVEL_ACCURACY = 0.80

_COMPONENT_FIELDS = (
    "country",
    "province",
    "city",
    "district",
    "township",
    "street",
    "number",
    "adcode",
    "citycode",
)


def level_to_accuracy(level: str | None) -> float:
    return LEVEL_ACCURACY.get(level or "", DEFAULT_LEVEL_ACCURACY)


def _text(value: Any) -> str:
    # Amap sends `[]` instead of "" for missing fields.
    if value is None or isinstance(value, (list, dict)):
        return ""
    return str(value)


def parse_location(location: Any) -> tuple[float, float]:
    """Parse Amap's `"lng,lat"` string into floats."""
    parts = _text(location).split(",")
    if len(parts) != 2:
        raise GeocodingError(f"invalid location format: {location!r}")
    try:
        lng = float(parts[0])
    except ValueError as exc:
        raise GeocodingError(f"invalid longitude: {parts[0]!r}") from exc
    try:
        lat = float(parts[1])
    except ValueError as exc:
        raise GeocodingError(f"invalid latitude: {parts[1]!r}") from exc
    return lng, lat


class AmapGeocodingProvider(GeocodingProvider):
    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        batch_delay: DelayPolicy | None = None,
    ):
        super().__init__(batch_delay=batch_delay or FixedDelay(DEFAULT_BATCH_DELAY_SECONDS))
        self._api_key = api_key or ""
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = float(timeout_seconds)

    @property
    def service_name(self) -> str:
        return "amap"

    def _require_api_key(self) -> str:
        if not self._api_key:
            raise ProviderNotConfiguredError("Amap API key not configured. Set AMAP_API_KEY.")
        return self._api_key

    def _request(self, path: str, params: dict[str, Any], *, what: str) -> dict[str, Any]:
        """GET an Amap endpoint and return the envelope once its status is OK."""
        url = f"{self._base_url}/{path}"
        try:
            payload = get_json(url, params=params, timeout_seconds=self._timeout_seconds)
        except httpx.HTTPError as exc:
            raise GeocodingError(f"failed to make {what} request: {exc}") from exc
        except ValueError as exc:
            raise GeocodingError(f"failed to parse {what} response: {exc}") from exc

        if not isinstance(payload, dict):
            raise GeocodingError(f"failed to parse {what} response: expected a JSON object")
        if _text(payload.get("status")) != "1":
            raise GeocodingError(
                f"{what} failed: {_text(payload.get('info'))} (code: {_text(payload.get('infocode'))})"
            )
        return payload

    def geocode(self, address: str) -> GeocodeResult:
        key = self._require_api_key()
        payload = self._request(
            "geocode/geo",
            {"key": key, "address": address, "output": "json", "batch": "false"},
            what="geocoding",
        )

        geocodes = payload.get("geocodes")
        if not isinstance(geocodes, list) or not geocodes or not isinstance(geocodes[0], dict):
            raise GeocodingError(f"no geocoding results found for address: {address}")

        record = geocodes[0]
        lng, lat = parse_location(record.get("location"))
        level = _text(record.get("level"))

        metadata: dict[str, Any] = {f: _text(record.get(f)) for f in _COMPONENT_FIELDS}
        metadata["level"] = level

        logger.debug("Amap geocoded %r -> (%.6f, %.6f) level=%s", address, lng, lat, level)
        return GeocodeResult(
            longitude=lng,
            latitude=lat,
            formatted_address=_text(record.get("formatted_address")),
            accuracy=level_to_accuracy(level),
            service=self.service_name,
            metadata=metadata,
            is_manual=False,
        )

    def reverse_geocode(self, lng: float, lat: float) -> ReverseGeocodeResult:
        key = self._require_api_key()
        payload = self._request(
            "geocode/regeo",
            {"key": key, "location": f"{lng:.6f},{lat:.6f}", "output": "json", "extensions": "base"},
            what="reverse geocoding",
        )

        regeocode = payload.get("regeocode")
        if not isinstance(regeocode, dict):
            raise GeocodingError(f"no reverse geocoding result for ({lng:.6f}, {lat:.6f})")
        address_component = regeocode.get("addressComponent")
        if not isinstance(address_component, dict):
            address_component = {}

        components = {f: _text(address_component.get(f)) for f in _COMPONENT_FIELDS}
        return ReverseGeocodeResult(
            formatted_address=_text(regeocode.get("formatted_address")),
            components=components,
            service=self.service_name,
            metadata={"address_component": address_component},
        )
