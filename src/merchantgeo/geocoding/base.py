"""
Geocoding provider capability.

A provider turns addresses into coordinates and back. Concrete providers
(`MockGeocodingProvider`, `AmapGeocodingProvider`) implement single lookups;
batch lookups are shared here so every provider degrades the same way: one
result per input, failures replaced by `GeocodeResult.failed(...)`, and a
throttle between upstream calls.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Sequence

from merchantgeo.core.errors import GeocodingError
from merchantgeo.core.rate_limit import DelayPolicy, NoDelay
from merchantgeo.domain.models import GeocodeResult, ReverseGeocodeResult

logger = logging.getLogger(__name__)


class GeocodingProvider(ABC):
    def __init__(self, *, batch_delay: DelayPolicy | None = None):
        self._batch_delay: DelayPolicy = batch_delay or NoDelay()

    @property
    @abstractmethod
    def service_name(self) -> str:
        """Stable identifier stored on results and used in logs."""

    @abstractmethod
    def geocode(self, address: str) -> GeocodeResult:
        """Resolve `address` to coordinates or raise `GeocodingError`."""

    @abstractmethod
    def reverse_geocode(self, lng: float, lat: float) -> ReverseGeocodeResult:
        """Resolve coordinates to an address or raise `GeocodingError`."""

    def batch_geocode(self, addresses: Sequence[str]) -> list[GeocodeResult]:
        results: list[GeocodeResult] = []
        for i, address in enumerate(addresses):
            if i > 0:
                self._batch_delay.wait()
            try:
                results.append(self.geocode(address))
            except GeocodingError as exc:
                logger.error("Failed to geocode address %r via %s: %s", address, self.service_name, exc)
                results.append(GeocodeResult.failed(address, exc))
        return results

    def __repr__(self) -> str:
        return f"{type(self).__name__}(service_name={self.service_name!r})"
