"""
Exception hierarchy.

Everything raised on purpose by merchantgeo derives from `MerchantGeoError`.
Input problems (bad coordinates, bad payloads, bad addresses) also derive from
`ValueError` so generic callers can catch them the usual way.
"""

from __future__ import annotations


class MerchantGeoError(Exception):
    """Base class for merchantgeo errors."""


class CoordinateRangeError(MerchantGeoError, ValueError):
    """Longitude or latitude outside the valid range."""


class DecodeError(MerchantGeoError, ValueError):
    """Malformed binary point payload."""


class ValidationError(MerchantGeoError, ValueError):
    """Malformed address input."""


class GeocodingError(MerchantGeoError):
    """A single geocoding call failed."""


class ProviderNotConfiguredError(GeocodingError):
    """A provider is missing required credentials."""


class GeocodingTimeoutError(GeocodingError):
    """The caller-supplied deadline elapsed before a provider answered."""


class NoProvidersAvailableError(GeocodingError):
    """The manager has no providers to try."""


class AllProvidersFailedError(GeocodingError):
    """Every provider in the chain failed; `last_error` holds the final cause."""

    def __init__(self, message: str, last_error: Exception | None = None):
        super().__init__(message)
        self.last_error = last_error


class RetryExhaustedError(GeocodingError):
    """Every retry attempt raised; `last_error` holds the final cause."""

    def __init__(self, message: str, last_error: Exception | None = None):
        super().__init__(message)
        self.last_error = last_error
