"""
Write geocoding results back onto merchants.

Works with a single provider or a `GeocodingManager`; both expose `geocode` and
`batch_geocode`. Persisting the updated merchants is the caller's job.
"""

from __future__ import annotations

import logging
from typing import Sequence, Union

from merchantgeo.core.errors import CoordinateRangeError, GeocodingError, ValidationError
from merchantgeo.core.geo import validate_coordinates
from merchantgeo.domain.models import Merchant
from merchantgeo.geocoding.base import GeocodingProvider
from merchantgeo.geocoding.manager import GeocodingManager

logger = logging.getLogger(__name__)

Geocoder = Union[GeocodingProvider, GeocodingManager]


def needs_geocoding(merchant: Merchant) -> bool:
    """Merchants with an address and no manually placed pin."""
    return bool(merchant.business_address) and not merchant.is_manual_location


def geocode_merchant(merchant: Merchant, geocoder: Geocoder) -> Merchant:
    """Geocode the merchant's business address and store the result on it.

    Raises:
        ValidationError: If the merchant has no business address.
        GeocodingError: If the lookup fails.
        CoordinateRangeError: If the geocoder returned out-of-range coordinates.
    """
    if not merchant.business_address:
        raise ValidationError("merchant has no business address to geocode")

    result = geocoder.geocode(merchant.business_address)
    validate_coordinates(result.longitude, result.latitude)
    merchant.apply_geocode(result)
    return merchant


def batch_geocode_merchants(merchants: Sequence[Merchant], geocoder: Geocoder) -> int:
    """Batch-geocode merchants that need it; returns how many were updated.

    Failed entries (accuracy 0) and out-of-range coordinates leave the merchant
    untouched.
    """
    to_geocode = [m for m in merchants if needs_geocoding(m)]
    if not to_geocode:
        return 0

    results = geocoder.batch_geocode([m.business_address for m in to_geocode])
    if len(results) != len(to_geocode):
        raise GeocodingError(
            f"geocoding results count mismatch: expected {len(to_geocode)}, got {len(results)}"
        )

    updated = 0
    for merchant, result in zip(to_geocode, results):
        if result.accuracy <= 0:
            continue
        try:
            validate_coordinates(result.longitude, result.latitude)
        except CoordinateRangeError as exc:
            logger.warning("Skipping merchant %s: %s", merchant.id, exc)
            continue
        merchant.apply_geocode(result)
        updated += 1

    logger.info("Geocoded %d of %d merchants", updated, len(to_geocode))
    return updated
