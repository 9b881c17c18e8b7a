"""
Geocoding manager: ordered provider fallback with result caching.

Providers are tried strictly in the order they were added; the first success
wins and (for forward geocoding) is cached under the exact address string.
Reverse lookups are never cached.

The cache backend is owned by the manager instance. The default `MemoryCache`
is lock-guarded, so one manager can be shared between request threads; it has
no TTL or eviction and grows until `clear_cache()`.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from typing import Iterable, Sequence

from merchantgeo.config.settings import Settings
from merchantgeo.core.cache import FileCache, MemoryCache
from merchantgeo.core.env import resolve_project_path
from merchantgeo.core.errors import (
    AllProvidersFailedError,
    GeocodingError,
    GeocodingTimeoutError,
    NoProvidersAvailableError,
    RetryExhaustedError,
    ValidationError,
)
from merchantgeo.core.rate_limit import DelayPolicy, FixedDelay, LinearBackoff
from merchantgeo.domain.models import GeocodeResult, ReverseGeocodeResult
from merchantgeo.geocoding.amap import AmapGeocodingProvider
from merchantgeo.geocoding.base import GeocodingProvider
from merchantgeo.geocoding.mock import MockGeocodingProvider

logger = logging.getLogger(__name__)

CACHE_NAMESPACE = "geocode"
DEFAULT_BATCH_DELAY_SECONDS = 0.1
DEFAULT_COMMON_SUFFIXES = ("市", "区", "县", "镇", "街道", "路", "街", "巷", "号")
SELF_TEST_ADDRESS = "北京市朝阳区"

_WHITESPACE_RE = re.compile(r"\s+")


class GeocodingManager:
    def __init__(
        self,
        providers: Iterable[GeocodingProvider] = (),
        *,
        cache: MemoryCache | FileCache | None = None,
        batch_delay: DelayPolicy | None = None,
        retry_backoff: DelayPolicy | None = None,
        min_address_length: int = 3,
        max_address_length: int = 500,
        common_suffixes: Sequence[str] = DEFAULT_COMMON_SUFFIXES,
    ):
        self._providers: list[GeocodingProvider] = list(providers)
        self._cache = cache if cache is not None else MemoryCache()
        self._batch_delay = batch_delay or FixedDelay(DEFAULT_BATCH_DELAY_SECONDS)
        self._retry_backoff = retry_backoff or LinearBackoff(1.0)
        self._min_address_length = int(min_address_length)
        self._max_address_length = int(max_address_length)
        self._common_suffixes = tuple(common_suffixes)
        self._stats_lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @property
    def providers(self) -> list[GeocodingProvider]:
        return list(self._providers)

    def add_provider(self, provider: GeocodingProvider) -> None:
        self._providers.append(provider)

    def _count(self, *, hit: bool) -> None:
        with self._stats_lock:
            if hit:
                self._hits += 1
            else:
                self._misses += 1

    def _cached(self, address: str) -> GeocodeResult | None:
        raw = self._cache.get(CACHE_NAMESPACE, address)
        if raw is None:
            return None
        return GeocodeResult.model_validate(raw)

    @staticmethod
    def _check_deadline(deadline: float | None, address: str) -> None:
        if deadline is not None and time.monotonic() >= deadline:
            raise GeocodingTimeoutError(f"deadline exceeded while geocoding {address!r}")

    def geocode(self, address: str, *, deadline_seconds: float | None = None) -> GeocodeResult:
        """Return a cached result or the first provider success.

        Raises:
            NoProvidersAvailableError: If no providers are registered.
            AllProvidersFailedError: If every provider raised `GeocodingError`.
            GeocodingTimeoutError: If `deadline_seconds` elapsed before a provider succeeded.
        """
        cached = self._cached(address)
        if cached is not None:
            self._count(hit=True)
            logger.debug("Geocode cache hit for %r", address)
            return cached
        self._count(hit=False)

        if not self._providers:
            raise NoProvidersAvailableError("no geocoding services available")

        deadline = time.monotonic() + deadline_seconds if deadline_seconds is not None else None
        last_exc: GeocodingError | None = None
        for provider in self._providers:
            self._check_deadline(deadline, address)
            try:
                result = provider.geocode(address)
            except GeocodingError as exc:
                logger.warning("Geocoding via %s failed for %r: %s", provider.service_name, address, exc)
                last_exc = exc
                continue

            self._cache.set(CACHE_NAMESPACE, address, result.model_dump(mode="json"))
            return result

        raise AllProvidersFailedError(
            f"all geocoding services failed, last error: {last_exc}", last_error=last_exc
        ) from last_exc

    def reverse_geocode(self, lng: float, lat: float) -> ReverseGeocodeResult:
        """Reverse lookup with the same fallback order; results are not cached."""
        if not self._providers:
            raise NoProvidersAvailableError("no reverse geocoding services available")

        last_exc: GeocodingError | None = None
        for provider in self._providers:
            try:
                return provider.reverse_geocode(lng, lat)
            except GeocodingError as exc:
                logger.warning(
                    "Reverse geocoding via %s failed for (%.6f, %.6f): %s",
                    provider.service_name,
                    lng,
                    lat,
                    exc,
                )
                last_exc = exc

        raise AllProvidersFailedError(
            f"all reverse geocoding services failed, last error: {last_exc}", last_error=last_exc
        ) from last_exc

    def batch_geocode(
        self, addresses: Sequence[str], *, deadline_seconds: float | None = None
    ) -> list[GeocodeResult]:
        """Geocode each address; failures become `GeocodeResult.failed` placeholders.

        Always returns exactly one result per input address.
        """
        deadline = time.monotonic() + deadline_seconds if deadline_seconds is not None else None
        results: list[GeocodeResult] = []
        for i, address in enumerate(addresses):
            if i > 0:
                self._batch_delay.wait()
            try:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    raise GeocodingTimeoutError(f"deadline exceeded before geocoding {address!r}")
                results.append(self.geocode(address, deadline_seconds=remaining))
            except GeocodingError as exc:
                logger.error("Batch geocoding failed for %r: %s", address, exc)
                results.append(GeocodeResult.failed(address, exc))

        failed = sum(1 for r in results if r.is_failed)
        logger.info("Batch geocoding completed: %d ok, %d failed", len(results) - failed, failed)
        return results

    def geocode_with_retry(self, address: str, min_accuracy: float, max_retries: int) -> GeocodeResult:
        """Repeat `geocode` until a result reaches `min_accuracy`.

        Falls back to the last (low-accuracy) result when no attempt was good
        enough. Raises `RetryExhaustedError` only when every attempt raised.
        A below-threshold answer waits `attempt` steps of backoff before the next
        try; an attempt that raised is retried right away.
        """
        last_result: GeocodeResult | None = None
        last_exc: GeocodingError | None = None

        for attempt in range(max_retries):
            try:
                result = self.geocode(address)
            except GeocodingError as exc:
                logger.info("Geocode attempt %d/%d for %r failed: %s", attempt + 1, max_retries, address, exc)
                last_exc = exc
                continue

            last_result = result
            if result.accuracy >= min_accuracy:
                return result
            logger.info(
                "Geocode attempt %d/%d for %r below accuracy: %.2f < %.2f",
                attempt + 1,
                max_retries,
                address,
                result.accuracy,
                min_accuracy,
            )
            # Errors retry immediately; only low-accuracy answers back off.
            if attempt < max_retries - 1:
                self._retry_backoff.wait(attempt + 1)

        if last_result is not None:
            logger.warning(
                "Geocoding result for %r has low accuracy: %.2f (required: %.2f)",
                address,
                last_result.accuracy,
                min_accuracy,
            )
            return last_result

        if last_exc is not None:
            raise RetryExhaustedError(
                f"geocoding failed after {max_retries} attempts: {last_exc}", last_error=last_exc
            ) from last_exc
        raise RetryExhaustedError(f"geocoding failed after {max_retries} attempts with no results")

    def clear_cache(self) -> None:
        removed = self._cache.clear(CACHE_NAMESPACE)
        with self._stats_lock:
            self._hits = 0
            self._misses = 0
        logger.info("Geocoding cache cleared: %d entries removed", removed)

    def cache_size(self) -> int:
        return self._cache.size(CACHE_NAMESPACE)

    def get_statistics(self) -> dict[str, object]:
        with self._stats_lock:
            hits, misses = self._hits, self._misses
        return {
            "cache_size": self.cache_size(),
            "hit_count": hits,
            "miss_count": misses,
            "services": [p.service_name for p in self._providers],
        }

    def validate_and_normalize_address(self, address: str) -> str:
        """Trim and collapse whitespace, then enforce length bounds.

        Lengths count characters, not encoded bytes: "北京市" is 3 long.

        Raises:
            ValidationError: For empty, too short or too long addresses.
        """
        address = _WHITESPACE_RE.sub(" ", (address or "").strip())
        if not address:
            raise ValidationError("address cannot be empty")
        if len(address) < self._min_address_length:
            raise ValidationError(
                f"address too short, minimum {self._min_address_length} characters required"
            )
        if len(address) > self._max_address_length:
            raise ValidationError(
                f"address too long, maximum {self._max_address_length} characters allowed"
            )

        if not address.endswith(self._common_suffixes):
            logger.warning("Address %r may be incomplete (no common suffix found)", address)
        return address

    def self_test(self, address: str = SELF_TEST_ADDRESS) -> GeocodeResult:
        """Geocode a known address to check that at least one provider works."""
        try:
            result = self.geocode(address)
        except GeocodingError as exc:
            raise GeocodingError(f"geocoding test failed: {exc}") from exc
        if result.accuracy == 0:
            raise GeocodingError("geocoding test returned zero accuracy")

        logger.info(
            "Geocoding test successful: %s -> %.6f,%.6f (accuracy: %.2f)",
            address,
            result.longitude,
            result.latitude,
            result.accuracy,
        )
        return result


def build_cache(settings: Settings) -> MemoryCache | FileCache:
    if settings.cache.backend == "file":
        return FileCache(
            resolve_project_path(settings.cache.dir),
            default_ttl_seconds=int(settings.cache.default_ttl_seconds),
        )
    return MemoryCache()


def build_geocoding_manager(settings: Settings) -> GeocodingManager:
    """Build a manager from settings, adding providers in `geocoding.providers` order.

    Amap is skipped (with a log line) when no API key is configured, so the
    default `[amap, mock]` chain degrades to the mock provider alone.
    """
    geo = settings.geocoding
    manager = GeocodingManager(
        cache=build_cache(settings),
        batch_delay=FixedDelay(geo.batch_delay_seconds),
        retry_backoff=LinearBackoff(geo.retry.backoff_step_seconds),
        min_address_length=geo.address.min_length,
        max_address_length=geo.address.max_length,
        common_suffixes=geo.address.common_suffixes,
    )

    for name in geo.providers:
        if name == "amap":
            if not geo.amap.api_key:
                logger.info("Amap geocoding skipped: no API key configured")
                continue
            manager.add_provider(
                AmapGeocodingProvider(
                    geo.amap.api_key,
                    base_url=geo.amap.base_url,
                    timeout_seconds=geo.amap.timeout_seconds,
                    batch_delay=FixedDelay(geo.amap.batch_delay_seconds),
                )
            )
            logger.info("Initialized Amap geocoding service")
        elif name == "mock":
            manager.add_provider(
                MockGeocodingProvider(
                    base_lng=geo.mock.base_lng,
                    base_lat=geo.mock.base_lat,
                    batch_delay=FixedDelay(geo.mock.batch_delay_seconds),
                )
            )
            logger.info("Initialized mock geocoding service")
    return manager
