import logging

import pytest

from merchantgeo.core.cache import FileCache
from merchantgeo.core.errors import (
    AllProvidersFailedError,
    GeocodingError,
    GeocodingTimeoutError,
    NoProvidersAvailableError,
    RetryExhaustedError,
    ValidationError,
)
from merchantgeo.core.rate_limit import NoDelay
from merchantgeo.domain.models import GeocodeResult, ReverseGeocodeResult
from merchantgeo.geocoding.base import GeocodingProvider
from merchantgeo.geocoding.manager import GeocodingManager
from merchantgeo.geocoding.mock import MockGeocodingProvider


class RecordingDelay:
    def __init__(self):
        self.calls: list[int] = []

    def wait(self, attempt: int = 0) -> None:
        self.calls.append(attempt)


class FakeProvider(GeocodingProvider):
    """Scripted provider: fails with `error` or answers with fixed coordinates."""

    def __init__(self, name: str, *, error: str | None = None, accuracy: float = 0.9, lnglat=(116.4, 39.9)):
        super().__init__()
        self._name = name
        self._error = error
        self._accuracy = accuracy
        self._lnglat = lnglat
        self.geocode_calls: list[str] = []
        self.reverse_calls: list[tuple[float, float]] = []

    @property
    def service_name(self) -> str:
        return self._name

    def geocode(self, address: str) -> GeocodeResult:
        self.geocode_calls.append(address)
        if self._error:
            raise GeocodingError(self._error)
        return GeocodeResult(
            longitude=self._lnglat[0],
            latitude=self._lnglat[1],
            formatted_address=f"{self._name}: {address}",
            accuracy=self._accuracy,
            service=self._name,
            metadata={"source": self._name},
        )

    def reverse_geocode(self, lng: float, lat: float) -> ReverseGeocodeResult:
        self.reverse_calls.append((lng, lat))
        if self._error:
            raise GeocodingError(self._error)
        return ReverseGeocodeResult(formatted_address=f"{self._name} @ {lng},{lat}", service=self._name)


def _manager(*providers, **kwargs) -> GeocodingManager:
    kwargs.setdefault("batch_delay", NoDelay())
    kwargs.setdefault("retry_backoff", NoDelay())
    return GeocodingManager(providers, **kwargs)


def test_falls_back_to_next_provider_and_caches_success():
    broken = FakeProvider("broken", error="upstream down")
    backup = FakeProvider("backup")
    manager = _manager(broken, backup)

    first = manager.geocode("北京市朝阳区")
    second = manager.geocode("北京市朝阳区")

    assert first.service == "backup"
    assert second == first
    assert broken.geocode_calls == ["北京市朝阳区"]
    assert backup.geocode_calls == ["北京市朝阳区"]
    assert manager.cache_size() == 1


def test_cache_is_keyed_by_exact_address():
    provider = FakeProvider("p")
    manager = _manager(provider)

    manager.geocode("北京市朝阳区")
    manager.geocode(" 北京市朝阳区")

    assert provider.geocode_calls == ["北京市朝阳区", " 北京市朝阳区"]
    assert manager.cache_size() == 2


def test_all_providers_failing_keeps_last_error():
    manager = _manager(FakeProvider("a", error="first"), FakeProvider("b", error="second"))

    with pytest.raises(AllProvidersFailedError, match="second") as excinfo:
        manager.geocode("x")

    assert str(excinfo.value.last_error) == "second"
    assert manager.cache_size() == 0


def test_no_providers_available():
    manager = _manager()

    with pytest.raises(NoProvidersAvailableError):
        manager.geocode("x")
    with pytest.raises(NoProvidersAvailableError):
        manager.reverse_geocode(116.4, 39.9)


def test_deadline_already_elapsed_raises_timeout():
    provider = FakeProvider("p")
    manager = _manager(provider)

    with pytest.raises(GeocodingTimeoutError):
        manager.geocode("x", deadline_seconds=0)
    assert provider.geocode_calls == []


def test_cached_result_ignores_deadline():
    manager = _manager(FakeProvider("p"))
    manager.geocode("x")

    assert manager.geocode("x", deadline_seconds=0).service == "p"


def test_reverse_geocode_falls_back_and_is_not_cached():
    broken = FakeProvider("broken", error="nope")
    backup = FakeProvider("backup")
    manager = _manager(broken, backup)

    r1 = manager.reverse_geocode(116.4, 39.9)
    r2 = manager.reverse_geocode(116.4, 39.9)

    assert r1.service == "backup"
    assert r2 == r1
    assert len(backup.reverse_calls) == 2
    assert manager.cache_size() == 0


def test_reverse_geocode_all_failed():
    manager = _manager(FakeProvider("a", error="boom"))
    with pytest.raises(AllProvidersFailedError, match="boom"):
        manager.reverse_geocode(1.0, 2.0)


def test_batch_geocode_one_result_per_address_with_delay_between():
    delay = RecordingDelay()
    manager = _manager(MockGeocodingProvider(), batch_delay=delay)

    results = manager.batch_geocode(["a", "b", "c"])

    assert [r.formatted_address for r in results] == [
        "Mock Address for: a",
        "Mock Address for: b",
        "Mock Address for: c",
    ]
    assert len(delay.calls) == 2


def test_batch_geocode_records_failures_inline():
    manager = _manager(FakeProvider("a", error="bad upstream"))

    results = manager.batch_geocode(["one", "two"])

    assert len(results) == 2
    assert all(r.is_failed for r in results)
    assert results[0].formatted_address == "one"
    assert "bad upstream" in results[1].metadata["error"]


def test_batch_geocode_empty_input():
    assert _manager(MockGeocodingProvider()).batch_geocode([]) == []


def test_retry_returns_low_accuracy_result_after_all_attempts(caplog):
    provider = FakeProvider("p", accuracy=0.8)
    backoff = RecordingDelay()
    manager = _manager(provider, retry_backoff=backoff)

    with caplog.at_level(logging.WARNING, logger="merchantgeo.geocoding.manager"):
        result = manager.geocode_with_retry("北京市朝阳区", 0.99, 3)

    assert result.accuracy == 0.8
    assert backoff.calls == [1, 2]
    # Later attempts are served from the cache.
    assert provider.geocode_calls == ["北京市朝阳区"]
    assert "low accuracy" in caplog.text


def test_retry_returns_immediately_when_accurate_enough():
    backoff = RecordingDelay()
    manager = _manager(FakeProvider("p", accuracy=0.95), retry_backoff=backoff)

    assert manager.geocode_with_retry("x", 0.9, 3).accuracy == 0.95
    assert backoff.calls == []


def test_retry_raises_when_every_attempt_fails():
    backoff = RecordingDelay()
    manager = _manager(FakeProvider("p", error="down"), retry_backoff=backoff)

    with pytest.raises(RetryExhaustedError, match="after 3 attempts") as excinfo:
        manager.geocode_with_retry("x", 0.5, 3)

    assert isinstance(excinfo.value.last_error, AllProvidersFailedError)
    # Failed attempts are retried without waiting.
    assert backoff.calls == []


def test_retry_backs_off_only_after_low_accuracy_answers():
    class FlakyProvider(FakeProvider):
        def geocode(self, address: str) -> GeocodeResult:
            if not self.geocode_calls:
                self.geocode_calls.append(address)
                raise GeocodingError("timeout")
            return super().geocode(address)

    provider = FlakyProvider("p", accuracy=0.6)
    backoff = RecordingDelay()
    manager = _manager(provider, retry_backoff=backoff)

    result = manager.geocode_with_retry("x", 0.9, 3)

    assert result.accuracy == 0.6
    assert backoff.calls == [2]
    assert provider.geocode_calls == ["x", "x"]


def test_retry_with_zero_attempts():
    manager = _manager(FakeProvider("p"))
    with pytest.raises(RetryExhaustedError, match="no results"):
        manager.geocode_with_retry("x", 0.5, 0)


def test_default_retry_backoff_does_not_sleep_after_errors(monkeypatch):
    sleeps: list[float] = []
    monkeypatch.setattr("merchantgeo.core.rate_limit.time.sleep", lambda s: sleeps.append(float(s)))
    manager = GeocodingManager([FakeProvider("p", error="down")])

    with pytest.raises(RetryExhaustedError):
        manager.geocode_with_retry("x", 0.5, 3)

    assert sleeps == []


def test_default_retry_backoff_sleeps_linearly_for_low_accuracy(monkeypatch):
    sleeps: list[float] = []
    monkeypatch.setattr("merchantgeo.core.rate_limit.time.sleep", lambda s: sleeps.append(float(s)))
    manager = GeocodingManager([FakeProvider("p", accuracy=0.8)])

    assert manager.geocode_with_retry("x", 0.99, 3).accuracy == 0.8
    assert sleeps == [1.0, 2.0]


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("  北京市   朝阳区  ", "北京市 朝阳区"),
        ("上海市\t浦东新区\n世纪大道100号", "上海市 浦东新区 世纪大道100号"),
    ],
)
def test_validate_and_normalize_address(raw, expected):
    assert _manager().validate_and_normalize_address(raw) == expected


@pytest.mark.parametrize("raw,message", [("", "empty"), ("   ", "empty"), ("ab", "too short"), ("x" * 501, "too long")])
def test_validate_and_normalize_address_rejects(raw, message):
    with pytest.raises(ValidationError, match=message):
        _manager().validate_and_normalize_address(raw)


def test_address_length_counts_characters():
    manager = _manager()
    assert manager.validate_and_normalize_address("朝阳区") == "朝阳区"
    assert manager.validate_and_normalize_address("号" * 500) == "号" * 500


def test_address_without_common_suffix_is_accepted_with_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="merchantgeo.geocoding.manager"):
        assert _manager().validate_and_normalize_address("Springfield Mall") == "Springfield Mall"
    assert "may be incomplete" in caplog.text

    caplog.clear()
    with caplog.at_level(logging.WARNING, logger="merchantgeo.geocoding.manager"):
        _manager().validate_and_normalize_address("北京市朝阳区")
    assert "may be incomplete" not in caplog.text


def test_clear_cache_and_statistics():
    manager = _manager(FakeProvider("a", error="x"), MockGeocodingProvider())
    manager.geocode("北京市朝阳区")
    manager.geocode("北京市朝阳区")
    manager.geocode("上海市浦东新区")

    stats = manager.get_statistics()
    assert stats == {"cache_size": 2, "hit_count": 1, "miss_count": 2, "services": ["a", "mock"]}

    manager.clear_cache()
    assert manager.cache_size() == 0
    assert manager.get_statistics()["hit_count"] == 0


def test_add_provider_appends_to_chain():
    manager = _manager(FakeProvider("a", error="x"))
    with pytest.raises(AllProvidersFailedError):
        manager.geocode("addr")

    manager.add_provider(MockGeocodingProvider())
    assert [p.service_name for p in manager.providers] == ["a", "mock"]
    assert manager.geocode("addr").service == "mock"


def test_file_cache_is_shared_between_managers(tmp_path):
    first_provider = FakeProvider("p", lnglat=(121.5, 25.0))
    first = _manager(first_provider, cache=FileCache(tmp_path))
    original = first.geocode("台北市信义区")

    second_provider = FakeProvider("p", lnglat=(0.5, 0.5))
    second = _manager(second_provider, cache=FileCache(tmp_path))
    restored = second.geocode("台北市信义区")

    assert restored == original
    assert restored.metadata == {"source": "p"}
    assert second_provider.geocode_calls == []
    assert second.cache_size() == 1

    second.clear_cache()
    assert first.cache_size() == 0


def test_self_test_uses_default_address():
    provider = FakeProvider("p")
    result = _manager(provider).self_test()

    assert provider.geocode_calls == ["北京市朝阳区"]
    assert result.service == "p"


def test_self_test_rejects_zero_accuracy_and_failures():
    with pytest.raises(GeocodingError, match="zero accuracy"):
        _manager(FakeProvider("p", accuracy=0.0)).self_test()
    with pytest.raises(GeocodingError, match="geocoding test failed"):
        _manager(FakeProvider("p", error="down")).self_test()
