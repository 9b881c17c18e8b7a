import pytest

from merchantgeo.core.errors import GeocodingError
from merchantgeo.domain.models import GeocodeResult, ReverseGeocodeResult
from merchantgeo.geocoding.base import GeocodingProvider
from merchantgeo.geocoding.mock import MockGeocodingProvider, address_hash


class RecordingDelay:
    def __init__(self):
        self.calls: list[int] = []

    def wait(self, attempt: int = 0) -> None:
        self.calls.append(attempt)


class RejectEmptyProvider(GeocodingProvider):
    @property
    def service_name(self) -> str:
        return "strict"

    def geocode(self, address: str) -> GeocodeResult:
        if not address:
            raise GeocodingError("address is empty")
        return GeocodeResult(longitude=1.0, latitude=2.0, formatted_address=address, accuracy=0.9, service="strict")

    def reverse_geocode(self, lng: float, lat: float) -> ReverseGeocodeResult:
        raise GeocodingError("not supported")


def test_address_hash_matches_rolling_formula():
    assert address_hash("") == 0
    assert address_hash("abc") == (97 * 31 + 98) * 31 + 99


def test_address_hash_wraps_to_signed_64_bit():
    address = "北京市朝阳区阜通东大街6号望京SOHO塔1座" * 3
    expected = 0
    for ch in address:
        expected = (expected * 31 + ord(ch)) % (1 << 64)
    if expected >= 1 << 63:
        expected -= 1 << 64

    assert address_hash(address) == expected
    assert -(1 << 63) <= address_hash(address) < (1 << 63)


def test_mock_geocode_is_deterministic():
    provider = MockGeocodingProvider()
    first = provider.geocode("abc")
    second = provider.geocode("abc")

    assert first == second
    assert first.longitude == pytest.approx(116.0354)
    assert first.latitude == pytest.approx(39.8096)
    assert first.accuracy == 0.8
    assert first.service == "mock"
    assert first.formatted_address == "Mock Address for: abc"
    assert first.metadata == {"mock": True, "hash": 96354}
    assert first.is_manual is False


def test_mock_geocode_stays_in_small_box_for_negative_hashes():
    provider = MockGeocodingProvider()
    for address in ["北京市朝阳区" * 5, "x" * 40, "Main Street 1, Springfield"]:
        r = provider.geocode(address)
        assert 115.9 < r.longitude < 116.1
        assert 39.7 < r.latitude < 39.9


def test_mock_geocode_custom_base_and_name():
    provider = MockGeocodingProvider(name="offline", base_lng=121.0, base_lat=25.0)
    r = provider.geocode("")
    assert (r.longitude, r.latitude) == (121.0, 25.0)
    assert r.service == "offline"
    assert provider.service_name == "offline"


def test_mock_reverse_geocode():
    r = MockGeocodingProvider().reverse_geocode(116.4, 39.9)
    assert r.formatted_address == "Mock Address at 116.400000, 39.900000"
    assert r.components["district"] == "朝阳区"
    assert r.service == "mock"


def test_batch_geocode_captures_failures_inline():
    delay = RecordingDelay()
    provider = RejectEmptyProvider(batch_delay=delay)

    results = provider.batch_geocode(["", "valid address"])

    assert len(results) == 2
    assert results[0].service == "failed"
    assert results[0].accuracy == 0.0
    assert results[0].formatted_address == ""
    assert "address is empty" in results[0].metadata["error"]
    assert results[0].is_failed
    assert results[1].service == "strict"
    assert results[1].formatted_address == "valid address"
    assert len(delay.calls) == 1


def test_mock_batch_geocode_returns_one_result_per_address():
    provider = MockGeocodingProvider()
    results = provider.batch_geocode(["a", "b", "a"])
    assert [r.formatted_address for r in results] == [
        "Mock Address for: a",
        "Mock Address for: b",
        "Mock Address for: a",
    ]
    assert results[0] == results[2]
