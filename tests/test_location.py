import asyncio

import pytest

from fieldops.errors import LocationUnavailableError, ValidationError
from fieldops.schemas.geo import GeoSample, LocationPayload
from fieldops.services import location
from fieldops.services.geofence import haversine_distance, validate_location
from fieldops.services.location import (
    LocationProvider,
    PayloadLocationProvider,
    acquire_geo_sample,
)

from conftest import SITE_LAT, SITE_LNG


class SlowProvider(LocationProvider):
    async def acquire(self):
        await asyncio.sleep(5)
        return GeoSample(latitude=SITE_LAT, longitude=SITE_LNG)


def test_haversine_distance_known_value():
    # One degree of latitude is roughly 111 km
    assert haversine_distance(0, 0, 1, 0) == pytest.approx(111195, rel=1e-3)


def test_validate_location_inside_radius():
    result = validate_location(SITE_LAT + 0.0001, SITE_LNG, SITE_LAT, SITE_LNG, accuracy_m=5, radius_m=50)
    assert result["valid"] is True
    assert result["distance_m"] < 20
    assert result["accuracy_risk"] is False


def test_validate_location_radius_widened_by_accuracy():
    # ~111 m away, 100 m radius: outside unless the accuracy is taken into account
    point = SITE_LAT + 0.001
    assert validate_location(point, SITE_LNG, SITE_LAT, SITE_LNG, accuracy_m=0, radius_m=100)["valid"] is False
    assert validate_location(point, SITE_LNG, SITE_LAT, SITE_LNG, accuracy_m=20, radius_m=100)["valid"] is True


def test_validate_location_flags_poor_accuracy():
    result = validate_location(SITE_LAT, SITE_LNG, SITE_LAT, SITE_LNG, accuracy_m=500)
    assert result["valid"] is True
    assert result["accuracy_risk"] is True


def test_validate_location_without_target():
    result = validate_location(SITE_LAT, SITE_LNG, None, None)
    assert result["valid"] is None
    assert result["distance_m"] is None


def test_payload_provider_returns_sample():
    payload = LocationPayload(location={"latitude": SITE_LAT, "longitude": SITE_LNG, "accuracy": 8})
    sample = asyncio.run(acquire_geo_sample(PayloadLocationProvider(payload), timeout_s=1, enrich_address=False))
    assert sample.latitude == SITE_LAT
    assert sample.accuracy == 8
    assert sample.timestamp.tzinfo is not None


@pytest.mark.parametrize("code", ["timeout", "permission_denied", "unavailable"])
def test_payload_provider_maps_device_errors(code):
    payload = LocationPayload(location_error=code)
    with pytest.raises(LocationUnavailableError) as exc:
        asyncio.run(acquire_geo_sample(PayloadLocationProvider(payload), timeout_s=1))
    assert exc.value.reason == code
    assert exc.value.to_dict()["error"] == "location_unavailable"


def test_payload_without_location_is_unavailable():
    with pytest.raises(LocationUnavailableError) as exc:
        asyncio.run(acquire_geo_sample(PayloadLocationProvider(LocationPayload()), timeout_s=1))
    assert exc.value.reason == "unavailable"


def test_acquire_times_out():
    with pytest.raises(LocationUnavailableError) as exc:
        asyncio.run(acquire_geo_sample(SlowProvider(), timeout_s=0.05))
    assert exc.value.reason == "timeout"


def test_out_of_range_coordinates_rejected():
    payload = LocationPayload(location={"latitude": 123.0, "longitude": SITE_LNG})
    with pytest.raises(ValidationError):
        asyncio.run(acquire_geo_sample(PayloadLocationProvider(payload), timeout_s=1))


def test_address_enrichment_is_best_effort(monkeypatch):
    async def fake_geocode(lat, lng):
        return "120 Maple Ave, Brooklyn"

    monkeypatch.setattr(location, "reverse_geocode", fake_geocode)
    payload = LocationPayload(location={"latitude": SITE_LAT, "longitude": SITE_LNG})
    sample = asyncio.run(acquire_geo_sample(PayloadLocationProvider(payload), timeout_s=1, enrich_address=True))
    assert sample.address == "120 Maple Ave, Brooklyn"


def test_enrichment_keeps_client_address(monkeypatch):
    async def fake_geocode(lat, lng):
        raise AssertionError("geocoder should not be called")

    monkeypatch.setattr(location, "reverse_geocode", fake_geocode)
    payload = LocationPayload(location={"latitude": SITE_LAT, "longitude": SITE_LNG, "address": "Lobby"})
    sample = asyncio.run(acquire_geo_sample(PayloadLocationProvider(payload), timeout_s=1, enrich_address=True))
    assert sample.address == "Lobby"


def test_blank_address_is_normalised():
    assert GeoSample(latitude=1, longitude=2, address="  ").address is None
