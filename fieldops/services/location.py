"""
Geolocation capability used by check-in and check-out.

A LocationProvider is handed to the route explicitly instead of reaching for an
ambient device API. Acquisition runs before anything is written, so a failed or
timed-out reading never leaves a half-created session behind.
"""
import asyncio
from typing import Optional

import httpx
import structlog

from ..config import settings
from ..errors import LocationUnavailableError, ValidationError
from ..schemas.geo import GeoSample, LocationPayload

logger = structlog.get_logger(__name__)

_ERROR_MESSAGES = {
    "timeout": "Location request timed out",
    "permission_denied": "Location permission was denied",
    "unavailable": "Location information is unavailable",
}


class LocationProvider:
    """Source of a single GeoSample for one check-in/check-out request."""

    async def acquire(self) -> GeoSample:
        raise NotImplementedError


class PayloadLocationProvider(LocationProvider):
    """
    Provider backed by what the device already reported in the request body.

    Mobile and browser clients read the position themselves and send either the
    sample or the error code they got back.
    """

    def __init__(self, payload: LocationPayload):
        self.payload = payload

    async def acquire(self) -> GeoSample:
        if self.payload.location_error:
            reason = self.payload.location_error
            detail = self.payload.location_error_message or _ERROR_MESSAGES[reason]
            raise LocationUnavailableError(detail, reason=reason)
        if self.payload.location is None:
            raise LocationUnavailableError("No location was provided", reason="unavailable")
        return self.payload.location


def validate_sample(sample: GeoSample) -> GeoSample:
    if not -90 <= sample.latitude <= 90:
        raise ValidationError(f"Latitude {sample.latitude} is out of range [-90, 90]")
    if not -180 <= sample.longitude <= 180:
        raise ValidationError(f"Longitude {sample.longitude} is out of range [-180, 180]")
    if sample.accuracy < 0:
        raise ValidationError("Accuracy must be zero or positive")
    return sample


async def reverse_geocode(lat: float, lng: float) -> Optional[str]:
    """Best-effort address lookup; returns None on any geocoder failure."""
    params = {
        "lat": lat,
        "lon": lng,
        "format": "json",
        "zoom": 18,
        "accept-language": "en",
    }
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            r = await client.get(
                settings.geocoder_url,
                params=params,
                headers={"User-Agent": settings.geocoder_user_agent},
            )
            r.raise_for_status()
            return r.json().get("display_name")
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("reverse_geocode_failed", lat=lat, lng=lng, error=str(e))
        return None


async def acquire_geo_sample(
    provider: LocationProvider,
    timeout_s: Optional[float] = None,
    enrich_address: Optional[bool] = None,
) -> GeoSample:
    """
    Acquire and validate one GeoSample within timeout_s seconds.

    Timeouts and provider failures surface as LocationUnavailableError; the core
    never retries, the caller may.
    """
    if timeout_s is None:
        timeout_s = settings.location_timeout_s
    if enrich_address is None:
        enrich_address = settings.reverse_geocode_enabled

    try:
        sample = await asyncio.wait_for(provider.acquire(), timeout=timeout_s)
    except asyncio.TimeoutError:
        logger.info("location_acquire_timeout", timeout_s=timeout_s)
        raise LocationUnavailableError(_ERROR_MESSAGES["timeout"], reason="timeout")

    sample = validate_sample(sample)

    if enrich_address and not sample.address:
        address = await reverse_geocode(sample.latitude, sample.longitude)
        if address:
            sample = sample.model_copy(update={"address": address})
    return sample
