from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Protocol

import requests

from qr_attendance.models import Coordinates
from qr_attendance.utils.geo import InvalidCoordinates, parse_coordinates

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


class GeolocationError(RuntimeError):
    """Base class for a failed single location lookup."""

    default_message = "Failed to get location."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class GeolocationUnsupported(GeolocationError):
    default_message = "Geolocation is not supported on this device."


class PermissionDenied(GeolocationError):
    default_message = "Location permission denied."


class PositionUnavailable(GeolocationError):
    default_message = "Location information unavailable."


class GeolocationTimeout(GeolocationError):
    default_message = "Location request timed out."


class GeolocationProvider(Protocol):
    def get_location(self) -> Coordinates:
        """Return the current coordinates or raise a ``GeolocationError``."""


class UnsupportedGeolocationProvider:
    def get_location(self) -> Coordinates:
        raise GeolocationUnsupported()


class FixedGeolocationProvider:
    """A device whose position is known ahead of time (e.g. a lecture-hall kiosk)."""

    def __init__(self, coordinates: Coordinates) -> None:
        self._coordinates = coordinates

    def get_location(self) -> Coordinates:
        return self._coordinates


class HttpGeolocationProvider:
    """Look up the device position from a network location service.

    The service must answer with a JSON object holding ``latitude`` and
    ``longitude`` (``lat``/``lon`` are accepted too). Each call makes exactly
    one request bounded by ``timeout``; retry policy belongs to the caller.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._session = session or requests.Session()

    def get_location(self) -> Coordinates:
        try:
            response = self._session.get(self._url, timeout=self._timeout)
        except requests.Timeout as exc:
            logger.info("Location lookup timed out after %.1fs", self._timeout)
            raise GeolocationTimeout() from exc
        except requests.RequestException as exc:
            logger.info("Location lookup failed: %s", exc)
            raise PositionUnavailable() from exc

        if response.status_code in (401, 403):
            raise PermissionDenied()
        if not response.ok:
            raise PositionUnavailable(
                f"Location information unavailable (status {response.status_code})."
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise PositionUnavailable() from exc

        return self._coordinates_from(payload)

    @staticmethod
    def _coordinates_from(payload: Any) -> Coordinates:
        if not isinstance(payload, Mapping):
            raise PositionUnavailable()

        latitude = payload.get("latitude", payload.get("lat"))
        longitude = payload.get("longitude", payload.get("lon", payload.get("lng")))
        try:
            lat, lon = parse_coordinates(latitude, longitude)
        except InvalidCoordinates as exc:
            raise PositionUnavailable() from exc
        return Coordinates(lat, lon)


def build_geolocation_provider(settings) -> GeolocationProvider:
    """Pick a provider from configuration: fixed device coordinates win over a lookup URL."""

    if settings.device_latitude is not None and settings.device_longitude is not None:
        lat, lon = parse_coordinates(settings.device_latitude, settings.device_longitude)
        return FixedGeolocationProvider(Coordinates(lat, lon))

    if settings.location_lookup_url:
        return HttpGeolocationProvider(
            settings.location_lookup_url,
            timeout=settings.geolocation_timeout_seconds,
        )

    return UnsupportedGeolocationProvider()
