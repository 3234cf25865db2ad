from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Callable, Optional
from urllib.parse import unquote, urlparse

from qr_attendance.models import (
    Coordinates,
    VerificationAttempt,
    VerificationCategory,
    VerificationOutcome,
)
from qr_attendance.services.api_client import AttendanceApiClient, AttendanceApiError
from qr_attendance.services.fingerprint import FingerprintProvider
from qr_attendance.services.geolocation import GeolocationError, GeolocationProvider
from qr_attendance.utils.time import utc_now

logger = logging.getLogger(__name__)

CODE_TOKEN_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)

# Explicit machine-readable codes the service may send alongside its message.
_ERROR_CODES: dict[str, VerificationCategory] = {
    "expired": VerificationCategory.EXPIRED,
    "code_expired": VerificationCategory.EXPIRED,
    "qr_expired": VerificationCategory.EXPIRED,
    "out_of_range": VerificationCategory.OUT_OF_RANGE,
    "outside_geofence": VerificationCategory.OUT_OF_RANGE,
    "too_far": VerificationCategory.OUT_OF_RANGE,
    "not_enrolled": VerificationCategory.NOT_ENROLLED,
    "already_recorded": VerificationCategory.ALREADY_RECORDED,
    "already_marked": VerificationCategory.ALREADY_RECORDED,
    "duplicate": VerificationCategory.ALREADY_RECORDED,
}

# Checked in order; "already" comes first so "already recorded ... expired" style
# messages still land on the dedup outcome.
_MESSAGE_KEYWORDS: tuple[tuple[tuple[str, ...], VerificationCategory], ...] = (
    (("already",), VerificationCategory.ALREADY_RECORDED),
    (("expired",), VerificationCategory.EXPIRED),
    (("not enrolled", "not registered", "not a member", "not in this section"), VerificationCategory.NOT_ENROLLED),
    (("out of range", "outside", "too far", "distance", "geofence", "radius"), VerificationCategory.OUT_OF_RANGE),
)

_STATUS_CODES: dict[int, VerificationCategory] = {
    409: VerificationCategory.ALREADY_RECORDED,
    410: VerificationCategory.EXPIRED,
    403: VerificationCategory.NOT_ENROLLED,
    422: VerificationCategory.OUT_OF_RANGE,
}


def extract_code_token(scanned: str) -> str:
    """Pull the candidate code token out of a scanned QR payload.

    URLs yield their last non-empty path segment; anything else is used as-is.
    """

    text = (scanned or "").strip()
    parsed = urlparse(text)
    if parsed.scheme and parsed.netloc:
        segments = [segment for segment in parsed.path.split("/") if segment]
        return unquote(segments[-1]) if segments else ""
    return text


def is_valid_code_token(token: str) -> bool:
    return bool(CODE_TOKEN_PATTERN.match(token or ""))


def categorize_failure(error: AttendanceApiError) -> VerificationCategory:
    status = error.status_code
    if status is None or status == 401 or not 400 <= status < 500:
        return VerificationCategory.GENERIC

    code = (error.error_code or "").strip().lower()
    if code in _ERROR_CODES:
        return _ERROR_CODES[code]

    message = (error.message or "").lower()
    for keywords, category in _MESSAGE_KEYWORDS:
        if any(keyword in message for keyword in keywords):
            return category

    return _STATUS_CODES.get(status, VerificationCategory.GENERIC)


class VerificationSubmitter:
    """Turn a scanned QR payload into a verification outcome."""

    def __init__(
        self,
        api: AttendanceApiClient,
        geolocation: GeolocationProvider,
        fingerprint: FingerprintProvider,
        *,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._api = api
        self._geolocation = geolocation
        self._fingerprint = fingerprint
        self._now = now

    def submit(self, scanned: str, *, location: Optional[Coordinates] = None) -> VerificationOutcome:
        token = extract_code_token(scanned)
        if not is_valid_code_token(token):
            logger.info("Rejected scan with unexpected payload shape")
            return VerificationOutcome.of(VerificationCategory.INVALID_CODE_FORMAT)

        if location is None:
            try:
                location = self._geolocation.get_location()
            except GeolocationError as exc:
                logger.info("Location unavailable for verification: %s", exc)
                return VerificationOutcome.of(
                    VerificationCategory.LOCATION_REQUIRED,
                    f"{exc} Your location is required to record attendance.",
                )

        attempt = VerificationAttempt(
            code_token=token,
            location=location,
            fingerprint=self._fingerprint.get_fingerprint(),
            submitted_at=self._now(),
        )

        try:
            message = self._api.verify_scan(attempt.code_token, attempt.location, attempt.fingerprint)
        except AttendanceApiError as exc:
            category = categorize_failure(exc)
            logger.info("Verification of %s failed (%s): %s", token, category.value, exc)
            server_message = exc.message if exc.status_code is not None else None
            return VerificationOutcome.of(category, self._compose(category, server_message), attempt)

        logger.info("Attendance recorded for code %s", token)
        return VerificationOutcome.of(VerificationCategory.SUCCESS, message, attempt)

    @staticmethod
    def _compose(category: VerificationCategory, server_message: str | None) -> str:
        guidance = VerificationOutcome.of(category).message
        text = (server_message or "").strip()
        if not text or text.lower() in guidance.lower():
            return guidance
        if not text.endswith((".", "!", "?")):
            text += "."
        return f"{text} {guidance}"
