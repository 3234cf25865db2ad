from __future__ import annotations

import logging
from typing import Any, Mapping, Optional
from urllib.parse import quote

import requests

from qr_attendance.models import (
    ATTENDANCE_STATUSES,
    AttendanceSession,
    Coordinates,
    Geofence,
    SectionRef,
)
from qr_attendance.utils.time import parse_timestamp, utc_now

logger = logging.getLogger(__name__)

GENERIC_NETWORK_MESSAGE = "Network error. Check your connection and try again."
MISSING_TOKEN_MESSAGE = "Authentication token not found. Please log in."


class AttendanceApiError(RuntimeError):
    """Raised when the attendance service rejects a request or cannot be reached."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload: Mapping[str, Any] = payload or {}

    @property
    def error_code(self) -> str | None:
        code = self.payload.get("code") or self.payload.get("error")
        return str(code) if code else None


class AttendanceApiClient:
    """Thin wrapper over the remote attendance REST service."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        *,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._session = session or requests.Session()

    def issue_session(
        self,
        section: SectionRef,
        day_number: int,
        location: Geofence,
    ) -> tuple[AttendanceSession, str | None]:
        payload = {
            "classId": section.class_id,
            "sectionId": section.section_id,
            "sectionNumber": section.section_number,
            "dayNumber": day_number,
            "location": location.to_payload(),
        }
        data = self._request("POST", "/api/qrcodes/generate", payload)

        if not (data.get("qrImage") and data.get("expiresAt") and data.get("codeId")):
            raise AttendanceApiError("QR Code data missing or invalid in API response.", payload=data)

        session = AttendanceSession.from_response(
            data,
            section=section,
            day_number=day_number,
            location=location,
            received_at=utc_now(),
        )

        expires = session.expires_at_datetime
        if expires is not None and expires <= parse_timestamp(session.issued_at):
            raise AttendanceApiError("Issued QR code expires before it becomes valid.", payload=data)

        return session, data.get("message")

    def close_session(self, section_id: str, day_number: int) -> str | None:
        data = self._request(
            "POST",
            "/api/qrcodes/close",
            {"sectionId": section_id, "dayNumber": day_number},
        )
        return data.get("message")

    def verify_scan(self, code_token: str, location: Coordinates, fingerprint: str) -> str | None:
        data = self._request(
            "POST",
            f"/api/qrcodes/verify/{quote(code_token, safe='')}",
            {"location": location.to_payload(), "fingerprint": fingerprint},
        )
        return data.get("message")

    def mark_manual_attendance(
        self,
        *,
        student_id: str,
        section: SectionRef,
        day_number: int,
        status: str = "present",
    ) -> str | None:
        if status not in ATTENDANCE_STATUSES:
            raise ValueError(f"Attendance status must be one of {', '.join(ATTENDANCE_STATUSES)}.")
        if not student_id:
            raise ValueError("Please select a student.")

        data = self._request(
            "PATCH",
            "/api/attendance/manual",
            {
                "studentId": student_id,
                "classId": section.class_id,
                "sectionId": section.section_id,
                "status": status,
                "dayNumber": day_number,
            },
        )
        return data.get("message")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _request(self, method: str, path: str, payload: Mapping[str, Any]) -> dict:
        if not self._token:
            raise AttendanceApiError(MISSING_TOKEN_MESSAGE)

        url = f"{self._base_url}{path}"
        try:
            response = self._session.request(
                method,
                url,
                json=dict(payload),
                headers={"Authorization": f"Bearer {self._token}"},
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise AttendanceApiError(GENERIC_NETWORK_MESSAGE) from exc

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {"data": data}

        if not response.ok:
            message = data.get("message") or f"Request failed with status {response.status_code}."
            logger.info("%s %s rejected (%s): %s", method, path, response.status_code, message)
            raise AttendanceApiError(message, status_code=response.status_code, payload=data)

        return data
