from __future__ import annotations

import base64
import uuid
from datetime import datetime, timedelta, timezone
from io import BytesIO

import pytest
from PIL import Image

from qr_attendance.config import LocalStateStore
from qr_attendance.models import AttendanceSession, Coordinates, Geofence, SectionRef
from qr_attendance.services.api_client import AttendanceApiError
from qr_attendance.utils.geo import distance_meters

METERS_PER_DEGREE_LATITUDE = 111_194.93


def offset_north(origin: Coordinates, meters: float) -> Coordinates:
    return Coordinates(origin.latitude + meters / METERS_PER_DEGREE_LATITUDE, origin.longitude)


def png_data_url(size: tuple[int, int] = (8, 8)) -> str:
    buffer = BytesIO()
    Image.new("RGB", size, "white").save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2025, 10, 2, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current = self.current + timedelta(seconds=seconds)


class FakeGeolocation:
    def __init__(self, coordinates: Coordinates | None = None, error: Exception | None = None) -> None:
        self.coordinates = coordinates
        self.error = error
        self.calls = 0

    def get_location(self) -> Coordinates:
        self.calls += 1
        if self.error is not None:
            raise self.error
        assert self.coordinates is not None
        return self.coordinates


class FakeFingerprint:
    def __init__(self, value: str = "device-fingerprint") -> None:
        self.value = value
        self.calls = 0

    def get_fingerprint(self) -> str:
        self.calls += 1
        return self.value


class FakeAttendanceApi:
    """In-memory stand-in for the attendance service, including its geofence and dedup checks."""

    def __init__(self, clock: FakeClock, *, ttl_seconds: int = 300, student_id: str = "student-1") -> None:
        self.clock = clock
        self.ttl_seconds = ttl_seconds
        self.student_id = student_id
        self.enrolled = True
        self.sessions: dict[str, AttendanceSession] = {}
        self.recorded: set[tuple[str, str]] = set()
        self.issue_calls: list[tuple[SectionRef, int, Geofence]] = []
        self.close_calls: list[tuple[str, int]] = []
        self.verify_calls: list[tuple[str, Coordinates, str]] = []
        self.manual_calls: list[dict] = []
        self.issue_error: AttendanceApiError | None = None
        self.close_error: AttendanceApiError | None = None
        self.fixed_code_id: str | None = None
        self.expires_at_override: str | None = None

    def issue_session(self, section: SectionRef, day_number: int, location: Geofence):
        self.issue_calls.append((section, day_number, location))
        if self.issue_error is not None:
            raise self.issue_error

        code_id = self.fixed_code_id or str(uuid.uuid4())
        expires_at = self.expires_at_override or (
            (self.clock() + timedelta(seconds=self.ttl_seconds)).isoformat().replace("+00:00", "Z")
        )
        session = AttendanceSession.from_response(
            {"codeId": code_id, "expiresAt": expires_at, "qrImage": png_data_url()},
            section=section,
            day_number=day_number,
            location=location,
            received_at=self.clock(),
        )
        self.sessions[code_id] = session
        return session, "QR Code generated successfully!"

    def close_session(self, section_id: str, day_number: int) -> str:
        self.close_calls.append((section_id, day_number))
        if self.close_error is not None:
            raise self.close_error
        return "Attendance closed successfully."

    def verify_scan(self, code_token: str, location: Coordinates, fingerprint: str) -> str:
        self.verify_calls.append((code_token, location, fingerprint))
        session = self.sessions.get(code_token)
        if session is None:
            raise AttendanceApiError("QR code not found", status_code=404)
        if self.clock() >= session.expires_at_datetime:
            raise AttendanceApiError("QR code has expired", status_code=410)
        if not self.enrolled:
            raise AttendanceApiError("You are not enrolled in this section", status_code=403)

        distance = distance_meters(
            location.latitude, location.longitude, session.location.latitude, session.location.longitude
        )
        if distance > session.location.radius_meters:
            raise AttendanceApiError(
                f"You are too far from the class location ({distance:.0f}m)", status_code=400
            )

        key = (code_token, self.student_id)
        if key in self.recorded:
            raise AttendanceApiError("Attendance already recorded", status_code=409)
        self.recorded.add(key)
        return "Attendance recorded successfully"

    def mark_manual_attendance(self, *, student_id: str, section: SectionRef, day_number: int, status: str = "present"):
        self.manual_calls.append(
            {"student_id": student_id, "section": section, "day_number": day_number, "status": status}
        )
        return f"Attendance marked as {status} for the student"


CAMPUS = Coordinates(61.0650, 28.0940)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def api(clock: FakeClock) -> FakeAttendanceApi:
    return FakeAttendanceApi(clock)


@pytest.fixture
def store(tmp_path) -> LocalStateStore:
    return LocalStateStore(tmp_path / "state" / "local_state.json")


@pytest.fixture
def section() -> SectionRef:
    return SectionRef(class_id="C1", section_id="S1", section_number=2)
