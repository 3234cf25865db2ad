from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional

from qr_attendance.utils.images import decode_data_url
from qr_attendance.utils.time import parse_timestamp, utc_now

ATTENDANCE_STATUSES: tuple[str, ...] = ("present", "late", "absent")


class SessionState(str, Enum):
    IDLE = "idle"
    REQUESTING_LOCATION = "requesting-location"
    ISSUING = "issuing"
    ACTIVE = "active"
    EXPIRED = "expired"
    CLOSED = "closed"


class LocationSource(str, Enum):
    MANUAL_INPUT = "manual-input"
    STORED = "stored"
    AUTOMATIC = "automatic"


class VerificationCategory(str, Enum):
    SUCCESS = "success"
    INVALID_CODE_FORMAT = "invalid-code-format"
    LOCATION_REQUIRED = "location-required"
    EXPIRED = "expired"
    OUT_OF_RANGE = "out-of-range"
    NOT_ENROLLED = "not-enrolled"
    ALREADY_RECORDED = "already-recorded"
    GENERIC = "generic"


CATEGORY_MESSAGES: dict[VerificationCategory, str] = {
    VerificationCategory.SUCCESS: "Attendance recorded.",
    VerificationCategory.INVALID_CODE_FORMAT: "This is not an attendance QR code. Scan the code shown by your instructor.",
    VerificationCategory.LOCATION_REQUIRED: "Your location is required to record attendance. Enable location access and scan again.",
    VerificationCategory.EXPIRED: "This attendance code has expired. Ask your instructor to generate a new one; scanning it again will not help.",
    VerificationCategory.OUT_OF_RANGE: "You are outside the allowed area for this class. Move closer and scan again.",
    VerificationCategory.NOT_ENROLLED: "You are not enrolled in this section. Contact your instructor.",
    VerificationCategory.ALREADY_RECORDED: "Your attendance for this session is already recorded. No need to scan again.",
    VerificationCategory.GENERIC: "Attendance could not be recorded. Check your connection and try again.",
}

# Categories a student can fix by scanning the same code again.
RETRYABLE_CATEGORIES = frozenset(
    {
        VerificationCategory.INVALID_CODE_FORMAT,
        VerificationCategory.LOCATION_REQUIRED,
        VerificationCategory.OUT_OF_RANGE,
        VerificationCategory.GENERIC,
    }
)


@dataclass(frozen=True, slots=True)
class Coordinates:
    latitude: float
    longitude: float

    def to_payload(self) -> dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}


@dataclass(frozen=True, slots=True)
class Geofence:
    latitude: float
    longitude: float
    radius_meters: float

    @classmethod
    def around(cls, center: Coordinates, radius_meters: float) -> "Geofence":
        return cls(center.latitude, center.longitude, radius_meters)

    @property
    def center(self) -> Coordinates:
        return Coordinates(self.latitude, self.longitude)

    def to_payload(self) -> dict[str, float]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "radius": self.radius_meters,
        }


@dataclass(frozen=True, slots=True)
class SectionRef:
    class_id: str
    section_id: str
    section_number: int

    def __post_init__(self) -> None:
        if not self.class_id or not self.section_id:
            raise ValueError("Section or Class data is missing.")


@dataclass(frozen=True, slots=True)
class AttendanceSession:
    code_id: str
    class_id: str
    section_id: str
    section_number: int
    day_number: int
    location: Geofence
    issued_at: datetime
    expires_at: str
    qr_image: str

    @classmethod
    def from_response(
        cls,
        data: Mapping[str, Any],
        *,
        section: SectionRef,
        day_number: int,
        location: Geofence,
        received_at: datetime | None = None,
    ) -> "AttendanceSession":
        issued_raw = data.get("issuedAt")
        try:
            issued_at = parse_timestamp(issued_raw) if issued_raw else (received_at or utc_now())
        except ValueError:
            issued_at = received_at or utc_now()

        return cls(
            code_id=str(data["codeId"]),
            class_id=section.class_id,
            section_id=section.section_id,
            section_number=section.section_number,
            day_number=day_number,
            location=location,
            issued_at=issued_at,
            expires_at=str(data["expiresAt"]),
            qr_image=str(data["qrImage"]),
        )

    @property
    def expires_at_datetime(self) -> Optional[datetime]:
        try:
            return parse_timestamp(self.expires_at)
        except ValueError:
            return None

    def qr_png_bytes(self) -> bytes:
        return decode_data_url(self.qr_image)


@dataclass(frozen=True, slots=True)
class VerificationAttempt:
    code_token: str
    location: Coordinates
    fingerprint: str
    submitted_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True, slots=True)
class VerificationOutcome:
    category: VerificationCategory
    message: str
    attempt: Optional[VerificationAttempt] = None

    @classmethod
    def of(
        cls,
        category: VerificationCategory,
        message: str | None = None,
        attempt: VerificationAttempt | None = None,
    ) -> "VerificationOutcome":
        return cls(category, message or CATEGORY_MESSAGES[category], attempt)

    @property
    def succeeded(self) -> bool:
        return self.category is VerificationCategory.SUCCESS

    @property
    def can_retry(self) -> bool:
        return self.category in RETRYABLE_CATEGORIES
