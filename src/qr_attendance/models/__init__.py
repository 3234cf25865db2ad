from .attendance import (
    ATTENDANCE_STATUSES,
    CATEGORY_MESSAGES,
    AttendanceSession,
    Coordinates,
    Geofence,
    LocationSource,
    SectionRef,
    SessionState,
    VerificationAttempt,
    VerificationCategory,
    VerificationOutcome,
)

__all__ = [
    "ATTENDANCE_STATUSES",
    "CATEGORY_MESSAGES",
    "AttendanceSession",
    "Coordinates",
    "Geofence",
    "LocationSource",
    "SectionRef",
    "SessionState",
    "VerificationAttempt",
    "VerificationCategory",
    "VerificationOutcome",
]
