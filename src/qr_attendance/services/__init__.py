from .api_client import AttendanceApiClient, AttendanceApiError
from .fingerprint import DeviceFingerprint, FingerprintProvider
from .geolocation import (
	FixedGeolocationProvider,
	GeolocationError,
	GeolocationProvider,
	GeolocationTimeout,
	GeolocationUnsupported,
	HttpGeolocationProvider,
	PermissionDenied,
	PositionUnavailable,
	UnsupportedGeolocationProvider,
	build_geolocation_provider,
)
from .qr_scanner import QRScanner
from .session_clock import ClockReading, SessionClock, read_clock
from .session_manager import LocationRequiredError, QrSessionManager, SessionSnapshot, SessionStateError
from .verification import VerificationSubmitter, categorize_failure, extract_code_token, is_valid_code_token

__all__ = [
	"AttendanceApiClient",
	"AttendanceApiError",
	"ClockReading",
	"DeviceFingerprint",
	"FingerprintProvider",
	"FixedGeolocationProvider",
	"GeolocationError",
	"GeolocationProvider",
	"GeolocationTimeout",
	"GeolocationUnsupported",
	"HttpGeolocationProvider",
	"LocationRequiredError",
	"PermissionDenied",
	"PositionUnavailable",
	"QRScanner",
	"QrSessionManager",
	"SessionClock",
	"SessionSnapshot",
	"SessionStateError",
	"UnsupportedGeolocationProvider",
	"VerificationSubmitter",
	"build_geolocation_provider",
	"categorize_failure",
	"extract_code_token",
	"is_valid_code_token",
	"read_clock",
]
