from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parents[3]
ENV_PATH = BASE_DIR / ".env"
load_dotenv(ENV_PATH)

DOCUMENTS_PATH = Path(os.path.expanduser("~")) / "Documents"
APP_NAME = os.getenv("APP_NAME", "QR Attendance")
APP_DATA_DIR = Path(os.getenv("APP_DATA_DIR", str(DOCUMENTS_PATH / APP_NAME))).expanduser()


def _optional_float(name: str) -> float | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return float(raw)


@dataclass(frozen=True)
class Settings:
    app_name: str = APP_NAME
    api_base_url: str = os.getenv("ATTENDANCE_API_URL", "http://localhost:4000")
    api_token: str | None = os.getenv("ATTENDANCE_API_TOKEN") or None
    state_path: Path = Path(
        os.getenv("LOCAL_STATE_PATH", str(APP_DATA_DIR / "local_state.json"))
    ).expanduser()
    geofence_radius_meters: float = float(os.getenv("GEOFENCE_RADIUS_METERS", "500"))
    geolocation_timeout_seconds: float = float(os.getenv("GEOLOCATION_TIMEOUT_SECONDS", "10"))
    request_timeout_seconds: float = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "15"))
    location_lookup_url: str | None = os.getenv("LOCATION_LOOKUP_URL") or None
    device_latitude: float | None = _optional_float("DEVICE_LATITUDE")
    device_longitude: float | None = _optional_float("DEVICE_LONGITUDE")
    qr_camera_index: int = int(os.getenv("QR_CAMERA_INDEX", "0"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()
