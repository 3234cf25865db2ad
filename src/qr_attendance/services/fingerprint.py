from __future__ import annotations

import hashlib
import logging
import platform
import sys
import time
import uuid
from typing import Callable, Iterable, Protocol

logger = logging.getLogger(__name__)

FALLBACK_PREFIX = "fallback-"


class FingerprintProvider(Protocol):
    def get_fingerprint(self) -> str:
        ...


def platform_signals() -> list[str]:
    return [
        platform.system(),
        platform.release(),
        platform.machine(),
        platform.node(),
        platform.python_implementation(),
        sys.platform,
        f"{uuid.getnode():012x}",
    ]


class DeviceFingerprint:
    """Weak, best-effort device identifier.

    Not a security boundary: the attendance service only uses it as a
    secondary signal next to location and enrollment. The same machine
    normally yields the same value, but this is not guaranteed.
    """

    def __init__(self, signals: Callable[[], Iterable[str]] = platform_signals) -> None:
        self._signals = signals

    def get_fingerprint(self) -> str:
        try:
            parts = [str(part) for part in self._signals()]
            digest = hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
            return digest[:32]
        except Exception as exc:  # noqa: BLE001 - fingerprinting must never block verification
            logger.debug("Fingerprint signals unavailable: %s", exc)
            return f"{FALLBACK_PREFIX}{int(time.time() * 1000)}"
