from __future__ import annotations

import logging
import queue
import threading
import time
import unicodedata
from contextlib import suppress
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

SCAN_INTERVAL_SECONDS = 0.08
DEDUP_INTERVAL_SECONDS = 0.8

MISSING_DEPENDENCIES_MESSAGE = (
    "Missing QR scanner dependencies. Install OpenCV (cv2) and zxing-cpp to enable scanning."
)
CAMERA_UNAVAILABLE_MESSAGE = (
    "Camera access denied or not available. Check that it is connected and not used by another app."
)


def decode_symbol_data(raw: bytes | str) -> str:
    if not raw:
        return ""

    if isinstance(raw, str):
        decoded = raw
    else:
        try:
            decoded = raw.decode("utf-8")
        except UnicodeDecodeError:
            decoded = raw.decode("utf-8", errors="ignore")

    return unicodedata.normalize("NFC", decoded).strip()


class QRScanner:
    """Read attendance QR payloads from a camera on a background thread."""

    def __init__(self, camera_index: int = 0) -> None:
        self._camera_index = camera_index
        self._running = False
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()

    def start(
        self,
        on_payload: Callable[[str], None],
        *,
        on_error: Optional[Callable[[str], None]] = None,
    ) -> bool:
        with self._lock:
            if self._running:
                return True

            try:
                import cv2  # type: ignore[import-not-found]
                import zxingcpp  # type: ignore[import-not-found]
            except ImportError:
                logger.warning(MISSING_DEPENDENCIES_MESSAGE)
                if on_error:
                    on_error(MISSING_DEPENDENCIES_MESSAGE)
                return False

            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run_loop,
                args=(on_payload, on_error, cv2, zxingcpp),
                daemon=True,
            )
            self._running = True
            self._thread.start()
            return True

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._stop_event.set()

        if self._thread and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=1.5)
        self._thread = None

    def scan_once(self, timeout: float | None = None) -> str | None:
        """Block until one payload is read, the camera fails, or ``timeout`` passes."""

        results: "queue.Queue[tuple[str, str]]" = queue.Queue()
        started = self.start(
            lambda payload: results.put(("payload", payload)),
            on_error=lambda message: results.put(("error", message)),
        )
        if not started:
            return None

        try:
            kind, value = results.get(timeout=timeout)
        except queue.Empty:
            return None
        finally:
            self.stop()

        if kind == "error":
            raise RuntimeError(value)
        return value

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _run_loop(
        self,
        on_payload: Callable[[str], None],
        on_error: Optional[Callable[[str], None]],
        cv2_module,
        zxing_module,
    ) -> None:
        capture = None
        last_payload: Optional[str] = None
        last_timestamp: float = 0.0

        try:
            capture = self._open_capture(cv2_module, on_error)
            if capture is None:
                return

            while not self._stop_event.is_set():
                ok, frame = capture.read()
                if not ok:
                    time.sleep(SCAN_INTERVAL_SECONDS)
                    continue

                now = time.time()
                for payload in self._decode_frame(zxing_module, frame):
                    if last_payload == payload and (now - last_timestamp) < DEDUP_INTERVAL_SECONDS:
                        continue

                    last_payload = payload
                    last_timestamp = now
                    try:
                        on_payload(payload)
                    except Exception:  # pragma: no cover - guard callback faults
                        logger.exception("QR payload handler failed")

                time.sleep(SCAN_INTERVAL_SECONDS)
        finally:
            if capture is not None:
                with suppress(Exception):
                    capture.release()
            self._stop_event.clear()
            with self._lock:
                self._running = False

    @staticmethod
    def _decode_frame(zxing_module, frame: Any) -> list[str]:
        try:
            decoded = zxing_module.read_barcodes(
                frame,
                formats=zxing_module.BarcodeFormat.QRCode,
                try_rotate=True,
                try_downscale=True,
            )
        except Exception as exc:  # noqa: BLE001 - a bad frame is skipped, not fatal
            logger.debug("Frame decode failed: %s", exc)
            return []

        payloads: list[str] = []
        for obj in decoded or []:
            if hasattr(obj, "valid") and not obj.valid:
                continue

            payload = decode_symbol_data(getattr(obj, "text", ""))
            if not payload:
                payload_bytes = getattr(obj, "bytes", b"") or b""
                if not isinstance(payload_bytes, (bytes, bytearray)):
                    payload_bytes = bytes(payload_bytes)
                payload = decode_symbol_data(bytes(payload_bytes))
            if payload:
                payloads.append(payload)
        return payloads

    def _open_capture(self, cv2_module, on_error: Optional[Callable[[str], None]]):
        backend_preferences = [getattr(cv2_module, "CAP_DSHOW", None), getattr(cv2_module, "CAP_ANY", None)]

        for backend in backend_preferences:
            if backend is None:
                capture = cv2_module.VideoCapture(self._camera_index)
            else:
                capture = cv2_module.VideoCapture(self._camera_index, backend)

            if capture.isOpened():
                return capture

            capture.release()

        logger.warning("Camera %s could not be opened", self._camera_index)
        if on_error:
            on_error(CAMERA_UNAVAILABLE_MESSAGE)

        return None
