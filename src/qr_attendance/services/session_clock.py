from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from qr_attendance.utils.time import format_countdown, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

TICK_INTERVAL_SECONDS = 1.0
EXPIRED_TEXT = "Expired"
INVALID_TEXT = "Invalid date"


@dataclass(frozen=True, slots=True)
class ClockReading:
    text: str
    expired: bool
    invalid: bool = False
    remaining_seconds: int = 0


def read_clock(expires_at: datetime | str | None, *, now: datetime | None = None) -> ClockReading:
    try:
        deadline = parse_timestamp(expires_at)  # type: ignore[arg-type]
    except ValueError:
        return ClockReading(INVALID_TEXT, expired=True, invalid=True)

    reference = parse_timestamp(now) if now is not None else utc_now()
    remaining = deadline - reference
    if remaining.total_seconds() <= 0:
        return ClockReading(EXPIRED_TEXT, expired=True)

    return ClockReading(
        format_countdown(remaining),
        expired=False,
        remaining_seconds=int(remaining.total_seconds()),
    )


class SessionClock:
    """Tick a countdown for one session until it expires."""

    def __init__(
        self,
        expires_at: datetime | str | None,
        *,
        interval: float = TICK_INTERVAL_SECONDS,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._expires_at = expires_at
        self._interval = interval
        self._now = now
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._running = False

    def reading(self) -> ClockReading:
        return read_clock(self._expires_at, now=self._now())

    def start(self, on_tick: Callable[[ClockReading], None]) -> ClockReading:
        """Emit a reading now and then every interval on a background thread.

        Nothing is started when the first reading is already expired.
        """

        first = self.reading()
        on_tick(first)
        if first.expired:
            return first

        with self._lock:
            if self._running:
                return first
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run_loop, args=(on_tick,), daemon=True)
            self._running = True
            self._thread.start()
        return first

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._stop_event.set()

        thread = self._thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=1.5)
        self._thread = None

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _run_loop(self, on_tick: Callable[[ClockReading], None]) -> None:
        try:
            while not self._stop_event.wait(self._interval):
                reading = self.reading()
                try:
                    on_tick(reading)
                except Exception:  # pragma: no cover - keep ticking past observer faults
                    logger.exception("Session clock observer failed")
                if reading.expired:
                    break
        finally:
            with self._lock:
                self._running = False
