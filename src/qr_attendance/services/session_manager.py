from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterator, Optional

from qr_attendance.config.local_state_store import LocalStateStore
from qr_attendance.models import (
    AttendanceSession,
    Coordinates,
    Geofence,
    LocationSource,
    SectionRef,
    SessionState,
)
from qr_attendance.services.api_client import AttendanceApiClient, AttendanceApiError
from qr_attendance.services.geolocation import GeolocationError, GeolocationProvider
from qr_attendance.services.session_clock import ClockReading, SessionClock, read_clock
from qr_attendance.utils.geo import parse_coordinates
from qr_attendance.utils.time import is_expired, utc_now

logger = logging.getLogger(__name__)

DEFAULT_RADIUS_METERS = 500.0

_IN_FLIGHT_STATES = frozenset({SessionState.REQUESTING_LOCATION, SessionState.ISSUING})


class SessionStateError(RuntimeError):
    """Raised when an operation is not valid in the current session state."""


class LocationRequiredError(RuntimeError):
    """Live location failed; the caller should ask for manual coordinates."""

    def __init__(self, cause: GeolocationError) -> None:
        super().__init__(f"{cause} Please enter location manually.")
        self.cause = cause


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    state: SessionState
    section: Optional[SectionRef]
    day_number: Optional[int]
    session: Optional[AttendanceSession]
    clock: Optional[ClockReading]
    location_source: Optional[LocationSource]
    busy: bool = False


SnapshotObserver = Callable[[SessionSnapshot], None]


class QrSessionManager:
    """Own the attendance code for one section at a time.

    States run ``IDLE -> REQUESTING_LOCATION -> ISSUING -> ACTIVE`` and end in
    ``EXPIRED`` (time based, no network) or ``CLOSED`` (instructor action,
    the only transition that advances the section's day number). An expired
    code can only be replaced through :meth:`regenerate`.
    """

    def __init__(
        self,
        api: AttendanceApiClient,
        store: LocalStateStore,
        geolocation: GeolocationProvider,
        *,
        radius_meters: float = DEFAULT_RADIUS_METERS,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        if radius_meters <= 0:
            raise ValueError("Geofence radius must be positive.")
        self._api = api
        self._store = store
        self._geolocation = geolocation
        self._radius_meters = float(radius_meters)
        self._now = now

        self._state = SessionState.IDLE
        self._section: SectionRef | None = None
        self._session: AttendanceSession | None = None
        self._location_source: LocationSource | None = None
        self._busy = False
        self._lock = threading.RLock()
        self._observers: list[SnapshotObserver] = []
        self._clock: SessionClock | None = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------
    @property
    def state(self) -> SessionState:
        self.poll()
        return self._state

    @property
    def session(self) -> AttendanceSession | None:
        return self._session

    @property
    def section(self) -> SectionRef | None:
        return self._section

    @property
    def radius_meters(self) -> float:
        return self._radius_meters

    @property
    def day_number(self) -> int | None:
        if self._section is None:
            return None
        return self._store.get_day_number(self._section.section_id)

    def is_expired(self) -> bool:
        if self._session is None:
            return False
        return is_expired(self._session.expires_at, now=self._now())

    def snapshot(self) -> SessionSnapshot:
        self.poll()
        return self._snapshot()

    def subscribe(self, observer: SnapshotObserver) -> Callable[[], None]:
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def poll(self) -> SessionState:
        """Apply the time-based ACTIVE -> EXPIRED transition."""

        with self._lock:
            if self._state is SessionState.ACTIVE and self.is_expired():
                logger.info("Attendance code %s expired", self._session.code_id if self._session else "?")
                self._transition(SessionState.EXPIRED)
            return self._state

    # ------------------------------------------------------------------
    # Instructor actions
    # ------------------------------------------------------------------
    def select_section(self, section: SectionRef) -> None:
        """Scope the manager to ``section`` without issuing a code."""

        with self._operation():
            if self._section != section:
                self._discard_session()
            self._section = section
            self._notify()

    def create_session(
        self,
        section: SectionRef,
        day_number: int | None = None,
        *,
        coordinates: Coordinates | None = None,
    ) -> AttendanceSession:
        """Issue a new attendance code for ``section``.

        ``coordinates`` are a manual entry and win over the stored manual
        location, which wins over a live lookup. Any previous code is
        discarded first.
        """

        with self._operation():
            stored_day = self._store.get_day_number(section.section_id)
            if day_number is None:
                day_number = stored_day
            elif day_number < stored_day:
                raise SessionStateError(
                    f"Day number cannot move backwards (current day is {stored_day})."
                )

            self._discard_session()
            self._section = section
            return self._issue(section, day_number, coordinates)

    def regenerate(self) -> AttendanceSession:
        """Replace an expired (or missing) code with a brand-new one."""

        with self._operation():
            if self._section is None:
                raise SessionStateError("No section selected. Create a session first.")
            if self._session is not None and not self.is_expired():
                raise SessionStateError("Session still active, close before regenerating.")

            previous = self._session
            section = self._section
            day_number = self._store.get_day_number(section.section_id)
            self._discard_session()

            session = self._issue(section, day_number, None)
            if previous is not None and session.code_id == previous.code_id:
                self._discard_session()
                raise AttendanceApiError("The service re-issued the expired code. Try again.")
            return session

    def close(self) -> str:
        """Close the active code and advance the section to its next day."""

        with self._operation():
            if self._session is None or self._section is None:
                raise SessionStateError("There is no active session to close.")
            if self._state is not SessionState.ACTIVE or self.is_expired():
                if self._state is SessionState.ACTIVE:
                    self._transition(SessionState.EXPIRED)
                raise SessionStateError("Session has expired. Generate a new QR code before closing.")

            section_id = self._section.section_id
            day_number = self._store.get_day_number(section_id)
            message = self._api.close_session(section_id, day_number)

            next_day = self._store.advance_day_number(section_id)
            logger.info("Closed attendance for section %s day %s; next day is %s", section_id, day_number, next_day)
            self._stop_clock()
            self._session = None
            self._location_source = None
            self._transition(SessionState.CLOSED)
            return message or "Attendance closed successfully."

    def mark_attendance(self, student_id: str, status: str = "present") -> str:
        """Record attendance by hand for the current section and day."""

        if self._section is None:
            raise SessionStateError("No section selected.")
        day_number = self._store.get_day_number(self._section.section_id)
        message = self._api.mark_manual_attendance(
            student_id=student_id,
            section=self._section,
            day_number=day_number,
            status=status,
        )
        return message or f"Attendance marked as {status} for the student."

    # ------------------------------------------------------------------
    # Manual location fallback
    # ------------------------------------------------------------------
    @property
    def manual_location(self) -> Coordinates | None:
        return self._store.get_manual_location()

    def set_manual_location(self, latitude: str | float, longitude: str | float) -> Coordinates:
        lat, lon = parse_coordinates(latitude, longitude)
        coordinates = Coordinates(lat, lon)
        self._store.set_manual_location(coordinates)
        return coordinates

    def clear_manual_location(self) -> None:
        self._store.clear_manual_location()

    # ------------------------------------------------------------------
    # Countdown
    # ------------------------------------------------------------------
    def start_clock(self, on_tick: Callable[[ClockReading], None], *, interval: float = 1.0) -> ClockReading:
        if self._session is None:
            raise SessionStateError("There is no session to count down.")
        self._stop_clock()

        def tick(reading: ClockReading) -> None:
            if reading.expired:
                self.poll()
            on_tick(reading)

        self._clock = SessionClock(self._session.expires_at, interval=interval, now=self._now)
        return self._clock.start(tick)

    def stop_clock(self) -> None:
        self._stop_clock()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @contextmanager
    def _operation(self) -> Iterator[None]:
        with self._lock:
            if self._busy or self._state in _IN_FLIGHT_STATES:
                raise SessionStateError("Another attendance operation is already in progress.")
            self.poll()
            self._set_busy(True)
        try:
            yield
        finally:
            self._set_busy(False)

    def _issue(
        self,
        section: SectionRef,
        day_number: int,
        coordinates: Coordinates | None,
    ) -> AttendanceSession:
        self._transition(SessionState.REQUESTING_LOCATION)
        try:
            location, source = self._resolve_location(coordinates)
        except Exception:
            self._transition(SessionState.IDLE)
            raise

        self._transition(SessionState.ISSUING)
        geofence = Geofence.around(location, self._radius_meters)
        try:
            session, _message = self._api.issue_session(section, day_number, geofence)
        except AttendanceApiError as exc:
            logger.warning("QR generation failed for section %s: %s", section.section_id, exc)
            self._transition(SessionState.IDLE)
            raise

        self._store.remember_day_number(section.section_id, day_number)
        if source in (LocationSource.MANUAL_INPUT, LocationSource.STORED):
            self._store.set_manual_location(location)

        self._session = session
        self._location_source = source
        logger.info(
            "Issued attendance code %s for section %s day %s (%s location)",
            session.code_id,
            section.section_id,
            day_number,
            source.value,
        )
        self._transition(SessionState.ACTIVE)
        self.poll()
        return session

    def _resolve_location(self, coordinates: Coordinates | None) -> tuple[Coordinates, LocationSource]:
        if coordinates is not None:
            lat, lon = parse_coordinates(coordinates.latitude, coordinates.longitude)
            return Coordinates(lat, lon), LocationSource.MANUAL_INPUT

        stored = self._store.get_manual_location()
        if stored is not None:
            return stored, LocationSource.STORED

        try:
            return self._geolocation.get_location(), LocationSource.AUTOMATIC
        except GeolocationError as exc:
            logger.info("Live location unavailable: %s", exc)
            raise LocationRequiredError(exc) from exc

    def _discard_session(self) -> None:
        self._stop_clock()
        self._session = None
        self._location_source = None
        if self._state is not SessionState.IDLE:
            self._transition(SessionState.IDLE)

    def _stop_clock(self) -> None:
        if self._clock is not None:
            self._clock.stop()
            self._clock = None

    def _set_busy(self, busy: bool) -> None:
        self._busy = busy
        self._notify()

    def _transition(self, state: SessionState) -> None:
        if state is self._state:
            return
        logger.debug("Session state %s -> %s", self._state.value, state.value)
        self._state = state
        self._notify()

    def _snapshot(self) -> SessionSnapshot:
        day_number = (
            self._session.day_number
            if self._session is not None
            else (self._store.get_day_number(self._section.section_id) if self._section else None)
        )
        clock = read_clock(self._session.expires_at, now=self._now()) if self._session else None
        return SessionSnapshot(
            state=self._state,
            section=self._section,
            day_number=day_number,
            session=self._session,
            clock=clock,
            location_source=self._location_source,
            busy=self._busy,
        )

    def _notify(self) -> None:
        if not self._observers:
            return
        snapshot = self._snapshot()
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception:  # pragma: no cover - observers must not break transitions
                logger.exception("Session observer failed")
