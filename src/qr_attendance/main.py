from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable, Sequence

from qr_attendance.config import LocalStateStore
from qr_attendance.config.settings import Settings, settings as default_settings
from qr_attendance.models import ATTENDANCE_STATUSES, Coordinates, SectionRef, SessionState
from qr_attendance.services import (
    AttendanceApiClient,
    AttendanceApiError,
    ClockReading,
    DeviceFingerprint,
    LocationRequiredError,
    QRScanner,
    QrSessionManager,
    SessionStateError,
    VerificationSubmitter,
    build_geolocation_provider,
)
from qr_attendance.utils import InvalidCoordinates, InvalidQrImage, parse_coordinates, save_qr_image

logger = logging.getLogger(__name__)

InputFunc = Callable[[str], str]


def build_session_manager(config: Settings) -> QrSessionManager:
    return QrSessionManager(
        AttendanceApiClient(config.api_base_url, config.api_token, timeout=config.request_timeout_seconds),
        LocalStateStore(config.state_path),
        build_geolocation_provider(config),
        radius_meters=config.geofence_radius_meters,
    )


def build_submitter(config: Settings) -> VerificationSubmitter:
    return VerificationSubmitter(
        AttendanceApiClient(config.api_base_url, config.api_token, timeout=config.request_timeout_seconds),
        build_geolocation_provider(config),
        DeviceFingerprint(),
    )


def _coordinates_from_args(args: argparse.Namespace) -> Coordinates | None:
    if args.lat is None and args.lon is None:
        return None
    lat, lon = parse_coordinates(args.lat, args.lon)
    return Coordinates(lat, lon)


def _section_from_args(args: argparse.Namespace) -> SectionRef:
    return SectionRef(args.class_id, args.section_id, args.section_number)


def _prompt_manual_location(error: LocationRequiredError, ask: InputFunc) -> Coordinates | None:
    print(error)
    raw = ask("Latitude, longitude (blank to cancel): ").strip()
    if not raw:
        return None
    lat_text, _, lon_text = raw.partition(",")
    lat, lon = parse_coordinates(lat_text.strip(), lon_text.strip())
    return Coordinates(lat, lon)


def _print_tick(reading: ClockReading) -> None:
    print(f"\r{reading.text:<24}", end="" if not reading.expired else "\n", flush=True)


def _show_session(manager: QrSessionManager, save_to: Path | None) -> None:
    session = manager.session
    if session is None:
        return
    print(
        f"Attendance code {session.code_id} for section {session.section_number} "
        f"day {session.day_number} (issued {session.issued_at:%Y-%m-%d %H:%M} UTC)"
    )
    if save_to is not None:
        try:
            path = save_qr_image(session.qr_image, save_to)
        except InvalidQrImage as exc:
            print(f"Could not save QR image: {exc}")
        else:
            print(f"QR image saved to {path}")
    manager.start_clock(_print_tick)


def _issue_with_fallback(action: Callable[[Coordinates | None], object], ask: InputFunc) -> bool:
    coordinates: Coordinates | None = None
    while True:
        try:
            action(coordinates)
            return True
        except LocationRequiredError as exc:
            try:
                coordinates = _prompt_manual_location(exc, ask)
            except InvalidCoordinates as invalid:
                print(invalid)
                return False
            if coordinates is None:
                return False


def run_issue(args: argparse.Namespace, config: Settings, ask: InputFunc = input) -> int:
    manager = build_session_manager(config)
    section = _section_from_args(args)
    save_to = Path(args.save_qr) if args.save_qr else None

    def create(coordinates: Coordinates | None) -> object:
        return manager.create_session(section, args.day, coordinates=coordinates or _coordinates_from_args(args))

    def regenerate(coordinates: Coordinates | None) -> object:
        if coordinates is not None:
            return manager.create_session(section, coordinates=coordinates)
        return manager.regenerate()

    try:
        if not _issue_with_fallback(create, ask):
            return 1
        _show_session(manager, save_to)

        while True:
            choice = ask("\n[c]lose attendance, [r]egenerate, [q]uit: ").strip().lower()
            if choice == "q":
                return 0
            if choice == "c":
                print(manager.close())
                print(f"Next day number for this section: {manager.day_number}")
                return 0
            if choice == "r":
                try:
                    regenerated = _issue_with_fallback(regenerate, ask)
                except SessionStateError as exc:
                    print(exc)
                    continue
                if not regenerated:
                    return 1
                _show_session(manager, save_to)
    except (SessionStateError, AttendanceApiError, InvalidCoordinates, ValueError) as exc:
        print(f"Error: {exc}")
        return 1
    finally:
        manager.stop_clock()
        if manager.state is SessionState.ACTIVE:
            print("Attendance code is still active until it expires.")


def run_verify(args: argparse.Namespace, config: Settings) -> int:
    submitter = build_submitter(config)
    try:
        location = _coordinates_from_args(args)
    except InvalidCoordinates as exc:
        print(f"Error: {exc}")
        return 1
    outcome = submitter.submit(args.payload, location=location)
    print(f"{outcome.category.value}: {outcome.message}")
    return 0 if outcome.succeeded else 1


def run_scan(args: argparse.Namespace, config: Settings) -> int:
    scanner = QRScanner(config.qr_camera_index)
    print("Point the camera at the attendance QR code...")
    try:
        payload = scanner.scan_once(timeout=args.timeout)
    except RuntimeError as exc:
        print(f"Error: {exc}")
        return 1
    if payload is None:
        print("No QR code detected.")
        return 1

    args.payload = payload
    return run_verify(args, config)


def run_location(args: argparse.Namespace, config: Settings) -> int:
    store = LocalStateStore(config.state_path)
    if args.location_command == "set":
        try:
            lat, lon = parse_coordinates(args.latitude, args.longitude)
        except InvalidCoordinates as exc:
            print(f"Error: {exc}")
            return 1
        store.set_manual_location(Coordinates(lat, lon))
        print(f"Stored manual location {lat}, {lon}.")
    elif args.location_command == "clear":
        store.clear_manual_location()
        print("Stored manual location cleared.")
    else:
        stored = store.get_manual_location()
        print("No stored manual location." if stored is None else f"{stored.latitude}, {stored.longitude}")
    return 0


def run_mark(args: argparse.Namespace, config: Settings) -> int:
    manager = build_session_manager(config)
    try:
        manager.select_section(_section_from_args(args))
        print(manager.mark_attendance(args.student_id, args.status))
    except (AttendanceApiError, SessionStateError, ValueError) as exc:
        print(f"Failed to mark attendance: {exc}")
        return 1
    return 0


def _add_section_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--class-id", required=True)
    parser.add_argument("--section-id", required=True)
    parser.add_argument("--section-number", required=True, type=int)


def _add_location_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--lat", type=float, help="Latitude to use instead of a live lookup")
    parser.add_argument("--lon", type=float, help="Longitude to use instead of a live lookup")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="qr-attendance", description="Location-bound QR attendance sessions.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    issue = subparsers.add_parser("issue", help="Generate an attendance QR code for a section")
    _add_section_arguments(issue)
    _add_location_arguments(issue)
    issue.add_argument("--day", type=int, help="Day number (defaults to the stored one)")
    issue.add_argument("--save-qr", help="Write the QR image to this PNG file")

    verify = subparsers.add_parser("verify", help="Submit a scanned QR payload")
    verify.add_argument("payload")
    _add_location_arguments(verify)

    scan = subparsers.add_parser("scan", help="Scan a QR code with the camera and submit it")
    scan.add_argument("--timeout", type=float, default=60.0)
    _add_location_arguments(scan)

    location = subparsers.add_parser("location", help="Manage the stored manual location")
    location_commands = location.add_subparsers(dest="location_command", required=True)
    location_commands.add_parser("show")
    location_set = location_commands.add_parser("set")
    location_set.add_argument("latitude")
    location_set.add_argument("longitude")
    location_commands.add_parser("clear")

    mark = subparsers.add_parser("mark", help="Record attendance manually for one student")
    _add_section_arguments(mark)
    mark.add_argument("student_id")
    mark.add_argument("--status", choices=ATTENDANCE_STATUSES, default="present")

    return parser


def main(argv: Sequence[str] | None = None, config: Settings | None = None) -> int:
    config = config or default_settings
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]",
    )

    args = build_parser().parse_args(argv)
    handlers = {
        "issue": run_issue,
        "verify": run_verify,
        "scan": run_scan,
        "location": run_location,
        "mark": run_mark,
    }
    return handlers[args.command](args, config)


if __name__ == "__main__":
    sys.exit(main())
