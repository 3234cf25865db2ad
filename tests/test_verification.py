import pytest

from conftest import CAMPUS, FakeFingerprint, FakeGeolocation, offset_north
from qr_attendance.models import SectionRef, VerificationCategory
from qr_attendance.services import (
    AttendanceApiError,
    GeolocationTimeout,
    QrSessionManager,
    VerificationSubmitter,
    categorize_failure,
    extract_code_token,
    is_valid_code_token,
)

TOKEN = "3f2b8a1c-1d2e-4f50-9a6b-7c8d9e0f1a2b"


@pytest.fixture
def issued(api, store, clock):
    manager = QrSessionManager(api, store, FakeGeolocation(CAMPUS), now=clock)
    return manager.create_session(SectionRef("C1", "S1", 1), day_number=3)


def make_submitter(api, clock, geolocation=None, fingerprint=None):
    return VerificationSubmitter(
        api,
        geolocation or FakeGeolocation(CAMPUS),
        fingerprint or FakeFingerprint(),
        now=clock,
    )


@pytest.mark.parametrize(
    "scanned, expected",
    [
        (f"https://attend.example.edu/attendance/scan/{TOKEN}", TOKEN),
        (f"https://attend.example.edu/attendance/scan/{TOKEN}/", TOKEN),
        (f"https://attend.example.edu/s/{TOKEN}?utm=qr", TOKEN),
        (f"  {TOKEN}\n", TOKEN),
        ("https://attend.example.edu/", ""),
        ("hello world", "hello world"),
    ],
)
def test_extract_code_token(scanned, expected):
    assert extract_code_token(scanned) == expected


def test_token_shape():
    assert is_valid_code_token(TOKEN)
    assert is_valid_code_token(TOKEN.upper())
    assert not is_valid_code_token("3f2b8a1c1d2e4f509a6b7c8d9e0f1a2b")
    assert not is_valid_code_token("")


def test_garbage_scan_makes_no_location_or_network_call(api, clock):
    geolocation = FakeGeolocation(CAMPUS)
    fingerprint = FakeFingerprint()
    submitter = make_submitter(api, clock, geolocation, fingerprint)

    outcome = submitter.submit("not a code at all")

    assert outcome.category is VerificationCategory.INVALID_CODE_FORMAT
    assert outcome.can_retry
    assert api.verify_calls == []
    assert geolocation.calls == 0
    assert fingerprint.calls == 0


def test_geofence_scenario_600m_out_of_range_50m_success(api, clock, issued):
    assert issued.location.radius_meters == 500
    submitter = make_submitter(api, clock)
    url = f"https://attend.example.edu/attendance/{issued.code_id}"

    far = submitter.submit(url, location=offset_north(CAMPUS, 600))
    near = submitter.submit(url, location=offset_north(CAMPUS, 50))

    assert far.category is VerificationCategory.OUT_OF_RANGE
    assert far.can_retry
    assert "too far" in far.message
    assert near.category is VerificationCategory.SUCCESS
    assert near.succeeded
    assert near.attempt.code_token == issued.code_id
    assert near.attempt.submitted_at == clock()


def test_second_submission_is_already_recorded(api, clock, issued):
    submitter = make_submitter(api, clock)

    first = submitter.submit(issued.code_id)
    second = submitter.submit(issued.code_id)

    assert first.category is VerificationCategory.SUCCESS
    assert second.category is VerificationCategory.ALREADY_RECORDED
    assert not second.can_retry
    assert "already" in second.message.lower()
    assert len(api.verify_calls) == 2


def test_expired_code_is_not_retryable(api, clock, issued):
    submitter = make_submitter(api, clock)
    clock.advance(api.ttl_seconds)

    outcome = submitter.submit(issued.code_id)

    assert outcome.category is VerificationCategory.EXPIRED
    assert not outcome.can_retry


def test_not_enrolled(api, clock, issued):
    api.enrolled = False
    outcome = make_submitter(api, clock).submit(issued.code_id)

    assert outcome.category is VerificationCategory.NOT_ENROLLED


def test_location_failure_halts_before_submission(api, clock, issued):
    geolocation = FakeGeolocation(error=GeolocationTimeout())
    submitter = make_submitter(api, clock, geolocation)

    outcome = submitter.submit(issued.code_id)

    assert outcome.category is VerificationCategory.LOCATION_REQUIRED
    assert "timed out" in outcome.message
    assert api.verify_calls == []


def test_fresh_location_is_resolved_per_attempt(api, clock, issued):
    geolocation = FakeGeolocation(CAMPUS)
    submitter = make_submitter(api, clock, geolocation, FakeFingerprint("fp-1"))

    submitter.submit(issued.code_id)

    assert geolocation.calls == 1
    token, location, fingerprint = api.verify_calls[0]
    assert (token, location, fingerprint) == (issued.code_id, CAMPUS, "fp-1")


def test_transport_failure_is_generic(clock):
    class DownApi:
        def verify_scan(self, *args):
            raise AttendanceApiError("Network error. Check your connection and try again.")

    outcome = make_submitter(DownApi(), clock).submit(TOKEN)

    assert outcome.category is VerificationCategory.GENERIC
    assert outcome.can_retry
    assert outcome.message.startswith("Attendance could not be recorded")


def test_server_fault_mentioning_already_stays_retryable(clock):
    class FaultyApi:
        def verify_scan(self, *args):
            raise AttendanceApiError("Connection already closed", status_code=500)

    outcome = make_submitter(FaultyApi(), clock).submit(TOKEN)

    assert outcome.category is VerificationCategory.GENERIC
    assert outcome.can_retry


@pytest.mark.parametrize(
    "error, expected",
    [
        (AttendanceApiError("x", status_code=400, payload={"code": "OUT_OF_RANGE"}), VerificationCategory.OUT_OF_RANGE),
        (AttendanceApiError("x", status_code=400, payload={"code": "already_recorded"}), VerificationCategory.ALREADY_RECORDED),
        (AttendanceApiError("QR code has expired", status_code=400), VerificationCategory.EXPIRED),
        (AttendanceApiError("Student is not enrolled", status_code=400), VerificationCategory.NOT_ENROLLED),
        (AttendanceApiError("Nope", status_code=409), VerificationCategory.ALREADY_RECORDED),
        (AttendanceApiError("Nope", status_code=410), VerificationCategory.EXPIRED),
        (AttendanceApiError("Nope", status_code=403), VerificationCategory.NOT_ENROLLED),
        (AttendanceApiError("Nope", status_code=500), VerificationCategory.GENERIC),
        (AttendanceApiError("Connection already closed", status_code=500), VerificationCategory.GENERIC),
        (AttendanceApiError("Upstream expired", status_code=503), VerificationCategory.GENERIC),
        (AttendanceApiError("jwt expired", status_code=401), VerificationCategory.GENERIC),
        (AttendanceApiError("x", status_code=502, payload={"code": "already_recorded"}), VerificationCategory.GENERIC),
        (AttendanceApiError("QR code has expired"), VerificationCategory.GENERIC),
    ],
)
def test_categorize_failure(error, expected):
    assert categorize_failure(error) is expected
