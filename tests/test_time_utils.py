from datetime import datetime, timedelta, timezone

import pytest

from qr_attendance.utils import format_countdown, is_expired, parse_timestamp

NOW = datetime(2025, 10, 2, 12, 0, 0, tzinfo=timezone.utc)


def test_parse_timestamp_accepts_javascript_iso_strings():
    parsed = parse_timestamp("2025-10-02T12:05:00.000Z")
    assert parsed == NOW + timedelta(minutes=5)
    assert parsed.tzinfo is not None


def test_parse_timestamp_treats_naive_values_as_utc():
    assert parse_timestamp("2025-10-02 12:00:00") == NOW
    assert parse_timestamp(datetime(2025, 10, 2, 12, 0, 0)) == NOW


@pytest.mark.parametrize("value", ["", "tomorrow", None, 42])
def test_parse_timestamp_rejects_garbage(value):
    with pytest.raises(ValueError):
        parse_timestamp(value)


def test_is_expired_is_false_strictly_before_and_true_at_expiry():
    expires_at = "2025-10-02T12:05:00Z"
    assert is_expired(expires_at, now=NOW) is False
    assert is_expired(expires_at, now=NOW + timedelta(minutes=5) - timedelta(microseconds=1)) is False
    assert is_expired(expires_at, now=NOW + timedelta(minutes=5)) is True
    assert is_expired(expires_at, now=NOW + timedelta(hours=1)) is True


@pytest.mark.parametrize("value", ["garbage", "", None])
def test_is_expired_fails_safe_for_unparsable_values(value):
    assert is_expired(value, now=NOW) is True


def test_format_countdown():
    assert format_countdown(timedelta(minutes=4, seconds=5)) == "4m 05s remaining"
    assert format_countdown(timedelta(hours=1, minutes=2, seconds=30)) == "62m 30s remaining"
    assert format_countdown(timedelta(seconds=-3)) == "0m 00s remaining"

