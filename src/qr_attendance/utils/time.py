from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: datetime | str) -> datetime:
    """Return ``value`` as an aware UTC datetime.

    Naive values are assumed to be UTC. Raises ``ValueError`` for anything
    that cannot be read as an ISO-8601 timestamp.
    """

    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str) and value.strip():
        candidate = value.strip().replace(" ", "T", 1)
        if candidate.endswith(("Z", "z")):
            candidate = candidate[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(candidate)
        except ValueError:
            moment = None
            for fmt in ("%Y-%m-%dT%H:%M:%S.%f%z", "%Y-%m-%dT%H:%M:%S%z"):
                try:
                    moment = datetime.strptime(candidate, fmt)
                    break
                except ValueError:
                    continue
            if moment is None:
                raise ValueError(f"Unsupported timestamp value: {value!r}")
    else:
        raise ValueError(f"Unsupported timestamp value: {value!r}")

    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def is_expired(expires_at: datetime | str | None, *, now: datetime | None = None) -> bool:
    """True at and after ``expires_at``, and for anything unparsable."""

    try:
        deadline = parse_timestamp(expires_at)  # type: ignore[arg-type]
    except ValueError:
        return True
    reference = parse_timestamp(now) if now is not None else utc_now()
    return reference >= deadline


def format_countdown(remaining: timedelta) -> str:
    total_seconds = max(int(remaining.total_seconds()), 0)
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes}m {seconds:02d}s remaining"
