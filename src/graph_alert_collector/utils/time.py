from datetime import datetime, timezone

RFC3339_UTC = "%Y-%m-%dT%H:%M:%SZ"


def utc_now() -> datetime:
    """Get current UTC time truncated to whole seconds."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def utc_now_iso() -> str:
    """Get current UTC time in ISO format."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def format_filter_timestamp(value: datetime) -> str:
    """Format a timestamp for an OData filter: UTC, second precision, trailing Z."""
    return value.astimezone(timezone.utc).strftime(RFC3339_UTC)


def format_rfc3339(value: datetime) -> str:
    return format_filter_timestamp(value)


def parse_rfc3339(value: str) -> datetime:
    """Parse an RFC 3339 timestamp. Offsets are required."""
    text = str(value or "").strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        raise ValueError(f"timestamp has no UTC offset: {value!r}")
    return parsed
