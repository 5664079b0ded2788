"""Timestamp parsing for vendor log lines and API payloads."""
from __future__ import annotations

import re
from datetime import datetime

# Formats tried in order when parsing log timestamps
_TIMESTAMP_FORMATS: list[str] = [
    "%Y-%m-%d %H:%M:%S.%f %z",  # Serilog: 2024-01-15 10:30:45.123 -05:00
    "%Y-%m-%d %H:%M:%S %z",
    "%Y-%m-%d %H:%M:%S.%f",     # NLog: 2024-01-15 10:30:45.123
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
]

# .NET writes up to 7 fractional digits; strptime/fromisoformat take 6
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def parse_timestamp(raw: str) -> datetime | None:
    """Try each known format and return the first successful parse."""
    raw = _FRACTION_RE.sub(r"\1", raw.strip())
    for fmt in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(raw, fmt)
        except ValueError:
            continue
    return None


def parse_api_datetime(raw: str | None) -> datetime | None:
    """Parse an ISO-8601 date from a vendor REST payload.

    Accepts a trailing ``Z`` and more than six fractional digits.
    """
    if not raw:
        return None
    value = _FRACTION_RE.sub(r"\1", raw.strip())
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return parse_timestamp(value)
