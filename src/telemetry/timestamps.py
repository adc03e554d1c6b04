"""Timestamp parsing for both wire formats."""

from __future__ import annotations

import re
from datetime import UTC, datetime

_BARE_LAYOUTS = (
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M:%S.%f",
)

# Plain ASCII numerals only: no digit separators, no nan or inf spellings.
INTEGER_TEXT = re.compile(r"[+-]?[0-9]+")
DECIMAL_TEXT = re.compile(r"[+-]?([0-9]+(\.[0-9]*)?|\.[0-9]+)([eE][+-]?[0-9]+)?")


def from_unix_seconds(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=UTC)


def parse_unix_text(text: str) -> datetime:
    """Parse a legacy ``timestamp`` field holding integer or decimal Unix seconds."""
    stripped = text.strip()
    if not stripped:
        raise ValueError("empty timestamp")
    if INTEGER_TEXT.fullmatch(stripped):
        return from_unix_seconds(int(stripped))
    if DECIMAL_TEXT.fullmatch(stripped):
        return from_unix_seconds(float(stripped))
    raise ValueError(f"not Unix seconds: {text!r}")


def parse_stamp(text: str) -> datetime:
    """Parse a structured ``timestamp`` attribute into an aware UTC datetime.

    Stamps carrying an explicit offset (``+02:00`` or ``Z``) are converted to
    UTC. Bare stamps without an offset are taken to already be UTC.
    """
    stripped = text.strip()
    if not stripped:
        raise ValueError("empty timestamp")

    for layout in _BARE_LAYOUTS:
        try:
            return datetime.strptime(stripped, layout).replace(tzinfo=UTC)
        except ValueError:
            continue

    candidate = stripped[:-1] + "+00:00" if stripped.endswith(("Z", "z")) else stripped
    parsed = datetime.fromisoformat(candidate)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


__all__ = [
    "DECIMAL_TEXT",
    "INTEGER_TEXT",
    "from_unix_seconds",
    "parse_stamp",
    "parse_unix_text",
]
