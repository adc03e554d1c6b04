"""Exceptions raised while turning telemetry lines into events.

All exceptions inherit from :class:`TelemetryError` so callers can catch
the whole family with a single ``except TelemetryError`` clause.
"""

from __future__ import annotations


class TelemetryError(Exception):
    """Base exception for telemetry ingestion errors."""


class DecodeError(TelemetryError):
    """Raised when a raw line cannot be decoded into an event."""

    def __init__(self, line: str, reason: str) -> None:
        super().__init__(f"decode error: {reason} (line: {line})")
        self.line = line
        self.reason = reason


__all__ = ["DecodeError", "TelemetryError"]
