"""Telemetry event schema and wire-format decoding."""

from telemetry.decoder import decode, sniff_kind
from telemetry.errors import DecodeError, TelemetryError
from telemetry.legacy import encode_legacy
from telemetry.schema import Event, EventKind, PlayerRef

__all__ = [
    "DecodeError",
    "Event",
    "EventKind",
    "PlayerRef",
    "TelemetryError",
    "decode",
    "encode_legacy",
    "sniff_kind",
]
