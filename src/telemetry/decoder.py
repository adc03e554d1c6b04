"""Single decode entry point over both telemetry wire formats."""

from __future__ import annotations

from telemetry.errors import DecodeError
from telemetry.legacy import decode_legacy, sniff_legacy_tag
from telemetry.schema import Event, EventKind
from telemetry.structured import decode_structured, sniff_structured_type

COMMENT_PREFIX = "#"
STRUCTURED_PREFIX = "{"


def _to_text(raw: bytes | str) -> str:
    if isinstance(raw, bytes):
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError(raw.decode("utf-8", errors="replace"), f"invalid UTF-8: {exc}") from None
    return raw


def is_structured(line: str) -> bool:
    return line.startswith(STRUCTURED_PREFIX)


def decode(raw: bytes | str) -> Event | None:
    """Decode one telemetry line into an event.

    Blank lines, ``#`` comments and well-formed lines of a kind this build does
    not know are skipped and return ``None``. Anything else that cannot be
    decoded raises ``DecodeError``.
    """
    line = _to_text(raw).strip()
    if not line or line.startswith(COMMENT_PREFIX):
        return None
    if is_structured(line):
        return decode_structured(line)
    return decode_legacy(line)


def sniff_kind(raw: bytes | str) -> str | None:
    """Return the kind token of a line without decoding its fields.

    Only kinds this build knows about are returned; skips, unknown kinds and
    unreadable lines yield ``None``.
    """
    try:
        line = _to_text(raw).strip()
    except DecodeError:
        return None
    if not line or line.startswith(COMMENT_PREFIX):
        return None

    if is_structured(line):
        token = sniff_structured_type(line)
        kind = EventKind.from_token(token) if token is not None else None
    else:
        tag = sniff_legacy_tag(line)
        kind = EventKind.from_legacy_tag(tag) if tag is not None else None
    return None if kind is None else kind.value


__all__ = ["decode", "is_structured", "sniff_kind"]
