"""String escaping used by the legacy ``|``-delimited line format."""

from __future__ import annotations

# Applied in this order, each as a whole-string replacement. Historical capture
# files were written against this exact sequence, so a sequence such as ``\\p``
# unescapes to ``\|`` rather than ``\p``.
_UNESCAPE_SEQUENCE = (
    ("\\p", "|"),
    ("\\n", "\n"),
    ("\\r", "\r"),
    ("\\\\", "\\"),
)

_ESCAPE_SEQUENCE = (
    ("\\", "\\\\"),
    ("|", "\\p"),
    ("\n", "\\n"),
    ("\r", "\\r"),
)


def unescape_field(value: str) -> str:
    """Restore a legacy string field to its original text."""
    for encoded, decoded in _UNESCAPE_SEQUENCE:
        value = value.replace(encoded, decoded)
    return value


def escape_field(value: str) -> str:
    """Escape text so it can be embedded as one legacy field."""
    for decoded, encoded in _ESCAPE_SEQUENCE:
        value = value.replace(decoded, encoded)
    return value


__all__ = ["escape_field", "unescape_field"]
