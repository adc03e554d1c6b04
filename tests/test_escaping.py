"""Unit tests for legacy field escaping."""

from __future__ import annotations

import pytest

from telemetry.escaping import escape_field, unescape_field


@pytest.mark.parametrize(
    ("raw", "escaped"),
    [
        ("plain", "plain"),
        ("pipe|name", "pipe\\pname"),
        ("two\nlines", "two\\nlines"),
        ("carriage\rreturn", "carriage\\rreturn"),
        ("back\\slash", "back\\\\slash"),
    ],
)
def test_escape_field_encodes_reserved_characters(raw: str, escaped: str) -> None:
    assert escape_field(raw) == escaped
    assert unescape_field(escaped) == raw


def test_escape_round_trip_for_names_with_reserved_characters() -> None:
    names = [
        "[UDL] Soldier|Main",
        "multi\nline\r\nname",
        "C:\\Games\\tf2",
        "|||",
        "trailing\\",
        "",
    ]
    for name in names:
        assert unescape_field(escape_field(name)) == name


def test_unescape_applies_replacements_in_fixed_order() -> None:
    # "\\p" becomes "\|": the pipe substitution runs before backslash restoration.
    assert unescape_field("\\\\p") == "\\|"
    assert unescape_field("\\\\n") == "\\\n"


def test_unescape_leaves_unknown_sequences_untouched() -> None:
    assert unescape_field("a\\tb") == "a\\tb"
