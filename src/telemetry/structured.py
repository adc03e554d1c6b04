"""Structured (JSON object) telemetry grammar.

Newer plugin builds emit one JSON object per line whose kind is named by an
``event_type`` attribute; every other field is named and player, weapon and
position data are nested objects.
"""

from __future__ import annotations

import json
import math
from collections.abc import Callable
from datetime import datetime
from typing import Any

from telemetry.errors import DecodeError
from telemetry.schema import (
    AirshotEvent,
    BaseEvent,
    ClassChangeEvent,
    DeflectEvent,
    Event,
    EventKind,
    GENERIC_KINDS,
    GenericEvent,
    HealedEvent,
    KillEvent,
    MatchEndEvent,
    MatchStartEvent,
    PlayerRef,
    Position,
    StunEvent,
    Weapon,
)
from telemetry.timestamps import from_unix_seconds, parse_stamp


class _Record:
    """Typed, path-aware access to one JSON object.

    ``text``, ``integer``, ``number`` and ``child`` raise when the key is
    missing; their ``optional_`` counterparts return ``None`` instead.
    """

    def __init__(self, line: str, kind: str, data: dict[str, Any], path: str = "") -> None:
        self.line = line
        self.kind = kind
        self.data = data
        self.path = path

    def _name(self, key: str) -> str:
        return f"{self.path}.{key}" if self.path else key

    def _fail(self, key: str, reason: str) -> DecodeError:
        return DecodeError(self.line, f"{self.kind} field {self._name(key)!r} {reason}")

    def _required(self, key: str) -> Any:
        value = self.data.get(key)
        if value is None:
            raise self._fail(key, "is required")
        return value

    def _text(self, key: str, value: Any) -> str:
        if not isinstance(value, str):
            raise self._fail(key, f"must be a string, got {type(value).__name__}")
        return value

    def _integer(self, key: str, value: Any) -> int:
        if isinstance(value, bool):
            raise self._fail(key, "must be an integer, got bool")
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if not isinstance(value, int):
            raise self._fail(key, f"must be an integer, got {value!r}")
        return value

    def _number(self, key: str, value: Any) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise self._fail(key, f"must be a number, got {value!r}")
        try:
            number = float(value)
        except OverflowError:
            raise self._fail(key, "is out of range") from None
        # json.loads accepts NaN and Infinity literals.
        if not math.isfinite(number):
            raise self._fail(key, f"must be finite, got {value!r}")
        return number

    def _child(self, key: str, value: Any) -> _Record:
        if not isinstance(value, dict):
            raise self._fail(key, f"must be an object, got {type(value).__name__}")
        return _Record(self.line, self.kind, value, self._name(key))

    def text(self, key: str) -> str:
        return self._text(key, self._required(key))

    def optional_text(self, key: str) -> str | None:
        value = self.data.get(key)
        return None if value is None else self._text(key, value)

    def integer(self, key: str) -> int:
        return self._integer(key, self._required(key))

    def optional_integer(self, key: str) -> int | None:
        value = self.data.get(key)
        return None if value is None else self._integer(key, value)

    def number(self, key: str) -> float:
        return self._number(key, self._required(key))

    def optional_number(self, key: str) -> float | None:
        value = self.data.get(key)
        return None if value is None else self._number(key, value)

    def flag(self, key: str) -> bool:
        value = self.data.get(key)
        if value is None:
            return False
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        raise self._fail(key, f"must be a boolean, got {value!r}")

    def child(self, key: str) -> _Record:
        return self._child(key, self._required(key))

    def optional_child(self, key: str) -> _Record | None:
        value = self.data.get(key)
        return None if value is None else self._child(key, value)

    def _player(self, record: _Record) -> PlayerRef:
        steam_id = record.text("steam_id")
        if not steam_id:
            raise record._fail("steam_id", "is empty")
        return PlayerRef(
            steam_id=steam_id,
            name=record.optional_text("name") or "",
            team=record.optional_integer("team"),
        )

    def player(self, key: str) -> PlayerRef:
        return self._player(self.child(key))

    def optional_player(self, key: str) -> PlayerRef | None:
        record = self.optional_child(key)
        return None if record is None else self._player(record)

    def position(self, key: str) -> Position | None:
        record = self.optional_child(key)
        if record is None:
            return None
        return Position(
            x=record.number("x"),
            y=record.number("y"),
            z=record.number("z"),
        )


def _parse_timestamp(record: _Record) -> datetime:
    value = record.data.get("timestamp")
    if value is None:
        raise record._fail("timestamp", "is required")
    try:
        if isinstance(value, bool):
            raise ValueError("boolean timestamp")
        if isinstance(value, (int, float)):
            return from_unix_seconds(value)
        if isinstance(value, str):
            return parse_stamp(value)
    except (ValueError, OverflowError, OSError):
        pass
    raise record._fail("timestamp", f"is not a recognised timestamp: {value!r}")


def _parse_base(record: _Record) -> BaseEvent:
    server = record.text("server_ip")
    if not server:
        raise record._fail("server_ip", "is empty")
    return BaseEvent(
        timestamp=_parse_timestamp(record),
        gamemode=record.text("gamemode"),
        server=server,
    )


def _parse_kill(record: _Record, base: BaseEvent) -> KillEvent:
    weapon = record.child("weapon")
    return KillEvent(
        base=base,
        killer=record.player("killer"),
        victim=record.player("victim"),
        weapon=Weapon(
            name=weapon.text("name"),
            item_def_index=weapon.optional_integer("item_def_index"),
        ),
        crit=record.flag("crit"),
        airborne=record.flag("airborne"),
        headshot=record.flag("headshot"),
        backstab=record.flag("backstab"),
        first_blood=record.flag("first_blood"),
        assister=record.optional_player("assister"),
        killer_pos=record.position("killer_pos"),
        victim_pos=record.position("victim_pos"),
    )


def _parse_airshot(record: _Record, base: BaseEvent) -> AirshotEvent:
    return AirshotEvent(
        base=base,
        player=record.player("player"),
        victim=record.player("victim"),
        weapon_type=record.text("weapon_type"),
        air2air=record.flag("air2air"),
        height=record.optional_number("height"),
    )


def _parse_deflect(record: _Record, base: BaseEvent) -> DeflectEvent:
    return DeflectEvent(
        base=base,
        player=record.player("player"),
        owner=record.optional_player("owner"),
        projectile_type=record.optional_text("projectile_type"),
        rocket_speed=record.optional_number("rocket_speed"),
        deflect_angle=record.optional_number("deflect_angle"),
        timing_ms=record.optional_integer("timing_ms"),
        distance=record.optional_number("distance"),
    )


def _parse_stun(record: _Record, base: BaseEvent) -> StunEvent:
    return StunEvent(
        base=base,
        attacker=record.player("attacker"),
        victim=record.player("victim"),
        duration=record.number("duration"),
        big_stun=record.flag("big_stun"),
    )


def _parse_healed(record: _Record, base: BaseEvent) -> HealedEvent:
    return HealedEvent(
        base=base,
        healer=record.player("healer"),
        patient=record.player("patient"),
        amount=record.integer("amount"),
    )


def _parse_class_change(record: _Record, base: BaseEvent) -> ClassChangeEvent:
    return ClassChangeEvent(
        base=base,
        player=record.player("player"),
        player_class=record.text("class"),
    )


def _parse_match_start(record: _Record, base: BaseEvent) -> MatchStartEvent:
    return MatchStartEvent(
        base=base,
        map_name=record.optional_text("map"),
        kind=EventKind(record.kind),
    )


def _parse_match_end(record: _Record, base: BaseEvent) -> MatchEndEvent:
    return MatchEndEvent(
        base=base,
        winner_team=record.integer("winner_team"),
        duration=record.optional_integer("duration"),
        red_score=record.optional_integer("red_score"),
        blu_score=record.optional_integer("blu_score"),
        kind=EventKind(record.kind),
    )


_HEADER_KEYS = frozenset({"event_type", "timestamp", "gamemode", "server_ip"})


def _parse_generic(record: _Record, base: BaseEvent) -> GenericEvent:
    return GenericEvent(
        base=base,
        kind=EventKind(record.kind),
        player=record.optional_player("player"),
        attributes={
            key: value
            for key, value in record.data.items()
            if key not in _HEADER_KEYS and key != "player"
        },
    )


_PARSERS: dict[EventKind, Callable[[_Record, BaseEvent], Event]] = {
    EventKind.KILL: _parse_kill,
    EventKind.AIRSHOT: _parse_airshot,
    EventKind.DEFLECT: _parse_deflect,
    EventKind.STUN: _parse_stun,
    EventKind.HEALED: _parse_healed,
    EventKind.CLASS_CHANGE: _parse_class_change,
    EventKind.MATCH_START: _parse_match_start,
    EventKind.ROUND_START: _parse_match_start,
    EventKind.MATCH_END: _parse_match_end,
    EventKind.ROUND_END: _parse_match_end,
    **{kind: _parse_generic for kind in GENERIC_KINDS},
}


def _load_object(line: str) -> dict[str, Any]:
    try:
        data = json.loads(line)
    except json.JSONDecodeError as exc:
        raise DecodeError(line, f"invalid JSON: {exc}") from None
    if not isinstance(data, dict):
        raise DecodeError(line, f"expected a JSON object, got {type(data).__name__}")
    return data


def _event_type(line: str, data: dict[str, Any]) -> str:
    event_type = data.get("event_type")
    if not isinstance(event_type, str) or not event_type:
        raise DecodeError(line, "missing or non-string 'event_type'")
    return event_type


def sniff_structured_type(line: str) -> str | None:
    """Return the ``event_type`` of a structured line, or ``None`` when unreadable."""
    try:
        return _event_type(line, _load_object(line))
    except DecodeError:
        return None


def decode_structured(line: str) -> Event | None:
    """Decode one trimmed structured line.

    Returns ``None`` for a well-formed record whose ``event_type`` this build
    does not know about.
    """
    data = _load_object(line)
    event_type = _event_type(line, data)
    kind = EventKind.from_token(event_type)
    if kind is None:
        return None

    record = _Record(line, kind.value, data)
    return _PARSERS[kind](record, _parse_base(record))


__all__ = ["decode_structured", "sniff_structured_type"]
