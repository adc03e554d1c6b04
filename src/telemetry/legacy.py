"""Legacy ``|``-delimited telemetry grammar.

A legacy line looks like::

    KILL|1706745600|default|192.168.1.100|7656...|Player1|7656...|Player2|scattergun|0|0

Field 0 is the upper-case kind tag and fields 1-3 are always the Unix
timestamp, gamemode and source server. The remaining fields are positional
per kind (see ``LAYOUTS``): required fields must be present, optional
trailing fields may be omitted or left empty. Fields beyond the known layout
are ignored so newer plugins can append data without breaking older builds.
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from telemetry.errors import DecodeError
from telemetry.escaping import escape_field, unescape_field
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
    StunEvent,
    Weapon,
)
from telemetry.timestamps import DECIMAL_TEXT, INTEGER_TEXT, parse_unix_text

DELIMITER = "|"
UNIVERSAL_FIELD_COUNT = 4
TAG_PATTERN = re.compile(r"[A-Z][A-Z0-9_]*")


@dataclass(frozen=True)
class LegacyLayout:
    """Positional kind-specific fields following the four universal ones."""

    required: tuple[str, ...]
    optional: tuple[str, ...] = ()

    @property
    def names(self) -> tuple[str, ...]:
        return self.required + self.optional


_KILL_LAYOUT = LegacyLayout(
    required=(
        "killer_steam_id",
        "killer_name",
        "victim_steam_id",
        "victim_name",
        "weapon",
        "crit",
        "airborne",
    ),
    optional=(
        "killer_team",
        "victim_team",
        "headshot",
        "backstab",
        "first_blood",
        "assister_steam_id",
        "assister_name",
        "assister_team",
    ),
)
_AIRSHOT_LAYOUT = LegacyLayout(
    required=(
        "player_steam_id",
        "player_name",
        "victim_steam_id",
        "victim_name",
        "weapon_type",
    ),
    optional=("air2air", "height", "player_team", "victim_team"),
)
_DEFLECT_LAYOUT = LegacyLayout(
    required=(
        "player_steam_id",
        "player_name",
        "rocket_speed",
        "deflect_angle",
        "timing_ms",
        "distance",
    ),
    optional=("player_team", "projectile_type", "owner_steam_id", "owner_name"),
)
_STUN_LAYOUT = LegacyLayout(
    required=(
        "attacker_steam_id",
        "attacker_name",
        "victim_steam_id",
        "victim_name",
        "duration",
    ),
    optional=("big_stun", "attacker_team", "victim_team"),
)
_HEALED_LAYOUT = LegacyLayout(
    required=(
        "healer_steam_id",
        "healer_name",
        "patient_steam_id",
        "patient_name",
        "amount",
    ),
    optional=("healer_team", "patient_team"),
)
_CLASS_CHANGE_LAYOUT = LegacyLayout(
    required=("player_steam_id", "player_name", "player_class"),
    optional=("player_team",),
)
_MATCH_START_LAYOUT = LegacyLayout(required=("map",))
_MATCH_END_LAYOUT = LegacyLayout(
    required=("winner_team", "duration"),
    optional=("red_score", "blu_score"),
)
# Archived kinds: an optional acting player, then free-form positional fields.
_GENERIC_LAYOUT = LegacyLayout(
    required=(),
    optional=("player_steam_id", "player_name", "player_team"),
)

LAYOUTS: dict[EventKind, LegacyLayout] = {
    EventKind.KILL: _KILL_LAYOUT,
    EventKind.AIRSHOT: _AIRSHOT_LAYOUT,
    EventKind.DEFLECT: _DEFLECT_LAYOUT,
    EventKind.STUN: _STUN_LAYOUT,
    EventKind.HEALED: _HEALED_LAYOUT,
    EventKind.CLASS_CHANGE: _CLASS_CHANGE_LAYOUT,
    EventKind.MATCH_START: _MATCH_START_LAYOUT,
    EventKind.ROUND_START: _MATCH_START_LAYOUT,
    EventKind.MATCH_END: _MATCH_END_LAYOUT,
    EventKind.ROUND_END: _MATCH_END_LAYOUT,
    **{kind: _GENERIC_LAYOUT for kind in GENERIC_KINDS},
}


class _FieldReader:
    """Typed access to the kind-specific fields of one legacy line."""

    def __init__(self, line: str, kind: EventKind, values: list[str]) -> None:
        self.line = line
        self.kind = kind
        names = LAYOUTS[kind].names
        self._values = dict(zip(names, values))
        self.extra = [unescape_field(value) for value in values[len(names):]]

    def _raw(self, name: str) -> str | None:
        value = self._values.get(name)
        if value is None or value == "":
            return None
        return value

    def _fail(self, name: str, expected: str, raw: str) -> DecodeError:
        return DecodeError(
            self.line,
            f"{self.kind.legacy_tag} field {name!r} is not {expected}: {raw!r}",
        )

    def text(self, name: str) -> str:
        return unescape_field(self._values[name])

    def optional_text(self, name: str) -> str | None:
        raw = self._raw(name)
        return None if raw is None else unescape_field(raw)

    def identifier(self, name: str) -> str:
        raw = self._raw(name)
        if raw is None:
            raise DecodeError(self.line, f"{self.kind.legacy_tag} field {name!r} is empty")
        return unescape_field(raw)

    def optional_integer(self, name: str) -> int | None:
        raw = self._raw(name)
        if raw is None:
            return None
        if not INTEGER_TEXT.fullmatch(raw):
            raise self._fail(name, "an integer", raw)
        return int(raw)

    def integer(self, name: str) -> int:
        value = self.optional_integer(name)
        if value is None:
            raise self._fail(name, "an integer", self._values.get(name, ""))
        return value

    def optional_number(self, name: str) -> float | None:
        raw = self._raw(name)
        if raw is None:
            return None
        if not DECIMAL_TEXT.fullmatch(raw):
            raise self._fail(name, "a number", raw)
        value = float(raw)
        if not math.isfinite(value):
            raise self._fail(name, "a finite number", raw)
        return value

    def number(self, name: str) -> float:
        value = self.optional_number(name)
        if value is None:
            raise self._fail(name, "a number", self._values.get(name, ""))
        return value

    def optional_flag(self, name: str) -> bool | None:
        raw = self._raw(name)
        if raw is None:
            return None
        if raw in ("0", "1"):
            return raw == "1"
        raise self._fail(name, "a 0/1 flag", raw)

    def flag(self, name: str, default: bool | None = None) -> bool:
        value = self.optional_flag(name)
        if value is None:
            if default is None:
                raise self._fail(name, "a 0/1 flag", self._values.get(name, ""))
            return default
        return value

    def player(self, prefix: str) -> PlayerRef:
        return PlayerRef(
            steam_id=self.identifier(f"{prefix}_steam_id"),
            name=self.text(f"{prefix}_name"),
            team=self.optional_integer(f"{prefix}_team"),
        )

    def optional_player(self, prefix: str) -> PlayerRef | None:
        if self._raw(f"{prefix}_steam_id") is None:
            return None
        return PlayerRef(
            steam_id=self.identifier(f"{prefix}_steam_id"),
            name=self.optional_text(f"{prefix}_name") or "",
            team=self.optional_integer(f"{prefix}_team"),
        )


def _parse_kill(fields: _FieldReader, base: BaseEvent) -> KillEvent:
    return KillEvent(
        base=base,
        killer=fields.player("killer"),
        victim=fields.player("victim"),
        weapon=Weapon(name=fields.text("weapon")),
        crit=fields.flag("crit"),
        airborne=fields.flag("airborne"),
        headshot=fields.flag("headshot", default=False),
        backstab=fields.flag("backstab", default=False),
        first_blood=fields.flag("first_blood", default=False),
        assister=fields.optional_player("assister"),
    )


def _parse_airshot(fields: _FieldReader, base: BaseEvent) -> AirshotEvent:
    return AirshotEvent(
        base=base,
        player=fields.player("player"),
        victim=fields.player("victim"),
        weapon_type=fields.text("weapon_type"),
        air2air=fields.flag("air2air", default=False),
        height=fields.optional_number("height"),
    )


def _parse_deflect(fields: _FieldReader, base: BaseEvent) -> DeflectEvent:
    return DeflectEvent(
        base=base,
        player=fields.player("player"),
        owner=fields.optional_player("owner"),
        projectile_type=fields.optional_text("projectile_type"),
        rocket_speed=fields.optional_number("rocket_speed"),
        deflect_angle=fields.optional_number("deflect_angle"),
        timing_ms=fields.optional_integer("timing_ms"),
        distance=fields.optional_number("distance"),
    )


def _parse_stun(fields: _FieldReader, base: BaseEvent) -> StunEvent:
    return StunEvent(
        base=base,
        attacker=fields.player("attacker"),
        victim=fields.player("victim"),
        duration=fields.number("duration"),
        big_stun=fields.flag("big_stun", default=False),
    )


def _parse_healed(fields: _FieldReader, base: BaseEvent) -> HealedEvent:
    return HealedEvent(
        base=base,
        healer=fields.player("healer"),
        patient=fields.player("patient"),
        amount=fields.integer("amount"),
    )


def _parse_class_change(fields: _FieldReader, base: BaseEvent) -> ClassChangeEvent:
    return ClassChangeEvent(
        base=base,
        player=fields.player("player"),
        player_class=fields.text("player_class"),
    )


def _parse_match_start(fields: _FieldReader, base: BaseEvent) -> MatchStartEvent:
    return MatchStartEvent(
        base=base,
        map_name=fields.optional_text("map"),
        kind=fields.kind,
    )


def _parse_match_end(fields: _FieldReader, base: BaseEvent) -> MatchEndEvent:
    return MatchEndEvent(
        base=base,
        winner_team=fields.integer("winner_team"),
        duration=fields.optional_integer("duration"),
        red_score=fields.optional_integer("red_score"),
        blu_score=fields.optional_integer("blu_score"),
        kind=fields.kind,
    )


def _parse_generic(fields: _FieldReader, base: BaseEvent) -> GenericEvent:
    return GenericEvent(
        base=base,
        kind=fields.kind,
        player=fields.optional_player("player"),
        attributes={"fields": fields.extra} if fields.extra else {},
    )


_PARSERS: dict[EventKind, Callable[[_FieldReader, BaseEvent], Event]] = {
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


def sniff_legacy_tag(line: str) -> str | None:
    """Return the tag of a legacy line when it is a well-formed mnemonic."""
    tag = line.split(DELIMITER, 1)[0]
    return tag if TAG_PATTERN.fullmatch(tag) else None


def decode_legacy(line: str) -> Event | None:
    """Decode one trimmed, non-empty legacy line.

    Returns ``None`` for a well-formed tag this build does not know about.
    """
    parts = line.split(DELIMITER)
    if len(parts) < UNIVERSAL_FIELD_COUNT:
        raise DecodeError(
            line,
            f"expected at least {UNIVERSAL_FIELD_COUNT} fields, got {len(parts)}",
        )

    tag = parts[0]
    if not TAG_PATTERN.fullmatch(tag):
        raise DecodeError(line, f"malformed event tag {tag!r}")

    kind = EventKind.from_legacy_tag(tag)
    if kind is None:
        return None

    layout = LAYOUTS[kind]
    values = parts[UNIVERSAL_FIELD_COUNT:]
    if len(values) < len(layout.required):
        raise DecodeError(
            line,
            f"{tag} requires {len(layout.required)} fields after the header, "
            f"got {len(values)}",
        )

    base = _parse_base(line, parts)
    return _PARSERS[kind](_FieldReader(line, kind, values), base)


def _parse_base(line: str, parts: list[str]) -> BaseEvent:
    try:
        timestamp = parse_unix_text(parts[1])
    except (ValueError, OverflowError, OSError):
        raise DecodeError(line, f"field 'timestamp' is not Unix seconds: {parts[1]!r}") from None

    server = unescape_field(parts[3])
    if not server:
        raise DecodeError(line, "field 'server' is empty")
    return BaseEvent(timestamp=timestamp, gamemode=unescape_field(parts[2]), server=server)


def _flag(value: bool) -> str:
    return "1" if value else "0"


def _optional(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return _flag(value)
    if isinstance(value, str):
        return escape_field(value)
    return str(value)


def _player_fields(player: PlayerRef | None) -> tuple[str, str]:
    if player is None:
        return "", ""
    return escape_field(player.steam_id), escape_field(player.name)


def _team(player: PlayerRef | None) -> str:
    return "" if player is None else _optional(player.team)


def _timestamp_field(timestamp: datetime) -> str:
    seconds = timestamp.timestamp()
    if seconds.is_integer():
        return str(int(seconds))
    return repr(seconds)


def _kind_fields(event: Event) -> list[str]:
    if isinstance(event, KillEvent):
        return [
            *_player_fields(event.killer),
            *_player_fields(event.victim),
            escape_field(event.weapon.name),
            _flag(event.crit),
            _flag(event.airborne),
            _team(event.killer),
            _team(event.victim),
            _flag(event.headshot),
            _flag(event.backstab),
            _flag(event.first_blood),
            *_player_fields(event.assister),
            _team(event.assister),
        ]
    if isinstance(event, AirshotEvent):
        return [
            *_player_fields(event.player),
            *_player_fields(event.victim),
            escape_field(event.weapon_type),
            _flag(event.air2air),
            _optional(event.height),
            _team(event.player),
            _team(event.victim),
        ]
    if isinstance(event, DeflectEvent):
        return [
            *_player_fields(event.player),
            _optional(event.rocket_speed),
            _optional(event.deflect_angle),
            _optional(event.timing_ms),
            _optional(event.distance),
            _team(event.player),
            _optional(event.projectile_type),
            *_player_fields(event.owner),
        ]
    if isinstance(event, StunEvent):
        return [
            *_player_fields(event.attacker),
            *_player_fields(event.victim),
            _optional(event.duration),
            _flag(event.big_stun),
            _team(event.attacker),
            _team(event.victim),
        ]
    if isinstance(event, HealedEvent):
        return [
            *_player_fields(event.healer),
            *_player_fields(event.patient),
            str(event.amount),
            _team(event.healer),
            _team(event.patient),
        ]
    if isinstance(event, ClassChangeEvent):
        return [
            *_player_fields(event.player),
            escape_field(event.player_class),
            _team(event.player),
        ]
    if isinstance(event, MatchStartEvent):
        return [_optional(event.map_name)]
    if isinstance(event, MatchEndEvent):
        return [
            str(event.winner_team),
            _optional(event.duration),
            _optional(event.red_score),
            _optional(event.blu_score),
        ]
    if isinstance(event, GenericEvent):
        return [*_player_fields(event.player), _team(event.player)]
    raise TypeError(f"Unsupported event type: {type(event)!r}")


def _extra_fields(event: Event) -> list[str]:
    if not isinstance(event, GenericEvent):
        return []
    values: Any = event.attributes.get("fields")
    if not isinstance(values, list):
        # Named attributes from a structured line; nested values have no legacy form.
        values = [
            value for value in event.attributes.values() if not isinstance(value, (dict, list))
        ]
    return [_optional(value) for value in values]


def encode_legacy(event: Event) -> str:
    """Encode an event as one legacy line.

    Trailing empty optional fields are dropped unless free-form fields follow them.
    """
    required_count = len(LAYOUTS[event.kind].required)
    fields = _kind_fields(event)
    extra = _extra_fields(event)
    if extra:
        fields.extend(extra)
    else:
        while len(fields) > required_count and fields[-1] == "":
            fields.pop()

    header = [
        event.kind.legacy_tag,
        _timestamp_field(event.timestamp),
        escape_field(event.gamemode),
        escape_field(event.server),
    ]
    return DELIMITER.join(header + fields)


__all__ = [
    "DELIMITER",
    "LAYOUTS",
    "LegacyLayout",
    "decode_legacy",
    "encode_legacy",
    "sniff_legacy_tag",
]
