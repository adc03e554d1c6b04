"""Typed telemetry events.

Every telemetry line decodes into exactly one of the frozen event classes
below. ``Event`` is their union; the ``kind`` carried by each instance is
validated against the kinds its class may represent, so a decoded event can
be routed on ``kind`` alone.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Union


class EventKind(str, Enum):
    """Telemetry event kinds, valued by their structured ``event_type`` token."""

    KILL = "kill"
    AIRSHOT = "airshot"
    DEFLECT = "deflect"
    STUN = "stun"
    HEALED = "healed"
    CLASS_CHANGE = "class_change"
    MATCH_START = "match_start"
    ROUND_START = "round_start"
    MATCH_END = "match_end"
    ROUND_END = "round_end"
    JARATE = "jarate"
    SHIELD_BLOCKED = "shield_blocked"
    ROCKET_JUMP = "rocket_jump"
    STICKY_JUMP = "sticky_jump"
    ROCKET_JUMP_KILL = "rocket_jump_kill"
    STICKY_JUMP_KILL = "sticky_jump_kill"
    TELEPORT = "teleport"
    TELEPORT_USED = "teleport_used"
    BUILT_OBJECT = "built_object"
    KILLED_OBJECT = "killed_object"
    UBER_DEPLOYED = "uber_deployed"
    UBER_DROPPED = "uber_dropped"
    DEFENDED_MEDIC = "defended_medic"
    BUFF_DEPLOYED = "buff_deployed"
    SANDVICH = "sandvich"
    DALOKOHS = "dalokohs"
    STEAK = "steak"
    MVP1 = "mvp1"
    MVP2 = "mvp2"
    MVP3 = "mvp3"
    PLAYER_LOADOUT = "player_loadout"
    WEAPON_STATS = "weapon_stats"

    @property
    def legacy_tag(self) -> str:
        return self.value.upper()

    @property
    def topic(self) -> str:
        return f"events.{self.value}"

    @classmethod
    def from_legacy_tag(cls, tag: str) -> EventKind | None:
        try:
            return cls(tag.lower())
        except ValueError:
            return None

    @classmethod
    def from_token(cls, token: str) -> EventKind | None:
        try:
            return cls(token)
        except ValueError:
            return None


COMBAT_KINDS = frozenset({EventKind.KILL, EventKind.AIRSHOT, EventKind.DEFLECT})
START_KINDS = frozenset({EventKind.MATCH_START, EventKind.ROUND_START})
END_KINDS = frozenset({EventKind.MATCH_END, EventKind.ROUND_END})
# Kinds the pipeline archives without interpreting.
GENERIC_KINDS = frozenset(
    {
        EventKind.JARATE,
        EventKind.SHIELD_BLOCKED,
        EventKind.ROCKET_JUMP,
        EventKind.STICKY_JUMP,
        EventKind.ROCKET_JUMP_KILL,
        EventKind.STICKY_JUMP_KILL,
        EventKind.TELEPORT,
        EventKind.TELEPORT_USED,
        EventKind.BUILT_OBJECT,
        EventKind.KILLED_OBJECT,
        EventKind.UBER_DEPLOYED,
        EventKind.UBER_DROPPED,
        EventKind.DEFENDED_MEDIC,
        EventKind.BUFF_DEPLOYED,
        EventKind.SANDVICH,
        EventKind.DALOKOHS,
        EventKind.STEAK,
        EventKind.MVP1,
        EventKind.MVP2,
        EventKind.MVP3,
        EventKind.PLAYER_LOADOUT,
        EventKind.WEAPON_STATS,
    }
)


@dataclass(frozen=True)
class BaseEvent:
    """Fields shared by every event: when, which gamemode, and which server."""

    timestamp: datetime
    gamemode: str
    server: str

    def __post_init__(self) -> None:
        if self.timestamp.tzinfo is None:
            raise ValueError("BaseEvent.timestamp must be timezone-aware")


@dataclass(frozen=True)
class PlayerRef:
    """Identity of a player as reported by the game server."""

    steam_id: str
    name: str
    team: int | None = None


@dataclass(frozen=True)
class Position:
    x: float
    y: float
    z: float


@dataclass(frozen=True)
class Weapon:
    name: str
    item_def_index: int | None = None


class _EventMixin:
    allowed_kinds: ClassVar[frozenset[EventKind]] = frozenset()

    def _check_kind(self) -> None:
        kind = getattr(self, "kind")
        if kind not in self.allowed_kinds:
            allowed = ", ".join(sorted(item.value for item in self.allowed_kinds))
            raise ValueError(
                f"{type(self).__name__} cannot carry kind={kind!r} (allowed: {allowed})"
            )

    @property
    def timestamp(self) -> datetime:
        return getattr(self, "base").timestamp

    @property
    def gamemode(self) -> str:
        return getattr(self, "base").gamemode

    @property
    def server(self) -> str:
        return getattr(self, "base").server


@dataclass(frozen=True)
class KillEvent(_EventMixin):
    allowed_kinds: ClassVar[frozenset[EventKind]] = frozenset({EventKind.KILL})

    base: BaseEvent
    killer: PlayerRef
    victim: PlayerRef
    weapon: Weapon
    crit: bool = False
    airborne: bool = False
    headshot: bool = False
    backstab: bool = False
    first_blood: bool = False
    assister: PlayerRef | None = None
    killer_pos: Position | None = None
    victim_pos: Position | None = None
    kind: EventKind = EventKind.KILL

    def __post_init__(self) -> None:
        self._check_kind()


@dataclass(frozen=True)
class AirshotEvent(_EventMixin):
    allowed_kinds: ClassVar[frozenset[EventKind]] = frozenset({EventKind.AIRSHOT})

    base: BaseEvent
    player: PlayerRef
    victim: PlayerRef
    weapon_type: str
    air2air: bool = False
    height: float | None = None
    kind: EventKind = EventKind.AIRSHOT

    def __post_init__(self) -> None:
        self._check_kind()


@dataclass(frozen=True)
class DeflectEvent(_EventMixin):
    allowed_kinds: ClassVar[frozenset[EventKind]] = frozenset({EventKind.DEFLECT})

    base: BaseEvent
    player: PlayerRef
    owner: PlayerRef | None = None
    projectile_type: str | None = None
    rocket_speed: float | None = None
    deflect_angle: float | None = None
    timing_ms: int | None = None
    distance: float | None = None
    kind: EventKind = EventKind.DEFLECT

    def __post_init__(self) -> None:
        self._check_kind()


@dataclass(frozen=True)
class StunEvent(_EventMixin):
    allowed_kinds: ClassVar[frozenset[EventKind]] = frozenset({EventKind.STUN})

    base: BaseEvent
    attacker: PlayerRef
    victim: PlayerRef
    duration: float
    big_stun: bool = False
    kind: EventKind = EventKind.STUN

    def __post_init__(self) -> None:
        self._check_kind()


@dataclass(frozen=True)
class HealedEvent(_EventMixin):
    allowed_kinds: ClassVar[frozenset[EventKind]] = frozenset({EventKind.HEALED})

    base: BaseEvent
    healer: PlayerRef
    patient: PlayerRef
    amount: int
    kind: EventKind = EventKind.HEALED

    def __post_init__(self) -> None:
        self._check_kind()


@dataclass(frozen=True)
class ClassChangeEvent(_EventMixin):
    allowed_kinds: ClassVar[frozenset[EventKind]] = frozenset({EventKind.CLASS_CHANGE})

    base: BaseEvent
    player: PlayerRef
    player_class: str
    kind: EventKind = EventKind.CLASS_CHANGE

    def __post_init__(self) -> None:
        self._check_kind()


@dataclass(frozen=True)
class MatchStartEvent(_EventMixin):
    allowed_kinds: ClassVar[frozenset[EventKind]] = START_KINDS

    base: BaseEvent
    map_name: str | None = None
    kind: EventKind = EventKind.MATCH_START

    def __post_init__(self) -> None:
        self._check_kind()


@dataclass(frozen=True)
class MatchEndEvent(_EventMixin):
    """End of a match or round. ``winner_team`` is 2 (RED), 3 (BLU) or 0 (no decision)."""

    allowed_kinds: ClassVar[frozenset[EventKind]] = END_KINDS

    base: BaseEvent
    winner_team: int
    duration: int | None = None
    red_score: int | None = None
    blu_score: int | None = None
    kind: EventKind = EventKind.MATCH_END

    def __post_init__(self) -> None:
        self._check_kind()


@dataclass(frozen=True)
class GenericEvent(_EventMixin):
    """An event archived as-is.

    ``player`` is the acting player when the line names one; ``attributes``
    holds every other field, by name for structured lines and as the
    positional ``fields`` list for legacy lines.
    """

    allowed_kinds: ClassVar[frozenset[EventKind]] = GENERIC_KINDS

    base: BaseEvent
    kind: EventKind
    player: PlayerRef | None = None
    attributes: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._check_kind()


Event = Union[
    KillEvent,
    AirshotEvent,
    DeflectEvent,
    StunEvent,
    HealedEvent,
    ClassChangeEvent,
    MatchStartEvent,
    MatchEndEvent,
    GenericEvent,
]


def event_players(event: Event) -> list[PlayerRef]:
    """Return every player referenced by an event, in field order."""
    if isinstance(event, KillEvent):
        players = [event.killer, event.victim]
        if event.assister is not None:
            players.append(event.assister)
        return players
    if isinstance(event, AirshotEvent):
        return [event.player, event.victim]
    if isinstance(event, DeflectEvent):
        return [event.player] if event.owner is None else [event.player, event.owner]
    if isinstance(event, StunEvent):
        return [event.attacker, event.victim]
    if isinstance(event, HealedEvent):
        return [event.healer, event.patient]
    if isinstance(event, ClassChangeEvent):
        return [event.player]
    if isinstance(event, GenericEvent) and event.player is not None:
        return [event.player]
    return []


def _json_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: _json_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_json_value(item) for item in value]
    return value


def event_to_payload(event: Event) -> dict[str, Any]:
    """Flatten an event into a JSON-serialisable dict for raw-event storage."""
    payload = asdict(event)
    base = payload.pop("base")
    payload.pop("kind")
    return _json_value({"event_type": event.kind.value, **base, **payload})


__all__ = [
    "AirshotEvent",
    "BaseEvent",
    "COMBAT_KINDS",
    "ClassChangeEvent",
    "DeflectEvent",
    "END_KINDS",
    "Event",
    "EventKind",
    "GENERIC_KINDS",
    "GenericEvent",
    "HealedEvent",
    "KillEvent",
    "MatchEndEvent",
    "MatchStartEvent",
    "PlayerRef",
    "Position",
    "START_KINDS",
    "StunEvent",
    "Weapon",
    "event_players",
    "event_to_payload",
]
