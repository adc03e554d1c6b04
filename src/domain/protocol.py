"""Contracts between the pipeline core and its external collaborators."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from domain.mmr.calculator import RatingChange, RosterEntry
from telemetry.schema import AirshotEvent, DeflectEvent, Event, KillEvent, PlayerRef
from transport.message import Message


@dataclass(frozen=True)
class PlayerRecord:
    id: int
    steam_id: str
    name: str
    mmr: int
    peak_mmr: int
    matches_played: int


@dataclass(frozen=True)
class MatchRecord:
    """Snapshot of one match row; ``ended_at is None`` while the match is open."""

    id: int
    server: str
    map_name: str | None
    gamemode: str | None
    started_at: datetime
    ended_at: datetime | None = None
    duration_seconds: int | None = None
    winner_team: int | None = None
    red_score: int | None = None
    blu_score: int | None = None
    rated: bool = False
    end_event_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.ended_at is None


@runtime_checkable
class Storage(Protocol):
    """Synchronous persistence contract; every call is its own transaction.

    Datetimes crossing this boundary are timezone-aware UTC.
    """

    def get_or_create_player(self, ref: PlayerRef, *, seen_at: datetime | None = None) -> PlayerRecord: ...

    def get_player(self, player_id: int) -> PlayerRecord | None: ...

    def get_open_match(self, server: str) -> MatchRecord | None: ...

    def get_last_closed_match(self, server: str) -> MatchRecord | None: ...

    def get_match(self, match_id: int) -> MatchRecord | None: ...

    def open_match(
        self,
        server: str,
        map_name: str | None,
        gamemode: str | None,
        started_at: datetime,
    ) -> MatchRecord:
        """Open a match, or return the server's already-open match."""
        ...

    def update_match_info(self, match_id: int, map_name: str | None, gamemode: str | None) -> MatchRecord: ...

    def close_match(
        self,
        match_id: int,
        ended_at: datetime,
        winner_team: int,
        rated: bool,
        *,
        red_score: int | None = None,
        blu_score: int | None = None,
        end_event_at: datetime | None = None,
    ) -> bool:
        """Close an open match; ``False`` when it was already closed."""
        ...

    def insert_raw_event(self, event: Event, payload: dict[str, Any]) -> int: ...

    def mark_event_processed(self, event_id: int) -> None: ...

    def insert_kill(
        self,
        event_id: int,
        match_id: int,
        event: KillEvent,
        *,
        killer_id: int,
        victim_id: int,
        assister_id: int | None = None,
    ) -> None: ...

    def insert_airshot(
        self,
        event_id: int,
        match_id: int,
        event: AirshotEvent,
        *,
        player_id: int,
        victim_id: int,
    ) -> None: ...

    def insert_deflect(
        self,
        event_id: int,
        match_id: int,
        event: DeflectEvent,
        *,
        player_id: int,
        owner_id: int | None = None,
    ) -> None: ...

    def register_participant(self, match_id: int, player_id: int, team: int) -> None: ...

    def fetch_team_roster(self, match_id: int, team: int) -> list[RosterEntry]:
        """Roster of ``team`` as it stood before ``match_id`` was rated."""
        ...

    def apply_rating_change(self, match_id: int, change: RatingChange) -> bool:
        """Persist one player's rating change; ``False`` if already applied for this match."""
        ...

    def apply_rating_changes(self, match_id: int, changes: Sequence[RatingChange]) -> int:
        """Persist every change of one match atomically; returns how many were newly applied."""
        ...


@runtime_checkable
class DeliveryChannel(Protocol):
    """At-least-once topic channel between the collector and the pipeline."""

    async def publish(self, topic: str, payload: bytes, metadata: dict[str, Any] | None = None) -> Message: ...

    async def receive(self, topic: str, timeout: float) -> Message | None: ...

    async def ack(self, message: Message) -> None: ...

    async def nack(self, message: Message) -> None: ...


__all__ = ["DeliveryChannel", "MatchRecord", "PlayerRecord", "Storage"]
