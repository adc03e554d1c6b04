"""Dictionary-backed storage for dry runs and tests."""

from __future__ import annotations

import threading
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from domain.mmr.calculator import RatingChange, RosterEntry
from domain.protocol import MatchRecord, PlayerRecord
from telemetry.schema import AirshotEvent, DeflectEvent, Event, KillEvent, PlayerRef

DEFAULT_INITIAL_MMR = 1000


@dataclass
class StoredPlayer:
    record: PlayerRecord
    last_seen: datetime | None = None
    totals: dict[str, int] = field(default_factory=dict)

    def bump(self, counter: str, amount: int = 1) -> None:
        if amount:
            self.totals[counter] = self.totals.get(counter, 0) + amount


@dataclass
class StoredParticipant:
    team: int
    mmr_before: int | None = None
    mmr_after: int | None = None
    mmr_change: int | None = None


@dataclass
class StoredEvent:
    id: int
    event_type: str
    server: str
    payload: dict[str, Any]
    processed: bool = False


class MemoryStorage:
    """Thread-safe in-process implementation of the storage contract."""

    def __init__(self, *, initial_mmr: int = DEFAULT_INITIAL_MMR) -> None:
        self.initial_mmr = initial_mmr
        self._lock = threading.Lock()
        self.players: dict[int, StoredPlayer] = {}
        self._player_ids: dict[str, int] = {}
        self.matches: dict[int, MatchRecord] = {}
        self.participants: dict[tuple[int, int], StoredParticipant] = {}
        self.events: dict[int, StoredEvent] = {}
        self.kills: list[dict[str, Any]] = []
        self.airshots: list[dict[str, Any]] = []
        self.deflects: list[dict[str, Any]] = []
        self._next_player_id = 1
        self._next_match_id = 1
        self._next_event_id = 1

    # players

    def get_or_create_player(self, ref: PlayerRef, *, seen_at: datetime | None = None) -> PlayerRecord:
        with self._lock:
            last_seen = seen_at or datetime.now(UTC)
            player_id = self._player_ids.get(ref.steam_id)
            if player_id is None:
                player_id = self._next_player_id
                self._next_player_id += 1
                self._player_ids[ref.steam_id] = player_id
                self.players[player_id] = StoredPlayer(
                    record=PlayerRecord(
                        id=player_id,
                        steam_id=ref.steam_id,
                        name=ref.name,
                        mmr=self.initial_mmr,
                        peak_mmr=self.initial_mmr,
                        matches_played=0,
                    ),
                    last_seen=last_seen,
                )
            else:
                stored = self.players[player_id]
                if ref.name:
                    stored.record = replace(stored.record, name=ref.name)
                stored.last_seen = last_seen
            return self.players[player_id].record

    def get_player(self, player_id: int) -> PlayerRecord | None:
        with self._lock:
            stored = self.players.get(player_id)
            return None if stored is None else stored.record

    def get_player_by_steam_id(self, steam_id: str) -> PlayerRecord | None:
        with self._lock:
            player_id = self._player_ids.get(steam_id)
            return None if player_id is None else self.players[player_id].record

    # matches

    def _open_match_locked(self, server: str) -> MatchRecord | None:
        for match in self.matches.values():
            if match.server == server and match.is_open:
                return match
        return None

    def get_open_match(self, server: str) -> MatchRecord | None:
        with self._lock:
            return self._open_match_locked(server)

    def get_last_closed_match(self, server: str) -> MatchRecord | None:
        with self._lock:
            closed = [
                match
                for match in self.matches.values()
                if match.server == server and match.ended_at is not None
            ]
        if not closed:
            return None
        return max(closed, key=lambda match: (match.ended_at, match.id))

    def get_match(self, match_id: int) -> MatchRecord | None:
        with self._lock:
            return self.matches.get(match_id)

    def open_match(
        self,
        server: str,
        map_name: str | None,
        gamemode: str | None,
        started_at: datetime,
    ) -> MatchRecord:
        with self._lock:
            existing = self._open_match_locked(server)
            if existing is not None:
                return existing
            match = MatchRecord(
                id=self._next_match_id,
                server=server,
                map_name=map_name,
                gamemode=gamemode,
                started_at=started_at,
            )
            self._next_match_id += 1
            self.matches[match.id] = match
            return match

    def update_match_info(self, match_id: int, map_name: str | None, gamemode: str | None) -> MatchRecord:
        with self._lock:
            match = self.matches.get(match_id)
            if match is None:
                raise LookupError(f"Match {match_id} does not exist")
            match = replace(match, map_name=map_name, gamemode=gamemode)
            self.matches[match_id] = match
            return match

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
        with self._lock:
            match = self.matches.get(match_id)
            if match is None:
                raise LookupError(f"Match {match_id} does not exist")
            if not match.is_open:
                return False
            self.matches[match_id] = replace(
                match,
                ended_at=ended_at,
                duration_seconds=max(0, int((ended_at - match.started_at).total_seconds())),
                winner_team=winner_team,
                rated=rated,
                red_score=red_score,
                blu_score=blu_score,
                end_event_at=end_event_at,
            )
            return True

    # events

    def insert_raw_event(self, event: Event, payload: dict[str, Any]) -> int:
        with self._lock:
            event_id = self._next_event_id
            self._next_event_id += 1
            self.events[event_id] = StoredEvent(
                id=event_id,
                event_type=event.kind.value,
                server=event.server,
                payload=dict(payload),
            )
            return event_id

    def mark_event_processed(self, event_id: int) -> None:
        with self._lock:
            self.events[event_id].processed = True

    def insert_kill(
        self,
        event_id: int,
        match_id: int,
        event: KillEvent,
        *,
        killer_id: int,
        victim_id: int,
        assister_id: int | None = None,
    ) -> None:
        with self._lock:
            self.kills.append(
                {
                    "event_id": event_id,
                    "match_id": match_id,
                    "killer_id": killer_id,
                    "victim_id": victim_id,
                    "assister_id": assister_id,
                    "weapon": event.weapon.name,
                    "headshot": event.headshot,
                    "backstab": event.backstab,
                }
            )
            killer = self.players[killer_id]
            killer.bump("total_kills")
            killer.bump("total_headshots", int(event.headshot))
            killer.bump("total_backstabs", int(event.backstab))
            self.players[victim_id].bump("total_deaths")
            if assister_id is not None:
                self.players[assister_id].bump("total_assists")

    def insert_airshot(
        self,
        event_id: int,
        match_id: int,
        event: AirshotEvent,
        *,
        player_id: int,
        victim_id: int,
    ) -> None:
        with self._lock:
            self.airshots.append(
                {
                    "event_id": event_id,
                    "match_id": match_id,
                    "player_id": player_id,
                    "victim_id": victim_id,
                    "weapon_type": event.weapon_type,
                    "air2air": event.air2air,
                }
            )
            self.players[player_id].bump("total_airshots")

    def insert_deflect(
        self,
        event_id: int,
        match_id: int,
        event: DeflectEvent,
        *,
        player_id: int,
        owner_id: int | None = None,
    ) -> None:
        with self._lock:
            self.deflects.append(
                {
                    "event_id": event_id,
                    "match_id": match_id,
                    "player_id": player_id,
                    "owner_id": owner_id,
                    "projectile_type": event.projectile_type,
                }
            )
            self.players[player_id].bump("total_deflects")

    # rosters and ratings

    def register_participant(self, match_id: int, player_id: int, team: int) -> None:
        with self._lock:
            self.participants.setdefault((match_id, player_id), StoredParticipant(team=team))

    def fetch_team_roster(self, match_id: int, team: int) -> list[RosterEntry]:
        with self._lock:
            entries = []
            for (roster_match_id, player_id), participant in sorted(self.participants.items()):
                if roster_match_id != match_id or participant.team != team:
                    continue
                record = self.players[player_id].record
                if participant.mmr_before is not None and participant.mmr_after is not None:
                    entry = RosterEntry(
                        player_id=player_id,
                        mmr=participant.mmr_before,
                        matches_played=record.matches_played - 1,
                    )
                else:
                    entry = RosterEntry(
                        player_id=player_id,
                        mmr=record.mmr,
                        matches_played=record.matches_played,
                    )
                entries.append(entry)
            return entries

    def _apply_change(self, match_id: int, change: RatingChange) -> bool:
        participant = self.participants.get((match_id, change.player_id))
        if participant is None or participant.mmr_after is not None:
            return False
        stored = self.players[change.player_id]
        participant.mmr_before = change.pre_mmr
        participant.mmr_after = change.post_mmr
        participant.mmr_change = change.delta
        stored.record = replace(
            stored.record,
            mmr=change.post_mmr,
            peak_mmr=max(stored.record.peak_mmr, change.post_mmr),
            matches_played=stored.record.matches_played + 1,
        )
        return True

    def apply_rating_change(self, match_id: int, change: RatingChange) -> bool:
        with self._lock:
            return self._apply_change(match_id, change)

    def apply_rating_changes(self, match_id: int, changes: Sequence[RatingChange]) -> int:
        with self._lock:
            return sum(1 for change in changes if self._apply_change(match_id, change))


__all__ = ["MemoryStorage"]
