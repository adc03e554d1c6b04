"""SQLAlchemy-backed implementation of the pipeline storage contract."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import case, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from domain.mmr.calculator import RatingChange, RosterEntry
from domain.protocol import MatchRecord, PlayerRecord
from models import Airshot, Base, Deflect, Kill, Match, MatchPlayer, Player, RawEvent
from telemetry.schema import AirshotEvent, DeflectEvent, Event, KillEvent, PlayerRef

logger = logging.getLogger(__name__)

DEFAULT_INITIAL_MMR = 1000
OPEN_MATCH_ATTEMPTS = 3


def ensure_schema(engine: Engine) -> None:
    """Create all pipeline tables and indexes when missing."""
    with engine.begin() as connection:
        Base.metadata.create_all(bind=connection, checkfirst=True)


def _to_db_time(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def _from_db_time(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC)


def _from_optional_db_time(value: datetime | None) -> datetime | None:
    return None if value is None else _from_db_time(value)


def _player_record(player: Player) -> PlayerRecord:
    return PlayerRecord(
        id=player.id,
        steam_id=player.steam_id,
        name=player.name,
        mmr=player.mmr,
        peak_mmr=player.peak_mmr,
        matches_played=player.matches_played,
    )


def _match_record(match: Match) -> MatchRecord:
    return MatchRecord(
        id=match.id,
        server=match.server_ip,
        map_name=match.map_name,
        gamemode=match.gamemode,
        started_at=_from_db_time(match.started_at),
        ended_at=_from_optional_db_time(match.ended_at),
        duration_seconds=match.duration_seconds,
        winner_team=match.winner_team,
        red_score=match.red_score,
        blu_score=match.blu_score,
        rated=match.rated,
        end_event_at=_from_optional_db_time(match.end_event_at),
    )


def _increment(session: Session, player_id: int, **columns: int) -> None:
    values = {name: getattr(Player, name) + amount for name, amount in columns.items() if amount}
    if values:
        session.execute(update(Player).where(Player.id == player_id).values(**values))


class SqlStorage:
    """One session and one transaction per call."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        initial_mmr: int = DEFAULT_INITIAL_MMR,
    ) -> None:
        self.session_factory = session_factory
        self.initial_mmr = initial_mmr

    # players

    def get_or_create_player(self, ref: PlayerRef, *, seen_at: datetime | None = None) -> PlayerRecord:
        last_seen = _to_db_time(seen_at or datetime.now(UTC))
        try:
            with self.session_factory() as session, session.begin():
                player = session.execute(
                    select(Player).where(Player.steam_id == ref.steam_id)
                ).scalar_one_or_none()
                if player is None:
                    player = Player(
                        steam_id=ref.steam_id,
                        name=ref.name,
                        mmr=self.initial_mmr,
                        peak_mmr=self.initial_mmr,
                        matches_played=0,
                        last_seen=last_seen,
                    )
                    session.add(player)
                else:
                    if ref.name:
                        player.name = ref.name
                    player.last_seen = last_seen
                session.flush()
                return _player_record(player)
        except IntegrityError:
            # Another writer created the same steam_id first.
            with self.session_factory() as session:
                player = session.execute(
                    select(Player).where(Player.steam_id == ref.steam_id)
                ).scalar_one()
                return _player_record(player)

    def get_player(self, player_id: int) -> PlayerRecord | None:
        with self.session_factory() as session:
            player = session.get(Player, player_id)
            return None if player is None else _player_record(player)

    # matches

    def get_open_match(self, server: str) -> MatchRecord | None:
        with self.session_factory() as session:
            match = session.execute(
                select(Match).where(Match.server_ip == server, Match.ended_at.is_(None))
            ).scalar_one_or_none()
            return None if match is None else _match_record(match)

    def get_last_closed_match(self, server: str) -> MatchRecord | None:
        with self.session_factory() as session:
            match = session.execute(
                select(Match)
                .where(Match.server_ip == server, Match.ended_at.is_not(None))
                .order_by(Match.ended_at.desc(), Match.id.desc())
                .limit(1)
            ).scalar_one_or_none()
            return None if match is None else _match_record(match)

    def get_match(self, match_id: int) -> MatchRecord | None:
        with self.session_factory() as session:
            match = session.get(Match, match_id)
            return None if match is None else _match_record(match)

    def open_match(
        self,
        server: str,
        map_name: str | None,
        gamemode: str | None,
        started_at: datetime,
    ) -> MatchRecord:
        for attempt in range(1, OPEN_MATCH_ATTEMPTS + 1):
            existing = self.get_open_match(server)
            if existing is not None:
                return existing
            try:
                with self.session_factory() as session, session.begin():
                    match = Match(
                        server_ip=server,
                        map_name=map_name,
                        gamemode=gamemode,
                        started_at=_to_db_time(started_at),
                        rated=False,
                    )
                    session.add(match)
                    session.flush()
                    return _match_record(match)
            except IntegrityError:
                logger.info(
                    "Open match conflict for server=%s (attempt %s/%s)",
                    server,
                    attempt,
                    OPEN_MATCH_ATTEMPTS,
                )
        existing = self.get_open_match(server)
        if existing is None:
            raise RuntimeError(f"Could not open or find an open match for server {server}")
        return existing

    def update_match_info(self, match_id: int, map_name: str | None, gamemode: str | None) -> MatchRecord:
        with self.session_factory() as session, session.begin():
            match = session.get(Match, match_id)
            if match is None:
                raise LookupError(f"Match {match_id} does not exist")
            match.map_name = map_name
            match.gamemode = gamemode
            session.flush()
            return _match_record(match)

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
        ended_at_db = _to_db_time(ended_at)
        with self.session_factory() as session, session.begin():
            started_at = session.execute(
                select(Match.started_at).where(Match.id == match_id)
            ).scalar_one_or_none()
            if started_at is None:
                raise LookupError(f"Match {match_id} does not exist")
            result = session.execute(
                update(Match)
                .where(Match.id == match_id, Match.ended_at.is_(None))
                .values(
                    ended_at=ended_at_db,
                    duration_seconds=max(0, int((ended_at_db - started_at).total_seconds())),
                    winner_team=winner_team,
                    rated=rated,
                    red_score=red_score,
                    blu_score=blu_score,
                    end_event_at=None if end_event_at is None else _to_db_time(end_event_at),
                )
            )
            return result.rowcount == 1

    # events

    def insert_raw_event(self, event: Event, payload: dict[str, Any]) -> int:
        with self.session_factory() as session, session.begin():
            row = RawEvent(
                event_type=event.kind.value,
                timestamp=_to_db_time(event.timestamp),
                server_ip=event.server,
                gamemode=event.gamemode,
                payload=payload,
                processed=False,
            )
            session.add(row)
            session.flush()
            return row.id

    def mark_event_processed(self, event_id: int) -> None:
        with self.session_factory() as session, session.begin():
            session.execute(update(RawEvent).where(RawEvent.id == event_id).values(processed=True))

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
        killer_pos = event.killer_pos
        victim_pos = event.victim_pos
        with self.session_factory() as session, session.begin():
            session.add(
                Kill(
                    event_id=event_id,
                    match_id=match_id,
                    timestamp=_to_db_time(event.timestamp),
                    killer_id=killer_id,
                    victim_id=victim_id,
                    assister_id=assister_id,
                    weapon=event.weapon.name,
                    weapon_item_def_index=event.weapon.item_def_index,
                    crit=event.crit,
                    airborne=event.airborne,
                    headshot=event.headshot,
                    backstab=event.backstab,
                    first_blood=event.first_blood,
                    killer_pos_x=None if killer_pos is None else killer_pos.x,
                    killer_pos_y=None if killer_pos is None else killer_pos.y,
                    killer_pos_z=None if killer_pos is None else killer_pos.z,
                    victim_pos_x=None if victim_pos is None else victim_pos.x,
                    victim_pos_y=None if victim_pos is None else victim_pos.y,
                    victim_pos_z=None if victim_pos is None else victim_pos.z,
                )
            )
            _increment(
                session,
                killer_id,
                total_kills=1,
                total_headshots=int(event.headshot),
                total_backstabs=int(event.backstab),
            )
            _increment(session, victim_id, total_deaths=1)
            if assister_id is not None:
                _increment(session, assister_id, total_assists=1)

    def insert_airshot(
        self,
        event_id: int,
        match_id: int,
        event: AirshotEvent,
        *,
        player_id: int,
        victim_id: int,
    ) -> None:
        with self.session_factory() as session, session.begin():
            session.add(
                Airshot(
                    event_id=event_id,
                    match_id=match_id,
                    timestamp=_to_db_time(event.timestamp),
                    player_id=player_id,
                    victim_id=victim_id,
                    weapon_type=event.weapon_type,
                    air2air=event.air2air,
                    height=event.height,
                )
            )
            _increment(session, player_id, total_airshots=1)

    def insert_deflect(
        self,
        event_id: int,
        match_id: int,
        event: DeflectEvent,
        *,
        player_id: int,
        owner_id: int | None = None,
    ) -> None:
        with self.session_factory() as session, session.begin():
            session.add(
                Deflect(
                    event_id=event_id,
                    match_id=match_id,
                    timestamp=_to_db_time(event.timestamp),
                    player_id=player_id,
                    owner_id=owner_id,
                    projectile_type=event.projectile_type,
                    rocket_speed=event.rocket_speed,
                    deflect_angle=event.deflect_angle,
                    timing_ms=event.timing_ms,
                    distance=event.distance,
                )
            )
            _increment(session, player_id, total_deflects=1)

    # rosters and ratings

    def register_participant(self, match_id: int, player_id: int, team: int) -> None:
        """Add a player to a match roster; the first side seen for a player is kept."""
        try:
            with self.session_factory() as session, session.begin():
                existing = session.execute(
                    select(MatchPlayer.id).where(
                        MatchPlayer.match_id == match_id,
                        MatchPlayer.player_id == player_id,
                    )
                ).scalar_one_or_none()
                if existing is None:
                    session.add(MatchPlayer(match_id=match_id, player_id=player_id, team=team))
        except IntegrityError:
            logger.debug("Participant player_id=%s already registered for match_id=%s", player_id, match_id)

    def fetch_team_roster(self, match_id: int, team: int) -> list[RosterEntry]:
        # Rows already rated for this match report their pre-match rating.
        rated = MatchPlayer.mmr_after.is_not(None)
        with self.session_factory() as session:
            rows = session.execute(
                select(
                    Player.id,
                    case((rated, MatchPlayer.mmr_before), else_=Player.mmr).label("mmr"),
                    case(
                        (rated, Player.matches_played - 1), else_=Player.matches_played
                    ).label("matches_played"),
                )
                .join(MatchPlayer, MatchPlayer.player_id == Player.id)
                .where(MatchPlayer.match_id == match_id, MatchPlayer.team == team)
                .order_by(Player.id)
            ).all()
        return [
            RosterEntry(player_id=row.id, mmr=row.mmr, matches_played=row.matches_played)
            for row in rows
        ]

    def _apply_change(self, session: Session, match_id: int, change: RatingChange) -> bool:
        result = session.execute(
            update(MatchPlayer)
            .where(
                MatchPlayer.match_id == match_id,
                MatchPlayer.player_id == change.player_id,
                MatchPlayer.mmr_after.is_(None),
            )
            .values(
                mmr_before=change.pre_mmr,
                mmr_after=change.post_mmr,
                mmr_change=change.delta,
            )
        )
        if result.rowcount != 1:
            return False

        player = session.execute(
            select(Player).where(Player.id == change.player_id).with_for_update()
        ).scalar_one()
        player.mmr = change.post_mmr
        player.peak_mmr = max(player.peak_mmr, change.post_mmr)
        player.matches_played += 1
        player.mmr_updated_at = _to_db_time(datetime.now(UTC))
        return True

    def apply_rating_change(self, match_id: int, change: RatingChange) -> bool:
        with self.session_factory() as session, session.begin():
            return self._apply_change(session, match_id, change)

    def apply_rating_changes(self, match_id: int, changes: Sequence[RatingChange]) -> int:
        """Apply a whole match's changes in one transaction; any failure rolls all of them back."""
        with self.session_factory() as session, session.begin():
            applied = 0
            for change in changes:
                if self._apply_change(session, match_id, change):
                    applied += 1
            return applied


__all__ = ["SqlStorage", "ensure_schema"]
