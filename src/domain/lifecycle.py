"""Per-server match lifecycle: at most one open match per server."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from domain.protocol import MatchRecord, Storage

logger = logging.getLogger(__name__)

RED = 2
BLU = 3
NO_DECISION = 0
SIDES = (RED, BLU)


def utc_now() -> datetime:
    return datetime.now(UTC)


def opposing_side(team: int) -> int | None:
    """Return the other side for RED/BLU, ``None`` for any other code."""
    if team == RED:
        return BLU
    if team == BLU:
        return RED
    return None


def is_decisive(winner_team: int) -> bool:
    return winner_team in SIDES


def duration_seconds(started_at: datetime, ended_at: datetime) -> int:
    return max(0, int((ended_at - started_at).total_seconds()))


class MatchLifecycleTracker:
    """Serializes open/close per server key on top of a synchronous storage."""

    def __init__(self, storage: Storage, *, clock: Callable[[], datetime] = utc_now) -> None:
        self.storage = storage
        self.clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, server: str) -> asyncio.Lock:
        lock = self._locks.get(server)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[server] = lock
        return lock

    async def get_or_open_match(
        self,
        server: str,
        gamemode: str | None,
        map_name: str | None = None,
    ) -> MatchRecord:
        """Return the server's open match, implicitly opening one at ``clock()``."""
        async with self.lock_for(server):
            match = await asyncio.to_thread(self.storage.get_open_match, server)
            if match is not None:
                return match
            match = await asyncio.to_thread(
                self.storage.open_match, server, map_name, gamemode, self.clock()
            )
            logger.info("Implicitly opened match id=%s server=%s", match.id, server)
            return match

    async def match_for_event(
        self,
        server: str,
        gamemode: str | None,
        occurred_at: datetime,
    ) -> MatchRecord:
        """Match a gameplay event belongs to.

        Events can reach their consumer after another consumer already closed
        the match they happened in. Such a late event is attributed to the
        most recently closed match when it happened no later than that
        match's end event.
        """
        async with self.lock_for(server):
            match = await asyncio.to_thread(self.storage.get_open_match, server)
            if match is not None:
                return match

            last = await asyncio.to_thread(self.storage.get_last_closed_match, server)
            if last is not None and last.end_event_at is not None and occurred_at <= last.end_event_at:
                logger.info(
                    "Attributing late event at %s to closed match id=%s server=%s",
                    occurred_at.isoformat(),
                    last.id,
                    server,
                )
                return last

            match = await asyncio.to_thread(
                self.storage.open_match, server, None, gamemode, self.clock()
            )
            logger.info("Implicitly opened match id=%s server=%s", match.id, server)
            return match

    async def open_match(
        self,
        server: str,
        map_name: str | None,
        gamemode: str | None,
        started_at: datetime,
    ) -> MatchRecord:
        """Handle a match/round start.

        An already-open match is kept and has its map or gamemode refreshed
        when the start event reports different ones.
        """
        async with self.lock_for(server):
            match = await asyncio.to_thread(self.storage.get_open_match, server)
            if match is None:
                match = await asyncio.to_thread(
                    self.storage.open_match, server, map_name, gamemode, started_at
                )
                logger.info(
                    "Opened match id=%s server=%s map=%s gamemode=%s",
                    match.id,
                    server,
                    map_name,
                    gamemode,
                )
                return match

            new_map = map_name or match.map_name
            new_gamemode = gamemode or match.gamemode
            if new_map == match.map_name and new_gamemode == match.gamemode:
                return match
            logger.info(
                "Refreshing open match id=%s server=%s map=%s->%s gamemode=%s->%s",
                match.id,
                server,
                match.map_name,
                new_map,
                match.gamemode,
                new_gamemode,
            )
            return await asyncio.to_thread(
                self.storage.update_match_info, match.id, new_map, new_gamemode
            )

    async def close_match(
        self,
        match: MatchRecord,
        winner_team: int,
        *,
        rated: bool,
        red_score: int | None = None,
        blu_score: int | None = None,
        end_event_at: datetime | None = None,
    ) -> bool:
        """Close ``match``; returns ``False`` when it had already been closed."""
        async with self.lock_for(match.server):
            ended_at = self.clock()
            closed = await asyncio.to_thread(
                self.storage.close_match,
                match.id,
                ended_at,
                winner_team,
                rated,
                red_score=red_score,
                blu_score=blu_score,
                end_event_at=end_event_at,
            )
        if closed:
            logger.info(
                "Closed match id=%s server=%s winner_team=%s rated=%s duration=%ss",
                match.id,
                match.server,
                winner_team,
                rated,
                duration_seconds(match.started_at, ended_at),
            )
        else:
            logger.info("Match id=%s server=%s was already closed", match.id, match.server)
        return closed

    async def end_open_match(self, server: str) -> MatchRecord | None:
        """Return the open match a match-end should close, or ``None`` for a stray end."""
        async with self.lock_for(server):
            match = await asyncio.to_thread(self.storage.get_open_match, server)
        if match is None:
            logger.info("Ignoring match end for server=%s with no open match", server)
        return match


__all__ = [
    "BLU",
    "MatchLifecycleTracker",
    "NO_DECISION",
    "RED",
    "SIDES",
    "duration_seconds",
    "is_decisive",
    "opposing_side",
    "utc_now",
]
