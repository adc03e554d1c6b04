"""Topic consumers that turn delivered telemetry into matches and ratings."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from domain.lifecycle import MatchLifecycleTracker, SIDES, is_decisive, opposing_side
from domain.mmr.calculator import MmrCalculator, MmrParameters, Outcome
from domain.protocol import DeliveryChannel, MatchRecord, Storage
from telemetry.decoder import decode
from telemetry.errors import DecodeError
from telemetry.schema import (
    AirshotEvent,
    ClassChangeEvent,
    DeflectEvent,
    Event,
    EventKind,
    KillEvent,
    MatchEndEvent,
    MatchStartEvent,
    PlayerRef,
    event_to_payload,
)
from transport.message import Message

logger = logging.getLogger(__name__)

DEFAULT_TOPICS: tuple[str, ...] = tuple(kind.topic for kind in EventKind)
DEFAULT_POLL_INTERVAL = 1.0


class MessageOutcome(str, Enum):
    ACKED_SKIP = "acked_skip"
    ACKED = "acked"
    NACKED = "nacked"


@dataclass
class PipelineStats:
    """Running per-outcome message counts."""

    acked: int = 0
    skipped: int = 0
    nacked: int = 0
    matches_rated: int = 0

    def record(self, outcome: MessageOutcome) -> None:
        if outcome is MessageOutcome.ACKED:
            self.acked += 1
        elif outcome is MessageOutcome.ACKED_SKIP:
            self.skipped += 1
        else:
            self.nacked += 1

    @property
    def handled(self) -> int:
        return self.acked + self.skipped + self.nacked


class PipelineCoordinator:
    """One consumer task per topic over a shared storage and lifecycle tracker."""

    def __init__(
        self,
        channel: DeliveryChannel,
        storage: Storage,
        *,
        parameters: MmrParameters | None = None,
        topics: Sequence[str] = DEFAULT_TOPICS,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        tracker: MatchLifecycleTracker | None = None,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be greater than 0")
        self.channel = channel
        self.storage = storage
        self.calculator = MmrCalculator(parameters)
        self.topics = tuple(topics)
        self.poll_interval = poll_interval
        self.tracker = tracker or MatchLifecycleTracker(storage)
        self.stats = PipelineStats()
        # Serializes roster capture and rating writes across all match closes.
        self._rating_lock = asyncio.Lock()

    async def run(self, shutdown: asyncio.Event) -> None:
        """Consume every topic until ``shutdown`` is set."""
        tasks = [
            asyncio.create_task(self._consume(topic, shutdown), name=f"consume:{topic}")
            for topic in self.topics
        ]
        logger.info("Pipeline started topics=%s poll_interval=%ss", len(tasks), self.poll_interval)
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(
                "Pipeline stopped acked=%s skipped=%s nacked=%s rated_matches=%s",
                self.stats.acked,
                self.stats.skipped,
                self.stats.nacked,
                self.stats.matches_rated,
            )

    async def _consume(self, topic: str, shutdown: asyncio.Event) -> None:
        while not shutdown.is_set():
            try:
                message = await self.channel.receive(topic, timeout=self.poll_interval)
            except Exception:
                logger.exception("Receive failed on topic=%s", topic)
                try:
                    await asyncio.wait_for(shutdown.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
                continue
            if message is None:
                continue
            try:
                await self.handle_message(message)
            except Exception:
                # Usually a failed ack or nack.
                logger.exception(
                    "Handling failed topic=%s message_id=%s attempt=%s",
                    topic,
                    message.id,
                    message.attempt,
                )

    async def handle_message(self, message: Message) -> MessageOutcome:
        """Decode, route, persist and acknowledge one message."""
        try:
            event = decode(message.payload)
        except DecodeError as exc:
            logger.warning(
                "Decode error topic=%s message_id=%s attempt=%s: %s",
                message.topic,
                message.id,
                message.attempt,
                exc.reason,
            )
            return await self._settle(message, MessageOutcome.NACKED)

        if event is None:
            return await self._settle(message, MessageOutcome.ACKED_SKIP)

        payload = event_to_payload(event)
        payload["raw"] = message.payload.decode("utf-8").strip()
        try:
            await self.process_event(event, payload)
        except Exception:
            logger.exception(
                "Processing failed topic=%s message_id=%s attempt=%s kind=%s server=%s",
                message.topic,
                message.id,
                message.attempt,
                event.kind.value,
                event.server,
            )
            return await self._settle(message, MessageOutcome.NACKED)
        return await self._settle(message, MessageOutcome.ACKED)

    async def _settle(self, message: Message, outcome: MessageOutcome) -> MessageOutcome:
        if outcome is MessageOutcome.NACKED:
            await self.channel.nack(message)
        else:
            await self.channel.ack(message)
        self.stats.record(outcome)
        return outcome

    async def process_event(self, event: Event, payload: dict[str, Any]) -> None:
        """Persist the raw event, route it by kind, then mark it processed."""
        event_id = await asyncio.to_thread(self.storage.insert_raw_event, event, payload)

        if isinstance(event, KillEvent):
            await self._process_kill(event_id, event)
        elif isinstance(event, AirshotEvent):
            await self._process_airshot(event_id, event)
        elif isinstance(event, DeflectEvent):
            await self._process_deflect(event_id, event)
        elif isinstance(event, MatchStartEvent):
            await self.tracker.open_match(event.server, event.map_name, event.gamemode, event.timestamp)
        elif isinstance(event, MatchEndEvent):
            await self._process_match_end(event)
        elif isinstance(event, ClassChangeEvent) and event.player.team in SIDES:
            match = await self.tracker.match_for_event(event.server, event.gamemode, event.timestamp)
            await self._resolve_player(match, event.player, event)

        await asyncio.to_thread(self.storage.mark_event_processed, event_id)

    async def _resolve_player(self, match: MatchRecord, ref: PlayerRef, event: Event) -> int:
        player = await asyncio.to_thread(self.storage.get_or_create_player, ref, seen_at=event.timestamp)
        if ref.team in SIDES:
            await asyncio.to_thread(self.storage.register_participant, match.id, player.id, ref.team)
        return player.id

    async def _resolve_optional_player(
        self,
        match: MatchRecord,
        ref: PlayerRef | None,
        event: Event,
    ) -> int | None:
        if ref is None:
            return None
        return await self._resolve_player(match, ref, event)

    async def _process_kill(self, event_id: int, event: KillEvent) -> None:
        match = await self.tracker.match_for_event(event.server, event.gamemode, event.timestamp)
        killer_id = await self._resolve_player(match, event.killer, event)
        victim_id = await self._resolve_player(match, event.victim, event)
        assister_id = await self._resolve_optional_player(match, event.assister, event)
        await asyncio.to_thread(
            self.storage.insert_kill,
            event_id,
            match.id,
            event,
            killer_id=killer_id,
            victim_id=victim_id,
            assister_id=assister_id,
        )

    async def _process_airshot(self, event_id: int, event: AirshotEvent) -> None:
        match = await self.tracker.match_for_event(event.server, event.gamemode, event.timestamp)
        player_id = await self._resolve_player(match, event.player, event)
        victim_id = await self._resolve_player(match, event.victim, event)
        await asyncio.to_thread(
            self.storage.insert_airshot,
            event_id,
            match.id,
            event,
            player_id=player_id,
            victim_id=victim_id,
        )

    async def _process_deflect(self, event_id: int, event: DeflectEvent) -> None:
        match = await self.tracker.match_for_event(event.server, event.gamemode, event.timestamp)
        player_id = await self._resolve_player(match, event.player, event)
        owner_id = await self._resolve_optional_player(match, event.owner, event)
        await asyncio.to_thread(
            self.storage.insert_deflect,
            event_id,
            match.id,
            event,
            player_id=player_id,
            owner_id=owner_id,
        )

    async def _process_match_end(self, event: MatchEndEvent) -> None:
        match = await self.tracker.end_open_match(event.server)
        if match is None:
            return

        rated = False
        if is_decisive(event.winner_team):
            rated = await self.rate_match(match, event.winner_team)
        else:
            logger.info(
                "Match id=%s server=%s ended without a decision (winner_team=%s); not rating",
                match.id,
                match.server,
                event.winner_team,
            )

        await self.tracker.close_match(
            match,
            event.winner_team,
            rated=rated,
            red_score=event.red_score,
            blu_score=event.blu_score,
            end_event_at=event.timestamp,
        )

    async def rate_match(self, match: MatchRecord, winner_team: int) -> bool:
        """Rate both rosters of ``match``; ``False`` when either roster is empty."""
        loser_team = opposing_side(winner_team)
        if loser_team is None:
            raise ValueError(f"winner_team must be one of {SIDES}, got {winner_team}")

        async with self._rating_lock:
            winners = await asyncio.to_thread(self.storage.fetch_team_roster, match.id, winner_team)
            losers = await asyncio.to_thread(self.storage.fetch_team_roster, match.id, loser_team)
            if not winners or not losers:
                logger.info(
                    "Skipping rating for match id=%s: empty roster (winners=%s losers=%s)",
                    match.id,
                    len(winners),
                    len(losers),
                )
                return False

            winner_changes, loser_changes = self.calculator.rate(winners, losers, Outcome.TEAM_A_WIN)
            changes = winner_changes + loser_changes
            for change in changes:
                logger.debug(
                    "Rating player_id=%s match_id=%s mmr %s->%s (%+d)",
                    change.player_id,
                    match.id,
                    change.pre_mmr,
                    change.post_mmr,
                    change.delta,
                )
            applied = await asyncio.to_thread(self.storage.apply_rating_changes, match.id, changes)

        self.stats.matches_rated += 1
        logger.info(
            "Rated match id=%s winners=%s losers=%s applied=%s",
            match.id,
            len(winners),
            len(losers),
            applied,
        )
        return True


__all__ = [
    "DEFAULT_POLL_INTERVAL",
    "DEFAULT_TOPICS",
    "MessageOutcome",
    "PipelineCoordinator",
    "PipelineStats",
]
