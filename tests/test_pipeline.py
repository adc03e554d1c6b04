"""Tests for message handling and match rating in the pipeline coordinator."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Any

import pytest

from domain.lifecycle import MatchLifecycleTracker
from domain.mmr.calculator import RatingChange
from domain.pipeline import DEFAULT_TOPICS, MessageOutcome, PipelineCoordinator
from repositories.memory import MemoryStorage
from telemetry.schema import Event, EventKind
from transport.channel import InMemoryChannel, publish_line
from transport.message import Message, new_message_id

SERVER = "10.0.0.1"
TS = 1706745600
CLOSED_AT = datetime(2024, 2, 1, 0, 30, tzinfo=UTC)

START = f"ROUND_START|{TS}|default|{SERVER}|koth_product"
RED_KILL = f"KILL|{TS + 60}|default|{SERVER}|1|Alice|2|Bob|scattergun|0|0|2|3"
ASSISTED_KILL = f"KILL|{TS + 120}|default|{SERVER}|3|Carol|4|Dan|rocketlauncher|1|0|2|3|1|0|0|1|Alice|2"
AIRSHOT = f"AIRSHOT|{TS + 130}|default|{SERVER}|3|Carol|4|Dan|rocket|0|250.0|2|3"
DEFLECT = f"DEFLECT|{TS + 140}|default|{SERVER}|2|Bob|1100.0|10.0|80|300.0|3|rocket|3|Carol"
RED_WIN = f"MATCH_END|{TS + 600}|default|{SERVER}|2|600|3|1"


def _message(line: str) -> Message:
    return Message(id=new_message_id(), topic="events.test", payload=line.encode("utf-8"))


class Harness:
    def __init__(self, storage: MemoryStorage | None = None, *, max_redeliveries: int = 5) -> None:
        self.storage = storage or MemoryStorage()
        self.channel = InMemoryChannel(max_redeliveries=max_redeliveries)
        self.tracker = MatchLifecycleTracker(self.storage, clock=lambda: CLOSED_AT)
        self.coordinator = PipelineCoordinator(self.channel, self.storage, tracker=self.tracker)

    def feed(self, *lines: str) -> list[MessageOutcome]:
        async def scenario() -> list[MessageOutcome]:
            return [await self.coordinator.handle_message(_message(line)) for line in lines]

        return asyncio.run(scenario())

    def mmr(self, steam_id: str) -> int:
        player = self.storage.get_player_by_steam_id(steam_id)
        assert player is not None
        return player.mmr


def test_default_topics_cover_every_kind() -> None:
    assert "events.kill" in DEFAULT_TOPICS
    assert "events.round_end" in DEFAULT_TOPICS
    assert "events.weapon_stats" in DEFAULT_TOPICS
    assert len(DEFAULT_TOPICS) == len(EventKind) == 32


def test_poll_interval_must_be_positive() -> None:
    with pytest.raises(ValueError):
        PipelineCoordinator(InMemoryChannel(), MemoryStorage(), poll_interval=0)


def test_full_match_is_rated_at_match_end() -> None:
    harness = Harness()
    outcomes = harness.feed(START, RED_KILL, ASSISTED_KILL, RED_WIN)

    assert outcomes == [MessageOutcome.ACKED] * 4
    assert harness.coordinator.stats.matches_rated == 1

    match = harness.storage.get_match(1)
    assert match is not None
    assert match.map_name == "koth_product"
    assert match.ended_at == CLOSED_AT
    assert match.duration_seconds == 1800
    assert match.winner_team == 2
    assert match.rated is True
    assert (match.red_score, match.blu_score) == (3, 1)
    assert match.end_event_at == datetime.fromtimestamp(TS + 600, tz=UTC)

    # 2v2 at 1000 with K=50 and 1/sqrt(2) dampening moves each player 17.68.
    assert [harness.mmr(steam_id) for steam_id in ("1", "2", "3", "4")] == [1018, 982, 1018, 982]
    alice = harness.storage.get_player_by_steam_id("1")
    assert alice is not None
    assert alice.matches_played == 1
    assert alice.peak_mmr == 1018

    participant = harness.storage.participants[(1, alice.id)]
    assert (participant.mmr_before, participant.mmr_after, participant.mmr_change) == (1000, 1018, 18)


def test_combat_counters_and_rows() -> None:
    harness = Harness()
    harness.feed(START, RED_KILL, ASSISTED_KILL, AIRSHOT, DEFLECT)

    totals = {
        stored.record.steam_id: stored.totals for stored in harness.storage.players.values()
    }
    assert totals["1"] == {"total_kills": 1, "total_assists": 1}
    assert totals["2"] == {"total_deaths": 1, "total_deflects": 1}
    assert totals["3"] == {"total_kills": 1, "total_headshots": 1, "total_airshots": 1}
    assert totals["4"] == {"total_deaths": 1}

    assert len(harness.storage.kills) == 2
    assert harness.storage.kills[1]["assister_id"] == harness.storage.get_player_by_steam_id("1").id
    assert harness.storage.airshots[0]["air2air"] is False
    assert harness.storage.deflects[0]["owner_id"] == harness.storage.get_player_by_steam_id("3").id
    assert all(event.processed for event in harness.storage.events.values())


def test_raw_event_payload_keeps_decoded_fields_and_line() -> None:
    harness = Harness()
    harness.feed(RED_KILL)

    payload = harness.storage.events[1].payload
    assert payload["event_type"] == "kill"
    assert payload["server"] == SERVER
    assert payload["killer"]["name"] == "Alice"
    assert payload["raw"] == RED_KILL


def test_gameplay_without_start_opens_match_implicitly() -> None:
    harness = Harness()
    harness.feed(RED_KILL)

    match = harness.storage.get_open_match(SERVER)
    assert match is not None
    assert match.map_name is None
    assert match.started_at == CLOSED_AT


def test_duplicate_match_end_is_a_no_op() -> None:
    harness = Harness()
    outcomes = harness.feed(START, RED_KILL, RED_WIN, RED_WIN)

    assert outcomes[-1] is MessageOutcome.ACKED
    assert harness.coordinator.stats.matches_rated == 1
    assert harness.mmr("1") == 1025
    assert len(harness.storage.matches) == 1


def test_empty_roster_closes_match_unrated() -> None:
    harness = Harness()
    teamless_kill = f"KILL|{TS + 60}|default|{SERVER}|1|Alice|2|Bob|scattergun|0|0"
    harness.feed(START, teamless_kill, RED_WIN)

    match = harness.storage.get_match(1)
    assert match is not None
    assert not match.is_open
    assert match.rated is False
    assert harness.mmr("1") == 1000
    assert harness.coordinator.stats.matches_rated == 0


def test_undecided_match_is_not_rated() -> None:
    harness = Harness()
    stalemate = f"MATCH_END|{TS + 600}|default|{SERVER}|0|600"
    harness.feed(START, RED_KILL, stalemate)

    match = harness.storage.get_match(1)
    assert match is not None
    assert match.winner_team == 0
    assert match.rated is False
    assert harness.mmr("2") == 1000


def test_stray_match_end_is_acked_without_opening_a_match() -> None:
    harness = Harness()
    assert harness.feed(RED_WIN) == [MessageOutcome.ACKED]
    assert harness.storage.matches == {}


def test_late_kill_is_attributed_to_closed_match() -> None:
    harness = Harness()
    late_kill = f"KILL|{TS + 590}|default|{SERVER}|3|Carol|4|Dan|scattergun|0|0|2|3"
    harness.feed(START, RED_KILL, RED_WIN, late_kill)

    assert len(harness.storage.matches) == 1
    assert harness.storage.kills[-1]["match_id"] == 1
    assert harness.storage.get_open_match(SERVER) is None


def test_class_change_registers_participant() -> None:
    harness = Harness()
    harness.feed(START, f"CLASS_CHANGE|{TS + 5}|default|{SERVER}|7|Medic|medic|3")

    medic = harness.storage.get_player_by_steam_id("7")
    assert medic is not None
    assert harness.storage.participants[(1, medic.id)].team == 3


def test_first_reported_team_is_kept() -> None:
    harness = Harness()
    switched = f"KILL|{TS + 90}|default|{SERVER}|1|Alice|2|Bob|scattergun|0|0|3|2"
    harness.feed(START, RED_KILL, switched)

    alice = harness.storage.get_player_by_steam_id("1")
    assert alice is not None
    assert harness.storage.participants[(1, alice.id)].team == 2


def test_skips_and_decode_errors() -> None:
    harness = Harness(max_redeliveries=0)
    outcomes = harness.feed("# capture header", "FUTURE_EVENT|1|default|x", "KILL|oops|default")

    assert outcomes == [MessageOutcome.ACKED_SKIP, MessageOutcome.ACKED_SKIP, MessageOutcome.NACKED]
    assert harness.coordinator.stats.skipped == 2
    assert harness.coordinator.stats.nacked == 1
    assert len(harness.channel.dead_letters) == 1
    assert harness.storage.events == {}


class FailingStorage(MemoryStorage):
    def insert_raw_event(self, event: Event, payload: dict[str, Any]) -> int:
        raise RuntimeError("database unavailable")


def test_processing_failure_is_nacked_for_redelivery() -> None:
    harness = Harness(FailingStorage())
    assert harness.feed(RED_KILL) == [MessageOutcome.NACKED]
    assert harness.channel.pending() == 1


def test_run_consumes_until_shutdown() -> None:
    async def scenario() -> PipelineCoordinator:
        storage = MemoryStorage()
        channel = InMemoryChannel()
        coordinator = PipelineCoordinator(channel, storage, poll_interval=0.01)
        shutdown = asyncio.Event()
        runner = asyncio.create_task(coordinator.run(shutdown))

        await channel.publish("events.round_start", START.encode("utf-8"))
        while not channel.is_idle():
            await asyncio.sleep(0.01)
        await channel.publish("events.kill", RED_KILL.encode("utf-8"))
        while not channel.is_idle():
            await asyncio.sleep(0.01)

        shutdown.set()
        await asyncio.wait_for(runner, timeout=5)
        return coordinator

    coordinator = asyncio.run(scenario())
    assert coordinator.stats.acked == 2
    assert coordinator.stats.handled == 2


class FlakyRatingStorage(MemoryStorage):
    """Loses the connection once, partway through writing a match's ratings."""

    def __init__(self, fail_on_write: int) -> None:
        super().__init__()
        self.fail_on_write = fail_on_write
        self.writes = 0

    def _apply_change(self, match_id: int, change: RatingChange) -> bool:
        self.writes += 1
        if self.writes == self.fail_on_write:
            raise ConnectionError("connection lost")
        return super()._apply_change(match_id, change)


def test_rating_retry_after_partial_write_uses_pre_match_ratings() -> None:
    harness = Harness(FlakyRatingStorage(fail_on_write=3))

    outcomes = harness.feed(START, RED_KILL, ASSISTED_KILL, RED_WIN)
    assert outcomes[-1] is MessageOutcome.NACKED
    # Both winners were written before the failure; the losers were not.
    assert [harness.mmr(steam_id) for steam_id in ("1", "2", "3", "4")] == [1018, 1000, 1018, 1000]
    assert harness.storage.get_open_match(SERVER) is not None

    assert harness.feed(RED_WIN) == [MessageOutcome.ACKED]
    assert [harness.mmr(steam_id) for steam_id in ("1", "2", "3", "4")] == [1018, 982, 1018, 982]
    assert harness.coordinator.stats.matches_rated == 1

    alice = harness.storage.get_player_by_steam_id("1")
    assert alice is not None
    assert alice.matches_played == 1
    match = harness.storage.get_match(1)
    assert match is not None
    assert match.rated is True


def test_generic_kinds_are_archived_without_side_effects() -> None:
    harness = Harness()
    mvp = f"MVP1|{TS + 610}|default|{SERVER}|1|Alice|2|score\\p42"
    jarate = (
        '{"event_type": "jarate", "timestamp": %d, "gamemode": "default", "server_ip": "%s", '
        '"player": {"steam_id": "9", "name": "Sniper", "team": 3}, '
        '"victim": {"steam_id": "1", "name": "Alice"}}' % (TS + 20, SERVER)
    )

    assert harness.feed(mvp, jarate) == [MessageOutcome.ACKED, MessageOutcome.ACKED]

    mvp_event, jarate_event = harness.storage.events[1], harness.storage.events[2]
    assert mvp_event.event_type == "mvp1"
    assert mvp_event.payload["player"]["steam_id"] == "1"
    assert mvp_event.payload["attributes"] == {"fields": ["score|42"]}
    assert jarate_event.event_type == "jarate"
    assert jarate_event.payload["attributes"]["victim"]["name"] == "Alice"
    assert jarate_event.processed
    assert harness.storage.players == {}
    assert harness.storage.matches == {}


class FlakyAckChannel(InMemoryChannel):
    """Drops the broker connection while acknowledging kills."""

    def __init__(self) -> None:
        super().__init__()
        self.failed_acks = 0

    async def ack(self, message: Message) -> None:
        await super().ack(message)
        if message.topic == EventKind.KILL.topic:
            self.failed_acks += 1
            raise ConnectionError("broker connection reset")


def test_failed_ack_does_not_stop_the_consumers() -> None:
    async def scenario() -> tuple[PipelineCoordinator, FlakyAckChannel, bool]:
        storage = MemoryStorage()
        channel = FlakyAckChannel()
        coordinator = PipelineCoordinator(channel, storage, poll_interval=0.01)
        shutdown = asyncio.Event()
        runner = asyncio.create_task(coordinator.run(shutdown))

        for line in (RED_KILL, START, ASSISTED_KILL):
            await publish_line(channel, line, "test")
            while not channel.is_idle():
                await asyncio.sleep(0.01)
        # Let any consumer failure propagate through run() before checking it.
        await asyncio.sleep(0.05)
        still_running = not runner.done()

        shutdown.set()
        await asyncio.wait_for(runner, timeout=5)
        return coordinator, channel, still_running

    coordinator, channel, still_running = asyncio.run(scenario())
    assert still_running
    assert channel.failed_acks == 2
    assert coordinator.stats.acked == 1

    storage = coordinator.storage
    assert isinstance(storage, MemoryStorage)
    assert len(storage.kills) == 2
    match = storage.get_open_match(SERVER)
    assert match is not None
    assert match.map_name == "koth_product"


def test_concurrent_match_ends_sharing_a_player_rate_consistently() -> None:
    other_server = "10.0.0.2"

    async def scenario() -> MemoryStorage:
        storage = MemoryStorage()
        channel = InMemoryChannel()
        coordinator = PipelineCoordinator(channel, storage, poll_interval=0.01)
        shutdown = asyncio.Event()
        runner = asyncio.create_task(coordinator.run(shutdown))

        async def publish_all(*lines: str) -> None:
            for line in lines:
                await publish_line(channel, line, "test")
            while not channel.is_idle():
                await asyncio.sleep(0.01)

        await publish_all(START, f"ROUND_START|{TS}|default|{other_server}|pl_upward")
        await publish_all(
            RED_KILL,
            f"KILL|{TS + 60}|default|{other_server}|1|Alice|5|Eve|scattergun|0|0|2|3",
        )
        # MATCH_END and ROUND_END are separate topics, so both closes run at once.
        await publish_all(RED_WIN, f"ROUND_END|{TS + 600}|default|{other_server}|2|600")

        shutdown.set()
        await asyncio.wait_for(runner, timeout=5)
        return storage

    storage = asyncio.run(scenario())
    assert all(not match.is_open and match.rated for match in storage.matches.values())

    alice = storage.get_player_by_steam_id("1")
    bob = storage.get_player_by_steam_id("2")
    eve = storage.get_player_by_steam_id("5")
    assert alice is not None and bob is not None and eve is not None
    # The second close sees Alice at 1025 after the first: +23 against a 1000 opponent.
    assert (alice.mmr, alice.matches_played) == (1048, 2)
    assert sorted([bob.mmr, eve.mmr]) == [975, 977]

    alice_rows = [
        participant
        for (_, player_id), participant in storage.participants.items()
        if player_id == alice.id
    ]
    assert sorted(row.mmr_before for row in alice_rows) == [1000, 1025]
    assert sorted(row.mmr_after for row in alice_rows) == [1025, 1048]
