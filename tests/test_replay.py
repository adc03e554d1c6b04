"""Tests for decoding and replaying capture files."""

from __future__ import annotations

import asyncio

from domain.replay import decode_capture, replay_capture, replay_lines
from repositories.memory import MemoryStorage
from transport.channel import InMemoryChannel

SERVER = "10.0.0.1"
TS = 1706745600

CAPTURE = [
    b"# capture from 10.0.0.1",
    f"ROUND_START|{TS}|default|{SERVER}|koth_product".encode(),
    f"KILL|{TS + 60}|default|{SERVER}|1|Alice|2|Bob|scattergun|0|0|2|3".encode(),
    f"KILL|{TS + 90}|default|{SERVER}|2|Bob|1|Alice|rocketlauncher|0|0|3|2".encode(),
    b"garbage line",
    b"KILL|oops|default",
    f"MATCH_END|{TS + 600}|default|{SERVER}|3|600|0|1".encode(),
    b"",
]


def test_decode_capture_counts_kinds_and_errors() -> None:
    summary = decode_capture(CAPTURE)

    assert summary.lines == 8
    assert summary.decoded == 4
    assert summary.skipped == 2
    assert [error.line for error in summary.errors] == ["garbage line", "KILL|oops|default"]
    assert summary.kinds == {"round_start": 1, "kill": 2, "match_end": 1}


def test_replay_lines_routes_to_topics() -> None:
    async def scenario() -> tuple[InMemoryChannel, int, int]:
        channel = InMemoryChannel()
        summary = await replay_lines(CAPTURE, channel)
        return channel, summary.published, summary.dropped

    channel, published, dropped = asyncio.run(scenario())
    assert (published, dropped) == (5, 3)
    assert channel.pending("events.kill") == 3
    assert channel.pending("events.round_start") == 1
    assert channel.pending("events.match_end") == 1


def test_replay_capture_rates_the_match() -> None:
    storage = MemoryStorage()
    summary = asyncio.run(replay_capture(CAPTURE, storage, max_redeliveries=1, poll_interval=0.01))

    assert summary.lines == 8
    assert summary.published == 5
    assert summary.dropped == 3
    assert summary.acked == 4
    assert summary.nacked == 2
    assert summary.dead_lettered == 1
    assert summary.matches_rated == 1
    assert summary.dry_run is False

    match = storage.get_match(1)
    assert match is not None
    assert match.winner_team == 3
    assert match.rated is True
    assert match.map_name == "koth_product"

    bob = storage.get_player_by_steam_id("2")
    alice = storage.get_player_by_steam_id("1")
    assert bob is not None and alice is not None
    assert (bob.mmr, alice.mmr) == (1025, 975)


def test_unordered_replay_processes_everything() -> None:
    storage = MemoryStorage()
    summary = asyncio.run(
        replay_capture(CAPTURE[:4], storage, poll_interval=0.01, ordered=False, dry_run=True)
    )

    assert summary.published == 3
    assert summary.acked == 3
    assert summary.dry_run is True
    assert len(storage.kills) == 2
    assert len(storage.matches) == 1
