"""Tests for per-server match lifecycle tracking."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from domain.lifecycle import (
    BLU,
    NO_DECISION,
    RED,
    MatchLifecycleTracker,
    duration_seconds,
    is_decisive,
    opposing_side,
)
from repositories.memory import MemoryStorage

SERVER = "10.0.0.1"
T0 = datetime(2024, 2, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(T0)


@pytest.fixture
def tracker(storage: MemoryStorage, clock: FakeClock) -> MatchLifecycleTracker:
    return MatchLifecycleTracker(storage, clock=clock)


def test_side_helpers() -> None:
    assert opposing_side(RED) == BLU
    assert opposing_side(BLU) == RED
    assert opposing_side(1) is None
    assert is_decisive(RED)
    assert not is_decisive(NO_DECISION)
    assert duration_seconds(T0, T0 + timedelta(seconds=90.9)) == 90
    assert duration_seconds(T0, T0 - timedelta(seconds=5)) == 0


def test_gameplay_event_implicitly_opens_match(tracker: MatchLifecycleTracker, storage: MemoryStorage) -> None:
    match = asyncio.run(tracker.get_or_open_match(SERVER, "koth"))

    assert match.is_open
    assert match.started_at == T0
    assert match.gamemode == "koth"
    assert match.map_name is None
    assert storage.get_open_match(SERVER) == match


def test_concurrent_opens_share_one_match(tracker: MatchLifecycleTracker, storage: MemoryStorage) -> None:
    async def scenario() -> list[int]:
        matches = await asyncio.gather(*(tracker.get_or_open_match(SERVER, "koth") for _ in range(10)))
        return [match.id for match in matches]

    assert set(asyncio.run(scenario())) == {1}
    assert len(storage.matches) == 1


def test_servers_are_tracked_independently(tracker: MatchLifecycleTracker) -> None:
    async def scenario() -> tuple[int, int]:
        first = await tracker.get_or_open_match(SERVER, None)
        second = await tracker.get_or_open_match("10.0.0.2", None)
        return first.id, second.id

    first_id, second_id = asyncio.run(scenario())
    assert first_id != second_id


def test_start_refreshes_open_match_info(tracker: MatchLifecycleTracker, storage: MemoryStorage) -> None:
    async def scenario() -> None:
        await tracker.open_match(SERVER, "cp_process", "default", T0)
        await tracker.open_match(SERVER, "cp_gullywash", None, T0 + timedelta(minutes=1))

    asyncio.run(scenario())

    assert len(storage.matches) == 1
    match = storage.get_open_match(SERVER)
    assert match is not None
    assert match.map_name == "cp_gullywash"
    assert match.gamemode == "default"
    assert match.started_at == T0


def test_close_records_duration_and_is_idempotent(
    tracker: MatchLifecycleTracker, storage: MemoryStorage, clock: FakeClock
) -> None:
    async def scenario() -> tuple[bool, bool]:
        match = await tracker.open_match(SERVER, "koth_product", "koth", T0)
        clock.advance(1800)
        first = await tracker.close_match(match, RED, rated=True, red_score=3, blu_score=1)
        second = await tracker.close_match(match, BLU, rated=False)
        return first, second

    assert asyncio.run(scenario()) == (True, False)

    closed = storage.get_match(1)
    assert closed is not None
    assert not closed.is_open
    assert closed.duration_seconds == 1800
    assert closed.winner_team == RED
    assert closed.rated is True
    assert closed.red_score == 3
    assert storage.get_open_match(SERVER) is None


def test_stray_end_returns_none(tracker: MatchLifecycleTracker) -> None:
    assert asyncio.run(tracker.end_open_match(SERVER)) is None


def test_late_event_is_attributed_to_last_closed_match(
    tracker: MatchLifecycleTracker, storage: MemoryStorage, clock: FakeClock
) -> None:
    end_event_at = T0 + timedelta(minutes=30)

    async def scenario() -> tuple[int, int]:
        match = await tracker.open_match(SERVER, "koth_product", "koth", T0)
        clock.advance(1800)
        await tracker.close_match(match, RED, rated=True, end_event_at=end_event_at)
        late = await tracker.match_for_event(SERVER, "koth", end_event_at - timedelta(seconds=2))
        fresh = await tracker.match_for_event(SERVER, "koth", end_event_at + timedelta(seconds=2))
        return late.id, fresh.id

    late_id, fresh_id = asyncio.run(scenario())

    assert late_id == 1
    assert fresh_id == 2
    assert len(storage.matches) == 2
