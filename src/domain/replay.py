"""Feed recorded capture files through the pipeline."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from domain.mmr.calculator import MmrParameters
from domain.pipeline import PipelineCoordinator
from domain.protocol import Storage
from telemetry.decoder import decode
from telemetry.errors import DecodeError
from transport.channel import InMemoryChannel, publish_line

logger = logging.getLogger(__name__)

REPLAY_SOURCE = "replay"
IDLE_CHECK_INTERVAL = 0.005


@dataclass(frozen=True)
class ReplaySummary:
    """Outcome of replaying one capture."""

    lines: int
    published: int
    dropped: int
    acked: int = 0
    skipped: int = 0
    nacked: int = 0
    dead_lettered: int = 0
    matches_rated: int = 0
    dry_run: bool = False


@dataclass
class DecodeSummary:
    lines: int = 0
    decoded: int = 0
    skipped: int = 0
    errors: list[DecodeError] = field(default_factory=list)
    kinds: Counter[str] = field(default_factory=Counter)


def decode_capture(lines: Iterable[bytes | str]) -> DecodeSummary:
    """Decode every line without touching storage."""
    summary = DecodeSummary()
    for raw in lines:
        summary.lines += 1
        try:
            event = decode(raw)
        except DecodeError as exc:
            summary.errors.append(exc)
            continue
        if event is None:
            summary.skipped += 1
            continue
        summary.decoded += 1
        summary.kinds[event.kind.value] += 1
    return summary


async def replay_lines(
    lines: Iterable[bytes | str],
    channel: InMemoryChannel,
    *,
    source: str = REPLAY_SOURCE,
) -> ReplaySummary:
    """Publish every capture line to its topic."""
    total = 0
    published = 0
    for raw in lines:
        total += 1
        if await publish_line(channel, raw, source) is not None:
            published += 1
    return ReplaySummary(lines=total, published=published, dropped=total - published)


async def _wait_until_idle(channel: InMemoryChannel) -> None:
    while not channel.is_idle():
        await asyncio.sleep(IDLE_CHECK_INTERVAL)


async def replay_capture(
    lines: Iterable[bytes | str],
    storage: Storage,
    *,
    parameters: MmrParameters | None = None,
    max_redeliveries: int = 1,
    poll_interval: float = 0.05,
    ordered: bool = True,
    dry_run: bool = False,
    echo: Callable[[str], None] | None = None,
) -> ReplaySummary:
    """Run a capture through a fresh in-memory channel and coordinator.

    With ``ordered`` each line is fully processed before the next one is
    published, which keeps capture order across topics.
    """
    channel = InMemoryChannel(max_redeliveries=max_redeliveries)
    coordinator = PipelineCoordinator(
        channel,
        storage,
        parameters=parameters,
        poll_interval=poll_interval,
    )
    shutdown = asyncio.Event()
    runner = asyncio.create_task(coordinator.run(shutdown))

    total = 0
    published = 0
    try:
        if ordered:
            for raw in lines:
                total += 1
                if await publish_line(channel, raw, REPLAY_SOURCE) is not None:
                    published += 1
                    await _wait_until_idle(channel)
                if echo is not None and total % 10_000 == 0:
                    echo(f"replayed_lines={total} published={published}")
        else:
            publish_summary = await replay_lines(lines, channel)
            total = publish_summary.lines
            published = publish_summary.published
            await _wait_until_idle(channel)
    finally:
        shutdown.set()
        await runner

    stats = coordinator.stats
    summary = ReplaySummary(
        lines=total,
        published=published,
        dropped=total - published,
        acked=stats.acked,
        skipped=stats.skipped,
        nacked=stats.nacked,
        dead_lettered=len(channel.dead_letters),
        matches_rated=stats.matches_rated,
        dry_run=dry_run,
    )
    logger.info("Replay finished %s", summary)
    return summary


__all__ = [
    "DecodeSummary",
    "ReplaySummary",
    "decode_capture",
    "replay_capture",
    "replay_lines",
]
