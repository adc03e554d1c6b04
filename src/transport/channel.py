"""In-process at-least-once topic channel and publish-side routing."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from telemetry.decoder import COMMENT_PREFIX, sniff_kind
from telemetry.schema import EventKind
from transport.message import Message, new_message_id

if TYPE_CHECKING:
    from domain.protocol import DeliveryChannel

logger = logging.getLogger(__name__)

DEFAULT_MAX_REDELIVERIES = 5


class InMemoryChannel:
    """One FIFO queue per topic with ack/nack and a dead-letter list.

    A nacked message goes back to the end of its topic queue with its
    ``attempt`` incremented. Once a message has been redelivered
    ``max_redeliveries`` times, a further nack moves it to ``dead_letters``.
    """

    def __init__(self, *, max_redeliveries: int = DEFAULT_MAX_REDELIVERIES) -> None:
        if max_redeliveries < 0:
            raise ValueError("max_redeliveries must be >= 0")
        self.max_redeliveries = max_redeliveries
        self.dead_letters: list[Message] = []
        self.acked_count = 0
        self._queues: dict[str, asyncio.Queue[Message]] = {}
        self._in_flight: dict[str, Message] = {}

    def _queue(self, topic: str) -> asyncio.Queue[Message]:
        queue = self._queues.get(topic)
        if queue is None:
            queue = asyncio.Queue()
            self._queues[topic] = queue
        return queue

    async def publish(self, topic: str, payload: bytes, metadata: dict[str, Any] | None = None) -> Message:
        message = Message(
            id=new_message_id(),
            topic=topic,
            payload=payload,
            metadata=dict(metadata or {}),
        )
        self._queue(topic).put_nowait(message)
        return message

    async def receive(self, topic: str, timeout: float) -> Message | None:
        """Next message on ``topic``, or ``None`` after ``timeout`` seconds."""
        try:
            message = await asyncio.wait_for(self._queue(topic).get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        self._in_flight[message.id] = message
        return message

    async def ack(self, message: Message) -> None:
        self._in_flight.pop(message.id, None)
        self.acked_count += 1

    async def nack(self, message: Message) -> None:
        self._in_flight.pop(message.id, None)
        if message.attempt > self.max_redeliveries:
            logger.warning(
                "Dead-lettering message id=%s topic=%s after %s attempts",
                message.id,
                message.topic,
                message.attempt,
            )
            self.dead_letters.append(message)
            return
        self._queue(message.topic).put_nowait(message.redelivery())

    def pending(self, topic: str | None = None) -> int:
        """Queued plus in-flight messages, for one topic or all of them."""
        if topic is not None:
            in_flight = sum(1 for message in self._in_flight.values() if message.topic == topic)
            queue = self._queues.get(topic)
            return in_flight + (0 if queue is None else queue.qsize())
        return len(self._in_flight) + sum(queue.qsize() for queue in self._queues.values())

    def is_idle(self) -> bool:
        return self.pending() == 0


async def publish_line(
    channel: DeliveryChannel,
    raw: bytes | str,
    source: str,
    *,
    received_at: datetime | None = None,
) -> Message | None:
    """Route one wire line to ``events.<kind>``; unroutable lines are dropped."""
    kind = sniff_kind(raw)
    if kind is None:
        text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
        stripped = text.strip()
        if stripped and not stripped.startswith(COMMENT_PREFIX):
            logger.warning("Dropping line from %s without a routable event kind: %.120r", source, stripped)
        return None

    payload = raw.encode("utf-8") if isinstance(raw, str) else raw
    metadata = {
        "event_kind": kind,
        "source_address": source,
        "received_at": (received_at or datetime.now(UTC)).isoformat(),
    }
    return await channel.publish(EventKind(kind).topic, payload, metadata)


__all__ = ["DEFAULT_MAX_REDELIVERIES", "InMemoryChannel", "publish_line"]
