"""Delivery channel plumbing between the collector and the pipeline."""

from transport.channel import InMemoryChannel, publish_line
from transport.message import Message

__all__ = ["InMemoryChannel", "Message", "publish_line"]
