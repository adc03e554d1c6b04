"""Match lifecycle, rating and pipeline orchestration."""

from domain.lifecycle import MatchLifecycleTracker
from domain.pipeline import DEFAULT_TOPICS, MessageOutcome, PipelineCoordinator
from domain.protocol import DeliveryChannel, MatchRecord, PlayerRecord, Storage

__all__ = [
    "DEFAULT_TOPICS",
    "DeliveryChannel",
    "MatchLifecycleTracker",
    "MatchRecord",
    "MessageOutcome",
    "PipelineCoordinator",
    "PlayerRecord",
    "Storage",
]
