"""ORM models."""

from models.base import Base
from models.combat import Airshot, Deflect, Kill
from models.match import Match
from models.match_player import MatchPlayer
from models.player import Player
from models.raw_event import RawEvent

__all__ = [
    "Airshot",
    "Base",
    "Deflect",
    "Kill",
    "Match",
    "MatchPlayer",
    "Player",
    "RawEvent",
]
