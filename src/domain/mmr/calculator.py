"""Team-based MMR (Elo) logic for whole-match outcomes."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from math import floor, sqrt


@dataclass(frozen=True)
class KFactorTier:
    """K-factor used while a player has played fewer than ``max_matches`` matches.

    ``max_matches=None`` marks the open-ended final tier.
    """

    max_matches: int | None
    k_factor: float


DEFAULT_K_TIERS: tuple[KFactorTier, ...] = (
    KFactorTier(max_matches=10, k_factor=50.0),
    KFactorTier(max_matches=30, k_factor=40.0),
    KFactorTier(max_matches=100, k_factor=32.0),
    KFactorTier(max_matches=None, k_factor=24.0),
)


@dataclass(frozen=True)
class MmrParameters:
    initial_mmr: int = 1000
    scale_factor: float = 400.0
    k_tiers: tuple[KFactorTier, ...] = field(default=DEFAULT_K_TIERS)
    team_size_dampening: bool = True


class Outcome(str, Enum):
    TEAM_A_WIN = "team_a_win"
    TEAM_B_WIN = "team_b_win"


@dataclass(frozen=True)
class RosterEntry:
    """One rated participant as read from storage at match close."""

    player_id: int
    mmr: int
    matches_played: int


@dataclass(frozen=True)
class RatingChange:
    player_id: int
    pre_mmr: int
    opponent_mmr: int
    expected_score: float
    actual_score: float
    k_factor: float
    team_factor: float
    change: float
    post_mmr: int

    @property
    def delta(self) -> int:
        return self.post_mmr - self.pre_mmr


def calculate_expected_score(rating: float, opponent_rating: float, scale_factor: float = 400.0) -> float:
    """Compute the Elo expected score for one side."""
    return 1.0 / (1.0 + 10.0 ** ((opponent_rating - rating) / scale_factor))


def k_factor_for_experience(
    matches_played: int,
    k_tiers: Sequence[KFactorTier] = DEFAULT_K_TIERS,
) -> float:
    """Return the K-factor for a player with ``matches_played`` rated matches."""
    for tier in k_tiers:
        if tier.max_matches is None or matches_played < tier.max_matches:
            return tier.k_factor
    return k_tiers[-1].k_factor


def team_factor(team_size: int, *, dampening: bool = True) -> float:
    """Scale individual changes down for larger teams."""
    if not dampening or team_size <= 1:
        return 1.0
    return 1.0 / sqrt(team_size)


def average_mmr(roster: Sequence[RosterEntry]) -> int:
    """Average rating of a roster, truncated toward zero."""
    if not roster:
        return 0
    return int(sum(entry.mmr for entry in roster) / len(roster))


def _round_half_away(value: float) -> int:
    # Only called with non-negative values.
    return int(floor(value + 0.5))


class MmrCalculator:
    """Stateless calculator for one rated match between two rosters."""

    def __init__(self, params: MmrParameters | None = None) -> None:
        self.params = params or MmrParameters()

    def _rate_side(
        self,
        roster: Sequence[RosterEntry],
        *,
        opponent_mmr: int,
        actual_score: float,
    ) -> list[RatingChange]:
        factor = team_factor(len(roster), dampening=self.params.team_size_dampening)
        changes: list[RatingChange] = []
        for entry in roster:
            expected = calculate_expected_score(entry.mmr, opponent_mmr, self.params.scale_factor)
            k_factor = k_factor_for_experience(entry.matches_played, self.params.k_tiers)
            change = k_factor * (actual_score - expected) * factor
            changes.append(
                RatingChange(
                    player_id=entry.player_id,
                    pre_mmr=entry.mmr,
                    opponent_mmr=opponent_mmr,
                    expected_score=expected,
                    actual_score=actual_score,
                    k_factor=k_factor,
                    team_factor=factor,
                    change=change,
                    post_mmr=_round_half_away(max(0.0, entry.mmr + change)),
                )
            )
        return changes

    def rate(
        self,
        team_a: Sequence[RosterEntry],
        team_b: Sequence[RosterEntry],
        outcome: Outcome,
    ) -> tuple[list[RatingChange], list[RatingChange]]:
        """Return per-player rating changes for both rosters.

        Each player is rated against the opposing roster's average. Both
        rosters must be non-empty.
        """
        if not team_a or not team_b:
            raise ValueError("Both rosters must contain at least one player to rate a match")

        a_score = 1.0 if outcome is Outcome.TEAM_A_WIN else 0.0
        a_changes = self._rate_side(team_a, opponent_mmr=average_mmr(team_b), actual_score=a_score)
        b_changes = self._rate_side(team_b, opponent_mmr=average_mmr(team_a), actual_score=1.0 - a_score)
        return a_changes, b_changes


def rate(
    team_a: Sequence[RosterEntry],
    team_b: Sequence[RosterEntry],
    outcome: Outcome,
    params: MmrParameters | None = None,
) -> tuple[list[RatingChange], list[RatingChange]]:
    """Module-level shortcut for ``MmrCalculator(params).rate(...)``."""
    return MmrCalculator(params).rate(team_a, team_b, outcome)


__all__ = [
    "DEFAULT_K_TIERS",
    "KFactorTier",
    "MmrCalculator",
    "MmrParameters",
    "Outcome",
    "RatingChange",
    "RosterEntry",
    "average_mmr",
    "calculate_expected_score",
    "k_factor_for_experience",
    "rate",
    "team_factor",
]
