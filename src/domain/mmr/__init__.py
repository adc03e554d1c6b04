"""MMR rating engine and its TOML configuration."""

from domain.mmr.calculator import (
    KFactorTier,
    MmrCalculator,
    MmrParameters,
    Outcome,
    RatingChange,
    RosterEntry,
    calculate_expected_score,
    k_factor_for_experience,
    rate,
)
from domain.mmr.config import MmrSystemConfig, load_mmr_system_configs

__all__ = [
    "KFactorTier",
    "MmrCalculator",
    "MmrParameters",
    "MmrSystemConfig",
    "Outcome",
    "RatingChange",
    "RosterEntry",
    "calculate_expected_score",
    "k_factor_for_experience",
    "load_mmr_system_configs",
    "rate",
]
