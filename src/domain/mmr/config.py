"""Load MMR system definitions from TOML files."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any
import tomllib

from domain.mmr.calculator import DEFAULT_K_TIERS, KFactorTier, MmrParameters


@dataclass(frozen=True)
class MmrSystemConfig:
    """One named MMR system loaded from ``configs/mmr/*.toml``."""

    name: str
    description: str | None
    file_path: Path
    parameters: MmrParameters

    def as_config_json(self) -> dict[str, Any]:
        return {
            "initial_mmr": self.parameters.initial_mmr,
            "scale_factor": self.parameters.scale_factor,
            "team_size_dampening": self.parameters.team_size_dampening,
            "k_tiers": [
                {"max_matches": tier.max_matches, "k_factor": tier.k_factor}
                for tier in self.parameters.k_tiers
            ],
        }


def load_mmr_system_configs(config_dir: Path) -> list[MmrSystemConfig]:
    """Load and validate all MMR system TOML config files in a directory."""
    if not config_dir.exists():
        raise FileNotFoundError(f"Config directory not found: {config_dir}")
    if not config_dir.is_dir():
        raise NotADirectoryError(f"Config path is not a directory: {config_dir}")

    config_files = sorted(config_dir.glob("*.toml"))
    if not config_files:
        raise ValueError(f"No .toml config files found in: {config_dir}")

    systems: list[MmrSystemConfig] = []
    for file_path in config_files:
        with file_path.open("rb") as file:
            raw = tomllib.load(file)
        systems.append(_parse_mmr_system_config(raw, file_path))

    names = [system.name for system in systems]
    if len(names) != len(set(names)):
        raise ValueError(f"Duplicate mmr system names found in {config_dir}: {names}")

    return systems


def find_mmr_system_config(config_dir: Path, name: str) -> MmrSystemConfig:
    """Return the system called ``name`` from ``config_dir``."""
    for system in load_mmr_system_configs(config_dir):
        if system.name == name:
            return system
    raise ValueError(f"No mmr system named '{name}' found in {config_dir}")


def _parse_mmr_system_config(raw: dict[str, Any], file_path: Path) -> MmrSystemConfig:
    system_raw = raw.get("system", {})
    mmr_raw = raw.get("mmr", {})

    name = str(system_raw.get("name", "")).strip()
    if not name:
        raise ValueError(f"{file_path}: [system].name is required")

    description_value = system_raw.get("description")
    description = None if description_value is None else str(description_value)

    tiers_raw = mmr_raw.get("k_tiers")
    k_tiers = DEFAULT_K_TIERS if tiers_raw is None else _parse_k_tiers(tiers_raw, file_path)

    parameters = MmrParameters(
        initial_mmr=int(mmr_raw.get("initial_mmr", 1000)),
        scale_factor=float(mmr_raw.get("scale_factor", 400.0)),
        k_tiers=k_tiers,
        team_size_dampening=bool(mmr_raw.get("team_size_dampening", True)),
    )
    _validate_parameters(file_path=file_path, parameters=parameters)

    return MmrSystemConfig(
        name=name,
        description=description,
        file_path=file_path,
        parameters=parameters,
    )


def _parse_k_tiers(tiers_raw: Any, file_path: Path) -> tuple[KFactorTier, ...]:
    if not isinstance(tiers_raw, list) or not tiers_raw:
        raise ValueError(f"{file_path}: [[mmr.k_tiers]] must be a non-empty array of tables")

    tiers: list[KFactorTier] = []
    for index, tier_raw in enumerate(tiers_raw):
        if not isinstance(tier_raw, dict) or "k_factor" not in tier_raw:
            raise ValueError(f"{file_path}: [[mmr.k_tiers]] entry {index} requires k_factor")
        max_matches = tier_raw.get("max_matches")
        tiers.append(
            KFactorTier(
                max_matches=None if max_matches is None else int(max_matches),
                k_factor=float(tier_raw["k_factor"]),
            )
        )
    return tuple(tiers)


def _validate_parameters(*, file_path: Path, parameters: MmrParameters) -> None:
    if parameters.initial_mmr <= 0:
        raise ValueError(f"{file_path}: [mmr].initial_mmr must be > 0")
    if parameters.scale_factor <= 0.0:
        raise ValueError(f"{file_path}: [mmr].scale_factor must be > 0")

    tiers = parameters.k_tiers
    if tiers[-1].max_matches is not None:
        raise ValueError(f"{file_path}: the last [[mmr.k_tiers]] entry must omit max_matches")
    previous_bound = 0
    previous_k: float | None = None
    for index, tier in enumerate(tiers):
        if tier.k_factor <= 0.0:
            raise ValueError(f"{file_path}: [[mmr.k_tiers]].k_factor must be > 0")
        if previous_k is not None and tier.k_factor > previous_k:
            raise ValueError(f"{file_path}: [[mmr.k_tiers]].k_factor must not increase")
        previous_k = tier.k_factor
        if index == len(tiers) - 1:
            continue
        if tier.max_matches is None:
            raise ValueError(f"{file_path}: only the last [[mmr.k_tiers]] entry may omit max_matches")
        if tier.max_matches <= previous_bound:
            raise ValueError(f"{file_path}: [[mmr.k_tiers]].max_matches must be strictly increasing")
        previous_bound = tier.max_matches


__all__ = ["MmrSystemConfig", "find_mmr_system_config", "load_mmr_system_configs"]
