"""Tests for TOML-based MMR system config loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from domain.mmr.calculator import DEFAULT_K_TIERS, KFactorTier
from domain.mmr.config import find_mmr_system_config, load_mmr_system_configs

ROOT_DIR = Path(__file__).resolve().parents[1]


def test_load_mmr_system_configs_from_directory(tmp_path: Path) -> None:
    (tmp_path / "fast.toml").write_text(
        """
[system]
name = "fast"
description = "Quick convergence"

[mmr]
initial_mmr = 1200
scale_factor = 500.0
team_size_dampening = false

[[mmr.k_tiers]]
max_matches = 5
k_factor = 60.0

[[mmr.k_tiers]]
k_factor = 20.0
""".strip()
    )

    configs = load_mmr_system_configs(tmp_path)
    assert len(configs) == 1

    system = configs[0]
    assert system.name == "fast"
    assert system.description == "Quick convergence"
    assert system.parameters.initial_mmr == 1200
    assert system.parameters.scale_factor == pytest.approx(500.0)
    assert system.parameters.team_size_dampening is False
    assert system.parameters.k_tiers == (
        KFactorTier(max_matches=5, k_factor=60.0),
        KFactorTier(max_matches=None, k_factor=20.0),
    )
    assert system.as_config_json()["k_tiers"] == [
        {"max_matches": 5, "k_factor": 60.0},
        {"max_matches": None, "k_factor": 20.0},
    ]


def test_missing_mmr_table_uses_defaults(tmp_path: Path) -> None:
    (tmp_path / "plain.toml").write_text('[system]\nname = "plain"\n')

    system = load_mmr_system_configs(tmp_path)[0]
    assert system.description is None
    assert system.parameters.initial_mmr == 1000
    assert system.parameters.k_tiers == DEFAULT_K_TIERS


def test_repository_default_config_matches_builtin_parameters() -> None:
    system = find_mmr_system_config(ROOT_DIR / "configs" / "mmr", "default")
    assert system.parameters.initial_mmr == 1000
    assert system.parameters.scale_factor == pytest.approx(400.0)
    assert system.parameters.k_tiers == DEFAULT_K_TIERS


def test_duplicate_system_names_are_rejected(tmp_path: Path) -> None:
    (tmp_path / "a.toml").write_text('[system]\nname = "same"\n')
    (tmp_path / "b.toml").write_text('[system]\nname = "same"\n')

    with pytest.raises(ValueError, match="Duplicate mmr system names"):
        load_mmr_system_configs(tmp_path)


def test_find_unknown_system_raises(tmp_path: Path) -> None:
    (tmp_path / "a.toml").write_text('[system]\nname = "a"\n')

    with pytest.raises(ValueError, match="No mmr system named 'b'"):
        find_mmr_system_config(tmp_path, "b")


def test_missing_or_empty_directory(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_mmr_system_configs(tmp_path / "missing")

    file_path = tmp_path / "file.toml"
    file_path.write_text("")
    with pytest.raises(NotADirectoryError):
        load_mmr_system_configs(file_path)

    empty = tmp_path / "empty"
    empty.mkdir()
    with pytest.raises(ValueError, match="No .toml config files"):
        load_mmr_system_configs(empty)


@pytest.mark.parametrize(
    ("body", "fragment"),
    [
        ("[mmr]\ninitial_mmr = 0\n", "initial_mmr must be > 0"),
        ("[mmr]\nscale_factor = -1.0\n", "scale_factor must be > 0"),
        ("[mmr]\nk_tiers = []\n", "non-empty array"),
        ("[[mmr.k_tiers]]\nmax_matches = 5\n", "requires k_factor"),
        ("[[mmr.k_tiers]]\nmax_matches = 5\nk_factor = 30.0\n", "must omit max_matches"),
        (
            "[[mmr.k_tiers]]\nk_factor = 30.0\n\n[[mmr.k_tiers]]\nk_factor = 20.0\n",
            "only the last",
        ),
        (
            "[[mmr.k_tiers]]\nmax_matches = 10\nk_factor = 30.0\n\n"
            "[[mmr.k_tiers]]\nmax_matches = 10\nk_factor = 20.0\n\n"
            "[[mmr.k_tiers]]\nk_factor = 10.0\n",
            "strictly increasing",
        ),
        (
            "[[mmr.k_tiers]]\nmax_matches = 10\nk_factor = 20.0\n\n"
            "[[mmr.k_tiers]]\nk_factor = 30.0\n",
            "must not increase",
        ),
        ("[[mmr.k_tiers]]\nk_factor = 0.0\n", "k_factor must be > 0"),
    ],
)
def test_invalid_parameters_are_rejected(tmp_path: Path, body: str, fragment: str) -> None:
    (tmp_path / "bad.toml").write_text(f'[system]\nname = "bad"\n\n{body}')

    with pytest.raises(ValueError, match=fragment):
        load_mmr_system_configs(tmp_path)


def test_system_name_is_required(tmp_path: Path) -> None:
    (tmp_path / "nameless.toml").write_text("[mmr]\ninitial_mmr = 1000\n")

    with pytest.raises(ValueError, match=r"\[system\]\.name is required"):
        load_mmr_system_configs(tmp_path)
