"""Tests for the replay CLI script."""

from __future__ import annotations

import importlib.util
import sys
from pathlib import Path

import pytest
from typer.testing import CliRunner

ROOT_DIR = Path(__file__).resolve().parents[1]
SCRIPT_PATH = ROOT_DIR / "scripts" / "run_pipeline.py"

SERVER = "10.0.0.1"
TS = 1706745600


@pytest.fixture(scope="module")
def cli():
    spec = importlib.util.spec_from_file_location("run_pipeline", SCRIPT_PATH)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    sys.modules[spec.name] = module
    spec.loader.exec_module(module)
    yield module
    sys.modules.pop(spec.name, None)


def test_default_config_dir_is_the_repository_configs(cli) -> None:
    assert cli.DEFAULT_CONFIG_DIR == ROOT_DIR / "configs" / "mmr"
    assert (cli.DEFAULT_CONFIG_DIR / "default.toml").is_file()


def test_dry_run_replay_from_another_working_directory(cli, tmp_path: Path, monkeypatch) -> None:
    capture = tmp_path / "capture.log"
    capture.write_text(
        "\n".join(
            [
                f"ROUND_START|{TS}|default|{SERVER}|koth_product",
                f"KILL|{TS + 60}|default|{SERVER}|1|Alice|2|Bob|scattergun|0|0|2|3",
                f"MATCH_END|{TS + 600}|default|{SERVER}|2|600",
            ]
        )
    )
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(
        cli.app,
        ["replay", str(capture), "--dry-run", "--poll-interval", "0.01"],
    )

    assert result.exit_code == 0, result.output
    assert "system=default" in result.output
    assert "matches_rated=1" in result.output


def test_missing_config_dir_is_a_usage_error(cli, tmp_path: Path) -> None:
    capture = tmp_path / "capture.log"
    capture.write_text("")

    result = CliRunner().invoke(
        cli.app,
        ["replay", str(capture), "--dry-run", "--config-dir", str(tmp_path / "missing")],
    )

    assert result.exit_code != 0
