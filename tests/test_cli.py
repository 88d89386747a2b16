"""Tests for the CLI."""

from pathlib import Path

import orjson
import pytest
from click.testing import CliRunner

from ha_remote.cli import main


@pytest.fixture
def runner(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> CliRunner:
    monkeypatch.setenv("HA_REMOTE_CONFIG", str(tmp_path / "missing.json"))
    monkeypatch.delenv("HA_URL", raising=False)
    monkeypatch.delenv("HA_TOKEN", raising=False)
    monkeypatch.delenv("HA_REMOTE_KEY_FILE", raising=False)
    return CliRunner()


def test_validate_with_flags(runner: CliRunner) -> None:
    """Flags alone are enough to build a configuration."""
    result = runner.invoke(main, ["--base-url", "http://hub.local", "--token", "t0k", "validate"])
    assert result.exit_code == 0, result.output
    assert "Configuration is valid" in result.output


def test_missing_base_url(runner: CliRunner) -> None:
    """With neither config file nor base URL the CLI exits 1."""
    result = runner.invoke(main, ["validate"])
    assert result.exit_code == 1


def test_validate_from_file(runner: CliRunner, tmp_path: Path) -> None:
    """An explicit config file is loaded and validated."""
    path = tmp_path / "config.json"
    path.write_bytes(orjson.dumps({"hub": {"base_url": "http://hub.local"}}))
    result = runner.invoke(main, ["-c", str(path), "validate"])
    assert result.exit_code == 0, result.output


def test_bad_data_option(runner: CliRunner) -> None:
    """Non-object ``--data`` is rejected before any request is made."""
    result = runner.invoke(main, ["--base-url", "http://hub.local", "call", "light", "turn_on", "--data", "[1]"])
    assert result.exit_code == 2


def test_unreachable_hub_exits_cleanly(runner: CliRunner) -> None:
    """A network failure becomes a one-line error and exit code 1."""
    result = runner.invoke(main, ["--base-url", "http://127.0.0.1:1", "states"])
    assert result.exit_code == 1
    assert "NetworkError" in result.output
