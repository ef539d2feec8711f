"""Tests for the root proxctl CLI."""

from pathlib import Path

import pytest
from click.testing import CliRunner

from proxctl import __version__
from proxctl.cli import cli


def test_cli_help(cli_runner: CliRunner) -> None:
    result = cli_runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "proxctl" in result.output


def test_cli_version(cli_runner: CliRunner) -> None:
    result = cli_runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_cli_no_args(cli_runner: CliRunner) -> None:
    result = cli_runner.invoke(cli, [])
    assert result.exit_code == 0
    assert "Usage" in result.output


# --- Global flags ---


@pytest.mark.parametrize(
    "flags",
    [
        ["--json"],
        ["-q"],
        ["-v"],
        ["--log-json"],
        ["--sync"],
        ["-c", "/tmp/missing-proxctl.toml"],
    ],
)
def test_global_flags_accepted(cli_runner: CliRunner, flags: list[str]) -> None:
    result = cli_runner.invoke(cli, [*flags, "--version"])
    assert result.exit_code == 0


# --- Command groups registered ---

EXPECTED_GROUPS = ["profile", "config", "core"]
EXPECTED_COMMANDS = ["events"]


@pytest.mark.parametrize("name", EXPECTED_GROUPS + EXPECTED_COMMANDS)
def test_command_registered(name: str) -> None:
    assert name in cli.commands


@pytest.mark.parametrize("name", EXPECTED_GROUPS)
def test_groups_are_groups(name: str) -> None:
    import click

    assert isinstance(cli.commands[name], click.Group)


# --- App home ---


@pytest.mark.usefixtures("_isolated_home")
def test_home_option(cli_runner: CliRunner, tmp_path: Path) -> None:
    home = tmp_path / "elsewhere"
    result = cli_runner.invoke(
        cli, ["--home", str(home), "config", "patch", "app", "--set", "allow_lan=true"]
    )
    assert result.exit_code == 0, result.output
    assert (home / "app.yaml").exists()
    assert not (tmp_path / "app.yaml").exists()


@pytest.mark.usefixtures("_isolated_home")
def test_malformed_home_file(cli_runner: CliRunner, tmp_path: Path) -> None:
    (tmp_path / "engine.yaml").write_text("- not\n- a mapping\n")
    result = cli_runner.invoke(cli, ["config", "show", "engine"])
    assert result.exit_code == 1
    assert "Cannot load app home" in result.output


def test_help_does_not_touch_home(
    cli_runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)
    result = cli_runner.invoke(cli, ["profile", "--help"])
    assert result.exit_code == 0
    assert not (tmp_path / ".proxctl").exists()
