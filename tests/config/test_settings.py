"""Tests for ProxSettings — unified settings with TOML source."""

from pathlib import Path

import click
import pytest

from proxctl.config.settings import ProxSettings
from proxctl.domain.merge import DEFAULT_APPEND_PATHS


class TestProxSettingsDefaults:
    def test_all_defaults(self, tmp_path: Path) -> None:
        """With no TOML and no env vars, all fields use code defaults."""
        settings = ProxSettings.from_cli(home=tmp_path)
        assert settings.home == tmp_path
        assert settings.config_path is None
        assert settings.json_output is False
        assert settings.sync is False
        assert settings.engine.core == "verge-mihomo"
        assert settings.scripts.timeout == 3.0
        assert settings.remote.timeout == 20.0
        assert settings.merge_policy.append_paths == DEFAULT_APPEND_PATHS

    def test_frozen(self, tmp_path: Path) -> None:
        settings = ProxSettings.from_cli(home=tmp_path)
        with pytest.raises(Exception):
            settings.quiet = True  # type: ignore[misc]

    def test_home_defaults_to_cwd(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        assert ProxSettings.from_cli().home == tmp_path


class TestTomlSource:
    def test_loads_from_toml(self, tmp_path: Path) -> None:
        (tmp_path / "proxctl.toml").write_text(
            '[engine]\ncore = "verge-mihomo-alpha"\n[scripts]\ntimeout = 1.5\n'
        )
        settings = ProxSettings.from_cli(home=tmp_path)
        assert settings.engine.core == "verge-mihomo-alpha"
        assert settings.scripts.timeout == 1.5
        assert settings.engine.push_retries == 3  # default preserved
        assert settings.config_path == tmp_path / "proxctl.toml"

    def test_home_from_config_location(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        (tmp_path / "proxctl.toml").write_text("")
        child = tmp_path / "a" / "b"
        child.mkdir(parents=True)
        monkeypatch.chdir(child)
        settings = ProxSettings.from_cli()
        assert settings.home == tmp_path

    def test_explicit_config_path(self, tmp_path: Path) -> None:
        custom = tmp_path / "custom" / "my.toml"
        custom.parent.mkdir(parents=True)
        custom.write_text("[remote]\nuser_agent = \"clash-verge/v2\"\n")
        settings = ProxSettings.from_cli(config_path=str(custom), home=tmp_path)
        assert settings.remote.user_agent == "clash-verge/v2"
        assert settings.config_path == custom

    def test_merge_policy_from_toml(self, tmp_path: Path) -> None:
        (tmp_path / "proxctl.toml").write_text(
            '[merge]\nappend_paths = ["rules", "proxies"]\nreplace_paths = ["rules"]\n'
        )
        policy = ProxSettings.from_cli(home=tmp_path).merge_policy
        assert policy.appends("proxies")
        assert not policy.appends("rules")
        assert not policy.appends("dns.nameserver")

    def test_invalid_toml(self, tmp_path: Path) -> None:
        (tmp_path / "proxctl.toml").write_text("[engine\ncore = 1\n")
        with pytest.raises(click.ClickException, match="Invalid TOML"):
            ProxSettings.from_cli(home=tmp_path)


class TestPriority:
    def test_env_overrides_toml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (tmp_path / "proxctl.toml").write_text('[engine]\ncore = "verge-mihomo-alpha"\n')
        monkeypatch.setenv("PROXCTL_ENGINE__CORE", "verge-mihomo")
        settings = ProxSettings.from_cli(home=tmp_path)
        assert settings.engine.core == "verge-mihomo"

    def test_cli_flags_override_env(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("PROXCTL_QUIET", "false")
        settings = ProxSettings.from_cli(home=tmp_path, quiet=True, json_output=True)
        assert settings.quiet is True
        assert settings.json_output is True

    def test_cli_flags_override_toml(self, tmp_path: Path) -> None:
        (tmp_path / "proxctl.toml").write_text("sync = true\n")
        settings = ProxSettings.from_cli(home=tmp_path, sync=False)
        assert settings.sync is False
