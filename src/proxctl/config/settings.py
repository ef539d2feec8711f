"""Unified settings — CLI flags, env vars, and TOML config in one object.

Priority chain (highest to lowest):
  1. Init kwargs  — CLI flags passed by Click
  2. Env vars     — ``PROXCTL_*`` prefix
  3. TOML file    — ``proxctl.toml`` discovered via walk-up
  4. Code defaults — baked into the section models
"""

from __future__ import annotations

import threading
import tomllib
from pathlib import Path
from typing import Any

import click
from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from proxctl.config.discovery import find_config
from proxctl.config.models import EngineConfig, MergeConfig, RemoteConfig, ScriptsConfig
from proxctl.domain.merge import MergePolicy


class TomlSettingsSource(PydanticBaseSettingsSource):
    """Read settings from a ``proxctl.toml`` file discovered via walk-up."""

    def __init__(self, settings_cls: type[BaseSettings], toml_path: Path | None) -> None:
        super().__init__(settings_cls)
        self._data: dict[str, Any] = {}
        if toml_path and toml_path.is_file():
            raw = toml_path.read_text(encoding="utf-8")
            try:
                self._data = tomllib.loads(raw)
            except tomllib.TOMLDecodeError as exc:
                msg = f"Invalid TOML in {toml_path}: {exc}"
                raise click.ClickException(msg) from exc

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        val = self._data.get(field_name)
        return val, field_name, field_name in self._data

    def __call__(self) -> dict[str, Any]:
        return self._data


# Thread-local storage for TOML path during construction.
_tls = threading.local()


class ProxSettings(BaseSettings):
    """Unified settings for the proxctl CLI.

    Attributes:
        home: App home directory (parent of ``proxctl.toml``, or CWD if
            no config was found).
        config_path: The TOML file that was loaded, if any.
    """

    model_config = {
        "frozen": True,
        "env_prefix": "PROXCTL_",
        "env_nested_delimiter": "__",
    }

    home: Path = Field(default_factory=Path.cwd)
    config_path: Path | None = None

    # --- CLI flags ---
    json_output: bool = False
    quiet: bool = False
    verbose: bool = False
    log_json: bool = False
    sync: bool = False

    # --- TOML sections ---
    engine: EngineConfig = Field(default_factory=EngineConfig)
    scripts: ScriptsConfig = Field(default_factory=ScriptsConfig)
    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    merge: MergeConfig = Field(default_factory=MergeConfig)

    @property
    def merge_policy(self) -> MergePolicy:
        return MergePolicy.from_lists(self.merge.append_paths, self.merge.replace_paths)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Insert TOML source between env vars and defaults."""
        toml_path = getattr(_tls, "toml_path", None)
        return (
            init_settings,
            env_settings,
            TomlSettingsSource(settings_cls, toml_path),
        )

    @classmethod
    def from_cli(
        cls,
        *,
        config_path: str | None = None,
        home: Path | None = None,
        **cli_flags: Any,
    ) -> ProxSettings:
        """Construct settings from a CLI invocation.

        Discovers ``proxctl.toml`` via walk-up (or explicit *config_path*),
        resolves *home* from the config file's parent directory, and merges
        CLI flags as highest-priority overrides.
        """
        toml_path: Path | None = None
        if config_path:
            p = Path(config_path)
            if p.is_file():
                toml_path = p
        else:
            toml_path = find_config(home)

        resolved_home = home
        if resolved_home is None:
            resolved_home = toml_path.parent if toml_path else Path.cwd()

        _tls.toml_path = toml_path
        try:
            return cls(home=resolved_home, config_path=toml_path, **cli_flags)
        finally:
            _tls.toml_path = None
