"""Pydantic configuration models with code-baked defaults.

Sparse TOML contract: defaults baked here, ``proxctl.toml`` only contains
overrides. The ``app`` domain model (:class:`AppConfig`) lives here too;
it is persisted to ``app.yaml`` and committed through the store.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from proxctl.domain.merge import DEFAULT_APPEND_PATHS

DEFAULT_CORES: tuple[str, ...] = ("verge-mihomo", "verge-mihomo-alpha")

# --- proxctl.toml sections ---


class EngineConfig(BaseModel):
    """[engine] section."""

    model_config = {"frozen": True}

    core: str = DEFAULT_CORES[0]
    cores: tuple[str, ...] = DEFAULT_CORES
    binary_dir: str | None = None
    startup_grace: float = 0.5
    push_retries: int = 3
    check_timeout: float = 30.0


class ScriptsConfig(BaseModel):
    """[scripts] section."""

    model_config = {"frozen": True}

    timeout: float = 3.0


class RemoteConfig(BaseModel):
    """[remote] section."""

    model_config = {"frozen": True}

    timeout: float = 20.0
    user_agent: str = "proxctl/0.1"


class MergeConfig(BaseModel):
    """[merge] section."""

    model_config = {"frozen": True}

    append_paths: tuple[str, ...] = tuple(sorted(DEFAULT_APPEND_PATHS))
    replace_paths: tuple[str, ...] = ()


# --- app domain (app.yaml) ---


class AppConfig(BaseModel):
    """Operational settings injected by the final-adjustment layer.

    User profiles can never override these; the pipeline applies them last.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    core: str = DEFAULT_CORES[0]
    mixed_port: int = Field(default=7897, ge=1, le=65535)
    socks_port: int | None = Field(default=None, ge=1, le=65535)
    port: int | None = Field(default=None, ge=1, le=65535)
    allow_lan: bool = False
    external_controller: str = "127.0.0.1:9097"
    tun_enable: bool = False
    tun_stack: Literal["system", "gvisor", "mixed"] = "gvisor"
    interface_name: str | None = None

    @field_validator("external_controller")
    @classmethod
    def _host_port(cls, value: str) -> str:
        host, sep, port = value.rpartition(":")
        if not sep or not host or not port.isdigit():
            msg = f"external_controller must look like host:port, got {value!r}"
            raise ValueError(msg)
        return value


# --- engine-facing document shape ---


class RuntimeDocumentSchema(BaseModel):
    """Type checks for the keys proxctl and the engine both rely on.

    Unknown keys pass through untouched; only the listed ones are typed.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    mixed_port: int | None = Field(default=None, alias="mixed-port")
    socks_port: int | None = Field(default=None, alias="socks-port")
    port: int | None = None
    allow_lan: bool | None = Field(default=None, alias="allow-lan")
    mode: str | None = None
    log_level: str | None = Field(default=None, alias="log-level")
    external_controller: str | None = Field(default=None, alias="external-controller")
    proxies: list[dict[str, Any]] | None = None
    proxy_groups: list[dict[str, Any]] | None = Field(default=None, alias="proxy-groups")
    rules: list[str] | None = None
    dns: dict[str, Any] | None = None
    tun: dict[str, Any] | None = None
