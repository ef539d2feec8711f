"""Shared pytest fixtures and test helpers for proxctl tests."""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner

from proxctl.config.settings import ProxSettings
from proxctl.infrastructure.engine import EngineError, Rendering
from proxctl.infrastructure.workspace import Workspace

# ---------------------------------------------------------------------------
# Engine double
# ---------------------------------------------------------------------------


class FakeEngine:
    """Records every check and push; can be told to refuse either.

    ``reject_check`` / ``reject_push`` are error messages: while set, the
    call raises :class:`EngineError`. ``reject_pushes`` refuses only the
    next N pushes (a rejection followed by an accepted restore).
    ``reject_when`` refuses any check whose text contains it.
    """

    def __init__(self) -> None:
        self.checks: list[Rendering] = []
        self.pushes: list[Rendering] = []
        self.reject_check: str | None = None
        self.reject_push: str | None = None
        self.reject_pushes = 0
        self.reject_when: str | None = None
        self.running = False
        self.stopped = 0

    @property
    def last_push(self) -> Rendering | None:
        return self.pushes[-1] if self.pushes else None

    def check(self, rendering: Rendering) -> None:
        self.checks.append(rendering)
        if self.reject_check:
            raise EngineError(self.reject_check)
        if self.reject_when and self.reject_when in rendering.text:
            raise EngineError(f"refused: {self.reject_when}")

    def push(self, rendering: Rendering) -> None:
        self.pushes.append(rendering)
        if self.reject_pushes > 0:
            self.reject_pushes -= 1
            raise EngineError("core failed to start")
        if self.reject_push:
            raise EngineError(self.reject_push)
        self.running = True

    def healthcheck(self) -> None:
        if not self.running:
            raise EngineError("core is not running")

    def stop(self) -> None:
        self.running = False
        self.stopped += 1


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _no_ambient_config(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Keep the developer's PROXCTL_* environment out of every test."""
    for name in list(os.environ):
        if name.startswith("PROXCTL_"):
            monkeypatch.delenv(name)
    yield
    from proxctl.services.telemetry import disable_telemetry

    disable_telemetry()


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """Empty app home directory."""
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def settings(home: Path) -> ProxSettings:
    return ProxSettings.from_cli(home=home)


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def workspace(settings: ProxSettings, fake_engine: FakeEngine) -> Iterator[Workspace]:
    """Workspace on a temp home, wired to a :class:`FakeEngine`.

    Notifications are dispatched synchronously into the event WAL.
    """
    ws = Workspace(settings, engine=fake_engine)
    ws.init_event_bus(sync=True)
    try:
        yield ws
    finally:
        ws.close()


@pytest.fixture
def _isolated_home(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    fake_engine: FakeEngine,
) -> None:
    """Run CLI commands in a temp home with the core replaced by a FakeEngine.

    Use via ``@pytest.mark.usefixtures("_isolated_home")`` on command test
    classes. The fake is the same instance the ``fake_engine`` fixture returns.
    """
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(
        "proxctl.infrastructure.workspace.SidecarEngine",
        lambda *_args, **_kwargs: fake_engine,
    )


# ---------------------------------------------------------------------------
# Shared test helpers (used across service and command test modules)
# ---------------------------------------------------------------------------

LOCAL_DOC = """\
mixed-port: 1080
proxies:
  - name: a
    type: direct
proxy-groups: []
rules:
  - MATCH,DIRECT
"""


def create_profile(
    workspace: Workspace,
    name: str,
    kind: str = "local",
    content: str | None = None,
    **kwargs: Any,
) -> dict[str, Any]:
    """Create a profile via ProfileService, asserting success."""
    from proxctl.services.profile import ProfileService

    result = ProfileService(workspace).create_profile(name, kind, content=content, **kwargs)
    assert result.ok, result.error
    return result.data


def activate(workspace: Workspace, profile_id: str) -> dict[str, Any]:
    """Activate a profile via ProfileService, asserting success."""
    from proxctl.services.profile import ProfileService

    result = ProfileService(workspace).activate(profile_id)
    assert result.ok, result.error
    return result.data


def script(body: str) -> str:
    """Wrap template lines in a ``main`` macro that returns the document."""
    return (
        "{% macro main(config) -%}\n"
        f"{body}\n"
        "{{ config | to_yaml }}\n"
        "{%- endmacro %}\n"
    )
