"""Tests for Workspace — domain wiring, persistence and notifications."""

from __future__ import annotations

from pathlib import Path

import pytest

from proxctl.config.models import AppConfig, MergeConfig
from proxctl.config.settings import ProxSettings
from proxctl.domain.documents import ParseError
from proxctl.infrastructure.workspace import DEFAULT_ENGINE_DOCUMENT, Workspace
from proxctl.services.profile import ProfileService
from proxctl.services.runtime import RuntimeService
from tests.conftest import LOCAL_DOC, FakeEngine, activate, create_profile


class TestDefaults:
    def test_fresh_home(self, workspace: Workspace) -> None:
        assert workspace.engine_settings.latest() == DEFAULT_ENGINE_DOCUMENT
        assert workspace.app.latest() == AppConfig()
        assert workspace.profiles.latest().items == ()
        assert workspace.lane.accepted is None

    def test_app_core_from_settings(self, home: Path, fake_engine: FakeEngine) -> None:
        settings = ProxSettings.from_cli(home=home)
        settings = settings.model_copy(
            update={"engine": settings.engine.model_copy(update={"core": "verge-mihomo-alpha"})}
        )
        ws = Workspace(settings, engine=fake_engine)
        try:
            assert ws.app.latest().core == "verge-mihomo-alpha"
        finally:
            ws.close()

    def test_domains(self, workspace: Workspace) -> None:
        assert list(workspace.domains) == ["engine", "app", "profiles"]


class TestPersistence:
    def test_committed_values_reload(
        self, workspace: Workspace, settings: ProxSettings, fake_engine: FakeEngine
    ) -> None:
        RuntimeService(workspace).patch("engine", {"mode": "global"})
        RuntimeService(workspace).patch("app", {"allow_lan": True})
        profile_id = create_profile(workspace, "Home", content=LOCAL_DOC)["item_id"]
        activate(workspace, profile_id)
        workspace.close()

        reloaded = Workspace(settings, engine=fake_engine)
        try:
            assert reloaded.engine_settings.latest()["mode"] == "global"
            assert reloaded.app.latest().allow_lan is True
            assert reloaded.profiles.latest().current == profile_id
        finally:
            reloaded.close()

    def test_rejected_commit_not_persisted(
        self, workspace: Workspace, home: Path, fake_engine: FakeEngine
    ) -> None:
        fake_engine.reject_check = "nope"
        RuntimeService(workspace).patch("engine", {"mode": "global"})
        assert not (home / "engine.yaml").exists()

    def test_malformed_engine_file(self, home: Path, settings: ProxSettings) -> None:
        (home / "engine.yaml").write_text("mode: [rule\n")
        with pytest.raises(ParseError):
            Workspace(settings, engine=FakeEngine())


class TestRendering:
    def test_render_applies_app_settings_last(self, workspace: Workspace) -> None:
        profile_id = create_profile(workspace, "Home", content=LOCAL_DOC)["item_id"]
        activate(workspace, profile_id)
        rendering = workspace.render()
        assert "mixed-port: 7897" in rendering.text
        assert rendering.core == "verge-mihomo"

    def test_every_domain_pushes_full_document(
        self, workspace: Workspace, fake_engine: FakeEngine
    ) -> None:
        profile_id = create_profile(workspace, "Home", content=LOCAL_DOC)["item_id"]
        activate(workspace, profile_id)
        RuntimeService(workspace).patch("engine", {"ipv6": True})
        text = fake_engine.last_push.text if fake_engine.last_push else ""
        assert "ipv6: true" in text
        assert "MATCH,DIRECT" in text

    def test_last_build_recorded(self, workspace: Workspace) -> None:
        assert workspace.last_build is None
        workspace.build()
        assert workspace.last_build is not None


class TestEdits:
    def test_default_policy_appends_nameservers(self, workspace: Workspace) -> None:
        svc = RuntimeService(workspace)
        svc.patch("engine", {"dns": {"nameserver": ["1.1.1.1"]}})
        svc.patch("engine", {"dns": {"nameserver": ["8.8.8.8"]}})
        nameservers = workspace.engine_settings.latest()["dns"]["nameserver"]
        assert nameservers == ["1.1.1.1", "8.8.8.8"]

    def test_replace_paths_apply_to_edits(
        self, settings: ProxSettings, fake_engine: FakeEngine
    ) -> None:
        settings = settings.model_copy(
            update={"merge": MergeConfig(replace_paths=("dns.nameserver",))}
        )
        ws = Workspace(settings, engine=fake_engine)
        try:
            svc = RuntimeService(ws)
            svc.patch("engine", {"dns": {"nameserver": ["1.1.1.1"]}})
            svc.patch("engine", {"dns": {"nameserver": ["8.8.8.8"]}})
            assert ws.engine_settings.latest()["dns"]["nameserver"] == ["8.8.8.8"]
        finally:
            ws.close()



class TestNotifications:
    def test_config_updated_per_domain(self, workspace: Workspace) -> None:
        RuntimeService(workspace).patch("app", {"allow_lan": True})
        assert workspace.event_bus is not None
        (event,) = workspace.event_bus.recent(10)
        assert event["payload"] == {"domain": "app"}

    def test_notify_without_bus_is_noop(
        self, settings: ProxSettings, fake_engine: FakeEngine
    ) -> None:
        ws = Workspace(settings, engine=fake_engine)
        try:
            ws.notify("config_updated", domain="engine")
            assert ws.event_bus is None
        finally:
            ws.close()

    def test_profile_commit_notifies(self, workspace: Workspace) -> None:
        ProfileService(workspace).create_profile("Empty", "local")
        assert workspace.event_bus is not None
        hooks = [e["hook_name"] for e in workspace.event_bus.recent(10)]
        assert hooks == ["config_updated"]
