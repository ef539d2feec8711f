"""Tests for RuntimeService — generate, apply, show, patch, validate, core control."""

from __future__ import annotations

from pathlib import Path

from proxctl.config.settings import ProxSettings
from proxctl.domain.documents import parse_document
from proxctl.infrastructure.workspace import Workspace
from proxctl.services.runtime import RuntimeService
from tests.conftest import LOCAL_DOC, FakeEngine, activate, create_profile, script


class TestGenerate:
    def test_defaults_only(self, workspace: Workspace) -> None:
        result = RuntimeService(workspace).generate()
        assert result.ok, result.error
        doc = result.data["document"]
        assert doc["mode"] == "rule"
        assert doc["mixed-port"] == 7897
        assert result.data["text"].startswith("# proxctl runtime")
        assert [layer["layer_id"] for layer in result.data["layers"]] == ["final-adjust"]

    def test_does_not_touch_engine(self, workspace: Workspace, fake_engine: FakeEngine) -> None:
        RuntimeService(workspace).generate()
        assert fake_engine.checks == []
        assert fake_engine.pushes == []

    def test_layer_failures_become_warnings(self, workspace: Workspace) -> None:
        from proxctl.services.profile import ProfileService

        bad = create_profile(
            workspace, "bad", kind="script", content="{% macro main(c) %}{% endmacro %}"
        )["item_id"]
        assert ProfileService(workspace).set_global("script", [bad]).ok
        result = RuntimeService(workspace).generate()
        assert result.ok
        assert result.warnings == [f"layer {bad} failed (runtime): script returned nothing"]
        outcomes = {layer["layer_id"]: layer["outcome"] for layer in result.data["layers"]}
        assert outcomes[bad] == "skipped-error"


class TestApply:
    def test_pushes_current_document(
        self, workspace: Workspace, fake_engine: FakeEngine
    ) -> None:
        result = RuntimeService(workspace).apply()
        assert result.ok, result.error
        assert result.data["core"] == "verge-mihomo"
        assert len(fake_engine.pushes) == 1
        assert workspace.lane.accepted == fake_engine.last_push

    def test_rejected(self, workspace: Workspace, fake_engine: FakeEngine) -> None:
        fake_engine.reject_push = "bind: address already in use"
        result = RuntimeService(workspace).apply()
        assert result.error is not None
        assert result.error.code == "REJECTED_BY_ENGINE"
        assert "address already in use" in result.error.detail["reason"]

    def test_first_apply_falls_back_to_default(
        self, workspace: Workspace, settings: ProxSettings
    ) -> None:
        profile_id = create_profile(workspace, "Home", content=LOCAL_DOC)["item_id"]
        activate(workspace, profile_id)
        workspace.close()

        engine = FakeEngine()
        engine.reject_when = "proxies"
        fresh = Workspace(settings, engine=engine)
        try:
            assert fresh.lane.accepted is None
            result = RuntimeService(fresh).apply()
            assert not result.ok
            assert result.error is not None
            assert result.error.code == "INVALID_CONFIG"
            assert result.data == {"core": "verge-mihomo", "fallback": True}
            assert "applied the default configuration (no profile layers)" in result.warnings

            pushed = engine.last_push
            assert pushed is not None
            assert "proxies" not in pushed.text
            assert "mixed-port: 7897" in pushed.text
            assert fresh.lane.accepted == pushed
            assert fresh.profiles.latest().current == profile_id
        finally:
            fresh.close()

    def test_refused_default_is_reported(
        self, workspace: Workspace, settings: ProxSettings
    ) -> None:
        profile_id = create_profile(workspace, "Home", content=LOCAL_DOC)["item_id"]
        activate(workspace, profile_id)
        workspace.close()

        engine = FakeEngine()
        engine.reject_when = "proxies"
        engine.reject_push = "engine is gone"
        fresh = Workspace(settings, engine=engine)
        try:
            result = RuntimeService(fresh).apply()
            assert not result.ok
            assert "fallback" not in result.data
            assert "default configuration failed: engine is gone" in result.warnings
            assert fresh.lane.accepted is None
        finally:
            fresh.close()

    def test_no_fallback_after_an_accepted_apply(
        self, workspace: Workspace, fake_engine: FakeEngine
    ) -> None:
        assert RuntimeService(workspace).apply().ok
        accepted = workspace.lane.accepted
        fake_engine.reject_check = "no"
        result = RuntimeService(workspace).apply()
        assert not result.ok
        assert "fallback" not in result.data
        assert len(fake_engine.pushes) == 1
        assert workspace.lane.accepted == accepted



class TestShow:
    def test_engine(self, workspace: Workspace) -> None:
        result = RuntimeService(workspace).show("engine")
        assert result.data == {
            "domain": "engine",
            "value": {"mode": "rule", "log-level": "info", "ipv6": False, "unified-delay": True},
        }

    def test_app(self, workspace: Workspace) -> None:
        value = RuntimeService(workspace).show("app").data["value"]
        assert value["mixed_port"] == 7897
        assert value["core"] == "verge-mihomo"

    def test_profiles(self, workspace: Workspace) -> None:
        profile_id = create_profile(workspace, "Home")["item_id"]
        value = RuntimeService(workspace).show("profiles").data["value"]
        assert [item["id"] for item in value["items"]] == [profile_id]

    def test_runtime_before_apply(self, workspace: Workspace) -> None:
        result = RuntimeService(workspace).show("runtime")
        assert result.error is not None
        assert result.error.code == "NOT_FOUND"

    def test_runtime_after_apply(self, workspace: Workspace) -> None:
        svc = RuntimeService(workspace)
        svc.apply()
        value = svc.show("runtime").data["value"]
        assert value["core"] == "verge-mihomo"
        assert parse_document(value["text"])["mode"] == "rule"

    def test_unknown(self, workspace: Workspace) -> None:
        result = RuntimeService(workspace).show("dns")
        assert result.error is not None
        assert result.error.code == "INVALID_ARGUMENT"


class TestPatch:
    def test_engine_document(self, workspace: Workspace, home: Path) -> None:
        result = RuntimeService(workspace).patch("engine", {"ipv6": True, "log-level": None})
        assert result.ok, result.error
        assert result.data == {"domain": "engine", "keys": ["ipv6", "log-level"]}
        doc = workspace.engine_settings.latest()
        assert doc["ipv6"] is True
        assert "log-level" not in doc
        assert parse_document((home / "engine.yaml").read_text())["ipv6"] is True

    def test_app_settings(self, workspace: Workspace, fake_engine: FakeEngine) -> None:
        result = RuntimeService(workspace).patch("app", {"mixed_port": 7890})
        assert result.ok, result.error
        assert workspace.app.latest().mixed_port == 7890
        assert fake_engine.last_push is not None
        assert parse_document(fake_engine.last_push.text)["mixed-port"] == 7890

    def test_app_rejects_unknown_field(self, workspace: Workspace) -> None:
        result = RuntimeService(workspace).patch("app", {"no_such_setting": 1})
        assert result.error is not None
        assert result.error.code == "INVALID_CONFIG"
        assert workspace.app.latest().model_dump().get("no_such_setting") is None

    def test_app_rejects_bad_controller(self, workspace: Workspace) -> None:
        result = RuntimeService(workspace).patch("app", {"external_controller": "nope"})
        assert result.error is not None
        assert result.error.code == "INVALID_CONFIG"

    def test_profiles_not_patchable(self, workspace: Workspace) -> None:
        result = RuntimeService(workspace).patch("profiles", {"current": None})
        assert result.error is not None
        assert result.error.code == "INVALID_ARGUMENT"

    def test_empty_edits(self, workspace: Workspace) -> None:
        result = RuntimeService(workspace).patch("engine", {})
        assert result.error is not None
        assert result.error.code == "INVALID_ARGUMENT"

    def test_schema_violation(self, workspace: Workspace) -> None:
        result = RuntimeService(workspace).patch("engine", {"rules": "MATCH,DIRECT"})
        assert result.error is not None
        assert result.error.code == "INVALID_CONFIG"
        assert "rules" not in workspace.engine_settings.latest()

    def test_engine_patch_sees_active_profile(
        self, workspace: Workspace, fake_engine: FakeEngine
    ) -> None:
        profile_id = create_profile(workspace, "Home", content=LOCAL_DOC)["item_id"]
        activate(workspace, profile_id)
        RuntimeService(workspace).patch("engine", {"mode": "global"})
        assert fake_engine.last_push is not None
        pushed = parse_document(fake_engine.last_push.text)
        assert pushed["proxies"] == [{"name": "a", "type": "direct"}]
        assert pushed["mode"] == "global"


class TestValidate:
    def test_document(self, workspace: Workspace, tmp_path: Path, fake_engine: FakeEngine) -> None:
        path = tmp_path / "candidate.yaml"
        path.write_text(LOCAL_DOC)
        result = RuntimeService(workspace).validate_file(path)
        assert result.ok, result.error
        assert result.data["kind"] == "document"
        assert fake_engine.checks[-1].text == LOCAL_DOC

    def test_document_rejected_by_engine(
        self, workspace: Workspace, tmp_path: Path, fake_engine: FakeEngine
    ) -> None:
        path = tmp_path / "candidate.yaml"
        path.write_text(LOCAL_DOC)
        fake_engine.reject_check = "proxy a: unsupported type"
        result = RuntimeService(workspace).validate_file(path)
        assert result.error is not None
        assert result.error.code == "INVALID_CONFIG"

    def test_malformed_document(self, workspace: Workspace, tmp_path: Path) -> None:
        path = tmp_path / "candidate.yaml"
        path.write_text("a: [1\n")
        result = RuntimeService(workspace).validate_file(path)
        assert result.error is not None
        assert result.error.code == "PARSE_ERROR"

    def test_script(self, workspace: Workspace, tmp_path: Path) -> None:
        path = tmp_path / "tweak.j2"
        path.write_text(script(""))
        result = RuntimeService(workspace).validate_file(path)
        assert result.ok, result.error
        assert result.data["kind"] == "script"

    def test_script_sniffed_without_suffix(self, workspace: Workspace, tmp_path: Path) -> None:
        path = tmp_path / "tweak.txt"
        path.write_text("{% macro helper(c) %}{% endmacro %}")
        result = RuntimeService(workspace).validate_file(path)
        assert result.error is not None
        assert result.error.code == "PARSE_ERROR"
        assert "'main'" in result.error.message

    def test_missing_file(self, workspace: Workspace, tmp_path: Path) -> None:
        result = RuntimeService(workspace).validate_file(tmp_path / "nope.yaml")
        assert result.error is not None
        assert result.error.code == "NOT_FOUND"


class TestCore:
    def test_change(self, workspace: Workspace, fake_engine: FakeEngine) -> None:
        result = RuntimeService(workspace).change_core("verge-mihomo-alpha")
        assert result.ok, result.error
        assert result.data == {"core": "verge-mihomo-alpha", "previous": "verge-mihomo"}
        assert workspace.app.latest().core == "verge-mihomo-alpha"
        assert fake_engine.last_push is not None
        assert fake_engine.last_push.core == "verge-mihomo-alpha"

    def test_change_to_same_core(self, workspace: Workspace, fake_engine: FakeEngine) -> None:
        result = RuntimeService(workspace).change_core("verge-mihomo")
        assert result.ok
        assert fake_engine.pushes == []

    def test_unknown_core(self, workspace: Workspace) -> None:
        result = RuntimeService(workspace).change_core("clash")
        assert result.error is not None
        assert result.error.code == "INVALID_CORE"

    def test_new_core_refuses_document(
        self, workspace: Workspace, fake_engine: FakeEngine
    ) -> None:
        fake_engine.reject_check = "unknown field"
        result = RuntimeService(workspace).change_core("verge-mihomo-alpha")
        assert result.error is not None
        assert result.error.code == "INVALID_CONFIG"
        assert workspace.app.latest().core == "verge-mihomo"

    def test_status_before_apply(self, workspace: Workspace) -> None:
        data = RuntimeService(workspace).status().data
        assert data["running"] is False
        assert data["applied"] is False
        assert data["detail"] == "core is not running"

    def test_status_after_apply(self, workspace: Workspace) -> None:
        svc = RuntimeService(workspace)
        svc.apply()
        data = svc.status().data
        assert data["running"] is True
        assert data["applied"] is True
        assert "detail" not in data

    def test_stop(self, workspace: Workspace, fake_engine: FakeEngine) -> None:
        svc = RuntimeService(workspace)
        svc.apply()
        result = svc.stop()
        assert result.ok
        assert fake_engine.stopped == 1
        assert svc.status().data["running"] is False
