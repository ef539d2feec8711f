"""Tests for EventService and the notifications services emit."""

from __future__ import annotations

from pathlib import Path

from proxctl.config.settings import ProxSettings
from proxctl.infrastructure.workspace import Workspace
from proxctl.services.events import EventService
from proxctl.services.profile import ProfileService
from proxctl.services.runtime import RuntimeService
from tests.conftest import FakeEngine, create_profile


def _hooks(workspace: Workspace) -> list[str]:
    return [event["hook_name"] for event in reversed(workspace.event_bus.recent(100))]


class TestListEvents:
    def test_empty(self, workspace: Workspace) -> None:
        result = EventService(workspace).list_events()
        assert result.ok
        assert result.data == {"events": [], "count": 0}

    def test_newest_first_with_limit(self, workspace: Workspace) -> None:
        RuntimeService(workspace).patch("engine", {"ipv6": True})
        RuntimeService(workspace).patch("app", {"allow_lan": True})
        result = EventService(workspace).list_events(limit=1)
        assert result.data["count"] == 1
        event = result.data["events"][0]
        assert event["hook_name"] == "config_updated"
        assert event["payload"] == {"domain": "app"}
        assert event["status"] == "completed"

    def test_bad_limit(self, workspace: Workspace) -> None:
        result = EventService(workspace).list_events(limit=0)
        assert result.error is not None
        assert result.error.code == "INVALID_ARGUMENT"

    def test_without_event_bus(self, settings: ProxSettings, fake_engine: FakeEngine) -> None:
        ws = Workspace(settings, engine=fake_engine)
        try:
            result = EventService(ws).list_events()
        finally:
            ws.close()
        assert result.error is not None
        assert result.error.code == "NOT_FOUND"

    def test_retry_with_nothing_pending(self, workspace: Workspace) -> None:
        result = EventService(workspace).retry_pending()
        assert result.ok
        assert result.data["count"] == 0


class TestNotifications:
    def test_commit_notifies_config_updated(self, workspace: Workspace) -> None:
        create_profile(workspace, "Home")
        assert _hooks(workspace) == ["config_updated"]

    def test_rejection_notifies(self, workspace: Workspace, fake_engine: FakeEngine) -> None:
        fake_engine.reject_check = "nope"
        RuntimeService(workspace).patch("engine", {"ipv6": True})
        events = workspace.event_bus.recent(10)
        assert events[0]["hook_name"] == "commit_rejected"
        assert events[0]["payload"] == {
            "domain": "engine",
            "code": "INVALID_CONFIG",
            "message": "nope",
        }

    def test_layer_failure_notifies(self, workspace: Workspace) -> None:
        bad = create_profile(
            workspace, "bad", kind="script", content="{% macro main(c) %}{% endmacro %}"
        )["item_id"]
        ProfileService(workspace).set_global("script", [bad])
        failures = [e for e in workspace.event_bus.recent(20) if e["hook_name"] == "layer_failed"]
        assert failures
        assert failures[0]["payload"]["layer_id"] == bad
        assert failures[0]["payload"]["kind"] == "runtime"

    def test_journal_written(self, workspace: Workspace, home: Path) -> None:
        RuntimeService(workspace).patch("engine", {"ipv6": True})
        journal = (home / "logs" / "notifications.log").read_text()
        assert "engine configuration updated" in journal
