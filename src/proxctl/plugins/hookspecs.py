"""Pluggy hook specifications for proxctl notifications.

Every hook is fire-and-forget: the core never waits on, or reads results
from, a notification. Events are dispatched through the WAL-backed
:class:`~proxctl.plugins.event_bus.EventBus`.
"""

from __future__ import annotations

import pluggy

PROJECT_NAME = "proxctl"

hookspec = pluggy.HookspecMarker(PROJECT_NAME)
hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


class ProxctlHookSpec:
    """Hook specifications for the proxctl plugin system."""

    @hookspec
    def config_updated(self, domain: str) -> None:
        """Called after a domain commit was accepted (and pushed, if rendered)."""

    @hookspec
    def commit_rejected(self, domain: str, code: str, message: str) -> None:
        """Called when a commit failed validation or was refused by the engine."""

    @hookspec
    def layer_failed(self, layer_id: str, kind: str, message: str) -> None:
        """Called for each pipeline layer that was skipped because of an error."""

    @hookspec
    def profile_refreshed(self, profile_id: str, ok: bool, message: str) -> None:
        """Called after a remote profile refresh attempt."""
