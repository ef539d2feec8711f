"""Notification layer — plugin hooks via pluggy.

Discovery: entry_points (pip-installed) via pluggy setuptools entrypoints.
INVARIANT: Plugin failures are warnings, never errors.
"""

from proxctl.plugins.event_bus import EventBus
from proxctl.plugins.manager import PluginManager

__all__ = ["EventBus", "PluginManager"]
