"""RefreshScheduler — per-profile timers for remote subscriptions.

One :class:`threading.Timer` per remote profile with a non-zero
interval. A timer only fetches; the content update is queued on the
``profiles`` domain like any other commit. Timers are re-armed whenever the
catalog changes, so interval edits and deletions take effect immediately.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

from proxctl.services.profile import ProfileService

if TYPE_CHECKING:
    from proxctl.domain.profiles import ProfileCatalog
    from proxctl.infrastructure.workspace import Workspace

logger = logging.getLogger(__name__)

SECONDS_PER_MINUTE = 60.0


class RefreshScheduler:
    """Keeps remote profiles fresh while a long-running command is active."""

    def __init__(self, workspace: Workspace, *, unit: float = SECONDS_PER_MINUTE) -> None:
        self._ws = workspace
        self._service = ProfileService(workspace)
        self._unit = unit
        self._lock = threading.Lock()
        self._timers: dict[str, tuple[int, threading.Timer]] = {}
        self._running = False

    @property
    def scheduled(self) -> dict[str, int]:
        """Profile id → interval (minutes) for every armed timer."""
        with self._lock:
            return {profile_id: interval for profile_id, (interval, _t) in self._timers.items()}

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
        self._ws.profiles.add_listener(self._on_catalog_committed)
        self.reschedule(self._ws.profiles.latest())

    def stop(self) -> None:
        with self._lock:
            self._running = False
            timers = [timer for _interval, timer in self._timers.values()]
            self._timers.clear()
        for timer in timers:
            timer.cancel()

    def reschedule(self, catalog: ProfileCatalog) -> None:
        """Arm, re-arm or cancel timers so they match *catalog*."""
        wanted = {
            item.id: item.interval
            for item in catalog.remote_items()
            if item.interval > 0 and item.enabled
        }
        with self._lock:
            if not self._running:
                return
            for profile_id in list(self._timers):
                interval, timer = self._timers[profile_id]
                if wanted.get(profile_id) != interval:
                    timer.cancel()
                    del self._timers[profile_id]
            for profile_id, interval in wanted.items():
                if profile_id not in self._timers:
                    self._arm(profile_id, interval)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _arm(self, profile_id: str, interval: int) -> None:
        timer = threading.Timer(interval * self._unit, self._fire, args=(profile_id, interval))
        timer.daemon = True
        timer.name = f"proxctl-refresh-{profile_id}"
        self._timers[profile_id] = (interval, timer)
        timer.start()
        logger.debug("Scheduled refresh of %s every %d min", profile_id, interval)

    def _fire(self, profile_id: str, interval: int) -> None:
        with self._lock:
            entry = self._timers.get(profile_id)
            if not self._running or entry is None or entry[0] != interval:
                return
            del self._timers[profile_id]

        result = self._service.refresh(profile_id)
        if not result.ok and result.error is not None:
            logger.warning("Scheduled refresh of %s failed: %s", profile_id, result.error.message)

        with self._lock:
            if self._running and profile_id not in self._timers:
                self._arm(profile_id, interval)

    def _on_catalog_committed(self, _domain: str, catalog: Any) -> None:
        self.reschedule(catalog)
