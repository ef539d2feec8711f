"""Built-in notification journal.

Appends one human-readable line per notification to
``{home}/logs/notifications.log`` and mirrors it to the structlog stream,
so headless users still see "layer failed" and rejection notices.

File errors are logged and swallowed; a broken journal must not
interrupt a commit.
"""

from __future__ import annotations

import logging
from pathlib import Path

import structlog

from proxctl.plugins.hookspecs import hookimpl
from proxctl.services._helpers import now_iso

JOURNAL_FILE = "logs/notifications.log"

logger = logging.getLogger(__name__)
log = structlog.get_logger("proxctl.notify")


class JournalPlugin:
    """Writes notifications to a plain-text journal under the app home."""

    def __init__(self, home: Path | None = None) -> None:
        self._path = home / JOURNAL_FILE if home is not None else None

    @hookimpl
    def config_updated(self, domain: str) -> None:
        self._write("info", f"{domain} configuration updated")

    @hookimpl
    def commit_rejected(self, domain: str, code: str, message: str) -> None:
        self._write("warning", f"{domain} commit failed [{code}]: {message}")

    @hookimpl
    def layer_failed(self, layer_id: str, kind: str, message: str) -> None:
        self._write("warning", f"layer {layer_id} failed ({kind}): {message}")

    @hookimpl
    def profile_refreshed(self, profile_id: str, ok: bool, message: str) -> None:
        status = "refreshed" if ok else "refresh failed"
        self._write("info" if ok else "warning", f"profile {profile_id} {status}: {message}")

    def _write(self, level: str, line: str) -> None:
        getattr(log, level)("notify", message=line)
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as fh:
                fh.write(f"{now_iso()} {level.upper()} {line}\n")
        except OSError:
            logger.warning("Could not write notification journal %s", self._path, exc_info=True)
