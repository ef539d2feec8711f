"""Filesystem operations for the app home.

INVARIANT: Files are truth. Every committed domain value can be rebuilt
from the YAML files under the app home alone.

Single files are replaced atomically (temp file + ``os.replace``).
Multi-file updates go through :class:`FileTransaction`, which restores
backups and removes newly created files if anything fails.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

ENGINE_FILE = "engine.yaml"
APP_FILE = "app.yaml"
CATALOG_FILE = "profiles.yaml"
PROFILES_DIR = "profiles"
META_SUFFIX = ".meta.yaml"


# ---------------------------------------------------------------------------
# File I/O
# ---------------------------------------------------------------------------


def atomic_write(path: Path, content: str) -> None:
    """Replace *path* with *content* so readers see the old or new file, never half."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def read_text(path: Path) -> str | None:
    """Return file content, or None if the file does not exist."""
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None


def resolve_inside(root: Path, name: str) -> Path:
    """Join *name* onto *root*, refusing paths that escape it."""
    result = root / name
    if not result.resolve().is_relative_to(root.resolve()):
        msg = f"Path escapes app home: {result}"
        raise ValueError(msg)
    return result


# ---------------------------------------------------------------------------
# Compensating multi-file transaction
# ---------------------------------------------------------------------------


@dataclass
class _FileOp:
    """A tracked write or delete within a file transaction."""

    path: Path
    backup: str | None  # original content, None if the file did not exist

    def rollback(self) -> None:
        """Undo this file operation (best-effort)."""
        try:
            if self.backup is not None:
                atomic_write(self.path, self.backup)
            else:
                self.path.unlink(missing_ok=True)
        except OSError:
            logger.warning("Failed to rollback file operation: %s", self.path)


@dataclass
class FileTransaction:
    """Tracks file writes so they can be compensated on failure.

    All writes must go through :meth:`write` / :meth:`delete`; direct
    filesystem access bypasses the safety net.
    """

    _ops: list[_FileOp] = field(default_factory=list, repr=False)

    def write(self, path: Path, content: str) -> None:
        if read_text(path) == content:
            return
        self._ops.append(_FileOp(path=path, backup=read_text(path)))
        atomic_write(path, content)

    def delete(self, path: Path) -> None:
        backup = read_text(path)
        if backup is None:
            return
        self._ops.append(_FileOp(path=path, backup=backup))
        path.unlink()

    def rollback(self) -> None:
        for op in reversed(self._ops):
            op.rollback()
        self._ops.clear()


@contextmanager
def file_transaction() -> Iterator[FileTransaction]:
    """Yield a :class:`FileTransaction`; roll it back if the block raises.

    Usage::

        with file_transaction() as txn:
            txn.write(path_a, text_a)
            txn.delete(path_b)
            # Both stay on success, both are undone on failure.
    """
    txn = FileTransaction()
    try:
        yield txn
    except BaseException:
        txn.rollback()
        raise
