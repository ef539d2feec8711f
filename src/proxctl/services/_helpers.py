"""Shared service-layer helper functions."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from proxctl.domain.documents import Document, nest_dotted, parse_value

SCRIPT_SUFFIX = ".j2"
_SCRIPT_MARKERS = ("{%", "{{", "macro")


def now_utc() -> datetime:
    return datetime.now(UTC)


def now_iso() -> str:
    """Current UTC time as standard ISO 8601."""
    return now_utc().isoformat()


def parse_assignments(assignments: Iterable[str]) -> Document:
    """Turn ``a.b=value`` strings into one nested patch document.

    Values are parsed as YAML, so ``port=7890`` yields an int and
    ``dns.enable=null`` yields a tombstone.

    Examples:
        >>> parse_assignments(["dns.enable=true", "mode=rule"])
        {'dns': {'enable': True}, 'mode': 'rule'}
    """
    patch: Document = {}
    for raw in assignments:
        key, sep, value = raw.partition("=")
        if not sep or not key.strip():
            msg = f"expected KEY=VALUE, got {raw!r}"
            raise ValueError(msg)
        # Nested merge keeps tombstones (None) intact inside the accumulated patch.
        patch = _merge_keep_nulls(patch, nest_dotted(key.strip(), parse_value(value)))
    return patch


def _merge_keep_nulls(base: Document, patch: Document) -> Document:
    result = dict(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge_keep_nulls(result[key], value)
        else:
            result[key] = value
    return result


def looks_like_script(path: Path, text: str) -> bool:
    """Whether a file holds a script program rather than a YAML document.

    ``.j2`` files are scripts; otherwise the first five lines are sniffed
    for template markers.
    """
    if path.suffix == SCRIPT_SUFFIX:
        return True
    head = text.splitlines()[:5]
    return any(marker in line for line in head for marker in _SCRIPT_MARKERS)

