"""Structured documents — YAML parse/render for every persisted file.

A :data:`Document` is a plain ``dict`` tree (mappings, lists, scalars).
Profile content, domain files, and the rendered runtime file all share
this one codec so the on-disk format stays consistent.
"""

from __future__ import annotations

from collections.abc import Mapping
from io import StringIO
from typing import Any

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

Document = dict[str, Any]


class ParseError(ValueError):
    """Raised when text is not a well-formed structured document."""

    def __init__(self, message: str, *, source: str | None = None) -> None:
        self.source = source
        prefix = f"{source}: " if source else ""
        super().__init__(f"{prefix}{message}")


def _new_yaml() -> YAML:
    """Create a fresh YAML instance.

    ruamel.yaml's YAML object is stateful; a failed dump can leave a shared
    instance broken, so every call gets its own.
    """
    y = YAML()
    y.default_flow_style = False
    y.allow_unicode = True
    y.width = 4096
    return y


def to_plain(value: Any) -> Any:
    """Convert ruamel round-trip containers into plain dicts and lists."""
    if isinstance(value, Mapping):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value


def parse_document(text: str, *, source: str | None = None) -> Document:
    """Parse YAML *text* into a :data:`Document`.

    Empty (or comment-only) text yields ``{}``.

    Raises:
        ParseError: If the text is not valid YAML or its top level is not
            a mapping.
    """
    try:
        loaded = _new_yaml().load(text)
    except YAMLError as exc:
        raise ParseError(f"invalid YAML: {exc}", source=source) from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, Mapping):
        raise ParseError(
            f"expected a mapping at the top level, got {type(loaded).__name__}",
            source=source,
        )
    return to_plain(loaded)


def render_document(doc: Mapping[str, Any], *, header: str | None = None) -> str:
    """Render *doc* as block-style YAML, keys in insertion order."""
    buf = StringIO()
    if header:
        for line in header.splitlines():
            buf.write(f"# {line}\n" if line else "#\n")
    if doc:
        _new_yaml().dump(to_plain(doc), buf)
    else:
        buf.write("{}\n")
    return buf.getvalue()


def parse_value(text: str) -> Any:
    """Parse a single YAML scalar or flow value (used for ``--set KEY=VALUE``)."""
    try:
        return to_plain(_new_yaml().load(text))
    except YAMLError as exc:
        raise ParseError(f"invalid value {text!r}: {exc}") from exc


def nest_dotted(key: str, value: Any) -> Document:
    """Expand ``a.b.c`` + value into ``{"a": {"b": {"c": value}}}``."""
    parts = [p for p in key.split(".") if p]
    if not parts:
        msg = "empty key"
        raise ValueError(msg)
    result: Any = value
    for part in reversed(parts):
        result = {part: result}
    return result
