"""Rich Console factory and theme for proxctl output.

Consoles render into a StringIO buffer so renderers keep a plain
``-> str`` contract. Outside a terminal (tests, pipes) Rich drops color.
"""

from __future__ import annotations

from io import StringIO

from rich.console import Console
from rich.theme import Theme

PROX_THEME = Theme(
    {
        "prox.ok": "bold green",
        "prox.error": "bold red",
        "prox.warning": "bold yellow",
        "prox.op": "bold cyan",
        "prox.key": "dim",
        "prox.id": "bold blue",
        "prox.active": "bold green",
        "prox.disabled": "dim strike",
        "prox.kind.local": "green",
        "prox.kind.remote": "blue",
        "prox.kind.merge": "yellow",
        "prox.kind.script": "magenta",
    }
)

_OUTCOME_STYLES: dict[str, str] = {
    "applied": "prox.ok",
    "skipped-error": "prox.error",
    "skipped-disabled": "prox.key",
}


def create_console(*, no_color: bool = False, width: int | None = None) -> Console:
    return Console(
        file=StringIO(),
        theme=PROX_THEME,
        no_color=no_color,
        highlight=False,
        width=width or 120,
    )


def get_output(console: Console) -> str:
    assert isinstance(console.file, StringIO)
    return console.file.getvalue()


def style_for_kind(kind: str) -> str:
    return f"prox.kind.{kind}" if kind in ("local", "remote", "merge", "script") else ""


def style_for_outcome(outcome: str) -> str:
    return _OUTCOME_STYLES.get(outcome, "")
