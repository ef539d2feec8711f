"""Operation-specific Rich renderers for ServiceResult.

Renderers are dispatched by ``result.op`` in :func:`render_result`;
unknown ops fall through to a generic key-value renderer.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from proxctl.domain.documents import render_document
from proxctl.output.console import create_console, get_output, style_for_kind, style_for_outcome

if TYPE_CHECKING:
    from rich.console import Console

    from proxctl.services.result import ServiceResult

Renderer = Callable[["ServiceResult", "Console"], None]


def render_result(result: ServiceResult, *, verbose: bool = False) -> str:
    """Render a ServiceResult to a string via Rich."""
    console = create_console()
    if result.ok:
        renderer = _OP_RENDERERS.get(result.op, _render_generic)
        renderer(result, console)
        if verbose:
            _render_meta(console, result)
    else:
        _render_error(result, console, verbose=verbose)
    return get_output(console).rstrip("\n")


def render_quiet(result: ServiceResult) -> str:
    """Minimal output for ``--quiet``: ids for listings, else one status line."""
    if not result.ok:
        msg = result.error.message if result.error else "Unknown error"
        return f"ERROR: {result.op}: {msg}"
    items = result.data.get("items")
    if isinstance(items, list):
        ids = [str(item["id"]) for item in items if isinstance(item, dict) and "id" in item]
        return "\n".join(ids)
    if result.op == "config_generate":
        return str(result.data.get("text", "")).rstrip("\n")
    return f"OK: {result.op}"


# ── Helpers ───────────────────────────────────────────────────────────


def _status_line(console: Console, result: ServiceResult) -> None:
    console.print(Text("OK", style="prox.ok"), Text(f"  {result.op}", style="prox.op"), sep="")


def _field(console: Console, key: str, value: Any) -> None:
    style = "prox.id" if key in ("id", "item_id", "current") else ""
    if isinstance(value, list):
        value = ", ".join(str(v) for v in value) or "-"
    console.print(Text(f"  {key}: ", style="prox.key"), Text(str(value), style=style), sep="")


def _yaml(console: Console, text: str) -> None:
    console.print(Syntax(text.rstrip("\n"), "yaml", theme="ansi_dark", background_color="default"))


def _layer_table(layers: list[dict[str, Any]]) -> Table:
    table = Table(show_header=True, pad_edge=False, expand=False)
    table.add_column("Layer", style="prox.id", no_wrap=True)
    table.add_column("Band")
    table.add_column("Outcome")
    table.add_column("Detail")
    for layer in layers:
        outcome = str(layer.get("outcome", ""))
        detail = str(layer.get("detail", ""))
        logs = layer.get("logs") or []
        if logs:
            detail = "\n".join([detail, *(f"log: {line}" for line in logs)]).strip()
        table.add_row(
            str(layer.get("layer_id", "")),
            str(layer.get("band", "")),
            Text(outcome, style=style_for_outcome(outcome)),
            Text(detail),
        )
    return table


def _render_meta(console: Console, result: ServiceResult) -> None:
    if not result.meta:
        return
    telemetry = result.meta.get("telemetry")
    if telemetry:
        console.print(Text("  telemetry:", style="prox.key"))
        _render_span(console, telemetry, indent=4)


def _render_span(console: Console, span: dict[str, Any], indent: int) -> None:
    duration = span.get("duration_ms", 0.0)
    style = "bold red" if duration > 1000 else "yellow" if duration > 100 else "dim"
    line = Text(" " * indent)
    line.append(f"{duration:>8.2f}ms", style=style)
    line.append(f"  {span.get('name', '?')}")
    annotations = span.get("annotations") or {}
    if annotations:
        line.append("  (" + ", ".join(f"{k}={v}" for k, v in annotations.items()) + ")")
    console.print(line)
    for child in span.get("children", []):
        _render_span(console, child, indent + 4)


# ── Error ─────────────────────────────────────────────────────────────


def _render_error(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    err = result.error
    code = f"[{err.code}] " if err else ""
    msg = err.message if err else "Unknown error"
    console.print(
        Text("ERROR", style="prox.error"),
        Text(f"  {result.op}", style="prox.op"),
        Text(f" {code}{msg}"),
        sep="",
    )
    if err and err.detail:
        reason = err.detail.get("reason")
        if reason:
            console.print(Text("  reason: ", style="prox.key"), Text(str(reason)), sep="")
        if verbose:
            for key, value in err.detail.items():
                if key != "reason":
                    _field(console, key, value)


# ── Renderers ─────────────────────────────────────────────────────────


def _render_generic(result: ServiceResult, console: Console) -> None:
    _status_line(console, result)
    for key, value in result.data.items():
        if isinstance(value, dict):
            _field(console, key, ", ".join(f"{k}={v}" for k, v in value.items()))
        else:
            _field(console, key, value)


def _render_profile_table(result: ServiceResult, console: Console) -> None:
    items = result.data.get("items", [])
    table = Table(show_header=True, pad_edge=False, expand=False)
    table.add_column("", no_wrap=True)
    table.add_column("ID", style="prox.id", no_wrap=True)
    table.add_column("Name")
    table.add_column("Kind")
    table.add_column("Chain")
    table.add_column("Updated", style="dim")
    for item in items:
        kind = str(item.get("kind", ""))
        name_style = "" if item.get("enabled", True) else "prox.disabled"
        table.add_row(
            Text("*", style="prox.active") if item.get("active") else "",
            str(item.get("id", "")),
            Text(str(item.get("name", "")), style=name_style),
            Text(kind, style=style_for_kind(kind)),
            ", ".join(item.get("chain") or []),
            str(item.get("updated") or "")[:19],
        )
    console.print(table)
    for band in ("global_merge", "global_script"):
        ids = result.data.get(band) or []
        if ids:
            _field(console, band, ids)
    console.print(f"\n{result.data.get('count', len(items))} profiles")


def _render_profile(result: ServiceResult, console: Console) -> None:
    d = result.data
    lines = [f"kind: {d.get('kind')}", f"enabled: {d.get('enabled')}"]
    for key in ("url", "interval", "updated", "desc"):
        if d.get(key) not in (None, "", 0):
            lines.append(f"{key}: {d[key]}")
    if d.get("chain"):
        lines.append(f"chain: {', '.join(d['chain'])}")
    extra = d.get("extra")
    if extra:
        usage = [f"{k}={extra[k]}" for k in ("upload", "download", "total") if k in extra]
        lines.append("usage: " + ", ".join(usage))
    title = f"{d.get('id', '?')}: {d.get('name', '')}" + ("  (active)" if d.get("active") else "")
    style = style_for_kind(str(d.get("kind", ""))) or "dim"
    console.print(Panel(Text("\n".join(lines)), title=title, border_style=style, expand=False))
    content = str(d.get("content", ""))
    if content.strip():
        lexer = "jinja" if d.get("kind") == "script" else "yaml"
        console.print(Syntax(content.rstrip("\n"), lexer, theme="ansi_dark"))


def _render_mutation(result: ServiceResult, console: Console) -> None:
    _status_line(console, result)
    for key in ("item_id", "domain", "keys", "fields_changed", "core", "previous", "current"):
        if key in result.data and result.data[key] is not None:
            _field(console, key, result.data[key])


def _render_refresh(result: ServiceResult, console: Console) -> None:
    _status_line(console, result)
    _field(console, "refreshed", result.data.get("refreshed", []))
    _field(console, "failed", result.data.get("failed", 0))


def _render_generate(result: ServiceResult, console: Console) -> None:
    layers = result.data.get("layers", [])
    if layers:
        console.print(_layer_table(layers))
        console.print()
    _yaml(console, str(result.data.get("text", "")))


def _render_apply(result: ServiceResult, console: Console) -> None:
    _status_line(console, result)
    _field(console, "core", result.data.get("core"))
    layers = result.data.get("layers", [])
    if layers:
        console.print(_layer_table(layers))


def _render_show(result: ServiceResult, console: Console) -> None:
    value = result.data.get("value")
    if result.data.get("domain") == "runtime" and isinstance(value, dict):
        console.print(Text(f"# core: {value.get('core')}", style="prox.key"))
        _yaml(console, str(value.get("text", "")))
    elif isinstance(value, dict):
        _yaml(console, render_document(value))
    else:
        console.print(Text(str(value)))


def _render_status(result: ServiceResult, console: Console) -> None:
    d = result.data
    state = Text("running", style="prox.ok") if d.get("running") else Text("stopped", "prox.error")
    console.print(Text("  engine: ", style="prox.key"), state, sep="")
    for key in ("core", "applied", "current", "detail"):
        if d.get(key) is not None:
            _field(console, key, d[key])


def _render_events(result: ServiceResult, console: Console) -> None:
    table = Table(show_header=True, pad_edge=False, expand=False)
    table.add_column("ID", justify="right")
    table.add_column("Hook", style="prox.op")
    table.add_column("Payload")
    table.add_column("Status")
    table.add_column("Created", style="dim")
    for event in result.data.get("events", []):
        status = str(event.get("status", ""))
        style = "prox.ok" if status == "completed" else "prox.warning"
        payload = event.get("payload") or {}
        table.add_row(
            str(event.get("id", "")),
            str(event.get("hook_name", "")),
            ", ".join(f"{k}={v}" for k, v in payload.items()),
            Text(status, style=style),
            str(event.get("created", ""))[:19],
        )
    console.print(table)


_OP_RENDERERS: dict[str, Renderer] = {
    "profile_list": _render_profile_table,
    "profile_show": _render_profile,
    "profile_create": _render_mutation,
    "profile_import": _render_mutation,
    "profile_edit": _render_mutation,
    "profile_update": _render_mutation,
    "profile_delete": _render_mutation,
    "profile_use": _render_mutation,
    "profile_reorder": _render_mutation,
    "profile_chain": _render_mutation,
    "profile_global": _render_mutation,
    "profile_refresh": _render_refresh,
    "config_generate": _render_generate,
    "config_show": _render_show,
    "config_patch": _render_mutation,
    "core_apply": _render_apply,
    "core_change": _render_mutation,
    "core_status": _render_status,
    "events": _render_events,
}
