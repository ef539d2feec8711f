"""Command: inspect notification events."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from proxctl.commands._base import ProxCommand
from proxctl.services.events import EventService

if TYPE_CHECKING:
    from proxctl.commands._context import AppContext


@click.command(
    cls=ProxCommand,
    examples="""\
  proxctl events
  proxctl events --limit 5
  proxctl events --retry""",
)
@click.option("--limit", default=20, type=int, show_default=True, help="Max events to show.")
@click.option("--retry", is_flag=True, help="Re-dispatch pending and failed events first.")
@click.pass_obj
def events(app: AppContext, limit: int, retry: bool) -> None:
    """List recent notifications (config updates, rejections, layer failures)."""
    svc = EventService(app.workspace)
    if retry:
        result = svc.retry_pending()
        if not result.ok:
            app.emit(result)
    app.emit(svc.list_events(limit=limit))
