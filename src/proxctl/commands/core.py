"""Command group: control the proxy core."""

from __future__ import annotations

import signal
import threading
from typing import TYPE_CHECKING, Any

import click

from proxctl.commands._base import ProxGroup
from proxctl.services.runtime import RuntimeService

if TYPE_CHECKING:
    from proxctl.commands._context import AppContext

_CORE_EXAMPLES = """\
  proxctl core apply
  proxctl core change verge-mihomo-alpha
  proxctl core status
  proxctl core serve
  proxctl core stop"""


@click.group(cls=ProxGroup, examples=_CORE_EXAMPLES)
@click.pass_obj
def core(app: AppContext) -> None:
    """Apply configuration to the proxy core and manage its process."""


@core.command(examples="  proxctl core apply")
@click.pass_obj
def apply(app: AppContext) -> None:
    """Render the runtime document and (re)start the core with it."""
    app.emit(RuntimeService(app.workspace).apply())


@core.command(examples="  proxctl core change verge-mihomo-alpha")
@click.argument("name")
@click.pass_obj
def change(app: AppContext, name: str) -> None:
    """Switch to another core binary (validated before it is applied)."""
    app.emit(RuntimeService(app.workspace).change_core(name))


@core.command(examples="  proxctl core status\n  proxctl --json core status")
@click.pass_obj
def status(app: AppContext) -> None:
    """Show whether the core is running and what was last applied."""
    app.emit(RuntimeService(app.workspace).status())


@core.command(examples="  proxctl core stop")
@click.pass_obj
def stop(app: AppContext) -> None:
    """Stop the managed core process."""
    app.emit(RuntimeService(app.workspace).stop())


@core.command(examples="  proxctl core serve\n  proxctl -v core serve")
@click.pass_obj
def serve(app: AppContext) -> None:
    """Apply, keep remote profiles refreshed, and run until interrupted."""
    from proxctl.services.refresh import RefreshScheduler

    workspace = app.workspace
    runtime = RuntimeService(workspace)
    result = runtime.apply()
    if not result.ok:
        if not result.data.get("fallback"):
            app.emit(result)
        # serving the default configuration; report why the profiles were refused
        error = result.error.message if result.error else "apply failed"
        for line in (error, *result.warnings):
            click.echo(f"WARNING: {line}", err=True)

    scheduler = RefreshScheduler(workspace)
    scheduler.start()
    done = threading.Event()

    def _stop(_signum: int, _frame: Any) -> None:
        done.set()

    previous = signal.signal(signal.SIGTERM, _stop)
    if not app.settings.quiet:
        core_name = result.data.get("core")
        click.echo(f"Serving {core_name}; refreshing {len(scheduler.scheduled)} profiles")
    try:
        done.wait()
    except KeyboardInterrupt:
        pass
    finally:
        signal.signal(signal.SIGTERM, previous)
        scheduler.stop()
    app.emit(runtime.stop())
