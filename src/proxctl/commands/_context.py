"""AppContext — shared Click context for all commands.

Created once by the root CLI group and passed down with
``@click.pass_obj``. The workspace is built lazily so ``--help`` and
``--version`` never touch the app home.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from proxctl.output.formatters import OutputSettings, format_result

if TYPE_CHECKING:
    from proxctl.config.settings import ProxSettings
    from proxctl.infrastructure.workspace import Workspace
    from proxctl.services.result import ServiceResult


class AppContext:
    """State shared by every command of one CLI invocation."""

    def __init__(self, settings: ProxSettings) -> None:
        self.settings = settings
        self._workspace: Workspace | None = None

        from proxctl.config.logging import configure_logging

        configure_logging(
            verbose=settings.verbose, quiet=settings.quiet, log_json=settings.log_json
        )
        if settings.verbose:
            from proxctl.services.telemetry import enable_telemetry

            enable_telemetry()

    @property
    def workspace(self) -> Workspace:
        """The workspace for ``settings.home`` (created on first access).

        Malformed files under the home surface as a ClickException.
        """
        if self._workspace is None:
            from proxctl.domain.documents import ParseError
            from proxctl.infrastructure.workspace import Workspace

            try:
                workspace = Workspace(self.settings)
            except (ParseError, ValueError) as exc:
                msg = f"Cannot load app home {self.settings.home}: {exc}"
                raise click.ClickException(msg) from exc
            workspace.init_event_bus(sync=self.settings.sync)
            self._workspace = workspace
            click.get_current_context().call_on_close(self.close)
        return self._workspace

    def close(self) -> None:
        if self._workspace is not None:
            self._workspace.close()
            self._workspace = None

    def emit(self, result: ServiceResult) -> None:
        """Print a ServiceResult; failures go to stderr and exit with code 1.

        Warnings go to stderr so they never pollute piped output (in JSON
        mode they are part of the payload).
        """
        settings = OutputSettings(
            json_output=self.settings.json_output,
            quiet=self.settings.quiet,
            verbose=self.settings.verbose,
        )
        output = format_result(result, settings=settings)
        if not settings.json_output:
            for warning in result.warnings:
                click.echo(f"WARNING: {warning}", err=True)
        if result.ok:
            click.echo(output)
            return
        click.echo(output, err=True)
        raise SystemExit(1)
