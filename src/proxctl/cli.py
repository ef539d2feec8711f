"""Root CLI group for proxctl with global flags and command registration."""

from __future__ import annotations

from pathlib import Path

import click

from proxctl import __version__
from proxctl.commands import register_commands
from proxctl.commands._context import AppContext
from proxctl.config.settings import ProxSettings


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="proxctl")
@click.option("--json", "json_output", is_flag=True, help="Structured JSON output.")
@click.option("-q", "--quiet", is_flag=True, help="Minimal output.")
@click.option("-v", "--verbose", is_flag=True, help="Detailed output with debug info.")
@click.option("--log-json", is_flag=True, help="Structured JSON log output to stderr.")
@click.option("-c", "--config", "config_path", default=None, help="Override config file path.")
@click.option(
    "--home",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="App home directory (default: next to proxctl.toml, else CWD).",
)
@click.option("--sync", is_flag=True, help="Dispatch notifications synchronously.")
@click.pass_context
def cli(
    ctx: click.Context,
    json_output: bool,
    quiet: bool,
    verbose: bool,
    log_json: bool,
    config_path: str | None,
    home: Path | None,
    sync: bool,
) -> None:
    """proxctl — layered configuration controller for a local proxy core."""
    ctx.ensure_object(dict)
    settings = ProxSettings.from_cli(
        config_path=config_path,
        home=home,
        json_output=json_output,
        quiet=quiet,
        verbose=verbose,
        log_json=log_json,
        sync=sync,
    )
    ctx.obj = AppContext(settings)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


register_commands(cli)
