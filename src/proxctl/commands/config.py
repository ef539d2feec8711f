"""Command group: inspect, patch and validate configuration."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import click

from proxctl.commands._base import ProxGroup
from proxctl.domain.documents import Document, ParseError, parse_document
from proxctl.services._helpers import parse_assignments
from proxctl.services.runtime import PATCHABLE_DOMAINS, SHOWABLE_DOMAINS, RuntimeService

if TYPE_CHECKING:
    from proxctl.commands._context import AppContext

_CONFIG_EXAMPLES = """\
  proxctl config show engine
  proxctl config patch engine --set log-level=debug --set dns.enable=true
  proxctl config patch app --set mixed_port=7890 --set tun_enable=true
  proxctl config validate my-profile.yaml
  proxctl config generate"""


@click.group("config", cls=ProxGroup, examples=_CONFIG_EXAMPLES)
@click.pass_obj
def config_group(app: AppContext) -> None:
    """Show, patch and validate the configuration domains."""


@config_group.command(
    examples="  proxctl config show runtime\n  proxctl --json config show app",
)
@click.argument("domain", type=click.Choice(SHOWABLE_DOMAINS))
@click.pass_obj
def show(app: AppContext, domain: str) -> None:
    """Print the committed value of DOMAIN (or the applied runtime file)."""
    app.emit(RuntimeService(app.workspace).show(domain))


@config_group.command(
    examples="""\
  proxctl config patch engine --set mode=global
  proxctl config patch engine --set dns.fallback=null
  proxctl config patch app --set allow_lan=true
  proxctl config patch engine --file overrides.yaml""",
)
@click.argument("domain", type=click.Choice(PATCHABLE_DOMAINS))
@click.option("--set", "assignments", multiple=True, help="KEY=VALUE (dotted keys, YAML values).")
@click.option(
    "--file",
    "file_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML patch document.",
)
@click.pass_obj
def patch(
    app: AppContext,
    domain: str,
    assignments: tuple[str, ...],
    file_path: Path | None,
) -> None:
    """Merge edits into DOMAIN, validate, and apply.

    A null value removes the key.
    """
    edits: Document = {}
    try:
        if file_path is not None:
            edits = parse_document(file_path.read_text(encoding="utf-8"), source=str(file_path))
        if assignments:
            edits = {**edits, **parse_assignments(assignments)}
    except (ParseError, ValueError) as exc:
        raise click.BadParameter(str(exc)) from exc
    app.emit(RuntimeService(app.workspace).patch(domain, edits))


@config_group.command(
    examples="  proxctl config validate sub.yaml\n  proxctl config validate tweak.j2",
)
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_obj
def validate(app: AppContext, file_path: Path) -> None:
    """Check a profile or script file without storing it."""
    app.emit(RuntimeService(app.workspace).validate_file(file_path))


@config_group.command(examples="  proxctl config generate\n  proxctl -q config generate > out.yaml")
@click.pass_obj
def generate(app: AppContext) -> None:
    """Preview the merged runtime document and per-layer outcomes."""
    app.emit(RuntimeService(app.workspace).generate())
