"""Subcommand modules for proxctl.

``register_commands()`` defers imports so ``proxctl --help`` stays fast.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import click


def register_commands(cli: click.Group) -> None:
    """Register the command groups and standalone commands on the root group."""
    from proxctl.commands.config import config_group
    from proxctl.commands.core import core
    from proxctl.commands.events import events
    from proxctl.commands.profile import profile

    cli.add_command(profile)
    cli.add_command(config_group)
    cli.add_command(core)
    cli.add_command(events)
