"""Command group: profile catalog management."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import click

from proxctl.commands._base import ProxGroup
from proxctl.services.profile import ProfileService

if TYPE_CHECKING:
    from proxctl.commands._context import AppContext

_PROFILE_EXAMPLES = """\
  proxctl profile list
  proxctl profile create "Home" --kind local --file home.yaml
  proxctl profile import https://example.com/sub.yaml --interval 720
  proxctl profile use L1a2b3c4d5e6f
  proxctl profile chain L1a2b3c4d5e6f M0a1b2c3d4e5f S9f8e7d6c5b4a
  proxctl profile global merge M0a1b2c3d4e5f
  proxctl profile refresh"""


def _parse_headers(raw: tuple[str, ...]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for entry in raw:
        name, sep, value = entry.partition(":")
        if not sep or not name.strip():
            msg = f"expected 'Name: value', got {entry!r}"
            raise click.BadParameter(msg, param_hint="--header")
        headers[name.strip()] = value.strip()
    return headers


def _read_file(path: Path | None) -> str | None:
    return path.read_text(encoding="utf-8") if path is not None else None


_FILE = click.Path(exists=True, dir_okay=False, path_type=Path)


@click.group(cls=ProxGroup, examples=_PROFILE_EXAMPLES)
@click.pass_obj
def profile(app: AppContext) -> None:
    """Create, order, activate and refresh configuration profiles."""


@profile.command("list", examples="  proxctl profile list\n  proxctl -q profile list")
@click.pass_obj
def list_cmd(app: AppContext) -> None:
    """List profiles in catalog order (* marks the active one)."""
    app.emit(ProfileService(app.workspace).list_profiles())


@profile.command(examples="  proxctl profile show R1a2b3c4d5e6f")
@click.argument("profile_id")
@click.pass_obj
def show(app: AppContext, profile_id: str) -> None:
    """Show a profile's metadata and content."""
    app.emit(ProfileService(app.workspace).show_profile(profile_id))


@profile.command(
    examples="""\
  proxctl profile create "Home" --kind local --file home.yaml
  proxctl profile create "Pin rules" --kind merge --file pin.yaml
  proxctl profile create "Tweak" --kind script --file tweak.j2
  proxctl profile create "Sub" --kind remote --url https://example.com/sub.yaml"""
)
@click.argument("name")
@click.option(
    "--kind",
    type=click.Choice(["local", "remote", "merge", "script"]),
    default="local",
    show_default=True,
    help="Profile kind.",
)
@click.option("--file", "file_path", type=_FILE, default=None, help="Initial content.")
@click.option("--url", default=None, help="Source URL (remote only).")
@click.option("--interval", default=0, type=int, help="Auto refresh interval in minutes.")
@click.option("--desc", default=None, help="Description.")
@click.option("--header", "headers", multiple=True, help="Extra request header 'Name: value'.")
@click.pass_obj
def create(
    app: AppContext,
    name: str,
    kind: str,
    file_path: Path | None,
    url: str | None,
    interval: int,
    desc: str | None,
    headers: tuple[str, ...],
) -> None:
    """Create a profile item."""
    result = ProfileService(app.workspace).create_profile(
        name,
        kind,
        content=_read_file(file_path),
        url=url,
        interval=interval,
        desc=desc,
        headers=_parse_headers(headers),
    )
    app.emit(result)


@profile.command(
    "import",
    examples="""\
  proxctl profile import https://example.com/sub.yaml
  proxctl profile import https://example.com/sub --name Work --header 'Authorization: Bearer x'""",
)
@click.argument("url")
@click.option("--name", default=None, help="Display name (default: server filename).")
@click.option("--interval", default=None, type=int, help="Refresh interval in minutes.")
@click.option("--header", "headers", multiple=True, help="Extra request header 'Name: value'.")
@click.pass_obj
def import_cmd(
    app: AppContext,
    url: str,
    name: str | None,
    interval: int | None,
    headers: tuple[str, ...],
) -> None:
    """Fetch a remote subscription and store it as a profile."""
    result = ProfileService(app.workspace).import_profile(
        url, name=name, interval=interval, headers=_parse_headers(headers)
    )
    app.emit(result)


@profile.command(examples="  proxctl profile edit M0a1b2c3d4e5f --file pin.yaml")
@click.argument("profile_id")
@click.option("--file", "file_path", type=_FILE, required=True, help="New content.")
@click.pass_obj
def edit(app: AppContext, profile_id: str, file_path: Path) -> None:
    """Replace a profile's content."""
    content = file_path.read_text(encoding="utf-8")
    app.emit(ProfileService(app.workspace).edit_content(profile_id, content))


@profile.command(
    "set",
    examples="""\
  proxctl profile set R1a2b3c4d5e6f --interval 60
  proxctl profile set M0a1b2c3d4e5f --disable""",
)
@click.argument("profile_id")
@click.option("--name", default=None, help="Display name.")
@click.option("--desc", default=None, help="Description.")
@click.option("--url", default=None, help="Source URL (remote only).")
@click.option("--interval", default=None, type=int, help="Refresh interval in minutes.")
@click.option("--enable/--disable", "enabled", default=None, help="Enable or disable the item.")
@click.pass_obj
def set_cmd(
    app: AppContext,
    profile_id: str,
    name: str | None,
    desc: str | None,
    url: str | None,
    interval: int | None,
    enabled: bool | None,
) -> None:
    """Change profile metadata."""
    result = ProfileService(app.workspace).update_profile(
        profile_id, name=name, desc=desc, url=url, interval=interval, enabled=enabled
    )
    app.emit(result)


@profile.command(examples="  proxctl profile delete L1a2b3c4d5e6f")
@click.argument("profile_id")
@click.pass_obj
def delete(app: AppContext, profile_id: str) -> None:
    """Delete a profile and every reference to it."""
    app.emit(ProfileService(app.workspace).delete_profile(profile_id))


@profile.command(examples="  proxctl profile use L1a2b3c4d5e6f")
@click.argument("profile_id")
@click.pass_obj
def use(app: AppContext, profile_id: str) -> None:
    """Activate a local or remote profile and apply it."""
    app.emit(ProfileService(app.workspace).activate(profile_id))


@profile.command(examples="  proxctl profile reorder R1a2b3c4d5e6f L1a2b3c4d5e6f")
@click.argument("profile_ids", nargs=-1, required=True)
@click.pass_obj
def reorder(app: AppContext, profile_ids: tuple[str, ...]) -> None:
    """Move the given profiles to the front, in the given order."""
    app.emit(ProfileService(app.workspace).reorder(list(profile_ids)))


@profile.command(
    examples="""\
  proxctl profile chain L1a2b3c4d5e6f M0a1b2c3d4e5f S9f8e7d6c5b4a
  proxctl profile chain L1a2b3c4d5e6f   # clear the chain""",
)
@click.argument("profile_id")
@click.argument("layer_ids", nargs=-1)
@click.pass_obj
def chain(app: AppContext, profile_id: str, layer_ids: tuple[str, ...]) -> None:
    """Set the merge/script layers applied when PROFILE_ID is active."""
    app.emit(ProfileService(app.workspace).set_chain(profile_id, list(layer_ids)))


@profile.command(
    "global",
    examples="""\
  proxctl profile global merge M0a1b2c3d4e5f
  proxctl profile global script S9f8e7d6c5b4a S0a1b2c3d4e5f""",
)
@click.argument("kind", type=click.Choice(["merge", "script"]))
@click.argument("layer_ids", nargs=-1)
@click.pass_obj
def global_cmd(app: AppContext, kind: str, layer_ids: tuple[str, ...]) -> None:
    """Set the global merge or script band (applied for every profile)."""
    app.emit(ProfileService(app.workspace).set_global(kind, list(layer_ids)))


@profile.command(examples="  proxctl profile refresh\n  proxctl profile refresh R1a2b3c4d5e6f")
@click.argument("profile_id", required=False)
@click.pass_obj
def refresh(app: AppContext, profile_id: str | None) -> None:
    """Re-fetch one remote profile, or all of them."""
    app.emit(ProfileService(app.workspace).refresh(profile_id))
