# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Config command for Scrippets.

Shows, validates and updates the settings document.
"""

import asyncio
import json

import typer

from scrippets.commands.runtime import build_manager, get_state, open_settings
from scrippets.config import SORT_DIRECTIONS, SORT_FIELDS, SettingsError, save_settings

app = typer.Typer(help="Show and update settings")

_TOGGLES = {
    "run-startup-on-load": "run_startup_on_load",
    "confirm-before-first-run": "confirm_before_first_run",
}


@app.command()
def show():
    """Print the settings document."""
    settings, settings_file = open_settings()
    typer.echo(f"# {settings_file}")
    typer.echo(json.dumps(settings.to_dict(), indent=2))


@app.command()
def validate():
    """
    Validate the settings document.

    Checks that the folder, extensions and list sort are usable.
    """
    settings, settings_file = open_settings()
    try:
        settings.validate()
    except SettingsError as e:
        typer.echo(f"Validation failed: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(f"{settings_file}: settings are valid")


@app.command("set-folder")
def set_folder(
    ctx: typer.Context,
    folder: str = typer.Argument(..., help="Managed folder relative to the vault"),
):
    """Change the managed folder and rescan it."""

    async def _set() -> str:
        manager = build_manager(get_state(ctx))
        await manager.set_folder(folder)
        return manager.registry.base_folder

    try:
        base_folder = asyncio.run(_set())
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(f"Managed folder: {base_folder}")


@app.command("set-sort")
def set_sort(
    field: str = typer.Argument(..., help=f"One of: {', '.join(SORT_FIELDS)}"),
    direction: str = typer.Argument("asc", help=f"One of: {', '.join(SORT_DIRECTIONS)}"),
):
    """Set the default sort order for listings."""
    settings, settings_file = open_settings()
    settings.list_sort.field = field
    settings.list_sort.direction = direction
    try:
        settings.validate()
    except SettingsError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    save_settings(settings, settings_file)
    typer.echo(f"Sorting by {field} ({direction})")


@app.command("set")
def set_option(
    option: str = typer.Argument(..., help=f"One of: {', '.join(_TOGGLES)}"),
    value: bool = typer.Argument(..., help="true or false"),
):
    """Turn a boolean setting on or off.

    Examples:
        scrippets config set run-startup-on-load true
        scrippets config set confirm-before-first-run false
    """
    attribute = _TOGGLES.get(option)
    if attribute is None:
        typer.echo(f"Error: Unknown option '{option}'. Valid: {', '.join(_TOGGLES)}", err=True)
        raise typer.Exit(1)

    settings, settings_file = open_settings()
    setattr(settings, attribute, value)
    if attribute == "run_startup_on_load" and value:
        settings.startup_acknowledged = True
    save_settings(settings, settings_file)
    typer.echo(f"{option} = {str(value).lower()}")
