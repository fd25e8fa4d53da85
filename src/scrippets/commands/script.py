"""
Script commands for Scrippets.

List, inspect, run and manage the scrippets in the vault's managed folder.

Copyright 2025 Ben Mensi
Licensed under the Apache License, Version 2.0
"""

import asyncio
from typing import List, Optional

import typer

from scrippets.commands.runtime import build_manager, get_state, open_settings
from scrippets.config import SORT_FIELDS, events_path, save_settings
from scrippets.event_client import EventClient
from scrippets.schemas import InvocationResult, InvocationStatus, ScrippetDescriptor, ScrippetKind
from scrippets.scripts.manager import ScrippetManager, ScrippetNotFoundError
from scrippets.storage import normalize_path

app = typer.Typer(help="List, inspect and run scrippets")

EXIT_CODES = {
    InvocationStatus.SUCCEEDED: 0,
    InvocationStatus.DISABLED: 2,
    InvocationStatus.DECLINED: 2,
    InvocationStatus.LOAD_FAILED: 1,
    InvocationStatus.FAILED: 1,
    InvocationStatus.NOT_FOUND: 1,
}


async def _loaded(ctx: typer.Context, assume_yes: bool = False) -> ScrippetManager:
    manager = build_manager(get_state(ctx), assume_yes=assume_yes)
    await manager.initialize(run_startup=False)
    return manager


def _echo_descriptor(descriptor: ScrippetDescriptor) -> None:
    badge = "" if descriptor.enabled else " [DISABLED]"
    typer.echo(f"  {descriptor.id}{badge}")
    typer.echo(f"    {descriptor.name} ({descriptor.path})")
    if descriptor.description:
        typer.echo(f"    {descriptor.description}")


@app.command("list")
def list_command(
    ctx: typer.Context,
    sort: Optional[str] = typer.Option(
        None, "--sort", "-s", help=f"Sort by: {', '.join(SORT_FIELDS)}"
    ),
    desc: bool = typer.Option(False, "--desc", help="Sort descending"),
    query: Optional[str] = typer.Option(
        None, "--filter", "-f", help="Only show scrippets matching this text"
    ),
):
    """List command and startup scrippets.

    Examples:
        scrippets script list
        scrippets script list --sort modified --desc
        scrippets script list --filter leaf
    """
    if sort is not None and sort not in SORT_FIELDS:
        typer.echo(f"Error: --sort must be one of {', '.join(SORT_FIELDS)}", err=True)
        raise typer.Exit(1)

    async def _list() -> None:
        manager = await _loaded(ctx)
        direction = "desc" if desc else None
        commands = manager.sorted_descriptors(ScrippetKind.COMMAND, sort, direction, query)
        startup = manager.sorted_descriptors(ScrippetKind.STARTUP, sort, direction, query)

        if not commands and not startup:
            typer.echo(f"No scrippets found in {manager.registry.base_folder}/")
            return

        if commands:
            typer.echo("Commands:\n")
            for descriptor in commands:
                _echo_descriptor(descriptor)
            typer.echo()
        if startup:
            typer.echo("Startup:\n")
            for descriptor in startup:
                _echo_descriptor(descriptor)
            typer.echo()

        problems = len(manager.scan.errors) + len(manager.scan.duplicates)
        if problems:
            typer.echo(f"{problems} problem(s) found. Run 'scrippets script problems' for details.")

    asyncio.run(_list())


@app.command("info")
def info_command(
    ctx: typer.Context,
    scrippet_id: str = typer.Argument(..., help="Scrippet id"),
):
    """Show metadata and run state for a scrippet.

    Examples:
        scrippets script info focus-leaf
    """

    async def _info() -> None:
        manager = await _loaded(ctx)
        descriptor = manager.registry.descriptor_for_id(scrippet_id)
        if descriptor is None:
            typer.echo(f"Error: No scrippet with id '{scrippet_id}'", err=True)
            raise typer.Exit(1)

        prefs = manager.preferences.get(descriptor.id)
        typer.echo(f"Scrippet: {descriptor.name}")
        typer.echo(f"  Id: {descriptor.id}")
        typer.echo(f"  Path: {descriptor.path}")
        typer.echo(f"  Kind: {descriptor.kind.value}")
        if descriptor.description:
            typer.echo(f"  Description: {descriptor.description}")
        typer.echo(f"  Command: {manager.get_command_id(descriptor.id)}")
        typer.echo()
        typer.echo("Status:")
        typer.echo(f"  Enabled: {'yes' if descriptor.enabled else 'no'}")
        typer.echo(f"  Has run: {'yes' if prefs and prefs.has_run else 'no'}")
        typer.echo(f"  Trusted folder: {'yes' if manager.is_trusted(descriptor.path) else 'no'}")
        if descriptor.metadata:
            typer.echo()
            typer.echo("Metadata:")
            for key, value in descriptor.metadata.items():
                typer.echo(f"  {key}: {value}")

    asyncio.run(_info())


@app.command("run")
def run_command(
    ctx: typer.Context,
    scrippet_id: str = typer.Argument(..., help="Scrippet id"),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Skip the first-run confirmation",
    ),
):
    """Run a scrippet by id.

    The first run of a scrippet outside a trusted folder asks for
    confirmation unless --yes is given.

    Exit codes: 0 success, 1 failure, 2 disabled or declined.

    Examples:
        scrippets script run focus-leaf
        scrippets script run focus-leaf --yes
    """

    async def _run() -> InvocationResult:
        manager = await _loaded(ctx, assume_yes=yes)
        return await manager.execute_by_id(scrippet_id)

    result = asyncio.run(_run())
    if result.status is InvocationStatus.NOT_FOUND:
        typer.echo(f"Error: No scrippet with id '{scrippet_id}'", err=True)
    elif result.status is InvocationStatus.DECLINED:
        typer.echo("Cancelled.")
    raise typer.Exit(EXIT_CODES[result.status])


@app.command("startup")
def startup_command(ctx: typer.Context):
    """Run all enabled startup scrippets in name order."""

    async def _startup() -> List[InvocationResult]:
        manager = build_manager(get_state(ctx))
        await manager.initialize(run_startup=False)
        return await manager.run_startup_scripts()

    results = asyncio.run(_startup())
    if not results:
        typer.echo("No startup scrippets.")
        return

    for result in results:
        typer.echo(f"  {result.scrippet_id}: {result.status.value}")
    if any(r.status in (InvocationStatus.FAILED, InvocationStatus.LOAD_FAILED) for r in results):
        raise typer.Exit(1)


def _toggle(ctx: typer.Context, scrippet_id: str, enabled: bool) -> None:
    async def _run() -> ScrippetDescriptor:
        manager = await _loaded(ctx)
        return await manager.toggle(scrippet_id, enabled)

    try:
        descriptor = asyncio.run(_run())
    except ScrippetNotFoundError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(f"{'Enabled' if enabled else 'Disabled'} {descriptor.id}")


@app.command("enable")
def enable_command(
    ctx: typer.Context,
    scrippet_id: str = typer.Argument(..., help="Scrippet id"),
):
    """Enable a scrippet."""
    _toggle(ctx, scrippet_id, True)


@app.command("disable")
def disable_command(
    ctx: typer.Context,
    scrippet_id: str = typer.Argument(..., help="Scrippet id"),
):
    """Disable a scrippet. Disabled command scrippets are unregistered."""
    _toggle(ctx, scrippet_id, False)


@app.command("problems")
def problems_command(ctx: typer.Context):
    """Show files that failed to load and duplicate ids."""

    async def _problems() -> ScrippetManager:
        return await _loaded(ctx)

    scan = asyncio.run(_problems()).scan
    if not scan.errors and not scan.duplicates:
        typer.echo("No problems found.")
        return

    if scan.errors:
        typer.echo("Errors:\n")
        for error in scan.errors:
            typer.echo(f"  {error.path}")
            typer.echo(f"    {error.message}")
        typer.echo()
    if scan.duplicates:
        typer.echo("Duplicate ids:\n")
        for duplicate in scan.duplicates:
            typer.echo(f"  {duplicate.path}")
            typer.echo(f"    id '{duplicate.id}' is already used; suggested: {duplicate.suggestion}")
            typer.echo(f"    fix with: scrippets script fix-id {duplicate.path}")
        typer.echo()
    raise typer.Exit(1)


@app.command("fix-id")
def fix_id_command(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="Scrippet path relative to the vault"),
    new_id: Optional[str] = typer.Option(
        None, "--id", help="New id (defaults to the suggested id for a duplicate)"
    ),
):
    """Rewrite the id declared in a scrippet's header.

    Examples:
        scrippets script fix-id scrippets/copy-of-leaf.py
        scrippets script fix-id scrippets/copy-of-leaf.py --id leaf-copy
    """

    async def _fix() -> Optional[ScrippetDescriptor]:
        manager = await _loaded(ctx)
        normalized = normalize_path(path)
        duplicate = manager.registry.duplicates.get(normalized)
        existing = manager.registry.descriptor_for_path(normalized)

        target = new_id or (duplicate.suggestion if duplicate else None)
        if not target:
            typer.echo(
                f"Error: {normalized} has no duplicate id; pass --id to rename it", err=True
            )
            raise typer.Exit(1)

        previous_id = duplicate.id if duplicate else (existing.id if existing else None)
        try:
            return await manager.rename_scrippet_id(normalized, previous_id, target)
        except (OSError, ValueError) as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1)

    descriptor = asyncio.run(_fix())
    if descriptor is None:
        typer.echo(f"Error: {path} still has a conflicting or invalid id", err=True)
        raise typer.Exit(1)
    typer.echo(f"{descriptor.path} now has id '{descriptor.id}'")


def _update_trusted(folder: str, trusted: bool) -> None:
    settings, settings_file = open_settings()
    normalized = normalize_path(folder)
    folders = [f for f in settings.trusted_folders if f != normalized]
    if trusted:
        folders.append(normalized)
    settings.trusted_folders = folders
    save_settings(settings, settings_file)


@app.command("trust")
def trust_command(folder: str = typer.Argument(..., help="Folder relative to the vault")):
    """Skip first-run confirmation for scrippets under a folder."""
    _update_trusted(folder, True)
    typer.echo(f"Trusted {normalize_path(folder)}")


@app.command("untrust")
def untrust_command(folder: str = typer.Argument(..., help="Folder relative to the vault")):
    """Require first-run confirmation for scrippets under a folder again."""
    _update_trusted(folder, False)
    typer.echo(f"Untrusted {normalize_path(folder)}")


@app.command("history")
def history_command(
    scrippet_id: Optional[str] = typer.Argument(None, help="Only show runs of this scrippet"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of events to show"),
):
    """Show recent run events from the event log."""
    events = EventClient(events_path()).recent(limit=limit, scrippet_id=scrippet_id)
    if not events:
        typer.echo("No runs recorded.")
        return

    for event in events:
        line = f"{event.get('timestamp', '?')}  {event.get('event_type')}  {event.get('scrippet_id')}"
        if event.get("error_message"):
            line += f"  ({event['error_message']})"
        typer.echo(line)


@app.callback(invoke_without_command=True)
def main_callback(ctx: typer.Context):
    """List, inspect and run scrippets.

    Use subcommands:
        scrippets script list          List scrippets
        scrippets script run <id>      Run a scrippet
        scrippets script problems      Show load errors and duplicate ids
    """
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(0)
