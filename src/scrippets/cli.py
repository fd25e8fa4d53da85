# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Main CLI entry point for Scrippets.

Dumb trigger: parses args, builds a manager over the vault, and renders
results. All scrippet logic lives in scrippets.scripts.
"""

import asyncio
import logging
from typing import Optional

import typer

from scrippets import __version__
from scrippets.commands.runtime import CliState, build_manager

app = typer.Typer(
    name="scrippets",
    help="Discover, manage and run user-authored Python scrippets",
    no_args_is_help=True,
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    vault: Optional[str] = typer.Option(
        None, "--vault", help="Storage root (default: $SCRIPPETS_VAULT or current directory)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Discover, manage and run user-authored Python scrippets."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = CliState(vault=vault, verbose=verbose)


@app.command()
def version():
    """Show version information."""
    typer.echo(f"scrippets version {__version__}")


@app.command()
def watch(
    ctx: typer.Context,
    interval: float = typer.Option(1.0, "--interval", "-i", help="Seconds between polls"),
    startup: bool = typer.Option(
        False, "--startup", help="Run startup scrippets before watching"
    ),
):
    """Keep the registry in sync with the managed folder until interrupted.

    Changes are polled, coalesced and applied incrementally; new problems
    are reported as they appear.
    """
    state = ctx.find_object(CliState) or CliState()

    async def _watch() -> None:
        manager = build_manager(state, watch=True)
        reported = set()

        def report() -> None:
            scan = manager.scan
            typer.echo(
                f"{len(scan.commands)} command(s), {len(scan.startup)} startup, "
                f"{len(scan.errors) + len(scan.duplicates)} problem(s)"
            )
            for error in scan.errors:
                if (error.path, error.message) not in reported:
                    reported.add((error.path, error.message))
                    typer.echo(f"  error: {error.path}: {error.message}", err=True)
            for duplicate in scan.duplicates:
                if (duplicate.path, duplicate.id) not in reported:
                    reported.add((duplicate.path, duplicate.id))
                    typer.echo(
                        f"  duplicate id '{duplicate.id}': {duplicate.path} "
                        f"(suggested: {duplicate.suggestion})",
                        err=True,
                    )

        manager.subscribe(report)
        await manager.initialize(run_startup=startup)
        typer.echo(f"Watching {manager.registry.base_folder}/ (Ctrl-C to stop)")
        await manager.watch(interval=interval)

    try:
        asyncio.run(_watch())
    except KeyboardInterrupt:
        typer.echo("Stopped.")


# Static commands (config, script)
from scrippets.commands import config, script  # noqa: E402

app.add_typer(config.app, name="config")
app.add_typer(script.app, name="script")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
