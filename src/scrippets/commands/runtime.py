# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Shared plumbing for CLI commands.

Builds a ScrippetManager over the local vault with a console host:
notifications are echoed and first-run confirmations prompt on the
terminal.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Tuple

import typer

from scrippets.config import (
    Settings,
    events_path,
    load_settings,
    save_settings,
    settings_path,
    vault_root,
)
from scrippets.event_client import EventClient
from scrippets.host import Host
from scrippets.scripts.confirmation import ConfirmationGate, PendingDecision
from scrippets.scripts.manager import ScrippetManager
from scrippets.storage import LocalStorage, PollingWatcher


@dataclass
class CliState:
    """Options collected by the top-level callback."""
    vault: Optional[str] = None
    verbose: bool = False


class ConsoleHost(Host):
    """Host that talks to the terminal."""

    def __init__(self, app: Any = None, assume_yes: bool = False):
        super().__init__(app=app)
        self.assume_yes = assume_yes

    def notify(self, message: str) -> None:
        self.notifications.append(message)
        typer.echo(message)

    def request_confirmation(self, decision: PendingDecision, gate: ConfirmationGate) -> None:
        descriptor = decision.descriptor
        if self.assume_yes:
            gate.resolve(decision.token, True)
            return

        typer.echo(f'"{descriptor.name}" ({descriptor.path}) has not run before.')
        try:
            approved = typer.confirm("Run it now?", default=False)
        except typer.Abort:
            approved = False
        gate.resolve(decision.token, approved)


def get_state(ctx: typer.Context) -> CliState:
    """Find the CliState stored by the top-level callback."""
    state = ctx.find_object(CliState)
    return state if state is not None else CliState()


def open_settings() -> Tuple[Settings, Path]:
    path = settings_path()
    return load_settings(path), path


def build_manager(
    state: CliState,
    assume_yes: bool = False,
    watch: bool = False,
) -> ScrippetManager:
    """Create a manager for the configured vault. Call initialize() before use."""
    settings, path = open_settings()
    storage = LocalStorage(vault_root(state.vault))
    host = ConsoleHost(app=storage, assume_yes=assume_yes)
    watcher = PollingWatcher(storage, settings.folder) if watch else None
    return ScrippetManager(
        host,
        settings,
        storage,
        save_settings=lambda: save_settings(settings, path),
        event_client=EventClient(events_path()),
        watcher=watcher,
    )
