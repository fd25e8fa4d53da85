# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""Host surface the manager talks to.

The host owns three things the core only uses at their boundary:
- the command table (register / unregister invocables)
- the notification primitive ("tell the user X")
- the confirmation prompt (a yes/no decision per scrippet)

Scrippets receive the host as their handle and can reach the host's
application object through host.app.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

if TYPE_CHECKING:
    from scrippets.scripts.confirmation import ConfirmationGate, PendingDecision

logger = logging.getLogger(__name__)


@dataclass
class Command:
    """An invocable registered with the host."""
    command_id: str
    name: str
    callback: Callable[[], Any]


def make_notice_class(notify: Callable[[str], None]) -> type:
    """Build a Notice class bound to a notify function.

    Scrippets show a message by constructing a Notice, e.g.
    Notice("Copied timestamp").
    """

    class Notice:
        def __init__(self, message: Any, timeout: Optional[float] = None):
            self.message = str(message)
            self.timeout = timeout
            notify(self.message)

        def __repr__(self) -> str:
            return f"Notice({self.message!r})"

    return Notice


class Host:
    """In-process host.

    Keeps registered commands in a dict and records notifications.
    Confirmation requests are answered by the confirm callback, or
    declined when there is none.
    """

    def __init__(
        self,
        app: Any = None,
        confirm: Optional[Callable[[Any], bool]] = None,
    ):
        self.app = app
        self.commands: Dict[str, Command] = {}
        self.notifications: List[str] = []
        self._confirm = confirm
        self.Notice = make_notice_class(self.notify)

    def add_command(self, command_id: str, name: str, callback: Callable[[], Any]) -> None:
        self.commands[command_id] = Command(command_id, name, callback)
        logger.debug(f"Registered command {command_id} ({name})")

    def remove_command(self, command_id: str) -> None:
        if self.commands.pop(command_id, None) is not None:
            logger.debug(f"Removed command {command_id}")

    def notify(self, message: str) -> None:
        """Fire-and-forget user notification."""
        self.notifications.append(message)
        logger.info(message)

    def request_confirmation(self, decision: "PendingDecision", gate: "ConfirmationGate") -> None:
        """Answer a pending first-run decision.

        Subclasses may answer later (e.g. from a UI callback) by calling
        gate.resolve(decision.token, answer) whenever the user decides.
        """
        approved = bool(self._confirm(decision.descriptor)) if self._confirm else False
        gate.resolve(decision.token, approved)
