"""First-run confirmation as a two-phase protocol.

request() is the suspend point: it creates a PendingDecision token and
hands it to the decide callback (the host). resolve() is the resume point,
called with the yes/no outcome whenever the decision is made. The manager
awaits wait(), which treats errors, cancellation and dismissal as "no".

Copyright 2025 Ben Mensi
Licensed under the Apache License, Version 2.0
"""

import asyncio
import inspect
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict

from scrippets.schemas import ScrippetDescriptor

logger = logging.getLogger(__name__)


@dataclass
class PendingDecision:
    """Token for one outstanding confirmation request."""
    token: str
    descriptor: ScrippetDescriptor
    future: "asyncio.Future[bool]"


class ConfirmationGate:
    """Tracks outstanding confirmation decisions."""

    def __init__(self, decide: Callable[[PendingDecision, "ConfirmationGate"], Any]):
        self._decide = decide
        self._pending: Dict[str, PendingDecision] = {}

    @property
    def pending(self) -> Dict[str, PendingDecision]:
        return dict(self._pending)

    def request(self, descriptor: ScrippetDescriptor) -> PendingDecision:
        """Open a decision for descriptor and pass it to the decider."""
        loop = asyncio.get_running_loop()
        decision = PendingDecision(
            token=str(uuid.uuid4()),
            descriptor=descriptor,
            future=loop.create_future(),
        )
        self._pending[decision.token] = decision

        try:
            outcome = self._decide(decision, self)
        except Exception as e:
            logger.warning(f"Confirmation for {descriptor.id} failed: {e}")
            self.resolve(decision.token, False)
            return decision

        if inspect.isawaitable(outcome):
            task = asyncio.ensure_future(outcome)
            task.add_done_callback(lambda t: self._on_decider_done(decision.token, t))
        return decision

    def _on_decider_done(self, token: str, task: "asyncio.Future[Any]") -> None:
        if task.cancelled() or task.exception() is not None:
            self.resolve(token, False)

    def resolve(self, token: str, approved: bool) -> bool:
        """Resume a pending decision.

        Returns:
            False if the token is unknown or was already resolved.
        """
        decision = self._pending.pop(token, None)
        if decision is None or decision.future.done():
            return False
        decision.future.set_result(bool(approved))
        return True

    def cancel(self, token: str) -> None:
        """Dismiss a pending decision; equivalent to declining it."""
        self.resolve(token, False)

    async def wait(self, decision: PendingDecision) -> bool:
        """Await the outcome of a decision. Anything but "yes" is "no"."""
        try:
            return bool(await decision.future)
        except asyncio.CancelledError:
            self._pending.pop(decision.token, None)
            return False
