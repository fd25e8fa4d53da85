"""Coalesce raw storage events into batched apply cycles.

Events for managed paths accumulate in a PendingChanges set. A single
debounce timer is re-armed on every event; when it fires, the pending set
is swapped for an empty one and handed to the flush callback. Events that
arrive while a flush is running start a fresh cycle.

The debounce delay adapts to bursts: events closer together than
BURST_WINDOW grow the delay by BURST_STEP per event, capped at MAX_DELAY.
Sparse events reset it to BASE_DELAY.

Copyright 2025 Ben Mensi
Licensed under the Apache License, Version 2.0
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Set, Tuple

from scrippets.storage import StorageEvent, normalize_path

logger = logging.getLogger(__name__)

BASE_DELAY = 0.2
MAX_DELAY = 1.0
BURST_WINDOW = 0.5
BURST_STEP = 0.1


@dataclass
class PendingChanges:
    """Paths waiting for the next apply cycle.

    A path is never in both changed and deleted. full supersedes both.
    """
    changed: Set[str] = field(default_factory=set)
    deleted: Set[str] = field(default_factory=set)
    full: bool = False

    def is_empty(self) -> bool:
        return not (self.full or self.changed or self.deleted)

    def mark_full(self) -> None:
        self.full = True
        self.changed.clear()
        self.deleted.clear()

    def mark_changed(self, path: str) -> None:
        if self.full:
            return
        normalized = normalize_path(path)
        if normalized not in self.deleted:
            self.changed.add(normalized)

    def mark_deleted(self, path: str) -> None:
        if self.full:
            return
        normalized = normalize_path(path)
        self.deleted.add(normalized)
        self.changed.discard(normalized)


def compute_delay(
    now: float,
    last_change_at: Optional[float],
    burst: int,
    base: float = BASE_DELAY,
    maximum: float = MAX_DELAY,
    window: float = BURST_WINDOW,
    step: float = BURST_STEP,
) -> Tuple[float, int]:
    """Compute the debounce delay for an event arriving at now.

    Args:
        now: Arrival time of the event.
        last_change_at: Arrival time of the previous event, if any.
        burst: Number of events in the current burst so far.

    Returns:
        Tuple of (delay, new burst count).

    Example:
        >>> compute_delay(10.0, 9.9, 3)
        (0.6, 4)
        >>> compute_delay(10.0, 5.0, 3)
        (0.2, 1)
    """
    if last_change_at is not None and now - last_change_at < window:
        burst += 1
        return min(maximum, round(base + burst * step, 6)), burst
    return base, 1


class ChangeCoalescer:
    """Debounced queue of storage changes.

    Args:
        is_managed: Whether a path lies in a managed subtree.
        flush: Called with the swapped-out PendingChanges. May return an
            awaitable, which is scheduled on the event loop.
        on_invalidate: Called with a path whose cached content is stale,
            or None when everything is stale (full rescan).
        schedule: (delay, callback) -> handle with cancel(). Defaults to
            the running loop's call_later.
        clock: Monotonic time source.
    """

    def __init__(
        self,
        is_managed: Callable[[str], bool],
        flush: Callable[[PendingChanges], Any],
        on_invalidate: Optional[Callable[[Optional[str]], None]] = None,
        schedule: Optional[Callable[[float, Callable[[], None]], Any]] = None,
        clock: Callable[[], float] = time.monotonic,
        base_delay: float = BASE_DELAY,
        max_delay: float = MAX_DELAY,
    ):
        self._is_managed = is_managed
        self._flush = flush
        self._on_invalidate = on_invalidate
        self._schedule = schedule
        self._clock = clock
        self.base_delay = base_delay
        self.max_delay = max_delay

        self.pending = PendingChanges()
        self.delay = base_delay
        self._burst = 0
        self._last_change_at: Optional[float] = None
        self._timer: Any = None
        self._inflight: Set["asyncio.Future[Any]"] = set()

    @property
    def scheduled(self) -> bool:
        return self._timer is not None

    def handle_event(self, event: StorageEvent) -> None:
        """Queue a raw storage event if it touches a managed path."""
        if event.kind == "rename":
            old_path = event.old_path or ""
            if not event.is_file:
                if self._is_managed(old_path) or self._is_managed(event.path):
                    self.queue_full()
                return
            if old_path and self._is_managed(old_path):
                self.queue_deleted(old_path)
            if self._is_managed(event.path):
                self.queue_changed(event.path)
            return

        if not self._is_managed(event.path):
            return

        if not event.is_file:
            # A removed folder takes its files with it
            if event.kind == "delete":
                self.queue_full()
            return

        if event.kind == "delete":
            self.queue_deleted(event.path)
        elif event.kind in ("create", "modify"):
            self.queue_changed(event.path)
        else:
            logger.debug(f"Ignoring unknown storage event kind: {event.kind}")

    def queue_changed(self, path: str) -> None:
        self.pending.mark_changed(path)
        self._invalidate(path)
        self._arm()

    def queue_deleted(self, path: str) -> None:
        self.pending.mark_deleted(path)
        self._invalidate(path)
        self._arm()

    def queue_full(self) -> None:
        self.pending.mark_full()
        self._invalidate(None)
        self._arm()

    def _invalidate(self, path: Optional[str]) -> None:
        if self._on_invalidate is not None:
            self._on_invalidate(normalize_path(path) if path else None)

    def _arm(self) -> None:
        now = self._clock()
        self.delay, self._burst = compute_delay(
            now,
            self._last_change_at,
            self._burst,
            base=self.base_delay,
            maximum=self.max_delay,
        )
        self._last_change_at = now

        self.cancel()
        schedule = self._schedule or asyncio.get_running_loop().call_later
        self._timer = schedule(self.delay, self._fire)

    def cancel(self) -> None:
        """Cancel the pending timer, keeping queued changes."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def take(self) -> PendingChanges:
        """Swap the pending set for an empty one and return the old set."""
        changes = self.pending
        self.pending = PendingChanges()
        return changes

    def _fire(self) -> None:
        self._timer = None
        self._burst = 0
        self.delay = self.base_delay
        changes = self.take()
        if changes.is_empty():
            return

        logger.debug(
            f"Flushing changes: full={changes.full} "
            f"changed={len(changes.changed)} deleted={len(changes.deleted)}"
        )
        outcome = self._flush(changes)
        if inspect.isawaitable(outcome):
            task = asyncio.ensure_future(outcome)
            self._inflight.add(task)
            task.add_done_callback(self._on_flush_done)

    def _on_flush_done(self, task: "asyncio.Future[Any]") -> None:
        self._inflight.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Applying storage changes failed: {task.exception()}")

    async def flush_now(self) -> None:
        """Flush immediately, skipping the debounce delay."""
        self.cancel()
        self._burst = 0
        self.delay = self.base_delay
        changes = self.take()
        if changes.is_empty():
            return
        outcome = self._flush(changes)
        if inspect.isawaitable(outcome):
            await outcome

    async def drain(self) -> None:
        """Wait for flushes already handed to the event loop."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
