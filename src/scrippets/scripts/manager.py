"""Scrippet manager: reloads, trust policy, command lifecycle, invocation.

The manager is the only entry point external callers use. It owns the
descriptor registry, preference store, instance cache, change coalescer
and the host command bindings, and is the single writer for all of them.

Invocation state per scrippet (tracked in its preference record):

    disabled --enable--> enabled, not confirmed --first run--> confirmed

Copyright 2025 Ben Mensi
Licensed under the Apache License, Version 2.0
"""

import asyncio
import inspect
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from scrippets.config import DEFAULT_FOLDER, Settings
from scrippets.event_client import EventClient
from scrippets.schemas import (
    InvocationResult,
    InvocationStatus,
    ScanResult,
    ScrippetDescriptor,
    ScrippetKind,
)
from scrippets.scripts.coalescer import ChangeCoalescer, PendingChanges
from scrippets.scripts.confirmation import ConfirmationGate
from scrippets.scripts.listing import matches_filter, sort_descriptors
from scrippets.scripts.loader import InstanceCache, ScrippetLoadError, load_scrippet
from scrippets.scripts.metadata import slugify, update_scrippet_id
from scrippets.scripts.preferences import PreferenceStore
from scrippets.scripts.registry import DescriptorRegistry, RefreshOutcome, sort_by_name
from scrippets.storage import StorageEvent, is_within, normalize_path

logger = logging.getLogger(__name__)

COMMAND_PREFIX = "scrippet"


class ScrippetNotFoundError(Exception):
    """Raised when no scrippet is registered under an ID."""

    pass


def _utcnow() -> datetime:
    """Return current UTC time."""
    return datetime.now(timezone.utc)


def get_command_id(scrippet_id: str) -> str:
    """Host command ID for a stable scrippet ID."""
    return f"{COMMAND_PREFIX}:{scrippet_id}"


class ScrippetManager:
    """Keeps the host in sync with the managed scrippet folder."""

    def __init__(
        self,
        host: Any,
        settings: Settings,
        storage: Any,
        save_settings: Optional[Callable[[], None]] = None,
        event_client: Optional[EventClient] = None,
        schedule: Optional[Callable[[float, Callable[[], None]], Any]] = None,
        watcher: Optional[Any] = None,
    ):
        """
        Initialize the manager.

        Args:
            host: Host surface (commands, notifications, confirmation).
            settings: Settings document; script_states is updated in place.
            storage: Storage layer the managed folder lives in.
            save_settings: Persists the settings document.
            event_client: Optional JSONL run log.
            schedule: Timer primitive for the change coalescer.
            watcher: Optional change source with an async poll() returning
                StorageEvents, e.g. PollingWatcher.
        """
        self.host = host
        self.settings = settings
        self.storage = storage
        self._save_settings = save_settings or (lambda: None)
        self.events = event_client
        self.watcher = watcher

        self.preferences = PreferenceStore(settings.script_states, self._save_settings)
        self.registry = DescriptorRegistry(storage, settings, self.preferences)
        self.instances = InstanceCache()
        self.gate = ConfirmationGate(host.request_confirmation)
        self.coalescer = ChangeCoalescer(
            is_managed=self.registry.is_managed_path,
            flush=self.process_pending_changes,
            on_invalidate=self.registry.invalidate,
            schedule=schedule,
        )

        self._commands: Dict[str, str] = {}
        self._listeners: Set[Callable[[], None]] = set()
        self._apply_lock = asyncio.Lock()
        self._scan = ScanResult()

    # -------------------------------------------------------------------------
    # Observers
    # -------------------------------------------------------------------------

    @property
    def scan(self) -> ScanResult:
        """Last published state of the registry."""
        return self._scan

    @property
    def commands(self) -> Dict[str, str]:
        """Registered host commands, keyed by scrippet ID."""
        return dict(self._commands)

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Call listener whenever the published state changes.

        Returns:
            A function that unsubscribes the listener.
        """
        self._listeners.add(listener)
        return lambda: self._listeners.discard(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.error(f"Scrippet listener failed: {e}")

    def _update_scan(self) -> None:
        self._scan = self.registry.snapshot()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self, run_startup: Optional[bool] = None) -> None:
        """Create the managed folders and publish the first scan.

        Startup scrippets run when run_startup is True, or when it is None
        and the run_startup_on_load setting is on.
        """
        if run_startup is None:
            run_startup = self.settings.run_startup_on_load
        await self.ensure_folders()
        await self.perform_full_reload(run_startup=run_startup)
        if self.watcher is not None:
            # Baseline; later polls report changes made after this scan
            await self.watcher.poll()

    async def reload(self, run_startup: bool = False) -> None:
        await self.perform_full_reload(run_startup=run_startup)

    async def set_folder(self, folder: str) -> None:
        """Point the manager at a different managed folder.

        Raises:
            ValueError: If folder is the storage root.
        """
        normalized = normalize_path(folder.strip() or DEFAULT_FOLDER)
        if normalized == "/":
            raise ValueError("The managed folder cannot be the vault root")
        if normalized == self.registry.base_folder:
            return
        self.settings.folder = normalized
        self._persist_settings()
        await self.ensure_folders()
        await self.perform_full_reload(run_startup=self.settings.run_startup_on_load)
        if self.watcher is not None:
            self.watcher.reset(normalized)
            await self.watcher.poll()

    async def ensure_folders(self) -> None:
        for folder in (self.registry.base_folder, self.registry.startup_folder):
            try:
                if not await self.storage.exists(folder):
                    await self.storage.mkdir(folder)
            except OSError as e:
                logger.debug(f"Unable to create folder {folder}: {e}")

    def _persist_settings(self) -> None:
        try:
            self._save_settings()
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save settings: {e}")

    async def perform_full_reload(self, run_startup: bool = False) -> None:
        """Rescan everything and republish commands."""
        async with self._apply_lock:
            with self.registry.read_cycle():
                result = await self.registry.scan()

            self.unregister_commands()
            self.instances.clear()
            self.registry.replace_all(result)
            self._update_scan()
            for descriptor in self._scan.commands:
                if descriptor.enabled:
                    self.register_command(descriptor)

            self.preferences.flush()
            logger.info(
                f"Loaded {len(result.commands)} command and {len(result.startup)} "
                f"startup scrippet(s) from {self.registry.base_folder}"
            )
            self._notify()

        if run_startup:
            await self.run_startup_scripts()

    # -------------------------------------------------------------------------
    # Change handling
    # -------------------------------------------------------------------------

    def handle_storage_event(self, event: StorageEvent) -> None:
        """Feed a raw storage notification into the change coalescer."""
        self.coalescer.handle_event(event)

    async def poll_changes(self) -> int:
        """Poll the attached watcher once and queue what it reports.

        Returns:
            Number of storage events seen.
        """
        if self.watcher is None:
            return 0
        events = await self.watcher.poll()
        for event in events:
            self.handle_storage_event(event)
        return len(events)

    async def watch(self, interval: float = 1.0, iterations: Optional[int] = None) -> None:
        """Poll for changes until cancelled, or for a fixed number of rounds."""
        if self.watcher is None:
            raise RuntimeError("No watcher attached")
        count = 0
        while iterations is None or count < iterations:
            await asyncio.sleep(interval)
            try:
                await self.poll_changes()
            except OSError as e:
                logger.warning(f"Polling {self.registry.base_folder} failed: {e}")
            count += 1
        await self.coalescer.flush_now()
        await self.coalescer.drain()

    async def process_pending_changes(self, changes: PendingChanges) -> None:
        """Apply one batch of coalesced changes."""
        if changes.full:
            await self.perform_full_reload(run_startup=False)
            return

        async with self._apply_lock:
            freed: Set[str] = set()
            for path in sorted(changes.deleted):
                retired = self.registry.remove(path)
                if retired is not None:
                    self._retire(retired)
                    freed.add(retired.id)

            for path in sorted(changes.changed):
                outcome = await self.registry.refresh(path)
                self._apply_refresh(outcome)
                if outcome.retired is not None:
                    freed.add(outcome.retired.id)

            # A freed ID may now belong to a file that lost it as a duplicate
            for duplicate in self.registry.duplicates_of(freed):
                if self.registry.descriptor_for_id(duplicate.id) is None:
                    self._apply_refresh(await self.registry.refresh(duplicate.path))

            self.preferences.flush()
            self._update_scan()
            self._notify()

    def _retire(self, descriptor: ScrippetDescriptor) -> None:
        self.instances.invalidate(descriptor.id)
        self.unregister_command(descriptor.id)

    def _apply_refresh(self, outcome: RefreshOutcome) -> None:
        if outcome.retired is not None:
            self._retire(outcome.retired)
        current = outcome.current
        if current is None:
            return
        self.instances.invalidate(current.id)
        if current.kind is ScrippetKind.COMMAND:
            if current.enabled:
                self.register_command(current)
            else:
                self.unregister_command(current.id)
        else:
            self.unregister_command(current.id)

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def get_command_id(self, scrippet_id: str) -> str:
        return get_command_id(scrippet_id)

    def register_command(self, descriptor: ScrippetDescriptor) -> None:
        command_id = get_command_id(descriptor.id)
        if descriptor.id in self._commands:
            self.host.remove_command(self._commands[descriptor.id])
        self._commands[descriptor.id] = command_id
        scrippet_id = descriptor.id

        def callback() -> "asyncio.Future[InvocationResult]":
            return asyncio.ensure_future(self.execute_by_id(scrippet_id))

        self.host.add_command(command_id, descriptor.name, callback)

    def unregister_command(self, scrippet_id: str) -> None:
        command_id = self._commands.pop(scrippet_id, None)
        if command_id is not None:
            self.host.remove_command(command_id)

    def unregister_commands(self) -> None:
        for command_id in self._commands.values():
            self.host.remove_command(command_id)
        self._commands.clear()

    # -------------------------------------------------------------------------
    # Preferences and trust
    # -------------------------------------------------------------------------

    def is_trusted(self, path: str) -> bool:
        normalized = normalize_path(path)
        return any(is_within(normalized, folder) for folder in self.settings.trusted_folders)

    def should_confirm_first_run(self, descriptor: ScrippetDescriptor) -> bool:
        if not self.settings.confirm_before_first_run:
            return False
        return not self.is_trusted(descriptor.path)

    async def toggle(self, scrippet_id: str, enabled: bool) -> ScrippetDescriptor:
        """Enable or disable a scrippet.

        Raises:
            ScrippetNotFoundError: If no scrippet has this ID.
        """
        descriptor = self.registry.descriptor_for_id(scrippet_id)
        if descriptor is None:
            raise ScrippetNotFoundError(f"No scrippet with id '{scrippet_id}'")

        self.preferences.set_enabled(descriptor.id, descriptor.path, enabled)
        updated = self.registry.update_enabled(descriptor.id, enabled) or descriptor
        if updated.kind is ScrippetKind.COMMAND:
            if enabled:
                self.register_command(updated)
            else:
                self.unregister_command(updated.id)

        self._update_scan()
        self._notify()
        self.preferences.flush()
        return updated

    async def rename_scrippet_id(
        self, path: str, previous_id: Optional[str], new_id: str
    ) -> Optional[ScrippetDescriptor]:
        """Rewrite the ID declared in a scrippet's header and refresh it.

        Used to resolve duplicate IDs.

        Returns:
            The descriptor now published for path, or None if the new
            ID is still taken.

        Raises:
            ValueError: If new_id has no usable characters.
        """
        normalized = normalize_path(path)
        slug = slugify(new_id)
        if not slug:
            raise ValueError(f"'{new_id}' is not a usable scrippet id")

        source = await self.registry.read_file(normalized, use_cache=False)
        updated = update_scrippet_id(source, slug)
        if updated == source:
            return self.registry.descriptor_for_path(normalized)

        await self.storage.write(normalized, updated)
        self.registry.invalidate(normalized)
        logger.info(f"Rewrote id of {normalized}: {previous_id or '?'} -> {slug}")

        async with self._apply_lock:
            previous = self.registry.descriptor_for_id(previous_id) if previous_id else None
            if previous is not None and previous.path == normalized:
                self.instances.invalidate(previous.id)
            outcome = await self.registry.refresh(normalized)
            self._apply_refresh(outcome)
            self.preferences.flush()
            self._update_scan()
            self._notify()
        return outcome.current

    # -------------------------------------------------------------------------
    # Listing
    # -------------------------------------------------------------------------

    def sorted_descriptors(
        self,
        kind: Optional[ScrippetKind] = None,
        field: Optional[str] = None,
        direction: Optional[str] = None,
        query: Optional[str] = None,
    ) -> List[ScrippetDescriptor]:
        """Descriptors filtered and sorted for display.

        Sort field and direction default to the list_sort setting.
        """
        descriptors = self._scan.descriptors
        if kind is not None:
            descriptors = [d for d in descriptors if d.kind is kind]
        filtered = [d for d in descriptors if matches_filter(d, query)]
        return sort_descriptors(
            filtered,
            field=field or self.settings.list_sort.field,
            direction=direction or self.settings.list_sort.direction,
        )

    # -------------------------------------------------------------------------
    # Invocation
    # -------------------------------------------------------------------------

    async def load_instance(self, descriptor: ScrippetDescriptor) -> Any:
        """Get the cached instance for a descriptor, compiling it if needed.

        Raises:
            ScrippetLoadError: If the source cannot be read or compiled.
        """
        cached = self.instances.get(descriptor.id)
        if cached is not None:
            return cached

        try:
            source = await self.registry.read_file(descriptor.path, use_cache=False)
        except (OSError, ValueError) as e:
            raise ScrippetLoadError(f"Unable to read {descriptor.path}: {e}") from e

        instance = load_scrippet(self.host, source, path=descriptor.path)
        self.instances.put(descriptor.id, instance)
        if descriptor.path in self.registry.errors:
            self.registry.clear_error(descriptor.path)
            self._update_scan()
            self._notify()
        return instance

    def _record_load_error(self, descriptor: ScrippetDescriptor, error: Exception) -> None:
        self.registry.record_error(descriptor.path, str(error))
        self._update_scan()
        self._notify()

    def _log_event(
        self,
        event_type: str,
        correlation_id: str,
        status: str,
        descriptor: ScrippetDescriptor,
        payload: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> None:
        if self.events is None:
            return
        self.events.log_event(
            event_type=event_type,
            correlation_id=correlation_id,
            status=status,
            scrippet_id=descriptor.id,
            payload={"path": descriptor.path, "kind": descriptor.kind.value, **(payload or {})},
            error_message=error_message,
        )

    async def _invoke(self, instance: Any) -> None:
        result = instance.invoke(self.host)
        if inspect.isawaitable(result):
            await result

    async def execute_by_id(self, scrippet_id: str) -> InvocationResult:
        """Run a scrippet by stable ID. Never raises for script failures."""
        descriptor = self.registry.descriptor_for_id(scrippet_id)
        if descriptor is None:
            logger.warning(f"No scrippet with id '{scrippet_id}'")
            return InvocationResult(scrippet_id, InvocationStatus.NOT_FOUND, "Not found")
        return await self.execute_descriptor(descriptor)

    async def execute_descriptor(self, descriptor: ScrippetDescriptor) -> InvocationResult:
        """Run one scrippet through the enable / confirm / load / invoke steps."""
        prefs = self.preferences.ensure(descriptor.id, descriptor.path)

        if not prefs.enabled:
            message = f'Scrippet "{descriptor.name}" is disabled.'
            self.host.notify(message)
            self.preferences.flush()
            return InvocationResult(descriptor.id, InvocationStatus.DISABLED, message)

        correlation_id = str(uuid.uuid4())

        if self.should_confirm_first_run(descriptor) and not prefs.has_run:
            decision = self.gate.request(descriptor)
            if not await self.gate.wait(decision):
                logger.info(f"First run of {descriptor.id} declined")
                self._log_event("scrippet.declined", correlation_id, "declined", descriptor)
                self.preferences.flush()
                return InvocationResult(
                    descriptor.id, InvocationStatus.DECLINED, "Run not confirmed"
                )

        try:
            instance = await self.load_instance(descriptor)
        except ScrippetLoadError as e:
            self._record_load_error(descriptor, e)
            message = f'Scrippet "{descriptor.name}" failed to load: {e}'
            self.host.notify(message)
            self._log_event(
                "scrippet.failed", correlation_id, "load_failed", descriptor, error_message=str(e)
            )
            return InvocationResult(descriptor.id, InvocationStatus.LOAD_FAILED, message)

        self._log_event("scrippet.started", correlation_id, "running", descriptor)
        start_time = _utcnow()
        try:
            await self._invoke(instance)
        except (Exception, SystemExit) as e:
            logger.error(f'Error invoking "{descriptor.name}": {e}', exc_info=True)
            message = f'Scrippet "{descriptor.name}" failed: {e}'
            self.host.notify(message)
            self._log_event(
                "scrippet.failed", correlation_id, "failed", descriptor, error_message=str(e)
            )
            return InvocationResult(descriptor.id, InvocationStatus.FAILED, message)

        duration_ms = int((_utcnow() - start_time).total_seconds() * 1000)
        self._log_event(
            "scrippet.completed",
            correlation_id,
            "succeeded",
            descriptor,
            payload={"duration_ms": duration_ms},
        )
        self.preferences.mark_run(descriptor.id, descriptor.path)
        self.preferences.flush()
        return InvocationResult(descriptor.id, InvocationStatus.SUCCEEDED)

    async def run_startup_scripts(self) -> List[InvocationResult]:
        """Run enabled startup scrippets in display-name order.

        First-run confirmation does not apply: opting into run-at-launch
        implies trust. A failing scrippet does not stop the ones after it.
        """
        results: List[InvocationResult] = []
        for descriptor in sort_by_name(self._scan.startup):
            prefs = self.preferences.get(descriptor.id)
            if prefs is not None and not prefs.enabled:
                results.append(InvocationResult(descriptor.id, InvocationStatus.DISABLED))
                continue

            correlation_id = str(uuid.uuid4())
            try:
                instance = await self.load_instance(descriptor)
                self._log_event("scrippet.started", correlation_id, "running", descriptor)
                await self._invoke(instance)
            except (Exception, SystemExit) as e:
                if isinstance(e, ScrippetLoadError):
                    self._record_load_error(descriptor, e)
                logger.error(f"Startup scrippet failed for {descriptor.name}: {e}")
                message = f'Startup scrippet "{descriptor.name}" failed: {e}'
                self.host.notify(message)
                self._log_event(
                    "scrippet.failed", correlation_id, "failed", descriptor, error_message=str(e)
                )
                status = (
                    InvocationStatus.LOAD_FAILED
                    if isinstance(e, ScrippetLoadError)
                    else InvocationStatus.FAILED
                )
                results.append(InvocationResult(descriptor.id, status, message))
                continue

            self._log_event("scrippet.completed", correlation_id, "succeeded", descriptor)
            self.preferences.mark_run(descriptor.id, descriptor.path)
            results.append(InvocationResult(descriptor.id, InvocationStatus.SUCCEEDED))

        self.preferences.flush()
        return results
