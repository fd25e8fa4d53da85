"""Descriptor registry: path -> descriptor and id -> descriptor maps.

The registry mirrors the current state of the managed folder:

    <folder>/*.py          command scrippets
    <folder>/startup/*.py  startup scrippets

Each discovered file ends up in exactly one of: a command descriptor, a
startup descriptor, a scan error, or a duplicate record.

IDs are claimed first-seen. During a full scan files are read
concurrently, so "first" is the order reads complete in; which of two
colliding files wins is not stable across scans.

Copyright 2025 Ben Mensi
Licensed under the Apache License, Version 2.0
"""

import asyncio
import locale
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from scrippets.config import STARTUP_FOLDER, Settings
from scrippets.schemas import (
    ScanError,
    ScanResult,
    ScrippetDescriptor,
    ScrippetDuplicate,
    ScrippetKind,
)
from scrippets.scripts.metadata import (
    build_header_snippet,
    get_description,
    parse_metadata,
    to_display_name,
    to_identifier,
)
from scrippets.scripts.preferences import PreferenceStore
from scrippets.storage import is_within, normalize_path, parent_of

logger = logging.getLogger(__name__)


class ScrippetDiscoveryError(Exception):
    """Raised when a file cannot be turned into a descriptor."""

    pass


@dataclass
class RefreshOutcome:
    """What an incremental refresh changed.

    retired: descriptor whose ID left the registry (removed, renamed,
        or rejected as a duplicate)
    current: descriptor now published for the path
    duplicate: conflict recorded for the path
    """
    retired: Optional[ScrippetDescriptor] = None
    current: Optional[ScrippetDescriptor] = None
    duplicate: Optional[ScrippetDuplicate] = None


def sort_by_name(descriptors: Iterable[ScrippetDescriptor]) -> List[ScrippetDescriptor]:
    """Stable, locale-aware sort by display name."""
    return sorted(descriptors, key=lambda d: locale.strxfrm(d.name))


class DescriptorRegistry:
    """Authoritative descriptor maps for the managed folder."""

    def __init__(self, storage: Any, settings: Settings, preferences: PreferenceStore):
        self.storage = storage
        self.settings = settings
        self.preferences = preferences

        self.by_path: Dict[str, ScrippetDescriptor] = {}
        self.by_id: Dict[str, ScrippetDescriptor] = {}
        self.errors: Dict[str, str] = {}
        self.duplicates: Dict[str, ScrippetDuplicate] = {}

        self._read_cache: Dict[str, str] = {}
        self._cache_active = False

    # -------------------------------------------------------------------------
    # Layout
    # -------------------------------------------------------------------------

    @property
    def base_folder(self) -> str:
        return normalize_path(self.settings.folder)

    @property
    def startup_folder(self) -> str:
        return normalize_path(f"{self.base_folder}/{STARTUP_FOLDER}")

    def is_managed_path(self, path: str) -> bool:
        normalized = normalize_path(path)
        return is_within(normalized, self.base_folder) or is_within(normalized, self.startup_folder)

    def is_allowed_extension(self, path: str) -> bool:
        lower = normalize_path(path).lower()
        return any(lower.endswith(ext.lower()) for ext in self.settings.allowed_extensions)

    def resolve_kind(self, path: str) -> Optional[ScrippetKind]:
        """Kind of a path, or None if it is outside both subtrees.

        Only files directly inside a subtree folder count, matching what a
        full scan lists.
        """
        parent = parent_of(path)
        if parent == self.startup_folder:
            return ScrippetKind.STARTUP
        if parent == self.base_folder:
            return ScrippetKind.COMMAND
        return None

    # -------------------------------------------------------------------------
    # Read cache
    # -------------------------------------------------------------------------

    @contextmanager
    def read_cycle(self) -> Iterator[None]:
        """Share file reads for the duration of one scan or update cycle."""
        self._cache_active = True
        self._read_cache.clear()
        try:
            yield
        finally:
            self._cache_active = False
            self._read_cache.clear()

    def invalidate(self, path: Optional[str] = None) -> None:
        """Drop a cached read, or all of them when path is None."""
        if path is None:
            self._read_cache.clear()
        else:
            self._read_cache.pop(normalize_path(path), None)

    async def read_file(self, path: str, use_cache: bool = True) -> str:
        normalized = normalize_path(path)
        if use_cache and self._cache_active and normalized in self._read_cache:
            return self._read_cache[normalized]
        data = await self.storage.read(normalized)
        if use_cache and self._cache_active:
            self._read_cache[normalized] = data
        return data

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def descriptor_for_id(self, scrippet_id: str) -> Optional[ScrippetDescriptor]:
        return self.by_id.get(scrippet_id)

    def descriptor_for_path(self, path: str) -> Optional[ScrippetDescriptor]:
        return self.by_path.get(normalize_path(path))

    def duplicates_of(self, ids: Set[str]) -> List[ScrippetDuplicate]:
        return [dup for dup in self.duplicates.values() if dup.id in ids]

    def snapshot(self) -> ScanResult:
        """Current state, sorted for presentation."""
        descriptors = list(self.by_path.values())
        return ScanResult(
            commands=sort_by_name(d for d in descriptors if d.kind is ScrippetKind.COMMAND),
            startup=sort_by_name(d for d in descriptors if d.kind is ScrippetKind.STARTUP),
            errors=[
                ScanError(path, message) for path, message in sorted(self.errors.items())
            ],
            duplicates=[self.duplicates[path] for path in sorted(self.duplicates)],
        )

    def suggest_id(self, base_id: str, claimed: Optional[Set[str]] = None) -> str:
        """First of base_id, base_id-2, base_id-3, ... that is not taken."""
        taken = set(self.by_id)
        if claimed:
            taken |= claimed
        return self._suggest_within(base_id, taken)

    # -------------------------------------------------------------------------
    # Descriptor construction
    # -------------------------------------------------------------------------

    async def _modified_time(self, path: str) -> float:
        try:
            stat = await self.storage.stat(path)
        except OSError as e:
            logger.debug(f"Unable to stat {path}: {e}")
            return time.time()
        return stat.modified

    async def _read_identity(self, path: str) -> Tuple[str, Dict[str, Any], str]:
        source = await self.read_file(path)
        metadata = parse_metadata(source).metadata
        scrippet_id = to_identifier(path, metadata)
        if not scrippet_id:
            raise ScrippetDiscoveryError("Unable to derive scrippet id")
        return source, metadata, scrippet_id

    async def _build(
        self,
        path: str,
        kind: ScrippetKind,
        source: str,
        metadata: Dict[str, Any],
        scrippet_id: str,
    ) -> ScrippetDescriptor:
        preference = self.preferences.ensure(scrippet_id, path)
        modified = await self._modified_time(path)
        return ScrippetDescriptor(
            id=scrippet_id,
            name=to_display_name(path, metadata),
            description=get_description(metadata),
            path=path,
            kind=kind,
            metadata=metadata,
            enabled=preference.enabled,
            header_snippet=build_header_snippet(source),
            modified=modified,
        )

    async def create_descriptor(self, path: str, kind: ScrippetKind) -> ScrippetDescriptor:
        normalized = normalize_path(path)
        source, metadata, scrippet_id = await self._read_identity(normalized)
        return await self._build(normalized, kind, source, metadata, scrippet_id)

    # -------------------------------------------------------------------------
    # Full scan
    # -------------------------------------------------------------------------

    async def list_script_files(self, folder: str, exclude: Optional[str] = None) -> List[str]:
        try:
            listing = await self.storage.list(folder)
        except OSError as e:
            logger.debug(f"Unable to list {folder}: {e}")
            return []
        files = [normalize_path(f) for f in listing if self.is_allowed_extension(f)]
        if exclude:
            files = [f for f in files if not is_within(f, exclude)]
        return files

    async def scan(self) -> ScanResult:
        """Scan the managed folder.

        Does not touch the published maps; pass the result to
        replace_all() to publish it.
        """
        command_files = await self.list_script_files(self.base_folder, exclude=self.startup_folder)
        startup_files = await self.list_script_files(self.startup_folder)

        errors: List[ScanError] = []
        duplicates: List[ScrippetDuplicate] = []
        claimed: Set[str] = set()

        async def try_build(path: str, kind: ScrippetKind) -> Optional[ScrippetDescriptor]:
            try:
                source, metadata, scrippet_id = await self._read_identity(path)
            except (OSError, ValueError, ScrippetDiscoveryError) as e:
                errors.append(ScanError(path, str(e)))
                return None

            if scrippet_id in claimed:
                duplicates.append(ScrippetDuplicate(path, scrippet_id, scrippet_id))
                return None
            claimed.add(scrippet_id)
            return await self._build(path, kind, source, metadata, scrippet_id)

        commands = await asyncio.gather(
            *(try_build(path, ScrippetKind.COMMAND) for path in command_files)
        )
        startup = await asyncio.gather(
            *(try_build(path, ScrippetKind.STARTUP) for path in startup_files)
        )

        # Suggestions are computed against the complete set of claims
        duplicates = [
            replace(dup, suggestion=self._suggest_within(dup.id, claimed)) for dup in duplicates
        ]

        logger.debug(
            f"Scanned {len(command_files) + len(startup_files)} file(s): "
            f"{len(claimed)} claimed, {len(errors)} error(s), {len(duplicates)} duplicate(s)"
        )
        return ScanResult(
            commands=sort_by_name(d for d in commands if d is not None),
            startup=sort_by_name(d for d in startup if d is not None),
            errors=sorted(errors, key=lambda e: e.path),
            duplicates=sorted(duplicates, key=lambda d: d.path),
        )

    @staticmethod
    def _suggest_within(base_id: str, taken: Set[str]) -> str:
        attempt = base_id
        counter = 2
        while attempt in taken:
            attempt = f"{base_id}-{counter}"
            counter += 1
        return attempt

    def replace_all(self, result: ScanResult) -> None:
        """Publish a full scan result, replacing all previous state."""
        self.by_path = {d.path: d for d in result.descriptors}
        self.by_id = {d.id: d for d in result.descriptors}
        self.errors = {e.path: e.message for e in result.errors}
        self.duplicates = {d.path: d for d in result.duplicates}

    # -------------------------------------------------------------------------
    # Incremental updates
    # -------------------------------------------------------------------------

    def _drop_id(self, descriptor: ScrippetDescriptor) -> None:
        current = self.by_id.get(descriptor.id)
        if current is not None and current.path == descriptor.path:
            del self.by_id[descriptor.id]

    def remove(self, path: str) -> Optional[ScrippetDescriptor]:
        """Forget everything known about path.

        Returns:
            The descriptor that was published for path, if any.
        """
        normalized = normalize_path(path)
        self.errors.pop(normalized, None)
        self.duplicates.pop(normalized, None)
        descriptor = self.by_path.pop(normalized, None)
        if descriptor is not None:
            self._drop_id(descriptor)
        return descriptor

    async def refresh(self, path: str) -> RefreshOutcome:
        """Re-derive the descriptor for a single path."""
        normalized = normalize_path(path)
        kind = self.resolve_kind(normalized)
        if kind is None or not self.is_allowed_extension(normalized):
            return RefreshOutcome(retired=self.remove(normalized))

        existing = self.by_path.get(normalized)
        try:
            with self.read_cycle():
                descriptor = await self.create_descriptor(normalized, kind)
        except (OSError, ValueError, ScrippetDiscoveryError) as e:
            self.by_path.pop(normalized, None)
            if existing is not None:
                self._drop_id(existing)
            self.duplicates.pop(normalized, None)
            self.errors[normalized] = str(e)
            return RefreshOutcome(retired=existing)

        retired = None
        if existing is not None and existing.id != descriptor.id:
            self._drop_id(existing)
            retired = existing

        claimant = self.by_id.get(descriptor.id)
        if claimant is not None and claimant.path != normalized:
            self.by_path.pop(normalized, None)
            if existing is not None and retired is None:
                retired = existing
            duplicate = ScrippetDuplicate(
                normalized, descriptor.id, self.suggest_id(descriptor.id)
            )
            self.errors.pop(normalized, None)
            self.duplicates[normalized] = duplicate
            return RefreshOutcome(retired=retired, duplicate=duplicate)

        self.by_path[normalized] = descriptor
        self.by_id[descriptor.id] = descriptor
        self.errors.pop(normalized, None)
        self.duplicates.pop(normalized, None)
        return RefreshOutcome(retired=retired, current=descriptor)

    def update_enabled(self, scrippet_id: str, enabled: bool) -> Optional[ScrippetDescriptor]:
        """Replace a descriptor with a copy carrying a new enabled flag."""
        descriptor = self.by_id.get(scrippet_id)
        if descriptor is None:
            return None
        updated = replace(descriptor, enabled=enabled)
        self.by_id[scrippet_id] = updated
        self.by_path[updated.path] = updated
        return updated

    def record_error(self, path: str, message: str) -> None:
        self.errors[normalize_path(path)] = message

    def clear_error(self, path: str) -> None:
        self.errors.pop(normalize_path(path), None)
