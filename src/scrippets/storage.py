"""Storage layer for managed scrippet files.

Paths are storage-relative, POSIX-style strings. Every path goes through
normalize_path() before it is used as a map key or compared by prefix.

Copyright 2025 Ben Mensi
Licensed under the Apache License, Version 2.0
"""

import asyncio
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

_SEPARATORS = re.compile(r"/+")


def normalize_path(path: str) -> str:
    """Normalize a storage path to its canonical form.

    - Backslashes become forward slashes
    - Runs of separators collapse to one
    - Leading "./" and leading/trailing separators are dropped

    Example:
        >>> normalize_path("scrippets\\\\startup//hello.py")
        'scrippets/startup/hello.py'
    """
    value = str(path).replace("\\", "/").strip()
    value = _SEPARATORS.sub("/", value)
    while value.startswith("./"):
        value = value[2:]
    value = value.strip("/")
    return value or "/"


def is_within(path: str, folder: str) -> bool:
    """Check whether path is folder itself or lies below it."""
    normalized = normalize_path(path)
    normalized_folder = normalize_path(folder)
    return normalized == normalized_folder or normalized.startswith(f"{normalized_folder}/")


def parent_of(path: str) -> str:
    """Get the normalized parent folder of a path."""
    normalized = normalize_path(path)
    if "/" not in normalized:
        return "/"
    return normalized.rsplit("/", 1)[0]


@dataclass(frozen=True)
class FileStat:
    """Subset of file metadata the registry cares about."""
    modified: float


@dataclass(frozen=True)
class StorageEvent:
    """A raw change notification from the storage layer.

    kind is one of: create, modify, delete, rename.
    old_path is only set for renames.
    """
    kind: str
    path: str
    old_path: Optional[str] = None
    is_file: bool = True


class LocalStorage:
    """Storage backed by a directory on the local filesystem.

    Blocking filesystem calls run in a worker thread so the event loop
    stays responsive while a scan reads many files.
    """

    def __init__(self, root: Path):
        self.root = Path(root).expanduser()

    def resolve(self, path: str) -> Path:
        normalized = normalize_path(path)
        if normalized == "/":
            return self.root
        return self.root / normalized

    def relative(self, absolute: Path) -> str:
        return normalize_path(absolute.relative_to(self.root).as_posix())

    async def list(self, folder: str) -> List[str]:
        """List files directly inside folder.

        Raises:
            FileNotFoundError: If the folder does not exist.
        """
        target = self.resolve(folder)

        def _list() -> List[str]:
            if not target.is_dir():
                raise FileNotFoundError(f"folder not found: {folder}")
            return [self.relative(p) for p in sorted(target.iterdir()) if p.is_file()]

        return await asyncio.to_thread(_list)

    async def read(self, path: str) -> str:
        return await asyncio.to_thread(self.resolve(path).read_text, encoding="utf-8")

    async def write(self, path: str, text: str) -> None:
        target = self.resolve(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(text, encoding="utf-8")

        await asyncio.to_thread(_write)

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self.resolve(path).exists)

    async def mkdir(self, path: str) -> None:
        await asyncio.to_thread(self.resolve(path).mkdir, parents=True, exist_ok=True)

    async def stat(self, path: str) -> FileStat:
        result = await asyncio.to_thread(self.resolve(path).stat)
        return FileStat(modified=result.st_mtime)


Snapshot = Tuple[Dict[str, float], Set[str]]


class PollingWatcher:
    """Produce change events for a folder by diffing mtime snapshots.

    Polling cannot observe renames; a moved file shows up as a delete of
    the old path plus a create of the new one, which is how the change
    coalescer models renames anyway.
    """

    def __init__(self, storage: LocalStorage, folder: str):
        self.storage = storage
        self.folder = normalize_path(folder)
        self._snapshot: Optional[Snapshot] = None

    def reset(self, folder: Optional[str] = None) -> None:
        """Forget the baseline, optionally switching the watched folder."""
        if folder is not None:
            self.folder = normalize_path(folder)
        self._snapshot = None

    def snapshot(self) -> Snapshot:
        """Walk the watched folder and record file mtimes and folders."""
        files: Dict[str, float] = {}
        folders: Set[str] = set()
        base = self.storage.resolve(self.folder)
        if not base.is_dir():
            return files, folders

        for dirpath, dirnames, filenames in os.walk(base):
            current = Path(dirpath)
            for dirname in dirnames:
                folders.add(self.storage.relative(current / dirname))
            for filename in filenames:
                absolute = current / filename
                try:
                    files[self.storage.relative(absolute)] = absolute.stat().st_mtime
                except FileNotFoundError:
                    # Removed between listing and stat
                    continue
        return files, folders

    @staticmethod
    def diff(before: Snapshot, after: Snapshot) -> List[StorageEvent]:
        """Compute the events that turn one snapshot into another."""
        old_files, old_folders = before
        new_files, new_folders = after
        events: List[StorageEvent] = []

        for folder in sorted(old_folders - new_folders):
            events.append(StorageEvent("delete", folder, is_file=False))
        for folder in sorted(new_folders - old_folders):
            events.append(StorageEvent("create", folder, is_file=False))

        for path in sorted(old_files.keys() - new_files.keys()):
            events.append(StorageEvent("delete", path))
        for path in sorted(new_files.keys() - old_files.keys()):
            events.append(StorageEvent("create", path))
        for path in sorted(old_files.keys() & new_files.keys()):
            if old_files[path] != new_files[path]:
                events.append(StorageEvent("modify", path))
        return events

    async def poll(self) -> List[StorageEvent]:
        """Return events since the previous poll.

        The first poll only records a baseline and returns no events.
        """
        current = await asyncio.to_thread(self.snapshot)
        previous = self._snapshot
        self._snapshot = current
        if previous is None:
            return []
        events = self.diff(previous, current)
        if events:
            logger.debug(f"Detected {len(events)} storage change(s) under {self.folder}")
        return events
