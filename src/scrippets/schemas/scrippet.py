# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""Scrippet descriptor and scan result schemas.

Descriptors are produced by a scan of the managed folder:
- One descriptor per storage path
- One descriptor per stable ID
- Replaced (never mutated in place) when the file changes
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ScrippetKind(str, Enum):
    """Which subtree a scrippet lives in.

    command: lives directly in the managed folder, run on demand
    startup: lives in the startup subfolder, eligible to run at launch
    """

    COMMAND = "command"
    STARTUP = "startup"


@dataclass(frozen=True)
class ScrippetDescriptor:
    """A discovered scrippet file."""
    id: str
    name: str
    path: str
    kind: ScrippetKind
    description: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    header_snippet: str = ""
    modified: float = 0.0


@dataclass(frozen=True)
class ScanError:
    """A file that could not be turned into a descriptor."""
    path: str
    message: str


@dataclass(frozen=True)
class ScrippetDuplicate:
    """A file whose ID is already claimed by another file.

    suggestion is a free ID the file can be renamed to.
    """
    path: str
    id: str
    suggestion: str


@dataclass
class ScanResult:
    """Snapshot of the registry, as presented to callers."""
    commands: List[ScrippetDescriptor] = field(default_factory=list)
    startup: List[ScrippetDescriptor] = field(default_factory=list)
    errors: List[ScanError] = field(default_factory=list)
    duplicates: List[ScrippetDuplicate] = field(default_factory=list)

    @property
    def descriptors(self) -> List[ScrippetDescriptor]:
        return [*self.commands, *self.startup]


class InvocationStatus(str, Enum):
    """Outcome of a single invocation request."""

    SUCCEEDED = "succeeded"
    DISABLED = "disabled"
    DECLINED = "declined"
    LOAD_FAILED = "load_failed"
    FAILED = "failed"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class InvocationResult:
    """Result of asking the manager to run a scrippet."""
    scrippet_id: str
    status: InvocationStatus
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is InvocationStatus.SUCCEEDED
