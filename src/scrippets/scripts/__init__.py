"""User scrippet discovery, loading and execution.

Scrippets are small Python files in a managed folder. Files directly in
the folder become host commands; files in its startup/ subfolder run
when the manager loads. Each file gets a stable ID from its header or
file name, which keys its preferences across edits and renames.

Copyright 2025 Ben Mensi
Licensed under the Apache License, Version 2.0
"""

from scrippets.scripts.coalescer import ChangeCoalescer, PendingChanges, compute_delay
from scrippets.scripts.confirmation import ConfirmationGate, PendingDecision
from scrippets.scripts.loader import (
    EXPORT_PRECEDENCE,
    ExportShape,
    InstanceCache,
    ScrippetLoadError,
    load_scrippet,
)
from scrippets.scripts.manager import (
    ScrippetManager,
    ScrippetNotFoundError,
    get_command_id,
)
from scrippets.scripts.metadata import (
    ParsedHeader,
    parse_metadata,
    slugify,
    to_display_name,
    to_identifier,
    update_scrippet_id,
)
from scrippets.scripts.preferences import PreferenceStore, ScriptPreference
from scrippets.scripts.registry import DescriptorRegistry, RefreshOutcome

__all__ = [
    "ParsedHeader",
    "parse_metadata",
    "slugify",
    "to_identifier",
    "to_display_name",
    "update_scrippet_id",
    "DescriptorRegistry",
    "RefreshOutcome",
    "PreferenceStore",
    "ScriptPreference",
    "ChangeCoalescer",
    "PendingChanges",
    "compute_delay",
    "ConfirmationGate",
    "PendingDecision",
    "EXPORT_PRECEDENCE",
    "ExportShape",
    "InstanceCache",
    "ScrippetLoadError",
    "load_scrippet",
    "ScrippetManager",
    "ScrippetNotFoundError",
    "get_command_id",
]
