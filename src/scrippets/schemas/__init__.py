# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""Scrippet schemas."""

from scrippets.schemas.scrippet import (
    InvocationResult,
    InvocationStatus,
    ScanError,
    ScanResult,
    ScrippetDescriptor,
    ScrippetDuplicate,
    ScrippetKind,
)

__all__ = [
    "InvocationResult",
    "InvocationStatus",
    "ScanError",
    "ScanResult",
    "ScrippetDescriptor",
    "ScrippetDuplicate",
    "ScrippetKind",
]
