# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""Sorting and filtering of descriptors for listings."""

import locale
from typing import Iterable, List, Optional

from scrippets.schemas import ScrippetDescriptor
from scrippets.storage import normalize_path


def matches_filter(descriptor: ScrippetDescriptor, query: Optional[str]) -> bool:
    """Case-insensitive substring match over name, id, path and description."""
    query = (query or "").strip().lower()
    if not query:
        return True
    fields = [
        descriptor.name,
        descriptor.id,
        normalize_path(descriptor.path),
        descriptor.description or "",
    ]
    return any(query in value.lower() for value in fields)


def sort_descriptors(
    descriptors: Iterable[ScrippetDescriptor],
    field: str = "name",
    direction: str = "asc",
) -> List[ScrippetDescriptor]:
    """Sort descriptors by name, modified time or enabled flag.

    Ties on modified/enabled fall back to ascending name order regardless
    of direction.
    """
    reverse = direction == "desc"
    by_name = sorted(descriptors, key=lambda d: locale.strxfrm(d.name))

    if field == "modified":
        return sorted(by_name, key=lambda d: d.modified, reverse=reverse)
    if field == "enabled":
        return sorted(by_name, key=lambda d: d.enabled, reverse=reverse)
    if reverse:
        return sorted(by_name, key=lambda d: locale.strxfrm(d.name), reverse=True)
    return by_name
