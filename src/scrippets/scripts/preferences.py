"""Per-scrippet preference records.

Tracks, per stable ID, whether a scrippet may run and whether its
first-run confirmation has been satisfied.

Copyright 2025 Ben Mensi
Licensed under the Apache License, Version 2.0
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from scrippets.storage import normalize_path

logger = logging.getLogger(__name__)


@dataclass
class ScriptPreference:
    """Persisted preference for one stable ID.

    Stored on disk as {"enabled": bool, "hasRun": bool}.
    """

    enabled: bool = True
    has_run: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScriptPreference":
        return cls(
            enabled=bool(data.get("enabled", True)),
            has_run=bool(data.get("hasRun", data.get("has_run", False))),
        )

    def to_dict(self) -> Dict[str, bool]:
        return {"enabled": self.enabled, "hasRun": self.has_run}


class PreferenceStore:
    """Preference records keyed by stable ID.

    Entries are created lazily and never garbage-collected: a record for
    a removed scrippet stays behind in case the ID comes back.

    Legacy documents keyed by normalized path are migrated to the ID the
    first time the path is seen with that ID.
    """

    def __init__(self, states: Dict[str, Dict[str, Any]], save: Callable[[], None]):
        """
        Args:
            states: The raw script_states mapping of the settings document.
                Written back into on flush().
            save: Persists the settings document.
        """
        self._states = states
        self._save = save
        self._entries: Dict[str, ScriptPreference] = {
            key: ScriptPreference.from_dict(value) for key, value in states.items()
        }
        self._dirty = False

    @property
    def dirty(self) -> bool:
        return self._dirty

    def get(self, scrippet_id: str) -> Optional[ScriptPreference]:
        return self._entries.get(scrippet_id)

    def ensure(self, scrippet_id: str, path: str) -> ScriptPreference:
        """Get the preference for an ID, creating or migrating it if needed."""
        existing = self._entries.get(scrippet_id)
        if existing is not None:
            return existing

        legacy_key = normalize_path(path)
        legacy = self._entries.pop(legacy_key, None)
        if legacy is not None:
            logger.info(f"Migrated preference for {legacy_key} to id '{scrippet_id}'")
            self._entries[scrippet_id] = legacy
            self._dirty = True
            return legacy

        preference = ScriptPreference()
        self._entries[scrippet_id] = preference
        self._dirty = True
        return preference

    def set_enabled(self, scrippet_id: str, path: str, enabled: bool) -> ScriptPreference:
        preference = self.ensure(scrippet_id, path)
        if preference.enabled != enabled:
            preference.enabled = enabled
            self._dirty = True
        return preference

    def mark_run(self, scrippet_id: str, path: str) -> bool:
        """Record that a scrippet completed a run.

        Returns:
            True if this was the first recorded run.
        """
        preference = self.ensure(scrippet_id, path)
        if preference.has_run:
            return False
        preference.has_run = True
        self._dirty = True
        return True

    def flush(self) -> bool:
        """Persist the records if anything changed.

        Best effort: a failed write is logged and not retried until the
        next change marks the store dirty again.

        Returns:
            True if the document was written.
        """
        if not self._dirty:
            return False
        self._dirty = False

        self._states.clear()
        self._states.update({key: pref.to_dict() for key, pref in self._entries.items()})
        try:
            self._save()
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save scrippet preferences: {e}")
            return False
        return True
