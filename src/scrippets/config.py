# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Settings document for Scrippets.

One JSON document holds process-wide configuration and the per-ID
preference records:

    {
      "folder": "scrippets",
      "allowed_extensions": [".py"],
      "run_startup_on_load": false,
      "confirm_before_first_run": true,
      "trusted_folders": [],
      "list_sort": {"field": "name", "direction": "asc"},
      "script_states": {"focus-leaf": {"enabled": true, "hasRun": false}},
      "startup_acknowledged": false
    }

Location: $SCRIPPETS_HOME/settings.json (default ~/.scrippets).
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from scrippets.storage import normalize_path

logger = logging.getLogger(__name__)

DEFAULT_FOLDER = "scrippets"
STARTUP_FOLDER = "startup"
DEFAULT_EXTENSIONS = [".py"]
SORT_FIELDS = ("name", "modified", "enabled")
SORT_DIRECTIONS = ("asc", "desc")


class SettingsError(Exception):
    """Raised when settings are invalid."""

    pass


@dataclass
class ListSort:
    """Sort order for scrippet listings."""
    field: str = "name"
    direction: str = "asc"


@dataclass
class Settings:
    """Process-wide configuration plus persisted script preferences."""

    folder: str = DEFAULT_FOLDER
    allowed_extensions: List[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    run_startup_on_load: bool = False
    confirm_before_first_run: bool = True
    trusted_folders: List[str] = field(default_factory=list)
    list_sort: ListSort = field(default_factory=ListSort)
    script_states: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    startup_acknowledged: bool = False

    def validate(self) -> None:
        """Validate settings fields.

        Raises:
            SettingsError: If validation fails.
        """
        if not self.folder or not self.folder.strip():
            raise SettingsError("folder is required and cannot be empty")
        if normalize_path(self.folder) == "/":
            raise SettingsError("folder cannot be the vault root")

        if not self.allowed_extensions:
            raise SettingsError("at least one allowed extension is required")
        for ext in self.allowed_extensions:
            if not ext.startswith(".") or len(ext) < 2:
                raise SettingsError(f"extensions must look like '.py', got: {ext}")

        if self.list_sort.field not in SORT_FIELDS:
            raise SettingsError(
                f"list_sort.field must be one of {', '.join(SORT_FIELDS)}, "
                f"got: {self.list_sort.field}"
            )
        if self.list_sort.direction not in SORT_DIRECTIONS:
            raise SettingsError(
                f"list_sort.direction must be 'asc' or 'desc', got: {self.list_sort.direction}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _normalize_extension(ext: str) -> str:
    ext = str(ext).strip().lower()
    if ext and not ext.startswith("."):
        ext = f".{ext}"
    return ext


def settings_from_dict(data: Dict[str, Any]) -> Settings:
    """Build Settings from a decoded document, ignoring unknown keys."""
    defaults = Settings()
    sort_data = data.get("list_sort") or {}
    if not isinstance(sort_data, dict):
        sort_data = {}

    states = data.get("script_states") or {}
    if not isinstance(states, dict):
        states = {}

    extensions = data.get("allowed_extensions") or defaults.allowed_extensions
    trusted = data.get("trusted_folders") or []
    folder = normalize_path(data.get("folder") or defaults.folder)
    if folder == "/":
        logger.warning(f"Managed folder cannot be the vault root, using {defaults.folder}")
        folder = defaults.folder

    return Settings(
        folder=folder,
        allowed_extensions=[_normalize_extension(e) for e in extensions],
        run_startup_on_load=bool(data.get("run_startup_on_load", defaults.run_startup_on_load)),
        confirm_before_first_run=bool(
            data.get("confirm_before_first_run", defaults.confirm_before_first_run)
        ),
        trusted_folders=[normalize_path(f) for f in trusted],
        list_sort=ListSort(
            field=sort_data.get("field", "name"),
            direction=sort_data.get("direction", "asc"),
        ),
        script_states={
            str(key): dict(value) for key, value in states.items() if isinstance(value, dict)
        },
        startup_acknowledged=bool(data.get("startup_acknowledged", False)),
    )


def home_dir() -> Path:
    """Get the Scrippets home directory ($SCRIPPETS_HOME or ~/.scrippets)."""
    return Path(os.environ.get("SCRIPPETS_HOME", "~/.scrippets")).expanduser()


def settings_path() -> Path:
    return home_dir() / "settings.json"


def events_path() -> Path:
    return home_dir() / "events.jsonl"


def vault_root(override: Optional[str] = None) -> Path:
    """Get the storage root managed paths are relative to.

    Order:
    1. Explicit override (--vault)
    2. $SCRIPPETS_VAULT
    3. Current directory
    """
    if override:
        return Path(override).expanduser()
    env_dir = os.environ.get("SCRIPPETS_VAULT")
    if env_dir:
        return Path(env_dir).expanduser()
    return Path.cwd()


def load_settings(path: Optional[Path] = None) -> Settings:
    """Load settings from disk.

    Args:
        path: Settings file, defaults to settings_path().

    Returns:
        Settings, or defaults if the file doesn't exist or is corrupted.
    """
    path = path or settings_path()
    if not path.exists():
        return Settings()

    try:
        with open(path) as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Ignoring unreadable settings file {path}: {e}")
        return Settings()

    if not isinstance(data, dict):
        logger.warning(f"Ignoring settings file {path}: expected a JSON object")
        return Settings()

    return settings_from_dict(data)


def save_settings(settings: Settings, path: Optional[Path] = None) -> None:
    """Save settings to disk, creating the directory if needed."""
    path = path or settings_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(settings.to_dict(), f, indent=2)
