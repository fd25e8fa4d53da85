"""Tests for scrippet preference records."""

import logging
from unittest.mock import MagicMock

from scrippets.scripts.preferences import PreferenceStore, ScriptPreference


class TestScriptPreference:
    """Tests for ScriptPreference serialization."""

    def test_defaults(self):
        """New preferences are enabled and unconfirmed."""
        pref = ScriptPreference()

        assert pref.enabled is True
        assert pref.has_run is False

    def test_from_dict_uses_disk_schema(self):
        """hasRun on disk should map to has_run."""
        pref = ScriptPreference.from_dict({"enabled": False, "hasRun": True})

        assert pref == ScriptPreference(enabled=False, has_run=True)
        assert pref.to_dict() == {"enabled": False, "hasRun": True}


class TestPreferenceStore:
    """Tests for PreferenceStore."""

    def test_ensure_creates_entry(self):
        """Unknown ids should get a default record."""
        states = {}
        store = PreferenceStore(states, MagicMock())

        pref = store.ensure("hello", "scrippets/hello.py")

        assert pref == ScriptPreference()
        assert store.dirty

    def test_ensure_migrates_path_key(self, caplog):
        """A legacy record keyed by path should move to the id."""
        states = {"scrippets/hello.py": {"enabled": False, "hasRun": True}}
        store = PreferenceStore(states, MagicMock())

        with caplog.at_level(logging.INFO):
            pref = store.ensure("hello", "./scrippets//hello.py")

        assert pref.enabled is False
        assert pref.has_run is True
        assert store.get("scrippets/hello.py") is None
        assert "Migrated preference" in caplog.text

    def test_existing_id_wins_over_legacy(self):
        """An id record should be used even when a path record exists."""
        states = {
            "hello": {"enabled": True, "hasRun": False},
            "scrippets/hello.py": {"enabled": False, "hasRun": True},
        }
        store = PreferenceStore(states, MagicMock())

        assert store.ensure("hello", "scrippets/hello.py").enabled is True
        assert not store.dirty

    def test_set_enabled_only_dirties_on_change(self):
        """Setting the current value should not dirty the store."""
        store = PreferenceStore({"a": {"enabled": True, "hasRun": False}}, MagicMock())

        store.set_enabled("a", "s/a.py", True)
        assert not store.dirty

        store.set_enabled("a", "s/a.py", False)
        assert store.dirty

    def test_mark_run_reports_first_run(self):
        """mark_run should return True only the first time."""
        store = PreferenceStore({}, MagicMock())

        assert store.mark_run("a", "s/a.py") is True
        assert store.mark_run("a", "s/a.py") is False
        assert store.get("a").has_run is True

    def test_flush_writes_states_and_saves_once(self):
        """flush should write records back and save only when dirty."""
        states = {}
        save = MagicMock()
        store = PreferenceStore(states, save)
        store.mark_run("a", "s/a.py")

        assert store.flush() is True
        assert store.flush() is False

        assert states == {"a": {"enabled": True, "hasRun": True}}
        save.assert_called_once()

    def test_flush_failure_is_logged(self, caplog):
        """A failing save should be logged, not raised."""
        save = MagicMock(side_effect=OSError("disk full"))
        store = PreferenceStore({}, save)
        store.ensure("a", "s/a.py")

        with caplog.at_level(logging.ERROR):
            assert store.flush() is False

        assert "disk full" in caplog.text
        assert not store.dirty
