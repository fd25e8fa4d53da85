"""Tests for the scrippets CLI."""

import json

import pytest
from typer.testing import CliRunner

from scrippets import __version__
from scrippets.cli import app

runner = CliRunner()

HELLO = '"""@id: hello @name: Hello"""\n\ndef invoke(host):\n    Notice("hello ran")\n'


@pytest.fixture
def env(monkeypatch, tmp_path):
    """Point the CLI at a temporary vault and home."""
    vault = tmp_path / "vault"
    home = tmp_path / "home"
    (vault / "scrippets" / "startup").mkdir(parents=True)
    monkeypatch.setenv("SCRIPPETS_VAULT", str(vault))
    monkeypatch.setenv("SCRIPPETS_HOME", str(home))
    return vault, home


def _write(root, relative, text):
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


def _settings(home):
    return json.loads((home / "settings.json").read_text())


class TestTopLevel:
    """Tests for top-level commands."""

    def test_version(self):
        """version should print the package version."""
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_vault_option_overrides_env(self, env, tmp_path):
        """--vault should select the storage root."""
        other = tmp_path / "other"
        _write(other, "scrippets/hello.py", HELLO)

        result = runner.invoke(app, ["--vault", str(other), "script", "list"])

        assert result.exit_code == 0
        assert "hello" in result.output


class TestScriptList:
    """Tests for script list and info."""

    def test_list_empty(self, env):
        """An empty folder should say so."""
        result = runner.invoke(app, ["script", "list"])

        assert result.exit_code == 0
        assert "No scrippets found" in result.output

    def test_list_shows_commands_startup_and_problems(self, env):
        """Listings group by kind and point at problems."""
        vault, _ = env
        _write(vault, "scrippets/hello.py", HELLO)
        _write(vault, "scrippets/copy.py", '"""@id: hello"""\n')
        _write(vault, "scrippets/startup/boot.py", "def invoke(host): pass\n")

        result = runner.invoke(app, ["script", "list"])

        assert result.exit_code == 0
        assert "Commands:" in result.output
        assert "Startup:" in result.output
        assert "boot" in result.output
        assert "1 problem(s) found" in result.output

    def test_list_rejects_bad_sort(self, env):
        """Unknown sort fields are rejected."""
        result = runner.invoke(app, ["script", "list", "--sort", "size"])

        assert result.exit_code == 1

    def test_info(self, env):
        """info should show id, path and status."""
        vault, _ = env
        _write(vault, "scrippets/hello.py", HELLO)

        result = runner.invoke(app, ["script", "info", "hello"])

        assert result.exit_code == 0
        assert "Path: scrippets/hello.py" in result.output
        assert "Command: scrippet:hello" in result.output
        assert "Has run: no" in result.output

    def test_info_unknown(self, env):
        """info on an unknown id fails."""
        result = runner.invoke(app, ["script", "info", "nope"])

        assert result.exit_code == 1
        assert "No scrippet with id 'nope'" in result.output


class TestScriptRun:
    """Tests for script run."""

    def test_run_with_yes(self, env):
        """--yes skips the first-run prompt."""
        vault, home = env
        _write(vault, "scrippets/hello.py", HELLO)

        result = runner.invoke(app, ["script", "run", "hello", "--yes"])

        assert result.exit_code == 0
        assert "hello ran" in result.output
        assert _settings(home)["script_states"]["hello"]["hasRun"] is True

    def test_run_prompt_declined(self, env):
        """Answering no cancels with exit code 2."""
        vault, home = env
        _write(vault, "scrippets/hello.py", HELLO)

        result = runner.invoke(app, ["script", "run", "hello"], input="n\n")

        assert result.exit_code == 2
        assert "has not run before" in result.output
        assert "Cancelled." in result.output
        assert "hello ran" not in result.output

    def test_run_prompt_approved(self, env):
        """Answering yes runs the scrippet; the next run does not prompt."""
        vault, _ = env
        _write(vault, "scrippets/hello.py", HELLO)

        first = runner.invoke(app, ["script", "run", "hello"], input="y\n")
        second = runner.invoke(app, ["script", "run", "hello"])

        assert first.exit_code == 0
        assert second.exit_code == 0
        assert "has not run before" not in second.output

    def test_run_unknown(self, env):
        """Unknown ids exit with 1."""
        result = runner.invoke(app, ["script", "run", "nope", "--yes"])

        assert result.exit_code == 1

    def test_run_failure(self, env):
        """A scrippet that raises exits with 1."""
        vault, _ = env
        _write(vault, "scrippets/boom.py", "def invoke(host):\n    raise RuntimeError('boom')\n")

        result = runner.invoke(app, ["script", "run", "boom", "--yes"])

        assert result.exit_code == 1
        assert 'Scrippet "Boom" failed: boom' in result.output

    def test_disable_then_run(self, env):
        """Disabled scrippets exit with 2."""
        vault, home = env
        _write(vault, "scrippets/hello.py", HELLO)

        disabled = runner.invoke(app, ["script", "disable", "hello"])
        result = runner.invoke(app, ["script", "run", "hello", "--yes"])

        assert disabled.exit_code == 0
        assert _settings(home)["script_states"]["hello"]["enabled"] is False
        assert result.exit_code == 2
        assert "is disabled" in result.output

    def test_enable_unknown(self, env):
        """Enabling an unknown id fails."""
        result = runner.invoke(app, ["script", "enable", "nope"])

        assert result.exit_code == 1

    def test_startup(self, env):
        """startup runs startup scrippets and reports each result."""
        vault, _ = env
        _write(vault, "scrippets/startup/boot.py", 'def invoke(host):\n    Notice("booted")\n')

        result = runner.invoke(app, ["script", "startup"])

        assert result.exit_code == 0
        assert "booted" in result.output
        assert "boot: succeeded" in result.output

    def test_history(self, env):
        """history lists logged runs."""
        vault, _ = env
        _write(vault, "scrippets/hello.py", HELLO)
        runner.invoke(app, ["script", "run", "hello", "--yes"])

        result = runner.invoke(app, ["script", "history", "hello"])

        assert result.exit_code == 0
        assert "scrippet.completed" in result.output


class TestProblems:
    """Tests for problems and fix-id."""

    def test_no_problems(self, env):
        """A clean folder reports no problems."""
        result = runner.invoke(app, ["script", "problems"])

        assert result.exit_code == 0
        assert "No problems found." in result.output

    def test_fix_duplicate(self, env):
        """fix-id applies the suggested id."""
        vault, _ = env
        _write(vault, "scrippets/a.py", '"""@id: foo"""\ndef invoke(host): pass\n')
        _write(vault, "scrippets/b.py", '"""@id: foo"""\ndef invoke(host): pass\n')

        problems = runner.invoke(app, ["script", "problems"])
        assert problems.exit_code == 1
        assert "suggested: foo-2" in problems.output

        path = "scrippets/b.py" if "  scrippets/b.py" in problems.output else "scrippets/a.py"
        fixed = runner.invoke(app, ["script", "fix-id", path])

        assert fixed.exit_code == 0
        assert "now has id 'foo-2'" in fixed.output
        assert runner.invoke(app, ["script", "problems"]).exit_code == 0

    def test_fix_id_requires_id_without_duplicate(self, env):
        """fix-id on a healthy file needs --id."""
        vault, _ = env
        _write(vault, "scrippets/a.py", "def invoke(host): pass\n")

        result = runner.invoke(app, ["script", "fix-id", "scrippets/a.py"])

        assert result.exit_code == 1
        assert "pass --id" in result.output

    def test_fix_id_explicit(self, env):
        """fix-id --id renames a healthy file's id."""
        vault, _ = env
        _write(vault, "scrippets/a.py", "def invoke(host): pass\n")

        result = runner.invoke(app, ["script", "fix-id", "scrippets/a.py", "--id", "Renamed"])

        assert result.exit_code == 0
        assert "now has id 'renamed'" in result.output


class TestTrustAndConfig:
    """Tests for trust and config commands."""

    def test_trust_and_untrust(self, env):
        """Trusted folders are normalized and persisted."""
        _, home = env

        runner.invoke(app, ["script", "trust", "./scrippets/"])
        assert _settings(home)["trusted_folders"] == ["scrippets"]

        runner.invoke(app, ["script", "untrust", "scrippets"])
        assert _settings(home)["trusted_folders"] == []

    def test_trusted_run_does_not_prompt(self, env):
        """Trusted scrippets run without confirmation."""
        vault, _ = env
        _write(vault, "scrippets/hello.py", HELLO)
        runner.invoke(app, ["script", "trust", "scrippets"])

        result = runner.invoke(app, ["script", "run", "hello"])

        assert result.exit_code == 0
        assert "has not run before" not in result.output

    def test_config_show(self, env):
        """show prints the settings document."""
        result = runner.invoke(app, ["config", "show"])

        assert result.exit_code == 0
        assert '"folder": "scrippets"' in result.output

    def test_config_validate(self, env):
        """validate accepts the defaults."""
        result = runner.invoke(app, ["config", "validate"])

        assert result.exit_code == 0
        assert "settings are valid" in result.output

    def test_set_folder(self, env):
        """set-folder persists the folder and creates it."""
        vault, home = env

        result = runner.invoke(app, ["config", "set-folder", "tools/scrippets"])

        assert result.exit_code == 0
        assert _settings(home)["folder"] == "tools/scrippets"
        assert (vault / "tools" / "scrippets" / "startup").is_dir()

    def test_set_folder_rejects_vault_root(self, env):
        """set-folder refuses the vault root."""
        _, home = env

        result = runner.invoke(app, ["config", "set-folder", "/"])

        assert result.exit_code == 1
        assert not (home / "settings.json").exists()

    def test_set_sort_validates(self, env):
        """set-sort rejects unknown fields."""
        _, home = env

        bad = runner.invoke(app, ["config", "set-sort", "size"])
        good = runner.invoke(app, ["config", "set-sort", "modified", "desc"])

        assert bad.exit_code == 1
        assert good.exit_code == 0
        assert _settings(home)["list_sort"] == {"field": "modified", "direction": "desc"}

    def test_set_toggle(self, env):
        """set flips boolean options."""
        _, home = env

        result = runner.invoke(app, ["config", "set", "run-startup-on-load", "true"])

        assert result.exit_code == 0
        assert _settings(home)["run_startup_on_load"] is True
        assert _settings(home)["startup_acknowledged"] is True

    def test_set_unknown_option(self, env):
        """Unknown options are rejected."""
        result = runner.invoke(app, ["config", "set", "colour", "true"])

        assert result.exit_code == 1
