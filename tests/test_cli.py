"""CLI tests through typer's runner with the vault replaced by a fake."""

import pytest
from typer.testing import CliRunner

import dotvault.cli
from dotvault.cli import app
from dotvault.paths import PathResolver

from conftest import MANIFEST, FakeBackend, write_manifest

runner = CliRunner()


@pytest.fixture
def cli_env(tmp_path, monkeypatch, vault_entries):
    """A machine root for the CLI plus the fake vault behind it."""
    root = tmp_path / "cli"
    paths = PathResolver(root=root, env={})
    paths.home.mkdir(parents=True)
    write_manifest(paths, MANIFEST)

    backends = []

    def fake_create_backend(settings, resolver):
        backend = FakeBackend(settings, resolver, vault_entries)
        backends.append(backend)
        return backend

    monkeypatch.setattr(dotvault.cli, "create_backend", fake_create_backend)
    monkeypatch.delenv("DOTVAULT_OFFLINE", raising=False)
    monkeypatch.delenv("DOTVAULT_BACKEND", raising=False)
    monkeypatch.delenv("DOTVAULT_LOCATION", raising=False)
    monkeypatch.setenv("DOTVAULT_HOME", str(root))
    return paths, vault_entries, backends


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "dotvault version" in result.stdout


def test_sync_push_then_in_sync(cli_env):
    paths, entries, _ = cli_env
    (paths.home / ".zshrc").write_text("zsh\n")

    result = runner.invoke(app, ["sync", "Zshrc"])
    assert result.exit_code == 0, result.stdout
    assert "pushed" in result.stdout
    assert entries[""]["Zshrc"] == "zsh\n"

    result = runner.invoke(app, ["sync", "Zshrc"])
    assert result.exit_code == 0
    assert "in sync" in result.stdout


def test_sync_conflict_exit_code(cli_env):
    paths, entries, _ = cli_env
    (paths.home / ".zshrc").write_text("local\n")
    entries[""] = {"Zshrc": "remote\n"}

    result = runner.invoke(app, ["sync", "Zshrc"])

    assert result.exit_code == 2
    assert "conflict" in result.stdout


def test_sync_both_force_flags(cli_env):
    result = runner.invoke(app, ["sync", "--force-local", "--force-vault"])

    assert result.exit_code == 1
    assert "mutually exclusive" in result.stdout


def test_sync_unknown_item(cli_env):
    result = runner.invoke(app, ["sync", "Nope"])

    assert result.exit_code == 1
    assert "unknown item" in result.stdout


def test_invalid_manifest(cli_env):
    paths, _, _ = cli_env
    write_manifest(paths, {"items": [{"name": "Bad", "path": "relative"}]})

    result = runner.invoke(app, ["validate"])

    assert result.exit_code == 1
    assert "Bad: path:" in result.stdout


def test_validate(cli_env):
    result = runner.invoke(app, ["validate"])

    assert result.exit_code == 0
    assert "Items: 4" in result.stdout


def test_push_requires_items_or_all(cli_env):
    result = runner.invoke(app, ["push"])
    assert result.exit_code == 1

    paths, entries, _ = cli_env
    (paths.home / ".zshrc").write_text("zsh\n")
    result = runner.invoke(app, ["push", "--all"])
    assert result.exit_code == 0
    assert entries[""]["Zshrc"] == "zsh\n"


def test_pull_refuses_drift_then_forces(cli_env):
    paths, entries, _ = cli_env
    (paths.home / ".zshrc").write_text("v1\n")
    runner.invoke(app, ["push", "Zshrc"])
    (paths.home / ".zshrc").write_text("local edit\n")
    entries[""]["Zshrc"] = "vault edit\n"

    result = runner.invoke(app, ["pull", "Zshrc"])
    assert result.exit_code == 1
    assert (paths.home / ".zshrc").read_text() == "local edit\n"

    result = runner.invoke(app, ["pull", "Zshrc", "--force"])
    assert result.exit_code == 0
    assert (paths.home / ".zshrc").read_text() == "vault edit\n"


def test_drift_quick_exit_codes(cli_env):
    paths, _, backends = cli_env

    result = runner.invoke(app, ["drift", "--quick"])
    assert result.exit_code == 0
    assert "No sync history" in result.stdout

    (paths.home / ".zshrc").write_text("v1\n")
    runner.invoke(app, ["sync", "Zshrc"])
    backends.clear()

    result = runner.invoke(app, ["drift", "--quick"])
    assert result.exit_code == 0

    (paths.home / ".zshrc").write_text("v2\n")
    result = runner.invoke(app, ["drift", "--quick"])
    assert result.exit_code == 1
    assert "changed" in result.stdout
    assert backends == []


def test_delete_protected_gate(cli_env):
    _, entries, _ = cli_env
    entries[""] = {"Git-Config": "x", "Zshrc": "y"}

    result = runner.invoke(app, ["delete", "Git-Config", "--force"])
    assert result.exit_code == 1
    assert "Git-Config" in entries[""]

    result = runner.invoke(app, ["delete", "Git-Config", "--force", "--confirm", "Git-Config"])
    assert result.exit_code == 0
    assert "Git-Config" not in entries[""]

    result = runner.invoke(app, ["delete", "Zshrc", "--dry-run", "--force"])
    assert result.exit_code == 0
    assert "Zshrc" in entries[""]


def test_list_and_check(cli_env):
    _, entries, _ = cli_env
    entries[""] = {"Zshrc": "y", "Unmanaged": "z"}

    result = runner.invoke(app, ["list"])
    assert result.exit_code == 0
    assert "Unmanaged" in result.stdout

    result = runner.invoke(app, ["check"])
    assert result.exit_code == 1
    assert "Git-Config" in result.stdout

    entries[""]["Git-Config"] = "x"
    result = runner.invoke(app, ["check"])
    assert result.exit_code == 0


def test_offline_mode_skips_vault(cli_env):
    _, _, backends = cli_env

    result = runner.invoke(app, ["sync"], env={"DOTVAULT_OFFLINE": "1"})

    assert result.exit_code == 0
    assert "Offline mode" in result.stdout
    assert backends == []


def test_locked_vault(cli_env, monkeypatch):
    paths, _, _ = cli_env
    (paths.home / ".zshrc").write_text("zsh\n")
    original = dotvault.cli.create_backend

    def locked_backend(settings, resolver):
        backend = original(settings, resolver)
        backend.locked = True
        return backend

    monkeypatch.setattr(dotvault.cli, "create_backend", locked_backend)
    result = runner.invoke(app, ["sync"])

    assert result.exit_code == 1
    assert "dotvault unlock" in result.stdout


def test_backend_command_persists(cli_env):
    paths, _, _ = cli_env

    result = runner.invoke(app, ["backend", "pass"])
    assert result.exit_code == 0
    assert "backend: pass" in paths.config_file.read_text()

    result = runner.invoke(app, ["backend", "keepass"])
    assert result.exit_code == 1


def test_status(cli_env):
    result = runner.invoke(app, ["status"])

    assert result.exit_code == 0
    assert "Backend:" in result.stdout
    assert "never" in result.stdout


def test_protected_delete_prompt_needs_force(cli_env, monkeypatch):
    _, entries, _ = cli_env
    entries[""] = {"Git-Config": "x"}
    monkeypatch.setattr(dotvault.cli, "stdin_is_interactive", lambda: True)

    result = runner.invoke(app, ["delete", "Git-Config"], input="Git-Config\n")
    assert result.exit_code == 1
    assert "Git-Config" in entries[""]

    result = runner.invoke(app, ["delete", "Git-Config", "--force"], input="Git-Config\n")
    assert result.exit_code == 0
    assert "Git-Config" not in entries[""]


def test_get(cli_env):
    _, entries, _ = cli_env
    entries[""] = {"Zshrc": "export EDITOR=vim\n"}

    result = runner.invoke(app, ["get", "Zshrc", "--notes"])
    assert result.exit_code == 0
    assert result.stdout == "export EDITOR=vim\n"

    result = runner.invoke(app, ["get", "Zshrc"])
    assert result.exit_code == 0
    assert "bytes" in result.stdout
    assert "export EDITOR=vim" in result.stdout

    result = runner.invoke(app, ["get", "Missing"])
    assert result.exit_code == 1


def test_create(cli_env, tmp_path):
    _, entries, _ = cli_env

    result = runner.invoke(app, ["create", "API-Token", "sk-123"])
    assert result.exit_code == 0
    assert entries[""]["API-Token"] == "sk-123"

    result = runner.invoke(app, ["create", "API-Token", "sk-456"])
    assert result.exit_code == 1
    assert "already exists" in result.stdout
    assert entries[""]["API-Token"] == "sk-123"

    source = tmp_path / "token.txt"
    source.write_text("from file\n")
    result = runner.invoke(app, ["create", "API-Token", "--file", str(source), "--force"])
    assert result.exit_code == 0
    assert entries[""]["API-Token"] == "from file\n"

    result = runner.invoke(app, ["create", "Notes"], input="from stdin\n")
    assert result.exit_code == 0
    assert entries[""]["Notes"] == "from stdin\n"


def test_create_dry_run(cli_env):
    _, entries, backends = cli_env

    result = runner.invoke(app, ["create", "API-Token", "sk-123", "--dry-run"])

    assert result.exit_code == 0
    assert "Dry run" in result.stdout
    assert "API-Token" not in entries.get("", {})
    assert backends == []


def test_malformed_config_file(cli_env):
    paths, _, _ = cli_env
    paths.config_file.parent.mkdir(parents=True, exist_ok=True)
    paths.config_file.write_text("vault: [unclosed\n")

    result = runner.invoke(app, ["validate"])

    assert result.exit_code == 1
    assert "Config file" in result.stdout
