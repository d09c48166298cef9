"""
Tests for the tokenvault command line.

Tests cover:
- add/get/list/delete through the CLI
- Exit codes for vault errors
- shell, env and shell-init commands
- migrate
"""
import os
import stat

import orjson
import pytest
from click.testing import CliRunner

from tokenvault import cli as cli_module
from tokenvault.cli import cli
from tokenvault.version import __version__


PASSPHRASE = "master-key"


@pytest.fixture
def home(tmp_path, monkeypatch):
    monkeypatch.setenv("TOKENVAULT_SCRYPT_N", "16")
    return tmp_path / "vault"


@pytest.fixture
def run(home):
    runner = CliRunner()

    def invoke(*args, input=None):
        return runner.invoke(cli, ["--home", str(home), *args], input=input)

    return invoke


@pytest.fixture
def with_token(run):
    """Store holding github_token; new stores confirm the passphrase."""
    result = run(
        "add", "github_token", "ghp_abc123",
        input=f"{PASSPHRASE}\n{PASSPHRASE}\n",
    )
    assert result.exit_code == 0, result.output
    return run


def last_line(result):
    return result.output.splitlines()[-1]


class TestTokenCommands:
    """Tests for add/get/list/delete."""

    def test_scenario(self, with_token):
        run = with_token
        result = run("get", "github_token", input=f"{PASSPHRASE}\n")
        assert result.exit_code == 0
        assert last_line(result) == "ghp_abc123"

        result = run("list")
        assert result.exit_code == 0
        assert result.output.splitlines() == ["github_token"]

        result = run("delete", "github_token")
        assert result.exit_code == 0

        result = run("get", "github_token")
        assert result.exit_code == 1
        assert "token 'github_token' not found" in result.output

        result = run("list")
        assert result.exit_code == 0
        assert "github_token" not in result.output.splitlines()

    def test_add_prompts_for_value(self, with_token):
        run = with_token
        result = run("add", "npm_token", input=f"{PASSPHRASE}\nnpm_xyz\n")
        assert result.exit_code == 0, result.output
        assert "Token 'npm_token' stored." in result.output
        assert "npm_xyz" not in result.output

        result = run("get", "npm_token", input=f"{PASSPHRASE}\n")
        assert last_line(result) == "npm_xyz"

    def test_add_replaces(self, with_token):
        run = with_token
        result = run("add", "github_token", "ghp_new", input=f"{PASSPHRASE}\n")
        assert result.exit_code == 0
        assert "replaced" in result.output
        result = run("get", "github_token", input=f"{PASSPHRASE}\n")
        assert last_line(result) == "ghp_new"

    def test_new_store_passphrase_mismatch(self, run, home):
        result = run("add", "token", "value", input="one\ntwo\n")
        assert result.exit_code != 0
        assert not (home / "tokens.json").exists()

    def test_list_needs_no_passphrase(self, with_token):
        result = with_token("list")
        assert result.exit_code == 0
        assert "Master key" not in result.output

    def test_passphrase_not_echoed(self, with_token):
        result = with_token("get", "github_token", input=f"{PASSPHRASE}\n")
        assert PASSPHRASE not in result.output

    def test_delete_missing(self, with_token):
        result = with_token("delete", "missing")
        assert result.exit_code == 1
        assert "not found" in result.output


class TestExitCodes:
    """Tests for error → exit code mapping."""

    def test_wrong_passphrase(self, with_token):
        result = with_token("get", "github_token", input="wrong\n")
        assert result.exit_code == 3
        assert "wrong master key or corrupted data" in result.output

    def test_wrong_passphrase_on_add(self, with_token):
        result = with_token("add", "other", "value", input="wrong\n")
        assert result.exit_code == 3

    def test_corrupt_store(self, run, home):
        home.mkdir(parents=True)
        (home / "tokens.json").write_text("not json")
        result = run("list")
        assert result.exit_code == 4
        assert "corrupt" in result.output

    def test_add_rejects_empty_name(self, run, home):
        result = run("add", "", "value")
        assert result.exit_code == 2
        assert "cannot be empty" in result.output
        assert "Master key" not in result.output
        assert not (home / "tokens.json").exists()

    def test_add_rejects_non_utf8_value(self, run, home):
        # undecodable argv bytes reach click surrogate-escaped
        result = run("add", "token", "\udcff")
        assert result.exit_code == 2
        assert "valid UTF-8" in result.output
        assert "Master key" not in result.output
        assert not (home / "tokens.json").exists()

    def test_invalid_configuration(self, run, monkeypatch):
        monkeypatch.setenv("TOKENVAULT_KDF", "md5")
        result = run("list")
        assert result.exit_code == 2
        assert "invalid configuration" in result.output

    def test_version(self, run):
        result = run("--version")
        assert result.exit_code == 0
        assert __version__ in result.output


class TestShellCommands:
    """Tests for shell, env and shell-init."""

    def test_shell_passes_tokens_in_environment(self, with_token, monkeypatch):
        calls = []

        def fake_call(args, env):
            calls.append((args, env))
            return 7

        monkeypatch.setenv("SHELL", "/bin/zsh")
        monkeypatch.setattr(cli_module.subprocess, "call", fake_call)
        result = with_token("shell", input=f"{PASSPHRASE}\n")

        assert result.exit_code == 7
        args, env = calls[0]
        assert args == ["/bin/zsh"]
        assert env["github_token"] == "ghp_abc123"

    def test_env_writes_side_channel_file(self, with_token, home):
        result = with_token("env", input=f"{PASSPHRASE}\n")
        assert result.exit_code == 0, result.output
        env_file = home / "env.sh"
        assert env_file.read_text() == "export github_token=ghp_abc123\n"
        if os.name != "nt":
            assert stat.S_IMODE(env_file.stat().st_mode) == 0o600

    def test_env_wrong_passphrase_writes_nothing(self, with_token, home):
        result = with_token("env", input="wrong\n")
        assert result.exit_code == 3
        assert not (home / "env.sh").exists()

    def test_env_honors_runtime_dir(self, with_token, tmp_path, monkeypatch):
        monkeypatch.setenv("XDG_RUNTIME_DIR", str(tmp_path / "run"))
        result = with_token("env", input=f"{PASSPHRASE}\n")
        assert result.exit_code == 0
        assert (tmp_path / "run" / "tokenvault" / "env.sh").exists()

    def test_env_unwritable_location(self, with_token, tmp_path, monkeypatch):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        monkeypatch.setenv("TOKENVAULT_ENV_FILE", str(blocker / "env.sh"))
        result = with_token("env", input=f"{PASSPHRASE}\n")
        assert result.exit_code == 5
        assert "Error:" in result.output
        assert "Traceback" not in result.output

    def test_env_count_excludes_skipped_names(self, with_token):
        result = with_token("add", "github-token", "x", input=f"{PASSPHRASE}\n")
        assert result.exit_code == 0, result.output
        result = with_token("env", input=f"{PASSPHRASE}\n")
        assert result.exit_code == 0, result.output
        assert "Wrote 1 token(s)" in result.output

    def test_shell_init(self, run, home):
        result = run("shell-init")
        assert result.exit_code == 0
        assert result.output.startswith("tokenvault_env() {")
        assert str(home / "env.sh") in result.output


class TestMigrateCommand:
    """Tests for migrate."""

    def test_migrates_legacy_store(self, run, home, monkeypatch):
        monkeypatch.setenv("TOKENVAULT_KDF", "sha256")
        run("add", "token", "value", input=f"{PASSPHRASE}\n{PASSPHRASE}\n")
        assert "version" not in orjson.loads((home / "tokens.json").read_bytes())

        monkeypatch.delenv("TOKENVAULT_KDF")
        result = run("migrate", input=f"{PASSPHRASE}\n")
        assert result.exit_code == 0, result.output
        assert "Migrated 1 token(s)." in result.output
        assert orjson.loads((home / "tokens.json").read_bytes())["version"] == 2

        result = run("get", "token", input=f"{PASSPHRASE}\n")
        assert last_line(result) == "value"

    def test_migrate_wrong_passphrase(self, run, home, monkeypatch):
        monkeypatch.setenv("TOKENVAULT_KDF", "sha256")
        run("add", "token", "value", input=f"{PASSPHRASE}\n{PASSPHRASE}\n")
        result = run("migrate", input="wrong\n")
        assert result.exit_code == 3
