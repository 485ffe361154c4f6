from __future__ import annotations

import json
from pathlib import Path

import click
from rich.console import Console
from typer.main import get_command
from typer.testing import CliRunner

from pairbox import __version__
from pairbox.main import app

runner = CliRunner()


def invoke(workspace: Path, *args: str, input: str | None = None):  # type: ignore[no-untyped-def]
    return runner.invoke(app, ["--workspace", str(workspace), *args], input=input)


def test_app_version() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_all_commands_have_help() -> None:
    """
    Critical Smoke Test: Iterate over EVERY registered command and ensure
    it accepts --help. This catches import errors, syntax errors in decorators,
    and missing dependencies in the command modules.
    """
    click_app = get_command(app)
    assert isinstance(click_app, click.Group)
    assert {"run", "schema", "prompt", "shell", "config", "version"} <= set(click_app.commands)
    for name in click_app.commands:
        result = runner.invoke(app, [name, "--help"])
        assert result.exit_code == 0, f"Command 'pairbox {name} --help' failed!"
        assert "Usage:" in result.stdout


def test_run_inline(workspace: Path) -> None:
    result = invoke(workspace, "run", "6 * 7")
    assert result.exit_code == 0
    assert "42" in result.stdout
    assert "Status: ok" in result.stdout


def test_run_failure_exit_code(workspace: Path) -> None:
    result = invoke(workspace, "run", "read_file('../outside/secret.txt')")
    assert result.exit_code == 1
    assert "PathTraversal" in result.stdout
    assert "top secret" not in result.stdout


def test_run_json_record(workspace: Path, capture_console: Console) -> None:
    result = invoke(workspace, "run", "--json", "--reason", "peek", "read_file('README.md')")
    assert result.exit_code == 0
    record = json.loads(capture_console.export_text())
    assert record["origin"] == "manual"
    assert record["reason"] == "peek"
    assert record["return_repr"] == "# demo\nhello world\n"


def test_run_from_stdin(workspace: Path) -> None:
    result = invoke(workspace, "run", input="print('from stdin')\n")
    assert result.exit_code == 0
    assert "from stdin" in result.stdout


def test_run_from_file(workspace: Path, tmp_path: Path) -> None:
    script = tmp_path / "script.py"
    script.write_text("len(list_dir('.'))\n", encoding="utf-8")
    result = invoke(workspace, "run", "--file", str(script))
    assert result.exit_code == 0
    assert "2" in result.stdout


def test_run_empty_script(workspace: Path) -> None:
    result = invoke(workspace, "run", input="   \n")
    assert result.exit_code == 2
    assert "Script is empty." in result.stdout


def test_run_respects_read_only(workspace: Path) -> None:
    result = invoke(workspace, "--read-only", "run", "write_file('x.txt', 'y')")
    assert result.exit_code == 1
    assert "WritesDisabled" in result.stdout
    assert not (workspace / "x.txt").exists()


def test_run_with_writes(workspace: Path) -> None:
    result = invoke(workspace, "--allow-writes", "run", "write_file('x.txt', 'y')")
    assert result.exit_code == 0
    assert (workspace / "x.txt").read_text(encoding="utf-8") == "y"


def test_schema(workspace: Path, capture_console: Console) -> None:
    result = invoke(workspace, "schema", "--chat")
    assert result.exit_code == 0
    payload = json.loads(capture_console.export_text())
    assert payload["type"] == "function"
    assert payload["function"]["name"] == "run_script"


def test_prompt_tracks_write_mode(workspace: Path) -> None:
    read_only = invoke(workspace, "prompt")
    assert read_only.exit_code == 0
    assert "READ-ONLY" in read_only.stdout
    writable = invoke(workspace, "--allow-writes", "prompt")
    assert "ENABLED" in writable.stdout


def test_config_command(workspace: Path) -> None:
    result = invoke(workspace, "config")
    assert result.exit_code == 0
    assert "tools.allow_writes" in result.stdout
    assert "Config source" in result.stdout


def test_invalid_workspace(tmp_path: Path) -> None:
    result = runner.invoke(app, ["--workspace", str(tmp_path / "missing"), "version"])
    assert result.exit_code == 2
    assert "does not exist" in result.stdout


def test_safe_mode_on_bad_config(isolate_config: Path, workspace: Path) -> None:
    isolate_config.write_text("[tools\n", encoding="utf-8")
    result = invoke(workspace, "version")
    assert result.exit_code == 0
    assert "Safe Mode Active" in result.stdout


def test_shell_session(workspace: Path) -> None:
    result = invoke(workspace, "shell", input="total = 5\ntotal * 2\n/quit\n")
    assert result.exit_code == 0
    assert "pairbox shell" in result.stdout
    assert "10" in result.stdout


def test_shell_approval_flow(workspace: Path) -> None:
    lines = [
        '/tool {"source": "write_file(\'approved.txt\', \'ok\')", "reason": "save"}',
        "/pending",
        "/approve",
        "",
    ]
    result = invoke(workspace, "--allow-writes", "shell", input="\n".join(lines))
    assert result.exit_code == 0
    assert "Queued" in result.stdout
    assert (workspace / "approved.txt").read_text(encoding="utf-8") == "ok"
