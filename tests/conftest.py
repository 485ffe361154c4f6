from __future__ import annotations

import os
import shutil
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from rich.console import Console
from typer.testing import CliRunner

# Detect CI environment (GitHub Actions sets CI=true)
IS_CI = os.environ.get("CI", "").lower() == "true"


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "local_only: marks tests that require local environment (skip in CI)",
    )
    config.addinivalue_line(
        "markers",
        "needs_git: marks tests that shell out to a git binary",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip local_only tests in CI and git tests where git is missing."""
    skip_ci = pytest.mark.skip(reason="Skipped in CI (requires local environment)")
    skip_git = pytest.mark.skip(reason="git binary not available")
    has_git = shutil.which("git") is not None
    for item in items:
        if IS_CI and "local_only" in item.keywords:
            item.add_marker(skip_ci)
        if not has_git and "needs_git" in item.keywords:
            item.add_marker(skip_git)


ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from pairbox.agent.session import ToolSession  # noqa: E402
from pairbox.core.config import CapabilityConfig  # noqa: E402
from pairbox.sandbox.models import ModelIssued, ScriptInvocation  # noqa: E402
from pairbox.sandbox.runtime import PersistentRuntime  # noqa: E402


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture(autouse=True)
def isolate_config(tmp_path: Path, monkeypatch: Any) -> Path:
    """Point config to a temp path so tests don't touch user state."""
    cfg_path = tmp_path / "config.toml"
    monkeypatch.setenv("PAIRBOX_CONFIG", str(cfg_path))
    for key in list(os.environ):
        if key.startswith("PAIRBOX_TOOLS__") or key == "PAIRBOX_LOG_LEVEL":
            monkeypatch.delenv(key, raising=False)
    return cfg_path


@pytest.fixture(autouse=True)
def capture_console(monkeypatch: Any) -> Console:
    """Use an in-memory Rich console during tests."""
    test_console = Console(record=True, width=120)
    import pairbox.commands.script as script_cmd
    import pairbox.commands.shell as shell_cmd
    import pairbox.core.console as core_console
    import pairbox.main as pairbox_main

    for module in (core_console, pairbox_main, script_cmd, shell_cmd):
        monkeypatch.setattr(module, "console", test_console)
    return test_console


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """A workspace root with a couple of files in it."""
    ws = tmp_path / "workspace"
    ws.mkdir()
    (ws / "README.md").write_text("# demo\nhello world\n", encoding="utf-8")
    (ws / "src").mkdir()
    (ws / "src" / "app.py").write_text("def main():\n    return 42\n", encoding="utf-8")
    return ws.resolve()


@pytest.fixture
def outside_dir(tmp_path: Path) -> Path:
    """A directory next to (not inside) the workspace."""
    outside = tmp_path / "outside"
    outside.mkdir()
    (outside / "secret.txt").write_text("top secret\n", encoding="utf-8")
    return outside.resolve()


@pytest.fixture
def read_only_config(workspace: Path) -> CapabilityConfig:
    return CapabilityConfig(workspace_root=workspace, writes_enabled=False)


@pytest.fixture
def writable_config(workspace: Path) -> CapabilityConfig:
    return CapabilityConfig(workspace_root=workspace, writes_enabled=True)


@pytest.fixture
def make_runtime() -> Callable[..., PersistentRuntime]:
    def factory(config: CapabilityConfig, **kwargs: Any) -> PersistentRuntime:
        return PersistentRuntime(config, **kwargs)

    return factory


@pytest.fixture
def make_session() -> Callable[..., ToolSession]:
    def factory(config: CapabilityConfig, **kwargs: Any) -> ToolSession:
        return ToolSession(config, **kwargs)

    return factory


@pytest.fixture
def model_invocation() -> Callable[..., ScriptInvocation]:
    """Factory for model-issued invocations, as the adapter would build them."""

    def factory(source: str, call_id: str = "call_1", reason: str = "test") -> ScriptInvocation:
        return ScriptInvocation(source=source, reason=reason, origin=ModelIssued(call_id=call_id))

    return factory
