from __future__ import annotations

import importlib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import typer

logger = logging.getLogger(__name__)


class CommandModule(Protocol):
    app: typer.Typer


@dataclass
class CommandSpec:
    name: str
    handler: Callable[..., None]


_FUNCTION_COMMANDS: dict[str, dict[str, str]] = {
    "script": {"run": "run_script", "schema": "schema", "prompt": "prompt"},
    "shell": {"shell": "shell"},
}


def _build_function_commands(module_name: str, module: object) -> list[CommandSpec]:
    specs: list[CommandSpec] = []
    for cmd_name, attr in _FUNCTION_COMMANDS.get(module_name, {}).items():
        handler = getattr(module, attr, None)
        if callable(handler):
            specs.append(CommandSpec(name=cmd_name, handler=handler))
        else:
            logger.error("Command %s.%s not found or not callable", module_name, attr)
    return specs


def discover_commands(
    package_path: Path, package: str = "pairbox.commands"
) -> tuple[list[tuple[str, CommandModule]], list[CommandSpec]]:
    """
    Discover Typer command modules and standalone command callables.

    Modules listed in the function-command table contribute plain functions;
    any other module exposing a ``typer.Typer`` named ``app`` becomes a group.

    Returns:
        A tuple of (typer_modules, function_commands).
    """
    typer_modules: list[tuple[str, CommandModule]] = []
    function_commands: list[CommandSpec] = []

    for file in sorted(package_path.glob("*.py")):
        if file.name.startswith("_"):
            continue
        module_name = file.stem
        module = importlib.import_module(f"{package}.{module_name}")

        if module_name in _FUNCTION_COMMANDS:
            function_commands.extend(_build_function_commands(module_name, module))
            continue

        app = getattr(module, "app", None)
        if isinstance(app, typer.Typer):
            typer_modules.append((module_name.replace("_", "-"), module))  # type: ignore[arg-type]

    return typer_modules, function_commands
