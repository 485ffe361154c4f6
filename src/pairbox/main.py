from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from time import perf_counter

import typer
from rich.panel import Panel

from . import __version__
from .core.config import AppConfig, ConfigLoadResult, load_config
from .core.console import console, setup_logging
from .core.registry import discover_commands
from .core.result import Err
from .core.security import validate_workspace_root
from .ui.results import config_source_panel, config_table

app = typer.Typer(help="pairbox: sandboxed scripts for a terminal pair-programming agent.")
logger = logging.getLogger(__name__)


@dataclass
class AppState:
    config: AppConfig
    config_meta: ConfigLoadResult
    logger: logging.Logger


def _apply_overrides(
    config: AppConfig, workspace: Path | None, allow_writes: bool | None
) -> AppConfig:
    updates: dict[str, object] = {}
    if workspace is not None:
        result = validate_workspace_root(workspace)
        if isinstance(result, Err):
            console.print(f"[red]{result.error}[/red]")
            raise typer.Exit(code=2)
        updates["workspace_root"] = result.value
    if allow_writes is not None:
        updates["allow_writes"] = allow_writes
    if not updates:
        return config
    return config.model_copy(update={"tools": config.tools.model_copy(update=updates)})


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to a pairbox config file (TOML or JSON)."
    ),
    workspace: Path | None = typer.Option(
        None, "--workspace", "-w", help="Workspace root scripts are confined to."
    ),
    allow_writes: bool | None = typer.Option(
        None, "--allow-writes/--read-only", help="Enable or disable script file writes."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    loaded_config, meta = load_config(config_path=config)
    loaded_config = _apply_overrides(loaded_config, workspace, allow_writes)

    app_logger = setup_logging(level=loaded_config.log_level, verbose=verbose)
    ctx.obj = AppState(config=loaded_config, config_meta=meta, logger=app_logger)

    if meta.error:
        console.print(
            Panel(
                f"[bold red]Configuration Error - Safe Mode Active[/bold red]\n\n"
                f"Failed to load {meta.path}:\n{meta.error}\n\n"
                f"[yellow]Using default settings.[/yellow]",
                border_style="red",
            )
        )
    else:
        app_logger.debug(
            "Loaded configuration from %s (env overrides: %s)",
            meta.path,
            sorted(meta.env_overrides),
        )


@app.command("config")
def show_config(ctx: typer.Context) -> None:
    """Show the active configuration and where it came from."""
    state: AppState = ctx.obj
    console.print(config_table(state.config))
    console.print(config_source_panel(state.config_meta))


@app.command("version")
def show_version() -> None:
    """Print the pairbox version."""
    console.print(__version__)


def _register_commands() -> None:
    commands_path = Path(__file__).resolve().parent / "commands"
    typer_modules, function_commands = discover_commands(commands_path)

    for name, module in typer_modules:
        app.add_typer(module.app, name=name)

    for spec in function_commands:
        app.command(spec.name)(spec.handler)


def _register_commands_with_timing() -> None:
    start = perf_counter()
    _register_commands()
    elapsed = perf_counter() - start
    logger.debug("Command registry initialized in %.3f seconds", elapsed)


_register_commands_with_timing()


def cli() -> None:
    app()


if __name__ == "__main__":
    cli()
