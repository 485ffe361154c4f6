from __future__ import annotations

import sys
from pathlib import Path
from typing import TYPE_CHECKING

import typer

from pairbox.agent.prompting import build_system_prompt, build_tool_definition
from pairbox.agent.session import ToolSession
from pairbox.core.console import console
from pairbox.ui.results import execution_panel

if TYPE_CHECKING:
    from pairbox.main import AppState


def _load_source(source: str | None, file: Path | None) -> str:
    if file is not None:
        if source is not None:
            console.print("[red]Pass either a script argument or --file, not both.[/red]")
            raise typer.Exit(code=2)
        try:
            return file.read_text(encoding="utf-8")
        except OSError as exc:
            console.print(f"[red]Cannot read {file}: {exc}[/red]")
            raise typer.Exit(code=2)
    if source is None or source == "-":
        return sys.stdin.read()
    return source


def run_script(
    ctx: typer.Context,
    source: str | None = typer.Argument(None, help="Script text; '-' or nothing reads stdin."),
    file: Path | None = typer.Option(None, "--file", "-f", help="Read the script from a file."),
    reason: str = typer.Option("manual", "--reason", "-r", help="Reason recorded with the run."),
    as_json: bool = typer.Option(False, "--json", help="Print the invocation record as JSON."),
) -> None:
    """Run one script in a fresh sandbox and print its result."""
    state: AppState = ctx.obj
    text = _load_source(source, file)
    if not text.strip():
        console.print("[red]Script is empty.[/red]")
        raise typer.Exit(code=2)

    session = ToolSession.from_app_config(state.config)
    result = session.run_manual(text, reason=reason)

    if as_json:
        console.print_json(session.records[-1].model_dump_json())
    else:
        console.print(execution_panel(result))

    if not result.ok:
        raise typer.Exit(code=1)


def schema(
    ctx: typer.Context,
    chat: bool = typer.Option(
        False, "--chat", help="Wrap the definition in the chat-completions tool envelope."
    ),
) -> None:
    """Print the JSON schema of the script tool offered to the model."""
    state: AppState = ctx.obj
    definition = build_tool_definition(state.config.tools.allow_writes)
    payload = definition.to_openai() if chat else {
        "name": definition.name,
        "description": definition.description,
        "parameters": definition.parameters,
    }
    console.print_json(data=payload)


def prompt(ctx: typer.Context) -> None:
    """Print the system prompt for the current capability policy."""
    state: AppState = ctx.obj
    tools = state.config.tools
    console.print(
        build_system_prompt(tools.allow_writes, tools.workspace_root),
        markup=False,
        highlight=False,
    )
