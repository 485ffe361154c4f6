from __future__ import annotations

import itertools
from collections.abc import Callable
from typing import TYPE_CHECKING

import typer
from rich.console import Console
from rich.panel import Panel

from pairbox.agent.commands import (
    HELP_TEXT,
    CommandName,
    CommandSyntaxError,
    ShellCommand,
    parse_bool,
    parse_command,
)
from pairbox.agent.records import InvocationRecord
from pairbox.agent.session import CANCELED_MESSAGE, ToolSession
from pairbox.core.config import AppConfig
from pairbox.core.console import console, get_logger
from pairbox.core.result import CapabilityError
from pairbox.ui.results import (
    config_table,
    execution_panel,
    pending_table,
    tool_entry_panel,
    tool_log_table,
)

if TYPE_CHECKING:
    from pairbox.main import AppState

logger = get_logger(__name__)

PROMPT = "pairbox> "
CONTINUATION = "...> "


class ShellController:
    """Dispatches one shell line at a time against a ``ToolSession``."""

    def __init__(self, session: ToolSession, config: AppConfig, out: Console | None = None) -> None:
        self.session = session
        self.config = config
        self.out = out or console
        self._call_ids = itertools.count(1)

    def handle(self, line: str) -> bool:
        """Process one entry; returns False when the shell should exit."""
        try:
            command = parse_command(line)
        except CommandSyntaxError as exc:
            self.out.print(f"[red]{exc}[/red]")
            return True

        if command is None:
            if line.strip():
                self._run(line)
            return True
        return self._dispatch(command)

    def _dispatch(self, command: ShellCommand) -> bool:
        match command.name:
            case CommandName.QUIT:
                return False
            case CommandName.HELP:
                self.out.print(HELP_TEXT, markup=False, highlight=False)
            case CommandName.RUN:
                self._run(command.argument or "")
            case CommandName.TOOL:
                self._tool_call(command.argument or "")
            case CommandName.RESET:
                self.session.reset()
                self.out.print("[green]Runtime reset.[/green]")
            case CommandName.APPROVE:
                self._approve(command.argument)
            case CommandName.SKIP:
                self._skip(command.argument)
            case CommandName.PENDING:
                self._pending()
            case CommandName.LOG:
                self._tool_log(command.argument)
            case CommandName.CONFIG:
                self._config(command)
        return True

    def _run(self, source: str) -> None:
        result = self.session.run_manual(source)
        self.out.print(execution_panel(result))

    def _tool_call(self, payload: str) -> None:
        call_id = f"shell-{next(self._call_ids)}"
        submission = self.session.handle_tool_call(call_id, payload)
        if submission.pending is not None:
            self.out.print(
                f"[yellow]Queued {submission.pending.id} (call {call_id}); "
                "/approve or /skip it.[/yellow]"
            )
        elif submission.result is not None:
            self.out.print(execution_panel(submission.result, title=f"Call {call_id}"))

    def _approve(self, approval_id: str | None) -> None:
        try:
            result = self.session.approve(approval_id)
        except CapabilityError as exc:
            self.out.print(f"[red]{exc}[/red]")
            return
        self.out.print(execution_panel(result))

    def _skip(self, approval_id: str | None) -> None:
        try:
            entry = self.session.skip(approval_id)
        except CapabilityError as exc:
            self.out.print(f"[red]{exc}[/red]")
            return
        self.out.print(f"[yellow]Skipped {entry.id}: {CANCELED_MESSAGE}[/yellow]")

    def _pending(self) -> None:
        pending = self.session.pending()
        if not pending:
            self.out.print("[green]No queued scripts.[/green]")
            return
        self.out.print(pending_table(pending))

    def _tool_log(self, argument: str | None) -> None:
        if argument is None:
            if not len(self.session.tool_log):
                self.out.print("[dim]Tool log is empty.[/dim]")
                return
            self.out.print(tool_log_table(self.session.tool_log))
            return
        try:
            entry_id = int(argument)
        except ValueError:
            self.out.print(f"[red]Tool log ids are numbers, got {argument!r}[/red]")
            return
        entry = self.session.tool_log.get(entry_id)
        if entry is None:
            self.out.print(f"[red]No tool log entry #{entry_id}[/red]")
            return
        self.out.print(tool_entry_panel(entry))

    def _config(self, command: ShellCommand) -> None:
        if command.argument == "show":
            self.out.print(config_table(self.config))
            return
        try:
            enabled = parse_bool(command.value or "")
            self.session.set_writes_enabled(enabled)
        except (CommandSyntaxError, CapabilityError) as exc:
            self.out.print(f"[red]{exc}[/red]")
            return
        tools = self.config.tools.model_copy(update={"allow_writes": enabled})
        self.config = self.config.model_copy(update={"tools": tools})
        label = "enabled" if enabled else "disabled"
        self.out.print(f"[green]File writes {label}.[/green]")


def read_entry(reader: Callable[[str], str]) -> str:
    """Read one entry; a line ending in ':' or '\\' continues until a blank line."""
    first = reader(PROMPT)
    if first.startswith("/") or not first.rstrip().endswith((":", "\\")):
        return first

    lines = [first.rstrip().removesuffix("\\")]
    while True:
        try:
            line = reader(CONTINUATION)
        except EOFError:
            break
        if not line.strip():
            break
        lines.append(line.rstrip().removesuffix("\\"))
    return "\n".join(lines)


def _log_record(record: InvocationRecord) -> None:
    logger.debug("invocation.record %s", record.model_dump_json())


def shell(ctx: typer.Context) -> None:
    """Interactive sandbox shell with persistent state and write approvals."""
    state: AppState = ctx.obj
    session = ToolSession.from_app_config(state.config, record_sink=_log_record)
    controller = ShellController(session, state.config)

    writes = "enabled" if session.writes_enabled else "disabled"
    console.print(
        Panel(
            f"Workspace: {session.config.workspace_root}\n"
            f"File writes: {writes}\n"
            "Type a script to run it, or /help for commands.",
            title="pairbox shell",
            border_style="cyan",
        )
    )

    while True:
        try:
            line = read_entry(lambda prompt: console.input(prompt))
        except (EOFError, KeyboardInterrupt):
            console.print()
            break
        if not controller.handle(line):
            break
