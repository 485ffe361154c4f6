"""Rich renderables for execution results, the tool log and approvals.

Rendering lives here so the session layer stays free of console concerns.
"""

from __future__ import annotations

from collections.abc import Iterable

from rich import box
from rich.console import Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from pairbox.agent.gate import PendingApproval
from pairbox.agent.rendering import summarize_reason
from pairbox.agent.session import ToolLogEntry, ToolStatus
from pairbox.core.config import AppConfig, ConfigLoadResult
from pairbox.sandbox.models import ExecutionResult

_STATUS_STYLE = {
    ToolStatus.PENDING: "yellow",
    ToolStatus.OK: "green",
    ToolStatus.ERROR: "red",
}


def _block(title: str, lines: Iterable[str], style: str = "white") -> Text:
    text = Text(f"{title}\n", style="bold")
    body = "\n".join(lines)
    text.append(body if body else "<empty>", style=style if body else "dim")
    return text


def execution_panel(result: ExecutionResult, title: str | None = None) -> Panel:
    """One result as a panel: return value, buffers, logs, status."""
    parts = [_block("Return value", [result.return_repr] if result.return_repr else [])]
    if result.stdout:
        parts.append(_block("Stdout", result.stdout))
    if result.stderr:
        parts.append(_block("Stderr", result.stderr, style="yellow"))
    if result.logs:
        parts.append(_block("Logs", [entry.render() for entry in result.logs], style="cyan"))

    if result.ok:
        status = Text("ok", style="bold green")
        border = "green"
    else:
        status = Text(result.status.render(), style="bold red")
        border = "red"
    parts.append(Text.assemble(("Status: ", "bold"), status))

    heading = title or f"Script {result.invocation_id}"
    subtitle = f"{result.duration_ms:.1f} ms" if result.duration_ms else None
    return Panel(Group(*parts), title=heading, subtitle=subtitle, border_style=border, expand=True)


def tool_log_table(entries: Iterable[ToolLogEntry]) -> Table:
    table = Table(title="Tool log", box=box.SIMPLE_HEAVY, expand=True)
    table.add_column("#", style="dim", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Title", style="white")
    table.add_column("Invocation", style="cyan", no_wrap=True)

    for entry in entries:
        style = _STATUS_STYLE[entry.status]
        table.add_row(
            str(entry.id),
            f"[{style}]{entry.status.value}[/{style}]",
            entry.title,
            entry.invocation_id or "-",
        )
    return table


def tool_entry_panel(entry: ToolLogEntry) -> Panel:
    style = _STATUS_STYLE[entry.status]
    return Panel(
        Text(entry.detail),
        title=f"#{entry.id} {entry.title}",
        subtitle=entry.status.value,
        border_style=style,
    )


def pending_table(entries: Iterable[PendingApproval]) -> Table:
    table = Table(title="Awaiting approval", box=box.SIMPLE, expand=True)
    table.add_column("Id", style="cyan", no_wrap=True)
    table.add_column("Call", style="dim", no_wrap=True)
    table.add_column("Reason", style="white")
    table.add_column("Lines", style="dim", no_wrap=True)

    for entry in entries:
        invocation = entry.invocation
        table.add_row(
            entry.id,
            invocation.call_id or "-",
            summarize_reason(invocation.reason),
            str(len(invocation.source.splitlines())),
        )
    return table


def config_table(config: AppConfig) -> Table:
    table = Table(title="Config", box=box.SIMPLE, expand=True)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")

    for key, value in config.model_dump().items():
        if isinstance(value, dict):
            for sub_key, sub_value in value.items():
                table.add_row(f"{key}.{sub_key}", str(sub_value))
        else:
            table.add_row(key, str(value))
    return table


def config_source_panel(meta: ConfigLoadResult) -> Panel:
    lines = [
        f"Path: {meta.path}",
        "File loaded: yes" if meta.file_loaded else "File loaded: no (using defaults + env)",
    ]
    if meta.env_overrides:
        lines.append("Env overrides: " + ", ".join(sorted(meta.env_overrides)))
    if meta.error:
        lines.append(f"[red]Error: {meta.error}[/red]")
    return Panel("\n".join(lines), title="Config source", box=box.SIMPLE)


__all__ = [
    "config_source_panel",
    "config_table",
    "execution_panel",
    "pending_table",
    "tool_entry_panel",
    "tool_log_table",
]
