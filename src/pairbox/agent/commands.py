"""Slash-command parsing for the interactive shell."""

from __future__ import annotations

import shlex
from dataclasses import dataclass
from enum import Enum

from pairbox.core.result import PairboxError


class CommandSyntaxError(PairboxError):
    """A slash command could not be parsed."""


class CommandName(Enum):
    RUN = "run"
    RESET = "reset"
    APPROVE = "approve"
    SKIP = "skip"
    PENDING = "pending"
    TOOL = "tool"
    LOG = "log"
    CONFIG = "config"
    HELP = "help"
    QUIT = "quit"


_ALIASES = {
    "exit": CommandName.QUIT,
    "q": CommandName.QUIT,
    "yes": CommandName.APPROVE,
    "no": CommandName.SKIP,
}

_TRUE = {"true", "on", "yes", "1"}
_FALSE = {"false", "off", "no", "0"}

SETTABLE_KEYS = ("allow_writes",)

HELP_TEXT = """\
/run <script>               run a script now (plain lines do the same)
/tool <json>                submit arguments as if the model issued them
/approve [id]               run the oldest (or given) queued script
/skip [id]                  discard the oldest (or given) queued script
/pending                    list queued scripts
/log [n]                    show the tool log, or one entry in full
/reset                      clear all runtime state
/config show                show the active configuration
/config set allow_writes B  enable or disable file writes
/quit                       leave the shell"""


@dataclass(frozen=True, slots=True)
class ShellCommand:
    name: CommandName
    argument: str | None = None
    value: str | None = None


def parse_bool(text: str) -> bool:
    lowered = text.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise CommandSyntaxError(f"expected true or false, got {text!r}")


def _single_optional(name: CommandName, rest: str) -> ShellCommand:
    parts = rest.split()
    if len(parts) > 1:
        raise CommandSyntaxError(f"/{name.value} takes at most one argument")
    return ShellCommand(name, parts[0] if parts else None)


def _parse_config(rest: str) -> ShellCommand:
    try:
        parts = shlex.split(rest)
    except ValueError as exc:
        raise CommandSyntaxError(str(exc)) from exc
    if not parts or parts == ["show"]:
        return ShellCommand(CommandName.CONFIG, "show")
    if parts[0] == "set":
        if len(parts) != 3:
            raise CommandSyntaxError("usage: /config set <key> <value>")
        key, value = parts[1], parts[2]
        if key not in SETTABLE_KEYS:
            raise CommandSyntaxError(
                f"unknown setting {key!r}; settable: {', '.join(SETTABLE_KEYS)}"
            )
        return ShellCommand(CommandName.CONFIG, key, value)
    raise CommandSyntaxError("usage: /config show | /config set <key> <value>")


def parse_command(line: str) -> ShellCommand | None:
    """Parse a slash command; returns None when ``line`` is not one.

    Raises:
        CommandSyntaxError: unknown command or malformed arguments.
    """
    stripped = line.strip()
    if not stripped.startswith("/"):
        return None

    head, _, rest = stripped[1:].partition(" ")
    rest = rest.strip()
    lowered = head.lower()
    name = _ALIASES.get(lowered)
    if name is None:
        try:
            name = CommandName(lowered)
        except ValueError:
            raise CommandSyntaxError(f"unknown command /{head}; try /help") from None

    if name in (CommandName.RUN, CommandName.TOOL):
        if not rest:
            raise CommandSyntaxError(f"/{name.value} needs a script or payload")
        return ShellCommand(name, rest)
    if name in (CommandName.APPROVE, CommandName.SKIP, CommandName.LOG):
        return _single_optional(name, rest)
    if name is CommandName.CONFIG:
        return _parse_config(rest)
    if rest:
        raise CommandSyntaxError(f"/{name.value} takes no arguments")
    return ShellCommand(name)


__all__ = [
    "HELP_TEXT",
    "SETTABLE_KEYS",
    "CommandName",
    "CommandSyntaxError",
    "ShellCommand",
    "parse_bool",
    "parse_command",
]
