"""Per-invocation output buffers handed to every capability call."""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from pairbox.core.result import CapabilityDeniedError, ScriptTimeoutError
from pairbox.sandbox.models import LogEntry


@dataclass(slots=True)
class InvocationContext:
    """Mutable state borrowed by one invocation for its lifetime.

    Created fresh for each invocation, so buffers start empty and a context
    can never carry output over from a previous run. Once ``close()`` is
    called, capability handles bound to it refuse further use.
    """

    invocation_id: str
    write_authorized: bool
    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)
    logs: list[LogEntry] = field(default_factory=list)
    deadline: float | None = None
    closed: bool = False

    def ensure_open(self, capability: str) -> None:
        if self.closed:
            raise CapabilityDeniedError(
                f"{capability} was bound to a finished invocation; call it by name instead",
                context={"invocation": self.invocation_id},
            )

    def check_deadline(self, capability: str) -> None:
        """Raise ``Timeout`` once the invocation's wall-clock deadline has passed.

        Long-running host calls poll this, since the interpreter only checks
        its deadline between script nodes.
        """
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise ScriptTimeoutError(
                f"{capability} ran past the script time limit",
                context={"invocation": self.invocation_id},
            )

    def write_stdout(self, line: str) -> None:
        self.stdout.append(line)

    def write_stderr(self, line: str) -> None:
        self.stderr.append(line)

    def add_log(self, level: str, message: str) -> None:
        self.logs.append(LogEntry(level=level, message=message))

    def close(self) -> tuple[tuple[str, ...], tuple[str, ...], tuple[LogEntry, ...]]:
        """Mark the context finished and drain its buffers."""
        self.closed = True
        drained = (tuple(self.stdout), tuple(self.stderr), tuple(self.logs))
        self.stdout.clear()
        self.stderr.clear()
        self.logs.clear()
        return drained


__all__ = ["InvocationContext"]
