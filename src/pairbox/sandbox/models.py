"""Data types passed between the adapter, the gate and the runtime."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from pairbox.core.result import CapabilityError


@dataclass(frozen=True, slots=True)
class Manual:
    """Typed by the user; the author is already the approver."""


@dataclass(frozen=True, slots=True)
class ModelIssued:
    """Issued by the model through a tool call."""

    call_id: str


Origin = Manual | ModelIssued


def new_invocation_id() -> str:
    return uuid.uuid4().hex[:8]


@dataclass(frozen=True, slots=True)
class ScriptInvocation:
    """One request to evaluate script text."""

    source: str
    reason: str = ""
    origin: Origin = field(default_factory=Manual)
    id: str = field(default_factory=new_invocation_id)

    @property
    def call_id(self) -> str | None:
        if isinstance(self.origin, ModelIssued):
            return self.origin.call_id
        return None

    @property
    def is_model_issued(self) -> bool:
        return isinstance(self.origin, ModelIssued)


@dataclass(frozen=True, slots=True)
class LogEntry:
    level: str
    message: str

    def render(self) -> str:
        return f"[{self.level}] {self.message}"


@dataclass(frozen=True, slots=True)
class ExecutionStatus:
    """``Ok`` or ``Error(message)``; ``kind`` is the error taxonomy name."""

    ok: bool
    message: str = ""
    kind: str | None = None

    @classmethod
    def success(cls) -> ExecutionStatus:
        return cls(ok=True)

    @classmethod
    def failure(cls, kind: str, message: str) -> ExecutionStatus:
        return cls(ok=False, message=message, kind=kind)

    @classmethod
    def from_error(cls, error: CapabilityError) -> ExecutionStatus:
        return cls.failure(error.kind, f"{error.kind}: {error.message}")

    def render(self) -> str:
        return "ok" if self.ok else f"error: {self.message}"


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Outcome of one executed (or rejected) invocation."""

    invocation_id: str
    return_repr: str
    stdout: tuple[str, ...] = ()
    stderr: tuple[str, ...] = ()
    logs: tuple[LogEntry, ...] = ()
    status: ExecutionStatus = field(default_factory=ExecutionStatus.success)
    call_id: str | None = None
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status.ok

    @classmethod
    def rejected(cls, invocation: ScriptInvocation, error: CapabilityError) -> ExecutionResult:
        """Result for an invocation that never reached the runtime."""
        return cls(
            invocation_id=invocation.id,
            return_repr="",
            status=ExecutionStatus.from_error(error),
            call_id=invocation.call_id,
        )


__all__ = [
    "ExecutionResult",
    "ExecutionStatus",
    "LogEntry",
    "Manual",
    "ModelIssued",
    "Origin",
    "ScriptInvocation",
    "new_invocation_id",
]
