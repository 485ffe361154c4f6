"""Serializable per-invocation records for the transcript collaborator."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

from pairbox.sandbox.models import ExecutionResult, ScriptInvocation

REDACTED = "[REDACTED]"

_KNOWN_KEY_PATTERN = re.compile(
    r"""(?x)
    sk-[A-Za-z0-9\-_]{20,}|            # OpenAI / Anthropic style
    gsk_[A-Za-z0-9]{20,}|              # Groq
    sk_[A-Za-z0-9]{20,}|               # Stripe secret key
    xox[abpr]-[A-Za-z0-9\-]{20,}|      # Slack tokens
    gh[pousr]_[A-Za-z0-9]{20,}|        # GitHub tokens
    AIza[A-Za-z0-9_\-]{20,}|           # Google API key
    AKIA[A-Z0-9]{16}                   # AWS access key
    """
)

_ASSIGNMENT_PATTERN = re.compile(
    r"""(?ix)
    (?P<name>[a-z0-9_\-]*(?:api[_-]?key|token|secret|password|credential)[a-z0-9_\-]*)
    (?P<sep>['"]?\s*[=:]\s*['"]?)
    (?P<value>[A-Za-z0-9+/=_\-\.]{8,})
    """
)

_BEARER_PATTERN = re.compile(r"(?i)(bearer\s+)[A-Za-z0-9\-\._~\+/]{8,}=*")


def redact_secrets(text: str) -> str:
    """Replace obvious credentials in ``text`` with ``[REDACTED]``."""
    text = _KNOWN_KEY_PATTERN.sub(REDACTED, text)
    text = _BEARER_PATTERN.sub(lambda m: m.group(1) + REDACTED, text)
    return _ASSIGNMENT_PATTERN.sub(
        lambda m: f"{m.group('name')}{m.group('sep')}{REDACTED}", text
    )


class LogRecord(BaseModel):
    level: str
    message: str


class InvocationRecord(BaseModel):
    """One finished invocation, with secrets elided."""

    invocation_id: str
    origin: Literal["manual", "model"]
    call_id: str | None = None
    reason: str = ""
    source: str
    decision: str
    ok: bool
    status: str
    error_kind: str | None = None
    return_repr: str = ""
    stdout: list[str] = Field(default_factory=list)
    stderr: list[str] = Field(default_factory=list)
    logs: list[LogRecord] = Field(default_factory=list)
    duration_ms: float = 0.0
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def build(
        cls, invocation: ScriptInvocation, result: ExecutionResult, decision: str
    ) -> InvocationRecord:
        return cls(
            invocation_id=invocation.id,
            origin="model" if invocation.is_model_issued else "manual",
            call_id=invocation.call_id,
            reason=redact_secrets(invocation.reason),
            source=redact_secrets(invocation.source),
            decision=decision,
            ok=result.ok,
            status=redact_secrets(result.status.render()),
            error_kind=result.status.kind,
            return_repr=redact_secrets(result.return_repr),
            stdout=[redact_secrets(line) for line in result.stdout],
            stderr=[redact_secrets(line) for line in result.stderr],
            logs=[
                LogRecord(level=entry.level, message=redact_secrets(entry.message))
                for entry in result.logs
            ],
            duration_ms=result.duration_ms,
        )


__all__ = ["InvocationRecord", "LogRecord", "REDACTED", "redact_secrets"]
