"""Session orchestration: adapter -> write gate -> approval queue -> runtime.

``ToolSession`` is the single owner of the persistent runtime for one
conversation. Everything that can start a script goes through ``submit``, so
the gate sees every invocation and the tool log always ends each entry in a
terminal ``ok`` or ``error`` state.
"""

from __future__ import annotations

import itertools
from collections.abc import AsyncIterable, Callable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pairbox.agent.adapter import ToolCallAdapter
from pairbox.agent.gate import ApprovalQueue, GateDecision, PendingApproval, WriteGate
from pairbox.agent.models import (
    StreamEvent,
    StreamFinished,
    TextDelta,
    ToolCallComplete,
    ToolCallDelta,
    ToolDefinition,
)
from pairbox.agent.preview import preview_writes
from pairbox.agent.prompting import TOOL_NAME, build_system_prompt, build_tool_definition
from pairbox.agent.records import InvocationRecord
from pairbox.agent.rendering import render_result, summarize_reason
from pairbox.core.config import AppConfig, CapabilityConfig
from pairbox.core.console import get_logger
from pairbox.core.result import (
    ArgumentParseError,
    CapabilityDeniedError,
    CapabilityError,
    RuntimeBusyError,
)
from pairbox.sandbox.models import (
    ExecutionResult,
    ExecutionStatus,
    Manual,
    ScriptInvocation,
)
from pairbox.sandbox.runtime import DEFAULT_TIMEOUT, PersistentRuntime

logger = get_logger(__name__)

CANCELED_MESSAGE = "Canceled before execution."

RecordSink = Callable[[InvocationRecord], None]


class ToolStatus(Enum):
    PENDING = "pending"
    OK = "ok"
    ERROR = "error"


@dataclass(slots=True)
class ToolLogEntry:
    id: int
    title: str
    status: ToolStatus
    detail: str
    invocation_id: str | None = None
    call_id: str | None = None


class ToolLog:
    """Ordered tool log shown next to the conversation."""

    def __init__(self) -> None:
        self._entries: list[ToolLogEntry] = []
        self._ids = itertools.count(1)

    def __iter__(self) -> Iterator[ToolLogEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def create(
        self,
        title: str,
        detail: str,
        *,
        status: ToolStatus = ToolStatus.PENDING,
        invocation_id: str | None = None,
        call_id: str | None = None,
    ) -> ToolLogEntry:
        entry = ToolLogEntry(
            id=next(self._ids),
            title=title,
            status=status,
            detail=detail,
            invocation_id=invocation_id,
            call_id=call_id,
        )
        self._entries.append(entry)
        return entry

    def get(self, entry_id: int) -> ToolLogEntry | None:
        return next((entry for entry in self._entries if entry.id == entry_id), None)

    def for_invocation(self, invocation_id: str) -> ToolLogEntry | None:
        return next(
            (entry for entry in reversed(self._entries) if entry.invocation_id == invocation_id),
            None,
        )

    def update(self, entry_id: int, status: ToolStatus, detail: str) -> None:
        entry = self.get(entry_id)
        if entry is not None:
            entry.status = status
            entry.detail = detail

    def unresolved(self) -> list[ToolLogEntry]:
        return [entry for entry in self._entries if entry.status is ToolStatus.PENDING]


@dataclass(frozen=True, slots=True)
class Submission:
    """What happened to one invocation (or one unparseable tool call)."""

    log_entry_id: int
    invocation: ScriptInvocation | None = None
    decision: GateDecision | None = None
    result: ExecutionResult | None = None
    pending: PendingApproval | None = None

    @property
    def queued(self) -> bool:
        return self.pending is not None

    @property
    def call_id(self) -> str | None:
        if self.invocation is not None:
            return self.invocation.call_id
        return self.result.call_id if self.result is not None else None


@dataclass(slots=True)
class TurnOutcome:
    """Everything a streamed model response produced."""

    text: str = ""
    submissions: list[Submission] = field(default_factory=list)
    finish_reason: str | None = None

    @property
    def pending(self) -> list[PendingApproval]:
        return [sub.pending for sub in self.submissions if sub.pending is not None]

    def tool_messages(self, max_chars: int | None = None) -> list[tuple[str, str]]:
        """(call_id, content) pairs for every resolved model tool call."""
        messages: list[tuple[str, str]] = []
        for sub in self.submissions:
            if sub.result is not None and sub.call_id is not None:
                messages.append((sub.call_id, render_result(sub.result, max_chars)))
        return messages


class ToolSession:
    """Owns the runtime, gate, approval queue, adapter and tool log."""

    def __init__(
        self,
        config: CapabilityConfig,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        max_pending: int = 32,
        max_output_chars: int = 20000,
        record_sink: RecordSink | None = None,
        runtime: PersistentRuntime | None = None,
    ) -> None:
        self._config = config
        self.runtime = runtime or PersistentRuntime(config, timeout=timeout)
        self.queue = ApprovalQueue(max_pending)
        self.gate = WriteGate(self.queue)
        self._ids = itertools.count(1)
        self.adapter = ToolCallAdapter(id_factory=self._next_id)
        self.tool_log = ToolLog()
        self.records: list[InvocationRecord] = []
        self.max_output_chars = max_output_chars
        self._record_sink = record_sink

    @classmethod
    def from_app_config(cls, config: AppConfig, **kwargs: Any) -> ToolSession:
        tools = config.tools
        return cls(
            config.capability_config(),
            timeout=tools.script_timeout,
            max_pending=tools.max_pending,
            max_output_chars=tools.max_output_chars,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def config(self) -> CapabilityConfig:
        return self._config

    @property
    def writes_enabled(self) -> bool:
        return self._config.writes_enabled

    def set_writes_enabled(self, enabled: bool) -> CapabilityConfig:
        """Explicit user action; refused while a script is running."""
        updated = self._config.with_writes(enabled)
        self.runtime.reconfigure(updated)
        self._config = updated
        logger.info("session.config allow_writes=%s", enabled)
        return updated

    def tool_definition(self) -> ToolDefinition:
        return build_tool_definition(self.writes_enabled)

    def system_prompt(self) -> str:
        return build_system_prompt(self.writes_enabled, self._config.workspace_root)

    def reset(self) -> None:
        self.runtime.reset()

    # ------------------------------------------------------------------
    # Invocations
    # ------------------------------------------------------------------

    def _next_id(self) -> str:
        return str(next(self._ids))

    def _title(self, invocation: ScriptInvocation) -> str:
        who = "Model" if invocation.is_model_issued else "Manual"
        return f"{who} {TOOL_NAME}: {summarize_reason(invocation.reason)}"

    def _pending_detail(self, invocation: ScriptInvocation) -> str:
        lines = []
        if invocation.reason:
            lines.append(f"Reason: {invocation.reason}")
        lines.append(f"Script:\n{invocation.source}")
        previews = preview_writes(invocation.source)
        lines.append("\n--- PREVIEW ---")
        if previews:
            lines.extend(preview.render() for preview in previews)
        else:
            lines.append("(no write calls found)")
        return "\n".join(lines)

    def _record(self, invocation: ScriptInvocation, result: ExecutionResult, decision: str) -> None:
        record = InvocationRecord.build(invocation, result, decision)
        self.records.append(record)
        if self._record_sink is not None:
            self._record_sink(record)

    def _resolve_log(self, entry_id: int, result: ExecutionResult) -> None:
        status = ToolStatus.OK if result.ok else ToolStatus.ERROR
        self.tool_log.update(entry_id, status, render_result(result, self.max_output_chars))

    def _execute(
        self,
        invocation: ScriptInvocation,
        *,
        write_authorized: bool,
        entry_id: int,
        decision: GateDecision,
    ) -> ExecutionResult:
        try:
            result = self.runtime.execute(invocation, write_authorized=write_authorized)
        except RuntimeBusyError as exc:
            result = ExecutionResult.rejected(invocation, exc)
        self._resolve_log(entry_id, result)
        self._record(invocation, result, decision.value)
        return result

    def submit(self, invocation: ScriptInvocation) -> Submission:
        """Classify an invocation and run, queue or reject it."""
        decision = self.gate.classify(invocation, self._config)
        title = self._title(invocation)

        if decision is GateDecision.QUEUE:
            pending = self.queue.enqueue(invocation)
            entry = self.tool_log.create(
                title,
                self._pending_detail(invocation),
                invocation_id=invocation.id,
                call_id=invocation.call_id,
            )
            return Submission(
                log_entry_id=entry.id, invocation=invocation, decision=decision, pending=pending
            )

        if decision is GateDecision.REJECT:
            error = CapabilityDeniedError(
                f"approval queue is full ({self.queue.max_pending} pending); "
                "approve or skip queued scripts first"
            )
            result = ExecutionResult.rejected(invocation, error)
            entry = self.tool_log.create(
                title,
                render_result(result),
                status=ToolStatus.ERROR,
                invocation_id=invocation.id,
                call_id=invocation.call_id,
            )
            self._record(invocation, result, decision.value)
            return Submission(
                log_entry_id=entry.id, invocation=invocation, decision=decision, result=result
            )

        entry_id, result = self._run_now(invocation, decision)
        return Submission(
            log_entry_id=entry_id, invocation=invocation, decision=decision, result=result
        )

    def _run_now(
        self, invocation: ScriptInvocation, decision: GateDecision
    ) -> tuple[int, ExecutionResult]:
        entry = self.tool_log.create(
            self._title(invocation),
            "Running...",
            invocation_id=invocation.id,
            call_id=invocation.call_id,
        )
        result = self._execute(
            invocation,
            write_authorized=decision.write_authorized,
            entry_id=entry.id,
            decision=decision,
        )
        return entry.id, result

    def run_manual(self, source: str, reason: str = "manual") -> ExecutionResult:
        """Run a user-typed script immediately; manual scripts never wait for approval."""
        invocation = ScriptInvocation(
            source=source, reason=reason, origin=Manual(), id=self._next_id()
        )
        decision = self.gate.classify(invocation, self._config)
        _, result = self._run_now(invocation, decision)
        return result

    # ------------------------------------------------------------------
    # Approval
    # ------------------------------------------------------------------

    def pending(self) -> list[PendingApproval]:
        return self.queue.pending()

    def approve(self, approval_id: str | None = None) -> ExecutionResult:
        """Run the targeted (or oldest) pending invocation.

        Raises:
            ApprovalNotFoundError: nothing queued, or no entry with that id.
        """
        entry = self.queue.take_for_approval(approval_id)
        log_entry = self.tool_log.for_invocation(entry.id)
        if log_entry is None:
            log_entry = self.tool_log.create(
                self._title(entry.invocation),
                "Running...",
                invocation_id=entry.id,
                call_id=entry.invocation.call_id,
            )
        result = self._execute(
            entry.invocation,
            write_authorized=True,
            entry_id=log_entry.id,
            decision=GateDecision.QUEUE,
        )
        entry.finish(result)
        return result

    def skip(self, approval_id: str | None = None) -> PendingApproval:
        """Discard the targeted (or oldest) pending invocation without running it.

        Raises:
            ApprovalNotFoundError: nothing queued, or no entry with that id.
        """
        entry = self.queue.take_for_skip(approval_id)
        result = ExecutionResult(
            invocation_id=entry.id,
            return_repr="",
            status=ExecutionStatus.failure("Canceled", CANCELED_MESSAGE),
            call_id=entry.invocation.call_id,
        )
        entry.result = result
        log_entry = self.tool_log.for_invocation(entry.id)
        if log_entry is not None:
            self.tool_log.update(log_entry.id, ToolStatus.ERROR, CANCELED_MESSAGE)
        self._record(entry.invocation, result, "skipped")
        return entry

    # ------------------------------------------------------------------
    # Model tool calls
    # ------------------------------------------------------------------

    def _reject_call(self, call_id: str, error: CapabilityError) -> Submission:
        result = ExecutionResult(
            invocation_id=call_id,
            return_repr="",
            status=ExecutionStatus.from_error(error),
            call_id=call_id,
        )
        entry = self.tool_log.create(
            f"Model {TOOL_NAME}: invalid request",
            render_result(result),
            status=ToolStatus.ERROR,
            call_id=call_id,
        )
        return Submission(log_entry_id=entry.id, result=result)

    def handle_tool_call(
        self, call_id: str, arguments: str | Mapping[str, Any], *, name: str | None = None
    ) -> Submission:
        """Submit a tool call delivered as one complete payload."""
        self.adapter.discard(call_id)
        try:
            invocation = self.adapter.from_payload(call_id, arguments, name=name)
        except ArgumentParseError as exc:
            return self._reject_call(call_id, exc)
        return self.submit(invocation)

    def feed_fragment(
        self,
        fragment: str,
        *,
        call_id: str | None = None,
        name: str | None = None,
        index: int | None = None,
    ) -> str:
        return self.adapter.feed(fragment, call_id=call_id, name=name, index=index)

    def finish_tool_call(self, call_id: str, *, name: str | None = None) -> Submission:
        """Submit a streamed tool call once its fragments are complete."""
        try:
            if name is not None:
                self.adapter.feed("", call_id=call_id, name=name)
            invocation = self.adapter.finish(call_id)
        except ArgumentParseError as exc:
            return self._reject_call(call_id, exc)
        return self.submit(invocation)

    def _finish_open_calls(self) -> list[Submission]:
        submissions = []
        for call_id, outcome in self.adapter.finish_all():
            if isinstance(outcome, ArgumentParseError):
                submissions.append(self._reject_call(call_id, outcome))
            else:
                submissions.append(self.submit(outcome))
        return submissions

    def _abandon_open_calls(self, cause: BaseException) -> list[Submission]:
        """Reject calls left open by a stream that failed part way through."""
        submissions = []
        for call_id in self.adapter.open_calls:
            self.adapter.discard(call_id)
            logger.warning(
                "session.stream_aborted call_id=%s error=%s", call_id, type(cause).__name__
            )
            error = ArgumentParseError(
                f"tool call {call_id} was cut off: the response stream failed "
                f"({type(cause).__name__})",
                context={"call_id": call_id},
            )
            submissions.append(self._reject_call(call_id, error))
        return submissions

    async def consume(self, stream: AsyncIterable[StreamEvent]) -> TurnOutcome:
        """Drive one streamed model response through the adapter.

        Scripts run synchronously as their calls complete. Calls still open
        when the stream ends are finalized, so truncated arguments surface as
        ``ArgumentParseError`` entries rather than lingering. If the stream
        itself raises, open calls are rejected in the tool log without running
        and the error propagates; nothing carries over into the next turn.
        """
        outcome = TurnOutcome()
        text_parts: list[str] = []

        try:
            async for event in stream:
                match event:
                    case TextDelta(text=text):
                        text_parts.append(text)
                    case ToolCallDelta(
                        arguments=fragment, call_id=call_id, name=name, index=index
                    ):
                        try:
                            self.adapter.feed(fragment, call_id=call_id, name=name, index=index)
                        except ArgumentParseError as exc:
                            orphan = call_id or f"index-{index}"
                            outcome.submissions.append(self._reject_call(orphan, exc))
                    case ToolCallComplete(call_id=call_id, name=name, arguments=None):
                        outcome.submissions.append(self.finish_tool_call(call_id, name=name))
                    case ToolCallComplete(call_id=call_id, name=name, arguments=arguments):
                        outcome.submissions.append(
                            self.handle_tool_call(call_id, arguments, name=name)
                        )
                    case StreamFinished(finish_reason=reason):
                        outcome.finish_reason = reason
                        outcome.submissions.extend(self._finish_open_calls())
        except BaseException as exc:
            outcome.submissions.extend(self._abandon_open_calls(exc))
            raise

        outcome.submissions.extend(self._finish_open_calls())
        outcome.text = "".join(text_parts)
        return outcome


__all__ = [
    "CANCELED_MESSAGE",
    "Submission",
    "ToolLog",
    "ToolLogEntry",
    "ToolSession",
    "ToolStatus",
    "TurnOutcome",
]
