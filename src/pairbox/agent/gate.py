"""Write gate policy and the FIFO approval queue.

Classification per invocation::

    writes disabled                  -> RUN_READ_ONLY (write calls fail WritesDisabled)
    writes enabled, Manual           -> RUN
    writes enabled, ModelIssued      -> QUEUE (Pending until approved or skipped)
    queue full                       -> REJECT

``PendingApproval`` walks ``PENDING -> APPROVED -> EXECUTED | ERRORED`` or
``PENDING -> SKIPPED -> DISCARDED``; any other transition raises
``ApprovalStateError``.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum

from pairbox.core.config import CapabilityConfig
from pairbox.core.console import get_logger
from pairbox.core.result import ApprovalNotFoundError, ApprovalStateError
from pairbox.sandbox.models import ExecutionResult, ScriptInvocation

logger = get_logger(__name__)

DEFAULT_MAX_PENDING = 32


class GateDecision(Enum):
    RUN_READ_ONLY = "run_read_only"
    RUN = "run"
    QUEUE = "queue"
    REJECT = "reject"

    @property
    def write_authorized(self) -> bool:
        return self is GateDecision.RUN


class ApprovalState(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    EXECUTED = "executed"
    ERRORED = "errored"
    SKIPPED = "skipped"
    DISCARDED = "discarded"


_TRANSITIONS: dict[ApprovalState, frozenset[ApprovalState]] = {
    ApprovalState.PENDING: frozenset({ApprovalState.APPROVED, ApprovalState.SKIPPED}),
    ApprovalState.APPROVED: frozenset({ApprovalState.EXECUTED, ApprovalState.ERRORED}),
    ApprovalState.SKIPPED: frozenset({ApprovalState.DISCARDED}),
    ApprovalState.EXECUTED: frozenset(),
    ApprovalState.ERRORED: frozenset(),
    ApprovalState.DISCARDED: frozenset(),
}


@dataclass(slots=True)
class PendingApproval:
    """A model-issued invocation waiting on the user."""

    invocation: ScriptInvocation
    state: ApprovalState = ApprovalState.PENDING
    queued_at: float = field(default_factory=time.time)
    result: ExecutionResult | None = None

    @property
    def id(self) -> str:
        return self.invocation.id

    def _move(self, target: ApprovalState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise ApprovalStateError(
                f"cannot move approval {self.id} from {self.state.value} to {target.value}"
            )
        self.state = target

    def approve(self) -> None:
        self._move(ApprovalState.APPROVED)

    def skip(self) -> None:
        self._move(ApprovalState.SKIPPED)

    def discard(self) -> None:
        self._move(ApprovalState.DISCARDED)

    def finish(self, result: ExecutionResult) -> None:
        self._move(ApprovalState.EXECUTED if result.ok else ApprovalState.ERRORED)
        self.result = result


class ApprovalQueue:
    """FIFO of pending approvals; entries leave the queue when resolved."""

    def __init__(self, max_pending: int = DEFAULT_MAX_PENDING) -> None:
        self._entries: list[PendingApproval] = []
        self.max_pending = max_pending

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    @property
    def is_full(self) -> bool:
        return len(self._entries) >= self.max_pending

    def pending(self) -> list[PendingApproval]:
        return list(self._entries)

    def enqueue(self, invocation: ScriptInvocation) -> PendingApproval:
        entry = PendingApproval(invocation=invocation)
        self._entries.append(entry)
        logger.info("approval.enqueue id=%s call_id=%s", entry.id, invocation.call_id)
        return entry

    def _take(self, approval_id: str | None, action: str) -> PendingApproval:
        if not self._entries:
            raise ApprovalNotFoundError(f"No queued script requests to {action}")
        if approval_id is None:
            return self._entries.pop(0)
        for index, entry in enumerate(self._entries):
            if entry.id == approval_id:
                return self._entries.pop(index)
        raise ApprovalNotFoundError(
            f"No queued script request with id {approval_id}",
            context={"pending": ", ".join(entry.id for entry in self._entries)},
        )

    def take_for_approval(self, approval_id: str | None = None) -> PendingApproval:
        """Remove the targeted (or oldest) entry and mark it approved."""
        entry = self._take(approval_id, "execute")
        entry.approve()
        logger.info("approval.approve id=%s", entry.id)
        return entry

    def take_for_skip(self, approval_id: str | None = None) -> PendingApproval:
        """Remove the targeted (or oldest) entry; it is skipped then discarded."""
        entry = self._take(approval_id, "cancel")
        entry.skip()
        entry.discard()
        logger.info("approval.skip id=%s", entry.id)
        return entry

    def clear(self) -> list[PendingApproval]:
        """Skip every pending entry, oldest first."""
        drained: list[PendingApproval] = []
        while self._entries:
            drained.append(self.take_for_skip())
        return drained


class WriteGate:
    """Classifies invocations against the current capability policy."""

    def __init__(self, queue: ApprovalQueue) -> None:
        self._queue = queue

    def classify(self, invocation: ScriptInvocation, config: CapabilityConfig) -> GateDecision:
        if not config.writes_enabled:
            decision = GateDecision.RUN_READ_ONLY
        elif not invocation.is_model_issued:
            decision = GateDecision.RUN
        elif self._queue.is_full:
            decision = GateDecision.REJECT
        else:
            decision = GateDecision.QUEUE
        logger.debug(
            "gate.classify id=%s origin=%s decision=%s",
            invocation.id,
            type(invocation.origin).__name__,
            decision.value,
        )
        return decision


__all__ = [
    "ApprovalQueue",
    "ApprovalState",
    "GateDecision",
    "PendingApproval",
    "WriteGate",
]
