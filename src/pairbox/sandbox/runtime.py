"""The long-lived script interpreter shared by every invocation in a session.

``PersistentRuntime`` owns one ``asteval`` interpreter whose symbol table
survives across invocations until ``reset()``. Each ``execute`` call:

1. builds a fresh ``InvocationContext`` (empty buffers)
2. binds the capability surface to that context
3. evaluates the source under a wall-clock deadline
4. renders the return value or captures the first error
5. closes the context and drains its buffers into an ``ExecutionResult``

Only one invocation may run at a time; a concurrent call fails with
``RuntimeBusyError`` instead of interleaving.
"""

from __future__ import annotations

import io
import threading
import time
from typing import Any

from asteval import Interpreter

from pairbox.core.config import CapabilityConfig
from pairbox.core.console import get_logger
from pairbox.core.result import (
    ERROR_KINDS,
    CapabilityError,
    RuntimeBusyError,
    ScriptRuntimeError,
    ScriptTimeoutError,
    kind_for,
)
from pairbox.sandbox.capabilities import CapabilitySurface
from pairbox.sandbox.context import InvocationContext
from pairbox.sandbox.models import ExecutionResult, ExecutionStatus, ScriptInvocation
from pairbox.sandbox.prelude import PRELUDE_NAMES, PRELUDE_SOURCE
from pairbox.sandbox.values import render_value

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 10.0
MAX_SCRIPT_LENGTH = 200_000
MAX_ERROR_CHARS = 4000

# Interpreter symbols that reach outside the capability surface.
_DENIED_SYMBOLS: tuple[str, ...] = (
    "open",
    "input",
    "exit",
    "quit",
    "help",
    "breakpoint",
    "compile",
    "eval",
    "exec",
    "globals",
    "locals",
    "vars",
    "__import__",
)


class _DeadlineInterpreter(Interpreter):  # type: ignore[misc]
    """asteval interpreter that checks a wall-clock deadline at every node.

    Once the deadline has passed every further node raises again, so a script
    cannot swallow the timeout with ``try``/``except``.
    """

    deadline: float | None = None
    limit: float = 0.0
    timed_out: bool = False

    def run(self, node: Any, *args: Any, **kwargs: Any) -> Any:
        deadline = self.deadline
        if deadline is not None and time.monotonic() > deadline:
            self.timed_out = True
            raise ScriptTimeoutError(f"script exceeded the {self.limit:g}s time limit")
        return super().run(node, *args, **kwargs)


def _truncate(text: str, limit: int = MAX_ERROR_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "... [truncated]"


def _status_from_holder(holder: Any) -> ExecutionStatus:
    """Convert asteval's first recorded error into an ``ExecutionStatus``.

    Host errors keep their taxonomy kind; anything raised by the script
    itself is a ``ScriptRuntimeError`` named after the Python exception.
    """
    exc_info = getattr(holder, "exc_info", None)
    original = exc_info[1] if exc_info else None
    if isinstance(original, CapabilityError):
        return ExecutionStatus.failure(
            original.kind, _truncate(f"{original.kind}: {original.message}")
        )
    if isinstance(original, SyntaxError):
        return ExecutionStatus.failure(
            ScriptRuntimeError.kind,
            f"SyntaxError: {original.msg} (line {original.lineno})",
        )

    try:
        exc_name, _ = holder.get_error()
    except (AttributeError, TypeError, ValueError):
        exc_name = type(original).__name__ if original is not None else "UnknownError"
    message = str(getattr(holder, "msg", "") or original or "script failed")
    kind = kind_for(exc_name) if exc_name in ERROR_KINDS else ScriptRuntimeError.kind
    return ExecutionStatus.failure(kind, _truncate(f"{exc_name}: {message}"))


class PersistentRuntime:
    """Exclusive owner of the interpreter state and its output buffers."""

    def __init__(
        self,
        config: CapabilityConfig,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        prelude: str = PRELUDE_SOURCE,
    ) -> None:
        self._surface = CapabilitySurface(config)
        self._timeout = timeout
        self._prelude = prelude
        self._lock = threading.Lock()
        self._interpreter = self._create_interpreter()
        self._baseline: frozenset[str] = frozenset(self._interpreter.symtable)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def config(self) -> CapabilityConfig:
        return self._surface.config

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    def defined_names(self) -> list[str]:
        """Globals created by scripts since the last reset."""
        return sorted(
            name
            for name in self._interpreter.symtable
            if name not in self._baseline and name not in PRELUDE_NAMES
        )

    def _create_interpreter(self) -> _DeadlineInterpreter:
        interpreter = _DeadlineInterpreter(
            use_numpy=False,
            max_statement_length=MAX_SCRIPT_LENGTH,
            writer=io.StringIO(),
            err_writer=io.StringIO(),
        )
        for name in _DENIED_SYMBOLS:
            interpreter.symtable.pop(name, None)
        # Placeholders so the prelude's names resolve; real bindings are
        # installed per invocation.
        for name, function in self._surface.bind(
            InvocationContext(invocation_id="prelude", write_authorized=False, closed=True)
        ).items():
            interpreter.symtable[name] = function

        interpreter.error = []
        interpreter.eval(self._prelude, show_errors=False)
        if interpreter.error:
            exc_name, detail = interpreter.error[0].get_error()
            raise ScriptRuntimeError(f"prelude failed: {exc_name}: {detail}")
        return interpreter

    def _acquire(self, action: str) -> None:
        if not self._lock.acquire(blocking=False):
            raise RuntimeBusyError(f"cannot {action} while another script is running")

    def reset(self) -> None:
        """Discard every global defined since startup and reload the prelude."""
        self._acquire("reset the runtime")
        try:
            self._interpreter = self._create_interpreter()
            self._baseline = frozenset(self._interpreter.symtable)
        finally:
            self._lock.release()
        logger.info("runtime.reset")

    def reconfigure(self, config: CapabilityConfig) -> None:
        """Swap the capability policy between invocations."""
        self._acquire("change configuration")
        try:
            self._surface.reconfigure(config)
        finally:
            self._lock.release()
        logger.info(
            "runtime.reconfigure writes_enabled=%s root=%s",
            config.writes_enabled,
            config.workspace_root,
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(self, invocation: ScriptInvocation, *, write_authorized: bool) -> ExecutionResult:
        """Evaluate one invocation against the shared global environment.

        ``write_authorized`` is the gate's verdict for this invocation; write
        capabilities additionally require ``writes_enabled`` at call time.
        """
        self._acquire("start a script")
        try:
            return self._execute_locked(invocation, write_authorized)
        finally:
            self._lock.release()

    def _execute_locked(self, invocation: ScriptInvocation, write_authorized: bool) -> ExecutionResult:
        started = time.monotonic()
        deadline = started + self._timeout
        ctx = InvocationContext(
            invocation_id=invocation.id, write_authorized=write_authorized, deadline=deadline
        )
        interpreter = self._interpreter
        interpreter.symtable.update(self._surface.bind(ctx))
        interpreter.error = []
        interpreter.timed_out = False
        interpreter.limit = self._timeout
        interpreter.deadline = deadline
        try:
            value = interpreter.eval(invocation.source, show_errors=False)
        finally:
            interpreter.deadline = None
        duration_ms = (time.monotonic() - started) * 1000

        errors = list(interpreter.error or [])
        if interpreter.timed_out:
            status = ExecutionStatus.failure(
                ScriptTimeoutError.kind,
                f"{ScriptTimeoutError.kind}: script exceeded the {self._timeout:g}s time limit",
            )
        elif errors:
            status = _status_from_holder(errors[0])
        else:
            status = ExecutionStatus.success()
        interpreter.error = []

        return_repr = render_value(value) if status.ok else ""
        stdout, stderr, logs = ctx.close()

        logger.info(
            "runtime.execute id=%s origin=%s status=%s duration_ms=%.1f",
            invocation.id,
            type(invocation.origin).__name__,
            "ok" if status.ok else status.kind,
            duration_ms,
        )
        return ExecutionResult(
            invocation_id=invocation.id,
            return_repr=return_repr,
            stdout=stdout,
            stderr=stderr,
            logs=logs,
            status=status,
            call_id=invocation.call_id,
            duration_ms=duration_ms,
        )


__all__ = ["DEFAULT_TIMEOUT", "PersistentRuntime"]
