"""
Result types and error hierarchy for pairbox.

This module provides:
1. Result[T, E] type for explicit error handling
2. The capability error taxonomy surfaced to scripts and users
3. Helper functions for Result operations

Usage:
    from pairbox.core.result import Err, Ok, PathTraversalError, Result

    def resolve(path: str) -> Result[Path, PathTraversalError]:
        if escapes:
            return Err(PathTraversalError("path escapes workspace root"))
        return Ok(candidate)

Every ``CapabilityError`` carries a ``kind`` string (``PathTraversal``,
``WritesDisabled``, ...) used when rendering an ``ExecutionResult`` status.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")
E = TypeVar("E", bound=Exception)
F = TypeVar("F", bound=Exception)


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Represents a successful result containing a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Return the contained value."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        """Apply a function to the contained value."""
        return Ok(fn(self.value))

    def and_then(self, fn: Callable[[T], Result[U, E]]) -> Result[U, E]:
        """Chain operations that may fail."""
        return fn(self.value)


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """Represents a failed result containing an error."""

    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> Any:
        """Raise the contained error."""
        raise self.error

    def unwrap_or(self, default: T) -> T:
        return default

    def map(self, fn: Callable[[Any], U]) -> Err[E]:
        return self

    def and_then(self, fn: Callable[[Any], Result[U, E]]) -> Err[E]:
        return self


Result = Ok[T] | Err[E]


# ---------------------------------------------------------------------------
# Error hierarchy
# ---------------------------------------------------------------------------


class PairboxError(Exception):
    """Base exception for all pairbox errors.

    ``message`` defaults to an empty string because the script interpreter
    instantiates exception classes without arguments when matching
    ``except`` clauses.
    """

    def __init__(self, message: str = "", *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{ctx_str}]"
        return self.message


class ConfigurationError(PairboxError):
    """Raised for configuration issues (invalid values, unreadable files)."""


class WorkspaceError(PairboxError):
    """Raised when the workspace root itself is unusable.

    Examples:
    - Workspace not found
    - Not a directory
    - Not owned by the current user and not a git repository
    """


class ApprovalStateError(PairboxError):
    """Raised on an illegal approval state transition."""


class CapabilityError(PairboxError):
    """Base class for failures that scripts and users see by ``kind``."""

    kind = "CapabilityError"


class PathTraversalError(CapabilityError):
    """A requested path resolves outside the workspace root."""

    kind = "PathTraversal"


class WritesDisabledError(CapabilityError):
    """A write-capable call ran while the write gate is closed."""

    kind = "WritesDisabled"


class CapabilityDeniedError(CapabilityError):
    """A call outside the allow-listed capability surface."""

    kind = "CapabilityDenied"


class WorkspaceIOError(CapabilityError):
    """Filesystem failure inside the workspace (missing, not UTF-8, too large)."""

    kind = "IoError"


class NetworkError(CapabilityError):
    """Transport failure or timeout during an HTTP capability call."""

    kind = "NetworkError"


class ArgumentParseError(CapabilityError):
    """Malformed or truncated tool-call arguments."""

    kind = "ArgumentParseError"


class ScriptRuntimeError(CapabilityError):
    """A script failed while being evaluated."""

    kind = "ScriptRuntimeError"


class ScriptValueError(ScriptRuntimeError):
    """A script value had the wrong shape for a host function argument."""


class RuntimeBusyError(ScriptRuntimeError):
    """The runtime is already executing another invocation."""


class ScriptTimeoutError(CapabilityError):
    """A script exceeded its wall-time budget."""

    kind = "Timeout"


class ApprovalNotFoundError(CapabilityError):
    """No pending approval matches the requested id."""

    kind = "NotFound"


def _collect_kinds() -> dict[str, str]:
    kinds: dict[str, str] = {}
    pending: list[type[CapabilityError]] = [CapabilityError]
    while pending:
        cls = pending.pop()
        kinds[cls.__name__] = cls.kind
        pending.extend(cls.__subclasses__())
    return kinds


# Maps exception class names to taxonomy kinds; the interpreter reports
# host errors by class name only.
ERROR_KINDS: dict[str, str] = _collect_kinds()


def kind_for(exc_name: str) -> str:
    """Return the taxonomy kind for an exception class name, or the name itself."""
    if exc_name in ("TimeoutError", "ScriptTimeoutError"):
        return ScriptTimeoutError.kind
    return ERROR_KINDS.get(exc_name, exc_name)


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------


def try_result(fn: Callable[[], T], error_type: type[E] = PairboxError) -> Result[T, E]:  # type: ignore[assignment]
    """Execute a function and wrap the result in Ok/Err.

    Args:
        fn: Function to execute
        error_type: Exception type to catch (default: PairboxError)

    Returns:
        Ok(value) on success, Err(exception) on failure
    """
    try:
        return Ok(fn())
    except error_type as exc:
        return Err(exc)


__all__ = [
    # Result types
    "Ok",
    "Err",
    "Result",
    # Error hierarchy
    "PairboxError",
    "ConfigurationError",
    "WorkspaceError",
    "ApprovalStateError",
    "CapabilityError",
    "PathTraversalError",
    "WritesDisabledError",
    "CapabilityDeniedError",
    "WorkspaceIOError",
    "NetworkError",
    "ArgumentParseError",
    "ScriptRuntimeError",
    "ScriptValueError",
    "RuntimeBusyError",
    "ScriptTimeoutError",
    "ApprovalNotFoundError",
    # Helpers
    "ERROR_KINDS",
    "kind_for",
    "try_result",
]
