"""Sandboxed script runtime.

Public API:
    - PersistentRuntime: long-lived interpreter with capability bindings
    - CapabilitySurface: the host functions scripts may call
    - ScriptInvocation / ExecutionResult: one request and its outcome
"""

from __future__ import annotations

from pairbox.sandbox.capabilities import CAPABILITY_NAMES, WRITE_CAPABILITIES, CapabilitySurface
from pairbox.sandbox.models import (
    ExecutionResult,
    ExecutionStatus,
    LogEntry,
    Manual,
    ModelIssued,
    ScriptInvocation,
)
from pairbox.sandbox.runtime import DEFAULT_TIMEOUT, PersistentRuntime

__all__ = [
    "CAPABILITY_NAMES",
    "DEFAULT_TIMEOUT",
    "WRITE_CAPABILITIES",
    "CapabilitySurface",
    "ExecutionResult",
    "ExecutionStatus",
    "LogEntry",
    "Manual",
    "ModelIssued",
    "PersistentRuntime",
    "ScriptInvocation",
]
