"""Agent-facing layer: tool calls, write gate, approvals and sessions.

Public API:
    - ToolSession: owns one runtime and routes every invocation through the gate
    - ToolCallAdapter: assembles streamed tool-call arguments into invocations
    - WriteGate / ApprovalQueue: hold model-issued writes for user approval
    - build_tool_definition / build_system_prompt: the model-facing surface
"""

from __future__ import annotations

from pairbox.agent.adapter import ToolCallAdapter, parse_script_arguments
from pairbox.agent.gate import (
    ApprovalQueue,
    ApprovalState,
    GateDecision,
    PendingApproval,
    WriteGate,
)
from pairbox.agent.prompting import TOOL_NAME, build_system_prompt, build_tool_definition
from pairbox.agent.session import Submission, ToolSession, ToolStatus, TurnOutcome

__all__ = [
    "TOOL_NAME",
    "ApprovalQueue",
    "ApprovalState",
    "GateDecision",
    "PendingApproval",
    "Submission",
    "ToolCallAdapter",
    "ToolSession",
    "ToolStatus",
    "TurnOutcome",
    "WriteGate",
    "build_system_prompt",
    "build_tool_definition",
    "parse_script_arguments",
]
