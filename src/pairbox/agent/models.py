"""Model-facing types: the tool definition, its arguments, and stream events.

Stream events are what a provider client hands the session while a model
response is arriving. Tool-call fragments are keyed by the upstream call id;
providers that only repeat the id on the first fragment may tag later ones
with the same ``index`` instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    """Definition of a tool that can be called by the LLM."""

    name: str
    description: str
    parameters: dict[str, Any]  # JSON Schema

    def to_openai(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ScriptRequest(BaseModel):
    """Arguments of a ``run_script`` tool call."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    source: str = Field(..., min_length=1, description="Script to execute.")
    reason: str = Field(default="", description="Why the script is being run.")

    @field_validator("reason", mode="before")
    @classmethod
    def none_reason_is_empty(cls, v: Any) -> Any:
        return "" if v is None else v


@dataclass(frozen=True, slots=True)
class TextDelta:
    """A chunk of plain assistant text."""

    text: str


@dataclass(frozen=True, slots=True)
class ToolCallDelta:
    """One fragment of a streamed tool call's argument text."""

    arguments: str
    call_id: str | None = None
    name: str | None = None
    index: int | None = None


@dataclass(frozen=True, slots=True)
class ToolCallComplete:
    """A tool call delivered in one piece, or the end of a streamed one.

    When ``arguments`` is None the accumulated fragments for ``call_id`` are used.
    """

    call_id: str
    name: str | None = None
    arguments: str | dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class StreamFinished:
    """The model response ended; remaining streamed calls are finalized."""

    finish_reason: str | None = None


StreamEvent = TextDelta | ToolCallDelta | ToolCallComplete | StreamFinished


__all__ = [
    "ScriptRequest",
    "StreamEvent",
    "StreamFinished",
    "TextDelta",
    "ToolCallComplete",
    "ToolCallDelta",
    "ToolDefinition",
]
