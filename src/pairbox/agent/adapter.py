"""Reassembles model tool calls into ``ScriptInvocation`` values.

Each upstream call id owns its own accumulator, so fragments of interleaved
calls never mix. An accumulator is removed as soon as its call is finished,
whether parsing succeeds or fails; malformed arguments raise
``ArgumentParseError`` before anything reaches the runtime.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from pairbox.agent.models import ScriptRequest
from pairbox.agent.prompting import TOOL_NAME
from pairbox.core.console import get_logger
from pairbox.core.result import ArgumentParseError
from pairbox.sandbox.models import ModelIssued, ScriptInvocation, new_invocation_id

logger = get_logger(__name__)


@dataclass(slots=True)
class _Accumulator:
    call_id: str
    name: str | None = None
    parts: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(self.parts)


def _describe_validation(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "arguments"
        problems.append(f"{location}: {error.get('msg', 'invalid')}")
    return "; ".join(problems)


def parse_script_arguments(arguments: str | Mapping[str, Any]) -> ScriptRequest:
    """Parse raw tool-call arguments into a ``ScriptRequest``.

    Raises:
        ArgumentParseError: on empty/truncated JSON, a non-object payload,
            or a missing/blank ``source``.
    """
    if isinstance(arguments, str):
        if not arguments.strip():
            raise ArgumentParseError("tool arguments are empty")
        try:
            data: Any = json.loads(arguments)
        except json.JSONDecodeError as exc:
            raise ArgumentParseError(
                f"tool arguments are not valid JSON: {exc.msg} (char {exc.pos})"
            ) from exc
    else:
        data = arguments

    if not isinstance(data, Mapping):
        raise ArgumentParseError("tool arguments must be a JSON object")

    try:
        return ScriptRequest.model_validate(dict(data))
    except ValidationError as exc:
        raise ArgumentParseError(f"invalid tool arguments: {_describe_validation(exc)}") from exc


class ToolCallAdapter:
    """Map from upstream call id to argument accumulator."""

    def __init__(
        self,
        *,
        id_factory: Callable[[], str] = new_invocation_id,
        tool_name: str = TOOL_NAME,
    ) -> None:
        self._id_factory = id_factory
        self._tool_name = tool_name
        self._calls: dict[str, _Accumulator] = {}
        self._index_to_call: dict[int, str] = {}

    @property
    def open_calls(self) -> list[str]:
        """Call ids with fragments still being accumulated, in arrival order."""
        return list(self._calls)

    def feed(
        self,
        fragment: str,
        *,
        call_id: str | None = None,
        name: str | None = None,
        index: int | None = None,
    ) -> str:
        """Append a fragment to its call's accumulator and return the call id."""
        if call_id is None:
            if index is None or index not in self._index_to_call:
                raise ArgumentParseError("tool-call fragment without a known call id")
            call_id = self._index_to_call[index]
        elif index is not None:
            self._index_to_call[index] = call_id

        accumulator = self._calls.get(call_id)
        if accumulator is None:
            accumulator = self._calls[call_id] = _Accumulator(call_id=call_id)
        if name:
            accumulator.name = name
        if fragment:
            accumulator.parts.append(fragment)
        return call_id

    def finish(self, call_id: str) -> ScriptInvocation:
        """Close the accumulator for ``call_id`` and build its invocation."""
        accumulator = self._calls.pop(call_id, None)
        self._forget_index(call_id)
        if accumulator is None:
            raise ArgumentParseError(
                f"no streamed arguments for tool call {call_id}",
                context={"call_id": call_id},
            )
        return self.from_payload(call_id, accumulator.text, name=accumulator.name)

    def finish_all(self) -> list[tuple[str, ScriptInvocation | ArgumentParseError]]:
        """Finish every open call in arrival order, collecting parse failures."""
        finished: list[tuple[str, ScriptInvocation | ArgumentParseError]] = []
        for call_id in list(self._calls):
            try:
                finished.append((call_id, self.finish(call_id)))
            except ArgumentParseError as exc:
                finished.append((call_id, exc))
        return finished

    def discard(self, call_id: str) -> None:
        self._calls.pop(call_id, None)
        self._forget_index(call_id)

    def from_payload(
        self,
        call_id: str,
        arguments: str | Mapping[str, Any],
        *,
        name: str | None = None,
    ) -> ScriptInvocation:
        """Build an invocation from a complete argument payload."""
        if name is not None and name != self._tool_name:
            raise ArgumentParseError(
                f"unknown tool {name!r}; only {self._tool_name!r} is available",
                context={"call_id": call_id},
            )
        try:
            request = parse_script_arguments(arguments)
        except ArgumentParseError as exc:
            exc.context.setdefault("call_id", call_id)
            logger.warning("adapter.reject call_id=%s reason=%s", call_id, exc.message)
            raise
        invocation = ScriptInvocation(
            source=request.source,
            reason=request.reason,
            origin=ModelIssued(call_id=call_id),
            id=self._id_factory(),
        )
        logger.debug("adapter.assembled call_id=%s id=%s", call_id, invocation.id)
        return invocation

    def _forget_index(self, call_id: str) -> None:
        for index, known in list(self._index_to_call.items()):
            if known == call_id:
                del self._index_to_call[index]


__all__ = ["ToolCallAdapter", "parse_script_arguments"]
