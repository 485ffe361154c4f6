"""Plain-text rendering of results for the conversation and tool log."""

from __future__ import annotations

from pairbox.sandbox.models import ExecutionResult

SUMMARY_LIMIT = 60
EMPTY = "<empty>"


def summarize_reason(reason: str | None, limit: int = SUMMARY_LIMIT) -> str:
    text = " ".join((reason or "").split())
    if not text:
        return "unspecified"
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."


def _section(title: str, lines: list[str]) -> str:
    body = "\n".join(lines) if lines else EMPTY
    return f"{title}:\n{body}"


def render_result(result: ExecutionResult, max_chars: int | None = None) -> str:
    """Render a result as return value, stdout, stderr, logs and status sections.

    This is the text sent back to the model as the tool message content.
    """
    sections = [
        _section("Return value", [result.return_repr] if result.return_repr else []),
        _section("Stdout", list(result.stdout)),
        _section("Stderr", list(result.stderr)),
        _section("Logs", [entry.render() for entry in result.logs]),
        f"Status: {result.status.render()}",
    ]
    text = "\n\n".join(sections)
    if max_chars is not None and len(text) > max_chars:
        text = text[:max_chars] + f"\n... [truncated {len(text) - max_chars} characters]"
    return text


__all__ = ["render_result", "summarize_reason"]
