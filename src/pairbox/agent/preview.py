"""Static preview of the writes a queued script would attempt.

The script is parsed, never evaluated: a skipped invocation must have no
side effects, including ones a dry run could trigger.
"""

from __future__ import annotations

import ast
from dataclasses import dataclass

from pairbox.sandbox.capabilities import WRITE_CAPABILITIES


@dataclass(frozen=True, slots=True)
class WritePreview:
    capability: str
    line: int
    target: str | None
    detail: str

    def render(self) -> str:
        target = repr(self.target) if self.target is not None else "<computed path>"
        return f"line {self.line}: {self.capability}({target}) {self.detail}".rstrip()


def _literal_text(node: ast.expr | None) -> str | None:
    if isinstance(node, ast.Constant) and isinstance(node.value, str):
        return node.value
    return None


def _hunk_count(diff: str) -> int:
    return sum(1 for line in diff.splitlines() if line.startswith("@@"))


class _WriteCallVisitor(ast.NodeVisitor):
    def __init__(self) -> None:
        self.found: list[WritePreview] = []

    def visit_Call(self, node: ast.Call) -> None:
        if isinstance(node.func, ast.Name) and node.func.id in WRITE_CAPABILITIES:
            args = list(node.args)
            target = _literal_text(args[0]) if args else None
            payload = _literal_text(args[1]) if len(args) > 1 else None
            if node.func.id == "write_file":
                detail = f"<{len(payload)} chars>" if payload is not None else "<computed contents>"
            else:
                detail = f"<{_hunk_count(payload)} hunks>" if payload else "<computed diff>"
            self.found.append(
                WritePreview(capability=node.func.id, line=node.lineno, target=target, detail=detail)
            )
        self.generic_visit(node)


def preview_writes(source: str) -> list[WritePreview]:
    """List write/patch call sites in ``source``; empty if it does not parse."""
    try:
        tree = ast.parse(source)
    except SyntaxError:
        return []
    visitor = _WriteCallVisitor()
    visitor.visit(tree)
    return visitor.found


__all__ = ["WritePreview", "preview_writes"]
