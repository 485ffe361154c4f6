"""The single model-facing tool and the system prompt that describes it."""

from __future__ import annotations

from pathlib import Path

from pairbox.agent.models import ToolDefinition
from pairbox.core.templates import render_template

TOOL_NAME = "run_script"

SYSTEM_PROMPT_TEMPLATE = "system_prompt.md.j2"

_TOOL_DESCRIPTION = (
    "Execute a Python-subset script inside the user's workspace using the injected "
    "capabilities (read_file, list_dir, search, git_status, run_command, http_request, "
    "log, write_file, patch_file). Globals persist between calls. Use `{name}` to inspect "
    "files, gather context and apply verified edits. Always explain why you need the "
    "script in `reason` and summarize results afterward."
)

_READ_ONLY_NOTE = " File writes are disabled; limit scripts to read-only inspection."


def build_tool_definition(writes_enabled: bool) -> ToolDefinition:
    description = _TOOL_DESCRIPTION.format(name=TOOL_NAME)
    if not writes_enabled:
        description += _READ_ONLY_NOTE
    return ToolDefinition(
        name=TOOL_NAME,
        description=description,
        parameters={
            "type": "object",
            "properties": {
                "source": {
                    "type": "string",
                    "description": "Script to execute. Prefer small, composable scripts.",
                },
                "reason": {
                    "type": "string",
                    "description": "Short explanation of why this script is being run.",
                },
            },
            "required": ["source"],
            "additionalProperties": False,
        },
    )


def build_system_prompt(writes_enabled: bool, workspace_root: Path) -> str:
    return render_template(
        SYSTEM_PROMPT_TEMPLATE,
        {
            "tool_name": TOOL_NAME,
            "writes_enabled": writes_enabled,
            "workspace_root": str(workspace_root),
        },
    )


__all__ = ["TOOL_NAME", "build_system_prompt", "build_tool_definition"]
