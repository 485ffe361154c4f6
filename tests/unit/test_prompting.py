from __future__ import annotations

from pathlib import Path

from pairbox.agent.prompting import TOOL_NAME, build_system_prompt, build_tool_definition


def test_tool_definition_schema() -> None:
    tool = build_tool_definition(writes_enabled=True)
    assert tool.name == TOOL_NAME == "run_script"
    assert tool.parameters["required"] == ["source"]
    assert set(tool.parameters["properties"]) == {"source", "reason"}
    assert "disabled" not in tool.description


def test_read_only_description() -> None:
    tool = build_tool_definition(writes_enabled=False)
    assert tool.description.endswith("limit scripts to read-only inspection.")


def test_openai_shape() -> None:
    payload = build_tool_definition(writes_enabled=False).to_openai()
    assert payload["type"] == "function"
    assert payload["function"]["name"] == "run_script"
    assert payload["function"]["parameters"]["additionalProperties"] is False


def test_system_prompt_read_only(tmp_path: Path) -> None:
    prompt = build_system_prompt(False, tmp_path)
    assert str(tmp_path) in prompt
    assert "`run_script`" in prompt
    assert "READ-ONLY" in prompt
    assert "patch_file(path, unified_diff)" not in prompt


def test_system_prompt_with_writes(tmp_path: Path) -> None:
    prompt = build_system_prompt(True, tmp_path)
    assert "**Write Mode**: ENABLED" in prompt
    assert "patch_file(path, unified_diff)" in prompt
    assert "queued until the user approves" in prompt
