"""UI rendering utilities for pairbox CLI commands."""

from pairbox.ui.results import (
    config_source_panel,
    config_table,
    execution_panel,
    pending_table,
    tool_entry_panel,
    tool_log_table,
)

__all__ = [
    "config_source_panel",
    "config_table",
    "execution_panel",
    "pending_table",
    "tool_entry_panel",
    "tool_log_table",
]
