"""
Workspace confinement and command allow-listing.

Usage:
    from pairbox.core.security import open_in_workspace, validate_argv
"""

from __future__ import annotations

from pairbox.core.security.command import (
    ALLOWED_BINARIES,
    ALLOWED_GIT_SUBCOMMANDS,
    FORBIDDEN_BINARIES,
    FORBIDDEN_GIT_SUBCOMMANDS,
    CommandVerdict,
    is_command_safe,
    validate_argv,
)
from pairbox.core.security.path import (
    MAX_SYMLINK_DEPTH,
    ensure_single_component,
    is_path_safe,
    open_in_workspace,
    resolve_in_workspace,
    validate_workspace_root,
)

__all__ = [
    # Path confinement
    "MAX_SYMLINK_DEPTH",
    "ensure_single_component",
    "is_path_safe",
    "open_in_workspace",
    "resolve_in_workspace",
    "validate_workspace_root",
    # Command validation
    "ALLOWED_BINARIES",
    "ALLOWED_GIT_SUBCOMMANDS",
    "CommandVerdict",
    "FORBIDDEN_BINARIES",
    "FORBIDDEN_GIT_SUBCOMMANDS",
    "is_command_safe",
    "validate_argv",
]
