"""
Allow-list validation for the restricted ``run_command`` capability.

Commands arrive from scripts as an argv list and are never handed to a shell.
Validation is still tokenized and conservative: the binary must be a known
read-only tool, git is limited to read-only subcommands, flags that write
files or spawn other programs are refused, and every path-like argument must
resolve inside the workspace.

Usage:
    from pairbox.core.security import CommandVerdict, validate_argv

    verdict, reason = validate_argv(["git", "status", "--porcelain"], workspace_root)
    if verdict != CommandVerdict.ALLOWED:
        raise CapabilityDeniedError(reason)
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum, auto
from pathlib import Path

from pairbox.core.security.path import is_path_safe


class CommandVerdict(Enum):
    """Result of command validation."""

    ALLOWED = auto()
    BLOCKED_FORBIDDEN = auto()
    BLOCKED_NOT_ALLOWLISTED = auto()
    BLOCKED_PATH_ESCAPE = auto()
    BLOCKED_DANGEROUS_FLAG = auto()
    BLOCKED_METACHAR = auto()


# Binaries that are explicitly forbidden, reported separately from "unknown"
FORBIDDEN_BINARIES: frozenset[str] = frozenset(
    {
        # Destructive file operations
        "rm",
        "rmdir",
        "unlink",
        "shred",
        "mv",
        "cp",
        "dd",
        "touch",
        "tee",
        "truncate",
        # Permission/ownership changes
        "chmod",
        "chown",
        "chgrp",
        # Privilege escalation
        "sudo",
        "su",
        "doas",
        # Interpreters and shells
        "python",
        "python3",
        "perl",
        "ruby",
        "node",
        "lua",
        "sh",
        "bash",
        "zsh",
        "fish",
        "awk",
        "sed",
        "xargs",
        "env",
        # Network
        "curl",
        "wget",
        "nc",
        "ssh",
        "scp",
        "rsync",
        # Package managers
        "pip",
        "npm",
        "apt",
        "brew",
    }
)

# Read-only tools a script may run
ALLOWED_BINARIES: frozenset[str] = frozenset(
    {
        "ls",
        "tree",
        "cat",
        "head",
        "tail",
        "grep",
        "egrep",
        "fgrep",
        "rg",
        "find",
        "fd",
        "git",
        "wc",
        "sort",
        "uniq",
        "cut",
        "diff",
        "pwd",
        "realpath",
        "dirname",
        "basename",
        "file",
        "stat",
        "du",
        "echo",
        "date",
        "true",
        "false",
        "jq",
    }
)

# Git subcommands that only read repository state
ALLOWED_GIT_SUBCOMMANDS: frozenset[str] = frozenset(
    {
        "status",
        "diff",
        "log",
        "show",
        "branch",
        "ls-files",
        "ls-tree",
        "rev-parse",
        "rev-list",
        "describe",
        "shortlog",
        "blame",
        "grep",
        "cat-file",
        "name-rev",
        "merge-base",
        "version",
    }
)

FORBIDDEN_GIT_SUBCOMMANDS: frozenset[str] = frozenset(
    {
        "push",
        "pull",
        "fetch",
        "commit",
        "add",
        "rm",
        "mv",
        "reset",
        "revert",
        "rebase",
        "merge",
        "checkout",
        "switch",
        "restore",
        "clean",
        "stash",
        "tag",
        "config",
        "remote",
        "gc",
        "submodule",
        "clone",
        "init",
        "apply",
        "am",
    }
)

# Read-only forms of `git branch`; anything else would create or delete refs
_GIT_BRANCH_FLAGS: frozenset[str] = frozenset(
    {"--list", "-l", "-a", "--all", "-r", "--remotes", "-v", "-vv", "--show-current"}
)

# Flags that write files or run other programs, regardless of binary
DANGEROUS_FLAGS: frozenset[str] = frozenset(
    {
        "-exec",
        "-execdir",
        "-ok",
        "-okdir",
        "-delete",
        "-fprint",
        "-fprint0",
        "-fprintf",
        "-fls",
        "--exec",
        "--delete",
        "--output",
        "--pre",
        "--ext-diff",
        "--upload-pack",
        "--compress-program",
        "--open-files-in-pager",
    }
)

CONTEXT_DANGEROUS_FLAGS: dict[str, frozenset[str]] = {
    "sort": frozenset({"-o", "--compress-program"}),
    "tree": frozenset({"-o"}),
    "fd": frozenset({"-x", "-X", "--exec-batch"}),
    "git": frozenset({"-O", "--open-files-in-pager"}),
}

SHELL_METACHARS: tuple[str, ...] = ("|", ";", "&", "`", "$(", ">", "<", "\n")


def _get_binary_name(token: str) -> str:
    return Path(token).name.lower()


def _flag_name(token: str) -> str:
    return token.split("=", 1)[0]


def _is_short_bundle(token: str) -> bool:
    return len(token) > 1 and token.startswith("-") and not token.startswith("--")


def _is_flag_blocked(token: str, blocked: frozenset[str]) -> bool:
    """Match ``token`` against ``blocked`` the way getopt-style parsers read it.

    Long options also match any abbreviation of a blocked name, since getopt
    accepts unique prefixes (``--compress-prog``). A blocked single-letter
    option matches anywhere in a short-option token, which covers attached
    values (``-o/tmp/x``) and bundles (``-uo/tmp/x``).
    """
    name = _flag_name(token)
    if name in blocked:
        return True
    if name.startswith("--"):
        return len(name) > 2 and any(
            flag.startswith(name) for flag in blocked if flag.startswith("--")
        )
    if _is_short_bundle(token):
        letters = {flag[1] for flag in blocked if len(flag) == 2 and _is_short_bundle(flag)}
        return any(char in letters for char in token[1:])
    return False


def _path_candidates(token: str) -> list[str]:
    """Path-like parts of an argument.

    Plain tokens are their own candidate; ``--flag=value`` yields the value;
    a short-option token yields every possible attached value, so both
    ``-f/etc/x`` and ``-uf/etc/x`` surface ``/etc/x``.
    """
    if token.startswith("--"):
        if "=" in token:
            return [token.split("=", 1)[1]]
        return []
    if _is_short_bundle(token):
        if "=" in token:
            return [token.split("=", 1)[1]]
        return [token[index:] for index in range(2, len(token))]
    return [token]


def _check_path_escape(token: str, workspace_root: Path) -> bool:
    for candidate in _path_candidates(token):
        if not candidate:
            continue
        path = Path(candidate)
        if ".." in path.parts:
            return True
        if path.is_absolute() or (workspace_root / path).exists():
            if not is_path_safe(path, workspace_root):
                return True
    return False


def _validate_binary(binary: str) -> tuple[CommandVerdict, str] | None:
    if binary in FORBIDDEN_BINARIES:
        return CommandVerdict.BLOCKED_FORBIDDEN, f"Forbidden binary: {binary}"

    if binary not in ALLOWED_BINARIES:
        return CommandVerdict.BLOCKED_NOT_ALLOWLISTED, f"Binary not in allowlist: {binary}"

    return None


def _validate_git_command(argv: Sequence[str]) -> tuple[CommandVerdict, str] | None:
    if len(argv) < 2:
        return None

    subcommand = argv[1].lower()
    if subcommand == "--version":
        return None

    if subcommand in FORBIDDEN_GIT_SUBCOMMANDS:
        return CommandVerdict.BLOCKED_FORBIDDEN, f"Git subcommand not allowed: {subcommand}"

    if subcommand not in ALLOWED_GIT_SUBCOMMANDS:
        return (
            CommandVerdict.BLOCKED_NOT_ALLOWLISTED,
            f"Git subcommand not in allowlist: {subcommand}",
        )

    if subcommand == "branch":
        for token in argv[2:]:
            if token not in _GIT_BRANCH_FLAGS:
                return (
                    CommandVerdict.BLOCKED_DANGEROUS_FLAG,
                    f"Only listing forms of git branch are allowed: {token}",
                )

    return None


def _validate_arguments(
    argv: Sequence[str],
    binary: str,
    workspace_root: Path,
) -> tuple[CommandVerdict, str] | None:
    context_flags = CONTEXT_DANGEROUS_FLAGS.get(binary, frozenset())
    for token in argv[1:]:
        if _is_flag_blocked(token, DANGEROUS_FLAGS):
            return CommandVerdict.BLOCKED_DANGEROUS_FLAG, f"Dangerous flag: {token}"
        if _is_flag_blocked(token, context_flags):
            return CommandVerdict.BLOCKED_DANGEROUS_FLAG, f"Dangerous flag for {binary}: {token}"

    for token in argv[1:]:
        for meta in SHELL_METACHARS:
            if meta in token:
                return CommandVerdict.BLOCKED_METACHAR, f"Shell metacharacter in argument: {meta!r}"

    for token in argv[1:]:
        if _check_path_escape(token, workspace_root):
            return CommandVerdict.BLOCKED_PATH_ESCAPE, f"Path escapes workspace: {token}"

    return None


def validate_argv(argv: Sequence[str], workspace_root: Path) -> tuple[CommandVerdict, str]:
    """Validate an argv list against the read-only allow-list.

    Blocks, in order: empty commands, forbidden or unknown binaries, mutating
    git subcommands, dangerous flags, shell metacharacters, and arguments
    whose path resolves outside ``workspace_root``.

    Returns:
        Tuple of (verdict, reason) where reason explains the decision
    """
    if not argv or not argv[0].strip():
        return CommandVerdict.BLOCKED_FORBIDDEN, "Empty command"

    if "/" in argv[0] or "\\" in argv[0]:
        return CommandVerdict.BLOCKED_NOT_ALLOWLISTED, f"Command must be a bare name: {argv[0]}"

    binary = _get_binary_name(argv[0])

    if result := _validate_binary(binary):
        return result

    if binary == "git":
        if result := _validate_git_command(argv):
            return result

    if result := _validate_arguments(argv, binary, workspace_root):
        return result

    return CommandVerdict.ALLOWED, "OK"


def is_command_safe(argv: Sequence[str], workspace_root: Path) -> bool:
    """Convenience function returning True if the argv is allowed."""
    verdict, _ = validate_argv(argv, workspace_root)
    return verdict == CommandVerdict.ALLOWED


__all__ = [
    "ALLOWED_BINARIES",
    "ALLOWED_GIT_SUBCOMMANDS",
    "FORBIDDEN_BINARIES",
    "FORBIDDEN_GIT_SUBCOMMANDS",
    "CommandVerdict",
    "is_command_safe",
    "validate_argv",
]
