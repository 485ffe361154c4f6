"""
Workspace confinement for every filesystem capability.

Paths requested by scripts are resolved against the workspace root, following
symlinks with a bounded chain depth, and rejected if the canonical target lies
outside the root. Opening is done component by component from a root
directory descriptor with ``O_NOFOLLOW`` so a symlink swapped in after
resolution is refused instead of followed.

Usage:
    from pairbox.core.security import open_in_workspace, resolve_in_workspace
    from pairbox.core.result import Err, Ok

    match resolve_in_workspace("src/app.py", workspace_root):
        case Ok(safe_path):
            ...
        case Err(err):
            ...  # err.kind == "PathTraversal"
"""

from __future__ import annotations

import errno
import functools
import getpass
import os
import stat
import subprocess
from pathlib import Path

from pairbox.core.console import get_logger
from pairbox.core.result import (
    CapabilityError,
    Err,
    Ok,
    PathTraversalError,
    Result,
    WorkspaceError,
    WorkspaceIOError,
)

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Security constants
# ---------------------------------------------------------------------------

MAX_SYMLINK_DEPTH = 10
"""Maximum symlink chain depth before rejecting as potentially malicious."""

_NOFOLLOW = getattr(os, "O_NOFOLLOW", 0)
_DIRECTORY = getattr(os, "O_DIRECTORY", 0)
_CLOEXEC = getattr(os, "O_CLOEXEC", 0)
_DIR_FLAGS = os.O_RDONLY | _DIRECTORY | _CLOEXEC

_SEPARATORS = tuple(sep for sep in ("/", "\\", os.sep, os.altsep) if sep)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _is_git_repo(path: Path) -> bool:
    """Check if path is a git repository."""
    try:
        proc = subprocess.run(
            ["git", "-C", str(path), "rev-parse", "--is-inside-work-tree"],
            check=False,
            capture_output=True,
            text=True,
        )
    except OSError:
        return False

    if proc.returncode != 0:
        return False
    return proc.stdout.strip().lower() == "true"


def _is_owned_by_current_user(path: Path) -> bool:
    """Check if path is owned by the current user."""
    try:
        stat_result = path.stat()
    except OSError:
        return False

    if hasattr(os, "getuid"):
        return stat_result.st_uid == os.getuid()

    try:
        return path.owner() == getpass.getuser()
    except (NotImplementedError, KeyError, OSError):
        return False


def _escape_error(requested: str, resolved: Path | None, root: Path) -> PathTraversalError:
    # The canonical target may be a host path outside the root; log it, never return it
    logger.debug(
        "path_guard.escape requested=%r resolved=%s workspace_root=%s", requested, resolved, root
    )
    return PathTraversalError(
        f"path {requested!r} escapes workspace root", context={"path": requested}
    )


def _resolve_with_limit(
    path: Path, max_depth: int = MAX_SYMLINK_DEPTH
) -> Result[Path, PathTraversalError]:
    """Resolve path with a symlink chain depth limit.

    Follows the trailing symlink chain by hand (so loops and very deep chains
    are reported rather than silently resolved), then canonicalizes the rest.
    Missing trailing components are kept as-is after their existing ancestor.
    """
    current = path
    visited: set[Path] = set()

    for _ in range(max_depth):
        if current in visited:
            return Err(
                PathTraversalError(
                    f"Circular symlink detected: {path}",
                    context={"path": str(path)},
                )
            )
        visited.add(current)

        if not current.is_symlink():
            try:
                return Ok(current.resolve())
            except (OSError, RuntimeError) as exc:
                # RuntimeError: symlink loop in an intermediate component
                return Err(
                    PathTraversalError(
                        f"Cannot resolve {path}: {exc}",
                        context={"path": str(path)},
                    )
                )

        try:
            target = current.readlink()
        except OSError as exc:
            return Err(
                PathTraversalError(
                    f"Failed to read symlink: {path}: {exc}",
                    context={"path": str(path)},
                )
            )

        current = target if target.is_absolute() else current.parent / target

    return Err(
        PathTraversalError(
            f"Symlink chain too deep (>{max_depth}): {path}",
            context={"path": str(path), "max_depth": max_depth},
        )
    )


# ---------------------------------------------------------------------------
# Workspace root
# ---------------------------------------------------------------------------


@functools.lru_cache(maxsize=128)
def _validate_workspace_root_cached(resolved: Path) -> Result[Path, WorkspaceError]:
    """Cached workspace validation for normalized paths."""
    if not resolved.exists():
        return Err(
            WorkspaceError(
                f"Workspace root does not exist: {resolved}",
                context={"path": str(resolved)},
            )
        )

    if not resolved.is_dir():
        return Err(
            WorkspaceError(
                f"Workspace root is not a directory: {resolved}",
                context={"path": str(resolved)},
            )
        )

    if not (_is_owned_by_current_user(resolved) or _is_git_repo(resolved)):
        return Err(
            WorkspaceError(
                f"Workspace root must be a git repository or owned by current user: {resolved}",
                context={"path": str(resolved)},
            )
        )

    return Ok(resolved)


def validate_workspace_root(root: Path | str) -> Result[Path, WorkspaceError]:
    """Validate and resolve a workspace root path.

    A valid workspace root must:
    - Exist
    - Be a directory
    - Be either a git repository OR owned by the current user

    Args:
        root: The workspace root path to validate

    Returns:
        Ok(resolved_path) if valid, Err(WorkspaceError) otherwise
    """
    try:
        resolved = Path(root).expanduser().resolve()
    except (RuntimeError, OSError) as exc:
        return Err(
            WorkspaceError(
                f"Invalid workspace root path: {exc}",
                context={"path": str(root), "error": str(exc)},
            )
        )
    return _validate_workspace_root_cached(resolved)


# ---------------------------------------------------------------------------
# Path resolution
# ---------------------------------------------------------------------------


def resolve_in_workspace(
    requested: str | Path,
    root: Path | str,
) -> Result[Path, CapabilityError]:
    """Resolve ``requested`` to a canonical path inside ``root``.

    Rules:
    - NUL bytes fail with ``IoError``
    - any ``..`` component fails with ``PathTraversal``
    - relative paths are joined to the root; absolute paths must already be inside it
    - symlinks are resolved and the final target re-validated against the root

    The path is never clamped: an escape is always an error.
    """
    text = os.fspath(requested)
    if "\x00" in text:
        return Err(WorkspaceIOError(f"Invalid path {text!r}: contains NUL byte"))

    root_result = validate_workspace_root(root)
    if isinstance(root_result, Err):
        return Err(WorkspaceIOError(root_result.error.message, context=root_result.error.context))
    base_root = root_result.value

    raw = Path(text)
    if ".." in raw.parts:
        return Err(_escape_error(text, None, base_root))

    candidate = raw if raw.is_absolute() else base_root / raw
    try:
        resolved = _resolve_with_limit(candidate)
    except (OSError, ValueError) as exc:
        # Unencodable or over-long names fail in the OS layer
        return Err(WorkspaceIOError(f"Invalid path {text!r}: {exc}"))
    if isinstance(resolved, Err):
        return resolved

    try:
        resolved.value.relative_to(base_root)
    except ValueError:
        return Err(_escape_error(text, resolved.value, base_root))

    return Ok(resolved.value)


def ensure_single_component(value: str, kind: str) -> Result[str, PathTraversalError]:
    """Reject names that are not exactly one path segment.

    Applied to directory-listing entries and user-supplied names (server and
    tool names) before they are joined onto another path.
    """
    if (
        not value
        or value in (".", "..")
        or "\x00" in value
        or any(sep in value for sep in _SEPARATORS)
    ):
        return Err(
            PathTraversalError(
                f"{kind} name must be a single path segment",
                context={"value": value},
            )
        )
    return Ok(value)


def is_path_safe(path: str | Path, root: Path | str) -> bool:
    """Check if a path resolves inside the workspace without raising."""
    return resolve_in_workspace(path, root).is_ok()


# ---------------------------------------------------------------------------
# Atomic open
# ---------------------------------------------------------------------------


def _component_error(
    exc: OSError, dir_fd: int, part: str, requested: str, root: Path
) -> CapabilityError:
    if exc.errno in (errno.ELOOP, errno.ENOTDIR, errno.EMLINK):
        try:
            is_link = stat.S_ISLNK(os.lstat(part, dir_fd=dir_fd).st_mode)
        except OSError:
            is_link = False
        if exc.errno == errno.ELOOP or is_link:
            return PathTraversalError(
                f"path {requested!r} changed to a symlink during open",
                context={"component": part, "workspace_root": str(root)},
            )
    if isinstance(exc, FileNotFoundError):
        return WorkspaceIOError(f"{requested}: no such file or directory")
    if isinstance(exc, IsADirectoryError):
        return WorkspaceIOError(f"{requested}: is a directory")
    if isinstance(exc, NotADirectoryError):
        return WorkspaceIOError(f"{requested}: not a directory")
    if isinstance(exc, PermissionError):
        return WorkspaceIOError(f"{requested}: permission denied")
    return WorkspaceIOError(f"{requested}: {exc.strerror or exc}")


def _open_directory(dir_fd: int, part: str, *, create: bool) -> int:
    try:
        return os.open(part, _DIR_FLAGS | _NOFOLLOW, dir_fd=dir_fd)
    except FileNotFoundError:
        if not create:
            raise
    try:
        os.mkdir(part, 0o755, dir_fd=dir_fd)
    except FileExistsError:
        pass
    return os.open(part, _DIR_FLAGS | _NOFOLLOW, dir_fd=dir_fd)


def open_in_workspace(
    requested: str | Path,
    root: Path | str,
    flags: int,
    *,
    mode: int = 0o644,
    create_parents: bool = False,
) -> Result[int, CapabilityError]:
    """Resolve ``requested`` and open it without following any symlink.

    Every component below the root is opened relative to its parent's
    descriptor with ``O_NOFOLLOW``; the canonical path contains no symlinks,
    so meeting one means the tree changed after resolution and the open fails
    with ``PathTraversal``. Returns a raw descriptor owned by the caller.
    """
    text = os.fspath(requested)
    resolved = resolve_in_workspace(text, root)
    if isinstance(resolved, Err):
        return resolved

    base_root = Path(root).expanduser().resolve()
    parts = resolved.value.relative_to(base_root).parts

    try:
        dir_fd = os.open(base_root, _DIR_FLAGS)
    except OSError as exc:
        return Err(WorkspaceIOError(f"Cannot open workspace root {base_root}: {exc}"))

    if not parts:
        if flags & (os.O_WRONLY | os.O_RDWR):
            os.close(dir_fd)
            return Err(WorkspaceIOError(f"{text}: is a directory"))
        return Ok(dir_fd)

    part = parts[0]
    try:
        for part in parts[:-1]:
            next_fd = _open_directory(dir_fd, part, create=create_parents)
            os.close(dir_fd)
            dir_fd = next_fd
        part = parts[-1]
        return Ok(os.open(part, flags | _NOFOLLOW | _CLOEXEC, mode, dir_fd=dir_fd))
    except OSError as exc:
        return Err(_component_error(exc, dir_fd, part, text, base_root))
    finally:
        os.close(dir_fd)


__all__ = [
    "MAX_SYMLINK_DEPTH",
    "ensure_single_component",
    "is_path_safe",
    "open_in_workspace",
    "resolve_in_workspace",
    "validate_workspace_root",
]
