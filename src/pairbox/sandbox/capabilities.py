"""Host functions exposed to scripts.

Every filesystem call goes through ``open_in_workspace`` (Path Guard) and every
mutating call checks the write gate before touching its arguments. Failures
are raised as ``CapabilityError`` subclasses; the interpreter turns them into
script-level exceptions, so the host process never sees them as faults.

Capabilities are bound per invocation: ``CapabilitySurface.bind(ctx)`` returns
plain closures that pass the invocation's ``InvocationContext`` explicitly to
each call. Scripts only ever see those closures and the plain dict/list/str
values they return.
"""

from __future__ import annotations

import os
import re
import shlex
import stat
import subprocess
from collections.abc import Callable
from pathlib import Path
from typing import Any
from urllib import error as urllib_error
from urllib import parse as urllib_parse
from urllib import request as urllib_request

from pairbox.core.config import CapabilityConfig
from pairbox.core.console import get_logger
from pairbox.core.result import (
    CapabilityDeniedError,
    CapabilityError,
    Err,
    NetworkError,
    ScriptTimeoutError,
    ScriptValueError,
    WorkspaceIOError,
    WritesDisabledError,
)
from pairbox.core.security import (
    CommandVerdict,
    ensure_single_component,
    open_in_workspace,
    resolve_in_workspace,
    validate_argv,
)
from pairbox.sandbox.context import InvocationContext
from pairbox.sandbox.patching import apply_hunks, parse_unified_diff
from pairbox.sandbox.values import (
    ValueKind,
    classify,
    expect_callable,
    expect_mapping,
    expect_optional_text,
    expect_text,
    expect_text_mapping,
    expect_text_sequence,
    render_value,
)

logger = get_logger(__name__)

HostFunction = Callable[..., Any]

SERVERS_DIR = "servers"
MAX_HTTP_BODY = 10 * 1024 * 1024
MAX_COMMAND_OUTPUT = 1024 * 1024
MAX_SEARCH_RESULTS = 200
_SEARCH_SKIP_DIRS = frozenset({".git", "node_modules", "__pycache__", ".venv", ".mypy_cache"})
_HTTP_METHODS = frozenset({"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"})

CAPABILITY_NAMES: tuple[str, ...] = (
    "read_file",
    "list_dir",
    "write_file",
    "patch_file",
    "http_request",
    "log",
    "print",
    "eprint",
    "warn",
    "run_command",
    "git_status",
    "search",
    "list_servers",
    "list_server_tools",
    "load_server_tool",
)

WRITE_CAPABILITIES: frozenset[str] = frozenset({"write_file", "patch_file"})


class _HttpOnlyRedirectHandler(urllib_request.HTTPRedirectHandler):
    """Refuse redirects that leave http/https."""

    def redirect_request(self, req, fp, code, msg, headers, newurl):  # type: ignore[no-untyped-def]
        scheme = urllib_parse.urlparse(newurl).scheme.lower()
        if scheme not in ("http", "https"):
            raise urllib_error.URLError(f"redirect to {scheme}:// is not allowed")
        return super().redirect_request(req, fp, code, msg, headers, newurl)


def _header_dict(headers: Any) -> dict[str, str]:
    collected: dict[str, str] = {}
    if headers is None:
        return collected
    for key, value in headers.items():
        collected[key] = f"{collected[key]}, {value}" if key in collected else value
    return collected


def _display(value: Any) -> str:
    if classify(value) is ValueKind.TEXT:
        return value
    return render_value(value)


class CapabilitySurface:
    """The fixed set of host functions a script may call."""

    def __init__(self, config: CapabilityConfig) -> None:
        self._config = config
        self._opener = urllib_request.build_opener(_HttpOnlyRedirectHandler)

    @property
    def config(self) -> CapabilityConfig:
        return self._config

    def reconfigure(self, config: CapabilityConfig) -> None:
        self._config = config

    # ------------------------------------------------------------------
    # Binding
    # ------------------------------------------------------------------

    def bind(self, ctx: InvocationContext) -> dict[str, HostFunction]:
        """Return script-callable closures bound to ``ctx``."""
        bound: dict[str, HostFunction] = {}
        for name in CAPABILITY_NAMES:
            method = getattr(self, f"cap_{name}")
            bound[name] = _bind(name, method, ctx)

        capabilities = set(bound.values())

        def attempt(fn: Any, *args: Any, **kwargs: Any) -> dict[str, Any]:
            ctx.ensure_open("attempt")
            func = expect_callable(fn, "fn")
            if func not in capabilities:
                raise CapabilityDeniedError("attempt() only wraps host capabilities")
            try:
                value = func(*args, **kwargs)
            except CapabilityError as exc:
                return {"ok": False, "value": None, "error": {"kind": exc.kind, "message": exc.message}}
            return {"ok": True, "value": value, "error": None}

        bound["attempt"] = attempt
        return bound

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def _require_writes(self, ctx: InvocationContext, capability: str) -> None:
        if not self._config.writes_enabled:
            logger.warning("capability.%s.reject reason=writes_disabled", capability)
            raise WritesDisabledError(
                f"{capability} is disabled (set tools.allow_writes = true)",
                context={"capability": capability},
            )
        if not ctx.write_authorized:
            logger.warning("capability.%s.reject reason=not_approved", capability)
            raise WritesDisabledError(
                f"{capability} requires an approved invocation",
                context={"capability": capability, "invocation": ctx.invocation_id},
            )

    def _open(self, path: str, flags: int, *, create_parents: bool = False) -> int:
        result = open_in_workspace(
            path, self._config.workspace_root, flags, create_parents=create_parents
        )
        if isinstance(result, Err):
            logger.warning(
                "capability.path.reject kind=%s path=%r reason=%s",
                result.error.kind,
                path,
                result.error.message,
            )
            raise result.error
        return result.value

    def _read_text(self, path: str) -> str:
        fd = self._open(path, os.O_RDONLY)
        limit = self._config.max_file_size
        try:
            info = os.fstat(fd)
            if stat.S_ISDIR(info.st_mode):
                raise WorkspaceIOError(f"{path}: is a directory")
            if info.st_size > limit:
                raise WorkspaceIOError(
                    f"{path}: file is {info.st_size} bytes, over the {limit}-byte limit"
                )
            with os.fdopen(fd, "rb", closefd=False) as handle:
                data = handle.read(limit + 1)
        except OSError as exc:
            raise WorkspaceIOError(f"{path}: {exc.strerror or exc}") from exc
        finally:
            os.close(fd)
        if len(data) > limit:
            raise WorkspaceIOError(f"{path}: file exceeds the {limit}-byte limit")
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise WorkspaceIOError(f"{path}: not valid UTF-8 ({exc.reason})") from exc

    def _write_text(self, path: str, text: str, *, create_parents: bool) -> int:
        data = text.encode("utf-8")
        fd = self._open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, create_parents=create_parents)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
        except OSError as exc:
            raise WorkspaceIOError(f"{path}: {exc.strerror or exc}") from exc
        logger.info("Wrote %d bytes to %s", len(data), path)
        return len(data)

    def _scan_dir(self, path: str) -> list[dict[str, Any]]:
        fd = self._open(path, os.O_RDONLY | getattr(os, "O_DIRECTORY", 0))
        entries: list[dict[str, Any]] = []
        try:
            with os.scandir(fd) as iterator:
                for entry in iterator:
                    if isinstance(ensure_single_component(entry.name, "entry"), Err):
                        logger.warning("capability.list_dir.skip entry=%r", entry.name)
                        continue
                    try:
                        info = entry.stat(follow_symlinks=False)
                    except OSError:
                        continue
                    entries.append(
                        {
                            "name": entry.name,
                            "is_dir": stat.S_ISDIR(info.st_mode),
                            "size": info.st_size,
                        }
                    )
        except OSError as exc:
            raise WorkspaceIOError(f"{path}: {exc.strerror or exc}") from exc
        finally:
            os.close(fd)
        entries.sort(key=lambda item: item["name"])
        return entries

    # ------------------------------------------------------------------
    # Filesystem
    # ------------------------------------------------------------------

    def cap_read_file(self, ctx: InvocationContext, path: Any) -> str:
        """read_file(path) -> text"""
        return self._read_text(expect_text(path, "path"))

    def cap_list_dir(self, ctx: InvocationContext, path: Any = ".") -> list[dict[str, Any]]:
        """list_dir(path=".") -> [{name, is_dir, size}] sorted by name"""
        return self._scan_dir(expect_text(path, "path"))

    def cap_write_file(self, ctx: InvocationContext, path: Any, contents: Any) -> dict[str, Any]:
        """write_file(path, contents) -> {path, bytes}; creates parent directories"""
        self._require_writes(ctx, "write_file")
        target = expect_text(path, "path")
        written = self._write_text(target, expect_text(contents, "contents"), create_parents=True)
        return {"path": target, "bytes": written}

    def cap_patch_file(self, ctx: InvocationContext, path: Any, diff: Any) -> dict[str, Any]:
        """patch_file(path, unified_diff) -> {path, hunks}"""
        self._require_writes(ctx, "patch_file")
        target = expect_text(path, "path")
        hunks = parse_unified_diff(expect_text(diff, "diff"))
        patched = apply_hunks(self._read_text(target), hunks)
        self._write_text(target, patched, create_parents=False)
        return {"path": target, "hunks": len(hunks)}

    # ------------------------------------------------------------------
    # Network
    # ------------------------------------------------------------------

    def cap_http_request(self, ctx: InvocationContext, spec: Any) -> dict[str, Any]:
        """http_request(url | {url, method, headers, body}) -> {status, headers, body}"""
        if classify(spec) is ValueKind.TEXT:
            spec = {"url": spec}
        options = expect_mapping(spec, "request")
        url = expect_text(options.get("url"), "url")
        method = expect_text(options.get("method", "GET"), "method").upper()
        headers = expect_text_mapping(options.get("headers"), "headers")
        body = expect_optional_text(options.get("body"), "body")

        if method not in _HTTP_METHODS:
            raise ScriptValueError(f"Unsupported HTTP method: {method}")
        scheme = urllib_parse.urlparse(url).scheme.lower()
        if scheme not in ("http", "https"):
            logger.warning("capability.http_request.reject scheme=%r", scheme)
            raise CapabilityDeniedError(
                f"http_request only supports http and https URLs, got {scheme or 'none'!r}"
            )

        data = body.encode("utf-8") if body is not None else None
        req = urllib_request.Request(url, data=data, headers=headers, method=method)
        timeout = self._config.http_timeout
        logger.debug("capability.http_request method=%s url=%s", method, url)
        try:
            with self._opener.open(req, timeout=timeout) as resp:
                status = resp.status
                response_headers = _header_dict(resp.headers)
                raw = resp.read(MAX_HTTP_BODY)
        except urllib_error.HTTPError as exc:
            status = exc.code
            response_headers = _header_dict(exc.headers)
            raw = exc.read(MAX_HTTP_BODY) if exc.fp is not None else b""
        except (urllib_error.URLError, TimeoutError, OSError, ValueError) as exc:
            reason = getattr(exc, "reason", exc)
            raise NetworkError(
                f"{method} {url} failed: {reason}",
                context={"timeout": timeout},
            ) from exc

        return {
            "status": status,
            "headers": response_headers,
            "body": raw.decode("utf-8", errors="replace"),
        }

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def cap_log(self, ctx: InvocationContext, entry: Any = None) -> None:
        """log(message) or log({level, message}); never fails"""
        level = "info"
        message: Any = entry
        if classify(entry) is ValueKind.MAPPING:
            raw_level = entry.get("level")
            if classify(raw_level) is ValueKind.TEXT and raw_level.strip():
                level = raw_level.strip().lower()
            message = entry.get("message")
        text = _display(message)
        ctx.add_log(level, text)
        logger.debug("script.log level=%s message=%r", level, text)

    def cap_print(self, ctx: InvocationContext, *values: Any, sep: Any = " ") -> None:
        separator = sep if isinstance(sep, str) else " "
        ctx.write_stdout(separator.join(str(value) for value in values))

    def cap_eprint(self, ctx: InvocationContext, *values: Any, sep: Any = " ") -> None:
        separator = sep if isinstance(sep, str) else " "
        ctx.write_stderr(separator.join(str(value) for value in values))

    def cap_warn(self, ctx: InvocationContext, *values: Any) -> None:
        ctx.write_stderr("warning: " + " ".join(str(value) for value in values))

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def cap_run_command(self, ctx: InvocationContext, cmd: Any, args: Any = None) -> dict[str, Any]:
        """run_command(cmd, args=[]) -> {status, stdout, stderr}; read-only allow-list"""
        command = expect_text(cmd, "cmd")
        rest = expect_text_sequence(args, "args")
        try:
            argv = [*shlex.split(command), *rest] if not rest else [command, *rest]
        except ValueError as exc:
            raise CapabilityDeniedError(f"Unparseable command: {exc}") from exc

        root = self._config.workspace_root
        verdict, reason = validate_argv(argv, root)
        if verdict != CommandVerdict.ALLOWED:
            logger.warning(
                "capability.run_command.reject verdict=%s reason=%r argv=%r",
                verdict.name,
                reason,
                argv,
            )
            raise CapabilityDeniedError(reason, context={"verdict": verdict.name})

        env = {**os.environ, "GIT_PAGER": "cat", "PAGER": "cat", "GIT_TERMINAL_PROMPT": "0"}
        timeout = self._config.command_timeout
        logger.debug("capability.run_command argv=%r", argv)
        try:
            proc = subprocess.run(
                argv,
                cwd=root,
                env=env,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise ScriptTimeoutError(f"{argv[0]} timed out after {timeout:g}s") from exc
        except OSError as exc:
            raise WorkspaceIOError(f"Failed to start {argv[0]}: {exc.strerror or exc}") from exc

        return {
            "status": proc.returncode,
            "stdout": proc.stdout[:MAX_COMMAND_OUTPUT],
            "stderr": proc.stderr[:MAX_COMMAND_OUTPUT],
        }

    def cap_git_status(self, ctx: InvocationContext) -> str:
        """git_status() -> porcelain status text"""
        result = self.cap_run_command(ctx, "git", ["status", "--porcelain"])
        if result["status"] != 0:
            raise WorkspaceIOError(result["stderr"].strip() or "git status failed")
        return result["stdout"]

    def cap_search(
        self, ctx: InvocationContext, pattern: Any, path: Any = ".", limit: Any = MAX_SEARCH_RESULTS
    ) -> list[dict[str, Any]]:
        """search(pattern, path=".") -> [{path, line, text}]; regex over workspace files"""
        needle = expect_text(pattern, "pattern")
        start = expect_text(path, "path")
        if classify(limit) is not ValueKind.NUMBER or limit < 1:
            raise ScriptValueError("limit must be a positive number")
        try:
            regex = re.compile(needle)
        except re.error as exc:
            raise ScriptValueError(f"Invalid search pattern: {exc}") from exc

        root = Path(self._config.workspace_root).resolve()
        resolved = resolve_in_workspace(start, root)
        if isinstance(resolved, Err):
            raise resolved.error

        matches: list[dict[str, Any]] = []
        for dirpath, dirnames, filenames in os.walk(resolved.value, followlinks=False):
            ctx.check_deadline("search")
            dirnames[:] = sorted(name for name in dirnames if name not in _SEARCH_SKIP_DIRS)
            for filename in sorted(filenames):
                ctx.check_deadline("search")
                rel = Path(dirpath, filename).relative_to(root).as_posix()
                try:
                    text = self._read_text(rel)
                except CapabilityError:
                    continue
                for number, line in enumerate(text.splitlines(), start=1):
                    if regex.search(line):
                        matches.append({"path": rel, "line": number, "text": line})
                        if len(matches) >= int(limit):
                            return matches
        return matches

    # ------------------------------------------------------------------
    # Tool servers
    # ------------------------------------------------------------------

    def _component(self, value: Any, kind: str) -> str:
        result = ensure_single_component(expect_text(value, kind), kind)
        if isinstance(result, Err):
            logger.warning("capability.%s.reject value=%r", kind, value)
            raise result.error
        return result.value

    def cap_list_servers(self, ctx: InvocationContext) -> list[str]:
        """list_servers() -> names of directories under servers/"""
        if not (self._config.workspace_root / SERVERS_DIR).is_dir():
            return []
        return [entry["name"] for entry in self._scan_dir(SERVERS_DIR) if entry["is_dir"]]

    def cap_list_server_tools(self, ctx: InvocationContext, server: Any) -> list[str]:
        """list_server_tools(server) -> tool file names"""
        name = self._component(server, "server")
        entries = self._scan_dir(f"{SERVERS_DIR}/{name}")
        return [entry["name"] for entry in entries if not entry["is_dir"]]

    def cap_load_server_tool(self, ctx: InvocationContext, server: Any, tool: Any) -> str:
        """load_server_tool(server, tool) -> file text"""
        server_name = self._component(server, "server")
        tool_name = self._component(tool, "tool")
        return self._read_text(f"{SERVERS_DIR}/{server_name}/{tool_name}")


def _bind(
    name: str, method: Callable[..., Any], ctx: InvocationContext
) -> HostFunction:
    def host_function(*args: Any, **kwargs: Any) -> Any:
        ctx.ensure_open(name)
        return method(ctx, *args, **kwargs)

    host_function.__name__ = name
    host_function.__qualname__ = name
    host_function.__doc__ = method.__doc__
    return host_function


__all__ = [
    "CAPABILITY_NAMES",
    "WRITE_CAPABILITIES",
    "CapabilitySurface",
    "HostFunction",
]
