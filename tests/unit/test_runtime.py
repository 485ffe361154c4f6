from __future__ import annotations

import threading
import time
from collections.abc import Callable
from pathlib import Path

import pytest

from pairbox.core.config import CapabilityConfig
from pairbox.core.result import RuntimeBusyError
from pairbox.sandbox.capabilities import CapabilitySurface
from pairbox.sandbox.models import ExecutionResult, LogEntry, ScriptInvocation
from pairbox.sandbox.runtime import PersistentRuntime

RuntimeFactory = Callable[..., PersistentRuntime]


def run(runtime: PersistentRuntime, source: str, *, write_authorized: bool = False) -> ExecutionResult:
    return runtime.execute(ScriptInvocation(source=source), write_authorized=write_authorized)


@pytest.fixture
def runtime(make_runtime: RuntimeFactory, read_only_config: CapabilityConfig) -> PersistentRuntime:
    return make_runtime(read_only_config)


class TestPersistence:
    def test_globals_survive_between_invocations(self, runtime: PersistentRuntime) -> None:
        assert run(runtime, "x = 10").ok
        result = run(runtime, "x")
        assert result.ok
        assert result.return_repr == "10"

    def test_functions_survive(self, runtime: PersistentRuntime) -> None:
        run(runtime, "def double(n):\n    return n * 2")
        assert run(runtime, "double(21)").return_repr == "42"
        assert runtime.defined_names() == ["double"]

    def test_reset_forgets_globals(self, runtime: PersistentRuntime) -> None:
        run(runtime, "x = 10")
        runtime.reset()
        result = run(runtime, "x")
        assert not result.ok
        assert result.status.kind == "ScriptRuntimeError"
        assert result.status.message.startswith("NameError")
        assert "x" in result.status.message
        assert runtime.defined_names() == []

    def test_reset_keeps_prelude(self, runtime: PersistentRuntime) -> None:
        runtime.reset()
        run(runtime, "def inc(n):\n    return n + 1")
        assert run(runtime, "fmap(inc, [1, 2])").return_repr == "[\n  2,\n  3\n]"


class TestReturnValues:
    def test_last_expression_is_returned(self, runtime: PersistentRuntime) -> None:
        assert run(runtime, "a = 2\na * 3").return_repr == "6"

    def test_statement_returns_none(self, runtime: PersistentRuntime) -> None:
        assert run(runtime, "a = 2").return_repr == "None"

    def test_text_is_raw(self, runtime: PersistentRuntime) -> None:
        assert run(runtime, "'hi there'").return_repr == "hi there"

    def test_mapping_is_rendered(self, runtime: PersistentRuntime) -> None:
        assert run(runtime, "{'b': 1, 'a': True}").return_repr == '{\n  "a": true,\n  "b": 1\n}'


class TestBuffers:
    def test_output_is_captured(self, runtime: PersistentRuntime) -> None:
        result = run(runtime, "print('out', 1)\neprint('err')\nlog('noted')\nwarn('careful')")
        assert result.stdout == ("out 1",)
        assert result.stderr == ("err", "warning: careful")
        assert result.logs == (LogEntry("info", "noted"),)

    def test_buffers_do_not_leak(self, runtime: PersistentRuntime) -> None:
        first = run(runtime, "log('one entry')\nprint('a')")
        second = run(runtime, "1 + 1")
        assert len(first.logs) == 1
        assert second.logs == ()
        assert second.stdout == ()

    def test_output_kept_on_failure(self, runtime: PersistentRuntime) -> None:
        result = run(runtime, "print('before')\n1 / 0\nprint('after')")
        assert not result.ok
        assert result.stdout == ("before",)
        assert result.status.message.startswith("ZeroDivisionError")
        assert result.return_repr == ""


class TestErrors:
    def test_capability_error_keeps_kind(self, runtime: PersistentRuntime) -> None:
        result = run(runtime, "read_file('../etc/passwd')")
        assert result.status.kind == "PathTraversal"
        assert result.status.message.startswith("PathTraversal: ")
        assert result.status.render().startswith("error: PathTraversal")

    def test_writes_disabled(self, runtime: PersistentRuntime, workspace: Path) -> None:
        result = run(runtime, "write_file('notes.txt', 'hi')", write_authorized=True)
        assert result.status.kind == "WritesDisabled"
        assert not (workspace / "notes.txt").exists()

    def test_script_can_catch_capability_errors(self, runtime: PersistentRuntime) -> None:
        source = "try:\n    read_file('missing.txt')\nexcept Exception:\n    caught = 'yes'\ncaught"
        result = run(runtime, source)
        assert result.ok
        assert result.return_repr == "yes"

    def test_attempt_returns_error_value(self, runtime: PersistentRuntime) -> None:
        result = run(runtime, "r = attempt(read_file, 'missing.txt')\nr['error']['kind']")
        assert result.return_repr == "IoError"

    def test_syntax_error(self, runtime: PersistentRuntime) -> None:
        result = run(runtime, "def broken(:\n    pass")
        assert result.status.kind == "ScriptRuntimeError"
        assert result.status.message.startswith("SyntaxError")
        assert "(line 1)" in result.status.message

    @pytest.mark.parametrize("source", ["import os", "open('README.md')", "eval('1')", "().__class__"])
    def test_escape_hatches_fail(self, runtime: PersistentRuntime, source: str) -> None:
        assert not run(runtime, source).ok

    def test_failure_does_not_poison_next_run(self, runtime: PersistentRuntime) -> None:
        run(runtime, "undefined_name")
        assert run(runtime, "1 + 1").return_repr == "2"

    def test_stale_capability_handle(self, runtime: PersistentRuntime) -> None:
        run(runtime, "saved = read_file")
        result = run(runtime, "saved('README.md')")
        assert result.status.kind == "CapabilityDenied"
        assert run(runtime, "read_file('README.md')").ok


class TestTimeout:
    def test_infinite_loop_times_out(self, make_runtime: RuntimeFactory, read_only_config: CapabilityConfig) -> None:
        runtime = make_runtime(read_only_config, timeout=0.2)
        result = run(runtime, "print('start')\nwhile True:\n    pass")
        assert result.status.kind == "Timeout"
        assert result.status.message == "Timeout: script exceeded the 0.2s time limit"
        assert result.stdout == ("start",)

    def test_timeout_cannot_be_swallowed(
        self, make_runtime: RuntimeFactory, read_only_config: CapabilityConfig
    ) -> None:
        runtime = make_runtime(read_only_config, timeout=0.2)
        source = "n = 0\nwhile True:\n    try:\n        n += 1\n    except Exception:\n        pass"
        assert run(runtime, source).status.kind == "Timeout"

    def test_runtime_usable_after_timeout(
        self, make_runtime: RuntimeFactory, read_only_config: CapabilityConfig
    ) -> None:
        runtime = make_runtime(read_only_config, timeout=0.2)
        run(runtime, "keep = 1")
        run(runtime, "while True:\n    pass")
        result = run(runtime, "keep + 1")
        assert result.ok
        assert result.return_repr == "2"
        assert result.stdout == ()

    def test_long_search_is_bounded(
        self,
        make_runtime: RuntimeFactory,
        read_only_config: CapabilityConfig,
        workspace: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        for number in range(100):
            (workspace / f"file{number:03d}.txt").write_text("x\n", encoding="utf-8")
        original = CapabilitySurface._read_text

        def slow_read(self: CapabilitySurface, path: str) -> str:
            time.sleep(0.01)
            return original(self, path)

        monkeypatch.setattr(CapabilitySurface, "_read_text", slow_read)
        runtime = make_runtime(read_only_config, timeout=0.2)

        started = time.monotonic()
        result = run(runtime, "search('nomatch')")
        elapsed = time.monotonic() - started

        assert result.status.kind == "Timeout"
        assert elapsed < 0.9


class TestPrelude:
    def test_helpers(self, runtime: PersistentRuntime) -> None:
        run(runtime, "def big(n):\n    return n > 1")
        assert run(runtime, "keep(big, [1, 2, 3])").return_repr == "[\n  2,\n  3\n]"
        assert run(runtime, "read_lines('README.md')[1]").return_repr == "hello world"
        assert run(runtime, "list_files('.')").return_repr == '[\n  "README.md"\n]'
        assert run(runtime, "grep_file('src/app.py', 'return')").return_repr == (
            '[\n  [\n    2,\n    "    return 42"\n  ]\n]'
        )

    def test_tree(self, runtime: PersistentRuntime) -> None:
        assert run(runtime, "tree()").return_repr == "README.md\nsrc/\n  app.py"

    def test_pretty(self, runtime: PersistentRuntime) -> None:
        assert run(runtime, "pretty({'b': [1, 'x'], 'a': None})").return_repr == (
            "{\n  a = None,\n  b = [1, 'x']\n}"
        )



class TestExclusiveAccess:
    def test_concurrent_execute_is_refused(
        self, make_runtime: RuntimeFactory, read_only_config: CapabilityConfig
    ) -> None:
        runtime = make_runtime(read_only_config, timeout=1.0)
        started = threading.Event()

        def slow() -> None:
            started.set()
            run(runtime, "while True:\n    pass")

        worker = threading.Thread(target=slow)
        worker.start()
        started.wait()
        try:
            for _ in range(100):
                if runtime.is_busy:
                    break
                time.sleep(0.01)
            with pytest.raises(RuntimeBusyError):
                run(runtime, "1")
            with pytest.raises(RuntimeBusyError):
                runtime.reset()
        finally:
            worker.join()
        assert not runtime.is_busy

    def test_reconfigure_between_runs(
        self, make_runtime: RuntimeFactory, read_only_config: CapabilityConfig, workspace: Path
    ) -> None:
        runtime = make_runtime(read_only_config)
        runtime.reconfigure(read_only_config.with_writes(True))
        assert runtime.config.writes_enabled
        assert run(runtime, "write_file('w.txt', 'ok')", write_authorized=True).ok
        assert (workspace / "w.txt").read_text(encoding="utf-8") == "ok"
