from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable, Sequence
from pathlib import Path

import pytest

from pairbox.agent.gate import ApprovalState, GateDecision
from pairbox.agent.models import (
    StreamEvent,
    StreamFinished,
    TextDelta,
    ToolCallComplete,
    ToolCallDelta,
)
from pairbox.agent.records import REDACTED, InvocationRecord
from pairbox.agent.session import CANCELED_MESSAGE, ToolSession, ToolStatus
from pairbox.core.config import CapabilityConfig
from pairbox.core.result import ApprovalNotFoundError, RuntimeBusyError

SessionFactory = Callable[..., ToolSession]

WRITE_NOTES = json.dumps({"source": "write_file('notes.txt', 'hi')", "reason": "save notes"})


async def events(items: Sequence[StreamEvent]) -> AsyncIterator[StreamEvent]:
    for item in items:
        yield item


class TestReadOnlyMode:
    def test_model_write_runs_and_fails(
        self, make_session: SessionFactory, read_only_config: CapabilityConfig, workspace: Path
    ) -> None:
        session = make_session(read_only_config)
        submission = session.handle_tool_call("call_1", WRITE_NOTES, name="run_script")
        assert submission.decision is GateDecision.RUN_READ_ONLY
        assert not submission.queued
        assert submission.result is not None
        assert submission.result.status.kind == "WritesDisabled"
        assert not (workspace / "notes.txt").exists()
        entry = session.tool_log.get(submission.log_entry_id)
        assert entry is not None
        assert entry.status is ToolStatus.ERROR
        assert entry.title == "Model run_script: save notes"

    def test_reads_run_immediately(
        self, make_session: SessionFactory, read_only_config: CapabilityConfig
    ) -> None:
        session = make_session(read_only_config)
        submission = session.handle_tool_call("call_1", {"source": "read_file('README.md')"})
        assert submission.result is not None
        assert submission.result.return_repr == "# demo\nhello world\n"
        assert session.pending() == []

    def test_tool_definition_mentions_read_only(
        self, make_session: SessionFactory, read_only_config: CapabilityConfig
    ) -> None:
        session = make_session(read_only_config)
        assert "writes are disabled" in session.tool_definition().description
        assert "READ-ONLY" in session.system_prompt()


class TestApprovalFlow:
    def test_model_call_is_queued_with_preview(
        self, make_session: SessionFactory, writable_config: CapabilityConfig, workspace: Path
    ) -> None:
        session = make_session(writable_config)
        submission = session.handle_tool_call("call_1", WRITE_NOTES)
        assert submission.queued
        assert submission.result is None
        assert not (workspace / "notes.txt").exists()
        entry = session.tool_log.get(submission.log_entry_id)
        assert entry is not None
        assert entry.status is ToolStatus.PENDING
        assert "Reason: save notes" in entry.detail
        assert "--- PREVIEW ---" in entry.detail
        assert "line 1: write_file('notes.txt') <2 chars>" in entry.detail

    def test_approve_runs_with_writes(
        self, make_session: SessionFactory, writable_config: CapabilityConfig, workspace: Path
    ) -> None:
        session = make_session(writable_config)
        submission = session.handle_tool_call("call_1", WRITE_NOTES)
        result = session.approve()
        assert result.ok
        assert result.call_id == "call_1"
        assert (workspace / "notes.txt").read_text(encoding="utf-8") == "hi"
        assert submission.pending is not None
        assert submission.pending.state is ApprovalState.EXECUTED
        entry = session.tool_log.get(submission.log_entry_id)
        assert entry is not None
        assert entry.status is ToolStatus.OK
        assert session.records[-1].decision == "queue"

    def test_skip_never_runs(
        self, make_session: SessionFactory, writable_config: CapabilityConfig, workspace: Path
    ) -> None:
        session = make_session(writable_config)
        submission = session.handle_tool_call("call_1", WRITE_NOTES)
        skipped = session.skip()
        assert skipped.state is ApprovalState.DISCARDED
        assert skipped.result is not None
        assert skipped.result.status.kind == "Canceled"
        assert not (workspace / "notes.txt").exists()
        entry = session.tool_log.get(submission.log_entry_id)
        assert entry is not None
        assert entry.status is ToolStatus.ERROR
        assert entry.detail == CANCELED_MESSAGE
        assert session.records[-1].decision == "skipped"
        assert session.tool_log.unresolved() == []

    def test_approvals_are_fifo(
        self, make_session: SessionFactory, writable_config: CapabilityConfig, workspace: Path
    ) -> None:
        session = make_session(writable_config)
        session.handle_tool_call("a", {"source": "write_file('order.txt', 'first')"})
        session.handle_tool_call("b", {"source": "write_file('order.txt', 'second')"})
        assert [entry.invocation.call_id for entry in session.pending()] == ["a", "b"]
        assert session.approve().call_id == "a"
        assert (workspace / "order.txt").read_text(encoding="utf-8") == "first"
        assert session.approve().call_id == "b"
        assert (workspace / "order.txt").read_text(encoding="utf-8") == "second"

    def test_approve_by_id(
        self, make_session: SessionFactory, writable_config: CapabilityConfig
    ) -> None:
        session = make_session(writable_config)
        session.handle_tool_call("a", {"source": "1"})
        second = session.handle_tool_call("b", {"source": "2"})
        assert second.invocation is not None
        assert session.approve(second.invocation.id).return_repr == "2"
        assert [entry.invocation.call_id for entry in session.pending()] == ["a"]

    def test_nothing_to_approve(
        self, make_session: SessionFactory, writable_config: CapabilityConfig
    ) -> None:
        session = make_session(writable_config)
        with pytest.raises(ApprovalNotFoundError):
            session.approve()
        with pytest.raises(ApprovalNotFoundError):
            session.skip("missing")

    def test_queue_full_rejects(
        self, make_session: SessionFactory, writable_config: CapabilityConfig
    ) -> None:
        session = make_session(writable_config, max_pending=1)
        session.handle_tool_call("a", {"source": "1"})
        submission = session.handle_tool_call("b", {"source": "2"})
        assert submission.decision is GateDecision.REJECT
        assert submission.result is not None
        assert submission.result.status.kind == "CapabilityDenied"
        assert "approval queue is full" in submission.result.status.message
        assert len(session.pending()) == 1

    def test_manual_runs_without_queue(
        self, make_session: SessionFactory, writable_config: CapabilityConfig, workspace: Path
    ) -> None:
        session = make_session(writable_config)
        result = session.run_manual("write_file('manual.txt', 'typed')")
        assert result.ok
        assert (workspace / "manual.txt").exists()
        assert session.records[-1].origin == "manual"
        assert session.records[-1].decision == "run"

    def test_manual_runs_while_queue_is_full(
        self, make_session: SessionFactory, writable_config: CapabilityConfig, workspace: Path
    ) -> None:
        session = make_session(writable_config, max_pending=1)
        session.handle_tool_call("a", {"source": "1"})
        result = session.run_manual("write_file('manual.txt', 'typed')\n'saved'")
        assert result.ok
        assert result.return_repr == "saved"
        assert (workspace / "manual.txt").read_text(encoding="utf-8") == "typed"
        assert len(session.pending()) == 1
        assert list(session.tool_log)[-1].status is ToolStatus.OK

    def test_pending_survives_disabling_writes(
        self, make_session: SessionFactory, writable_config: CapabilityConfig, workspace: Path
    ) -> None:
        session = make_session(writable_config)
        session.handle_tool_call("call_1", WRITE_NOTES)
        session.set_writes_enabled(False)
        assert len(session.pending()) == 1
        result = session.approve()
        assert result.status.kind == "WritesDisabled"
        assert not (workspace / "notes.txt").exists()


class TestToolCalls:
    def test_invalid_arguments_are_rejected(
        self, make_session: SessionFactory, read_only_config: CapabilityConfig
    ) -> None:
        session = make_session(read_only_config)
        submission = session.handle_tool_call("call_9", '{"source": ')
        assert submission.invocation is None
        assert submission.call_id == "call_9"
        assert submission.result is not None
        assert submission.result.status.kind == "ArgumentParseError"
        entry = session.tool_log.get(submission.log_entry_id)
        assert entry is not None
        assert entry.title == "Model run_script: invalid request"
        assert session.records == []

    def test_streamed_call(
        self, make_session: SessionFactory, read_only_config: CapabilityConfig
    ) -> None:
        session = make_session(read_only_config)
        session.feed_fragment('{"source": "6 ', call_id="s1", name="run_script")
        session.feed_fragment('* 7"}', call_id="s1")
        submission = session.finish_tool_call("s1")
        assert submission.result is not None
        assert submission.result.return_repr == "42"

    def test_unknown_tool_rejected(
        self, make_session: SessionFactory, read_only_config: CapabilityConfig
    ) -> None:
        session = make_session(read_only_config)
        session.feed_fragment('{"source": "1"}', call_id="s1")
        submission = session.finish_tool_call("s1", name="delete_everything")
        assert submission.result is not None
        assert submission.result.status.kind == "ArgumentParseError"

    def test_busy_runtime_reported(
        self,
        make_session: SessionFactory,
        read_only_config: CapabilityConfig,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        session = make_session(read_only_config)

        def busy(*args: object, **kwargs: object) -> None:
            raise RuntimeBusyError("cannot start a script while another script is running")

        monkeypatch.setattr(session.runtime, "execute", busy)
        result = session.run_manual("1")
        assert result.status.kind == "ScriptRuntimeError"
        assert "another script is running" in result.status.message


class TestSessionState:
    def test_reset(self, make_session: SessionFactory, read_only_config: CapabilityConfig) -> None:
        session = make_session(read_only_config)
        session.run_manual("counter = 1")
        assert session.run_manual("counter").return_repr == "1"
        session.reset()
        assert session.run_manual("counter").status.message.startswith("NameError")

    def test_set_writes_enabled_changes_prompt(
        self, make_session: SessionFactory, read_only_config: CapabilityConfig
    ) -> None:
        session = make_session(read_only_config)
        session.set_writes_enabled(True)
        assert session.writes_enabled
        assert session.runtime.config.writes_enabled
        assert "ENABLED" in session.system_prompt()
        assert "writes are disabled" not in session.tool_definition().description

    def test_records_are_redacted(
        self, make_session: SessionFactory, read_only_config: CapabilityConfig
    ) -> None:
        seen: list[InvocationRecord] = []
        session = make_session(read_only_config, record_sink=seen.append)
        session.run_manual("api_key = 'abcdefghijklmnop'\nprint('Bearer abcdefghijklmnop')")
        assert seen == session.records
        record = seen[0]
        assert "abcdefghijklmnop" not in record.source
        assert REDACTED in record.source
        assert record.stdout == [f"Bearer {REDACTED}"]

    def test_output_truncated_in_log(
        self, make_session: SessionFactory, read_only_config: CapabilityConfig
    ) -> None:
        session = make_session(read_only_config, max_output_chars=50)
        session.run_manual("'x' * 500")
        entry = list(session.tool_log)[-1]
        assert "truncated" in entry.detail


class TestConsume:
    @pytest.mark.asyncio
    async def test_stream_with_interleaved_calls(
        self, make_session: SessionFactory, read_only_config: CapabilityConfig
    ) -> None:
        session = make_session(read_only_config)
        stream = events(
            [
                TextDelta("Let me "),
                ToolCallDelta('{"source": ', call_id="a", name="run_script", index=0),
                TextDelta("look."),
                ToolCallDelta('{"source": "2 + 2"}', call_id="b", name="run_script", index=1),
                ToolCallDelta('"1 + 1"}', index=0),
                ToolCallComplete(call_id="b"),
                ToolCallComplete(call_id="c", name="run_script", arguments={"source": "'done'"}),
                StreamFinished(finish_reason="tool_calls"),
            ]
        )
        outcome = await session.consume(stream)
        assert outcome.text == "Let me look."
        assert outcome.finish_reason == "tool_calls"
        messages = dict(outcome.tool_messages())
        assert list(messages) == ["b", "c", "a"]
        assert messages["a"].startswith("Return value:\n2")
        assert messages["b"].startswith("Return value:\n4")
        assert messages["c"].startswith("Return value:\ndone")
        assert messages["a"].endswith("Status: ok")

    @pytest.mark.asyncio
    async def test_truncated_call_is_reported(
        self, make_session: SessionFactory, read_only_config: CapabilityConfig
    ) -> None:
        session = make_session(read_only_config)
        outcome = await session.consume(
            events([ToolCallDelta('{"source": "unterminated', call_id="x")])
        )
        assert len(outcome.submissions) == 1
        content = dict(outcome.tool_messages())["x"]
        assert "Status: error: ArgumentParseError: " in content
        assert session.adapter.open_calls == []

    @pytest.mark.asyncio
    async def test_failed_stream_does_not_leak_into_next_turn(
        self, make_session: SessionFactory, read_only_config: CapabilityConfig
    ) -> None:
        session = make_session(read_only_config)

        async def dropped() -> AsyncIterator[StreamEvent]:
            yield ToolCallDelta('{"source": "1 + 1"}', call_id="old", name="run_script", index=0)
            raise ConnectionError("connection reset")

        with pytest.raises(ConnectionError):
            await session.consume(dropped())

        assert session.adapter.open_calls == []
        aborted = [entry for entry in session.tool_log if entry.call_id == "old"]
        assert len(aborted) == 1
        assert aborted[0].status is ToolStatus.ERROR
        assert "ArgumentParseError" in aborted[0].detail
        assert "ConnectionError" in aborted[0].detail

        outcome = await session.consume(
            events([ToolCallComplete(call_id="new", arguments={"source": "2"}), StreamFinished()])
        )
        assert [call_id for call_id, _ in outcome.tool_messages()] == ["new"]

    @pytest.mark.asyncio
    async def test_queued_calls_are_returned(
        self, make_session: SessionFactory, writable_config: CapabilityConfig
    ) -> None:
        session = make_session(writable_config)
        outcome = await session.consume(
            events([ToolCallComplete(call_id="w", arguments=WRITE_NOTES), StreamFinished()])
        )
        assert [entry.invocation.call_id for entry in outcome.pending] == ["w"]
        assert outcome.tool_messages() == []
