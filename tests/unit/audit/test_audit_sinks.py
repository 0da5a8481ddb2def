"""Tests for audit sinks."""

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from fahrenheit.audit.models import (
    AgentAction,
    AgentActionLog,
    ChannelMessageLog,
    CronRunLog,
    Direction,
    RunStatus,
)
from fahrenheit.audit.sink import REDACTED, FileLogSink, InMemoryLogSink, RedactingLogSink


def read_lines(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text().splitlines()]


class TestAuditModels:
    """Tests for audit entry models."""

    def test_enum_values_stored_as_strings(self) -> None:
        entry = AgentActionLog(session_key="s1", action=AgentAction.PROMPT, message="hi")
        assert entry.action == "prompt"
        assert entry.status == "ok"

    def test_timestamp_defaults_to_utc(self) -> None:
        entry = CronRunLog(job_id="j1", status=RunStatus.OK, detail="done")
        assert entry.ts.tzinfo is not None


class TestFileLogSink:
    """Tests for FileLogSink."""

    @pytest.mark.asyncio
    async def test_entries_share_daily_file(self, tmp_path: Path) -> None:
        """Entries of every kind land in the file for their own day."""
        sink = FileLogSink(tmp_path / "audit")
        ts = datetime(2026, 1, 5, 23, 59, tzinfo=UTC)

        await sink.log_action(
            AgentActionLog(ts=ts, session_key="s1", action=AgentAction.PROMPT, message="hi")
        )
        await sink.log_run(CronRunLog(ts=ts, job_id="j1", status=RunStatus.OK, detail="ok"))
        await sink.log_channel_message(
            ChannelMessageLog(
                ts=ts,
                direction=Direction.INBOUND,
                channel_id="slack",
                source_id="C1",
                content="hello",
            )
        )

        path = tmp_path / "audit" / "2026-01-05.jsonl"
        records = read_lines(path)
        assert [r["kind"] for r in records] == ["agent", "cron", "channel"]
        assert records[0]["session_key"] == "s1"
        assert records[1]["job_id"] == "j1"
        assert records[2]["direction"] == "inbound"

    @pytest.mark.asyncio
    async def test_next_day_new_file(self, tmp_path: Path) -> None:
        sink = FileLogSink(tmp_path)
        first = CronRunLog(
            ts=datetime(2026, 1, 5, 12, tzinfo=UTC), job_id="j", status=RunStatus.OK, detail="a"
        )
        second = CronRunLog(
            ts=datetime(2026, 1, 6, 0, 1, tzinfo=UTC), job_id="j", status=RunStatus.OK, detail="b"
        )

        await sink.log_run(first)
        await sink.log_run(second)

        assert sink.path_for(first).name == "2026-01-05.jsonl"
        assert sink.path_for(second).name == "2026-01-06.jsonl"
        assert len(read_lines(sink.path_for(first))) == 1
        assert len(read_lines(sink.path_for(second))) == 1


class TestInMemoryLogSink:
    """Tests for InMemoryLogSink."""

    @pytest.mark.asyncio
    async def test_records_and_clears(self) -> None:
        sink = InMemoryLogSink()
        await sink.log_action(
            AgentActionLog(session_key="s1", action=AgentAction.RESPONSE, message="ok")
        )
        await sink.log_run(CronRunLog(job_id="j1", status=RunStatus.ERROR, detail="boom"))

        assert len(sink.actions) == 1
        assert sink.runs[0].status == "error"
        assert sink.messages == []

        sink.clear()
        assert sink.actions == []
        assert sink.runs == []


class TestRedactingLogSink:
    """Tests for RedactingLogSink."""

    @pytest.mark.asyncio
    async def test_redacts_string_fields(self) -> None:
        inner = InMemoryLogSink()
        sink = RedactingLogSink(inner, ["tok-123"])

        await sink.log_channel_message(
            ChannelMessageLog(
                direction=Direction.OUTBOUND,
                channel_id="telegram",
                source_id="42",
                content="your token is tok-123",
            )
        )

        assert inner.messages[0].content == f"your token is {REDACTED}"
        assert inner.messages[0].source_id == "42"

    @pytest.mark.asyncio
    async def test_redacts_nested_meta(self) -> None:
        inner = InMemoryLogSink()
        sink = RedactingLogSink(inner, ["tok-123"])

        await sink.log_action(
            AgentActionLog(
                session_key="s1",
                action=AgentAction.ERROR,
                message="failed",
                status=RunStatus.ERROR,
                meta={"headers": ["Bearer tok-123"]},
            )
        )

        assert inner.actions[0].meta == {"headers": [f"Bearer {REDACTED}"]}
        assert inner.actions[0].status == "error"

    @pytest.mark.asyncio
    async def test_longest_secret_first(self) -> None:
        inner = InMemoryLogSink()
        sink = RedactingLogSink(inner, ["abc", "abcdef", ""])

        await sink.log_run(CronRunLog(job_id="j", status=RunStatus.OK, detail="key=abcdef"))

        assert inner.runs[0].detail == f"key={REDACTED}"
        assert sink.redact("abc") == REDACTED

    @pytest.mark.asyncio
    async def test_no_secrets_passes_entry_through(self) -> None:
        inner = InMemoryLogSink()
        sink = RedactingLogSink(inner, [])
        entry = CronRunLog(job_id="j", status=RunStatus.OK, detail="plain")

        await sink.log_run(entry)

        assert inner.runs[0] is entry
