"""Audit sink implementations.

FileLogSink writes one JSON object per line to a daily file under the audit
directory. Every line carries a ``kind`` field (``agent``, ``cron`` or
``channel``) so the three entry types can share a file:

    audit/2026-01-05.jsonl
"""

import json
from abc import abstractmethod
from pathlib import Path
from typing import Protocol, TypeVar

import aiofiles
import aiofiles.os
from pydantic import BaseModel

from fahrenheit.audit.models import AgentActionLog, ChannelMessageLog, CronRunLog
from fahrenheit.utils.locks import file_lock

REDACTED = "__REDACTED__"

EntryT = TypeVar("EntryT", bound=BaseModel)


class LogSink(Protocol):
    """Destination for audit entries."""

    @abstractmethod
    async def log_action(self, entry: AgentActionLog) -> None:
        """Record a session transition."""
        ...

    @abstractmethod
    async def log_run(self, entry: CronRunLog) -> None:
        """Record a scheduled job run."""
        ...

    @abstractmethod
    async def log_channel_message(self, entry: ChannelMessageLog) -> None:
        """Record a message crossing the gateway."""
        ...


class FileLogSink:
    """Appends audit entries to daily JSONL files."""

    def __init__(self, audit_dir: str | Path) -> None:
        self._audit_dir = Path(audit_dir).expanduser()

    @property
    def audit_dir(self) -> Path:
        return self._audit_dir

    async def log_action(self, entry: AgentActionLog) -> None:
        await self._write("agent", entry)

    async def log_run(self, entry: CronRunLog) -> None:
        await self._write("cron", entry)

    async def log_channel_message(self, entry: ChannelMessageLog) -> None:
        await self._write("channel", entry)

    def path_for(self, entry: BaseModel) -> Path:
        """Daily file an entry belongs to, keyed by the entry's own timestamp."""
        day = entry.ts.strftime("%Y-%m-%d")
        return self._audit_dir / f"{day}.jsonl"

    async def _write(self, kind: str, entry: BaseModel) -> None:
        path = self.path_for(entry)
        record = {"kind": kind, **entry.model_dump(mode="json")}
        await aiofiles.os.makedirs(self._audit_dir, exist_ok=True)
        async with file_lock(path):
            async with aiofiles.open(path, "a", encoding="utf-8") as f:
                await f.write(json.dumps(record) + "\n")


class InMemoryLogSink:
    """Keeps audit entries in lists. For tests and local development."""

    def __init__(self) -> None:
        self.actions: list[AgentActionLog] = []
        self.runs: list[CronRunLog] = []
        self.messages: list[ChannelMessageLog] = []

    async def log_action(self, entry: AgentActionLog) -> None:
        self.actions.append(entry)

    async def log_run(self, entry: CronRunLog) -> None:
        self.runs.append(entry)

    async def log_channel_message(self, entry: ChannelMessageLog) -> None:
        self.messages.append(entry)

    def clear(self) -> None:
        self.actions.clear()
        self.runs.clear()
        self.messages.clear()


class RedactingLogSink:
    """Replaces known secret values in every string field before delegating.

    Longer secrets are replaced first so a secret that contains another one
    is never left half-redacted.
    """

    def __init__(self, inner: LogSink, secret_values: list[str]) -> None:
        self._inner = inner
        self._secrets = sorted({value for value in secret_values if value}, key=len, reverse=True)

    async def log_action(self, entry: AgentActionLog) -> None:
        await self._inner.log_action(self._redact_entry(entry))

    async def log_run(self, entry: CronRunLog) -> None:
        await self._inner.log_run(self._redact_entry(entry))

    async def log_channel_message(self, entry: ChannelMessageLog) -> None:
        await self._inner.log_channel_message(self._redact_entry(entry))

    def redact(self, text: str) -> str:
        for secret in self._secrets:
            text = text.replace(secret, REDACTED)
        return text

    def _redact_entry(self, entry: EntryT) -> EntryT:
        if not self._secrets:
            return entry
        payload = self._redact_value(entry.model_dump())
        return type(entry).model_validate(payload)

    def _redact_value(self, value):
        if isinstance(value, str):
            return self.redact(value)
        if isinstance(value, dict):
            return {key: self._redact_value(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self._redact_value(item) for item in value]
        return value
