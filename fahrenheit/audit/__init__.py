"""Audit trail: agent actions, cron runs and channel messages.

Entries are append-only and written through a LogSink so the runtime never
depends on where the trail is stored.
"""

from fahrenheit.audit.models import AgentActionLog, ChannelMessageLog, CronRunLog
from fahrenheit.audit.sink import FileLogSink, InMemoryLogSink, LogSink, RedactingLogSink

__all__ = [
    "AgentActionLog",
    "ChannelMessageLog",
    "CronRunLog",
    "FileLogSink",
    "InMemoryLogSink",
    "LogSink",
    "RedactingLogSink",
]
