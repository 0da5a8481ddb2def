"""Audit entry models."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from fahrenheit.memory.models import utc_now


class AgentAction(str, Enum):
    """Session transitions recorded by the concurrency controller."""

    PROMPT = "prompt"
    STEER = "steer"
    RESPONSE = "response"
    ERROR = "error"


class RunStatus(str, Enum):
    OK = "ok"
    ERROR = "error"


class Direction(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class AgentActionLog(BaseModel):
    """One session transition."""

    model_config = ConfigDict(frozen=True, use_enum_values=True, validate_default=True)

    ts: datetime = Field(default_factory=utc_now)
    session_key: str
    correlation_id: str | None = None
    action: AgentAction
    message: str
    status: RunStatus = RunStatus.OK
    meta: dict[str, Any] = Field(default_factory=dict)


class CronRunLog(BaseModel):
    """Outcome of one scheduled job run."""

    model_config = ConfigDict(frozen=True, use_enum_values=True, validate_default=True)

    ts: datetime = Field(default_factory=utc_now)
    job_id: str
    correlation_id: str | None = None
    status: RunStatus
    detail: str
    elapsed_ms: int | None = None


class ChannelMessageLog(BaseModel):
    """A message crossing the gateway in either direction."""

    model_config = ConfigDict(frozen=True, use_enum_values=True, validate_default=True)

    ts: datetime = Field(default_factory=utc_now)
    direction: Direction
    channel_id: str
    source_id: str
    correlation_id: str | None = None
    sender_id: str | None = None
    content: str
