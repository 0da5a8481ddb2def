"""Audit sink configuration models."""

from typing import Literal

from pydantic import BaseModel, Field

SinkType = Literal["file", "memory"]


class AuditConfig(BaseModel):
    """Where agent actions, cron runs and channel messages are recorded."""

    sink: SinkType = Field(default="file", description="Audit sink backend")
    directory: str = Field(
        default="audit",
        description="Audit directory, relative to the data directory",
    )
    redact_secrets: bool = Field(
        default=True,
        description="Replace resolved secret values before writing entries",
    )
