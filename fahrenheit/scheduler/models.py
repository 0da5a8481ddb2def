"""Cron job definition models.

Definitions are persisted as a JSON array in the cron store file:

    [
      {
        "id": "daily-standup",
        "schedule": "0 9 * * 1-5",
        "prompt": "Summarize yesterday's blockers.",
        "session_key": "group:alpha:main",
        "enabled": true
      }
    ]
"""

from apscheduler.triggers.cron import CronTrigger
from pydantic import BaseModel, ConfigDict, Field, field_validator

from fahrenheit.memory.models import TrustClass


class CronObservationSpec(BaseModel):
    """Turns each run of a job into a polling observation."""

    model_config = ConfigDict(use_enum_values=True)

    project_id: str = Field(..., description="Owning project of the observation")
    group_id: str = Field(..., description="Routing group of the observation")
    source: str = Field(..., description="Connector or provider being polled")
    source_ref: str = Field(..., description="Reference inside the source")
    project_tags: list[str] | None = None
    role_tags: list[str] | None = None
    trust_class: TrustClass | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)


class CronJobDefinition(BaseModel):
    """A prompt sent to a session on a crontab schedule."""

    id: str = Field(..., min_length=1, description="Unique job identifier")
    schedule: str = Field(..., description="Five-field crontab expression")
    prompt: str = Field(..., description="Message sent to the session on each run")
    session_key: str = Field(..., min_length=1, description="Target session")
    enabled: bool = True
    observation: CronObservationSpec | None = None

    @field_validator("schedule")
    @classmethod
    def validate_schedule(cls, value: str) -> str:
        CronTrigger.from_crontab(value)
        return value.strip()


class CronJobChanges(BaseModel):
    """Partial update of a cron job; unset fields are left unchanged."""

    schedule: str | None = None
    prompt: str | None = None
    session_key: str | None = None
    enabled: bool | None = None
