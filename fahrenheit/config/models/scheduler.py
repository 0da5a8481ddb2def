"""Scheduler configuration models."""

from pydantic import BaseModel, Field


class HeartbeatConfig(BaseModel):
    """Periodic heartbeat configuration.

    The heartbeat prompts the agent with HEARTBEAT.md and runs memory
    compaction on every tick.
    """

    enabled: bool = Field(default=True, description="Enable the heartbeat")
    interval_minutes: int = Field(
        default=30,
        gt=0,
        description="Minutes between heartbeat ticks",
    )
    prompt_path: str = Field(
        default="HEARTBEAT.md",
        description="Prompt file, relative to the workspace directory",
    )
    session_key: str = Field(
        default="brain:main",
        description="Session the heartbeat prompt is sent to",
    )


class CronConfig(BaseModel):
    """Cron job registry persistence."""

    store_file: str = Field(
        default="cron-jobs.json",
        description="Job definitions file, relative to the data directory",
    )
    runs_file: str = Field(
        default="cron-runs.jsonl",
        description="Run log file, relative to the data directory",
    )
