"""Periodic heartbeat.

On every tick the heartbeat reads HEARTBEAT.md from the workspace and, when
it has content, sends it to the heartbeat session. A reply of exactly
HEARTBEAT_OK means nothing needs attention; anything else is recorded as a
run in the audit trail. Each tick then gives the memory pipeline a chance to
compact history.

A tick never raises: file and agent failures are logged and the schedule
keeps going.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

import aiofiles
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from fahrenheit.audit.models import CronRunLog, RunStatus
from fahrenheit.audit.sink import LogSink
from fahrenheit.exceptions import InvocationError
from fahrenheit.memory.models import utc_now
from fahrenheit.memory.pipeline import ObservationalMemoryPipeline
from fahrenheit.observability.logging import get_logger
from fahrenheit.runtime.controller import SessionConcurrencyController

logger = get_logger(__name__)

HEARTBEAT_JOB_ID = "heartbeat"
HEARTBEAT_OK = "HEARTBEAT_OK"
HEARTBEAT_PROMPT_FILE = "HEARTBEAT.md"
MAX_DETAIL_LENGTH = 300


class HeartbeatRunner:
    """Runs the heartbeat prompt and memory maintenance on an interval."""

    def __init__(
        self,
        controller: SessionConcurrencyController,
        log_sink: LogSink,
        workspace_dir: str | Path,
        interval_minutes: int,
        pipeline: ObservationalMemoryPipeline | None = None,
        session_key: str = "brain:main",
        prompt_file: str = HEARTBEAT_PROMPT_FILE,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._controller = controller
        self._log_sink = log_sink
        self._prompt_path = Path(workspace_dir).expanduser() / prompt_file
        self._interval_minutes = interval_minutes
        self._pipeline = pipeline
        self._session_key = session_key
        self._clock = clock
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    async def start(self) -> None:
        """Schedule tick() every interval_minutes, replacing any earlier schedule."""
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop())
            self._scheduler.start()
        self._scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(minutes=self._interval_minutes),
            id=HEARTBEAT_JOB_ID,
            name="Heartbeat",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        logger.info("heartbeat_started", interval_minutes=self._interval_minutes)

    async def stop(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("heartbeat_stopped")

    async def tick(self) -> str | None:
        """Run one heartbeat.

        Returns:
            The agent's reply, or None when no prompt was sent or it failed
        """
        response = None
        try:
            prompt = await self._read_prompt()
        except OSError as e:
            logger.error("heartbeat_prompt_unreadable", path=str(self._prompt_path), error=str(e))
            prompt = ""

        if prompt.strip():
            response = await self._prompt(prompt)

        if self._pipeline is not None:
            try:
                await self._pipeline.run_compression()
            except (OSError, ValueError) as e:
                logger.error("heartbeat_compression_failed", error=str(e))

        return response

    async def _prompt(self, prompt: str) -> str | None:
        correlation_id = f"{HEARTBEAT_JOB_ID}:{int(self._clock().timestamp() * 1000)}"
        try:
            response = await self._controller.handle(
                self._session_key,
                prompt,
                correlation_id=correlation_id,
            )
        except InvocationError as e:
            logger.error(
                "heartbeat_invocation_failed",
                session_key=self._session_key,
                correlation_id=correlation_id,
                error=e.message,
            )
            return None

        if response.strip() != HEARTBEAT_OK:
            try:
                await self._log_sink.log_run(
                    CronRunLog(
                        ts=self._clock(),
                        job_id=HEARTBEAT_JOB_ID,
                        correlation_id=correlation_id,
                        status=RunStatus.OK,
                        detail=response[:MAX_DETAIL_LENGTH],
                    )
                )
            except OSError as e:
                logger.error("heartbeat_run_record_failed", error=str(e))
        return response

    async def _read_prompt(self) -> str:
        try:
            async with aiofiles.open(self._prompt_path, encoding="utf-8") as f:
                return await f.read()
        except FileNotFoundError:
            return ""
