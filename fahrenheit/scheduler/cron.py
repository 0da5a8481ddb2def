"""Cron job registry.

Job definitions live in a JSON store file and are scheduled with APScheduler
when the registry starts. Each run sends the job's prompt to its session
through the concurrency controller, so cron prompts queue behind any
conversation already running in that session.

Every run is recorded twice: to the audit sink and to a JSONL runs file that
backs list_runs().
"""

import asyncio
import json
import time
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

import aiofiles
import aiofiles.os
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from pydantic import ValidationError

from fahrenheit.audit.models import CronRunLog, RunStatus
from fahrenheit.audit.sink import LogSink
from fahrenheit.config.models.gateway import SessionBusyPolicy
from fahrenheit.exceptions import CronJobNotFoundError, InvocationError, ObservationValidationError
from fahrenheit.memory.models import utc_now
from fahrenheit.memory.pipeline import ObservationalMemoryPipeline, PollingObservationPayload
from fahrenheit.observability.logging import get_logger
from fahrenheit.runtime.controller import SessionConcurrencyController
from fahrenheit.scheduler.models import CronJobChanges, CronJobDefinition
from fahrenheit.utils.locks import file_lock

logger = get_logger(__name__)

MAX_RUNS_LIMIT = 200
MAX_DETAIL_LENGTH = 300
DEFAULT_DETAIL = "Job executed"


class CronRegistry:
    """Persistent set of cron jobs and their schedules.

    Example usage:
        registry = CronRegistry(controller, log_sink, store_path, runs_path)
        await registry.start()

        await registry.add_job(CronJobDefinition(...))
        runs = await registry.list_runs(limit=10)

        await registry.shutdown()
    """

    def __init__(
        self,
        controller: SessionConcurrencyController,
        log_sink: LogSink,
        store_path: str | Path,
        runs_path: str | Path,
        pipeline: ObservationalMemoryPipeline | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._controller = controller
        self._log_sink = log_sink
        self._store_path = Path(store_path).expanduser()
        self._runs_path = Path(runs_path).expanduser()
        self._pipeline = pipeline
        self._clock = clock
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    async def start(self) -> None:
        """Load definitions and schedule every enabled job."""
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop())
            self._scheduler.start()

        definitions = await self.list_definitions()
        for definition in definitions:
            if definition.enabled:
                self._schedule(definition)
        logger.info(
            "cron_registry_started",
            definitions=len(definitions),
            active=len(self.list_active_job_ids()),
        )

    async def shutdown(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        logger.info("cron_registry_stopped")

    def list_active_job_ids(self) -> list[str]:
        if self._scheduler is None:
            return []
        return [job.id for job in self._scheduler.get_jobs()]

    async def list_definitions(self) -> list[CronJobDefinition]:
        async with file_lock(self._store_path):
            return await self._load_definitions()

    async def list_runs(self, limit: int = 50) -> list[CronRunLog]:
        """Most recent runs first."""
        safe_limit = max(1, min(limit, MAX_RUNS_LIMIT))
        try:
            async with aiofiles.open(self._runs_path, encoding="utf-8") as f:
                content = await f.read()
        except FileNotFoundError:
            return []

        runs = []
        for line in content.splitlines():
            if not line.strip():
                continue
            try:
                runs.append(CronRunLog.model_validate_json(line))
            except ValidationError:
                logger.warning("cron_run_line_unparseable", path=str(self._runs_path))
        return list(reversed(runs[-safe_limit:]))

    async def add_job(self, definition: CronJobDefinition) -> CronJobDefinition:
        """Add a job, replacing any existing job with the same id."""
        async with file_lock(self._store_path):
            definitions = [d for d in await self._load_definitions() if d.id != definition.id]
            definitions.append(definition)
            await self._save_definitions(definitions)

        self._apply(definition)
        logger.info("cron_job_added", job_id=definition.id, enabled=definition.enabled)
        return definition

    async def update_job(self, job_id: str, changes: CronJobChanges) -> CronJobDefinition:
        """Apply a partial update to an existing job.

        Raises:
            CronJobNotFoundError: If no job has this id
        """
        async with file_lock(self._store_path):
            definitions = await self._load_definitions()
            existing = next((d for d in definitions if d.id == job_id), None)
            if existing is None:
                raise CronJobNotFoundError(job_id)
            updated = CronJobDefinition.model_validate(
                {**existing.model_dump(), **changes.model_dump(exclude_none=True), "id": job_id}
            )
            await self._save_definitions([updated if d.id == job_id else d for d in definitions])

        self._apply(updated)
        logger.info("cron_job_updated", job_id=job_id, enabled=updated.enabled)
        return updated

    async def set_enabled(self, job_id: str, enabled: bool) -> CronJobDefinition:
        return await self.update_job(job_id, CronJobChanges(enabled=enabled))

    async def remove_job(self, job_id: str) -> None:
        async with file_lock(self._store_path):
            definitions = await self._load_definitions()
            await self._save_definitions([d for d in definitions if d.id != job_id])

        self._unschedule(job_id)
        logger.info("cron_job_removed", job_id=job_id)

    async def run_job_now(self, job_id: str) -> CronRunLog:
        """Execute one run of a job immediately, whether or not it is enabled.

        Raises:
            CronJobNotFoundError: If no job has this id
        """
        for definition in await self.list_definitions():
            if definition.id == job_id:
                return await self._execute(definition)
        raise CronJobNotFoundError(job_id)

    def _apply(self, definition: CronJobDefinition) -> None:
        if definition.enabled:
            self._schedule(definition)
        else:
            self._unschedule(definition.id)

    def _schedule(self, definition: CronJobDefinition) -> None:
        if self._scheduler is None:
            return
        self._scheduler.add_job(
            self._run_scheduled,
            trigger=CronTrigger.from_crontab(definition.schedule),
            args=[definition.id],
            id=definition.id,
            name=f"Cron job {definition.id}",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )

    def _unschedule(self, job_id: str) -> None:
        if self._scheduler is not None and self._scheduler.get_job(job_id) is not None:
            self._scheduler.remove_job(job_id)

    async def _run_scheduled(self, job_id: str) -> None:
        try:
            await self.run_job_now(job_id)
        except CronJobNotFoundError:
            logger.warning("cron_job_vanished", job_id=job_id)
            self._unschedule(job_id)
        except OSError as e:
            logger.error("cron_run_record_failed", job_id=job_id, error=str(e))

    async def _execute(self, definition: CronJobDefinition) -> CronRunLog:
        started = time.monotonic()
        correlation_id = f"cron:{definition.id}:{int(self._clock().timestamp() * 1000)}"
        try:
            response = await self._controller.handle(
                definition.session_key,
                definition.prompt,
                correlation_id=correlation_id,
                busy_policy=SessionBusyPolicy.QUEUE,
            )
            status = RunStatus.OK
            detail = response.strip()[:MAX_DETAIL_LENGTH] or DEFAULT_DETAIL
        except InvocationError as e:
            status = RunStatus.ERROR
            detail = e.message[:MAX_DETAIL_LENGTH]

        run = CronRunLog(
            ts=self._clock(),
            job_id=definition.id,
            correlation_id=correlation_id,
            status=status,
            detail=detail,
            elapsed_ms=int((time.monotonic() - started) * 1000),
        )
        await self._log_sink.log_run(run)
        await self._append_run(run)
        logger.info(
            "cron_job_ran",
            job_id=definition.id,
            status=run.status,
            elapsed_ms=run.elapsed_ms,
        )

        if definition.observation is not None and self._pipeline is not None:
            await self._record_observation(definition, run)
        return run

    async def _record_observation(self, definition: CronJobDefinition, run: CronRunLog) -> None:
        observation = definition.observation
        payload = PollingObservationPayload(
            project_id=observation.project_id,
            group_id=observation.group_id,
            session_key=definition.session_key,
            source=observation.source,
            source_ref=observation.source_ref,
            summary=run.detail,
            project_tags=observation.project_tags,
            role_tags=observation.role_tags,
            trust_class=observation.trust_class,
            confidence=observation.confidence,
        )
        try:
            await self._pipeline.record_polling_run(run, payload)
        except (ObservationValidationError, OSError) as e:
            logger.error(
                "cron_observation_failed",
                job_id=definition.id,
                correlation_id=run.correlation_id,
                error=str(e),
            )

    async def _load_definitions(self) -> list[CronJobDefinition]:
        try:
            async with aiofiles.open(self._store_path, encoding="utf-8") as f:
                content = await f.read()
        except FileNotFoundError:
            await self._save_definitions([])
            return []
        if not content.strip():
            return []
        data = json.loads(content)
        if not isinstance(data, list):
            return []
        return [CronJobDefinition.model_validate(item) for item in data]

    async def _save_definitions(self, definitions: list[CronJobDefinition]) -> None:
        await aiofiles.os.makedirs(self._store_path.parent, exist_ok=True)
        payload = json.dumps([d.model_dump(mode="json") for d in definitions], indent=2)
        tmp_path = self._store_path.with_name(self._store_path.name + ".tmp")
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(payload)
        await aiofiles.os.replace(tmp_path, self._store_path)

    async def _append_run(self, run: CronRunLog) -> None:
        await aiofiles.os.makedirs(self._runs_path.parent, exist_ok=True)
        async with file_lock(self._runs_path):
            async with aiofiles.open(self._runs_path, "a", encoding="utf-8") as f:
                await f.write(run.model_dump_json() + "\n")
