"""Bootstrap module wiring the full Fahrenheit runtime.

Builds every component from Settings and an agent capability:
- Audit sink (file or in-memory, redacted when secrets were resolved)
- Observation store and memory pipeline
- Session concurrency controller
- Channel registry and gateway router
- Cron registry and heartbeat

Example usage:

    from fahrenheit.bootstrap import bootstrap
    from fahrenheit.config import get_settings

    runtime = bootstrap(get_settings(), invoker)
    await runtime.start()

    outbound = await runtime.router.handle_inbound(envelope)

    await runtime.stop()
"""

from dataclasses import dataclass

from fahrenheit.audit.sink import FileLogSink, InMemoryLogSink, LogSink, RedactingLogSink
from fahrenheit.channels.registry import ChannelRegistry
from fahrenheit.config import get_secret_values
from fahrenheit.config.settings import Settings
from fahrenheit.gateway.router import GatewayRouter
from fahrenheit.memory.pipeline import ObservationalMemoryPipeline
from fahrenheit.memory.store import ObservationStore
from fahrenheit.observability.logging import get_logger, setup_logging
from fahrenheit.runtime.controller import AgentInvoker, SessionConcurrencyController
from fahrenheit.scheduler.cron import CronRegistry
from fahrenheit.scheduler.heartbeat import HeartbeatRunner

logger = get_logger(__name__)


@dataclass
class FahrenheitRuntime:
    """Every long-lived component of a running gateway."""

    settings: Settings
    log_sink: LogSink
    store: ObservationStore
    pipeline: ObservationalMemoryPipeline
    controller: SessionConcurrencyController
    channels: ChannelRegistry
    router: GatewayRouter
    cron: CronRegistry
    heartbeat: HeartbeatRunner

    async def start(self) -> None:
        """Create workspace files and start the schedulers."""
        await self.store.ensure_files()
        await self.cron.start()
        if self.settings.heartbeat.enabled:
            await self.heartbeat.start()
        logger.info(
            "runtime_started",
            workspace=str(self.store.workspace_dir),
            groups=list(self.settings.gateway.groups),
            channels=self.channels.list_channels(),
            cron_jobs=self.cron.list_active_job_ids(),
        )

    async def stop(self) -> None:
        await self.heartbeat.stop()
        await self.cron.shutdown()
        await self.controller.close()
        logger.info("runtime_stopped")

    def status(self) -> dict:
        return {
            "channels": self.channels.list_channels(),
            "sessions": self.controller.list_sessions(),
            "cron_jobs": self.cron.list_active_job_ids(),
            "heartbeat": self.heartbeat.running,
        }


def build_log_sink(settings: Settings, secret_values: list[str]) -> LogSink:
    if settings.audit.sink == "memory":
        sink: LogSink = InMemoryLogSink()
    else:
        sink = FileLogSink(settings.data_path / settings.audit.directory)
    if settings.audit.redact_secrets and secret_values:
        sink = RedactingLogSink(sink, secret_values)
    return sink


def bootstrap(
    settings: Settings,
    invoker: AgentInvoker,
    configure_logging: bool = True,
) -> FahrenheitRuntime:
    """Build a FahrenheitRuntime. Nothing is started until start() is awaited."""
    secret_values = get_secret_values()
    if configure_logging:
        logging_config = settings.observability.logging
        setup_logging(
            level="DEBUG" if settings.debug else settings.log_level,
            format=logging_config.format,
            redact_secrets=logging_config.redact_secrets,
            secret_values=secret_values,
        )

    log_sink = build_log_sink(settings, secret_values)
    store = ObservationStore(settings.workspace_path)
    pipeline = ObservationalMemoryPipeline(store, settings.memory)
    controller = SessionConcurrencyController(invoker, log_sink)
    channels = ChannelRegistry()
    router = GatewayRouter(settings.gateway, controller, log_sink, pipeline, channels)
    cron = CronRegistry(
        controller,
        log_sink,
        store_path=settings.data_path / settings.cron.store_file,
        runs_path=settings.data_path / settings.cron.runs_file,
        pipeline=pipeline,
    )
    heartbeat = HeartbeatRunner(
        controller,
        log_sink,
        settings.workspace_path,
        settings.heartbeat.interval_minutes,
        pipeline=pipeline,
        session_key=settings.heartbeat.session_key,
        prompt_file=settings.heartbeat.prompt_path,
    )

    logger.debug("runtime_bootstrapped", audit_sink=settings.audit.sink)
    return FahrenheitRuntime(
        settings=settings,
        log_sink=log_sink,
        store=store,
        pipeline=pipeline,
        controller=controller,
        channels=channels,
        router=router,
        cron=cron,
        heartbeat=heartbeat,
    )
