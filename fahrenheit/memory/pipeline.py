"""Observational memory pipeline.

Bridges gateway and scheduler events into the observation store:

- record_inbound_observation: observational-mode channel messages.
- record_polling_run: results of scheduled polling jobs.
- run_compression: periodic maintenance, driven by the heartbeat.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from fahrenheit.audit.models import CronRunLog
from fahrenheit.config.models.memory import ObservationalMemoryConfig
from fahrenheit.exceptions import ObservationValidationError
from fahrenheit.gateway.models import InboundEnvelope
from fahrenheit.memory.models import (
    AppendResult,
    CompressionResult,
    MemoryPromotionPolicy,
    ObservationEventType,
    ObservationInput,
    TrustClass,
)
from fahrenheit.memory.store import ObservationStore
from fahrenheit.observability.logging import get_logger

logger = get_logger(__name__)

INBOUND_CONFIDENCE = 0.75
INBOUND_MIN_PROMOTION_CONFIDENCE = 0.7
POLLING_CONFIDENCE = 0.8
POLLING_WORKFLOW_STAGE = "polling"
DEFAULT_ROLE_TAG = "operator"


class ObservationPartition(BaseModel):
    """Where a routed observational message belongs."""

    model_config = ConfigDict(frozen=True)

    group_id: str
    session_key: str
    correlation_id: str
    project_id: str | None = Field(
        default=None,
        description="Owning project; defaults to the group id",
    )


class PollingObservationPayload(BaseModel):
    """Observation produced by a scheduled polling run."""

    model_config = ConfigDict(use_enum_values=True)

    project_id: str
    group_id: str
    session_key: str
    source: str
    source_ref: str
    summary: str
    project_tags: list[str] | None = None
    role_tags: list[str] | None = None
    trust_class: TrustClass | None = None
    confidence: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


def _tags(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str) and item.strip()]


def _text(value: Any) -> str | None:
    return value if isinstance(value, str) and value.strip() else None


def _trust(value: Any, default: TrustClass) -> TrustClass:
    try:
        return TrustClass(value)
    except ValueError:
        return default


class ObservationalMemoryPipeline:
    """Turns routed events into observations and maintains the store."""

    def __init__(self, store: ObservationStore, config: ObservationalMemoryConfig) -> None:
        self._store = store
        self._config = config

    @property
    def store(self) -> ObservationStore:
        return self._store

    async def record_inbound_observation(
        self,
        envelope: InboundEnvelope,
        partition: ObservationPartition,
    ) -> AppendResult:
        """Record an observational-mode message.

        The envelope's raw payload may carry trust_class, confidence,
        project_tags, role_tags, workflow_stage and decision_ref. Inbound
        observations never auto-promote below 0.7 confidence, whatever the
        configured threshold.
        """
        raw = envelope.raw or {}
        confidence = raw.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            confidence = INBOUND_CONFIDENCE

        policy = MemoryPromotionPolicy(
            auto_promote_trust=self._config.promotion.auto_promote_trust,
            min_confidence_auto_promote=max(
                self._config.promotion.min_confidence_auto_promote,
                INBOUND_MIN_PROMOTION_CONFIDENCE,
            ),
        )

        result = await self._store.append_observation(
            ObservationInput(
                project_id=partition.project_id or partition.group_id,
                group_id=partition.group_id,
                session_key=partition.session_key,
                event_type=ObservationEventType.WORKFLOW_DELTA.value,
                source=envelope.channel_id,
                source_ref=envelope.thread_id or envelope.source_id,
                occurred_at=envelope.timestamp,
                project_tags=_tags(raw.get("project_tags")) or [partition.group_id],
                role_tags=_tags(raw.get("role_tags")) or [DEFAULT_ROLE_TAG],
                workflow_stage=_text(raw.get("workflow_stage")),
                decision_ref=_text(raw.get("decision_ref")),
                summary=envelope.content,
                confidence=float(confidence),
                trust_class=_trust(raw.get("trust_class"), TrustClass.TRUSTED),
                metadata={
                    "correlation_id": partition.correlation_id,
                    "sender_id": envelope.sender_id,
                    "session_key": partition.session_key,
                },
            ),
            policy,
        )
        logger.debug(
            "inbound_observation_recorded",
            group_id=partition.group_id,
            correlation_id=partition.correlation_id,
            promoted=result.promotion.promoted,
        )
        return result

    async def record_polling_run(
        self,
        run: CronRunLog,
        payload: PollingObservationPayload,
    ) -> AppendResult:
        """Record the observation produced by one scheduled run.

        Raises:
            ObservationValidationError: If project_id, group_id or
                session_key is blank; nothing is appended
        """
        for field in ("project_id", "group_id", "session_key"):
            if not getattr(payload, field).strip():
                raise ObservationValidationError(f"observation_{field}_required", field=field)

        metadata = {
            **payload.metadata,
            "job_id": run.job_id,
            "run_status": run.status,
            "correlation_id": run.correlation_id,
            "elapsed_ms": run.elapsed_ms,
        }
        return await self._store.append_observation(
            ObservationInput(
                project_id=payload.project_id,
                group_id=payload.group_id,
                session_key=payload.session_key,
                event_type=ObservationEventType.POLLING_DELTA.value,
                source=payload.source,
                source_ref=payload.source_ref,
                occurred_at=run.ts,
                project_tags=payload.project_tags,
                role_tags=payload.role_tags,
                workflow_stage=POLLING_WORKFLOW_STAGE,
                summary=payload.summary,
                confidence=(
                    payload.confidence if payload.confidence is not None else POLLING_CONFIDENCE
                ),
                trust_class=payload.trust_class or TrustClass.SYSTEM,
                metadata=metadata,
            ),
            self._config.promotion,
        )

    async def run_compression(self) -> CompressionResult:
        """Compact history with the configured options.

        Raises:
            OSError: If the snapshot or the rewritten history cannot be written
        """
        result = await self._store.compress_history_if_needed(self._config.compression)
        logger.debug("memory_compression_checked", compressed=result.compressed, reason=result.reason)
        return result
