"""Observational memory models.

An ObservationEvent is a normalized record of a detected workflow delta.
Events are appended once to the raw history log and never mutated; a
promoted event additionally yields one curated line in the memory file.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Return current UTC time."""
    return datetime.now(UTC)


class TrustClass(str, Enum):
    """Provenance bucket gating auto-promotion."""

    TRUSTED = "trusted"
    SYSTEM = "system"
    UNTRUSTED = "untrusted"


class SignalType(str, Enum):
    """Heuristic markers derived from an observation summary."""

    BLOCKER = "blocker"
    RISK = "risk"
    UPSELL = "upsell"
    IMPROVEMENT = "improvement"


class PromotionClass(str, Enum):
    """Severity class of a curated memory entry."""

    INFORMATIONAL = "informational"
    OPERATIONAL = "operational"
    WARNING = "warning"


class ObservationStatus(str, Enum):
    """Review state of an observation."""

    ACCEPTED = "accepted"
    PENDING_REVIEW = "pending_review"


class ObservationCategory(str, Enum):
    """Coarse classification inferred from the summary."""

    DECISION = "decision"
    COMMITMENT_SHIFT = "commitment_shift"
    BLOCKER_RISK = "blocker_risk"
    OPPORTUNITY = "opportunity"
    PROGRESS_DELTA = "progress_delta"


class ObservationEventType(str, Enum):
    """Where an observation came from."""

    WORKFLOW_DELTA = "workflow.delta"  # Conversational/observational ingress
    POLLING_DELTA = "polling.delta"  # Scheduled polling runs


class ObservationSignal(BaseModel):
    """A heuristic marker found in an observation."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    type: SignalType
    label: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    details: str | None = None


class ObservationEvent(BaseModel):
    """Normalized, immutable observation as stored in history."""

    model_config = ConfigDict(frozen=True, use_enum_values=True, validate_default=True)

    id: str = Field(..., description="Unique identifier")
    project_id: str = Field(..., description="Owning project")
    group_id: str = Field(..., description="Routing group")
    session_key: str = Field(..., description="Session the observation belongs to")
    event_type: str = Field(
        default=ObservationEventType.WORKFLOW_DELTA.value,
        description="workflow.delta or polling.delta",
    )
    source: str = Field(..., description="Channel or connector that produced it")
    source_ref: str = Field(..., description="Thread, page or connector reference")
    occurred_at: datetime = Field(..., description="When the delta happened")
    project_tags: list[str] = Field(default_factory=list)
    role_tags: list[str] = Field(default_factory=list)
    workflow_stage: str | None = None
    decision_ref: str | None = None
    summary: str = Field(..., description="Human-readable delta")
    confidence: float = Field(..., ge=0.0, le=1.0)
    trust_class: TrustClass
    status: ObservationStatus = ObservationStatus.ACCEPTED
    category: ObservationCategory | None = None
    rationale: str | None = None
    provenance_refs: list[str] = Field(default_factory=list)
    signals: list[ObservationSignal] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def signal_types(self) -> set[str]:
        return {signal.type for signal in self.signals}


class ObservationInput(BaseModel):
    """Raw observation before normalization.

    Only partition keys, source and summary are required; everything else
    is defaulted or derived by normalize_observation().
    """

    model_config = ConfigDict(use_enum_values=True)

    id: str | None = None
    project_id: str
    group_id: str
    session_key: str
    event_type: str = ObservationEventType.WORKFLOW_DELTA.value
    source: str
    source_ref: str
    occurred_at: datetime | None = None
    project_tags: list[str] | None = None
    role_tags: list[str] | None = None
    workflow_stage: str | None = None
    decision_ref: str | None = None
    summary: str
    confidence: float | None = None
    trust_class: TrustClass
    status: ObservationStatus | None = None
    category: ObservationCategory | None = None
    rationale: str | None = None
    provenance_refs: list[str] | None = None
    signals: list[ObservationSignal] | None = None
    metadata: dict[str, Any] | None = None


class MemoryPromotionPolicy(BaseModel):
    """Which observations are promoted into curated memory automatically."""

    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    auto_promote_trust: list[TrustClass] = Field(
        default_factory=lambda: [TrustClass.TRUSTED, TrustClass.SYSTEM],
        description="Trust classes eligible for auto-promotion",
    )
    min_confidence_auto_promote: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Minimum confidence for auto-promotion",
    )


class MemoryCompressionOptions(BaseModel):
    """Thresholds for compacting the history log."""

    max_lines: int = Field(default=5000, gt=0, description="Line count threshold")
    max_bytes: int = Field(default=5_000_000, gt=0, description="Size threshold")
    min_age_minutes: float = Field(
        default=60,
        ge=0,
        description="Minimum minutes since the last compaction (or store creation)",
    )
    keep_last_lines: int = Field(
        default=400,
        ge=0,
        description="Lines kept in the live history after compaction",
    )
    snapshot_dir: str = Field(
        default=".memory/history-snapshots",
        description="Archive directory; relative paths resolve against the workspace",
    )


class PromotionResult(BaseModel):
    """Outcome of evaluating the promotion policy for one event."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    promoted: bool
    reason: str
    promotion_class: PromotionClass | None = None


class AppendResult(BaseModel):
    """Event as stored plus its promotion decision."""

    model_config = ConfigDict(frozen=True)

    event: ObservationEvent
    promotion: PromotionResult


class CompressionResult(BaseModel):
    """Outcome of a compaction attempt."""

    model_config = ConfigDict(frozen=True)

    compressed: bool
    reason: str | None = None
    snapshot_path: str | None = None
    archived_lines: int = 0
    retained_lines: int = 0
