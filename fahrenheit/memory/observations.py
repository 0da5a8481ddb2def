"""Observation normalization, signal extraction and promotion.

Everything here is pure: no I/O, no clock reads beyond defaulting
``occurred_at``. The store composes these functions around its file writes.

History lines are one ObservationEvent JSON object each. Curated memory
lines are a human-scannable ``key=value`` projection:

    - 2026-01-05T10:00:00+00:00 | warning | source=notion | projectId=alpha | ...
"""

import math
from collections.abc import Iterable
from datetime import UTC
from uuid import uuid4

from pydantic import ValidationError

from fahrenheit.exceptions import ObservationValidationError
from fahrenheit.memory.models import (
    MemoryPromotionPolicy,
    ObservationCategory,
    ObservationEvent,
    ObservationInput,
    ObservationSignal,
    ObservationStatus,
    PromotionClass,
    PromotionResult,
    SignalType,
    utc_now,
)

SIGNAL_KEYWORDS: dict[SignalType, tuple[str, ...]] = {
    SignalType.BLOCKER: ("blocked", "waiting", "stuck", "dependency", "cannot proceed", "hold"),
    SignalType.RISK: ("risk", "slip", "delay", "late", "issue", "regression", "incident"),
    SignalType.UPSELL: ("upsell", "expansion", "upgrade", "add-on", "cross-sell"),
    SignalType.IMPROVEMENT: ("improve", "optimize", "cleanup", "reduce", "faster", "automate"),
}

WARNING_SIGNALS = frozenset({SignalType.BLOCKER.value, SignalType.RISK.value})
OPPORTUNITY_SIGNALS = frozenset({SignalType.UPSELL.value, SignalType.IMPROVEMENT.value})

DEFAULT_CONFIDENCE = 0.75
MAX_SIGNAL_DETAILS = 240
MAX_RATIONALE = 300
MEMORY_ENTRY_PREFIX = "- "
MEMORY_FIELD_SEPARATOR = " | "


def clamp_confidence(value: float) -> float:
    """Clamp to [0, 1] and round to three decimals; non-finite becomes 0."""
    if not math.isfinite(value):
        return 0.0
    return round(min(max(value, 0.0), 1.0), 3)


def normalize_tags(tags: Iterable[str] | None) -> list[str]:
    """Trim, lower-case and de-duplicate tags, keeping first-seen order."""
    if not tags:
        return []
    seen: dict[str, None] = {}
    for raw_tag in tags:
        normalized = raw_tag.strip().lower()
        if normalized:
            seen.setdefault(normalized, None)
    return list(seen)


def derive_signals(summary: str, baseline_confidence: float) -> list[ObservationSignal]:
    """Scan a summary for blocker/risk/upsell/improvement markers."""
    text = summary.lower()
    signals: list[ObservationSignal] = []
    for signal_type, keywords in SIGNAL_KEYWORDS.items():
        if any(keyword in text for keyword in keywords):
            signals.append(
                ObservationSignal(
                    type=signal_type,
                    label=f"{signal_type.value} marker",
                    confidence=clamp_confidence(baseline_confidence),
                    details=summary[:MAX_SIGNAL_DETAILS],
                )
            )
    return signals


def infer_category(summary: str, signals: list[ObservationSignal]) -> ObservationCategory:
    normalized = summary.lower()
    signal_types = {signal.type for signal in signals}
    if "decision" in normalized or "decided" in normalized:
        return ObservationCategory.DECISION
    if any(word in normalized for word in ("commitment", "promised", "deadline")):
        return ObservationCategory.COMMITMENT_SHIFT
    if signal_types & WARNING_SIGNALS:
        return ObservationCategory.BLOCKER_RISK
    if signal_types & OPPORTUNITY_SIGNALS:
        return ObservationCategory.OPPORTUNITY
    return ObservationCategory.PROGRESS_DELTA


def _require(value: str, field: str) -> str:
    stripped = value.strip()
    if not stripped:
        raise ObservationValidationError(f"observation_{field}_required", field=field)
    return stripped


def _optional(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def normalize_observation(data: ObservationInput) -> ObservationEvent:
    """Build a full ObservationEvent from raw input.

    Raises:
        ObservationValidationError: If project_id, group_id or session_key
            is blank
    """
    project_id = _require(data.project_id, "project_id")
    group_id = _require(data.group_id, "group_id")
    session_key = _require(data.session_key, "session_key")

    confidence = clamp_confidence(
        data.confidence if data.confidence is not None else DEFAULT_CONFIDENCE
    )
    summary = data.summary.strip()
    source_ref = data.source_ref.strip()
    occurred_at = data.occurred_at or utc_now()
    if occurred_at.tzinfo is None:
        occurred_at = occurred_at.replace(tzinfo=UTC)

    if data.signals is not None:
        signals = [
            signal.model_copy(update={"confidence": clamp_confidence(signal.confidence)})
            for signal in data.signals
        ]
    else:
        signals = derive_signals(summary, confidence)

    category = data.category or infer_category(summary, signals)
    category_value = ObservationCategory(category).value
    rationale = (
        (data.rationale or "").strip()
        or f"Derived from {category_value} heuristics and source summary."
    )[:MAX_RATIONALE]

    provenance = data.provenance_refs if data.provenance_refs is not None else [source_ref]
    provenance_refs = list(dict.fromkeys(ref.strip() for ref in provenance if ref.strip()))

    return ObservationEvent(
        id=data.id or str(uuid4()),
        project_id=project_id,
        group_id=group_id,
        session_key=session_key,
        event_type=data.event_type.strip() or "workflow.delta",
        source=data.source.strip(),
        source_ref=source_ref,
        occurred_at=occurred_at,
        project_tags=normalize_tags(data.project_tags),
        role_tags=normalize_tags(data.role_tags),
        workflow_stage=_optional(data.workflow_stage),
        decision_ref=_optional(data.decision_ref),
        summary=summary,
        confidence=confidence,
        trust_class=data.trust_class,
        status=data.status or ObservationStatus.ACCEPTED,
        category=category,
        rationale=rationale,
        provenance_refs=provenance_refs,
        signals=signals,
        metadata=data.metadata or {},
    )


def choose_promotion_class(event: ObservationEvent) -> PromotionClass:
    signal_types = event.signal_types
    if signal_types & WARNING_SIGNALS:
        return PromotionClass.WARNING
    if signal_types:
        return PromotionClass.OPERATIONAL
    return PromotionClass.INFORMATIONAL


def evaluate_promotion(
    event: ObservationEvent,
    policy: MemoryPromotionPolicy,
) -> PromotionResult:
    """Decide whether an event is promoted into curated memory.

    Eligible when the trust class is auto-promotable and the confidence
    meets the policy threshold. Denials are results, never exceptions.
    """
    if event.trust_class not in policy.auto_promote_trust:
        return PromotionResult(
            promoted=False,
            reason=f"trust_requires_approval:{event.trust_class}",
        )
    if event.confidence < policy.min_confidence_auto_promote:
        return PromotionResult(
            promoted=False,
            reason=f"confidence_below_threshold:{event.confidence}",
        )
    return PromotionResult(
        promoted=True,
        reason="auto_promoted",
        promotion_class=choose_promotion_class(event),
    )


def to_history_line(event: ObservationEvent) -> str:
    return event.model_dump_json()


def parse_history_line(line: str) -> ObservationEvent | None:
    """Parse one history line; blank or malformed lines yield None."""
    payload = line.strip()
    if not payload:
        return None
    try:
        return ObservationEvent.model_validate_json(payload)
    except ValidationError:
        return None


def _single_line(value: str) -> str:
    return " ".join(value.split()).replace(MEMORY_FIELD_SEPARATOR, " / ")


def format_memory_entry(event: ObservationEvent, promotion_class: PromotionClass) -> str:
    """Render the curated one-line projection of a promoted event.

    Every value is flattened to a single line without the field separator,
    so parse_memory_entry always recovers the same fields.
    """
    signal_summary = ",".join(signal.type for signal in event.signals)
    project_scope = ",".join(event.project_tags) or "unscoped"
    role_scope = ",".join(event.role_tags) or "unscoped"
    values = {
        "source": event.source,
        "projectId": event.project_id,
        "group": event.group_id,
        "session": event.session_key,
        "trust": event.trust_class,
        "status": event.status,
        "project": project_scope,
        "role": role_scope,
        "signals": signal_summary or "none",
        "summary": event.summary,
        "ref": event.source_ref,
        "id": event.id,
    }
    fields = [
        event.occurred_at.isoformat(),
        PromotionClass(promotion_class).value,
        *(f"{key}={_single_line(str(value))}" for key, value in values.items()),
    ]
    return MEMORY_ENTRY_PREFIX + MEMORY_FIELD_SEPARATOR.join(fields)


def parse_memory_entry(line: str) -> dict[str, str] | None:
    """Split a curated memory line back into its fields.

    The timestamp and promotion class are returned under ``occurredAt`` and
    ``class``. Lines not produced by format_memory_entry yield None.
    """
    if not line.startswith(MEMORY_ENTRY_PREFIX):
        return None
    parts = line[len(MEMORY_ENTRY_PREFIX):].rstrip("\n").split(MEMORY_FIELD_SEPARATOR)
    if len(parts) < 3:
        return None
    fields = {"occurredAt": parts[0], "class": parts[1]}
    for part in parts[2:]:
        key, sep, value = part.partition("=")
        if sep:
            fields[key] = value
    return fields
