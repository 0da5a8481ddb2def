"""Observation query filters and aggregate stats.

Filters compose as a logical AND; an unset field imposes no constraint.
Filtering never reorders: results keep append (chronological) order.
"""

from collections import Counter
from collections.abc import Iterable
from datetime import datetime, timedelta

from pydantic import BaseModel, ConfigDict, Field

from fahrenheit.memory.models import (
    ObservationEvent,
    ObservationStatus,
    SignalType,
    TrustClass,
    utc_now,
)


class ObservationFilter(BaseModel):
    """Optional constraints on observation queries."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    project_id: str | None = None
    group_id: str | None = None
    session_key: str | None = None
    source: str | None = None
    trust_class: TrustClass | None = None
    signal_type: SignalType | None = None
    project_tag: str | None = None
    status: ObservationStatus | None = None

    @property
    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)

    def matches(self, event: ObservationEvent) -> bool:
        if self.project_id is not None and event.project_id != self.project_id:
            return False
        if self.group_id is not None and event.group_id != self.group_id:
            return False
        if self.session_key is not None and event.session_key != self.session_key:
            return False
        if self.source is not None and event.source != self.source:
            return False
        if self.trust_class is not None and event.trust_class != self.trust_class:
            return False
        if self.signal_type is not None and self.signal_type not in event.signal_types:
            return False
        if (
            self.project_tag is not None
            and self.project_tag.strip().lower() not in event.project_tags
        ):
            return False
        if self.status is not None and event.status != self.status:
            return False
        return True

    def matches_memory_fields(self, fields: dict[str, str]) -> bool:
        """Apply the filter to a parsed curated memory line."""
        exact = {
            "projectId": self.project_id,
            "group": self.group_id,
            "session": self.session_key,
            "source": self.source,
            "trust": self.trust_class,
            "status": self.status,
        }
        for key, expected in exact.items():
            if expected is not None and fields.get(key) != expected:
                return False
        if self.signal_type is not None:
            if self.signal_type not in fields.get("signals", "").split(","):
                return False
        if self.project_tag is not None:
            tags = fields.get("project", "").split(",")
            if self.project_tag.strip().lower() not in tags:
                return False
        return True


def filter_observations(
    events: Iterable[ObservationEvent],
    filters: ObservationFilter | None = None,
) -> list[ObservationEvent]:
    if filters is None:
        return list(events)
    return [event for event in events if filters.matches(event)]


class RecentActivity(BaseModel):
    last_24h: int = 0
    last_7d: int = 0


class MemoryStats(BaseModel):
    """Aggregate counts over a set of observations."""

    total_observations: int = 0
    pending_review: int = 0
    by_trust_class: dict[str, int] = Field(default_factory=dict)
    by_signal_type: dict[str, int] = Field(default_factory=dict)
    by_source: dict[str, int] = Field(default_factory=dict)
    recent_activity: RecentActivity = Field(default_factory=RecentActivity)


def build_memory_stats(
    events: Iterable[ObservationEvent],
    now: datetime | None = None,
) -> MemoryStats:
    """Count observations by trust class, signal type, source and recency.

    Each event counts once per distinct signal type it carries.
    """
    now = now or utc_now()
    day_ago = now - timedelta(days=1)
    week_ago = now - timedelta(days=7)

    by_trust: Counter[str] = Counter({trust.value: 0 for trust in TrustClass})
    by_signal: Counter[str] = Counter({signal.value: 0 for signal in SignalType})
    by_source: Counter[str] = Counter()
    total = pending = last_24h = last_7d = 0

    for event in events:
        total += 1
        if event.status == ObservationStatus.PENDING_REVIEW.value:
            pending += 1
        by_trust[event.trust_class] += 1
        by_source[event.source] += 1
        for signal_type in event.signal_types:
            by_signal[signal_type] += 1
        if event.occurred_at >= day_ago:
            last_24h += 1
        if event.occurred_at >= week_ago:
            last_7d += 1

    return MemoryStats(
        total_observations=total,
        pending_review=pending,
        by_trust_class=dict(by_trust),
        by_signal_type=dict(by_signal),
        by_source=dict(by_source),
        recent_activity=RecentActivity(last_24h=last_24h, last_7d=last_7d),
    )
