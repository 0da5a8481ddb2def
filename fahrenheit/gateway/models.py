"""Gateway envelope and route models."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from fahrenheit.channels.models import ChannelId
from fahrenheit.config.models.gateway import GatewayMode, SessionBusyPolicy
from fahrenheit.memory.models import utc_now


class InboundEnvelope(BaseModel):
    """Normalized message received from any channel."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    channel_id: ChannelId = Field(..., description="Channel the message arrived on")
    source_id: str = Field(..., description="Chat, channel or page identifier")
    sender_id: str = Field(..., description="Provider identifier of the sender")
    sender_name: str = Field(default="", description="Display name of the sender")
    content: str = Field(..., description="Message text")
    timestamp: datetime = Field(default_factory=utc_now)
    is_group: bool = Field(default=False, description="Multi-party conversation")
    mode: GatewayMode | None = Field(
        default=None,
        description="Overrides the routed group's mode when set",
    )
    thread_id: str | None = None
    correlation_id: str | None = None
    raw: dict[str, Any] | None = Field(
        default=None,
        description="Provider payload; may carry history and trust_class",
    )


class OutboundEnvelope(BaseModel):
    """Reply addressed to a channel source."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    channel_id: ChannelId
    source_id: str
    content: str
    thread_id: str | None = None
    correlation_id: str | None = None
    raw: dict[str, Any] | None = None


class ResolvedRoute(BaseModel):
    """Outcome of routing an inbound envelope to a group and session."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    group_id: str
    session_key: str
    main_session_key: str
    matched_by: str = Field(..., description="Which rule matched, for diagnostics")
    mode: GatewayMode
    busy_policy: SessionBusyPolicy
    allow_from: list[str] = Field(default_factory=list)
