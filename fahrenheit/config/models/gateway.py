"""Gateway routing configuration models.

Groups are declared as an ordered TOML table; declaration order decides ties
within each routing pass:

    [gateway.groups.personal]
    allow_from = ["*"]
    mode = "conversational"
    sources = [{ channel = "slack", scope = "dm" }]

    [gateway.groups.alpha]
    busy_policy = "steer"
    sources = [{ channel = "slack", channel_ids = ["C_ALPHA_GEN"] }]
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from fahrenheit.channels.models import ChannelId


class GatewayMode(str, Enum):
    """How routed messages are handled."""

    CONVERSATIONAL = "conversational"  # Agent replies
    OBSERVATIONAL = "observational"  # Recorded into memory, no reply


class SessionBusyPolicy(str, Enum):
    """What to do with a message when its session is mid-invocation."""

    QUEUE = "queue"  # Run after the active invocation settles
    STEER = "steer"  # Inject into the active invocation immediately


class SourceScope(str, Enum):
    """Conversation kinds a group source accepts."""

    DM = "dm"
    GROUP = "group"
    COMMENTS = "comments"
    ALL = "all"


class GroupSource(BaseModel):
    """One channel binding of a routing group."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    channel: ChannelId = Field(..., description="Channel this source listens on")
    scope: SourceScope | None = Field(
        default=None,
        description="Conversation kinds accepted when no channel id binds",
    )
    channel_ids: list[str] = Field(
        default_factory=list,
        description="Explicit source ids bound to this group (highest priority)",
    )


class GroupConfig(BaseModel):
    """A routing group: one logical conversation space."""

    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    description: str = Field(default="", description="Human-readable purpose")
    allow_from: list[str] = Field(
        default_factory=list,
        description="Allowed sender ids; empty or '*' allows everyone",
    )
    mode: GatewayMode = Field(
        default=GatewayMode.CONVERSATIONAL,
        description="Reply to messages or only observe them",
    )
    busy_policy: SessionBusyPolicy = Field(
        default=SessionBusyPolicy.QUEUE,
        description="Behavior for messages arriving while the session is busy",
    )
    sources: list[GroupSource] = Field(
        default_factory=list,
        description="Channel bindings for this group",
    )


class GatewayConfig(BaseModel):
    """Gateway configuration."""

    groups: dict[str, GroupConfig] = Field(
        default_factory=dict,
        description="Routing groups in declaration order",
    )
    mock_reply: str = Field(
        default="",
        description="Fixed reply returned instead of invoking the agent",
    )
