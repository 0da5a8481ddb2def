"""Channel identifiers and delivery models."""

from enum import Enum

from pydantic import BaseModel, Field


class ChannelId(str, Enum):
    """Closed set of conversation sources the gateway accepts."""

    TELEGRAM = "telegram"
    DISCORD = "discord"
    SLACK = "slack"
    WHATSAPP = "whatsapp"
    NOTION = "notion"  # Comment threads on workspace pages
    CLI = "cli"
    WEBHOOK = "webhook"


# Channel whose conversations are comment threads rather than chats.
COMMENT_CHANNEL = ChannelId.NOTION


class DeliveryResult(BaseModel):
    """Result of sending a message to a channel."""

    success: bool = Field(..., description="Whether the provider accepted the message")
    provider_message_id: str | None = Field(
        default=None,
        description="Message identifier assigned by the provider",
    )
    error_message: str | None = Field(default=None, description="Failure detail")
