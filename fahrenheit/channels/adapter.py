"""Channel adapter protocol.

Defines the interface that all channel adapters must implement.
"""

from abc import abstractmethod
from typing import Protocol

from fahrenheit.channels.models import ChannelId, DeliveryResult
from fahrenheit.gateway.models import OutboundEnvelope


class ChannelAdapter(Protocol):
    """Protocol for channel integrations.

    Each channel (Slack, Telegram, Notion comments, etc.) implements this
    interface. Adapters own provider authentication, formatting and delivery.
    """

    @property
    @abstractmethod
    def channel_id(self) -> ChannelId:
        """Channel this adapter delivers to."""
        ...

    @abstractmethod
    async def send(self, outbound: OutboundEnvelope) -> DeliveryResult:
        """Send a message to the channel.

        Args:
            outbound: Reply addressed to a source on this channel

        Returns:
            DeliveryResult with provider message ID and status

        Raises:
            Exception: If delivery fails
        """
        ...
