"""Channel registry for delivering outbound messages.

Maps each ChannelId to at most one adapter. Delivery never raises: unknown
channels and adapter failures come back as failed DeliveryResults.
"""

from fahrenheit.channels.adapter import ChannelAdapter
from fahrenheit.channels.models import ChannelId, DeliveryResult
from fahrenheit.gateway.models import OutboundEnvelope
from fahrenheit.observability.logging import get_logger

logger = get_logger(__name__)


class ChannelRegistry:
    """Explicit map from channel id to adapter."""

    def __init__(self) -> None:
        self._adapters: dict[str, ChannelAdapter] = {}

    def register(self, adapter: ChannelAdapter) -> None:
        """Register an adapter, replacing any previous one for its channel."""
        channel = ChannelId(adapter.channel_id).value
        if channel in self._adapters:
            logger.warning("channel_adapter_replaced", channel=channel)
        self._adapters[channel] = adapter
        logger.info("channel_adapter_registered", channel=channel)

    def get(self, channel: ChannelId | str) -> ChannelAdapter | None:
        return self._adapters.get(ChannelId(channel).value)

    def list_channels(self) -> list[str]:
        """Registered channel ids, in registration order."""
        return list(self._adapters)

    def has_channel(self, channel: ChannelId | str) -> bool:
        return ChannelId(channel).value in self._adapters

    async def deliver(self, outbound: OutboundEnvelope) -> DeliveryResult:
        """Send an outbound envelope through its channel's adapter.

        Returns:
            DeliveryResult with success status and provider message ID
        """
        adapter = self._adapters.get(outbound.channel_id)
        if adapter is None:
            logger.error(
                "channel_adapter_not_found",
                channel=outbound.channel_id,
                source_id=outbound.source_id,
            )
            return DeliveryResult(success=False, error_message="Channel adapter not found")

        try:
            result = await adapter.send(outbound)
        except Exception as e:
            logger.error(
                "message_send_failed",
                channel=outbound.channel_id,
                source_id=outbound.source_id,
                correlation_id=outbound.correlation_id,
                error=str(e),
            )
            return DeliveryResult(success=False, error_message=str(e))

        logger.info(
            "message_sent",
            channel=outbound.channel_id,
            source_id=outbound.source_id,
            success=result.success,
            provider_message_id=result.provider_message_id,
        )
        return result
