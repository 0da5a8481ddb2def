"""Gateway routing pipeline.

For each inbound envelope the router:

1. Resolves the group and session (unrouted messages are dropped).
2. Applies the group's sender allow list (blocked messages are dropped).
3. Records the message in the audit trail.
4. Observational groups: hands the message to the memory pipeline, no reply.
5. Conversational groups: prompts the agent through the concurrency
   controller and returns (and, with a channel registry, delivers) the reply.

Dropped and blocked messages are still written to the audit trail with a
placeholder body.
"""

from uuid import uuid4

from fahrenheit.audit.models import ChannelMessageLog, Direction
from fahrenheit.audit.sink import LogSink
from fahrenheit.channels.registry import ChannelRegistry
from fahrenheit.config.models.gateway import GatewayConfig, GatewayMode
from fahrenheit.gateway.auth import is_sender_allowed
from fahrenheit.gateway.models import InboundEnvelope, OutboundEnvelope
from fahrenheit.gateway.routing import resolve_route
from fahrenheit.memory.pipeline import ObservationalMemoryPipeline, ObservationPartition
from fahrenheit.observability.logging import get_logger
from fahrenheit.runtime.controller import SessionConcurrencyController

logger = get_logger(__name__)

DROPPED_UNMATCHED = "[dropped unmatched group]"
BLOCKED_UNAUTHORIZED = "[blocked unauthorized message]"
HISTORY_HEADER = "Recent conversation context (oldest to newest):"


def build_prompt_input(envelope: InboundEnvelope) -> str:
    """Prefix the message with any history lines the channel supplied."""
    raw_history = (envelope.raw or {}).get("history")
    if not isinstance(raw_history, list):
        return envelope.content
    history = [item for item in raw_history if isinstance(item, str)]
    if not history:
        return envelope.content
    return "\n".join(
        [
            HISTORY_HEADER,
            *(f"- {line}" for line in history),
            "",
            f"Latest user message: {envelope.content}",
        ]
    )


class GatewayRouter:
    """Dispatches inbound envelopes to the agent or the memory pipeline."""

    def __init__(
        self,
        config: GatewayConfig,
        controller: SessionConcurrencyController,
        log_sink: LogSink,
        pipeline: ObservationalMemoryPipeline | None = None,
        channels: ChannelRegistry | None = None,
    ) -> None:
        self._config = config
        self._controller = controller
        self._log_sink = log_sink
        self._pipeline = pipeline
        self._channels = channels

    async def handle_inbound(self, envelope: InboundEnvelope) -> OutboundEnvelope | None:
        """Route one inbound envelope.

        Returns:
            The reply envelope, or None when the message was dropped, blocked
            or only observed

        Raises:
            InvocationError: If the agent fails on this message
            ObservationValidationError: If an observational message has a
                blank partition
        """
        correlation_id = envelope.correlation_id or str(uuid4())
        log = logger.bind(
            channel=envelope.channel_id,
            source_id=envelope.source_id,
            correlation_id=correlation_id,
        )

        route = resolve_route(self._config, envelope)
        if route is None:
            log.info("route_unmatched")
            await self._log_inbound(envelope, correlation_id, DROPPED_UNMATCHED)
            return None

        if not is_sender_allowed(route.allow_from, envelope):
            log.warning("sender_blocked", group_id=route.group_id, sender_id=envelope.sender_id)
            await self._log_inbound(envelope, correlation_id, BLOCKED_UNAUTHORIZED)
            return None

        await self._log_inbound(envelope, correlation_id, envelope.content)
        log = log.bind(group_id=route.group_id, session_key=route.session_key)

        mode = envelope.mode or route.mode
        if mode == GatewayMode.OBSERVATIONAL.value:
            if self._pipeline is not None:
                await self._pipeline.record_inbound_observation(
                    envelope,
                    ObservationPartition(
                        group_id=route.group_id,
                        session_key=route.session_key,
                        correlation_id=correlation_id,
                    ),
                )
            log.info("message_observed")
            return None

        mock_reply = self._config.mock_reply.strip()
        if mock_reply:
            response = mock_reply
        else:
            response = await self._controller.handle(
                route.session_key,
                build_prompt_input(envelope),
                correlation_id=correlation_id,
                busy_policy=route.busy_policy,
            )

        outbound = OutboundEnvelope(
            channel_id=envelope.channel_id,
            source_id=envelope.source_id,
            thread_id=envelope.thread_id,
            correlation_id=correlation_id,
            content=response,
            raw=envelope.raw,
        )
        await self._log_sink.log_channel_message(
            ChannelMessageLog(
                direction=Direction.OUTBOUND,
                channel_id=outbound.channel_id,
                source_id=outbound.source_id,
                correlation_id=correlation_id,
                content=outbound.content,
            )
        )

        if self._channels is not None:
            result = await self._channels.deliver(outbound)
            if not result.success:
                log.warning("reply_not_delivered", error=result.error_message)

        log.info("message_handled", matched_by=route.matched_by)
        return outbound

    async def _log_inbound(
        self,
        envelope: InboundEnvelope,
        correlation_id: str,
        content: str,
    ) -> None:
        await self._log_sink.log_channel_message(
            ChannelMessageLog(
                direction=Direction.INBOUND,
                channel_id=envelope.channel_id,
                source_id=envelope.source_id,
                correlation_id=correlation_id,
                sender_id=envelope.sender_id,
                content=content,
            )
        )
