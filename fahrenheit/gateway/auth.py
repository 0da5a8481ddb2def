"""Sender authorization for routed groups."""

from fahrenheit.gateway.models import InboundEnvelope

WILDCARD = "*"


def is_sender_allowed(allow_from: list[str], envelope: InboundEnvelope) -> bool:
    """An empty allow list or a wildcard admits everyone."""
    if not allow_from or WILDCARD in allow_from:
        return True
    return envelope.sender_id in allow_from
