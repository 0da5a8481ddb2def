"""Fahrenheit: multi-channel agent gateway with observational memory.

Routes inbound conversation messages to stable sessions, serializes agent
work per session, and keeps a trust-gated, size-bounded memory of observed
workflow events.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
