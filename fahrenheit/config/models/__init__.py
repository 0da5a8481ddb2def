"""Configuration model exports.

    from fahrenheit.config.models import GatewayConfig, ObservationalMemoryConfig
"""

from fahrenheit.config.models.audit import AuditConfig
from fahrenheit.config.models.gateway import (
    GatewayConfig,
    GatewayMode,
    GroupConfig,
    GroupSource,
    SessionBusyPolicy,
    SourceScope,
)
from fahrenheit.config.models.memory import (
    MemoryCompressionOptions,
    MemoryPromotionPolicy,
    ObservationalMemoryConfig,
)
from fahrenheit.config.models.observability import LoggingConfig, ObservabilityConfig
from fahrenheit.config.models.scheduler import CronConfig, HeartbeatConfig

__all__ = [
    "AuditConfig",
    "CronConfig",
    "GatewayConfig",
    "GatewayMode",
    "GroupConfig",
    "GroupSource",
    "HeartbeatConfig",
    "LoggingConfig",
    "MemoryCompressionOptions",
    "MemoryPromotionPolicy",
    "ObservabilityConfig",
    "ObservationalMemoryConfig",
    "SessionBusyPolicy",
    "SourceScope",
]
