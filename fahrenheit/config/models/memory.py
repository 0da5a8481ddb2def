"""Observational memory configuration models."""

from pydantic import BaseModel, Field

from fahrenheit.memory.models import MemoryCompressionOptions, MemoryPromotionPolicy


class ObservationalMemoryConfig(BaseModel):
    """Promotion and compaction settings for the observation store."""

    promotion: MemoryPromotionPolicy = Field(
        default_factory=MemoryPromotionPolicy,
        description="Auto-promotion policy for curated memory",
    )
    compression: MemoryCompressionOptions = Field(
        default_factory=MemoryCompressionOptions,
        description="History compaction thresholds",
    )
