"""Root settings model for Fahrenheit configuration."""

from pathlib import Path
from typing import Any, Literal

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from fahrenheit.config.models.audit import AuditConfig
from fahrenheit.config.models.gateway import GatewayConfig
from fahrenheit.config.models.memory import ObservationalMemoryConfig
from fahrenheit.config.models.observability import ObservabilityConfig
from fahrenheit.config.models.scheduler import CronConfig, HeartbeatConfig

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# Module-level variable to store TOML config for settings source
_toml_config: dict[str, Any] = {}


def set_toml_config(config: dict[str, Any]) -> None:
    """Set the TOML configuration to be used by Settings."""
    global _toml_config
    _toml_config = config


class TomlConfigSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that reads from TOML configuration."""

    def get_field_value(
        self, field: Any, field_name: str  # noqa: ARG002
    ) -> tuple[Any, str, bool]:
        value = _toml_config.get(field_name)
        return value, field_name, value is not None

    def __call__(self) -> dict[str, Any]:
        return _toml_config.copy()


class Settings(BaseSettings):
    """Root configuration object containing all nested configuration sections.

    Configuration is loaded in this order:
    1. Pydantic model defaults (in code)
    2. config/default.toml (base configuration)
    3. config/{FAHRENHEIT_ENV}.toml (environment overrides)
    4. FAHRENHEIT_* environment variables (runtime overrides)
    """

    model_config = SettingsConfigDict(
        env_prefix="FAHRENHEIT_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="fahrenheit", description="Application name for logging")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: LogLevel = Field(default="INFO", description="Logging level")

    workspace_dir: str = Field(
        default="./workspace",
        description="Agent workspace holding HISTORY.jsonl, MEMORY.md and HEARTBEAT.md",
    )
    data_dir: str = Field(
        default="~/.fahrenheit",
        description="Runtime data directory (cron state, audit logs)",
    )

    gateway: GatewayConfig = Field(
        default_factory=GatewayConfig,
        description="Routing groups and gateway behavior",
    )
    memory: ObservationalMemoryConfig = Field(
        default_factory=ObservationalMemoryConfig,
        description="Observational memory configuration",
    )
    heartbeat: HeartbeatConfig = Field(
        default_factory=HeartbeatConfig,
        description="Heartbeat configuration",
    )
    cron: CronConfig = Field(
        default_factory=CronConfig,
        description="Cron registry configuration",
    )
    audit: AuditConfig = Field(
        default_factory=AuditConfig,
        description="Audit sink configuration",
    )
    observability: ObservabilityConfig = Field(
        default_factory=ObservabilityConfig,
        description="Observability configuration",
    )

    @property
    def workspace_path(self) -> Path:
        return Path(self.workspace_dir).expanduser().resolve()

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser().resolve()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        file_secret_settings: PydanticBaseSettingsSource,  # noqa: ARG003
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize settings sources to include TOML config.

        Priority order (highest to lowest):
        1. init_settings (constructor arguments)
        2. env_settings (FAHRENHEIT_* environment variables)
        3. toml_settings (config/*.toml files)
        4. (defaults from model)
        """
        return (
            init_settings,
            env_settings,
            TomlConfigSettingsSource(settings_cls),
        )
