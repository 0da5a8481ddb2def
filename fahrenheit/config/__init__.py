"""Configuration loading for Fahrenheit.

Settings are assembled in three steps:

1. TOML files (``config/default.toml`` plus the FAHRENHEIT_ENV overlay)
2. Secret references (``$ENV`` / ``!command``) resolved in place, with
   ``.env.local`` and ``.env`` filling in unset variables first
3. Validation into Settings, where FAHRENHEIT_* variables override TOML

Usage:
    from fahrenheit.config import get_settings

    settings = get_settings()
    groups = settings.gateway.groups
"""

from functools import lru_cache

from fahrenheit.config.loader import load_config, load_project_env
from fahrenheit.config.secrets import DefaultSecretResolver, resolve_secret_references
from fahrenheit.config.settings import Settings, set_toml_config

_secret_values: list[str] = []


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, built once.

    Call `get_settings.cache_clear()` or `reload_settings()` to rebuild.
    """
    global _secret_values
    load_project_env()
    config_dict, secrets = resolve_secret_references(load_config(), DefaultSecretResolver())
    _secret_values = secrets
    set_toml_config(config_dict)
    return Settings()


def get_secret_values() -> list[str]:
    """Secret values resolved while loading the current settings."""
    return list(_secret_values)


def reload_settings() -> Settings:
    get_settings.cache_clear()
    return get_settings()


__all__ = ["get_secret_values", "get_settings", "reload_settings", "Settings"]
