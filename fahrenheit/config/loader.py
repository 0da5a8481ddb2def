"""TOML configuration loader.

Configuration comes from ``config/default.toml`` plus an optional
``config/<FAHRENHEIT_ENV>.toml`` overlay. Before secret references are
resolved, ``.env.local`` and ``.env`` from the working directory are read so
``$NAME`` references can point at project-local values. Variables already
set in the process environment always win.
"""

import os
import tomllib
from collections.abc import MutableMapping
from pathlib import Path
from typing import Any

ENV_FILES = (".env.local", ".env")


def get_config_dir() -> Path:
    """Get the configuration directory path.

    The config directory can be overridden with FAHRENHEIT_CONFIG_DIR env var.
    Otherwise the first ``config/`` found in the working directory or one of
    its four nearest parents is used.
    """
    config_dir_env = os.environ.get("FAHRENHEIT_CONFIG_DIR")
    if config_dir_env:
        path = Path(config_dir_env)
        if not path.exists():
            raise FileNotFoundError(f"Config directory not found: {config_dir_env}")
        return path

    current = Path.cwd()
    for _ in range(5):
        config_path = current / "config"
        if config_path.exists():
            return config_path
        current = current.parent

    return Path("config")


def get_environment() -> str:
    """Overlay name from FAHRENHEIT_ENV, 'development' when unset."""
    return os.environ.get("FAHRENHEIT_ENV", "development")


def load_toml(file_path: Path) -> dict[str, Any]:
    """Load a TOML file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        tomllib.TOMLDecodeError: If the TOML syntax is invalid
    """
    if not file_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {file_path}")

    with file_path.open("rb") as f:
        return tomllib.load(f)


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge override into a copy of base.

    Nested dictionaries merge recursively; any other value in override
    replaces the base value. Key order of base is preserved, so routing
    groups keep their declaration order across environment overlays.
    """
    result = base.copy()

    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def parse_env_file(content: str) -> dict[str, str]:
    """Parse ``KEY=value`` lines.

    Blank lines and ``#`` comments are skipped, as is any trailing `` #``
    comment after a value. Lines without a key are ignored.
    """
    values: dict[str, str] = {}
    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        value = value.strip()
        if " #" in value:
            value = value[: value.index(" #")].rstrip()
        values[key] = value
    return values


def load_project_env(
    directory: Path | None = None,
    environ: MutableMapping[str, str] | None = None,
) -> list[str]:
    """Fill unset (or empty) environment variables from project env files.

    ``.env.local`` is read before ``.env``, so it takes precedence.

    Returns:
        Names of the variables that were set
    """
    directory = directory or Path.cwd()
    environ = os.environ if environ is None else environ
    loaded: list[str] = []
    for name in ENV_FILES:
        path = directory / name
        if not path.is_file():
            continue
        for key, value in parse_env_file(path.read_text(encoding="utf-8")).items():
            if not environ.get(key):
                environ[key] = value
                loaded.append(key)
    return loaded


def load_config() -> dict[str, Any]:
    """Load configuration from TOML files.

    Loading order:
    1. config/default.toml (required)
    2. config/{FAHRENHEIT_ENV}.toml (optional)
    """
    config_dir = get_config_dir()
    env = get_environment()

    default_path = config_dir / "default.toml"
    if not default_path.exists():
        raise FileNotFoundError(
            f"Default configuration file not found: {default_path}. "
            "Create config/default.toml or set FAHRENHEIT_CONFIG_DIR."
        )

    config = load_toml(default_path)

    env_path = config_dir / f"{env}.toml"
    if env_path.exists():
        config = deep_merge(config, load_toml(env_path))

    return config
