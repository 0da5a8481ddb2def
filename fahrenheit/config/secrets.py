"""Secret reference resolution at the configuration boundary.

Configuration values may reference secrets instead of embedding them:

- ``$NAME`` reads environment variable NAME
- ``!command args`` runs a command and uses its trimmed stdout

Resolution happens once, before settings validation. The core never sees
references, only resolved values.
"""

import os
import re
import shlex
import subprocess
from collections.abc import Mapping
from typing import Any, Protocol

from fahrenheit.observability.logging import get_logger

logger = get_logger(__name__)

ENV_REFERENCE = re.compile(r"^\$([A-Za-z_][A-Za-z0-9_]*)$")


class SecretResolver(Protocol):
    """Resolves one configuration string.

    Returns None when the value is not a secret reference.
    """

    def resolve(self, value: str) -> str | None: ...


class DefaultSecretResolver:
    """Resolver for ``$ENV`` and ``!command`` references."""

    def __init__(
        self,
        environ: Mapping[str, str] | None = None,
        command_timeout: float = 10.0,
    ) -> None:
        self._environ = environ if environ is not None else os.environ
        self._command_timeout = command_timeout

    def resolve(self, value: str) -> str | None:
        match = ENV_REFERENCE.match(value)
        if match:
            name = match.group(1)
            resolved = self._environ.get(name)
            if resolved is None:
                logger.warning("secret_env_missing", variable=name)
                return ""
            return resolved

        if value.startswith("!") and len(value) > 1:
            completed = subprocess.run(
                shlex.split(value[1:]),
                capture_output=True,
                text=True,
                timeout=self._command_timeout,
                check=True,
            )
            return completed.stdout.strip()

        return None


def resolve_secret_references(
    config: dict[str, Any],
    resolver: SecretResolver,
) -> tuple[dict[str, Any], list[str]]:
    """Resolve every secret reference in a configuration tree.

    Returns:
        The resolved configuration and the list of non-empty resolved
        secret values (for log and audit redaction).
    """
    secrets: list[str] = []

    def _walk(value: Any) -> Any:
        if isinstance(value, dict):
            return {key: _walk(item) for key, item in value.items()}
        if isinstance(value, list):
            return [_walk(item) for item in value]
        if isinstance(value, str):
            resolved = resolver.resolve(value)
            if resolved is None:
                return value
            if resolved:
                secrets.append(resolved)
            return resolved
        return value

    return _walk(config), secrets
