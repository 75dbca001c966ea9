"""
Optional API key check for the ``/api`` routes.

Keys are read once when the app is built: ``KASPA_EXPLORER_API_KEY`` plus
one key per line from the configured key file (``#`` starts a comment).
``/health`` and ``/metrics`` are never guarded so health checks and
scrapers work without credentials.
"""

from __future__ import annotations

import hmac
import logging
import os
from pathlib import Path
from typing import Any, Iterable

from fastapi import Depends, Header, Query

from kaspa_explorer.config import ENV_PREFIX, ExplorerConfig
from kaspa_explorer.exceptions import AuthenticationError, ConfigurationError

logger = logging.getLogger(__name__)

API_KEY_ENV = f"{ENV_PREFIX}API_KEY"


def read_key_file(path: str) -> list[str]:
    """
    Load keys from ``path``.

    Raises:
        ConfigurationError: the file is configured but cannot be read
    """
    try:
        lines = Path(path).expanduser().read_text(encoding="utf-8").splitlines()
    except OSError as exc:
        raise ConfigurationError(
            f"Cannot read API key file {path}: {exc}",
            details={"api_key_file": path},
        ) from exc
    return [line.strip() for line in lines if line.strip() and not line.strip().startswith("#")]


class ApiKeyGuard:
    """FastAPI dependency accepting a key from ``X-API-Key`` or ``?api_key=``."""

    def __init__(self, keys: Iterable[str], enabled: bool) -> None:
        self.enabled = enabled
        self._keys = frozenset(key.strip() for key in keys if key and key.strip())
        if enabled and not self._keys:
            logger.warning(
                "API key required but none configured; every /api request will be rejected",
                extra={"event": "security.no_keys"},
            )

    @classmethod
    def from_config(cls, config: ExplorerConfig) -> "ApiKeyGuard":
        if not config.require_api_key:
            return cls((), enabled=False)
        keys: list[str] = []
        env_key = os.getenv(API_KEY_ENV)
        if env_key:
            keys.append(env_key)
        if config.api_key_file:
            keys.extend(read_key_file(config.api_key_file))
        logger.info(
            "API key check enabled with %d key(s)",
            len(set(keys)),
            extra={"event": "security.enabled"},
        )
        return cls(keys, enabled=True)

    def accepts(self, presented: str | None) -> bool:
        if not self.enabled:
            return True
        if not presented:
            return False
        candidate = presented.strip().encode("utf-8")
        # Compare against every key so timing does not reveal which one matched
        matched = False
        for key in self._keys:
            matched |= hmac.compare_digest(candidate, key.encode("utf-8"))
        return matched

    async def __call__(
        self,
        header_key: str | None = Header(default=None, alias="X-API-Key"),
        query_key: str | None = Query(default=None, alias="api_key"),
    ) -> None:
        if not self.accepts(header_key or query_key):
            raise AuthenticationError("Invalid or missing API key")

    def dependencies(self) -> list[Any]:
        """Router dependency list; empty when the check is off."""
        return [Depends(self)] if self.enabled else []
