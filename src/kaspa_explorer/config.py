"""
Kaspa Explorer Configuration

Every setting has an environment variable (KASPA_EXPLORER_*) providing its
default; CLI flags override individual values via ``dataclasses.replace``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from typing import Any

from kaspa_explorer.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "KASPA_EXPLORER_"

DEFAULT_KASPAD_URL = "127.0.0.1:18210"
DEFAULT_NETWORK = "testnet-12"


def _env(name: str, default: str) -> str:
    return os.getenv(f"{ENV_PREFIX}{name}", default).strip()


def _env_int(name: str, default: int) -> int:
    raw = _env(name, str(default))
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(
            f"{ENV_PREFIX}{name} must be an integer, got {raw!r}",
            details={"env_var": f"{ENV_PREFIX}{name}"},
        ) from exc


def _env_float(name: str, default: float) -> float:
    raw = _env(name, str(default))
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(
            f"{ENV_PREFIX}{name} must be a number, got {raw!r}",
            details={"env_var": f"{ENV_PREFIX}{name}"},
        ) from exc


def _env_bool(name: str, default: bool) -> bool:
    return _env(name, "true" if default else "false").lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in _env(name, default).split(",") if item.strip())


@dataclass(frozen=True)
class ExplorerConfig:
    """Runtime settings for the explorer service."""

    kaspad_url: str = DEFAULT_KASPAD_URL
    network: str = DEFAULT_NETWORK
    host: str = "0.0.0.0"
    port: int = 3000

    # Node access
    rpc_timeout: float = 10.0
    reconnect_interval: float = 0.0

    # Tip chain
    max_blocks: int = 20

    # Mempool
    mempool_max_display: int = 50
    mempool_retry_attempts: int = 3
    mempool_retry_backoff: float = 0.25
    mempool_staleness_seconds: float = 15.0

    # Balances
    utxo_timeout: float = 20.0
    utxo_display_limit: int = 100
    balance_cache_ttl: float = 0.0
    balance_cache_max_entries: int = 1000

    # HTTP boundary
    cors_origins: tuple[str, ...] = field(default_factory=lambda: ("*",))
    static_dir: str = "static"
    require_api_key: bool = False
    api_key_file: str | None = None

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"
    log_file: str | None = None

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Reject values the services cannot operate with."""
        if not self.kaspad_url:
            raise ConfigurationError("kaspad_url must not be empty")
        if not 0 < self.port < 65536:
            raise ConfigurationError(f"port out of range: {self.port}")
        if self.rpc_timeout <= 0 or self.utxo_timeout <= 0:
            raise ConfigurationError("timeouts must be positive")
        if self.mempool_retry_attempts < 1:
            raise ConfigurationError("mempool_retry_attempts must be at least 1")
        if self.mempool_retry_backoff < 0 or self.mempool_staleness_seconds < 0:
            raise ConfigurationError("mempool backoff and staleness must not be negative")
        if self.max_blocks < 0 or self.mempool_max_display < 0 or self.utxo_display_limit < 0:
            raise ConfigurationError("display limits must not be negative")
        if self.balance_cache_ttl < 0 or self.reconnect_interval < 0:
            raise ConfigurationError("balance_cache_ttl and reconnect_interval must not be negative")
        if self.balance_cache_max_entries < 1:
            raise ConfigurationError("balance_cache_max_entries must be at least 1")
        if self.log_format not in {"json", "text"}:
            raise ConfigurationError(f"log_format must be 'json' or 'text', got {self.log_format!r}")

    @classmethod
    def from_env(cls) -> "ExplorerConfig":
        """Build configuration from KASPA_EXPLORER_* environment variables."""
        api_key_file = _env("API_KEY_FILE", "") or None
        log_file = _env("LOG_FILE", "") or None
        return cls(
            kaspad_url=_env("KASPAD_URL", DEFAULT_KASPAD_URL),
            network=_env("NETWORK", DEFAULT_NETWORK),
            host=_env("HOST", "0.0.0.0"),
            port=_env_int("PORT", 3000),
            rpc_timeout=_env_float("RPC_TIMEOUT", 10.0),
            reconnect_interval=_env_float("RECONNECT_INTERVAL", 0.0),
            max_blocks=_env_int("MAX_BLOCKS", 20),
            mempool_max_display=_env_int("MEMPOOL_MAX_DISPLAY", 50),
            mempool_retry_attempts=_env_int("MEMPOOL_RETRY_ATTEMPTS", 3),
            mempool_retry_backoff=_env_float("MEMPOOL_RETRY_BACKOFF", 0.25),
            mempool_staleness_seconds=_env_float("MEMPOOL_STALENESS_SECONDS", 15.0),
            utxo_timeout=_env_float("UTXO_TIMEOUT", 20.0),
            utxo_display_limit=_env_int("UTXO_DISPLAY_LIMIT", 100),
            balance_cache_ttl=_env_float("BALANCE_CACHE_TTL", 0.0),
            balance_cache_max_entries=_env_int("BALANCE_CACHE_MAX_ENTRIES", 1000),
            cors_origins=_env_list("CORS_ORIGINS", "*"),
            static_dir=_env("STATIC_DIR", "static"),
            require_api_key=_env_bool("REQUIRE_API_KEY", False),
            api_key_file=api_key_file,
            log_level=_env("LOG_LEVEL", "INFO").upper(),
            log_format=_env("LOG_FORMAT", "json").lower(),
            log_file=log_file,
        )

    def with_overrides(self, **overrides: Any) -> "ExplorerConfig":
        """Return a copy with every non-None override applied."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown)}")
        changes = {key: value for key, value in overrides.items() if value is not None}
        if changes:
            logger.debug(
                "Applying configuration overrides: %s",
                sorted(changes),
                extra={"event": "config.overrides_applied"},
            )
        return replace(self, **changes)
