"""
Tests for ExplorerConfig.
"""

import os

import pytest

from kaspa_explorer.config import ExplorerConfig
from kaspa_explorer.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("KASPA_EXPLORER_"):
            monkeypatch.delenv(name, raising=False)


def test_defaults():
    config = ExplorerConfig.from_env()

    assert config.kaspad_url == "127.0.0.1:18210"
    assert config.network == "testnet-12"
    assert config.port == 3000
    assert config.max_blocks == 20
    assert config.mempool_max_display == 50
    assert config.mempool_retry_attempts == 3
    assert config.mempool_retry_backoff == 0.25
    assert config.mempool_staleness_seconds == 15.0
    assert config.utxo_timeout == 20.0
    assert config.balance_cache_ttl == 0.0
    assert config.cors_origins == ("*",)
    assert config.api_key_file is None


def test_environment_values(monkeypatch):
    monkeypatch.setenv("KASPA_EXPLORER_KASPAD_URL", "10.0.0.5:17110")
    monkeypatch.setenv("KASPA_EXPLORER_PORT", "8080")
    monkeypatch.setenv("KASPA_EXPLORER_UTXO_TIMEOUT", "5.5")
    monkeypatch.setenv("KASPA_EXPLORER_CORS_ORIGINS", "https://a.example, https://b.example")
    monkeypatch.setenv("KASPA_EXPLORER_REQUIRE_API_KEY", "yes")
    monkeypatch.setenv("KASPA_EXPLORER_LOG_LEVEL", "debug")

    config = ExplorerConfig.from_env()

    assert config.kaspad_url == "10.0.0.5:17110"
    assert config.port == 8080
    assert config.utxo_timeout == 5.5
    assert config.cors_origins == ("https://a.example", "https://b.example")
    assert config.require_api_key is True
    assert config.log_level == "DEBUG"


def test_non_numeric_environment_value(monkeypatch):
    monkeypatch.setenv("KASPA_EXPLORER_PORT", "eighty")

    with pytest.raises(ConfigurationError, match="KASPA_EXPLORER_PORT"):
        ExplorerConfig.from_env()


def test_overrides_skip_none_values():
    config = ExplorerConfig().with_overrides(port=4000, kaspad_url=None)

    assert config.port == 4000
    assert config.kaspad_url == "127.0.0.1:18210"


def test_unknown_override_is_rejected():
    with pytest.raises(ConfigurationError):
        ExplorerConfig().with_overrides(colour="blue")


@pytest.mark.parametrize(
    "overrides",
    [
        {"kaspad_url": ""},
        {"port": 0},
        {"port": 70000},
        {"rpc_timeout": 0},
        {"utxo_timeout": -1},
        {"mempool_retry_attempts": 0},
        {"mempool_retry_backoff": -0.1},
        {"mempool_staleness_seconds": -1},
        {"max_blocks": -1},
        {"balance_cache_ttl": -5},
        {"balance_cache_max_entries": 0},
        {"log_format": "xml"},
    ],
)
def test_invalid_values_are_rejected(overrides):
    with pytest.raises(ConfigurationError):
        ExplorerConfig(**overrides)
