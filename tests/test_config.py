"""Tests for StreamConfig."""

from __future__ import annotations

import pytest

from literature_stream.shared.config import DEFAULT_URL, StreamConfig, TierFailurePolicy
from literature_stream.shared.exceptions import ConfigurationError

ENV_VARS = (
    "LITSTREAM_URL",
    "LITSTREAM_RECONNECT_ATTEMPTS",
    "LITSTREAM_RECONNECT_DELAY",
    "LITSTREAM_RECONNECT_DELAY_MAX",
    "LITSTREAM_SLOW_SOURCE_GRACE",
    "LITSTREAM_TIER_FAILURE_POLICY",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    def test_production_defaults(self):
        config = StreamConfig()
        assert config.url == DEFAULT_URL
        assert config.reconnect_attempts == 5
        assert (config.reconnect_delay, config.reconnect_delay_max) == (1.0, 5.0)
        assert config.ping_timeout == 120.0
        assert config.slow_source_grace_seconds == 5.0
        assert config.tier_failure_policy is TierFailurePolicy.CONTINUE


class TestValidation:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"url": "http://localhost:4000"},
            {"reconnect_attempts": -1},
            {"reconnect_delay": 0},
            {"reconnect_delay": 2.0, "reconnect_delay_max": 1.0},
            {"slow_source_grace_seconds": -1},
        ],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ConfigurationError):
            StreamConfig(**kwargs)

    def test_wss_accepted(self):
        assert StreamConfig(url="wss://example.org/ws").url == "wss://example.org/ws"


class TestFromEnv:
    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("LITSTREAM_URL", "wss://search.example.org/literature")
        monkeypatch.setenv("LITSTREAM_RECONNECT_ATTEMPTS", "2")
        monkeypatch.setenv("LITSTREAM_SLOW_SOURCE_GRACE", "7.5")
        monkeypatch.setenv("LITSTREAM_TIER_FAILURE_POLICY", "Escalate")

        config = StreamConfig.from_env()
        assert config.url == "wss://search.example.org/literature"
        assert config.reconnect_attempts == 2
        assert config.slow_source_grace_seconds == 7.5
        assert config.tier_failure_policy is TierFailurePolicy.ESCALATE

    def test_overrides_win(self, monkeypatch):
        monkeypatch.setenv("LITSTREAM_URL", "ws://env-host/literature")
        assert StreamConfig.from_env(url="ws://cli-host/literature").url == "ws://cli-host/literature"

    def test_bad_number(self, monkeypatch):
        monkeypatch.setenv("LITSTREAM_RECONNECT_ATTEMPTS", "many")
        with pytest.raises(ConfigurationError, match="LITSTREAM_RECONNECT_ATTEMPTS"):
            StreamConfig.from_env()

    def test_bad_policy(self, monkeypatch):
        monkeypatch.setenv("LITSTREAM_TIER_FAILURE_POLICY", "panic")
        with pytest.raises(ConfigurationError):
            StreamConfig.from_env()


class TestSerialization:
    def test_dict_round_trip(self):
        config = StreamConfig(reconnect_attempts=1, tier_failure_policy=TierFailurePolicy.ESCALATE)
        data = config.to_dict()
        assert data["tier_failure_policy"] == "escalate"
        assert StreamConfig.from_dict(data) == config

    def test_from_dict_ignores_unknown_keys(self):
        assert StreamConfig.from_dict({"reconnect_attempts": 3, "theme": "dark"}).reconnect_attempts == 3

    def test_with_overrides_validates(self):
        with pytest.raises(ConfigurationError):
            StreamConfig().with_overrides(reconnect_attempts=-2)
