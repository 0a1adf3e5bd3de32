"""
Stream client configuration.

Defaults mirror the production client: five reconnection attempts with
1s → 5s exponential backoff and a two minute ping timeout, long enough for
slow multi-source searches.

Usage:
    from literature_stream.shared.config import StreamConfig

    config = StreamConfig.from_env()
    container.config.from_dict(config.to_dict())
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any

from literature_stream.shared.exceptions import ConfigurationError

DEFAULT_URL = "ws://localhost:4000/literature"


class TierFailurePolicy(Enum):
    """What to do when every source of one latency tier reports an error."""

    CONTINUE = "continue"  # proceed with zero papers from that tier
    ESCALATE = "escalate"  # synthesize a recoverable session error


@dataclass(frozen=True)
class StreamConfig:
    """Configuration for the stream transport and search client."""

    url: str = DEFAULT_URL

    # Reconnection
    reconnect_attempts: int = 5
    reconnect_delay: float = 1.0
    reconnect_delay_max: float = 5.0

    # WebSocket keepalive
    open_timeout: float = 10.0
    ping_interval: float | None = 20.0
    ping_timeout: float | None = 120.0

    # Source tier policy
    slow_source_grace_seconds: float = 5.0
    source_timeout_multiplier: float = 3.0
    tier_failure_policy: TierFailurePolicy = TierFailurePolicy.CONTINUE

    def __post_init__(self) -> None:
        if not self.url.startswith(("ws://", "wss://")):
            raise ConfigurationError(f"Stream URL must use ws:// or wss://, got {self.url!r}")
        if self.reconnect_attempts < 0:
            raise ConfigurationError(f"reconnect_attempts must be >= 0, got {self.reconnect_attempts}")
        if self.reconnect_delay <= 0 or self.reconnect_delay_max < self.reconnect_delay:
            raise ConfigurationError(
                f"Invalid reconnect delays: base={self.reconnect_delay}, max={self.reconnect_delay_max}"
            )
        if self.slow_source_grace_seconds < 0:
            raise ConfigurationError(f"slow_source_grace_seconds must be >= 0, got {self.slow_source_grace_seconds}")

    @classmethod
    def from_env(cls, **overrides: Any) -> StreamConfig:
        """
        Build configuration from LITSTREAM_* environment variables.

        Explicit keyword overrides win over the environment.
        """
        values: dict[str, Any] = {}
        env = os.environ

        if env.get("LITSTREAM_URL"):
            values["url"] = env["LITSTREAM_URL"].strip()
        if env.get("LITSTREAM_RECONNECT_ATTEMPTS"):
            values["reconnect_attempts"] = _env_number("LITSTREAM_RECONNECT_ATTEMPTS", int)
        if env.get("LITSTREAM_RECONNECT_DELAY"):
            values["reconnect_delay"] = _env_number("LITSTREAM_RECONNECT_DELAY", float)
        if env.get("LITSTREAM_RECONNECT_DELAY_MAX"):
            values["reconnect_delay_max"] = _env_number("LITSTREAM_RECONNECT_DELAY_MAX", float)
        if env.get("LITSTREAM_SLOW_SOURCE_GRACE"):
            values["slow_source_grace_seconds"] = _env_number("LITSTREAM_SLOW_SOURCE_GRACE", float)
        if env.get("LITSTREAM_TIER_FAILURE_POLICY"):
            raw = env["LITSTREAM_TIER_FAILURE_POLICY"].strip().lower()
            try:
                values["tier_failure_policy"] = TierFailurePolicy(raw)
            except ValueError:
                raise ConfigurationError(f"Unknown LITSTREAM_TIER_FAILURE_POLICY: {raw!r}") from None

        values.update(overrides)
        return cls(**values)

    def with_overrides(self, **changes: Any) -> StreamConfig:
        """Return a copy with selected fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Plain dict for dependency-injector Configuration providers."""
        result = asdict(self)
        result["tier_failure_policy"] = self.tier_failure_policy.value
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StreamConfig:
        """Inverse of to_dict (unknown keys are ignored)."""
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        policy = known.get("tier_failure_policy")
        if isinstance(policy, str):
            known["tier_failure_policy"] = TierFailurePolicy(policy)
        return cls(**known)


def _env_number(name: str, kind: type) -> Any:
    raw = os.environ[name].strip()
    try:
        return kind(raw)
    except ValueError:
        raise ConfigurationError(f"Environment variable {name} must be a {kind.__name__}, got {raw!r}") from None
