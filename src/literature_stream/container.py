"""
Application DI Container (dependency-injector).

Centralizes creation of the stream transport, the tier registry and the
search client so that the CLI and embedding applications share one wiring.

Usage::

    from literature_stream.container import create_container

    container = create_container(StreamConfig.from_env())
    client = container.search_client()

    # In tests, override any provider:
    container.transport.override(providers.Object(fake_transport))
"""

from __future__ import annotations

import logging
from typing import Any

from dependency_injector import containers, providers

from literature_stream.shared.config import StreamConfig

logger = logging.getLogger(__name__)


def _create_stream_config(values: dict[str, Any]) -> StreamConfig:
    return StreamConfig.from_dict(values)


def _create_tier_registry(grace_seconds: float, timeout_multiplier: float) -> object:
    """Lazy factory for SourceTierRegistry (avoids top-level import)."""
    from literature_stream.application.search.source_tiers import SourceTierRegistry

    return SourceTierRegistry(
        slow_source_grace_seconds=grace_seconds,
        timeout_multiplier=timeout_multiplier,
    )


def _create_transport(stream_config: StreamConfig) -> object:
    """Lazy factory for StreamTransport."""
    from literature_stream.infrastructure.stream.transport import StreamTransport

    return StreamTransport(stream_config)


def _create_search_client(transport: Any, stream_config: StreamConfig, registry: Any) -> object:
    """Lazy factory for SearchStreamClient."""
    from literature_stream.application.search.client import SearchStreamClient

    return SearchStreamClient(transport, config=stream_config, registry=registry)


class ApplicationContainer(containers.DeclarativeContainer):
    """Central DI container for the literature stream client.

    Manages creation and lifecycle of:
    - ``stream_config``: validated StreamConfig built from ``config``
    - ``tier_registry``: source tier lookup and slow-source policy
    - ``transport``: the WebSocket stream transport
    - ``search_client``: multi-session search coordinator
    """

    config = providers.Configuration()

    stream_config = providers.Singleton(_create_stream_config, values=config)

    tier_registry = providers.Singleton(
        _create_tier_registry,
        grace_seconds=config.slow_source_grace_seconds,
        timeout_multiplier=config.source_timeout_multiplier,
    )

    transport = providers.Singleton(_create_transport, stream_config=stream_config)

    search_client = providers.Singleton(
        _create_search_client,
        transport=transport,
        stream_config=stream_config,
        registry=tier_registry,
    )


def create_container(config: StreamConfig | None = None) -> ApplicationContainer:
    """Build a container populated from a StreamConfig (defaults if omitted)."""
    config = config or StreamConfig()
    container = ApplicationContainer()
    container.config.from_dict(config.to_dict())
    logger.debug(f"Container configured for {config.url}")
    return container


__all__ = ["ApplicationContainer", "create_container"]
