"""
Search Stream Client - coordinates searches over one stream transport.

Architecture:
    start_search()                         transport frames
         │                                       │
         ▼                                       ▼
    ┌────────────────────┐    search_id    ┌─────────────────┐
    │ SearchStreamClient │ ◄────────────── │ StreamTransport │
    └─────────┬──────────┘                 └─────────────────┘
              │ one per search_id
              ▼
    ┌────────────────────┐
    │  ResultReconciler  │  ← dedup, monotonic state, tiers, selection
    └─────────┬──────────┘
              ▼
    SearchSnapshot → listeners

Each search keeps its own reconciler; events are routed by ``search_id`` and
events for searches the client does not know are dropped. The client also
owns the glue that spans the transport and the sessions:

    - resubscribing running searches after a reconnect
    - failing running searches (recoverably) when reconnection gives up
    - scheduling the slow-source skip check once the fast tier is done

Usage:
    async with SearchStreamClient(StreamTransport(config)) as client:
        search_id = client.start_search("q methodology", SearchOptions(limit=300))
        snapshot = await client.wait_until_finished(search_id, timeout=120)
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Callable, Iterable

from literature_stream.application.search.reconciler import ResultReconciler
from literature_stream.application.search.source_tiers import SourceTierRegistry
from literature_stream.domain.entities.commands import (
    CancelSearchCommand,
    EnrichmentPrefetchCommand,
    EnrichmentPriority,
    EnrichmentRequestCommand,
    SearchOptions,
    StartSearchCommand,
    SubscribeCommand,
)
from literature_stream.domain.entities.events import SearchErrorEvent, SearchEvent
from literature_stream.domain.entities.session import ConnectionStatus, SearchSnapshot
from literature_stream.infrastructure.stream.transport import StreamTransport
from literature_stream.shared.config import StreamConfig
from literature_stream.shared.exceptions import (
    ConnectionLostError,
    ErrorContext,
    InvalidQueryError,
    ReconnectExhaustedError,
)

logger = logging.getLogger(__name__)

CONNECTION_LOST_CODE = "CONNECTION_LOST"

SnapshotListener = Callable[[str, SearchSnapshot], None]


class SearchStreamClient:
    """
    Multi-session search coordinator.

    Args:
        transport: Stream transport (not yet opened)
        config: Client configuration; defaults to the transport's defaults
        registry: Source tier registry shared by all sessions
        clock: Monotonic clock for session timing
        id_factory: Search id generator
    """

    def __init__(
        self,
        transport: StreamTransport,
        *,
        config: StreamConfig | None = None,
        registry: SourceTierRegistry | None = None,
        clock: Callable[[], float] = time.monotonic,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self._config = config or StreamConfig()
        self._transport = transport
        self._registry = registry or SourceTierRegistry(
            slow_source_grace_seconds=self._config.slow_source_grace_seconds,
            timeout_multiplier=self._config.source_timeout_multiplier,
        )
        self._clock = clock
        self._id_factory = id_factory

        self._sessions: dict[str, ResultReconciler] = {}
        self._finished: dict[str, asyncio.Event] = {}
        self._skip_timers: dict[str, asyncio.TimerHandle] = {}
        self._skip_checked: set[str] = set()
        self._listeners: list[SnapshotListener] = []
        self._active_id: str | None = None

        transport.on_event(self.handle_event)
        transport.on_reconnect(self._resubscribe)
        transport.on_exhausted(self._fail_open_sessions)

    async def __aenter__(self) -> SearchStreamClient:
        await self.connect()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    # ===================================================================
    # Connection
    # ===================================================================

    @property
    def connection_status(self) -> ConnectionStatus:
        return self._transport.status

    @property
    def active_search_id(self) -> str | None:
        return self._active_id

    @property
    def search_ids(self) -> list[str]:
        return list(self._sessions)

    async def connect(self, timeout: float | None = None) -> None:
        """
        Open the transport and wait for the first connection.

        Raises:
            ConnectionLostError: Not connected within the timeout, or
                reconnection was exhausted
        """
        self._transport.open()
        wait = timeout if timeout is not None else self._config.open_timeout
        if not await self._transport.wait_connected(wait):
            raise ConnectionLostError(
                f"Could not connect to {self._config.url}",
                context=ErrorContext(operation="connect", input_value=self._config.url, retry_after=wait),
            )

    async def close(self) -> None:
        for handle in self._skip_timers.values():
            handle.cancel()
        self._skip_timers.clear()
        await self._transport.close()

    # ===================================================================
    # Commands
    # ===================================================================

    def start_search(self, query: str, options: SearchOptions | None = None) -> str:
        """
        Start a new progressive search.

        Returns:
            The client-generated search id

        Raises:
            InvalidQueryError: If the query is blank
        """
        if not query or not query.strip():
            raise InvalidQueryError(query)
        options = options or SearchOptions()
        search_id = self._id_factory()

        self._sessions[search_id] = ResultReconciler(
            search_id,
            registry=self._registry,
            sources=options.sources,
            tier_failure_policy=self._config.tier_failure_policy,
            clock=self._clock,
        )
        self._finished[search_id] = asyncio.Event()
        self._active_id = search_id

        self._transport.send(StartSearchCommand(search_id, query.strip(), options))
        logger.info(f"[{search_id}] Starting search: '{query.strip()}'")
        self._publish(search_id)
        return search_id

    def cancel_search(self, search_id: str | None = None) -> bool:
        """Cancel locally first, then tell the server."""
        search_id = search_id or self._active_id
        reconciler = self._sessions.get(search_id) if search_id else None
        if reconciler is None or not reconciler.cancel():
            return False
        self._transport.send(CancelSearchCommand(search_id))
        self._after_change(search_id, reconciler)
        return True

    def request_enrichment(
        self,
        paper_ids: Iterable[str],
        priority: EnrichmentPriority = EnrichmentPriority.NORMAL,
        *,
        search_id: str | None = None,
    ) -> list[str]:
        """
        Ask for enrichment of papers entering view.

        Returns:
            The ids actually requested (already-enriched ones are skipped)
        """
        search_id = search_id or self._active_id
        reconciler = self._sessions.get(search_id) if search_id else None
        if reconciler is None or reconciler.is_terminal:
            return []
        needed = reconciler.request_enrichment(paper_ids)
        if needed:
            self._transport.send(EnrichmentRequestCommand(search_id, tuple(needed), priority))
            self._publish(search_id)
        return needed

    def prefetch_enrichment(self, paper_ids: Iterable[str], *, search_id: str | None = None) -> None:
        """Hint papers that are about to be viewed."""
        search_id = search_id or self._active_id
        reconciler = self._sessions.get(search_id) if search_id else None
        ids = tuple(dict.fromkeys(paper_ids))
        if reconciler is None or reconciler.is_terminal or not ids:
            return
        self._transport.send(EnrichmentPrefetchCommand(search_id, ids))

    # ===================================================================
    # Observation
    # ===================================================================

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """
        Register a snapshot listener.

        Returns:
            A callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def snapshot(self, search_id: str | None = None) -> SearchSnapshot | None:
        search_id = search_id or self._active_id
        reconciler = self._sessions.get(search_id) if search_id else None
        return reconciler.snapshot() if reconciler else None

    async def wait_until_finished(
        self,
        search_id: str | None = None,
        timeout: float | None = None,
    ) -> SearchSnapshot:
        """
        Wait for a search to reach a terminal status.

        Raises:
            KeyError: Unknown search id
            TimeoutError: Not finished within ``timeout`` seconds
        """
        search_id = search_id or self._active_id
        if search_id is None or search_id not in self._sessions:
            raise KeyError(f"Unknown search: {search_id}")
        await asyncio.wait_for(self._finished[search_id].wait(), timeout)
        return self._sessions[search_id].snapshot()

    def forget(self, search_id: str) -> bool:
        """Drop a session; later events for it are treated as stale."""
        if self._sessions.pop(search_id, None) is None:
            return False
        self._finished.pop(search_id, None)
        self._skip_checked.discard(search_id)
        handle = self._skip_timers.pop(search_id, None)
        if handle is not None:
            handle.cancel()
        if self._active_id == search_id:
            self._active_id = None
        return True

    # ===================================================================
    # Event routing
    # ===================================================================

    def handle_event(self, event: SearchEvent) -> None:
        reconciler = self._sessions.get(event.search_id)
        if reconciler is None:
            logger.debug(f"Dropping {event.name} for unknown search {event.search_id}")
            return
        if reconciler.apply(event):
            self._after_change(event.search_id, reconciler)

    def _after_change(self, search_id: str, reconciler: ResultReconciler) -> None:
        if reconciler.is_terminal:
            self._finished[search_id].set()
            handle = self._skip_timers.pop(search_id, None)
            if handle is not None:
                handle.cancel()
        else:
            self._schedule_skip_check(search_id, reconciler)
        self._publish(search_id)

    def _publish(self, search_id: str) -> None:
        snapshot = self._sessions[search_id].snapshot()
        for listener in list(self._listeners):
            try:
                listener(search_id, snapshot)
            except Exception:
                logger.exception(f"[{search_id}] Snapshot listener failed")

    # ===================================================================
    # Slow-source skip heuristic
    # ===================================================================

    def _schedule_skip_check(self, search_id: str, reconciler: ResultReconciler) -> None:
        if search_id in self._skip_timers or search_id in self._skip_checked:
            return
        elapsed = reconciler.seconds_since_fast_tier()
        if elapsed is None:
            return
        delay = max(self._registry.slow_source_grace_seconds - elapsed, 0.0)
        loop = asyncio.get_running_loop()
        self._skip_timers[search_id] = loop.call_later(delay, self._run_skip_check, search_id)

    def _run_skip_check(self, search_id: str) -> None:
        self._skip_timers.pop(search_id, None)
        reconciler = self._sessions.get(search_id)
        if reconciler is None or reconciler.is_terminal:
            return
        elapsed = reconciler.seconds_since_fast_tier() or 0.0
        if elapsed < self._registry.slow_source_grace_seconds:
            # Timer fired a little early
            self._schedule_skip_check(search_id, reconciler)
            return
        self._skip_checked.add(search_id)
        stale = reconciler.stale_slow_sources()
        if stale and reconciler.mark_skipped_locally(stale):
            logger.info(f"[{search_id}] Slow sources not started after grace period: {', '.join(stale)}")
            self._publish(search_id)

    # ===================================================================
    # Transport callbacks
    # ===================================================================

    def _open_search_ids(self) -> list[str]:
        return [sid for sid, reconciler in self._sessions.items() if not reconciler.is_terminal]

    def _resubscribe(self) -> None:
        search_ids = self._open_search_ids()
        if search_ids:
            logger.info(f"Resubscribing {len(search_ids)} running searches after reconnect")
            self._transport.send(SubscribeCommand(tuple(search_ids)))

    def _fail_open_sessions(self, error: ReconnectExhaustedError) -> None:
        for search_id in self._open_search_ids():
            self.handle_event(
                SearchErrorEvent(
                    search_id=search_id,
                    timestamp=time.time() * 1000,
                    error=str(error),
                    recoverable=True,
                    code=CONNECTION_LOST_CODE,
                )
            )
