"""
Stream Transport - one persistent WebSocket carrying every search.

Responsibilities:
    - Keep a single connection open, multiplexing many search ids
    - Decode inbound frames into typed events (malformed frames are dropped)
    - Queue outbound commands and flush them whenever connected
    - Reconnect with bounded exponential backoff, then give up loudly

Architecture Decision:
    The transport knows nothing about sessions. It hands parsed events to
    registered handlers and tells the client when it has reconnected (so the
    client can resubscribe) or when it has given up (so the client can fail
    its open searches). Ordering across reconnects is not guaranteed; the
    reconciler is responsible for ordering safety.

    ``send()`` is synchronous and never raises: commands are queued and the
    writer delivers them in order. A frame that fails to send stays at the
    head of the queue and goes out again after the next reconnect.

Usage:
    transport = StreamTransport(StreamConfig.from_env())
    transport.on_event(client.handle_event)
    transport.open()
    await transport.wait_connected(timeout=10)
    transport.send(StartSearchCommand(search_id, "q methodology"))
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from literature_stream.domain.entities.commands import ClientCommand, encode_command
from literature_stream.domain.entities.events import SearchEvent, parse_event
from literature_stream.domain.entities.session import ConnectionStatus
from literature_stream.shared.config import StreamConfig
from literature_stream.shared.exceptions import (
    MalformedEventError,
    ReconnectExhaustedError,
    get_retry_delay,
)

logger = logging.getLogger(__name__)

EventHandler = Callable[[SearchEvent], None]
StatusListener = Callable[[ConnectionStatus], None]
ExhaustedHandler = Callable[[ReconnectExhaustedError], None]
ConnectFunc = Callable[..., Awaitable[Any]]

_CONNECT_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)


class StreamTransport:
    """
    WebSocket transport with reconnection.

    Args:
        config: Stream configuration (URL, backoff, keepalive)
        connect: Coroutine function opening a connection; defaults to
            ``websockets.connect``. The returned object must support
            ``async for frame in conn``, ``await conn.send(text)`` and
            ``await conn.close()``.
        sleep: Backoff sleep, injectable for tests
    """

    def __init__(
        self,
        config: StreamConfig | None = None,
        *,
        connect: ConnectFunc | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config or StreamConfig()
        self._connect = connect or websockets.connect
        self._sleep = sleep

        self._status = ConnectionStatus.DISCONNECTED
        self._outbox: deque[str] = deque()
        self._outbox_ready = asyncio.Event()
        self._connected = asyncio.Event()
        self._exhausted = asyncio.Event()
        self._connection: Any = None
        self._task: asyncio.Task[None] | None = None
        self._closing = False
        self._has_connected = False

        self._event_handlers: list[EventHandler] = []
        self._reconnect_handlers: list[Callable[[], None]] = []
        self._exhausted_handlers: list[ExhaustedHandler] = []
        self._status_listeners: list[StatusListener] = []

    # ===================================================================
    # Registration
    # ===================================================================

    def on_event(self, handler: EventHandler) -> None:
        self._event_handlers.append(handler)

    def on_reconnect(self, handler: Callable[[], None]) -> None:
        self._reconnect_handlers.append(handler)

    def on_exhausted(self, handler: ExhaustedHandler) -> None:
        self._exhausted_handlers.append(handler)

    def on_status(self, listener: StatusListener) -> None:
        self._status_listeners.append(listener)

    # ===================================================================
    # Public API
    # ===================================================================

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._status is ConnectionStatus.CONNECTED

    @property
    def pending_frames(self) -> int:
        return len(self._outbox)

    def open(self) -> None:
        """Start the background connection task (idempotent)."""
        if self._task is not None and not self._task.done():
            return
        self._closing = False
        self._exhausted.clear()
        self._task = asyncio.create_task(self._run(), name="literature-stream-transport")

    async def wait_connected(self, timeout: float | None = None) -> bool:
        """
        Wait until connected or until reconnection is exhausted.

        Returns:
            True if connected, False on exhaustion or timeout
        """
        waiters = [
            asyncio.create_task(self._connected.wait()),
            asyncio.create_task(self._exhausted.wait()),
        ]
        try:
            await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
        return self.is_connected

    def send(self, command: ClientCommand) -> None:
        """Queue a command; delivered in order while connected."""
        self._outbox.append(encode_command(command))
        self._outbox_ready.set()
        if not self.is_connected:
            logger.debug(f"Queued {command.name} while {self._status.value} ({len(self._outbox)} pending)")

    async def close(self) -> None:
        """Intentional shutdown: no reconnection."""
        self._closing = True
        connection, self._connection = self._connection, None
        if connection is not None:
            try:
                await connection.close()
            except _CONNECT_ERRORS as e:
                logger.debug(f"Error while closing stream connection: {e}")
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._outbox.clear()
        self._connected.clear()
        self._set_status(ConnectionStatus.DISCONNECTED)
        logger.info("Stream transport closed")

    # ===================================================================
    # Connection loop
    # ===================================================================

    async def _run(self) -> None:
        attempt = 0
        while not self._closing:
            self._set_status(ConnectionStatus.RECONNECTING if attempt else ConnectionStatus.CONNECTING)
            try:
                connection = await self._connect(
                    self._config.url,
                    open_timeout=self._config.open_timeout,
                    ping_interval=self._config.ping_interval,
                    ping_timeout=self._config.ping_timeout,
                )
            except _CONNECT_ERRORS as e:
                logger.warning(f"Stream connection to {self._config.url} failed: {e}")
            else:
                attempt = 0
                await self._serve(connection)
                if self._closing:
                    break
                logger.warning("Stream connection lost")

            if attempt >= self._config.reconnect_attempts:
                self._give_up(attempt)
                return
            delay = get_retry_delay(
                None,
                attempt,
                base_delay=self._config.reconnect_delay,
                max_delay=self._config.reconnect_delay_max,
            )
            attempt += 1
            self._set_status(ConnectionStatus.RECONNECTING)
            logger.warning(
                f"Reconnecting in {delay:.1f}s (attempt {attempt}/{self._config.reconnect_attempts})"
            )
            await self._sleep(delay)

    async def _serve(self, connection: Any) -> None:
        """Run reader and writer until the connection ends."""
        self._connection = connection
        reconnected = self._has_connected
        self._has_connected = True
        self._connected.set()
        self._set_status(ConnectionStatus.CONNECTED)
        logger.info(f"Connected to {self._config.url}")
        if reconnected:
            self._notify(self._reconnect_handlers)

        reader = asyncio.create_task(self._read(connection))
        writer = asyncio.create_task(self._write(connection))
        try:
            done, pending = await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (reader, writer):
                task.cancel()
            await asyncio.gather(reader, writer, return_exceptions=True)
            self._connected.clear()
            self._connection = None

        for task in done:
            error = None if task.cancelled() else task.exception()
            if error is None:
                continue
            if isinstance(error, (ConnectionClosed, *_CONNECT_ERRORS)):
                logger.debug(f"Connection ended: {error}")
            else:
                logger.error(f"Stream connection failed unexpectedly: {error!r}", exc_info=error)

    async def _read(self, connection: Any) -> None:
        async for frame in connection:
            self._dispatch(frame)

    async def _write(self, connection: Any) -> None:
        while True:
            while not self._outbox:
                self._outbox_ready.clear()
                await self._outbox_ready.wait()
            # Pop only after a successful send so a failed frame is retried first
            await connection.send(self._outbox[0])
            self._outbox.popleft()

    def _dispatch(self, frame: str | bytes) -> None:
        try:
            event = parse_event(frame)
        except MalformedEventError as e:
            logger.warning(f"Dropping frame: {e}")
            return
        if event is None:
            return
        for handler in list(self._event_handlers):
            try:
                handler(event)
            except Exception:
                logger.exception(f"Event handler failed for {event.name} ({event.search_id})")

    def _give_up(self, attempts: int) -> None:
        error = ReconnectExhaustedError(attempts)
        self._set_status(ConnectionStatus.ERROR)
        self._exhausted.set()
        logger.error(f"{error}; giving up on {self._config.url}")
        for handler in list(self._exhausted_handlers):
            try:
                handler(error)
            except Exception:
                logger.exception("Reconnect-exhausted handler failed")

    def _notify(self, handlers: list[Callable[[], None]]) -> None:
        for handler in list(handlers):
            try:
                handler()
            except Exception:
                logger.exception("Reconnect handler failed")

    def _set_status(self, status: ConnectionStatus) -> None:
        if status is self._status:
            return
        logger.debug(f"Transport status {self._status.value} → {status.value}")
        self._status = status
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("Status listener failed")
