"""
Instrumental Agent - Collector Session

Keeps one connection to the collector and runs the hello/authenticate
handshake on it. Metrics emitted before the session is authenticated are
queued and flushed, in call order, as soon as authentication succeeds.

Emitting a metric never blocks and never raises. When no connection can be
made the line is dropped and counted in dropped_count.
"""

import threading
import time
from collections import deque
from enum import Enum
from typing import Callable, Deque, Optional, Tuple, Union

import structlog

from .. import __version__
from ..config import COLLECTOR_HOST, COLLECTOR_PORT, RESPONSE_TIMEOUT, Settings
from ..errors import CollectorConnectionError, CollectorError, DisconnectedError, TransportCreationError
from ..platform_info import PlatformInfo
from ..protocol import (
    ACKNOWLEDGEMENT,
    MessageTag,
    describe_line,
    encode_line,
    format_authenticate,
    format_gauge,
    format_hello,
    format_increment,
    full_metric_name,
)
from ..transport import AsyncioTransport, EventLoopThread, Transport, TransportDelegate

logger = structlog.get_logger(__name__)

CLIENT_NAME = "instrumental-agent"

TransportFactory = Callable[[TransportDelegate], Transport]


class SessionState(str, Enum):
    """Handshake progress of a collector session."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    HELLO_SENT = "hello_sent"
    AUTH_SENT = "auth_sent"
    AUTHENTICATED = "authenticated"


class CollectorSession(TransportDelegate):
    """Connection and handshake state machine for one collector endpoint."""

    def __init__(
        self,
        api_key: str,
        metrics_prefix: Optional[str] = None,
        host: str = COLLECTOR_HOST,
        port: int = COLLECTOR_PORT,
        response_timeout: float = RESPONSE_TIMEOUT,
        connect_timeout: float = 10.0,
        max_pending: int = 10000,
        platform_info: Optional[PlatformInfo] = None,
        client_name: str = CLIENT_NAME,
        client_version: str = __version__,
        transport_factory: Optional[TransportFactory] = None,
        auto_connect: bool = True
    ):
        self._api_key = api_key
        self._metrics_prefix = metrics_prefix
        self._host = host
        self._port = port
        self._response_timeout = response_timeout
        self._connect_timeout = connect_timeout
        self._platform_info = platform_info or PlatformInfo.detect()
        self._client_name = client_name
        self._client_version = client_version
        self._transport_factory = transport_factory or self._create_transport

        # Every state change happens under this lock, whether it comes from
        # an application thread or from a transport callback.
        self._lock = threading.RLock()
        self._state = SessionState.DISCONNECTED
        self._authenticated = False
        self._authenticated_event = threading.Event()
        self._transport: Optional[Transport] = None
        self._loop_thread: Optional[EventLoopThread] = None
        self._max_pending = max_pending
        self._pending: Deque[Tuple[str, MessageTag]] = deque()
        self._dropped = 0
        self._last_error: Optional[CollectorError] = None
        self._closed = False

        if auto_connect:
            error = self.connect()
            if error is not None:
                logger.error("Error connecting to collector", host=self._host, port=self._port, error=str(error))

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "CollectorSession":
        """Create a session from loaded settings."""
        return cls(
            api_key=settings.api_key,
            metrics_prefix=settings.metrics_prefix,
            host=settings.collector_host,
            port=settings.collector_port,
            response_timeout=settings.response_timeout,
            connect_timeout=settings.connect_timeout,
            max_pending=settings.max_pending,
            **kwargs
        )

    # Properties

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def metrics_prefix(self) -> Optional[str]:
        return self._metrics_prefix

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_authenticated(self) -> bool:
        return self._authenticated

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def dropped_count(self) -> int:
        """Number of lines discarded without being sent."""
        return self._dropped

    @property
    def last_error(self) -> Optional[CollectorError]:
        """The error from the most recent disconnect, if any."""
        return self._last_error

    # Lifecycle

    def connect(self) -> Optional[CollectorError]:
        """
        Make sure a connection exists or is being established.

        Returns immediately. A connection that is already up or in progress
        is left alone.

        Returns:
            None on success, otherwise TransportCreationError or
            CollectorConnectionError. Nothing is raised.
        """
        with self._lock:
            if self._closed:
                return CollectorConnectionError("Session is closed")

            try:
                transport = self._ensure_transport()
            except TransportCreationError as e:
                return e

            if transport.is_connected or transport.is_connecting:
                return None

            try:
                transport.connect_to(self._host, self._port)
            except CollectorConnectionError as e:
                return e

            self._state = SessionState.CONNECTING
            logger.info("Connecting to collector", host=self._host, port=self._port)
            return None

    def disconnect(self) -> None:
        """Flush what can be sent, then close after pending writes finish."""
        with self._lock:
            if self._authenticated:
                self._catch_up()
            elif self._pending:
                logger.info("Keeping unsent metrics until next authentication", count=len(self._pending))

            if self._transport is not None:
                self._transport.disconnect_after_writing()

    def close(self, timeout: Optional[float] = 5.0) -> None:
        """Disconnect, wait for the connection to close and stop the event loop."""
        with self._lock:
            transport = self._transport

        self.disconnect()
        if transport is not None and (transport.is_connected or transport.is_connecting):
            if not transport.wait_closed(timeout):
                logger.warning("Collector connection did not close in time", timeout=timeout)

        with self._lock:
            self._closed = True
            loop_thread = self._loop_thread
            self._loop_thread = None

        if loop_thread is not None:
            loop_thread.stop(timeout)
        logger.debug("Collector session closed", pending=self.pending_count, dropped=self._dropped)

    def wait_until_authenticated(self, timeout: Optional[float] = None) -> bool:
        """Block until the handshake completes. Returns False on timeout."""
        return self._authenticated_event.wait(timeout)

    def __enter__(self) -> "CollectorSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # Metrics

    def increment(self, name: str, amount: Union[int, float] = 1) -> None:
        """Increment a counter metric."""
        line = format_increment(self._full_name(name), amount, time.time())
        self._write_metric(line, MessageTag.INCREMENT)

    def gauge(self, name: str, value: float = 0.0, absolute: bool = False) -> None:
        """Record a gauge value, or an absolute gauge when absolute is set."""
        line = format_gauge(self._full_name(name), value, absolute, time.time())
        self._write_metric(line, MessageTag.GAUGE)

    # Internals

    def _full_name(self, name: str) -> str:
        return full_metric_name(name, self._metrics_prefix)

    def _create_transport(self, delegate: TransportDelegate) -> Transport:
        """Default transport factory: asyncio TCP on a dedicated loop thread."""
        if self._loop_thread is None:
            self._loop_thread = EventLoopThread(name=f"instrumental-{self._host}")
        return AsyncioTransport(delegate, self._loop_thread, connect_timeout=self._connect_timeout)

    def _ensure_transport(self) -> Transport:
        """Return the current transport, creating one if absent or closed."""
        if self._transport is not None and not self._transport.is_closed:
            return self._transport

        try:
            transport = self._transport_factory(self)
        except Exception as e:
            raise TransportCreationError(f"Could not create transport: {e}") from e
        if transport is None:
            raise TransportCreationError("Could not create transport")

        if self._transport is not None:
            # The old connection closed before its disconnect event arrived
            self._reset()
        self._transport = transport
        return transport

    def _reset(self) -> None:
        self._transport = None
        self._authenticated = False
        self._authenticated_event.clear()
        self._state = SessionState.DISCONNECTED

    def _write(self, line: str, tag: MessageTag) -> bool:
        """Write a line, connecting first if needed. Drops it if that fails."""
        error = self.connect()
        if error is not None:
            self._dropped += 1
            logger.warning("Dropped collector message", kind=tag.command, error=str(error))
            return False

        if not tag.expects_response and not self._authenticated:
            # Reconnected above; metrics wait for the new handshake
            self._enqueue(line, tag)
            return False

        self._transport.write(encode_line(line), tag)
        logger.debug("Collector wrote", line=describe_line(line, tag))
        return True

    def _enqueue(self, line: str, tag: MessageTag) -> None:
        if len(self._pending) >= self._max_pending:
            self._pending.popleft()
            self._dropped += 1
            logger.warning("Metric queue full, dropped oldest metric", max_pending=self._max_pending)
        self._pending.append((line, tag))

    def _catch_up(self) -> None:
        """Send queued metrics in the order they were emitted."""
        if not self._pending:
            return
        pending, self._pending = self._pending, deque()
        logger.debug("Flushing queued metrics", count=len(pending))
        for line, tag in pending:
            self._write(line, tag)

    def _write_metric(self, line: str, tag: MessageTag) -> None:
        with self._lock:
            if not self._authenticated:
                self._enqueue(line, tag)

                # After a disconnect nothing else would bring the connection back
                if self._transport is None and not self._closed:
                    self.connect()
                return

            self._catch_up()
            self._write(line, tag)

    def _hello(self) -> None:
        info = self._platform_info
        line = format_hello(self._client_name, self._client_version, info.name, info.version, info.device_id)
        self._state = SessionState.HELLO_SENT
        self._write(line, MessageTag.HELLO)

    def _authenticate(self) -> None:
        self._state = SessionState.AUTH_SENT
        self._write(format_authenticate(self._api_key), MessageTag.AUTH)

    # TransportDelegate

    def on_connected(self, transport: Transport, host: str, port: int) -> None:
        with self._lock:
            if transport is not self._transport:
                return
            logger.info("Collector connected", host=host, port=port)
            self._hello()

    def on_write_complete(self, transport: Transport, tag: MessageTag) -> None:
        with self._lock:
            if transport is not self._transport:
                return
            if tag.expects_response:
                transport.read(self._response_timeout, tag)

    def on_data_received(self, transport: Transport, data: bytes, tag: MessageTag) -> None:
        with self._lock:
            if transport is not self._transport:
                return

            response = data.decode("ascii", errors="replace")
            logger.debug("Collector read", response=response.rstrip("\n"), kind=tag.command)

            if response != ACKNOWLEDGEMENT:
                logger.warning("Unexpected collector response", response=response.rstrip("\n"), kind=tag.command)
                return

            if tag is MessageTag.HELLO and self._state == SessionState.HELLO_SENT:
                self._authenticate()
            elif tag is MessageTag.AUTH and self._state == SessionState.AUTH_SENT:
                self._authenticated = True
                self._state = SessionState.AUTHENTICATED
                logger.info("Collector authenticated", queued=len(self._pending))
                self._catch_up()
                self._authenticated_event.set()

    def on_disconnected(self, transport: Transport, error: Optional[BaseException]) -> None:
        with self._lock:
            if transport is not self._transport:
                return

            if error is not None:
                self._last_error = DisconnectedError(f"Collector connection lost: {error}", cause=error)
                logger.warning("Collector disconnected", error=str(error))
            else:
                self._last_error = None
                logger.info("Collector disconnected")

            self._reset()
