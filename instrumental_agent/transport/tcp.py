"""
Instrumental Agent - TCP Transport

asyncio stream transport for the collector connection. Writes are queued
and sent in order by a single writer task; reads return one response line.
All I/O and delegate callbacks run on the owning EventLoopThread.
"""

import asyncio
import threading
from enum import Enum
from typing import Optional, Set

import structlog

from ..errors import CollectorConnectionError, ReadTimeoutError
from ..protocol import MessageTag
from .base import Transport, TransportDelegate
from .loop import EventLoopThread

logger = structlog.get_logger(__name__)

# Queued after the last write to close the connection once it is sent
_CLOSE = object()


class TransportState(str, Enum):
    """Lifecycle of a single transport."""
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


class AsyncioTransport(Transport):
    """TCP transport backed by asyncio streams."""

    def __init__(
        self,
        delegate: TransportDelegate,
        loop_thread: EventLoopThread,
        connect_timeout: float = 10.0,
        read_limit: int = 64 * 1024
    ):
        self._delegate = delegate
        self._loop_thread = loop_thread
        self._connect_timeout = connect_timeout
        self._read_limit = read_limit

        self._state = TransportState.IDLE
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._outbound: asyncio.Queue = asyncio.Queue()
        self._write_task: Optional[asyncio.Task] = None
        self._read_tasks: Set[asyncio.Task] = set()
        self._closed = threading.Event()

    @property
    def state(self) -> TransportState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == TransportState.CONNECTED

    @property
    def is_connecting(self) -> bool:
        return self._state == TransportState.CONNECTING

    @property
    def is_closed(self) -> bool:
        return self._state == TransportState.CLOSED

    def connect_to(self, host: str, port: int) -> None:
        """Start connecting. Completion is reported through the delegate."""
        if self._state != TransportState.IDLE:
            raise CollectorConnectionError(
                f"Cannot connect while transport is {self._state.value}"
            )
        if not host:
            raise CollectorConnectionError("Invalid host")
        if not self._loop_thread.is_running:
            raise CollectorConnectionError("Event loop is not running")

        self._state = TransportState.CONNECTING
        self._loop_thread.submit(self._connect(host, port))

    def write(self, data: bytes, tag: MessageTag) -> None:
        if self._state == TransportState.CLOSED or not self._loop_thread.is_running:
            logger.debug("Write ignored on closed transport", tag=tag.name)
            return
        self._loop_thread.call_soon(self._outbound.put_nowait, (data, tag))

    def read(self, timeout: float, tag: MessageTag) -> None:
        if self._state == TransportState.CLOSED or not self._loop_thread.is_running:
            return
        self._loop_thread.call_soon(self._start_read, timeout, tag)

    def disconnect_after_writing(self) -> None:
        if self._state in (TransportState.IDLE, TransportState.CLOSED):
            return
        if not self._loop_thread.is_running:
            return
        self._loop_thread.call_soon(self._outbound.put_nowait, _CLOSE)

    def wait_closed(self, timeout: Optional[float] = None) -> bool:
        return self._closed.wait(timeout)

    async def _connect(self, host: str, port: int) -> None:
        """Open the connection and start the writer task."""
        logger.debug("Opening connection", host=host, port=port)
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(host, port, limit=self._read_limit),
                timeout=self._connect_timeout
            )
        except asyncio.TimeoutError:
            await self._teardown(CollectorConnectionError(
                f"Timed out connecting to {host}:{port}"
            ))
            return
        except OSError as e:
            await self._teardown(e)
            return
        except Exception as e:
            # Malformed host names and out of range ports
            await self._teardown(CollectorConnectionError(
                f"Cannot connect to {host}:{port}: {e}"
            ))
            return

        self._state = TransportState.CONNECTED
        self._write_task = asyncio.create_task(self._write_loop())
        self._notify("on_connected", host, port)

    async def _write_loop(self) -> None:
        """Send queued writes in order until asked to close."""
        while True:
            item = await self._outbound.get()
            if item is _CLOSE:
                await self._teardown(None)
                return

            data, tag = item
            try:
                self._writer.write(data)
                await self._writer.drain()
            except (ConnectionError, OSError) as e:
                await self._teardown(e)
                return

            self._notify("on_write_complete", tag)

    def _start_read(self, timeout: float, tag: MessageTag) -> None:
        if self._state != TransportState.CONNECTED:
            return
        task = asyncio.create_task(self._read(timeout, tag))
        self._read_tasks.add(task)
        task.add_done_callback(self._read_tasks.discard)

    async def _read(self, timeout: float, tag: MessageTag) -> None:
        """Read one line, tearing the connection down on timeout or EOF."""
        try:
            data = await asyncio.wait_for(self._reader.readline(), timeout=timeout)
        except asyncio.TimeoutError:
            await self._teardown(ReadTimeoutError(
                f"No response to {tag.command} within {timeout}s"
            ))
            return
        except (ConnectionError, OSError, ValueError) as e:
            await self._teardown(e)
            return

        if not data:
            logger.debug("Connection closed by peer")
            await self._teardown(None)
            return

        self._notify("on_data_received", data, tag)

    async def _teardown(self, error: Optional[BaseException]) -> None:
        """Close the connection once and report it to the delegate."""
        if self._state == TransportState.CLOSED:
            return
        self._state = TransportState.CLOSED

        current = asyncio.current_task()
        for task in [self._write_task, *self._read_tasks]:
            if task is not None and task is not current:
                task.cancel()
        self._read_tasks.clear()
        self._write_task = None

        if self._writer is not None:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except (ConnectionError, OSError) as e:
                logger.debug("Error while closing connection", error=str(e))
        self._reader = None
        self._writer = None

        self._closed.set()
        self._notify("on_disconnected", error)

    def _notify(self, callback: str, *args) -> None:
        """Invoke a delegate callback, logging anything it raises."""
        try:
            getattr(self._delegate, callback)(self, *args)
        except Exception as e:
            logger.exception("Transport delegate error", callback=callback, error=str(e))
