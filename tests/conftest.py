"""
Instrumental Agent - Test Fixtures

In-memory transport that lets tests drive the collector session by hand.
"""

import os
import sys
from typing import List, Optional, Tuple

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from instrumental_agent.errors import CollectorConnectionError
from instrumental_agent.platform_info import PlatformInfo
from instrumental_agent.protocol import MessageTag
from instrumental_agent.session import CollectorSession
from instrumental_agent.transport import Transport, TransportDelegate

TEST_PLATFORM = PlatformInfo(name="Linux", version="6.1", device_id="test-host")


class FakeTransport(Transport):
    """Records every call and fires delegate events on demand."""

    def __init__(self, delegate: TransportDelegate):
        self.delegate = delegate
        self.state = "idle"
        self.host: Optional[str] = None
        self.port: Optional[int] = None
        self.connect_error: Optional[CollectorConnectionError] = None
        self.writes: List[Tuple[str, MessageTag]] = []
        self.reads: List[Tuple[float, MessageTag]] = []
        self.disconnect_requested = False
        self._completed = 0

    @property
    def is_connected(self) -> bool:
        return self.state == "connected"

    @property
    def is_connecting(self) -> bool:
        return self.state == "connecting"

    @property
    def is_closed(self) -> bool:
        return self.state == "closed"

    def connect_to(self, host: str, port: int) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.host = host
        self.port = port
        self.state = "connecting"

    def write(self, data: bytes, tag: MessageTag) -> None:
        self.writes.append((data.decode("ascii"), tag))

    def read(self, timeout: float, tag: MessageTag) -> None:
        self.reads.append((timeout, tag))

    def disconnect_after_writing(self) -> None:
        self.disconnect_requested = True

    def wait_closed(self, timeout: Optional[float] = None) -> bool:
        return True

    # Simulated transport events

    def finish_connect(self) -> None:
        self.state = "connected"
        self.delegate.on_connected(self, self.host, self.port)

    def complete_writes(self) -> None:
        pending = self.writes[self._completed:]
        self._completed = len(self.writes)
        for _, tag in pending:
            self.delegate.on_write_complete(self, tag)

    def respond(self, data: bytes, tag: MessageTag) -> None:
        self.delegate.on_data_received(self, data, tag)

    def drop(self, error: Optional[BaseException] = None) -> None:
        self.state = "closed"
        self.delegate.on_disconnected(self, error)

    def complete_handshake(self) -> None:
        self.finish_connect()
        self.complete_writes()
        self.respond(b"ok\n", MessageTag.HELLO)
        self.complete_writes()
        self.respond(b"ok\n", MessageTag.AUTH)

    @property
    def lines(self) -> List[str]:
        return [line for line, _ in self.writes]

    @property
    def metric_lines(self) -> List[str]:
        return [line for line, tag in self.writes if not tag.expects_response]


@pytest.fixture
def transports() -> List[FakeTransport]:
    """Every fake transport created by the session, in order."""
    return []


@pytest.fixture
def make_session(transports):
    """Build a collector session wired to fake transports."""
    def factory(**kwargs) -> CollectorSession:
        def create(delegate):
            transport = FakeTransport(delegate)
            transports.append(transport)
            return transport

        kwargs.setdefault("api_key", "test-api-key")
        kwargs.setdefault("platform_info", TEST_PLATFORM)
        kwargs.setdefault("transport_factory", create)
        return CollectorSession(**kwargs)

    return factory
