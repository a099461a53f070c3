"""
Instrumental Agent - Transport Interface

The session drives a transport through this interface and receives its
events through a delegate. Every delegate callback is delivered on the
transport's single event loop thread, one at a time.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..protocol import MessageTag


class TransportDelegate(ABC):
    """Event sink for transport events."""
    
    @abstractmethod
    def on_connected(self, transport: "Transport", host: str, port: int) -> None:
        """The connection to host:port is established."""
        pass
    
    @abstractmethod
    def on_write_complete(self, transport: "Transport", tag: MessageTag) -> None:
        """A write tagged with tag has been flushed to the socket."""
        pass
    
    @abstractmethod
    def on_data_received(self, transport: "Transport", data: bytes, tag: MessageTag) -> None:
        """A read tagged with tag returned data."""
        pass
    
    @abstractmethod
    def on_disconnected(self, transport: "Transport", error: Optional[BaseException]) -> None:
        """The connection is gone. error is None for a requested close."""
        pass


class Transport(ABC):
    """
    Async byte stream to a single endpoint.
    
    None of these methods block. Results arrive through the delegate.
    """
    
    @property
    @abstractmethod
    def is_connected(self) -> bool:
        pass
    
    @property
    @abstractmethod
    def is_connecting(self) -> bool:
        pass
    
    @property
    @abstractmethod
    def is_closed(self) -> bool:
        """True once the transport has disconnected and cannot be reused."""
        pass
    
    @abstractmethod
    def connect_to(self, host: str, port: int) -> None:
        """
        Start connecting to host:port.
        
        Raises:
            CollectorConnectionError: If the attempt cannot be started
        """
        pass
    
    @abstractmethod
    def write(self, data: bytes, tag: MessageTag) -> None:
        """Queue data for writing. Completion is reported with tag."""
        pass
    
    @abstractmethod
    def read(self, timeout: float, tag: MessageTag) -> None:
        """Read one response line, disconnecting if none arrives in time."""
        pass
    
    @abstractmethod
    def disconnect_after_writing(self) -> None:
        """Close the connection once every queued write has been sent."""
        pass
    
    @abstractmethod
    def wait_closed(self, timeout: Optional[float] = None) -> bool:
        """Block until the transport is closed. Returns False on timeout."""
        pass
