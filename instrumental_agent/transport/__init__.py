"""
Instrumental Agent - Transport Package

Async TCP transport used by the collector session.
"""

from .base import Transport, TransportDelegate
from .loop import EventLoopThread
from .tcp import AsyncioTransport, TransportState

__all__ = [
    "AsyncioTransport",
    "EventLoopThread",
    "Transport",
    "TransportDelegate",
    "TransportState",
]
