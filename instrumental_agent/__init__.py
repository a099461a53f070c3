"""
Instrumental Agent

Reports counters and gauges to an Instrumental collector over its
line-based TCP protocol.
"""

__version__ = "0.1.0"

from .config import Settings, load_settings
from .errors import (
    CollectorConnectionError,
    CollectorError,
    DisconnectedError,
    ReadTimeoutError,
    TransportCreationError,
)
from .platform_info import PlatformInfo
from .protocol import MessageTag
from .session import CollectorSession, SessionState

__all__ = [
    "CollectorConnectionError",
    "CollectorError",
    "CollectorSession",
    "DisconnectedError",
    "MessageTag",
    "PlatformInfo",
    "ReadTimeoutError",
    "SessionState",
    "Settings",
    "TransportCreationError",
    "load_settings",
]
