"""
Instrumental Agent - Errors

Error taxonomy for the collector session and its transport.
None of these are raised to code that emits metrics.
"""

from typing import Optional


class CollectorError(Exception):
    """Base class for collector errors."""


class TransportCreationError(CollectorError):
    """The transport handle could not be created."""


class CollectorConnectionError(CollectorError, ConnectionError):
    """A connection attempt was refused before it started."""


class DisconnectedError(CollectorError):
    """The transport dropped, possibly because of an underlying error."""
    
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class ReadTimeoutError(CollectorError, TimeoutError):
    """No collector response arrived before the read timeout."""
