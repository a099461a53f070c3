"""
Instrumental Agent - Session Package

Collector session state machine.
"""

from .collector import CollectorSession, SessionState

__all__ = ["CollectorSession", "SessionState"]
