"""
Instrumental Agent - Platform Info

Identifies the host for the collector hello line.
"""

import platform
from dataclasses import dataclass


def _token(value: str, default: str = "unknown") -> str:
    """Make a value safe to use as a single protocol token."""
    value = (value or "").strip()
    return "-".join(value.split()) or default


@dataclass(frozen=True)
class PlatformInfo:
    """OS name, OS version and device identifier."""
    name: str
    version: str
    device_id: str
    
    @classmethod
    def detect(cls) -> "PlatformInfo":
        """Describe the machine this process runs on."""
        return cls(
            name=_token(platform.system()),
            version=_token(platform.release()),
            device_id=_token(platform.node()),
        )
