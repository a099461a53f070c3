"""
Instrumental Agent - Collector Protocol

Message tags and line formatting for the collector's text protocol.
Every command is one ASCII line terminated by a newline.
"""

import time
from enum import Enum
from typing import Optional, Union

ACKNOWLEDGEMENT = "ok\n"


class MessageTag(Enum):
    """Kind of message written to the collector."""
    HELLO = ("hello", True)
    AUTH = ("authenticate", True)
    INCREMENT = ("increment", False)
    GAUGE = ("gauge", False)
    
    def __init__(self, command: str, expects_response: bool):
        self.command = command
        self.expects_response = expects_response


def full_metric_name(name: str, prefix: Optional[str] = None) -> str:
    """Join the optional prefix and the metric name with a dot."""
    if prefix is not None:
        return f"{prefix}.{name}"
    return name


def format_hello(
    client_name: str,
    client_version: str,
    platform_name: str,
    platform_version: str,
    device_id: str
) -> str:
    return (
        f"{MessageTag.HELLO.command} version {client_name}/{client_version} "
        f"platform {platform_name}/{platform_version} hostname {device_id}\n"
    )


def format_authenticate(api_key: str) -> str:
    return f"{MessageTag.AUTH.command} {api_key}\n"


def format_increment(
    name: str,
    amount: Union[int, float] = 1,
    timestamp: Optional[float] = None
) -> str:
    """Build an increment line. The timestamp defaults to now."""
    if timestamp is None:
        timestamp = time.time()
    return f"{MessageTag.INCREMENT.command} {name} {amount} {timestamp}\n"


def format_gauge(
    name: str,
    value: float = 0.0,
    absolute: bool = False,
    timestamp: Optional[float] = None
) -> str:
    """Build a gauge line, using gauge_absolute when absolute is set."""
    if timestamp is None:
        timestamp = time.time()
    command = MessageTag.GAUGE.command
    if absolute:
        command = f"{command}_absolute"
    return f"{command} {name} {float(value)} {timestamp}\n"


def encode_line(line: str) -> bytes:
    """Encode a protocol line as ASCII, replacing anything outside it."""
    return line.encode("ascii", errors="replace")


def describe_line(line: str, tag: MessageTag) -> str:
    """Printable form of a line for logs. Never includes the API key."""
    if tag is MessageTag.AUTH:
        return f"{tag.command} <redacted>"
    return line.rstrip("\n")
