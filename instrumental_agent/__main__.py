#!/usr/bin/env python3
"""
Instrumental Agent - Command Line

Sends a single metric to the collector and exits.

Usage:
    python -m instrumental_agent [--config CONFIG_PATH] increment NAME [--amount N]
    python -m instrumental_agent [--config CONFIG_PATH] gauge NAME VALUE [--absolute]
"""

import argparse
import sys
from typing import List, Optional

import structlog

from .config import load_settings
from .logging_config import configure_logging
from .session import CollectorSession

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="instrumental-agent",
        description="Send a metric to an Instrumental collector"
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="Path to YAML configuration file"
    )
    parser.add_argument(
        "--timeout", "-t",
        type=float,
        default=10.0,
        help="Seconds to wait for the collector handshake"
    )
    parser.add_argument(
        "--console-log",
        action="store_true",
        help="Human readable log output instead of JSON"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    increment = commands.add_parser("increment", help="Increment a counter")
    increment.add_argument("name", help="Metric name")
    increment.add_argument("--amount", "-a", type=int, default=1, help="Amount to add")

    gauge = commands.add_parser("gauge", help="Record a gauge value")
    gauge.add_argument("name", help="Metric name")
    gauge.add_argument("value", type=float, help="Gauge value")
    gauge.add_argument("--absolute", action="store_true", help="Send as gauge_absolute")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    settings = load_settings(args.config)
    configure_logging(settings.log_level, json_output=not args.console_log)

    if not settings.api_key:
        logger.error("No API key configured", env="INSTRUMENTAL_API_KEY")
        return 1

    session = CollectorSession.from_settings(settings)
    try:
        if not session.wait_until_authenticated(args.timeout):
            logger.error(
                "Collector handshake did not complete",
                timeout=args.timeout,
                error=str(session.last_error) if session.last_error else None
            )
            return 1

        if args.command == "increment":
            session.increment(args.name, args.amount)
        else:
            session.gauge(args.name, args.value, absolute=args.absolute)

        logger.info("Metric sent", command=args.command, name=args.name)
        return 0
    finally:
        session.close(timeout=args.timeout)


if __name__ == "__main__":
    sys.exit(main())
