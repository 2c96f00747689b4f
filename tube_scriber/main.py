"""
Bot entry point.

Loads settings, configures logging, and runs the bridge until signalled.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

import structlog
from pydantic import ValidationError

from .bridge import ScriberBridge
from .config import Settings


def configure_logging(level: str = "info", fmt: str = "json") -> None:
    """Configure structlog with the specified level and format."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            structlog.get_level_from_name(level)
        ),
    )


def run() -> None:
    """CLI entry point for the bot."""
    parser = argparse.ArgumentParser(description="Tube Scriber: YouTube channel notifications for Telegram")
    parser.add_argument(
        "-e", "--env-file",
        default=".env",
        help="Path to a dotenv file read on top of the environment (default: .env)",
    )
    args = parser.parse_args()

    try:
        settings = Settings(_env_file=args.env_file)
    except ValidationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)

    configure_logging(settings.log_level, settings.log_format)
    log = structlog.get_logger()
    log.info("bot.config_loaded", env_file=args.env_file, port=settings.port)

    bridge = ScriberBridge(settings)
    try:
        asyncio.run(bridge.run_forever())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
