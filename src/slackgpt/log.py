"""Logging configuration with Rich formatting.

Provides setup_logging() for process start-up and get_logger() for module-level loggers.
"""

import logging
from rich.logging import RichHandler

# Client libraries that are chatty at DEBUG; only let them through with --debug.
CLIENT_LOGGERS = ("slack_bolt", "slack_sdk", "httpx", "openai", "aiohttp")


def setup_logging(level: str = "INFO", debug: bool = False):
    logging.basicConfig(
        level="DEBUG" if debug else level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)],
        force=True,
    )

    client_level = logging.DEBUG if debug else logging.WARNING
    for name in CLIENT_LOGGERS:
        logging.getLogger(name).setLevel(client_level)


def get_logger(name: str):
    return logging.getLogger(name)
