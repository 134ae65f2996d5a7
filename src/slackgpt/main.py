"""
Command-line entry point: load config, wire the clients, hand over to the supervisor.

Usage:
    slackgpt -c config.yaml [-t yaml] [--debug]
    python -m slackgpt -c config.yaml
"""
import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

from slack_bolt.adapter.socket_mode.async_handler import AsyncSocketModeHandler
from slack_bolt.async_app import AsyncApp

from . import __version__
from .bridge import EventBridge
from .config import FORMATS, Settings, load_settings
from .errors import ConfigLoadError
from .llm.client import CompletionClient
from .log import get_logger, setup_logging
from .slack.client import SlackReplier
from .supervisor import ProcessSupervisor, log_concurrency_limits

logger = get_logger("slackgpt")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="slackgpt",
        description="A Slack bot that sends mentions to ChatGPT and responds with the ChatGPT result.",
    )
    parser.add_argument(
        "-c", "--config", required=True,
        help="config file with slack app+bot tokens and the OpenAI API key",
    )
    parser.add_argument(
        "-t", "--type", default=None, choices=sorted(FORMATS),
        help="the config type; if not passed, inferred from the file extension",
    )
    parser.add_argument("--debug", action="store_true", help="set debug mode for client logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


async def serve(settings: Settings) -> int:
    log_concurrency_limits(settings.MAX_CONCURRENT_DISPATCHES)

    completion = CompletionClient.from_settings(settings)
    logger.info(f"startup: completion client ready (model={settings.OPENAI_MODEL})")

    app = AsyncApp(token=settings.SLACK_BOT_TOKEN, logger=logging.getLogger("slack_bolt"))
    socket_handler = AsyncSocketModeHandler(app, settings.SLACK_APP_TOKEN)
    logger.info("startup: slack clients ready")

    bridge = EventBridge.from_settings(settings, app, socket_handler, completion, SlackReplier(app.client))
    supervisor = ProcessSupervisor(bridge, grace_period=settings.SHUTDOWN_GRACE_SECONDS)
    try:
        return await supervisor.run()
    finally:
        await completion.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(debug=args.debug)
    logger.info(f"startup: version {__version__}")

    try:
        settings = load_settings(args.config, args.type)
    except ConfigLoadError as e:
        logger.error(f"startup: {e}")
        return 1

    if not args.debug:
        logging.getLogger().setLevel(settings.LOG_LEVEL)

    return asyncio.run(serve(settings))


if __name__ == "__main__":
    sys.exit(main())
