"""
Event bridge: Slack Socket Mode events in, OpenAI completions out.

One EventBridge lives per process. Bolt acknowledges each envelope and hands
the inner event to handle_event(), which spawns an independent dispatch task
(completion, then reply) so a slow completion never blocks ingestion.
"""
import asyncio
import enum
from typing import Any, Dict, Optional, Set

from .errors import EmptyPromptError, SocketFatalError
from .llm.client import CompletionClient
from .log import get_logger
from .schemas.events import InboundEvent
from .slack.client import SlackReplier
from .slack.parse import parse_event

logger = get_logger("event_bridge")


class BridgeState(str, enum.Enum):
    IDLE = "idle"
    CONNECTED = "connected"
    CLOSED = "closed"


class EventBridge:
    def __init__(
        self,
        app,
        socket_handler,
        completion: CompletionClient,
        replier: SlackReplier,
        *,
        completion_timeout: Optional[float] = None,
        max_concurrent_dispatches: int = 8,
        reply_in_thread: bool = False,
        error_reply: Optional[str] = None,
        health_check_interval: float = 10.0,
        max_unhealthy_checks: int = 6,
    ):
        self.socket_handler = socket_handler
        self.completion = completion
        self.replier = replier
        self.completion_timeout = completion_timeout
        self.max_concurrent_dispatches = max_concurrent_dispatches
        self.reply_in_thread = reply_in_thread
        self.error_reply = error_reply
        self.health_check_interval = health_check_interval
        self.max_unhealthy_checks = max_unhealthy_checks

        self.state = BridgeState.IDLE
        self._started = False
        self._slots = asyncio.Semaphore(max_concurrent_dispatches)
        self._in_flight: Set[asyncio.Task] = set()

        async def on_event(event):
            # Bolt injects listener arguments by name.
            await self.handle_event(event)

        app.event("app_mention")(on_event)
        app.event("message")(on_event)

    @classmethod
    def from_settings(cls, settings, app, socket_handler, completion, replier) -> "EventBridge":
        return cls(
            app,
            socket_handler,
            completion,
            replier,
            completion_timeout=settings.COMPLETION_TIMEOUT_SECONDS,
            max_concurrent_dispatches=settings.MAX_CONCURRENT_DISPATCHES,
            reply_in_thread=settings.REPLY_IN_THREAD,
            error_reply=settings.error_reply,
            health_check_interval=settings.SOCKET_HEALTH_CHECK_SECONDS,
            max_unhealthy_checks=settings.SOCKET_MAX_UNHEALTHY_CHECKS,
        )

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def handle_event(self, event: Dict[str, Any]) -> Optional[asyncio.Task]:
        """Start a dispatch for an actionable event. Returns its task, or None if ignored."""
        inbound = parse_event(event)
        if inbound is None:
            logger.debug(f"Ignoring {event.get('type')}/{event.get('subtype')} event")
            return None

        logger.info(f"Dispatching {inbound.type} from {inbound.channel} ({len(inbound.conversation)} fragments)")
        task = asyncio.create_task(self._dispatch(inbound), name=f"dispatch-{inbound.channel}-{inbound.ts}")
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def _dispatch(self, inbound: InboundEvent):
        thread_ts = inbound.reply_thread_ts(self.reply_in_thread)
        async with self._slots:
            try:
                reply = await self.completion.get_response(inbound.conversation, timeout=self.completion_timeout)
            except EmptyPromptError:
                logger.debug(f"Empty prompt from {inbound.channel}, nothing to send")
                return
            except Exception:
                logger.exception(f"Completion failed for {inbound.channel}/{inbound.ts}")
                await self._notify_failure(inbound, thread_ts)
                return

            if not reply:
                logger.warning(f"Completion for {inbound.channel}/{inbound.ts} was blank, not replying")
                return

            try:
                await self.replier.post_reply(inbound.channel, reply, thread_ts=thread_ts)
            except Exception:
                logger.exception(f"Failed to post reply to {inbound.channel}/{inbound.ts}")
                return
            logger.info(f"Replied to {inbound.channel}/{inbound.ts}")

    async def _notify_failure(self, inbound: InboundEvent, thread_ts: Optional[str]):
        if not self.error_reply:
            return
        try:
            await self.replier.post_reply(inbound.channel, self.error_reply, thread_ts=thread_ts)
        except Exception:
            logger.exception(f"Failed to post error notice to {inbound.channel}")

    async def run(self, stop: asyncio.Event):
        """
        Connect to Socket Mode and block until `stop` is set or the connection
        is lost for good. Raises SocketFatalError for the latter. Callable once.
        """
        if self._started:
            raise RuntimeError("EventBridge.run() may only be called once")
        self._started = True

        try:
            await self.socket_handler.connect_async()
        except Exception as e:
            self.state = BridgeState.CLOSED
            await self.socket_handler.close_async()
            raise SocketFatalError(f"could not open Socket Mode connection: {e}") from e

        self.state = BridgeState.CONNECTED
        logger.info("Connected to Slack via Socket Mode")
        try:
            await self._watch(stop)
        finally:
            self.state = BridgeState.CLOSED
            await self.socket_handler.close_async()
            logger.info("Socket Mode connection closed")

    async def _watch(self, stop: asyncio.Event):
        # The socket client reconnects on its own; only a long outage is fatal.
        unhealthy = 0
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.health_check_interval)
                return
            except asyncio.TimeoutError:
                pass

            if await self.socket_handler.client.is_connected():
                unhealthy = 0
                continue

            unhealthy += 1
            logger.warning(f"Socket Mode disconnected ({unhealthy}/{self.max_unhealthy_checks} checks)")
            if unhealthy >= self.max_unhealthy_checks:
                raise SocketFatalError(
                    f"Socket Mode connection lost for {unhealthy} consecutive health checks"
                )

    async def drain(self, timeout: float) -> int:
        """Wait up to `timeout` seconds for in-flight dispatches, cancel the rest. Returns how many were cancelled."""
        pending = set(self._in_flight)
        if not pending:
            return 0

        logger.info(f"Waiting up to {timeout:.1f}s for {len(pending)} in-flight dispatches")
        if timeout > 0:
            _, pending = await asyncio.wait(pending, timeout=timeout)

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"Cancelled {len(pending)} dispatches still running at shutdown")
        return len(pending)
