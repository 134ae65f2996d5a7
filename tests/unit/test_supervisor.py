import asyncio
import os
import signal
from unittest.mock import AsyncMock

import pytest

from conftest import wait_until
from slackgpt.bridge import BridgeState, EventBridge
from slackgpt.errors import SocketFatalError
from slackgpt.supervisor import ProcessSupervisor, log_concurrency_limits, usable_cpus


class FakeBridge:
    """Stands in for EventBridge.run(): blocks until stopped, or fails on demand."""

    def __init__(self, error=None, return_early=False):
        self.error = error
        self.return_early = return_early
        self.runs = 0
        self.stopped = False
        self.drain = AsyncMock(return_value=0)

    async def run(self, stop):
        self.runs += 1
        if self.error is not None:
            raise self.error
        if self.return_early:
            return
        await stop.wait()
        self.stopped = True


class SlowCompletion:
    def __init__(self, delay):
        self.delay = delay
        self.cancelled = False

    async def get_response(self, conversation, timeout=None):
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return "done"


def mention(text="<@U0BOT> hello"):
    return {"type": "app_mention", "channel": "C1", "user": "U_USER", "text": text, "ts": "1.1"}


@pytest.mark.asyncio
async def test_signal_causes_clean_exit():
    """
    WHY: SIGTERM from the process manager is the normal way to stop the bot.
    HOW: Request shutdown shortly after start.
    EXPECTED: Exit status 0, the bridge was started once and told to stop.
    """
    bridge = FakeBridge()
    supervisor = ProcessSupervisor(bridge, grace_period=1.0, signals=())
    asyncio.get_running_loop().call_later(0.01, supervisor.request_shutdown, signal.SIGTERM)

    status = await asyncio.wait_for(supervisor.run(), timeout=2)

    assert status == 0
    assert bridge.runs == 1
    assert bridge.stopped
    bridge.drain.assert_awaited_once()


@pytest.mark.asyncio
async def test_handler_error_exits_non_zero():
    """
    WHY: A fatal socket error must end the process so it can be restarted.
    HOW: The bridge raises SocketFatalError straight away.
    EXPECTED: Exit status 1 and in-flight work is cancelled without a grace period.
    """
    bridge = FakeBridge(error=SocketFatalError("connection lost"))
    supervisor = ProcessSupervisor(bridge, grace_period=5.0, signals=())

    status = await asyncio.wait_for(supervisor.run(), timeout=2)

    assert status == 1
    bridge.drain.assert_awaited_once_with(0)


@pytest.mark.asyncio
async def test_bridge_ending_without_shutdown_is_an_error():
    supervisor = ProcessSupervisor(FakeBridge(return_early=True), grace_period=1.0, signals=())

    assert await asyncio.wait_for(supervisor.run(), timeout=2) == 1


@pytest.mark.asyncio
async def test_second_signal_is_ignored():
    """
    WHY: Shutdown is not reentrant; a second Ctrl-C must not crash or change the outcome.
    HOW: Request shutdown twice in a row.
    EXPECTED: Exit status 0, no exception from the second request.
    """
    bridge = FakeBridge()
    supervisor = ProcessSupervisor(bridge, grace_period=1.0, signals=())

    def double_signal():
        supervisor.request_shutdown(signal.SIGINT)
        supervisor.request_shutdown(signal.SIGINT)

    asyncio.get_running_loop().call_later(0.01, double_signal)

    assert await asyncio.wait_for(supervisor.run(), timeout=2) == 0


@pytest.mark.asyncio
async def test_real_signal_is_routed_to_shutdown():
    """
    WHY: The handler has to be armed on the loop, not just callable from tests.
    HOW: Install a handler for SIGUSR1 and send it to our own process.
    EXPECTED: Clean exit, and the handler is removed afterwards.
    """
    loop = asyncio.get_running_loop()
    supervisor = ProcessSupervisor(FakeBridge(), grace_period=1.0, signals=(signal.SIGUSR1,))
    loop.call_later(0.01, os.kill, os.getpid(), signal.SIGUSR1)

    assert await asyncio.wait_for(supervisor.run(), timeout=2) == 0
    assert loop.remove_signal_handler(signal.SIGUSR1) is False


@pytest.mark.asyncio
async def test_in_flight_reply_finishes_within_grace_period(fake_app, socket_handler, replier):
    """
    WHY: A signal arriving mid-completion should not lose an answer that is about to land.
    HOW: Dispatch a mention whose completion takes 50ms, then signal shutdown with a 2s grace period.
    EXPECTED: Exit status 0 and the reply is still posted.
    """
    completion = SlowCompletion(delay=0.05)
    bridge = EventBridge(fake_app, socket_handler, completion, replier, health_check_interval=10)
    supervisor = ProcessSupervisor(bridge, grace_period=2.0, signals=())

    run = asyncio.create_task(supervisor.run())
    await wait_until(lambda: bridge.state is BridgeState.CONNECTED)
    await bridge.handle_event(mention())
    supervisor.request_shutdown(signal.SIGTERM)

    assert await asyncio.wait_for(run, timeout=3) == 0
    replier.post_reply.assert_awaited_once_with("C1", "done", thread_ts=None)
    assert not completion.cancelled
    socket_handler.close_async.assert_awaited_once()


@pytest.mark.asyncio
async def test_in_flight_call_past_grace_period_is_cancelled(fake_app, socket_handler, replier):
    completion = SlowCompletion(delay=10)
    bridge = EventBridge(fake_app, socket_handler, completion, replier, health_check_interval=10)
    supervisor = ProcessSupervisor(bridge, grace_period=0.05, signals=())

    run = asyncio.create_task(supervisor.run())
    await wait_until(lambda: bridge.state is BridgeState.CONNECTED)
    await bridge.handle_event(mention())
    supervisor.request_shutdown(signal.SIGTERM)

    assert await asyncio.wait_for(run, timeout=2) == 0
    assert completion.cancelled
    replier.post_reply.assert_not_called()


def test_concurrency_limits_are_reported(caplog):
    assert usable_cpus() >= 1
    with caplog.at_level("INFO", logger="supervisor"):
        log_concurrency_limits(4)
    assert "max concurrent dispatches=4" in caplog.text
