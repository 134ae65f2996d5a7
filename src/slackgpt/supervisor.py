"""
Process supervisor: starts the event bridge once and decides how the process ends.

Whichever comes first wins:
- the bridge task finishes (fatal error) -> exit status 1
- SIGINT/SIGTERM -> graceful shutdown bounded by the grace period -> exit status 0
"""
import asyncio
import os
import signal
from typing import Optional, Sequence

from .log import get_logger

logger = get_logger("supervisor")

DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def usable_cpus() -> int:
    if hasattr(os, "sched_getaffinity"):
        return len(os.sched_getaffinity(0))
    return os.cpu_count() or 1


def log_concurrency_limits(max_dispatches: int):
    logger.info(f"startup: usable CPUs={usable_cpus()}, max concurrent dispatches={max_dispatches}")


class ProcessSupervisor:
    def __init__(self, bridge, *, grace_period: float = 10.0, signals: Sequence[int] = DEFAULT_SIGNALS):
        self.bridge = bridge
        self.grace_period = grace_period
        self.signals = tuple(signals)
        self._shutdown: Optional[asyncio.Future] = None
        self._installed = []

    def request_shutdown(self, sig: int = signal.SIGTERM):
        """Start a graceful shutdown. Only the first request counts."""
        if self._shutdown is None or self._shutdown.done():
            logger.warning(f"Shutdown already in progress, ignoring {_signal_name(sig)}")
            return
        self._shutdown.set_result(sig)

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop):
        for sig in self.signals:
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig)
            except NotImplementedError:
                # No add_signal_handler on Windows event loops.
                signal.signal(sig, lambda signum, frame: loop.call_soon_threadsafe(self.request_shutdown, signum))
            self._installed.append(sig)

    def _remove_signal_handlers(self, loop: asyncio.AbstractEventLoop):
        for sig in self._installed:
            try:
                loop.remove_signal_handler(sig)
            except NotImplementedError:
                signal.signal(sig, signal.SIG_DFL)
        self._installed = []

    async def run(self) -> int:
        """Run the bridge until a fatal error or a shutdown signal. Returns the exit status."""
        loop = asyncio.get_running_loop()
        self._shutdown = loop.create_future()
        # Armed before the bridge starts so an early signal is not lost.
        self._install_signal_handlers(loop)

        stop = asyncio.Event()
        bridge_task = asyncio.create_task(self.bridge.run(stop), name="event-bridge")
        logger.info("startup: slack event bridge started")
        try:
            await asyncio.wait({bridge_task, self._shutdown}, return_when=asyncio.FIRST_COMPLETED)
            if bridge_task.done():
                return await self._fail(bridge_task)
            return await self._graceful_shutdown(self._shutdown.result(), stop, bridge_task)
        finally:
            self._remove_signal_handlers(loop)
            if not self._shutdown.done():
                self._shutdown.cancel()

    async def _fail(self, bridge_task: asyncio.Task) -> int:
        exc = None if bridge_task.cancelled() else bridge_task.exception()
        if exc is not None:
            logger.error(f"handler error: {exc}", exc_info=exc)
        else:
            logger.error("handler error: event bridge stopped without a shutdown request")
        await self.bridge.drain(0)
        return 1

    async def _graceful_shutdown(self, sig: int, stop: asyncio.Event, bridge_task: asyncio.Task) -> int:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.grace_period
        logger.info(f"shutdown: started (signal={_signal_name(sig)}, grace period={self.grace_period:.1f}s)")

        stop.set()
        try:
            await asyncio.wait_for(bridge_task, timeout=max(0.0, deadline - loop.time()))
        except asyncio.TimeoutError:
            logger.warning("shutdown: socket did not close within the grace period")
        except Exception:
            logger.exception("shutdown: event bridge failed while closing")

        await self.bridge.drain(max(0.0, deadline - loop.time()))
        logger.info(f"shutdown: complete (signal={_signal_name(sig)})")
        return 0


def _signal_name(sig) -> str:
    try:
        return signal.Signals(sig).name
    except ValueError:
        return str(sig)
