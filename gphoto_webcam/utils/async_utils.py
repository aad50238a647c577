"""
Async utilities: signal-driven shutdown coordination and thread-pool helpers.
"""

import asyncio
import functools
import signal
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Callable, List, Optional, Sequence

from .logging import get_logger


class ShutdownStage(Enum):
    """Stages of the shutdown process."""
    RUNNING = "running"
    SHUTDOWN_INITIATED = "shutdown_initiated"
    SHUTDOWN_COMPLETE = "shutdown_complete"


DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class GracefulShutdownManager:
    """
    Turns SIGINT/SIGTERM into an asyncio event.

    Handlers are installed on the running loop with install() and removed
    with uninstall(). The first signal sets the shutdown event; the owner of
    the event decides what to tear down.
    """

    def __init__(self, signals: Sequence[signal.Signals] = DEFAULT_SIGNALS):
        self._signals = tuple(signals)
        self._stage = ShutdownStage.RUNNING
        self._shutdown_event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._installed: List[signal.Signals] = []
        self._previous_handlers = {}
        self.received_signal: Optional[signal.Signals] = None
        self._logger = get_logger(__name__)

    def install(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        """Install signal handlers on the given (or running) event loop."""
        self._loop = loop or asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()
        if self.is_shutting_down:
            self._shutdown_event.set()

        for sig in self._signals:
            try:
                self._loop.add_signal_handler(sig, self.request_shutdown, sig)
            except (NotImplementedError, RuntimeError):
                # Not the main thread, or no loop support for signals
                self._previous_handlers[sig] = signal.signal(
                    sig,
                    lambda signum, frame: self._loop.call_soon_threadsafe(
                        self.request_shutdown, signal.Signals(signum)
                    )
                )
            self._installed.append(sig)

        self._logger.debug("Signal handlers installed", signals=[s.name for s in self._installed])

    def uninstall(self):
        """Remove the handlers installed by install()."""
        for sig in self._installed:
            if sig in self._previous_handlers:
                signal.signal(sig, self._previous_handlers.pop(sig))
            elif self._loop is not None and not self._loop.is_closed():
                self._loop.remove_signal_handler(sig)
        self._installed.clear()

    def request_shutdown(self, sig: Optional[signal.Signals] = None):
        """Mark shutdown as requested. Only the first request has an effect."""
        if self._stage != ShutdownStage.RUNNING:
            self._logger.debug("Shutdown already requested")
            return

        self._stage = ShutdownStage.SHUTDOWN_INITIATED
        self.received_signal = sig
        self._logger.info(
            "Shutdown requested",
            signal=sig.name if sig is not None else None
        )

        if self._shutdown_event is not None:
            self._shutdown_event.set()

    def complete(self):
        """Mark shutdown as complete."""
        self._stage = ShutdownStage.SHUTDOWN_COMPLETE

    @property
    def is_shutting_down(self) -> bool:
        """Check if shutdown is in progress."""
        return self._stage != ShutdownStage.RUNNING

    @property
    def reason(self) -> str:
        """Human readable cause of the shutdown, e.g. "interrupted by SIGINT"."""
        sig = self.received_signal
        return f"interrupted by {sig.name if sig is not None else 'shutdown request'}"

    @property
    def shutdown_stage(self) -> ShutdownStage:
        """Get current shutdown stage."""
        return self._stage

    async def wait_for_shutdown(self):
        """Wait for shutdown to be requested."""
        if self._shutdown_event is None:
            self._shutdown_event = asyncio.Event()
            if self.is_shutting_down:
                self._shutdown_event.set()
        await self._shutdown_event.wait()


def run_in_thread_pool(
    func: Callable,
    *args,
    executor: Optional[ThreadPoolExecutor] = None,
    **kwargs
) -> asyncio.Future:
    """
    Run a blocking function in a thread pool.

    Args:
        func: Function to run
        *args: Function arguments
        executor: Optional custom executor
        **kwargs: Function keyword arguments

    Returns:
        Future representing the result
    """
    loop = asyncio.get_running_loop()
    return loop.run_in_executor(executor, functools.partial(func, *args, **kwargs))
