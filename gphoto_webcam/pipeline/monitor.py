"""
Liveness monitoring for the running pipeline.

After a warm-up grace period the monitor checks once that every process is
still alive and reports a one-shot "started" notification. It then keeps
polling until one of the processes disappears, which is how a pipeline that
was killed from outside is noticed.
"""

import asyncio
from typing import Callable, List, Optional, Sequence

from .models import ProcessHandle
from ..utils.logging import get_logger


StartedCallback = Callable[[List[ProcessHandle]], None]


class LivenessMonitor:
    """Warm-up check followed by an indefinite liveness poll."""

    def __init__(
        self,
        warmup_seconds: float = 5.0,
        poll_interval: float = 1.0,
        on_started: Optional[StartedCallback] = None
    ):
        self.warmup_seconds = warmup_seconds
        self.poll_interval = poll_interval
        self._on_started = on_started
        self._started_notified = False
        self.logger = get_logger(__name__)

    @property
    def started(self) -> bool:
        """Whether the started notification has fired."""
        return self._started_notified

    async def await_startup(self, handles: Sequence[ProcessHandle]) -> bool:
        """
        Wait out the warm-up interval and check every process is still alive.

        Returns:
            True if all processes survived the warm-up
        """
        await asyncio.sleep(self.warmup_seconds)

        alive = bool(handles) and all(handle.is_alive() for handle in handles)
        if not alive:
            dead = [h.side.value for h in handles if not h.is_alive()]
            self.logger.warning("Pipeline did not survive warm-up", dead=dead)
            return False

        if not self._started_notified:
            self._started_notified = True
            self.logger.info(
                "Pipeline started successfully",
                pids={h.side.value: h.pid for h in handles}
            )
            if self._on_started is not None:
                self._on_started(list(handles))

        return True

    async def watch(self, handles: Sequence[ProcessHandle]) -> ProcessHandle:
        """
        Poll until a process is gone.

        Returns:
            The first handle found dead
        """
        if not handles:
            raise ValueError("No pipeline processes to watch")

        while True:
            for handle in handles:
                if not handle.is_alive():
                    self.logger.info(
                        "Pipeline process is gone",
                        side=handle.side.value,
                        pid=handle.pid,
                        returncode=handle.returncode
                    )
                    return handle
            await asyncio.sleep(self.poll_interval)

    async def run(self, handles: Sequence[ProcessHandle]) -> ProcessHandle:
        """Warm-up check, then watch until a process dies."""
        await self.await_startup(handles)
        return await self.watch(handles)
