"""
Cleanup coordination for pipeline resources.

The coordinator is entered before anything is allocated. Resources register
with it as they are created, and leaving the context (normally, on an
exception or on cancellation) terminates whatever is still running and
closes the diagnostic buffers, exactly once.
"""

import asyncio
import os
import signal
from typing import IO, List, Optional

from .models import ProcessHandle, ProcessSide
from ..utils.logging import get_logger


class CleanupCoordinator:
    """Owns the teardown of pipeline processes and diagnostic buffers."""

    def __init__(self, stop_timeout: float = 5.0):
        self.stop_timeout = stop_timeout
        self._handles: List[ProcessHandle] = []
        self._buffers: List[IO[bytes]] = []
        self._terminated = False
        self._released = False
        self.signalled: List[ProcessSide] = []
        self.logger = get_logger(__name__)

    @property
    def released(self) -> bool:
        return self._released

    def track(self, handle: ProcessHandle) -> ProcessHandle:
        """Register a spawned process."""
        self._handles.append(handle)
        if handle.diagnostics not in self._buffers:
            self._buffers.append(handle.diagnostics)
        return handle

    def track_buffer(self, buffer: IO[bytes]) -> IO[bytes]:
        """Register a diagnostic buffer before its process exists."""
        if buffer not in self._buffers:
            self._buffers.append(buffer)
        return buffer

    def terminate(self) -> int:
        """
        Send SIGTERM to the process group of every tracked process still alive.

        Only the first call signals anything. Processes that are already gone
        are skipped silently.

        Returns:
            Number of process groups signalled
        """
        if self._terminated:
            return 0
        self._terminated = True

        count = 0
        for handle in self._handles:
            if handle.returncode is not None:
                continue
            if self._signal_group(handle, signal.SIGTERM):
                self.signalled.append(handle.side)
                count += 1

        if count:
            self.logger.info("Terminated pipeline processes", count=count, sides=[s.value for s in self.signalled])
        return count

    async def reap(self, timeout: Optional[float] = None) -> None:
        """Wait for tracked processes to exit, killing any that outlive timeout."""
        timeout = self.stop_timeout if timeout is None else timeout
        for handle in self._handles:
            if handle.returncode is not None:
                continue
            try:
                await asyncio.wait_for(handle.process.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                self.logger.warning(
                    "Process ignored SIGTERM, killing",
                    side=handle.side.value,
                    pid=handle.pid
                )
                self._signal_group(handle, signal.SIGKILL)
                await handle.process.wait()

    def release(self) -> None:
        """Terminate remaining processes and close all buffers, exactly once."""
        if self._released:
            return
        self._released = True

        self.terminate()
        for buffer in self._buffers:
            if not buffer.closed:
                buffer.close()

        self.logger.debug("Pipeline resources released", buffers=len(self._buffers))

    def _signal_group(self, handle: ProcessHandle, sig: signal.Signals) -> bool:
        # Each pipeline process leads its own session, so its pgid is its pid
        try:
            os.killpg(handle.pid, sig)
        except ProcessLookupError:
            return False
        except PermissionError:
            try:
                handle.process.send_signal(sig)
            except ProcessLookupError:
                return False
        return True

    def __enter__(self) -> "CleanupCoordinator":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False

    async def __aenter__(self) -> "CleanupCoordinator":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        try:
            self.terminate()
            await self.reap()
        finally:
            self.release()
        return False
