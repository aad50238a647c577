"""
Pipeline supervision.

Spawns the producer and the consumer connected by an OS pipe, redirects the
diagnostic stream of each into its own temporary buffer, and drives the
pipeline state machine until a terminal state is reached:

    NOT_STARTED -> LAUNCHING -> RUNNING -> SUCCEEDED | FAILED | TERMINATED

The consumer is the last stage, so its exit code is the exit code of the
whole pipeline. A pipeline is never restarted.
"""

import asyncio
import os
import subprocess
import tempfile
from typing import Optional, Sequence

import psutil

from .cleanup import CleanupCoordinator
from .commands import CommandBuilder
from .models import (
    Pipeline, PipelineResult, PipelineState, ProcessHandle, ProcessSide
)
from .monitor import LivenessMonitor, StartedCallback
from ..config import DeviceSpec, PipelineConfig
from ..utils.async_utils import GracefulShutdownManager
from ..utils.logging import get_logger, log_pipeline_event


class PipelineSupervisor:
    """Runs one producer/consumer pipeline from launch to a terminal state."""

    def __init__(
        self,
        command_builder: Optional[CommandBuilder] = None,
        shutdown: Optional[GracefulShutdownManager] = None,
        on_started: Optional[StartedCallback] = None
    ):
        self.command_builder = command_builder or CommandBuilder()
        self.shutdown = shutdown
        self.on_started = on_started
        self.pipeline: Optional[Pipeline] = None
        self.monitor: Optional[LivenessMonitor] = None
        self.logger = get_logger(__name__)

    async def run(
        self,
        config: PipelineConfig,
        device: DeviceSpec,
        cleanup: Optional[CleanupCoordinator] = None
    ) -> PipelineResult:
        """
        Launch and supervise the pipeline.

        Args:
            config: How to invoke the producer and consumer
            device: Target loopback device (already provisioned)
            cleanup: Coordinator owned by the caller; a private one is used when None

        Returns:
            PipelineResult in a terminal state
        """
        if cleanup is None:
            async with CleanupCoordinator(stop_timeout=config.stop_timeout) as own_cleanup:
                return await self._run(config, device, own_cleanup)
        return await self._run(config, device, cleanup)

    async def _run(
        self,
        config: PipelineConfig,
        device: DeviceSpec,
        cleanup: CleanupCoordinator
    ) -> PipelineResult:
        pipeline = Pipeline()
        self.pipeline = pipeline
        self.monitor = LivenessMonitor(
            warmup_seconds=config.warmup_seconds,
            poll_interval=config.poll_interval,
            on_started=self.on_started
        )

        try:
            if self.shutdown is not None and self.shutdown.is_shutting_down:
                self.logger.info("Shutdown requested before launch; not starting pipeline")
                self._transition(pipeline, PipelineState.TERMINATED)
                return PipelineResult(state=PipelineState.TERMINATED, reason=self.shutdown.reason)

            self._transition(pipeline, PipelineState.LAUNCHING)

            producer_buffer = cleanup.track_buffer(tempfile.TemporaryFile(prefix="gphoto-webcam-producer-"))
            consumer_buffer = cleanup.track_buffer(tempfile.TemporaryFile(prefix="gphoto-webcam-consumer-"))

            producer_argv = self.command_builder.producer(config)
            consumer_argv = self.command_builder.consumer(config, device)

            try:
                await self._launch(pipeline, cleanup, producer_argv, consumer_argv,
                                   producer_buffer, consumer_buffer)
            except OSError as e:
                self.logger.error("Failed to launch pipeline", error=str(e))
                cleanup.terminate()
                await cleanup.reap(config.stop_timeout)
                self._transition(pipeline, PipelineState.FAILED)
                return PipelineResult(
                    state=PipelineState.FAILED,
                    reason=f"failed to launch pipeline: {e}",
                    reports=pipeline.drain()
                )

            self._transition(pipeline, PipelineState.RUNNING)

            state, exit_code, reason = await self._supervise(pipeline, grace=config.stop_timeout)

            cleanup.terminate()
            await cleanup.reap(config.stop_timeout)
            reports = pipeline.drain()

            self._transition(pipeline, state)
            return PipelineResult(
                state=state,
                exit_code=exit_code,
                reason=reason,
                reports=reports,
                started=self.monitor.started
            )
        finally:
            if not pipeline.state.is_terminal:
                self._transition(pipeline, PipelineState.TERMINATED)

    async def _launch(
        self,
        pipeline: Pipeline,
        cleanup: CleanupCoordinator,
        producer_argv: Sequence[str],
        consumer_argv: Sequence[str],
        producer_buffer,
        consumer_buffer
    ) -> None:
        """Spawn producer then consumer, joined producer stdout -> consumer stdin."""
        read_fd, write_fd = os.pipe()
        try:
            producer = await asyncio.create_subprocess_exec(
                *producer_argv,
                stdin=subprocess.DEVNULL,
                stdout=write_fd,
                stderr=producer_buffer,
                start_new_session=True
            )
            pipeline.producer = cleanup.track(
                self._handle(ProcessSide.PRODUCER, producer, producer_buffer)
            )
            log_pipeline_event(self.logger, "spawned", side="producer", pid=producer.pid,
                               argv=list(producer_argv))

            consumer = await asyncio.create_subprocess_exec(
                *consumer_argv,
                stdin=read_fd,
                stdout=subprocess.DEVNULL,
                stderr=consumer_buffer,
                start_new_session=True
            )
            pipeline.consumer = cleanup.track(
                self._handle(ProcessSide.CONSUMER, consumer, consumer_buffer)
            )
            log_pipeline_event(self.logger, "spawned", side="consumer", pid=consumer.pid,
                               argv=list(consumer_argv))
        finally:
            # The children hold their own copies; the supervisor must not keep
            # either end open or the consumer never sees end-of-stream.
            os.close(read_fd)
            os.close(write_fd)

    def _handle(self, side: ProcessSide, process, buffer) -> ProcessHandle:
        try:
            identity = psutil.Process(process.pid)
        except psutil.NoSuchProcess:
            identity = None
        return ProcessHandle(side=side, process=process, diagnostics=buffer, identity=identity)

    async def _supervise(self, pipeline: Pipeline, grace: float):
        """
        Wait for the consumer to exit, the monitor to see a process die, or a
        shutdown request, whichever comes first, and classify the outcome.

        When the producer is the one found dead the consumer is given grace
        seconds to reach end-of-stream and exit on its own.
        """
        consumer = pipeline.consumer
        waiter = asyncio.ensure_future(consumer.process.wait())
        watcher = asyncio.ensure_future(self.monitor.run(pipeline.handles))
        tasks = {waiter, watcher}
        stopper = None
        if self.shutdown is not None:
            stopper = asyncio.ensure_future(self.shutdown.wait_for_shutdown())
            tasks.add(stopper)

        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        if watcher in done and watcher.exception() is not None:
            raise watcher.exception()

        if stopper is not None and stopper in done and waiter not in done:
            return PipelineState.TERMINATED, consumer.returncode, self.shutdown.reason

        if waiter not in done:
            dead = watcher.result()
            if dead is consumer:
                # Seen dead before its exit status arrived
                await consumer.process.wait()
            else:
                try:
                    await asyncio.wait_for(consumer.process.wait(), timeout=grace)
                except asyncio.TimeoutError:
                    self.logger.warning(
                        "Consumer still running after producer exit",
                        producer_returncode=dead.returncode
                    )

        return self._classify(pipeline, watcher.result() if watcher in done else None)

    def _classify(self, pipeline: Pipeline, dead: Optional[ProcessHandle]):
        consumer = pipeline.consumer
        exit_code = consumer.returncode

        if exit_code is None:
            side = dead.side.value if dead is not None else "pipeline"
            return (
                PipelineState.TERMINATED,
                None,
                f"{side} process exited while the consumer was still running"
            )
        if exit_code < 0:
            return (
                PipelineState.TERMINATED,
                exit_code,
                f"consumer killed by signal {-exit_code}"
            )
        if exit_code == 0:
            return PipelineState.SUCCEEDED, 0, None
        return PipelineState.FAILED, exit_code, f"consumer exited with code {exit_code}"

    def _transition(self, pipeline: Pipeline, state: PipelineState) -> None:
        previous = pipeline.state
        pipeline.transition(state)
        log_pipeline_event(self.logger, "state_changed", state=state.value, previous=previous.value)

