"""
Main gphoto-webcam application with lifecycle management and dependency injection.

This module orchestrates one run of the program: dependency checks, camera
detection, virtual device provisioning and pipeline supervision, in that
order. Each step must succeed before the next one starts, and a finished
pipeline that did not succeed is turned into the matching exception.
"""

import atexit
import time
from enum import Enum
from pathlib import Path
from typing import List, Optional

from .camera import CameraDetector, DetectedCamera
from .config import AppConfig
from .device import DeviceManager
from .pipeline import (
    CleanupCoordinator,
    PipelineResult,
    PipelineState,
    PipelineSupervisor,
    ProcessHandle
)
from .pipeline.monitor import StartedCallback
from .utils.async_utils import GracefulShutdownManager, run_in_thread_pool
from .utils.commands import CommandRunner, check_dependencies, run_command
from .utils.errors import (
    PipelineFailedError,
    PipelineTerminatedError,
    WebcamError,
    handle_error
)
from .utils.logging import (
    LogFormat,
    LogLevel,
    LoggingConfig as LoggerSettings,
    WebcamLogger,
    get_logger,
    log_error_with_context,
    setup_logging
)


class ApplicationState(Enum):
    """Application lifecycle states."""
    CREATED = "created"
    CHECKING = "checking"
    PROVISIONING = "provisioning"
    STREAMING = "streaming"
    STOPPED = "stopped"
    ERROR = "error"


def configure_logging(config: AppConfig, level: Optional[str] = None) -> WebcamLogger:
    """
    Configure logging from the logging section of the application config.

    Args:
        config: Application configuration
        level: Level name overriding the configured one
    """
    settings = config.logging
    return setup_logging(LoggerSettings(
        level=LogLevel((level or settings.level.value).lower()),
        format=LogFormat(settings.format),
        log_file=settings.log_file,
        max_file_size_mb=settings.max_file_size_mb,
        backup_count=settings.backup_count,
        console_output=settings.console_output
    ))


class WebcamApp:
    """
    Runs the virtual webcam once, from dependency check to pipeline exit.

    Collaborators are injectable so the orchestration can be exercised
    without real cameras or kernel modules.
    """

    def __init__(
        self,
        config: AppConfig,
        device_manager: Optional[DeviceManager] = None,
        camera_detector: Optional[CameraDetector] = None,
        supervisor: Optional[PipelineSupervisor] = None,
        shutdown: Optional[GracefulShutdownManager] = None,
        on_started: Optional[StartedCallback] = None,
        runner: CommandRunner = run_command
    ):
        """
        Initialize the application.

        Args:
            config: Validated application configuration
            device_manager: Device Manager; built from config when None
            camera_detector: Camera detector; built from config when None
            supervisor: Pipeline Supervisor; built from config when None
            shutdown: Signal-driven shutdown manager
            on_started: Called once when the pipeline survives its warm-up
            runner: Command runner used by the default collaborators
        """
        self.config = config
        self.shutdown = shutdown or GracefulShutdownManager()
        self.device_manager = device_manager or DeviceManager(loopback=config.loopback, runner=runner)
        self.camera_detector = camera_detector or CameraDetector(
            binary=config.pipeline.producer_binary,
            runner=runner
        )
        self._on_started = on_started
        self.supervisor = supervisor or PipelineSupervisor(shutdown=self.shutdown)
        if self.supervisor.shutdown is None:
            self.supervisor.shutdown = self.shutdown
        self.supervisor.on_started = self._started

        self._state = ApplicationState.CREATED
        self._start_time: Optional[float] = None
        self.camera: Optional[DetectedCamera] = None
        self.device_path: Optional[Path] = None
        self.result: Optional[PipelineResult] = None
        self.cleanup: Optional[CleanupCoordinator] = None

        self.logger = get_logger(__name__)

    @property
    def state(self) -> ApplicationState:
        return self._state

    @property
    def uptime_seconds(self) -> float:
        if self._start_time is None:
            return 0.0
        return time.time() - self._start_time

    async def run(self) -> PipelineResult:
        """
        Run the webcam until the pipeline reaches a terminal state.

        Returns:
            The pipeline result (always Succeeded)

        Raises:
            DependencyMissingError: required tools are not installed
            CameraNotDetectedError: no (matching) camera is connected
            DeviceError: the virtual device could not be provisioned
            PipelineFailedError: the consumer exited non-zero
            PipelineTerminatedError: the pipeline was killed or interrupted
        """
        self._start_time = time.time()
        self.shutdown.install()

        # Entered before anything is allocated so every exit path releases
        cleanup = CleanupCoordinator(stop_timeout=self.config.pipeline.stop_timeout)
        self.cleanup = cleanup
        atexit.register(cleanup.release)

        try:
            async with cleanup:
                self._set_state(ApplicationState.CHECKING)
                check_dependencies(self.config.required_tools)
                if self.config.pipeline.auto_detect:
                    self.camera = await run_in_thread_pool(
                        self.camera_detector.require,
                        self.config.pipeline.camera
                    )
                    self.logger.info("Camera detected", model=self.camera.model, port=self.camera.port)
                    self._check_shutdown()

                self._set_state(ApplicationState.PROVISIONING)
                self.device_path = await run_in_thread_pool(
                    self.device_manager.ensure_device,
                    self.config.device
                )
                self._check_shutdown()

                self._set_state(ApplicationState.STREAMING)
                self.result = await self.supervisor.run(
                    self.config.pipeline,
                    self.config.device,
                    cleanup=cleanup
                )
        except WebcamError as e:
            operation = self._failed_operation()
            self._set_state(ApplicationState.ERROR)
            log_error_with_context(self.logger, e, operation, category=e.category.value)
            raise
        except OSError as e:
            operation = self._failed_operation()
            self._set_state(ApplicationState.ERROR)
            raise handle_error(e, context={"operation": operation})
        finally:
            atexit.unregister(cleanup.release)
            self.shutdown.uninstall()
            self.shutdown.complete()

        self._raise_for_result(self.result)
        self._set_state(ApplicationState.STOPPED)
        self.logger.info("Webcam stopped", uptime=round(self.uptime_seconds, 1))
        return self.result

    def _raise_for_result(self, result: PipelineResult) -> None:
        if result.state == PipelineState.SUCCEEDED:
            return

        self._set_state(ApplicationState.ERROR)
        if result.state == PipelineState.FAILED:
            raise PipelineFailedError(
                f"Pipeline failed: {result.reason}",
                exit_code=result.exit_code,
                reports=result.surfaced_reports
            )
        raise PipelineTerminatedError(
            f"Pipeline terminated: {result.reason}",
            reason=result.reason,
            reports=result.surfaced_reports
        )

    def _check_shutdown(self) -> None:
        """Stop between steps once a signal has arrived."""
        if self.shutdown.is_shutting_down:
            raise PipelineTerminatedError(
                f"Pipeline terminated: {self.shutdown.reason}",
                reason=self.shutdown.reason
            )

    def _started(self, handles: List[ProcessHandle]) -> None:
        self.logger.info(
            "Webcam started successfully",
            device=str(self.device_path) if self.device_path else None
        )
        if self._on_started is not None:
            self._on_started(handles)

    def _failed_operation(self) -> str:
        return {
            ApplicationState.CHECKING: "dependency_check",
            ApplicationState.PROVISIONING: "device_provisioning",
            ApplicationState.STREAMING: "pipeline",
        }.get(self._state, self._state.value)

    def _set_state(self, state: ApplicationState) -> None:
        if state != self._state:
            self.logger.debug("Application state changed", previous=self._state.value, state=state.value)
        self._state = state
