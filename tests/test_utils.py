"""
Tests for utilities: error taxonomy, command execution and shutdown handling.
"""

import asyncio
import signal
import sys

import pytest

from gphoto_webcam.utils.async_utils import (
    GracefulShutdownManager, ShutdownStage, run_in_thread_pool
)
from gphoto_webcam.utils.commands import (
    COMMAND_NOT_FOUND, check_dependencies, find_missing, find_tool, run_command
)
from gphoto_webcam.utils.errors import (
    ArgumentInvalidError,
    CameraNotDetectedError,
    ConfigurationError,
    DependencyMissingError,
    DeviceError,
    ErrorCategory,
    ModuleMissingError,
    PipelineError,
    PipelineFailedError,
    PipelineTerminatedError,
    ProvisioningFailedError,
    ProvisioningVerificationFailedError,
    WebcamError,
    handle_error
)


class TestErrors:
    """Test the error taxonomy."""

    @pytest.mark.parametrize("error", [
        ArgumentInvalidError("bad option", argument="device"),
        DependencyMissingError(["ffmpeg"]),
        CameraNotDetectedError("No camera detected"),
        ModuleMissingError("no module", module="v4l2loopback"),
        ProvisioningFailedError("modprobe failed", returncode=1),
        ProvisioningVerificationFailedError("no node"),
        PipelineFailedError("failed", exit_code=1),
        PipelineTerminatedError("terminated", reason="interrupted by SIGINT"),
    ])
    def test_every_error_exits_1(self, error):
        """Test every error kind maps to exit status 1."""
        assert isinstance(error, WebcamError)
        assert error.exit_code == 1

    def test_hierarchy(self):
        """Test category bases of the taxonomy."""
        assert issubclass(ArgumentInvalidError, ConfigurationError)
        assert issubclass(ModuleMissingError, DeviceError)
        assert issubclass(ProvisioningFailedError, DeviceError)
        assert issubclass(ProvisioningVerificationFailedError, DeviceError)
        assert not issubclass(ProvisioningVerificationFailedError, ProvisioningFailedError)
        assert issubclass(PipelineFailedError, PipelineError)
        assert issubclass(PipelineTerminatedError, PipelineError)

    def test_dependency_error_lists_all_missing(self):
        """Test all missing tools are named together."""
        error = DependencyMissingError(["gphoto2", "ffmpeg"])

        assert str(error) == "Missing required dependencies: gphoto2, ffmpeg"
        assert error.category == ErrorCategory.DEPENDENCY
        assert error.context['missing'] == ["gphoto2", "ffmpeg"]

    def test_to_dict(self):
        """Test errors serialize with their context."""
        error = ProvisioningFailedError("modprobe failed", returncode=1, stderr="FATAL",
                                        device_path="/dev/video2")

        data = error.to_dict()

        assert data['error_type'] == "ProvisioningFailedError"
        assert data['category'] == "device"
        assert data['context']['returncode'] == 1
        assert data['context']['device_path'] == "/dev/video2"

    def test_handle_error(self):
        """Test foreign exceptions are wrapped and ours pass through."""
        original = PipelineFailedError("failed")
        assert handle_error(original) is original

        wrapped = handle_error(OSError("disk on fire"), context={'operation': 'pipeline'})
        assert isinstance(wrapped, WebcamError)
        assert wrapped.original_exception.args == ("disk on fire",)
        assert wrapped.context['operation'] == 'pipeline'
        assert "disk on fire" in str(wrapped)


class TestCommands:
    """Test external command execution."""

    def test_run_command_captures_output(self):
        """Test stdout, stderr and exit status are captured."""
        result = run_command([
            sys.executable, "-c",
            "import sys; print('out'); sys.stderr.write('err'); sys.exit(3)"
        ])

        assert result.returncode == 3
        assert not result.ok
        assert result.stdout.strip() == "out"
        assert result.stderr == "err"

    def test_run_command_missing_executable(self, temp_dir):
        """Test a missing executable reports status 127."""
        result = run_command([str(temp_dir / "no-such-tool"), "--version"])

        assert result.returncode == COMMAND_NOT_FOUND

    def test_find_missing(self):
        """Test only absent tools are returned, once each, in order."""
        missing = find_missing([sys.executable, "no-such-tool-a", "no-such-tool-b", "no-such-tool-a"])

        assert missing == ["no-such-tool-a", "no-such-tool-b"]

    def test_find_tool_falls_back_to_system_dirs(self, monkeypatch, temp_dir):
        """Test tools outside PATH are found in the fallback directories."""
        tool = temp_dir / "modinfo"
        tool.write_text("#!/bin/sh\nexit 0\n")
        tool.chmod(0o755)
        monkeypatch.setenv("PATH", "/nonexistent")

        assert find_tool("modinfo", fallback_dirs=[str(temp_dir)]) == str(tool)
        assert find_tool("no-such-tool", fallback_dirs=[str(temp_dir)]) is None

    def test_check_dependencies(self):
        """Test all missing tools are reported in one error."""
        check_dependencies([sys.executable])

        with pytest.raises(DependencyMissingError) as exc_info:
            check_dependencies(["no-such-tool-a", sys.executable, "no-such-tool-b"])

        assert exc_info.value.missing == ["no-such-tool-a", "no-such-tool-b"]


class TestGracefulShutdownManager:
    """Test signal-driven shutdown coordination."""

    @pytest.mark.asyncio
    async def test_first_request_wins(self):
        """Test only the first shutdown request is recorded."""
        shutdown = GracefulShutdownManager()

        shutdown.request_shutdown(signal.SIGTERM)
        shutdown.request_shutdown(signal.SIGINT)

        assert shutdown.is_shutting_down
        assert shutdown.received_signal == signal.SIGTERM
        assert shutdown.reason == "interrupted by SIGTERM"
        await asyncio.wait_for(shutdown.wait_for_shutdown(), timeout=1)

    @pytest.mark.asyncio
    async def test_signal_sets_event(self):
        """Test a delivered signal wakes the waiter."""
        shutdown = GracefulShutdownManager(signals=(signal.SIGUSR1,))
        shutdown.install()
        try:
            waiter = asyncio.ensure_future(shutdown.wait_for_shutdown())
            await asyncio.sleep(0)
            signal.raise_signal(signal.SIGUSR1)
            await asyncio.wait_for(waiter, timeout=2)
        finally:
            shutdown.uninstall()

        assert shutdown.received_signal == signal.SIGUSR1
        shutdown.complete()
        assert shutdown.shutdown_stage == ShutdownStage.SHUTDOWN_COMPLETE

    @pytest.mark.asyncio
    async def test_run_in_thread_pool(self):
        """Test blocking functions run off the event loop."""
        result = await run_in_thread_pool(sorted, [3, 1, 2], reverse=True)

        assert result == [3, 2, 1]
