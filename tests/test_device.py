"""
Tests for virtual video device provisioning.

The kernel module and the privileged helper are replaced by a recording
command runner; device nodes are plain files in a temporary /dev.
"""

import pytest

from gphoto_webcam.config import DeviceSpec, LoopbackConfig
from gphoto_webcam.device import DeviceManager
from gphoto_webcam.utils.commands import find_tool
from gphoto_webcam.utils.errors import (
    DependencyMissingError,
    DeviceError,
    ModuleMissingError,
    ProvisioningFailedError,
    ProvisioningVerificationFailedError
)

from tests.conftest import on_path


def creates_node(device_root):
    """Hook that makes modprobe create the requested /dev/videoN node."""
    def hook(argv):
        index = next(arg for arg in argv if arg.startswith("video_nr=")).split("=", 1)[1]
        (device_root / f"video{index}").touch()
    return hook


class TestDeviceManager:
    """Test device node provisioning."""

    def test_existing_device_has_no_side_effects(self, fake_runner, device_root):
        """Test an existing node is returned without any creation attempt."""
        (device_root / "video5").touch()
        manager = DeviceManager(runner=fake_runner, device_root=device_root, tool_resolver=on_path)

        path = manager.ensure_device(DeviceSpec(index=5))

        assert path == device_root / "video5"
        assert manager.creation_attempts == 0
        assert fake_runner.calls_to("sudo") == []

    def test_creates_missing_device_once(self, fake_runner, device_root):
        """Test a missing node is created with exactly one privileged command."""
        fake_runner.on(("sudo", "modprobe"), creates_node(device_root))
        manager = DeviceManager(runner=fake_runner, device_root=device_root, tool_resolver=on_path)

        path = manager.ensure_device(DeviceSpec(index=2))

        assert path == device_root / "video2"
        assert path.exists()
        assert manager.creation_attempts == 1
        assert fake_runner.calls_to("sudo") == [[
            "sudo", "modprobe", "v4l2loopback",
            "exclusive_caps=1", "max_buffers=2",
            "card_label=GPhoto2 Webcam", "video_nr=2",
        ]]

    @pytest.mark.parametrize("index", [0, 1, 2, 7, 63])
    def test_ensure_device_is_idempotent(self, fake_runner, device_root, index):
        """Test repeated calls succeed and never create the device twice."""
        fake_runner.on(("sudo", "modprobe"), creates_node(device_root))
        manager = DeviceManager(runner=fake_runner, device_root=device_root, tool_resolver=on_path)
        spec = DeviceSpec(index=index)

        first = manager.ensure_device(spec)
        second = manager.ensure_device(spec)

        assert first == second == device_root / f"video{index}"
        assert len(fake_runner.calls_to("sudo", "modprobe")) == 1

    def test_creation_command_failure(self, fake_runner, device_root):
        """Test a failing creation command raises ProvisioningFailedError."""
        fake_runner.respond(("sudo", "modprobe"), returncode=1,
                            stderr="modprobe: ERROR: could not insert 'v4l2loopback'\n")
        manager = DeviceManager(runner=fake_runner, device_root=device_root, tool_resolver=on_path)

        with pytest.raises(ProvisioningFailedError, match="could not insert") as exc_info:
            manager.ensure_device(DeviceSpec(index=2))

        error = exc_info.value
        assert error.returncode == 1
        assert error.stderr == "modprobe: ERROR: could not insert 'v4l2loopback'"
        assert error.device_path == str(device_root / "video2")
        assert error.exit_code == 1

    def test_verification_failure(self, fake_runner, device_root):
        """Test a successful command that leaves no node is a verification failure."""
        manager = DeviceManager(runner=fake_runner, device_root=device_root, tool_resolver=on_path)

        with pytest.raises(ProvisioningVerificationFailedError) as exc_info:
            manager.ensure_device(DeviceSpec(index=2))

        assert not isinstance(exc_info.value, ProvisioningFailedError)
        assert isinstance(exc_info.value, DeviceError)
        assert manager.creation_attempts == 1

    def test_no_second_creation_after_failed_verification(self, fake_runner, device_root):
        """Test a later call does not retry the privileged command."""
        manager = DeviceManager(runner=fake_runner, device_root=device_root, tool_resolver=on_path)
        spec = DeviceSpec(index=4)

        with pytest.raises(ProvisioningVerificationFailedError):
            manager.ensure_device(spec)
        with pytest.raises(ProvisioningVerificationFailedError, match="earlier creation attempt"):
            manager.ensure_device(spec)

        assert len(fake_runner.calls_to("sudo", "modprobe")) == 1

    def test_module_missing(self, fake_runner, device_root):
        """Test a missing kernel module fails before anything is created."""
        fake_runner.respond(("modinfo",), returncode=1, stderr="modinfo: ERROR: Module v4l2loopback not found.")
        manager = DeviceManager(runner=fake_runner, device_root=device_root, tool_resolver=on_path)

        with pytest.raises(ModuleMissingError) as exc_info:
            manager.ensure_device(DeviceSpec(index=0))

        assert exc_info.value.module == "v4l2loopback"
        assert fake_runner.calls_to("sudo") == []

    def test_module_check_runs_modinfo(self, fake_runner, device_root):
        """Test module availability is probed with modinfo."""
        manager = DeviceManager(runner=fake_runner, device_root=device_root, tool_resolver=on_path)

        assert manager.module_available() is True
        assert fake_runner.calls == [["modinfo", "v4l2loopback"]]

    def test_modinfo_outside_path(self, monkeypatch, temp_dir, device_root):
        """Test modinfo is found in the sbin directories when PATH lacks them."""
        sbin = temp_dir / "sbin"
        sbin.mkdir()
        modinfo = sbin / "modinfo"
        modinfo.write_text("#!/bin/sh\nexit 0\n")
        modinfo.chmod(0o755)
        (device_root / "video5").touch()
        monkeypatch.setenv("PATH", "/nonexistent")

        manager = DeviceManager(
            device_root=device_root,
            tool_resolver=lambda name: find_tool(name, fallback_dirs=[str(sbin)])
        )

        assert manager.ensure_device(DeviceSpec(index=5)) == device_root / "video5"
        assert manager.creation_attempts == 0

    def test_missing_modinfo_is_a_dependency_error(self, monkeypatch, temp_dir, device_root):
        """Test an unlocatable modinfo is not reported as a missing kernel module."""
        (device_root / "video5").touch()
        monkeypatch.setenv("PATH", "/nonexistent")

        manager = DeviceManager(
            device_root=device_root,
            tool_resolver=lambda name: find_tool(name, fallback_dirs=[str(temp_dir)])
        )

        with pytest.raises(DependencyMissingError) as exc_info:
            manager.ensure_device(DeviceSpec(index=5))

        assert not isinstance(exc_info.value, ModuleMissingError)
        assert exc_info.value.missing == ["modinfo"]

    def test_creation_command_follows_loopback_config(self, device_root):
        """Test module options and label are passed through."""
        manager = DeviceManager(
            loopback=LoopbackConfig(exclusive_caps=False, max_buffers=4, privilege_helper="doas"),
            device_root=device_root
        )

        argv = manager.creation_command(DeviceSpec(index=9, label="Studio Cam"))

        assert argv == [
            "doas", "modprobe", "v4l2loopback",
            "exclusive_caps=0", "max_buffers=4",
            "card_label=Studio Cam", "video_nr=9",
        ]
