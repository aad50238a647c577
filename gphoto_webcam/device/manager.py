"""
Virtual video device provisioning.

Ensures a v4l2loopback device node exists at the requested index, loading
the kernel module through a privileged helper when it does not, and
verifying that the node actually appeared afterwards.
"""

from pathlib import Path
from typing import Callable, List, Optional

from ..config import DEFAULT_DEVICE_ROOT, DeviceSpec, LoopbackConfig
from ..utils.commands import CommandResult, CommandRunner, find_tool, run_command
from ..utils.errors import (
    DependencyMissingError, ModuleMissingError, ProvisioningFailedError, ProvisioningVerificationFailedError
)
from ..utils.logging import get_logger


class DeviceManager:
    """
    Provisions the loopback device for one run.

    The privileged creation command is attempted at most once per instance:
    a later call that still finds no node reports a verification failure
    instead of loading the module again.
    """

    def __init__(
        self,
        loopback: Optional[LoopbackConfig] = None,
        runner: CommandRunner = run_command,
        device_root: Path = DEFAULT_DEVICE_ROOT,
        tool_resolver: Callable[[str], Optional[str]] = find_tool
    ):
        self.loopback = loopback or LoopbackConfig()
        self.device_root = Path(device_root)
        self._runner = runner
        self._resolve_tool = tool_resolver
        self._creation_attempts = 0
        self.logger = get_logger(__name__)

    @property
    def creation_attempts(self) -> int:
        return self._creation_attempts

    def device_path(self, spec: DeviceSpec) -> Path:
        return self.device_root / spec.node_name

    def device_exists(self, spec: DeviceSpec) -> bool:
        return self.device_path(spec).exists()

    def module_available(self) -> bool:
        """
        Check whether the loopback kernel module can be loaded.

        Raises:
            DependencyMissingError: modinfo is neither on PATH nor in the sbin directories
        """
        modinfo = self._resolve_tool("modinfo")
        if modinfo is None:
            raise DependencyMissingError(["modinfo"])
        result = self._runner([modinfo, self.loopback.module])
        return result.ok

    def creation_command(self, spec: DeviceSpec) -> List[str]:
        """Build the privileged modprobe command line for spec."""
        return [
            self.loopback.privilege_helper,
            "modprobe",
            self.loopback.module,
            f"exclusive_caps={1 if self.loopback.exclusive_caps else 0}",
            f"max_buffers={self.loopback.max_buffers}",
            f"card_label={spec.label}",
            f"video_nr={spec.index}",
        ]

    def ensure_device(self, spec: DeviceSpec) -> Path:
        """
        Make sure the device node for spec exists.

        Returns:
            Path of the device node

        Raises:
            DependencyMissingError: modinfo cannot be found
            ModuleMissingError: the loopback module is not installed
            ProvisioningFailedError: the creation command reported failure
            ProvisioningVerificationFailedError: creation succeeded but no node appeared
        """
        path = self.device_path(spec)

        if not self.module_available():
            raise ModuleMissingError(
                f"Kernel module {self.loopback.module} is not available; install it first",
                module=self.loopback.module,
                device_path=str(path)
            )

        if path.exists():
            self.logger.info("Video device already exists", device=str(path))
            return path

        if self._creation_attempts:
            raise ProvisioningVerificationFailedError(
                f"Video device {path} is missing after an earlier creation attempt",
                device_path=str(path)
            )

        self.logger.info("Creating video device", device=str(path), label=spec.label)
        self._creation_attempts += 1
        result = self._runner(self.creation_command(spec))
        self._check_creation(result, path)

        if not path.exists():
            raise ProvisioningVerificationFailedError(
                f"Video device {path} was not created; the {self.loopback.module} module "
                f"may already be loaded with other devices",
                device_path=str(path)
            )

        self.logger.info("Video device created", device=str(path))
        return path

    def _check_creation(self, result: CommandResult, path: Path) -> None:
        if result.ok:
            return
        stderr = result.stderr.strip() or None
        raise ProvisioningFailedError(
            f"Failed to create video device {path}" + (f": {stderr}" if stderr else ""),
            returncode=result.returncode,
            stderr=stderr,
            device_path=str(path)
        )
