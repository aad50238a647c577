"""
Camera auto-detection through `gphoto2 --auto-detect`.
"""

import re
from dataclasses import dataclass
from typing import List, Optional

from .utils.commands import CommandRunner, run_command
from .utils.errors import CameraNotDetectedError, DependencyMissingError
from .utils.logging import get_logger


logger = get_logger(__name__)

_COLUMN_GAP = re.compile(r"\s{2,}")


@dataclass(frozen=True)
class DetectedCamera:
    """A camera listed by gphoto2."""
    model: str
    port: str


def parse_auto_detect(output: str) -> List[DetectedCamera]:
    """
    Parse the table printed by `gphoto2 --auto-detect`.

    The table has a "Model   Port" header followed by a dashed rule; every
    non-blank line after the rule is one camera, with the model and port
    separated by at least two spaces.
    """
    cameras = []
    in_table = False

    for line in output.splitlines():
        stripped = line.strip()
        if not in_table:
            if stripped.startswith('---'):
                in_table = True
            continue
        if not stripped:
            continue

        parts = _COLUMN_GAP.split(stripped)
        if len(parts) >= 2:
            cameras.append(DetectedCamera(model=' '.join(parts[:-1]), port=parts[-1]))
        else:
            cameras.append(DetectedCamera(model=parts[0], port=""))

    return cameras


class CameraDetector:
    """Lists connected cameras and resolves the configured selector."""

    def __init__(self, binary: str = "gphoto2", runner: CommandRunner = run_command):
        self.binary = binary
        self._runner = runner

    def detect(self) -> List[DetectedCamera]:
        """Return every camera gphoto2 can see."""
        result = self._runner([self.binary, "--auto-detect"])
        if result.returncode == 127:
            raise DependencyMissingError([self.binary])
        if not result.ok:
            raise CameraNotDetectedError(
                f"Camera detection failed: {result.stderr.strip() or f'exit status {result.returncode}'}",
                context={'returncode': result.returncode}
            )

        cameras = parse_auto_detect(result.stdout)
        logger.debug("Detected cameras", count=len(cameras), models=[c.model for c in cameras])
        return cameras

    def require(self, selector: Optional[str] = None) -> DetectedCamera:
        """
        Ensure a camera is connected, matching selector when given.

        Raises:
            CameraNotDetectedError: no camera, or none matching the selector
        """
        cameras = self.detect()
        if not cameras:
            raise CameraNotDetectedError("No camera detected", selector=selector)

        if selector is None:
            return cameras[0]

        wanted = selector.strip().lower()
        for camera in cameras:
            if camera.model.lower() == wanted:
                return camera

        raise CameraNotDetectedError(
            f"Camera {selector!r} not detected (found: {', '.join(c.model for c in cameras)})",
            selector=selector
        )
