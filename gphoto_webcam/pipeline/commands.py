"""
Command lines for the two pipeline processes.
"""

from pathlib import Path
from typing import List

from ..config import DEFAULT_DEVICE_ROOT, DeviceSpec, PipelineConfig


class CommandBuilder:
    """Builds the producer (gphoto2) and consumer (ffmpeg) argument vectors."""

    def __init__(self, device_root: Path = DEFAULT_DEVICE_ROOT):
        self.device_root = Path(device_root)

    def producer(self, config: PipelineConfig) -> List[str]:
        """gphoto2 streaming live view to stdout."""
        argv = [config.producer_binary, "--stdout", "--capture-movie"]
        if config.camera:
            argv += ["--camera", config.camera]
        argv += list(config.producer_args)
        return argv

    def consumer(self, config: PipelineConfig, device: DeviceSpec) -> List[str]:
        """ffmpeg reading stdin and writing raw frames to the loopback device."""
        return [
            config.consumer_binary,
            "-i", "-",
            *config.consumer_args,
            "-vcodec", "rawvideo",
            "-pix_fmt", config.pixel_format,
            "-threads", "0",
            "-f", "v4l2",
            str(self.device_root / device.node_name),
        ]
