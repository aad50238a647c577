"""
Pytest configuration and fixtures for the gphoto-webcam test suite.

Provides a recording command runner, a fake /dev tree and stand-in producer
and consumer processes (small Python scripts) so that the device manager and
the pipeline supervisor can be exercised without a camera, ffmpeg or the
v4l2loopback kernel module.
"""

import os
import shutil
import sys
import tempfile
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import pytest
import yaml

from gphoto_webcam.config import DeviceSpec, PipelineConfig
from gphoto_webcam.pipeline import CommandBuilder
from gphoto_webcam.utils.commands import CommandResult


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep GPHOTO_WEBCAM_* variables of the host out of the tests."""
    for key in list(os.environ):
        if key.startswith("GPHOTO_WEBCAM_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path)


@pytest.fixture
def test_config_path(temp_dir):
    """Create a test configuration file."""
    config_path = temp_dir / "test_config.yaml"
    config_data = {
        "name": "gphoto-webcam-test",
        "device": {
            "index": 3,
            "label": "Test Cam"
        },
        "pipeline": {
            "camera": "Canon EOS 600D",
            "consumer_args": "-vf hflip",
            "warmup_seconds": 2.5
        },
        "logging": {
            "level": "debug",
            "format": "text"
        }
    }

    with open(config_path, 'w') as f:
        yaml.dump(config_data, f)

    return config_path


class FakeRunner:
    """
    Command runner that records every argv and answers from a table.

    Responses are keyed by the leading words of the command; the longest
    matching key wins. Unknown commands succeed with no output. An optional
    hook runs before the response is returned, e.g. to create a device node.
    """

    def __init__(self, responses: Optional[Dict[tuple, CommandResult]] = None):
        self.responses = dict(responses or {})
        self.hooks: Dict[tuple, Callable[[List[str]], None]] = {}
        self.calls: List[List[str]] = []

    def respond(self, prefix: Sequence[str], returncode: int = 0, stdout: str = "", stderr: str = ""):
        self.responses[tuple(prefix)] = CommandResult(
            argv=list(prefix), returncode=returncode, stdout=stdout, stderr=stderr
        )

    def on(self, prefix: Sequence[str], hook: Callable[[List[str]], None]):
        self.hooks[tuple(prefix)] = hook

    def calls_to(self, *prefix: str) -> List[List[str]]:
        return [argv for argv in self.calls if tuple(argv[:len(prefix)]) == prefix]

    def __call__(self, argv: Sequence[str]) -> CommandResult:
        argv = list(argv)
        self.calls.append(argv)

        for prefix in sorted(self.hooks, key=len, reverse=True):
            if tuple(argv[:len(prefix)]) == prefix:
                self.hooks[prefix](argv)
                break

        for prefix in sorted(self.responses, key=len, reverse=True):
            if tuple(argv[:len(prefix)]) == prefix:
                response = self.responses[prefix]
                return CommandResult(argv=argv, returncode=response.returncode,
                                     stdout=response.stdout, stderr=response.stderr)

        return CommandResult(argv=argv, returncode=0)


def on_path(name: str) -> str:
    """Tool resolver that leaves the bare name, so a FakeRunner can match it."""
    return name


@pytest.fixture
def fake_runner():
    """A recording command runner where every command succeeds."""
    return FakeRunner()


@pytest.fixture
def device_root(temp_dir):
    """An empty directory standing in for /dev."""
    root = temp_dir / "dev"
    root.mkdir()
    return root


class ScriptCommandBuilder(CommandBuilder):
    """Runs Python snippets in place of gphoto2 and ffmpeg."""

    def __init__(self, producer_script: str, consumer_script: str, device_root: Path = Path("/dev")):
        super().__init__(device_root=device_root)
        self.producer_script = producer_script
        self.consumer_script = consumer_script

    def producer(self, config: PipelineConfig) -> List[str]:
        return [sys.executable, "-c", self.producer_script]

    def consumer(self, config: PipelineConfig, device: DeviceSpec) -> List[str]:
        return [sys.executable, "-c", self.consumer_script]


# Writes a few chunks of "video" then exits 0
PRODUCER_FINITE = (
    "import sys\n"
    "for _ in range(16):\n"
    "    sys.stdout.buffer.write(b'\\x00' * 4096)\n"
    "sys.stdout.flush()\n"
)

# Streams until killed
PRODUCER_FOREVER = (
    "import sys, time\n"
    "while True:\n"
    "    sys.stdout.buffer.write(b'\\x00' * 1024)\n"
    "    sys.stdout.flush()\n"
    "    time.sleep(0.05)\n"
)

# Reads stdin to end-of-stream then exits 0
CONSUMER_DRAIN = (
    "import sys\n"
    "while sys.stdin.buffer.read(65536):\n"
    "    pass\n"
)


def consumer_failing_after(delay: float, message: str = "Error opening output device", code: int = 1) -> str:
    """Consumer that reads for delay seconds, complains on stderr and exits code."""
    return (
        "import sys, time\n"
        f"time.sleep({delay!r})\n"
        f"sys.stderr.write({message!r} + '\\n')\n"
        "sys.stderr.flush()\n"
        f"sys.exit({code})\n"
    )


def consumer_ignoring_eof(delay: float) -> str:
    """Consumer that keeps running for delay seconds after end-of-stream."""
    return (
        "import sys, time\n"
        "while sys.stdin.buffer.read(65536):\n"
        "    pass\n"
        f"time.sleep({delay!r})\n"
    )


def producer_chatty(message: str, code: int = 0) -> str:
    """Producer that writes an informational line to stderr and exits code."""
    return (
        "import sys\n"
        "sys.stdout.buffer.write(b'\\x00' * 1024)\n"
        f"sys.stderr.write({message!r} + '\\n')\n"
        f"sys.exit({code})\n"
    )


@pytest.fixture
def fast_pipeline_config():
    """Pipeline timings short enough for tests."""
    return PipelineConfig(
        warmup_seconds=0.3,
        poll_interval=0.05,
        stop_timeout=1.0,
        auto_detect=False
    )


@pytest.fixture
def device_spec():
    """A loopback device spec for pipeline tests."""
    return DeviceSpec(index=7, label="Test Cam")
