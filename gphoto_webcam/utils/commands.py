"""
External command execution and dependency presence checks.
"""

import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence

from .errors import DependencyMissingError
from .logging import get_logger


logger = get_logger(__name__)

# Exit status reported when the executable itself cannot be found
COMMAND_NOT_FOUND = 127

# System administration tools often live outside a regular user's PATH
SYSTEM_TOOL_DIRS = ("/usr/local/sbin", "/usr/sbin", "/sbin")


@dataclass
class CommandResult:
    """Outcome of a finished external command."""
    argv: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


CommandRunner = Callable[[Sequence[str]], CommandResult]


def run_command(argv: Sequence[str], timeout: Optional[float] = 60.0) -> CommandResult:
    """
    Run a command to completion and capture its output.

    A missing executable is reported as exit status 127 instead of raising,
    the way a shell would.
    """
    argv = list(argv)
    logger.debug("Running command", argv=argv)

    try:
        completed = subprocess.run(
            argv,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False
        )
    except FileNotFoundError as e:
        return CommandResult(argv=argv, returncode=COMMAND_NOT_FOUND, stderr=str(e))

    return CommandResult(
        argv=argv,
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or ""
    )


def find_tool(name: str, fallback_dirs: Sequence[str] = SYSTEM_TOOL_DIRS) -> Optional[str]:
    """Locate an executable on PATH, then in the given fallback directories."""
    found = shutil.which(name)
    if found is None and fallback_dirs:
        found = shutil.which(name, path=os.pathsep.join(str(d) for d in fallback_dirs))
    return found


def find_missing(tools: Iterable[str]) -> List[str]:
    """Return the tools that are not found on PATH, in the given order."""
    missing = []
    for tool in tools:
        if tool not in missing and shutil.which(tool) is None:
            missing.append(tool)
    return missing


def check_dependencies(tools: Iterable[str]) -> None:
    """
    Verify every required tool is installed.

    Raises:
        DependencyMissingError: listing all missing tools at once
    """
    tools = list(tools)
    missing = find_missing(tools)
    if missing:
        raise DependencyMissingError(missing, context={'required': tools})
    logger.debug("All dependencies available", tools=tools)
