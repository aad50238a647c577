"""
Pipeline data model: states, process handles and diagnostic reports.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import IO, Dict, FrozenSet, List, Optional

import psutil

from ..utils.errors import PipelineError


class PipelineState(Enum):
    """Pipeline lifecycle states."""
    NOT_STARTED = "not_started"
    LAUNCHING = "launching"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TERMINATED = "terminated"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES: FrozenSet[PipelineState] = frozenset((
    PipelineState.SUCCEEDED,
    PipelineState.FAILED,
    PipelineState.TERMINATED,
))

_TRANSITIONS: Dict[PipelineState, FrozenSet[PipelineState]] = {
    PipelineState.NOT_STARTED: frozenset((PipelineState.LAUNCHING, PipelineState.TERMINATED)),
    PipelineState.LAUNCHING: frozenset((
        PipelineState.RUNNING, PipelineState.FAILED, PipelineState.TERMINATED
    )),
    PipelineState.RUNNING: TERMINAL_STATES,
    PipelineState.SUCCEEDED: frozenset(),
    PipelineState.FAILED: frozenset(),
    PipelineState.TERMINATED: frozenset(),
}


class ProcessSide(Enum):
    """Which end of the pipeline a process sits on."""
    PRODUCER = "producer"
    CONSUMER = "consumer"


@dataclass
class ProcessHandle:
    """A spawned pipeline process and its diagnostic buffer."""
    side: ProcessSide
    process: asyncio.subprocess.Process
    diagnostics: IO[bytes]
    identity: Optional[psutil.Process] = None

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode

    def is_alive(self) -> bool:
        """True while the process has not exited (zombies count as exited)."""
        if self.process.returncode is not None:
            return False
        if self.identity is None:
            return False
        try:
            return (
                self.identity.is_running()
                and self.identity.status() != psutil.STATUS_ZOMBIE
            )
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            return True

    def read_diagnostics(self) -> bytes:
        """Read everything the process wrote to its diagnostic stream."""
        if self.diagnostics.closed:
            return b""
        self.diagnostics.flush()
        self.diagnostics.seek(0)
        return self.diagnostics.read()


@dataclass(frozen=True)
class DiagnosticReport:
    """Drained diagnostic output of one pipeline process."""
    source: ProcessSide
    content: bytes

    @property
    def non_empty(self) -> bool:
        return bool(self.content)

    @property
    def text(self) -> str:
        return self.content.decode('utf-8', errors='replace')


@dataclass
class PipelineResult:
    """Final outcome of one supervised pipeline run."""
    state: PipelineState
    exit_code: Optional[int] = None
    reason: Optional[str] = None
    reports: List[DiagnosticReport] = field(default_factory=list)
    started: bool = False

    @property
    def ok(self) -> bool:
        return self.state == PipelineState.SUCCEEDED

    @property
    def surfaced_reports(self) -> List[DiagnosticReport]:
        """Non-empty diagnostics, shown to the user on failure."""
        if self.ok:
            return []
        return [report for report in self.reports if report.non_empty]


class Pipeline:
    """
    The producer/consumer pair of one run and its supervision state.

    The supervisor is the only writer of the state; transitions outside the
    state machine raise PipelineError.
    """

    def __init__(self):
        self._state = PipelineState.NOT_STARTED
        self.producer: Optional[ProcessHandle] = None
        self.consumer: Optional[ProcessHandle] = None
        self.history: List[PipelineState] = [self._state]

    @property
    def state(self) -> PipelineState:
        return self._state

    def transition(self, new_state: PipelineState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise PipelineError(
                f"Invalid pipeline transition {self._state.value} -> {new_state.value}",
                context={'from': self._state.value, 'to': new_state.value}
            )
        self._state = new_state
        self.history.append(new_state)

    @property
    def handles(self) -> List[ProcessHandle]:
        return [h for h in (self.producer, self.consumer) if h is not None]

    def drain(self) -> List[DiagnosticReport]:
        """Drain both diagnostic buffers, producer first."""
        return [
            DiagnosticReport(source=handle.side, content=handle.read_diagnostics())
            for handle in self.handles
        ]
