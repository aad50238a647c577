"""
Pipeline supervision package.

This package spawns and supervises the gphoto2 -> ffmpeg pipeline, watches
its liveness and guarantees its teardown.
"""

from .models import (
    DiagnosticReport,
    Pipeline,
    PipelineResult,
    PipelineState,
    ProcessHandle,
    ProcessSide
)
from .commands import CommandBuilder
from .monitor import LivenessMonitor
from .cleanup import CleanupCoordinator
from .supervisor import PipelineSupervisor

__all__ = [
    'DiagnosticReport',
    'Pipeline',
    'PipelineResult',
    'PipelineState',
    'ProcessHandle',
    'ProcessSide',
    'CommandBuilder',
    'LivenessMonitor',
    'CleanupCoordinator',
    'PipelineSupervisor'
]
