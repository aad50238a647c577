"""
Utilities package for gphoto-webcam.

This package provides error handling, logging, async helpers and external
command execution.
"""

from .errors import (
    WebcamError,
    ConfigurationError,
    ArgumentInvalidError,
    DependencyMissingError,
    CameraNotDetectedError,
    DeviceError,
    ModuleMissingError,
    ProvisioningFailedError,
    ProvisioningVerificationFailedError,
    PipelineError,
    PipelineFailedError,
    PipelineTerminatedError,
    handle_error
)

from .logging import (
    setup_logging,
    get_logger,
    LogLevel,
    LogFormat,
    LoggingConfig
)

from .async_utils import (
    GracefulShutdownManager,
    run_in_thread_pool
)

from .commands import (
    CommandResult,
    run_command,
    check_dependencies,
    find_missing
)

__all__ = [
    # Error handling
    'WebcamError',
    'ConfigurationError',
    'ArgumentInvalidError',
    'DependencyMissingError',
    'CameraNotDetectedError',
    'DeviceError',
    'ModuleMissingError',
    'ProvisioningFailedError',
    'ProvisioningVerificationFailedError',
    'PipelineError',
    'PipelineFailedError',
    'PipelineTerminatedError',
    'handle_error',

    # Logging
    'setup_logging',
    'get_logger',
    'LogLevel',
    'LogFormat',
    'LoggingConfig',

    # Async utilities
    'GracefulShutdownManager',
    'run_in_thread_pool',

    # Commands
    'CommandResult',
    'run_command',
    'check_dependencies',
    'find_missing'
]
