"""
Error hierarchy for gphoto-webcam.

Every error raised by the application derives from WebcamError and carries a
category, a severity and a context dictionary. None of them is retried: the
CLI reports the error and exits with a non-zero status.
"""

import traceback
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type


class ErrorSeverity(Enum):
    """Error severity levels for logging."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors for classification and reporting."""
    CONFIGURATION = "configuration"
    DEPENDENCY = "dependency"
    CAMERA = "camera"
    DEVICE = "device"
    PIPELINE = "pipeline"
    SYSTEM = "system"


class WebcamError(Exception):
    """
    Base exception class for all gphoto-webcam errors.

    Provides context preservation and error categorization.
    """

    exit_code = 1

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        severity: ErrorSeverity = ErrorSeverity.HIGH,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        """
        Initialize error with context.

        Args:
            message: Human-readable error description
            category: Error category for classification
            severity: Error severity level
            context: Additional context information
            original_exception: Original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.now()
        self.traceback_str = traceback.format_exc()

        self.context.update({
            'timestamp': self.timestamp.isoformat(),
            'category': self.category.value,
            'severity': self.severity.value,
        })

        if original_exception:
            self.context['original_error'] = str(original_exception)
            self.context['original_type'] = type(original_exception).__name__

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging and serialization."""
        return {
            'error_type': type(self).__name__,
            'message': self.message,
            'category': self.category.value,
            'severity': self.severity.value,
            'context': self.context,
            'timestamp': self.timestamp.isoformat(),
            'traceback': self.traceback_str
        }

    def __str__(self) -> str:
        return self.message


class ConfigurationError(WebcamError):
    """Errors related to configuration loading or validation."""

    def __init__(self, message: str, config_path: Optional[str] = None, **kwargs):
        kwargs.setdefault('category', ErrorCategory.CONFIGURATION)

        context = kwargs.get('context') or {}
        if config_path:
            context['config_path'] = config_path
        kwargs['context'] = context

        super().__init__(message, **kwargs)


class ArgumentInvalidError(ConfigurationError):
    """A command-line argument or option failed validation."""

    def __init__(self, message: str, argument: Optional[str] = None, **kwargs):
        context = kwargs.get('context') or {}
        if argument:
            context['argument'] = argument
        kwargs['context'] = context

        super().__init__(message, **kwargs)


class DependencyMissingError(WebcamError):
    """One or more required external tools are not installed."""

    def __init__(self, missing: List[str], **kwargs):
        kwargs.setdefault('category', ErrorCategory.DEPENDENCY)
        kwargs.setdefault('severity', ErrorSeverity.CRITICAL)

        context = kwargs.get('context') or {}
        context['missing'] = list(missing)
        kwargs['context'] = context

        self.missing = list(missing)
        super().__init__(
            f"Missing required dependencies: {', '.join(self.missing)}",
            **kwargs
        )


class CameraNotDetectedError(WebcamError):
    """No camera (or no camera matching the selector) was detected."""

    def __init__(self, message: str, selector: Optional[str] = None, **kwargs):
        kwargs.setdefault('category', ErrorCategory.CAMERA)

        context = kwargs.get('context') or {}
        if selector:
            context['selector'] = selector
        kwargs['context'] = context

        self.selector = selector
        super().__init__(message, **kwargs)


class DeviceError(WebcamError):
    """Errors related to the virtual video device."""

    def __init__(self, message: str, device_path: Optional[str] = None, **kwargs):
        kwargs.setdefault('category', ErrorCategory.DEVICE)

        context = kwargs.get('context') or {}
        if device_path:
            context['device_path'] = device_path
        kwargs['context'] = context

        self.device_path = device_path
        super().__init__(message, **kwargs)


class ModuleMissingError(DeviceError):
    """The loopback kernel module is not available on this system."""

    def __init__(self, message: str, module: Optional[str] = None, **kwargs):
        kwargs.setdefault('severity', ErrorSeverity.CRITICAL)

        context = kwargs.get('context') or {}
        if module:
            context['module'] = module
        kwargs['context'] = context

        self.module = module
        super().__init__(message, **kwargs)


class ProvisioningFailedError(DeviceError):
    """The privileged device creation command reported failure."""

    def __init__(
        self,
        message: str,
        returncode: Optional[int] = None,
        stderr: Optional[str] = None,
        **kwargs
    ):
        context = kwargs.get('context') or {}
        if returncode is not None:
            context['returncode'] = returncode
        if stderr:
            context['stderr'] = stderr
        kwargs['context'] = context

        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message, **kwargs)


class ProvisioningVerificationFailedError(DeviceError):
    """Device creation reported success but the device node never appeared."""


class PipelineError(WebcamError):
    """Errors related to the producer/consumer pipeline."""

    def __init__(self, message: str, reports: Optional[list] = None, **kwargs):
        kwargs.setdefault('category', ErrorCategory.PIPELINE)
        self.reports = list(reports or [])
        super().__init__(message, **kwargs)


class PipelineFailedError(PipelineError):
    """The pipeline finished with a non-zero exit code."""

    def __init__(self, message: str, exit_code: Optional[int] = None, **kwargs):
        context = kwargs.get('context') or {}
        if exit_code is not None:
            context['exit_code'] = exit_code
        kwargs['context'] = context

        self.pipeline_exit_code = exit_code
        super().__init__(message, **kwargs)


class PipelineTerminatedError(PipelineError):
    """The pipeline was killed before it could exit on its own."""

    def __init__(self, message: str, reason: Optional[str] = None, **kwargs):
        kwargs.setdefault('severity', ErrorSeverity.MEDIUM)

        context = kwargs.get('context') or {}
        if reason:
            context['reason'] = reason
        kwargs['context'] = context

        self.reason = reason
        super().__init__(message, **kwargs)


def handle_error(
    error: Exception,
    context: Optional[Dict[str, Any]] = None,
    error_type: Type[WebcamError] = WebcamError
) -> WebcamError:
    """
    Convert any exception to a WebcamError with appropriate context.

    Args:
        error: Original exception
        context: Additional context information
        error_type: WebcamError subclass to wrap foreign exceptions in

    Returns:
        WebcamError with full context
    """
    if isinstance(error, WebcamError):
        return error

    return error_type(
        f"{type(error).__name__}: {error}",
        context=context,
        original_exception=error
    )
