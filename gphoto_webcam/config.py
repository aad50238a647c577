"""
Configuration management for gphoto-webcam.

This module provides YAML configuration loading, validation, environment
variable overrides and command-line overrides on top of pydantic models.
Precedence, lowest first: built-in defaults, configuration file,
GPHOTO_WEBCAM_* environment variables, command-line options.
"""

import os
import shlex
from dataclasses import field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import Field, TypeAdapter, ValidationError, field_validator
from pydantic.dataclasses import dataclass as pydantic_dataclass

from .utils.errors import ArgumentInvalidError, ConfigurationError
from .utils.logging import get_logger


ENV_PREFIX = "GPHOTO_WEBCAM_"
DEFAULT_DEVICE_ROOT = Path("/dev")


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


def _split_arguments(value: Any) -> Any:
    """Accept either a list of arguments or a single shell-quoted string."""
    if value is None:
        return []
    if isinstance(value, str):
        try:
            return shlex.split(value)
        except ValueError as e:
            raise ValueError(f"Cannot parse arguments {value!r}: {e}")
    return value


@pydantic_dataclass(frozen=True)
class DeviceSpec:
    """Target virtual video sink."""
    index: int = Field(default=0, ge=0, description="Loopback device number (/dev/videoN)")
    label: str = Field(default="GPhoto2 Webcam", min_length=1, description="Card label shown to applications")

    @property
    def node_name(self) -> str:
        return f"video{self.index}"

    @property
    def path(self) -> Path:
        return DEFAULT_DEVICE_ROOT / self.node_name


@pydantic_dataclass(frozen=True)
class LoopbackConfig:
    """Kernel module settings used when the device has to be created."""
    module: str = Field(default="v4l2loopback", min_length=1, description="Loopback kernel module name")
    exclusive_caps: bool = Field(default=True, description="Advertise capture-only caps once a writer is attached")
    max_buffers: int = Field(default=2, ge=1, le=32, description="Number of loopback buffers")
    privilege_helper: str = Field(default="sudo", min_length=1, description="Command used to run modprobe as root")


@pydantic_dataclass(frozen=True)
class PipelineConfig:
    """How the producer (gphoto2) and consumer (ffmpeg) are invoked."""
    camera: Optional[str] = Field(default=None, description="Camera model passed to gphoto2 --camera")
    producer_args: List[str] = Field(default_factory=list, description="Extra gphoto2 arguments")
    consumer_args: List[str] = Field(default_factory=list, description="Extra ffmpeg arguments")
    producer_binary: str = Field(default="gphoto2", min_length=1, description="Producer executable")
    consumer_binary: str = Field(default="ffmpeg", min_length=1, description="Consumer executable")
    pixel_format: str = Field(default="yuv420p", min_length=1, description="Pixel format written to the device")
    warmup_seconds: float = Field(default=5.0, ge=0.0, le=300.0, description="Grace period before the liveness check")
    poll_interval: float = Field(default=1.0, gt=0.0, le=60.0, description="Liveness poll interval (seconds)")
    stop_timeout: float = Field(default=5.0, gt=0.0, le=60.0, description="Time allowed for SIGTERM before SIGKILL")
    auto_detect: bool = Field(default=True, description="Check for a connected camera before starting")

    @field_validator('producer_args', 'consumer_args', mode='before')
    @classmethod
    def split_arguments(cls, v):
        """Split shell-quoted argument strings."""
        return _split_arguments(v)

    @field_validator('camera', mode='before')
    @classmethod
    def blank_camera_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


@pydantic_dataclass
class LoggingConfig:
    """Logging configuration."""
    level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    format: str = Field(default="colored", pattern="^(json|text|colored)$", description="Log format")
    log_file: Optional[str] = Field(default=None, description="Path to log file")
    max_file_size_mb: int = Field(default=10, ge=1, le=1000, description="Maximum log file size (MB)")
    backup_count: int = Field(default=3, ge=1, le=20, description="Number of backup log files")
    console_output: bool = Field(default=True, description="Enable console output")


@pydantic_dataclass
class AppConfig:
    """Main application configuration."""
    device: DeviceSpec = field(default_factory=DeviceSpec)
    loopback: LoopbackConfig = field(default_factory=LoopbackConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    name: str = Field(default="gphoto-webcam", description="Application name")

    @property
    def required_tools(self) -> List[str]:
        """External executables that must be on PATH."""
        return [
            self.pipeline.producer_binary,
            self.pipeline.consumer_binary,
            self.loopback.privilege_helper,
        ]


_CONFIG_ADAPTER = TypeAdapter(AppConfig)

# Sections that may be targeted by generic GPHOTO_WEBCAM_<SECTION>_<KEY> variables
_SECTIONS = ('device', 'loopback', 'pipeline', 'logging')

# Values that are kept as raw strings rather than type-converted
_RAW_STRING_PATHS = frozenset((
    'pipeline.camera', 'pipeline.producer_args', 'pipeline.consumer_args',
    'device.label', 'logging.log_file',
))

# Case-insensitive choices, stored lowercase
_LOWERCASE_PATHS = frozenset(('logging.level', 'logging.format'))


class ConfigManager:
    """Loads, merges and validates the application configuration."""

    def __init__(self, env_prefix: str = ENV_PREFIX):
        self._config: Optional[AppConfig] = None
        self._config_path: Optional[Path] = None
        self._env_prefix = env_prefix
        self._environment_overrides: Dict[str, Any] = {}
        self._logger = get_logger(__name__)

    @property
    def config_path(self) -> Optional[Path]:
        return self._config_path

    def load_config(
        self,
        config_path: Optional[Union[str, Path]] = None,
        merge_environment: bool = True
    ) -> AppConfig:
        """
        Load configuration from a YAML file (or defaults) with validation.

        Args:
            config_path: Path to configuration file; defaults only when None
            merge_environment: Whether to merge environment variable overrides

        Returns:
            Loaded and validated configuration

        Raises:
            ConfigurationError: If configuration is invalid or file cannot be loaded
        """
        config_data: Dict[str, Any] = {}

        if config_path is not None:
            config_path = Path(config_path)
            self._config_path = config_path

            if not config_path.exists():
                raise ConfigurationError(
                    f"Configuration file not found: {config_path}",
                    config_path=str(config_path)
                )

            self._logger.info(f"Loading configuration from {config_path}")

            try:
                with open(config_path, 'r', encoding='utf-8') as f:
                    config_data = yaml.safe_load(f) or {}
            except (yaml.YAMLError, IOError) as e:
                raise ConfigurationError(
                    f"Failed to load configuration file {config_path}: {e}",
                    config_path=str(config_path),
                    original_exception=e
                )

            if not isinstance(config_data, dict):
                raise ConfigurationError(
                    f"Configuration file {config_path} must contain a mapping",
                    config_path=str(config_path)
                )

        if merge_environment:
            config_data = self._merge_environment_overrides(config_data)

        try:
            self._config = AppConfig(**config_data)
        except (ValidationError, TypeError) as e:
            error_details = self._format_validation_errors(e)
            raise ConfigurationError(
                f"Configuration validation failed:\n{error_details}",
                config_path=str(config_path) if config_path else None,
                context={'validation_errors': error_details}
            )

        return self._config

    def get_config(self) -> AppConfig:
        """
        Get current configuration.

        Raises:
            ConfigurationError: If no configuration is loaded
        """
        if self._config is None:
            raise ConfigurationError("No configuration loaded")
        return self._config

    def apply_overrides(self, overrides: Dict[str, Any]) -> AppConfig:
        """
        Apply command-line overrides on top of the loaded configuration.

        Keys whose value is None are ignored so that unset options do not
        clobber file or environment values.

        Raises:
            ArgumentInvalidError: If the merged configuration does not validate
        """
        overrides = self._prune_none(overrides)
        config_dict = self.to_dict(self.get_config())
        merged = self._deep_merge(config_dict, overrides)

        try:
            self._config = AppConfig(**merged)
        except ValidationError as e:
            error_details = self._format_validation_errors(e)
            first = e.errors()[0]['loc'] if e.errors() else ()
            raise ArgumentInvalidError(
                f"Invalid option value:\n{error_details}",
                argument='.'.join(str(part) for part in first) or None,
                context={'validation_errors': error_details}
            )

        if overrides:
            self._logger.debug("Applied command-line overrides", overrides=overrides)
        return self._config

    def save_config(self, config_path: Union[str, Path], config: Optional[AppConfig] = None) -> None:
        """
        Save configuration to a YAML file.

        Raises:
            ConfigurationError: If saving fails
        """
        config = config or self.get_config()
        save_path = Path(config_path)

        try:
            save_path.parent.mkdir(parents=True, exist_ok=True)
            with open(save_path, 'w', encoding='utf-8') as f:
                yaml.safe_dump(
                    self.to_dict(config),
                    f,
                    default_flow_style=False,
                    indent=2,
                    sort_keys=False,
                    allow_unicode=True
                )
        except (IOError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Failed to save configuration to {save_path}: {e}",
                config_path=str(save_path),
                original_exception=e
            )

        self._logger.info(f"Configuration saved to {save_path}")

    def validate_config(self, config_dict: Dict[str, Any]) -> List[str]:
        """
        Validate a configuration dictionary without loading it.

        Returns:
            List of validation errors (empty if valid)
        """
        try:
            AppConfig(**config_dict)
            return []
        except (ValidationError, TypeError) as e:
            return self._format_validation_errors(e).split('\n')

    def get_environment_overrides(self) -> Dict[str, Any]:
        """Get the environment variable overrides applied by the last load."""
        return self._environment_overrides.copy()

    @staticmethod
    def to_dict(config: AppConfig) -> Dict[str, Any]:
        """Convert a configuration object to plain, YAML-safe data."""
        return _CONFIG_ADAPTER.dump_python(config, mode='json')

    def _merge_environment_overrides(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Merge environment variable overrides into configuration."""
        overrides: Dict[str, Any] = {}
        self._environment_overrides = {}

        env_mappings = {
            f'{self._env_prefix}LOG_LEVEL': 'logging.level',
            f'{self._env_prefix}LOG_FILE': 'logging.log_file',
            f'{self._env_prefix}DEVICE': 'device.index',
            f'{self._env_prefix}LABEL': 'device.label',
            f'{self._env_prefix}CAMERA': 'pipeline.camera',
            f'{self._env_prefix}GPHOTO_ARGS': 'pipeline.producer_args',
            f'{self._env_prefix}FFMPEG_ARGS': 'pipeline.consumer_args',
        }

        for env_var, config_path in env_mappings.items():
            value = os.environ.get(env_var)
            if value is not None:
                converted_value = self._convert_env_value(value, config_path)
                self._set_nested_value(overrides, config_path, converted_value)
                self._environment_overrides[env_var] = converted_value

        # Generic GPHOTO_WEBCAM_<SECTION>_<KEY> variables
        for key, value in os.environ.items():
            if not key.startswith(self._env_prefix) or key in env_mappings:
                continue
            section, _, setting = key[len(self._env_prefix):].lower().partition('_')
            if section not in _SECTIONS or not setting:
                continue
            config_path = f"{section}.{setting}"
            converted_value = self._convert_env_value(value, config_path)
            self._set_nested_value(overrides, config_path, converted_value)
            self._environment_overrides[key] = converted_value

        if overrides:
            config_data = self._deep_merge(config_data, overrides)
            self._logger.info(f"Applied {len(self._environment_overrides)} environment overrides")

        return config_data

    def _convert_env_value(self, value: str, config_path: str) -> Any:
        """Convert environment variable string to appropriate type."""
        if config_path in _RAW_STRING_PATHS:
            return value
        if config_path in _LOWERCASE_PATHS:
            return value.lower()

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        if value.lower() in ('true', 'false', 'yes', 'no'):
            return value.lower() in ('true', 'yes')

        return value

    def _set_nested_value(self, dictionary: Dict[str, Any], path: str, value: Any) -> None:
        """Set a nested dictionary value using dot notation."""
        keys = path.split('.')
        current = dictionary

        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def _deep_merge(self, base: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge two dictionaries."""
        result = base.copy()

        for key, value in updates.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _prune_none(self, values: Dict[str, Any]) -> Dict[str, Any]:
        pruned = {}
        for key, value in values.items():
            if isinstance(value, dict):
                value = self._prune_none(value)
                if not value:
                    continue
            elif value is None:
                continue
            pruned[key] = value
        return pruned

    def _format_validation_errors(self, error: Exception) -> str:
        """Format validation errors into a readable string."""
        if not isinstance(error, ValidationError):
            return f"  {error}"

        errors = []
        for err in error.errors():
            location = ' -> '.join(str(loc) for loc in err['loc'])
            message = err['msg']
            value = err.get('input', 'N/A')
            errors.append(f"  {location}: {message} (got: {value})")

        return '\n'.join(errors)


def load_config(config_path: Optional[Union[str, Path]] = None) -> AppConfig:
    """Load configuration from file (or defaults) with environment overrides."""
    return ConfigManager().load_config(config_path)


def validate_config_file(config_path: Union[str, Path]) -> List[str]:
    """
    Validate a configuration file without loading it.

    Returns:
        List of validation errors (empty if valid)
    """
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f) or {}
    except Exception as e:
        return [f"Failed to load configuration file: {e}"]

    if not isinstance(config_data, dict):
        return ["Configuration file must contain a mapping"]

    return ConfigManager().validate_config(config_data)


def save_config(config: AppConfig, config_path: Union[str, Path]) -> None:
    """Save configuration to a YAML file."""
    ConfigManager().save_config(config_path, config)


def create_default_config() -> AppConfig:
    """Build the default configuration."""
    return AppConfig()
