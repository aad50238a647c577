"""
gphoto-webcam command line interface.

Turns a tethered camera driven by gphoto2 into a v4l2loopback virtual webcam
fed through ffmpeg.

Usage:
    gphoto-webcam --help
    gphoto-webcam start --device 2 --camera "Canon EOS 600D"
    gphoto-webcam detect
    gphoto-webcam doctor
    gphoto-webcam validate-config config.yaml
"""

import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .app import WebcamApp, configure_logging
from .camera import CameraDetector
from .config import (
    ConfigManager,
    AppConfig,
    create_default_config,
    save_config,
    validate_config_file
)
from .device import DeviceManager
from .pipeline import DiagnosticReport, ProcessHandle
from .utils.commands import find_missing
from .utils.errors import PipelineError, WebcamError

PROG_NAME = "gphoto-webcam"

# Data goes to stdout, everything addressed to the operator to stderr
console = Console()
error_console = Console(stderr=True)


class CLIContext:
    """CLI context for passing state between commands."""

    def __init__(self):
        self.config_path: Optional[str] = None
        self.log_level: Optional[str] = None
        self.verbose: bool = False


cli_context = CLIContext()


def print_error(message: str) -> None:
    """Print an error message in the program's standard format."""
    error_console.print(f"[red]{PROG_NAME}: error:[/red] {escape(message)}", highlight=False, soft_wrap=True)


def print_reports(reports: List[DiagnosticReport]) -> None:
    """Print surfaced diagnostics labelled by their source process."""
    for report in reports:
        error_console.print(f"[bold]{report.source.value}:[/bold]")
        error_console.out(report.text.rstrip("\n"), highlight=False)


def load_app_config(overrides: Optional[Dict[str, Any]] = None) -> AppConfig:
    """Load file and environment configuration, then apply command-line overrides."""
    manager = ConfigManager()
    manager.load_config(cli_context.config_path)
    if overrides:
        return manager.apply_overrides(overrides)
    return manager.get_config()


@click.group(context_settings={'help_option_names': ['-h', '--help']})
@click.option('--config', 'config_path', type=click.Path(dir_okay=False),
              help='Configuration file path')
@click.option('--verbose', '-v', is_flag=True,
              help='Enable verbose output (debug logging)')
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
              default=None, help='Set logging level')
@click.version_option(version=__version__, prog_name=PROG_NAME)
def cli(config_path, verbose, log_level):
    """
    gphoto-webcam - use a gphoto2 camera as a webcam

    Streams the camera's live view through ffmpeg into a v4l2loopback
    virtual video device.
    """
    cli_context.config_path = config_path
    cli_context.verbose = verbose
    cli_context.log_level = 'DEBUG' if verbose else log_level


@cli.command()
@click.option('--camera', '-c', default=None,
              help='Camera model to use, as listed by "gphoto2 --auto-detect"')
@click.option('--device', '-d', type=click.IntRange(min=0), default=None,
              help='Loopback device number, /dev/videoN (default 0)')
@click.option('--gphoto-args', '-g', default=None,
              help='Extra arguments passed to gphoto2')
@click.option('--ffmpeg-args', '-f', default=None,
              help='Extra arguments passed to ffmpeg')
@click.option('--label', default=None,
              help='Card label of the virtual device')
@click.option('--warmup', type=click.FloatRange(min=0), default=None,
              help='Seconds to wait before checking the pipeline started')
@click.option('--no-detect', is_flag=True,
              help='Skip camera auto-detection')
def start(camera, device, gphoto_args, ffmpeg_args, label, warmup, no_detect):
    """Start streaming the camera to the virtual device."""
    config = load_app_config({
        'device': {'index': device, 'label': label},
        'pipeline': {
            'camera': camera,
            'producer_args': gphoto_args,
            'consumer_args': ffmpeg_args,
            'warmup_seconds': warmup,
            'auto_detect': False if no_detect else None,
        },
    })
    configure_logging(config, cli_context.log_level)

    def on_started(handles: List[ProcessHandle]):
        console.print(f"[green]✓ Webcam started on {config.device.path}[/green]")

    app = WebcamApp(config, on_started=on_started)
    error_console.print(
        f"[blue]Starting webcam on {config.device.path} ({config.device.label})[/blue]",
        highlight=False
    )
    asyncio.run(app.run())
    console.print("[green]Webcam stopped[/green]")


@cli.command()
def detect():
    """List the cameras gphoto2 can see."""
    config = load_app_config()
    configure_logging(config, cli_context.log_level)

    cameras = CameraDetector(binary=config.pipeline.producer_binary).detect()
    if not cameras:
        console.print("[yellow]No camera detected[/yellow]")
        return

    table = Table(title="Detected Cameras")
    table.add_column("Model", style="cyan")
    table.add_column("Port", style="green")
    for camera in cameras:
        table.add_row(camera.model, camera.port)
    console.print(table)


@cli.command()
def doctor():
    """Run system diagnostics."""
    config = load_app_config()
    configure_logging(config, cli_context.log_level)
    console.print("[blue]Running gphoto-webcam diagnostics...[/blue]")

    problems = 0

    missing = find_missing(config.required_tools)
    if missing:
        problems += 1
        console.print(f"[red]✗ Missing dependencies: {', '.join(missing)}[/red]")
    else:
        console.print("[green]✓ All dependencies available[/green]")

    manager = DeviceManager(loopback=config.loopback)
    try:
        module_ok = manager.module_available()
    except WebcamError as e:
        problems += 1
        console.print(f"[red]✗ Cannot check kernel module: {e}[/red]")
    else:
        if module_ok:
            console.print(f"[green]✓ Kernel module {config.loopback.module} available[/green]")
        else:
            problems += 1
            console.print(f"[red]✗ Kernel module {config.loopback.module} not found[/red]")

    if manager.device_exists(config.device):
        console.print(f"[green]✓ Video device {config.device.path} exists[/green]")
    else:
        console.print(f"[yellow]⚠ Video device {config.device.path} will be created on start[/yellow]")

    if config.pipeline.producer_binary not in missing:
        try:
            cameras = CameraDetector(binary=config.pipeline.producer_binary).detect()
        except WebcamError as e:
            problems += 1
            console.print(f"[red]✗ Camera detection failed: {e}[/red]")
        else:
            if cameras:
                console.print(f"[green]✓ Camera detected: {cameras[0].model}[/green]")
            else:
                problems += 1
                console.print("[red]✗ No camera detected[/red]")

    if problems:
        console.print(f"\n[red]Diagnostics found {problems} problem(s)[/red]")
        sys.exit(1)
    console.print("\n[blue]Diagnostics completed![/blue]")


@cli.command()
@click.argument('config_file', type=click.Path())
def validate_config(config_file):
    """Validate a configuration file."""
    console.print(f"[blue]Validating configuration: {config_file}[/blue]")

    if not Path(config_file).exists():
        print_error(f"Configuration file not found: {config_file}")
        sys.exit(1)

    errors = validate_config_file(config_file)
    if errors:
        print_error(f"Configuration validation failed with {len(errors)} errors:")
        for error in errors:
            error_console.print(f"  • {escape(error.strip())}", highlight=False)
        sys.exit(1)

    console.print("[green]✓ Configuration is valid[/green]")


@cli.command()
@click.argument('output_file', type=click.Path(dir_okay=False))
@click.option('--force', is_flag=True, help='Overwrite an existing file')
def create_config(output_file, force):
    """Write the default configuration to a file."""
    if Path(output_file).exists() and not force:
        print_error(f"Configuration file {output_file} already exists (use --force to overwrite)")
        sys.exit(1)

    save_config(create_default_config(), output_file)
    console.print(f"[green]✓ Configuration saved to {output_file}[/green]")


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Every failure exits with status 1, including usage errors that click
    would otherwise report with status 2.
    """
    try:
        result = cli.main(args=argv, prog_name=PROG_NAME, standalone_mode=False)
    except click.exceptions.Exit as e:
        return e.exit_code
    except click.ClickException as e:
        e.show(file=sys.stderr)
        return 1
    except click.Abort:
        error_console.print("\n[yellow]Operation cancelled[/yellow]")
        return 1
    except PipelineError as e:
        print_error(str(e))
        print_reports(e.reports)
        return e.exit_code
    except WebcamError as e:
        print_error(str(e))
        return e.exit_code
    except KeyboardInterrupt:
        error_console.print("\n[yellow]Operation cancelled[/yellow]")
        return 1

    return result if isinstance(result, int) else 0


if __name__ == "__main__":
    sys.exit(main())
