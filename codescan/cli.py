"""
cli.py
------
Command-line interface.

Commands:
    codescan decode   Run the fallback decode chain on one or more image files
    codescan devices  List capture devices and the one auto-selection would pick
    codescan scan     Scan a code live from a camera
    codescan serve    Run the HTTP upload endpoint
"""

from __future__ import annotations

import json
import logging
import sys

import click
from tqdm import tqdm

from codescan.capture.controller import CameraCaptureController
from codescan.capture.devices import choose_device, display_name
from codescan.core.config import AppConfig, load_config
from codescan.core.exceptions import ConfigError, NoDeviceFoundError
from codescan.core.models import CaptureState
from codescan.ingestion.camera import OpenCVCameraPlatform
from codescan.processing.decoders import NativeDecoder
from codescan.processing.orchestrator import DecodeOrchestrator


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        datefmt="%H:%M:%S",
    )


def _load(config_path: str | None) -> AppConfig:
    try:
        return load_config(config_path)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc


@click.group()
def main() -> None:
    """codescan -- barcode / QR capture and fallback decoding."""


# ---------------------------------------------------------------------------
# codescan decode
# ---------------------------------------------------------------------------

@main.command("decode")
@click.argument("images", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--config", "config_path", default=None, type=click.Path(), help="YAML config (default: config/default.yaml).")
@click.option("--no-vision", is_flag=True, help="Skip the external vision-model fallback.")
@click.option("--attempts/--no-attempts", default=False, show_default=True, help="Include per-strategy outcomes in the output.")
@click.option("--log-level", default="WARNING", show_default=True, help="Logging verbosity.")
def decode_cmd(images, config_path, no_vision, attempts, log_level):
    """Decode IMAGES and print one JSON line per file."""
    _setup_logging(log_level)
    cfg = _load(config_path)
    if no_vision:
        cfg.vision.enabled = False
    orchestrator = DecodeOrchestrator(cfg)

    failures = 0
    for path in tqdm(images, unit="image", disable=len(images) < 2, file=sys.stderr):
        result = orchestrator.decode_path(path)
        record = {"file": path, **result.to_response()}
        if attempts:
            record["attempts"] = [
                {"strategy": a.strategy, "outcome": a.outcome.value, "fallback": a.fallback_used}
                for a in result.attempts
            ]
        if not result.success:
            failures += 1
        tqdm.write(json.dumps(record))

    if failures:
        sys.exit(1)


# ---------------------------------------------------------------------------
# codescan devices
# ---------------------------------------------------------------------------

@main.command("devices")
@click.option("--config", "config_path", default=None, type=click.Path(), help="YAML config.")
def devices_cmd(config_path):
    """List cameras OpenCV can open."""
    cfg = _load(config_path)
    platform = OpenCVCameraPlatform(max_probe=cfg.capture.max_probe_devices)
    if not platform.request_permission():
        raise click.ClickException("Camera permission denied.")

    devices = platform.list_devices()
    if not devices:
        click.echo("No cameras found.")
        return

    chosen = choose_device(devices)
    for i, device in enumerate(devices):
        marker = "*" if chosen and device.device_id == chosen.device_id else " "
        click.echo(f" {marker} {device.device_id:<4} {display_name(device, i):<24} {device.label}")


# ---------------------------------------------------------------------------
# codescan scan
# ---------------------------------------------------------------------------

@main.command("scan")
@click.option("--config", "config_path", default=None, type=click.Path(), help="YAML config.")
@click.option("--device", default=None, help="Device id (default: auto-select).")
@click.option("--timeout", default=30.0, show_default=True, help="Give up after this many seconds.")
@click.option("--log-level", default="WARNING", show_default=True, help="Logging verbosity.")
def scan_cmd(config_path, device, timeout, log_level):
    """Scan one code from a live camera and print it."""
    _setup_logging(log_level)
    cfg = _load(config_path)

    controller = CameraCaptureController(
        OpenCVCameraPlatform(max_probe=cfg.capture.max_probe_devices),
        decoder=NativeDecoder(formats=cfg.decode.formats, try_rotate=cfg.decode.live_try_rotate),
        on_scan=click.echo,
        config=cfg.capture,
    )

    if controller.initialize() is not CaptureState.READY:
        raise click.ClickException(str(controller.last_error))
    if device is not None:
        try:
            controller.select_device(device)
        except NoDeviceFoundError as exc:
            raise click.ClickException(str(exc)) from exc

    if not controller.start():
        raise click.ClickException(str(controller.last_error))

    click.echo(f"Scanning with camera {controller.selected_device} (Ctrl+C to cancel)...", err=True)
    try:
        code = controller.run(timeout_s=timeout)
    except KeyboardInterrupt:
        code = None
    finally:
        controller.close()

    if code is None:
        click.echo("No code scanned.", err=True)
        sys.exit(1)


# ---------------------------------------------------------------------------
# codescan serve
# ---------------------------------------------------------------------------

@main.command("serve")
@click.option("--config", "config_path", default=None, type=click.Path(), help="YAML config.")
@click.option("--host", default=None, help="Bind address (default from config).")
@click.option("--port", default=None, type=int, help="Port (default from config).")
def serve_cmd(config_path, host, port):
    """Run the upload endpoint (threaded development server)."""
    cfg = _load(config_path)
    _setup_logging(cfg.logging.log_level)

    from codescan.server.app import create_app

    app = create_app(cfg)
    app.run(host=host or cfg.server.host, port=port or cfg.server.port, threaded=True)


if __name__ == "__main__":
    main()
