"""tests/unit/test_controller.py — CameraCaptureController state machine and hardware release."""

from __future__ import annotations

import pytest

from codescan.capture.controller import MAX_MISSED_FRAMES, CameraCaptureController
from codescan.core.config import CaptureConfig
from codescan.core.exceptions import CaptureError, NoDeviceFoundError, PermissionDeniedError
from codescan.core.models import CaptureState, DeviceInfo
from scan_fixtures import FakePlatform, ScriptedDecoder, no_code_image, render_qr


def frames(n: int = 3):
    return [no_code_image(120, 160)] * n


def make_controller(platform=None, decoder=None, **kwargs):
    platform = platform or FakePlatform(images=frames())
    events = {"scans": [], "states": [], "errors": [], "closed": 0}

    def on_close():
        events["closed"] += 1

    ctl = CameraCaptureController(
        platform,
        decoder=decoder or ScriptedDecoder(),
        on_scan=events["scans"].append,
        on_close=on_close,
        on_state=events["states"].append,
        on_error=events["errors"].append,
        **kwargs,
    )
    return ctl, platform, events


# ---------------------------------------------------------------------------
# Initialisation
# ---------------------------------------------------------------------------

class TestInitialize:
    def test_selects_rear_camera(self):
        platform = FakePlatform(devices=[DeviceInfo("f", "Front Camera"), DeviceInfo("r", "Back Camera")])
        ctl, _, events = make_controller(platform)
        assert ctl.initialize() is CaptureState.READY
        assert ctl.selected_device == "r"
        assert events["states"] == [CaptureState.INITIALIZING, CaptureState.READY]
        assert ctl.device_options() == [("f", "Camera 1 (Front)"), ("r", "Camera 2 (Rear)")]

    def test_permission_denied_is_terminal(self):
        platform = FakePlatform(permission=False)
        ctl, _, events = make_controller(platform)
        assert ctl.initialize() is CaptureState.PERMISSION_DENIED
        assert isinstance(events["errors"][-1], PermissionDeniedError)

        assert ctl.start() is False
        assert ctl.state is CaptureState.PERMISSION_DENIED
        assert platform.permission_requests == 1
        assert platform.open_streams == 0

    def test_explicit_initialize_after_denial_asks_again(self):
        platform = FakePlatform(permission=False)
        ctl, _, _ = make_controller(platform)
        ctl.initialize()
        platform.permission = True
        assert ctl.initialize() is CaptureState.READY
        assert platform.permission_requests == 2

    def test_no_devices(self):
        ctl, platform, events = make_controller(FakePlatform(devices=[]))
        assert ctl.initialize() is CaptureState.ERROR
        assert isinstance(ctl.last_error, NoDeviceFoundError)
        assert ctl.selected_device is None

        # No implicit retry from ERROR.
        assert ctl.start() is False
        assert platform.permission_requests == 1

    def test_enumeration_failure(self):
        platform = FakePlatform()

        def broken():
            raise OSError("udev gone")

        platform.list_devices = broken
        ctl, _, _ = make_controller(platform)
        assert ctl.initialize() is CaptureState.ERROR
        assert isinstance(ctl.last_error, CaptureError)


# ---------------------------------------------------------------------------
# Start / stop
# ---------------------------------------------------------------------------

class TestStartStop:
    def test_start_initialises_implicitly(self):
        ctl, platform, _ = make_controller()
        assert ctl.start() is True
        assert ctl.state is CaptureState.SCANNING
        assert platform.open_streams == 1
        assert ctl.session.device_id == "cam0"

    def test_start_passes_resolution_constraints(self):
        cfg = CaptureConfig(ideal_width=1920, ideal_height=1080)
        ctl, platform, _ = make_controller(config=cfg)
        ctl.start()
        c = platform.constraints[-1]
        assert (c.min_width, c.min_height, c.ideal_width, c.ideal_height) == (640, 480, 1920, 1080)

    def test_start_applies_tuning(self):
        ctl, platform, _ = make_controller()
        ctl.start()
        stream = platform.opened[-1]
        assert stream.autofocus_requested
        assert stream.zoom_requested == 1.5

    def test_unsupported_tuning_is_ignored(self):
        ctl, platform, events = make_controller(FakePlatform(images=frames(), supports_tuning=False))
        assert ctl.start() is True
        assert events["errors"] == []

    def test_tuning_exception_is_ignored(self):
        ctl, platform, events = make_controller(FakePlatform(images=frames(), tuning_raises=True))
        assert ctl.start() is True
        assert ctl.state is CaptureState.SCANNING
        assert events["errors"] == []

    def test_tuning_disabled(self):
        cfg = CaptureConfig(autofocus=False, zoom=1.0)
        ctl, platform, _ = make_controller(config=cfg)
        ctl.start()
        stream = platform.opened[-1]
        assert not stream.autofocus_requested
        assert stream.zoom_requested is None

    def test_stop_releases_synchronously(self):
        ctl, platform, events = make_controller()
        ctl.start()
        stream = platform.opened[-1]
        ctl.stop()
        assert platform.open_streams == 0
        assert stream.stop_calls == 1
        assert ctl.session is None
        assert events["states"][-2:] == [CaptureState.CANCELLED, CaptureState.IDLE]

    def test_stop_is_idempotent(self):
        ctl, platform, _ = make_controller()
        ctl.start()
        ctl.stop()
        ctl.stop()
        assert platform.opened[-1].stop_calls == 1

    def test_close_stops_and_notifies(self):
        ctl, platform, events = make_controller()
        ctl.start()
        ctl.close()
        assert platform.open_streams == 0
        assert events["closed"] == 1

    def test_repeated_cycles_leak_nothing(self):
        ctl, platform, _ = make_controller()
        for _ in range(100):
            assert ctl.start()
            ctl.stop()
        assert platform.open_streams == 0
        assert len(platform.opened) == 100
        assert all(s.stop_calls == 1 for s in platform.opened)

    def test_restart_while_scanning_replaces_stream(self):
        ctl, platform, _ = make_controller()
        ctl.start()
        ctl.start()
        assert platform.open_streams == 1
        assert platform.opened[0].stop_calls == 1

    def test_open_error_goes_error_then_ready(self):
        platform = FakePlatform(open_error=RuntimeError("busy"))
        ctl, _, events = make_controller(platform)
        assert ctl.start() is False
        assert CaptureState.ERROR in events["states"]
        assert ctl.state is CaptureState.READY
        assert isinstance(ctl.last_error, CaptureError)
        assert "busy" in str(ctl.last_error)


# ---------------------------------------------------------------------------
# Device switching
# ---------------------------------------------------------------------------

class TestSelectDevice:
    def test_switch_releases_current_stream(self):
        platform = FakePlatform(devices=[DeviceInfo("a", "Front"), DeviceInfo("b", "Back")], images=frames())
        ctl, _, _ = make_controller(platform)
        ctl.start()
        assert ctl.session.device_id == "b"

        ctl.select_device("a")
        assert platform.open_streams == 0
        assert ctl.selected_device == "a"

        ctl.start()
        assert ctl.session.device_id == "a"
        assert platform.open_streams == 1

    def test_unknown_device_rejected(self):
        ctl, _, _ = make_controller()
        ctl.initialize()
        with pytest.raises(NoDeviceFoundError):
            ctl.select_device("nope")
        assert ctl.selected_device == "cam0"


# ---------------------------------------------------------------------------
# Scanning
# ---------------------------------------------------------------------------

class TestScanning:
    def test_found_emits_once_and_releases(self):
        decoder = ScriptedDecoder([None, None, "PART-00042", "PART-00042"])
        ctl, platform, events = make_controller(decoder=decoder)
        ctl.start()
        assert ctl.run(max_frames=10) == "PART-00042"
        assert events["scans"] == ["PART-00042"]
        assert platform.open_streams == 0
        assert CaptureState.FOUND in events["states"]
        assert ctl.state is CaptureState.IDLE
        assert decoder.calls == 3

        # Further polling does nothing once the session is gone.
        assert ctl.poll() is None
        assert events["scans"] == ["PART-00042"]

    def test_failing_scan_listener_still_returns_to_idle(self):
        def on_scan(text):
            raise RuntimeError("listener broke")

        platform = FakePlatform(images=frames())
        ctl = CameraCaptureController(platform, decoder=ScriptedDecoder(["PART-1"]), on_scan=on_scan)
        ctl.start()
        with pytest.raises(RuntimeError):
            ctl.poll()
        assert ctl.state is CaptureState.IDLE
        assert platform.open_streams == 0
        assert ctl.session is None

    def test_result_discarded_after_stop_during_decode(self):
        ctl, platform, events = make_controller()

        class StoppingDecoder:
            def decode_array(self, image):
                ctl.stop()
                return "LATE"

        ctl._decoder = StoppingDecoder()
        ctl.start()
        assert ctl.poll() is None
        assert events["scans"] == []
        assert ctl.state is CaptureState.IDLE

    def test_run_limit_stops_session(self):
        ctl, platform, events = make_controller()
        ctl.start()
        assert ctl.run(max_frames=5) is None
        assert platform.open_streams == 0
        assert ctl.state is CaptureState.IDLE

    def test_missed_frames_fail_the_stream(self):
        ctl, platform, events = make_controller(FakePlatform(images=[]))
        ctl.start()
        for _ in range(MAX_MISSED_FRAMES):
            ctl.poll()
        assert platform.open_streams == 0
        assert isinstance(events["errors"][-1], CaptureError)
        assert ctl.state is CaptureState.READY

    def test_read_error_goes_error_then_ready(self):
        ctl, platform, events = make_controller()
        ctl.start()

        def explode():
            raise OSError("unplugged")

        platform.opened[-1].read_frame = explode
        assert ctl.poll() is None
        assert platform.open_streams == 0
        assert events["states"][-2:] == [CaptureState.ERROR, CaptureState.READY]

        # Recoverable: scanning can start again.
        assert ctl.start() is True

    def test_real_decoder_reads_qr_frame(self):
        platform = FakePlatform(images=[render_qr("LIVE-1", canvas=(480, 640))])
        ctl = CameraCaptureController(platform)
        ctl.start()
        assert ctl.run(max_frames=3) == "LIVE-1"
        assert platform.open_streams == 0
