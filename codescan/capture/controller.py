"""
capture/controller.py
---------------------
CameraCaptureController: live camera session + continuous local decoding,
exposed to the UI as a small state machine.

  IDLE → INITIALIZING → READY → SCANNING ─┬→ FOUND     → IDLE
               │                          ├→ ERROR     → READY
               │                          └→ CANCELLED → IDLE
               ├→ PERMISSION_DENIED   (terminal; only an explicit initialize() starts over)
               └→ ERROR               (no device found)

Everything runs on the caller's thread. ``poll()`` handles exactly one frame,
so a UI loop can interleave it with event handling; ``run()`` loops it for
headless use. Hardware is released synchronously by ``stop()``, ``close()``,
``select_device()`` and on the first decoded code.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from codescan.capture.devices import choose_device, display_name
from codescan.core.config import CaptureConfig
from codescan.core.exceptions import (
    CaptureError,
    NoDeviceFoundError,
    PermissionDeniedError,
    ProcessingError,
)
from codescan.core.models import CaptureSession, CaptureState, DeviceInfo
from codescan.ingestion.base import CameraPlatform, CameraStream, StreamConstraints
from codescan.processing.decoders import NativeDecoder

logger = logging.getLogger(__name__)

# Consecutive empty reads before a stream is considered dead.
MAX_MISSED_FRAMES = 30


class CameraCaptureController:
    """Owns at most one live :class:`CaptureSession` at a time."""

    def __init__(
        self,
        platform: CameraPlatform,
        decoder: Optional[NativeDecoder] = None,
        on_scan: Optional[Callable[[str], None]] = None,
        on_close: Optional[Callable[[], None]] = None,
        on_state: Optional[Callable[[CaptureState], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
        config: Optional[CaptureConfig] = None,
    ) -> None:
        self._platform = platform
        self._decoder = decoder or NativeDecoder(try_rotate=True)
        self._on_scan = on_scan
        self._on_close = on_close
        self._on_state = on_state
        self._on_error = on_error
        self._cfg = config or CaptureConfig()

        self._state = CaptureState.IDLE
        self._devices: list[DeviceInfo] = []
        self._selected: Optional[str] = None
        self._session: Optional[CaptureSession] = None
        self._last_error: Optional[Exception] = None
        self._missed = 0

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def session(self) -> Optional[CaptureSession]:
        return self._session

    @property
    def devices(self) -> list[DeviceInfo]:
        return list(self._devices)

    @property
    def selected_device(self) -> Optional[str]:
        return self._selected

    @property
    def last_error(self) -> Optional[Exception]:
        return self._last_error

    def device_options(self) -> list[tuple[str, str]]:
        """``(device_id, display name)`` pairs for a device picker."""
        return [(d.device_id, display_name(d, i)) for i, d in enumerate(self._devices)]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> CaptureState:
        """Ask for permission, enumerate devices and auto-select one."""
        self._release_session()
        self._set_state(CaptureState.INITIALIZING)
        self._last_error = None

        try:
            granted = self._platform.request_permission()
        except Exception as exc:
            logger.exception("Camera permission request failed")
            granted = False
            self._last_error = exc
        if not granted:
            error = PermissionDeniedError("Camera permission denied. Please allow camera access.")
            self._report(error)
            self._set_state(CaptureState.PERMISSION_DENIED)
            return self._state

        try:
            self._devices = list(self._platform.list_devices())
        except Exception as exc:
            logger.exception("Camera enumeration failed")
            self._devices = []
            self._report(CaptureError(f"Camera enumeration failed: {exc}"))
            self._set_state(CaptureState.ERROR)
            return self._state

        chosen = choose_device(self._devices)
        if chosen is None:
            self._selected = None
            self._report(NoDeviceFoundError("No cameras found on this device."))
            self._set_state(CaptureState.ERROR)
            return self._state

        self._selected = chosen.device_id
        logger.info("Selected camera %s (%s)", chosen.device_id, chosen.label or "no label")
        self._set_state(CaptureState.READY)
        return self._state

    def select_device(self, device_id: str) -> None:
        """Switch to *device_id*, releasing any live stream first."""
        if not any(d.device_id == device_id for d in self._devices):
            raise NoDeviceFoundError(f"Unknown camera: {device_id}")
        self.stop()
        self._selected = device_id
        logger.info("Camera switched to %s", device_id)

    def start(self) -> bool:
        """Open the selected device and begin scanning.

        Returns:
            True if the controller is now ``SCANNING``.
        """
        if self._state is CaptureState.PERMISSION_DENIED:
            logger.info("start() ignored: camera permission was denied")
            return False
        if self._state is CaptureState.INITIALIZING:
            return False
        if self._session is not None:
            self.stop()
        if self._selected is None:
            # Only a fresh controller initialises implicitly; a NoDeviceFound
            # error needs an explicit initialize() from the user.
            if self._state is not CaptureState.IDLE or self.initialize() is not CaptureState.READY:
                return False

        device_id = self._selected
        constraints = StreamConstraints(
            min_width=self._cfg.min_width,
            min_height=self._cfg.min_height,
            ideal_width=self._cfg.ideal_width,
            ideal_height=self._cfg.ideal_height,
        )
        try:
            stream = self._platform.open_stream(device_id, constraints)
        except Exception as exc:
            self._fail(exc if isinstance(exc, CaptureError) else CaptureError(f"Camera failed to start: {exc}"))
            return False

        self._session = CaptureSession(device_id=device_id, stream=stream, state=CaptureState.SCANNING)
        self._missed = 0
        self._last_error = None
        self._tune(stream)
        self._set_state(CaptureState.SCANNING)
        return True

    def stop(self) -> None:
        """Cancel scanning and release the hardware now. Idempotent."""
        if self._session is None:
            return
        self._release_session()
        self._set_state(CaptureState.CANCELLED)
        self._set_state(CaptureState.IDLE)

    def close(self) -> None:
        """Stop scanning and notify ``on_close``."""
        self.stop()
        if self._on_close:
            self._on_close()

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def poll(self) -> Optional[str]:
        """Read and decode one frame. Returns the code on the frame that finds it."""
        session = self._session
        if self._state is not CaptureState.SCANNING or session is None or session.stream is None:
            return None

        try:
            frame = session.stream.read_frame()
        except Exception as exc:
            self._fail(CaptureError(f"Camera read failed: {exc}"))
            return None

        if frame is None:
            self._missed += 1
            if self._missed >= MAX_MISSED_FRAMES:
                self._fail(CaptureError("Camera stopped delivering frames"))
            return None
        self._missed = 0

        try:
            text = self._decoder.decode_array(frame.image)
        except ProcessingError as exc:
            logger.debug("Frame %d not decodable: %s", frame.frame_id, exc)
            return None

        # The session may have been cancelled while the frame was decoding.
        if not text or session is not self._session or not session.is_live or session.emitted:
            return None

        session.emitted = True
        self._release_session()
        self._set_state(CaptureState.FOUND)
        logger.info("Code found on frame %d: '%s'", frame.frame_id, text)
        try:
            if self._on_scan:
                self._on_scan(text)
        finally:
            if self._state is CaptureState.FOUND:
                self._set_state(CaptureState.IDLE)
        return text

    def run(self, max_frames: Optional[int] = None, timeout_s: Optional[float] = None) -> Optional[str]:
        """Poll until a code is found, scanning stops, or a limit is reached.

        Hitting *max_frames* or *timeout_s* stops the session.
        """
        deadline = time.monotonic() + timeout_s if timeout_s else None
        frames = 0
        while self._state is CaptureState.SCANNING:
            text = self.poll()
            if text is not None:
                return text
            frames += 1
            if (max_frames is not None and frames >= max_frames) or (
                deadline is not None and time.monotonic() >= deadline
            ):
                self.stop()
                break
        return None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _tune(self, stream: CameraStream) -> None:
        """Best-effort autofocus and zoom; unsupported settings are only logged."""
        if self._cfg.autofocus:
            try:
                if not stream.set_continuous_autofocus():
                    logger.debug("Continuous autofocus not supported")
            except Exception as exc:
                logger.debug("Autofocus could not be enabled: %s", exc)
        if self._cfg.zoom > 1.0:
            try:
                if not stream.set_zoom(self._cfg.zoom):
                    logger.debug("Zoom not supported")
            except Exception as exc:
                logger.debug("Zoom could not be applied: %s", exc)

    def _release_session(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            session.release()

    def _fail(self, error: Exception) -> None:
        self._release_session()
        self._report(error)
        self._set_state(CaptureState.ERROR)
        if self._selected is not None:
            self._set_state(CaptureState.READY)

    def _report(self, error: Exception) -> None:
        self._last_error = error
        logger.warning("Capture error: %s", error)
        if self._on_error:
            self._on_error(error)

    def _set_state(self, state: CaptureState) -> None:
        if state is self._state:
            return
        logger.debug("Capture state %s -> %s", self._state.value, state.value)
        self._state = state
        if self._session is not None:
            self._session.state = state
        if self._on_state:
            self._on_state(state)
