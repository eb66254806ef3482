"""
ingestion/camera.py
-------------------
OpenCV-backed camera platform for live capture on desktops and single-board
computers.

Device ids are OpenCV capture indices as strings. On Linux the V4L2 device
name from sysfs is used as the label so the rear/front heuristics in
``capture.devices`` have something to work with; elsewhere labels are
``Camera <n>``.
"""

from __future__ import annotations

import logging
import os
import re
import sys
import time
from pathlib import Path

import cv2

from codescan.core.exceptions import CaptureError
from codescan.core.models import DeviceInfo, RawFrame
from codescan.ingestion.base import CameraPlatform, CameraStream, StreamConstraints

logger = logging.getLogger(__name__)

_SYSFS_V4L = Path("/sys/class/video4linux")
_DEV = Path("/dev")


class OpenCVCameraStream(CameraStream):
    """A live ``cv2.VideoCapture`` stream."""

    def __init__(self, device_id: str, cap: cv2.VideoCapture) -> None:
        self._device_id = device_id
        self._cap: cv2.VideoCapture | None = cap
        self._frame_id = 0
        self._opened_at = time.monotonic()

    @property
    def is_open(self) -> bool:
        return self._cap is not None

    def read_frame(self) -> RawFrame | None:
        if self._cap is None:
            return None
        ok, image = self._cap.read()
        if not ok or image is None:
            return None
        frame = RawFrame(
            frame_id=self._frame_id,
            timestamp_ms=(time.monotonic() - self._opened_at) * 1000,
            image=image,
            source=self._device_id,
        )
        self._frame_id += 1
        return frame

    def stop(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            logger.debug("Camera %s released", self._device_id)

    def set_continuous_autofocus(self) -> bool:
        if self._cap is None:
            return False
        return bool(self._cap.set(cv2.CAP_PROP_AUTOFOCUS, 1))

    def set_zoom(self, level: float) -> bool:
        # CAP_PROP_ZOOM is an absolute, driver-specific value; scale the current one.
        if self._cap is None:
            return False
        current = self._cap.get(cv2.CAP_PROP_ZOOM)
        if current <= 0:
            return False
        return bool(self._cap.set(cv2.CAP_PROP_ZOOM, current * level))


class OpenCVCameraPlatform(CameraPlatform):
    """Discovers cameras by probing OpenCV capture indices."""

    def __init__(self, max_probe: int = 8) -> None:
        self._max_probe = max_probe

    def request_permission(self) -> bool:
        """On Linux, refuse when device nodes exist but none is accessible."""
        if not sys.platform.startswith("linux"):
            return True
        nodes = sorted(_DEV.glob("video*"))
        if not nodes:
            return True
        granted = any(os.access(node, os.R_OK | os.W_OK) for node in nodes)
        if not granted:
            logger.warning("No read/write access to %s (is the user in the 'video' group?)", nodes[0])
        return granted

    def _candidate_indices(self) -> list[int]:
        if _SYSFS_V4L.is_dir():
            indices = []
            for entry in _SYSFS_V4L.iterdir():
                match = re.fullmatch(r"video(\d+)", entry.name)
                if match:
                    indices.append(int(match.group(1)))
            if indices:
                return sorted(indices)[: self._max_probe]
        return list(range(self._max_probe))

    @staticmethod
    def _label(index: int) -> str:
        name_file = _SYSFS_V4L / f"video{index}" / "name"
        try:
            name = name_file.read_text(encoding="utf-8").strip()
        except OSError:
            name = ""
        return name or f"Camera {index}"

    def list_devices(self) -> list[DeviceInfo]:
        devices: list[DeviceInfo] = []
        for index in self._candidate_indices():
            cap = cv2.VideoCapture(index)
            try:
                if cap.isOpened():
                    devices.append(DeviceInfo(device_id=str(index), label=self._label(index)))
            finally:
                cap.release()
        logger.info("Found %d camera(s): %s", len(devices), [d.label for d in devices])
        return devices

    def open_stream(self, device_id: str, constraints: StreamConstraints) -> CameraStream:
        try:
            index = int(device_id)
        except ValueError:
            raise CaptureError(f"Invalid OpenCV device id: {device_id!r}") from None

        cap = cv2.VideoCapture(index)
        if not cap.isOpened():
            cap.release()
            raise CaptureError(f"OpenCV could not open camera {device_id}")

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.ideal_width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.ideal_height)
        width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        if width < constraints.min_width or height < constraints.min_height:
            logger.warning(
                "Camera %s delivers %dx%d, below the %dx%d minimum; decoding may suffer",
                device_id, width, height, constraints.min_width, constraints.min_height,
            )
        logger.info("Opened camera %s at %dx%d", device_id, width, height)
        return OpenCVCameraStream(device_id, cap)
