"""
ingestion/base.py
-----------------
Abstract platform surface for live capture.

* :class:`CameraPlatform` asks for permission, lists devices and opens streams.
* :class:`CameraStream` is one open device: it yields frames and must release
  the hardware in ``stop()``.

Concrete implementations (OpenCV, test doubles, ...) implement the abstract
methods. Capability tuning (autofocus, zoom) is optional and reports
``False`` by default.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterator

from codescan.core.models import DeviceInfo, RawFrame


@dataclass(frozen=True)
class StreamConstraints:
    """Resolution hints passed when a stream is opened."""

    min_width: int = 640
    min_height: int = 480
    ideal_width: int = 1280
    ideal_height: int = 720


class CameraStream(ABC):
    """Interface contract for one open capture device."""

    @abstractmethod
    def read_frame(self) -> RawFrame | None:
        """Return the next :class:`RawFrame`, or ``None`` if none is available."""

    @abstractmethod
    def stop(self) -> None:
        """Release the hardware. Must be idempotent."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True until ``stop()`` has been called."""

    # ------------------------------------------------------------------
    # Optional capability tuning
    # ------------------------------------------------------------------

    def set_continuous_autofocus(self) -> bool:
        """Enable continuous autofocus. Returns False when unsupported."""
        return False

    def set_zoom(self, level: float) -> bool:
        """Apply a relative zoom factor (1.0 = none). Returns False when unsupported."""
        return False

    # ------------------------------------------------------------------
    # Convenience: iterable + context manager
    # ------------------------------------------------------------------

    def frames(self) -> Iterator[RawFrame]:
        """Yield frames until the stream stops delivering them."""
        while self.is_open:
            frame = self.read_frame()
            if frame is None:
                return
            yield frame

    def __enter__(self) -> "CameraStream":
        return self

    def __exit__(self, *_: object) -> None:
        self.stop()


class CameraPlatform(ABC):
    """Device discovery and stream acquisition."""

    @abstractmethod
    def request_permission(self) -> bool:
        """Ask for camera access once. Returns False if refused."""

    @abstractmethod
    def list_devices(self) -> list[DeviceInfo]:
        """Enumerate capture devices in platform order."""

    @abstractmethod
    def open_stream(self, device_id: str, constraints: StreamConstraints) -> CameraStream:
        """Open *device_id*.

        Raises:
            CaptureError: If the device cannot be opened.
        """
