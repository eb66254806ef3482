"""
core/models.py
--------------
Central data-transfer objects used by both halves of codescan: live capture
on the client and fallback decoding on the server.
All fields are plain Python types / numpy arrays so they can cross module
boundaries without circular imports.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

import numpy as np

if TYPE_CHECKING:
    from codescan.ingestion.base import CameraStream

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Classification enums
# ---------------------------------------------------------------------------

class ErrorKind(str, Enum):
    """User-facing error taxonomy."""

    PERMISSION_DENIED = "permission-denied"
    NO_DEVICE_FOUND = "no-device-found"
    NO_CODE_FOUND = "no-code-found"
    PROCESSING_ERROR = "processing-error"
    EXTERNAL_SERVICE_UNAVAILABLE = "external-service-unavailable"
    QUOTA_EXCEEDED = "quota-exceeded"


class AttemptOutcome(str, Enum):
    """Outcome of a single strategy attempt."""

    SUCCESS = "success"
    NO_CODE_FOUND = "no-code-found"
    PROCESSING_ERROR = "processing-error"
    EXTERNAL_SERVICE_UNAVAILABLE = "external-service-unavailable"
    QUOTA_EXCEEDED = "quota-exceeded"


class CaptureState(str, Enum):
    """States of the live capture state machine."""

    IDLE = "idle"
    INITIALIZING = "initializing"
    READY = "ready"
    SCANNING = "scanning"
    FOUND = "found"
    ERROR = "error"
    CANCELLED = "cancelled"
    PERMISSION_DENIED = "permission-denied"


# ---------------------------------------------------------------------------
# Capture layer (client)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DeviceInfo:
    """A capture device as reported by the platform."""

    device_id: str
    label: str = ""


@dataclass
class RawFrame:
    """A single frame as delivered by a live camera stream."""

    frame_id: int
    """Zero-based index of the frame within the current stream."""

    timestamp_ms: float
    """Milliseconds since the stream was opened."""

    image: np.ndarray
    """BGR image array, shape (H, W, 3), dtype uint8."""

    source: str = ""
    """Device identifier the frame came from."""


@dataclass
class CaptureSession:
    """Explicitly owned live capture: one device, at most one open stream."""

    device_id: str
    stream: Optional["CameraStream"] = None
    state: CaptureState = CaptureState.IDLE
    last_error: Optional[Exception] = None
    emitted: bool = False
    """True once the decoded text has been handed to the caller."""

    @property
    def is_live(self) -> bool:
        return self.stream is not None

    def release(self) -> None:
        """Stop the stream and drop the handle. Safe to call repeatedly."""
        stream, self.stream = self.stream, None
        if stream is None:
            return
        try:
            stream.stop()
        except Exception:
            logger.exception("CaptureSession: stream for %s failed to stop", self.device_id)


# ---------------------------------------------------------------------------
# Decode layer (server)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DecodeRequest:
    """One uploaded image. Immutable once created."""

    data: bytes = field(repr=False)
    content_type: str = "application/octet-stream"
    token: str = field(default_factory=lambda: uuid.uuid4().hex)
    """Unique scratch-directory token for this request."""

    @property
    def suffix(self) -> str:
        """File suffix matching the declared content type."""
        return _SUFFIXES.get(self.content_type.lower(), ".bin")


_SUFFIXES = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/bmp": ".bmp",
    "image/tiff": ".tif",
}


@dataclass
class DecodeAttempt:
    """Result of one strategy in the chain. Never persisted."""

    strategy: str
    outcome: AttemptOutcome
    text: Optional[str] = None
    variant: Optional[bytes] = field(default=None, repr=False)
    """The buffer the decode ran against, if the strategy produced one."""

    detail: str = ""
    fallback_used: bool = False
    """Preprocessing failed and the untouched original bytes were decoded."""

    @property
    def succeeded(self) -> bool:
        return self.outcome is AttemptOutcome.SUCCESS

    @property
    def variant_digest(self) -> Optional[str]:
        if self.variant is None:
            return None
        return hashlib.sha1(self.variant).hexdigest()

    def signature(self) -> tuple[str, str, Optional[str], Optional[str]]:
        """Comparable summary used to check that runs are deterministic."""
        return (self.strategy, self.outcome.value, self.text, self.variant_digest)


@dataclass
class DecodeResult:
    """Final answer for one DecodeRequest."""

    success: bool
    text: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    message: str = ""
    attempts: list[DecodeAttempt] = field(default_factory=list)

    @property
    def winning_strategy(self) -> Optional[str]:
        for attempt in self.attempts:
            if attempt.succeeded:
                return attempt.strategy
        return None

    def to_response(self) -> dict[str, Any]:
        """Wire shape returned by the upload endpoint."""
        if self.success:
            return {"success": True, "barcode": self.text}
        return {
            "success": False,
            "error": self.message,
            "errorKind": self.error_kind.value if self.error_kind else None,
        }
