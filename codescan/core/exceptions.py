"""
core/exceptions.py
------------------
Custom exception hierarchy for codescan.

Every error that can reach a user carries an :class:`ErrorKind` so the
orchestrator and the capture controller can classify failures without
inspecting messages.
"""

from codescan.core.models import ErrorKind


class CodeScanError(Exception):
    """Root exception for all codescan-specific errors."""

    kind: ErrorKind = ErrorKind.PROCESSING_ERROR


# --- Capture (client side) ---

class CaptureError(CodeScanError):
    """Raised when a capture device cannot be opened or read."""


class PermissionDeniedError(CaptureError):
    """Raised when the platform refuses camera access."""

    kind = ErrorKind.PERMISSION_DENIED


class NoDeviceFoundError(CaptureError):
    """Raised when permission was granted but no capture device exists."""

    kind = ErrorKind.NO_DEVICE_FOUND


# --- Decoding (server side) ---

class NoCodeFoundError(CodeScanError):
    """Raised when the strategy chain is exhausted without a match."""

    kind = ErrorKind.NO_CODE_FOUND


class ProcessingError(CodeScanError):
    """Raised when preprocessing or the native decoder cannot handle an image."""

    kind = ErrorKind.PROCESSING_ERROR


class ExternalServiceUnavailableError(CodeScanError):
    """Raised when the vision service times out, is unreachable or misbehaves."""

    kind = ErrorKind.EXTERNAL_SERVICE_UNAVAILABLE


class QuotaExceededError(ExternalServiceUnavailableError):
    """Raised when the vision service rejects a call for quota reasons."""

    kind = ErrorKind.QUOTA_EXCEEDED


# --- Configuration ---

class ConfigError(CodeScanError):
    """Raised when the configuration file is missing or invalid."""
