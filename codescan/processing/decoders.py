"""
processing/decoders.py
----------------------
Thin wrapper around the zxing-cpp symbol decoder.

codescan never decodes bar patterns itself; this module only adapts
``zxingcpp.read_barcodes`` to numpy arrays and scratch files and turns
library faults into :class:`ProcessingError`.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
import zxingcpp

from codescan.core.exceptions import ProcessingError
from codescan.processing import preprocess

logger = logging.getLogger(__name__)

_UPC_FAMILY = {"EAN13", "UPCA"}


def format_name(fmt) -> str:
    """``BarcodeFormat.EAN13`` / ``EAN-13`` → ``EAN13``."""
    return str(fmt).replace("BarcodeFormat.", "").replace("-", "").upper()


def normalize_text(text: str, fmt) -> str:
    """Report UPC-A symbols as 12 digits.

    Some zxing-cpp releases return a UPC-A as the equivalent EAN-13, i.e.
    with a leading ``0``.
    """
    if format_name(fmt) in _UPC_FAMILY and len(text) == 13 and text.isdigit() and text[0] == "0":
        return text[1:]
    return text


class NativeDecoder:
    """Decodes the first optical code found in an image."""

    def __init__(
        self,
        formats: Sequence[str] = (),
        try_rotate: bool = False,
        try_downscale: bool = True,
    ) -> None:
        """
        Args:
            formats:       zxing-cpp format names (e.g. ``["QRCode", "UPCA"]``).
                           Empty means every supported format.
            try_rotate:    Let zxing-cpp try rotated scans internally. Off on the
                           server path, where rotation is its own strategy.
            try_downscale: Let zxing-cpp retry on downscaled copies.
        """
        self._formats = self._parse_formats(formats)
        self._try_rotate = try_rotate
        self._try_downscale = try_downscale

    @staticmethod
    def _parse_formats(formats: Sequence[str]):
        if not formats:
            return None
        try:
            return zxingcpp.barcode_formats_from_str(",".join(formats))
        except ValueError as exc:
            raise ProcessingError(f"Unknown barcode format in {list(formats)}: {exc}") from exc

    def decode_array(self, image: np.ndarray) -> Optional[str]:
        """Return the text of the first code in *image*, or ``None``.

        Raises:
            ProcessingError: If zxing-cpp rejects the array.
        """
        if image.ndim == 3:
            image = preprocess.to_grayscale(image)
        kwargs = {"try_rotate": self._try_rotate, "try_downscale": self._try_downscale}
        if self._formats is not None:
            kwargs["formats"] = self._formats
        try:
            results = zxingcpp.read_barcodes(np.ascontiguousarray(image), **kwargs)
        except (RuntimeError, ValueError, TypeError) as exc:
            raise ProcessingError(f"zxing-cpp failed: {exc}") from exc

        for r in results:
            text = (r.text or "").strip().strip("\x00")
            if text:
                text = normalize_text(text, r.format)
                logger.debug("zxing-cpp: %s '%s'", format_name(r.format), text)
                return text
        return None

    def decode_bytes(self, data: bytes) -> Optional[str]:
        return self.decode_array(preprocess.load(data))

    def decode_file(self, path: str | Path) -> Optional[str]:
        """Decode the image stored at *path*.

        Raises:
            ProcessingError: If the file cannot be read or decoded as an image.
        """
        try:
            data = Path(path).read_bytes()
        except OSError as exc:
            raise ProcessingError(f"Cannot read {path}: {exc}") from exc
        return self.decode_bytes(data)
