"""
processing/preprocess.py
------------------------
Pure, deterministic image transforms that turn an uploaded photo into
decode-friendly variants.

Every function returns a new array / buffer; inputs are never modified.
Variants produced by :class:`ImagePreprocessor`:

1. ``optimize``       bound longest edge, grayscale, normalize, sharpen
2. ``rotate(deg)``    rotate by a right angle, grayscale, normalize
3. ``for_transport``  bound longest edge for the vision model, JPEG
"""

from __future__ import annotations

import logging

import cv2
import numpy as np

from codescan.core.config import PreprocessConfig
from codescan.core.exceptions import ProcessingError

logger = logging.getLogger(__name__)

# rotate(90) undoes a code that was photographed turned 90° clockwise.
_ROTATE_CODES = {
    90: cv2.ROTATE_90_COUNTERCLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_CLOCKWISE,
}


# ---------------------------------------------------------------------------
# Array-level transforms
# ---------------------------------------------------------------------------

def load(data: bytes) -> np.ndarray:
    """Decode encoded image bytes (JPEG, PNG, ...) into a BGR array.

    Raises:
        ProcessingError: If the bytes are empty, corrupt or in an unsupported format.
    """
    if not data:
        raise ProcessingError("Empty image buffer")
    buf = np.frombuffer(data, dtype=np.uint8)
    try:
        image = cv2.imdecode(buf, cv2.IMREAD_COLOR)
    except cv2.error as exc:
        raise ProcessingError(f"OpenCV could not decode image: {exc}") from exc
    if image is None:
        raise ProcessingError("Unsupported or corrupt image data")
    return image


def resize_to_fit(image: np.ndarray, max_edge: int) -> np.ndarray:
    """Shrink *image* so its longest edge is at most *max_edge*. Never upscales."""
    h, w = image.shape[:2]
    longest = max(h, w)
    if longest <= max_edge:
        return image.copy()
    scale = max_edge / longest
    size = (max(1, round(w * scale)), max(1, round(h * scale)))
    return cv2.resize(image, size, interpolation=cv2.INTER_AREA)


def to_grayscale(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return image.copy()
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)


def normalize(gray: np.ndarray) -> np.ndarray:
    """Stretch intensities to the full 0-255 range."""
    return cv2.normalize(gray, None, 0, 255, cv2.NORM_MINMAX)


def sharpen(gray: np.ndarray, sigma: float = 1.5) -> np.ndarray:
    """Unsharp mask: subtract a Gaussian-blurred copy to emphasise edges."""
    blurred = cv2.GaussianBlur(gray, (0, 0), sigma)
    return cv2.addWeighted(gray, 1.5, blurred, -0.5, 0)


def rotate(image: np.ndarray, degrees: int) -> np.ndarray:
    """Rotate by 90, 180 or 270 degrees (see ``_ROTATE_CODES`` for direction)."""
    try:
        code = _ROTATE_CODES[degrees]
    except KeyError:
        raise ProcessingError(f"Unsupported rotation: {degrees}") from None
    return cv2.rotate(image, code)


def threshold(gray: np.ndarray) -> np.ndarray:
    """Binarize with Otsu's method after a light blur."""
    blurred = cv2.GaussianBlur(gray, (5, 5), 0)
    _, binary = cv2.threshold(blurred, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
    return binary


def encode(image: np.ndarray, fmt: str = ".png", jpeg_quality: int = 95) -> bytes:
    """Encode *image* to bytes in *fmt* (``.png`` or ``.jpg``)."""
    params: list[int] = []
    if fmt in (".jpg", ".jpeg"):
        params = [cv2.IMWRITE_JPEG_QUALITY, int(jpeg_quality)]
    ok, buf = cv2.imencode(fmt, image, params)
    if not ok:
        raise ProcessingError(f"OpenCV could not encode image as {fmt}")
    return buf.tobytes()


# ---------------------------------------------------------------------------
# Byte-level variants
# ---------------------------------------------------------------------------

class ImagePreprocessor:
    """Produces the byte-buffer variants the strategy chain decodes."""

    def __init__(self, config: PreprocessConfig | None = None) -> None:
        self._cfg = config or PreprocessConfig()

    @property
    def config(self) -> PreprocessConfig:
        return self._cfg

    def optimize(self, data: bytes) -> bytes:
        """Resized, grayscale, contrast-normalized and sharpened PNG."""
        image = resize_to_fit(load(data), self._cfg.max_edge)
        gray = normalize(to_grayscale(image))
        return encode(sharpen(gray, self._cfg.sharpen_sigma))

    def rotate(self, data: bytes, degrees: int) -> bytes:
        """Rotated, grayscale, contrast-normalized PNG.

        The optimized variant is usually passed in, so no further resizing
        happens here.
        """
        rotated = rotate(load(data), degrees)
        return encode(normalize(to_grayscale(rotated)))

    def for_transport(self, data: bytes) -> bytes:
        """JPEG bounded to ``vision_max_edge`` for the vision model."""
        image = resize_to_fit(load(data), self._cfg.vision_max_edge)
        return encode(image, ".jpg", self._cfg.jpeg_quality)

    def binarized(self, data: bytes) -> bytes:
        """Otsu-thresholded PNG, used when inspecting hard images."""
        gray = to_grayscale(resize_to_fit(load(data), self._cfg.max_edge))
        return encode(threshold(gray))
