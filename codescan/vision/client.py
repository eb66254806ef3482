"""
vision/client.py
----------------
Client for an external, vision-capable language model (OpenAI-compatible
chat-completions API) used as the last resort when local decoding fails.

The call is a single blocking HTTP request bounded by ``vision.timeout_s``.
It is never retried: callers surface the failure and suggest manual entry.
"""

from __future__ import annotations

import base64
import logging
import re
from typing import Any, Optional

import requests

from codescan.core.config import VisionConfig
from codescan.core.exceptions import ExternalServiceUnavailableError, QuotaExceededError

logger = logging.getLogger(__name__)

NO_CODE_SENTINEL = "NO_BARCODE_FOUND"

PROMPT = f"""Analyze this image and extract any barcodes you can find. Look for:
- UPC/EAN barcodes (numbers below black bars)
- QR codes
- Code 128/Code 39 barcodes
- Any other machine-readable codes

If you find a barcode, respond with ONLY the barcode number/text with no additional formatting or explanation.
If you cannot find any readable barcode, respond with exactly: "{NO_CODE_SENTINEL}"

Focus on accuracy - only return codes you can clearly read."""

_NON_CODE_CHARS = re.compile(r"[^A-Za-z0-9\-_]")
_NON_DIGITS = re.compile(r"[^0-9]")


def clean_code_text(text: str) -> Optional[str]:
    """Strip commentary from a model reply and keep something code-shaped.

    Returns the cleaned code, or ``None`` if nothing plausible remains.
    """
    compact = _NON_CODE_CHARS.sub("", text).strip()
    if 4 <= len(compact) <= 50:
        return compact
    digits = _NON_DIGITS.sub("", text)
    if 8 <= len(digits) <= 20:
        return digits
    return None


class VisionClient:
    """Asks the vision model to read the code in an image."""

    def __init__(self, config: VisionConfig, session: Optional[requests.Session] = None) -> None:
        self._cfg = config
        self._session = session or requests.Session()

    @property
    def available(self) -> bool:
        return self._cfg.available

    def _payload(self, image: bytes, mime: str) -> dict[str, Any]:
        encoded = base64.b64encode(image).decode("ascii")
        return {
            "model": self._cfg.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": PROMPT},
                        {
                            "type": "image_url",
                            "image_url": {
                                "url": f"data:{mime};base64,{encoded}",
                                "detail": self._cfg.detail,
                            },
                        },
                    ],
                }
            ],
            "max_tokens": self._cfg.max_tokens,
            "temperature": self._cfg.temperature,
        }

    def read_code(self, image: bytes, mime: str = "image/jpeg") -> Optional[str]:
        """Return the code the model reads in *image*, or ``None`` if it sees none.

        Raises:
            QuotaExceededError: The service rejected the call for quota/rate reasons.
            ExternalServiceUnavailableError: Timeout, connection failure, server
                error, or a reply that cannot be parsed.
        """
        if not self.available:
            raise ExternalServiceUnavailableError("Vision service is not configured")

        url = self._cfg.base_url.rstrip("/") + "/chat/completions"
        logger.info("Sending image to vision model %s (%d bytes)", self._cfg.model, len(image))
        try:
            resp = self._session.post(
                url,
                json=self._payload(image, mime),
                headers={"Authorization": f"Bearer {self._cfg.api_key}"},
                timeout=self._cfg.timeout_s,
            )
        except requests.Timeout as exc:
            raise ExternalServiceUnavailableError(
                f"Vision service timed out after {self._cfg.timeout_s:.1f}s"
            ) from exc
        except requests.RequestException as exc:
            raise ExternalServiceUnavailableError(f"Vision service unreachable: {exc}") from exc

        body = self._json(resp)
        if resp.status_code == 429 or _error_code(body) == "insufficient_quota":
            raise QuotaExceededError("Vision service quota exceeded")
        if resp.status_code >= 400:
            raise ExternalServiceUnavailableError(
                f"Vision service returned HTTP {resp.status_code}"
            )

        try:
            content = body["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as exc:
            raise ExternalServiceUnavailableError("Unexpected reply from vision service") from exc

        content = content.strip()
        if not content or content.strip('"') == NO_CODE_SENTINEL:
            logger.info("Vision model found no code")
            return None

        code = clean_code_text(content)
        if code is None:
            logger.info("Vision model replied with text that is not a code: %r", content[:80])
        return code

    @staticmethod
    def _json(resp: requests.Response) -> Any:
        try:
            return resp.json()
        except ValueError:
            if resp.status_code < 400:
                raise ExternalServiceUnavailableError("Vision service returned invalid JSON") from None
            return {}


def _error_code(body: Any) -> Optional[str]:
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"].get("code")
    return None
