"""
processing/orchestrator.py
--------------------------
DecodeOrchestrator: resolves one uploaded image to exactly one DecodeResult.

  bytes + content type
    → DecodeRequest (unique scratch token)
    → TempResourceManager scope (raw upload persisted)
    → strategy chain, first success wins
    → DecodeResult (scratch scope already cleaned up)

``decode()`` never raises. Strategy failures are folded into the attempt
list, and anything unexpected is logged and reported as a processing error.
The orchestrator holds no per-request state, so one instance can serve
concurrent requests.
"""

from __future__ import annotations

import logging
import mimetypes
import time
from pathlib import Path
from typing import Callable, Optional

from codescan.core.config import AppConfig
from codescan.core.models import (
    AttemptOutcome,
    DecodeAttempt,
    DecodeRequest,
    DecodeResult,
    ErrorKind,
)
from codescan.processing.preprocess import ImagePreprocessor
from codescan.processing.scratch import TempResourceManager
from codescan.processing.strategies import DecodeContext, DecodeStrategy, build_chain

logger = logging.getLogger(__name__)

MESSAGES = {
    ErrorKind.NO_CODE_FOUND: (
        "Could not detect a barcode in the image. "
        "Please ensure the code is clear, well-lit and fully framed."
    ),
    ErrorKind.PROCESSING_ERROR: "Failed to read the uploaded image. Please try another photo.",
    ErrorKind.EXTERNAL_SERVICE_UNAVAILABLE: (
        "AI vision service temporarily unavailable. Please use manual entry."
    ),
    ErrorKind.QUOTA_EXCEEDED: "AI service quota exceeded. Please use manual entry or contact support.",
}
DEADLINE_MESSAGE = "Barcode detection took too long. Please try again or use manual entry."

_SERVICE_OUTCOMES = {
    AttemptOutcome.EXTERNAL_SERVICE_UNAVAILABLE: ErrorKind.EXTERNAL_SERVICE_UNAVAILABLE,
    AttemptOutcome.QUOTA_EXCEEDED: ErrorKind.QUOTA_EXCEEDED,
}


class DecodeOrchestrator:
    """Runs the ordered, short-circuiting strategy chain for each request."""

    def __init__(
        self,
        config: AppConfig,
        strategies: Optional[list[DecodeStrategy]] = None,
        scratch: Optional[TempResourceManager] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cfg = config
        self._pre = ImagePreprocessor(config.preprocess)
        self._chain = strategies if strategies is not None else build_chain(config, preprocessor=self._pre)
        self._scratch = scratch or TempResourceManager(config.scratch_dir_path())
        self._clock = clock

    @property
    def strategy_names(self) -> list[str]:
        return [s.name for s in self._chain]

    @property
    def scratch(self) -> TempResourceManager:
        return self._scratch

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def decode(self, data: bytes, content_type: str = "application/octet-stream") -> DecodeResult:
        """Decode *data* and return the single final result. Never raises."""
        return self.run(DecodeRequest(data=data, content_type=content_type))

    def decode_path(self, path: str | Path) -> DecodeResult:
        """Convenience wrapper for local files (CLI, tools)."""
        path = Path(path)
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return self.decode(path.read_bytes(), content_type)

    def run(self, request: DecodeRequest) -> DecodeResult:
        started = self._clock()
        attempts: list[DecodeAttempt] = []
        logger.info(
            "Decode request %s: %d bytes (%s)",
            request.token[:8], len(request.data), request.content_type,
        )
        try:
            with self._scratch.scope(request.token) as scratch:
                raw = scratch.acquire(request.data, suffix=request.suffix, name="upload")
                ctx = DecodeContext(request, scratch, raw, self._pre)
                result = self._run_chain(ctx, attempts, started)
        except Exception:
            logger.exception("Decode request %s failed unexpectedly", request.token[:8])
            result = self._failure(ErrorKind.PROCESSING_ERROR, attempts)

        elapsed_ms = (self._clock() - started) * 1000
        if result.success:
            logger.info(
                "Decode request %s: '%s' via %s in %.0f ms",
                request.token[:8], result.text, result.winning_strategy, elapsed_ms,
            )
        else:
            logger.info(
                "Decode request %s: %s after %d attempt(s) in %.0f ms",
                request.token[:8], result.error_kind.value if result.error_kind else "?",
                len(attempts), elapsed_ms,
            )
        return result

    # ------------------------------------------------------------------
    # Chain
    # ------------------------------------------------------------------

    def _run_chain(self, ctx: DecodeContext, attempts: list[DecodeAttempt], started: float) -> DecodeResult:
        deadline = self._cfg.decode.request_deadline_s
        for strategy in self._chain:
            if deadline and self._clock() - started > deadline:
                logger.warning(
                    "Decode request %s: deadline of %.1fs exceeded before %s",
                    ctx.request.token[:8], deadline, strategy.name,
                )
                return DecodeResult(
                    success=False,
                    error_kind=ErrorKind.EXTERNAL_SERVICE_UNAVAILABLE,
                    message=DEADLINE_MESSAGE,
                    attempts=attempts,
                )

            attempt = strategy.attempt(ctx)
            attempts.append(attempt)
            logger.debug(
                "Decode request %s: %s -> %s%s",
                ctx.request.token[:8], attempt.strategy, attempt.outcome.value,
                " (original bytes)" if attempt.fallback_used else "",
            )
            if attempt.succeeded:
                return DecodeResult(success=True, text=attempt.text, attempts=attempts)

        return self._failure(self._classify(attempts), attempts)

    @staticmethod
    def _classify(attempts: list[DecodeAttempt]) -> ErrorKind:
        for attempt in attempts:
            if attempt.outcome in _SERVICE_OUTCOMES:
                return _SERVICE_OUTCOMES[attempt.outcome]
        native = [a for a in attempts if a.strategy != "vision"]
        if native and all(a.outcome is AttemptOutcome.PROCESSING_ERROR for a in native):
            return ErrorKind.PROCESSING_ERROR
        return ErrorKind.NO_CODE_FOUND

    @staticmethod
    def _failure(kind: ErrorKind, attempts: list[DecodeAttempt]) -> DecodeResult:
        return DecodeResult(success=False, error_kind=kind, message=MESSAGES[kind], attempts=attempts)
