"""
processing/strategies.py
------------------------
The closed set of decode strategies and the fixed chain they form.

Each strategy pairs an optional preprocessing transform with one decode call
and reports a :class:`DecodeAttempt`; it never raises for image or decoder
faults. Chain order, cheapest first:

  raw → optimized → rotate-90 → rotate-180 → rotate-270 → vision

Strategies share a per-request :class:`DecodeContext`, which memoises the
optimized variant so the rotations and the vision fallback build on it
without recomputing.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

from codescan.core.config import AppConfig
from codescan.core.exceptions import (
    ExternalServiceUnavailableError,
    ProcessingError,
    QuotaExceededError,
)
from codescan.core.models import AttemptOutcome, DecodeAttempt, DecodeRequest
from codescan.processing.decoders import NativeDecoder
from codescan.processing.preprocess import ImagePreprocessor
from codescan.processing.scratch import ScratchHandle, ScratchScope
from codescan.vision.client import VisionClient

logger = logging.getLogger(__name__)


class DecodeContext:
    """Per-request state shared by the strategies of one chain run."""

    def __init__(
        self,
        request: DecodeRequest,
        scratch: ScratchScope,
        raw_handle: ScratchHandle,
        preprocessor: ImagePreprocessor,
    ) -> None:
        self.request = request
        self.scratch = scratch
        self.raw_handle = raw_handle
        self._pre = preprocessor
        self._optimized: Optional[bytes] = None
        self._optimize_error: Optional[ProcessingError] = None

    def optimized(self) -> bytes:
        """The optimized variant, computed once.

        Raises:
            ProcessingError: If the upload cannot be preprocessed.
        """
        if self._optimize_error is not None:
            raise self._optimize_error
        if self._optimized is None:
            try:
                self._optimized = self._pre.optimize(self.request.data)
            except ProcessingError as exc:
                self._optimize_error = exc
                raise
        return self._optimized


class DecodeStrategy(ABC):
    """One ordered decode attempt."""

    name: str = "strategy"

    @abstractmethod
    def attempt(self, ctx: DecodeContext) -> DecodeAttempt:
        """Run this strategy against *ctx* and report the outcome."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


# ---------------------------------------------------------------------------
# Native-library strategies
# ---------------------------------------------------------------------------

class NativeStrategy(DecodeStrategy):
    """Base for strategies that run zxing-cpp on a (possibly transformed) image."""

    def __init__(self, decoder: NativeDecoder, preprocessor: ImagePreprocessor) -> None:
        self._decoder = decoder
        self._pre = preprocessor

    def variant(self, ctx: DecodeContext) -> Optional[bytes]:
        """Bytes to decode, or ``None`` to decode the raw scratch file."""
        return None

    def attempt(self, ctx: DecodeContext) -> DecodeAttempt:
        fallback_used = False
        try:
            data = self.variant(ctx)
        except ProcessingError as exc:
            logger.debug("%s: preprocessing failed (%s), decoding original bytes", self.name, exc)
            data, fallback_used = None, True

        handle: Optional[ScratchHandle] = None
        try:
            if data is None:
                text = self._decoder.decode_file(ctx.raw_handle.path)
            else:
                handle = ctx.scratch.acquire(data, suffix=".png", name=self.name)
                text = self._decoder.decode_file(handle.path)
        except ProcessingError as exc:
            return DecodeAttempt(
                strategy=self.name,
                outcome=AttemptOutcome.PROCESSING_ERROR,
                variant=data,
                detail=str(exc),
                fallback_used=fallback_used,
            )
        finally:
            if handle is not None:
                ctx.scratch.release(handle)

        outcome = AttemptOutcome.SUCCESS if text else AttemptOutcome.NO_CODE_FOUND
        return DecodeAttempt(
            strategy=self.name,
            outcome=outcome,
            text=text,
            variant=data,
            fallback_used=fallback_used,
        )


class RawStrategy(NativeStrategy):
    name = "raw"


class OptimizedStrategy(NativeStrategy):
    name = "optimized"

    def variant(self, ctx: DecodeContext) -> Optional[bytes]:
        return ctx.optimized()


class RotatedStrategy(NativeStrategy):
    """Decode the optimized image turned by a right angle."""

    def __init__(self, decoder: NativeDecoder, preprocessor: ImagePreprocessor, degrees: int) -> None:
        super().__init__(decoder, preprocessor)
        self.degrees = degrees
        self.name = f"rotate-{degrees}"

    def variant(self, ctx: DecodeContext) -> Optional[bytes]:
        try:
            base = ctx.optimized()
        except ProcessingError:
            base = ctx.request.data
        return self._pre.rotate(base, self.degrees)


# ---------------------------------------------------------------------------
# External vision-model fallback
# ---------------------------------------------------------------------------

class VisionStrategy(DecodeStrategy):
    """Last resort: ask the external vision model."""

    name = "vision"

    def __init__(self, client: VisionClient, preprocessor: ImagePreprocessor) -> None:
        self._client = client
        self._pre = preprocessor

    def attempt(self, ctx: DecodeContext) -> DecodeAttempt:
        fallback_used = False
        try:
            payload, mime = self._pre.for_transport(ctx.request.data), "image/jpeg"
        except ProcessingError as exc:
            logger.debug("vision: transport encoding failed (%s), sending original bytes", exc)
            payload, mime, fallback_used = ctx.request.data, ctx.request.content_type, True

        handle = ctx.scratch.acquire(payload, suffix=".jpg", name=self.name)
        try:
            text = self._client.read_code(handle.read_bytes(), mime)
        except QuotaExceededError as exc:
            return self._failed(AttemptOutcome.QUOTA_EXCEEDED, payload, exc, fallback_used)
        except ExternalServiceUnavailableError as exc:
            return self._failed(AttemptOutcome.EXTERNAL_SERVICE_UNAVAILABLE, payload, exc, fallback_used)
        finally:
            ctx.scratch.release(handle)

        return DecodeAttempt(
            strategy=self.name,
            outcome=AttemptOutcome.SUCCESS if text else AttemptOutcome.NO_CODE_FOUND,
            text=text,
            variant=payload,
            fallback_used=fallback_used,
        )

    def _failed(
        self, outcome: AttemptOutcome, payload: bytes, exc: Exception, fallback_used: bool
    ) -> DecodeAttempt:
        logger.warning("vision: %s", exc)
        return DecodeAttempt(
            strategy=self.name,
            outcome=outcome,
            variant=payload,
            detail=str(exc),
            fallback_used=fallback_used,
        )


# ---------------------------------------------------------------------------
# Chain assembly
# ---------------------------------------------------------------------------

def build_chain(
    config: AppConfig,
    decoder: Optional[NativeDecoder] = None,
    preprocessor: Optional[ImagePreprocessor] = None,
    vision: Optional[VisionClient] = None,
) -> list[DecodeStrategy]:
    """Return the strategy chain in its fixed order.

    The vision strategy is appended only when a client is available, i.e. the
    fallback is enabled and has a credential.
    """
    decoder = decoder or NativeDecoder(
        formats=config.decode.formats,
        try_rotate=config.decode.try_rotate,
    )
    preprocessor = preprocessor or ImagePreprocessor(config.preprocess)

    chain: list[DecodeStrategy] = [
        RawStrategy(decoder, preprocessor),
        OptimizedStrategy(decoder, preprocessor),
    ]
    for degrees in sorted(config.preprocess.rotations):
        chain.append(RotatedStrategy(decoder, preprocessor, degrees))

    if vision is None and config.vision.available:
        vision = VisionClient(config.vision)
    if vision is not None and vision.available:
        chain.append(VisionStrategy(vision, preprocessor))
    else:
        logger.debug("Vision fallback not configured; chain ends with native strategies")
    return chain
