"""tests/unit/test_strategies.py — strategy chain assembly and per-strategy outcomes."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from codescan.core.exceptions import ExternalServiceUnavailableError, QuotaExceededError
from codescan.core.models import AttemptOutcome, DecodeRequest
from codescan.processing.preprocess import ImagePreprocessor
from codescan.processing.scratch import TempResourceManager
from codescan.processing.strategies import (
    DecodeContext,
    OptimizedStrategy,
    RawStrategy,
    RotatedStrategy,
    VisionStrategy,
    build_chain,
)
from codescan.processing.decoders import NativeDecoder
from codescan.vision.client import VisionClient


@pytest.fixture
def scratch_manager(tmp_path):
    return TempResourceManager(tmp_path / "scratch")


def run_attempt(strategy, data: bytes, manager: TempResourceManager, content_type="image/png"):
    request = DecodeRequest(data=data, content_type=content_type)
    with manager.scope(request.token) as scratch:
        raw = scratch.acquire(data, suffix=request.suffix, name="upload")
        ctx = DecodeContext(request, scratch, raw, ImagePreprocessor())
        attempt = strategy.attempt(ctx)
        open_after = [h for h in scratch.open_handles if h != raw]
    return attempt, open_after


def fake_vision(result=None, exc=None):
    client = MagicMock(spec=VisionClient)
    client.available = True
    if exc is not None:
        client.read_code.side_effect = exc
    else:
        client.read_code.return_value = result
    return client


# ---------------------------------------------------------------------------
# Chain assembly
# ---------------------------------------------------------------------------

class TestBuildChain:
    def test_native_order_without_vision(self, app_config):
        chain = build_chain(app_config)
        assert [s.name for s in chain] == ["raw", "optimized", "rotate-90", "rotate-180", "rotate-270"]

    def test_vision_appended_last_when_available(self, app_config):
        app_config.vision.enabled = True
        app_config.vision.api_key = "sk-test"
        chain = build_chain(app_config)
        assert chain[-1].name == "vision"
        assert len(chain) == 6

    def test_vision_skipped_when_enabled_without_key(self, app_config):
        app_config.vision.enabled = True
        app_config.vision.api_key = None
        assert "vision" not in [s.name for s in build_chain(app_config)]

    def test_explicit_client_used(self, app_config):
        chain = build_chain(app_config, vision=fake_vision("X"))
        assert isinstance(chain[-1], VisionStrategy)

    def test_rotations_sorted(self, app_config):
        app_config.preprocess.rotations = [270, 90]
        names = [s.name for s in build_chain(app_config)]
        assert names == ["raw", "optimized", "rotate-90", "rotate-270"]


# ---------------------------------------------------------------------------
# Native strategies
# ---------------------------------------------------------------------------

class TestNativeStrategies:
    def test_raw_reads_qr(self, qr_png, scratch_manager):
        attempt, _ = run_attempt(RawStrategy(NativeDecoder(), ImagePreprocessor()), qr_png, scratch_manager)
        assert attempt.outcome is AttemptOutcome.SUCCESS
        assert attempt.text == "PART-00042"
        assert attempt.variant is None

    def test_optimized_variant_recorded_and_released(self, qr_png, scratch_manager):
        strategy = OptimizedStrategy(NativeDecoder(), ImagePreprocessor())
        attempt, open_after = run_attempt(strategy, qr_png, scratch_manager)
        assert attempt.succeeded
        assert attempt.variant.startswith(b"\x89PNG")
        assert open_after == []

    def test_no_code(self, blank_png, scratch_manager):
        attempt, _ = run_attempt(RawStrategy(NativeDecoder(), ImagePreprocessor()), blank_png, scratch_manager)
        assert attempt.outcome is AttemptOutcome.NO_CODE_FOUND
        assert attempt.text is None

    def test_corrupt_bytes_processing_error(self, scratch_manager):
        attempt, _ = run_attempt(RawStrategy(NativeDecoder(), ImagePreprocessor()), b"junk", scratch_manager)
        assert attempt.outcome is AttemptOutcome.PROCESSING_ERROR
        assert attempt.detail

    def test_preprocessing_failure_falls_back_to_original(self, scratch_manager):
        strategy = OptimizedStrategy(NativeDecoder(), ImagePreprocessor())
        attempt, _ = run_attempt(strategy, b"junk", scratch_manager)
        assert attempt.fallback_used is True
        assert attempt.outcome is AttemptOutcome.PROCESSING_ERROR

    def test_rotated_strategy_name(self):
        assert RotatedStrategy(NativeDecoder(), ImagePreprocessor(), 180).name == "rotate-180"

    def test_optimized_is_memoised(self, qr_png, tmp_path):
        pre = MagicMock(wraps=ImagePreprocessor())
        request = DecodeRequest(data=qr_png, content_type="image/png")
        with TempResourceManager(tmp_path).scope(request.token) as scratch:
            raw = scratch.acquire(qr_png)
            ctx = DecodeContext(request, scratch, raw, pre)
            first = ctx.optimized()
            second = ctx.optimized()
        assert first is second
        assert pre.optimize.call_count == 1


# ---------------------------------------------------------------------------
# Vision strategy
# ---------------------------------------------------------------------------

class TestVisionStrategy:
    def test_success(self, blank_png, scratch_manager):
        client = fake_vision("012345678905")
        attempt, open_after = run_attempt(VisionStrategy(client, ImagePreprocessor()), blank_png, scratch_manager)
        assert attempt.succeeded
        assert attempt.text == "012345678905"
        assert open_after == []
        sent, mime = client.read_code.call_args[0]
        assert sent[:2] == b"\xff\xd8"
        assert mime == "image/jpeg"

    def test_no_code(self, blank_png, scratch_manager):
        attempt, _ = run_attempt(VisionStrategy(fake_vision(None), ImagePreprocessor()), blank_png, scratch_manager)
        assert attempt.outcome is AttemptOutcome.NO_CODE_FOUND

    def test_quota(self, blank_png, scratch_manager):
        client = fake_vision(exc=QuotaExceededError("quota"))
        attempt, open_after = run_attempt(VisionStrategy(client, ImagePreprocessor()), blank_png, scratch_manager)
        assert attempt.outcome is AttemptOutcome.QUOTA_EXCEEDED
        assert open_after == []

    def test_unavailable(self, blank_png, scratch_manager):
        client = fake_vision(exc=ExternalServiceUnavailableError("timeout"))
        attempt, _ = run_attempt(VisionStrategy(client, ImagePreprocessor()), blank_png, scratch_manager)
        assert attempt.outcome is AttemptOutcome.EXTERNAL_SERVICE_UNAVAILABLE
        assert "timeout" in attempt.detail

    def test_undecodable_upload_sent_as_is(self, scratch_manager):
        client = fake_vision(None)
        attempt, _ = run_attempt(
            VisionStrategy(client, ImagePreprocessor()), b"heic-bytes", scratch_manager, content_type="image/heic"
        )
        assert attempt.fallback_used is True
        assert client.read_code.call_args[0] == (b"heic-bytes", "image/heic")
