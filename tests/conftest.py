"""
conftest.py
-----------
Shared pytest fixtures for the codescan test suite.
"""

from __future__ import annotations

import pytest

from codescan.core.config import AppConfig
from scan_fixtures import no_code_image, render_qr, render_upca, to_jpeg, to_png


# ---------------------------------------------------------------------------
# Reusable fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    """Default config with scratch under tmp_path and no vision credential."""
    cfg = AppConfig()
    cfg.scratch.dir = str(tmp_path / "scratch")
    cfg.vision.enabled = False
    return cfg


@pytest.fixture
def qr_png() -> bytes:
    return to_png(render_qr("PART-00042", canvas=(480, 640)))


@pytest.fixture
def upca_jpeg() -> bytes:
    return to_jpeg(render_upca("012345678905", canvas=(480, 640)))


@pytest.fixture
def blank_png() -> bytes:
    return to_png(no_code_image())
