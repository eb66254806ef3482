"""tests/integration/test_cli.py — ``codescan decode`` and ``codescan scan`` via click's CliRunner."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from codescan.cli import main
from codescan.processing.preprocess import ImagePreprocessor
from scan_fixtures import FakePlatform, render_qr
from tools.dump_variants import build_variants


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "cli.yaml"
    path.write_text(f"scratch:\n  dir: {tmp_path / 'scratch'}\nvision:\n  enabled: false\n", encoding="utf-8")
    return path


def json_lines(output: str) -> list[dict]:
    # Progress-bar control characters can share a line with the JSON record.
    return [json.loads(line[line.index("{"):]) for line in output.splitlines() if "{" in line]


class TestDecodeCommand:
    def test_success(self, tmp_path, config_file, qr_png):
        image = tmp_path / "qr.png"
        image.write_bytes(qr_png)
        result = CliRunner().invoke(main, ["decode", str(image), "--config", str(config_file)])
        assert result.exit_code == 0, result.output
        assert json_lines(result.output) == [{"file": str(image), "success": True, "barcode": "PART-00042"}]

    def test_failure_sets_exit_code(self, tmp_path, config_file, qr_png, blank_png):
        good, bad = tmp_path / "good.png", tmp_path / "bad.png"
        good.write_bytes(qr_png)
        bad.write_bytes(blank_png)
        result = CliRunner().invoke(
            main, ["decode", str(good), str(bad), "--config", str(config_file), "--attempts", "--no-vision"]
        )
        assert result.exit_code == 1
        records = json_lines(result.output)
        assert [r["success"] for r in records] == [True, False]
        assert records[1]["errorKind"] == "no-code-found"
        assert records[1]["attempts"][0]["strategy"] == "raw"

    def test_bad_config_reported(self, tmp_path, qr_png):
        image = tmp_path / "qr.png"
        image.write_bytes(qr_png)
        result = CliRunner().invoke(main, ["decode", str(image), "--config", str(tmp_path / "none.yaml")])
        assert result.exit_code != 0
        assert "not found" in result.output


class TestScanCommand:
    def fake_platform(self):
        platform = FakePlatform(images=[render_qr("LIVE-9", canvas=(480, 640))])
        return patch("codescan.cli.OpenCVCameraPlatform", lambda max_probe: platform), platform

    def test_prints_scanned_code(self, config_file):
        patcher, platform = self.fake_platform()
        with patcher:
            result = CliRunner().invoke(main, ["scan", "--config", str(config_file), "--timeout", "5"])
        assert result.exit_code == 0, result.output
        assert "LIVE-9" in result.output
        assert platform.open_streams == 0

    def test_unknown_device_is_a_clean_error(self, config_file):
        patcher, platform = self.fake_platform()
        with patcher:
            result = CliRunner().invoke(main, ["scan", "--config", str(config_file), "--device", "nope"])
        assert result.exit_code == 1
        assert "Unknown camera: nope" in result.output
        assert isinstance(result.exception, SystemExit)
        assert platform.open_streams == 0


class TestDumpVariants:
    def test_builds_every_variant(self, qr_png):
        variants = build_variants(ImagePreprocessor(), qr_png)
        assert set(variants) == {
            "optimized.png", "rotate-90.png", "rotate-180.png", "rotate-270.png",
            "binarized.png", "transport.jpg",
        }

    def test_corrupt_input_yields_nothing(self):
        assert build_variants(ImagePreprocessor(), b"junk") == {}
