"""
core/config.py
--------------
Loads, validates, and exposes the application config from a YAML file,
with a small set of environment-variable overrides for deployment secrets
and limits.

Usage:
    from codescan.core.config import load_config, AppConfig
    cfg = load_config()            # loads config/default.yaml
    cfg = load_config("my.yaml")   # loads a custom file

Environment overrides (applied after the file is read):
    CODESCAN_VISION_API_KEY   vision.api_key (falls back to OPENAI_API_KEY)
    CODESCAN_VISION_TIMEOUT_S vision.timeout_s
    CODESCAN_MAX_UPLOAD_BYTES server.max_upload_bytes
    CODESCAN_SCRATCH_DIR      scratch.dir
    CODESCAN_LOG_LEVEL        logging.log_level
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from codescan.core.exceptions import ConfigError

logger = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parents[2]
_DEFAULT_CONFIG = _PROJECT_ROOT / "config" / "default.yaml"

MAX_UPLOAD_CEILING = 50 * 1024 * 1024


# ---------------------------------------------------------------------------
# Pydantic sub-models
# ---------------------------------------------------------------------------

class PreprocessConfig(BaseModel):
    max_edge: int = Field(2000, ge=64)
    sharpen_sigma: float = Field(1.5, gt=0)
    vision_max_edge: int = Field(1500, ge=64)
    jpeg_quality: int = Field(95, ge=1, le=100)
    rotations: list[int] = [90, 180, 270]

    @field_validator("rotations")
    @classmethod
    def right_angles_only(cls, v: list[int]) -> list[int]:
        bad = [d for d in v if d not in (90, 180, 270)]
        if bad:
            raise ValueError(f"rotations must be 90, 180 or 270, got {bad}")
        return v


class DecodeConfig(BaseModel):
    try_rotate: bool = False
    live_try_rotate: bool = True
    formats: list[str] = []  # empty = every format zxing-cpp knows
    request_deadline_s: float = Field(0.0, ge=0.0)  # 0 = no deadline


class VisionConfig(BaseModel):
    enabled: bool = True
    api_key: Optional[str] = None
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o"
    timeout_s: float = Field(20.0, gt=0)
    max_tokens: int = Field(100, gt=0)
    temperature: float = Field(0.1, ge=0.0, le=2.0)
    detail: str = "high"

    @property
    def available(self) -> bool:
        """True when the fallback is switched on and has a credential."""
        return self.enabled and bool(self.api_key)


class ScratchConfig(BaseModel):
    dir: str = "data/scratch"


class CaptureConfig(BaseModel):
    min_width: int = Field(640, gt=0)
    min_height: int = Field(480, gt=0)
    ideal_width: int = Field(1280, gt=0)
    ideal_height: int = Field(720, gt=0)
    autofocus: bool = True
    zoom: float = Field(1.5, ge=1.0)
    max_probe_devices: int = Field(8, ge=1)

    @model_validator(mode="after")
    def ideal_not_below_minimum(self) -> "CaptureConfig":
        if self.ideal_width < self.min_width or self.ideal_height < self.min_height:
            raise ValueError("ideal resolution must not be below the minimum resolution")
        return self


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = Field(5000, gt=0, lt=65536)
    max_upload_bytes: int = Field(10 * 1024 * 1024, gt=0, le=MAX_UPLOAD_CEILING)
    allowed_mime_prefix: str = "image/"


class LoggingConfig(BaseModel):
    log_level: str = "INFO"


# ---------------------------------------------------------------------------
# Root config model
# ---------------------------------------------------------------------------

class AppConfig(BaseModel):
    preprocess: PreprocessConfig = PreprocessConfig()
    decode: DecodeConfig = DecodeConfig()
    vision: VisionConfig = VisionConfig()
    scratch: ScratchConfig = ScratchConfig()
    capture: CaptureConfig = CaptureConfig()
    server: ServerConfig = ServerConfig()
    logging: LoggingConfig = LoggingConfig()

    def scratch_dir_path(self) -> Path:
        """Resolve scratch directory relative to project root."""
        p = Path(self.scratch.dir)
        return p if p.is_absolute() else _PROJECT_ROOT / p


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

_ENV_OVERRIDES: list[tuple[str, tuple[str, str]]] = [
    ("OPENAI_API_KEY", ("vision", "api_key")),
    ("CODESCAN_VISION_API_KEY", ("vision", "api_key")),
    ("CODESCAN_VISION_TIMEOUT_S", ("vision", "timeout_s")),
    ("CODESCAN_MAX_UPLOAD_BYTES", ("server", "max_upload_bytes")),
    ("CODESCAN_SCRATCH_DIR", ("scratch", "dir")),
    ("CODESCAN_LOG_LEVEL", ("logging", "log_level")),
]


def _apply_env(raw: dict[str, Any], env: Mapping[str, str]) -> dict[str, Any]:
    # Later entries win, so CODESCAN_VISION_API_KEY beats OPENAI_API_KEY.
    for var, (section, key) in _ENV_OVERRIDES:
        value = env.get(var)
        if not value:
            continue
        block = raw.setdefault(section, {})
        if not isinstance(block, dict):
            raise ConfigError(f"Section '{section}' must be a mapping")
        block[key] = value
        logger.debug("Config override from %s", var)
    return raw


def load_config(
    path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> AppConfig:
    """Load and validate AppConfig from a YAML file plus environment overrides.

    Args:
        path: Explicit path to a YAML file. Defaults to ``config/default.yaml``.
        env:  Mapping to read overrides from. Defaults to ``os.environ``.

    Returns:
        Validated :class:`AppConfig` instance.

    Raises:
        ConfigError: If the file is missing or contains invalid values.
    """
    config_path = Path(path) if path else _DEFAULT_CONFIG

    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        raw: dict[str, Any] = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"YAML parse error in {config_path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"Top level of {config_path} must be a mapping")

    raw = _apply_env(raw, os.environ if env is None else env)

    try:
        cfg = AppConfig.model_validate(raw)
    except Exception as exc:
        raise ConfigError(f"Invalid configuration values: {exc}") from exc

    logger.info("Configuration loaded from %s", config_path)
    return cfg
