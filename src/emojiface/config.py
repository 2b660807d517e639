"""Environment-based configuration for EmojiFace."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from emojiface.render.glyphs import DEFAULT_EMOJI


class Settings(BaseSettings):
    """Application settings loaded from EMOJIFACE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="EMOJIFACE_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083
    log_level: str = "INFO"

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Detection model
    face_detection_model: str = "retinaface_mobilenetv2"
    models_dir: str = "models"
    detection_confidence: float = Field(default=0.6, ge=0.0, le=1.0)
    detection_nms_threshold: float = Field(default=0.4, ge=0.0, le=1.0)
    detection_max_side: int = Field(default=1280, ge=32)

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    max_sessions: int = Field(default=256, ge=1)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=52_428_800, ge=1)

    # Overlay
    overlay_padding: float = Field(default=0.3, ge=0.0)
    glyph_font_path: str | None = None
    glyph_scale: float = Field(default=0.94, gt=0.0, le=1.0)
    glyph_symbols: list[str] = Field(default_factory=lambda: list(DEFAULT_EMOJI), min_length=1)

    # Model management
    model_ttl: int = Field(default=300, ge=0)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
