"""Environment-based configuration for CamClassify."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Camera texture size per platform (width, height)
_TEXTURE_DIMS: dict[str, tuple[int, int]] = {
    "ios": (1080, 1920),
    "android": (1600, 1200),
}


class Settings(BaseSettings):
    """Application settings loaded from CAMCLASSIFY_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CAMCLASSIFY_",
        case_sensitive=False,
    )

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model selection
    classification_model: str = "mobilenet_v2_1.0_224"
    models_dir: str = "models"
    top_k: int = Field(default=3, ge=1)

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Concurrency: one slot for the camera loop, one for gallery requests
    max_concurrent: int = Field(default=2, ge=1)
    queue_timeout: float | None = Field(default=None, gt=0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=209_715_200, ge=1)

    # Camera
    platform: Literal["ios", "android"] = "android"
    resize_width: int = Field(default=152, ge=1)
    resize_height: int = Field(default=200, ge=1)
    resize_depth: Literal[3] = 3
    autorender: bool = False
    flip_horizontal: bool | None = None
    # Float camera frames are in [0, 1] instead of [0, 255]
    camera_frames_normalized: bool = False
    tick_interval: float = Field(default=0.0, ge=0)
    frame_source_dir: str | None = None
    camera_permission: bool = True

    @property
    def should_flip(self) -> bool:
        """Whether camera frames are mirrored before classification."""
        if self.flip_horizontal is not None:
            return self.flip_horizontal
        return self.platform != "ios"

    @property
    def texture_dims(self) -> tuple[int, int]:
        """Camera texture (width, height) for the configured platform."""
        return _TEXTURE_DIMS[self.platform]


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
