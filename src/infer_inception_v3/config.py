"""Environment-based configuration for the Inception V3 plugin."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from infer_inception_v3.ml.params import Backend, Framework, Target


class Settings(BaseSettings):
    """Plugin settings loaded from INFER_INCEPTION_V3_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="INFER_INCEPTION_V3_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Authentication (None = disabled)
    api_key: str | None = None

    # Plugin installation directory; model files live in <plugin_dir>/<name>/Model
    plugin_dir: Path = Path.home() / ".infer_inception_v3" / "plugins"

    # Hugging Face hub repository holding <name>/Model/* for download on demand.
    # The default is a placeholder: set INFER_INCEPTION_V3_HUB_REPO_ID, or install
    # the model files in plugin_dir beforehand.
    hub_repo_id: str = "ikomia/model-hub"

    # Default network selection
    framework: Framework = Framework.TENSORFLOW
    backend: Backend = Backend.DEFAULT
    target: Target = Target.CPU

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Requests admitted at once; task runs still execute one at a time
    max_concurrent: int = Field(default=2, ge=1)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=209_715_200, ge=1)

    # Number of tags returned by the HTTP endpoint
    top_k: int = Field(default=5, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
