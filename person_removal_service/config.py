"""
Configuration loader for the person-removal service.

Environment variables are centralized here to keep the rest of the code
focused on business logic and to make operational tuning clear.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, validator
from pydantic_settings import BaseSettings

from .types import PersonRemovalOptions

KNOWN_INPAINTING_MODELS = ("stability", "runwayml", "flux")


class Settings(BaseSettings):
    # Replicate prediction API
    replicate_api_token: Optional[str] = Field(None, env="REPLICATE_API_TOKEN")
    replicate_base_url: str = Field("https://api.replicate.com/v1", env="REPLICATE_BASE_URL")

    # Detection models
    sam2_model: str = Field(
        "meta/sam-2:2c8b21b4f2fa7abc21b233786f95061d29c546e5ffac1456c75a8f17bb9d0c6f7",
        env="SAM2_MODEL",
    )
    yolo_model: str = Field(
        "ultralytics/yolov8:6be2178731f0d4c3e31c82c7f67d3a3b0b3d5ea2f96b0b3a3b0b3d5ea2f96b0b",
        env="YOLO_MODEL",
    )
    sam_refine_model: str = Field(
        "meta/sam:2c8b21b4f2fa7abc21b233786f95061d29c546e5ffac1456c75a8f17bb9d0c6f7",
        env="SAM_REFINE_MODEL",
    )
    fallback_image_width: int = Field(1024, env="FALLBACK_IMAGE_WIDTH")
    fallback_image_height: int = Field(1024, env="FALLBACK_IMAGE_HEIGHT")

    # Inpainting models, tried in the order given by `inpainting_models`
    stability_model: str = Field(
        "stability-ai/stable-diffusion-inpainting:95fcc2a26d59963c39f0c7e68b5c512f3d55b764b3b968e6ee4f7796d2e05af29",
        env="STABILITY_MODEL",
    )
    runwayml_model: str = Field(
        "runwayml/stable-diffusion-inpainting:51a605b0b173a4b5ae115a4c0c5c5c5c5c5c5c5c5c5c5c5c5c5c5c5c5c5c5c5c5",
        env="RUNWAYML_MODEL",
    )
    flux_model: str = Field(
        "black-forest-labs/flux-kontext-dev:2c8b21b4f2fa7abc21b233786f95061d29c546e5ffac1456c75a8f17bb9d0c6f7",
        env="FLUX_MODEL",
    )
    inpainting_models: str = Field("stability,runwayml,flux", env="INPAINTING_MODELS")
    mask_dilation_px: int = Field(8, env="MASK_DILATION_PX")
    validate_result_image: bool = Field(False, env="VALIDATE_RESULT_IMAGE")

    # Pipeline defaults
    default_target_foreground: int = Field(1, env="DEFAULT_TARGET_FOREGROUND")
    default_max_retries: int = Field(2, env="DEFAULT_MAX_RETRIES")
    default_scene_context: Optional[str] = Field("outdoor", env="DEFAULT_SCENE_CONTEXT")

    # Cloudflare R2 / S3-compatible storage
    r2_endpoint: Optional[str] = Field(None, env="R2_ENDPOINT")
    r2_access_key_id: Optional[str] = Field(None, env="R2_ACCESS_KEY_ID")
    r2_secret_access_key: Optional[str] = Field(None, env="R2_SECRET_ACCESS_KEY")
    r2_bucket_name: Optional[str] = Field(None, env="R2_BUCKET_NAME")
    r2_public_base_url: Optional[str] = Field(None, env="R2_PUBLIC_BASE_URL")
    persist_results: bool = Field(False, env="PERSIST_RESULTS")

    # API / remote calls
    connect_timeout_seconds: float = Field(5.0, env="CONNECT_TIMEOUT_SECONDS")
    request_timeout_seconds: float = Field(30.0, env="REQUEST_TIMEOUT_SECONDS")
    poll_interval_seconds: float = Field(1.0, env="POLL_INTERVAL_SECONDS")
    prediction_timeout_seconds: float = Field(300.0, env="PREDICTION_TIMEOUT_SECONDS")
    max_upload_bytes: int = Field(10 * 1024 * 1024, env="MAX_UPLOAD_BYTES")
    log_level: str = Field("INFO", env="LOG_LEVEL")

    class Config:
        env_file = ".env"
        case_sensitive = False

    @validator("inpainting_models")
    def validate_inpainting_models(cls, v: str) -> str:  # noqa: B902
        names = [name.strip() for name in v.split(",") if name.strip()]
        if not names:
            raise ValueError("INPAINTING_MODELS must name at least one model")
        unknown = [name for name in names if name not in KNOWN_INPAINTING_MODELS]
        if unknown:
            raise ValueError(
                f"INPAINTING_MODELS contains unknown models {unknown}; "
                f"expected any of {'|'.join(KNOWN_INPAINTING_MODELS)}"
            )
        return ",".join(names)

    @validator("fallback_image_width", "fallback_image_height")
    def validate_fallback_dimension(cls, v: int) -> int:  # noqa: B902
        if v <= 0:
            raise ValueError("Fallback image dimensions must be positive")
        return v

    @property
    def inpainting_priority(self) -> List[str]:
        return self.inpainting_models.split(",")

    def inpainting_model_ref(self, name: str) -> str:
        """Return the configured Replicate reference of an inpainting model."""
        return getattr(self, f"{name}_model")


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()


def default_options(settings: Optional[Settings] = None, **overrides) -> PersonRemovalOptions:
    """
    Build pipeline options from configured defaults.

    Keyword overrides whose value is None are ignored so request bodies can
    be forwarded as-is.
    """
    settings = settings or get_settings()
    options = PersonRemovalOptions(
        target_foreground_count=settings.default_target_foreground,
        max_retries=settings.default_max_retries,
        scene_context=settings.default_scene_context,
    )
    for key, value in overrides.items():
        if value is not None:
            setattr(options, key, value)
    return options
