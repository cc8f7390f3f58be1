"""
FastAPI layer exposing automatic background-people removal.

Endpoints:
 - GET /health
 - GET /progress/{stage}
 - POST /remove-people
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field, HttpUrl

from . import config
from .pipeline import PersonRemovalPipeline, build_pipeline, progress_for
from .storage import ObjectStorage

settings = config.get_settings()
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)


class RemovePeopleRequest(BaseModel):
    imageUrl: Optional[HttpUrl] = None
    imageData: Optional[str] = None  # "data:image/...;base64,..."
    fileName: Optional[str] = None
    fileSize: Optional[int] = None  # bytes, as reported by the client
    targetForegroundCount: Optional[int] = Field(None, ge=0)
    preferredInpaintingModel: Optional[str] = None
    customPrompt: Optional[str] = None
    sceneContext: Optional[str] = None
    fallbackToYolo: Optional[bool] = None
    maxRetries: Optional[int] = Field(None, ge=1, le=5)


class RemovePeopleResponse(BaseModel):
    resultUrl: str
    processingTime: int
    attempts: int
    details: Dict[str, Any]
    message: str


def _resolve_image(body: RemovePeopleRequest, max_bytes: int) -> str:
    if body.imageData:
        if not body.imageData.startswith("data:image/"):
            raise HTTPException(status_code=400, detail="invalid image data format")
        # base64 inflates payloads by 4/3; a reported fileSize can only raise the estimate
        size = max(body.fileSize or 0, len(body.imageData) * 3 // 4)
        if size > max_bytes:
            raise HTTPException(
                status_code=413,
                detail=f"file too large, maximum size is {max_bytes // (1024 * 1024)}MB",
            )
        logger.info(
            "Processing inline image: %s, size: %s bytes",
            body.fileName or "unknown",
            body.fileSize or "unknown",
        )
        return body.imageData
    if body.imageUrl:
        return str(body.imageUrl)
    raise HTTPException(status_code=400, detail="no image data provided")


def create_app(
    pipeline: Optional[PersonRemovalPipeline] = None,
    storage: Optional[ObjectStorage] = None,
    app_settings: Optional[config.Settings] = None,
) -> FastAPI:
    app_settings = app_settings or settings
    app = FastAPI(title="Person Removal Service", version="0.1.0")
    app.state.pipeline = pipeline
    app.state.storage = storage if storage is not None else ObjectStorage(app_settings)

    def _get_pipeline() -> PersonRemovalPipeline:
        # Built lazily so importing the app does not require Replicate credentials.
        if app.state.pipeline is None:
            app.state.pipeline = build_pipeline(app_settings)
        return app.state.pipeline

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/progress/{stage}")
    def progress(stage: str):
        try:
            return progress_for(stage)
        except ValueError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @app.post("/remove-people", response_model=RemovePeopleResponse)
    def remove_people(body: RemovePeopleRequest):
        image_url = _resolve_image(body, app_settings.max_upload_bytes)
        options = config.default_options(
            app_settings,
            target_foreground_count=body.targetForegroundCount,
            preferred_inpainting_model=body.preferredInpaintingModel,
            custom_prompt=body.customPrompt,
            scene_context=body.sceneContext,
            fallback_to_yolo=body.fallbackToYolo,
            max_retries=body.maxRetries,
        )

        try:
            result = _get_pipeline().run(image_url, options)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Person removal pipeline crashed: %s", exc)
            raise HTTPException(status_code=500, detail="person removal failed") from exc

        if not result.success:
            logger.error("Person removal failed: %s", result.error)
            raise HTTPException(status_code=422, detail=result.error or "person removal failed")

        output_url = result.result_url
        storage: ObjectStorage = app.state.storage
        if app_settings.persist_results and storage.is_configured and output_url != image_url:
            try:
                output_url = storage.upload_from_url(output_url)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Failed to upload result to R2: %s", exc)
                raise HTTPException(status_code=500, detail="Upload to storage failed") from exc

        logger.info("Processing details: %s", result.details.to_dict())
        return RemovePeopleResponse(
            resultUrl=output_url,
            processingTime=result.processing_time,
            attempts=result.attempts,
            details=result.details.to_dict(),
            message="Background people removed successfully",
        )

    return app


app = create_app()
