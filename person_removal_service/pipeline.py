"""
High-level person-removal pipeline.

`PersonRemovalPipeline.run` is the main entry point used by both the HTTP
API and batch workers. Each attempt walks the stages in order:
detect -> separate -> build mask -> inpaint -> validate. Stage faults are
converted into an unsuccessful `PersonRemovalResult`; `run` retries whole
attempts with exponential backoff.
"""

from __future__ import annotations

from enum import Enum
from functools import partial
import logging
import threading
import time
from typing import Callable, Dict, Optional, Union

from . import config, image_io
from .detection import BoxRefineDetector, PersonDetector, SegmentationDetector
from .errors import (
    DetectionFailure,
    MaskGenerationFailure,
    NoPeopleDetected,
    PersonRemovalError,
    PipelineCancelled,
)
from .inpainting import InpaintingSelector, ResultValidator, build_backends, build_prompt
from .masks import MaskCodec, generate_inpainting_mask
from .replicate_client import ReplicateClient
from .separation import separate_foreground_background
from .types import DetectionResult, PersonRemovalOptions, PersonRemovalResult, RemovalDetails

logger = logging.getLogger(__name__)

MAX_BACKOFF_MS = 5000


class Stage(str, Enum):
    DETECTING = "detecting"
    SEPARATING = "separating"
    MASK_GENERATING = "mask_generating"
    INPAINTING = "inpainting"
    VALIDATING = "validating"
    COMPLETED = "completed"
    FAILED = "failed"


PROGRESS = {
    Stage.DETECTING: (25, "Detecting people in image..."),
    Stage.SEPARATING: (50, "Separating foreground and background..."),
    Stage.INPAINTING: (75, "Filling background with AI..."),
    Stage.COMPLETED: (100, "Processing completed!"),
}


def progress_for(stage: Union[str, Stage]) -> Dict[str, object]:
    """
    Return the UI progress payload for a named stage.

    Raises:
        ValueError: for stages that have no progress entry.
    """
    try:
        progress, message = PROGRESS[Stage(stage)]
    except (KeyError, ValueError) as exc:
        raise ValueError(f"No progress information for stage {stage!r}") from exc
    return {"progress": progress, "message": message}


def backoff_delay_ms(attempt: int) -> int:
    """Delay before `attempt` (1-based); the first attempt never waits."""
    if attempt <= 1:
        return 0
    return min(1000 * 2 ** (attempt - 2), MAX_BACKOFF_MS)


class PersonRemovalPipeline:
    def __init__(
        self,
        primary_detector: PersonDetector,
        fallback_detector: Optional[PersonDetector],
        inpainting_selector: InpaintingSelector,
        codec: Optional[MaskCodec] = None,
        validator: Optional[ResultValidator] = None,
        mask_dilation_px: int = 0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.perf_counter,
        on_stage: Optional[Callable[[Stage], None]] = None,
    ) -> None:
        self.primary_detector = primary_detector
        self.fallback_detector = fallback_detector
        self.inpainting_selector = inpainting_selector
        self.codec = codec or MaskCodec()
        self.validator = validator or ResultValidator()
        self.mask_dilation_px = mask_dilation_px
        self._sleep = sleep
        self._clock = clock
        self._on_stage = on_stage

    def _enter(self, stage: Stage, cancel: Optional[threading.Event]) -> Stage:
        if cancel is not None and cancel.is_set():
            raise PipelineCancelled("Person removal cancelled")
        logger.debug("Entering stage %s", stage.value)
        if self._on_stage is not None:
            self._on_stage(stage)
        return stage

    def _elapsed_ms(self, started: float) -> int:
        return int((self._clock() - started) * 1000)

    def _detect(
        self, image_url: str, options: PersonRemovalOptions, cancel: Optional[threading.Event]
    ) -> DetectionResult:
        try:
            detection = self.primary_detector.detect(image_url, cancel=cancel)
            logger.info("%s detection successful: %d people detected", self.primary_detector.name, len(detection.masks))
            return detection
        except PipelineCancelled:
            raise
        except Exception as primary_error:  # noqa: BLE001
            if not options.fallback_to_yolo or self.fallback_detector is None:
                if isinstance(primary_error, DetectionFailure):
                    raise
                raise DetectionFailure(f"Failed to detect people: {primary_error}") from primary_error

            logger.warning(
                "%s detection failed, trying %s fallback: %s",
                self.primary_detector.name,
                self.fallback_detector.name,
                primary_error,
            )
            try:
                detection = self.fallback_detector.detect(image_url, cancel=cancel)
            except PipelineCancelled:
                raise
            except Exception as fallback_error:  # noqa: BLE001
                raise DetectionFailure(
                    f"Both {self.primary_detector.name} and {self.fallback_detector.name} detection failed: "
                    f"{primary_error}; {fallback_error}"
                ) from fallback_error
            logger.info("%s fallback successful: %d people detected", self.fallback_detector.name, len(detection.masks))
            return detection

    def run_once(
        self,
        image_url: str,
        options: Optional[PersonRemovalOptions] = None,
        cancel: Optional[threading.Event] = None,
    ) -> PersonRemovalResult:
        """Run a single attempt of the pipeline; never raises stage faults."""
        options = options or PersonRemovalOptions()
        started = self._clock()
        details = RemovalDetails()
        stage = Stage.DETECTING

        try:
            stage = self._enter(Stage.DETECTING, cancel)
            detection = self._detect(image_url, options, cancel)
            details.people_detected = len(detection.masks)
            details.model_used = detection.model_used
            if not detection.masks:
                raise NoPeopleDetected("No people detected in the image")

            stage = self._enter(Stage.SEPARATING, cancel)
            # The fill mask is built from the background people directly below.
            separation = separate_foreground_background(
                detection, options.target_foreground_count, codec=self.codec, merge_masks=False
            )
            details.foreground_people = len(separation.foreground_masks)
            details.background_people = len(separation.background_masks)

            if not separation.background_masks:
                logger.info("No background people to remove, returning original image")
                stage = self._enter(Stage.COMPLETED, cancel)
                return PersonRemovalResult(
                    success=True,
                    result_url=image_url,
                    processing_time=self._elapsed_ms(started),
                    details=details,
                    stage=stage.value,
                )

            stage = self._enter(Stage.MASK_GENERATING, cancel)
            mask = generate_inpainting_mask(
                separation.background_masks,
                detection.image_width,
                detection.image_height,
                codec=self.codec,
                dilation_px=self.mask_dilation_px,
            )
            if not mask:
                raise MaskGenerationFailure("Failed to generate inpainting mask")

            stage = self._enter(Stage.INPAINTING, cancel)
            prompt = build_prompt(options.custom_prompt, options.scene_context)
            logger.info("Using prompt: %r", prompt)
            inpainted = self.inpainting_selector.fill(
                image_url,
                mask,
                prompt,
                preferred_model=options.preferred_inpainting_model,
                cancel=cancel,
            )
            details.inpainting_model = inpainted.model_used

            stage = self._enter(Stage.VALIDATING, cancel)
            self.validator.validate(inpainted.result_url, (detection.image_width, detection.image_height))

            stage = self._enter(Stage.COMPLETED, cancel)
            total_ms = self._elapsed_ms(started)
            logger.info("Background people removal completed in %dms using %s", total_ms, inpainted.model_used)
            return PersonRemovalResult(
                success=True,
                result_url=inpainted.result_url,
                processing_time=total_ms,
                details=details,
                stage=stage.value,
            )

        except NoPeopleDetected as exc:
            logger.info("No people detected in %s", _describe(image_url))
            return self._failure(exc, stage, details, started)
        except PersonRemovalError as exc:
            logger.warning("Person removal failed during %s: %s", stage.value, exc)
            return self._failure(exc, stage, details, started)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected error during %s", stage.value)
            return self._failure(exc, stage, details, started, message=f"Unexpected error during {stage.value}")

    def _failure(
        self,
        exc: Exception,
        stage: Stage,
        details: RemovalDetails,
        started: float,
        message: Optional[str] = None,
    ) -> PersonRemovalResult:
        if self._on_stage is not None:
            self._on_stage(Stage.FAILED)
        return PersonRemovalResult(
            success=False,
            processing_time=self._elapsed_ms(started),
            details=details,
            error=message or str(exc) or exc.__class__.__name__,
            error_kind=exc.__class__.__name__,
            stage=stage.value,
        )

    def _wait(self, seconds: float, cancel: Optional[threading.Event]) -> bool:
        """Sleep for `seconds`; return True when cancelled meanwhile."""
        if cancel is not None:
            return cancel.wait(seconds)
        self._sleep(seconds)
        return False

    def run(
        self,
        image_url: str,
        options: Optional[PersonRemovalOptions] = None,
        cancel: Optional[threading.Event] = None,
    ) -> PersonRemovalResult:
        """
        Run the pipeline with up to `options.max_retries` whole attempts.

        Attempts after the first wait `backoff_delay_ms(attempt)`. A run
        that finds no people, or is cancelled, is not retried. The result
        of the last attempt is returned as-is.
        """
        options = options or PersonRemovalOptions()
        logger.info(
            "Starting background people removal (keep=%d, retries=%d, fallback=%s)",
            options.target_foreground_count,
            options.max_retries,
            options.fallback_to_yolo,
        )
        if options.max_retries <= 0:
            return PersonRemovalResult(
                success=False,
                processing_time=0,
                error="Max retries exceeded",
                error_kind="RetriesExhausted",
                attempts=0,
                stage=Stage.FAILED.value,
            )

        result: Optional[PersonRemovalResult] = None
        for attempt in range(1, options.max_retries + 1):
            if attempt > 1:
                delay_ms = backoff_delay_ms(attempt)
                logger.info("Waiting %dms before retry", delay_ms)
                if self._wait(delay_ms / 1000.0, cancel):
                    result.error = "Person removal cancelled"
                    result.error_kind = PipelineCancelled.__name__
                    return result

            logger.info("Attempt %d/%d", attempt, options.max_retries)
            result = self.run_once(image_url, options, cancel)
            result.attempts = attempt
            if result.success:
                logger.info("Success on attempt %d", attempt)
                return result
            logger.warning("Failed on attempt %d: %s", attempt, result.error)
            if result.error_kind in (NoPeopleDetected.__name__, PipelineCancelled.__name__):
                return result

        return result


def _describe(image_url: str) -> str:
    """Short form of an image reference for logs (data URLs can be megabytes)."""
    if image_io.is_data_url(image_url):
        return f"inline image ({len(image_url)} chars)"
    return image_url


def build_pipeline(
    settings: Optional[config.Settings] = None,
    client: Optional[ReplicateClient] = None,
    **kwargs,
) -> PersonRemovalPipeline:
    """Wire the default Replicate-backed collaborators from configuration."""
    settings = settings or config.get_settings()
    client = client or ReplicateClient.from_settings(settings)
    timeout = (settings.connect_timeout_seconds, settings.request_timeout_seconds)
    fetch = partial(image_io.load_image_bytes, timeout=timeout)
    detector_kwargs = {
        "dimension_probe": partial(image_io.probe_dimensions, timeout=timeout),
        "fallback_size": (settings.fallback_image_width, settings.fallback_image_height),
    }

    return PersonRemovalPipeline(
        primary_detector=SegmentationDetector(client, settings.sam2_model, **detector_kwargs),
        fallback_detector=BoxRefineDetector(client, settings.yolo_model, settings.sam_refine_model, **detector_kwargs),
        inpainting_selector=InpaintingSelector(build_backends(settings, client), settings.inpainting_priority),
        codec=MaskCodec(fetch=fetch),
        validator=ResultValidator(fetch=fetch, check_image=settings.validate_result_image),
        mask_dilation_px=settings.mask_dilation_px,
        **kwargs,
    )
