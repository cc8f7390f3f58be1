"""
Person detection adapters.

Two interchangeable detectors produce a `DetectionResult` for an image URL:
 - `SegmentationDetector`: one SAM-2 automatic segmentation call (primary),
 - `BoxRefineDetector`: YOLOv8 person boxes refined one by one with SAM
   (fallback chain).
"""

from __future__ import annotations

import logging
import math
import threading
from typing import Any, Callable, List, Optional, Protocol, Sequence, Tuple

from . import image_io
from .errors import DetectionFailure, PipelineCancelled
from .replicate_client import ReplicateClient
from .types import BBox, DetectionResult, PersonMask

logger = logging.getLogger(__name__)

CONFIDENCE_THRESHOLD = 0.5
DEFAULT_CONFIDENCE = 0.8
DEFAULT_BBOX: BBox = (0.0, 0.0, 100.0, 100.0)

SAM2_PARAMS = {
    "points_per_side": 32,
    "pred_iou_thresh": 0.88,
    "stability_score_thresh": 0.95,
    "box_nms_thresh": 0.7,
    "crop_n_layers": 0,
    "crop_nms_thresh": 0.7,
    "crop_overlap_ratio": 512 / 1500,
    "crop_n_points_downscale_factor": 1,
    "point_grids": None,
    "min_mask_region_area": 100,
    "output_mode": "binary_mask",
}

YOLO_PARAMS = {
    "model": "yolov8n.pt",
    "conf": 0.5,
    "iou": 0.7,
    "max_det": 20,
    "classes": [0],  # COCO "person"
}

DimensionProbe = Callable[[str], Tuple[int, int]]


class PersonDetector(Protocol):
    name: str

    def detect(self, image_url: str, cancel: Optional[threading.Event] = None) -> DetectionResult:
        ...


def _coerce_bbox(value: Any) -> BBox:
    if isinstance(value, (list, tuple)) and len(value) == 4:
        try:
            bbox = tuple(float(v) for v in value)
        except (TypeError, ValueError):
            return DEFAULT_BBOX
        if all(math.isfinite(v) for v in bbox):
            return bbox  # type: ignore[return-value]
    return DEFAULT_BBOX


def _coerce_confidence(value: Any) -> float:
    if value is None:
        return DEFAULT_CONFIDENCE
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if math.isnan(confidence):
        return DEFAULT_CONFIDENCE
    return confidence


def _mask_ref(value: Any) -> str:
    """Extract a mask reference from a refiner or segmenter payload."""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        mask = value.get("mask")
        return mask if isinstance(mask, str) else ""
    return ""


class _BaseDetector:
    name = "base"

    def __init__(
        self,
        client: ReplicateClient,
        dimension_probe: Optional[DimensionProbe] = None,
        fallback_size: Tuple[int, int] = (1024, 1024),
    ) -> None:
        self.client = client
        self._probe = dimension_probe or image_io.probe_dimensions
        self.fallback_size = fallback_size

    def _image_size(self, image_url: str) -> Tuple[int, int]:
        try:
            width, height = self._probe(image_url)
            if width > 0 and height > 0:
                return int(width), int(height)
            logger.warning("Probed non-positive image size %sx%s", width, height)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not read image dimensions, using fallback %s: %s", self.fallback_size, exc)
        return self.fallback_size


class SegmentationDetector(_BaseDetector):
    """Primary detector: SAM-2 automatic mask generation."""

    name = "sam-2"

    def __init__(self, client: ReplicateClient, model_ref: str, **kwargs) -> None:
        super().__init__(client, **kwargs)
        self.model_ref = model_ref

    def detect(self, image_url: str, cancel: Optional[threading.Event] = None) -> DetectionResult:
        logger.info("Starting people detection with SAM-2")
        try:
            output = self.client.run(self.model_ref, {"image": image_url, **SAM2_PARAMS}, cancel=cancel)
        except PipelineCancelled:
            raise
        except Exception as exc:  # noqa: BLE001
            raise DetectionFailure(f"Failed to detect people: {exc}") from exc

        if not isinstance(output, list):
            raise DetectionFailure("Failed to detect people: SAM-2 did not return a list of detections")

        masks: List[PersonMask] = []
        for index, item in enumerate(output):
            item = item if isinstance(item, dict) else {}
            person = PersonMask.from_bbox(
                person_id=f"person_{index}",
                mask=_mask_ref(item),
                bbox=_coerce_bbox(item.get("bbox")),
                confidence=_coerce_confidence(item.get("confidence")),
            )
            if person.confidence > CONFIDENCE_THRESHOLD:
                masks.append(person)

        logger.info("Detected %d people with confidence > %.1f", len(masks), CONFIDENCE_THRESHOLD)
        width, height = self._image_size(image_url)
        return DetectionResult(masks=masks, image_width=width, image_height=height, model_used=self.name)


class BoxRefineDetector(_BaseDetector):
    """Fallback detector: YOLOv8 person boxes, each refined into a mask by SAM."""

    name = "yolov8+sam"

    def __init__(self, client: ReplicateClient, detector_ref: str, refiner_ref: str, **kwargs) -> None:
        super().__init__(client, **kwargs)
        self.detector_ref = detector_ref
        self.refiner_ref = refiner_ref

    def _refine(self, image_url: str, bbox: Sequence[float], cancel: Optional[threading.Event]) -> str:
        output = self.client.run(
            self.refiner_ref,
            {
                "image": image_url,
                "input_box": list(bbox),
                "input_point": None,
                "input_label": None,
                "multimask_output": False,
            },
            cancel=cancel,
        )
        return _mask_ref(output)

    def detect(self, image_url: str, cancel: Optional[threading.Event] = None) -> DetectionResult:
        logger.info("Starting people detection with YOLO + SAM")
        try:
            boxes = self.client.run(self.detector_ref, {"image": image_url, **YOLO_PARAMS}, cancel=cancel)
        except PipelineCancelled:
            raise
        except Exception as exc:  # noqa: BLE001
            raise DetectionFailure(f"Failed to detect people with YOLO + SAM: {exc}") from exc

        if not isinstance(boxes, list):
            raise DetectionFailure("Failed to detect people with YOLO + SAM: YOLO did not return a list of boxes")

        masks: List[PersonMask] = []
        # Refinements run one at a time; ids follow the box index so they do
        # not depend on which refinements succeed.
        for index, box in enumerate(boxes):
            box = box if isinstance(box, dict) else {}
            bbox = _coerce_bbox(box.get("bbox"))
            try:
                mask = self._refine(image_url, bbox, cancel)
            except PipelineCancelled:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.warning("SAM refinement failed for box %d, skipping: %s", index, exc)
                continue
            if not mask:
                logger.warning("SAM returned no mask for box %d, skipping", index)
                continue
            masks.append(
                PersonMask.from_bbox(
                    person_id=f"person_{index}",
                    mask=mask,
                    bbox=bbox,
                    confidence=_coerce_confidence(box.get("confidence")),
                )
            )

        logger.info("Generated %d person masks with YOLO + SAM", len(masks))
        width, height = self._image_size(image_url)
        return DetectionResult(masks=masks, image_width=width, image_height=height, model_used=self.name)
