"""
Data model shared by the detection, separation, inpainting and pipeline
stages.

Field names follow Python conventions; `PersonRemovalResult.to_dict()`
renders the camelCase envelope consumed by the HTTP layer and UI.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

BBox = Tuple[float, float, float, float]  # (x, y, width, height)


@dataclass(frozen=True)
class PersonMask:
    id: str
    mask: str  # data URL, remote URL, or "" when only the box is known
    bbox: BBox
    confidence: float
    center_point: Tuple[float, float]
    area: float

    @classmethod
    def from_bbox(cls, person_id: str, mask: str, bbox: BBox, confidence: float) -> "PersonMask":
        """Build a mask whose center and area are derived from its bbox."""
        x, y, w, h = (float(v) for v in bbox)
        return cls(
            id=person_id,
            mask=mask,
            bbox=(x, y, w, h),
            confidence=float(confidence),
            center_point=(x + w / 2.0, y + h / 2.0),
            area=w * h,
        )


@dataclass
class DetectionResult:
    masks: List[PersonMask]
    image_width: int
    image_height: int
    model_used: str = "none"


@dataclass(frozen=True)
class ForegroundFactors:
    position: float
    size: float
    clarity: float
    centrality: float
    orientation: float


@dataclass(frozen=True)
class ForegroundScore:
    person_id: str
    score: float
    factors: ForegroundFactors


@dataclass
class SeparationResult:
    foreground_masks: List[PersonMask] = field(default_factory=list)
    background_masks: List[PersonMask] = field(default_factory=list)
    foreground_mask: str = ""
    background_mask: str = ""
    scores: List[ForegroundScore] = field(default_factory=list)  # highest first


@dataclass
class InpaintingResult:
    result_url: str
    model_used: str
    processing_time: int  # ms


@dataclass
class RemovalDetails:
    people_detected: int = 0
    foreground_people: int = 0
    background_people: int = 0
    model_used: str = "none"
    inpainting_model: str = "none"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "peopleDetected": self.people_detected,
            "foregroundPeople": self.foreground_people,
            "backgroundPeople": self.background_people,
            "modelUsed": self.model_used,
            "inpaintingModel": self.inpainting_model,
        }


@dataclass
class PersonRemovalResult:
    success: bool
    processing_time: int  # ms
    details: RemovalDetails = field(default_factory=RemovalDetails)
    result_url: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    attempts: int = 1
    stage: str = "completed"

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": self.success,
            "processingTime": self.processing_time,
            "details": self.details.to_dict(),
            "attempts": self.attempts,
        }
        if self.result_url is not None:
            payload["resultUrl"] = self.result_url
        if self.error is not None:
            payload["error"] = self.error
            payload["errorKind"] = self.error_kind
        return payload


@dataclass
class PersonRemovalOptions:
    target_foreground_count: int = 1
    preferred_inpainting_model: Optional[str] = None
    custom_prompt: Optional[str] = None
    fallback_to_yolo: bool = True
    max_retries: int = 2
    scene_context: Optional[str] = "outdoor"
