"""Shared fakes and mask helpers for the person-removal tests."""

from io import BytesIO
from typing import List, Optional, Sequence

import numpy as np
import pytest
from PIL import Image

from person_removal_service.image_io import encode_data_url
from person_removal_service.inpainting import InpaintingSelector, ResultValidator
from person_removal_service.pipeline import PersonRemovalPipeline
from person_removal_service.types import DetectionResult, PersonMask


def png_data_url(array: np.ndarray) -> str:
    buf = BytesIO()
    Image.fromarray(array.astype(np.uint8) * 255).save(buf, format="PNG")
    return encode_data_url(buf.getvalue())


def box_mask(width: int, height: int, bbox: Sequence[float]) -> str:
    """A PNG data URL whose set pixels cover `bbox` (x, y, w, h)."""
    x, y, w, h = (int(v) for v in bbox)
    region = np.zeros((height, width), dtype=bool)
    region[y:y + h, x:x + w] = True
    return png_data_url(region)


def person(person_id: str, bbox, width: int = 100, height: int = 100, confidence: float = 0.9, mask: Optional[str] = None):
    ref = box_mask(width, height, bbox) if mask is None else mask
    return PersonMask.from_bbox(person_id, ref, bbox, confidence)


class FakeDetector:
    def __init__(self, name: str, result: Optional[DetectionResult] = None, error: Optional[Exception] = None):
        self.name = name
        self.result = result
        self.error = error
        self.calls = 0

    def detect(self, image_url, cancel=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


class FakeBackend:
    def __init__(self, name: str, result_url: Optional[str] = None, error: Optional[Exception] = None):
        self.name = name
        self.model_id = f"vendor/{name}"
        self.result_url = result_url
        self.error = error
        self.calls: List[tuple] = []

    def fill(self, image_url, mask_ref, prompt, cancel=None):
        self.calls.append((image_url, mask_ref, prompt))
        if self.error is not None:
            raise self.error
        return self.result_url


@pytest.fixture
def two_people():
    """One large centered subject and one small person in the corner of a 100x100 image."""
    center = person("person_0", (27.6, 27.6, 44.7, 44.7))  # ~20% of the frame
    corner = person("person_1", (0, 0, 14, 14))  # ~2% of the frame
    return DetectionResult(masks=[center, corner], image_width=100, image_height=100, model_used="sam-2")


def make_pipeline(primary, fallback=None, backends=None, sleeps=None, **kwargs):
    backends = backends if backends is not None else [FakeBackend("stability", "https://cdn.example.com/out.png")]
    sleeps = sleeps if sleeps is not None else []
    return PersonRemovalPipeline(
        primary_detector=primary,
        fallback_detector=fallback,
        inpainting_selector=InpaintingSelector(backends),
        validator=ResultValidator(),
        sleep=sleeps.append,
        **kwargs,
    )
