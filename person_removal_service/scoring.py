"""
Foreground scoring for detected people.

A person scores higher (0-100) the more likely they are the intended
subject of the photo. Five geometric factors are blended with fixed
weights; the function is pure so identical inputs give identical scores.
"""

from __future__ import annotations

import math
from typing import Tuple

from .types import ForegroundFactors, ForegroundScore, PersonMask

WEIGHTS = {
    "position": 0.30,
    "size": 0.25,
    "centrality": 0.20,
    "orientation": 0.15,
    "clarity": 0.10,
}

# Ideal share of the frame a subject occupies.
MIN_OPTIMAL_RATIO = 0.05
MAX_OPTIMAL_RATIO = 0.40


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def _bbox_center(person: PersonMask) -> Tuple[float, float]:
    x, y, w, h = person.bbox
    return x + w / 2.0, y + h / 2.0


def _normalized_center_distance(cx: float, cy: float, image_width: int, image_height: int) -> float:
    """Distance to the image center as a fraction of the center-to-corner distance."""
    half_w = image_width / 2.0
    half_h = image_height / 2.0
    distance = math.hypot(cx - half_w, cy - half_h)
    return distance / math.hypot(half_w, half_h)


def position_score(person: PersonMask, image_width: int, image_height: int) -> float:
    """Exponential decay away from the image center, measured from the bbox center."""
    cx, cy = _bbox_center(person)
    d = _normalized_center_distance(cx, cy, image_width, image_height)
    return _clamp(100.0 * math.exp(-3.0 * d))


def size_score(person: PersonMask, image_width: int, image_height: int) -> float:
    """Full marks inside the optimal frame share, penalized when too small or too large."""
    _, _, w, h = person.bbox
    ratio = (w * h) / float(image_width * image_height)

    if ratio < MIN_OPTIMAL_RATIO:
        return _clamp((ratio / MIN_OPTIMAL_RATIO) * 60.0)
    if ratio > MAX_OPTIMAL_RATIO:
        # Very large regions are often false positives.
        excess = (ratio - MAX_OPTIMAL_RATIO) / (0.80 - MAX_OPTIMAL_RATIO)
        return _clamp(max(20.0, 100.0 * (1.0 - excess)))
    return 100.0


def centrality_score(person: PersonMask, image_width: int, image_height: int) -> float:
    """Gaussian falloff from the image center, measured from the declared center point."""
    cx, cy = person.center_point
    d = _normalized_center_distance(cx, cy, image_width, image_height)
    return _clamp(100.0 * math.exp(-2.0 * d ** 2))


def orientation_score(person: PersonMask, image_width: int, image_height: int) -> float:
    cx, cy = _bbox_center(person)
    score = 50.0
    # Subjects usually stand in the lower part of the frame.
    if cy > image_height * 0.3:
        score += 30.0
    if image_width * 0.2 < cx < image_width * 0.8:
        score += 20.0
    return _clamp(score)


def clarity_score(person: PersonMask) -> float:
    # Detection confidence stands in for a real sharpness measure.
    return _clamp(min(100.0, 70.0 + person.confidence * 30.0))


def score_person(person: PersonMask, image_width: int, image_height: int) -> ForegroundScore:
    """
    Compute the foreground score of one detected person.

    Raises:
        ValueError: when the image dimensions are not positive.
    """
    if image_width <= 0 or image_height <= 0:
        raise ValueError(f"Image dimensions must be positive, got {image_width}x{image_height}")

    factors = ForegroundFactors(
        position=position_score(person, image_width, image_height),
        size=size_score(person, image_width, image_height),
        clarity=clarity_score(person),
        centrality=centrality_score(person, image_width, image_height),
        orientation=orientation_score(person, image_width, image_height),
    )
    total = sum(getattr(factors, name) * weight for name, weight in WEIGHTS.items())
    return ForegroundScore(person_id=person.id, score=_clamp(total), factors=factors)
