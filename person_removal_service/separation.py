"""Foreground/background partitioning of detected people."""

from __future__ import annotations

import logging
from typing import Optional

from .masks import MaskCodec, combine_masks
from .scoring import score_person
from .types import DetectionResult, SeparationResult

logger = logging.getLogger(__name__)


def separate_foreground_background(
    detection: DetectionResult,
    target_foreground_count: int = 1,
    codec: Optional[MaskCodec] = None,
    merge_masks: bool = True,
) -> SeparationResult:
    """
    Keep the `target_foreground_count` highest-scoring people as foreground.

    Ties keep detection order (the sort is stable). Both partitions preserve
    detection order and together contain every input mask exactly once.
    With `merge_masks=False` the merged partition masks are left empty and
    no mask is decoded.
    """
    masks = detection.masks
    if not masks:
        return SeparationResult()

    scores = [score_person(m, detection.image_width, detection.image_height) for m in masks]
    ranked = sorted(scores, key=lambda s: s.score, reverse=True)

    keep = min(max(target_foreground_count, 0), len(ranked))
    foreground_ids = {s.person_id for s in ranked[:keep]}

    foreground = [m for m in masks if m.id in foreground_ids]
    background = [m for m in masks if m.id not in foreground_ids]

    logger.info("Separated %d foreground and %d background people", len(foreground), len(background))
    for s in ranked[:keep]:
        logger.debug("Foreground %s score=%.2f factors=%s", s.person_id, s.score, s.factors)

    result = SeparationResult(foreground_masks=foreground, background_masks=background, scores=ranked)
    if merge_masks:
        size = (detection.image_width, detection.image_height)
        result.foreground_mask = combine_masks(foreground, codec=codec, size=size)
        result.background_mask = combine_masks(background, codec=codec, size=size)
    return result
