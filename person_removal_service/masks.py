"""
Region masks: decoding, union, and the inpainting fill mask.

Masks travel between stages as references (PNG data URLs or remote URLs).
They are decoded to boolean numpy arrays only when regions have to be
combined; a single mask is passed through untouched.
"""

from __future__ import annotations

from io import BytesIO
import logging
from typing import Callable, List, Optional, Sequence, Tuple

import cv2
import numpy as np
from PIL import Image

from . import image_io
from .errors import MaskGenerationFailure
from .types import PersonMask

logger = logging.getLogger(__name__)

Size = Tuple[int, int]  # (width, height)


class MaskCodec:
    """Convert mask references to boolean arrays and back."""

    def __init__(self, fetch: Optional[Callable[[str], bytes]] = None, threshold: int = 127) -> None:
        self._fetch = fetch or image_io.load_image_bytes
        self.threshold = threshold

    def decode(self, ref: str) -> np.ndarray:
        image = image_io.open_image(self._fetch(ref))
        if image.mode in ("RGBA", "LA"):
            # Cutout-style masks carry the region in the alpha channel.
            gray = image.getchannel("A")
        else:
            gray = image.convert("L")
        return np.asarray(gray) > self.threshold

    def encode(self, mask: np.ndarray) -> str:
        image = Image.fromarray(mask.astype(np.uint8) * 255)
        buf = BytesIO()
        image.save(buf, format="PNG", optimize=False)
        return image_io.encode_data_url(buf.getvalue(), "image/png")


def _resize(mask: np.ndarray, size: Size) -> np.ndarray:
    width, height = size
    if mask.shape == (height, width):
        return mask
    image = Image.fromarray(mask.astype(np.uint8) * 255)
    return np.asarray(image.resize((width, height), Image.NEAREST)) > 127


def box_region(bbox: Sequence[float], size: Size) -> np.ndarray:
    """Rasterize a (x, y, w, h) box into a boolean mask of `size`."""
    width, height = size
    x, y, w, h = bbox
    region = np.zeros((height, width), dtype=bool)
    x0 = int(max(0, min(width, np.floor(x))))
    y0 = int(max(0, min(height, np.floor(y))))
    x1 = int(max(0, min(width, np.ceil(x + w))))
    y1 = int(max(0, min(height, np.ceil(y + h))))
    region[y0:y1, x0:x1] = True
    return region


def person_region(person: PersonMask, codec: MaskCodec, size: Optional[Size] = None) -> np.ndarray:
    """
    Return the region covered by `person`, resized to `size` when given.

    A person without a mask reference is represented by its bounding box,
    which requires `size`.
    """
    if not person.mask:
        if size is None:
            raise ValueError(f"{person.id} has no mask and no target size to rasterize its box")
        return box_region(person.bbox, size)
    region = codec.decode(person.mask)
    return _resize(region, size) if size is not None else region


def _regions(masks: Sequence[PersonMask], codec: MaskCodec, size: Optional[Size]) -> List[np.ndarray]:
    if size is None:
        decoded = [person_region(m, codec) for m in masks]
        size = (max(r.shape[1] for r in decoded), max(r.shape[0] for r in decoded))
        return [_resize(r, size) for r in decoded]
    return [person_region(m, codec, size) for m in masks]


def combine_masks(
    masks: Sequence[PersonMask],
    codec: Optional[MaskCodec] = None,
    size: Optional[Size] = None,
) -> str:
    """
    Merge the regions of `masks` into one mask reference.

    Empty input gives "", a single mask is returned as-is, and several masks
    are unioned pixel-wise at `size` (default: the largest of their sizes).

    Raises:
        MaskGenerationFailure: when a mask reference cannot be decoded.
    """
    if not masks:
        return ""
    if len(masks) == 1 and masks[0].mask:
        return masks[0].mask

    codec = codec or MaskCodec()
    try:
        regions = _regions(masks, codec, size)
    except Exception as exc:  # noqa: BLE001
        raise MaskGenerationFailure(f"Could not decode masks for merging: {exc}") from exc
    return codec.encode(np.logical_or.reduce(regions))


def dilate(mask: np.ndarray, radius_px: int) -> np.ndarray:
    """Grow a region by `radius_px` with an elliptical kernel."""
    if radius_px <= 0:
        return mask
    kernel = cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (2 * radius_px + 1, 2 * radius_px + 1))
    return cv2.dilate(mask.astype(np.uint8), kernel, iterations=1).astype(bool)


def generate_inpainting_mask(
    background_masks: Sequence[PersonMask],
    image_width: int,
    image_height: int,
    codec: Optional[MaskCodec] = None,
    dilation_px: int = 0,
) -> str:
    """
    Build the fill-region mask covering every background person.

    Regions are unioned at the image size and dilated by `dilation_px` so
    the inpainting model does not leave seams around the removed people.
    Returns "" when there is nothing to remove.

    Raises:
        MaskGenerationFailure: when a mask cannot be decoded or the union is empty.
    """
    if not background_masks:
        return ""

    codec = codec or MaskCodec()
    size = (image_width, image_height)
    try:
        regions = _regions(background_masks, codec, size)
    except Exception as exc:  # noqa: BLE001
        raise MaskGenerationFailure(f"Failed to generate inpainting mask: {exc}") from exc

    union = dilate(np.logical_or.reduce(regions), dilation_px)
    covered = int(union.sum())
    if covered == 0:
        raise MaskGenerationFailure("Failed to generate inpainting mask: background regions are empty")

    logger.info(
        "Inpainting mask covers %.1f%% of the image (%d people, dilation %dpx)",
        100.0 * covered / union.size,
        len(background_masks),
        dilation_px,
    )
    return codec.encode(union)
