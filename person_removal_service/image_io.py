"""
Image fetching and decoding helpers.

Images and masks reach the service either as public URLs or as inline
`data:image/...;base64,` URLs; both are resolved to raw bytes here so the
rest of the code never cares which one it got.
"""

from __future__ import annotations

import base64
import binascii
from io import BytesIO
import logging
from typing import Optional, Tuple

from PIL import Image
import requests

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT: Tuple[float, float] = (5.0, 30.0)


def is_data_url(ref: str) -> bool:
    return ref.startswith("data:")


def is_remote_url(ref: str) -> bool:
    return ref.startswith("http://") or ref.startswith("https://")


def decode_data_url(ref: str) -> bytes:
    """Return the payload of a base64 `data:` URL."""
    header, sep, payload = ref.partition(",")
    if not sep or ";base64" not in header:
        raise ValueError("Only base64 data URLs are supported")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Invalid base64 payload in data URL") from exc


def encode_data_url(data: bytes, content_type: str = "image/png") -> str:
    return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"


def _download(url: str, timeout: Tuple[float, float]) -> bytes:
    resp = requests.get(url, timeout=timeout)
    resp.raise_for_status()
    return resp.content


def load_image_bytes(ref: str, timeout: Optional[Tuple[float, float]] = None) -> bytes:
    """
    Resolve an image reference to raw bytes.

    Accepts data URLs, http(s) URLs and bare base64 strings.

    Raises:
        ValueError: when the reference is empty or cannot be decoded.
        requests.RequestException: when a download fails.
    """
    if not ref:
        raise ValueError("Empty image reference")
    if is_data_url(ref):
        return decode_data_url(ref)
    if is_remote_url(ref):
        return _download(ref, timeout or DEFAULT_TIMEOUT)
    try:
        return base64.b64decode(ref, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Unrecognized image reference") from exc


def open_image(data: bytes) -> Image.Image:
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except Exception as exc:  # noqa: BLE001
        raise ValueError("Invalid image data") from exc
    return image


def probe_dimensions(ref: str, timeout: Optional[Tuple[float, float]] = None) -> Tuple[int, int]:
    """Return the (width, height) of the referenced image."""
    image = open_image(load_image_bytes(ref, timeout=timeout))
    return image.size
