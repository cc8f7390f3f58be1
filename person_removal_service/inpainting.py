"""
Generative background fill across several inpainting back-ends.

Back-ends are named strategies registered in `INPAINTING_MODELS`; the
`InpaintingSelector` walks them in priority order (preferred model first)
and reports the first one that returns an image.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from . import image_io
from .errors import InpaintingFailure, PipelineCancelled, ValidationFailure
from .replicate_client import ReplicateClient
from .types import InpaintingResult

logger = logging.getLogger(__name__)

DEFAULT_PROMPT = "natural background, seamless, high quality"
NEGATIVE_PROMPT = "people, person, human, face, body, distorted, blurry, low quality"

SD_INPAINT_PARAMS = {
    "num_inference_steps": 50,
    "guidance_scale": 7.5,
    "num_samples": 1,
    "scheduler": "DDIM",
    "seed": None,
    "width": 1024,
    "height": 1024,
}

INPAINTING_MODELS: Dict[str, Dict[str, Any]] = {
    "stability": dict(SD_INPAINT_PARAMS),
    "runwayml": dict(SD_INPAINT_PARAMS),
    "flux": {
        "guidance_scale": 3.5,
        "num_inference_steps": 20,
        "seed": None,
    },
}


class InpaintingBackend(Protocol):
    name: str
    model_id: str

    def fill(
        self, image_url: str, mask_ref: str, prompt: str, cancel: Optional[threading.Event] = None
    ) -> str:
        ...


def _first_url(output: Any) -> Optional[str]:
    if isinstance(output, str):
        return output or None
    if isinstance(output, (list, tuple)) and output and isinstance(output[0], str):
        return output[0]
    return None


class ReplicateInpaintingBackend:
    """An inpainting model served through the Replicate prediction API."""

    def __init__(self, name: str, model_ref: str, client: ReplicateClient, params: Mapping[str, Any]) -> None:
        self.name = name
        self.model_ref = model_ref
        self.model_id = model_ref.split(":", 1)[0]
        self.client = client
        self.params = dict(params)

    def fill(
        self, image_url: str, mask_ref: str, prompt: str, cancel: Optional[threading.Event] = None
    ) -> str:
        inputs = {
            "image": image_url,
            "mask": mask_ref,
            "prompt": prompt,
            "negative_prompt": NEGATIVE_PROMPT,
            **self.params,
        }
        output = self.client.run(self.model_ref, inputs, cancel=cancel)
        result_url = _first_url(output)
        if not result_url:
            raise RuntimeError(f"{self.name} inpainting did not return valid output")
        return result_url


def build_backends(settings, client: ReplicateClient) -> List[ReplicateInpaintingBackend]:
    """Instantiate every registered inpainting model with its configured reference."""
    return [
        ReplicateInpaintingBackend(name, settings.inpainting_model_ref(name), client, params)
        for name, params in INPAINTING_MODELS.items()
    ]


class InpaintingSelector:
    def __init__(
        self,
        backends: Sequence[InpaintingBackend],
        priority: Optional[Sequence[str]] = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._backends = {b.name: b for b in backends}
        self.priority = list(priority) if priority is not None else [b.name for b in backends]
        unknown = [name for name in self.priority if name not in self._backends]
        if unknown:
            raise ValueError(f"Priority list names unregistered inpainting models: {unknown}")
        self._clock = clock

    def order(self, preferred_model: Optional[str] = None) -> List[str]:
        """Return the attempt order; a preferred model is tried once, first."""
        if preferred_model and preferred_model not in self._backends:
            logger.warning("Unknown preferred model %s, using default order", preferred_model)
            preferred_model = None
        if not preferred_model:
            return list(self.priority)
        return [preferred_model] + [name for name in self.priority if name != preferred_model]

    def fill(
        self,
        image_url: str,
        mask_ref: str,
        prompt: str = DEFAULT_PROMPT,
        preferred_model: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> InpaintingResult:
        """
        Inpaint `mask_ref` on `image_url` with the first back-end that succeeds.

        Raises:
            InpaintingFailure: when every back-end fails.
            PipelineCancelled: when `cancel` is set.
        """
        errors: List[Tuple[str, str]] = []
        for name in self.order(preferred_model):
            if cancel is not None and cancel.is_set():
                raise PipelineCancelled("Inpainting cancelled")
            backend = self._backends[name]
            logger.info("Trying %s inpainting", name)
            started = self._clock()
            try:
                result_url = backend.fill(image_url, mask_ref, prompt, cancel=cancel)
            except PipelineCancelled:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.warning("%s inpainting failed: %s", name, exc)
                errors.append((name, str(exc)))
                continue
            elapsed_ms = int((self._clock() - started) * 1000)
            logger.info("%s inpainting completed in %dms", name, elapsed_ms)
            return InpaintingResult(result_url=result_url, model_used=backend.model_id, processing_time=elapsed_ms)

        summary = "; ".join(f"{name}: {message}" for name, message in errors) or "no back-ends configured"
        raise InpaintingFailure(f"All inpainting models failed ({summary})")


def build_prompt(custom_prompt: Optional[str] = None, scene_context: Optional[str] = None) -> str:
    """Append scene and photographic-quality qualifiers to the fill prompt."""
    prompt = custom_prompt or DEFAULT_PROMPT
    context = (scene_context or "").lower()
    if "outdoor" in context or "nature" in context:
        prompt += ", outdoor, natural lighting, environmental context"
    elif "indoor" in context or "room" in context:
        prompt += ", indoor, architectural, room context"
    return prompt + ", professional photography, high resolution, detailed"


class ResultValidator:
    """
    Sanity check for inpainted results.

    The URL check is always applied. With `check_image` the result is
    downloaded and must decode with roughly the original aspect ratio.
    """

    def __init__(
        self,
        fetch: Optional[Callable[[str], bytes]] = None,
        check_image: bool = False,
        aspect_tolerance: float = 0.05,
    ) -> None:
        self._fetch = fetch or image_io.load_image_bytes
        self.check_image = check_image
        self.aspect_tolerance = aspect_tolerance

    def validate(self, result_url: str, original_size: Tuple[int, int]) -> None:
        if not result_url:
            raise ValidationFailure("Inpainting result validation failed: empty result URL")
        if not (image_io.is_remote_url(result_url) or image_io.is_data_url(result_url)):
            raise ValidationFailure("Inpainting result validation failed: unsupported result URL")
        if not self.check_image:
            return

        try:
            image = image_io.open_image(self._fetch(result_url))
        except Exception as exc:  # noqa: BLE001
            raise ValidationFailure(f"Inpainting result validation failed: {exc}") from exc

        width, height = image.size
        orig_w, orig_h = original_size
        if width <= 0 or height <= 0:
            raise ValidationFailure("Inpainting result validation failed: empty image")
        expected = orig_w / float(orig_h)
        actual = width / float(height)
        if abs(actual - expected) / expected > self.aspect_tolerance:
            raise ValidationFailure(
                f"Inpainting result validation failed: aspect ratio {actual:.3f} differs from original {expected:.3f}"
            )
