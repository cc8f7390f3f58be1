"""Error taxonomy for the person-removal pipeline."""

from __future__ import annotations


class PersonRemovalError(Exception):
    """Base class for every pipeline stage fault."""


class RemoteServiceError(PersonRemovalError):
    """A remote prediction call failed, timed out, or returned garbage."""


class DetectionFailure(PersonRemovalError):
    """Person detection could not be completed."""


class NoPeopleDetected(PersonRemovalError):
    """Detection succeeded but found no confident person."""


class MaskGenerationFailure(PersonRemovalError):
    """The removal mask could not be built from the background people."""


class InpaintingFailure(PersonRemovalError):
    """Every configured inpainting back-end failed."""


class ValidationFailure(PersonRemovalError):
    """The inpainted result did not pass the sanity check."""


class PipelineCancelled(PersonRemovalError):
    """The caller cancelled the run."""
