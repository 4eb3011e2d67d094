"""Error taxonomy for the classification pipeline.

Per-frame and per-request errors (DecodeError, InferenceError) are contained
where they happen. SourceError and ModelLoadError are fatal to the pipeline.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class PermissionDenied(PipelineError):
    """Camera permission was not granted."""


class DecodeError(PipelineError, ValueError):
    """Frame or image bytes could not be turned into a Frame Tensor."""


class InferenceError(PipelineError):
    """The inference engine failed or rejected a classify call."""


class SourceError(PipelineError):
    """The frame source terminated or failed unexpectedly."""


class ModelLoadError(PipelineError):
    """The classification model could not be loaded."""
