"""In-memory pipeline state read by the presentation layer."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from camclassify.ml.image_classifier import Prediction

logger = logging.getLogger(__name__)

# Image reference published with live camera predictions
CAMERA_IMAGE = "camera"


@dataclass(frozen=True)
class StateSnapshot:
    """Immutable view of the pipeline state at one point in time."""

    runtime_ready: bool
    model_ready: bool
    permission_granted: bool | None
    latest_image: str | None
    latest_prediction: Prediction | None
    notice: str | None
    version: int


class PipelineState:
    """Readiness flags plus the most recently published prediction.

    Writers are the startup sequence, the camera loop and the gallery path.
    A publish replaces image and prediction together, so readers never see
    an image paired with another image's labels. Camera predictions carry
    ``CAMERA_IMAGE`` as their image, so the first camera frame after a
    gallery pick replaces the picked image.
    """

    def __init__(self) -> None:
        self.runtime_ready: bool = False
        self.model_ready: bool = False
        self.permission_granted: bool | None = None
        self.notice: str | None = None
        self._latest_image: str | None = None
        self._latest_prediction: Prediction | None = None
        self._version: int = 0
        self._subscribers: list[Callable[[StateSnapshot], None]] = []

    @property
    def latest_image(self) -> str | None:
        return self._latest_image

    @property
    def latest_prediction(self) -> Prediction | None:
        return self._latest_prediction

    @property
    def version(self) -> int:
        return self._version

    def publish(self, prediction: Prediction, image: str | None = None) -> None:
        """Replace the latest prediction (and image reference) and notify subscribers."""
        self._latest_image = image
        self._latest_prediction = prediction
        self._version += 1

        snapshot = self.snapshot()
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("State subscriber %r failed", callback)

    def set_notice(self, notice: str) -> None:
        self.notice = notice

    def subscribe(self, callback: Callable[[StateSnapshot], None]) -> Callable[[], None]:
        """Register a publish callback. Returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def snapshot(self) -> StateSnapshot:
        return StateSnapshot(
            runtime_ready=self.runtime_ready,
            model_ready=self.model_ready,
            permission_granted=self.permission_granted,
            latest_image=self._latest_image,
            latest_prediction=self._latest_prediction,
            notice=self.notice,
            version=self._version,
        )
