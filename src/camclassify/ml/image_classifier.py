"""Image classification: ranked predictions from an ONNX classifier."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np
from PIL import Image

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from numpy.typing import NDArray
    from onnxruntime import InferenceSession


@dataclass(frozen=True)
class ClassificationResult:
    """A single classification prediction."""

    label: str
    confidence: float


@dataclass(frozen=True)
class Prediction:
    """Ranked classification results for one image, highest confidence first."""

    results: tuple[ClassificationResult, ...]

    @classmethod
    def from_results(cls, results: Iterable[ClassificationResult]) -> Prediction:
        ranked = sorted(results, key=lambda r: r.confidence, reverse=True)
        return cls(results=tuple(ranked))

    @property
    def top(self) -> ClassificationResult | None:
        return self.results[0] if self.results else None

    def __len__(self) -> int:
        return len(self.results)


class ImageClassifier(Protocol):
    """Protocol for image classification models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def classify(self, image: NDArray[np.uint8]) -> Prediction:
        """Classify an image and return ranked tags.

        Args:
            image: HxWx3 RGB uint8 array.

        Returns:
            Prediction sorted by confidence (descending).
        """
        ...


def softmax(logits: NDArray[np.float32]) -> NDArray[np.float32]:
    shifted = logits - np.max(logits)
    exp = np.exp(shifted)
    return (exp / np.sum(exp)).astype(np.float32)


class OnnxImageClassifier:
    """Runs an ImageNet-style classifier through an ONNX Runtime session.

    The session input is expected to be NCHW float32 at ``input_size``.
    Output logits are softmaxed and the ``top_k`` labels are returned.
    """

    def __init__(
        self,
        model_name: str,
        session: InferenceSession,
        labels: Sequence[str],
        *,
        input_size: tuple[int, int],
        mean: tuple[float, float, float],
        std: tuple[float, float, float],
        top_k: int,
    ) -> None:
        self._model_name = model_name
        self._session = session
        self._labels = list(labels)
        self._input_size = input_size
        self._mean = np.asarray(mean, dtype=np.float32).reshape(3, 1, 1)
        self._std = np.asarray(std, dtype=np.float32).reshape(3, 1, 1)
        self._top_k = top_k
        self._input_name: str = session.get_inputs()[0].name

    @property
    def model_name(self) -> str:
        return self._model_name

    def preprocess(self, image: NDArray[np.uint8]) -> NDArray[np.float32]:
        """Resize, scale to [0, 1], normalize and transpose to a 1x3xHxW batch."""
        width, height = self._input_size
        if image.shape[0] != height or image.shape[1] != width:
            resized = Image.fromarray(image).resize((width, height), Image.Resampling.BILINEAR)
            image = np.asarray(resized, dtype=np.uint8)

        chw = image.astype(np.float32).transpose(2, 0, 1) / 255.0
        normalized = (chw - self._mean) / self._std
        return normalized[np.newaxis, ...].astype(np.float32)

    def classify(self, image: NDArray[np.uint8]) -> Prediction:
        batch = self.preprocess(image)
        outputs = self._session.run(None, {self._input_name: batch})
        logits = np.asarray(outputs[0], dtype=np.float32).reshape(-1)
        if logits.shape[0] != len(self._labels):
            raise ValueError(f"Model returned {logits.shape[0]} scores for {len(self._labels)} labels")

        scores = softmax(logits)
        k = min(self._top_k, scores.shape[0])
        top = np.argsort(scores)[::-1][:k]
        return Prediction.from_results(
            ClassificationResult(label=self._labels[i], confidence=float(scores[i])) for i in top
        )
