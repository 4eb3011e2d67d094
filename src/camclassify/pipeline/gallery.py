"""One-shot classification of an image chosen from the photo library."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from camclassify.errors import InferenceError, PipelineError

if TYPE_CHECKING:
    from camclassify.ml.image_classifier import Prediction
    from camclassify.ml.inference import InferenceEngine
    from camclassify.ml.preprocessing import FrameDecoder
    from camclassify.pipeline.services import GalleryPicker, ImageFetcher
    from camclassify.pipeline.state import PipelineState

logger = logging.getLogger(__name__)


class GalleryClassifier:
    """Picks, decodes and classifies a single image with the shared model.

    A failed or cancelled attempt never touches the published state.
    """

    def __init__(
        self,
        model: InferenceEngine,
        decoder: FrameDecoder,
        state: PipelineState,
        *,
        picker: GalleryPicker | None = None,
        fetcher: ImageFetcher | None = None,
    ) -> None:
        self._model = model
        self._decoder = decoder
        self._state = state
        self._picker = picker
        self._fetcher = fetcher

    async def select_and_classify(self) -> Prediction | None:
        """Run the full pick -> fetch -> decode -> classify -> publish flow.

        Returns:
            The published prediction, or None if the user cancelled or any
            step failed.
        """
        if self._picker is None or self._fetcher is None:
            raise RuntimeError("Gallery picker and image fetcher are required for select_and_classify")

        try:
            picked = await self._picker.pick_image()
        except Exception:
            logger.exception("Gallery picker failed")
            return None

        if picked.cancelled or not picked.uri:
            logger.info("Gallery pick cancelled")
            return None

        try:
            image_bytes = await self._fetcher.fetch(picked.uri)
        except Exception:
            logger.exception("Could not fetch %s", picked.uri)
            return None

        try:
            return await self.classify_bytes(image_bytes, image_ref=picked.uri)
        except PipelineError as exc:
            logger.warning("Gallery classification of %s failed: %s", picked.uri, exc)
            return None

    async def classify_bytes(self, image_bytes: bytes, image_ref: str | None = None) -> Prediction:
        """Decode, classify and publish one compressed image.

        Raises:
            DecodeError: If the bytes are not a readable image.
            InferenceError: If the model call fails.
        """
        tensor = self._decoder.decode_image(image_bytes)
        try:
            prediction = await self._model.classify(tensor)
        except InferenceError:
            raise
        except Exception as exc:
            raise InferenceError(str(exc) or type(exc).__name__) from exc
        finally:
            tensor.release()

        self._state.publish(prediction, image=image_ref)
        top = prediction.top
        logger.info("Classified %s: %s", image_ref or "<upload>", top.label if top else "<no labels>")
        return prediction
