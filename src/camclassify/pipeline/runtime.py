"""Startup and shutdown of the classification pipeline."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from camclassify.errors import ModelLoadError, PermissionDenied, SourceError
from camclassify.ml.inference import load_model
from camclassify.pipeline.controller import InferenceLoopController
from camclassify.pipeline.frame_source import FrameSourceConfig
from camclassify.pipeline.gallery import GalleryClassifier

if TYPE_CHECKING:
    from camclassify.config import Settings
    from camclassify.ml.inference import InferencePool, ModelHandle
    from camclassify.ml.model_manager import ModelManager
    from camclassify.ml.preprocessing import FrameDecoder
    from camclassify.pipeline.frame_source import FrameSource
    from camclassify.pipeline.services import GalleryPicker, ImageFetcher, PermissionService
    from camclassify.pipeline.state import PipelineState

logger = logging.getLogger(__name__)


class PipelineRuntime:
    """Owns the model handle and wires it into the loop and gallery path."""

    def __init__(
        self,
        settings: Settings,
        state: PipelineState,
        decoder: FrameDecoder,
        manager: ModelManager,
        pool: InferencePool,
        permissions: PermissionService,
        *,
        frame_source: FrameSource | None = None,
        picker: GalleryPicker | None = None,
        fetcher: ImageFetcher | None = None,
    ) -> None:
        self._settings = settings
        self.state = state
        self._decoder = decoder
        self._manager = manager
        self._pool = pool
        self._permissions = permissions
        self._frame_source = frame_source
        self._picker = picker
        self._fetcher = fetcher

        self.controller = InferenceLoopController.from_settings(settings, state, decoder)
        self.model: ModelHandle | None = None
        self.gallery: GalleryClassifier | None = None

    async def start(self) -> None:
        """Load the model, ask for the camera and start the loop if possible.

        Model-load and frame-source failures are fatal: they are logged and
        written to the state notice. A denied permission leaves the loop
        waiting and sets a notice.
        """
        self.state.runtime_ready = True
        self.controller.begin_startup()

        try:
            self.model = await load_model(self._settings, self._manager, self._pool)
        except ModelLoadError as exc:
            logger.error("Model load failed: %s", exc)
            self.state.set_notice(f"Model failed to load: {exc}")
            return

        self.state.model_ready = True
        self.gallery = GalleryClassifier(
            self.model,
            self._decoder,
            self.state,
            picker=self._picker,
            fetcher=self._fetcher,
        )
        self.controller.on_model_ready(self.model)

        try:
            await self._request_permission()
        except PermissionDenied as exc:
            logger.warning("%s", exc)
            self.state.set_notice("Sorry, camera permission is needed to classify live frames")
            return

        if self._frame_source is None:
            logger.info("No frame source configured; gallery classification only")
            return

        try:
            handle = self._frame_source.attach(FrameSourceConfig.from_settings(self._settings))
        except SourceError as exc:
            logger.error("Frame source failed to attach: %s", exc)
            self.state.set_notice(f"Camera stream unavailable: {exc}")
            return
        self.controller.attach_source(handle)

    async def shutdown(self) -> None:
        """Stop the loop, then release the pool and model sessions."""
        await self.controller.aclose()
        self._pool.shutdown()
        self._manager.shutdown()

    async def _request_permission(self) -> None:
        granted = await self._permissions.request_camera_permission()
        self.state.permission_granted = granted
        self.controller.on_permission(granted)
        if not granted:
            raise PermissionDenied("Camera permission was not granted")
