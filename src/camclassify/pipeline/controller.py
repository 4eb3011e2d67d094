"""Inference loop controller: camera frames in, published predictions out.

States:
    idle -> awaiting_model -> looping -> stopped

The loop pulls one frame, classifies it, publishes the prediction, releases
the frame and then yields to the scheduler before pulling the next one. A
single-slot semaphore around the classify call guarantees at most one frame
is in inference at a time; frames the camera produces meanwhile are never
read, so there is no backlog.

Per-frame decode and inference failures are logged and the loop moves on to
the next tick. A failing frame source stops the loop, and so does an
unexpected error, which is logged with its traceback as a crash.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from camclassify.errors import DecodeError, InferenceError, SourceError
from camclassify.pipeline.state import CAMERA_IMAGE

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator

    from camclassify.config import Settings
    from camclassify.ml.image_classifier import Prediction
    from camclassify.ml.inference import InferenceEngine
    from camclassify.ml.preprocessing import FrameDecoder
    from camclassify.ml.tensor import FrameTensor
    from camclassify.pipeline.frame_source import FrameSourceHandle
    from camclassify.pipeline.state import PipelineState

logger = logging.getLogger(__name__)


class LoopState(StrEnum):
    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    LOOPING = "looping"
    STOPPED = "stopped"


@dataclass
class LoopStats:
    """Counters for the running loop."""

    frames_pulled: int = 0
    predictions_published: int = 0
    decode_errors: int = 0
    inference_errors: int = 0
    discarded_results: int = 0


_EXHAUSTED = object()


@contextlib.contextmanager
def _source_errors() -> Iterator[None]:
    """Report anything the frame source raises as a SourceError."""
    try:
        yield
    except SourceError:
        raise
    except Exception as exc:
        raise SourceError(f"Frame source failed: {exc}") from exc


class InferenceLoopController:
    """Drives the continuous camera-to-prediction loop."""

    def __init__(
        self,
        state: PipelineState,
        decoder: FrameDecoder,
        *,
        flip_horizontal: bool = False,
        frames_normalized: bool = False,
        autorender: bool = False,
        tick_interval: float = 0.0,
        tick: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self._state = state
        self._decoder = decoder
        self._flip_horizontal = flip_horizontal
        self._frames_normalized = frames_normalized
        self._autorender = autorender
        self._tick_interval = tick_interval
        self._tick = tick if tick is not None else self._sleep_tick

        self._loop_state = LoopState.IDLE
        self._model: InferenceEngine | None = None
        self._permission_granted = False
        self._handle: FrameSourceHandle | None = None
        self._task: asyncio.Task[None] | None = None
        self._slot = asyncio.Semaphore(1)
        self._in_flight = 0
        self._ticking = False
        self.stats = LoopStats()

    @classmethod
    def from_settings(
        cls, settings: Settings, state: PipelineState, decoder: FrameDecoder
    ) -> InferenceLoopController:
        return cls(
            state,
            decoder,
            flip_horizontal=settings.should_flip,
            frames_normalized=settings.camera_frames_normalized,
            autorender=settings.autorender,
            tick_interval=settings.tick_interval,
        )

    # -- Public API ---------------------------------------------------------

    @property
    def loop_state(self) -> LoopState:
        return self._loop_state

    @property
    def in_flight(self) -> int:
        """Number of classify calls the loop is currently awaiting (0 or 1)."""
        return self._in_flight

    def begin_startup(self) -> None:
        """Enter awaiting_model while the model loads."""
        if self._loop_state is LoopState.IDLE:
            self._set_state(LoopState.AWAITING_MODEL)

    def on_model_ready(self, model: InferenceEngine) -> None:
        self.begin_startup()
        self._model = model
        self._maybe_start()

    def on_permission(self, granted: bool) -> None:
        self.begin_startup()
        self._permission_granted = granted
        self._maybe_start()

    def attach_source(self, handle: FrameSourceHandle) -> None:
        self.begin_startup()
        self._handle = handle
        self._maybe_start()

    def stop(self) -> None:
        """Stop scheduling iterations.

        A classify call that is already running is left to finish, but its
        result is discarded. A loop that is only waiting for its next tick
        is cancelled outright.
        """
        if self._loop_state is LoopState.STOPPED:
            return
        self._set_state(LoopState.STOPPED)
        if self._task is not None and self._ticking:
            self._task.cancel()

    async def join(self) -> None:
        """Wait for the loop task to exit."""
        if self._task is None:
            return
        with contextlib.suppress(asyncio.CancelledError):
            await self._task

    async def aclose(self) -> None:
        self.stop()
        await self.join()

    # -- Internal -----------------------------------------------------------

    def _set_state(self, new_state: LoopState) -> None:
        logger.info("Inference loop %s -> %s", self._loop_state, new_state)
        self._loop_state = new_state

    def _maybe_start(self) -> None:
        if self._loop_state is not LoopState.AWAITING_MODEL:
            return
        if self._model is None or not self._permission_granted or self._handle is None:
            return
        self._set_state(LoopState.LOOPING)
        self._task = asyncio.get_running_loop().create_task(self._run(self._handle), name="inference-loop")

    async def _sleep_tick(self) -> None:
        await asyncio.sleep(self._tick_interval)

    async def _run(self, handle: FrameSourceHandle) -> None:
        frames = handle.frames
        try:
            while self._loop_state is LoopState.LOOPING:
                await self._step(handle, frames)
                if self._loop_state is not LoopState.LOOPING:
                    break
                self._ticking = True
                try:
                    await self._tick()
                finally:
                    self._ticking = False
        except SourceError as exc:
            logger.error("Inference loop stopped: %s", exc)
            self._halt(f"Camera stream stopped: {exc}")
        except Exception as exc:
            logger.exception("Inference loop crashed")
            self._halt(f"Inference loop crashed: {exc}")
        finally:
            logger.info(
                "Inference loop exited (frames=%d, published=%d, inference_errors=%d, decode_errors=%d)",
                self.stats.frames_pulled,
                self.stats.predictions_published,
                self.stats.inference_errors,
                self.stats.decode_errors,
            )

    async def _step(self, handle: FrameSourceHandle, frames: Iterator[object]) -> None:
        with _source_errors():
            if not self._autorender:
                handle.request_preview_refresh()
            frame = next(frames, _EXHAUSTED)
        if frame is _EXHAUSTED:
            raise SourceError("Frame source ended")

        self.stats.frames_pulled += 1
        index = self.stats.frames_pulled
        tensor: FrameTensor | None = None
        try:
            tensor = self._decoder.prepare_camera_frame(
                frame, flip_horizontal=self._flip_horizontal, normalized=self._frames_normalized
            )
            prediction = await self._classify(tensor)
            if self._loop_state is LoopState.LOOPING:
                self._state.publish(prediction, image=CAMERA_IMAGE)
                self.stats.predictions_published += 1
                top = prediction.top
                logger.debug("Frame %d: %s", index, top.label if top else "<no labels>")
            else:
                self.stats.discarded_results += 1
                logger.debug("Frame %d result discarded after stop", index)
        except DecodeError as exc:
            self.stats.decode_errors += 1
            logger.warning("Frame %d could not be decoded: %s", index, exc)
        except InferenceError as exc:
            self.stats.inference_errors += 1
            logger.warning("Frame %d classification failed: %s", index, exc)
        finally:
            if tensor is not None:
                tensor.release()
            with _source_errors():
                handle.release_frame()

    async def _classify(self, tensor: FrameTensor) -> Prediction:
        model = self._model
        if model is None:
            raise InferenceError("Model is not loaded")
        async with self._slot:
            self._in_flight += 1
            try:
                return await model.classify(tensor)
            except InferenceError:
                raise
            except Exception as exc:
                raise InferenceError(str(exc) or type(exc).__name__) from exc
            finally:
                self._in_flight -= 1

    def _halt(self, notice: str) -> None:
        self._state.set_notice(notice)
        if self._loop_state is not LoopState.STOPPED:
            self._set_state(LoopState.STOPPED)
