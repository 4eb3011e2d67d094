"""Shared test doubles for the pipeline tests."""

from __future__ import annotations

import asyncio
import io
from typing import TYPE_CHECKING

import numpy as np
import pytest
from PIL import Image

from camclassify.errors import InferenceError, SourceError
from camclassify.ml.image_classifier import ClassificationResult, Prediction
from camclassify.ml.preprocessing import FrameDecoder

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from numpy.typing import NDArray

    from camclassify.ml.tensor import FrameTensor


class FakeEngine:
    """Inference engine double that records calls and in-flight concurrency.

    Call N returns a prediction whose top label is ``frame-N``. Calls listed
    in ``fail_on`` raise InferenceError. When ``gate`` is set, every call
    waits on it before returning.
    """

    def __init__(self) -> None:
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self.fail_on: set[int] = set()
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()
        self.seen: list[NDArray[np.uint8]] = []
        self.tensors: list[FrameTensor] = []

    async def classify(self, tensor: FrameTensor) -> Prediction:
        self.calls += 1
        call = self.calls
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.started.set()
        try:
            self.tensors.append(tensor)
            self.seen.append(tensor.array.copy())
            if self.gate is not None:
                await self.gate.wait()
            await asyncio.sleep(0)
            if call in self.fail_on:
                raise InferenceError(f"rejected call {call}")
            return Prediction.from_results(
                [
                    ClassificationResult(label=f"frame-{call}", confidence=0.9),
                    ClassificationResult(label="other", confidence=0.1),
                ]
            )
        finally:
            self.in_flight -= 1


class FakeHandle:
    """Frame source handle over a fixed list of frames."""

    def __init__(self, frames: list[object], *, fail_after: int | None = None) -> None:
        self._items = frames
        self._fail_after = fail_after
        self.pulled = 0
        self.released = 0
        self.refreshes = 0
        self._frames = self._generate()

    @property
    def frames(self) -> Iterator[object]:
        return self._frames

    def _generate(self) -> Iterator[object]:
        for index, frame in enumerate(self._items):
            if self._fail_after is not None and index >= self._fail_after:
                raise SourceError("camera disconnected")
            self.pulled += 1
            yield frame

    def request_preview_refresh(self) -> None:
        self.refreshes += 1

    def release_frame(self) -> None:
        self.released += 1


def make_frames(count: int, height: int = 4, width: int = 3) -> list[NDArray[np.uint8]]:
    return [np.full((height, width, 3), i, dtype=np.uint8) for i in range(count)]


def encode_png(array: NDArray[np.uint8]) -> bytes:
    buf = io.BytesIO()
    Image.fromarray(array).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture()
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture()
def decoder() -> FrameDecoder:
    return FrameDecoder(max_image_pixels=16_777_216)


@pytest.fixture()
def make_handle() -> type[FakeHandle]:
    return FakeHandle


@pytest.fixture()
def frames() -> list[NDArray[np.uint8]]:
    """Five distinct 4x3 RGB camera frames."""
    return make_frames(5)


@pytest.fixture()
def png() -> Callable[[NDArray[np.uint8]], bytes]:
    return encode_png
