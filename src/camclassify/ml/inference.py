"""Inference concurrency layer and the shared model handle.

Architecture:
    loop / gallery (async) -> ModelHandle -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> ONNX inference

The handle is created once by ``load_model`` and passed explicitly to every
caller. Queued requests wait for a semaphore slot, optionally bounded by
``queue_timeout``. The classify call itself has no timeout.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import TYPE_CHECKING, Protocol, TypeVar

from camclassify.errors import InferenceError, ModelLoadError
from camclassify.ml.image_classifier import OnnxImageClassifier

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from camclassify.config import Settings
    from camclassify.ml.image_classifier import ImageClassifier, Prediction
    from camclassify.ml.model_manager import ModelManager
    from camclassify.ml.tensor import FrameTensor

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InferencePool:
    """Bounded executor shared by the camera loop and gallery requests.

    ``max_concurrent`` sizes both the semaphore and the worker pool, so a
    call that holds a slot always has a thread to run on.
    """

    def __init__(self, settings: Settings) -> None:
        self._slots = asyncio.Semaphore(settings.max_concurrent)
        self._queue_timeout = settings.queue_timeout
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="camclassify-infer",
        )
        self._counts = {"active": 0, "waiting": 0}
        self._counts_lock = threading.Lock()

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run ``func(*args)`` on a worker thread once a slot is free.

        Raises:
            TimeoutError: ``queue_timeout`` is set and elapsed before a slot
                became available.
        """
        with self._counting("waiting"):
            await self._acquire_slot()
        try:
            with self._counting("active"):
                return await asyncio.get_running_loop().run_in_executor(self._executor, func, *args)
        finally:
            self._slots.release()

    @property
    def active_count(self) -> int:
        return self._read("active")

    @property
    def queue_depth(self) -> int:
        """Callers currently waiting for a slot."""
        return self._read("waiting")

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    async def _acquire_slot(self) -> None:
        if self._queue_timeout is None:
            await self._slots.acquire()
        else:
            await asyncio.wait_for(self._slots.acquire(), timeout=self._queue_timeout)

    @contextmanager
    def _counting(self, key: str) -> Iterator[None]:
        with self._counts_lock:
            self._counts[key] += 1
        try:
            yield
        finally:
            with self._counts_lock:
                self._counts[key] -= 1

    def _read(self, key: str) -> int:
        with self._counts_lock:
            return self._counts[key]


class InferenceEngine(Protocol):
    """Anything that turns a Frame Tensor into a ranked Prediction."""

    async def classify(self, tensor: FrameTensor) -> Prediction:
        """Classify one tensor. Raises InferenceError on failure."""
        ...


class ModelHandle:
    """The loaded classifier, shared read-only by the camera loop and gallery path."""

    def __init__(self, classifier: ImageClassifier, pool: InferencePool) -> None:
        self._classifier = classifier
        self._pool = pool

    @property
    def model_name(self) -> str:
        return self._classifier.model_name

    async def classify(self, tensor: FrameTensor) -> Prediction:
        """Run the classifier on the pool.

        The tensor is read but not released; the caller owns it.

        Raises:
            InferenceError: If the tensor is unusable or the model call fails.
        """
        try:
            image = tensor.array
            return await self._pool.run(self._classifier.classify, image)
        except InferenceError:
            raise
        except Exception as exc:
            raise InferenceError(f"{self.model_name} failed: {exc}") from exc


async def load_model(settings: Settings, manager: ModelManager, pool: InferencePool) -> ModelHandle:
    """Download and open the configured classifier once.

    Blocking Hub and ONNX Runtime work runs in a worker thread.

    Raises:
        ModelLoadError: If the model is unknown or cannot be downloaded or opened.
    """
    model_name = settings.classification_model
    logger.info("Loading classification model %s", model_name)

    def _load() -> OnnxImageClassifier:
        spec = manager.get_spec(model_name)
        session = manager.get_session(model_name)
        labels = manager.get_labels(model_name)
        return OnnxImageClassifier(
            model_name,
            session,
            labels,
            input_size=spec.input_size,
            mean=spec.mean,
            std=spec.std,
            top_k=settings.top_k,
        )

    try:
        classifier = await asyncio.to_thread(_load)
    except Exception as exc:
        raise ModelLoadError(f"Could not load model {model_name}: {exc}") from exc

    logger.info("Model %s ready", model_name)
    return ModelHandle(classifier, pool)
