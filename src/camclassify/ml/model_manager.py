"""Registry and loader for the ONNX image classifiers.

Model files and their ``config.json`` label maps are pulled from the
Hugging Face Hub into ``models_dir``. Each model gets one InferenceSession
for the life of the process.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, TypeVar

from huggingface_hub import hf_hub_download
from onnxruntime import GraphOptimizationLevel, InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

if TYPE_CHECKING:
    from collections.abc import Callable

    from camclassify.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ModelManager(Protocol):
    """What the loader needs from a model store."""

    def ensure_downloaded(self, model_name: str) -> Path: ...

    def get_session(self, model_name: str) -> InferenceSession: ...

    def get_spec(self, model_name: str) -> ModelSpec: ...

    def get_labels(self, model_name: str) -> list[str]: ...

    def get_loaded_models(self) -> list[str]: ...

    def shutdown(self) -> None: ...


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


class ModelTask(StrEnum):
    IMAGE_CLASSIFICATION = "image_classification"


IMAGENET_MEAN: tuple[float, float, float] = (0.485, 0.456, 0.406)
IMAGENET_STD: tuple[float, float, float] = (0.229, 0.224, 0.225)


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single ONNX model."""

    name: str
    repo_id: str
    filename: str
    subfolder: str | None
    labels_filename: str
    task: ModelTask
    license: str
    input_size: tuple[int, int] = (224, 224)
    mean: tuple[float, float, float] = IMAGENET_MEAN
    std: tuple[float, float, float] = IMAGENET_STD


MODEL_REGISTRY: dict[str, ModelSpec] = {
    "mobilenet_v2_1.0_224": ModelSpec(
        name="mobilenet_v2_1.0_224",
        repo_id="Xenova/mobilenet_v2_1.0_224",
        filename="model.onnx",
        subfolder="onnx",
        labels_filename="config.json",
        task=ModelTask.IMAGE_CLASSIFICATION,
        license="Apache-2.0",
        mean=(0.5, 0.5, 0.5),
        std=(0.5, 0.5, 0.5),
    ),
    "resnet_50": ModelSpec(
        name="resnet_50",
        repo_id="Xenova/resnet-50",
        filename="model.onnx",
        subfolder="onnx",
        labels_filename="config.json",
        task=ModelTask.IMAGE_CLASSIFICATION,
        license="Apache-2.0",
    ),
}


def parse_labels(config: dict[str, object]) -> list[str]:
    """Read ``id2label`` from a model config into an index-ordered list."""
    id2label = config.get("id2label")
    if not isinstance(id2label, dict) or not id2label:
        raise ValueError("Model config has no id2label mapping")
    by_index = {int(k): str(v) for k, v in id2label.items()}
    if sorted(by_index) != list(range(len(by_index))):
        raise ValueError("Model config id2label indices are not contiguous")
    return [by_index[i] for i in range(len(by_index))]


# ---------------------------------------------------------------------------
# Runtime options
# ---------------------------------------------------------------------------

Provider = str | tuple[str, dict[str, object]]


def build_providers(settings: Settings) -> list[Provider]:
    """Execution providers for the configured device, CPU always last."""
    accelerated: dict[str, Provider] = {
        "cuda": (
            "CUDAExecutionProvider",
            {
                "device_id": 0,
                "gpu_mem_limit": settings.gpu_mem_limit,
                "arena_extend_strategy": "kSameAsRequested",
            },
        ),
        "openvino": ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
    }
    extra = accelerated.get(settings.device)
    return ["CPUExecutionProvider"] if extra is None else [extra, "CPUExecutionProvider"]


def build_session_options(settings: Settings) -> SessionOptions:
    options = SessionOptions()
    options.intra_op_num_threads = settings.intra_op_threads
    options.inter_op_num_threads = settings.inter_op_threads
    options.execution_mode = ExecutionMode.ORT_SEQUENTIAL
    options.enable_mem_pattern = True
    options.enable_mem_reuse = True
    if settings.device == "openvino":
        # OpenVINO optimizes the graph itself
        options.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
    return options


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class OnnxModelManager:
    """Fetches classification models from the Hub and keeps one session per model.

    Sessions and label lists live until :meth:`shutdown`. The live camera loop
    holds on to its model handle for the whole run, so nothing is evicted.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._models_dir.mkdir(parents=True, exist_ok=True)

        self._providers = build_providers(settings)
        self._session_options = build_session_options(settings)

        self._lock = threading.Lock()
        self._model_paths: dict[str, Path] = {}
        self._sessions: dict[str, InferenceSession] = {}
        self._labels: dict[str, list[str]] = {}

    def ensure_downloaded(self, model_name: str) -> Path:
        """Local path of the model's ONNX file, fetched on first use."""
        spec = self.get_spec(model_name)
        known = self._model_paths.get(model_name)
        if known is not None and known.exists():
            return known

        path = self._fetch(spec.repo_id, spec.filename, subfolder=spec.subfolder)
        self._model_paths[model_name] = path
        logger.info("Model %s available at %s", model_name, path)
        return path

    def get_session(self, model_name: str) -> InferenceSession:
        return self._cached(self._sessions, model_name, self._open_session)

    def get_labels(self, model_name: str) -> list[str]:
        """Class labels of ``model_name`` in output-index order."""
        return self._cached(self._labels, model_name, self._read_labels)

    def get_loaded_models(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def shutdown(self) -> None:
        with self._lock:
            released = len(self._sessions)
            self._sessions.clear()
            self._labels.clear()
        logger.info("Released %d model session(s)", released)

    @staticmethod
    def get_spec(model_name: str) -> ModelSpec:
        spec = MODEL_REGISTRY.get(model_name)
        if spec is None:
            raise KeyError(f"Unknown model: {model_name}")
        return spec

    # -- Internal -----------------------------------------------------------

    def _fetch(self, repo_id: str, filename: str, *, subfolder: str | None = None) -> Path:
        kwargs: dict[str, str] = {"repo_id": repo_id, "filename": filename}
        if subfolder is not None:
            kwargs["subfolder"] = subfolder
        return Path(hf_hub_download(**kwargs, local_dir=str(self._models_dir)))

    def _cached(self, store: dict[str, T], model_name: str, build: Callable[[str], T]) -> T:
        with self._lock:
            if model_name in store:
                return store[model_name]

        # Built outside the lock; a concurrent builder for the same model loses.
        value = build(model_name)
        with self._lock:
            return store.setdefault(model_name, value)

    def _open_session(self, model_name: str) -> InferenceSession:
        session = InferenceSession(
            str(self.ensure_downloaded(model_name)),
            sess_options=self._session_options,
            providers=self._providers,
        )
        logger.info("Created ONNX session for %s (%s)", model_name, self._settings.device)
        return session

    def _read_labels(self, model_name: str) -> list[str]:
        spec = self.get_spec(model_name)
        config_path = self._fetch(spec.repo_id, spec.labels_filename)
        labels = parse_labels(json.loads(config_path.read_text(encoding="utf-8")))
        logger.info("Loaded %d labels for %s", len(labels), model_name)
        return labels
