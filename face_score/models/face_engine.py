from __future__ import annotations
import logging
from pathlib import Path
from typing import List

import onnxruntime as ort
from insightface.model_zoo import get_model

from ..config import Settings
from .model_handle import ModelHandle

logger = logging.getLogger(__name__)

DETECTOR = "face_detection"
EMBEDDER = "face_embedding"
SCORER = "attractiveness"

ARCFACE_INPUT_SIZE = 112


class FaceEngine:
    """
    Holds the three model handles (detector, embedder, scorer).

    Loaded once at service start and shared read-only by every worker and batch
    task. A handle that fails to load keeps `session=None`; the matching stage
    then runs its simulated backend. That is a policy, not an error.
    """

    def __init__(self, detector: ModelHandle, embedder: ModelHandle, scorer: ModelHandle):
        self.detector = detector
        self.embedder = embedder
        self.scorer = scorer

    @property
    def handles(self) -> List[ModelHandle]:
        return [self.detector, self.embedder, self.scorer]

    @classmethod
    def load(cls, settings: Settings) -> "FaceEngine":
        # ─── DEVICE SELECTION ────────────────────────────────────────────────
        # ctx_id < 0 → CPU only, otherwise try CUDA first
        providers = (
            ["CUDAExecutionProvider", "CPUExecutionProvider"]
            if settings.model_ctx_id >= 0
            else ["CPUExecutionProvider"]
        )
        size = settings.image_size
        engine = cls(
            detector=_load_handle(
                DETECTOR,
                settings.model_path(settings.face_detection_model),
                (1, 3, size, size),
                (-1, 5),
                lambda path: _load_insightface(path, "detection", providers, settings,
                                               input_size=(size, size),
                                               det_thresh=settings.detection_threshold),
            ),
            embedder=_load_handle(
                EMBEDDER,
                settings.model_path(settings.face_embedding_model),
                (1, 3, ARCFACE_INPUT_SIZE, ARCFACE_INPUT_SIZE),
                (1, settings.embedding_dim),
                lambda path: _load_insightface(path, "recognition", providers, settings),
            ),
            scorer=_load_handle(
                SCORER,
                settings.model_path(settings.attractiveness_model),
                (1, settings.embedding_dim),
                (1, 2),
                lambda path: ort.InferenceSession(str(path), providers=providers),
            ),
        )
        logger.info(
            "Model handles ready: "
            + ", ".join(f"{h.name}={h.mode}" for h in engine.handles)
        )
        return engine

    @classmethod
    def simulated(cls, settings: Settings) -> "FaceEngine":
        """All three stages simulated. Used when no model directory is deployed."""
        size = settings.image_size
        return cls(
            detector=ModelHandle(DETECTOR, Path("-"), (1, 3, size, size), (-1, 5)),
            embedder=ModelHandle(EMBEDDER, Path("-"), (1, 3, ARCFACE_INPUT_SIZE, ARCFACE_INPUT_SIZE),
                                 (1, settings.embedding_dim)),
            scorer=ModelHandle(SCORER, Path("-"), (1, settings.embedding_dim), (1, 2)),
        )


def _load_insightface(path: Path, taskname: str, providers, settings: Settings, **prepare_kwargs):
    model = get_model(str(path), providers=providers)
    if model is None:
        raise ValueError(f"insightface could not route model file {path.name}")
    if getattr(model, "taskname", taskname) != taskname:
        raise ValueError(f"{path.name} is a {model.taskname} model, expected {taskname}")
    model.prepare(ctx_id=settings.model_ctx_id, **prepare_kwargs)
    return model


def _load_handle(name: str, path: Path, input_shape, output_shape, loader) -> ModelHandle:
    if not path.exists():
        logger.warning(f"{name} model not found at {path}, stage will run simulated")
        return ModelHandle(name, path, input_shape, output_shape, load_error="model file not found")
    try:
        session = loader(path)
    except Exception as err:
        logger.warning(f"{name} model at {path} failed to load ({err}), stage will run simulated")
        return ModelHandle(name, path, input_shape, output_shape, load_error=str(err))
    logger.info(f"{name} model loaded from {path}")
    return ModelHandle(name, path, input_shape, output_shape, session=session)
