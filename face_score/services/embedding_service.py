from __future__ import annotations
from dataclasses import dataclass
import hashlib
import logging
import math

import cv2
import numpy as np
import torch

from ..errors import ProcessingError
from ..models.face import DetectionResult
from ..models.face_engine import ARCFACE_INPUT_SIZE
from ..models.model_handle import ModelHandle
from .image_service import ImageService

logger = logging.getLogger(__name__)

STAGE = "face_embedding"


@dataclass(frozen=True)
class NormProfile:
    """Typical L2 norm of an extractor's embeddings."""
    mean: float
    std: float


# Raw (unnormalised) w600k_r50 features on detected faces
ARCFACE_NORM_PROFILE = NormProfile(mean=22.0, std=5.0)


def uniform_norm_profile(dim: int) -> NormProfile:
    # |x|^2 of a uniform [-0.5, 0.5) vector has mean dim/12 and variance dim/180
    return NormProfile(mean=math.sqrt(max(dim, 1) / 12.0), std=math.sqrt(12.0 / 180.0) / 2.0)


class EmbeddingExtractor:
    """
    `extract(tensor, detection) -> np.ndarray` of exactly `dim` floats.
    Only called when a face was detected.
    """
    stage = STAGE
    simulated = False

    def __init__(self, dim: int):
        self.dim = dim

    @property
    def norm_profile(self) -> NormProfile:
        return uniform_norm_profile(self.dim)

    def extract(self, tensor: torch.Tensor, detection: DetectionResult) -> np.ndarray:
        raise NotImplementedError


class ArcFaceEmbeddingExtractor(EmbeddingExtractor):
    """Crops the largest detected face and runs insightface's ArcFace recognizer."""

    def __init__(self, handle: ModelHandle, dim: int):
        super().__init__(dim)
        self.model = handle.session

    @property
    def norm_profile(self) -> NormProfile:
        return ARCFACE_NORM_PROFILE

    @staticmethod
    def _crop_face(img_bgr: np.ndarray, detection: DetectionResult) -> np.ndarray:
        h, w = img_bgr.shape[:2]
        x1, y1, x2, y2 = detection.largest().bbox
        left, top = max(0, int(x1)), max(0, int(y1))
        right, bottom = min(w, int(round(x2))), min(h, int(round(y2)))
        if right - left < 2 or bottom - top < 2:
            crop = img_bgr
        else:
            crop = img_bgr[top:bottom, left:right]
        return cv2.resize(crop, (ARCFACE_INPUT_SIZE, ARCFACE_INPUT_SIZE), interpolation=cv2.INTER_LINEAR)

    def extract(self, tensor: torch.Tensor, detection: DetectionResult) -> np.ndarray:
        try:
            face_bgr = self._crop_face(ImageService.tensor_to_bgr(tensor), detection)
            embedding = np.asarray(self.model.get_feat(face_bgr), dtype=np.float32).ravel()
        except Exception as err:
            logger.error(f"Error extracting embeddings: {err}")
            raise ProcessingError("Embedding extraction failed", {"stage": STAGE, "reason": str(err)}) from err

        if embedding.shape[0] != self.dim:
            raise ProcessingError(
                "Embedding extraction returned an unexpected length",
                {"stage": STAGE, "expected": self.dim, "received": int(embedding.shape[0])},
            )
        logger.debug(f"Embedding extraction completed, norm={float(np.linalg.norm(embedding)):.3f}")
        return embedding


class SimulatedEmbeddingExtractor(EmbeddingExtractor):
    """
    Degraded backend: a pseudo-random vector in [-0.5, 0.5).
    Seeded from the tensor content so the same image always maps to the same vector.
    """
    simulated = True

    def extract(self, tensor: torch.Tensor, detection: DetectionResult) -> np.ndarray:
        digest = hashlib.sha256(tensor.detach().cpu().numpy().tobytes()).digest()
        rng = np.random.default_rng(int.from_bytes(digest[:8], "big"))
        return rng.uniform(-0.5, 0.5, self.dim).astype(np.float32)


def build_embedding_extractor(handle: ModelHandle, dim: int) -> EmbeddingExtractor:
    if handle.loaded:
        return ArcFaceEmbeddingExtractor(handle, dim)
    logger.warning("Face embedding model not available, using simulated embeddings")
    return SimulatedEmbeddingExtractor(dim)
