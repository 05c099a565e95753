from __future__ import annotations
from dataclasses import dataclass
import logging
import math

import numpy as np

from ..errors import ProcessingError
from ..models.model_handle import ModelHandle
from .embedding_service import NormProfile, uniform_norm_profile

logger = logging.getLogger(__name__)

STAGE = "attractiveness"

SIMULATED_CONFIDENCE = 0.85
# Bound on the standardised norm, keeps exp() finite
SIMULATED_Z_LIMIT = 40.0


@dataclass(frozen=True)
class AttractivenessScore:
    score: float       # 0-100
    confidence: float  # 0-1


class AttractivenessScorer:
    """`score(embedding) -> AttractivenessScore` on the 0-100 scale."""
    stage = STAGE
    simulated = False

    def score(self, embedding: np.ndarray) -> AttractivenessScore:
        raise NotImplementedError


class OnnxAttractivenessScorer(AttractivenessScorer):
    """
    ONNX regression head: input (1, dim) embedding, output (1, 2) = [score 0-1, confidence].
    """

    def __init__(self, handle: ModelHandle):
        self.session = handle.session
        self.input_name = self.session.get_inputs()[0].name

    def score(self, embedding: np.ndarray) -> AttractivenessScore:
        try:
            feeds = {self.input_name: np.asarray(embedding, dtype=np.float32).reshape(1, -1)}
            output = np.asarray(self.session.run(None, feeds)[0], dtype=np.float64).ravel()
        except Exception as err:
            logger.error(f"Error calculating attractiveness: {err}")
            raise ProcessingError(
                "Attractiveness calculation failed",
                {"stage": STAGE, "embeddingSize": int(np.size(embedding)), "reason": str(err)},
            ) from err

        if output.size == 0 or not np.all(np.isfinite(output)):
            raise ProcessingError("Attractiveness model returned no usable output", {"stage": STAGE})

        raw_score = float(output[0])
        confidence = float(output[1]) if output.size > 1 else 0.9
        return AttractivenessScore(
            score=min(max(raw_score, 0.0), 1.0) * 100,
            confidence=min(max(confidence, 0.0), 1.0),
        )


class SimulatedAttractivenessScorer(AttractivenessScorer):
    """
    Deterministic heuristic from the embedding magnitude.

    The norm is standardised against the active embedder's `NormProfile` and
    squashed through a logistic, so a typical embedding lands near 50 whichever
    embedder produced it and the score stays strictly inside (0, 100].
    Without a profile, uniform [-0.5, 0.5) vectors of the same length are assumed.
    """
    simulated = True

    def __init__(self, profile: NormProfile | None = None):
        self.profile = profile

    def score(self, embedding: np.ndarray) -> AttractivenessScore:
        vec = np.asarray(embedding, dtype=np.float64)
        profile = self.profile or uniform_norm_profile(vec.size)
        z = (float(np.linalg.norm(vec)) - profile.mean) / profile.std
        z = min(max(z, -SIMULATED_Z_LIMIT), SIMULATED_Z_LIMIT)
        return AttractivenessScore(score=100.0 / (1.0 + math.exp(-z)), confidence=SIMULATED_CONFIDENCE)


def build_attractiveness_scorer(handle: ModelHandle, norm_profile: NormProfile | None = None) -> AttractivenessScorer:
    if handle.loaded:
        return OnnxAttractivenessScorer(handle)
    logger.warning("Attractiveness model not available, using embedding-magnitude heuristic")
    return SimulatedAttractivenessScorer(norm_profile)
