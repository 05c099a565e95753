from __future__ import annotations
import math

import numpy as np

from ..models.face import DetectionResult
from ..models.image import PreprocessedImage
from ..models.scoring_result import QualityMetrics


class QualityService:
    """
    Per-result diagnostics. Cheap heuristics over the detection and embedding,
    reported next to the score; they never change it.
    """

    @staticmethod
    def face_quality(detection: DetectionResult) -> float:
        if not detection.boxes:
            return 0.0
        return float(np.mean([b.det_score for b in detection.boxes]))

    @staticmethod
    def frontality(embedding: np.ndarray) -> float:
        # Balance between the two halves of the embedding
        vec = np.asarray(embedding, dtype=np.float64)
        mid = vec.size // 2
        balance = 1.0 - abs(vec[:mid].sum() - vec[mid:].sum()) / max(vec.size, 1)
        return min(max(balance, 0.3), 1.0)

    @staticmethod
    def symmetry(embedding: np.ndarray) -> float:
        vec = np.asarray(embedding, dtype=np.float64)
        mirror_diff = float(np.abs(vec - vec[::-1]).mean()) if vec.size else 1.0
        return min(max(1.0 - mirror_diff, 0.5), 1.0)

    @staticmethod
    def resolution(image: PreprocessedImage) -> float:
        return math.sqrt(image.source_width * image.source_height)

    def measure(self, image: PreprocessedImage, detection: DetectionResult, embedding: np.ndarray) -> QualityMetrics:
        return QualityMetrics(
            face_quality=self.face_quality(detection),
            frontality=self.frontality(embedding),
            symmetry=self.symmetry(embedding),
            resolution=self.resolution(image),
        )
