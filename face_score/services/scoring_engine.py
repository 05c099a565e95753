from __future__ import annotations
from typing import Callable, Tuple, TypeVar
import logging
import time

from ..config import Settings
from ..errors import AppError, ProcessingError, utc_timestamp
from ..models.face_engine import FaceEngine
from ..models.scoring_result import QualityMetrics, ScoringResult
from .attractiveness_service import AttractivenessScorer, build_attractiveness_scorer
from .embedding_service import EmbeddingExtractor, build_embedding_extractor
from .face_detection_service import FaceDetector, build_face_detector
from .image_service import ImageService
from .percentile_service import PercentileService
from .quality_service import QualityService

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ScoringEngine:
    """
    One image in, one ScoringResult out:

        preprocess → detect → (no face? stop) → embed → score → percentile/tags

    Stateless apart from the read-only stages, so a single instance is shared by
    queue workers, inline submissions and batch tasks.
    """

    def __init__(
        self,
        image_service: ImageService,
        detector: FaceDetector,
        embedder: EmbeddingExtractor,
        scorer: AttractivenessScorer,
        percentile_service: PercentileService,
        quality_service: QualityService | None = None,
    ):
        self.image_service = image_service
        self.detector = detector
        self.embedder = embedder
        self.scorer = scorer
        self.percentile_service = percentile_service
        self.quality_service = quality_service or QualityService()

    @classmethod
    def from_face_engine(cls, face_engine: FaceEngine, settings: Settings) -> "ScoringEngine":
        """Select real or simulated backends once, from what actually loaded."""
        embedder = build_embedding_extractor(face_engine.embedder, settings.embedding_dim)
        return cls(
            image_service=ImageService(settings),
            detector=build_face_detector(face_engine.detector, settings.detection_threshold),
            embedder=embedder,
            scorer=build_attractiveness_scorer(face_engine.scorer, embedder.norm_profile),
            percentile_service=PercentileService(settings),
        )

    @property
    def embedding_dim(self) -> int:
        return self.embedder.dim

    @property
    def simulated_stages(self) -> Tuple[str, ...]:
        return tuple(s.stage for s in (self.detector, self.embedder, self.scorer) if s.simulated)

    @staticmethod
    def _run_stage(stage: str, fn: Callable[..., T], *args) -> T:
        try:
            return fn(*args)
        except AppError:
            raise
        except Exception as err:
            raise ProcessingError(f"Stage {stage} failed", {"stage": stage, "reason": str(err)}) from err

    def score(self, data: bytes) -> ScoringResult:
        """
        Raises:
            InvalidImageError: the bytes are not an image.
            ProcessingError: a stage failed; `context` names the stage and input size.
        """
        start = time.perf_counter()
        try:
            return self._score(data, start)
        except AppError as err:
            err.context.setdefault("inputSize", len(data))
            raise

    def _score(self, data: bytes, start: float) -> ScoringResult:
        image = self.image_service.preprocess(data)

        detection = self._run_stage(self.detector.stage, self.detector.detect, image.tensor)
        if not detection.detected:
            logger.info("No face detected, returning empty result")
            return self._no_face_result(start)

        embedding = self._run_stage(self.embedder.stage, self.embedder.extract, image.tensor, detection)
        attractiveness = self._run_stage(self.scorer.stage, self.scorer.score, embedding)
        derived = self.percentile_service.derive(attractiveness.score, embedding)

        result = ScoringResult(
            score=attractiveness.score,
            confidence=attractiveness.confidence,
            percentile=derived.percentile,
            vibe_tags=derived.vibe_tags,
            embedding=tuple(round(float(v), 6) for v in embedding),
            metrics=self.quality_service.measure(image, detection, embedding),
            face_detected=True,
            face_count=detection.count,
            processing_time_ms=(time.perf_counter() - start) * 1000,
            created_at=utc_timestamp(),
            rank=derived.rank,
            population=derived.population,
            simulated_stages=self.simulated_stages,
        )
        logger.info(
            f"Scoring completed: score={result.score:.2f} percentile={result.percentile:.1f} "
            f"faces={result.face_count} time={result.processing_time_ms:.1f}ms"
        )
        return result

    def _no_face_result(self, start: float) -> ScoringResult:
        return ScoringResult(
            score=0.0,
            confidence=0.0,
            percentile=0.0,
            vibe_tags=(),
            embedding=(0.0,) * self.embedding_dim,
            metrics=QualityMetrics(),
            face_detected=False,
            face_count=0,
            processing_time_ms=(time.perf_counter() - start) * 1000,
            created_at=utc_timestamp(),
            simulated_stages=self.simulated_stages,
        )
