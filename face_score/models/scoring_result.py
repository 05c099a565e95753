from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple


@dataclass(frozen=True)
class QualityMetrics:
    face_quality: float = 0.0  # mean confidence of kept detections (0-1)
    frontality: float = 0.0    # embedding half-balance (0.3-1)
    symmetry: float = 0.0      # embedding mirror similarity (0.5-1)
    resolution: float = 0.0    # geometric mean of source width/height, in pixels

    def to_dict(self) -> Dict[str, float]:
        return {
            "faceQuality": round(self.face_quality, 4),
            "frontality": round(self.frontality, 4),
            "symmetry": round(self.symmetry, 4),
            "resolution": round(self.resolution, 2),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "QualityMetrics":
        return cls(
            face_quality=payload.get("faceQuality", 0.0),
            frontality=payload.get("frontality", 0.0),
            symmetry=payload.get("symmetry", 0.0),
            resolution=payload.get("resolution", 0.0),
        )


@dataclass(frozen=True)
class ScoringResult:
    """
    Output of one Scoring Engine run. Immutable once produced.
    score is on the service-wide 0-100 scale.
    """
    score: float
    confidence: float
    percentile: float
    vibe_tags: Tuple[str, ...]
    embedding: Tuple[float, ...]
    metrics: QualityMetrics
    face_detected: bool
    face_count: int
    processing_time_ms: float
    created_at: str
    rank: int = 0
    population: int = 0
    simulated_stages: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": round(self.score, 4),
            "confidence": round(self.confidence, 4),
            "percentile": round(self.percentile, 2),
            "vibeTags": list(self.vibe_tags),
            "embedding": list(self.embedding),
            "metrics": self.metrics.to_dict(),
            "faceDetected": self.face_detected,
            "faceCount": self.face_count,
            "rank": self.rank,
            "population": self.population,
            "processingTime": round(self.processing_time_ms, 2),
            "timestamp": self.created_at,
            "simulatedStages": list(self.simulated_stages),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ScoringResult":
        return cls(
            score=payload["score"],
            confidence=payload["confidence"],
            percentile=payload["percentile"],
            vibe_tags=tuple(payload.get("vibeTags", ())),
            embedding=tuple(payload.get("embedding", ())),
            metrics=QualityMetrics.from_dict(payload.get("metrics", {})),
            face_detected=payload["faceDetected"],
            face_count=payload["faceCount"],
            processing_time_ms=payload.get("processingTime", 0.0),
            created_at=payload["timestamp"],
            rank=payload.get("rank", 0),
            population=payload.get("population", 0),
            simulated_stages=tuple(payload.get("simulatedStages", ())),
        )
