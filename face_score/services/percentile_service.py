from __future__ import annotations
from dataclasses import dataclass
from typing import Sequence, Tuple
import math

import numpy as np

from ..config import Settings

MAX_VIBE_TAGS = 3

# (exclusive lower bound on the 0-100 score, tags)
SCORE_TAG_BANDS: Tuple[Tuple[float, Tuple[str, ...]], ...] = (
    (80.0, ("stunning", "attractive")),
    (60.0, ("good-looking", "pleasant")),
    (40.0, ("average", "normal")),
)
EMBEDDING_MEAN_TAG_THR = 0.1


@dataclass(frozen=True)
class Derivation:
    percentile: float
    rank: int
    population: int
    vibe_tags: Tuple[str, ...]


class PercentileService:
    """
    Turns a raw 0-100 score into a percentile, a rank and a few vibe tags.
    Pure functions of the inputs and the configured reference distribution; no I/O.

    Distributions:
        normal  percentile = Φ((score - mean) / std) * 100
        linear  percentile = score
    Both are monotonic in score and clamped to [floor, ceiling].
    """

    def __init__(self, settings: Settings):
        if settings.percentile_distribution not in ("normal", "linear"):
            raise ValueError(f"Unknown PERCENTILE_DISTRIBUTION: {settings.percentile_distribution}")
        if settings.percentile_std <= 0:
            raise ValueError("PERCENTILE_STD must be positive")
        self.distribution = settings.percentile_distribution
        self.mean = settings.percentile_mean
        self.std = settings.percentile_std
        self.floor = max(0.0, settings.percentile_floor)
        self.ceiling = min(100.0, settings.percentile_ceiling)
        self.population = settings.reference_population

    def percentile(self, score: float) -> float:
        if self.distribution == "normal":
            z = (score - self.mean) / (self.std * math.sqrt(2.0))
            raw = 50.0 * (1.0 + math.erf(z))
        else:
            raw = score
        return min(max(raw, self.floor), self.ceiling)

    def rank(self, percentile: float) -> int:
        """1 = best in the reference population."""
        if self.population <= 0:
            return 0
        return max(1, math.ceil((100.0 - percentile) / 100.0 * self.population))

    @staticmethod
    def vibe_tags(score: float, embedding: Sequence[float] | np.ndarray) -> Tuple[str, ...]:
        tags = []
        for lower, band in SCORE_TAG_BANDS:
            if score > lower:
                tags.extend(band)
                break

        # Embedding statistics
        vec = np.asarray(embedding, dtype=np.float64)
        mean = float(vec.mean()) if vec.size else 0.0
        if mean > EMBEDDING_MEAN_TAG_THR:
            tags.append("distinctive")
        elif mean < -EMBEDDING_MEAN_TAG_THR:
            tags.append("unique")

        return tuple(tags[:MAX_VIBE_TAGS])

    def derive(self, score: float, embedding: Sequence[float] | np.ndarray) -> Derivation:
        percentile = self.percentile(score)
        return Derivation(
            percentile=percentile,
            rank=self.rank(percentile),
            population=self.population,
            vibe_tags=self.vibe_tags(score, embedding),
        )
