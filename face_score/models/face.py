from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Tuple


@dataclass(frozen=True)
class FaceBox:
    bbox: Tuple[float, float, float, float]  # (x1, y1, x2, y2) in preprocessed-tensor pixels
    det_score: float                         # detection confidence

    @property
    def area(self) -> float:
        x1, y1, x2, y2 = self.bbox
        return max(0.0, x2 - x1) * max(0.0, y2 - y1)

    @classmethod
    def from_row(cls, row) -> "FaceBox":
        """Build from an (x1, y1, x2, y2, score) detector row."""
        return cls(
            bbox=(float(row[0]), float(row[1]), float(row[2]), float(row[3])),
            det_score=float(row[4]),
        )


@dataclass(frozen=True)
class DetectionResult:
    boxes: List[FaceBox] = field(default_factory=list)
    simulated: bool = False

    @property
    def detected(self) -> bool:
        return len(self.boxes) > 0

    @property
    def count(self) -> int:
        return len(self.boxes)

    def largest(self) -> FaceBox:
        return max(self.boxes, key=lambda b: b.area)
