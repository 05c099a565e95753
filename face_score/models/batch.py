from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .scoring_result import ScoringResult


@dataclass(frozen=True)
class BatchItem:
    index: int                               # 0-based position in the request
    result: Optional[ScoringResult] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.result is not None

    def to_dict(self) -> Dict[str, Any]:
        if self.ok:
            return {"index": self.index, "status": "success", "result": self.result.to_dict()}
        return {"index": self.index, "status": "error", "error": self.error, "errorType": self.error_type}


@dataclass(frozen=True)
class BatchSummary:
    total_images: int
    successful_images: int
    failed_images: int
    total_processing_time_ms: float
    average_processing_time_ms: float
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalImages": self.total_images,
            "successfulImages": self.successful_images,
            "failedImages": self.failed_images,
            "totalProcessingTime": round(self.total_processing_time_ms, 2),
            "averageProcessingTime": round(self.average_processing_time_ms, 2),
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class BatchResult:
    items: List[BatchItem]
    summary: BatchSummary

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [item.to_dict() for item in self.items],
            "summary": self.summary.to_dict(),
        }
