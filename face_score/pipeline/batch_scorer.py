from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence
import logging
import threading
import time

from ..errors import AppError, ValidationError
from ..models.batch import BatchItem, BatchResult, BatchSummary
from ..services.scoring_engine import ScoringEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchInput:
    data: bytes
    mimetype: Optional[str] = None
    name: Optional[str] = None


class BatchOrchestrator:
    """
    Scores every image of a batch concurrently, straight on the ScoringEngine.

    *   Never touches the queue, so it works the same in degraded mode.
    *   One task per image; a failing image becomes an error entry for its index
        and never aborts its siblings.
    *   Items come back in submission order.
    """

    def __init__(self, engine: ScoringEngine, *, max_batch_size: int = 10, max_errors: int = 5):
        self.engine = engine
        self.max_batch_size = max_batch_size
        self.max_errors = max_errors
        self._lock = threading.Lock()
        self._counters = {"batches": 0, "images": 0, "failedImages": 0}

    def validate(self, inputs: Sequence[BatchInput]) -> None:
        if not inputs:
            raise ValidationError("No image files provided for batch processing", {"field": "images"})
        if len(inputs) > self.max_batch_size:
            raise ValidationError(
                f"Batch size exceeds limit. Maximum {self.max_batch_size} images allowed",
                {"field": "images", "received": len(inputs), "maxBatchSize": self.max_batch_size},
            )

    def _score_item(self, index: int, item: BatchInput, total: int) -> BatchItem:
        logger.debug(f"Processing batch image {index + 1}/{total} ({item.name or 'unnamed'})")
        try:
            self.engine.image_service.validate_payload(item.data, item.mimetype)
            result = self.engine.score(item.data)
        except AppError as err:
            logger.error(f"Error processing batch image {index + 1}: {err.message}")
            return BatchItem(index=index, error=err.message, error_type=err.error_type)
        except Exception as err:
            logger.exception(f"Error processing batch image {index + 1}")
            return BatchItem(index=index, error=str(err) or "Unknown error", error_type="internal_error")
        return BatchItem(index=index, result=result)

    def score_batch(self, inputs: Sequence[BatchInput], session_tag: str | None = None) -> BatchResult:
        """
        Raises:
            ValidationError: empty batch or more than `max_batch_size` images.
                             Raised before any image is touched.
        """
        self.validate(inputs)
        total = len(inputs)
        logger.info(
            f"Processing batch of {total} images "
            f"({sum(len(i.data) for i in inputs)} bytes, session={session_tag or 'anonymous'})"
        )

        start = time.perf_counter()
        with ThreadPoolExecutor(max_workers=total, thread_name_prefix="batch") as executor:
            futures = [executor.submit(self._score_item, i, item, total) for i, item in enumerate(inputs)]
            items: List[BatchItem] = [f.result() for f in futures]
        total_ms = (time.perf_counter() - start) * 1000

        summary = self.summarize(items, total_ms)
        with self._lock:
            self._counters["batches"] += 1
            self._counters["images"] += summary.total_images
            self._counters["failedImages"] += summary.failed_images

        logger.info(
            f"Batch processing completed: {summary.successful_images}/{summary.total_images} "
            f"images in {total_ms:.1f}ms"
        )
        return BatchResult(items=items, summary=summary)

    def summarize(self, items: Sequence[BatchItem], total_ms: float) -> BatchSummary:
        successful = [i for i in items if i.ok]
        failed = [i for i in items if not i.ok]
        return BatchSummary(
            total_images=len(items),
            successful_images=len(successful),
            failed_images=len(failed),
            total_processing_time_ms=total_ms,
            average_processing_time_ms=total_ms / len(successful) if successful else 0.0,
            errors=[f"Image {i.index + 1}: {i.error}" for i in failed][: self.max_errors],
        )

    def stats(self) -> dict:
        with self._lock:
            return {**self._counters, "maxBatchSize": self.max_batch_size}


def log_batch_results(names: Sequence[str], result: BatchResult) -> None:
    """
    Print a ranked table of a scored batch (best first), then the summary.
    """
    scored = [(names[item.index], item.result) for item in result.items if item.ok]
    print(f"{'=' * 80}")
    print("🎯 BATCH SCORES")
    print(f"{'=' * 80}")
    if not scored:
        print("No images were scored.")
    for rank, (name, res) in enumerate(sorted(scored, key=lambda x: x[1].score, reverse=True), 1):
        tags = ", ".join(res.vibe_tags) or "-"
        print(f"{rank:2d}.  Score: {res.score:6.2f} | Percentile: {res.percentile:5.1f} | "
              f"Faces: {res.face_count} | Tags: {tags} | File: {name}")

    summary = result.summary
    print(f"{'=' * 80}")
    print(f"Total: {summary.total_images} | OK: {summary.successful_images} | Failed: {summary.failed_images} | "
          f"Time: {summary.total_processing_time_ms:.0f}ms")
    for error in summary.errors:
        print(f"  {error}")
    print(f"{'=' * 80}\n")
