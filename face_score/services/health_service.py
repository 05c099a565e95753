from __future__ import annotations
from typing import Any, Dict, Optional
import threading
import time

from ..config import Settings
from ..errors import utc_timestamp
from ..models.face_engine import FaceEngine
from .queue_service import JobQueueManager
from .worker_pool import WorkerPool


class HealthReporter:
    """
    Read-only snapshots for monitoring: model load state, queue availability,
    uptime and a few counters. Every method only reads, so it can run next to
    any other operation.
    """

    def __init__(
        self,
        face_engine: FaceEngine,
        manager: JobQueueManager,
        settings: Settings,
        *,
        worker_pool: Optional[WorkerPool] = None,
        batch_stats=None,
        started_at: float | None = None,
    ):
        self.face_engine = face_engine
        self.manager = manager
        self.settings = settings
        self.worker_pool = worker_pool
        self.batch_stats = batch_stats
        self.started_at = started_at if started_at is not None else time.time()

    def uptime(self) -> float:
        return round(time.time() - self.started_at, 3)

    def snapshot(self) -> Dict[str, Any]:
        models = [h.to_dict() for h in self.face_engine.handles]
        queue = self.manager.stats()
        all_real = all(h.loaded for h in self.face_engine.handles)
        return {
            "status": "healthy" if all_real and queue["available"] else "degraded",
            "timestamp": utc_timestamp(),
            "uptime": self.uptime(),
            "models": models,
            "queue": queue,
            "workers": {
                "embedded": self.worker_pool is not None,
                "running": bool(self.worker_pool and self.worker_pool.running),
                "concurrency": self.worker_pool.concurrency if self.worker_pool else 0,
                "abandonedCalls": self.worker_pool.abandoned_calls if self.worker_pool else 0,
            },
            "batch": self.batch_stats() if self.batch_stats else {},
            "threads": threading.active_count(),
        }

    def models_status(self) -> Dict[str, Any]:
        handles = {h.name: h.to_dict() for h in self.face_engine.handles}
        return {
            "models": handles,
            "capabilities": {
                "faceDetection": True,
                "embeddingExtraction": True,
                "attractivenessScoring": True,
                "batchProcessing": True,
                "simulated": [h.name for h in self.face_engine.handles if not h.loaded],
            },
            "embeddingDim": self.settings.embedding_dim,
            "imageSize": self.settings.image_size,
            "maxBatchSize": self.settings.max_batch_size,
            "timestamp": utc_timestamp(),
        }
