from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
import logging
import time

from ..config import Settings
from ..models.face_engine import FaceEngine
from ..pipeline.batch_scorer import BatchOrchestrator
from ..repositories.job_repository import create_job_repository
from ..services.health_service import HealthReporter
from ..services.queue_service import JobQueueManager
from ..services.scoring_engine import ScoringEngine
from ..services.worker_pool import WorkerPool

logger = logging.getLogger(__name__)


@dataclass
class ServiceContext:
    """
    Everything a request handler needs, wired once per process.
    Tests build one directly (e.g. with a manager that starts unavailable).
    """
    settings: Settings
    face_engine: FaceEngine
    engine: ScoringEngine
    manager: JobQueueManager
    batch: BatchOrchestrator
    health: HealthReporter
    worker_pool: Optional[WorkerPool] = None

    @classmethod
    def build(
        cls,
        settings: Settings,
        face_engine: FaceEngine | None = None,
        *,
        with_workers: bool | None = None,
    ) -> "ServiceContext":
        face_engine = face_engine or FaceEngine.load(settings)
        engine = ScoringEngine.from_face_engine(face_engine, settings)
        manager = JobQueueManager(
            create_job_repository(settings),
            engine,
            reconnect_interval=settings.queue_reconnect_interval,
            job_timeout=settings.job_timeout,
        )
        with_workers = settings.run_embedded_workers if with_workers is None else with_workers
        worker_pool = WorkerPool(
            manager,
            engine,
            concurrency=settings.worker_concurrency,
            job_timeout=settings.job_timeout,
            poll_interval=settings.worker_poll_interval,
        ) if with_workers else None
        batch = BatchOrchestrator(
            engine,
            max_batch_size=settings.max_batch_size,
            max_errors=settings.max_batch_errors,
        )
        health = HealthReporter(
            face_engine,
            manager,
            settings,
            worker_pool=worker_pool,
            batch_stats=batch.stats,
            started_at=time.time(),
        )
        return cls(settings, face_engine, engine, manager, batch, health, worker_pool)

    def start(self) -> "ServiceContext":
        """Probe the broker once; start embedded workers if there is a queue to pull from."""
        available = self.manager.start()
        if self.worker_pool is not None:
            if available or self.manager.reconnect_interval > 0:
                self.worker_pool.start()
            else:
                logger.info("Embedded workers not started, queue unavailable")
        if self.engine.simulated_stages:
            logger.warning(f"Simulated stages active: {', '.join(self.engine.simulated_stages)}")
        return self

    def stop(self) -> None:
        if self.worker_pool is not None:
            self.worker_pool.stop()
        self.manager.stop()
