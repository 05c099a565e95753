from __future__ import annotations
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from typing import List
import logging
import threading

from ..errors import AppError, JobTimeoutError, ProcessingError
from ..models.job import ScoringJob
from ..models.scoring_result import ScoringResult
from .queue_service import JobQueueManager
from .scoring_engine import ScoringEngine

logger = logging.getLogger(__name__)


class WorkerPool:
    """
    Bounded pool pulling Queued jobs off the broker.

    Each of the `concurrency` threads claims a job, starts the engine call on a
    thread of its own and waits at most `job_timeout` seconds for it. An overrun
    fails the job with a timeout error. The engine call itself cannot be
    interrupted: it is abandoned, finishes in the background and its result is
    dropped. Later jobs never wait behind it.
    """

    def __init__(
        self,
        manager: JobQueueManager,
        engine: ScoringEngine,
        *,
        concurrency: int = 5,
        job_timeout: float = 30.0,
        poll_interval: float = 1.0,
    ):
        self.manager = manager
        self.engine = engine
        self.concurrency = max(1, concurrency)
        self.job_timeout = job_timeout
        self.poll_interval = poll_interval
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []
        self._lock = threading.Lock()
        self._abandoned = 0

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    @property
    def abandoned_calls(self) -> int:
        """Engine calls that overran their job and are still running."""
        with self._lock:
            return self._abandoned

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._threads = [
            threading.Thread(target=self._run, name=f"scoring-worker-{i}", daemon=True)
            for i in range(self.concurrency)
        ]
        for thread in self._threads:
            thread.start()
        logger.info(f"Worker pool started with {self.concurrency} workers (timeout {self.job_timeout}s)")

    def stop(self, wait: bool = True) -> None:
        self._stop.set()
        if wait:
            for thread in self._threads:
                thread.join(timeout=self.poll_interval + self.job_timeout)
        logger.info("Worker pool stopped")

    def _run(self) -> None:
        while not self._stop.is_set():
            job = self.manager.claim_next(self.poll_interval)
            if job is not None:
                self.process(job)

    def _start_call(self, job: ScoringJob) -> Future:
        """Run `engine.score` for one job on its own daemon thread, starting now."""
        future: Future = Future()
        future.set_running_or_notify_cancel()

        def call() -> None:
            try:
                future.set_result(self.engine.score(job.image))
            except Exception as err:
                future.set_exception(err)

        threading.Thread(target=call, name=f"scoring-call-{job.job_id[:8]}", daemon=True).start()
        return future

    def _release_abandoned(self, future: Future) -> None:
        with self._lock:
            self._abandoned -= 1

    def process(self, job: ScoringJob) -> None:
        future = self._start_call(job)
        try:
            result: ScoringResult = future.result(timeout=self.job_timeout)
        except FutureTimeoutError:
            with self._lock:
                self._abandoned += 1
            future.add_done_callback(self._release_abandoned)
            logger.error(f"Job {job.job_id} exceeded {self.job_timeout}s")
            self.manager.fail(job, JobTimeoutError(
                f"Job exceeded its {self.job_timeout}s processing budget",
                {"jobId": job.job_id, "timeout": self.job_timeout},
            ))
        except AppError as err:
            logger.error(f"Job {job.job_id} failed: {err.message}")
            self.manager.fail(job, err)
        except Exception as err:
            logger.exception(f"Job {job.job_id} failed unexpectedly")
            self.manager.fail(job, ProcessingError("Face scoring failed", {"reason": str(err)}))
        else:
            self.manager.complete(job, result)
