from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
import logging
import threading

from ..errors import (
    AppError,
    JobTimeoutError,
    NetworkError,
    NotFoundError,
    error_from_dict,
    format_error_response,
    utc_timestamp,
)
from ..models.job import JobState, ScoringJob
from ..models.scoring_result import ScoringResult
from ..repositories.job_repository import JobRepository
from .scoring_engine import ScoringEngine

logger = logging.getLogger(__name__)

SAVE_ATTEMPTS = 3
SAVE_RETRY_DELAY = 0.1
# Extra time an Active job gets past the job timeout before lookups report it failed
STALE_GRACE_SECONDS = 5.0


class SubmissionMode(str, Enum):
    QUEUED = "queued"
    DIRECT = "direct"


@dataclass(frozen=True)
class Submission:
    mode: SubmissionMode
    job_id: Optional[str] = None
    result: Optional[ScoringResult] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.mode is SubmissionMode.QUEUED:
            return {"mode": self.mode.value, "jobId": self.job_id}
        return {"mode": self.mode.value, "result": self.result.to_dict()}


@dataclass(frozen=True)
class JobOutcome:
    """Answer to a result lookup. `ready` is False while the job is still in flight."""
    job_id: str
    state: JobState
    result: Optional[Dict[str, Any]] = None

    @property
    def ready(self) -> bool:
        return self.state is JobState.COMPLETED


class JobQueueManager:
    """
    Owns the lifecycle of scoring jobs and the process-wide queue availability flag.

    *   Queued → Active → Completed | Failed, on the broker.
    *   Broker unreachable → submissions run inline on the ScoringEngine (degraded mode).
    *   Availability is probed once in `start()` and only flipped here: on that probe,
        on a failed enqueue, or by the optional reconnect thread.
    *   Worker-side saves are retried. A job whose save still fails is held here and
        flushed on the next claim, and lookups from this process see the held copy.
    *   An Active job older than `job_timeout` plus a grace period is reported as
        Failed with a timeout error, so a lost worker never leaves it Active forever.
    """

    def __init__(
        self,
        repository: JobRepository | None,
        engine: ScoringEngine,
        *,
        reconnect_interval: float = 0.0,
        job_timeout: float = 30.0,
        available: bool = False,
    ):
        self.repository = repository
        self.engine = engine
        self.reconnect_interval = reconnect_interval
        self.job_timeout = job_timeout
        self._unsaved: Dict[str, ScoringJob] = {}
        self._available = available and repository is not None
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._reconnect_thread: threading.Thread | None = None
        self._counters = {"queued": 0, "direct": 0, "completed": 0, "failed": 0}

    # ─── availability ───────────────────────────────────────────────────
    @property
    def available(self) -> bool:
        with self._lock:
            return self._available

    @property
    def backend(self) -> str:
        return self.repository.backend if self.repository else "none"

    def _set_available(self, value: bool) -> None:
        with self._lock:
            self._available = value

    def _probe(self) -> bool:
        if self.repository is None:
            return False
        try:
            self.repository.ping()
        except NetworkError as err:
            logger.warning(f"Broker probe failed: {err.message} ({err.context.get('reason', '')})")
            return False
        return True

    def start(self) -> bool:
        """Probe the broker once and cache the answer. Returns availability."""
        available = self._probe()
        self._set_available(available)
        if available:
            logger.info(f"Queue initialized on {self.backend} broker")
        else:
            logger.warning("Queue unavailable, running in degraded mode (inline scoring)")
            if self.repository is not None and self.reconnect_interval > 0:
                self._start_reconnect_loop()
        return available

    def _start_reconnect_loop(self) -> None:
        if self._reconnect_thread and self._reconnect_thread.is_alive():
            return
        self._reconnect_thread = threading.Thread(target=self._reconnect_loop, name="broker-reconnect", daemon=True)
        self._reconnect_thread.start()

    def _reconnect_loop(self) -> None:
        while not self._stop.wait(self.reconnect_interval):
            if self.available:
                continue
            if self._probe():
                self._set_available(True)
                logger.info("Broker reachable again, leaving degraded mode")
                self.flush_unsaved()

    def _mark_unavailable(self, err: NetworkError) -> None:
        self._set_available(False)
        logger.warning(f"Broker connectivity lost: {err.message}. Switching to degraded mode")
        if self.reconnect_interval > 0:
            self._start_reconnect_loop()

    def _count(self, key: str) -> None:
        with self._lock:
            self._counters[key] += 1

    # ─── client-facing operations ───────────────────────────────────────
    def submit(self, image: bytes, session_tag: str | None = None) -> Submission:
        """
        Enqueue when the broker is usable, otherwise score inline.
        Inline scoring errors propagate to the caller unchanged.
        """
        if self.available:
            job = ScoringJob.create(image, session_tag)
            try:
                self.repository.add(job)
            except NetworkError as err:
                self._mark_unavailable(err)
            else:
                self._count("queued")
                logger.info(f"Job {job.job_id} queued ({len(image)} bytes)")
                return Submission(SubmissionMode.QUEUED, job_id=job.job_id)

        logger.warning("Queue unavailable, processing directly")
        result = self.engine.score(image)
        self._count("direct")
        return Submission(SubmissionMode.DIRECT, result=result)

    def _get_job(self, job_id: str) -> ScoringJob:
        if not job_id:
            raise NotFoundError("Job not found", {"jobId": job_id})
        with self._lock:
            held = self._unsaved.get(job_id)
        if held is not None:
            return held
        if self.repository is None or not self.available:
            raise NetworkError("Queue service unavailable", {"details": "Broker is not available in this deployment"})
        job = self.repository.get(job_id)
        if job is None:
            raise NotFoundError("Job not found", {"jobId": job_id})
        if self._is_stale(job):
            self._expire(job)
        return job

    def _is_stale(self, job: ScoringJob) -> bool:
        if job.state is not JobState.ACTIVE or not job.started_at:
            return False
        started = datetime.fromisoformat(job.started_at)
        age = (datetime.now(timezone.utc) - started).total_seconds()
        return age > self.job_timeout + STALE_GRACE_SECONDS

    def _expire(self, job: ScoringJob) -> None:
        logger.warning(f"Job {job.job_id} still active past its {self.job_timeout}s timeout, marking failed")
        job.state = JobState.FAILED
        job.error = format_error_response(JobTimeoutError(
            f"Job exceeded its {self.job_timeout}s processing budget",
            {"jobId": job.job_id, "timeout": self.job_timeout},
        ))
        job.finished_at = utc_timestamp()
        try:
            self.repository.save(job)
        except NetworkError as err:
            logger.error(f"Could not save expired job {job.job_id}: {err.message}")

    def get_status(self, job_id: str) -> ScoringJob:
        return self._get_job(job_id)

    def get_result(self, job_id: str) -> JobOutcome:
        """
        Completed → outcome with the stored result (same dict on every read).
        Queued/Active → outcome with `ready=False`.
        Failed → the stored error is raised again.
        """
        job = self._get_job(job_id)
        if job.state is JobState.FAILED:
            error = error_from_dict(job.error or {})
            error.context.setdefault("jobId", job_id)
            raise error
        return JobOutcome(job_id=job.job_id, state=job.state, result=job.result)

    # ─── worker-facing operations ───────────────────────────────────────
    def claim_next(self, timeout: float) -> Optional[ScoringJob]:
        """Move the next Queued job to Active. None when nothing arrived within `timeout`."""
        if self.repository is None or not self.available:
            self._stop.wait(timeout)
            return None
        self.flush_unsaved()
        try:
            job = self.repository.pop_pending(timeout)
        except NetworkError as err:
            logger.error(f"Could not claim job: {err.message}")
            self._stop.wait(timeout)
            return None
        if job is None or job.state is not JobState.QUEUED:
            return None

        job.state = JobState.ACTIVE
        job.started_at = utc_timestamp()
        # The job is already off the pending list, so it is processed even if this save fails
        self._save(job, "active")
        logger.info(f"Job {job.job_id} active")
        return job

    def _save(self, job: ScoringJob, outcome: str) -> bool:
        """Save with retries. A job that still cannot be saved is held until the next flush."""
        for attempt in range(1, SAVE_ATTEMPTS + 1):
            try:
                self.repository.save(job)
            except NetworkError as err:
                logger.warning(f"Saving {outcome} job {job.job_id} failed (attempt {attempt}/{SAVE_ATTEMPTS}): {err.message}")
                if attempt < SAVE_ATTEMPTS:
                    self._stop.wait(SAVE_RETRY_DELAY)
            else:
                with self._lock:
                    self._unsaved.pop(job.job_id, None)
                return True
        logger.error(f"Job {job.job_id} {outcome} but could not be saved, holding it for the next flush")
        with self._lock:
            self._unsaved[job.job_id] = job
        return False

    def flush_unsaved(self) -> int:
        """Retry saving held jobs. Returns how many are still held."""
        with self._lock:
            held = list(self._unsaved.values())
        for job in held:
            try:
                self.repository.save(job)
            except NetworkError as err:
                logger.warning(f"Held job {job.job_id} still not saved: {err.message}")
                continue
            with self._lock:
                # A worker may have replaced the held copy meanwhile
                if self._unsaved.get(job.job_id) is job:
                    del self._unsaved[job.job_id]
            logger.info(f"Held job {job.job_id} saved as {job.state.value}")
        with self._lock:
            return len(self._unsaved)

    def complete(self, job: ScoringJob, result: ScoringResult) -> None:
        job.state = JobState.COMPLETED
        job.result = result.to_dict()
        job.finished_at = utc_timestamp()
        self._finish(job, "completed")

    def fail(self, job: ScoringJob, error: AppError) -> None:
        job.state = JobState.FAILED
        job.error = format_error_response(error)
        job.finished_at = utc_timestamp()
        self._finish(job, "failed")

    def _finish(self, job: ScoringJob, outcome: str) -> None:
        self._count(outcome)
        if self._save(job, outcome):
            logger.info(f"Job {job.job_id} {outcome}")

    # ─── lifecycle / diagnostics ────────────────────────────────────────
    def stats(self) -> Dict[str, Any]:
        with self._lock:
            counters = dict(self._counters)
            available = self._available
            unsaved = len(self._unsaved)
        return {
            "available": available,
            "backend": self.backend,
            "reconnectInterval": self.reconnect_interval,
            "jobs": counters,
            "unsavedJobs": unsaved,
        }

    def stop(self) -> None:
        self._stop.set()
        if self._reconnect_thread:
            self._reconnect_thread.join(timeout=1.0)
        if self.repository is not None:
            if self._unsaved and self.flush_unsaved():
                logger.error(f"{len(self._unsaved)} finished jobs were never saved to the broker")
            try:
                self.repository.close()
            except NetworkError as err:
                logger.error(f"Error closing queue: {err.message}")
        logger.info("Queue closed")
