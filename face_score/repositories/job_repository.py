from __future__ import annotations
from contextlib import contextmanager
from dataclasses import replace
from typing import Dict, Optional
import json
import math
import queue
import threading
import time

import redis

from ..config import Settings
from ..errors import NetworkError
from ..models.job import JobState, ScoringJob


class JobRepository:
    """
    Storage + hand-off of ScoringJob records on a broker.

    Only the JobQueueManager talks to a repository. Every broker failure surfaces
    as NetworkError so the manager can decide what degraded mode means.
    """
    backend = "none"

    def ping(self) -> None:
        raise NotImplementedError

    def add(self, job: ScoringJob) -> None:
        """Persist a new job and make it visible to workers."""
        raise NotImplementedError

    def pop_pending(self, timeout: float) -> Optional[ScoringJob]:
        """Block up to `timeout` seconds for the next pending job."""
        raise NotImplementedError

    def get(self, job_id: str) -> Optional[ScoringJob]:
        raise NotImplementedError

    def save(self, job: ScoringJob) -> None:
        """Persist a state transition."""
        raise NotImplementedError

    def close(self) -> None:
        pass


class MemoryJobRepository(JobRepository):
    """In-process broker. Good for a single API process and for tests."""
    backend = "memory"

    def __init__(self, result_ttl: float = 3600):
        self.result_ttl = result_ttl
        self._jobs: Dict[str, ScoringJob] = {}
        self._finished_at: Dict[str, float] = {}
        self._pending: "queue.Queue[str]" = queue.Queue()
        self._lock = threading.Lock()

    def ping(self) -> None:
        return None

    def add(self, job: ScoringJob) -> None:
        with self._lock:
            self._purge_expired()
            self._jobs[job.job_id] = replace(job)
        self._pending.put(job.job_id)

    def pop_pending(self, timeout: float) -> Optional[ScoringJob]:
        try:
            job_id = self._pending.get(timeout=timeout)
        except queue.Empty:
            return None
        return self.get(job_id)

    def get(self, job_id: str) -> Optional[ScoringJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return replace(job) if job else None

    def save(self, job: ScoringJob) -> None:
        with self._lock:
            self._jobs[job.job_id] = replace(job)
            if job.state.terminal:
                self._finished_at[job.job_id] = time.monotonic()

    def _purge_expired(self) -> None:
        now = time.monotonic()
        expired = [k for k, t in self._finished_at.items() if now - t > self.result_ttl]
        for job_id in expired:
            self._jobs.pop(job_id, None)
            self._finished_at.pop(job_id, None)


@contextmanager
def _broker_call(operation: str):
    try:
        yield
    except redis.exceptions.RedisError as err:
        raise NetworkError(f"Broker {operation} failed", {"reason": str(err)}) from err


class RedisJobRepository(JobRepository):
    """
    Redis-backed broker.

    <queue>:job:<id>        hash with the job record
    <queue>:job:<id>:image  raw image bytes
    <queue>:pending         list of job ids (LPUSH / BRPOP, so FIFO)
    """
    backend = "redis"

    _FIELDS = ("state", "session_tag", "created_at", "started_at", "finished_at", "result", "error")

    def __init__(self, client: "redis.Redis", queue_name: str = "face-scoring", result_ttl: int = 3600):
        self.client = client
        self.queue_name = queue_name
        self.result_ttl = result_ttl
        self.pending_key = f"{queue_name}:pending"

    @classmethod
    def from_url(cls, url: str, settings: Settings) -> "RedisJobRepository":
        client = redis.Redis.from_url(url, socket_connect_timeout=settings.broker_connect_timeout)
        return cls(client, queue_name=settings.queue_name, result_ttl=settings.job_result_ttl)

    def _job_key(self, job_id: str) -> str:
        return f"{self.queue_name}:job:{job_id}"

    def _image_key(self, job_id: str) -> str:
        return f"{self.queue_name}:job:{job_id}:image"

    def ping(self) -> None:
        with _broker_call("ping"):
            self.client.ping()

    def add(self, job: ScoringJob) -> None:
        with _broker_call("enqueue"):
            pipe = self.client.pipeline()
            pipe.set(self._image_key(job.job_id), job.image)
            pipe.hset(self._job_key(job.job_id), mapping=self._to_mapping(job))
            pipe.lpush(self.pending_key, job.job_id)
            pipe.execute()

    def pop_pending(self, timeout: float) -> Optional[ScoringJob]:
        with _broker_call("dequeue"):
            item = self.client.brpop([self.pending_key], timeout=max(1, math.ceil(timeout)))
        if item is None:
            return None
        _, raw_id = item
        return self.get(raw_id.decode() if isinstance(raw_id, bytes) else raw_id)

    def get(self, job_id: str) -> Optional[ScoringJob]:
        with _broker_call("lookup"):
            record = self.client.hgetall(self._job_key(job_id))
            if not record:
                return None
            image = self.client.get(self._image_key(job_id)) or b""
        return self._from_mapping(job_id, image, record)

    def save(self, job: ScoringJob) -> None:
        mapping = self._to_mapping(job)
        empty = [name for name in self._FIELDS if name not in mapping]
        job_key = self._job_key(job.job_id)
        with _broker_call("update"):
            pipe = self.client.pipeline()
            pipe.hset(job_key, mapping=mapping)
            if empty:
                pipe.hdel(job_key, *empty)
            if job.state.terminal:
                pipe.delete(self._image_key(job.job_id))
                pipe.expire(job_key, self.result_ttl)
            pipe.execute()

    def close(self) -> None:
        with _broker_call("close"):
            self.client.close()

    # ─── (de)serialisation ──────────────────────────────────────────────
    @staticmethod
    def _to_mapping(job: ScoringJob) -> Dict[str, str]:
        values = {
            "state": job.state.value,
            "session_tag": job.session_tag,
            "created_at": job.created_at,
            "started_at": job.started_at,
            "finished_at": job.finished_at,
            "result": json.dumps(job.result) if job.result is not None else None,
            "error": json.dumps(job.error) if job.error is not None else None,
        }
        return {k: v for k, v in values.items() if v is not None}

    @staticmethod
    def _from_mapping(job_id: str, image: bytes, record: Dict[bytes, bytes]) -> ScoringJob:
        fields = {
            (k.decode() if isinstance(k, bytes) else k): (v.decode() if isinstance(v, bytes) else v)
            for k, v in record.items()
        }
        return ScoringJob(
            job_id=job_id,
            image=image,
            state=JobState(fields["state"]),
            session_tag=fields.get("session_tag"),
            created_at=fields.get("created_at", ""),
            started_at=fields.get("started_at"),
            finished_at=fields.get("finished_at"),
            result=json.loads(fields["result"]) if "result" in fields else None,
            error=json.loads(fields["error"]) if "error" in fields else None,
        )


def create_job_repository(settings: Settings) -> Optional[JobRepository]:
    """
    Pick the broker adapter for BROKER_URL.
    An empty URL means no broker at all: every submission runs inline.
    """
    url = settings.broker_url.strip()
    if not url:
        return None
    if url.startswith("memory://"):
        return MemoryJobRepository(result_ttl=settings.job_result_ttl)
    if url.startswith(("redis://", "rediss://", "unix://")):
        return RedisJobRepository.from_url(url, settings)
    raise ValueError(f"Unsupported BROKER_URL scheme: {url}")
