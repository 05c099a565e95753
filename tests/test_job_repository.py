"""Tests for the broker adapters (Redis through fakeredis, and in-memory)."""

import fakeredis
import pytest
import redis

from face_score.config import Settings
from face_score.errors import NetworkError
from face_score.models.job import JobState, ScoringJob
from face_score.repositories.job_repository import (
    MemoryJobRepository,
    RedisJobRepository,
    create_job_repository,
)


@pytest.fixture
def redis_client():
    client = fakeredis.FakeRedis()
    yield client
    client.flushall()


@pytest.fixture
def redis_repository(redis_client):
    return RedisJobRepository(redis_client, queue_name="test-queue", result_ttl=60)


def test_redis_add_and_get(redis_repository, redis_client):
    job = ScoringJob.create(b"\x89PNG fake", session_tag="abc")
    redis_repository.add(job)

    stored = redis_repository.get(job.job_id)
    assert stored.state is JobState.QUEUED
    assert stored.image == b"\x89PNG fake"
    assert stored.session_tag == "abc"
    assert stored.created_at == job.created_at
    assert redis_client.exists(f"test-queue:job:{job.job_id}")
    assert redis_client.llen("test-queue:pending") == 1


def test_redis_pending_is_fifo(redis_repository):
    first = ScoringJob.create(b"1")
    second = ScoringJob.create(b"2")
    redis_repository.add(first)
    redis_repository.add(second)

    assert redis_repository.pop_pending(timeout=1).job_id == first.job_id
    assert redis_repository.pop_pending(timeout=1).job_id == second.job_id


def test_redis_unknown_job_is_none(redis_repository):
    assert redis_repository.get("missing") is None


def test_redis_terminal_save_drops_image_and_expires(redis_repository, redis_client):
    job = ScoringJob.create(b"image-bytes")
    redis_repository.add(job)

    job.state = JobState.COMPLETED
    job.result = {"score": 42.0, "faceDetected": True}
    job.finished_at = "2026-01-01T00:00:00+00:00"
    redis_repository.save(job)

    stored = redis_repository.get(job.job_id)
    assert stored.state is JobState.COMPLETED
    assert stored.result == {"score": 42.0, "faceDetected": True}
    assert stored.error is None
    assert not redis_client.exists(f"test-queue:job:{job.job_id}:image")
    assert 0 < redis_client.ttl(f"test-queue:job:{job.job_id}") <= 60


def test_redis_failures_become_network_errors():
    class DownRedis(fakeredis.FakeRedis):
        def ping(self, **kwargs):
            raise redis.exceptions.ConnectionError("Connection refused")

    repository = RedisJobRepository(DownRedis(), queue_name="down")
    with pytest.raises(NetworkError) as exc_info:
        repository.ping()
    assert "Connection refused" in exc_info.value.context["reason"]


def test_memory_repository_hands_out_copies():
    repository = MemoryJobRepository()
    job = ScoringJob.create(b"data")
    repository.add(job)

    fetched = repository.get(job.job_id)
    fetched.state = JobState.ACTIVE
    assert repository.get(job.job_id).state is JobState.QUEUED

    repository.save(fetched)
    assert repository.get(job.job_id).state is JobState.ACTIVE


def test_memory_pop_pending_times_out():
    assert MemoryJobRepository().pop_pending(timeout=0.01) is None


@pytest.mark.parametrize(
    "url, expected",
    [
        ("memory://", MemoryJobRepository),
        ("redis://localhost:6379/0", RedisJobRepository),
    ],
)
def test_create_job_repository_by_scheme(url, expected):
    assert isinstance(create_job_repository(Settings(broker_url=url)), expected)


def test_create_job_repository_without_broker():
    assert create_job_repository(Settings(broker_url="")) is None


def test_create_job_repository_rejects_unknown_scheme():
    with pytest.raises(ValueError):
        create_job_repository(Settings(broker_url="amqp://guest@localhost"))
