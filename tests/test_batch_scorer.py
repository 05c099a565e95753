"""Tests for concurrent batch scoring with per-item isolation."""

import threading

import pytest
from conftest import make_image_bytes

from face_score.errors import ValidationError
from face_score.pipeline.batch_scorer import BatchInput, BatchOrchestrator


class CountingEngine:
    """Wraps a real engine and counts score() calls."""

    def __init__(self, engine):
        self.engine = engine
        self.image_service = engine.image_service
        self.calls = 0
        self._lock = threading.Lock()

    def score(self, data):
        with self._lock:
            self.calls += 1
        return self.engine.score(data)


@pytest.fixture
def orchestrator(engine):
    return BatchOrchestrator(engine, max_batch_size=5, max_errors=2)


def test_one_corrupt_image_does_not_sink_the_batch(orchestrator, corrupt_bytes):
    inputs = [BatchInput(make_image_bytes(seed=1)), BatchInput(corrupt_bytes), BatchInput(make_image_bytes(seed=2))]
    result = orchestrator.score_batch(inputs)
    summary = result.summary

    assert (summary.total_images, summary.successful_images, summary.failed_images) == (3, 2, 1)
    assert summary.errors == ["Image 2: Image could not be decoded"]
    assert [item.ok for item in result.items] == [True, False, True]
    assert result.items[1].error_type == "invalid_image"


def test_items_keep_submission_order(orchestrator):
    inputs = [BatchInput(make_image_bytes(seed=s)) for s in range(5)]
    result = orchestrator.score_batch(inputs)
    assert [item.index for item in result.items] == [0, 1, 2, 3, 4]
    assert result.summary.successful_images + result.summary.failed_images == result.summary.total_images


def test_oversized_batch_rejected_before_scoring(engine):
    counting = CountingEngine(engine)
    orchestrator = BatchOrchestrator(counting, max_batch_size=2)
    with pytest.raises(ValidationError) as exc_info:
        orchestrator.score_batch([BatchInput(make_image_bytes())] * 3)
    assert exc_info.value.context["maxBatchSize"] == 2
    assert counting.calls == 0


def test_empty_batch_rejected(orchestrator):
    with pytest.raises(ValidationError):
        orchestrator.score_batch([])


def test_error_list_is_truncated(orchestrator, corrupt_bytes):
    result = orchestrator.score_batch([BatchInput(corrupt_bytes)] * 4)
    assert result.summary.failed_images == 4
    assert result.summary.successful_images == 0
    assert result.summary.average_processing_time_ms == 0
    assert result.summary.errors == [
        "Image 1: Image could not be decoded",
        "Image 2: Image could not be decoded",
    ]


def test_disallowed_mimetype_is_a_per_item_error(orchestrator):
    result = orchestrator.score_batch([
        BatchInput(make_image_bytes(), "image/jpeg"),
        BatchInput(b"%PDF-1.4", "application/pdf"),
    ])
    assert result.summary.successful_images == 1
    assert result.items[1].error.startswith("Invalid file type: application/pdf")


def test_stats_count_batches(orchestrator, corrupt_bytes):
    orchestrator.score_batch([BatchInput(make_image_bytes()), BatchInput(corrupt_bytes)])
    assert orchestrator.stats() == {"batches": 1, "images": 2, "failedImages": 1, "maxBatchSize": 5}


def test_batch_result_serialises(orchestrator, corrupt_bytes):
    payload = orchestrator.score_batch([BatchInput(make_image_bytes()), BatchInput(corrupt_bytes)]).to_dict()
    assert payload["results"][0]["status"] == "success"
    assert payload["results"][1] == {
        "index": 1,
        "status": "error",
        "error": "Image could not be decoded",
        "errorType": "invalid_image",
    }
    assert payload["summary"]["totalImages"] == 2
