"""Tests for the composed scoring pipeline."""

import pytest
from conftest import EMBEDDING_DIM, ExplodingDetector, NoFaceDetector, make_image_bytes

from face_score.errors import InvalidImageError, ProcessingError
from face_score.models.scoring_result import ScoringResult
from face_score.services.scoring_engine import ScoringEngine


def _with_detector(engine, detector):
    return ScoringEngine(
        image_service=engine.image_service,
        detector=detector,
        embedder=engine.embedder,
        scorer=engine.scorer,
        percentile_service=engine.percentile_service,
    )


def test_clear_portrait_is_scored(engine, portrait_bytes):
    result = engine.score(portrait_bytes)
    assert result.face_detected
    assert result.face_count == 1
    assert len(result.embedding) == EMBEDDING_DIM
    assert 0 < result.score <= 100
    assert 0 <= result.confidence <= 1
    assert 0 <= result.percentile <= 100
    assert len(result.vibe_tags) <= 3
    assert result.processing_time_ms >= 0


def test_result_reports_simulated_stages(engine, portrait_bytes):
    result = engine.score(portrait_bytes)
    assert set(result.simulated_stages) == {"face_detection", "face_embedding", "attractiveness"}
    assert result.to_dict()["simulatedStages"] == list(result.simulated_stages)


def test_quality_metrics_within_bounds(engine):
    result = engine.score(make_image_bytes(300, 300))
    metrics = result.metrics
    assert metrics.face_quality == 1.0
    assert 0.3 <= metrics.frontality <= 1.0
    assert 0.5 <= metrics.symmetry <= 1.0
    assert metrics.resolution == pytest.approx(300.0)


def test_embedding_length_is_constant(engine):
    lengths = {len(engine.score(make_image_bytes(seed=s)).embedding) for s in range(4)}
    assert lengths == {EMBEDDING_DIM}


def test_same_image_scores_the_same(engine, portrait_bytes):
    first = engine.score(portrait_bytes)
    second = engine.score(portrait_bytes)
    assert first.score == second.score
    assert first.embedding == second.embedding


def test_no_face_is_a_successful_result(engine, portrait_bytes):
    result = _with_detector(engine, NoFaceDetector()).score(portrait_bytes)
    assert result.face_detected is False
    assert result.face_count == 0
    assert result.score == 0
    assert result.vibe_tags == ()
    assert result.metrics.to_dict() == {"faceQuality": 0, "frontality": 0, "symmetry": 0, "resolution": 0}
    assert len(result.embedding) == EMBEDDING_DIM


def test_stage_failure_carries_stage_and_input_size(engine, portrait_bytes):
    with pytest.raises(ProcessingError) as exc_info:
        _with_detector(engine, ExplodingDetector()).score(portrait_bytes)
    context = exc_info.value.context
    assert context["stage"] == "face_detection"
    assert context["inputSize"] == len(portrait_bytes)
    assert "cuda kernel died" in context["reason"]


def test_corrupt_input_is_invalid_image(engine, corrupt_bytes):
    with pytest.raises(InvalidImageError) as exc_info:
        engine.score(corrupt_bytes)
    assert exc_info.value.context["inputSize"] == len(corrupt_bytes)


def test_stored_result_can_be_rebuilt(engine, portrait_bytes):
    payload = engine.score(portrait_bytes).to_dict()
    assert set(payload) >= {"score", "confidence", "percentile", "vibeTags", "embedding", "metrics",
                            "faceDetected", "faceCount", "processingTime", "timestamp"}

    rebuilt = ScoringResult.from_dict(payload)
    assert rebuilt.face_detected is True
    assert rebuilt.vibe_tags == tuple(payload["vibeTags"])
    assert rebuilt.to_dict() == payload
