"""Tests for the three inference stages (real backends driven by fake sessions)."""

from types import SimpleNamespace

import numpy as np
import pytest
import torch

from face_score.errors import ProcessingError
from face_score.models.face import DetectionResult, FaceBox
from face_score.models.model_handle import ModelHandle
from face_score.services.attractiveness_service import (
    OnnxAttractivenessScorer,
    SimulatedAttractivenessScorer,
    build_attractiveness_scorer,
)
from face_score.services.embedding_service import (
    ARCFACE_NORM_PROFILE,
    ArcFaceEmbeddingExtractor,
    SimulatedEmbeddingExtractor,
    build_embedding_extractor,
)
from face_score.services.face_detection_service import (
    InsightFaceDetector,
    SimulatedFaceDetector,
    build_face_detector,
)

DIM = 512


def _handle(name, session=None):
    return ModelHandle(name, path="-", input_shape=(1,), output_shape=(1,), session=session)


def _tensor(seed=0):
    return torch.from_numpy(np.random.default_rng(seed).random((3, 224, 224), dtype=np.float32))


class FakeDetectorModel:
    def __init__(self, rows):
        self.rows = np.asarray(rows, dtype=np.float32)

    def detect(self, img, max_num=0):
        assert img.shape == (224, 224, 3)
        assert img.dtype == np.uint8
        return self.rows, None


class FakeRecognizer:
    def __init__(self, dim=DIM):
        self.dim = dim
        self.seen = None

    def get_feat(self, img):
        self.seen = img.shape
        return np.ones((1, self.dim), dtype=np.float32)


class FakeSession:
    def __init__(self, output=None, error=None):
        self.output = output
        self.error = error

    def get_inputs(self):
        return [SimpleNamespace(name="embedding")]

    def run(self, names, feeds):
        if self.error:
            raise self.error
        assert feeds["embedding"].shape == (1, DIM)
        return [np.asarray([self.output], dtype=np.float32)]


# ─── detection ──────────────────────────────────────────────────────────
def test_detector_drops_low_confidence_boxes():
    model = FakeDetectorModel([[10, 10, 100, 120, 0.9], [5, 5, 20, 20, 0.3], [50, 50, 90, 90, 0.5]])
    result = InsightFaceDetector(_handle("det", model), threshold=0.5).detect(_tensor())
    assert result.detected
    assert result.count == 2
    assert not result.simulated
    assert all(b.det_score >= 0.5 for b in result.boxes)


def test_detector_no_face_is_not_an_error():
    result = InsightFaceDetector(_handle("det", FakeDetectorModel(np.zeros((0, 5)))), 0.5).detect(_tensor())
    assert not result.detected
    assert result.count == 0


def test_detector_runtime_failure_is_processing_error():
    class Broken:
        def detect(self, img, max_num=0):
            raise RuntimeError("boom")

    with pytest.raises(ProcessingError) as exc_info:
        InsightFaceDetector(_handle("det", Broken())).detect(_tensor())
    assert exc_info.value.context["stage"] == "face_detection"


def test_simulated_detector_reports_full_frame():
    result = SimulatedFaceDetector().detect(_tensor())
    assert result.simulated
    assert result.count == 1
    assert result.boxes[0].bbox == (0.0, 0.0, 224.0, 224.0)


def test_build_face_detector_picks_backend_from_handle():
    assert isinstance(build_face_detector(_handle("det"), 0.5), SimulatedFaceDetector)
    assert isinstance(build_face_detector(_handle("det", FakeDetectorModel([])), 0.5), InsightFaceDetector)


# ─── embedding ──────────────────────────────────────────────────────────
def test_arcface_extractor_crops_largest_face():
    recognizer = FakeRecognizer()
    detection = DetectionResult(boxes=[FaceBox((0, 0, 10, 10), 0.9), FaceBox((20, 20, 180, 200), 0.8)])
    embedding = ArcFaceEmbeddingExtractor(_handle("emb", recognizer), DIM).extract(_tensor(), detection)
    assert embedding.shape == (DIM,)
    assert recognizer.seen == (112, 112, 3)


def test_arcface_extractor_rejects_wrong_length():
    extractor = ArcFaceEmbeddingExtractor(_handle("emb", FakeRecognizer(dim=128)), DIM)
    detection = DetectionResult(boxes=[FaceBox((0, 0, 224, 224), 1.0)])
    with pytest.raises(ProcessingError) as exc_info:
        extractor.extract(_tensor(), detection)
    assert exc_info.value.context == {"stage": "face_embedding", "expected": DIM, "received": 128}


def test_simulated_embedding_is_stable_per_image():
    extractor = SimulatedEmbeddingExtractor(DIM)
    detection = DetectionResult(boxes=[FaceBox((0, 0, 224, 224), 1.0)])
    first = extractor.extract(_tensor(1), detection)
    assert first.shape == (DIM,)
    assert np.array_equal(first, extractor.extract(_tensor(1), detection))
    assert not np.array_equal(first, extractor.extract(_tensor(2), detection))
    assert first.min() >= -0.5 and first.max() < 0.5


def test_build_embedding_extractor_fallback():
    extractor = build_embedding_extractor(_handle("emb"), 256)
    assert extractor.simulated
    assert extractor.dim == 256


# ─── scoring ────────────────────────────────────────────────────────────
def test_onnx_scorer_scales_to_hundred():
    scorer = OnnxAttractivenessScorer(_handle("attr", FakeSession(output=[0.73, 0.91])))
    result = scorer.score(np.zeros(DIM, dtype=np.float32))
    assert result.score == pytest.approx(73.0, abs=1e-3)
    assert result.confidence == pytest.approx(0.91, abs=1e-6)


def test_onnx_scorer_clamps_out_of_range_output():
    result = OnnxAttractivenessScorer(_handle("attr", FakeSession(output=[1.7, -0.2]))).score(np.zeros(DIM))
    assert result.score == 100.0
    assert result.confidence == 0.0


def test_onnx_scorer_rejects_non_finite_output():
    scorer = OnnxAttractivenessScorer(_handle("attr", FakeSession(output=[float("nan"), 0.5])))
    with pytest.raises(ProcessingError):
        scorer.score(np.zeros(DIM))


def test_onnx_scorer_runtime_failure():
    scorer = OnnxAttractivenessScorer(_handle("attr", FakeSession(error=RuntimeError("bad graph"))))
    with pytest.raises(ProcessingError) as exc_info:
        scorer.score(np.zeros(DIM))
    assert exc_info.value.context["stage"] == "attractiveness"
    assert exc_info.value.context["embeddingSize"] == DIM


def test_simulated_scorer_is_deterministic_and_bounded():
    scorer = SimulatedAttractivenessScorer()
    rng = np.random.default_rng(7)
    for _ in range(20):
        embedding = rng.uniform(-0.5, 0.5, DIM)
        result = scorer.score(embedding)
        assert 0.0 < result.score <= 100.0
        assert result.confidence == 0.85
        assert result.score == scorer.score(embedding).score


def test_simulated_scorer_grows_with_magnitude():
    scorer = SimulatedAttractivenessScorer()
    base = np.full(DIM, 0.25)
    assert scorer.score(base * 1.2).score > scorer.score(base).score


def test_build_attractiveness_scorer_fallback():
    assert build_attractiveness_scorer(_handle("attr")).simulated


def test_simulated_scorer_follows_arcface_norms():
    scorer = SimulatedAttractivenessScorer(ARCFACE_NORM_PROFILE)
    rng = np.random.default_rng(3)
    scores = [scorer.score(rng.normal(0.0, 1.0, DIM)).score for _ in range(5)]
    assert all(1.0 < s < 99.0 for s in scores)
    assert len(set(scores)) == 5


def test_simulated_scorer_uses_embedder_profile():
    embedder = build_embedding_extractor(_handle("emb", FakeRecognizer()), DIM)
    assert embedder.norm_profile == ARCFACE_NORM_PROFILE
    scorer = build_attractiveness_scorer(_handle("attr"), embedder.norm_profile)
    assert scorer.profile == ARCFACE_NORM_PROFILE


def test_simulated_scorer_survives_huge_norms():
    assert 0.0 < SimulatedAttractivenessScorer().score(np.full(DIM, 1e6)).score <= 100.0
