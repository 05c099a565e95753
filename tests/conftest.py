"""Shared test fixtures."""

import io
from pathlib import Path

import numpy as np
import pytest
from PIL import Image as PILImage

from face_score.config import Settings
from face_score.models.face import DetectionResult
from face_score.models.face_engine import FaceEngine
from face_score.repositories.job_repository import MemoryJobRepository
from face_score.services.face_detection_service import FaceDetector
from face_score.services.queue_service import JobQueueManager
from face_score.services.scoring_engine import ScoringEngine

EMBEDDING_DIM = 512


def make_image_bytes(width: int = 320, height: int = 400, fmt: str = "JPEG", seed: int = 0) -> bytes:
    """Encode a synthetic RGB image: gradient background plus a lighter oval."""
    rng = np.random.default_rng(seed)
    yy, xx = np.mgrid[0:height, 0:width]
    pixels = np.zeros((height, width, 3), dtype=np.uint8)
    pixels[..., 0] = (xx * 255 // max(width - 1, 1)).astype(np.uint8)
    pixels[..., 1] = (yy * 255 // max(height - 1, 1)).astype(np.uint8)
    pixels[..., 2] = rng.integers(0, 255, dtype=np.uint8)
    oval = ((xx - width / 2) / (width / 4)) ** 2 + ((yy - height / 2) / (height / 3)) ** 2 <= 1
    pixels[oval] = (224, 188, 160)

    buffer = io.BytesIO()
    PILImage.fromarray(pixels).save(buffer, format=fmt)
    return buffer.getvalue()


class NoFaceDetector(FaceDetector):
    """Detector double that never finds anything."""

    def detect(self, tensor):
        return DetectionResult(boxes=[])


class ExplodingDetector(FaceDetector):
    """Detector double whose model blows up at runtime."""

    def detect(self, tensor):
        raise RuntimeError("cuda kernel died")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        broker_url="memory://",
        model_dir=tmp_path / "no-models",
        embedding_dim=EMBEDDING_DIM,
        worker_concurrency=2,
        worker_poll_interval=0.05,
        job_timeout=5.0,
        max_batch_size=5,
        max_batch_errors=2,
        run_embedded_workers=False,
    )


@pytest.fixture
def face_engine(settings) -> FaceEngine:
    return FaceEngine.simulated(settings)


@pytest.fixture
def engine(face_engine, settings) -> ScoringEngine:
    return ScoringEngine.from_face_engine(face_engine, settings)


@pytest.fixture
def portrait_bytes() -> bytes:
    return make_image_bytes()


@pytest.fixture
def corrupt_bytes() -> bytes:
    return b"\xff\xd8\xff\xe0 definitely not a jpeg"


@pytest.fixture
def memory_repository() -> MemoryJobRepository:
    return MemoryJobRepository(result_ttl=60)


@pytest.fixture
def manager(memory_repository, engine):
    """Started manager on the in-process broker (queue available)."""
    mgr = JobQueueManager(memory_repository, engine)
    mgr.start()
    yield mgr
    mgr.stop()


@pytest.fixture
def degraded_manager(engine):
    """Manager with no broker at all: every submission runs inline."""
    mgr = JobQueueManager(None, engine)
    mgr.start()
    yield mgr
    mgr.stop()
