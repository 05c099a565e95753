"""Service-wide configuration, read from the environment (and an optional .env file)."""

from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
import os

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

LOG_FORMAT = '%(asctime)s - %(name)-25s - %(levelname)-8s - %(message)s'
LOG_DATEFMT = '%H:%M:%S'

DEFAULT_MIME_TYPES = "image/jpeg,image/jpg,image/png,image/webp,image/bmp"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in os.getenv(name, default).split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    """
    Immutable snapshot of every tunable the service reads.
    Built once at startup (`Settings.from_env()`) and passed down explicitly.
    """
    # ─── HTTP ────────────────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 5002
    cors_origin: str = "*"
    log_level: str = "INFO"

    # ─── broker / queue ──────────────────────────────────────────────────
    broker_url: str = "memory://"
    broker_connect_timeout: float = 5.0
    queue_name: str = "face-scoring"
    queue_reconnect_interval: float = 0.0   # 0 → stay degraded until restart
    worker_concurrency: int = 5
    worker_poll_interval: float = 1.0
    job_timeout: float = 30.0
    job_result_ttl: int = 3600
    run_embedded_workers: bool = True

    # ─── models ──────────────────────────────────────────────────────────
    model_dir: Path = Path("models")
    face_detection_model: str = "det_10g.onnx"
    face_embedding_model: str = "w600k_r50.onnx"
    attractiveness_model: str = "attractiveness.onnx"
    model_ctx_id: int = -1                  # -1 = CPU, 0+ = GPU index
    embedding_dim: int = 512
    image_size: int = 224
    detection_threshold: float = 0.5

    # ─── request limits ──────────────────────────────────────────────────
    max_upload_bytes: int = 10 * 1024 * 1024
    allowed_mime_types: tuple[str, ...] = field(default_factory=lambda: tuple(DEFAULT_MIME_TYPES.split(",")))
    max_batch_size: int = 10
    max_batch_errors: int = 5

    # ─── percentile policy ───────────────────────────────────────────────
    percentile_distribution: str = "normal"
    percentile_mean: float = 50.0
    percentile_std: float = 15.0
    percentile_floor: float = 1.0
    percentile_ceiling: float = 99.0
    reference_population: int = 10000

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            api_host=os.getenv("API_HOST", "0.0.0.0"),
            api_port=int(os.getenv("API_SERVER_PORT", "5002")),
            cors_origin=os.getenv("CORS_ORIGIN", "*"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            broker_url=os.getenv("BROKER_URL", "memory://"),
            broker_connect_timeout=float(os.getenv("BROKER_CONNECT_TIMEOUT", "5")),
            queue_name=os.getenv("QUEUE_NAME", "face-scoring"),
            queue_reconnect_interval=float(os.getenv("QUEUE_RECONNECT_INTERVAL", "0")),
            worker_concurrency=int(os.getenv("WORKER_CONCURRENCY", "5")),
            worker_poll_interval=float(os.getenv("WORKER_POLL_INTERVAL", "1.0")),
            job_timeout=float(os.getenv("JOB_TIMEOUT", "30")),
            job_result_ttl=int(os.getenv("JOB_RESULT_TTL", "3600")),
            run_embedded_workers=_env_bool("RUN_EMBEDDED_WORKERS", "true"),
            model_dir=Path(os.getenv("MODEL_DIR", "models")),
            face_detection_model=os.getenv("FACE_DETECTION_MODEL", "det_10g.onnx"),
            face_embedding_model=os.getenv("FACE_EMBEDDING_MODEL", "w600k_r50.onnx"),
            attractiveness_model=os.getenv("ATTRACTIVENESS_MODEL", "attractiveness.onnx"),
            model_ctx_id=int(os.getenv("MODEL_CTX_ID", "-1")),
            embedding_dim=int(os.getenv("EMBEDDING_DIM", "512")),
            image_size=int(os.getenv("IMAGE_SIZE", "224")),
            detection_threshold=float(os.getenv("DETECTION_THRESHOLD", "0.5")),
            max_upload_bytes=int(float(os.getenv("MAX_UPLOAD_SIZE_MB", "10")) * 1024 * 1024),
            allowed_mime_types=_env_list("ALLOWED_MIME_TYPES", DEFAULT_MIME_TYPES),
            max_batch_size=int(os.getenv("MAX_BATCH_SIZE", "10")),
            max_batch_errors=int(os.getenv("MAX_BATCH_ERRORS", "5")),
            percentile_distribution=os.getenv("PERCENTILE_DISTRIBUTION", "normal").lower(),
            percentile_mean=float(os.getenv("PERCENTILE_MEAN", "50")),
            percentile_std=float(os.getenv("PERCENTILE_STD", "15")),
            percentile_floor=float(os.getenv("PERCENTILE_FLOOR", "1")),
            percentile_ceiling=float(os.getenv("PERCENTILE_CEILING", "99")),
            reference_population=int(os.getenv("REFERENCE_POPULATION", "10000")),
        )

    def model_path(self, filename: str) -> Path:
        return self.model_dir / filename
