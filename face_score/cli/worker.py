"""
Standalone queue worker: probes the broker, loads the models and runs the
worker pool until interrupted. Use with RUN_EMBEDDED_WORKERS=false on the API.
"""
import argparse
import logging
import signal
import threading

from ..config import LOG_DATEFMT, LOG_FORMAT, Settings
from ..models.face_engine import FaceEngine
from ..repositories.job_repository import create_job_repository
from ..services.queue_service import JobQueueManager
from ..services.scoring_engine import ScoringEngine
from ..services.worker_pool import WorkerPool

logger = logging.getLogger(__name__)


def main(argv=None) -> int:
    settings = Settings.from_env()
    parser = argparse.ArgumentParser(description="Run face scoring queue workers")
    parser.add_argument("--concurrency", type=int, default=settings.worker_concurrency)
    parser.add_argument("--timeout", type=float, default=settings.job_timeout, help="per-job timeout, seconds")
    args = parser.parse_args(argv)

    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)

    engine = ScoringEngine.from_face_engine(FaceEngine.load(settings), settings)
    manager = JobQueueManager(
        create_job_repository(settings),
        engine,
        reconnect_interval=settings.queue_reconnect_interval,
        job_timeout=args.timeout,
    )
    if manager.backend == "memory":
        logger.error("memory:// broker is process-local, a standalone worker would never see jobs")
        return 2
    if not manager.start() and settings.queue_reconnect_interval <= 0:
        logger.error("Broker unavailable and QUEUE_RECONNECT_INTERVAL is 0, nothing to do")
        return 1

    pool = WorkerPool(
        manager,
        engine,
        concurrency=args.concurrency,
        job_timeout=args.timeout,
        poll_interval=settings.worker_poll_interval,
    )
    stop = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    signal.signal(signal.SIGTERM, lambda *_: stop.set())

    pool.start()
    try:
        stop.wait()
    finally:
        pool.stop()
        manager.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
