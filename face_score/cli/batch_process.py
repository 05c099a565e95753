import argparse
import logging
import time

from ..config import LOG_DATEFMT, LOG_FORMAT, Settings
from ..models.face_engine import FaceEngine
from ..pipeline.batch_scorer import BatchInput, BatchOrchestrator, log_batch_results
from ..services.scoring_engine import ScoringEngine

logger = logging.getLogger(__name__)


def main(argv=None) -> int:
    settings = Settings.from_env()
    parser = argparse.ArgumentParser(description="Score every image in a folder")
    parser.add_argument("folder")
    parser.add_argument("-r", "--recursive", action="store_true")
    args = parser.parse_args(argv)

    # ─── Centralized Logging Configuration ───
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)

    engine = ScoringEngine.from_face_engine(FaceEngine.load(settings), settings)
    orchestrator = BatchOrchestrator(
        engine,
        max_batch_size=settings.max_batch_size,
        max_errors=settings.max_batch_errors,
    )

    print(f"\nScoring images in {args.folder}...")
    gallery = engine.image_service.stream_folder(args.folder, recursive=args.recursive)

    names, inputs = [], []
    scored = 0
    start = time.perf_counter()
    for path, data in gallery:
        names.append(path.name)
        inputs.append(BatchInput(data, name=path.name))
        # Chunks of MAX_BATCH_SIZE, the orchestrator rejects anything larger
        if len(inputs) == orchestrator.max_batch_size:
            log_batch_results(names, orchestrator.score_batch(inputs, session_tag="cli"))
            scored += len(inputs)
            names, inputs = [], []
    if inputs:
        log_batch_results(names, orchestrator.score_batch(inputs, session_tag="cli"))
        scored += len(inputs)

    if not scored:
        print("No images found.")
        return 1
    print(f"\nDone: {scored} images in {time.perf_counter() - start:.1f}s")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
