from __future__ import annotations
import logging

import numpy as np
import torch

from ..errors import ProcessingError
from ..models.face import DetectionResult, FaceBox
from ..models.model_handle import ModelHandle
from .image_service import ImageService

logger = logging.getLogger(__name__)

STAGE = "face_detection"


class FaceDetector:
    """
    Contract shared by the real and simulated detectors:
    `detect(tensor) -> DetectionResult`.
    "No face found" is a valid result (empty boxes), never an exception.
    """
    stage = STAGE
    simulated = False

    def detect(self, tensor: torch.Tensor) -> DetectionResult:
        raise NotImplementedError


class InsightFaceDetector(FaceDetector):
    """RetinaFace / SCRFD detector loaded through insightface's model zoo."""

    def __init__(self, handle: ModelHandle, threshold: float = 0.5):
        self.model = handle.session
        self.threshold = threshold

    def detect(self, tensor: torch.Tensor) -> DetectionResult:
        try:
            img_bgr = ImageService.tensor_to_bgr(tensor)
            dets, _ = self.model.detect(img_bgr, max_num=0)
        except Exception as err:
            logger.error(f"Error in face detection: {err}")
            raise ProcessingError("Face detection failed", {"stage": STAGE, "reason": str(err)}) from err

        rows = np.asarray(dets, dtype=np.float32).reshape(-1, 5)
        boxes = [FaceBox.from_row(row) for row in rows if row[4] >= self.threshold]
        logger.debug(f"Face detection completed: {len(boxes)}/{len(rows)} boxes kept")
        return DetectionResult(boxes=boxes)


class SimulatedFaceDetector(FaceDetector):
    """
    Degraded backend used when the detector model is missing.
    Reports one full-frame face so the rest of the pipeline still runs.
    """
    simulated = True

    def detect(self, tensor: torch.Tensor) -> DetectionResult:
        height, width = int(tensor.shape[-2]), int(tensor.shape[-1])
        return DetectionResult(
            boxes=[FaceBox(bbox=(0.0, 0.0, float(width), float(height)), det_score=1.0)],
            simulated=True,
        )


def build_face_detector(handle: ModelHandle, threshold: float) -> FaceDetector:
    if handle.loaded:
        return InsightFaceDetector(handle, threshold)
    logger.warning("Face detection model not available, using simulated detector")
    return SimulatedFaceDetector()
