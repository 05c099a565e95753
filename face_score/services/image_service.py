from __future__ import annotations
from pathlib import Path
from typing import Iterable, Iterator, Tuple, Union
import logging

import numpy as np
import torch
import torchvision.transforms as T
from PIL import Image as PILImage

from ..config import Settings
from ..errors import InvalidImageError, PayloadTooLargeError, ValidationError
from ..models.image import Image, PreprocessedImage
from ..repositories.image_repository import ImageRepository

logger = logging.getLogger(__name__)


class ImageService:
    """
    Input validation and preprocessing. No model logic here.

    Preprocessing is deterministic and side-effect free: encoded bytes in,
    (3, S, S) float tensor in [0, 1] out.
    """

    def __init__(self, settings: Settings):
        self.image_size = settings.image_size
        self.max_upload_bytes = settings.max_upload_bytes
        self.allowed_mime_types = {m.lower() for m in settings.allowed_mime_types}
        self.image_repository = ImageRepository()
        # Resize shorter side, then center crop → square "cover" fit
        self._transform = T.Compose([
            T.Resize(self.image_size, antialias=True),
            T.CenterCrop(self.image_size),
            T.ToTensor(),
        ])

    # ─── validation ─────────────────────────────────────────────────────
    def validate_payload(self, data: bytes | None, mimetype: str | None = None) -> bytes:
        """
        Check a raw upload before it is queued or scored.

        Raises:
            ValidationError: missing payload or unsupported MIME type.
            PayloadTooLargeError: payload above MAX_UPLOAD_SIZE_MB.
        """
        if not data:
            raise ValidationError("Image is required")
        if len(data) > self.max_upload_bytes:
            raise PayloadTooLargeError(
                f"Image exceeds maximum size of {self.max_upload_bytes} bytes",
                {"size": len(data), "maxSize": self.max_upload_bytes},
            )
        if mimetype and mimetype.lower() not in self.allowed_mime_types:
            raise ValidationError(
                f"Invalid file type: {mimetype}. Allowed types: {', '.join(sorted(self.allowed_mime_types))}",
                {"field": "image", "mimetype": mimetype},
            )
        return data

    def decode_base64(self, payload: str) -> bytes:
        return self.image_repository.decode_base64(payload)

    # ─── loading ────────────────────────────────────────────────────────
    def decode(self, data: bytes) -> Image:
        return self.image_repository.decode(data)

    def stream_folder(
        self,
        folder: Union[str, Path],
        *,
        recursive: bool = False,
        exts: Iterable[str] | None = None,
    ) -> Iterator[Tuple[Path, bytes]]:
        """
        Yield images lazily instead of returning a gigantic list.
        """
        return self.image_repository.iter_dir(folder, recursive=recursive, exts=exts)

    # ─── ML-friendly utilities ──────────────────────────────────────────
    def preprocess(self, data: bytes) -> PreprocessedImage:
        """
        Decode + resize + center crop + scale to [0, 1], channel first.

        Raises:
            InvalidImageError: bytes cannot be decoded or resized.
        """
        img = self.decode(data)
        try:
            tensor = self._transform(self.to_pil_image(img))
        except (ValueError, RuntimeError, OSError) as err:
            raise InvalidImageError("Image could not be resized", {"reason": str(err)})

        return PreprocessedImage(
            tensor=tensor,
            source_width=img.width,
            source_height=img.height,
            byte_size=len(data),
        )

    @staticmethod
    def to_pil_image(img: Image) -> PILImage.Image:
        """
        Convert Image.pixels → PIL Image object.
        Ensures the NumPy array is C-contiguous.
        """
        np_img = img.pixels
        if not np_img.flags['C_CONTIGUOUS']:
            np_img = np.ascontiguousarray(np_img)
        return PILImage.fromarray(np_img)

    @staticmethod
    def tensor_to_bgr(tensor: torch.Tensor) -> np.ndarray:
        """(3, H, W) float [0, 1] → (H, W, 3) uint8 BGR, the layout insightface expects."""
        rgb = (tensor.clamp(0, 1).mul(255).round().byte().permute(1, 2, 0).cpu().numpy())
        return np.ascontiguousarray(rgb[:, :, ::-1])
