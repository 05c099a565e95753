from __future__ import annotations
from pathlib import Path
from typing import Iterable, Iterator, Tuple, Union
import base64
import binascii
import logging
import re

import cv2
import numpy as np

from ..errors import InvalidImageError, ValidationError
from ..models.image import Image

logger = logging.getLogger(__name__)

VALID_EXTS = {".jpg", ".jpeg", ".png", ".webp", ".bmp"}
_DATA_URI = re.compile(r"^data:image/[a-zA-Z0-9.+-]+;base64,")


class ImageRepository:
    """
    Handles decoding of encoded image payloads into Image entities.
    """

    @staticmethod
    def decode(data: bytes, path: Union[str, Path, None] = None) -> Image:
        """Decode encoded bytes (JPEG, PNG, ...) into an RGB Image."""
        if not data:
            raise InvalidImageError("Image payload is empty")

        buffer = np.frombuffer(data, dtype=np.uint8)
        try:
            arr_bgr = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
        except cv2.error as err:
            raise InvalidImageError("Image could not be decoded", {"reason": str(err), "size": len(data)})

        if arr_bgr is None or arr_bgr.size == 0:
            raise InvalidImageError("Image could not be decoded", {"size": len(data)})

        arr = np.ascontiguousarray(arr_bgr[:, :, ::-1])
        return Image(pixels=arr, path=Path(path) if path else None, byte_size=len(data))

    @staticmethod
    def decode_base64(payload: str) -> bytes:
        """Strip an optional data-URI prefix and base64-decode."""
        stripped = _DATA_URI.sub("", payload.strip())
        try:
            return base64.b64decode(stripped, validate=True)
        except (binascii.Error, ValueError) as err:
            raise ValidationError("Image is not valid base64", {"reason": str(err)})

    @staticmethod
    def read_bytes(path: Union[str, Path]) -> bytes:
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"Image not found or unreadable: {path}")
        return path.read_bytes()

    def iter_dir(
        self,
        folder: Union[str, Path],
        *,
        recursive: bool = False,
        exts: Iterable[str] | None = None,
    ) -> Iterator[Tuple[Path, bytes]]:
        """
        Yield (path, encoded bytes) one file at a time, sorted by name.
        Decoding is left to the scoring pipeline so bad files surface as per-item errors.
        """
        folder = Path(folder)
        if not folder.is_dir():
            raise NotADirectoryError(folder)

        allowed = {e.lower() for e in (exts or VALID_EXTS)}
        pattern = "**/*" if recursive else "*"

        for p in sorted(folder.glob(pattern)):
            if not p.is_file() or p.suffix.lower() not in allowed:
                logger.debug(f"Skipping {p}")
                continue
            yield p, self.read_bytes(p)
