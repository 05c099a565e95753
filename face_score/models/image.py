from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
import numpy as np
import torch


@dataclass
class Image:
    """
    Simple data object: RGB pixels (+ optional source path for bookkeeping).
    No OpenCV logic outside the image repository.
    """
    pixels: np.ndarray # Shape (H, W, 3), dtype uint8, RGB order.
    path: Path | None = None # Source of the image.
    byte_size: int = 0 # Size of the encoded payload the pixels were decoded from.

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


@dataclass(frozen=True)
class PreprocessedImage:
    """
    Model-ready view of an Image: a (3, S, S) float tensor in [0, 1], channel first.
    Keeps the source geometry around for the resolution metric.
    """
    tensor: torch.Tensor
    source_width: int
    source_height: int
    byte_size: int

    @property
    def size(self) -> int:
        return int(self.tensor.shape[-1])
