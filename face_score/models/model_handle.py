from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Tuple


@dataclass(frozen=True)
class ModelHandle:
    """
    A loaded, read-only inference object plus its declared tensor shapes.
    `session` is None when the model failed to load; the stage then runs simulated.
    """
    name: str
    path: Path
    input_shape: Tuple[int, ...]
    output_shape: Tuple[int, ...]
    session: Any = None
    load_error: str | None = None

    @property
    def loaded(self) -> bool:
        return self.session is not None

    @property
    def mode(self) -> str:
        return "real" if self.loaded else "simulated"

    def to_dict(self) -> dict:
        info = {
            "name": self.name,
            "path": str(self.path),
            "mode": self.mode,
            "loaded": self.loaded,
            "inputShape": list(self.input_shape),
            "outputShape": list(self.output_shape),
        }
        if self.load_error:
            info["loadError"] = self.load_error
        return info
