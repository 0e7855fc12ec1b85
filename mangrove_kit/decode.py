from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

import numpy as np

from .errors import ShapeMismatchError
from .types import Candidate


@dataclass(frozen=True)
class TensorLayout:
    """
    Shape of a YOLOv8 detection head output: (4 + num_classes) rows by num_candidates columns.

    Rows 0-3 hold cx, cy, w, h; rows 4.. hold one score per class.
    """

    num_classes: int = 15
    num_candidates: int = 8400

    def __post_init__(self) -> None:
        if self.num_classes <= 0:
            raise ValueError("num_classes must be > 0")
        if self.num_candidates <= 0:
            raise ValueError("num_candidates must be > 0")

    @property
    def num_channels(self) -> int:
        return 4 + self.num_classes

    @property
    def size(self) -> int:
        return self.num_channels * self.num_candidates


class TensorDecoder:
    """
    Reinterprets the flat, channel-major model output as a (4 + C, N) grid.

    Accepted inputs:
    - flat buffer of exactly (4 + C) * N values (extra singleton axes allowed)
    - (4 + C, N) or (1, 4 + C, N) arrays

    Anything else raises `ShapeMismatchError`. A transposed (N, 4 + C) export has the same
    element count but would decode into garbage, so multi-dimensional inputs must match exactly.
    """

    def __init__(self, layout: TensorLayout = TensorLayout()):
        self.layout = layout

    def as_grid(self, preds: np.ndarray) -> np.ndarray:
        p = np.asarray(preds)
        expected = (self.layout.num_channels, self.layout.num_candidates)

        if p.ndim == 3 and p.shape[0] != 1:
            raise ShapeMismatchError(f"Batch > 1 is not supported (got shape {p.shape}). Pass one image at a time.")
        if p.size != self.layout.size:
            raise ShapeMismatchError(
                f"Expected {self.layout.size} values for layout {expected}, got {p.size} (shape {p.shape})."
            )
        squeezed = np.squeeze(p)
        if squeezed.ndim > 1 and squeezed.shape != expected:
            raise ShapeMismatchError(f"Expected output shape (1, {expected[0]}, {expected[1]}), got {p.shape}.")

        grid = p.reshape(expected)
        grid.flags.writeable = False
        return grid

    def candidates(self, preds: np.ndarray) -> Iterator[Candidate]:
        """
        Lazily yield one `Candidate` per column, in column order.
        """

        grid = self.as_grid(preds)
        for i in range(self.layout.num_candidates):
            col = grid[:, i]
            yield Candidate(
                center_x=float(col[0]),
                center_y=float(col[1]),
                width=float(col[2]),
                height=float(col[3]),
                class_scores=tuple(float(s) for s in col[4:]),
            )
