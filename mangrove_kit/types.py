from dataclasses import dataclass
from typing import Sequence, Tuple


@dataclass(frozen=True)
class Box:
    """
    Axis-aligned box in image pixel space (left/top/right/bottom).
    """

    left: float
    top: float
    right: float
    bottom: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.left, self.top, self.right, self.bottom


@dataclass(frozen=True)
class Candidate:
    """
    One raw prediction column of the model output, before any filtering.
    """

    center_x: float
    center_y: float
    width: float
    height: float
    class_scores: Sequence[float]


@dataclass(frozen=True)
class ScoredCandidate:
    candidate: Candidate
    class_id: int
    confidence: float


@dataclass(frozen=True)
class Detection:
    """
    Labeled detection in original image coordinates.
    """

    label: str
    confidence: float
    box: Box
    class_id: int = -1

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.box.as_xyxy()
