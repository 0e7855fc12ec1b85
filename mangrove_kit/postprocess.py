from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from .decode import TensorDecoder, TensorLayout
from .nms import NMSConfig, non_max_suppression
from .types import Box, Candidate, Detection, ScoredCandidate

LOGGER = logging.getLogger(__name__)

UNKNOWN_LABEL = "Unknown"


@dataclass(frozen=True)
class PostConfig:
    """
    Post-processing settings for the mangrove YOLOv8 export (640 input, 15 classes, 8400 anchors).
    """

    input_size: int = 640
    num_classes: int = 15
    num_candidates: int = 8400
    confidence_threshold: float = 0.5
    iou_threshold: float = 0.5
    # Boxes whose center is at or below this value on both axes are read as normalized [0, 1].
    normalized_cutoff: float = 1.5
    max_detections: Optional[int] = None

    def __post_init__(self) -> None:
        if self.input_size <= 0:
            raise ValueError("input_size must be > 0")
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ValueError("confidence_threshold must be in [0, 1]")
        if not 0.0 <= self.iou_threshold <= 1.0:
            raise ValueError("iou_threshold must be in [0, 1]")

    @property
    def layout(self) -> TensorLayout:
        return TensorLayout(num_classes=self.num_classes, num_candidates=self.num_candidates)

    @property
    def nms(self) -> NMSConfig:
        return NMSConfig(iou_threshold=self.iou_threshold, max_detections=self.max_detections)


# ---------------------------------------------------------------------- #
# Best-class selection
# ---------------------------------------------------------------------- #
def select_best_class(class_scores: Sequence[float]) -> Tuple[int, float]:
    """
    Return (class_id, score) of the highest score. The first of several equal maxima wins.
    """

    if len(class_scores) == 0:
        raise ValueError("class_scores must not be empty")
    best_id = 0
    best = class_scores[0]
    for cid in range(1, len(class_scores)):
        if class_scores[cid] > best:
            best = class_scores[cid]
            best_id = cid
    return best_id, float(best)


def filter_candidates(candidates: Iterable[Candidate], threshold: float = 0.5) -> Iterator[ScoredCandidate]:
    for cand in candidates:
        class_id, confidence = select_best_class(cand.class_scores)
        if confidence > threshold:
            yield ScoredCandidate(candidate=cand, class_id=class_id, confidence=confidence)


# ---------------------------------------------------------------------- #
# Coordinate mapping
# ---------------------------------------------------------------------- #
def is_normalized(center_x, center_y, cutoff: float = 1.5):
    """
    Guess whether a box center is normalized [0, 1] or in model-input pixels.

    The export does not say which convention it uses, so anything with both center
    coordinates <= `cutoff` is treated as normalized. A genuinely absolute box near the
    top-left corner (center within 1.5 px of the origin) is misread as normalized.
    Works on scalars and on NumPy arrays (elementwise).
    """

    return (center_x <= cutoff) & (center_y <= cutoff)


def resolve_label(labels: Sequence[str], class_id: int) -> str:
    if 0 <= class_id < len(labels):
        return labels[class_id]
    return UNKNOWN_LABEL


def map_box(
    center_x: float,
    center_y: float,
    width: float,
    height: float,
    image_size: Tuple[int, int],
    input_size: int = 640,
    cutoff: float = 1.5,
) -> Box:
    """
    Convert a cx/cy/w/h box into clamped left/top/right/bottom in image pixels.

    Args:
        image_size: (width, height) of the image the detections refer to
        input_size: square model input size used for absolute (non-normalized) outputs
    """

    image_w, image_h = image_size
    scale = 1.0 if is_normalized(center_x, center_y, cutoff) else float(input_size)

    left = (center_x - width / 2) / scale * image_w
    top = (center_y - height / 2) / scale * image_h
    right = (center_x + width / 2) / scale * image_w
    bottom = (center_y + height / 2) / scale * image_h

    return Box(
        left=min(max(left, 0.0), float(image_w)),
        top=min(max(top, 0.0), float(image_h)),
        right=min(max(right, 0.0), float(image_w)),
        bottom=min(max(bottom, 0.0), float(image_h)),
    )


def to_detection(
    scored: ScoredCandidate,
    image_size: Tuple[int, int],
    labels: Sequence[str],
    input_size: int = 640,
    cutoff: float = 1.5,
) -> Detection:
    c = scored.candidate
    return Detection(
        label=resolve_label(labels, scored.class_id),
        confidence=scored.confidence,
        box=map_box(c.center_x, c.center_y, c.width, c.height, image_size, input_size, cutoff),
        class_id=scored.class_id,
    )


class MangrovePostprocessor:
    """
    Raw model output -> labeled, de-duplicated detections in image coordinates.

    Steps: decode (4 + C, N) grid -> best class per column -> confidence filter ->
    cx/cy/w/h to clamped xyxy -> class-agnostic NMS.

    The per-column helpers above (`filter_candidates`, `to_detection`) define the behavior;
    `process` is the vectorised equivalent used on the 8400-column output.
    """

    def __init__(self, cfg: PostConfig = PostConfig(), labels: Optional[Sequence[str]] = None):
        self.cfg = cfg
        self.labels = list(labels) if labels is not None else []
        self.decoder = TensorDecoder(cfg.layout)

    def process(self, preds: np.ndarray, image_size: Tuple[int, int]) -> List[Detection]:
        """
        Args:
            preds: model output for a single image, flat or shaped (1, 4 + C, N)
            image_size: (width, height) of the image the boxes should be mapped onto
        """

        grid = self.decoder.as_grid(preds)
        if LOGGER.isEnabledFor(logging.DEBUG):
            for i, cand in enumerate(itertools.islice(self.decoder.candidates(grid), 3)):
                LOGGER.debug(
                    "raw[%d] cx=%.4f cy=%.4f w=%.4f h=%.4f image=%dx%d",
                    i, cand.center_x, cand.center_y, cand.width, cand.height, image_size[0], image_size[1],
                )

        boxes, scores, class_ids = self._filter(grid)
        if scores.size == 0:
            LOGGER.debug("No candidates above confidence %.2f", self.cfg.confidence_threshold)
            return []

        xyxy = self._map_boxes(boxes, image_size)
        detections = [
            Detection(
                label=resolve_label(self.labels, int(cid)),
                confidence=float(score),
                box=Box(left=float(x1), top=float(y1), right=float(x2), bottom=float(y2)),
                class_id=int(cid),
            )
            for (x1, y1, x2, y2), score, cid in zip(xyxy, scores, class_ids)
        ]

        kept = non_max_suppression(detections, self.cfg.nms)
        LOGGER.debug("Candidates kept: %d after filter, %d after NMS", len(detections), len(kept))
        return kept

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #
    def _filter(self, grid: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        boxes = grid[0:4, :].T  # (N, 4) as cx, cy, w, h
        class_scores = grid[4:, :]  # (C, N)

        # np.argmax returns the first index among equal maxima.
        class_ids = np.argmax(class_scores, axis=0)
        scores = class_scores[class_ids, np.arange(class_scores.shape[1])]

        keep = scores > self.cfg.confidence_threshold
        return boxes[keep], scores[keep], class_ids[keep]

    def _map_boxes(self, boxes: np.ndarray, image_size: Tuple[int, int]) -> np.ndarray:
        image_w, image_h = image_size
        cx, cy, w, h = (boxes[:, k].astype(np.float64) for k in range(4))

        normalized = is_normalized(cx, cy, self.cfg.normalized_cutoff)
        scale = np.where(normalized, 1.0, float(self.cfg.input_size))

        x1 = (cx - w / 2) / scale * image_w
        y1 = (cy - h / 2) / scale * image_h
        x2 = (cx + w / 2) / scale * image_w
        y2 = (cy + h / 2) / scale * image_h

        x1 = np.clip(x1, 0, image_w)
        x2 = np.clip(x2, 0, image_w)
        y1 = np.clip(y1, 0, image_h)
        y2 = np.clip(y2, 0, image_h)
        return np.stack([x1, y1, x2, y2], axis=1)
