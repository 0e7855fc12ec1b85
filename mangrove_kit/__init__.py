"""
Post-processing kit for the mangrove species YOLOv8 detector.

Turns the raw (1, 4 + C, N) output of the detection head into labeled, de-duplicated
boxes in image coordinates. Core decoding and NMS need only NumPy; preprocessing uses
OpenCV; inference runtimes live in `mangrove_kit.backends` and are imported lazily.
"""

from .types import Box, Candidate, Detection, ScoredCandidate
from .errors import ImageDecodeError, MangroveKitError, ModelLoadError, ModelNotReadyError, ShapeMismatchError
from .decode import TensorDecoder, TensorLayout
from .nms import NMSConfig, iou, nms, non_max_suppression
from .postprocess import (
    MangrovePostprocessor,
    PostConfig,
    filter_candidates,
    is_normalized,
    map_box,
    select_best_class,
    to_detection,
)
from .labels import load_labels, read_labels
from .engine import InferenceEngine
from .runtime import MangrovePipeline, load_pipeline, resolve_path

__all__ = [
    "Box",
    "Candidate",
    "Detection",
    "ScoredCandidate",
    "ImageDecodeError",
    "MangroveKitError",
    "ModelLoadError",
    "ModelNotReadyError",
    "ShapeMismatchError",
    "TensorDecoder",
    "TensorLayout",
    "NMSConfig",
    "iou",
    "nms",
    "non_max_suppression",
    "MangrovePostprocessor",
    "PostConfig",
    "filter_candidates",
    "is_normalized",
    "map_box",
    "select_best_class",
    "to_detection",
    "load_labels",
    "read_labels",
    "InferenceEngine",
    "MangrovePipeline",
    "load_pipeline",
    "resolve_path",
]
