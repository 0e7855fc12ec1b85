from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np

from mangrove_kit.errors import ModelNotReadyError
from mangrove_kit.preprocess import center_crop_square, decode_image, encode_jpeg, read_image
from mangrove_kit.runtime import MangrovePipeline
from mangrove_kit.types import Detection

from .gate import GateResult, TagGate
from .history import ScanHistory, record_from_decision
from .policy import ScanDecision, TierCutPoints, decide

LOGGER = logging.getLogger(__name__)

ImageInput = Union[str, Path, bytes, np.ndarray]


class ScannerBusyError(RuntimeError):
    """A scan was started while another one was still running."""


class ScanStatus(str, Enum):
    SKIPPED_BY_GATE = "skipped_by_gate"
    NO_DETECTION = "no_detection"
    DETECTED = "detected"


@dataclass(frozen=True)
class ScanResult:
    status: ScanStatus
    detections: Tuple[Detection, ...]
    decision: Optional[ScanDecision]
    # (width, height) of the processed image the boxes refer to.
    image_size: Tuple[int, int]
    gate: GateResult
    saved_to: Optional[Path] = None


class MangroveScanner:
    """
    One scan = decode -> square crop -> tag gate -> detection -> tier decision -> history.

    Only one scan may run at a time; a second concurrent call raises `ScannerBusyError`
    instead of touching the inference engine.
    """

    def __init__(
        self,
        pipeline: MangrovePipeline,
        *,
        gate: Optional[TagGate] = None,
        history: Optional[ScanHistory] = None,
        cut_points: TierCutPoints = TierCutPoints(),
        square_crop: bool = True,
    ) -> None:
        self.pipeline = pipeline
        self.gate = gate or TagGate()
        self.history = history
        self.cut_points = cut_points
        self.square_crop = square_crop
        self._busy = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    def scan(
        self,
        image: ImageInput,
        *,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> ScanResult:
        if not self._busy.acquire(blocking=False):
            raise ScannerBusyError("A scan is already in progress")
        try:
            return self._scan(image, latitude=latitude, longitude=longitude)
        finally:
            self._busy.release()

    def _scan(self, image: ImageInput, *, latitude: Optional[float], longitude: Optional[float]) -> ScanResult:
        if not self.pipeline.is_ready:
            raise ModelNotReadyError("Model not loaded. Call load() before scanning.")

        image_bgr = _load_image(image)
        if self.square_crop:
            image_bgr = center_crop_square(image_bgr, self.pipeline.post_cfg.input_size)
        h, w = image_bgr.shape[:2]

        # Without a tagger the gate always passes; skip the JPEG encode.
        gate_result = self.gate.check(encode_jpeg(image_bgr)) if self.gate.tagger is not None else GateResult(passed=True)
        if not gate_result.passed:
            return ScanResult(
                status=ScanStatus.SKIPPED_BY_GATE,
                detections=(),
                decision=None,
                image_size=(w, h),
                gate=gate_result,
            )

        detections = tuple(self.pipeline(image_bgr))
        decision = decide(detections, self.cut_points)
        LOGGER.info("Scan decision: %s (%d detections)", decision.tier.value, len(detections))

        saved_to = None
        if decision.persist and self.history is not None:
            record = record_from_decision(
                decision,
                image=str(image) if isinstance(image, (str, Path)) else None,
                latitude=latitude,
                longitude=longitude,
            )
            try:
                saved_to = self.history.append(record)
            except OSError as exc:
                LOGGER.warning("Unable to save scan to history %s: %s", self.history.path, exc)

        return ScanResult(
            status=ScanStatus.DETECTED if decision.accepted else ScanStatus.NO_DETECTION,
            # A rejected scan surfaces nothing, same as an empty result.
            detections=detections if decision.surfaced else (),
            decision=decision,
            image_size=(w, h),
            gate=gate_result,
            saved_to=saved_to,
        )


def _load_image(image: ImageInput) -> np.ndarray:
    if isinstance(image, np.ndarray):
        return image
    if isinstance(image, (bytes, bytearray)):
        return decode_image(bytes(image))
    return read_image(image)
