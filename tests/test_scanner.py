import tempfile
import unittest
from pathlib import Path

import numpy as np

from Mangrove_Scan.gate import Tag, TagGate, TaggingError
from Mangrove_Scan.history import ScanHistory
from Mangrove_Scan.policy import ConfidenceTier
from Mangrove_Scan.scanner import MangroveScanner, ScannerBusyError, ScanStatus
from mangrove_kit.engine import InferenceEngine
from mangrove_kit.errors import ImageDecodeError, ModelNotReadyError
from mangrove_kit.postprocess import PostConfig
from mangrove_kit.runtime import MangrovePipeline

CFG = PostConfig(num_classes=2, num_candidates=4)
LABELS = ["Rhizophora mucronata", "Avicennia marina"]


def single_box_output(confidence: float) -> np.ndarray:
    grid = np.zeros((6, 4), dtype=np.float64)
    grid[:, 0] = [320, 320, 128, 128, confidence, 0.0]
    return grid[None, ...]


class ScriptedBackend:
    def __init__(self, output: np.ndarray, on_infer=None):
        self.output = output
        self.on_infer = on_infer
        self.calls = 0

    def infer(self, blob: np.ndarray) -> np.ndarray:
        self.calls += 1
        if self.on_infer is not None:
            self.on_infer()
        return self.output


class FakeTagger:
    def __init__(self, tags=None, error=None):
        self.tags = tags or []
        self.error = error

    def get_tags(self, image_bytes):
        if self.error is not None:
            raise self.error
        return self.tags


def make_scanner(backend, **kwargs) -> MangroveScanner:
    pipe = MangrovePipeline(InferenceEngine(lambda: backend), labels=LABELS, post_cfg=CFG).load()
    return MangroveScanner(pipe, **kwargs)


class TestMangroveScanner(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.history = ScanHistory(Path(self.tmp.name) / "history" / "scans.jsonl")
        self.image = np.zeros((480, 800, 3), dtype=np.uint8)

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def test_high_confidence_is_saved(self) -> None:
        scanner = make_scanner(ScriptedBackend(single_box_output(0.82)), history=self.history)
        result = scanner.scan(self.image, latitude=10.3, longitude=123.9)
        self.assertIs(result.status, ScanStatus.DETECTED)
        self.assertIs(result.decision.tier, ConfidenceTier.HIGH)
        self.assertEqual(result.image_size, (640, 640))
        self.assertEqual(result.saved_to, self.history.path)
        records = self.history.read_all()
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0]["label"], "Rhizophora mucronata")
        self.assertEqual(records[0]["tier"], "high")
        for key, expected in {"left": 256.0, "top": 256.0, "right": 384.0, "bottom": 384.0}.items():
            self.assertAlmostEqual(records[0]["box"][key], expected)
        self.assertEqual(records[0]["latitude"], 10.3)

    def test_medium_confidence_is_saved_with_warning(self) -> None:
        scanner = make_scanner(ScriptedBackend(single_box_output(0.70)), history=self.history)
        result = scanner.scan(self.image)
        self.assertIs(result.decision.tier, ConfidenceTier.MEDIUM)
        self.assertTrue(result.decision.warning)
        self.assertEqual(len(self.history.read_all()), 1)

    def test_low_confidence_is_not_saved(self) -> None:
        scanner = make_scanner(ScriptedBackend(single_box_output(0.55)), history=self.history)
        result = scanner.scan(self.image)
        self.assertIs(result.status, ScanStatus.DETECTED)
        self.assertIs(result.decision.tier, ConfidenceTier.LOW)
        self.assertIsNone(result.saved_to)
        self.assertEqual(self.history.read_all(), [])

    def test_nothing_above_threshold_is_rejected(self) -> None:
        scanner = make_scanner(ScriptedBackend(single_box_output(0.40)), history=self.history)
        result = scanner.scan(self.image)
        self.assertIs(result.status, ScanStatus.NO_DETECTION)
        self.assertIs(result.decision.tier, ConfidenceTier.REJECTED)
        self.assertEqual(result.detections, ())
        self.assertFalse(self.history.path.exists())

    def test_detection_below_low_tier_is_not_surfaced(self) -> None:
        cfg = PostConfig(num_classes=2, num_candidates=4, confidence_threshold=0.3)
        backend = ScriptedBackend(single_box_output(0.40))
        pipe = MangrovePipeline(InferenceEngine(lambda: backend), labels=LABELS, post_cfg=cfg).load()
        self.assertEqual(len(pipe(self.image)), 1)

        result = MangroveScanner(pipe, history=self.history).scan(self.image)
        self.assertIs(result.status, ScanStatus.NO_DETECTION)
        self.assertIs(result.decision.tier, ConfidenceTier.REJECTED)
        self.assertIsNone(result.decision.detection)
        self.assertEqual(result.detections, ())
        self.assertFalse(self.history.path.exists())

    def test_gate_skips_inference(self) -> None:
        backend = ScriptedBackend(single_box_output(0.9))
        gate = TagGate(FakeTagger([Tag("car", 0.9)]))
        result = make_scanner(backend, gate=gate).scan(self.image)
        self.assertIs(result.status, ScanStatus.SKIPPED_BY_GATE)
        self.assertIsNone(result.decision)
        self.assertEqual(backend.calls, 0)

    def test_gate_failure_runs_inference(self) -> None:
        backend = ScriptedBackend(single_box_output(0.9))
        gate = TagGate(FakeTagger(error=TaggingError("timeout")))
        result = make_scanner(backend, gate=gate).scan(self.image)
        self.assertIs(result.status, ScanStatus.DETECTED)
        self.assertEqual(backend.calls, 1)
        self.assertEqual(result.gate.error, "timeout")

    def test_concurrent_scan_is_rejected(self) -> None:
        errors = []
        holder = {}

        def reenter() -> None:
            try:
                holder["scanner"].scan(self.image)
            except ScannerBusyError as exc:
                errors.append(exc)

        scanner = make_scanner(ScriptedBackend(single_box_output(0.9), on_infer=reenter))
        holder["scanner"] = scanner
        scanner.scan(self.image)
        self.assertEqual(len(errors), 1)
        self.assertFalse(scanner.busy)

    def test_busy_flag_released_after_error(self) -> None:
        scanner = make_scanner(ScriptedBackend(single_box_output(0.9)))
        with self.assertRaises(ImageDecodeError):
            scanner.scan(b"definitely not a jpeg")
        self.assertFalse(scanner.busy)
        self.assertIs(scanner.scan(self.image).status, ScanStatus.DETECTED)

    def test_unloaded_model_raises(self) -> None:
        pipe = MangrovePipeline(InferenceEngine(lambda: ScriptedBackend(single_box_output(0.9))), post_cfg=CFG)
        with self.assertRaises(ModelNotReadyError):
            MangroveScanner(pipe).scan(self.image)

    def test_scan_from_file(self) -> None:
        import cv2

        path = Path(self.tmp.name) / "leaf.jpg"
        cv2.imwrite(str(path), np.full((700, 500, 3), 90, dtype=np.uint8))
        scanner = make_scanner(ScriptedBackend(single_box_output(0.9)), history=self.history)
        result = scanner.scan(path)
        self.assertEqual(result.image_size, (640, 640))
        self.assertEqual(self.history.read_all()[0]["image"], str(path))


if __name__ == "__main__":
    unittest.main()
