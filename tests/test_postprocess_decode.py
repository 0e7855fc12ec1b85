import dataclasses
import unittest

import numpy as np

from mangrove_kit.decode import TensorDecoder, TensorLayout
from mangrove_kit.errors import ShapeMismatchError
from mangrove_kit.postprocess import (
    MangrovePostprocessor,
    PostConfig,
    filter_candidates,
    select_best_class,
    to_detection,
)


def make_output(columns, num_classes: int, num_candidates: int) -> np.ndarray:
    """
    Build a (1, 4 + C, N) float64 output. `columns` is a list of (cx, cy, w, h, scores) for the
    first columns; the rest stay zero.
    """

    grid = np.zeros((4 + num_classes, num_candidates), dtype=np.float64)
    for i, (cx, cy, w, h, scores) in enumerate(columns):
        grid[0:4, i] = [cx, cy, w, h]
        grid[4:, i] = scores
    return grid[None, ...]


class TestTensorDecoder(unittest.TestCase):
    def test_columns_are_candidates_rows_are_channels(self) -> None:
        layout = TensorLayout(num_classes=2, num_candidates=3)
        # Row-major over channels: row 0 = cx for all candidates, row 1 = cy, ...
        flat = np.array(
            [
                10, 11, 12,  # cx
                20, 21, 22,  # cy
                30, 31, 32,  # w
                40, 41, 42,  # h
                0.1, 0.2, 0.3,  # class 0
                0.9, 0.8, 0.7,  # class 1
            ],
            dtype=np.float32,
        )
        cands = list(TensorDecoder(layout).candidates(flat))
        self.assertEqual(len(cands), 3)
        self.assertEqual((cands[1].center_x, cands[1].center_y, cands[1].width, cands[1].height), (11, 21, 31, 41))
        self.assertTrue(np.allclose(cands[2].class_scores, [0.3, 0.7]))

    def test_accepts_batched_shape(self) -> None:
        layout = TensorLayout(num_classes=2, num_candidates=3)
        preds = np.arange(18, dtype=np.float32).reshape(1, 6, 3)
        grid = TensorDecoder(layout).as_grid(preds)
        self.assertEqual(grid.shape, (6, 3))
        self.assertFalse(grid.flags.writeable)

    def test_candidates_are_lazy(self) -> None:
        layout = TensorLayout(num_classes=15, num_candidates=8400)
        gen = TensorDecoder(layout).candidates(np.zeros(layout.size, dtype=np.float32))
        first = next(gen)
        self.assertEqual(len(first.class_scores), 15)

    def test_wrong_element_count_raises(self) -> None:
        layout = TensorLayout(num_classes=15, num_candidates=8400)
        with self.assertRaises(ShapeMismatchError):
            TensorDecoder(layout).as_grid(np.zeros((1, 19, 8399), dtype=np.float32))

    def test_transposed_output_raises(self) -> None:
        layout = TensorLayout(num_classes=15, num_candidates=8400)
        with self.assertRaises(ShapeMismatchError):
            TensorDecoder(layout).as_grid(np.zeros((1, 8400, 19), dtype=np.float32))

    def test_batch_greater_than_one_raises(self) -> None:
        layout = TensorLayout(num_classes=1, num_candidates=5)
        with self.assertRaises(ShapeMismatchError):
            TensorDecoder(layout).as_grid(np.zeros((2, 5, 5), dtype=np.float32))


class TestBestClassSelection(unittest.TestCase):
    def test_first_maximum_wins(self) -> None:
        self.assertEqual(select_best_class([0.9, 0.9, 0.1]), (0, 0.9))

    def test_later_strictly_greater_wins(self) -> None:
        self.assertEqual(select_best_class([0.2, 0.6, 0.6, 0.7]), (3, 0.7))

    def test_threshold_is_exclusive(self) -> None:
        layout = TensorLayout(num_classes=2, num_candidates=2)
        preds = make_output([(0.5, 0.5, 0.1, 0.1, [0.5, 0.1]), (0.5, 0.5, 0.1, 0.1, [0.1, 0.51])], 2, 2)
        kept = list(filter_candidates(TensorDecoder(layout).candidates(preds), threshold=0.5))
        self.assertEqual(len(kept), 1)
        self.assertEqual(kept[0].class_id, 1)

    def test_higher_threshold_keeps_a_subset(self) -> None:
        rng = np.random.default_rng(7)
        layout = TensorLayout(num_classes=4, num_candidates=200)
        preds = rng.random(layout.size)
        decoder = TensorDecoder(layout)

        def passing(t):
            return {
                (s.candidate.center_x, s.candidate.center_y)
                for s in filter_candidates(decoder.candidates(preds), threshold=t)
            }

        low, high = passing(0.6), passing(0.9)
        self.assertTrue(high <= low)
        self.assertLess(len(high), len(low))

    def test_order_is_preserved(self) -> None:
        layout = TensorLayout(num_classes=1, num_candidates=3)
        preds = make_output([(1, 0, 0, 0, [0.9]), (2, 0, 0, 0, [0.7]), (3, 0, 0, 0, [0.95])], 1, 3)
        kept = list(filter_candidates(TensorDecoder(layout).candidates(preds)))
        self.assertEqual([s.candidate.center_x for s in kept], [1, 2, 3])


class TestPostConfig(unittest.TestCase):
    def test_config_is_immutable(self) -> None:
        cfg = PostConfig()
        with self.assertRaises(dataclasses.FrozenInstanceError):
            cfg.confidence_threshold = 0.1
        self.assertEqual(cfg.nms.iou_threshold, 0.5)
        self.assertEqual(cfg.layout.num_channels, 19)

    def test_invalid_thresholds_raise(self) -> None:
        with self.assertRaises(ValueError):
            PostConfig(confidence_threshold=1.5)
        with self.assertRaises(ValueError):
            PostConfig(iou_threshold=-0.1)


class TestMangrovePostprocessor(unittest.TestCase):
    def setUp(self) -> None:
        self.cfg = PostConfig(num_classes=3, num_candidates=6)
        self.labels = ["Avicennia marina", "Rhizophora apiculata", "Sonneratia alba"]

    def test_no_candidate_above_threshold_gives_empty_list(self) -> None:
        preds = make_output([(0.5, 0.5, 0.2, 0.2, [0.3, 0.2, 0.5])], 3, 6)
        post = MangrovePostprocessor(self.cfg, self.labels)
        self.assertEqual(post.process(preds, image_size=(640, 640)), [])

    def test_normalized_boxes_are_scaled_by_image_size(self) -> None:
        preds = make_output([(0.5, 0.5, 0.2, 0.4, [0.1, 0.9, 0.2])], 3, 6)
        dets = MangrovePostprocessor(self.cfg, self.labels).process(preds, image_size=(1000, 500))
        self.assertEqual(len(dets), 1)
        d = dets[0]
        self.assertEqual(d.label, "Rhizophora apiculata")
        self.assertEqual(d.class_id, 1)
        self.assertTrue(np.allclose(d.as_xyxy(), (400.0, 150.0, 600.0, 350.0)))

    def test_absolute_boxes_are_mapped_from_model_space(self) -> None:
        preds = make_output([(320, 160, 64, 32, [0.8, 0.1, 0.1])], 3, 6)
        dets = MangrovePostprocessor(self.cfg, self.labels).process(preds, image_size=(1280, 640))
        self.assertTrue(np.allclose(dets[0].as_xyxy(), (576.0, 144.0, 704.0, 176.0)))

    def test_boxes_are_clamped_to_image(self) -> None:
        preds = make_output([(0.05, 0.95, 0.3, 0.3, [0.8, 0.1, 0.1])], 3, 6)
        d = MangrovePostprocessor(self.cfg, self.labels).process(preds, image_size=(100, 200))[0]
        self.assertEqual(d.box.left, 0.0)
        self.assertEqual(d.box.bottom, 200.0)
        self.assertLessEqual(d.box.left, d.box.right)
        self.assertLessEqual(d.box.top, d.box.bottom)

    def test_class_outside_label_list_is_unknown(self) -> None:
        preds = make_output([(0.5, 0.5, 0.2, 0.2, [0.1, 0.1, 0.9])], 3, 6)
        d = MangrovePostprocessor(self.cfg, ["only one"]).process(preds, image_size=(640, 640))[0]
        self.assertEqual(d.label, "Unknown")

    def test_matches_per_candidate_path(self) -> None:
        rng = np.random.default_rng(3)
        cfg = PostConfig(num_classes=3, num_candidates=300, iou_threshold=1.0)
        grid = np.zeros((7, 300))
        grid[0:2, :150] = rng.random((2, 150))  # normalized centers
        grid[2:4, :150] = rng.random((2, 150)) * 0.3
        grid[0:2, 150:] = rng.random((2, 150)) * 600 + 20  # absolute centers
        grid[2:4, 150:] = rng.random((2, 150)) * 100
        grid[4:, :] = rng.random((3, 300))

        post = MangrovePostprocessor(cfg, self.labels)
        fast = post.process(grid, image_size=(800, 600))
        slow = [
            to_detection(s, (800, 600), self.labels, cfg.input_size, cfg.normalized_cutoff)
            for s in filter_candidates(post.decoder.candidates(grid), cfg.confidence_threshold)
        ]
        slow.sort(key=lambda d: -d.confidence)

        self.assertEqual(len(fast), len(slow))
        for a, b in zip(fast, slow):
            self.assertEqual(a.class_id, b.class_id)
            self.assertAlmostEqual(a.confidence, b.confidence)
            self.assertTrue(np.allclose(a.as_xyxy(), b.as_xyxy()))


if __name__ == "__main__":
    unittest.main()
