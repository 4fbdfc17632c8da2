import unittest

import numpy as np

from darknet_kit.decode import Candidates, DecodeConfig, DetectionDecoder, clip_boxes
from darknet_kit.executor import HeadOutput
from darknet_kit.layers import DetectionHeadSpec
from darknet_kit.tensor import TensorBuffer


def logit(p: float) -> float:
    return float(np.log(p / (1 - p)))


def head_output(raw: np.ndarray, anchors, num_classes: int) -> HeadOutput:
    head = DetectionHeadSpec(anchors=anchors, num_classes=num_classes)
    return HeadOutput(layer_index=0, head=head, tensor=TensorBuffer(raw))


class TestDetectionDecoder(unittest.TestCase):
    def test_decode_single_cell(self) -> None:
        # 1 anchor, 2 classes, 2x3 grid; only cell (row=1, col=2) is confident
        raw = np.full((1, 7, 2, 3), -20.0, dtype=np.float32)
        raw[0, 0, 1, 2] = 0.0  # sigmoid -> 0.5
        raw[0, 1, 1, 2] = 0.0
        raw[0, 2, 1, 2] = np.log(2.0)  # exp -> 2
        raw[0, 3, 1, 2] = 0.0  # exp -> 1
        raw[0, 4, 1, 2] = logit(0.8)
        raw[0, 5, 1, 2] = logit(0.9)
        raw[0, 6, 1, 2] = logit(0.25)

        decoder = DetectionDecoder(DecodeConfig(conf_threshold=0.5), input_size=(32, 16))
        c = decoder.process([head_output(raw, ((8, 4),), 2)])
        self.assertEqual(len(c), 1)
        cx, cy, w, h = c.boxes[0]
        self.assertAlmostEqual(float(cx), (2 + 0.5) / 3, places=5)
        self.assertAlmostEqual(float(cy), (1 + 0.5) / 2, places=5)
        self.assertAlmostEqual(float(w), 8 * 2 / 32, places=5)
        self.assertAlmostEqual(float(h), 4 * 1 / 16, places=5)
        self.assertEqual(int(c.class_ids[0]), 0)
        self.assertAlmostEqual(float(c.scores[0]), 0.8 * 0.9, places=5)
        self.assertAlmostEqual(float(c.objectness[0]), 0.8, places=5)

    def test_classes_are_independent(self) -> None:
        # both classes pass the threshold for the same box (multi-label)
        raw = np.zeros((1, 7, 1, 1), dtype=np.float32)
        raw[0, 4] = logit(0.95)
        raw[0, 5] = logit(0.9)
        raw[0, 6] = logit(0.8)
        decoder = DetectionDecoder(DecodeConfig(conf_threshold=0.5), input_size=(10, 10))
        c = decoder.process([head_output(raw, ((1, 1),), 2)])
        self.assertEqual(c.class_ids.tolist(), [0, 1])
        self.assertTrue(np.allclose(c.scores, [0.95 * 0.9, 0.95 * 0.8], atol=1e-5))

    def test_decode_order_is_anchor_row_col_class(self) -> None:
        raw = np.full((2, 6, 2, 2), 5.0, dtype=np.float32)  # everything confident
        decoder = DetectionDecoder(DecodeConfig(conf_threshold=0.5), input_size=(4, 4))
        c = decoder.process([head_output(raw, ((1, 1), (2, 2)), 1)])
        self.assertEqual(len(c), 8)
        # anchor 0 boxes first (width 1*e^5/4), then anchor 1
        self.assertTrue(np.all(c.boxes[:4, 2] < c.boxes[4:, 2]))
        # within an anchor: (row 0, col 0), (row 0, col 1), (row 1, col 0), ...
        self.assertTrue(c.boxes[0, 0] < c.boxes[1, 0])
        self.assertTrue(c.boxes[1, 1] < c.boxes[2, 1])

    def test_threshold_and_objectness_floor(self) -> None:
        raw = np.zeros((1, 6, 1, 3), dtype=np.float32)
        raw[0, 4, 0, 0] = logit(0.6)
        raw[0, 5, 0, 0] = logit(0.99)
        raw[0, 4, 0, 1] = logit(0.99)
        raw[0, 5, 0, 1] = logit(0.8)
        raw[0, 4, 0, 2] = logit(0.99)
        raw[0, 5, 0, 2] = logit(0.7)
        decoder = DetectionDecoder(DecodeConfig(conf_threshold=0.5), input_size=(3, 1))
        self.assertEqual(len(decoder.process([head_output(raw, ((1, 1),), 1)])), 3)
        # cell 0 fails on objectness, cell 2 on probability (0.693 <= 0.7)
        decoder = DetectionDecoder(DecodeConfig(conf_threshold=0.5, objectness_threshold=0.7), input_size=(3, 1))
        c = decoder.process([head_output(raw, ((1, 1),), 1)])
        self.assertEqual(len(c), 1)
        self.assertAlmostEqual(float(c.objectness[0]), 0.99, places=5)
        self.assertAlmostEqual(float(c.scores[0]), 0.99 * 0.8, places=5)
        decoder = DetectionDecoder(DecodeConfig(conf_threshold=0.95), input_size=(3, 1))
        self.assertEqual(len(decoder.process([head_output(raw, ((1, 1),), 1)])), 0)

    def test_heads_concatenate_in_order(self) -> None:
        a = np.full((1, 6, 1, 1), 5.0, dtype=np.float32)
        b = np.full((1, 6, 1, 1), 4.0, dtype=np.float32)
        decoder = DetectionDecoder(DecodeConfig(conf_threshold=0.1), input_size=(1, 1))
        c = decoder.process([head_output(a, ((1, 1),), 1), head_output(b, ((1, 1),), 1)])
        self.assertEqual(len(c), 2)
        self.assertGreater(float(c.scores[0]), float(c.scores[1]))
        self.assertEqual(len(Candidates.concat([])), 0)

    def test_clip_boxes(self) -> None:
        boxes = np.array([[0.05, 0.5, 0.3, 0.2], [0.5, 0.5, 0.2, 0.2]])
        clipped = clip_boxes(boxes)
        self.assertTrue(np.allclose(clipped[0], [0.1, 0.5, 0.2, 0.2]))
        self.assertTrue(np.allclose(clipped[1], boxes[1]))


if __name__ == "__main__":
    unittest.main()
