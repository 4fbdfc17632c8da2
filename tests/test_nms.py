import unittest

import numpy as np

from darknet_kit.decode import Candidates, cxcywh_to_xyxy
from darknet_kit.nms import NMSConfig, box_iou, class_nms, nms


def candidates(rows) -> Candidates:
    """rows: (cx, cy, w, h, score, class_id)"""
    arr = np.array(rows, dtype=np.float64)
    return Candidates(
        boxes=arr[:, :4],
        scores=arr[:, 4].astype(np.float32),
        class_ids=arr[:, 5].astype(np.int64),
        objectness=np.ones(len(rows), dtype=np.float32),
    )


class TestNMS(unittest.TestCase):
    def test_overlapping_pair_keeps_best(self) -> None:
        # second box sits inside the first with 90% of its area: IoU = 0.9
        c = candidates([
            [0.5, 0.5, 0.5, 0.45, 0.6, 0],
            [0.5, 0.5, 0.5, 0.5, 0.9, 0],
        ])
        xyxy = cxcywh_to_xyxy(c.boxes)
        self.assertAlmostEqual(float(box_iou(xyxy[0], xyxy[1:])[0]), 0.9, places=6)
        kept = class_nms(c, NMSConfig(iou_threshold=0.5))
        self.assertEqual(len(kept), 1)
        self.assertAlmostEqual(float(kept.scores[0]), 0.9, places=6)

    def test_other_classes_are_not_suppressed(self) -> None:
        c = candidates([
            [0.5, 0.5, 0.5, 0.5, 0.9, 0],
            [0.5, 0.5, 0.5, 0.5, 0.8, 1],
        ])
        kept = class_nms(c, NMSConfig(iou_threshold=0.5))
        self.assertEqual(kept.class_ids.tolist(), [0, 1])

    def test_threshold_is_exclusive_for_kept_pairs(self) -> None:
        # IoU exactly 0.5 with threshold 0.5 -> suppressed
        c = candidates([
            [0.25, 0.5, 0.5, 0.5, 0.9, 0],
            [0.25, 0.5, 0.25, 0.5, 0.8, 0],
        ])
        self.assertEqual(len(class_nms(c, NMSConfig(iou_threshold=0.5))), 1)
        self.assertEqual(len(class_nms(c, NMSConfig(iou_threshold=0.51))), 2)

    def test_ties_keep_decode_order(self) -> None:
        boxes = np.array([[0, 0, 1, 1], [0, 0, 1, 1], [2, 2, 3, 3]], dtype=np.float64)
        scores = np.array([0.7, 0.7, 0.7], dtype=np.float32)
        keep = nms(boxes, scores, NMSConfig(iou_threshold=0.5))
        self.assertEqual(keep.tolist(), [0, 2])

    def test_merge_sorted_and_stable_across_classes(self) -> None:
        c = candidates([
            [0.2, 0.2, 0.1, 0.1, 0.5, 1],
            [0.8, 0.8, 0.1, 0.1, 0.7, 0],
            [0.5, 0.5, 0.1, 0.1, 0.5, 0],
            [0.2, 0.8, 0.1, 0.1, 0.9, 2],
        ])
        kept = class_nms(c, NMSConfig(iou_threshold=0.5))
        self.assertEqual(kept.scores.tolist(), sorted(kept.scores.tolist(), reverse=True))
        # the 0.5 tie: class 0 processed before class 1
        self.assertEqual(kept.class_ids.tolist(), [2, 0, 0, 1])

    def test_max_detections(self) -> None:
        c = candidates([[0.1 * i + 0.05, 0.5, 0.05, 0.05, 0.1 * i, 0] for i in range(1, 6)])
        kept = class_nms(c, NMSConfig(iou_threshold=0.5, max_detections=2))
        self.assertEqual(len(kept), 2)
        self.assertAlmostEqual(float(kept.scores[0]), 0.5, places=6)

    def test_tiny_boxes_still_suppressed(self) -> None:
        # near-zero widths, as produced by a very negative tw; IoU = 1 / 1.1
        c = candidates([
            [0.5, 0.5, 1e-13, 1.0, 0.9, 0],
            [0.5, 0.5, 1.1e-13, 1.0, 0.6, 0],
        ])
        xyxy = cxcywh_to_xyxy(c.boxes)
        self.assertAlmostEqual(float(box_iou(xyxy[0], xyxy[1:])[0]), 1 / 1.1, places=2)
        kept = class_nms(c, NMSConfig(iou_threshold=0.5))
        self.assertEqual(len(kept), 1)
        self.assertAlmostEqual(float(kept.scores[0]), 0.9, places=6)

    def test_degenerate_boxes_have_zero_iou(self) -> None:
        box = np.array([0.5, 0.5, 0.5, 0.5])
        self.assertEqual(box_iou(box, box[None, :]).tolist(), [0.0])

    def test_empty(self) -> None:
        self.assertEqual(nms(np.empty((0, 4)), np.empty((0,)), NMSConfig()).size, 0)
        self.assertEqual(len(class_nms(Candidates.empty(), NMSConfig())), 0)


if __name__ == "__main__":
    unittest.main()
