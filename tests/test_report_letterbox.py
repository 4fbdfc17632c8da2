import importlib.util
import json
import tempfile
import unittest
from pathlib import Path

import numpy as np

from darknet_kit.letterbox import LetterboxInfo, correct_detections, letterbox_size, prepare_image
from darknet_kit.report import format_json, format_text, write_report
from darknet_kit.types import Detection
from darknet_kit.visualize import _group_by_box, _pixel_box, draw_detections

HAS_CV2 = importlib.util.find_spec("cv2") is not None

DOG = Detection(x=0.5, y=0.25, w=0.5, h=0.125, class_id=16, probability=0.9912, objectness=0.995, label="dog")
UNNAMED = Detection(x=0.75, y=0.5, w=0.25, h=0.5, class_id=3, probability=0.5, objectness=0.7)


class TestReport(unittest.TestCase):
    def test_format_text(self) -> None:
        text = format_text([DOG, UNNAMED])
        self.assertEqual(
            text.splitlines(),
            [
                "dog\t99.12%\tx: 0.5\ty: 0.25\tw: 0.5\th: 0.125",
                "3\t50.00%\tx: 0.75\ty: 0.5\tw: 0.25\th: 0.5",
            ],
        )
        self.assertEqual(format_text([]), "")

    def test_format_json(self) -> None:
        payload = json.loads(format_json([DOG]))
        self.assertEqual(payload[0]["label"], "dog")
        self.assertEqual(payload[0]["class_id"], 16)
        self.assertAlmostEqual(payload[0]["probability"], 0.9912)

    def test_write_report(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = write_report(Path(tmp) / "nested" / "out.json", [DOG, UNNAMED], "json")
            self.assertEqual(len(json.loads(path.read_text(encoding="utf-8"))), 2)
            with self.assertRaises(ValueError):
                write_report(Path(tmp) / "out.xml", [DOG], "xml")


class TestLetterboxSize(unittest.TestCase):
    def test_limiting_side_fills_input(self) -> None:
        self.assertEqual(letterbox_size((16, 8), (8, 8)), (8, 4))
        self.assertEqual(letterbox_size((8, 16), (8, 8)), (4, 8))
        self.assertEqual(letterbox_size((4999, 3000), (416, 416)), (416, 249))
        self.assertEqual(letterbox_size((3000, 4999), (416, 416)), (249, 416))
        for net in (320, 416, 608):
            for w in range(net + 1, 5000, 7):
                with self.subTest(w=w, net=net):
                    self.assertEqual(letterbox_size((w, 100), (net, net))[0], net)

    def test_never_collapses_to_zero(self) -> None:
        self.assertEqual(letterbox_size((10000, 1), (416, 416)), (416, 1))


class TestCorrectDetections(unittest.TestCase):
    def test_maps_back_through_letterbox(self) -> None:
        # 16x8 source into an 8x8 input: content 8x4, two gray rows above and below
        info = LetterboxInfo(orig_size=(16, 8), net_size=(8, 8), content_size=(8, 4))
        self.assertEqual(info.offset, (0.0, 2.0))
        det = Detection(x=0.5, y=0.5, w=0.5, h=0.25, class_id=0, probability=0.8, objectness=0.9)
        (out,) = correct_detections([det], info)
        self.assertAlmostEqual(out.x, 0.5)
        self.assertAlmostEqual(out.w, 0.5)
        self.assertAlmostEqual(out.y, 0.5)
        self.assertAlmostEqual(out.h, 0.5)
        self.assertEqual(out.probability, det.probability)

    def test_boxes_in_padding_are_clipped(self) -> None:
        info = LetterboxInfo(orig_size=(16, 8), net_size=(8, 8), content_size=(8, 4))
        det = Detection(x=0.5, y=0.1, w=0.2, h=0.2, class_id=0, probability=0.8, objectness=0.9)
        (out,) = correct_detections([det], info)
        x1, y1, x2, y2 = out.as_xyxy()
        self.assertGreaterEqual(y1, 0.0)
        self.assertAlmostEqual(y1, 0.0)
        self.assertAlmostEqual(y2, 0.0)

    def test_identity_without_letterbox(self) -> None:
        info = LetterboxInfo(orig_size=(20, 10), net_size=(8, 8), content_size=(8, 8))
        (out,) = correct_detections([DOG], info)
        self.assertAlmostEqual(out.x, DOG.x)
        self.assertAlmostEqual(out.h, DOG.h)
        self.assertEqual(out.label, "dog")


class TestDrawingLayout(unittest.TestCase):
    def test_classes_of_one_box_share_a_label(self) -> None:
        cat = Detection(x=DOG.x, y=DOG.y, w=DOG.w, h=DOG.h, class_id=15, probability=0.6, objectness=0.995, label="cat")
        groups = _group_by_box([DOG, UNNAMED, cat], 32, 32)
        self.assertEqual(len(groups), 2)
        self.assertEqual([d.label for d in groups[_pixel_box(DOG, 32, 32)]], ["dog", "cat"])

    def test_pixel_box_is_clipped(self) -> None:
        det = Detection(x=0.0, y=1.0, w=0.5, h=0.5, class_id=0, probability=0.5, objectness=0.5)
        self.assertEqual(_pixel_box(det, 10, 20), (0, 15, 2, 19))


@unittest.skipIf(not HAS_CV2, "OpenCV not installed")
class TestImageHelpers(unittest.TestCase):
    def test_prepare_image_letterbox(self) -> None:
        image = np.full((8, 16, 3), 255, dtype=np.uint8)
        blob, info = prepare_image(image, (8, 8))
        self.assertEqual(blob.shape, (3, 8, 8))
        self.assertEqual(blob.dtype, np.float32)
        self.assertEqual(info.content_size, (8, 4))
        self.assertTrue(np.allclose(blob[:, :2], 0.5))
        self.assertTrue(np.allclose(blob[:, 2:6], 1.0))
        self.assertTrue(np.allclose(blob[:, 6:], 0.5))

    def test_prepare_image_stretch(self) -> None:
        image = np.full((8, 16, 3), 255, dtype=np.uint8)
        blob, info = prepare_image(image, (8, 8), letterbox=False)
        self.assertTrue(np.allclose(blob, 1.0))
        self.assertEqual(info.offset, (0.0, 0.0))

    def test_draw_detections_returns_copy(self) -> None:
        image = np.zeros((32, 32, 3), dtype=np.uint8)
        out = draw_detections(image, [DOG], num_classes=80)
        self.assertEqual(out.shape, image.shape)
        self.assertFalse(np.any(image))
        self.assertTrue(np.any(out))
        with self.assertRaises(ValueError):
            draw_detections(np.zeros((4, 4), dtype=np.uint8), [DOG])


if __name__ == "__main__":
    unittest.main()
