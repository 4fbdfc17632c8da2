from __future__ import annotations

from typing import Dict, Iterable, List, Tuple

import numpy as np

from .types import Detection

_RAMP = ((1, 0, 1), (0, 0, 1), (0, 1, 1), (0, 1, 0), (1, 1, 0), (1, 0, 0))


def _color_for_class_id(class_id: int, num_classes: int) -> Tuple[int, int, int]:
    """
    Deterministic BGR color for a class id (OpenCV expects BGR), using
    Darknet's class color ramp.
    """

    offset = (class_id * 123457) % max(num_classes, 1)
    ratio = offset / max(num_classes, 1) * (len(_RAMP) - 1)
    i, j = int(np.floor(ratio)), int(np.ceil(ratio))
    ratio -= i
    # _RAMP rows are read as (b, g, r) channel weights
    bgr = [(1 - ratio) * _RAMP[i][c] + ratio * _RAMP[j][c] for c in (0, 1, 2)]
    return tuple(int(round(v * 255)) for v in bgr)




Box = Tuple[int, int, int, int]


def _pixel_box(det: Detection, width: int, height: int) -> Box:
    x1, y1, x2, y2 = det.as_xyxy()
    left = min(max(int(x1 * width), 0), width - 1)
    right = min(max(int(x2 * width), 0), width - 1)
    top = min(max(int(y1 * height), 0), height - 1)
    bottom = min(max(int(y2 * height), 0), height - 1)
    return left, top, right, bottom


def _group_by_box(detections: Iterable[Detection], width: int, height: int) -> Dict[Box, List[Detection]]:
    # Darknet prints every class of one box in a single label
    groups: Dict[Box, List[Detection]] = {}
    for det in detections:
        groups.setdefault(_pixel_box(det, width, height), []).append(det)
    return groups


def _draw_label(out: np.ndarray, text: str, anchor: Tuple[int, int], color, font_scale: float) -> None:
    import cv2  # type: ignore

    h, w = out.shape[:2]
    left, top = anchor
    (tw, th), baseline = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, font_scale, 1)
    label_h = th + baseline
    # above the box when there is room, else just inside its top edge
    y0 = top - label_h if top - label_h >= 0 else top
    x1, y1 = min(left + tw, w - 1), min(y0 + label_h, h - 1)
    cv2.rectangle(out, (left, y0), (x1, y1), color, thickness=-1)
    cv2.putText(out, text, (left, min(y0 + th, h - 1)), cv2.FONT_HERSHEY_SIMPLEX, font_scale, (0, 0, 0), 1, cv2.LINE_AA)


def draw_detections(
    image_bgr: np.ndarray,
    detections: Iterable[Detection],
    *,
    show_score: bool = True,
    num_classes: int = 80,
    font_scale: float = 0.5,
) -> np.ndarray:
    """
    Draw detections on a copy of an OpenCV BGR image, the way Darknet's
    `draw_detections` does: one box per distinct box, colored by its best
    class, line width proportional to image height, and a label listing
    every class found for that box.
    """

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for draw_detections(). Install with `pip install opencv-python`.") from e

    if image_bgr is None or not hasattr(image_bgr, "shape"):
        raise TypeError("image_bgr must be a NumPy array (BGR).")
    if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")

    out = image_bgr.copy()
    h, w = out.shape[:2]
    thickness = max(1, int(h * 0.006))

    for (left, top, right, bottom), dets in _group_by_box(detections, w, h).items():
        best = max(dets, key=lambda d: d.probability)
        color = _color_for_class_id(best.class_id, num_classes)
        cv2.rectangle(out, (left, top), (right, bottom), color, thickness=thickness)

        if show_score:
            text = ", ".join(f"{d.name} {d.probability:.2f}" for d in dets)
        else:
            text = ", ".join(d.name for d in dets)
        _draw_label(out, text, (left, top), color, font_scale)

    return out
