from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np

from .types import Detection

# Darknet fills letterbox borders with mid gray.
PAD_VALUE = 0.5


@dataclass(frozen=True)
class LetterboxInfo:
    """
    Where the source image landed inside the network input.

    orig_size: (width, height) of the source image
    net_size: (width, height) of the network input
    content_size: (width, height) of the resized image inside the input
    """

    orig_size: Tuple[int, int]
    net_size: Tuple[int, int]
    content_size: Tuple[int, int]

    @property
    def offset(self) -> Tuple[float, float]:
        """(dx, dy) of the content's top-left corner, in network pixels."""
        return (
            float((self.net_size[0] - self.content_size[0]) // 2),
            float((self.net_size[1] - self.content_size[1]) // 2),
        )


def letterbox_size(orig_size: Tuple[int, int], net_size: Tuple[int, int]) -> Tuple[int, int]:
    """
    (width, height) of the source image scaled to fit inside the network input.

    Integer arithmetic as in Darknet, so the limiting side always fills the input exactly.
    """
    w, h = orig_size
    net_w, net_h = net_size
    if net_w * h <= net_h * w:
        return net_w, max(1, (h * net_w) // w)
    return max(1, (w * net_h) // h), net_h


def prepare_image(
    image_rgb: np.ndarray,
    new_shape: Tuple[int, int],
    letterbox: bool = True,
) -> Tuple[np.ndarray, LetterboxInfo]:
    """
    Resize (optionally letterboxed) an RGB HWC image to the network input.

    Args:
        image_rgb: (H, W, C) uint8 image, or float image already in [0, 1]
        new_shape: (width, height) of the network input
        letterbox: keep aspect ratio and pad with gray; otherwise stretch

    Returns:
        blob: (C, new_h, new_w) float32 in [0, 1]
        info: placement of the image inside the blob, for `correct_detections`
    """
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for prepare_image(). Install with `pip install opencv-python`.") from e

    if image_rgb is None or not hasattr(image_rgb, "shape"):
        raise TypeError("image_rgb must be a NumPy array.")
    if image_rgb.ndim == 2:
        image_rgb = image_rgb[:, :, None]
    if image_rgb.ndim != 3:
        raise ValueError(f"Expected image shape (H, W, C), got {getattr(image_rgb, 'shape', None)}")

    img = image_rgb.astype(np.float32)
    if np.issubdtype(image_rgb.dtype, np.integer):
        img /= 255.0

    h, w = img.shape[:2]
    new_w, new_h = new_shape
    channels = img.shape[2]

    if letterbox:
        resized_w, resized_h = letterbox_size((w, h), (new_w, new_h))
    else:
        resized_w, resized_h = new_w, new_h

    if (w, h) != (resized_w, resized_h):
        img = cv2.resize(img, (resized_w, resized_h), interpolation=cv2.INTER_LINEAR)
        if img.ndim == 2:
            img = img[:, :, None]

    canvas = np.full((new_h, new_w, channels), PAD_VALUE, dtype=np.float32)
    left = (new_w - resized_w) // 2
    top = (new_h - resized_h) // 2
    canvas[top : top + resized_h, left : left + resized_w] = img
    blob = np.ascontiguousarray(np.transpose(np.clip(canvas, 0.0, 1.0), (2, 0, 1)))

    info = LetterboxInfo(orig_size=(w, h), net_size=(new_w, new_h), content_size=(resized_w, resized_h))
    return blob, info


def correct_detections(detections: Sequence[Detection], info: LetterboxInfo) -> List[Detection]:
    """
    Map normalized boxes from the network frame back to the source image frame,
    clipped to [0, 1]. Order and scores are unchanged.
    """

    net_w, net_h = info.net_size
    content_w, content_h = info.content_size
    dx, dy = info.offset
    sx, sy = net_w / content_w, net_h / content_h

    out: List[Detection] = []
    for d in detections:
        x1, y1, x2, y2 = d.as_xyxy()
        x1 = min(max((x1 - dx / net_w) * sx, 0.0), 1.0)
        x2 = min(max((x2 - dx / net_w) * sx, 0.0), 1.0)
        y1 = min(max((y1 - dy / net_h) * sy, 0.0), 1.0)
        y2 = min(max((y2 - dy / net_h) * sy, 0.0), 1.0)
        out.append(
            Detection(
                x=(x1 + x2) / 2,
                y=(y1 + y2) / 2,
                w=x2 - x1,
                h=y2 - y1,
                class_id=d.class_id,
                probability=d.probability,
                objectness=d.objectness,
                label=d.label,
            )
        )
    return out
