from dataclasses import dataclass
import logging
from typing import Sequence, Tuple

import numpy as np

from .executor import HeadOutput
from .kernels import sigmoid

logger = logging.getLogger(__name__)


@dataclass
class DecodeConfig:
    """
    Thresholds for turning raw head outputs into candidates.
    """
    # Minimum per-class probability (objectness * class score).
    conf_threshold: float = 0.5
    # When > 0, cells with objectness <= this are dropped, and so is every
    # per-class probability <= this, whatever conf_threshold says.
    objectness_threshold: float = 0.0


@dataclass
class Candidates:
    """
    Decoded candidates as parallel arrays, in decode order
    (head, anchor, row, col, class).

    boxes are (N, 4) normalized [cx, cy, w, h].
    """

    boxes: np.ndarray
    scores: np.ndarray
    class_ids: np.ndarray
    objectness: np.ndarray

    @classmethod
    def empty(cls) -> "Candidates":
        return cls(
            boxes=np.empty((0, 4), dtype=np.float32),
            scores=np.empty((0,), dtype=np.float32),
            class_ids=np.empty((0,), dtype=np.int64),
            objectness=np.empty((0,), dtype=np.float32),
        )

    def __len__(self) -> int:
        return int(self.scores.shape[0])

    def take(self, idx: np.ndarray) -> "Candidates":
        return Candidates(self.boxes[idx], self.scores[idx], self.class_ids[idx], self.objectness[idx])

    @classmethod
    def concat(cls, parts: Sequence["Candidates"]) -> "Candidates":
        parts = [p for p in parts if len(p)]
        if not parts:
            return cls.empty()
        return cls(
            boxes=np.concatenate([p.boxes for p in parts]),
            scores=np.concatenate([p.scores for p in parts]),
            class_ids=np.concatenate([p.class_ids for p in parts]),
            objectness=np.concatenate([p.objectness for p in parts]),
        )


class DetectionDecoder:
    """
    Decode YOLO-style detection head outputs:

    Per head tensor (A, 5 + C, H, W), anchor a, cell (row, col):
    - cx = (col + sigmoid(tx)) / W,  cy = (row + sigmoid(ty)) / H
    - w = anchor_w * exp(tw) / input_width,  h = anchor_h * exp(th) / input_height
    - objectness = sigmoid(to)
    - p[k] = objectness * sigmoid(t_k)   (independent per class)

    One candidate is emitted per (anchor, cell, class) with p[k] >= conf_threshold.
    """

    def __init__(self, cfg: DecodeConfig, input_size: Tuple[int, int]):
        self.cfg = cfg
        # (width, height) of the network input, in pixels
        self.input_size = input_size

    def process(self, outputs: Sequence[HeadOutput]) -> Candidates:
        parts = [self._decode_head(out) for out in outputs]
        candidates = Candidates.concat(parts)
        logger.debug("Decoded %d candidates from %d heads", len(candidates), len(outputs))
        return candidates

    # ------------------------------------------------------------------ #
    # Helper internal
    # ------------------------------------------------------------------ #
    def _decode_head(self, out: HeadOutput) -> Candidates:
        p = out.tensor.data
        num_anchors, _, grid_h, grid_w = p.shape
        in_w, in_h = self.input_size
        anchors = np.asarray(out.head.anchors, dtype=np.float32).reshape(num_anchors, 2)

        objectness = sigmoid(p[:, 4])  # (A, H, W)
        class_scores = sigmoid(p[:, 5:])  # (A, C, H, W)
        probs = objectness[:, None] * class_scores

        # (A, H, W, C) so that nonzero() yields anchor, row, col, class order
        probs = np.transpose(probs, (0, 2, 3, 1))
        # compare in float64 so reported float32 scores never fall below the threshold
        mask = probs.astype(np.float64) >= float(self.cfg.conf_threshold)
        if self.cfg.objectness_threshold > 0:
            # Darknet zeroes any probability at or below the objectness threshold
            thresh = float(self.cfg.objectness_threshold)
            mask &= (objectness.astype(np.float64) > thresh)[..., None]
            mask &= probs.astype(np.float64) > thresh
        a_idx, rows, cols, cls = np.nonzero(mask)
        if a_idx.size == 0:
            return Candidates.empty()

        tx = p[a_idx, 0, rows, cols]
        ty = p[a_idx, 1, rows, cols]
        tw = p[a_idx, 2, rows, cols]
        th = p[a_idx, 3, rows, cols]

        cx = (cols + sigmoid(tx)) / grid_w
        cy = (rows + sigmoid(ty)) / grid_h
        with np.errstate(over="ignore"):
            w = anchors[a_idx, 0] * np.exp(tw) / in_w
            h = anchors[a_idx, 1] * np.exp(th) / in_h

        boxes = np.stack([cx, cy, w, h], axis=1).astype(np.float32)
        return Candidates(
            boxes=boxes,
            scores=probs[a_idx, rows, cols, cls].astype(np.float32),
            class_ids=cls.astype(np.int64),
            objectness=objectness[a_idx, rows, cols].astype(np.float32),
        )


def cxcywh_to_xyxy(boxes: np.ndarray) -> np.ndarray:
    cx, cy, w, h = boxes.T
    return np.stack([cx - w / 2, cy - h / 2, cx + w / 2, cy + h / 2], axis=1)


def xyxy_to_cxcywh(boxes: np.ndarray) -> np.ndarray:
    x1, y1, x2, y2 = boxes.T
    return np.stack([(x1 + x2) / 2, (y1 + y2) / 2, x2 - x1, y2 - y1], axis=1)


def clip_boxes(boxes: np.ndarray) -> np.ndarray:
    """Clip normalized cxcywh boxes to the [0, 1] frame."""
    if boxes.size == 0:
        return boxes
    return xyxy_to_cxcywh(np.clip(cxcywh_to_xyxy(boxes), 0.0, 1.0))

