from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from .decode import Candidates, cxcywh_to_xyxy


@dataclass
class NMSConfig:
    iou_threshold: float = 0.45
    # Cap on the merged, sorted result; None keeps everything.
    max_detections: Optional[int] = None


def box_iou(box: np.ndarray, others: np.ndarray) -> np.ndarray:
    """
    IoU of one xyxy box against an (N, 4) xyxy array.
    """

    xx1 = np.maximum(box[0], others[:, 0])
    yy1 = np.maximum(box[1], others[:, 1])
    xx2 = np.minimum(box[2], others[:, 2])
    yy2 = np.minimum(box[3], others[:, 3])

    w = np.maximum(0.0, xx2 - xx1)
    h = np.maximum(0.0, yy2 - yy1)
    inter = w * h
    area = max(0.0, float(box[2] - box[0])) * max(0.0, float(box[3] - box[1]))
    areas = np.maximum(0.0, others[:, 2] - others[:, 0]) * np.maximum(0.0, others[:, 3] - others[:, 1])
    union = area + areas - inter
    return np.divide(inter, union, out=np.zeros_like(inter, dtype=np.float64), where=union > 0)


def nms(boxes: np.ndarray, scores: np.ndarray, cfg: NMSConfig) -> np.ndarray:
    """
    Greedy NumPy NMS. Expects boxes shape (N,4) in xyxy and scores shape (N,).
    Returns indices of boxes to keep, best first.

    Ties in score keep input order (stable sort). A box is suppressed when its
    IoU with an already kept box is >= iou_threshold, so kept boxes overlap
    each other strictly less than the threshold.
    """

    if boxes.size == 0:
        return np.empty((0,), dtype=np.int64)

    boxes = boxes.astype(np.float64, copy=False)
    order = np.argsort(-scores.astype(np.float64), kind="stable")
    keep = []

    while order.size > 0:
        i = order[0]
        keep.append(i)
        iou = box_iou(boxes[i], boxes[order[1:]])
        inds = np.where(iou < cfg.iou_threshold)[0]
        order = order[inds + 1]

    return np.array(keep, dtype=np.int64)


def class_nms(candidates: Candidates, cfg: NMSConfig) -> Candidates:
    """
    Per-class NMS, then merge by descending score.

    Classes are processed in ascending id order; the merge is a stable sort, so
    equal scores keep class-processing order.
    """

    if len(candidates) == 0:
        return candidates

    boxes_xyxy = cxcywh_to_xyxy(candidates.boxes)
    kept: List[np.ndarray] = []
    for cls in np.unique(candidates.class_ids):
        idx = np.where(candidates.class_ids == cls)[0]
        keep_local = nms(boxes_xyxy[idx], candidates.scores[idx], cfg)
        kept.append(idx[keep_local])

    merged = np.concatenate(kept)
    order = np.argsort(-candidates.scores[merged].astype(np.float64), kind="stable")
    merged = merged[order]
    if cfg.max_detections is not None and merged.size > cfg.max_detections:
        merged = merged[: cfg.max_detections]
    return candidates.take(merged)
