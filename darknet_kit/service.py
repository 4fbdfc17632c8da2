from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import List, Optional, Sequence, Union

import numpy as np

from .cfg import load_network
from .decode import DecodeConfig, DetectionDecoder, clip_boxes
from .errors import ShapeError
from .executor import ForwardExecutor
from .metadata import load_class_names
from .network import Network
from .nms import NMSConfig, class_nms
from .tensor import TensorBuffer
from .types import Detection

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class InferenceRequest:
    """
    One inference call.

    image: (channels, height, width) buffer with values in [0, 1], already
    sized to the network input.
    """

    image: Union[TensorBuffer, np.ndarray]
    confidence_threshold: float = 0.5
    iou_threshold: float = 0.45
    objectness_threshold: float = 0.0
    max_detections: Optional[int] = None

    def __post_init__(self) -> None:
        for name in ("confidence_threshold", "iou_threshold", "objectness_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be in [0, 1], got {value}")
        if self.max_detections is not None and self.max_detections < 1:
            raise ValueError("max_detections must be >= 1")


class InferenceService:
    """
    Network -> forward pass -> decode -> per-class NMS -> sorted detections.

    The service holds only the read-only Network; every `infer` call allocates
    its own intermediate buffers, so one service can serve concurrent calls.
    """

    def __init__(self, network: Network):
        self.network = network
        self._executor = ForwardExecutor(network)

    def infer(self, request: InferenceRequest) -> List[Detection]:
        net = self.network
        image = request.image
        dims = image.dims if isinstance(image, TensorBuffer) else tuple(np.shape(image))
        if dims != net.input_shape:
            raise ShapeError("input image shape", expected=net.input_shape, actual=dims)
        if not isinstance(image, TensorBuffer):
            image = TensorBuffer(image)

        outputs = self._executor.run(image)

        decoder = DetectionDecoder(
            DecodeConfig(
                conf_threshold=request.confidence_threshold,
                objectness_threshold=request.objectness_threshold,
            ),
            input_size=(net.input_width, net.input_height),
        )
        candidates = decoder.process(outputs)
        if len(candidates) == 0:
            return []

        # Boxes are clipped before suppression so reported boxes are the ones NMS compared.
        candidates = replace(candidates, boxes=clip_boxes(candidates.boxes.astype(np.float64)))
        kept = class_nms(
            candidates,
            NMSConfig(iou_threshold=request.iou_threshold, max_detections=request.max_detections),
        )
        logger.debug("NMS kept %d of %d candidates", len(kept), len(candidates))

        return [
            Detection(
                x=float(cx),
                y=float(cy),
                w=float(w),
                h=float(h),
                class_id=int(cls_id),
                probability=float(score),
                objectness=float(obj),
                label=net.class_name(int(cls_id)),
            )
            for (cx, cy, w, h), score, cls_id, obj in zip(kept.boxes, kept.scores, kept.class_ids, kept.objectness)
        ]

    def __call__(self, image: Union[TensorBuffer, np.ndarray], **kwargs) -> List[Detection]:
        return self.infer(InferenceRequest(image=image, **kwargs))


def load_service(
    cfg_path: PathLike,
    weights_path: Optional[PathLike] = None,
    *,
    labels_path: Optional[PathLike] = None,
    class_names: Optional[Sequence[str]] = None,
) -> InferenceService:
    """
    Build a service from Darknet files.

    Typical usage:
        service = load_service("models/yolov3-tiny.cfg", "models/yolov3-tiny.weights",
                               labels_path="models/coco.names")
        detections = service(image_chw)
    """

    if class_names is None and labels_path is not None:
        class_names = load_class_names(labels_path)
    network = load_network(cfg_path, weights_path, class_names=class_names)
    return InferenceService(network)
