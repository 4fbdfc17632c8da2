from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .errors import ShapeError
from .layers import DetectionHeadSpec, LayerKind, forward
from .network import Network
from .tensor import TensorBuffer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HeadOutput:
    """Raw output of one detection head: tensor shaped (anchors, 5 + classes, H, W)."""

    layer_index: int
    head: DetectionHeadSpec
    tensor: TensorBuffer


class ForwardExecutor:
    """
    Runs a Network over one input image.

    Each call keeps its own arena of per-layer outputs, indexed by layer
    position, so Route/Shortcut layers can read any earlier output and
    concurrent calls never share intermediate buffers.
    """

    def __init__(self, network: Network):
        self.network = network

    def run(self, image: TensorBuffer) -> List[HeadOutput]:
        net = self.network
        if image.dims != net.input_shape:
            raise ShapeError("input image shape", expected=net.input_shape, actual=image.dims)

        arena: List[Optional[TensorBuffer]] = [None] * len(net.layers)
        prev = image
        for index, layer in enumerate(net.layers):
            if layer.kind is LayerKind.ROUTE:
                inputs: Sequence[TensorBuffer] = [arena[i] for i in layer.layers]
            elif layer.kind is LayerKind.SHORTCUT:
                inputs = [prev, arena[layer.source]]
            else:
                inputs = [prev]
            out = forward(layer, inputs)
            arena[index] = out
            prev = out

        heads = [
            HeadOutput(layer_index=i, head=net.layers[i], tensor=arena[i])
            for i in net.head_indices
        ]
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Forward pass done, head shapes: %s", [h.tensor.dims for h in heads])
        return heads


def run_network(network: Network, image: np.ndarray) -> List[HeadOutput]:
    """Convenience wrapper: run `network` on a (C, H, W) array."""
    return ForwardExecutor(network).run(TensorBuffer(image))
