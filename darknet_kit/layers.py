"""
Layer specifications and their forward rules.

Layers form a closed set of variants tagged by `LayerKind`; `forward()` is the
single entry point and dispatches on the tag. Layer specs are immutable once
built, so one network can be shared by concurrent forward passes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Sequence, Tuple, Union

import numpy as np

from . import kernels
from .errors import ShapeError
from .tensor import TensorBuffer


class LayerKind(str, Enum):
    CONVOLUTIONAL = "convolutional"
    MAXPOOL = "maxpool"
    UPSAMPLE = "upsample"
    ROUTE = "route"
    SHORTCUT = "shortcut"
    DETECTION_HEAD = "detection_head"


def _readonly(arr: np.ndarray) -> np.ndarray:
    out = np.array(arr, dtype=np.float32, copy=True)
    out.flags.writeable = False
    return out


@dataclass(frozen=True)
class ConvolutionalSpec:
    filters: int
    in_channels: int
    size: int
    stride: int = 1
    pad: int = 0
    activation: str = "linear"
    weights: np.ndarray = field(default=None, repr=False, compare=False)  # (filters, in_channels, size, size)
    biases: np.ndarray = field(default=None, repr=False, compare=False)  # (filters,)
    kind: LayerKind = field(default=LayerKind.CONVOLUTIONAL, init=False)

    def __post_init__(self) -> None:
        # Missing parameters default to zeros (e.g. a cfg loaded without weights).
        w = self.weights
        if w is None:
            dims = (self.filters, self.in_channels, self.size, self.size)
            w = np.zeros(tuple(max(0, int(d)) for d in dims), dtype=np.float32)
        b = self.biases
        if b is None:
            b = np.zeros((max(0, int(self.filters)),), dtype=np.float32)
        object.__setattr__(self, "weights", _readonly(w))
        object.__setattr__(self, "biases", _readonly(b))


@dataclass(frozen=True)
class MaxPoolSpec:
    size: int
    stride: int
    padding: int = 0
    kind: LayerKind = field(default=LayerKind.MAXPOOL, init=False)


@dataclass(frozen=True)
class UpsampleSpec:
    stride: int = 2
    kind: LayerKind = field(default=LayerKind.UPSAMPLE, init=False)


@dataclass(frozen=True)
class RouteSpec:
    layers: Tuple[int, ...]
    kind: LayerKind = field(default=LayerKind.ROUTE, init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "layers", tuple(int(i) for i in self.layers))


@dataclass(frozen=True)
class ShortcutSpec:
    source: int
    activation: str = "linear"
    kind: LayerKind = field(default=LayerKind.SHORTCUT, init=False)


@dataclass(frozen=True)
class DetectionHeadSpec:
    """Anchors are (width, height) pairs in network-input pixels."""

    anchors: Tuple[Tuple[float, float], ...]
    num_classes: int
    kind: LayerKind = field(default=LayerKind.DETECTION_HEAD, init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "anchors", tuple((float(w), float(h)) for w, h in self.anchors))

    @property
    def num_anchors(self) -> int:
        return len(self.anchors)

    @property
    def values_per_anchor(self) -> int:
        # tx, ty, tw, th, objectness, class scores...
        return 5 + self.num_classes


LayerSpec = Union[ConvolutionalSpec, MaxPoolSpec, UpsampleSpec, RouteSpec, ShortcutSpec, DetectionHeadSpec]


def _single(inputs: Sequence[TensorBuffer], kind: LayerKind) -> np.ndarray:
    if len(inputs) != 1:
        raise ShapeError(f"{kind.value} layer takes exactly one input", expected=1, actual=len(inputs))
    x = inputs[0].data
    if x.ndim != 3:
        raise ShapeError(f"{kind.value} layer expects a (C, H, W) input", actual=x.shape)
    return x


def _forward_conv(layer: ConvolutionalSpec, inputs: Sequence[TensorBuffer]) -> TensorBuffer:
    x = _single(inputs, layer.kind)
    if x.shape[0] != layer.in_channels:
        raise ShapeError("convolutional input channels", expected=layer.in_channels, actual=x.shape[0])
    if x.shape[1] + 2 * layer.pad < layer.size or x.shape[2] + 2 * layer.pad < layer.size:
        raise ShapeError("convolution kernel larger than padded input", expected=layer.size, actual=x.shape)
    out = kernels.conv2d(x, layer.weights, layer.biases, layer.stride, layer.pad)
    return TensorBuffer(kernels.activate(out, layer.activation), copy=False)


def _forward_maxpool(layer: MaxPoolSpec, inputs: Sequence[TensorBuffer]) -> TensorBuffer:
    x = _single(inputs, layer.kind)
    if x.shape[1] + layer.padding < layer.size or x.shape[2] + layer.padding < layer.size:
        raise ShapeError("maxpool window larger than padded input", expected=layer.size, actual=x.shape)
    return TensorBuffer(kernels.maxpool2d(x, layer.size, layer.stride, layer.padding), copy=False)


def _forward_upsample(layer: UpsampleSpec, inputs: Sequence[TensorBuffer]) -> TensorBuffer:
    x = _single(inputs, layer.kind)
    return TensorBuffer(kernels.upsample(x, layer.stride), copy=False)


def _forward_route(layer: RouteSpec, inputs: Sequence[TensorBuffer]) -> TensorBuffer:
    if len(inputs) != len(layer.layers):
        raise ShapeError("route inputs", expected=len(layer.layers), actual=len(inputs))
    arrays = [t.data for t in inputs]
    hw = {a.shape[1:] for a in arrays}
    if any(a.ndim != 3 for a in arrays) or len(hw) != 1:
        raise ShapeError("route sources must share height and width", actual=[a.shape for a in arrays])
    return TensorBuffer(np.concatenate(arrays, axis=0), copy=False)


def _forward_shortcut(layer: ShortcutSpec, inputs: Sequence[TensorBuffer]) -> TensorBuffer:
    # inputs: (previous output, source output)
    if len(inputs) != 2:
        raise ShapeError("shortcut inputs", expected=2, actual=len(inputs))
    a, b = inputs[0].data, inputs[1].data
    if a.shape != b.shape:
        raise ShapeError("shortcut operands must have identical shapes", expected=a.shape, actual=b.shape)
    return TensorBuffer(kernels.activate(a + b, layer.activation), copy=False)


def _forward_head(layer: DetectionHeadSpec, inputs: Sequence[TensorBuffer]) -> TensorBuffer:
    x = _single(inputs, layer.kind)
    expected = layer.num_anchors * layer.values_per_anchor
    if x.shape[0] != expected:
        raise ShapeError("detection head input channels", expected=expected, actual=x.shape[0])
    _, h, w = x.shape
    return inputs[0].reshape((layer.num_anchors, layer.values_per_anchor, h, w))


_FORWARD: Dict[LayerKind, Callable[..., TensorBuffer]] = {
    LayerKind.CONVOLUTIONAL: _forward_conv,
    LayerKind.MAXPOOL: _forward_maxpool,
    LayerKind.UPSAMPLE: _forward_upsample,
    LayerKind.ROUTE: _forward_route,
    LayerKind.SHORTCUT: _forward_shortcut,
    LayerKind.DETECTION_HEAD: _forward_head,
}


def forward(layer: LayerSpec, inputs: Sequence[TensorBuffer]) -> TensorBuffer:
    """
    Evaluate one layer.

    Route takes its sources in listed order, Shortcut takes (previous, source);
    every other kind takes exactly one input.
    """

    return _FORWARD[layer.kind](layer, inputs)
