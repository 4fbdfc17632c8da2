from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .errors import ConfigError
from .kernels import ACTIVATIONS, conv_output_size, maxpool_output_size
from .layers import LayerKind, LayerSpec

logger = logging.getLogger(__name__)

Shape = Tuple[int, int, int]


@dataclass(frozen=True)
class Network:
    """
    Validated, read-only network: ordered layers plus the metadata needed to
    interpret detection head outputs.

    Build it with `build_network()`; direct construction skips validation.
    """

    layers: Tuple[LayerSpec, ...]
    input_width: int
    input_height: int
    input_channels: int
    num_classes: int
    output_shapes: Tuple[Tuple[int, ...], ...]
    class_names: Optional[Tuple[str, ...]] = None

    @property
    def input_shape(self) -> Shape:
        return (self.input_channels, self.input_height, self.input_width)

    @property
    def head_indices(self) -> Tuple[int, ...]:
        return tuple(i for i, layer in enumerate(self.layers) if layer.kind is LayerKind.DETECTION_HEAD)

    @property
    def anchors(self) -> Tuple[Tuple[Tuple[float, float], ...], ...]:
        """Anchor boxes of each detection head, in head order."""
        return tuple(self.layers[i].anchors for i in self.head_indices)

    def class_name(self, class_id: int) -> Optional[str]:
        if self.class_names is None or not 0 <= class_id < len(self.class_names):
            return None
        return self.class_names[class_id]

    def describe(self) -> List[str]:
        lines = []
        for i, (layer, shape) in enumerate(zip(self.layers, self.output_shapes)):
            lines.append(f"{i:>3} {layer.kind.value:<15} -> {'x'.join(str(d) for d in shape)}")
        return lines


def _positive(value: int, name: str, index: int) -> None:
    if int(value) <= 0:
        raise ConfigError(f"{name} must be > 0, got {value}", index)


def _check_reference(ref: int, index: int, what: str) -> None:
    if ref < 0 or ref >= index:
        raise ConfigError(f"{what} references layer {ref}, which is not computed before layer {index}", index)


def _infer_shape(layer: LayerSpec, index: int, prev: Shape, shapes: Sequence[Tuple[int, ...]], num_classes: int) -> Tuple[int, ...]:
    kind = layer.kind
    if kind in (LayerKind.CONVOLUTIONAL, LayerKind.MAXPOOL, LayerKind.UPSAMPLE, LayerKind.SHORTCUT, LayerKind.DETECTION_HEAD):
        if len(prev) != 3:
            raise ConfigError(f"{kind.value} layer cannot follow a detection head output of shape {prev}", index)

    c, h, w = prev if len(prev) == 3 else (0, 0, 0)

    if kind is LayerKind.CONVOLUTIONAL:
        for name in ("filters", "in_channels", "size", "stride"):
            _positive(getattr(layer, name), name, index)
        if layer.pad < 0:
            raise ConfigError(f"pad must be >= 0, got {layer.pad}", index)
        if layer.activation not in ACTIVATIONS:
            raise ConfigError(f"unknown activation {layer.activation!r}", index)
        if layer.in_channels != c:
            raise ConfigError(f"convolutional layer expects {layer.in_channels} input channels, gets {c}", index)
        expected_w = (layer.filters, layer.in_channels, layer.size, layer.size)
        if layer.weights.shape != expected_w:
            raise ConfigError(f"weights shape {layer.weights.shape} != {expected_w}", index)
        if layer.biases.shape != (layer.filters,):
            raise ConfigError(f"biases shape {layer.biases.shape} != {(layer.filters,)}", index)
        out_h = conv_output_size(h, layer.size, layer.stride, layer.pad)
        out_w = conv_output_size(w, layer.size, layer.stride, layer.pad)
        if out_h <= 0 or out_w <= 0:
            raise ConfigError(f"kernel {layer.size} does not fit input {h}x{w}", index)
        return (layer.filters, out_h, out_w)

    if kind is LayerKind.MAXPOOL:
        _positive(layer.size, "size", index)
        _positive(layer.stride, "stride", index)
        if not 0 <= layer.padding < layer.size:
            raise ConfigError(f"maxpool padding must be in [0, {layer.size - 1}], got {layer.padding}", index)
        out_h = maxpool_output_size(h, layer.size, layer.stride, layer.padding)
        out_w = maxpool_output_size(w, layer.size, layer.stride, layer.padding)
        if out_h <= 0 or out_w <= 0:
            raise ConfigError(f"pool window {layer.size} does not fit input {h}x{w}", index)
        return (c, out_h, out_w)

    if kind is LayerKind.UPSAMPLE:
        _positive(layer.stride, "stride", index)
        return (c, h * layer.stride, w * layer.stride)

    if kind is LayerKind.ROUTE:
        if not layer.layers:
            raise ConfigError("route needs at least one source layer", index)
        sources = []
        for ref in layer.layers:
            _check_reference(ref, index, "route")
            sources.append(shapes[ref])
        if any(len(s) != 3 for s in sources):
            raise ConfigError("route cannot concatenate detection head outputs", index)
        if len({s[1:] for s in sources}) != 1:
            raise ConfigError(f"route sources have different spatial sizes: {sources}", index)
        return (sum(s[0] for s in sources), sources[0][1], sources[0][2])

    if kind is LayerKind.SHORTCUT:
        _check_reference(layer.source, index, "shortcut")
        if layer.activation not in ACTIVATIONS:
            raise ConfigError(f"unknown activation {layer.activation!r}", index)
        if tuple(shapes[layer.source]) != tuple(prev):
            raise ConfigError(f"shortcut shapes differ: {shapes[layer.source]} vs {prev}", index)
        return prev

    if kind is LayerKind.DETECTION_HEAD:
        if layer.num_anchors == 0:
            raise ConfigError("detection head needs at least one anchor", index)
        if any(aw <= 0 or ah <= 0 for aw, ah in layer.anchors):
            raise ConfigError("anchor sizes must be > 0", index)
        if layer.num_classes != num_classes:
            raise ConfigError(f"detection head has {layer.num_classes} classes, network has {num_classes}", index)
        expected = layer.num_anchors * layer.values_per_anchor
        if c != expected:
            raise ConfigError(
                f"detection head expects {expected} channels ({layer.num_anchors} anchors x {layer.values_per_anchor}), gets {c}",
                index,
            )
        return (layer.num_anchors, layer.values_per_anchor, h, w)

    raise ConfigError(f"unsupported layer kind {kind!r}", index)


def build_network(
    layers: Sequence[LayerSpec],
    *,
    input_width: int,
    input_height: int,
    input_channels: int = 3,
    num_classes: Optional[int] = None,
    class_names: Optional[Sequence[str]] = None,
) -> Network:
    """
    Validate a layer sequence and return an immutable Network.

    Raises ConfigError on dangling or forward Route/Shortcut references,
    inconsistent channel counts or spatial sizes, and networks without a head.
    `num_classes` defaults to the class count of the first detection head.
    """

    layers = tuple(layers)
    if not layers:
        raise ConfigError("network has no layers")
    for name, value in (("input_width", input_width), ("input_height", input_height), ("input_channels", input_channels)):
        if int(value) <= 0:
            raise ConfigError(f"{name} must be > 0, got {value}")

    heads = [layer for layer in layers if layer.kind is LayerKind.DETECTION_HEAD]
    if not heads:
        raise ConfigError("network has no detection head")
    if num_classes is None:
        num_classes = heads[0].num_classes
    if num_classes <= 0:
        raise ConfigError(f"num_classes must be > 0, got {num_classes}")
    if class_names is not None and len(class_names) != num_classes:
        logger.warning("Got %d class names for %d classes", len(class_names), num_classes)

    shapes: List[Tuple[int, ...]] = []
    prev: Tuple[int, ...] = (int(input_channels), int(input_height), int(input_width))
    for index, layer in enumerate(layers):
        prev = _infer_shape(layer, index, prev, shapes, num_classes)
        shapes.append(prev)

    network = Network(
        layers=layers,
        input_width=int(input_width),
        input_height=int(input_height),
        input_channels=int(input_channels),
        num_classes=int(num_classes),
        output_shapes=tuple(shapes),
        class_names=tuple(class_names) if class_names is not None else None,
    )
    if logger.isEnabledFor(logging.DEBUG):
        for line in network.describe():
            logger.debug(line)
    return network
