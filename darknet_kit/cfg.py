"""
Reader for Darknet `.cfg` network descriptions.

Supported sections: [net]/[network], [convolutional], [maxpool], [upsample],
[route], [shortcut], [yolo]. Route/shortcut indices may be relative
(negative), as in Darknet; they are resolved to absolute layer indices here.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, Tuple, Union


from .errors import ConfigError
from .layers import (
    ConvolutionalSpec,
    DetectionHeadSpec,
    LayerSpec,
    MaxPoolSpec,
    RouteSpec,
    ShortcutSpec,
    UpsampleSpec,
)
from .network import Network, build_network
from .weights import load_weights

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
Section = Tuple[str, Dict[str, str]]

# Options Darknet uses only for training or that do not change inference.
_IGNORED_NET_OPTIONS = {
    "batch", "subdivisions", "momentum", "decay", "angle", "saturation", "exposure", "hue",
    "learning_rate", "burn_in", "max_batches", "policy", "steps", "scales", "mosaic",
    "flip", "max_chart_loss", "letter_box",
}
_IGNORED_YOLO_OPTIONS = {"jitter", "ignore_thresh", "truth_thresh", "random", "iou_normalizer", "iou_loss", "nms_kind", "beta_nms", "cls_normalizer"}


def parse_cfg(text: str) -> List[Section]:
    """
    Split cfg text into (section_name, options) pairs, in file order.
    """

    sections: List[Section] = []
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line[0] in "#;":
            continue
        if line.startswith("["):
            if not line.endswith("]"):
                raise ConfigError(f"line {lineno}: malformed section header {line!r}")
            sections.append((line[1:-1].strip().lower(), {}))
            continue
        if "=" not in line:
            raise ConfigError(f"line {lineno}: expected key=value, got {line!r}")
        if not sections:
            raise ConfigError(f"line {lineno}: option outside of any section")
        key, value = line.split("=", 1)
        sections[-1][1][key.strip()] = value.strip()
    return sections


class _Options:
    """Typed accessors over one section, tracking which keys were read."""

    def __init__(self, name: str, options: Dict[str, str], index: Optional[int]):
        self.name = name
        self.options = options
        self.index = index
        self.used: Set[str] = set()

    def _raw(self, key: str) -> Optional[str]:
        self.used.add(key)
        return self.options.get(key)

    def get_int(self, key: str, default: Optional[int] = None) -> int:
        raw = self._raw(key)
        if raw is None:
            if default is None:
                raise ConfigError(f"[{self.name}] missing required option {key!r}", self.index)
            return default
        try:
            return int(raw)
        except ValueError:
            raise ConfigError(f"[{self.name}] {key}={raw!r} is not an integer", self.index) from None

    def get_str(self, key: str, default: str) -> str:
        raw = self._raw(key)
        return default if raw is None else raw

    def get_ints(self, key: str) -> Optional[List[int]]:
        raw = self._raw(key)
        if raw is None:
            return None
        try:
            return [int(v) for v in raw.split(",") if v.strip()]
        except ValueError:
            raise ConfigError(f"[{self.name}] {key}={raw!r} is not a list of integers", self.index) from None

    def get_floats(self, key: str) -> Optional[List[float]]:
        raw = self._raw(key)
        if raw is None:
            return None
        try:
            return [float(v) for v in raw.split(",") if v.strip()]
        except ValueError:
            raise ConfigError(f"[{self.name}] {key}={raw!r} is not a list of numbers", self.index) from None

    def warn_unused(self, ignored: Sequence[str] = ()) -> None:
        unused = sorted(set(self.options) - self.used - set(ignored))
        if unused:
            where = f"layer {self.index} " if self.index is not None else ""
            logger.warning("Ignoring unsupported options in %s[%s]: %s", where, self.name, unused)


def _resolve(ref: int, index: int) -> int:
    return index + ref if ref < 0 else ref


def sections_to_layers(sections: Sequence[Section]) -> Tuple[Dict[str, int], List[LayerSpec], List[bool]]:
    """
    Convert parsed sections into layer specs with zero weights.

    Returns (net options, layers, batch_normalize flag per layer).
    """

    if not sections or sections[0][0] not in ("net", "network"):
        raise ConfigError("cfg must start with a [net] section")

    net = _Options(sections[0][0], sections[0][1], None)
    net_opts = {
        "width": net.get_int("width"),
        "height": net.get_int("height"),
        "channels": net.get_int("channels", 3),
    }
    net.warn_unused(_IGNORED_NET_OPTIONS)

    layers: List[LayerSpec] = []
    batch_norm: List[bool] = []
    channels: List[int] = []  # output channels per layer, for conv in_channels
    prev_c = net_opts["channels"]

    for index, (name, options) in enumerate(sections[1:]):
        opt = _Options(name, options, index)
        bn = False
        ignored: Sequence[str] = ()

        if name in ("convolutional", "conv"):
            size = opt.get_int("size", 1)
            pad = opt.get_int("padding", 0)
            if opt.get_int("pad", 0):
                pad = size // 2
            if opt.get_int("groups", 1) != 1:
                raise ConfigError("grouped convolutions are not supported", index)
            bn = bool(opt.get_int("batch_normalize", 0))
            layer: LayerSpec = ConvolutionalSpec(
                filters=opt.get_int("filters", 1),
                in_channels=prev_c,
                size=size,
                stride=opt.get_int("stride", 1),
                pad=pad,
                activation=opt.get_str("activation", "logistic"),
            )
            c = layer.filters
        elif name in ("maxpool", "max"):
            size = opt.get_int("size", 1)
            layer = MaxPoolSpec(size=size, stride=opt.get_int("stride", 1), padding=opt.get_int("padding", size - 1))
            c = prev_c
        elif name == "upsample":
            layer = UpsampleSpec(stride=opt.get_int("stride", 2))
            c = prev_c
        elif name == "route":
            refs = opt.get_ints("layers")
            if not refs:
                raise ConfigError("[route] needs a 'layers' option", index)
            if opt.get_int("groups", 1) != 1:
                raise ConfigError("route groups are not supported", index)
            sources = tuple(_resolve(r, index) for r in refs)
            for s in sources:
                if not 0 <= s < index:
                    raise ConfigError(f"route references layer {s}, which is not computed before layer {index}", index)
            layer = RouteSpec(layers=sources)
            c = sum(channels[s] for s in sources)
        elif name == "shortcut":
            refs = opt.get_ints("from")
            if not refs or len(refs) != 1:
                raise ConfigError("[shortcut] needs exactly one 'from' index", index)
            layer = ShortcutSpec(source=_resolve(refs[0], index), activation=opt.get_str("activation", "linear"))
            c = prev_c
        elif name == "yolo":
            classes = opt.get_int("classes", 20)
            flat = opt.get_floats("anchors") or []
            if len(flat) % 2:
                raise ConfigError("anchors must be (width, height) pairs", index)
            all_anchors = [(flat[i], flat[i + 1]) for i in range(0, len(flat), 2)]
            num = opt.get_int("num", len(all_anchors))
            if num != len(all_anchors):
                raise ConfigError(f"num={num} but {len(all_anchors)} anchors given", index)
            mask = opt.get_ints("mask")
            if mask is None:
                mask = list(range(num))
            if any(not 0 <= m < num for m in mask):
                raise ConfigError(f"mask {mask} out of range for {num} anchors", index)
            layer = DetectionHeadSpec(anchors=tuple(all_anchors[m] for m in mask), num_classes=classes)
            c = prev_c
            ignored = _IGNORED_YOLO_OPTIONS
        else:
            raise ConfigError(f"unsupported section [{name}]", index)

        opt.warn_unused(ignored)
        layers.append(layer)
        batch_norm.append(bn)
        channels.append(c)
        prev_c = c

    return net_opts, layers, batch_norm


def load_network(
    cfg_path: PathLike,
    weights_path: Optional[PathLike] = None,
    *,
    class_names: Optional[Sequence[str]] = None,
) -> Network:
    """
    Build a validated Network from a Darknet cfg and (optionally) weights file.
    Without weights, convolutional layers get zero weights and biases.
    """

    path = Path(cfg_path)
    if not path.exists():
        raise FileNotFoundError(f"Network cfg not found: {path}")
    return network_from_cfg(path.read_text(encoding="utf-8"), weights_path, class_names=class_names)


def network_from_cfg(
    text: str,
    weights_path: Optional[PathLike] = None,
    *,
    class_names: Optional[Sequence[str]] = None,
) -> Network:

    net_opts, layers, batch_norm = sections_to_layers(parse_cfg(text))
    if weights_path is not None:
        layers = load_weights(weights_path, layers, batch_norm)
    heads = [layer for layer in layers if isinstance(layer, DetectionHeadSpec)]
    num_classes = heads[0].num_classes if heads else None
    return build_network(
        layers,
        input_width=net_opts["width"],
        input_height=net_opts["height"],
        input_channels=net_opts["channels"],
        num_classes=num_classes,
        class_names=class_names,
    )
