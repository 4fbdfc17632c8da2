from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path
from typing import List, Sequence, Tuple, Union

import numpy as np

from .errors import ConfigError
from .layers import ConvolutionalSpec, LayerSpec

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# Darknet's batchnorm adds this to sqrt(variance), not to the variance.
BN_EPSILON = 1e-6


def read_header(buf: bytes) -> Tuple[Tuple[int, int, int, int], int]:
    """
    Parse the weights header.

    Returns ((major, minor, revision, seen), header_size_in_bytes).
    """

    if len(buf) < 16:
        raise ConfigError("weights file too short for header")
    major, minor, revision = (int(v) for v in np.frombuffer(buf, dtype="<i4", count=3))
    if (major * 10 + minor) >= 2 and major < 1000 and minor < 1000:
        if len(buf) < 20:
            raise ConfigError("weights file too short for header")
        seen = int(np.frombuffer(buf, dtype="<i8", count=1, offset=12)[0])
        return (major, minor, revision, seen), 20
    seen = int(np.frombuffer(buf, dtype="<i4", count=1, offset=12)[0])
    return (major, minor, revision, seen), 16


class _Reader:
    def __init__(self, values: np.ndarray):
        self.values = values
        self.pos = 0

    def take(self, n: int, what: str, index: int) -> np.ndarray:
        if self.pos + n > self.values.size:
            raise ConfigError(
                f"weights file truncated while reading {what} ({n} values at offset {self.pos}, {self.values.size} available)",
                index,
            )
        out = self.values[self.pos : self.pos + n]
        self.pos += n
        return out


def fold_batch_norm(
    weights: np.ndarray,
    biases: np.ndarray,
    scales: np.ndarray,
    rolling_mean: np.ndarray,
    rolling_variance: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Fold inference-time batchnorm into the preceding convolution:
    scale * (conv(x) - mean) / (sqrt(var) + eps) + bias.
    """

    s = scales / (np.sqrt(rolling_variance) + BN_EPSILON)
    w = weights * s[:, None, None, None]
    b = biases - rolling_mean * s
    return w.astype(np.float32), b.astype(np.float32)


def apply_weights(values: np.ndarray, layers: Sequence[LayerSpec], batch_norm: Sequence[bool]) -> List[LayerSpec]:
    """
    Return new layer specs with convolution weights taken from a flat float32
    array, in Darknet file order.
    """

    reader = _Reader(values)
    out: List[LayerSpec] = []
    for index, (layer, bn) in enumerate(zip(layers, batch_norm)):
        if not isinstance(layer, ConvolutionalSpec):
            out.append(layer)
            continue
        n = layer.filters
        biases = reader.take(n, "biases", index)
        if bn:
            scales = reader.take(n, "bn scales", index)
            mean = reader.take(n, "bn rolling mean", index)
            var = reader.take(n, "bn rolling variance", index)
        shape = (n, layer.in_channels, layer.size, layer.size)
        weights = reader.take(int(np.prod(shape)), "weights", index).reshape(shape)
        if bn:
            weights, biases = fold_batch_norm(weights, biases, scales, mean, var)
        out.append(replace(layer, weights=weights, biases=biases))

    leftover = values.size - reader.pos
    if leftover:
        logger.warning("Weights file has %d unused trailing values", leftover)
    return out


def load_weights(path: PathLike, layers: Sequence[LayerSpec], batch_norm: Sequence[bool]) -> List[LayerSpec]:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Weights file not found: {p}")
    buf = p.read_bytes()
    (major, minor, revision, seen), offset = read_header(buf)
    logger.debug("Weights %s: version %d.%d.%d, seen %d", p, major, minor, revision, seen)
    body = buf[offset:]
    if len(body) % 4:
        raise ConfigError(f"weights body is not a whole number of float32 values ({len(body)} bytes)")
    values = np.frombuffer(body, dtype="<f4").astype(np.float32)
    return apply_weights(values, layers, batch_norm)
