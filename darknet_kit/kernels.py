"""
NumPy kernels for the forward pass. All functions take and return CHW float32 arrays.
"""

from __future__ import annotations

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

ACTIVATIONS = ("linear", "leaky", "logistic")
LEAKY_SLOPE = 0.1


def sigmoid(x: np.ndarray) -> np.ndarray:
    with np.errstate(over="ignore"):
        return (1.0 / (1.0 + np.exp(-x))).astype(np.float32, copy=False)


def activate(x: np.ndarray, activation: str) -> np.ndarray:
    if activation == "linear":
        return x
    if activation == "leaky":
        return np.where(x > 0, x, x * np.float32(LEAKY_SLOPE)).astype(np.float32, copy=False)
    if activation == "logistic":
        return sigmoid(x)
    raise ValueError(f"Unsupported activation: {activation!r}")


def conv_output_size(n: int, size: int, stride: int, pad: int) -> int:
    return (n + 2 * pad - size) // stride + 1


def conv2d(x: np.ndarray, weights: np.ndarray, biases: np.ndarray, stride: int, pad: int) -> np.ndarray:
    """
    Direct convolution with implicit zero padding.

    x: (C_in, H, W), weights: (C_out, C_in, k, k), biases: (C_out,)
    Returns (C_out, H_out, W_out) before activation.
    """

    k = weights.shape[2]
    if pad > 0:
        x = np.pad(x, ((0, 0), (pad, pad), (pad, pad)), mode="constant")
    # (C_in, H', W', k, k) windows, then keep every `stride`-th origin
    windows = sliding_window_view(x, (k, k), axis=(1, 2))[:, ::stride, ::stride]
    out = np.tensordot(weights, windows, axes=([1, 2, 3], [0, 3, 4]))
    out += biases[:, None, None]
    return out.astype(np.float32, copy=False)


def maxpool_output_size(n: int, size: int, stride: int, padding: int) -> int:
    return (n + padding - size) // stride + 1


def maxpool2d(x: np.ndarray, size: int, stride: int, padding: int) -> np.ndarray:
    """
    Max pooling where windows hanging over the border are clipped to the buffer.

    Window origin for output (y, x) is (y*stride - padding//2, x*stride - padding//2).
    """

    _, h, w = x.shape
    out_h = maxpool_output_size(h, size, stride, padding)
    out_w = maxpool_output_size(w, size, stride, padding)
    before = padding // 2
    after_h = max(0, (out_h - 1) * stride + size - h - before)
    after_w = max(0, (out_w - 1) * stride + size - w - before)
    # -inf never wins a max, so padded cells behave as if the window were clipped
    padded = np.pad(
        x,
        ((0, 0), (before, after_h), (before, after_w)),
        mode="constant",
        constant_values=-np.inf,
    )
    windows = sliding_window_view(padded, (size, size), axis=(1, 2))[:, ::stride, ::stride]
    out = windows[:, :out_h, :out_w].max(axis=(3, 4))
    return np.ascontiguousarray(out, dtype=np.float32)


def upsample(x: np.ndarray, factor: int) -> np.ndarray:
    return np.repeat(np.repeat(x, factor, axis=1), factor, axis=2)
