"""
Exceptions raised by the inference engine.

- ConfigError: the network definition (cfg, weights, layer specs) is structurally invalid.
- ShapeError: tensors reaching a layer (or the input image) have the wrong shape.
- TensorIndexError: out-of-bounds access on a TensorBuffer.
"""


class DarknetError(Exception):
    """Base exception for inference engine errors."""


class ConfigError(DarknetError):
    """Raised when a network cannot be constructed from its definition."""

    def __init__(self, message: str, layer_index: int | None = None):
        self.message = message
        self.layer_index = layer_index
        if layer_index is not None:
            message = f"layer {layer_index}: {message}"
        super().__init__(message)


class ShapeError(DarknetError):
    """Raised when tensor shapes do not match what a layer or the network expects."""

    def __init__(self, message: str, expected=None, actual=None):
        self.message = message
        self.expected = expected
        self.actual = actual
        if expected is not None or actual is not None:
            message = f"{message} (expected {expected}, got {actual})"
        super().__init__(message)


class TensorIndexError(DarknetError, IndexError):
    """Raised on out-of-range TensorBuffer access."""
