from __future__ import annotations

from typing import Sequence, Tuple

import numpy as np

from .errors import ShapeError, TensorIndexError


class TensorBuffer:
    """
    Dense float32 tensor, typically (channels, height, width).

    The buffer owns its storage unless it was produced by `slice()`, which
    returns a view over the parent's channels.
    """

    __slots__ = ("_data",)

    def __init__(self, data: np.ndarray, *, copy: bool = True):
        arr = np.array(data, dtype=np.float32, copy=True) if copy else np.asarray(data, dtype=np.float32)
        if arr.ndim == 0:
            raise ShapeError("TensorBuffer needs at least one dimension", actual=arr.shape)
        if any(d <= 0 for d in arr.shape):
            raise ShapeError("TensorBuffer dims must be positive", actual=arr.shape)
        self._data = arr

    @classmethod
    def zeros(cls, dims: Sequence[int]) -> "TensorBuffer":
        dims = tuple(int(d) for d in dims)
        if not dims or any(d <= 0 for d in dims):
            raise ShapeError("TensorBuffer dims must be positive", actual=dims)
        return cls(np.zeros(dims, dtype=np.float32), copy=False)

    @property
    def dims(self) -> Tuple[int, ...]:
        return tuple(self._data.shape)

    @property
    def size(self) -> int:
        return int(self._data.size)

    @property
    def data(self) -> np.ndarray:
        """The underlying array (no copy)."""
        return self._data

    def __repr__(self) -> str:
        return f"TensorBuffer(dims={self.dims})"

    def _check_index(self, index: Sequence[int]) -> Tuple[int, ...]:
        if len(index) != self._data.ndim:
            raise TensorIndexError(f"expected {self._data.ndim} indices, got {len(index)}")
        for axis, (i, n) in enumerate(zip(index, self._data.shape)):
            if isinstance(i, bool) or not isinstance(i, (int, np.integer)):
                raise TensorIndexError(f"index {i!r} for axis {axis} is not an integer")
            if not 0 <= i < n:
                raise TensorIndexError(f"index {i} out of range for axis {axis} with size {n}")
        return tuple(int(i) for i in index)

    def get(self, *index: int) -> float:
        return float(self._data[self._check_index(index)])

    def set(self, *args: float) -> None:
        """set(i, j, ..., value)"""
        if not args:
            raise TensorIndexError("set() needs indices and a value")
        *index, value = args
        self._data[self._check_index(index)] = value

    def reshape(self, dims: Sequence[int]) -> "TensorBuffer":
        dims = tuple(int(d) for d in dims)
        if not dims or any(d <= 0 for d in dims):
            raise ShapeError("reshape dims must be positive", actual=dims)
        if int(np.prod(dims)) != self.size:
            raise ShapeError("reshape must preserve element count", expected=self.size, actual=int(np.prod(dims)))
        return TensorBuffer(self._data.reshape(dims), copy=False)

    def slice(self, start: int, stop: int) -> "TensorBuffer":
        """View over channels [start, stop)."""
        n = self._data.shape[0]
        if not 0 <= start < stop <= n:
            raise TensorIndexError(f"channel range [{start}, {stop}) out of range for {n} channels")
        return TensorBuffer(self._data[start:stop], copy=False)
