# -*- coding: utf-8 -*-
"""
Symmetric statistics matrices stored as lower-left triangles

Copyright (c) 2025 Siwei Luo. MIT License.
"""

# Calculation
import math

# Typing
from typing import Annotated, Any, Union

import numpy as np

# Self
from .specio import arraylike_validator, simple_type_validator

# %% Triangular index helpers


def number_tri_entries(number_channels: int) -> int:
    """Number of unique entries of a symmetric matrix of the given order."""
    return number_channels * (number_channels + 1) // 2


def tri_index(row: int, col: int) -> int:
    """Flat index of entry (row, col) in row-major lower-left storage."""
    if col > row:
        row, col = col, row
    return row * (row + 1) // 2 + col


def tri_indices(rows: np.ndarray, cols: np.ndarray) -> np.ndarray:
    """Vectorized ``tri_index``."""
    rows = np.asarray(rows, dtype=np.int64)
    cols = np.asarray(cols, dtype=np.int64)
    upper = np.maximum(rows, cols)
    lower = np.minimum(rows, cols)
    result: np.ndarray = upper * (upper + 1) // 2 + lower
    return result


def diagonal_indices(number_channels: int) -> np.ndarray:
    """Flat indices of the diagonal entries."""
    channels = np.arange(number_channels, dtype=np.int64)
    result: np.ndarray = channels * (channels + 3) // 2
    return result


def order_from_length(length: int) -> int:
    """Matrix order for a triangular storage length, raises ValueError if the length is not triangular."""
    order = int((math.isqrt(8 * length + 1) - 1) // 2)
    if number_tri_entries(order) != length:
        raise ValueError(f"Length {length} is not a valid lower-triangular storage length")
    return order


# %% TriangularMatrix


class TriangularMatrix:
    """
    Symmetric matrix stored as its lower-left triangle in row-major order.

    The entry (row, col) with ``row >= col`` is stored at ``row * (row + 1) / 2 + col``.
    The storage may be a view into a larger buffer, in which case writes go through to the buffer.
    Square forms are only produced explicitly with ``as_square``.

    Parameters
    ----------
    values : 1D numpy.ndarray
        Flat lower-triangular storage of length ``n * (n + 1) / 2``.
        A float64 array is wrapped without copying.
    """

    def __init__(self, values: Union[np.ndarray, list[float]]) -> None:
        arr = np.asarray(values, dtype=np.float64)
        if arr.ndim != 1:
            raise ValueError(f"Triangular storage must be 1D, got ndim: {arr.ndim}")
        self._number_channels: int = order_from_length(arr.shape[0])
        self._values: np.ndarray = arr

    @classmethod
    def zeros(cls, number_channels: int) -> "TriangularMatrix":
        if number_channels < 0:
            raise ValueError(f"number_channels cannot be negative, got: {number_channels}")
        return cls(np.zeros(number_tri_entries(number_channels), dtype=np.float64))

    @classmethod
    def identity(cls, number_channels: int) -> "TriangularMatrix":
        matrix = cls.zeros(number_channels)
        matrix.values[diagonal_indices(number_channels)] = 1.0
        return matrix

    @classmethod
    @simple_type_validator
    def from_square(cls, square: Annotated[Any, arraylike_validator(ndim=2)]) -> "TriangularMatrix":
        """Build from a square matrix using its lower-left triangle."""
        square = np.asarray(square, dtype=np.float64)
        if square.shape[0] != square.shape[1]:
            raise ValueError(f"Square matrix expected, got shape: {square.shape}")
        rows, cols = np.tril_indices(square.shape[0])
        return cls(square[rows, cols].copy())

    @property
    def number_channels(self) -> int:
        return self._number_channels

    @property
    def values(self) -> np.ndarray:
        return self._values

    def __len__(self) -> int:
        return int(self._values.shape[0])

    def __getitem__(self, key: tuple[int, int]) -> float:
        row, col = key
        self._check_index(row, col)
        return float(self._values[tri_index(row, col)])

    def __setitem__(self, key: tuple[int, int], value: float) -> None:
        row, col = key
        self._check_index(row, col)
        self._values[tri_index(row, col)] = value

    def _check_index(self, row: int, col: int) -> None:
        n = self._number_channels
        if not ((0 <= row < n) and (0 <= col < n)):
            raise IndexError(f"Index ({row}, {col}) out of range for matrix of order {n}")

    def diagonal(self) -> np.ndarray:
        result: np.ndarray = self._values[diagonal_indices(self._number_channels)].copy()
        return result

    def set_diagonal(self, diagonal: Union[np.ndarray, list[float]]) -> None:
        self._values[diagonal_indices(self._number_channels)] = diagonal

    def off_diagonal_mask(self) -> np.ndarray:
        mask = np.ones(len(self), dtype=bool)
        mask[diagonal_indices(self._number_channels)] = False
        return mask

    def as_square(self) -> np.ndarray:
        """Square matrix with the lower-left triangle mirrored to the upper-right."""
        n = self._number_channels
        square = np.zeros((n, n), dtype=np.float64)
        rows, cols = np.tril_indices(n)
        square[rows, cols] = self._values
        square[cols, rows] = self._values
        return square

    def reduce(self, channel_indices: Union[list[int], np.ndarray]) -> "TriangularMatrix":
        """
        Sub-matrix of the given channel positions, in the given order.

        Parameters
        ----------
        channel_indices : list[int] or numpy.ndarray
            Positions of the kept channels in this matrix.

        Returns
        -------
        TriangularMatrix
            New matrix of order ``len(channel_indices)``.
        """
        subset = np.asarray(channel_indices, dtype=np.int64)
        if subset.ndim != 1:
            raise ValueError(f"channel_indices must be 1D, got ndim: {subset.ndim}")
        if (len(subset) > 0) and ((subset.min() < 0) or (subset.max() >= self._number_channels)):
            raise IndexError(f"channel_indices out of range for matrix of order {self._number_channels}: {subset}")
        rows, cols = np.tril_indices(len(subset))
        return TriangularMatrix(self._values[tri_indices(subset[rows], subset[cols])].copy())

    def copy(self) -> "TriangularMatrix":
        return TriangularMatrix(self._values.copy())

    def __repr__(self) -> str:
        return f"TriangularMatrix(order={self._number_channels}, values={self._values!r})"
