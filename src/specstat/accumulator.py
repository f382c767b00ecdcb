# -*- coding: utf-8 -*-
"""
Channel statistics and covariance accumulators, and the shared statistics pool of a project

Copyright (c) 2025 Siwei Luo. MIT License.
"""

# Basics
from contextlib import contextmanager

# Typing
from typing import Any, Iterator, Optional

import numpy as np

# Self
from .specio import simple_type_validator
from .statmatrix import TriangularMatrix, diagonal_indices, number_tri_entries

# %% Constants

# Per channel statistics record, a standard deviation of -1 means not derived yet
CHANNEL_STATS_DTYPE = np.dtype(
    [
        ("sum", np.float64),
        ("minimum", np.float64),
        ("maximum", np.float64),
        ("mean", np.float64),
        ("standard_deviation", np.float64),
    ]
)

STATISTICS_CODES = ("mean_stddev", "mean_covariance")

# Largest statistics memory request in bytes
DEFAULT_MAX_STATISTICS_BYTES = 2**31 - 1

# Number of slots added when the pool grows
SLOT_INCREMENT = 8


def validate_statistics_code(statistics_code: str) -> str:
    if statistics_code not in STATISTICS_CODES:
        raise ValueError(f"statistics_code must be one of {STATISTICS_CODES}, got: '{statistics_code}'")
    return statistics_code


# %% Accumulator


class Accumulator:
    """
    Running statistics of one statistics slot.

    Holds per channel sum, minimum, maximum and derived mean and standard deviation,
    plus the lower-triangular sums of cross-products of all channel pairs.
    Arrays given to the constructor are used in place, so an accumulator created by a
    ``StatisticsPool`` writes directly into the pool storage.

    Parameters
    ----------
    channel_stats : numpy.ndarray
        1D structured array with dtype ``CHANNEL_STATS_DTYPE``.

    sums_of_squares : numpy.ndarray
        1D float64 array of length ``n * (n + 1) / 2``.
    """

    def __init__(self, channel_stats: np.ndarray, sums_of_squares: np.ndarray) -> None:
        if channel_stats.dtype != CHANNEL_STATS_DTYPE:
            raise TypeError(f"channel_stats must have dtype CHANNEL_STATS_DTYPE, got: {channel_stats.dtype}")
        if len(sums_of_squares) != number_tri_entries(len(channel_stats)):
            raise ValueError(
                f"sums_of_squares length {len(sums_of_squares)} does not match {len(channel_stats)} channels"
            )
        self._channel_stats = channel_stats
        self._sums_of_squares = sums_of_squares

    @classmethod
    def empty(cls, number_channels: int) -> "Accumulator":
        """Standalone zeroed accumulator."""
        accumulator = cls(
            np.zeros(number_channels, dtype=CHANNEL_STATS_DTYPE),
            np.zeros(number_tri_entries(number_channels), dtype=np.float64),
        )
        accumulator.zero()
        return accumulator

    @property
    def number_channels(self) -> int:
        return len(self._channel_stats)

    @property
    def channel_stats(self) -> np.ndarray:
        return self._channel_stats

    @property
    def sums_of_squares(self) -> TriangularMatrix:
        return TriangularMatrix(self._sums_of_squares)

    @property
    def sums(self) -> np.ndarray:
        result: np.ndarray = self._channel_stats["sum"].copy()
        return result

    @property
    def is_derived(self) -> bool:
        return bool(np.all(self._channel_stats["standard_deviation"] != -1)) or (self.number_channels == 0)

    def zero(self) -> None:
        cs = self._channel_stats
        cs["sum"] = 0.0
        cs["minimum"] = np.inf
        cs["maximum"] = -np.inf
        cs["mean"] = 0.0
        cs["standard_deviation"] = -1.0
        self._sums_of_squares[:] = 0.0

    def accumulate(
        self,
        pixels: Any,
        statistics_code: str = "mean_covariance",
    ) -> int:
        """
        Add pixel vectors to the running statistics.

        Parameters
        ----------
        pixels : array-like
            One pixel vector of shape (n_channels,) or a block of shape (n_pixels, n_channels).

        statistics_code : str, optional
            ``'mean_covariance'`` updates all cross-products, ``'mean_stddev'`` only the sums of squares.
            The default is ``'mean_covariance'``.

        Returns
        -------
        int
            Number of pixel vectors accumulated.
        """
        validate_statistics_code(statistics_code)
        block = np.asarray(pixels, dtype=np.float64)
        if block.ndim == 1:
            block = block.reshape(1, -1)
        if (block.ndim != 2) or (block.shape[1] != self.number_channels):
            raise ValueError(f"Expected pixels with {self.number_channels} channels, got shape: {block.shape}")
        if block.shape[0] == 0:
            return 0

        cs = self._channel_stats
        cs["sum"] = cs["sum"] + block.sum(axis=0)
        cs["minimum"] = np.minimum(cs["minimum"], block.min(axis=0))
        cs["maximum"] = np.maximum(cs["maximum"], block.max(axis=0))
        cs["standard_deviation"] = -1.0

        if statistics_code == "mean_covariance":
            rows, cols = np.tril_indices(self.number_channels)
            cross_products = block.T @ block
            self._sums_of_squares += cross_products[rows, cols]
        else:
            self._sums_of_squares[diagonal_indices(self.number_channels)] += np.square(block).sum(axis=0)

        return int(block.shape[0])

    def combine(self, source: "Accumulator", initialize: bool = False) -> None:
        """
        Fold another accumulator into this one.

        With ``initialize`` the sums, extremes and cross-products are copied from ``source``,
        otherwise sums and cross-products are added and extremes are combined elementwise.
        """
        if source.number_channels != self.number_channels:
            raise ValueError(
                f"Cannot combine accumulators with {source.number_channels} and {self.number_channels} channels"
            )
        cs = self._channel_stats
        src = source.channel_stats
        if initialize:
            cs["sum"] = src["sum"]
            cs["minimum"] = src["minimum"]
            cs["maximum"] = src["maximum"]
            self._sums_of_squares[:] = source.sums_of_squares.values
        else:
            cs["sum"] = cs["sum"] + src["sum"]
            cs["minimum"] = np.minimum(cs["minimum"], src["minimum"])
            cs["maximum"] = np.maximum(cs["maximum"], src["maximum"])
            self._sums_of_squares += source.sums_of_squares.values
        cs["mean"] = 0.0
        cs["standard_deviation"] = -1.0

    @simple_type_validator
    def derive_covariance(self, number_pixels: int, statistics_code: str = "mean_covariance") -> TriangularMatrix:
        """
        Covariance matrix from the sums, ``(S_ij - S_i * S_j / n) / (n - 1)``.

        For ``'mean_stddev'`` statistics only the variances are computed and the off-diagonal entries are 0.
        A pixel count of 1 or less gives an all-zero matrix.
        """
        validate_statistics_code(statistics_code)
        n_channels = self.number_channels
        covariance = TriangularMatrix.zeros(n_channels)
        if number_pixels <= 1:
            return covariance

        sums = self._channel_stats["sum"]
        diag = diagonal_indices(n_channels)
        if statistics_code == "mean_covariance":
            rows, cols = np.tril_indices(n_channels)
            covariance.values[:] = (self._sums_of_squares - sums[rows] * sums[cols] / number_pixels) / (
                number_pixels - 1
            )
        else:
            covariance.values[diag] = (self._sums_of_squares[diag] - sums * sums / number_pixels) / (number_pixels - 1)

        # Rounding can leave tiny negative variances
        covariance.values[diag] = np.maximum(covariance.values[diag], 0.0)
        return covariance

    @simple_type_validator
    def derive_mean_stddev(self, number_pixels: int, statistics_code: str = "mean_covariance") -> None:
        """Derive channel means and standard deviations in place, replacing the -1 sentinel."""
        validate_statistics_code(statistics_code)
        cs = self._channel_stats
        if number_pixels > 0:
            cs["mean"] = cs["sum"] / number_pixels
        else:
            cs["mean"] = 0.0
        variances = self.derive_covariance(number_pixels, statistics_code).diagonal()
        cs["standard_deviation"] = np.sqrt(np.abs(variances))

    def copy(self) -> "Accumulator":
        return Accumulator(self._channel_stats.copy(), self._sums_of_squares.copy())

    def __repr__(self) -> str:
        return f"Accumulator(channels={self.number_channels}, sums={self._channel_stats['sum']!r})"


# %% Statistics pool


class StatisticsPool:
    """
    Shared storage of the channel statistics and cross-product sums of all statistics slots of a project.

    Fields and classes hold slot indices only. Released slots are reused before the pool grows.
    While pinned, the storage cannot be relocated, so accumulator views taken during a scan stay valid.

    Parameters
    ----------
    number_channels : int
        Number of channels of every slot.

    max_statistics_bytes : int, optional
        Largest permitted statistics storage in bytes. Requests reaching it raise MemoryError.
        The default is ``2**31 - 1``.
    """

    @simple_type_validator
    def __init__(self, number_channels: int, max_statistics_bytes: int = DEFAULT_MAX_STATISTICS_BYTES) -> None:
        if number_channels < 1:
            raise ValueError(f"number_channels must be positive, got: {number_channels}")
        if max_statistics_bytes < 1:
            raise ValueError(f"max_statistics_bytes must be positive, got: {max_statistics_bytes}")
        self._number_channels: int = number_channels
        self._max_statistics_bytes: int = max_statistics_bytes
        self._channel_stats: np.ndarray = np.zeros((0, number_channels), dtype=CHANNEL_STATS_DTYPE)
        self._sums_of_squares: np.ndarray = np.zeros((0, number_tri_entries(number_channels)), dtype=np.float64)
        self._in_use: list[bool] = []
        self._pin_count: int = 0
        # Scratch buffers
        self.common_covariance: Optional[TriangularMatrix] = None
        self.number_common_covariance_classes: int = 0
        self.loo_covariance: Optional[TriangularMatrix] = None

    @property
    def number_channels(self) -> int:
        return self._number_channels

    @property
    def max_statistics_bytes(self) -> int:
        return self._max_statistics_bytes

    @max_statistics_bytes.setter
    def max_statistics_bytes(self, value: int) -> None:
        if value < 1:
            raise ValueError(f"max_statistics_bytes must be positive, got: {value}")
        self._max_statistics_bytes = value

    @property
    def capacity(self) -> int:
        return len(self._in_use)

    @property
    def number_used_slots(self) -> int:
        return sum(self._in_use)

    @property
    def is_pinned(self) -> bool:
        return self._pin_count > 0

    @property
    def nbytes(self) -> int:
        return int(self._channel_stats.nbytes + self._sums_of_squares.nbytes)

    def slot_bytes(self) -> int:
        """Bytes used by one slot."""
        return int(CHANNEL_STATS_DTYPE.itemsize * self._number_channels + 8 * number_tri_entries(self._number_channels))

    @simple_type_validator
    def check_memory(self, number_bytes: int) -> int:
        """
        Refuse a statistics memory request that reaches the configured limit.

        Raises
        ------
        MemoryError
            If ``number_bytes`` reaches ``max_statistics_bytes``. Nothing is allocated.
        """
        if number_bytes >= self._max_statistics_bytes:
            raise MemoryError(
                f"Statistics memory request of {number_bytes} bytes exceeds the limit of "
                f"{self._max_statistics_bytes} bytes"
            )
        return number_bytes

    def _relocate(self, capacity: int) -> None:
        if self.is_pinned:
            raise RuntimeError("Statistics pool cannot be relocated while pinned by a scan")
        self.check_memory(capacity * self.slot_bytes())
        new_stats = np.zeros((capacity, self._number_channels), dtype=CHANNEL_STATS_DTYPE)
        new_sums = np.zeros((capacity, number_tri_entries(self._number_channels)), dtype=np.float64)
        kept = min(capacity, self.capacity)
        new_stats[:kept] = self._channel_stats[:kept]
        new_sums[:kept] = self._sums_of_squares[:kept]
        self._channel_stats = new_stats
        self._sums_of_squares = new_sums

    def allocate(self) -> int:
        """Reserve a zeroed slot and return its index."""
        for slot, used in enumerate(self._in_use):
            if not used:
                self._in_use[slot] = True
                self.accumulator(slot).zero()
                return slot
        slot = self.capacity
        self._relocate(slot + SLOT_INCREMENT)
        self._in_use.extend([False] * SLOT_INCREMENT)
        self._in_use[slot] = True
        self.accumulator(slot).zero()
        return slot

    @simple_type_validator
    def release(self, slot: int) -> None:
        """Return a slot for reuse."""
        self._check_slot(slot)
        self._in_use[slot] = False

    @simple_type_validator
    def accumulator(self, slot: int) -> Accumulator:
        """Accumulator view of a slot. The view must not be kept beyond the current operation."""
        self._check_slot(slot)
        return Accumulator(self._channel_stats[slot], self._sums_of_squares[slot])

    def _check_slot(self, slot: int) -> None:
        if (slot < 0) or (slot >= self.capacity):
            raise IndexError(f"Statistics slot {slot} out of range, pool capacity: {self.capacity}")

    @simple_type_validator
    def resize_channels(self, number_channels: int) -> None:
        """Change the number of channels of every slot. All slots are zeroed, allocations are kept."""
        if self.is_pinned:
            raise RuntimeError("Statistics pool cannot be relocated while pinned by a scan")
        if number_channels < 1:
            raise ValueError(f"number_channels must be positive, got: {number_channels}")
        capacity = self.capacity
        self.check_memory(
            capacity
            * (CHANNEL_STATS_DTYPE.itemsize * number_channels + 8 * number_tri_entries(number_channels))
        )
        self._number_channels = number_channels
        self._channel_stats = np.zeros((capacity, number_channels), dtype=CHANNEL_STATS_DTYPE)
        self._sums_of_squares = np.zeros((capacity, number_tri_entries(number_channels)), dtype=np.float64)
        for slot in range(capacity):
            self.accumulator(slot).zero()
        self.clear_scratch()

    def clear_scratch(self) -> None:
        self.common_covariance = None
        self.number_common_covariance_classes = 0
        self.loo_covariance = None

    @contextmanager
    def pinned(self) -> Iterator["StatisticsPool"]:
        """
        Pin the storage for the duration of a scan.

        Examples
        --------
        >>> with pool.pinned():
        ...     pool.accumulator(slot).accumulate(pixels)
        """
        self._pin_count += 1
        try:
            yield self
        finally:
            self._pin_count -= 1

    def __repr__(self) -> str:
        return (
            f"StatisticsPool(channels={self._number_channels}, slots={self.number_used_slots}/{self.capacity}, "
            f"nbytes={self.nbytes})"
        )

