# -*- coding: utf-8 -*-
"""
Tests for channel and covariance accumulators and the statistics pool (Accumulator)

The following source code was created with AI assistance and has been human reviewed and edited.

Copyright (c) 2025 Siwei Luo. MIT License.
"""

# Test
import unittest
import pytest

# Testing third
import numpy as np

# Self
# Funcs to test
from specstat.accumulator import (
    SLOT_INCREMENT,
    Accumulator,
    StatisticsPool,
    validate_statistics_code,
)

# %% test functions : Accumulator


class TestAccumulator(unittest.TestCase):
    @staticmethod
    def test_zero_sentinels() -> None:
        """Test zeroed accumulator values"""
        acc = Accumulator.empty(3)
        cs = acc.channel_stats
        np.testing.assert_array_equal(cs["sum"], np.zeros(3))
        assert np.all(np.isposinf(cs["minimum"]))
        assert np.all(np.isneginf(cs["maximum"]))
        np.testing.assert_array_equal(cs["mean"], np.zeros(3))
        np.testing.assert_array_equal(cs["standard_deviation"], np.full(3, -1.0))
        assert not acc.is_derived

    @staticmethod
    def test_accumulate_matches_numpy() -> None:
        """Test covariance from sums equals numpy covariance"""
        rng = np.random.default_rng(0)
        pixels = rng.random((50, 3)) * 100
        acc = Accumulator.empty(3)
        assert acc.accumulate(pixels[:20]) == 20
        for pixel in pixels[20:]:
            acc.accumulate(pixel)

        np.testing.assert_allclose(acc.sums, pixels.sum(axis=0))
        np.testing.assert_allclose(acc.channel_stats["minimum"], pixels.min(axis=0))
        np.testing.assert_allclose(acc.channel_stats["maximum"], pixels.max(axis=0))
        covariance = acc.derive_covariance(50).as_square()
        np.testing.assert_allclose(covariance, np.cov(pixels, rowvar=False), rtol=1e-9)

    @staticmethod
    def test_mean_stddev_code() -> None:
        """Test only variances are kept for mean_stddev statistics"""
        rng = np.random.default_rng(1)
        pixels = rng.random((30, 3))
        acc = Accumulator.empty(3)
        acc.accumulate(pixels, "mean_stddev")
        covariance = acc.derive_covariance(30, "mean_stddev").as_square()

        np.testing.assert_allclose(np.diag(covariance), pixels.var(axis=0, ddof=1), rtol=1e-9)
        assert np.all(covariance[~np.eye(3, dtype=bool)] == 0)

    @staticmethod
    def test_variance_non_negative_and_small_counts() -> None:
        """Test variance sign and counts of one pixel or less"""
        acc = Accumulator.empty(2)
        acc.accumulate(np.array([[5.0, 7.0]]))
        np.testing.assert_array_equal(acc.derive_covariance(1).values, np.zeros(3))
        np.testing.assert_array_equal(acc.derive_covariance(0).values, np.zeros(3))

        # Constant data, variance must not become negative by rounding
        acc = Accumulator.empty(2)
        acc.accumulate(np.full((1000, 2), 0.1))
        assert np.all(acc.derive_covariance(1000).diagonal() >= 0)

    @staticmethod
    def test_derive_mean_stddev() -> None:
        """Test derived means and standard deviations"""
        pixels = np.array([[1.0, 10.0], [3.0, 10.0], [5.0, 10.0]])
        acc = Accumulator.empty(2)
        acc.accumulate(pixels)
        acc.derive_mean_stddev(3)
        np.testing.assert_allclose(acc.channel_stats["mean"], np.array([3.0, 10.0]))
        np.testing.assert_allclose(acc.channel_stats["standard_deviation"], np.array([2.0, 0.0]))
        assert acc.is_derived

    @staticmethod
    def test_combine_commutative() -> None:
        """Test combining fields in either order gives the same sums"""
        rng = np.random.default_rng(2)
        field_a = Accumulator.empty(3)
        field_b = Accumulator.empty(3)
        field_a.accumulate(rng.random((10, 3)))
        field_b.accumulate(rng.random((15, 3)) + 2)

        ab = Accumulator.empty(3)
        ab.combine(field_a, initialize=True)
        ab.combine(field_b)
        ba = Accumulator.empty(3)
        ba.combine(field_b, initialize=True)
        ba.combine(field_a)

        np.testing.assert_allclose(ab.sums, ba.sums)
        np.testing.assert_allclose(ab.sums_of_squares.values, ba.sums_of_squares.values)
        np.testing.assert_array_equal(ab.channel_stats["minimum"], ba.channel_stats["minimum"])
        np.testing.assert_array_equal(ab.channel_stats["maximum"], ba.channel_stats["maximum"])
        np.testing.assert_array_equal(ab.channel_stats["standard_deviation"], np.full(3, -1.0))

    @staticmethod
    def test_combine_initialize_copies() -> None:
        """Test initialize replaces previous content"""
        source = Accumulator.empty(2)
        source.accumulate(np.array([[1.0, 2.0]]))
        target = Accumulator.empty(2)
        target.accumulate(np.array([[100.0, 200.0]]))
        target.combine(source, initialize=True)
        np.testing.assert_array_equal(target.sums, np.array([1.0, 2.0]))
        np.testing.assert_array_equal(target.channel_stats["maximum"], np.array([1.0, 2.0]))

    @staticmethod
    def test_invalid_input() -> None:
        """Test mismatched channels and codes"""
        acc = Accumulator.empty(2)
        with pytest.raises(ValueError, match="channels"):
            acc.accumulate(np.zeros((4, 3)))
        with pytest.raises(ValueError, match="channels"):
            acc.combine(Accumulator.empty(3))
        with pytest.raises(ValueError, match="statistics_code"):
            validate_statistics_code("mean_only")
        assert acc.accumulate(np.zeros((0, 2))) == 0

    @staticmethod
    def test_accumulate_per_line_call() -> None:
        """Test line accumulation takes plain sequences and runs without the signature validator"""
        assert not hasattr(Accumulator.accumulate, "__wrapped__")
        acc = Accumulator.empty(2)
        assert acc.accumulate([[1.0, 2.0], [3.0, 4.0]]) == 2
        assert acc.accumulate((5, 6), "mean_stddev") == 1
        np.testing.assert_array_equal(acc.sums, np.array([9.0, 12.0]))
        with pytest.raises(ValueError, match="statistics_code"):
            acc.accumulate([[1.0, 2.0]], "mean_only")


# %% test functions : StatisticsPool


class TestStatisticsPool(unittest.TestCase):
    @staticmethod
    def test_allocate_and_reuse() -> None:
        """Test slots grow in increments and released slots are reused"""
        pool = StatisticsPool(3)
        slots = [pool.allocate() for _ in range(SLOT_INCREMENT + 1)]
        assert slots == list(range(SLOT_INCREMENT + 1))
        assert pool.capacity == 2 * SLOT_INCREMENT
        assert pool.number_used_slots == SLOT_INCREMENT + 1

        pool.accumulator(2).accumulate(np.ones((4, 3)))
        pool.release(2)
        assert pool.allocate() == 2
        # Reused slots are zeroed
        np.testing.assert_array_equal(pool.accumulator(2).sums, np.zeros(3))

    @staticmethod
    def test_accumulator_is_view() -> None:
        """Test accumulator views write into the pool"""
        pool = StatisticsPool(2)
        slot = pool.allocate()
        pool.accumulator(slot).accumulate(np.array([[1.0, 2.0], [3.0, 4.0]]))
        np.testing.assert_array_equal(pool.accumulator(slot).sums, np.array([4.0, 6.0]))
        with pytest.raises(IndexError):
            pool.accumulator(pool.capacity)

    @staticmethod
    def test_memory_guard() -> None:
        """Test requests reaching the limit are refused before allocation"""
        pool = StatisticsPool(4, max_statistics_bytes=SLOT_INCREMENT * StatisticsPool(4).slot_bytes())
        with pytest.raises(MemoryError):
            pool.allocate()
        assert pool.capacity == 0

        large = StatisticsPool(4)
        with pytest.raises(MemoryError):
            large.check_memory(2**31 - 1)
        assert large.check_memory(1024) == 1024

    @staticmethod
    def test_pinned_blocks_relocation() -> None:
        """Test growth is refused while pinned and the pin is released on errors"""
        pool = StatisticsPool(2)
        for _ in range(SLOT_INCREMENT):
            pool.allocate()

        with pool.pinned():
            assert pool.is_pinned
            with pytest.raises(RuntimeError, match="pinned"):
                pool.allocate()
            with pytest.raises(RuntimeError, match="pinned"):
                pool.resize_channels(3)
        assert not pool.is_pinned

        with pytest.raises(ValueError):
            with pool.pinned():
                raise ValueError("scan failed")
        assert not pool.is_pinned
        assert pool.allocate() == SLOT_INCREMENT

    @staticmethod
    def test_resize_channels() -> None:
        """Test channel resize zeroes slots and scratch buffers"""
        pool = StatisticsPool(2)
        slot = pool.allocate()
        pool.accumulator(slot).accumulate(np.ones((2, 2)))
        pool.number_common_covariance_classes = 2
        pool.resize_channels(3)
        assert pool.number_channels == 3
        assert pool.accumulator(slot).number_channels == 3
        np.testing.assert_array_equal(pool.accumulator(slot).sums, np.zeros(3))
        assert pool.number_common_covariance_classes == 0
        assert pool.common_covariance is None


# %% Test main

# TestAccumulator.test_zero_sentinels()
# TestAccumulator.test_accumulate_matches_numpy()
# TestAccumulator.test_mean_stddev_code()
# TestAccumulator.test_variance_non_negative_and_small_counts()
# TestAccumulator.test_derive_mean_stddev()
# TestAccumulator.test_combine_commutative()
# TestAccumulator.test_combine_initialize_copies()
# TestAccumulator.test_invalid_input()
# TestAccumulator.test_accumulate_per_line_call()

# TestStatisticsPool.test_allocate_and_reuse()
# TestStatisticsPool.test_accumulator_is_view()
# TestStatisticsPool.test_memory_guard()
# TestStatisticsPool.test_pinned_blocks_relocation()
# TestStatisticsPool.test_resize_channels()

if __name__ == "__main__":
    unittest.main()
