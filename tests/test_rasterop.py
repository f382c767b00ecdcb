# -*- coding: utf-8 -*-
"""
Tests for pixel readers, data value filtering and field rasterization (RasterOp)

The following source code was created with AI assistance and has been human reviewed and edited.

Copyright (c) 2025 Siwei Luo. MIT License.
"""

# Test
import pytest
import unittest

# OS Files
import os
import tempfile

# Testing third
import numpy as np

# Rasters
import rasterio

# Self
# Applied package functions for test
from specstat.example_data import create_test_raster

# Funcs to test
from specstat.rasterop import (
    ArrayPixelReader,
    DataValueFilter,
    RasterPixelReader,
    polygon_bounds,
    polygon_pixel_mask,
    rectangle_bounds,
)

# %% test functions : pixel readers


class TestArrayPixelReader(unittest.TestCase):
    @staticmethod
    def test_read_row() -> None:
        """Test reading a line segment"""
        data = np.arange(2 * 4 * 5).reshape(2, 4, 5)
        reader = ArrayPixelReader(data)
        assert reader.number_channels == 2
        assert reader.number_lines == 4
        assert reader.number_columns == 5
        assert reader.number_bits == 8 * data.dtype.itemsize

        row = reader.read_pixel_row(1, 1, 4, [1, 0])
        assert row.shape == (3, 2)
        assert row.dtype == np.float64
        np.testing.assert_array_equal(row[:, 0], data[1, 1, 1:4])
        np.testing.assert_array_equal(row[:, 1], data[0, 1, 1:4])

    @staticmethod
    def test_out_of_range() -> None:
        """Test invalid requests"""
        reader = ArrayPixelReader(np.zeros((2, 4, 5)))
        with pytest.raises(IndexError, match="Line"):
            reader.read_pixel_row(4, 0, 1, [0])
        with pytest.raises(IndexError, match="Columns"):
            reader.read_pixel_row(0, 0, 6, [0])
        with pytest.raises(IndexError, match="Channel"):
            reader.read_pixel_row(0, 0, 1, [2])
        with pytest.raises(ValueError, match="number_bits"):
            ArrayPixelReader(np.zeros((1, 2, 2), dtype="uint8"), number_bits=9)


class TestRasterPixelReader(unittest.TestCase):
    @staticmethod
    def test_read_matches_rasterio() -> None:
        """Test block reads equal a full rasterio read"""
        with tempfile.TemporaryDirectory() as temp_dir:
            raster_path = os.path.join(temp_dir, "test_raster.tif")
            create_test_raster(raster_path, width=30, height=20, bands=3, nodata_value=0)
            with rasterio.open(raster_path) as src:
                expected = src.read()

            with RasterPixelReader(raster_path, block_lines=6) as reader:
                assert reader.number_lines == 20
                assert reader.number_columns == 30
                assert reader.number_channels == 3
                assert reader.no_data_value == 0
                assert reader.number_bytes == 2
                assert reader.number_bits == 16
                for line in (0, 5, 6, 19, 3):
                    row = reader.read_pixel_row(line, 2, 12, [0, 2])
                    np.testing.assert_array_equal(row, expected[[0, 2], line, 2:12].T.astype(float))

    @staticmethod
    def test_closed_and_missing() -> None:
        """Test closed readers and missing files"""
        with tempfile.TemporaryDirectory() as temp_dir:
            raster_path = os.path.join(temp_dir, "test_raster.tif")
            create_test_raster(raster_path, width=10, height=10, bands=2)
            reader = RasterPixelReader(raster_path)
            with pytest.raises(OSError, match="not open"):
                reader.read_pixel_row(0, 0, 1, [0])
            reader.open()
            assert reader.read_pixel_row(0, 0, 10, [0, 1]).shape == (10, 2)
            reader.close()

            with pytest.raises(ValueError, match="does not exist"):
                RasterPixelReader(os.path.join(temp_dir, "missing.tif"))


# %% test functions : DataValueFilter


class TestDataValueFilter(unittest.TestCase):
    @staticmethod
    def test_no_data_window() -> None:
        """Test the tolerance window around the no-data value"""
        data_filter = DataValueFilter(no_data_value=100)
        pixels = np.array([[1.0, 2.0], [100.0, 2.0], [100.0000001, 5.0], [100.1, 3.0]])
        np.testing.assert_array_equal(data_filter.valid_pixels(pixels), np.array([True, False, False, True]))

        negative = DataValueFilter(no_data_value=-9999)
        pixels = np.array([[-9999.0], [-9999.00001], [-9998.0]])
        np.testing.assert_array_equal(negative.valid_pixels(pixels), np.array([False, False, True]))

        zero = DataValueFilter(no_data_value=0)
        np.testing.assert_array_equal(zero.valid_pixels(np.array([[0.0, 1.0], [1.0, 1.0]])), np.array([False, True]))

    @staticmethod
    def test_significant_bits() -> None:
        """Test values above the significant bit range are rejected"""
        data_filter = DataValueFilter(number_bits=12, number_bytes=2)
        assert data_filter.max_usable_value == 4095
        pixels = np.array([[4095.0, 1.0], [4096.0, 1.0]])
        np.testing.assert_array_equal(data_filter.valid_pixels(pixels), np.array([True, False]))

        assert not DataValueFilter(number_bits=16, number_bytes=2).is_active
        assert DataValueFilter(no_data_value=float("nan")).is_active

    @staticmethod
    def test_nan_no_data() -> None:
        """Test a NaN no-data value rejects pixels with a NaN channel"""
        data_filter = DataValueFilter(no_data_value=float("nan"))
        assert data_filter.no_data_is_nan
        pixels = np.array([[1.0, 2.0], [np.nan, 2.0], [3.0, np.nan], [0.0, 0.0]])
        np.testing.assert_array_equal(data_filter.valid_pixels(pixels), np.array([True, False, False, True]))
        assert data_filter.valid_pixels(np.ones((2, 3), dtype=np.uint16)).all()

        assert not DataValueFilter(no_data_value=float("nan"), check_bad_data=False).is_active

    @staticmethod
    def test_disabled() -> None:
        """Test filtering switched off"""
        data_filter = DataValueFilter(no_data_value=0, check_bad_data=False)
        assert not data_filter.is_active
        assert data_filter.valid_pixels(np.zeros((3, 2))).all()

        reader = ArrayPixelReader(np.zeros((1, 2, 2)), no_data_value=0)
        assert DataValueFilter.from_reader(reader).is_active


# %% test functions : field geometry


class TestFieldGeometry(unittest.TestCase):
    @staticmethod
    def test_polygon_pixel_centers() -> None:
        """Test polygon pixels are selected by their centers"""
        triangle = [(0, 0), (3.8, 0), (0, 3.8)]
        bounds = polygon_bounds(triangle, 10, 10)
        assert bounds == (0, 4, 0, 4)
        inside = polygon_pixel_mask(triangle, *bounds)
        expected = np.array(
            [
                [True, True, True, False],
                [True, True, False, False],
                [True, False, False, False],
                [False, False, False, False],
            ]
        )
        np.testing.assert_array_equal(inside, expected)

    @staticmethod
    def test_polygon_window_offset() -> None:
        """Test the window origin is applied"""
        square = [(2.0, 3.0), (5.0, 3.0), (5.0, 6.0), (2.0, 6.0)]
        inside = polygon_pixel_mask(square, 2, 8, 1, 7)
        assert inside.shape == (6, 6)
        assert int(inside.sum()) == 9
        assert inside[1:4, 1:4].all()

    @staticmethod
    def test_bounds_clipped() -> None:
        """Test geometry bounds clipped to the image"""
        assert polygon_bounds([(-2, -2), (3.5, -2), (3.5, 2.2)], 10, 10) == (0, 3, 0, 4)
        assert rectangle_bounds((5, 20, -1, 3), 10, 10) == (5, 10, 0, 3)
        assert polygon_pixel_mask([(0, 0), (1, 0), (1, 1)], 0, 0, 0, 3).shape == (0, 3)

    @staticmethod
    def test_invalid_polygon_repaired() -> None:
        """Test self-intersecting polygons are repaired with a warning"""
        bowtie = [(0, 0), (4, 4), (4, 0), (0, 4)]
        with pytest.warns(UserWarning, match="Invalid field polygon"):
            inside = polygon_pixel_mask(bowtie, 0, 4, 0, 4)
        assert inside.shape == (4, 4)
        assert inside.any()


# %% Test main

# TestArrayPixelReader.test_read_row()
# TestArrayPixelReader.test_out_of_range()

# TestRasterPixelReader.test_read_matches_rasterio()
# TestRasterPixelReader.test_closed_and_missing()

# TestDataValueFilter.test_no_data_window()
# TestDataValueFilter.test_significant_bits()
# TestDataValueFilter.test_nan_no_data()
# TestDataValueFilter.test_disabled()

# TestFieldGeometry.test_polygon_pixel_centers()
# TestFieldGeometry.test_polygon_window_offset()
# TestFieldGeometry.test_bounds_clipped()
# TestFieldGeometry.test_invalid_polygon_repaired()

if __name__ == "__main__":
    unittest.main()
