# -*- coding: utf-8 -*-
"""
Example data generator for SpecStat

Copyright (c) 2025 Siwei Luo. MIT License.
"""

# OS Files
import os

# Typing
from typing import Optional, Union

# Testing third
import numpy as np

# Rasters
import rasterio

# Self
from .project import ProjectContext
from .specio import TrainingMask, simple_type_validator

# %% test helper functions


def _check_tif_path(raster_path: str) -> str:
    raster_path = raster_path.replace("\\", "/").replace("//", "/")
    if (raster_path[-4:] != ".tif") and (raster_path[-5:] != ".tiff"):
        raise ValueError(f"raster_path must have .tif or .tiff extension, got: {raster_path}")
    if not os.path.exists(os.path.dirname(raster_path)):
        raise ValueError(f"raster path directory does not exist: {os.path.dirname(raster_path)}")
    return raster_path


# Test helper functions : create_test_raster
@simple_type_validator
def create_test_raster(
    raster_path: str,
    width: int = 100,
    height: int = 50,
    bands: int = 4,
    incl_nodata: Union[None, int, float] = None,
    nodata_value: Union[int, float, None] = 0,
    dtype: Union[str, type] = "uint16",
    data: Optional[np.ndarray] = None,
) -> str:
    """
    Create a test raster file with by default 100x50 dimensions and 4 bands.

    The mock data increase by band and by blocks of 5 lines, with a small random noise,
    so every block of lines looks like a separate cover class.
    """
    raster_path = _check_tif_path(raster_path)

    # Validate raster data
    if data is None:
        rng = np.random.default_rng(42)
        line_level = (np.arange(height) // 5)[None, :, None] * (360 / bands)
        band_level = np.arange(bands)[:, None, None] * (1080 / bands)
        noise = rng.random((bands, height, width)) * 120 / bands
        data = (band_level + line_level + noise).astype(dtype)
    elif type(data) is np.ndarray:
        data = np.array(data).astype(dtype)
        if data.shape != (bands, height, width):
            raise ValueError(
                f"Given raster data shape {data.shape} does not match specified raster dimensions (bands={bands}, \
                    height={height}, width={width})."
            )
    else:
        raise ValueError(f"Given raster data must be numpy.ndarray, got type: {type(data)}.")

    # Set some nodata values
    if incl_nodata is not None:
        data[0, :, :] = incl_nodata
        if bands > 3:
            data[-1, :, :] = incl_nodata

    # Define transform (georeferencing)
    transform = rasterio.transform.from_bounds(0, 0, width, height, width=width, height=height)

    # Create metadata
    meta = {
        "driver": "GTiff",
        "dtype": dtype,
        "nodata": nodata_value,
        "width": width,
        "height": height,
        "count": bands,
        "crs": None,
        "transform": transform,
    }

    # Write to file
    with rasterio.open(raster_path, "w", **meta) as dst:
        dst.write(data)

    return raster_path


# Alias
create_example_raster = create_test_raster


# Test helper functions : create_test_mask
@simple_type_validator
def create_test_mask(
    mask_path: str,
    width: int = 100,
    height: int = 50,
    values: Optional[np.ndarray] = None,
    dtype: str = "uint8",
) -> str:
    """
    Create a single-band training mask raster.

    By default the mask labels lines 5 to 9 with value 1 and lines 20 to 24 with value 2 in columns 10 to 29.
    """
    mask_path = _check_tif_path(mask_path)
    if values is None:
        values = np.zeros((height, width), dtype=dtype)
        values[5:10, 10:30] = 1
        values[20:25, 10:30] = 2
    values = np.asarray(values).astype(dtype)
    if values.shape != (height, width):
        raise ValueError(f"Mask shape {values.shape} does not match (height={height}, width={width})")

    meta = {
        "driver": "GTiff",
        "dtype": dtype,
        "nodata": None,
        "width": width,
        "height": height,
        "count": 1,
        "crs": None,
        "transform": rasterio.transform.from_bounds(0, 0, width, height, width=width, height=height),
    }
    with rasterio.open(mask_path, "w", **meta) as dst:
        dst.write(values, 1)

    return mask_path


# Test helper functions : create_example_project
@simple_type_validator
def create_example_project(
    number_image_channels: int = 4,
    keep_class_stats_only: bool = False,
    statistics_code: str = "mean_covariance",
    with_mask: bool = False,
    width: int = 100,
    height: int = 50,
) -> ProjectContext:
    """
    Create a two-class project matching the layout of ``create_test_raster``.

    Class 'A' has a rectangle field over lines 0 to 4 and a polygon field over lines 10 to 14.
    Class 'B' has a rectangle field over lines 30 to 34. With ``with_mask``, the mask of
    ``create_test_mask`` is attached and its values 1 and 2 become mask fields of 'A' and 'B'.
    """
    project = ProjectContext(
        number_image_channels,
        statistics_code=statistics_code,
        keep_class_stats_only=keep_class_stats_only,
    )
    class_a = project.add_class("A")
    class_b = project.add_class("B")
    project.add_field(class_a, "A_rect", rectangle=(0, 5, 0, 20))
    project.add_field(class_a, "A_poly", polygon=[(0, 10), (20, 10), (20, 15), (0, 15)])
    project.add_field(class_b, "B_rect", rectangle=(30, 35, 0, 20))

    if with_mask:
        mask_values = np.zeros((height, width), dtype=np.int64)
        mask_values[5:10, 10:30] = 1
        mask_values[20:25, 10:30] = 2
        project.set_training_mask(TrainingMask(mask_values))
        project.add_field(class_a, "A_mask", mask_value=1)
        project.add_field(class_b, "B_mask", mask_value=2)

    return project
