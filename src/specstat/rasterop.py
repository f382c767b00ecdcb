# -*- coding: utf-8 -*-
"""
Pixel readers, data value filtering and field geometry rasterization for SpecStat

Copyright (c) 2025 Siwei Luo. MIT License.
"""

# Basics
import math
import os
import warnings

# Typing
from typing import Annotated, Any, Optional, Union

import numpy as np

# Raster
import rasterio
from rasterio.features import geometry_mask
from rasterio.transform import Affine
from rasterio.windows import Window
from shapely.geometry import Polygon

# Self
from .specio import arraylike_validator, simple_type_validator

# %% Pixel readers


class ArrayPixelReader:
    """
    Pixel reader over an in-memory image array.

    Parameters
    ----------
    data : 3D array-like
        Image data of shape (bands, lines, columns).

    no_data_value : int or float, optional
        No-data value of the image. The default is None.

    number_bits : int, optional
        Number of significant bits of the data values. The default is the bit width of the data type.
    """

    @simple_type_validator
    def __init__(
        self,
        data: Annotated[Any, arraylike_validator(ndim=3)],
        no_data_value: Union[int, float, None] = None,
        number_bits: Optional[int] = None,
    ) -> None:
        self._data: np.ndarray = np.asarray(data)
        self.no_data_value: Union[int, float, None] = no_data_value
        self.number_bytes: int = int(self._data.dtype.itemsize)
        if number_bits is None:
            number_bits = 8 * self.number_bytes
        if (number_bits < 1) or (number_bits > 8 * self.number_bytes):
            raise ValueError(f"number_bits must be in range 1 to {8 * self.number_bytes}, got: {number_bits}")
        self.number_bits: int = number_bits

    @property
    def number_channels(self) -> int:
        return int(self._data.shape[0])

    @property
    def number_lines(self) -> int:
        return int(self._data.shape[1])

    @property
    def number_columns(self) -> int:
        return int(self._data.shape[2])

    def read_pixel_row(self, line: int, column_start: int, column_stop: int, channels: list[int]) -> np.ndarray:
        """Pixel values of a line segment, shape (column_stop - column_start, len(channels))."""
        _check_row_request(self, line, column_start, column_stop, channels)
        result: np.ndarray = self._data[channels, line, column_start:column_stop].T.astype(np.float64)
        return result

    def __enter__(self) -> "ArrayPixelReader":
        return self

    def __exit__(self, *args: Any) -> None:
        return None


class RasterPixelReader:
    """
    Pixel reader of a raster image file, reading blocks of lines with rasterio windows.

    Use as a context manager, or call ``open`` and ``close``.

    Parameters
    ----------
    raster_path : str
        Raster image path.

    block_lines : int, optional
        Number of lines read at once and cached. The default is 32.
    """

    @simple_type_validator
    def __init__(self, raster_path: str, block_lines: int = 32) -> None:
        if not os.path.exists(raster_path):
            raise ValueError(f"Raster file does not exist: {raster_path}")
        if block_lines < 1:
            raise ValueError(f"block_lines must be positive, got: {block_lines}")
        self.raster_path: str = raster_path
        self.block_lines: int = block_lines
        self._src: Any = None
        self._block: Optional[np.ndarray] = None
        self._block_start: int = -1
        self.number_lines: int = 0
        self.number_columns: int = 0
        self.number_channels: int = 0
        self.no_data_value: Union[int, float, None] = None
        self.number_bytes: int = 0
        self.number_bits: int = 0

    def open(self) -> "RasterPixelReader":
        with warnings.catch_warnings():
            warnings.filterwarnings("ignore", category=rasterio.errors.NotGeoreferencedWarning)
            self._src = rasterio.open(self.raster_path)
        src = self._src
        self.number_lines = src.height
        self.number_columns = src.width
        self.number_channels = src.count
        self.no_data_value = src.nodata
        self.number_bytes = int(np.dtype(src.dtypes[0]).itemsize)
        nbits = src.tags(1, ns="IMAGE_STRUCTURE").get("NBITS", src.tags(ns="IMAGE_STRUCTURE").get("NBITS"))
        self.number_bits = int(nbits) if nbits is not None else 8 * self.number_bytes
        self._block = None
        self._block_start = -1
        return self

    def close(self) -> None:
        if self._src is not None:
            self._src.close()
        self._src = None
        self._block = None
        self._block_start = -1

    def __enter__(self) -> "RasterPixelReader":
        return self.open()

    def __exit__(self, *args: Any) -> None:
        self.close()

    def _load_block(self, line: int) -> np.ndarray:
        if (self._block is not None) and (self._block_start <= line < self._block_start + self._block.shape[1]):
            return self._block
        height = min(self.block_lines, self.number_lines - line)
        win = Window(col_off=0, row_off=line, width=self.number_columns, height=height)
        try:
            block = self._src.read(window=win)
        except rasterio.errors.RasterioError as e:
            raise OSError(f"Failed to read lines {line} to {line + height} of '{self.raster_path}': {e}") from e
        self._block = block
        self._block_start = line
        return block

    def read_pixel_row(self, line: int, column_start: int, column_stop: int, channels: list[int]) -> np.ndarray:
        """
        Pixel values of a line segment.

        Parameters
        ----------
        line : int
            0-based image line.

        column_start, column_stop : int
            Half-open column range.

        channels : list[int]
            0-based channels to read.

        Returns
        -------
        numpy.ndarray
            Float64 array of shape (column_stop - column_start, len(channels)).

        Raises
        ------
        OSError
            If the raster cannot be read.
        """
        if self._src is None:
            raise OSError(f"Raster '{self.raster_path}' is not open")
        _check_row_request(self, line, column_start, column_stop, channels)
        block = self._load_block(line)
        result: np.ndarray = block[channels, line - self._block_start, column_start:column_stop].T.astype(np.float64)
        return result


def _check_row_request(reader: Any, line: int, column_start: int, column_stop: int, channels: list[int]) -> None:
    if (line < 0) or (line >= reader.number_lines):
        raise IndexError(f"Line {line} out of range for image with {reader.number_lines} lines")
    if (column_start < 0) or (column_stop > reader.number_columns) or (column_stop < column_start):
        raise IndexError(
            f"Columns [{column_start}, {column_stop}) out of range for image with {reader.number_columns} columns"
        )
    for channel in channels:
        if (channel < 0) or (channel >= reader.number_channels):
            raise IndexError(f"Channel {channel} out of range for image with {reader.number_channels} channels")


# %% Data value filter

# Relative tolerance window around the no-data value
NO_DATA_LOWER_FACTOR = 0.99999999
NO_DATA_UPPER_FACTOR = 1.00000001


class DataValueFilter:
    """
    Reject pixels containing no-data or out-of-range values.

    With a no-data value, a pixel is rejected if any channel lies in the relative tolerance window around it.
    A NaN no-data value rejects pixels with a NaN channel.
    Otherwise, when fewer bits than the data type width are significant, a pixel is rejected if any channel
    exceeds ``2**number_bits - 1``. Otherwise every pixel is kept.

    Parameters
    ----------
    no_data_value : int or float, optional
        No-data value. The default is None.

    number_bits : int, optional
        Significant bits of the data. The default is None.

    number_bytes : int, optional
        Bytes per data value. The default is None.

    check_bad_data : bool, optional
        Whether filtering is applied at all. The default is True.
    """

    def __init__(
        self,
        no_data_value: Union[int, float, None] = None,
        number_bits: Optional[int] = None,
        number_bytes: Optional[int] = None,
        check_bad_data: bool = True,
    ) -> None:
        self.check_bad_data: bool = check_bad_data
        self.no_data_value: Optional[float] = None
        self.no_data_is_nan: bool = False
        self.no_data_min: float = 0.0
        self.no_data_max: float = 0.0
        self.max_usable_value: Optional[float] = None

        if (no_data_value is not None) and math.isnan(float(no_data_value)):
            self.no_data_value = float(no_data_value)
            self.no_data_is_nan = True
        elif no_data_value is not None:
            self.no_data_value = float(no_data_value)
            if self.no_data_value >= 0:
                self.no_data_min = NO_DATA_LOWER_FACTOR * self.no_data_value
                self.no_data_max = NO_DATA_UPPER_FACTOR * self.no_data_value
            else:
                self.no_data_min = NO_DATA_UPPER_FACTOR * self.no_data_value
                self.no_data_max = NO_DATA_LOWER_FACTOR * self.no_data_value
        elif (number_bits is not None) and (number_bytes is not None) and (number_bits < 8 * number_bytes):
            self.max_usable_value = float(2**number_bits - 1)

    @classmethod
    def from_reader(cls, reader: Any, check_bad_data: bool = True) -> "DataValueFilter":
        return cls(
            no_data_value=getattr(reader, "no_data_value", None),
            number_bits=getattr(reader, "number_bits", None),
            number_bytes=getattr(reader, "number_bytes", None),
            check_bad_data=check_bad_data,
        )

    @property
    def is_active(self) -> bool:
        return self.check_bad_data and ((self.no_data_value is not None) or (self.max_usable_value is not None))

    def valid_pixels(self, pixels: np.ndarray) -> np.ndarray:
        """Boolean vector marking the pixels of a (n_pixels, n_channels) block to keep."""
        if not self.is_active:
            return np.ones(pixels.shape[0], dtype=bool)
        if self.no_data_is_nan:
            bad = np.isnan(pixels)
        elif self.no_data_value is not None:
            bad = (pixels >= self.no_data_min) & (pixels <= self.no_data_max)
        else:
            bad = pixels > self.max_usable_value
        result: np.ndarray = ~np.any(bad, axis=1)
        return result


# %% Field geometry


@simple_type_validator
def polygon_bounds(
    polygon: list[tuple[Union[int, float], Union[int, float]]], number_lines: int, number_columns: int
) -> tuple[int, int, int, int]:
    """
    Half-open pixel bounds ``(line_start, line_stop, column_start, column_stop)`` of a polygon, clipped to the image.
    """
    min_x, min_y, max_x, max_y = Polygon(polygon).bounds
    line_start = max(0, int(math.floor(min_y)))
    line_stop = min(number_lines, int(math.ceil(max_y)))
    column_start = max(0, int(math.floor(min_x)))
    column_stop = min(number_columns, int(math.ceil(max_x)))
    return line_start, max(line_start, line_stop), column_start, max(column_start, column_stop)


@simple_type_validator
def polygon_pixel_mask(
    polygon: list[tuple[Union[int, float], Union[int, float]]],
    line_start: int,
    line_stop: int,
    column_start: int,
    column_stop: int,
) -> np.ndarray:
    """
    Pixels of a window whose centers fall inside a polygon.

    Parameters
    ----------
    polygon : list[tuple[float, float]]
        Polygon vertices ``(column, line)`` in pixel coordinates.

    line_start, line_stop, column_start, column_stop : int
        Half-open window of the image.

    Returns
    -------
    numpy.ndarray
        Boolean array of shape (line_stop - line_start, column_stop - column_start), True inside the polygon.
    """
    out_shape = (line_stop - line_start, column_stop - column_start)
    if (out_shape[0] <= 0) or (out_shape[1] <= 0):
        return np.zeros((max(out_shape[0], 0), max(out_shape[1], 0)), dtype=bool)
    poly = Polygon(polygon)
    if not poly.is_valid:
        warnings.warn(f"Invalid field polygon {polygon} is repaired with a zero buffer", UserWarning, stacklevel=2)
        poly = poly.buffer(0)
    if poly.is_empty:
        return np.zeros(out_shape, dtype=bool)
    transform = Affine.translation(column_start, line_start)
    inside: np.ndarray = geometry_mask([poly], out_shape=out_shape, transform=transform, invert=True)
    return inside


@simple_type_validator
def rectangle_bounds(
    rectangle: tuple[int, int, int, int], number_lines: int, number_columns: int
) -> tuple[int, int, int, int]:
    """Clip a half-open rectangle to the image."""
    line_start, line_stop, column_start, column_stop = rectangle
    line_start = max(0, line_start)
    column_start = max(0, column_start)
    line_stop = max(line_start, min(number_lines, line_stop))
    column_stop = max(column_start, min(number_columns, column_stop))
    return line_start, line_stop, column_start, column_stop
