# -*- coding: utf-8 -*-
"""
Validation utilities and training mask I/O for SpecStat

Copyright (c) 2025 Siwei Luo. MIT License.
"""

# Basics
import inspect
import os
import warnings

# Typing
from functools import wraps
from typing import (
    Annotated,
    Any,
    Callable,
    Optional,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

# Calculation
import numpy as np
import pandas as pd

# Raster
import rasterio
from rasterio.windows import Window

# %% simple_type_validator - Basic validator with serilization compatibility


def simple_type_validator(func: Callable) -> Callable:  # type: ignore[no-untyped-def]  # noqa: C901
    """
    Python function runtime native type validator for serilization of multiprocessing
    """

    @wraps(func)
    def wrapper(*args, **kwargs):  # type: ignore[no-untyped-def]  # noqa: C901
        hints = get_type_hints(func, include_extras=True)
        sig = inspect.signature(func)

        def check_type(  # type: ignore[no-untyped-def]  # noqa: C901
            value: Any, expected_type: Any
        ) -> tuple[bool, str]:
            # Error msg in check_type
            err_msg = ""

            # Early return for None values
            if value is None:
                # Check if None is allowed (Optional[T] or Union[T, None])
                origin = get_origin(expected_type)
                if origin is Union and type(None) in get_args(expected_type):
                    return True, err_msg
                return False, err_msg

            # Handle Any type - should always pass
            if expected_type is Any:
                return True, err_msg

            # Handle special typing constructs
            origin = get_origin(expected_type)

            # Handle simple types
            if origin is None:
                if isinstance(value, expected_type):
                    return True, err_msg
                # Numpy scalars are accepted for Python numbers
                elif (expected_type is int) and isinstance(value, np.integer):
                    return True, err_msg
                elif (expected_type is float) and isinstance(value, np.floating):
                    return True, err_msg
                elif (expected_type is bool) and isinstance(value, np.bool_):
                    return True, err_msg
                else:
                    return False, err_msg

            # Union[T1, T2, ...] or Optional[T]
            if origin is Union:
                return any(check_type(value, t)[0] for t in get_args(expected_type)), err_msg

            # Callable[[args], return]
            if origin is Callable:
                return callable(value), err_msg

            # Handle containers (list, tuple, set, etc.)
            if origin in (list, tuple, set, frozenset):
                if not isinstance(value, origin):
                    return False, err_msg

                type_args = get_args(expected_type)
                if not type_args:
                    return True, err_msg

                # Handle tuples (fixed-length)
                if origin is tuple:
                    if len(type_args) > 1:
                        if Ellipsis in type_args:
                            if (len(type_args) == 2) & (type_args[0] is not Ellipsis):
                                return all(check_type(x, type_args[0])[0] for x in value), err_msg
                            else:
                                raise ValueError(
                                    "Invalid tuple annotation with Ellipsis: "
                                    f"expected exactly one type before '...', got: {type_args}"
                                )
                        if len(value) != len(type_args):
                            return False, err_msg
                        return all(check_type(x, t)[0] for x, t in zip(value, type_args)), err_msg
                    else:
                        return all(check_type(x, type_args[0])[0] for x in value), err_msg

                # Handle list, set, etc. (all elements must match the first type arg)
                return all(check_type(x, type_args[0])[0] for x in value), err_msg

            # Handle dict[K, V]
            if origin is dict:
                if not isinstance(value, dict):
                    return False, err_msg
                type_args = get_args(expected_type)
                if not type_args:
                    return True, err_msg
                key_type, value_type = type_args
                return (
                    all(check_type(k, key_type)[0] and check_type(v, value_type)[0] for k, v in value.items()),
                    err_msg,
                )

            # Handle Annotated[T, ...]
            if origin is Annotated:
                base_type, *validators = get_args(expected_type)
                if not check_type(value, base_type)[0]:
                    return False, err_msg
                for validator in validators:
                    try:
                        validator(value)
                    except (TypeError, ValueError) as e:
                        err_msg = f"\n\nValidator error: \n{e}"
                        return False, err_msg
                return True, err_msg

            # Handle unrecognized types
            return isinstance(value, origin), err_msg

        # Validate all arguments
        bound_args = sig.bind(*args, **kwargs)
        for name, value in bound_args.arguments.items():
            if name in hints:
                is_valid, err_msg = check_type(value, hints[name])
                if not is_valid:
                    expected = hints[name]
                    raise TypeError(
                        f"Validation error for {name}\n\n "
                        f"Expected type: {expected}\n\n "
                        f"Got type: {type(value)}\n\n "
                        f"Got value: \n{repr(value)} "
                        f"{err_msg} "
                    )

        return func(*args, **kwargs)

    return wrapper


# %% Validator for numpy array-like


@simple_type_validator
def arraylike_validator(  # noqa: C901
    ndim: Optional[int] = None,
    shape: Optional[tuple[int, ...]] = None,
    as_type: Union[type, str, None] = None,
    d_type: Union[type, str, None] = None,
) -> Callable:
    """
    Validator for array-like data used in ``Annotated`` hints.

    Parameters
    ----------
    ndim : int, optional
        ndim of the array. If not given, the criteria will not be applied.
        The default is None.

    shape : tuple[int,...], optional
        shape of the array. 0 represents variable length, indicating the dimension can have any size.
        The default is None.

    as_type : type or str, optional
        Convert simple datatypes of the values of the arraylike.

    d_type : type or str, optional
        Validate simple datatypes of the values of the arraylike.
    """
    if ndim is not None:
        if ndim < 0:
            raise ValueError(f"ndim cannot be negative, got: {ndim}")

    if shape is not None:
        for dimk in shape:
            if dimk < 0:
                raise ValueError(f"shape dimension cannot be negative. Got shape: {shape}\n")

    def arraylike_val(array_like_data: Any) -> np.ndarray:  # noqa: C901
        v = array_like_data

        # Validate conversion
        if isinstance(v, np.ndarray):
            arr = v
        elif isinstance(v, (list, tuple, pd.DataFrame, pd.Series)):
            try:
                arr = np.array(v)
            except ValueError as e:
                raise ValueError(f"Given data '{v}' cannot be converted to numpy.ndarray\nGot error: {e}\n") from e
        else:
            raise TypeError(f"Given data \n{v}\n with data type \n'{type(v)}'\n cannot be converted to numpy.ndarray.")

        # Validate ndim
        if ndim is not None:
            if arr.ndim != ndim:
                raise ValueError(f"Given data has an incompatible ndim. Expected: {ndim}, Got: {arr.ndim}\n")

        # Validate shape
        if shape is not None:
            if len(arr.shape) != len(shape):
                raise ValueError(f"Given data has an incompatible ndim. Expected: {len(shape)}, Got: {arr.ndim}\n")
            for dim_i, dim_size in enumerate(shape):
                if (dim_size != 0) & (dim_size != arr.shape[dim_i]):
                    raise ValueError(f"Given data has an incompatible shape. Expected: {shape}, Got: {arr.shape}\n")

        # Convert dtype
        if as_type is not None:
            try:
                arr = arr.astype(as_type)
            except (TypeError, ValueError) as e:
                raise ValueError(f"Failed to convert array data type to {as_type}: \n{str(e)}\n") from e

        # Validate dtype
        if d_type is not None:
            if arr.dtype != np.dtype(d_type):
                raise TypeError(f"Expect array data type: {np.dtype(d_type)}, but got: {arr.dtype}")

        return arr

    return arraylike_val


# %% Training mask


class TrainingMask:
    """
    Training mask raster with the lookup from mask values to project field numbers.

    Parameters
    ----------
    values : 2D array-like of int
        Mask values, 0 is unassigned. Each nonzero value identifies one mask-defined field.

    line_offset : int, optional
        Image line of the first mask line. The default is 0.

    column_offset : int, optional
        Image column of the first mask column. The default is 0.

    value_to_field : dict[int, int], optional
        Initial mapping from mask values to field numbers. The default is None.
    """

    @simple_type_validator
    def __init__(
        self,
        values: Annotated[Any, arraylike_validator(ndim=2)],
        line_offset: int = 0,
        column_offset: int = 0,
        value_to_field: Optional[dict[int, int]] = None,
    ) -> None:
        values = np.asarray(values)
        if not np.issubdtype(values.dtype, np.integer):
            raise TypeError(f"Mask values must be integers, got dtype: {values.dtype}")
        if np.any(values < 0):
            raise ValueError("Mask values cannot be negative")
        if (line_offset < 0) or (column_offset < 0):
            raise ValueError(f"Mask offsets cannot be negative, got: ({line_offset}, {column_offset})")
        self._values: np.ndarray = values.astype(np.int64)
        self._line_offset: int = int(line_offset)
        self._column_offset: int = int(column_offset)
        self._value_to_field: dict[int, int] = {}
        if value_to_field is not None:
            for mask_value, field_number in value_to_field.items():
                self.assign(mask_value, field_number)

    @property
    def values(self) -> np.ndarray:
        return self._values

    @property
    def line_offset(self) -> int:
        return self._line_offset

    @property
    def column_offset(self) -> int:
        return self._column_offset

    @property
    def number_lines(self) -> int:
        return int(self._values.shape[0])

    @property
    def number_columns(self) -> int:
        return int(self._values.shape[1])

    @property
    def value_to_field(self) -> dict[int, int]:
        return dict(self._value_to_field)

    @simple_type_validator
    def assign(self, mask_value: int, field_number: int) -> None:
        """Map a nonzero mask value to a field number."""
        if mask_value <= 0:
            raise ValueError(f"Mask value of a field must be positive, got: {mask_value}")
        if field_number < 0:
            raise ValueError(f"Invalid field number: {field_number}")
        self._value_to_field[int(mask_value)] = int(field_number)

    @simple_type_validator
    def unassign(self, mask_value: int) -> None:
        self._value_to_field.pop(int(mask_value), None)

    def field_lookup(self) -> np.ndarray:
        """
        Dense lookup vector from mask value to field number, -1 for values without a field.
        """
        max_value = max(int(self._values.max(initial=0)), max(self._value_to_field, default=0))
        lookup = np.full(max_value + 1, -1, dtype=np.int64)
        for mask_value, field_number in self._value_to_field.items():
            lookup[mask_value] = field_number
        return lookup

    def field_number_count(self, field_number: int) -> int:
        """Number of mask pixels labelled with the values of the given field."""
        mask_values = [v for v, f in self._value_to_field.items() if f == field_number]
        if len(mask_values) == 0:
            return 0
        return int(np.isin(self._values, mask_values).sum())

    def __repr__(self) -> str:
        return (
            f"TrainingMask(shape={self._values.shape}, offset=({self._line_offset}, {self._column_offset}), "
            f"fields={len(self._value_to_field)})"
        )


@simple_type_validator
def read_training_mask(
    mask_path: str,
    value_to_field: Optional[dict[int, int]] = None,
    band: int = 1,
    line_offset: int = 0,
    column_offset: int = 0,
) -> TrainingMask:
    """
    Read a training mask from a single-band integer raster.

    Parameters
    ----------
    mask_path : str
        Mask raster path.

    value_to_field : dict[int, int], optional
        Mapping from mask values to field numbers. The default is None.

    band : int, optional
        Band of the mask raster holding the mask values. The default is 1.

    line_offset : int, optional
        Image line of the first mask line. The default is 0.

    column_offset : int, optional
        Image column of the first mask column. The default is 0.

    Returns
    -------
    TrainingMask
        Loaded training mask.
    """
    if not os.path.exists(mask_path):
        raise ValueError(f"Mask file does not exist: {mask_path}")

    # Silencing NotGeoreferencedWarning
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=rasterio.errors.NotGeoreferencedWarning)
        with rasterio.open(mask_path) as src:
            if (band < 1) or (band > src.count):
                raise ValueError(f"Mask band must be in range 1 to {src.count}, got: {band}")
            values = src.read(band, window=Window(col_off=0, row_off=0, width=src.width, height=src.height))

    if not np.issubdtype(values.dtype, np.integer):
        if not np.all(np.equal(np.mod(values, 1), 0)):
            raise ValueError(f"Mask raster must contain integer values, got dtype: {values.dtype}")
        values = values.astype(np.int64)

    return TrainingMask(values, line_offset=line_offset, column_offset=column_offset, value_to_field=value_to_field)
