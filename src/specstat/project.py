# -*- coding: utf-8 -*-
"""
Training field and class records, project settings and the statistics consistency tracker

Copyright (c) 2025 Siwei Luo. MIT License.
"""

# Basics
import warnings

# Typing
from typing import Annotated, Any, Optional, Union

import numpy as np
import pandas as pd

# Self
from .accumulator import DEFAULT_MAX_STATISTICS_BYTES, STATISTICS_CODES, Accumulator, StatisticsPool
from .specio import TrainingMask, arraylike_validator, simple_type_validator
from .statmatrix import TriangularMatrix

# %% Option constants

FIELD_TYPES = ("training", "test", "cluster")
POINT_TYPES = ("rectangle", "polygon", "mask")
FIELD_STATES = ("dirty", "scanning", "clean")
COVARIANCE_STATS_OPTIONS = ("original", "enhanced", "leave_one_out", "mixed")
MIXING_PARAMETER_CODES = ("computed_optimum", "user_set", "identity_matrix")


def _check_option(value: str, options: tuple[str, ...], name: str) -> str:
    if value not in options:
        raise ValueError(f"{name} must be one of {options}, got: '{value}'")
    return value


# %% Records


class FieldRecord:
    """
    Training or test field of a class.

    The geometry is one of a half-open pixel rectangle ``(line_start, line_stop, column_start, column_stop)``,
    a polygon of ``(column, line)`` vertices in pixel coordinates, or a training mask value.
    """

    def __init__(
        self,
        name: str,
        class_number: int,
        field_type: str = "training",
        rectangle: Optional[tuple[int, int, int, int]] = None,
        polygon: Optional[list[tuple[float, float]]] = None,
        mask_value: Optional[int] = None,
    ) -> None:
        self.name: str = name
        self.class_number: int = class_number
        self.field_type: str = _check_option(field_type, FIELD_TYPES, "field_type")
        self.training_stats_number: int = -1
        self.number_pixels: int = 0
        self.number_pixels_used_for_stats: int = 0
        self.state: str = "dirty"
        self.loaded_into_class_stats: bool = False
        self.rectangle: Optional[tuple[int, int, int, int]] = None
        self.polygon: Optional[list[tuple[float, float]]] = None
        self.mask_value: Optional[int] = None
        self.set_geometry(rectangle=rectangle, polygon=polygon, mask_value=mask_value)

    @property
    def point_type(self) -> str:
        if self.mask_value is not None:
            return "mask"
        elif self.polygon is not None:
            return "polygon"
        return "rectangle"

    @property
    def stats_up_to_date(self) -> bool:
        return self.state == "clean"

    @property
    def is_training(self) -> bool:
        return self.field_type == "training"

    def set_geometry(
        self,
        rectangle: Optional[tuple[int, int, int, int]] = None,
        polygon: Optional[list[tuple[float, float]]] = None,
        mask_value: Optional[int] = None,
    ) -> None:
        given = [g is not None for g in (rectangle, polygon, mask_value)]
        if sum(given) != 1:
            raise ValueError("Exactly one of rectangle, polygon or mask_value must be given for a field")
        if rectangle is not None:
            line_start, line_stop, column_start, column_stop = rectangle
            if (line_start < 0) or (column_start < 0) or (line_stop <= line_start) or (column_stop <= column_start):
                raise ValueError(f"Invalid field rectangle: {rectangle}")
            self.number_pixels = (line_stop - line_start) * (column_stop - column_start)
        if polygon is not None:
            if len(polygon) < 3:
                raise ValueError(f"Field polygon must have at least 3 vertices, got: {len(polygon)}")
        if mask_value is not None:
            if mask_value <= 0:
                raise ValueError(f"Mask value of a field must be positive, got: {mask_value}")
        self.rectangle = rectangle
        self.polygon = None if polygon is None else [(float(x), float(y)) for x, y in polygon]
        self.mask_value = mask_value

    def __repr__(self) -> str:
        return (
            f"FieldRecord(name='{self.name}', class_number={self.class_number}, field_type='{self.field_type}', "
            f"point_type='{self.point_type}', state='{self.state}')"
        )


class ClassRecord:
    """Training class with its owned list of field numbers and covariance settings."""

    def __init__(self, name: str, weight: float = 1.0, pool: Optional[StatisticsPool] = None) -> None:
        self._pool: Optional[StatisticsPool] = pool
        self.name: str = name
        self.field_numbers: list[int] = []
        self.number_of_train_fields: int = 0
        self.number_statistics_pixels: int = 0
        self.stats_up_to_date: bool = False
        self.stats_slot: int = -1
        self.covariance_stats_to_use: str = "original"
        self.mixing_parameter_code: str = "computed_optimum"
        self.loo_covariance_value: float = -1.0
        self.user_mixing_parameter: float = 1.0
        self.modified_stats_flag: bool = False
        self.enhanced_mean: Optional[np.ndarray] = None
        self.enhanced_covariance: Optional[TriangularMatrix] = None
        self.list_message_flag: bool = True
        self.weight = weight

    @property
    def weight(self) -> float:
        return self._weight

    @weight.setter
    def weight(self, value: Union[int, float]) -> None:
        if value < 0:
            raise ValueError(f"Class weight cannot be negative, got: {value}")
        self._weight = float(value)
        # The project common covariance is weighted by class weights
        if self._pool is not None:
            self._pool.clear_scratch()

    def __repr__(self) -> str:
        return (
            f"ClassRecord(name='{self.name}', fields={self.field_numbers}, "
            f"stats_up_to_date={self.stats_up_to_date})"
        )


# %% Project context


class ProjectContext:
    """
    Statistics project: settings, classes, fields, training mask and the shared statistics pool.

    Every scan, covariance and training call receives the project explicitly.

    Parameters
    ----------
    number_image_channels : int
        Number of channels of the project image.

    channels : list[int], optional
        0-based image channels used for statistics. The default is all channels.

    statistics_code : str, optional
        ``'mean_covariance'`` or ``'mean_stddev'``. The default is ``'mean_covariance'``.

    keep_class_stats_only : bool, optional
        Keep statistics per class only, field statistics are folded into the class during the scan.
        The default is False.

    zero_variance_factor : float, optional
        Value substituted for zero variances. The default is 0.0001.

    set_zero_variance : bool, optional
        Whether zero variances are substituted. The default is True.

    list_one_message_per_class : bool, optional
        Whether degenerate matrix messages are listed once per class only. The default is True.

    check_bad_data : bool, optional
        Whether no-data and out-of-range values are excluded from statistics. The default is True.

    use_common_covariance_in_looc : bool, optional
        Whether leave-one-out covariances mix with the common covariance. The default is True.

    max_statistics_bytes : int, optional
        Limit of a statistics memory request in bytes. The default is ``2**31 - 1``.

    verbose : bool, optional
        Print progress information. The default is False.
    """

    @simple_type_validator
    def __init__(
        self,
        number_image_channels: int,
        channels: Optional[list[int]] = None,
        statistics_code: str = "mean_covariance",
        keep_class_stats_only: bool = False,
        zero_variance_factor: Union[int, float] = 0.0001,
        set_zero_variance: bool = True,
        list_one_message_per_class: bool = True,
        check_bad_data: bool = True,
        use_common_covariance_in_looc: bool = True,
        max_statistics_bytes: int = DEFAULT_MAX_STATISTICS_BYTES,
        verbose: bool = False,
    ) -> None:
        if number_image_channels < 1:
            raise ValueError(f"number_image_channels must be positive, got: {number_image_channels}")
        self._number_image_channels: int = number_image_channels
        if channels is None:
            channels = list(range(number_image_channels))
        self._channels: list[int] = self._validate_channels(channels)
        self._statistics_code: str = _check_option(statistics_code, STATISTICS_CODES, "statistics_code")
        self._keep_class_stats_only: bool = keep_class_stats_only
        self._pool: StatisticsPool = StatisticsPool(len(self._channels), max_statistics_bytes)
        self.zero_variance_factor = zero_variance_factor
        self.set_zero_variance = set_zero_variance
        self.list_one_message_per_class: bool = list_one_message_per_class
        self.check_bad_data: bool = check_bad_data
        self.use_common_covariance_in_looc: bool = use_common_covariance_in_looc
        self.verbose: bool = verbose

        self._fields: list[Optional[FieldRecord]] = []
        self._classes: list[Optional[ClassRecord]] = []
        self._training_mask: Optional[TrainingMask] = None
        self._covariance_stats_to_use: str = "original"
        # Shared field slot used while folding fields in class-only mode
        self._scratch_field_slot: int = -1

    # %% Settings

    def _validate_channels(self, channels: list[int]) -> list[int]:
        if len(channels) == 0:
            raise ValueError("At least one channel must be used for statistics")
        if len(set(channels)) != len(channels):
            raise ValueError(f"Duplicate channels: {channels}")
        for channel in channels:
            if (channel < 0) or (channel >= self._number_image_channels):
                raise ValueError(f"Channel {channel} out of range for {self._number_image_channels} image channels")
        return [int(c) for c in channels]

    @property
    def number_image_channels(self) -> int:
        return self._number_image_channels

    @property
    def channels(self) -> list[int]:
        return list(self._channels)

    @channels.setter
    def channels(self, value: list[int]) -> None:
        channels = self._validate_channels(value)
        if channels == self._channels:
            return
        self._channels = channels
        self._pool.resize_channels(len(channels))
        self._invalidate_all()

    @property
    def number_channels(self) -> int:
        return len(self._channels)

    @property
    def statistics_code(self) -> str:
        return self._statistics_code

    @statistics_code.setter
    def statistics_code(self, value: str) -> None:
        _check_option(value, STATISTICS_CODES, "statistics_code")
        if value == self._statistics_code:
            return
        # Cross-products are only kept for mean_covariance
        self._statistics_code = value
        self._invalidate_all()

    @property
    def keep_class_stats_only(self) -> bool:
        return self._keep_class_stats_only

    @keep_class_stats_only.setter
    def keep_class_stats_only(self, value: bool) -> None:
        if value == self._keep_class_stats_only:
            return
        self._keep_class_stats_only = value
        for class_number in self.class_numbers:
            class_record = self.class_record(class_number)
            if value and (class_record.stats_slot < 0):
                class_record.stats_slot = self._pool.allocate()
            elif (not value) and (class_record.stats_slot >= 0):
                self._pool.release(class_record.stats_slot)
                class_record.stats_slot = -1
        for field_number in self.field_numbers:
            field = self.field(field_number)
            if field.is_training:
                if (not value) and (field.training_stats_number < 0):
                    field.training_stats_number = self._pool.allocate()
                elif value and (field.training_stats_number >= 0):
                    self._pool.release(field.training_stats_number)
                    field.training_stats_number = -1
        if (not value) and (self._scratch_field_slot >= 0):
            self._pool.release(self._scratch_field_slot)
            self._scratch_field_slot = -1
        self._invalidate_all()

    @property
    def zero_variance_factor(self) -> float:
        return self._zero_variance_factor

    @zero_variance_factor.setter
    def zero_variance_factor(self, value: Union[int, float]) -> None:
        if value <= 0:
            raise ValueError(f"zero_variance_factor must be positive, got: {value}")
        self._zero_variance_factor = float(value)
        self._pool.clear_scratch()

    @property
    def set_zero_variance(self) -> bool:
        return self._set_zero_variance

    @set_zero_variance.setter
    def set_zero_variance(self, value: bool) -> None:
        self._set_zero_variance = bool(value)
        self._pool.clear_scratch()

    @property
    def max_statistics_bytes(self) -> int:
        return self._pool.max_statistics_bytes

    @max_statistics_bytes.setter
    def max_statistics_bytes(self, value: int) -> None:
        self._pool.max_statistics_bytes = value

    @property
    def pool(self) -> StatisticsPool:
        return self._pool

    @property
    def training_mask(self) -> Optional[TrainingMask]:
        return self._training_mask

    @property
    def covariance_stats_to_use(self) -> str:
        return self._covariance_stats_to_use

    @property
    def number_common_covariance_classes(self) -> int:
        return self._pool.number_common_covariance_classes

    # %% Classes and fields

    @property
    def class_numbers(self) -> list[int]:
        return [i for i, c in enumerate(self._classes) if c is not None]

    @property
    def field_numbers(self) -> list[int]:
        return [i for i, f in enumerate(self._fields) if f is not None]

    @simple_type_validator
    def class_record(self, class_number: int) -> ClassRecord:
        if (class_number < 0) or (class_number >= len(self._classes)) or (self._classes[class_number] is None):
            raise IndexError(f"Class {class_number} does not exist")
        class_record = self._classes[class_number]
        assert class_record is not None
        return class_record

    @simple_type_validator
    def field(self, field_number: int) -> FieldRecord:
        if (field_number < 0) or (field_number >= len(self._fields)) or (self._fields[field_number] is None):
            raise IndexError(f"Field {field_number} does not exist")
        field = self._fields[field_number]
        assert field is not None
        return field

    @simple_type_validator
    def training_field_numbers(self, class_number: int) -> list[int]:
        return [f for f in self.class_record(class_number).field_numbers if self.field(f).is_training]

    @simple_type_validator
    def add_class(self, name: str, weight: Union[int, float] = 1.0) -> int:
        """Add an empty class and return its class number."""
        class_record = ClassRecord(name, weight, self._pool)
        if self._keep_class_stats_only:
            class_record.stats_slot = self._pool.allocate()
        self._classes.append(class_record)
        self._pool.clear_scratch()
        return len(self._classes) - 1

    @simple_type_validator
    def add_field(
        self,
        class_number: int,
        name: str,
        field_type: str = "training",
        rectangle: Optional[tuple[int, int, int, int]] = None,
        polygon: Optional[list[tuple[Union[int, float], Union[int, float]]]] = None,
        mask_value: Optional[int] = None,
    ) -> int:
        """
        Add a field to a class and return its field number.

        Parameters
        ----------
        class_number : int
            Owning class.

        name : str
            Field name.

        field_type : str, optional
            ``'training'``, ``'test'`` or ``'cluster'``. The default is ``'training'``.

        rectangle : tuple[int, int, int, int], optional
            Half-open pixel rectangle ``(line_start, line_stop, column_start, column_stop)``.

        polygon : list[tuple[float, float]], optional
            Polygon vertices ``(column, line)`` in pixel coordinates.

        mask_value : int, optional
            Training mask value of the field.

        Returns
        -------
        int
            Field number.
        """
        class_record = self.class_record(class_number)
        self._check_mask_value_unused(mask_value)
        field = FieldRecord(name, class_number, field_type, rectangle, polygon, mask_value)
        field_number = len(self._fields)
        if field.is_training and (not self._keep_class_stats_only):
            field.training_stats_number = self._pool.allocate()
        self._fields.append(field)
        class_record.field_numbers.append(field_number)
        if field.is_training:
            class_record.number_of_train_fields += 1
        if (mask_value is not None) and (self._training_mask is not None):
            self._training_mask.assign(mask_value, field_number)
            field.number_pixels = self._training_mask.field_number_count(field_number)
        if field.is_training:
            self.invalidate_class(class_number)
        return field_number

    def _check_mask_value_unused(self, mask_value: Optional[int], field_number: Optional[int] = None) -> None:
        if mask_value is None:
            return
        for other in self.field_numbers:
            if (other != field_number) and (self.field(other).mask_value == mask_value):
                raise ValueError(f"Mask value {mask_value} is already used by field {other}")

    @simple_type_validator
    def remove_field(self, field_number: int) -> None:
        field = self.field(field_number)
        class_number = field.class_number
        class_record = self.class_record(class_number)
        self.invalidate_field(field_number)
        if field.training_stats_number >= 0:
            self._pool.release(field.training_stats_number)
        if (field.mask_value is not None) and (self._training_mask is not None):
            self._training_mask.unassign(field.mask_value)
        class_record.field_numbers.remove(field_number)
        if field.is_training:
            class_record.number_of_train_fields -= 1
        self._fields[field_number] = None

    @simple_type_validator
    def remove_class(self, class_number: int) -> None:
        class_record = self.class_record(class_number)
        for field_number in list(class_record.field_numbers):
            self.remove_field(field_number)
        if class_record.stats_slot >= 0:
            self._pool.release(class_record.stats_slot)
        self._classes[class_number] = None
        self._pool.clear_scratch()

    @simple_type_validator
    def set_field_geometry(
        self,
        field_number: int,
        rectangle: Optional[tuple[int, int, int, int]] = None,
        polygon: Optional[list[tuple[Union[int, float], Union[int, float]]]] = None,
        mask_value: Optional[int] = None,
    ) -> None:
        """Replace the geometry of a field, the field becomes dirty."""
        field = self.field(field_number)
        self._check_mask_value_unused(mask_value, field_number)
        # Validate before the mask value of the field is released
        FieldRecord(field.name, field.class_number, field.field_type, rectangle, polygon, mask_value)
        if (field.mask_value is not None) and (self._training_mask is not None):
            self._training_mask.unassign(field.mask_value)
        field.set_geometry(rectangle=rectangle, polygon=polygon, mask_value=mask_value)
        if (mask_value is not None) and (self._training_mask is not None):
            self._training_mask.assign(mask_value, field_number)
            field.number_pixels = self._training_mask.field_number_count(field_number)
        self.invalidate_field(field_number)

    @simple_type_validator
    def set_training_mask(self, training_mask: Optional[TrainingMask]) -> None:
        """Attach a training mask, every mask-defined field becomes dirty."""
        self._training_mask = training_mask
        for field_number in self.field_numbers:
            field = self.field(field_number)
            if field.mask_value is not None:
                if training_mask is not None:
                    training_mask.assign(field.mask_value, field_number)
                    field.number_pixels = training_mask.field_number_count(field_number)
                else:
                    field.number_pixels = 0
                self.invalidate_field(field_number)

    # %% Statistics slots

    @simple_type_validator
    def field_accumulator(self, field_number: int) -> Accumulator:
        field = self.field(field_number)
        if field.training_stats_number < 0:
            raise ValueError(f"Field {field_number} has no field statistics slot")
        return self._pool.accumulator(field.training_stats_number)

    @simple_type_validator
    def class_accumulator(self, class_number: int) -> Accumulator:
        class_record = self.class_record(class_number)
        if class_record.stats_slot < 0:
            raise ValueError(f"Class {class_number} has no class statistics slot, keep_class_stats_only is off")
        return self._pool.accumulator(class_record.stats_slot)

    def scratch_field_slot(self) -> int:
        """Shared field slot of class-only mode, allocated on first use."""
        if self._scratch_field_slot < 0:
            self._scratch_field_slot = self._pool.allocate()
        return self._scratch_field_slot

    # %% Consistency tracking

    @simple_type_validator
    def invalidate_field(self, field_number: int) -> None:
        """
        Mark a field dirty after an edit of its geometry or pixels.

        The owning class and the project aggregate become dirty. In class-only mode the class
        statistics can not be separated by field, so the whole class is rebuilt on the next update.
        """
        field = self.field(field_number)
        class_number = field.class_number
        field.state = "dirty"
        if not field.is_training:
            return
        if field.loaded_into_class_stats:
            field.loaded_into_class_stats = False
        field.number_pixels_used_for_stats = 0
        if field.training_stats_number >= 0:
            self._pool.accumulator(field.training_stats_number).zero()
        if self._keep_class_stats_only:
            self.reset_class_statistics(class_number)
        self.invalidate_class(class_number)

    @simple_type_validator
    def invalidate_class(self, class_number: int) -> None:
        class_record = self.class_record(class_number)
        class_record.stats_up_to_date = False
        class_record.number_statistics_pixels = self.number_pixels_loaded_in_class(class_number)
        self._pool.clear_scratch()

    @simple_type_validator
    def reset_class_statistics(self, class_number: int) -> None:
        """Zero the class statistics and mark every field of the class for rescanning."""
        class_record = self.class_record(class_number)
        for field_number in class_record.field_numbers:
            field = self.field(field_number)
            field.loaded_into_class_stats = False
            field.number_pixels_used_for_stats = 0
            field.state = "dirty"
        class_record.number_statistics_pixels = 0
        class_record.stats_up_to_date = False
        if class_record.stats_slot >= 0:
            self._pool.accumulator(class_record.stats_slot).zero()

    def _invalidate_all(self) -> None:
        for class_number in self.class_numbers:
            self.reset_class_statistics(class_number)
            for field_number in self.class_record(class_number).field_numbers:
                field = self.field(field_number)
                if field.training_stats_number >= 0:
                    self._pool.accumulator(field.training_stats_number).zero()
        self._pool.clear_scratch()

    @simple_type_validator
    def number_pixels_loaded_in_class(self, class_number: int) -> int:
        """Number of pixels of the training fields already folded into the class."""
        total = 0
        for field_number in self.training_field_numbers(class_number):
            field = self.field(field_number)
            if field.loaded_into_class_stats:
                total += field.number_pixels_used_for_stats
        return total

    def is_project_statistics_up_to_date(self) -> bool:
        """True when every class with training fields has up to date statistics."""
        for class_number in self.class_numbers:
            class_record = self.class_record(class_number)
            if (class_record.number_of_train_fields > 0) and (not class_record.stats_up_to_date):
                return False
        return True

    @simple_type_validator
    def is_class_statistics_up_to_date(self, class_number: int) -> bool:
        return self.class_record(class_number).stats_up_to_date

    # %% Clearing before updates

    @simple_type_validator
    def clear_field_statistics(self, field_number: int) -> None:
        """Zero the statistics of a field that is not up to date."""
        field = self.field(field_number)
        if field.stats_up_to_date or (not field.is_training):
            return
        field.number_pixels_used_for_stats = 0
        if field.training_stats_number >= 0:
            self._pool.accumulator(field.training_stats_number).zero()

    @simple_type_validator
    def clear_class_statistics(self, class_number: int) -> None:
        """Recount the loaded pixels of a class and zero the statistics that must be recomputed."""
        class_record = self.class_record(class_number)
        if class_record.stats_up_to_date:
            return
        class_record.number_statistics_pixels = self.number_pixels_loaded_in_class(class_number)
        if self._keep_class_stats_only:
            if class_record.number_statistics_pixels == 0:
                self.reset_class_statistics(class_number)
        else:
            for field_number in self.training_field_numbers(class_number):
                self.clear_field_statistics(field_number)

    def clear_project_statistics(self) -> None:
        for class_number in self.class_numbers:
            self.clear_class_statistics(class_number)

    # %% Covariance statistics to use

    @simple_type_validator
    def set_class_covariance_stats_to_use(self, class_number: int, covariance_stats_to_use: str) -> None:
        """
        Set the covariance statistics of a class and update the project aggregate.

        A class cannot use ``'mixed'``. ``'enhanced'`` without enhanced statistics falls back to ``'original'``.
        ``'leave_one_out'`` with a computed optimum that was never computed makes the class dirty.
        """
        _check_option(covariance_stats_to_use, COVARIANCE_STATS_OPTIONS, "covariance_stats_to_use")
        if covariance_stats_to_use == "mixed":
            raise ValueError("A class cannot use 'mixed' covariance statistics")
        class_record = self.class_record(class_number)
        if (covariance_stats_to_use == "enhanced") and (not class_record.modified_stats_flag):
            warnings.warn(
                f"Class '{class_record.name}' has no enhanced statistics, original statistics are used.",
                UserWarning,
                stacklevel=2,
            )
            covariance_stats_to_use = "original"
        class_record.covariance_stats_to_use = covariance_stats_to_use
        if (
            (covariance_stats_to_use == "leave_one_out")
            and (class_record.mixing_parameter_code == "computed_optimum")
            and (class_record.loo_covariance_value < 0)
        ):
            class_record.stats_up_to_date = False
        self._update_project_covariance_stats_to_use()

    @simple_type_validator
    def set_project_covariance_stats_to_use(self, covariance_stats_to_use: str) -> None:
        """Apply a covariance statistics setting to every class, ``'mixed'`` keeps the class settings."""
        _check_option(covariance_stats_to_use, COVARIANCE_STATS_OPTIONS, "covariance_stats_to_use")
        if covariance_stats_to_use != "mixed":
            for class_number in self.class_numbers:
                self.set_class_covariance_stats_to_use(class_number, covariance_stats_to_use)
        self._update_project_covariance_stats_to_use()

    def _update_project_covariance_stats_to_use(self) -> None:
        """Recompute the project setting, the cached common covariance depends on the class settings."""
        settings = {self.class_record(c).covariance_stats_to_use for c in self.class_numbers}
        if len(settings) == 1:
            self._covariance_stats_to_use = settings.pop()
        elif len(settings) > 1:
            self._covariance_stats_to_use = "mixed"
        else:
            self._covariance_stats_to_use = "original"
        self._pool.clear_scratch()

    @simple_type_validator
    def set_mixing_parameter(
        self,
        class_number: int,
        mixing_parameter_code: str,
        user_mixing_parameter: Optional[Union[int, float]] = None,
    ) -> None:
        _check_option(mixing_parameter_code, MIXING_PARAMETER_CODES, "mixing_parameter_code")
        class_record = self.class_record(class_number)
        class_record.mixing_parameter_code = mixing_parameter_code
        if user_mixing_parameter is not None:
            if (user_mixing_parameter < 0) or (user_mixing_parameter > 3):
                raise ValueError(f"user_mixing_parameter must be in [0, 3], got: {user_mixing_parameter}")
            class_record.user_mixing_parameter = float(user_mixing_parameter)

    @simple_type_validator
    def set_loo_covariance_value(self, class_number: int, loo_covariance_value: Union[int, float]) -> None:
        """Store the computed optimum leave-one-out mixing value of a class, -1 marks it as not computed."""
        if (loo_covariance_value > 3) or ((loo_covariance_value < 0) and (loo_covariance_value != -1)):
            raise ValueError(f"loo_covariance_value must be in [0, 3] or -1, got: {loo_covariance_value}")
        self.class_record(class_number).loo_covariance_value = float(loo_covariance_value)

    @simple_type_validator
    def set_enhanced_statistics(
        self,
        class_number: int,
        mean: Annotated[Any, arraylike_validator(ndim=1)],
        covariance: Annotated[Any, arraylike_validator(ndim=2)],
    ) -> None:
        """
        Store enhanced statistics of a class for the project channels.

        Parameters
        ----------
        class_number : int
            Class to set.

        mean : array-like of shape (n_channels,)
            Enhanced mean vector.

        covariance : array-like of shape (n_channels, n_channels)
            Enhanced covariance matrix, only the lower-left triangle is stored.
        """
        n = self.number_channels
        mean = np.asarray(mean, dtype=np.float64)
        covariance = np.asarray(covariance, dtype=np.float64)
        if (mean.shape != (n,)) or (covariance.shape != (n, n)):
            raise ValueError(
                f"Enhanced statistics must match {n} channels, got mean {mean.shape} and covariance {covariance.shape}"
            )
        self._pool.check_memory(8 * (n + n * (n + 1) // 2))
        class_record = self.class_record(class_number)
        class_record.enhanced_mean = mean.copy()
        class_record.enhanced_covariance = TriangularMatrix.from_square(covariance)
        class_record.modified_stats_flag = True
        self._pool.clear_scratch()

    @simple_type_validator
    def clear_enhanced_statistics(self, class_number: int) -> None:
        class_record = self.class_record(class_number)
        class_record.enhanced_mean = None
        class_record.enhanced_covariance = None
        class_record.modified_stats_flag = False
        if class_record.covariance_stats_to_use == "enhanced":
            class_record.covariance_stats_to_use = "original"
        self._update_project_covariance_stats_to_use()

    @simple_type_validator
    def set_class_list_message_flag(self, list_message_flag: bool) -> None:
        """Reset the degenerate matrix message flag of every class."""
        for class_number in self.class_numbers:
            self.class_record(class_number).list_message_flag = list_message_flag

    # %% Listing

    def ls_classes(self) -> pd.DataFrame:
        """Summary of the project classes."""
        rows = []
        for class_number in self.class_numbers:
            class_record = self.class_record(class_number)
            rows.append(
                {
                    "Class_number": class_number,
                    "Name": class_record.name,
                    "Fields": len(class_record.field_numbers),
                    "Train_fields": class_record.number_of_train_fields,
                    "Pixels": class_record.number_statistics_pixels,
                    "Up_to_date": class_record.stats_up_to_date,
                    "Covariance_stats": class_record.covariance_stats_to_use,
                    "Weight": class_record.weight,
                }
            )
        columns = ["Class_number", "Name", "Fields", "Train_fields", "Pixels", "Up_to_date", "Covariance_stats", "Weight"]
        return pd.DataFrame(rows, columns=columns)

    def ls_fields(self, class_number: Optional[int] = None) -> pd.DataFrame:
        """Summary of the project fields, optionally of one class."""
        rows = []
        for field_number in self.field_numbers:
            field = self.field(field_number)
            if (class_number is not None) and (field.class_number != class_number):
                continue
            rows.append(
                {
                    "Field_number": field_number,
                    "Name": field.name,
                    "Class_number": field.class_number,
                    "Field_type": field.field_type,
                    "Point_type": field.point_type,
                    "Pixels": field.number_pixels,
                    "Pixels_used": field.number_pixels_used_for_stats,
                    "State": field.state,
                    "Loaded": field.loaded_into_class_stats,
                }
            )
        columns = [
            "Field_number",
            "Name",
            "Class_number",
            "Field_type",
            "Point_type",
            "Pixels",
            "Pixels_used",
            "State",
            "Loaded",
        ]
        return pd.DataFrame(rows, columns=columns)

    def __repr__(self) -> str:
        return (
            f"ProjectContext(channels={self._channels}, classes={len(self.class_numbers)}, "
            f"fields={len(self.field_numbers)}, statistics_code='{self._statistics_code}')"
        )
