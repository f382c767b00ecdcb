# -*- coding: utf-8 -*-
"""
Area and training mask scanners, and the statistics update control of a project

Copyright (c) 2025 Siwei Luo. MIT License.
"""

# Basics
import warnings

# Typing
from typing import Any, Optional, Protocol, runtime_checkable

import numpy as np
from tqdm import tqdm

# Self
from .project import ProjectContext
from .rasterop import DataValueFilter, polygon_bounds, polygon_pixel_mask, rectangle_bounds
from .specio import simple_type_validator

# %% Constants

UPDATE_SCOPES = ("project", "class", "field")
SCAN_STATUSES = ("done", "cancelled", "failed")

# Number of lines between progress reports and cancellation checks
DEFAULT_CHECK_LINES = 16


# %% Progress and cancellation


@runtime_checkable
class ProgressSink(Protocol):
    def report_progress(self, current: int, total: int) -> None: ...
    def is_cancelled(self) -> bool: ...


class NullProgress:
    """Progress sink that reports nothing and never cancels."""

    def report_progress(self, current: int, total: int) -> None:
        return None

    def is_cancelled(self) -> bool:
        return False


class TqdmProgress:
    """
    Progress sink showing a tqdm progress bar, cancelled by calling ``cancel``.

    Parameters
    ----------
    description : str, optional
        Progress bar description. The default is "Statistics".

    disable : bool, optional
        Whether the bar is hidden. The default is False.
    """

    def __init__(self, description: str = "Statistics", disable: bool = False) -> None:
        self._bar: Any = tqdm(total=0, desc=description, disable=disable)
        self._cancelled: bool = False

    def report_progress(self, current: int, total: int) -> None:
        if self._bar.total != total:
            self._bar.reset(total=total)
        self._bar.n = current
        self._bar.refresh()

    def cancel(self) -> None:
        self._cancelled = True

    def is_cancelled(self) -> bool:
        return self._cancelled

    def close(self) -> None:
        self._bar.close()


class _LinePoller:
    """Report progress and check cancellation every ``check_lines`` lines."""

    def __init__(self, progress: ProgressSink, check_lines: int) -> None:
        if check_lines < 1:
            raise ValueError(f"check_lines must be positive, got: {check_lines}")
        self.progress = progress
        self.check_lines = check_lines
        self._lines = 0

    def line_done(self, current: int, total: int) -> bool:
        """Count a line, returns True if the scan is cancelled."""
        self._lines += 1
        if (self._lines % self.check_lines == 0) or (current == total):
            self.progress.report_progress(current, total)
            return bool(self.progress.is_cancelled())
        return False


# %% Area scanner


class AreaScanner:
    """
    Scanner of rectangle and polygon training fields.

    Field statistics are written to the field slot, or in class-only mode to the shared
    scratch field slot from which they are folded into the class slot.

    Parameters
    ----------
    project : ProjectContext
        Statistics project.

    reader : pixel reader
        Object with ``read_pixel_row(line, column_start, column_stop, channels)`` and the image attributes
        ``number_lines``, ``number_columns``, ``no_data_value``, ``number_bits`` and ``number_bytes``.

    progress : ProgressSink, optional
        Progress and cancellation sink. The default is ``NullProgress()``.

    check_lines : int, optional
        Lines between cancellation checks. The default is 16.
    """

    def __init__(
        self,
        project: ProjectContext,
        reader: Any,
        progress: Optional[ProgressSink] = None,
        check_lines: int = DEFAULT_CHECK_LINES,
    ) -> None:
        self.project = project
        self.reader = reader
        self.progress: ProgressSink = NullProgress() if progress is None else progress
        self.data_filter = DataValueFilter.from_reader(reader, project.check_bad_data)
        self._poller = _LinePoller(self.progress, check_lines)
        if project.keep_class_stats_only:
            project.scratch_field_slot()

    def _field_slot(self, field_number: int) -> int:
        if self.project.keep_class_stats_only:
            return self.project.scratch_field_slot()
        return self.project.field(field_number).training_stats_number

    def field_region(self, field_number: int) -> tuple[int, int, int, int, Optional[np.ndarray]]:
        field = self.project.field(field_number)
        n_lines, n_columns = self.reader.number_lines, self.reader.number_columns
        if field.point_type == "polygon":
            assert field.polygon is not None
            line_start, line_stop, column_start, column_stop = polygon_bounds(field.polygon, n_lines, n_columns)
            inside = polygon_pixel_mask(field.polygon, line_start, line_stop, column_start, column_stop)
            return line_start, line_stop, column_start, column_stop, inside
        assert field.rectangle is not None
        line_start, line_stop, column_start, column_stop = rectangle_bounds(field.rectangle, n_lines, n_columns)
        return line_start, line_stop, column_start, column_stop, None

    @simple_type_validator
    def update_field_area_stats(self, field_number: int) -> str:
        """
        Scan a rectangle or polygon training field.

        The target slot is zeroed before the scan. On cancellation or read failure it is zeroed again
        and the field stays dirty.

        Returns
        -------
        str
            ``'done'``, ``'cancelled'`` or ``'failed'``.
        """
        project = self.project
        field = project.field(field_number)
        if field.field_type == "cluster":
            raise ValueError(f"Cluster field '{field.name}' has no area statistics")
        if not field.is_training:
            raise ValueError(f"Statistics are only computed for training fields, field '{field.name}' is a test field")
        if field.point_type == "mask":
            return "done"

        with project.pool.pinned():
            accumulator = project.pool.accumulator(self._field_slot(field_number))
            accumulator.zero()
            field.state = "scanning"
            field.number_pixels_used_for_stats = 0

            line_start, line_stop, column_start, column_stop, inside = self.field_region(field_number)
            if inside is not None:
                field.number_pixels = int(inside.sum())
            total = line_stop - line_start
            number_used = 0
            for i, line in enumerate(range(line_start, line_stop)):
                if (inside is not None) and (not inside[i].any()):
                    cancelled = self._poller.line_done(i + 1, total)
                else:
                    try:
                        pixels = self.reader.read_pixel_row(line, column_start, column_stop, project.channels)
                    except OSError as e:
                        accumulator.zero()
                        field.state = "dirty"
                        warnings.warn(
                            f"Statistics scan of field '{field.name}' failed at line {line}: {e}",
                            UserWarning,
                            stacklevel=2,
                        )
                        return "failed"
                    if inside is not None:
                        pixels = pixels[inside[i]]
                    pixels = pixels[self.data_filter.valid_pixels(pixels)]
                    number_used += accumulator.accumulate(pixels, project.statistics_code)
                    cancelled = self._poller.line_done(i + 1, total)
                if cancelled:
                    accumulator.zero()
                    field.state = "dirty"
                    return "cancelled"

            field.number_pixels_used_for_stats = number_used
            if project.keep_class_stats_only:
                # Field statistics are not retained, the class holds them after folding
                field.state = "dirty"
            else:
                accumulator.derive_mean_stddev(number_used, project.statistics_code)
                field.state = "clean"
        return "done"

    @simple_type_validator
    def update_class_area_stats(self, class_number: int) -> str:
        """Scan the dirty area training fields of a class and fold each into the class once."""
        project = self.project
        class_record = project.class_record(class_number)
        with project.pool.pinned():
            for field_number in project.training_field_numbers(class_number):
                field = project.field(field_number)
                if (field.point_type == "mask") or field.loaded_into_class_stats:
                    continue
                if not field.stats_up_to_date:
                    status = self.update_field_area_stats(field_number)
                    if status != "done":
                        return status
                if project.keep_class_stats_only:
                    project.class_accumulator(class_number).combine(
                        project.pool.accumulator(project.scratch_field_slot()),
                        initialize=(class_record.number_statistics_pixels == 0),
                    )
                class_record.number_statistics_pixels += field.number_pixels_used_for_stats
                field.loaded_into_class_stats = True
        return "done"

    def update_project_area_stats(self) -> str:
        for class_number in self.project.class_numbers:
            if not self.project.class_record(class_number).stats_up_to_date:
                status = self.update_class_area_stats(class_number)
                if status != "done":
                    return status
        return "done"


# %% Mask statistics updater


class MaskStatsUpdater:
    """
    Single pass scanner of all mask-defined training fields in a scope.

    Each mask line holding a value of a pending field is read once, and its pixels are
    accumulated into the field slots (or class slots in class-only mode) of their fields.
    Lines without pending mask values are not read.

    Parameters
    ----------
    project : ProjectContext
        Statistics project with a training mask.

    reader : pixel reader
        Image pixel reader.

    progress : ProgressSink, optional
        Progress and cancellation sink. The default is ``NullProgress()``.

    check_lines : int, optional
        Lines between cancellation checks. The default is 16.
    """

    def __init__(
        self,
        project: ProjectContext,
        reader: Any,
        progress: Optional[ProgressSink] = None,
        check_lines: int = DEFAULT_CHECK_LINES,
    ) -> None:
        self.project = project
        self.reader = reader
        self.progress: ProgressSink = NullProgress() if progress is None else progress
        self.data_filter = DataValueFilter.from_reader(reader, project.check_bad_data)
        self._poller = _LinePoller(self.progress, check_lines)

    def _pending_fields(self, scope: str, class_number: int, field_number: int) -> list[int]:
        project = self.project
        pending = []
        for f in project.field_numbers:
            field = project.field(f)
            if (not field.is_training) or (field.point_type != "mask"):
                continue
            if (scope == "class") and (field.class_number != class_number):
                continue
            if (scope == "field") and (f != field_number):
                continue
            if project.keep_class_stats_only:
                if field.loaded_into_class_stats:
                    continue
            elif field.stats_up_to_date:
                continue
            pending.append(f)
        return pending

    def _rollback(self, pending: list[int]) -> None:
        project = self.project
        if project.keep_class_stats_only:
            for class_number in sorted({project.field(f).class_number for f in pending}):
                project.reset_class_statistics(class_number)
        else:
            for f in pending:
                field = project.field(f)
                project.pool.accumulator(field.training_stats_number).zero()
                field.number_pixels_used_for_stats = 0
                field.state = "dirty"

    @simple_type_validator
    def update_project_mask_stats(self, scope: str = "project", class_number: int = -1, field_number: int = -1) -> str:
        """
        Update the pending mask fields of a scope in one pass over the training mask.

        Parameters
        ----------
        scope : str, optional
            ``'project'``, ``'class'`` or ``'field'``. The default is ``'project'``.

        class_number : int, optional
            Class of the ``'class'`` scope.

        field_number : int, optional
            Field of the ``'field'`` scope.

        Returns
        -------
        str
            ``'done'``, ``'cancelled'`` or ``'failed'``.
        """
        if scope not in UPDATE_SCOPES:
            raise ValueError(f"scope must be one of {UPDATE_SCOPES}, got: '{scope}'")
        project = self.project
        pending = self._pending_fields(scope, class_number, field_number)
        if len(pending) == 0:
            return "done"
        mask = project.training_mask
        if mask is None:
            raise ValueError("Mask-defined training fields require a training mask, set one with set_training_mask")

        lookup = mask.field_lookup()
        value_pending = np.isin(lookup, pending)

        with project.pool.pinned():
            # Target slot and pixel count per pending field
            slots: dict[int, int] = {}
            counts: dict[int, int] = {}
            for f in pending:
                field = project.field(f)
                if project.keep_class_stats_only:
                    slots[f] = project.class_record(field.class_number).stats_slot
                else:
                    slots[f] = field.training_stats_number
                    project.pool.accumulator(slots[f]).zero()
                    field.state = "scanning"
                field.number_pixels_used_for_stats = 0
                counts[f] = 0

            column_positions = np.arange(mask.number_columns) + mask.column_offset
            in_image = column_positions < self.reader.number_columns
            total = mask.number_lines
            for mask_line in range(mask.number_lines):
                image_line = mask.line_offset + mask_line
                if image_line >= self.reader.number_lines:
                    break
                values = mask.values[mask_line]
                selected = value_pending[values] & in_image
                if selected.any():
                    columns = np.nonzero(selected)[0]
                    first, last = int(columns[0]), int(columns[-1]) + 1
                    try:
                        pixels = self.reader.read_pixel_row(
                            image_line,
                            first + mask.column_offset,
                            last + mask.column_offset,
                            project.channels,
                        )
                    except OSError as e:
                        self._rollback(pending)
                        warnings.warn(
                            f"Training mask statistics scan failed at line {image_line}: {e}",
                            UserWarning,
                            stacklevel=2,
                        )
                        return "failed"
                    segment = selected[first:last]
                    pixels = pixels[segment]
                    pixel_fields = lookup[values[first:last][segment]]
                    valid = self.data_filter.valid_pixels(pixels)
                    pixels, pixel_fields = pixels[valid], pixel_fields[valid]
                    for f in np.unique(pixel_fields):
                        f = int(f)
                        counts[f] += project.pool.accumulator(slots[f]).accumulate(
                            pixels[pixel_fields == f], project.statistics_code
                        )
                if self._poller.line_done(mask_line + 1, total):
                    self._rollback(pending)
                    return "cancelled"

            for f in pending:
                project.field(f).number_pixels_used_for_stats = counts[f]
                if not project.keep_class_stats_only:
                    project.field(f).state = "dirty"
        return "done"

    @simple_type_validator
    def finish_field_mask_stats_update(self, field_number: int) -> None:
        """Derive the statistics of a scanned mask field and mark it clean."""
        project = self.project
        field = project.field(field_number)
        if (field.point_type != "mask") or (not field.is_training) or project.keep_class_stats_only:
            return
        if field.stats_up_to_date:
            return
        project.field_accumulator(field_number).derive_mean_stddev(
            field.number_pixels_used_for_stats, project.statistics_code
        )
        field.state = "clean"

    @simple_type_validator
    def finish_class_mask_stats_update(self, class_number: int) -> None:
        """Fold the scanned mask fields of a class into the class pixel count."""
        project = self.project
        class_record = project.class_record(class_number)
        for field_number in project.training_field_numbers(class_number):
            field = project.field(field_number)
            if (field.point_type != "mask") or field.loaded_into_class_stats:
                continue
            self.finish_field_mask_stats_update(field_number)
            class_record.number_statistics_pixels += field.number_pixels_used_for_stats
            field.loaded_into_class_stats = True


# %% Update control


@simple_type_validator
def finish_class_stats_update(project: ProjectContext, class_number: int) -> None:
    """Mark a class up to date when all its training fields are folded in."""
    class_record = project.class_record(class_number)
    train_fields = project.training_field_numbers(class_number)
    class_record.number_statistics_pixels = project.number_pixels_loaded_in_class(class_number)
    class_record.stats_up_to_date = (len(train_fields) > 0) and all(
        project.field(f).loaded_into_class_stats for f in train_fields
    )
    if class_record.stats_up_to_date and project.keep_class_stats_only:
        project.class_accumulator(class_number).derive_mean_stddev(
            class_record.number_statistics_pixels, project.statistics_code
        )


@simple_type_validator
def update_statistics(
    project: ProjectContext,
    reader: Any,
    scope: str = "project",
    class_number: int = -1,
    field_number: int = -1,
    progress: Optional[ProgressSink] = None,
    check_lines: int = DEFAULT_CHECK_LINES,
) -> str:
    """
    Bring the statistics of a scope up to date.

    Dirty statistics of the scope are cleared, area fields are scanned, the training mask
    is scanned once for all pending mask fields, and the scope is finished.

    Parameters
    ----------
    project : ProjectContext
        Statistics project.

    reader : pixel reader
        Image pixel reader, see ``AreaScanner``.

    scope : str, optional
        ``'project'``, ``'class'`` or ``'field'``. The default is ``'project'``.

    class_number : int, optional
        Class of the ``'class'`` scope.

    field_number : int, optional
        Field of the ``'field'`` scope.

    progress : ProgressSink, optional
        Progress and cancellation sink. The default is None.

    check_lines : int, optional
        Lines between cancellation checks. The default is 16.

    Returns
    -------
    str
        ``'done'``, ``'cancelled'`` or ``'failed'``. Statistics not completed stay dirty.

    Examples
    --------
    >>> with RasterPixelReader("image.tif") as reader:
    ...     status = update_statistics(project, reader)
    """
    if scope not in UPDATE_SCOPES:
        raise ValueError(f"scope must be one of {UPDATE_SCOPES}, got: '{scope}'")
    if reader.number_channels != project.number_image_channels:
        raise ValueError(
            f"Reader has {reader.number_channels} channels, project image has {project.number_image_channels}"
        )

    area_scanner = AreaScanner(project, reader, progress, check_lines)
    mask_updater = MaskStatsUpdater(project, reader, progress, check_lines)

    with project.pool.pinned():
        if scope == "project":
            project.clear_project_statistics()
            status = area_scanner.update_project_area_stats()
            if status == "done":
                status = mask_updater.update_project_mask_stats("project")
            if status == "done":
                for c in project.class_numbers:
                    if not project.class_record(c).stats_up_to_date:
                        mask_updater.finish_class_mask_stats_update(c)
                        finish_class_stats_update(project, c)

        elif scope == "class":
            project.clear_class_statistics(class_number)
            status = area_scanner.update_class_area_stats(class_number)
            if status == "done":
                status = mask_updater.update_project_mask_stats("class", class_number=class_number)
            if status == "done":
                mask_updater.finish_class_mask_stats_update(class_number)
                finish_class_stats_update(project, class_number)

        else:
            if project.keep_class_stats_only:
                raise ValueError("Field statistics are not kept when keep_class_stats_only is set, update the class")
            field = project.field(field_number)
            if not field.is_training:
                raise ValueError(f"Statistics are only computed for training fields, field '{field.name}' is not")
            project.clear_field_statistics(field_number)
            status = "done"
            if not field.stats_up_to_date:
                status = area_scanner.update_field_area_stats(field_number)
            if status == "done":
                status = mask_updater.update_project_mask_stats("field", field_number=field_number)
            if status == "done":
                mask_updater.finish_field_mask_stats_update(field_number)

    if project.verbose:
        print(f"Statistics update of {scope} finished with status '{status}'")
    return status


# %% Training samples


@simple_type_validator
def collect_training_samples(
    project: ProjectContext,
    reader: Any,
    class_numbers: Optional[list[int]] = None,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Collect the filtered pixel vectors of training fields with their class numbers as labels.

    Parameters
    ----------
    project : ProjectContext
        Statistics project.

    reader : pixel reader
        Image pixel reader.

    class_numbers : list[int], optional
        Classes to collect. The default is all classes.

    Returns
    -------
    samples : numpy.ndarray
        Pixel vectors of shape (n_samples, n_channels).

    labels : numpy.ndarray
        Class number of each sample.
    """
    if class_numbers is None:
        class_numbers = project.class_numbers
    data_filter = DataValueFilter.from_reader(reader, project.check_bad_data)
    area_scanner = AreaScanner(project, reader)
    sample_blocks: list[np.ndarray] = []
    label_blocks: list[np.ndarray] = []
    mask_fields: list[int] = []

    for class_number in class_numbers:
        for field_number in project.training_field_numbers(class_number):
            field = project.field(field_number)
            if field.point_type == "mask":
                mask_fields.append(field_number)
                continue
            line_start, line_stop, column_start, column_stop, inside = area_scanner.field_region(field_number)
            for i, line in enumerate(range(line_start, line_stop)):
                pixels = reader.read_pixel_row(line, column_start, column_stop, project.channels)
                if inside is not None:
                    pixels = pixels[inside[i]]
                pixels = pixels[data_filter.valid_pixels(pixels)]
                sample_blocks.append(pixels)
                label_blocks.append(np.full(len(pixels), class_number, dtype=np.int64))

    mask = project.training_mask
    if (len(mask_fields) > 0) and (mask is not None):
        lookup = mask.field_lookup()
        value_wanted = np.isin(lookup, mask_fields)
        for mask_line in range(mask.number_lines):
            image_line = mask.line_offset + mask_line
            if image_line >= reader.number_lines:
                break
            number_columns = min(mask.number_columns, reader.number_columns - mask.column_offset)
            if number_columns <= 0:
                break
            values = mask.values[mask_line, :number_columns]
            selected = value_wanted[values]
            if not selected.any():
                continue
            pixels = reader.read_pixel_row(
                image_line, mask.column_offset, mask.column_offset + number_columns, project.channels
            )
            fields = lookup[values[selected]]
            pixels = pixels[selected]
            valid = data_filter.valid_pixels(pixels)
            sample_blocks.append(pixels[valid])
            label_blocks.append(np.array([project.field(int(f)).class_number for f in fields[valid]], dtype=np.int64))

    if len(sample_blocks) == 0:
        return np.zeros((0, project.number_channels)), np.zeros(0, dtype=np.int64)
    return np.vstack(sample_blocks), np.concatenate(label_blocks)
