# -*- coding: utf-8 -*-
"""
Covariance engine: class statistics, degenerate matrix repair, common and leave-one-out covariances

Copyright (c) 2025 Siwei Luo. MIT License.
"""

# Basics
import warnings

# Typing
from typing import Annotated, Any, Optional, Union

import numpy as np
import pandas as pd

# Self
from .accumulator import Accumulator, validate_statistics_code
from .project import COVARIANCE_STATS_OPTIONS, MIXING_PARAMETER_CODES, ProjectContext
from .specio import arraylike_validator, simple_type_validator
from .statmatrix import TriangularMatrix

# %% Constants

OUTPUT_FORMS = ("square", "triangular")

CovarianceMatrix = Union[np.ndarray, TriangularMatrix]


# %% Degenerate matrix repair


def _diagonal_view(matrix: CovarianceMatrix) -> tuple[np.ndarray, np.ndarray]:
    """Flat storage of a matrix and the flat positions of its diagonal."""
    if isinstance(matrix, TriangularMatrix):
        n = matrix.number_channels
        channels = np.arange(n)
        return matrix.values, channels * (channels + 3) // 2
    if (matrix.ndim != 2) or (matrix.shape[0] != matrix.shape[1]):
        raise ValueError(f"Square matrix expected, got shape: {matrix.shape}")
    n = matrix.shape[0]
    return matrix.reshape(-1), np.arange(n) * (n + 1)


def reset_zero_variances(matrix: CovarianceMatrix, zero_variance_factor: float, statistics_code: str) -> bool:
    """
    Replace zero variances of a covariance matrix in place so the matrix stays invertible.

    Parameters
    ----------
    matrix : numpy.ndarray or TriangularMatrix
        Square or triangular covariance matrix, modified in place.

    zero_variance_factor : float
        Value substituted for a zero variance.

    statistics_code : str
        Only ``'mean_covariance'`` matrices are repaired.

    Returns
    -------
    bool
        Whether any variance was replaced.
    """
    validate_statistics_code(statistics_code)
    if statistics_code != "mean_covariance":
        return False
    flat, diag = _diagonal_view(matrix)
    zero = flat[diag] == 0
    if not zero.any():
        return False
    flat[diag[zero]] = zero_variance_factor
    if isinstance(matrix, np.ndarray) and (not np.shares_memory(flat, matrix)):
        matrix[np.diag_indices(matrix.shape[0])] = flat[diag]
    return True


def reset_for_all_variances_equal(matrix: CovarianceMatrix, statistics_code: str) -> bool:
    """
    Zero the covariances in place when every variance and covariance has the same value.

    Identical entries mean the channels carry the same data, which makes the matrix singular.

    Returns
    -------
    bool
        Whether the covariances were zeroed.
    """
    validate_statistics_code(statistics_code)
    if statistics_code != "mean_covariance":
        return False
    if isinstance(matrix, TriangularMatrix):
        if matrix.number_channels < 2:
            return False
        values = matrix.values
        if not np.all(values == values[0]):
            return False
        values[matrix.off_diagonal_mask()] = 0.0
        return True
    n = matrix.shape[0]
    if n < 2:
        return False
    if not np.all(matrix == matrix[0, 0]):
        return False
    matrix[~np.eye(n, dtype=bool)] = 0.0
    return True


def correlation_from_covariance(covariance: Annotated[Any, arraylike_validator(ndim=2)]) -> np.ndarray:
    """Correlation matrix of a square covariance matrix, rows and columns of zero variance channels are 0."""
    covariance = np.asarray(covariance, dtype=np.float64)
    std_dev = np.sqrt(np.abs(np.diag(covariance)))
    denominator = np.outer(std_dev, std_dev)
    correlation = np.zeros_like(covariance)
    nonzero = denominator > 0
    correlation[nonzero] = covariance[nonzero] / denominator[nonzero]
    return correlation


@simple_type_validator
def get_loo_covariance(
    mixing_parameter_code: str,
    mixing_value: Union[int, float],
    user_mixing_parameter: Union[int, float],
    class_covariance: Annotated[Any, arraylike_validator(ndim=2)],
    common_covariance: Annotated[Any, arraylike_validator(ndim=2)],
) -> np.ndarray:
    """
    Leave-one-out mixture of a class covariance with the common covariance.

    The mixing parameter ``a`` in [0, 3] blends, in order of increasing ``a``:
    the class variances, the class covariance, the common covariance and the common variances.

    - ``0 <= a <= 1`` : ``(1 - a) * diag(C_i) + a * C_i``
    - ``1 < a <= 2`` : ``(2 - a) * C_i + (a - 1) * S``
    - ``2 < a <= 3`` : ``(3 - a) * S + (a - 2) * diag(S)``

    Parameters
    ----------
    mixing_parameter_code : str
        ``'computed_optimum'`` uses ``mixing_value``, ``'user_set'`` uses ``user_mixing_parameter``,
        ``'identity_matrix'`` returns the identity matrix.

    mixing_value : float
        Computed optimum mixing value. It must have been computed, a negative value raises ValueError.

    user_mixing_parameter : float
        User mixing value.

    class_covariance : array-like
        Square class covariance ``C_i``.

    common_covariance : array-like
        Square common covariance ``S``.

    Returns
    -------
    numpy.ndarray
        Mixed square covariance matrix.
    """
    if mixing_parameter_code not in MIXING_PARAMETER_CODES:
        raise ValueError(f"mixing_parameter_code must be one of {MIXING_PARAMETER_CODES}, got: '{mixing_parameter_code}'")
    class_cov = np.asarray(class_covariance, dtype=np.float64)
    common_cov = np.asarray(common_covariance, dtype=np.float64)
    if class_cov.shape != common_cov.shape:
        raise ValueError(f"Class and common covariance shapes differ: {class_cov.shape} and {common_cov.shape}")

    if mixing_parameter_code == "identity_matrix":
        return np.eye(class_cov.shape[0])
    if mixing_parameter_code == "computed_optimum":
        if mixing_value < 0:
            raise ValueError(
                "Leave-one-out mixing value has not been computed, compute it before requesting the covariance"
            )
        alpha = float(mixing_value)
    else:
        alpha = float(user_mixing_parameter)
    if alpha > 3:
        raise ValueError(f"Leave-one-out mixing value must be in [0, 3], got: {alpha}")

    if alpha <= 1:
        result: np.ndarray = (1 - alpha) * np.diag(np.diag(class_cov)) + alpha * class_cov
    elif alpha <= 2:
        result = (2 - alpha) * class_cov + (alpha - 1) * common_cov
    else:
        result = (3 - alpha) * common_cov + (alpha - 2) * np.diag(np.diag(common_cov))
    return result


# %% Covariance engine


class CovarianceEngine:
    """
    Derive class statistics of a project on demand.

    Class statistics are combined from the field slots, or read from the class slots in class-only mode.
    Channel subsets are given as image channel numbers, which must be project channels.

    Parameters
    ----------
    project : ProjectContext
        Statistics project with up to date class statistics.
    """

    def __init__(self, project: ProjectContext) -> None:
        self.project = project

    # %% Helpers

    def channel_positions(self, channel_subset: Optional[list[int]] = None) -> np.ndarray:
        """Positions of image channels in the project channel list."""
        project_channels = self.project.channels
        if channel_subset is None:
            return np.arange(len(project_channels))
        positions = []
        for channel in channel_subset:
            if channel not in project_channels:
                raise ValueError(f"Channel {channel} is not a project statistics channel: {project_channels}")
            positions.append(project_channels.index(channel))
        return np.array(positions, dtype=np.int64)

    def _require_statistics(self, class_number: int) -> None:
        class_record = self.project.class_record(class_number)
        if not class_record.stats_up_to_date:
            raise ValueError(
                f"Statistics of class '{class_record.name}' are not up to date, run update_statistics first"
            )

    def _stats_to_use(self, class_number: int, covariance_stats_to_use: Optional[str]) -> str:
        class_record = self.project.class_record(class_number)
        if (covariance_stats_to_use is None) or (covariance_stats_to_use == "mixed"):
            stats_to_use = class_record.covariance_stats_to_use
        else:
            if covariance_stats_to_use not in COVARIANCE_STATS_OPTIONS:
                raise ValueError(
                    f"covariance_stats_to_use must be one of {COVARIANCE_STATS_OPTIONS}, got: '{covariance_stats_to_use}'"
                )
            stats_to_use = covariance_stats_to_use
        if (stats_to_use == "enhanced") and (not class_record.modified_stats_flag):
            stats_to_use = "original"
        return stats_to_use

    @simple_type_validator
    def class_sums(self, class_number: int) -> Accumulator:
        """Combined sums of the loaded training fields of a class."""
        project = self.project
        self._require_statistics(class_number)
        if project.keep_class_stats_only:
            return project.class_accumulator(class_number).copy()
        combined = Accumulator.empty(project.number_channels)
        loaded = [f for f in project.training_field_numbers(class_number) if project.field(f).loaded_into_class_stats]
        for i, field_number in enumerate(loaded):
            combined.combine(project.field_accumulator(field_number), initialize=(i == 0))
        return combined

    @simple_type_validator
    def number_class_pixels(self, class_number: int) -> int:
        return self.project.class_record(class_number).number_statistics_pixels

    def _form(self, matrix: TriangularMatrix, output_form: str) -> CovarianceMatrix:
        if output_form not in OUTPUT_FORMS:
            raise ValueError(f"output_form must be one of {OUTPUT_FORMS}, got: '{output_form}'")
        if output_form == "square":
            return matrix.as_square()
        return matrix

    # %% Vectors

    @simple_type_validator
    def get_class_mean_vector(
        self,
        class_number: int,
        channel_subset: Optional[list[int]] = None,
        covariance_stats_to_use: Optional[str] = None,
    ) -> np.ndarray:
        """Class mean vector, the enhanced mean when enhanced statistics are used."""
        positions = self.channel_positions(channel_subset)
        class_record = self.project.class_record(class_number)
        if self._stats_to_use(class_number, covariance_stats_to_use) == "enhanced":
            assert class_record.enhanced_mean is not None
            return class_record.enhanced_mean[positions].copy()
        sums = self.class_sums(class_number).sums
        n = class_record.number_statistics_pixels
        if n == 0:
            return np.zeros(len(positions))
        result: np.ndarray = sums[positions] / n
        return result

    @simple_type_validator
    def get_class_std_dev_vector(
        self,
        class_number: int,
        channel_subset: Optional[list[int]] = None,
        covariance_stats_to_use: Optional[str] = None,
    ) -> np.ndarray:
        """Class standard deviations from the class covariance diagonal."""
        self._require_statistics(class_number)
        stats_to_use = self._stats_to_use(class_number, covariance_stats_to_use)
        positions = self.channel_positions(channel_subset)
        if stats_to_use == "enhanced":
            enhanced = self.project.class_record(class_number).enhanced_covariance
            assert enhanced is not None
            variances = enhanced.reduce(positions).diagonal()
        else:
            accumulator = self.class_sums(class_number)
            n = self.number_class_pixels(class_number)
            variances = accumulator.derive_covariance(n, self.project.statistics_code).reduce(positions).diagonal()
        result: np.ndarray = np.sqrt(np.abs(variances))
        return result

    @simple_type_validator
    def get_class_minimum_vector(self, class_number: int, channel_subset: Optional[list[int]] = None) -> np.ndarray:
        positions = self.channel_positions(channel_subset)
        result: np.ndarray = self.class_sums(class_number).channel_stats["minimum"][positions].copy()
        return result

    @simple_type_validator
    def get_class_maximum_vector(self, class_number: int, channel_subset: Optional[list[int]] = None) -> np.ndarray:
        positions = self.channel_positions(channel_subset)
        result: np.ndarray = self.class_sums(class_number).channel_stats["maximum"][positions].copy()
        return result

    @simple_type_validator
    def get_project_channel_min_max(
        self, class_numbers: Optional[list[int]] = None, channel_subset: Optional[list[int]] = None
    ) -> tuple[np.ndarray, np.ndarray]:
        """Channel minimums and maximums over the training pixels of a set of classes."""
        if class_numbers is None:
            class_numbers = [c for c in self.project.class_numbers if self.project.class_record(c).stats_up_to_date]
        positions = self.channel_positions(channel_subset)
        minimum = np.full(len(positions), np.inf)
        maximum = np.full(len(positions), -np.inf)
        for class_number in class_numbers:
            minimum = np.minimum(minimum, self.get_class_minimum_vector(class_number, channel_subset))
            maximum = np.maximum(maximum, self.get_class_maximum_vector(class_number, channel_subset))
        return minimum, maximum

    # %% Matrices

    @simple_type_validator
    def check_matrix(self, matrix: Any, class_number: int, statistics_code: Optional[str] = None) -> bool:
        """
        Repair a degenerate class covariance matrix in place and report it.

        Zero variances are replaced when ``set_zero_variance`` is on, and covariances are zeroed
        when all entries are equal. A message is issued per repair, once per class when
        ``list_one_message_per_class`` is on.

        Returns
        -------
        bool
            Whether the matrix was modified.
        """
        project = self.project
        class_record = project.class_record(class_number)
        code = project.statistics_code if statistics_code is None else statistics_code
        if not project.list_one_message_per_class:
            class_record.list_message_flag = True
        list_messages = class_record.list_message_flag

        zero_reset = False
        if project.set_zero_variance:
            zero_reset = reset_zero_variances(matrix, project.zero_variance_factor, code)
            if zero_reset and list_messages:
                warnings.warn(
                    f"Class '{class_record.name}': at least one zero variance was set to {project.zero_variance_factor}.",
                    UserWarning,
                    stacklevel=3,
                )
        equal_reset = reset_for_all_variances_equal(matrix, code)
        if equal_reset and list_messages:
            warnings.warn(
                f"Class '{class_record.name}': all variances and covariances are equal, covariances were set to 0.",
                UserWarning,
                stacklevel=3,
            )
        if project.list_one_message_per_class and list_messages and (zero_reset or equal_reset):
            class_record.list_message_flag = False
        return zero_reset or equal_reset

    def _raw_class_covariance(self, class_number: int, positions: np.ndarray, stats_to_use: str) -> TriangularMatrix:
        project = self.project
        class_record = project.class_record(class_number)
        if stats_to_use == "enhanced":
            assert class_record.enhanced_covariance is not None
            covariance = class_record.enhanced_covariance.reduce(positions)
        else:
            accumulator = self.class_sums(class_number)
            covariance = accumulator.derive_covariance(
                class_record.number_statistics_pixels, project.statistics_code
            ).reduce(positions)
        if project.statistics_code == "mean_stddev":
            covariance.values[covariance.off_diagonal_mask()] = 0.0
        return covariance

    @simple_type_validator
    def get_class_covariance_matrix(
        self,
        class_number: int,
        channel_subset: Optional[list[int]] = None,
        output_form: str = "square",
        covariance_stats_to_use: Optional[str] = None,
    ) -> Any:
        """
        Covariance matrix of a class for a channel subset.

        Parameters
        ----------
        class_number : int
            Class with up to date statistics.

        channel_subset : list[int], optional
            Image channels, in output order. The default is all project channels.

        output_form : str, optional
            ``'square'`` for a numpy array or ``'triangular'`` for a ``TriangularMatrix``. The default is ``'square'``.

        covariance_stats_to_use : str, optional
            ``'original'``, ``'enhanced'`` or ``'leave_one_out'``. The default is the class setting.
            Enhanced statistics fall back to the original statistics when the class has none.

        Returns
        -------
        numpy.ndarray or TriangularMatrix
            Repaired covariance matrix. For ``'mean_stddev'`` statistics only the variances are nonzero.
        """
        project = self.project
        self._require_statistics(class_number)
        class_record = project.class_record(class_number)
        positions = self.channel_positions(channel_subset)
        stats_to_use = self._stats_to_use(class_number, covariance_stats_to_use)
        covariance = self._raw_class_covariance(class_number, positions, stats_to_use)

        if stats_to_use == "leave_one_out":
            if project.use_common_covariance_in_looc:
                if project.pool.common_covariance is None:
                    self.update_project_common_covariance()
                assert project.pool.common_covariance is not None
                common = project.pool.common_covariance.reduce(positions).as_square()
            else:
                common = covariance.as_square()
            mixed = get_loo_covariance(
                class_record.mixing_parameter_code,
                class_record.loo_covariance_value,
                class_record.user_mixing_parameter,
                covariance.as_square(),
                common,
            )
            covariance = TriangularMatrix.from_square(mixed)

        self.check_matrix(covariance, class_number)
        return self._form(covariance, output_form)

    @simple_type_validator
    def get_transformed_class_covariance_matrix(
        self,
        class_number: int,
        eigenvectors: Annotated[Any, arraylike_validator(ndim=2)],
        channel_subset: Optional[list[int]] = None,
        covariance_stats_to_use: Optional[str] = None,
    ) -> np.ndarray:
        """
        Class covariance in a transformed feature space, ``E C E^T``.

        The covariance is reduced and repaired before the transform, and checked again after it.

        Parameters
        ----------
        eigenvectors : array-like of shape (n_features, n_channels)
            Transformation matrix, one feature per row.
        """
        eigenvectors = np.asarray(eigenvectors, dtype=np.float64)
        covariance = self.get_class_covariance_matrix(
            class_number, channel_subset, "square", covariance_stats_to_use
        )
        if eigenvectors.shape[1] != covariance.shape[0]:
            raise ValueError(
                f"Transformation of {eigenvectors.shape[1]} channels does not match {covariance.shape[0]} channels"
            )
        transformed: np.ndarray = eigenvectors @ covariance @ eigenvectors.T
        # Symmetric by construction, rounding is removed from the upper triangle
        transformed = np.tril(transformed) + np.tril(transformed, -1).T
        self.check_matrix(transformed, class_number)
        return transformed

    @simple_type_validator
    def get_class_correlation_matrix(
        self,
        class_number: int,
        channel_subset: Optional[list[int]] = None,
        covariance_stats_to_use: Optional[str] = None,
    ) -> np.ndarray:
        covariance = self.get_class_covariance_matrix(class_number, channel_subset, "square", covariance_stats_to_use)
        return correlation_from_covariance(covariance)

    @simple_type_validator
    def get_common_covariance(
        self,
        class_numbers: Optional[list[int]] = None,
        weights: Optional[list[Union[int, float]]] = None,
        covariance_stats_to_use: str = "original",
        channel_subset: Optional[list[int]] = None,
        output_form: str = "square",
    ) -> Any:
        """
        Weighted mean of class covariance matrices.

        Parameters
        ----------
        class_numbers : list[int], optional
            Classes to combine. The default is all classes with up to date statistics.

        weights : list[float], optional
            Class weights, a weight of 0 excludes a class. The default is the class weights.

        covariance_stats_to_use : str, optional
            Statistics of every class, ``'mixed'`` uses the setting of each class. Leave-one-out classes
            contribute their original covariance. The default is ``'original'``.

        channel_subset : list[int], optional
            Image channels. The default is all project channels.

        output_form : str, optional
            ``'square'`` or ``'triangular'``. The default is ``'square'``.

        Returns
        -------
        numpy.ndarray or TriangularMatrix
            Common covariance.
        """
        common, _ = self._weighted_common_covariance(class_numbers, weights, covariance_stats_to_use, channel_subset)
        return self._form(common, output_form)

    def _weighted_common_covariance(
        self,
        class_numbers: Optional[list[int]],
        weights: Optional[list[Union[int, float]]],
        covariance_stats_to_use: str,
        channel_subset: Optional[list[int]],
    ) -> tuple[TriangularMatrix, int]:
        project = self.project
        if class_numbers is None:
            class_numbers = [c for c in project.class_numbers if project.class_record(c).stats_up_to_date]
        if weights is None:
            weights = [project.class_record(c).weight for c in class_numbers]
        if len(weights) != len(class_numbers):
            raise ValueError(f"Got {len(weights)} weights for {len(class_numbers)} classes")
        positions = self.channel_positions(channel_subset)

        total_weight = float(sum(w for w in weights if w > 0))
        common = TriangularMatrix.zeros(len(positions))
        number_classes = 0
        if total_weight > 0:
            for class_number, weight in zip(class_numbers, weights):
                if weight <= 0:
                    continue
                self._require_statistics(class_number)
                stats_to_use = self._stats_to_use(class_number, covariance_stats_to_use)
                if stats_to_use == "leave_one_out":
                    stats_to_use = "original"
                covariance = self._raw_class_covariance(class_number, positions, stats_to_use)
                common.values[:] += (weight / total_weight) * covariance.values
                number_classes += 1

        if project.set_zero_variance:
            reset_zero_variances(common, project.zero_variance_factor, project.statistics_code)
        reset_for_all_variances_equal(common, project.statistics_code)
        return common, number_classes

    def update_project_common_covariance(self) -> TriangularMatrix:
        """
        Compute the common covariance of all project classes and keep it on the statistics pool.

        Only this project level matrix records its number of contributing classes.
        """
        project = self.project
        common, number_classes = self._weighted_common_covariance(None, None, project.covariance_stats_to_use, None)
        project.pool.common_covariance = common
        project.pool.number_common_covariance_classes = number_classes
        return common

    # %% Checks and listing

    @simple_type_validator
    def determine_if_specified_statistics_exist(
        self, class_numbers: Optional[list[int]] = None, covariance_stats_to_use: Optional[str] = None
    ) -> tuple[bool, bool]:
        """
        Check that the requested statistics can be derived for a set of classes.

        Returns
        -------
        exist : bool
            Whether every class has training pixels and, for leave-one-out with a computed optimum,
            a computed mixing value.

        needs_common_covariance : bool
            Whether a leave-one-out mixing value above 1 requires the common covariance
            and it has not been computed.
        """
        project = self.project
        if class_numbers is None:
            class_numbers = project.class_numbers
        exist = True
        needs_common = False
        for class_number in class_numbers:
            class_record = project.class_record(class_number)
            if class_record.number_statistics_pixels <= 0:
                exist = False
            stats_to_use = self._stats_to_use(class_number, covariance_stats_to_use)
            if stats_to_use == "leave_one_out":
                if class_record.mixing_parameter_code == "computed_optimum":
                    if class_record.loo_covariance_value < 0:
                        exist = False
                    mixing_value = class_record.loo_covariance_value
                elif class_record.mixing_parameter_code == "user_set":
                    mixing_value = class_record.user_mixing_parameter
                else:
                    mixing_value = 0.0
                if (mixing_value > 1) and project.use_common_covariance_in_looc:
                    if project.pool.common_covariance is None:
                        needs_common = True
        return exist, needs_common

    @simple_type_validator
    def class_statistics_table(self, class_number: int, channel_subset: Optional[list[int]] = None) -> pd.DataFrame:
        """Per channel mean, standard deviation, minimum and maximum of a class."""
        channels = self.project.channels if channel_subset is None else channel_subset
        return pd.DataFrame(
            {
                "Channel": channels,
                "Mean": self.get_class_mean_vector(class_number, channel_subset),
                "Std": self.get_class_std_dev_vector(class_number, channel_subset),
                "Minimum": self.get_class_minimum_vector(class_number, channel_subset),
                "Maximum": self.get_class_maximum_vector(class_number, channel_subset),
            }
        )
