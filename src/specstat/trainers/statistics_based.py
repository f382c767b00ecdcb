# -*- coding: utf-8 -*-
"""
SpecStat - trainers - Classifier parameters derived directly from class statistics

Maximum likelihood, correlation (spectral angle), matched filter (CEM), parallelepiped and k nearest neighbors.

Copyright (c) 2025 Siwei Luo. MIT License.
"""

# Basics
import math

# Typing
from typing import Optional, Union

import numpy as np

# Local
from ..covariance import CovarianceEngine
from ..specio import simple_type_validator

# %% Helpers


def _class_list(engine: CovarianceEngine, class_numbers: Optional[list[int]]) -> list[int]:
    if class_numbers is None:
        class_numbers = [c for c in engine.project.class_numbers if engine.project.training_field_numbers(c)]
    if len(class_numbers) == 0:
        raise ValueError("No class with training fields is available")
    return class_numbers


# %% Maximum likelihood


class MaximumLikelihoodParameters:
    """
    Gaussian maximum likelihood (quadratic discriminant) parameters.

    The discriminant of class ``i`` for a pixel ``x`` is
    ``constants[i] - 0.5 * (x - means[i])^T inverse_covariances[i] (x - means[i])``.

    Attributes
    ----------
    class_numbers : list[int]
        Classes in parameter order.

    means : numpy.ndarray
        Class mean vectors, shape (n_classes, n_channels).

    covariances : numpy.ndarray
        Class covariance matrices, shape (n_classes, n_channels, n_channels).

    inverse_covariances : numpy.ndarray
        Inverted class covariance matrices.

    log_determinants : numpy.ndarray
        Natural log determinants of the class covariance matrices.

    priors : numpy.ndarray
        Class prior probabilities from the class weights.

    constants : numpy.ndarray
        ``log(prior) - 0.5 * log_determinant`` of each class.
    """

    def __init__(
        self,
        class_numbers: list[int],
        means: np.ndarray,
        covariances: np.ndarray,
        priors: np.ndarray,
    ) -> None:
        self.class_numbers = class_numbers
        self.means = means
        self.covariances = covariances
        self.priors = priors
        inverses = []
        log_dets = []
        for class_number, covariance in zip(class_numbers, covariances):
            sign, log_det = np.linalg.slogdet(covariance)
            if sign <= 0:
                raise ValueError(f"Covariance matrix of class {class_number} is not positive definite")
            inverses.append(np.linalg.inv(covariance))
            log_dets.append(log_det)
        self.inverse_covariances = np.array(inverses)
        self.log_determinants = np.array(log_dets)
        with np.errstate(divide="ignore"):
            self.constants = np.log(priors) - 0.5 * self.log_determinants

    def discriminants(self, pixels: np.ndarray) -> np.ndarray:
        """Discriminant values of pixel vectors, shape (n_pixels, n_classes)."""
        pixels = np.atleast_2d(np.asarray(pixels, dtype=np.float64))
        result = np.empty((pixels.shape[0], len(self.class_numbers)))
        for i in range(len(self.class_numbers)):
            diff = pixels - self.means[i]
            result[:, i] = self.constants[i] - 0.5 * np.einsum("ij,jk,ik->i", diff, self.inverse_covariances[i], diff)
        return result


@simple_type_validator
def build_maximum_likelihood_parameters(
    engine: CovarianceEngine,
    class_numbers: Optional[list[int]] = None,
    channel_subset: Optional[list[int]] = None,
    covariance_stats_to_use: Optional[str] = None,
) -> MaximumLikelihoodParameters:
    """
    Maximum likelihood parameters of a set of classes.

    Parameters
    ----------
    engine : CovarianceEngine
        Engine over a project with up to date statistics.

    class_numbers : list[int], optional
        Classes to include. The default is every class with training fields.

    channel_subset : list[int], optional
        Image channels. The default is all project channels.

    covariance_stats_to_use : str, optional
        Statistics selection passed to the engine. The default is the class setting.

    Returns
    -------
    MaximumLikelihoodParameters
        Parameters in class order.
    """
    class_numbers = _class_list(engine, class_numbers)
    means = np.array(
        [engine.get_class_mean_vector(c, channel_subset, covariance_stats_to_use) for c in class_numbers]
    )
    covariances = np.array(
        [engine.get_class_covariance_matrix(c, channel_subset, "square", covariance_stats_to_use) for c in class_numbers]
    )
    weights = np.array([engine.project.class_record(c).weight for c in class_numbers], dtype=np.float64)
    total = weights.sum()
    priors = weights / total if total > 0 else np.full(len(class_numbers), 1.0 / len(class_numbers))
    return MaximumLikelihoodParameters(class_numbers, means, covariances, priors)


# %% Correlation


class CorrelationParameters:
    """
    Correlation classifier (spectral angle mapper) parameters.

    Attributes
    ----------
    class_numbers : list[int]
        Classes in parameter order.

    means : numpy.ndarray
        Class mean vectors, shape (n_classes, n_channels).

    angle_threshold : float
        Maximum spectral angle in degrees for a pixel to be assigned.
    """

    def __init__(self, class_numbers: list[int], means: np.ndarray, angle_threshold: float) -> None:
        self.class_numbers = class_numbers
        self.means = means
        self.angle_threshold = angle_threshold

    @property
    def correlation_threshold(self) -> float:
        """Cosine of the angle threshold."""
        return math.cos(math.radians(self.angle_threshold))

    def spectral_angles(self, pixels: np.ndarray) -> np.ndarray:
        """Spectral angles in degrees between pixel vectors and class means, shape (n_pixels, n_classes)."""
        pixels = np.atleast_2d(np.asarray(pixels, dtype=np.float64))
        pixel_norms = np.linalg.norm(pixels, axis=1)[:, None]
        mean_norms = np.linalg.norm(self.means, axis=1)[None, :]
        denominator = pixel_norms * mean_norms
        cosine = np.zeros(denominator.shape)
        nonzero = denominator > 0
        cosine[nonzero] = (pixels @ self.means.T)[nonzero] / denominator[nonzero]
        result: np.ndarray = np.degrees(np.arccos(np.clip(cosine, -1.0, 1.0)))
        return result


@simple_type_validator
def build_correlation_parameters(
    engine: CovarianceEngine,
    class_numbers: Optional[list[int]] = None,
    channel_subset: Optional[list[int]] = None,
    angle_threshold: Union[int, float] = 90.0,
) -> CorrelationParameters:
    """Correlation parameters from the class mean vectors, angle threshold in degrees in [0, 180]."""
    if not 0 <= angle_threshold <= 180:
        raise ValueError(f"angle_threshold must be in range 0 to 180 degrees, got: {angle_threshold}")
    class_numbers = _class_list(engine, class_numbers)
    means = np.array([engine.get_class_mean_vector(c, channel_subset) for c in class_numbers])
    return CorrelationParameters(class_numbers, means, float(angle_threshold))


# %% Matched filter


class CEMParameters:
    """
    Constrained energy minimization (matched filter) parameters.

    The filter of class ``i`` is ``w_i = R^-1 d_i / (d_i^T R^-1 d_i)`` with ``d_i`` the class mean
    and ``R`` the common covariance, so the filter response of the class mean is 1.

    Attributes
    ----------
    class_numbers : list[int]
        Classes in parameter order.

    filters : numpy.ndarray
        Filter vectors, shape (n_classes, n_channels).

    threshold : float
        Minimum filter response for a pixel to be assigned.
    """

    def __init__(self, class_numbers: list[int], filters: np.ndarray, threshold: float) -> None:
        self.class_numbers = class_numbers
        self.filters = filters
        self.threshold = threshold

    def responses(self, pixels: np.ndarray) -> np.ndarray:
        """Filter responses of pixel vectors, shape (n_pixels, n_classes)."""
        pixels = np.atleast_2d(np.asarray(pixels, dtype=np.float64))
        result: np.ndarray = pixels @ self.filters.T
        return result


@simple_type_validator
def build_cem_parameters(
    engine: CovarianceEngine,
    class_numbers: Optional[list[int]] = None,
    channel_subset: Optional[list[int]] = None,
    threshold: Union[int, float] = 0.5,
) -> CEMParameters:
    """Matched filter parameters of a set of classes against their common covariance."""
    class_numbers = _class_list(engine, class_numbers)
    common = engine.get_common_covariance(class_numbers=class_numbers, channel_subset=channel_subset)
    inverse = np.linalg.pinv(common)
    filters = []
    for class_number in class_numbers:
        target = engine.get_class_mean_vector(class_number, channel_subset)
        projected = inverse @ target
        energy = float(target @ projected)
        if energy == 0:
            raise ValueError(f"Mean vector of class {class_number} gives a zero filter energy")
        filters.append(projected / energy)
    return CEMParameters(class_numbers, np.array(filters), float(threshold))


# %% Parallelepiped


class ParallelepipedParameters:
    """
    Parallelepiped parameters, one box of channel minimums and maximums per class.

    Attributes
    ----------
    class_numbers : list[int]
        Classes in parameter order.

    minimums, maximums : numpy.ndarray
        Box limits, shape (n_classes, n_channels).
    """

    def __init__(self, class_numbers: list[int], minimums: np.ndarray, maximums: np.ndarray) -> None:
        self.class_numbers = class_numbers
        self.minimums = minimums
        self.maximums = maximums

    def inside(self, pixels: np.ndarray) -> np.ndarray:
        """Whether each pixel lies inside each class box, shape (n_pixels, n_classes)."""
        pixels = np.atleast_2d(np.asarray(pixels, dtype=np.float64))[:, None, :]
        result: np.ndarray = np.all((pixels >= self.minimums[None]) & (pixels <= self.maximums[None]), axis=2)
        return result


@simple_type_validator
def build_parallelepiped_parameters(
    engine: CovarianceEngine,
    class_numbers: Optional[list[int]] = None,
    channel_subset: Optional[list[int]] = None,
    std_dev_factor: Optional[Union[int, float]] = None,
) -> ParallelepipedParameters:
    """
    Parallelepiped boxes of a set of classes.

    Without ``std_dev_factor`` the boxes are the class minimums and maximums,
    otherwise ``mean -/+ std_dev_factor * std``.
    """
    class_numbers = _class_list(engine, class_numbers)
    if std_dev_factor is None:
        minimums = np.array([engine.get_class_minimum_vector(c, channel_subset) for c in class_numbers])
        maximums = np.array([engine.get_class_maximum_vector(c, channel_subset) for c in class_numbers])
    else:
        if std_dev_factor <= 0:
            raise ValueError(f"std_dev_factor must be positive, got: {std_dev_factor}")
        means = np.array([engine.get_class_mean_vector(c, channel_subset) for c in class_numbers])
        stds = np.array([engine.get_class_std_dev_vector(c, channel_subset) for c in class_numbers])
        minimums = means - std_dev_factor * stds
        maximums = means + std_dev_factor * stds
    return ParallelepipedParameters(class_numbers, minimums, maximums)


# %% k nearest neighbors


class KNNParameters:
    """k nearest neighbors parameters, only the neighborhood size is trained."""

    @simple_type_validator
    def __init__(self, k: int = 5) -> None:
        if k < 1:
            raise ValueError(f"k must be at least 1, got: {k}")
        self.k = k

    def __repr__(self) -> str:
        return f"KNNParameters(k={self.k})"
