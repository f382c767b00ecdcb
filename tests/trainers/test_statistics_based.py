# -*- coding: utf-8 -*-
"""
Tests for classifier parameters derived from class statistics (StatisticsBased)

The following source code was created with AI assistance and has been human reviewed and edited.

Copyright (c) 2025 Siwei Luo. MIT License.
"""

# Test
import unittest
import pytest

# Basics
import math

# Testing third
import numpy as np
from scipy.stats import multivariate_normal

# Self
# Applied package functions for test
from specstat.covariance import CovarianceEngine
from specstat.project import ProjectContext
from specstat.rasterop import ArrayPixelReader
from specstat.scanner import update_statistics

# Funcs to test
from specstat.trainers.statistics_based import (
    CorrelationParameters,
    KNNParameters,
    MaximumLikelihoodParameters,
    build_cem_parameters,
    build_correlation_parameters,
    build_maximum_likelihood_parameters,
    build_parallelepiped_parameters,
)

# %% test helpers


def mock_image() -> np.ndarray:
    rng = np.random.default_rng(21)
    data = np.empty((3, 20, 10))
    data[:, 0:10, :] = rng.normal([[[20.0]], [[60.0]], [[40.0]]], 4.0, size=(3, 10, 10))
    data[:, 10:20, :] = rng.normal([[[70.0]], [[30.0]], [[50.0]]], 6.0, size=(3, 10, 10))
    return data


def scanned_engine(weight_a: float = 1.0, weight_b: float = 1.0) -> tuple:
    data = mock_image()
    project = ProjectContext(3)
    a = project.add_class("A", weight_a)
    project.add_field(a, "A_1", rectangle=(0, 10, 0, 10))
    b = project.add_class("B", weight_b)
    project.add_field(b, "B_1", rectangle=(10, 20, 0, 10))
    c = project.add_class("C")
    project.add_field(c, "C_test", field_type="test", rectangle=(0, 20, 0, 10))
    assert update_statistics(project, ArrayPixelReader(data)) == "done"
    return CovarianceEngine(project), data


def class_pixels(data: np.ndarray, line_start: int, line_stop: int) -> np.ndarray:
    result: np.ndarray = data[:, line_start:line_stop, :].reshape(3, -1).T
    return result


# %% test functions : maximum likelihood


class TestMaximumLikelihood(unittest.TestCase):
    @staticmethod
    def test_parameters() -> None:
        """Test means, covariances and priors of the training classes"""
        engine, data = scanned_engine(weight_a=1.0, weight_b=3.0)
        params = build_maximum_likelihood_parameters(engine)
        # The test-only class is excluded
        assert params.class_numbers == [0, 1]
        np.testing.assert_allclose(params.means[0], class_pixels(data, 0, 10).mean(axis=0))
        np.testing.assert_allclose(params.covariances[1], np.cov(class_pixels(data, 10, 20), rowvar=False), rtol=1e-8)
        np.testing.assert_allclose(params.priors, np.array([0.25, 0.75]))
        np.testing.assert_allclose(params.inverse_covariances[0] @ params.covariances[0], np.eye(3), atol=1e-8)
        np.testing.assert_allclose(params.log_determinants, np.log(np.linalg.det(params.covariances)))

    @staticmethod
    def test_discriminants() -> None:
        """Test discriminants equal Gaussian log densities up to a constant"""
        engine, data = scanned_engine()
        params = build_maximum_likelihood_parameters(engine, [0, 1])
        pixels = np.vstack([class_pixels(data, 0, 3), class_pixels(data, 15, 17)])
        values = params.discriminants(pixels)
        assert values.shape == (pixels.shape[0], 2)
        for i in range(2):
            expected = (
                multivariate_normal(params.means[i], params.covariances[i]).logpdf(pixels)
                + math.log(params.priors[i])
                + 1.5 * math.log(2 * math.pi)
            )
            np.testing.assert_allclose(values[:, i], expected, rtol=1e-8)
        assert np.all(np.argmax(values[:30], axis=1) == 0)
        assert np.all(np.argmax(values[30:], axis=1) == 1)

    @staticmethod
    def test_uniform_priors_and_subset() -> None:
        """Test zero weights give uniform priors and channel subsets"""
        engine, data = scanned_engine(weight_a=0.0, weight_b=0.0)
        params = build_maximum_likelihood_parameters(engine, channel_subset=[2, 0])
        np.testing.assert_allclose(params.priors, np.array([0.5, 0.5]))
        assert params.covariances.shape == (2, 2, 2)
        np.testing.assert_allclose(params.means[1], class_pixels(data, 10, 20)[:, [2, 0]].mean(axis=0))

    @staticmethod
    def test_not_positive_definite() -> None:
        """Test an indefinite covariance matrix is rejected"""
        with pytest.raises(ValueError, match="not positive definite"):
            MaximumLikelihoodParameters(
                [0], np.zeros((1, 2)), np.array([[[1.0, 2.0], [2.0, 1.0]]]), np.array([1.0])
            )

    @staticmethod
    def test_no_training_classes() -> None:
        """Test projects without training fields"""
        engine = CovarianceEngine(ProjectContext(3))
        with pytest.raises(ValueError, match="No class with training fields"):
            build_maximum_likelihood_parameters(engine)


# %% test functions : correlation


class TestCorrelation(unittest.TestCase):
    @staticmethod
    def test_spectral_angles() -> None:
        """Test spectral angles in degrees"""
        params = CorrelationParameters([0, 1], np.array([[1.0, 0.0], [0.0, 1.0]]), 30.0)
        angles = params.spectral_angles(np.array([[2.0, 0.0], [1.0, 1.0], [0.0, 0.0]]))
        np.testing.assert_allclose(angles, np.array([[0.0, 90.0], [45.0, 45.0], [90.0, 90.0]]), atol=1e-6)
        assert params.correlation_threshold == pytest.approx(math.cos(math.radians(30.0)))

    @staticmethod
    def test_build() -> None:
        """Test correlation parameters from class means"""
        engine, data = scanned_engine()
        params = build_correlation_parameters(engine, angle_threshold=10)
        assert params.angle_threshold == 10.0
        np.testing.assert_allclose(params.means[0], class_pixels(data, 0, 10).mean(axis=0))
        angles = params.spectral_angles(params.means)
        np.testing.assert_allclose(np.diag(angles), np.zeros(2), atol=1e-5)

        with pytest.raises(ValueError, match="0 to 180"):
            build_correlation_parameters(engine, angle_threshold=181)


# %% test functions : matched filter


class TestCEM(unittest.TestCase):
    @staticmethod
    def test_unit_response_to_class_mean() -> None:
        """Test each filter responds with 1 to its class mean"""
        engine, _ = scanned_engine()
        params = build_cem_parameters(engine, threshold=0.8)
        assert params.threshold == 0.8
        assert params.filters.shape == (2, 3)
        means = np.array([engine.get_class_mean_vector(c) for c in params.class_numbers])
        responses = params.responses(means)
        np.testing.assert_allclose(np.diag(responses), np.ones(2), rtol=1e-8)

        subset = build_cem_parameters(engine, [1], channel_subset=[0, 1])
        response = subset.responses(engine.get_class_mean_vector(1, [0, 1]))
        np.testing.assert_allclose(response, np.ones((1, 1)), rtol=1e-8)

    @staticmethod
    def test_zero_energy() -> None:
        """Test a zero class mean has no filter"""
        project = ProjectContext(2)
        a = project.add_class("A")
        project.add_field(a, "A_1", rectangle=(0, 2, 0, 2))
        update_statistics(project, ArrayPixelReader(np.zeros((2, 4, 4))))
        with pytest.raises(ValueError, match="zero filter energy"):
            build_cem_parameters(CovarianceEngine(project))


# %% test functions : parallelepiped


class TestParallelepiped(unittest.TestCase):
    @staticmethod
    def test_min_max_boxes() -> None:
        """Test boxes from class extremes contain the training pixels"""
        engine, data = scanned_engine()
        params = build_parallelepiped_parameters(engine)
        pixels_a = class_pixels(data, 0, 10)
        np.testing.assert_array_equal(params.minimums[0], pixels_a.min(axis=0))
        np.testing.assert_array_equal(params.maximums[0], pixels_a.max(axis=0))
        assert params.inside(pixels_a)[:, 0].all()
        assert params.inside(class_pixels(data, 10, 20))[:, 1].all()
        assert not params.inside(np.array([1000.0, 1000.0, 1000.0])).any()

    @staticmethod
    def test_std_dev_boxes() -> None:
        """Test boxes from class means and standard deviations"""
        engine, _ = scanned_engine()
        params = build_parallelepiped_parameters(engine, [1], std_dev_factor=2)
        mean = engine.get_class_mean_vector(1)
        std = engine.get_class_std_dev_vector(1)
        np.testing.assert_allclose(params.minimums[0], mean - 2 * std)
        np.testing.assert_allclose(params.maximums[0], mean + 2 * std)
        assert params.inside(mean).all()

        with pytest.raises(ValueError, match="std_dev_factor"):
            build_parallelepiped_parameters(engine, std_dev_factor=0)


# %% test functions : k nearest neighbors


class TestKNN(unittest.TestCase):
    @staticmethod
    def test_k() -> None:
        """Test the neighborhood size"""
        assert KNNParameters().k == 5
        assert repr(KNNParameters(3)) == "KNNParameters(k=3)"
        with pytest.raises(ValueError, match="at least 1"):
            KNNParameters(0)


# %% Test main

# TestMaximumLikelihood.test_parameters()
# TestMaximumLikelihood.test_discriminants()
# TestMaximumLikelihood.test_uniform_priors_and_subset()
# TestMaximumLikelihood.test_not_positive_definite()
# TestMaximumLikelihood.test_no_training_classes()

# TestCorrelation.test_spectral_angles()
# TestCorrelation.test_build()

# TestCEM.test_unit_response_to_class_mean()
# TestCEM.test_zero_energy()

# TestParallelepiped.test_min_max_boxes()
# TestParallelepiped.test_std_dev_boxes()

# TestKNN.test_k()

if __name__ == "__main__":
    unittest.main()
