# -*- coding: utf-8 -*-
"""
Tests for support vector machine parameters, sparse problems and training (SVM)

The following source code was created with AI assistance and has been human reviewed and edited.

Copyright (c) 2025 Siwei Luo. MIT License.
"""

# Test
import unittest
import pytest

# Typing
from typing import Any

# Testing third
import numpy as np
from sklearn.svm import SVC, NuSVC, OneClassSVM

# Self
# Funcs to test
from specstat.trainers.svm import (
    LibsvmSolver,
    SVMModel,
    SVMParameters,
    SVMProblem,
    SVMSolver,
    build_svm_problem,
    sparse_nodes,
    train_svm,
)

# %% test helpers


def two_clusters() -> tuple[np.ndarray, np.ndarray]:
    rng = np.random.default_rng(9)
    cluster_a = rng.random((20, 3))
    cluster_b = rng.random((20, 3)) + 10
    samples = np.vstack([cluster_a, cluster_b])
    labels = np.array([1] * 20 + [2] * 20)
    return samples, labels


class ConstantModel:
    def __init__(self, value: int) -> None:
        self.value = value

    def predict(self, samples: Any) -> np.ndarray:
        return np.full(samples.shape[0], self.value)


class RecordingSolver:
    """Solver stub keeping the problem it was given."""

    def __init__(self) -> None:
        self.problems: list = []

    def train(self, problem: SVMProblem, params: SVMParameters) -> Any:
        self.problems.append((problem, params))
        return ConstantModel(int(problem.labels[0]))


# %% test functions : SVMParameters


class TestSVMParameters(unittest.TestCase):
    @staticmethod
    def test_defaults() -> None:
        """Test default parameters and estimator keywords"""
        params = SVMParameters()
        assert params.svm_type == "c_svc"
        assert params.kernel_type == "rbf"
        assert params.is_classification
        kwargs = params.estimator_kwargs()
        assert kwargs["kernel"] == "rbf"
        assert kwargs["C"] == 10.0
        assert kwargs["gamma"] == 0.001
        assert kwargs["tol"] == 0.1
        assert kwargs["probability"] is False
        assert "nu" not in kwargs
        assert "epsilon" not in kwargs

    @staticmethod
    def test_type_specific_keywords() -> None:
        """Test keywords follow the SVM type"""
        kwargs = SVMParameters(svm_type="nu_svc", kernel_type="polynomial", nu=0.3).estimator_kwargs()
        assert kwargs["kernel"] == "poly"
        assert kwargs["nu"] == 0.3
        assert "C" not in kwargs

        kwargs = SVMParameters(svm_type="epsilon_svr", p=0.05).estimator_kwargs()
        assert kwargs["epsilon"] == 0.05
        assert kwargs["C"] == 10.0
        assert "probability" not in kwargs

        params = SVMParameters(svm_type="one_class")
        assert not params.is_classification
        assert set(params.estimator_kwargs()) >= {"nu", "kernel"}

    @staticmethod
    def test_invalid() -> None:
        """Test invalid parameter values"""
        with pytest.raises(ValueError, match="svm_type"):
            SVMParameters(svm_type="c_svm")
        with pytest.raises(ValueError, match="kernel_type"):
            SVMParameters(kernel_type="gaussian")
        with pytest.raises(ValueError, match="nu"):
            SVMParameters(nu=0)
        with pytest.raises(ValueError, match="gamma"):
            SVMParameters(gamma=-1)
        with pytest.raises(ValueError, match="cost"):
            SVMParameters(cost=0)


# %% test functions : sparse problem


class TestSVMProblem(unittest.TestCase):
    @staticmethod
    def test_sparse_nodes() -> None:
        """Test nodes are 1-based and omit zeros"""
        assert sparse_nodes([0.0, 2.5, 0.0, 1.0]) == [(2, 2.5), (4, 1.0)]
        assert sparse_nodes(np.zeros(3)) == []

    @staticmethod
    def test_build_problem() -> None:
        """Test the sparse problem restores the dense samples"""
        samples = np.array([[0.0, 1.0, 2.0], [3.0, 0.0, 0.0], [0.0, 0.0, 0.0]])
        problem = build_svm_problem(samples, [1, 2, 1])
        assert len(problem) == 3
        assert problem.number_features == 3
        assert problem.nodes[1] == [(1, 3.0)]
        assert problem.nodes[2] == []
        matrix = problem.to_csr()
        assert matrix.shape == (3, 3)
        assert matrix.nnz == 3
        np.testing.assert_array_equal(matrix.toarray(), samples)

    @staticmethod
    def test_invalid_problem() -> None:
        """Test mismatched and empty problems"""
        with pytest.raises(ValueError, match="samples and"):
            build_svm_problem(np.ones((3, 2)), [1, 2])
        with pytest.raises(ValueError, match="without samples"):
            build_svm_problem(np.zeros((0, 2)), np.array([]))
        with pytest.raises(ValueError, match="labels for"):
            SVMProblem(np.array([1]), [], 2)


# %% test functions : training


class TestTrainSVM(unittest.TestCase):
    @staticmethod
    def test_train_separable() -> None:
        """Test separable clusters with a linear kernel"""
        samples, labels = two_clusters()
        model = train_svm(samples, labels, SVMParameters(kernel_type="linear"))
        assert isinstance(model, SVMModel)
        assert isinstance(model.model, SVC)
        assert model.number_features == 3
        predicted = model.predict(np.array([[0.5, 0.5, 0.5], [10.5, 10.5, 10.5]]))
        np.testing.assert_array_equal(predicted, np.array([1, 2]))
        np.testing.assert_array_equal(model.predict(samples), labels)

        with pytest.raises(ValueError, match="features"):
            model.predict(np.zeros((1, 2)))

    @staticmethod
    def test_estimator_types() -> None:
        """Test each SVM type trains its estimator"""
        samples, labels = two_clusters()
        model = train_svm(samples, labels, SVMParameters(svm_type="nu_svc", kernel_type="linear", nu=0.2))
        assert isinstance(model.model, NuSVC)

        model = train_svm(samples, labels, SVMParameters(svm_type="one_class", gamma=0.1))
        assert isinstance(model.model, OneClassSVM)
        assert set(np.unique(model.predict(samples)).tolist()) <= {-1, 1}

        assert set(LibsvmSolver.estimator_types) == {"c_svc", "nu_svc", "one_class", "epsilon_svr", "nu_svr"}

    @staticmethod
    def test_single_class_rejected() -> None:
        """Test classification needs two classes"""
        with pytest.raises(ValueError, match="at least 2 classes"):
            train_svm(np.ones((4, 2)), np.array([1, 1, 1, 1]))
        # One-class training accepts a single label
        model = train_svm(
            np.ones((4, 2)), np.array([1, 1, 1, 1]), SVMParameters(svm_type="one_class"), RecordingSolver()
        )
        assert model.predict(np.ones((2, 2))).tolist() == [1, 1]

    @staticmethod
    def test_custom_solver() -> None:
        """Test a solver satisfying the solver protocol"""
        solver = RecordingSolver()
        assert isinstance(solver, SVMSolver)
        assert isinstance(LibsvmSolver(), SVMSolver)

        params = SVMParameters(cost=2.0)
        model = train_svm([[0.0, 1.0], [2.0, 0.0]], [3, 4], params, solver)
        assert len(solver.problems) == 1
        problem, used_params = solver.problems[0]
        assert used_params is params
        assert problem.nodes == [[(2, 1.0)], [(1, 2.0)]]
        np.testing.assert_array_equal(model.predict(np.zeros((3, 2))), np.full(3, 3))


# %% Test main

# TestSVMParameters.test_defaults()
# TestSVMParameters.test_type_specific_keywords()
# TestSVMParameters.test_invalid()

# TestSVMProblem.test_sparse_nodes()
# TestSVMProblem.test_build_problem()
# TestSVMProblem.test_invalid_problem()

# TestTrainSVM.test_train_separable()
# TestTrainSVM.test_estimator_types()
# TestTrainSVM.test_single_class_rejected()
# TestTrainSVM.test_custom_solver()

if __name__ == "__main__":
    unittest.main()
