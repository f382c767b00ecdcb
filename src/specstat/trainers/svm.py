# -*- coding: utf-8 -*-
"""
SpecStat - trainers - Support vector machine parameters, sparse problems and training

Copyright (c) 2025 Siwei Luo. MIT License.
"""

# Typing
from typing import Annotated, Any, Optional, Protocol, Union, runtime_checkable

import numpy as np
from scipy.sparse import csr_matrix
from sklearn.svm import SVC, SVR, NuSVC, NuSVR, OneClassSVM

# Local
from ..specio import arraylike_validator, simple_type_validator

# %% Parameters

SVM_TYPES = ("c_svc", "nu_svc", "one_class", "epsilon_svr", "nu_svr")
KERNEL_TYPES = ("linear", "polynomial", "rbf", "sigmoid")


class SVMParameters:
    """
    Support vector machine training parameters.

    Parameters
    ----------
    svm_type : str, optional
        ``'c_svc'``, ``'nu_svc'``, ``'one_class'``, ``'epsilon_svr'`` or ``'nu_svr'``. The default is ``'c_svc'``.

    kernel_type : str, optional
        ``'linear'``, ``'polynomial'``, ``'rbf'`` or ``'sigmoid'``. The default is ``'rbf'``.

    degree : int, optional
        Polynomial kernel degree. The default is 3.

    gamma : float, optional
        Kernel coefficient of the polynomial, rbf and sigmoid kernels. The default is 0.001.

    coef0 : float, optional
        Independent kernel term of the polynomial and sigmoid kernels. The default is 0.

    cost : float, optional
        Regularization cost of C-SVC, epsilon-SVR and nu-SVR. The default is 10.

    nu : float, optional
        Nu of nu-SVC, one-class and nu-SVR, in (0, 1]. The default is 0.5.

    cache_size : float, optional
        Kernel cache size in MB. The default is 100.

    eps : float, optional
        Stopping tolerance. The default is 0.1.

    p : float, optional
        Epsilon of the epsilon-SVR loss. The default is 0.0001.

    shrinking : bool, optional
        Whether the shrinking heuristic is used. The default is True.

    probability : bool, optional
        Whether probability estimates are trained. The default is False.
    """

    @simple_type_validator
    def __init__(
        self,
        svm_type: str = "c_svc",
        kernel_type: str = "rbf",
        degree: int = 3,
        gamma: Union[int, float] = 0.001,
        coef0: Union[int, float] = 0.0,
        cost: Union[int, float] = 10.0,
        nu: Union[int, float] = 0.5,
        cache_size: Union[int, float] = 100.0,
        eps: Union[int, float] = 0.1,
        p: Union[int, float] = 0.0001,
        shrinking: bool = True,
        probability: bool = False,
    ) -> None:
        if svm_type not in SVM_TYPES:
            raise ValueError(f"svm_type must be one of {SVM_TYPES}, got: '{svm_type}'")
        if kernel_type not in KERNEL_TYPES:
            raise ValueError(f"kernel_type must be one of {KERNEL_TYPES}, got: '{kernel_type}'")
        if degree < 1:
            raise ValueError(f"degree must be positive, got: {degree}")
        if gamma <= 0:
            raise ValueError(f"gamma must be positive, got: {gamma}")
        if cost <= 0:
            raise ValueError(f"cost must be positive, got: {cost}")
        if (nu <= 0) or (nu > 1):
            raise ValueError(f"nu must be in (0, 1], got: {nu}")
        if (cache_size <= 0) or (eps <= 0) or (p < 0):
            raise ValueError(f"cache_size and eps must be positive and p non-negative, got: {cache_size}, {eps}, {p}")
        self.svm_type = svm_type
        self.kernel_type = kernel_type
        self.degree = degree
        self.gamma = float(gamma)
        self.coef0 = float(coef0)
        self.cost = float(cost)
        self.nu = float(nu)
        self.cache_size = float(cache_size)
        self.eps = float(eps)
        self.p = float(p)
        self.shrinking = shrinking
        self.probability = probability

    @property
    def is_classification(self) -> bool:
        return self.svm_type in ("c_svc", "nu_svc")

    def estimator_kwargs(self) -> dict[str, Any]:
        """Keyword arguments of the scikit-learn estimator of the SVM type."""
        kwargs: dict[str, Any] = {
            "kernel": "poly" if self.kernel_type == "polynomial" else self.kernel_type,
            "degree": self.degree,
            "gamma": self.gamma,
            "coef0": self.coef0,
            "tol": self.eps,
            "cache_size": self.cache_size,
            "shrinking": self.shrinking,
        }
        if self.svm_type in ("c_svc", "epsilon_svr", "nu_svr"):
            kwargs["C"] = self.cost
        if self.svm_type in ("nu_svc", "one_class", "nu_svr"):
            kwargs["nu"] = self.nu
        if self.svm_type == "epsilon_svr":
            kwargs["epsilon"] = self.p
        if self.is_classification:
            kwargs["probability"] = self.probability
        return kwargs

    def __repr__(self) -> str:
        return (
            f"SVMParameters(svm_type='{self.svm_type}', kernel_type='{self.kernel_type}', gamma={self.gamma}, "
            f"cost={self.cost})"
        )


# %% Sparse problem


class SVMProblem:
    """
    Training problem with one sparse node list per sample.

    Each node list holds ``(index, value)`` pairs with 1-based feature indices, zero values omitted.

    Attributes
    ----------
    labels : numpy.ndarray
        Sample labels.

    nodes : list[list[tuple[int, float]]]
        Sparse sample vectors.

    number_features : int
        Number of features of the dense samples.
    """

    def __init__(self, labels: np.ndarray, nodes: list[list[tuple[int, float]]], number_features: int) -> None:
        if len(labels) != len(nodes):
            raise ValueError(f"Got {len(labels)} labels for {len(nodes)} samples")
        self.labels = labels
        self.nodes = nodes
        self.number_features = number_features

    def __len__(self) -> int:
        return len(self.nodes)

    def to_csr(self) -> csr_matrix:
        """Samples as a sparse matrix of shape (n_samples, number_features)."""
        indptr = [0]
        indices: list[int] = []
        data: list[float] = []
        for sample_nodes in self.nodes:
            for index, value in sample_nodes:
                indices.append(index - 1)
                data.append(value)
            indptr.append(len(indices))
        return csr_matrix((data, indices, indptr), shape=(len(self.nodes), self.number_features), dtype=np.float64)


@simple_type_validator
def sparse_nodes(sample: Annotated[Any, arraylike_validator(ndim=1)]) -> list[tuple[int, float]]:
    """Sparse ``(index, value)`` nodes of a sample vector, 1-based indices, zeros omitted."""
    sample = np.asarray(sample, dtype=np.float64)
    return [(int(i) + 1, float(sample[i])) for i in np.nonzero(sample)[0]]


@simple_type_validator
def build_svm_problem(
    samples: Annotated[Any, arraylike_validator(ndim=2)],
    labels: Annotated[Any, arraylike_validator(ndim=1)],
) -> SVMProblem:
    """
    Sparse training problem of pixel vectors and their labels.

    Parameters
    ----------
    samples : 2D array-like
        Pixel channel vectors, one per row.

    labels : 1D array-like
        Class label of each pixel.

    Returns
    -------
    SVMProblem
        Sparse problem.
    """
    samples = np.asarray(samples, dtype=np.float64)
    labels = np.asarray(labels)
    if samples.shape[0] != labels.shape[0]:
        raise ValueError(f"Got {samples.shape[0]} samples and {labels.shape[0]} labels")
    if samples.shape[0] == 0:
        raise ValueError("Cannot build an SVM problem without samples")
    return SVMProblem(labels, [sparse_nodes(sample) for sample in samples], samples.shape[1])


# %% Solvers


@runtime_checkable
class SVMSolver(Protocol):
    def train(self, problem: SVMProblem, params: SVMParameters) -> Any: ...


class LibsvmSolver:
    """Solver backed by the libsvm implementation of scikit-learn."""

    estimator_types = {
        "c_svc": SVC,
        "nu_svc": NuSVC,
        "one_class": OneClassSVM,
        "epsilon_svr": SVR,
        "nu_svr": NuSVR,
    }

    def train(self, problem: SVMProblem, params: SVMParameters) -> Any:
        estimator = self.estimator_types[params.svm_type](**params.estimator_kwargs())
        if params.svm_type == "one_class":
            estimator.fit(problem.to_csr())
        else:
            estimator.fit(problem.to_csr(), problem.labels)
        return estimator


class SVMModel:
    """
    Trained support vector machine with its parameters.

    Attributes
    ----------
    params : SVMParameters
        Training parameters.

    model : Any
        Solver model.

    number_features : int
        Number of sample features.
    """

    def __init__(self, params: SVMParameters, model: Any, number_features: int) -> None:
        self.params = params
        self.model = model
        self.number_features = number_features

    @simple_type_validator
    def predict(self, samples: Annotated[Any, arraylike_validator(ndim=2)]) -> np.ndarray:
        """Predicted labels (or regression values) of sample vectors."""
        samples = np.asarray(samples, dtype=np.float64)
        if samples.shape[1] != self.number_features:
            raise ValueError(f"Expected {self.number_features} features, got: {samples.shape[1]}")
        problem = SVMProblem(np.zeros(samples.shape[0]), [sparse_nodes(s) for s in samples], self.number_features)
        return np.asarray(self.model.predict(problem.to_csr()))


@simple_type_validator
def train_svm(
    samples: Annotated[Any, arraylike_validator(ndim=2)],
    labels: Annotated[Any, arraylike_validator(ndim=1)],
    params: Optional[SVMParameters] = None,
    solver: Optional[SVMSolver] = None,
) -> SVMModel:
    """
    Train a support vector machine on pixel vectors.

    Parameters
    ----------
    samples : 2D array-like
        Pixel channel vectors.

    labels : 1D array-like
        Labels of the samples.

    params : SVMParameters, optional
        Training parameters. The default is ``SVMParameters()``.

    solver : SVMSolver, optional
        Quadratic optimization solver. The default is ``LibsvmSolver()``.

    Returns
    -------
    SVMModel
        Trained model.
    """
    if params is None:
        params = SVMParameters()
    if solver is None:
        solver = LibsvmSolver()
    problem = build_svm_problem(samples, labels)
    if params.is_classification and (len(np.unique(problem.labels)) < 2):
        raise ValueError("SVM classification requires samples of at least 2 classes")
    model = solver.train(problem, params)
    return SVMModel(params, model, problem.number_features)
