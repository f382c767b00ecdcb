# -*- coding: utf-8 -*-
"""
SpecStat - trainers - Binary decision tree trained by Gini impurity splitting

Copyright (c) 2025 Siwei Luo. MIT License.
"""

# Typing
from typing import Annotated, Any, Union

import numpy as np
from sklearn.base import BaseEstimator, ClassifierMixin
from sklearn.utils.validation import check_array, check_is_fitted, check_X_y

# Local
from ..specio import arraylike_validator, simple_type_validator

# %% Tree nodes


class Leaf:
    """
    Terminal node holding the label counts of its training samples.

    Attributes
    ----------
    counts : dict
        Number of samples per label.

    label : Any
        Predicted label, the most frequent label (first seen among equals).
    """

    def __init__(self, labels: np.ndarray) -> None:
        self.counts: dict = class_counts(labels)
        best = max(self.counts.values())
        self.label: Any = next(k for k, v in self.counts.items() if v == best)

    def __repr__(self) -> str:
        return f"Leaf(label={self.label!r}, counts={self.counts})"


class DecisionNode:
    """
    Internal node asking ``sample[column] >= value``.

    Samples answering true go to ``true_branch``, the others to ``false_branch``.
    """

    def __init__(self, column: int, value: float, true_branch: "TreeNode", false_branch: "TreeNode") -> None:
        self.column: int = column
        self.value: float = value
        self.true_branch: TreeNode = true_branch
        self.false_branch: TreeNode = false_branch

    def match(self, sample: np.ndarray) -> bool:
        return bool(sample[self.column] >= self.value)

    def __repr__(self) -> str:
        return f"DecisionNode(column={self.column}, value={self.value})"


TreeNode = Union[Leaf, DecisionNode]


# %% Impurity and splitting


def class_counts(labels: np.ndarray) -> dict:
    """Number of samples per label, in order of first appearance."""
    counts: dict = {}
    for label in np.asarray(labels).tolist():
        counts[label] = counts.get(label, 0) + 1
    return counts


def gini(labels: np.ndarray) -> float:
    """Gini impurity ``1 - sum(p_k ** 2)`` of a set of labels."""
    labels = np.asarray(labels)
    if len(labels) == 0:
        return 0.0
    _, counts = np.unique(labels, return_counts=True)
    probabilities = counts / len(labels)
    return float(1.0 - np.sum(probabilities**2))


def info_gain(true_labels: np.ndarray, false_labels: np.ndarray, current_uncertainty: float) -> float:
    """Impurity decrease of a split, weighting each side by its share of the samples."""
    p = len(true_labels) / (len(true_labels) + len(false_labels))
    return current_uncertainty - p * gini(true_labels) - (1 - p) * gini(false_labels)


def partition(samples: np.ndarray, column: int, value: float) -> np.ndarray:
    """Boolean vector of the samples answering true to ``sample[column] >= value``."""
    result: np.ndarray = samples[:, column] >= value
    return result


def find_best_split(samples: np.ndarray, labels: np.ndarray) -> tuple[float, Union[tuple[int, float], None]]:
    """
    Best question over every column and every distinct value of the samples.

    Candidates are scanned by column, then by increasing value. A candidate replaces the best one
    when its gain is greater or equal, so the last candidate wins among equal gains.
    Splits leaving one side empty are skipped.

    Returns
    -------
    best_gain : float
        Information gain of the best split, 0 if no split improves the impurity.

    best_question : tuple[int, float] or None
        ``(column, value)`` of the best split.
    """
    best_gain = 0.0
    best_question = None
    current_uncertainty = gini(labels)
    number_samples = samples.shape[0]

    for column in range(samples.shape[1]):
        for value in np.unique(samples[:, column]):
            is_true = partition(samples, column, value)
            number_true = int(is_true.sum())
            if (number_true == 0) or (number_true == number_samples):
                continue
            gain = info_gain(labels[is_true], labels[~is_true], current_uncertainty)
            if gain >= best_gain:
                best_gain, best_question = gain, (column, float(value))

    return best_gain, best_question


# %% Training


@simple_type_validator
def train_decision_tree(
    samples: Annotated[Any, arraylike_validator(ndim=2)],
    labels: Annotated[Any, arraylike_validator(ndim=1)],
) -> TreeNode:
    """
    Grow a binary decision tree until no split has a positive information gain.

    No depth or leaf size limit is applied, noisy samples can give very deep trees.
    Nodes are expanded with an explicit stack so the depth is not bound by the recursion limit.

    Parameters
    ----------
    samples : 2D array-like
        Sample vectors, one per row.

    labels : 1D array-like
        Label of each sample.

    Returns
    -------
    Leaf or DecisionNode
        Root of the trained tree.

    Examples
    --------
    >>> tree = train_decision_tree([[0, 1], [10, 1], [1, 1], [11, 1]], ["A", "B", "A", "B"])
    >>> tree.column, tree.value
    (0, 10.0)
    """
    samples = np.asarray(samples, dtype=np.float64)
    labels = np.asarray(labels)
    if samples.shape[0] != labels.shape[0]:
        raise ValueError(f"Got {samples.shape[0]} samples and {labels.shape[0]} labels")
    if samples.shape[0] == 0:
        raise ValueError("Cannot train a decision tree without samples")

    # Each entry: sample indices, parent node, attach to true branch
    root_holder: dict = {}
    stack: list[tuple[np.ndarray, Any, bool]] = [(np.arange(samples.shape[0]), None, True)]
    while stack:
        indices, parent, is_true_branch = stack.pop()
        node_samples, node_labels = samples[indices], labels[indices]
        gain, question = find_best_split(node_samples, node_labels)
        if (gain == 0) or (question is None):
            node: TreeNode = Leaf(node_labels)
        else:
            column, value = question
            is_true = partition(node_samples, column, value)
            # Children are attached when popped
            node = DecisionNode(column, value, Leaf(node_labels[is_true]), Leaf(node_labels[~is_true]))
            stack.append((indices[~is_true], node, False))
            stack.append((indices[is_true], node, True))
        if parent is None:
            root_holder["root"] = node
        elif is_true_branch:
            parent.true_branch = node
        else:
            parent.false_branch = node

    root: TreeNode = root_holder["root"]
    return root


def classify(sample: np.ndarray, node: TreeNode) -> Any:
    """Label of a sample vector."""
    while isinstance(node, DecisionNode):
        node = node.true_branch if node.match(sample) else node.false_branch
    return node.label


def tree_depth(node: TreeNode) -> int:
    """Number of questions on the longest path, 0 for a single leaf."""
    depth = 0
    stack: list[tuple[TreeNode, int]] = [(node, 0)]
    while stack:
        current, current_depth = stack.pop()
        if isinstance(current, Leaf):
            depth = max(depth, current_depth)
        else:
            stack.append((current.false_branch, current_depth + 1))
            stack.append((current.true_branch, current_depth + 1))
    return depth


def tree_to_text(node: TreeNode, spacing: str = "") -> str:
    """Indented text rendering of a tree."""
    lines: list[str] = []
    # Entries are finished lines or nodes still to render
    stack: list[Union[str, tuple[TreeNode, str]]] = [(node, spacing)]
    while stack:
        entry = stack.pop()
        if isinstance(entry, str):
            lines.append(entry)
            continue
        current, indent = entry
        if isinstance(current, Leaf):
            lines.append(f"{indent}Predict {current.counts}")
            continue
        lines.append(f"{indent}Is channel {current.column} >= {current.value}?")
        stack.append((current.false_branch, indent + "  "))
        stack.append(f"{indent}--> False:")
        stack.append((current.true_branch, indent + "  "))
        stack.append(f"{indent}--> True:")
    return "\n".join(lines) + "\n"


# %% Estimator


class DecisionTreeTrainer(BaseEstimator, ClassifierMixin):
    """
    Scikit-learn style wrapper of ``train_decision_tree``.

    Attributes
    ----------
    tree_ : Leaf or DecisionNode
        Trained tree.

    classes_ : numpy.ndarray
        Labels seen during fitting.
    """

    def __init__(self) -> None:
        pass

    @simple_type_validator
    def fit(
        self,
        X: Annotated[Any, arraylike_validator(ndim=2)],  # noqa: N803
        y: Annotated[Any, arraylike_validator(ndim=1)],
    ) -> "DecisionTreeTrainer":
        X, y = check_X_y(X, y)  # noqa: N806
        self.tree_ = train_decision_tree(X, y)
        self.classes_ = np.unique(y)
        self.n_features_in_ = X.shape[1]
        self.is_fitted_ = True
        return self

    def __sklearn_is_fitted__(self) -> bool:
        return hasattr(self, "is_fitted_") and self.is_fitted_

    @simple_type_validator
    def predict(self, X: Annotated[Any, arraylike_validator(ndim=2)]) -> np.ndarray:  # noqa: N803
        check_is_fitted(self, "is_fitted_")
        X = check_array(X)  # noqa: N806
        if X.shape[1] != self.n_features_in_:
            raise ValueError(f"Expected {self.n_features_in_} features, got: {X.shape[1]}")
        return np.array([classify(sample, self.tree_) for sample in X])
