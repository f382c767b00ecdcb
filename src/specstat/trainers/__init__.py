# -*- coding: utf-8 -*-
"""
SpecStat - Classifier trainers consuming project statistics

Copyright (c) 2025 Siwei Luo. MIT License.
"""

__all__ = [
    "DecisionTreeTrainer",
    "train_decision_tree",
    "classify",
    "tree_to_text",
    "SVMParameters",
    "build_svm_problem",
    "train_svm",
    "LibsvmSolver",
    "MaximumLikelihoodParameters",
    "CorrelationParameters",
    "CEMParameters",
    "ParallelepipedParameters",
    "KNNParameters",
    "build_maximum_likelihood_parameters",
    "build_correlation_parameters",
    "build_cem_parameters",
    "build_parallelepiped_parameters",
]

from .decision_tree import DecisionTreeTrainer, classify, train_decision_tree, tree_to_text
from .statistics_based import (
    CEMParameters,
    CorrelationParameters,
    KNNParameters,
    MaximumLikelihoodParameters,
    ParallelepipedParameters,
    build_cem_parameters,
    build_correlation_parameters,
    build_maximum_likelihood_parameters,
    build_parallelepiped_parameters,
)
from .svm import LibsvmSolver, SVMParameters, build_svm_problem, train_svm
