# -*- coding: utf-8 -*-
"""
SpecStat - Incremental training statistics and classifier training for multispectral images
"""

# Package meta
__version__ = "0.1.0"
__author__ = "Siwei Luo"
__license__ = "MIT"

# Imports
__all__ = [
    ## Statistics storage
    "TriangularMatrix",
    "Accumulator",
    "StatisticsPool",
    ## Project
    "ProjectContext",
    ## IO tools
    "TrainingMask",
    "read_training_mask",
    ## Pixel reading
    "ArrayPixelReader",
    "RasterPixelReader",
    "DataValueFilter",
    ## Scanning
    "update_statistics",
    "collect_training_samples",
    "TqdmProgress",
    "NullProgress",
    ## Covariance engine
    "CovarianceEngine",
    "get_loo_covariance",
    "reset_zero_variances",
    "reset_for_all_variances_equal",
    ## Mock example data
    "create_example_raster",
    "create_test_raster",
    "create_test_mask",
    "create_example_project",
]

# Components
## Statistics storage
from .accumulator import Accumulator, StatisticsPool

## Covariance engine
from .covariance import CovarianceEngine, get_loo_covariance, reset_for_all_variances_equal, reset_zero_variances

## Example data
from .example_data import create_example_project, create_example_raster, create_test_mask, create_test_raster

## Project
from .project import ProjectContext

## Pixel reading
from .rasterop import ArrayPixelReader, DataValueFilter, RasterPixelReader

## Scanning
from .scanner import NullProgress, TqdmProgress, collect_training_samples, update_statistics

## IO tools
from .specio import TrainingMask, read_training_mask
from .statmatrix import TriangularMatrix
