# -*- coding: utf-8 -*-
"""
Usage demo for SpecStat

Copyright (c) 2025 Siwei Luo. MIT License.
"""

# Synthetic data demo

# 1. Data preparation
# Set data directory path
import os
import shutil

# Setup a directory for demo
demo_dir = os.getcwd() + "/SpecStatDemo/"

if os.path.exists(demo_dir):
    shutil.rmtree(demo_dir)

os.makedirs(demo_dir)

# Create a 4-band demo raster and a training mask
from specstat import create_test_mask, create_test_raster

raster_path = create_test_raster(demo_dir + "demo.tif")
mask_path = create_test_mask(demo_dir + "demo_mask.tif")


# 2. Configure the statistics project
# 2.1 Create a project with the 4 image channels
from specstat import ProjectContext

project = ProjectContext(4, zero_variance_factor=0.001, verbose=True)

# 2.2 Classes and rectangle / polygon fields
class_a = project.add_class("A")
class_b = project.add_class("B", weight=2)
project.add_field(class_a, "A_rect", rectangle=(0, 5, 0, 20))
project.add_field(class_a, "A_poly", polygon=[(0, 10), (20, 10), (20, 15), (0, 15)])
project.add_field(class_b, "B_rect", rectangle=(30, 35, 0, 20))

# 2.3 Mask fields, mask value 1 and 2 are assigned to fields of class A and B
from specstat import read_training_mask

project.set_training_mask(read_training_mask(mask_path))
project.add_field(class_a, "A_mask", mask_value=1)
project.add_field(class_b, "B_mask", mask_value=2)

# Check classes and fields
project.ls_classes()
project.ls_fields()


# 3. Compute statistics
from specstat import RasterPixelReader, TqdmProgress, update_statistics

with RasterPixelReader(raster_path) as reader:
    status = update_statistics(project, reader, progress=TqdmProgress("Statistics"))

# Check state
status
project.is_project_statistics_up_to_date()
project.ls_fields()


# 4. Class statistics
from specstat import CovarianceEngine

engine = CovarianceEngine(project)

# Per channel table
engine.class_statistics_table(class_a)

# Covariance and correlation of a channel subset
engine.get_class_covariance_matrix(class_a, channel_subset=[0, 2])
engine.get_class_correlation_matrix(class_b)

# Common covariance of the classes, weighted by class weights
engine.get_common_covariance()

# Leave-one-out covariance with a user mixing value
project.set_mixing_parameter(class_a, "user_set", 1.5)
project.set_class_covariance_stats_to_use(class_a, "leave_one_out")
engine.get_class_covariance_matrix(class_a)


# 5. Classifier training
# 5.1 Parameters from class statistics
from specstat.trainers import (
    build_correlation_parameters,
    build_maximum_likelihood_parameters,
    build_parallelepiped_parameters,
)

ml_params = build_maximum_likelihood_parameters(engine, covariance_stats_to_use="original")
ml_params.discriminants(engine.get_class_mean_vector(class_b))

sam_params = build_correlation_parameters(engine, angle_threshold=5)
box_params = build_parallelepiped_parameters(engine, std_dev_factor=2)

# 5.2 Sample based trainers
from specstat import collect_training_samples
from specstat.trainers import SVMParameters, train_decision_tree, train_svm, tree_to_text

with RasterPixelReader(raster_path) as reader:
    samples, labels = collect_training_samples(project, reader)

tree = train_decision_tree(samples, labels)
print(tree_to_text(tree))

svm_model = train_svm(samples, labels, SVMParameters(kernel_type="linear"))
svm_model.predict(samples[:5])


# 6. Clear demo directory
shutil.rmtree(demo_dir)
