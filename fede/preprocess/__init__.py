"""Preprocessing: density initialization, cross-validation error and smoothing-parameter selection."""

# Authors: Ching-Chuan Chen
# SPDX-License-Identifier: MIT
from fede.preprocess.density_initialization import DensityInitialization, DensityInitializationTime
from fede.preprocess.l2_error import KFoldCVL2Error, KFoldCVL2ErrorTime
from fede.preprocess.preprocess import (
    PREPROCESS_METHODS,
    CrossValidation,
    CrossValidationTime,
    NoCrossValidation,
    NoCrossValidationTime,
    Preprocess,
    PreprocessTime,
    RightCrossValidation,
    RightCrossValidationTime,
    SimplifiedCrossValidation,
    SimplifiedCrossValidationTime,
    create_preprocess,
    create_preprocess_time,
)

__all__ = [
    "PREPROCESS_METHODS",
    "CrossValidation",
    "CrossValidationTime",
    "DensityInitialization",
    "DensityInitializationTime",
    "KFoldCVL2Error",
    "KFoldCVL2ErrorTime",
    "NoCrossValidation",
    "NoCrossValidationTime",
    "Preprocess",
    "PreprocessTime",
    "RightCrossValidation",
    "RightCrossValidationTime",
    "SimplifiedCrossValidation",
    "SimplifiedCrossValidationTime",
    "create_preprocess",
    "create_preprocess_time",
]
