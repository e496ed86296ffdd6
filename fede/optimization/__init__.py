"""Minimization algorithms for the penalized functional."""

# Authors: Ching-Chuan Chen
# SPDX-License-Identifier: MIT

from fede.optimization.minimization import (
    DIRECTION_METHODS,
    STEP_METHODS,
    MinimizationAlgorithm,
    MinimizationAlgorithmTime,
    create_minimization_algorithm,
)

__all__ = [
    "DIRECTION_METHODS",
    "STEP_METHODS",
    "MinimizationAlgorithm",
    "MinimizationAlgorithmTime",
    "create_minimization_algorithm",
]
