"""Problem definitions: data, discretization and the penalized functional."""

# Authors: Ching-Chuan Chen
# SPDX-License-Identifier: MIT

from fede.problem.data_problem import DataProblem, DataProblemTime
from fede.problem.functional_problem import FunctionalProblem, FunctionalProblemTime

__all__ = [
    "DataProblem",
    "DataProblemTime",
    "FunctionalProblem",
    "FunctionalProblemTime",
]
