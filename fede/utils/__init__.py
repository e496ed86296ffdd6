"""Utilities shared by the preprocessing and fitting phases."""

# Authors: Ching-Chuan Chen
# SPDX-License-Identifier: MIT
from fede.utils.folds import make_cyclic_folds, split_basis_by_fold
from fede.utils.result_class import ConfidenceBand, CVFoldResult

__all__ = [
    "CVFoldResult",
    "ConfidenceBand",
    "make_cyclic_folds",
    "split_basis_by_fold",
]
