"""The classes to save the results of the preprocessing and fitting phases"""

# Authors: Ching-Chuan Chen
# SPDX-License-Identifier: MIT
from dataclasses import dataclass, field
from typing import Optional

import numpy as np


@dataclass(frozen=True)
class CVFoldResult:
    """Outcome of one minimization inside the cross-validation sweep.

    Attributes
    ----------
    candidate_index : int
        Position of the smoothing-parameter candidate in the grid.
    fold : int
        Held-out fold.
    g : np.ndarray of shape (n_basis,)
        Coefficients fitted on the training part of the fold.
    loss : float
        L2 cross-validation error on the held-out part.

    Notes
    -----
    One instance is written per ``(candidate, fold)`` pair and never modified, so workers can
    produce them independently and the reduction can combine them in a fixed order.
    """

    candidate_index: int
    fold: int
    g: np.ndarray
    loss: float


@dataclass
class ConfidenceBand:
    """Pointwise confidence band for the log-density coefficients.

    Attributes
    ----------
    lower : np.ndarray of shape (n_basis,)
        Lower bound, aligned with the fitted coefficients. Empty if no inference was run.
    upper : np.ndarray of shape (n_basis,)
        Upper bound, aligned with the fitted coefficients. Empty if no inference was run.
    level : float, optional
        Nominal coverage of the band.
    """

    lower: np.ndarray = field(default_factory=lambda: np.empty(0))
    upper: np.ndarray = field(default_factory=lambda: np.empty(0))
    level: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return self.lower.size == 0
