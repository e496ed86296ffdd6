"""Exceptions raised while fitting a finite-element density."""

# Authors: Ching-Chuan Chen
# SPDX-License-Identifier: MIT
from typing import Optional


class FEDEError(Exception):
    """Base class of every failure raised by the fitting pipeline.

    Parameters
    ----------
    message : str
        Human readable description of the failure.
    stage : str, optional
        Pipeline stage in which the failure happened, e.g. ``"preprocess"``,
        ``"final_minimization"`` or ``"confidence_intervals"``.
    candidate_index : int, optional
        Index of the smoothing-parameter candidate being processed, if any.
    fold_index : int, optional
        Index of the cross-validation fold being processed, if any.
    """

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        candidate_index: Optional[int] = None,
        fold_index: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.candidate_index = candidate_index
        self.fold_index = fold_index

    def __reduce__(self):
        # keep the context when the error crosses a worker-process boundary
        return type(self), (self.message, self.stage, self.candidate_index, self.fold_index)

    def __str__(self):
        context = []
        if self.stage is not None:
            context.append(f"stage={self.stage}")
        if self.candidate_index is not None:
            context.append(f"candidate={self.candidate_index}")
        if self.fold_index is not None:
            context.append(f"fold={self.fold_index}")
        if context:
            return f"{self.message} [{', '.join(context)}]"
        return self.message


class PreprocessError(FEDEError, ValueError):
    """Invalid preprocessing configuration: empty grid, bad fold count, wrong strategy input."""


class NonConvergenceError(FEDEError):
    """A minimization did not reach its stopping criterion."""


class SingularCovarianceError(FEDEError):
    """The Hessian of the penalized functional could not be inverted."""
