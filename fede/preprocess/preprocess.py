"""Preprocessing phase: density initialization and cross-validated choice of the smoothing parameter."""

# Authors: Ching-Chuan Chen
# SPDX-License-Identifier: MIT
import copy
import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
from joblib import Parallel, delayed
from scipy.sparse import spmatrix
from sklearn.exceptions import NotFittedError

from fede.exceptions import FEDEError, NonConvergenceError, PreprocessError
from fede.optimization import MinimizationAlgorithm
from fede.preprocess.density_initialization import DensityInitialization, DensityInitializationTime
from fede.preprocess.l2_error import KFoldCVL2Error, KFoldCVL2ErrorTime
from fede.problem import DataProblem, DataProblemTime, FunctionalProblem
from fede.utils import CVFoldResult, make_cyclic_folds, split_basis_by_fold

logger = logging.getLogger(__name__)

PREPROCESS_METHODS = ("NoCrossValidation", "SimplifiedCV", "RightCV")

SmoothingParameter = Union[float, Tuple[float, ...]]
FoldSplit = Tuple[spmatrix, spmatrix]


class Preprocess(ABC):
    """
    Abstract preprocessing phase.

    A preprocessing strategy produces, for the final minimization, the initial densities of every
    grid candidate, the coefficients used as starting point and the selected smoothing parameter.

    Parameters
    ----------
    data_problem : DataProblem
        Problem settings and candidate grid.
    functional_problem : FunctionalProblem
        Penalized functional.
    density_initialization : DensityInitialization, optional
        Initializer owning the initial densities. Built from the problem if None.

    Attributes
    ----------
    f_init_ : list of np.ndarray
        References to the initial density of each grid candidate, owned by the initializer.
    g_init_ : np.ndarray of shape (n_basis,)
        Coefficients used to start the final minimization.
    best_lambda_ : float or tuple of float
        Selected smoothing parameter(s).
    """

    _problem_class = DataProblem
    _density_initialization_class = DensityInitialization

    def __init__(
        self,
        data_problem: DataProblem,
        functional_problem: FunctionalProblem,
        density_initialization: Optional[DensityInitialization] = None,
    ):
        if not isinstance(data_problem, self._problem_class):
            raise TypeError(f"data_problem must be an instance of {self._problem_class.__name__}.")
        self.data_problem = data_problem
        self.functional_problem = functional_problem
        if density_initialization is None:
            density_initialization = self._density_initialization_class(data_problem, functional_problem)
        self.density_initialization = density_initialization

        self.f_init_: List[np.ndarray] = []
        self.g_init_: Optional[np.ndarray] = None
        self.best_lambda_: Optional[SmoothingParameter] = None

    def _fill_f_init(self) -> None:
        self.f_init_ = [self.density_initialization.initialize(candidate) for candidate in self.data_problem.candidate_grid]

    def _check_grid(self) -> None:
        if self.data_problem.n_lambda == 0:
            raise PreprocessError("The smoothing-parameter grid is empty.", stage="preprocess")

    @abstractmethod
    def perform_preprocess_task(self) -> None:
        """Run the preprocessing phase and store its results."""

    @abstractmethod
    def get_cv_error(self) -> List[float]:
        """Return the aggregated cross-validation error of every candidate, empty without CV."""

    def get_preprocess_parameter(self) -> Tuple[List[np.ndarray], np.ndarray, SmoothingParameter]:
        """
        Return the results of :meth:`perform_preprocess_task`.

        Returns
        -------
        f_init : list of np.ndarray
            Initial density of each grid candidate.
        g_init : np.ndarray of shape (n_basis,)
            Starting coefficients of the final minimization.
        best_lambda : float or tuple of float
            Selected smoothing parameter(s).

        Raises
        ------
        sklearn.exceptions.NotFittedError
            If the preprocessing task has not been performed yet.
        """
        if self.g_init_ is None:
            raise NotFittedError(f"This {type(self).__name__} instance has not performed its preprocessing task yet.")
        return self.f_init_, self.g_init_, self.best_lambda_


class NoCrossValidation(Preprocess):
    """
    Preprocessing without cross-validation, for a grid with a single candidate.

    The starting coefficients are the logarithm of the initial density and the only candidate is
    selected. No minimization is run in this phase.
    """

    def __init__(
        self,
        data_problem: DataProblem,
        functional_problem: FunctionalProblem,
        minimization_algorithm: Optional[MinimizationAlgorithm] = None,
        density_initialization: Optional[DensityInitialization] = None,
        n_jobs: Optional[int] = None,
    ):
        super().__init__(data_problem, functional_problem, density_initialization)

    def perform_preprocess_task(self) -> None:
        self._check_grid()
        if self.data_problem.n_lambda != 1:
            raise PreprocessError(
                f"NoCrossValidation requires exactly one smoothing-parameter candidate, got {self.data_problem.n_lambda}.",
                stage="preprocess",
            )
        self._fill_f_init()
        self.g_init_ = np.log(self.f_init_[0])
        self.best_lambda_ = self.data_problem.get_lambda(0)

    def get_cv_error(self) -> List[float]:
        return []


class CrossValidation(Preprocess):
    """
    Abstract k-fold cross-validation over the candidate grid.

    The observations are split cyclically into ``nfolds`` folds (``fold(i) = i mod nfolds``). For
    every candidate, in grid order, and every fold, a minimization is run on the training rows of
    the basis matrix and scored on the held-out rows with the L2 error. Each ``(candidate, fold)``
    outcome is kept in its own slot of `fold_results_`; the slots are then reduced per candidate
    by summing the fold errors, and the first candidate with the lowest sum is selected.

    Parameters
    ----------
    data_problem : DataProblem
    functional_problem : FunctionalProblem
    minimization_algorithm : MinimizationAlgorithm
        Algorithm used for every fold minimization.
    density_initialization : DensityInitialization, optional
    n_jobs : int, optional
        Number of joblib workers. None or 1 runs sequentially with `minimization_algorithm`;
        otherwise each task receives its own copy of the algorithm.
    l2_error : KFoldCVL2Error, optional
        Held-out error. Built from the problem if None.

    Attributes
    ----------
    k_folds_ : np.ndarray of shape (n_obs,)
        Fold of each observation.
    fold_results_ : list of list of CVFoldResult
        Outcome of each ``(candidate, fold)`` pair, indexed ``[candidate][fold]``.
    cv_errors_ : list of float
        Sum of the fold errors of each candidate.
    g_sols_ : list of np.ndarray
        Coefficients retained for each candidate.
    """

    _l2_error_class = KFoldCVL2Error

    def __init__(
        self,
        data_problem: DataProblem,
        functional_problem: FunctionalProblem,
        minimization_algorithm: MinimizationAlgorithm,
        density_initialization: Optional[DensityInitialization] = None,
        n_jobs: Optional[int] = None,
        l2_error: Optional[KFoldCVL2Error] = None,
    ):
        super().__init__(data_problem, functional_problem, density_initialization)
        if minimization_algorithm is None:
            raise ValueError("Cross-validation requires a minimization algorithm.")
        if n_jobs is not None and (not isinstance(n_jobs, int) or n_jobs == 0):
            raise ValueError("n_jobs must be None or a non-zero integer.")
        self.minimization_algorithm = minimization_algorithm
        self.n_jobs = n_jobs
        self.error = l2_error if l2_error is not None else self._l2_error_class(data_problem, functional_problem)

        self.k_folds_ = np.empty(0, dtype=np.int64)
        self.fold_results_: List[List[CVFoldResult]] = []
        self.cv_errors_: List[float] = []
        self.g_sols_: List[np.ndarray] = []

    @property
    def _progress_level(self) -> int:
        return logging.INFO if self.data_problem.print_progress else logging.DEBUG

    def _check_configuration(self) -> None:
        self._check_grid()
        n_obs, n_folds = self.data_problem.n_obs, self.data_problem.nfolds
        if n_folds < 2:
            raise PreprocessError(f"Number of cross-validation folds, nfolds, should be at least 2, got {n_folds}.", stage="preprocess")
        if n_folds > n_obs:
            raise PreprocessError(
                f"Number of cross-validation folds ({n_folds}) cannot exceed the number of observations ({n_obs}).",
                stage="preprocess",
            )

    def _seed(self, candidate_index: int) -> np.ndarray:
        return np.log(self.f_init_[candidate_index])

    def _fit_fold(
        self,
        candidate_index: int,
        fold: int,
        psi_train: spmatrix,
        psi_valid: spmatrix,
        g_start: np.ndarray,
        minimization_algorithm: MinimizationAlgorithm,
    ) -> CVFoldResult:
        candidate = self.data_problem.get_lambda(candidate_index)
        try:
            g = minimization_algorithm.minimize(psi_train, candidate, g_start)
        except NonConvergenceError as e:
            raise NonConvergenceError(
                f"Cross-validation minimization failed for lambda={candidate}: {e.message}",
                stage="preprocess",
                candidate_index=candidate_index,
                fold_index=fold,
            ) from e
        loss = self.error.score(g, psi_valid)
        if not np.isfinite(loss):
            raise FEDEError(
                f"Non-finite cross-validation error for lambda={candidate}.",
                stage="preprocess",
                candidate_index=candidate_index,
                fold_index=fold,
            )
        logger.log(
            self._progress_level,
            "lambda=%s, fold %d/%d: cross-validation error %.6g",
            candidate,
            fold + 1,
            self.data_problem.nfolds,
            loss,
        )
        return CVFoldResult(candidate_index=candidate_index, fold=fold, g=g, loss=float(loss))

    @abstractmethod
    def _perform_cv_core(
        self, candidate_index: int, splits: Sequence[FoldSplit], minimization_algorithm: MinimizationAlgorithm
    ) -> List[CVFoldResult]:
        """Run every fold of one candidate and return the outcomes in fold order."""

    @abstractmethod
    def _select_solution(self, fold_results: List[CVFoldResult]) -> np.ndarray:
        """Pick the coefficients retained for one candidate."""

    def _run_parallel(self, splits: Sequence[FoldSplit]) -> List[List[CVFoldResult]]:
        n_candidates = self.data_problem.n_lambda
        return Parallel(n_jobs=self.n_jobs)(
            delayed(self._perform_cv_core)(c, splits, copy.copy(self.minimization_algorithm)) for c in range(n_candidates)
        )

    def _reduce(self, fold_results: List[List[CVFoldResult]]) -> None:
        self.fold_results_ = fold_results
        self.cv_errors_ = [float(sum(r.loss for r in candidate_results)) for candidate_results in fold_results]
        self.g_sols_ = [self._select_solution(candidate_results) for candidate_results in fold_results]

    def perform_cv(self) -> Tuple[np.ndarray, SmoothingParameter]:
        """
        Run k-fold cross-validation over the candidate grid.

        Returns
        -------
        g : np.ndarray of shape (n_basis,)
            Coefficients retained for the selected candidate.
        best_lambda : float or tuple of float
            Candidate with the lowest aggregated error; the first one in grid order wins ties.

        Raises
        ------
        PreprocessError
            If the grid or the fold count is invalid.
        NonConvergenceError
            If a fold minimization does not converge.
        """
        self._check_configuration()
        dp = self.data_problem
        self.k_folds_ = make_cyclic_folds(dp.n_obs, dp.nfolds)
        psi = dp.basis_matrix
        splits = [split_basis_by_fold(psi, self.k_folds_, fold) for fold in range(dp.nfolds)]

        if self.n_jobs is None or self.n_jobs == 1:
            fold_results = [
                self._perform_cv_core(c, splits, self.minimization_algorithm) for c in range(dp.n_lambda)
            ]
        else:
            fold_results = self._run_parallel(splits)
        self._reduce(fold_results)

        best = int(np.argmin(self.cv_errors_))
        logger.log(
            self._progress_level,
            "Cross-validation selected candidate %d (lambda=%s) with error %.6g.",
            best,
            dp.get_lambda(best),
            self.cv_errors_[best],
        )
        return self.g_sols_[best], dp.get_lambda(best)

    def perform_preprocess_task(self) -> None:
        self._check_configuration()
        self._fill_f_init()
        self.g_init_, self.best_lambda_ = self.perform_cv()

    def get_cv_error(self) -> List[float]:
        return list(self.cv_errors_)


class SimplifiedCrossValidation(CrossValidation):
    """
    Cheap k-fold cross-validation.

    The folds of a candidate are chained: the first fold starts from the candidate's initial
    log-density and every later fold starts from the previous fold's solution, so most descents
    begin close to convergence. The solution of the last fold is retained. Only `cv_errors_` is
    produced.
    """

    def _perform_cv_core(
        self, candidate_index: int, splits: Sequence[FoldSplit], minimization_algorithm: MinimizationAlgorithm
    ) -> List[CVFoldResult]:
        results = []
        g_start = self._seed(candidate_index)
        for fold, (psi_train, psi_valid) in enumerate(splits):
            result = self._fit_fold(candidate_index, fold, psi_train, psi_valid, g_start, minimization_algorithm)
            results.append(result)
            g_start = result.g
        return results

    def _select_solution(self, fold_results: List[CVFoldResult]) -> np.ndarray:
        return fold_results[-1].g


class RightCrossValidation(CrossValidation):
    """
    Full k-fold cross-validation.

    Every fold of every candidate is minimized independently from the candidate's initial
    log-density. For each candidate, `best_loss_` records the lowest fold error and the solution of
    that fold (the first one on ties) is retained.

    Attributes
    ----------
    best_loss_ : list of float
        Lowest fold error of each candidate.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.best_loss_: List[float] = []

    def _perform_cv_core(
        self, candidate_index: int, splits: Sequence[FoldSplit], minimization_algorithm: MinimizationAlgorithm
    ) -> List[CVFoldResult]:
        g_start = self._seed(candidate_index)
        return [
            self._fit_fold(candidate_index, fold, psi_train, psi_valid, g_start, minimization_algorithm)
            for fold, (psi_train, psi_valid) in enumerate(splits)
        ]

    def _run_parallel(self, splits: Sequence[FoldSplit]) -> List[List[CVFoldResult]]:
        # folds are independent here, so every (candidate, fold) pair is its own task
        n_candidates, n_folds = self.data_problem.n_lambda, len(splits)
        flat = Parallel(n_jobs=self.n_jobs)(
            delayed(self._fit_fold)(c, fold, psi_train, psi_valid, self._seed(c), copy.copy(self.minimization_algorithm))
            for c in range(n_candidates)
            for fold, (psi_train, psi_valid) in enumerate(splits)
        )
        return [flat[c * n_folds : (c + 1) * n_folds] for c in range(n_candidates)]

    def _select_solution(self, fold_results: List[CVFoldResult]) -> np.ndarray:
        best_fold = int(np.argmin([r.loss for r in fold_results]))
        return fold_results[best_fold].g

    def _reduce(self, fold_results: List[List[CVFoldResult]]) -> None:
        super()._reduce(fold_results)
        self.best_loss_ = [float(min(r.loss for r in candidate_results)) for candidate_results in fold_results]


class PreprocessTime(Preprocess):
    """
    Mixin turning a preprocessing strategy into its spatio-temporal twin.

    Grid candidates are ``(lambda_s, lambda_t)`` pairs and the basis matrix is ``upsilon``.
    """

    _problem_class = DataProblemTime
    _density_initialization_class = DensityInitializationTime

    @property
    def best_lambda_s_(self) -> Optional[float]:
        return None if self.best_lambda_ is None else self.best_lambda_[0]

    @property
    def best_lambda_t_(self) -> Optional[float]:
        return None if self.best_lambda_ is None else self.best_lambda_[1]

    def get_preprocess_parameter(self) -> Tuple[List[np.ndarray], np.ndarray, float, float]:
        """Return ``(f_init, g_init, best_lambda_s, best_lambda_t)``."""
        f_init, g_init, (lambda_s, lambda_t) = super().get_preprocess_parameter()
        return f_init, g_init, lambda_s, lambda_t


class NoCrossValidationTime(PreprocessTime, NoCrossValidation):
    """Spatio-temporal preprocessing for a single ``(lambda_s, lambda_t)`` pair."""


class CrossValidationTime(PreprocessTime, CrossValidation):
    """Spatio-temporal k-fold cross-validation over ``(lambda_s, lambda_t)`` pairs."""

    _l2_error_class = KFoldCVL2ErrorTime


class SimplifiedCrossValidationTime(CrossValidationTime, SimplifiedCrossValidation):
    """Spatio-temporal simplified cross-validation."""


class RightCrossValidationTime(CrossValidationTime, RightCrossValidation):
    """Spatio-temporal right cross-validation."""


_PREPROCESS_CLASSES = {
    "NoCrossValidation": NoCrossValidation,
    "SimplifiedCV": SimplifiedCrossValidation,
    "RightCV": RightCrossValidation,
}

_PREPROCESS_TIME_CLASSES = {
    "NoCrossValidation": NoCrossValidationTime,
    "SimplifiedCV": SimplifiedCrossValidationTime,
    "RightCV": RightCrossValidationTime,
}


def _check_method(method: str) -> None:
    if method not in PREPROCESS_METHODS:
        raise ValueError(f"preprocess_method must be one of {list(PREPROCESS_METHODS)}, got {method}")


def create_preprocess(
    data_problem: DataProblem,
    functional_problem: FunctionalProblem,
    minimization_algorithm: MinimizationAlgorithm,
    method: str,
    density_initialization: Optional[DensityInitialization] = None,
    n_jobs: Optional[int] = None,
) -> Preprocess:
    """
    Build the preprocessing strategy named `method`.

    Parameters
    ----------
    data_problem : DataProblem
    functional_problem : FunctionalProblem
    minimization_algorithm : MinimizationAlgorithm
        Used by the cross-validation strategies only.
    method : {"NoCrossValidation", "SimplifiedCV", "RightCV"}
    density_initialization : DensityInitialization, optional
    n_jobs : int, optional
        Workers of the cross-validation sweep.

    Returns
    -------
    Preprocess
    """
    _check_method(method)
    return _PREPROCESS_CLASSES[method](
        data_problem, functional_problem, minimization_algorithm, density_initialization=density_initialization, n_jobs=n_jobs
    )


def create_preprocess_time(
    data_problem: DataProblemTime,
    functional_problem: FunctionalProblem,
    minimization_algorithm: MinimizationAlgorithm,
    method: str,
    density_initialization: Optional[DensityInitialization] = None,
    n_jobs: Optional[int] = None,
) -> PreprocessTime:
    """Spatio-temporal twin of :func:`create_preprocess`."""
    _check_method(method)
    return _PREPROCESS_TIME_CLASSES[method](
        data_problem, functional_problem, minimization_algorithm, density_initialization=density_initialization, n_jobs=n_jobs
    )
