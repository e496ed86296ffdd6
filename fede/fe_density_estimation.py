"""Finite-element density estimation (FEDE): preprocessing, final minimization and confidence band."""

# Authors: Ching-Chuan Chen
# SPDX-License-Identifier: MIT

import logging
import time
import warnings
from typing import Callable, List, Literal, Optional, Tuple

import numpy as np
from sklearn.base import BaseEstimator
from sklearn.utils.validation import check_is_fitted

from fede.exceptions import FEDEError
from fede.optimization import MinimizationAlgorithm, MinimizationAlgorithmTime
from fede.preprocess import (
    PREPROCESS_METHODS,
    DensityInitialization,
    Preprocess,
    create_preprocess,
    create_preprocess_time,
)
from fede.problem import DataProblem, DataProblemTime, FunctionalProblem, FunctionalProblemTime
from fede.utils import ConfidenceBand

logger = logging.getLogger(__name__)

STAGES = ("preprocess", "collect", "final_minimization", "confidence_intervals")


class FEDE(BaseEstimator):
    """
    Finite-element density estimation over an interval.

    The log-density ``g`` is expanded on the P1 finite-element basis of the mesh of the data
    problem and estimated by penalized maximum likelihood. :meth:`apply` runs, in order:

    1. the preprocessing strategy, which initializes a density for every candidate smoothing
       parameter and selects one by k-fold cross-validation (or takes the only candidate);
    2. the collection of the preprocessing results;
    3. the minimization of the penalized functional on the full data, started from the
       coefficients returned by the preprocessing;
    4. if the data problem requests inference, the confidence band of the fitted coefficients.

    Any failure aborts the run and is raised as a :class:`~fede.exceptions.FEDEError` whose
    ``stage`` names the step that failed.

    Parameters
    ----------
    data_problem : DataProblem
        Observations, discretization and fitting settings.
    functional_problem : FunctionalProblem
        Penalized functional built on `data_problem`.
    minimization_algorithm : MinimizationAlgorithm
        Descent algorithm used for the cross-validation folds and the final fit.
    preprocess_method : {'NoCrossValidation', 'SimplifiedCV', 'RightCV'}, default='RightCV'
        Preprocessing strategy.
    n_jobs : int, optional
        Number of joblib workers used by the cross-validation sweep. None or 1 runs sequentially.
    density_initialization : DensityInitialization, optional
        Initializer of the candidate densities. Built from the problems if None.

    Attributes
    ----------
    preprocess_ : Preprocess
        Preprocessing strategy of the last run, with its fold-level diagnostics.
    f_init_ : List[np.ndarray]
        Initial density at the nodes of every candidate.
    best_lambda_ : float
        Selected smoothing parameter.
    cv_errors_ : List[float]
        Aggregated cross-validation error of every candidate, empty without cross-validation.
    gcoeff_ : np.ndarray of shape (n_basis,)
        Fitted log-density coefficients.
    ci_ : ConfidenceBand
        Confidence band of `gcoeff_`; both bounds are empty when inference is disabled.
    elapsed_time_ : Dict[str, float]
        Elapsed time in seconds of each stage.

    Notes
    -----
    Calling :meth:`apply` again re-runs the whole pipeline and overwrites the results. An
    instance must not run :meth:`apply` from several threads at once.

    Examples
    --------
    >>> import numpy as np
    >>> from fede import FEDE, DensityDataGenerator
    >>> from fede.optimization import create_minimization_algorithm
    >>> from fede.problem import DataProblem, FunctionalProblem
    >>> x = DensityDataGenerator().generate(200, seed=1)
    >>> dp = DataProblem(x, np.linspace(0.0, 1.0, 21), [1e-4, 1e-3], nfolds=5)
    >>> fp = FunctionalProblem(dp)
    >>> model = FEDE(dp, fp, create_minimization_algorithm(dp, fp)).apply()
    >>> model.get_density_g().shape
    (21,)
    """

    _problem_class = DataProblem
    _functional_class = FunctionalProblem
    _algorithm_class = MinimizationAlgorithm
    _result_attributes = ("preprocess_", "f_init_", "best_lambda_", "cv_errors_", "gcoeff_", "ci_", "elapsed_time_")

    def __init__(
        self,
        data_problem: DataProblem,
        functional_problem: FunctionalProblem,
        minimization_algorithm: MinimizationAlgorithm,
        preprocess_method: Literal["NoCrossValidation", "SimplifiedCV", "RightCV"] = "RightCV",
        n_jobs: Optional[int] = None,
        density_initialization: Optional[DensityInitialization] = None,
    ) -> None:
        if not isinstance(data_problem, self._problem_class):
            raise TypeError(f"data_problem must be an instance of {self._problem_class.__name__}.")
        if not isinstance(functional_problem, self._functional_class):
            raise TypeError(f"functional_problem must be an instance of {self._functional_class.__name__}.")
        if functional_problem.data_problem is not data_problem:
            raise ValueError("functional_problem must be built on the same data_problem.")
        if not isinstance(minimization_algorithm, self._algorithm_class):
            raise TypeError(f"minimization_algorithm must be an instance of {self._algorithm_class.__name__}.")
        if preprocess_method not in PREPROCESS_METHODS:
            raise ValueError(f"preprocess_method must be one of {list(PREPROCESS_METHODS)}, got {preprocess_method}")
        if n_jobs is not None and (not isinstance(n_jobs, int) or n_jobs == 0):
            raise ValueError("n_jobs must be None or a non-zero integer.")

        self.data_problem = data_problem
        self.functional_problem = functional_problem
        self.minimization_algorithm = minimization_algorithm
        self.preprocess_method = preprocess_method
        self.n_jobs = n_jobs
        self.density_initialization = density_initialization

    def _create_preprocess(self) -> Preprocess:
        return create_preprocess(
            self.data_problem,
            self.functional_problem,
            self.minimization_algorithm,
            self.preprocess_method,
            density_initialization=self.density_initialization,
            n_jobs=self.n_jobs,
        )

    def _preprocess(self) -> Preprocess:
        preprocess = self._create_preprocess()
        preprocess.perform_preprocess_task()
        return preprocess

    @staticmethod
    def _collect(preprocess: Preprocess):
        f_init, g_init, *lambdas = preprocess.get_preprocess_parameter()
        best_lambda = lambdas[0] if len(lambdas) == 1 else tuple(lambdas)
        return f_init, g_init, best_lambda, preprocess.get_cv_error()

    def _minimize(self, g_init: np.ndarray, best_lambda: float) -> np.ndarray:
        return self.minimization_algorithm.apply_core(self.data_problem.get_global_psi(), best_lambda, g_init)

    def _confidence_band(self, gcoeff: np.ndarray, best_lambda: float) -> ConfidenceBand:
        return self.functional_problem.compute_covariance_ci(gcoeff, best_lambda)

    def _store_lambda(self, best_lambda: float) -> None:
        self.best_lambda_ = best_lambda

    @staticmethod
    def _run_stage(stage: str, func: Callable, *args):
        try:
            return func(*args)
        except FEDEError as e:
            if e.stage not in STAGES:
                e.stage = stage
            raise
        except Exception as e:
            raise FEDEError(f"{type(e).__name__}: {e!s}", stage=stage) from e

    def _clear_results(self) -> None:
        for name in self._result_attributes:
            if name in self.__dict__:
                delattr(self, name)

    def apply(self) -> "FEDE":
        """
        Run the preprocessing, the final minimization and, if requested, the confidence band.

        Returns
        -------
        self : FEDE
            The fitted estimator.

        Raises
        ------
        FEDEError
            If any stage fails. The ``stage`` attribute is one of ``'preprocess'``,
            ``'collect'``, ``'final_minimization'`` and ``'confidence_intervals'``.
        """
        self._clear_results()
        init_start_time = time.time_ns()
        if self.data_problem.n_obs < 10:
            warnings.warn("The number of observations is less than 10. This may lead to an unreliable density estimate.")

        logger.info("Preprocess phase (%s).", self.preprocess_method)
        start_time = time.time_ns()
        preprocess = self._run_stage("preprocess", self._preprocess)
        f_init, g_init, best_lambda, cv_errors = self._run_stage("collect", self._collect, preprocess)
        preprocess_time = (time.time_ns() - start_time) / 1e9
        logger.info("Selected smoothing parameter: %s.", best_lambda)

        logger.info("Final step.")
        start_time = time.time_ns()
        gcoeff = self._run_stage("final_minimization", self._minimize, g_init, best_lambda)
        minimization_time = (time.time_ns() - start_time) / 1e9

        start_time = time.time_ns()
        if self.data_problem.inference:
            logger.info("CI computation.")
            ci = self._run_stage("confidence_intervals", self._confidence_band, gcoeff, best_lambda)
        else:
            ci = ConfidenceBand()
        ci_time = (time.time_ns() - start_time) / 1e9

        self.preprocess_ = preprocess
        self.f_init_ = f_init
        self._store_lambda(best_lambda)
        self.cv_errors_ = cv_errors
        self.gcoeff_ = gcoeff
        self.ci_ = ci
        self.elapsed_time_ = {
            "preprocess": preprocess_time,
            "final_minimization": minimization_time,
            "confidence_intervals": ci_time,
            "apply_total_time": (time.time_ns() - init_start_time) / 1e9,
        }
        return self

    def fit(self, X=None, y=None) -> "FEDE":
        """Alias of :meth:`apply`; the data are taken from the data problem."""
        return self.apply()

    def get_density_g(self) -> np.ndarray:
        """Fitted log-density coefficients."""
        check_is_fitted(self, ["gcoeff_"])
        return self.gcoeff_

    def get_ci_lower_g(self) -> np.ndarray:
        """Lower bound of the confidence band, empty without inference."""
        check_is_fitted(self, ["ci_"])
        return self.ci_.lower

    def get_ci_upper_g(self) -> np.ndarray:
        """Upper bound of the confidence band, empty without inference."""
        check_is_fitted(self, ["ci_"])
        return self.ci_.upper

    def get_initial_density(self) -> List[np.ndarray]:
        """Initial density of every candidate, in grid order."""
        check_is_fitted(self, ["f_init_"])
        return self.f_init_

    def get_best_lambda(self) -> float:
        check_is_fitted(self, ["best_lambda_"])
        return self.best_lambda_

    def get_cv_error(self) -> List[float]:
        """Aggregated cross-validation error of every candidate, empty without cross-validation."""
        check_is_fitted(self, ["cv_errors_"])
        return self.cv_errors_

    def density(self) -> np.ndarray:
        """
        Estimated density at the nodes.

        Returns
        -------
        np.ndarray of shape (n_basis,)
            ``exp(g) / int exp(g)``, which integrates to one over the domain.
        """
        g = self.get_density_g()
        return np.exp(g) / self.functional_problem.compute_integral(g)


class FEDETime(FEDE):
    """
    Finite-element density estimation over space and time.

    The coefficients live on the tensor-product basis of the spatial and temporal meshes and
    the smoothing parameter is a ``(lambda_s, lambda_t)`` pair selected on the Cartesian product
    of the two candidate vectors. See :class:`FEDE` for the stages of :meth:`apply`.

    Parameters
    ----------
    data_problem : DataProblemTime
    functional_problem : FunctionalProblemTime
    minimization_algorithm : MinimizationAlgorithmTime
    preprocess_method : {'NoCrossValidation', 'SimplifiedCV', 'RightCV'}, default='RightCV'
    n_jobs : int, optional
    density_initialization : DensityInitializationTime, optional

    Attributes
    ----------
    best_lambda_s_ : float
        Selected spatial smoothing parameter.
    best_lambda_t_ : float
        Selected temporal smoothing parameter.
    gcoeff_ : np.ndarray of shape (n_nodes * n_time_nodes,)
        Fitted coefficients, the one of space node ``s`` and time node ``t`` at ``s * n_time_nodes + t``.
    """

    _problem_class = DataProblemTime
    _functional_class = FunctionalProblemTime
    _algorithm_class = MinimizationAlgorithmTime
    _result_attributes = (
        "preprocess_",
        "f_init_",
        "best_lambda_s_",
        "best_lambda_t_",
        "cv_errors_",
        "gcoeff_",
        "ci_",
        "elapsed_time_",
    )

    def __init__(
        self,
        data_problem: DataProblemTime,
        functional_problem: FunctionalProblemTime,
        minimization_algorithm: MinimizationAlgorithmTime,
        preprocess_method: Literal["NoCrossValidation", "SimplifiedCV", "RightCV"] = "RightCV",
        n_jobs: Optional[int] = None,
        density_initialization: Optional[DensityInitialization] = None,
    ) -> None:
        super().__init__(
            data_problem,
            functional_problem,
            minimization_algorithm,
            preprocess_method=preprocess_method,
            n_jobs=n_jobs,
            density_initialization=density_initialization,
        )

    def _create_preprocess(self) -> Preprocess:
        return create_preprocess_time(
            self.data_problem,
            self.functional_problem,
            self.minimization_algorithm,
            self.preprocess_method,
            density_initialization=self.density_initialization,
            n_jobs=self.n_jobs,
        )

    def _minimize(self, g_init: np.ndarray, best_lambda: Tuple[float, float]) -> np.ndarray:
        lambda_s, lambda_t = best_lambda
        return self.minimization_algorithm.apply_core(self.data_problem.get_upsilon(), lambda_s, lambda_t, g_init)

    def _confidence_band(self, gcoeff: np.ndarray, best_lambda: Tuple[float, float]) -> ConfidenceBand:
        lambda_s, lambda_t = best_lambda
        return self.functional_problem.compute_covariance_ci(gcoeff, lambda_s, lambda_t)

    def _store_lambda(self, best_lambda: Tuple[float, float]) -> None:
        self.best_lambda_s_, self.best_lambda_t_ = best_lambda

    def get_best_lambda(self) -> Tuple[float, float]:
        check_is_fitted(self, ["best_lambda_s_", "best_lambda_t_"])
        return self.best_lambda_s_, self.best_lambda_t_

    def get_best_lambda_s(self) -> float:
        check_is_fitted(self, ["best_lambda_s_"])
        return self.best_lambda_s_

    def get_best_lambda_t(self) -> float:
        check_is_fitted(self, ["best_lambda_t_"])
        return self.best_lambda_t_

    def density(self) -> np.ndarray:
        """
        Estimated space-time density at the tensor-product nodes.

        Returns
        -------
        np.ndarray of shape (n_nodes, n_time_nodes)
            ``exp(g) / int exp(g)`` reshaped to the space-major node layout.
        """
        dp = self.data_problem
        return super().density().reshape(dp.n_nodes, dp.n_time_nodes)
