"""Penalized negative log-likelihood functional and its covariance-based confidence band."""

# Authors: Ching-Chuan Chen
# SPDX-License-Identifier: MIT
from typing import Tuple, Union

import numpy as np
from scipy import linalg, sparse
from scipy.sparse import spmatrix
from scipy.stats import norm

from fede.exceptions import SingularCovarianceError
from fede.problem.data_problem import DataProblem, DataProblemTime
from fede.utils import ConfidenceBand

SmoothingParameter = Union[float, Tuple[float, ...]]


class FunctionalProblem:
    """
    Penalized negative log-likelihood of a log-density expanded on a finite-element basis.

    For coefficients ``g`` and a basis-evaluation matrix ``psi`` with ``n`` rows the functional is

    .. math::
        L(g) = -\\frac{1}{n} \\sum_i (\\Psi g)_i + \\int e^{g} + \\sum_k \\lambda_k\\, g^\\top P_k g,

    where the integral uses the quadrature rule of the data problem and ``P_k`` are the penalty
    components (one in space, two in space-time).

    Parameters
    ----------
    data_problem : DataProblem
        Discretization and settings of the problem.
    """

    def __init__(self, data_problem: DataProblem):
        if not isinstance(data_problem, (DataProblem, DataProblemTime)):
            raise TypeError("data_problem must be an instance of DataProblem or DataProblemTime.")
        self.data_problem = data_problem

    def _smoothing_weights(self, lambda_: SmoothingParameter) -> np.ndarray:
        weights = np.atleast_1d(np.asarray(lambda_, dtype=np.float64))
        if weights.size != len(self.data_problem.penalty_components):
            raise ValueError(
                f"Expected {len(self.data_problem.penalty_components)} smoothing parameter(s), got {weights.size}."
            )
        return weights

    def penalty_matrix(self, lambda_: SmoothingParameter) -> np.ndarray:
        """Return ``sum_k lambda_k P_k``."""
        weights = self._smoothing_weights(lambda_)
        return sum(w * p for w, p in zip(weights, self.data_problem.penalty_components))

    def compute_integral(self, g: np.ndarray, power: float = 1.0) -> float:
        """Approximate ``int exp(power * g)`` over the domain."""
        return float(self.data_problem.quad_weights @ np.exp(power * (self.data_problem.quad_basis @ g)))

    def compute_loss(self, psi: spmatrix, g: np.ndarray, lambda_: SmoothingParameter) -> float:
        """Evaluate the penalized functional on the observations represented by `psi`."""
        penalty = self.penalty_matrix(lambda_)
        return float(-np.sum(psi @ g) / psi.shape[0] + self.compute_integral(g) + g @ (penalty @ g))

    def compute_gradient(self, psi: spmatrix, g: np.ndarray, lambda_: SmoothingParameter) -> np.ndarray:
        """Gradient of :meth:`compute_loss` with respect to `g`."""
        penalty = self.penalty_matrix(lambda_)
        exp_quad = self.data_problem.quad_weights * np.exp(self.data_problem.quad_basis @ g)
        data_term = np.asarray(psi.sum(axis=0)).ravel() / psi.shape[0]
        return -data_term + self.data_problem.quad_basis.T @ exp_quad + 2.0 * (penalty @ g)

    def compute_hessian(self, g: np.ndarray, lambda_: SmoothingParameter) -> np.ndarray:
        """Hessian of :meth:`compute_loss`; the data term is linear and does not contribute."""
        quad_basis = self.data_problem.quad_basis
        exp_quad = self.data_problem.quad_weights * np.exp(quad_basis @ g)
        integral_term = (quad_basis.T @ (sparse.diags(exp_quad) @ quad_basis)).toarray()
        return integral_term + 2.0 * self.penalty_matrix(lambda_)

    def compute_covariance_ci(self, g: np.ndarray, lambda_: SmoothingParameter) -> ConfidenceBand:
        """
        Compute a pointwise confidence band for the log-density coefficients.

        The covariance of the estimator is approximated by the inverse of ``n`` times the Hessian
        of the penalized functional at `g`, and the band is ``g -/+ z * sqrt(diag(cov))`` with the
        normal quantile of the data problem's ``ci_level``.

        Parameters
        ----------
        g : np.ndarray of shape (n_basis,)
            Fitted coefficients.
        lambda_ : float or tuple of float
            Smoothing parameter(s) used to obtain `g`.

        Returns
        -------
        ConfidenceBand
            Lower and upper bounds aligned with `g`.

        Raises
        ------
        SingularCovarianceError
            If the Hessian is not positive definite or not finite.
        """
        hessian = self.data_problem.n_obs * self.compute_hessian(g, lambda_)
        if not np.all(np.isfinite(hessian)):
            raise SingularCovarianceError("Hessian of the penalized functional is not finite.", stage="confidence_intervals")
        try:
            factor = linalg.cho_factor(hessian, lower=True)
        except linalg.LinAlgError as e:
            raise SingularCovarianceError(
                f"Hessian of the penalized functional is not positive definite: {e!s}", stage="confidence_intervals"
            ) from e
        covariance = linalg.cho_solve(factor, np.eye(hessian.shape[0]))
        variance = np.diagonal(covariance)
        if np.any(variance < 0) or not np.all(np.isfinite(variance)):
            raise SingularCovarianceError("Estimated covariance has invalid diagonal entries.", stage="confidence_intervals")

        level = self.data_problem.ci_level
        half_width = norm.ppf(0.5 + 0.5 * level) * np.sqrt(variance)
        return ConfidenceBand(lower=g - half_width, upper=g + half_width, level=level)


class FunctionalProblemTime(FunctionalProblem):
    """
    Spatio-temporal penalized functional.

    The penalty is ``lambda_s (P_s x M_t) + lambda_t (M_s x P_t)``; smoothing parameters are
    passed as ``(lambda_s, lambda_t)`` pairs to the generic methods.

    Parameters
    ----------
    data_problem : DataProblemTime
    """

    def __init__(self, data_problem: DataProblemTime):
        if not isinstance(data_problem, DataProblemTime):
            raise TypeError("data_problem must be an instance of DataProblemTime.")
        super().__init__(data_problem)

    def compute_covariance_ci(self, g: np.ndarray, lambda_s: float, lambda_t: float) -> ConfidenceBand:
        """Confidence band for the coefficients fitted with ``(lambda_s, lambda_t)``."""
        return super().compute_covariance_ci(g, (lambda_s, lambda_t))
