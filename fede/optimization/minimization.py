"""Descent algorithms minimizing the penalized functional for fixed smoothing parameters."""

# Authors: Ching-Chuan Chen
# SPDX-License-Identifier: MIT
import logging
import warnings
from typing import Literal, Optional, Sequence, Tuple, Union

import numpy as np
from scipy.optimize import line_search
from scipy.sparse import spmatrix

from fede.exceptions import NonConvergenceError
from fede.problem import DataProblem, DataProblemTime, FunctionalProblem, FunctionalProblemTime

logger = logging.getLogger(__name__)

DIRECTION_METHODS = ("Gradient", "ConjugateGradientFR", "ConjugateGradientPR", "BFGS")
STEP_METHODS = ("Fixed_Step", "Backtracking_Method", "Wolfe_Method")

SmoothingParameter = Union[float, Tuple[float, ...]]


class MinimizationAlgorithm:
    """
    Descent minimization of the penalized functional for a fixed smoothing parameter.

    Parameters
    ----------
    data_problem : DataProblem
        Problem settings.
    functional_problem : FunctionalProblem
        Functional providing loss and gradient.
    direction_method : {"Gradient", "ConjugateGradientFR", "ConjugateGradientPR", "BFGS"}, default="BFGS"
        Rule used to build the descent direction.
    step_method : {"Fixed_Step", "Backtracking_Method", "Wolfe_Method"}, default="Backtracking_Method"
        Rule used to choose the step length. ``Fixed_Step`` runs a whole descent with each entry
        of `step_proposals` until one converges; the line searches start from the first proposal.
    step_proposals : sequence of float, default=(1.0, 0.1, 0.01, 0.001)
        Candidate step lengths.
    tol1 : float, default=1e-6
        Tolerance on the relative change of the loss between two iterations.
    tol2 : float, default=0.0
        Tolerance on the Euclidean norm of the gradient.
    nsim : int, default=500
        Maximum number of iterations of one descent.

    Notes
    -----
    A descent stops as soon as one of the two tolerances is met. Instances keep no state
    between calls to :meth:`minimize` besides their settings, but separate workers should
    still use separate copies.
    """

    def __init__(
        self,
        data_problem: DataProblem,
        functional_problem: FunctionalProblem,
        direction_method: Literal["Gradient", "ConjugateGradientFR", "ConjugateGradientPR", "BFGS"] = "BFGS",
        step_method: Literal["Fixed_Step", "Backtracking_Method", "Wolfe_Method"] = "Backtracking_Method",
        step_proposals: Sequence[float] = (1.0, 0.1, 0.01, 0.001),
        tol1: float = 1e-6,
        tol2: float = 0.0,
        nsim: int = 500,
    ):
        if direction_method not in DIRECTION_METHODS:
            raise ValueError(f"direction_method must be one of {list(DIRECTION_METHODS)}, got {direction_method}")
        if step_method not in STEP_METHODS:
            raise ValueError(f"step_method must be one of {list(STEP_METHODS)}, got {step_method}")
        step_proposals = tuple(float(s) for s in step_proposals)
        if len(step_proposals) == 0 or any(s <= 0 for s in step_proposals):
            raise ValueError("step_proposals must contain at least one positive step.")
        if tol1 < 0 or tol2 < 0:
            raise ValueError("Tolerances tol1 and tol2 must be non-negative.")
        if nsim is None or not isinstance(nsim, int) or nsim < 1:
            raise ValueError("nsim must be a positive integer.")

        self.data_problem = data_problem
        self.functional_problem = functional_problem
        self.direction_method = direction_method
        self.step_method = step_method
        self.step_proposals = step_proposals
        self.tol1 = float(tol1)
        self.tol2 = float(tol2)
        self.nsim = nsim

    def __repr__(self):
        return (
            f"{type(self).__name__}(direction_method='{self.direction_method}', step_method='{self.step_method}', "
            f"step_proposals={self.step_proposals}, tol1={self.tol1}, tol2={self.tol2}, nsim={self.nsim})"
        )

    def _direction(self, grad, prev_grad, prev_direction, inv_hessian):
        if self.direction_method == "BFGS":
            direction = -inv_hessian @ grad
        elif self.direction_method == "Gradient" or prev_grad is None:
            direction = -grad
        else:
            denom = prev_grad @ prev_grad
            if self.direction_method == "ConjugateGradientFR":
                beta = (grad @ grad) / denom
            else:
                beta = max(0.0, grad @ (grad - prev_grad) / denom)
            direction = -grad + beta * prev_direction
        if direction @ grad >= 0:
            # restart from steepest descent when the direction is not a descent one
            direction = -grad
        return direction

    @staticmethod
    def _update_inv_hessian(inv_hessian, s, y, first_update):
        sy = s @ y
        if sy <= 1e-12:
            return inv_hessian
        if first_update:
            inv_hessian = (sy / (y @ y)) * np.eye(s.size)
        rho = 1.0 / sy
        hy = inv_hessian @ y
        return inv_hessian + (rho * rho * (y @ hy) + rho) * np.outer(s, s) - rho * (np.outer(hy, s) + np.outer(s, hy))

    def _step_length(self, psi, lambda_, g, loss, grad, direction, initial_step):
        if self.step_method == "Fixed_Step":
            return initial_step
        slope = grad @ direction
        if self.step_method == "Wolfe_Method":
            alpha = line_search(
                lambda x: self.functional_problem.compute_loss(psi, x, lambda_),
                lambda x: self.functional_problem.compute_gradient(psi, x, lambda_),
                g,
                direction,
                gfk=grad,
                old_fval=loss,
            )[0]
            if alpha is not None:
                return alpha
        # Armijo backtracking
        alpha = initial_step
        for _ in range(60):
            trial = self.functional_problem.compute_loss(psi, g + alpha * direction, lambda_)
            if np.isfinite(trial) and trial <= loss + 1e-4 * alpha * slope:
                return alpha
            alpha *= 0.5
        return None

    def _descend(self, psi: spmatrix, lambda_: SmoothingParameter, g_init: np.ndarray, initial_step: float):
        """Run one descent; return the last iterate, a convergence flag and the iteration count."""
        fp = self.functional_problem
        g = np.array(g_init, dtype=np.float64, copy=True)
        loss = fp.compute_loss(psi, g, lambda_)
        grad = fp.compute_gradient(psi, g, lambda_)
        if not np.isfinite(loss) or not np.all(np.isfinite(grad)):
            return g, False, 0

        inv_hessian = np.eye(g.size)
        prev_grad, prev_direction = None, None
        for it in range(1, self.nsim + 1):
            if np.linalg.norm(grad) < self.tol2:
                return g, True, it - 1
            direction = self._direction(grad, prev_grad, prev_direction, inv_hessian)
            alpha = self._step_length(psi, lambda_, g, loss, grad, direction, initial_step)
            if alpha is None:
                return g, False, it

            g_new = g + alpha * direction
            loss_new = fp.compute_loss(psi, g_new, lambda_)
            grad_new = fp.compute_gradient(psi, g_new, lambda_)
            if not np.isfinite(loss_new) or not np.all(np.isfinite(grad_new)):
                return g_new, False, it

            if self.direction_method == "BFGS":
                inv_hessian = self._update_inv_hessian(inv_hessian, g_new - g, grad_new - grad, prev_grad is None)

            rel_change = abs(loss_new - loss) / max(abs(loss), np.finfo(np.float64).tiny)
            prev_grad, prev_direction = grad, direction
            g, loss, grad = g_new, loss_new, grad_new
            if rel_change < self.tol1:
                return g, True, it
        return g, False, self.nsim

    def minimize(self, psi: spmatrix, lambda_: SmoothingParameter, g_init: np.ndarray) -> np.ndarray:
        """
        Minimize the penalized functional on the observations represented by `psi`.

        Parameters
        ----------
        psi : sparse matrix of shape (n_obs, n_basis)
            Basis-evaluation matrix of the observations to fit (full data or a training fold).
        lambda_ : float or tuple of float
            Smoothing parameter(s).
        g_init : np.ndarray of shape (n_basis,)
            Starting coefficients.

        Returns
        -------
        np.ndarray of shape (n_basis,)
            Minimizing coefficients.

        Raises
        ------
        NonConvergenceError
            If no step configuration reaches the stopping criterion within `nsim` iterations.
        """
        if g_init.shape[0] != psi.shape[1]:
            raise ValueError(f"g_init must have {psi.shape[1]} entries, got {g_init.shape[0]}.")
        proposals = self.step_proposals if self.step_method == "Fixed_Step" else self.step_proposals[:1]
        failed_steps = []
        for step in proposals:
            g, converged, n_iter = self._descend(psi, lambda_, g_init, step)
            if converged:
                if failed_steps:
                    warnings.warn(f"Step proposals {failed_steps} did not converge; step {step} was used instead.")
                logger.debug("Minimization converged in %d iterations (lambda=%s, step=%s).", n_iter, lambda_, step)
                return g
            failed_steps.append(step)
        raise NonConvergenceError(
            f"Minimization did not converge within {self.nsim} iterations for lambda={lambda_} "
            f"(direction={self.direction_method}, step={self.step_method}, tried steps={failed_steps}).",
            stage="minimization",
        )

    def apply_core(self, psi: spmatrix, lambda_: float, g_init: np.ndarray) -> np.ndarray:
        """Minimize with a single spatial smoothing parameter, see :meth:`minimize`."""
        return self.minimize(psi, lambda_, g_init)


class MinimizationAlgorithmTime(MinimizationAlgorithm):
    """
    Spatio-temporal twin of :class:`MinimizationAlgorithm`.

    Smoothing parameters are ``(lambda_s, lambda_t)`` pairs; the basis matrix is the tensor-product
    matrix ``upsilon`` of the data problem.
    """

    def apply_core(self, upsilon: spmatrix, lambda_s: float, lambda_t: float, g_init: np.ndarray) -> np.ndarray:
        """Minimize with spatial and temporal smoothing parameters, see :meth:`minimize`."""
        return self.minimize(upsilon, (lambda_s, lambda_t), g_init)


def create_minimization_algorithm(
    data_problem: DataProblem,
    functional_problem: FunctionalProblem,
    direction_method: str = "BFGS",
    step_method: str = "Backtracking_Method",
    step_proposals: Optional[Sequence[float]] = None,
    tol1: float = 1e-6,
    tol2: float = 0.0,
    nsim: int = 500,
) -> MinimizationAlgorithm:
    """Build the minimization algorithm matching the type of the problem."""
    kwargs = dict(direction_method=direction_method, step_method=step_method, tol1=tol1, tol2=tol2, nsim=nsim)
    if step_proposals is not None:
        kwargs["step_proposals"] = step_proposals
    if isinstance(data_problem, DataProblemTime):
        if not isinstance(functional_problem, FunctionalProblemTime):
            raise TypeError("A DataProblemTime requires a FunctionalProblemTime.")
        return MinimizationAlgorithmTime(data_problem, functional_problem, **kwargs)
    return MinimizationAlgorithm(data_problem, functional_problem, **kwargs)
