"""Initial density estimates used to seed the minimization of the penalized functional."""

# Authors: Ching-Chuan Chen
# SPDX-License-Identifier: MIT
import logging
from typing import Dict, Hashable, List, Optional, Union

import numpy as np
from scipy.sparse.linalg import splu

from fede.problem import DataProblem, DataProblemTime, FunctionalProblem, FunctionalProblemTime

logger = logging.getLogger(__name__)


class DensityInitialization:
    """
    Produce and own one initial density per smoothing-parameter candidate.

    If the data problem carries a user density (`fvec`), it is normalized and returned for
    every candidate. Otherwise a heat-diffusion initialization is used: the empirical measure
    of the data is projected on the nodes with the lumped mass matrix and diffused with
    ``heat_iter`` implicit steps ``(M_L + heat_step K) x_{k+1} = M_L x_k``; for each candidate the
    iterate with the lowest penalized loss is selected.

    Parameters
    ----------
    data_problem : DataProblem
    functional_problem : FunctionalProblem

    Notes
    -----
    Returned arrays are read-only and stay owned by this object: repeated calls with the same
    candidate return the very same array, so callers can keep references for as long as the
    initializer lives.
    """

    def __init__(self, data_problem: DataProblem, functional_problem: FunctionalProblem):
        self.data_problem = data_problem
        self.functional_problem = functional_problem
        self._densities: Dict[Hashable, np.ndarray] = {}
        self._heat_iterates: Optional[List[np.ndarray]] = None

    def _normalize(self, f: np.ndarray) -> np.ndarray:
        integral = float(np.sum(self.data_problem.mass @ f))
        return f / integral

    def _compute_heat_iterates(self) -> List[np.ndarray]:
        dp = self.data_problem
        lumped = dp.mass_lumped
        counts = np.asarray(dp.basis_matrix.sum(axis=0)).ravel() / dp.n_obs
        x = counts / lumped.diagonal()

        solver = splu((lumped + dp.heat_step * dp.stiffness).tocsc())
        iterates = []
        for _ in range(dp.heat_iter):
            x = solver.solve(lumped @ x)
            # the heat operator has a positive inverse, clip round-off only
            x = np.maximum(x, 1e-12 * np.max(x))
            iterates.append(self._normalize(x))
        return iterates

    def _compute(self, candidate) -> np.ndarray:
        if self.data_problem.fvec is not None:
            return self._normalize(self.data_problem.fvec)

        if self._heat_iterates is None:
            self._heat_iterates = self._compute_heat_iterates()
        psi = self.data_problem.basis_matrix
        losses = [self.functional_problem.compute_loss(psi, np.log(f), candidate) for f in self._heat_iterates]
        best = int(np.argmin(losses))
        logger.debug("Heat initialization for lambda=%s selected iteration %d.", candidate, best + 1)
        return self._heat_iterates[best].copy()

    def initialize(self, candidate: Union[float, tuple]) -> np.ndarray:
        """
        Return the initial density at the nodes for one smoothing-parameter candidate.

        Parameters
        ----------
        candidate : float or tuple of float
            Grid entry of the data problem.

        Returns
        -------
        np.ndarray of shape (n_basis,)
            Positive density values integrating to one; read-only.
        """
        if candidate not in self._densities:
            density = self._compute(candidate)
            density.flags.writeable = False
            self._densities[candidate] = density
        return self._densities[candidate]


class DensityInitializationTime(DensityInitialization):
    """Spatio-temporal initializer; candidates are ``(lambda_s, lambda_t)`` pairs."""

    def __init__(self, data_problem: DataProblemTime, functional_problem: FunctionalProblemTime):
        if not isinstance(data_problem, DataProblemTime):
            raise TypeError("data_problem must be an instance of DataProblemTime.")
        super().__init__(data_problem, functional_problem)
