"""L2 cross-validation error of a fitted density on held-out observations."""

# Authors: Ching-Chuan Chen
# SPDX-License-Identifier: MIT
import numpy as np
from scipy.sparse import spmatrix

from fede.problem import DataProblem, DataProblemTime, FunctionalProblem, FunctionalProblemTime


class KFoldCVL2Error:
    """
    Held-out L2 loss of a density ``f = exp(g) / int exp(g)``.

    .. math::
        \\mathrm{err}(g) = \\int f^2 - \\frac{2}{n_{valid}} \\sum_{i \\in valid} f(x_i),

    which equals the integrated squared error up to a term that does not depend on `g`.

    Parameters
    ----------
    data_problem : DataProblem
    functional_problem : FunctionalProblem
    """

    def __init__(self, data_problem: DataProblem, functional_problem: FunctionalProblem):
        self.data_problem = data_problem
        self.functional_problem = functional_problem

    def score(self, g: np.ndarray, psi_valid: spmatrix) -> float:
        """
        Score fitted coefficients against a validation basis matrix.

        Parameters
        ----------
        g : np.ndarray of shape (n_basis,)
            Coefficients fitted on the training part.
        psi_valid : sparse matrix of shape (n_valid, n_basis)
            Basis evaluated at the held-out observations.

        Returns
        -------
        float
            L2 cross-validation error (lower is better).
        """
        if psi_valid.shape[0] == 0:
            raise ValueError("The validation set is empty.")
        integral = self.functional_problem.compute_integral(g)
        integral_square = self.functional_problem.compute_integral(g, power=2.0)
        held_out = np.sum(np.exp(psi_valid @ g)) / (psi_valid.shape[0] * integral)
        return float(integral_square / integral**2 - 2.0 * held_out)

    def __call__(self, psi_valid: spmatrix, g: np.ndarray) -> float:
        return self.score(g, psi_valid)


class KFoldCVL2ErrorTime(KFoldCVL2Error):
    """Spatio-temporal L2 error; `psi_valid` is a row subset of ``upsilon``."""

    def __init__(self, data_problem: DataProblemTime, functional_problem: FunctionalProblemTime):
        if not isinstance(data_problem, DataProblemTime):
            raise TypeError("data_problem must be an instance of DataProblemTime.")
        super().__init__(data_problem, functional_problem)
