"""Data problems: observations, finite-element discretization and fitting settings."""

# Authors: Ching-Chuan Chen
# SPDX-License-Identifier: MIT
import itertools
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
from scipy import sparse
from scipy.sparse.linalg import splu
from sklearn.utils.validation import check_array

from fede.fem import (
    IntervalMesh,
    assemble_mass_matrix,
    assemble_stiffness_matrix,
    evaluate_basis,
    gauss_quadrature,
    row_wise_kron,
)


def _check_lambda(lambda_: Union[float, Sequence[float], np.ndarray], name: str) -> np.ndarray:
    lambda_ = check_array(np.atleast_1d(np.asarray(lambda_, dtype=np.float64)), ensure_2d=False, ensure_min_samples=0)
    if lambda_.ndim != 1:
        raise ValueError(f"{name} must be a scalar or a 1D array.")
    if np.any(lambda_ <= 0):
        raise ValueError(f"Every smoothing parameter in {name} must be positive.")
    return lambda_


def _penalty_matrix(mass: sparse.csr_matrix, stiffness: sparse.csr_matrix) -> np.ndarray:
    # discrete squared-Laplacian K M^{-1} K
    mass_inv_stiffness = splu(mass.tocsc()).solve(stiffness.toarray())
    return stiffness @ mass_inv_stiffness


class _DataProblemBase:
    """Validation and storage of the settings shared by every data problem."""

    def __init__(
        self,
        nfolds: int,
        inference: bool,
        ci_level: float,
        heat_step: float,
        heat_iter: int,
        n_quad: int,
        print_progress: bool,
    ):
        if nfolds is None or not isinstance(nfolds, int):
            raise TypeError("Number of cross-validation folds, nfolds, should be an integer.")
        if not isinstance(inference, bool):
            raise ValueError("inference must be a boolean value.")
        if not (0.0 < ci_level < 1.0):
            raise ValueError("ci_level must be a float between 0 and 1.")
        if heat_step is None or heat_step <= 0:
            raise ValueError("heat_step must be a positive scalar.")
        if heat_iter is None or not isinstance(heat_iter, int) or heat_iter < 1:
            raise ValueError("heat_iter must be a positive integer.")
        if n_quad is None or not isinstance(n_quad, int) or n_quad < 2:
            raise ValueError("n_quad must be an integer greater than or equal to 2.")
        if not isinstance(print_progress, bool):
            raise ValueError("print_progress must be a boolean value.")

        self.nfolds = nfolds
        self.inference = inference
        self.ci_level = float(ci_level)
        self.heat_step = float(heat_step)
        self.heat_iter = heat_iter
        self.n_quad = n_quad
        self.print_progress = print_progress

    def _check_data(self, data, mesh: IntervalMesh, name: str) -> np.ndarray:
        data = check_array(data, ensure_2d=False, dtype=np.float64)
        if data.ndim == 2:
            if data.shape[1] != 1:
                raise ValueError(f"{name} must have exactly 1 feature, got {data.shape[1]}")
            data = data.ravel()
        lower, upper = mesh.domain
        if np.any(data < lower) or np.any(data > upper):
            raise ValueError(f"{name} must be within the mesh domain [{lower:.6f}, {upper:.6f}].")
        return data

    def _check_fvec(self, fvec) -> Optional[np.ndarray]:
        if fvec is None:
            return None
        fvec = check_array(fvec, ensure_2d=False, dtype=np.float64)
        if fvec.ndim != 1 or fvec.size != self.n_basis:
            raise ValueError(f"fvec must be a 1D array with {self.n_basis} entries, one per basis function.")
        if np.any(fvec <= 0):
            raise ValueError("fvec must be strictly positive to define an initial log-density.")
        return fvec

    @property
    def n_obs(self) -> int:
        return self.basis_matrix.shape[0]

    @property
    def n_basis(self) -> int:
        return self.mass.shape[0]

    @property
    def n_lambda(self) -> int:
        return len(self.candidate_grid)

    def get_lambda(self, index: int):
        """Return the smoothing parameter(s) at position `index` of the candidate grid."""
        return self.candidate_grid[index]


class DataProblem(_DataProblemBase):
    """
    Spatial density-estimation problem on an interval.

    Parameters
    ----------
    data : array-like of shape (n_obs,) or (n_obs, 1)
        Observed locations.
    mesh_nodes : array-like of shape (n_nodes,)
        Strictly increasing mesh nodes covering all observations.
    lambda_ : float or array-like of shape (n_lambda,)
        Candidate smoothing parameters, in the order used for cross-validation tie-breaks.
    nfolds : int, default=10
        Number of cross-validation folds.
    inference : bool, default=False
        Whether to compute a confidence band for the fitted log-density.
    ci_level : float, default=0.95
        Nominal coverage of the confidence band.
    fvec : array-like of shape (n_nodes,), optional
        User-provided initial density at the mesh nodes. If None, heat initialization is used.
    heat_step : float, default=0.1
        Time step of the heat-diffusion initialization.
    heat_iter : int, default=10
        Number of heat-diffusion iterations.
    n_quad : int, default=3
        Gauss-Legendre points per element used to integrate ``exp(g)``.
    print_progress : bool, default=False
        If True, per-fold progress is logged at INFO level instead of DEBUG.

    Attributes
    ----------
    mesh : IntervalMesh
    data : np.ndarray of shape (n_obs,)
    psi : scipy.sparse.csr_matrix of shape (n_obs, n_nodes)
        Global basis-evaluation matrix.
    mass, mass_lumped, stiffness : scipy.sparse.csr_matrix of shape (n_nodes, n_nodes)
    penalty_components : list of np.ndarray
        Single penalty matrix ``K M^{-1} K`` scaled by the smoothing parameter.
    quad_basis : scipy.sparse.csr_matrix
        Basis evaluated at the quadrature points.
    quad_weights : np.ndarray
        Quadrature weights.
    candidate_grid : list of float
        Candidate smoothing parameters.
    """

    def __init__(
        self,
        data: Union[np.ndarray, List[float]],
        mesh_nodes: Union[np.ndarray, List[float]],
        lambda_: Union[float, Sequence[float], np.ndarray],
        nfolds: int = 10,
        inference: bool = False,
        ci_level: float = 0.95,
        fvec: Optional[Union[np.ndarray, List[float]]] = None,
        heat_step: float = 0.1,
        heat_iter: int = 10,
        n_quad: int = 3,
        print_progress: bool = False,
    ):
        super().__init__(nfolds, inference, ci_level, heat_step, heat_iter, n_quad, print_progress)
        self.mesh = IntervalMesh(mesh_nodes)
        self.data = self._check_data(data, self.mesh, "data")
        self.lambda_ = _check_lambda(lambda_, "lambda_")

        self.psi = evaluate_basis(self.mesh, self.data)
        self.mass = assemble_mass_matrix(self.mesh)
        self.mass_lumped = assemble_mass_matrix(self.mesh, lumped=True)
        self.stiffness = assemble_stiffness_matrix(self.mesh)
        self.penalty_components = [_penalty_matrix(self.mass, self.stiffness)]
        self.quad_basis, self.quad_weights = gauss_quadrature(self.mesh, n_quad)
        self.candidate_grid = [float(lam) for lam in self.lambda_]
        self.fvec = self._check_fvec(fvec)

    @property
    def basis_matrix(self):
        return self.psi

    @property
    def n_nodes(self) -> int:
        return self.mesh.n_nodes

    def get_global_psi(self):
        return self.psi

    def __repr__(self):
        return (
            f"DataProblem(n_obs={self.n_obs}, n_nodes={self.n_nodes}, lambda_={self.lambda_!r}, nfolds={self.nfolds}, "
            f"inference={self.inference}, ci_level={self.ci_level}, heat_step={self.heat_step}, heat_iter={self.heat_iter}, "
            f"n_quad={self.n_quad}, print_progress={self.print_progress})"
        )


class DataProblemTime(_DataProblemBase):
    """
    Spatio-temporal density-estimation problem on an interval times a time interval.

    The coefficient of the space node ``s`` and time node ``t`` sits at position
    ``s * n_time_nodes + t``.

    Parameters
    ----------
    data : array-like of shape (n_obs,)
        Observed locations.
    data_time : array-like of shape (n_obs,)
        Observation times.
    mesh_nodes : array-like of shape (n_nodes,)
        Spatial mesh nodes.
    mesh_time : array-like of shape (n_time_nodes,)
        Temporal mesh nodes.
    lambda_ : float or array-like of shape (n_lambda_s,)
        Candidate spatial smoothing parameters.
    lambda_time : float or array-like of shape (n_lambda_t,)
        Candidate temporal smoothing parameters.
    nfolds, inference, ci_level, fvec, heat_step, heat_iter, n_quad, print_progress
        See :class:`DataProblem`. `fvec` has ``n_nodes * n_time_nodes`` entries.

    Attributes
    ----------
    upsilon : scipy.sparse.csr_matrix of shape (n_obs, n_nodes * n_time_nodes)
        Row-wise tensor product of the spatial and temporal basis-evaluation matrices.
    candidate_grid : list of tuple of (float, float)
        Cartesian product of `lambda_` and `lambda_time`, space-major.
    """

    def __init__(
        self,
        data: Union[np.ndarray, List[float]],
        data_time: Union[np.ndarray, List[float]],
        mesh_nodes: Union[np.ndarray, List[float]],
        mesh_time: Union[np.ndarray, List[float]],
        lambda_: Union[float, Sequence[float], np.ndarray],
        lambda_time: Union[float, Sequence[float], np.ndarray],
        nfolds: int = 10,
        inference: bool = False,
        ci_level: float = 0.95,
        fvec: Optional[Union[np.ndarray, List[float]]] = None,
        heat_step: float = 0.1,
        heat_iter: int = 10,
        n_quad: int = 3,
        print_progress: bool = False,
    ):
        super().__init__(nfolds, inference, ci_level, heat_step, heat_iter, n_quad, print_progress)
        self.mesh = IntervalMesh(mesh_nodes)
        self.mesh_time = IntervalMesh(mesh_time)
        self.data = self._check_data(data, self.mesh, "data")
        self.data_time = self._check_data(data_time, self.mesh_time, "data_time")
        if self.data.size != self.data_time.size:
            raise ValueError("data_time must have the same size as data.")
        self.lambda_ = _check_lambda(lambda_, "lambda_")
        self.lambda_time = _check_lambda(lambda_time, "lambda_time")

        self.psi = evaluate_basis(self.mesh, self.data)
        self.phi = evaluate_basis(self.mesh_time, self.data_time)
        self.upsilon = row_wise_kron(self.psi, self.phi)

        mass_s = assemble_mass_matrix(self.mesh)
        mass_t = assemble_mass_matrix(self.mesh_time)
        lumped_s = assemble_mass_matrix(self.mesh, lumped=True)
        lumped_t = assemble_mass_matrix(self.mesh_time, lumped=True)
        stiffness_s = assemble_stiffness_matrix(self.mesh)
        stiffness_t = assemble_stiffness_matrix(self.mesh_time)
        self.mass = sparse.kron(mass_s, mass_t, format="csr")
        self.mass_lumped = sparse.kron(lumped_s, lumped_t, format="csr")
        # lumped cross terms keep the heat operator an M-matrix
        self.stiffness = sparse.kron(stiffness_s, lumped_t, format="csr") + sparse.kron(lumped_s, stiffness_t, format="csr")
        self.penalty_components = [
            np.kron(_penalty_matrix(mass_s, stiffness_s), mass_t.toarray()),
            np.kron(mass_s.toarray(), _penalty_matrix(mass_t, stiffness_t)),
        ]
        quad_basis_s, quad_weights_s = gauss_quadrature(self.mesh, n_quad)
        quad_basis_t, quad_weights_t = gauss_quadrature(self.mesh_time, n_quad)
        self.quad_basis = sparse.kron(quad_basis_s, quad_basis_t, format="csr")
        self.quad_weights = np.kron(quad_weights_s, quad_weights_t)
        self.candidate_grid: List[Tuple[float, float]] = [
            (float(lam_s), float(lam_t)) for lam_s, lam_t in itertools.product(self.lambda_, self.lambda_time)
        ]
        self.fvec = self._check_fvec(fvec)

    @property
    def basis_matrix(self):
        return self.upsilon

    @property
    def n_nodes(self) -> int:
        return self.mesh.n_nodes

    @property
    def n_time_nodes(self) -> int:
        return self.mesh_time.n_nodes

    def get_upsilon(self):
        return self.upsilon

    def __repr__(self):
        return (
            f"DataProblemTime(n_obs={self.n_obs}, n_nodes={self.n_nodes}, n_time_nodes={self.n_time_nodes}, "
            f"lambda_={self.lambda_!r}, lambda_time={self.lambda_time!r}, nfolds={self.nfolds}, inference={self.inference}, "
            f"ci_level={self.ci_level}, heat_step={self.heat_step}, heat_iter={self.heat_iter}, n_quad={self.n_quad}, "
            f"print_progress={self.print_progress})"
        )
