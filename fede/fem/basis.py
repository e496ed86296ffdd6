"""Linear (P1) finite-element basis: evaluation, assembly and quadrature."""

# Authors: Ching-Chuan Chen
# SPDX-License-Identifier: MIT
from typing import Tuple

import numpy as np
from scipy import sparse

from fede.fem.mesh import IntervalMesh


def evaluate_basis(mesh: IntervalMesh, points: np.ndarray) -> sparse.csr_matrix:
    """
    Evaluate every hat function of the mesh at the given points.

    Parameters
    ----------
    mesh : IntervalMesh
        Mesh carrying one hat function per node.
    points : np.ndarray of shape (n_points,)
        Evaluation coordinates; must lie inside the mesh domain.

    Returns
    -------
    scipy.sparse.csr_matrix of shape (n_points, n_nodes)
        Basis-evaluation matrix. Each row has at most two non-zero entries summing to one.
    """
    points = np.asarray(points, dtype=np.float64)
    element_idx = mesh.locate(points)
    left = mesh.nodes[element_idx]
    h = mesh.element_sizes[element_idx]
    right_value = (points - left) / h
    left_value = 1.0 - right_value

    n_points = points.size
    rows = np.concatenate([np.arange(n_points), np.arange(n_points)])
    cols = np.concatenate([element_idx, element_idx + 1])
    values = np.concatenate([left_value, right_value])
    return sparse.coo_matrix((values, (rows, cols)), shape=(n_points, mesh.n_nodes)).tocsr()


def _assemble(mesh: IntervalMesh, local: np.ndarray) -> sparse.csr_matrix:
    # local has shape (n_elements, 2, 2)
    first = np.arange(mesh.n_elements)
    dofs = np.stack([first, first + 1], axis=1)
    rows = np.repeat(dofs, 2, axis=1).ravel()
    cols = np.tile(dofs, (1, 2)).ravel()
    return sparse.coo_matrix((local.ravel(), (rows, cols)), shape=(mesh.n_nodes, mesh.n_nodes)).tocsr()


def assemble_mass_matrix(mesh: IntervalMesh, lumped: bool = False) -> sparse.csr_matrix:
    """
    Assemble the P1 mass matrix.

    Parameters
    ----------
    mesh : IntervalMesh
    lumped : bool, default=False
        If True, return the diagonal row-sum lumped mass matrix.

    Returns
    -------
    scipy.sparse.csr_matrix of shape (n_nodes, n_nodes)
    """
    h = mesh.element_sizes[:, None, None]
    local = h / 6.0 * np.array([[2.0, 1.0], [1.0, 2.0]])
    mass = _assemble(mesh, local)
    if lumped:
        return sparse.diags(np.asarray(mass.sum(axis=1)).ravel(), format="csr")
    return mass


def assemble_stiffness_matrix(mesh: IntervalMesh) -> sparse.csr_matrix:
    """Assemble the P1 stiffness matrix ``K_ij = int phi_i' phi_j'``."""
    h = mesh.element_sizes[:, None, None]
    local = np.array([[1.0, -1.0], [-1.0, 1.0]]) / h
    return _assemble(mesh, local)


def gauss_quadrature(mesh: IntervalMesh, n_points: int = 3) -> Tuple[sparse.csr_matrix, np.ndarray]:
    """
    Gauss-Legendre quadrature rule on every element.

    Parameters
    ----------
    mesh : IntervalMesh
    n_points : int, default=3
        Quadrature points per element.

    Returns
    -------
    basis_at_nodes : scipy.sparse.csr_matrix of shape (n_elements * n_points, n_nodes)
        Basis functions evaluated at the quadrature points.
    weights : np.ndarray of shape (n_elements * n_points,)
        Quadrature weights, so that ``int u ~= weights @ (basis_at_nodes @ u_coeff)``.
    """
    if not isinstance(n_points, int) or n_points < 1:
        raise ValueError("n_points must be a positive integer.")
    xi, w = np.polynomial.legendre.leggauss(n_points)
    half = 0.5 * mesh.element_sizes[:, None]
    points = (mesh.nodes[:-1, None] + half * (xi[None, :] + 1.0)).ravel()
    weights = (half * w[None, :]).ravel()
    return evaluate_basis(mesh, points), weights


def row_wise_kron(a: sparse.spmatrix, b: sparse.spmatrix) -> sparse.csr_matrix:
    """
    Row-wise Kronecker (face-splitting) product of two sparse matrices.

    Row ``i`` of the result is ``kron(a[i], b[i])``, so column ``j * b.shape[1] + k`` pairs
    column ``j`` of `a` with column ``k`` of `b`.

    Parameters
    ----------
    a : sparse matrix of shape (n, p)
    b : sparse matrix of shape (n, q)

    Returns
    -------
    scipy.sparse.csr_matrix of shape (n, p * q)
    """
    a = sparse.csr_matrix(a)
    b = sparse.csr_matrix(b)
    if a.shape[0] != b.shape[0]:
        raise ValueError(f"a and b must have the same number of rows, got {a.shape[0]} and {b.shape[0]}.")
    n, q = a.shape[0], b.shape[1]
    a_row_nnz = np.diff(a.indptr)
    b_row_nnz = np.diff(b.indptr)

    a_entry_rows = np.repeat(np.arange(n), a_row_nnz)
    repeats = b_row_nnz[a_entry_rows]
    a_idx = np.repeat(np.arange(a.nnz), repeats)
    offsets = np.arange(repeats.sum()) - np.repeat(np.cumsum(repeats) - repeats, repeats)
    b_idx = np.repeat(b.indptr[a_entry_rows], repeats) + offsets

    rows = a_entry_rows[a_idx]
    cols = a.indices[a_idx] * q + b.indices[b_idx]
    values = a.data[a_idx] * b.data[b_idx]
    return sparse.coo_matrix((values, (rows, cols)), shape=(n, a.shape[1] * q)).tocsr()
