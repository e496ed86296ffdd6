"""Finite-element utilities for fede."""

# Authors: Ching-Chuan Chen
# SPDX-License-Identifier: MIT

from fede.fem.basis import assemble_mass_matrix, assemble_stiffness_matrix, evaluate_basis, gauss_quadrature, row_wise_kron
from fede.fem.mesh import IntervalMesh

__all__ = [
    "IntervalMesh",
    "assemble_mass_matrix",
    "assemble_stiffness_matrix",
    "evaluate_basis",
    "gauss_quadrature",
    "row_wise_kron",
]
