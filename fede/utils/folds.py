"""Fold partition and fold-restricted basis matrices for k-fold cross-validation."""

# Authors: Ching-Chuan Chen
# SPDX-License-Identifier: MIT
from typing import Tuple

import numpy as np
from scipy import sparse


def make_cyclic_folds(n_obs: int, n_folds: int) -> np.ndarray:
    """
    Assign observations to folds cyclically.

    Parameters
    ----------
    n_obs : int
        Number of observations.
    n_folds : int
        Number of folds, ``2 <= n_folds <= n_obs``.

    Returns
    -------
    np.ndarray of shape (n_obs,)
        Fold id of each observation, ``fold(i) = i mod n_folds``.

    Raises
    ------
    ValueError
        If `n_folds` is not an integer in ``[2, n_obs]``, which would produce an empty fold or an
        empty training set.
    """
    if not isinstance(n_folds, (int, np.integer)) or not isinstance(n_obs, (int, np.integer)):
        raise TypeError("n_obs and n_folds must be integers.")
    if n_folds < 2:
        raise ValueError(f"Number of folds, n_folds, should be at least 2, got {n_folds}.")
    if n_folds > n_obs:
        raise ValueError(f"Number of folds ({n_folds}) cannot exceed the number of observations ({n_obs}).")
    return np.arange(n_obs, dtype=np.int64) % n_folds


def split_basis_by_fold(psi: sparse.spmatrix, folds: np.ndarray, fold: int) -> Tuple[sparse.csr_matrix, sparse.csr_matrix]:
    """
    Row-select the training and validation parts of a basis-evaluation matrix.

    Parameters
    ----------
    psi : sparse matrix of shape (n_obs, n_basis)
        Global basis-evaluation matrix.
    folds : np.ndarray of shape (n_obs,)
        Fold partition, see :func:`make_cyclic_folds`.
    fold : int
        Held-out fold.

    Returns
    -------
    psi_train : scipy.sparse.csr_matrix of shape (n_train, n_basis)
        Rows whose fold differs from `fold`, in original order.
    psi_valid : scipy.sparse.csr_matrix of shape (n_valid, n_basis)
        Rows belonging to `fold`, in original order.
    """
    psi = sparse.csr_matrix(psi)
    if folds.shape[0] != psi.shape[0]:
        raise ValueError(f"folds must have one entry per row of psi, got {folds.shape[0]} vs {psi.shape[0]}.")
    valid_mask = folds == fold
    return psi[~valid_mask], psi[valid_mask]
