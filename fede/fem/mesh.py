"""One-dimensional finite-element mesh."""

# Authors: Ching-Chuan Chen
# SPDX-License-Identifier: MIT
from typing import List, Union

import numpy as np
from sklearn.utils.validation import check_array


class IntervalMesh:
    """
    Mesh of an interval made of consecutive linear elements.

    Parameters
    ----------
    nodes : array-like of shape (n_nodes,)
        Strictly increasing node coordinates. Element ``j`` spans ``[nodes[j], nodes[j + 1]]``.

    Attributes
    ----------
    nodes : np.ndarray of shape (n_nodes,)
        Node coordinates.
    element_sizes : np.ndarray of shape (n_nodes - 1,)
        Length of each element.
    """

    def __init__(self, nodes: Union[np.ndarray, List[float]]):
        nodes = check_array(nodes, ensure_2d=False, dtype=np.float64)
        if nodes.ndim != 1:
            raise ValueError("nodes must be a 1D array.")
        if nodes.size < 2:
            raise ValueError("A mesh needs at least two nodes.")
        element_sizes = np.diff(nodes)
        if np.any(element_sizes <= 0):
            raise ValueError("nodes must be strictly increasing.")
        self.nodes = nodes
        self.element_sizes = element_sizes

    @property
    def n_nodes(self) -> int:
        return self.nodes.size

    @property
    def n_elements(self) -> int:
        return self.element_sizes.size

    @property
    def domain(self):
        return self.nodes[0], self.nodes[-1]

    def locate(self, points: np.ndarray) -> np.ndarray:
        """Find the element containing each point.

        Points lying on an interior node are assigned to the element on its right, the last
        node belongs to the last element.

        Parameters
        ----------
        points : np.ndarray of shape (n_points,)
            Query coordinates.

        Returns
        -------
        np.ndarray of shape (n_points,)
            Element index of each point.

        Raises
        ------
        ValueError
            If any point lies outside the mesh domain.
        """
        points = np.asarray(points, dtype=np.float64)
        lower, upper = self.domain
        outside = (points < lower) | (points > upper)
        if np.any(outside):
            raise ValueError(
                f"{int(np.sum(outside))} point(s) lie outside the mesh domain [{lower:.6f}, {upper:.6f}]."
            )
        element_idx = np.searchsorted(self.nodes, points, side="right") - 1
        return np.clip(element_idx, 0, self.n_elements - 1)

    def __repr__(self):
        lower, upper = self.domain
        return f"IntervalMesh(n_nodes={self.n_nodes}, domain=[{lower}, {upper}])"
