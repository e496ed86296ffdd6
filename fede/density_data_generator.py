"""Density Data Generator"""

# Authors: Ching-Chuan Chen
# SPDX-License-Identifier: MIT

from typing import Optional, Sequence, Tuple

import numpy as np
import scipy.stats


class DensityDataGenerator(object):
    """
    DensityDataGenerator
    ====================
    A class for generating samples from a known density on an interval, used to test and benchmark
    the density estimators. The density is a mixture of normal components truncated to the domain,
    so its exact values are available through :meth:`pdf`.

    parameters
    ----------
    means : sequence of float, default=(0.3, 0.7)
        Centers of the mixture components. They must lie inside `domain`.
    sds : sequence of float, default=(0.08, 0.1)
        Standard deviations of the mixture components. They must be positive.
    weights : sequence of float, optional
        Mixture weights. They are normalized to sum to one. If None, the components are equally weighted.
    domain : tuple of float, default=(0.0, 1.0)
        Interval on which the components are truncated.
    time_domain : tuple of float, default=(0.0, 1.0)
        Interval of the observation times used by :meth:`generate_space_time`.
    drift : float, default=0.0
        Displacement of every component center per unit of time in :meth:`generate_space_time`.
    """

    def __init__(
        self,
        means: Sequence[float] = (0.3, 0.7),
        sds: Sequence[float] = (0.08, 0.1),
        weights: Optional[Sequence[float]] = None,
        domain: Tuple[float, float] = (0.0, 1.0),
        time_domain: Tuple[float, float] = (0.0, 1.0),
        drift: float = 0.0,
    ):
        means = np.asarray(means, dtype=np.float64)
        sds = np.asarray(sds, dtype=np.float64)
        if means.ndim != 1 or means.size == 0 or means.shape != sds.shape:
            raise ValueError("means and sds must be non-empty 1D sequences of the same length.")
        if np.any(sds <= 0):
            raise ValueError("sds must be positive.")
        if weights is None:
            weights = np.full(means.size, 1.0 / means.size)
        weights = np.asarray(weights, dtype=np.float64)
        if weights.shape != means.shape or np.any(weights < 0) or weights.sum() <= 0:
            raise ValueError("weights must be non-negative, not all zero and have the same length as means.")
        if len(domain) != 2 or domain[0] >= domain[1]:
            raise ValueError("domain must be a pair (lower, upper) with lower < upper.")
        if len(time_domain) != 2 or time_domain[0] >= time_domain[1]:
            raise ValueError("time_domain must be a pair (lower, upper) with lower < upper.")
        if np.any(means < domain[0]) or np.any(means > domain[1]):
            raise ValueError("means must lie inside the domain.")

        self.means: np.ndarray = means
        self.sds: np.ndarray = sds
        self.weights: np.ndarray = weights / weights.sum()
        self.domain: Tuple[float, float] = (float(domain[0]), float(domain[1]))
        self.time_domain: Tuple[float, float] = (float(time_domain[0]), float(time_domain[1]))
        self.drift: float = float(drift)

    def _components(self, loc: np.ndarray, scale: np.ndarray):
        lower, upper = self.domain
        return scipy.stats.truncnorm((lower - loc) / scale, (upper - loc) / scale, loc=loc, scale=scale)

    def pdf(self, x: np.ndarray) -> np.ndarray:
        """Evaluate the mixture density.

        Parameters
        ----------
        x : array_like
            Points of the domain.

        Returns
        -------
        density : array_like
            Density values with the shape of `x`; zero outside the domain.
        """
        x = np.asarray(x, dtype=np.float64)
        density = np.zeros_like(x)
        for mean, sd, weight in zip(self.means, self.sds, self.weights):
            density += weight * self._components(mean, sd).pdf(x)
        return density

    def generate(self, n: int, seed: Optional[int] = None) -> np.ndarray:
        """Generate samples from the mixture.

        Parameters
        ----------
        n : int
            The number of samples to generate. It must be a positive integer.
        seed : Optional[int], optional
            Random seed for reproducibility. If None, the random number generator will not be seeded.

        Returns
        -------
        x : array_like
            The generated samples of shape (n,).
        """
        if not isinstance(n, int) or n < 1:
            raise ValueError("n must be a positive integer.")
        rng = np.random.default_rng(seed)
        component = rng.choice(self.means.size, size=n, p=self.weights)
        return self._components(self.means[component], self.sds[component]).rvs(random_state=rng)

    def generate_space_time(self, n: int, seed: Optional[int] = None) -> Tuple[np.ndarray, np.ndarray]:
        """Generate samples whose component centers move with time.

        The observation times are uniform on `time_domain`; at time ``t`` every component center is
        shifted by ``drift * (t - time_domain[0])`` and kept inside the domain.

        Parameters
        ----------
        n : int
            The number of samples to generate. It must be a positive integer.
        seed : Optional[int], optional
            Random seed for reproducibility. If None, the random number generator will not be seeded.

        Returns
        -------
        x : array_like
            The generated locations of shape (n,).
        t : array_like
            The observation times of shape (n,).
        """
        if not isinstance(n, int) or n < 1:
            raise ValueError("n must be a positive integer.")
        rng = np.random.default_rng(seed)
        t = rng.uniform(self.time_domain[0], self.time_domain[1], size=n)
        component = rng.choice(self.means.size, size=n, p=self.weights)
        loc = np.clip(self.means[component] + self.drift * (t - self.time_domain[0]), *self.domain)
        x = self._components(loc, self.sds[component]).rvs(random_state=rng)
        return x, t
