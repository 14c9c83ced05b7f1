"""
Path simulator for stitched Markov models.

The models never draw random numbers themselves. This module owns a
seeded ``numpy.random.Generator`` and feeds its uniforms into the pure
``draw_*`` methods to generate state trajectories.

Key components:
- Single and multiple path generation
- Percentile-tracking paths (for correlated simulation of several variables)
- Empirical state distributions across paths
"""

import logging
from typing import Optional, Tuple

import numpy as np
from numpy.typing import NDArray

from microsim.regimes.stitched import StitchedMarkovModel

logger = logging.getLogger(__name__)


class PathSimulator:
    """
    Monte Carlo path simulator for a stitched Markov model.

    Attributes
    ----------
    model : StitchedMarkovModel
        Model to simulate
    rng : np.random.Generator
        Source of uniform draws
    """

    def __init__(
        self,
        model: StitchedMarkovModel,
        random_seed: Optional[int] = None,
    ) -> None:
        """
        Initialize simulator.

        Parameters
        ----------
        model : StitchedMarkovModel
            Model to simulate. Precalculate its state distributions first
            when simulating long percentile paths.
        random_seed : int, optional
            Random seed for reproducibility.
        """
        self.model = model
        self.rng = np.random.default_rng(random_seed)

    def simulate_path(
        self,
        n_steps: int,
        initial_state: Optional[int] = None,
    ) -> NDArray[np.int64]:
        """
        Simulate one path of states.

        Parameters
        ----------
        n_steps : int
            Length of path (states for t = 0, …, n_steps - 1).
        initial_state : int, optional
            State at t = 0. If None, drawn from the initial distribution.

        Returns
        -------
        NDArray[np.int64]
            State path of shape (n_steps,).
        """
        if n_steps <= 0:
            raise ValueError(f"n_steps must be positive. Got {n_steps}")
        if initial_state is None:
            state = self.model.draw_initial_state(self.rng.random())
        else:
            if not (0 <= initial_state < self.model.dim):
                raise ValueError(
                    f"initial_state must be in {{0, …, {self.model.dim - 1}}}"
                )
            state = initial_state

        path = np.zeros(n_steps, dtype=np.int64)
        path[0] = state
        for t in range(1, n_steps):
            state = self.model.draw_next_state(state, t - 1, self.rng.random())
            path[t] = state
        return path

    def simulate_paths(self, n_paths: int, n_steps: int) -> NDArray[np.int64]:
        """
        Simulate independent paths.

        Returns
        -------
        NDArray[np.int64]
            State paths of shape (n_paths, n_steps).
        """
        if n_paths <= 0:
            raise ValueError(f"n_paths must be positive. Got {n_paths}")
        logger.debug("PathSimulator: simulating %d paths of %d steps", n_paths, n_steps)
        return np.stack([self.simulate_path(n_steps) for _ in range(n_paths)])

    def simulate_percentile_path(
        self,
        n_steps: int,
        initial_percentile: Optional[float] = None,
    ) -> Tuple[NDArray[np.int64], NDArray[np.float64]]:
        """
        Simulate one path together with the percentile of each state.

        The percentile at t is the position of the member within the
        distribution of X_t. It can drive a second, correlated variable.

        Parameters
        ----------
        n_steps : int
            Length of path.
        initial_percentile : float, optional
            Percentile of X_0. If None, drawn from U(0, 1).

        Returns
        -------
        states : NDArray[np.int64]
            State path of shape (n_steps,)
        percentiles : NDArray[np.float64]
            Percentiles of shape (n_steps,)
        """
        if n_steps <= 0:
            raise ValueError(f"n_steps must be positive. Got {n_steps}")
        u0 = self.rng.random() if initial_percentile is None else initial_percentile

        states = np.zeros(n_steps, dtype=np.int64)
        percentiles = np.zeros(n_steps)
        states[0] = self.model.draw_initial_state(u0)
        percentiles[0] = u0
        for t in range(1, n_steps):
            states[t], percentiles[t] = self.model.draw_next_state_and_percentile(
                int(states[t - 1]), t - 1, self.rng.random()
            )
        return states, percentiles

    def empirical_distribution(self, paths: NDArray[np.int64]) -> NDArray[np.float64]:
        """
        State frequencies per time step.

        Parameters
        ----------
        paths : NDArray[np.int64]
            State paths, shape (n_paths, n_steps)

        Returns
        -------
        NDArray[np.float64]
            Frequencies of shape (dim, n_steps); column t estimates
            ``model.calc_state_distribution(t)``.
        """
        n_paths, n_steps = paths.shape
        freqs = np.zeros((self.model.dim, n_steps))
        for k in range(self.model.dim):
            freqs[k, :] = np.mean(paths == k, axis=0)
        return freqs

    def __repr__(self) -> str:
        """String representation."""
        return f"PathSimulator(model={self.model!r})"
