"""
Single-regime Markov model with state-dependent holding periods.

This module implements a time-homogeneous discrete-state Markov chain used
to move a population member between states (e.g. healthy, ill, dead).
Each state has its own holding period, so one transition out of state k
advances the calendar by ``transition_period(k)``.

Mathematical formulation:
    X_t ∈ {0, …, K-1}                       # State after t transitions
    P(X_{t+1} = j | X_t = k) = Π_{jk}      # Column k is the distribution
    P(X_0 = j) = π_j                        # Initial state distribution

Relative risks r_j skew a base distribution p for one individual. Entries
with r_j = NaN are kept as they are; the others are scaled and then
rescaled so that their total mass is unchanged:

    p'_j = p_j r_j · (Σ_{i adj} p_i) / (Σ_{i adj} p_i r_i)
"""

import datetime
import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import ArrayLike, NDArray

from microsim.distributions.discrete import (
    calc_cdf,
    calc_cdf_columns,
    check_probability_distribution,
    check_uniform,
    draw_from_cdf,
)
from microsim.exceptions import InfeasibleAdjustment, InvalidModel
from microsim.period import Period

logger = logging.getLogger(__name__)


class MarkovModel:
    """
    Markov model without memory, with different holding periods per state.

    Attributes
    ----------
    dim : int
        Number of states (K)
    transition_matrix : NDArray[np.float64]
        Read-only transition matrix of shape (K, K) where
        transition_matrix[j, k] = P(X_{t+1} = j | X_t = k).
        Each column sums to 1.
    initial_state_distribution : NDArray[np.float64]
        Read-only distribution of the initial state, shape (K,).
    """

    def __init__(
        self,
        transition_matrix: ArrayLike,
        transition_periods: Optional[Sequence[Period]] = None,
        initial_state_probs: Optional[ArrayLike] = None
    ) -> None:
        """
        Initialize the model.

        Parameters
        ----------
        transition_matrix : ArrayLike
            Column-stochastic matrix of shape (K, K).
        transition_periods : Sequence[Period], optional
            Holding period of each state. A zero-size period is only allowed
            for absorbing states. Default is one day for every state.
        initial_state_probs : ArrayLike, optional
            Distribution of the initial state, shape (K,). Default puts all
            mass on state 0.

        Raises
        ------
        InvalidModel
            If the matrix is empty or not square, if the periods or initial
            probabilities have the wrong length, if a period is negative, if
            a non-absorbing state has a zero period, or if any column or the
            initial distribution is not a valid probability distribution.
        """
        pi = np.array(transition_matrix, dtype=np.float64)
        if pi.ndim != 2 or pi.size == 0:
            raise InvalidModel("MarkovModel: empty transition matrix")
        if pi.shape[0] != pi.shape[1]:
            raise InvalidModel(
                f"MarkovModel: transition matrix is not square. Got shape {pi.shape}"
            )
        dim = pi.shape[0]

        if transition_periods is None:
            periods = [Period.days(1)] * dim
        else:
            periods = list(transition_periods)

        if initial_state_probs is None:
            init = np.zeros(dim)
            init[0] = 1.0
        else:
            init = np.array(initial_state_probs, dtype=np.float64).ravel()

        self._validate(pi, periods, init)

        pi.setflags(write=False)
        init.setflags(write=False)
        self.transition_matrix = pi
        self.initial_state_distribution = init
        self._transition_periods: List[Period] = periods
        self._transition_cdfs = calc_cdf_columns(pi)
        self._transition_cdfs.setflags(write=False)
        logger.debug("MarkovModel: constructed with dim=%d", dim)

    @staticmethod
    def _validate(
        pi: NDArray[np.float64],
        periods: List[Period],
        init: NDArray[np.float64]
    ) -> None:
        dim = pi.shape[0]
        if len(periods) != dim:
            raise InvalidModel(
                f"MarkovModel: bad number of transition periods. "
                f"Expected {dim}, got {len(periods)}"
            )
        if init.shape[0] != dim:
            raise InvalidModel(
                f"MarkovModel: bad number of initial state probabilities. "
                f"Expected {dim}, got {init.shape[0]}"
            )
        for i, period in enumerate(periods):
            if period.size < 0:
                raise InvalidModel(
                    "MarkovModel: transition period cannot have negative size"
                )
            if period.size == 0 and pi[i, i] != 1.0:
                raise InvalidModel(
                    f"MarkovModel: non-terminal state {i} has zero transition period"
                )
        for k in range(dim):
            check_probability_distribution(pi[:, k], f"MarkovModel: column {k}")
        check_probability_distribution(init, "MarkovModel: initial state")

    @property
    def dim(self) -> int:
        """Number of states."""
        return self.transition_matrix.shape[0]

    def transition_period(self, state: int) -> Period:
        """Holding period of a state."""
        self._check_state(state)
        return self._transition_periods[state]

    def is_terminal(self, state: int) -> bool:
        """True if leaving the state takes no time (absorbing state)."""
        return self.transition_period(state).size == 0

    def _check_state(self, state: int) -> None:
        if not (0 <= state < self.dim):
            raise ValueError(
                f"state must be in {{0, …, {self.dim - 1}}}. Got {state}"
            )

    def apply_relative_risks(
        self,
        state: int,
        relative_risks: ArrayLike
    ) -> NDArray[np.float64]:
        """
        Next-state distribution from ``state`` skewed by relative risks.

        Parameters
        ----------
        state : int
            Current state.
        relative_risks : ArrayLike
            Relative risk for each destination state, shape (K,). NaN leaves
            the base probability of that state untouched.

        Returns
        -------
        NDArray[np.float64]
            Adjusted distribution, shape (K,).

        Raises
        ------
        ValueError
            If state is out of range, the risk vector has the wrong length,
            or any risk is negative.
        InfeasibleAdjustment
            If the adjustable mass is positive but all risks are zero on it.
        """
        self._check_state(state)
        return self._apply_relative_risks(
            self.transition_matrix[:, state], relative_risks
        )

    @staticmethod
    def _apply_relative_risks(
        base_probs: NDArray[np.float64],
        relative_risks: ArrayLike
    ) -> NDArray[np.float64]:
        rr = np.asarray(relative_risks, dtype=np.float64)
        if rr.shape != base_probs.shape:
            raise ValueError(
                f"MarkovModel: bad size of relative risks vector. "
                f"Expected {base_probs.shape[0]}, got {rr.size}"
            )
        adjusted = ~np.isnan(rr)
        if np.any(rr[adjusted] < 0):
            raise ValueError("MarkovModel: negative relative risk")

        probs = base_probs.copy()
        scaled = base_probs[adjusted] * rr[adjusted]
        sum_base = base_probs[adjusted].sum()
        sum_scaled = scaled.sum()
        if sum_scaled > 0:
            probs[adjusted] = scaled * (sum_base / sum_scaled)
        elif sum_base > 0:
            raise InfeasibleAdjustment(
                "MarkovModel: impossible to apply relative risks"
            )
        else:
            probs[adjusted] = scaled
        return probs

    def select_next_state(
        self,
        state: int,
        u: float,
        relative_risks: Optional[ArrayLike] = None
    ) -> int:
        """
        Draw the next state given the current one.

        Parameters
        ----------
        state : int
            Current state.
        u : float
            Value drawn from U(0, 1).
        relative_risks : ArrayLike, optional
            Relative risks for each destination state (NaN = untouched).
            If None, the base transition probabilities are used.

        Returns
        -------
        int
            Next state.
        """
        check_uniform(u)
        self._check_state(state)
        if relative_risks is None:
            return draw_from_cdf(self._transition_cdfs[:, state], u)
        probs = self.apply_relative_risks(state, relative_risks)
        return draw_from_cdf(calc_cdf(probs), u)

    def select_initial_state(self, relative_risks: ArrayLike, u: float) -> int:
        """Draw the initial state, with relative risks applied to it."""
        check_uniform(u)
        probs = self._apply_relative_risks(
            self.initial_state_distribution, relative_risks
        )
        return draw_from_cdf(calc_cdf(probs), u)

    def select_next_date_and_state(
        self,
        current: Tuple[datetime.date, int],
        relative_risks: ArrayLike,
        u: float
    ) -> Tuple[datetime.date, int]:
        """
        Advance a (date, state) pair by one transition.

        The date moves forward by the holding period of the current state,
        so a terminal state keeps its date.
        """
        date, state = current
        next_state = self.select_next_state(state, u, relative_risks)
        return self.transition_period(state).add_to(date), next_state

    def __eq__(self, other: object) -> bool:
        # Same dynamics; the initial distribution is not compared.
        if not isinstance(other, MarkovModel):
            return NotImplemented
        return (
            np.array_equal(self.transition_matrix, other.transition_matrix)
            and self._transition_periods == other._transition_periods
        )

    __hash__ = None

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"MarkovModel(dim={self.dim}, "
            f"transition_periods={[str(p) for p in self._transition_periods]})"
        )
