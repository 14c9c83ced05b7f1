"""
Stitched Markov model on a calendar schedule.

Model time t = 0, 1, 2, … is mapped onto dates

    t(date) = max(0, ⌊(date - start_date) / period⌋)

with the period measured in (approximate) days. Before ``start_date`` the
process has not started: transitions leave the state (and percentile)
unchanged.
"""

import copy
import datetime
import logging
from typing import Optional, Tuple

import numpy as np
from numpy.typing import NDArray

from microsim.distributions.discrete import check_uniform, draw_from_cdf
from microsim.exceptions import InvalidModel
from microsim.period import Period
from microsim.regimes.stitched import StitchedMarkovModel

logger = logging.getLogger(__name__)


class StitchedMarkovModelWithSchedule:
    """
    StitchedMarkovModel with a simple schedule.

    Attributes
    ----------
    base : StitchedMarkovModel
        Private copy of the wrapped model
    period : Period
        Length of one model time step
    start_date : datetime.date
        Date of model time 0
    """

    def __init__(
        self,
        base: StitchedMarkovModel,
        period: Period,
        start_date: datetime.date,
        cache_end_date: Optional[datetime.date] = None
    ) -> None:
        """
        Initialize scheduled model.

        Parameters
        ----------
        base : StitchedMarkovModel
            Base model. A copy is kept, so caching here does not touch it.
        period : Period
            Length of one model time step. Must be positive.
        start_date : datetime.date
            Date when the first segment is initialised.
        cache_end_date : datetime.date, optional
            First date for which state distributions are not cached. If
            None, nothing is precalculated.

        Raises
        ------
        InvalidModel
            If the period is not positive.
        """
        if period.approx_days() <= 0:
            raise InvalidModel(f"Period must be positive. Got {period}")
        self._base = copy.copy(base)
        self._period = period
        self._start_date = start_date
        if cache_end_date is not None:
            cache_size = self.calc_model_time(cache_end_date)
            self._base.precalculate_state_distributions(cache_size)
        logger.debug(
            "StitchedMarkovModelWithSchedule: start_date=%s, period=%s, cache_size=%d",
            start_date, period, self._base.cache_size,
        )

    @property
    def base(self) -> StitchedMarkovModel:
        """Private copy of the wrapped model."""
        return self._base

    @property
    def dim(self) -> int:
        """Number of states."""
        return self._base.dim

    @property
    def nbr_models(self) -> int:
        """Number of segments."""
        return self._base.nbr_models

    @property
    def period(self) -> Period:
        """Length of one model time step."""
        return self._period

    @property
    def start_date(self) -> datetime.date:
        """Date of model time 0."""
        return self._start_date

    def calc_model_time(self, date: datetime.date) -> int:
        """Model time index of a date; 0 for dates before the start."""
        elapsed = (date - self._start_date).days
        return max(0, elapsed // self._period.approx_days())

    def draw_initial_state(self, u: float) -> int:
        """Draw the state at the start date."""
        return self._base.draw_initial_state(u)

    def draw_next_state(self, k: int, current_date: datetime.date, u: float) -> int:
        """Draw the state after ``current_date``; k before the start date."""
        if current_date < self._start_date:
            return k
        return self._base.draw_next_state(k, self.calc_model_time(current_date), u)

    def draw_next_state_and_percentile(
        self,
        k: int,
        current_date: datetime.date,
        u: float
    ) -> Tuple[int, float]:
        """Next state and its percentile; (k, u) before the start date."""
        if current_date < self._start_date:
            return k, u
        return self._base.draw_next_state_and_percentile(
            k, self.calc_model_time(current_date), u
        )

    def calc_state_distribution(self, date: datetime.date) -> NDArray[np.float64]:
        """Marginal state distribution at a date."""
        return self._base.calc_state_distribution(self.calc_model_time(date))

    def calc_state_cdf(self, date: datetime.date) -> NDArray[np.float64]:
        """CDF of the marginal state distribution at a date."""
        return self._base.calc_state_cdf(self.calc_model_time(date))

    def draw_future_state(self, date: datetime.date, u: float) -> int:
        """
        Draw a state from the marginal distribution at ``date``.

        Used when the state has no known predecessor, e.g. for the first
        observation of a population member.
        """
        check_uniform(u)
        return draw_from_cdf(self.calc_state_cdf(date), u)

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"StitchedMarkovModelWithSchedule(dim={self.dim}, "
            f"nbr_models={self.nbr_models}, period={self._period}, "
            f"start_date={self._start_date})"
        )
