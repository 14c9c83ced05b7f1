"""
Discrete-time Markov models for microsimulation.

Population members move between a finite set of states over a timeline
split into regimes, each with its own transition law. All sampling takes
an explicit uniform draw, so callers control randomness.
"""

from microsim.exceptions import InfeasibleAdjustment, InvalidModel
from microsim.period import Period, PeriodType
from microsim.regimes import (
    MarkovModel,
    StitchedMarkovModel,
    StitchedMarkovModelWithSchedule,
    percentile_to_percentile,
)

__all__ = [
    "InfeasibleAdjustment",
    "InvalidModel",
    "Period",
    "PeriodType",
    "MarkovModel",
    "StitchedMarkovModel",
    "StitchedMarkovModelWithSchedule",
    "percentile_to_percentile",
]
