"""
Regime models: single-regime and stitched Markov chains.

**Single regime (markov_model.py):**
- Column-stochastic transition matrix with per-state holding periods
- Relative-risk adjustment of transition and initial probabilities

**Stitched models (stitched.py):**
- Segments with their own transition laws, joined by inter-segment matrices
- Ordinal (percentile-to-percentile) derivation of inter-segment matrices
- Cached marginal state distributions and percentile-preserving draws

**Scheduled models (scheduled.py):**
- Calendar dates mapped onto model time, with a start date gate
"""

from microsim.regimes.markov_model import MarkovModel
from microsim.regimes.stitched import StitchedMarkovModel, percentile_to_percentile
from microsim.regimes.scheduled import StitchedMarkovModelWithSchedule

__all__ = [
    # Single regime
    "MarkovModel",
    # Stitched
    "StitchedMarkovModel",
    "percentile_to_percentile",
    # Scheduled
    "StitchedMarkovModelWithSchedule",
]
