"""
Discrete distribution primitives.

**CDF sampling (discrete.py):**
- Uniform draw -> outcome index via ordered search
- CDF construction for vectors and column-stochastic matrices
- Probability-vector validation
"""

from microsim.distributions.discrete import (
    draw_from_cdf,
    calc_cdf,
    calc_cdf_columns,
    check_probability_distribution,
    check_uniform,
)

__all__ = [
    "draw_from_cdf",
    "calc_cdf",
    "calc_cdf_columns",
    "check_probability_distribution",
    "check_uniform",
]
