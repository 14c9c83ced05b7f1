"""
Discrete CDF sampling.

Every random choice in the package goes through :func:`draw_from_cdf`,
which turns a uniform draw u ∈ [0, 1] into an index of a discrete
distribution:

    i(u) = min { i : u <= F_i }

where F is the cumulative distribution function. Ties select the lower
index, so P(X <= i) = F_i holds exactly (right-continuous CDF).
"""

import numpy as np
from numpy.typing import ArrayLike, NDArray

from microsim.exceptions import InvalidModel


def draw_from_cdf(cdf: ArrayLike, u: float) -> int:
    """
    Select the index of a discrete outcome from its CDF.

    Parameters
    ----------
    cdf : ArrayLike
        Non-decreasing cumulative probabilities, shape (n,). The last
        value is implicitly 1.
    u : float
        Value drawn from U(0, 1).

    Returns
    -------
    int
        Smallest index i with u <= cdf[i], or n - 1 if there is none
        (rounding at the very top of the range).
    """
    cdf = np.asarray(cdf, dtype=np.float64)
    n = cdf.shape[0]
    idx = int(np.searchsorted(cdf, u, side="left"))
    return idx if idx < n else n - 1


def calc_cdf(probs: ArrayLike) -> NDArray[np.float64]:
    """Prefix sum of a probability vector, with the last entry set to 1."""
    cdf = np.cumsum(np.asarray(probs, dtype=np.float64))
    if cdf.shape[0]:
        cdf[-1] = 1.0
    return cdf


def calc_cdf_columns(
    matrix: ArrayLike,
    tolerance: float = 1e-6
) -> NDArray[np.float64]:
    """
    Column-wise CDFs of a column-stochastic matrix.

    Parameters
    ----------
    matrix : ArrayLike
        Matrix of shape (dim, dim) with a distribution in every column.
    tolerance : float
        Maximum allowed deviation of a column total from 1.

    Returns
    -------
    NDArray[np.float64]
        New matrix with cumulative sums down each column. The last row is
        exactly 1.

    Raises
    ------
    InvalidModel
        If a column does not add up to 1 within ``tolerance``.
    """
    cdfs = np.cumsum(np.asarray(matrix, dtype=np.float64), axis=0)
    totals = cdfs[-1, :]
    if np.any(np.abs(1.0 - totals) >= tolerance):
        raise InvalidModel(
            f"Distribution probabilities do not add to 1. Got column sums: {totals}"
        )
    cdfs[-1, :] = 1.0
    return cdfs


def check_probability_distribution(
    probs: NDArray[np.float64],
    name: str,
    tolerance: float = 1e-14
) -> None:
    """
    Validate a probability vector.

    Raises
    ------
    InvalidModel
        If any entry lies outside [0, 1] (NaN included) or the entries do
        not sum to 1 within ``tolerance``.
    """
    if not np.all((probs >= 0.0) & (probs <= 1.0)):
        raise InvalidModel(f"{name}: probabilities outside bounds")
    if abs(probs.sum() - 1.0) > tolerance:
        raise InvalidModel(f"{name}: probability distribution not normalized")


def check_uniform(u: float) -> None:
    """Raise ValueError unless u is a number in [0, 1]."""
    if not (0.0 <= u <= 1.0):
        raise ValueError(f"Random number must be in [0, 1]. Got {u}")
