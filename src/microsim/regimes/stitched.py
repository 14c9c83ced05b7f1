"""
Stitched Markov model: a sequence of Markov chains joined at fixed times.

Segment m is valid for times [T_m, T_{m+1}) and moves the state with its
own intra-segment matrix A_m. Segments are joined by inter-segment
matrices B_m. The step from the last time of segment m into the first time
of segment m+1 first applies A_m and then B_m:

    X_{t+1} | X_t ~ A_m[:, X_t]              for T_m <= t, t + 1 < T_{m+1}
    X_{t+1} | X_t ~ (B_m A_m)[:, X_t]        for t + 1 == T_{m+1}

The inter-segment matrices can be given explicitly or derived by an
ordinal ("percentile-to-percentile") mapping between the terminal
distribution of segment m and the initial distribution of segment m+1.
For an ordinal state variable this keeps the rank of the unobserved
continuous variable behind it.

All sampling methods are pure functions of (model, t, u). Once
:meth:`StitchedMarkovModel.precalculate_state_distributions` has run, the
model is immutable and can be shared between threads.
"""

import logging
from typing import Iterator, List, Sequence, Tuple

import numpy as np
from numpy.typing import ArrayLike, NDArray

from microsim.distributions.discrete import (
    calc_cdf,
    calc_cdf_columns,
    check_probability_distribution,
    check_uniform,
    draw_from_cdf,
)
from microsim.exceptions import InvalidModel

logger = logging.getLogger(__name__)

_TOLERANCE = 1e-12


def _frozen(a: NDArray[np.float64]) -> NDArray[np.float64]:
    a.setflags(write=False)
    return a


def percentile_to_percentile(
    prev_cdf: ArrayLike,
    next_cdf: ArrayLike
) -> NDArray[np.float64]:
    """
    Transition matrix mapping percentiles of one distribution onto another.

    Origin state k covers the percentile range [p0, p1) of ``prev_cdf``.
    Its column spreads mass over the destination states whose ranges in
    ``next_cdf`` overlap [p0, p1), proportionally to the overlap.

    Parameters
    ----------
    prev_cdf : ArrayLike
        CDF of the origin distribution, shape (K,).
    next_cdf : ArrayLike
        CDF of the destination distribution, shape (K,).

    Returns
    -------
    NDArray[np.float64]
        Column-stochastic matrix of shape (K, K).

    Examples
    --------
    >>> percentile_to_percentile([0.5, 1.0], [0.2, 1.0])
    array([[0.4, 0. ],
           [0.6, 1. ]])
    """
    prev_cdf = np.asarray(prev_cdf, dtype=np.float64)
    next_cdf = np.asarray(next_cdf, dtype=np.float64)
    if prev_cdf.shape != next_cdf.shape:
        raise ValueError(
            f"CDF sizes differ: {prev_cdf.shape} vs {next_cdf.shape}"
        )
    dim = prev_cdf.shape[0]
    pi = np.zeros((dim, dim))
    for k in range(dim):
        p0 = prev_cdf[k - 1] if k > 0 else 0.0
        p1 = prev_cdf[k]
        if p1 != p0:
            l0 = draw_from_cdf(next_cdf, p0)
            l1 = draw_from_cdf(next_cdf, p1)
            p = p0
            for l in range(l0, l1):
                q = next_cdf[l]
                pi[l, k] = q - p
                p = q
            pi[l1, k] = p1 - p
            pi[:, k] /= pi[:, k].sum()
        else:
            # Zero-width origin bracket: the first destination state whose CDF
            # exceeds p0. Unlike draw_from_cdf, a breakpoint p0 == next_cdf[l]
            # goes to the state above it, so zero-probability states are skipped.
            l = min(int(np.searchsorted(next_cdf, p0, side="right")), dim - 1)
            pi[l, k] = 1.0
    return pi


class StitchedMarkovModel:
    """
    A series of Markov models active in subsequent time segments.

    Attributes
    ----------
    dim : int
        Number of states (K)
    nbr_models : int
        Number of segments (M)
    cache_size : int
        Number of time steps for which state distributions are cached
    """

    def __init__(
        self,
        dim: int,
        intra_model_transition_matrices: Sequence[ArrayLike],
        inter_model_transition_matrices: Sequence[ArrayLike],
        initial_state_probs: ArrayLike,
        model_lengths: Sequence[int]
    ) -> None:
        """
        Initialize stitched model.

        Parameters
        ----------
        dim : int
            Number of states.
        intra_model_transition_matrices : Sequence[ArrayLike]
            Transition matrices within each segment (length M), each of
            shape (dim, dim) with distributions in columns.
        inter_model_transition_matrices : Sequence[ArrayLike]
            Transition matrices between segments (length M - 1).
        initial_state_probs : ArrayLike
            Distribution of X_0 in the first segment, shape (dim,).
        model_lengths : Sequence[int]
            Number of steps in each segment but the last, which is
            open-ended (length M - 1).

        Raises
        ------
        InvalidModel
            If dim is not positive, the numbers of matrices and lengths do
            not agree, or any array has the wrong shape.
        """
        if dim <= 0:
            raise InvalidModel(f"Dimension must be positive. Got {dim}")
        nbr_models = len(intra_model_transition_matrices)
        if nbr_models == 0:
            raise InvalidModel("Need at least 1 model")
        if len(inter_model_transition_matrices) + 1 != nbr_models:
            raise InvalidModel(
                f"Incorrect number of inter-model transition matrices. "
                f"Expected {nbr_models - 1}, got {len(inter_model_transition_matrices)}"
            )
        if len(model_lengths) + 1 != nbr_models:
            raise InvalidModel(
                f"Incorrect number of model lengths. "
                f"Expected {nbr_models - 1}, got {len(model_lengths)}"
            )
        if any(int(n) != n or n < 0 for n in model_lengths):
            raise InvalidModel(
                f"Model lengths must be non-negative integers. Got {list(model_lengths)}"
            )

        intra = [self._as_matrix(dim, m) for m in intra_model_transition_matrices]
        inter = [self._as_matrix(dim, m) for m in inter_model_transition_matrices]
        initial = np.array(initial_state_probs, dtype=np.float64).ravel()
        if initial.shape != (dim,):
            raise InvalidModel(
                f"Initial state distribution must have length {dim}. Got {initial.shape[0]}"
            )
        check_probability_distribution(
            initial, "StitchedMarkovModel: initial state", _TOLERANCE
        )

        self._dim = int(dim)
        self._intra_matrices: List[NDArray[np.float64]] = [_frozen(m) for m in intra]
        self._inter_matrices: List[NDArray[np.float64]] = [_frozen(m) for m in inter]
        self._intra_cdfs = [_frozen(calc_cdf_columns(m)) for m in intra]
        self._initial_state_distribution = _frozen(initial)
        self._initial_state_cdf = _frozen(calc_cdf(initial))
        self._cum_model_lengths: List[int] = np.cumsum(
            [int(n) for n in model_lengths], dtype=np.int64
        ).tolist()
        # CDFs of B_m A_m, used for the step which crosses into segment m+1.
        # Segments of zero length in between contribute their B as well.
        self._inter_times_intra_cdfs = []
        for m in range(nbr_models - 1):
            combined = intra[m]
            for j in range(m, self.calc_model_index(self._cum_model_lengths[m])):
                combined = inter[j] @ combined
            self._inter_times_intra_cdfs.append(_frozen(calc_cdf_columns(combined)))

        self._state_probs_cache = _frozen(np.zeros((self._dim, 0)))
        self._state_cdfs_cache = _frozen(np.zeros((self._dim, 0)))
        logger.debug(
            "StitchedMarkovModel: dim=%d, nbr_models=%d, boundaries=%s",
            self._dim, nbr_models, self._cum_model_lengths,
        )

    @staticmethod
    def _as_matrix(dim: int, matrix: ArrayLike) -> NDArray[np.float64]:
        m = np.array(matrix, dtype=np.float64)
        if m.shape != (dim, dim):
            raise InvalidModel(
                f"Transition matrix must have shape ({dim}, {dim}). Got {m.shape}"
            )
        for k in range(dim):
            check_probability_distribution(
                m[:, k], f"StitchedMarkovModel: column {k}", _TOLERANCE
            )
        return m

    @classmethod
    def ordinal(
        cls,
        dim: int,
        intra_model_transition_matrices: Sequence[ArrayLike],
        initial_state_distributions: Sequence[ArrayLike],
        model_lengths: Sequence[int]
    ) -> "StitchedMarkovModel":
        """
        Stitch segments together for an ordinal state variable.

        The inter-segment matrix after segment i maps the distribution
        reached at the end of segment i (its own initial distribution
        propagated for ``model_lengths[i]`` steps) onto the initial
        distribution of segment i + 1 with :func:`percentile_to_percentile`.

        Parameters
        ----------
        dim : int
            Number of states.
        intra_model_transition_matrices : Sequence[ArrayLike]
            Transition matrices within each segment (length M).
        initial_state_distributions : Sequence[ArrayLike]
            Initial state distribution of each segment (length M).
        model_lengths : Sequence[int]
            Number of steps in each segment but the last (length M - 1).

        Returns
        -------
        StitchedMarkovModel
        """
        nbr_models = len(intra_model_transition_matrices)
        if len(initial_state_distributions) == 0:
            raise InvalidModel("Need at least 1 initial distribution")
        if len(initial_state_distributions) != nbr_models:
            raise InvalidModel(
                f"Vector size mismatch: {nbr_models} models but "
                f"{len(initial_state_distributions)} initial distributions"
            )
        if len(model_lengths) + 1 != nbr_models:
            raise InvalidModel(
                f"Incorrect number of model lengths. "
                f"Expected {nbr_models - 1}, got {len(model_lengths)}"
            )
        distributions = []
        for i, d in enumerate(initial_state_distributions):
            d = np.array(d, dtype=np.float64).ravel()
            if d.shape != (dim,):
                raise InvalidModel(
                    f"Initial state distribution {i} must have length {dim}. "
                    f"Got {d.shape[0]}"
                )
            check_probability_distribution(
                d, f"StitchedMarkovModel: initial state of model {i}", _TOLERANCE
            )
            distributions.append(d)

        inter = []
        for i in range(nbr_models - 1):
            a = cls._as_matrix(dim, intra_model_transition_matrices[i])
            final_distr = distributions[i]
            for _ in range(int(model_lengths[i])):
                final_distr = a @ final_distr
            prev_cdf = calc_cdf(final_distr)
            next_cdf = calc_cdf(distributions[i + 1])
            inter.append(percentile_to_percentile(prev_cdf, next_cdf))
            logger.debug(
                "StitchedMarkovModel.ordinal: segment %d terminal distribution %s",
                i, final_distr,
            )

        return cls(
            dim,
            intra_model_transition_matrices,
            inter,
            distributions[0],
            model_lengths,
        )

    @property
    def dim(self) -> int:
        """Number of states."""
        return self._dim

    @property
    def nbr_models(self) -> int:
        """Number of segments."""
        return len(self._intra_matrices)

    @property
    def cache_size(self) -> int:
        """Number of time steps with cached state distributions."""
        return self._state_probs_cache.shape[1]

    @property
    def initial_state_distribution(self) -> NDArray[np.float64]:
        """Distribution of X_0 (read-only)."""
        return self._initial_state_distribution

    @property
    def inter_model_transition_matrices(self) -> List[NDArray[np.float64]]:
        """Matrices joining consecutive segments (read-only)."""
        return list(self._inter_matrices)

    def precalculate_state_distributions(self, cache_size: int) -> None:
        """
        Precalculate state distributions (and their CDFs) from time 0.

        Must complete before the model is queried from several threads.
        Query results are the same with or without the cache.

        Parameters
        ----------
        cache_size : int
            Number of time steps to cache (t = 0, …, cache_size - 1).
        """
        if cache_size < 0:
            raise ValueError(f"cache_size must be >= 0. Got {cache_size}")
        if cache_size == self.cache_size:
            return

        probs = np.zeros((self._dim, cache_size))
        for t, distr in zip(range(cache_size), self._iter_state_distributions()):
            probs[:, t] = distr
        cdfs = np.cumsum(probs, axis=0)
        if cache_size:
            cdfs[-1, :] = 1.0

        self._state_probs_cache = _frozen(probs)
        self._state_cdfs_cache = _frozen(cdfs)
        logger.debug(
            "StitchedMarkovModel: cached state distributions for %d steps",
            cache_size,
        )

    def _iter_state_distributions(self) -> Iterator[NDArray[np.float64]]:
        # Yields X_0, X_1, … walking through the segments once
        distr = self._initial_state_distribution.copy()
        s = 0
        last = self.nbr_models - 1
        for k in range(self.nbr_models):
            if k > 0:
                distr = self._inter_matrices[k - 1] @ distr
            pi = self._intra_matrices[k]
            while k == last or s < self._cum_model_lengths[k]:
                yield distr
                distr = pi @ distr
                s += 1

    def calc_model_index(self, t: int) -> int:
        """Index of the segment which owns time t."""
        if t < 0:
            raise ValueError(f"Time must be non-negative. Got {t}")
        return int(np.searchsorted(self._cum_model_lengths, t, side="right"))

    def _transition_cdf_matrix(self, t: int) -> NDArray[np.float64]:
        model_idx = self.calc_model_index(t)
        if model_idx == self.nbr_models - 1:
            # no further transitions
            return self._intra_cdfs[model_idx]
        if t + 1 < self._cum_model_lengths[model_idx]:
            return self._intra_cdfs[model_idx]
        # next state belongs to the next segment
        return self._inter_times_intra_cdfs[model_idx]

    def calc_state_distribution(self, t: int) -> NDArray[np.float64]:
        """Marginal distribution of X_t, shape (dim,)."""
        if 0 <= t < self.cache_size:
            return self._state_probs_cache[:, t].copy()
        return self._calc_state_distribution_no_cache(t)

    def _calc_state_distribution_no_cache(self, t: int) -> NDArray[np.float64]:
        model_idx = self.calc_model_index(t)
        distr = self._initial_state_distribution.copy()
        s = 0
        for k in range(model_idx + 1):
            if k > 0:
                distr = self._inter_matrices[k - 1] @ distr
            pi = self._intra_matrices[k]
            end = self._cum_model_lengths[k] if k < model_idx else t
            while s < end:
                distr = pi @ distr
                s += 1
        return distr

    def calc_state_cdf(self, t: int) -> NDArray[np.float64]:
        """CDF of X_t, with the last entry exactly 1."""
        if 0 <= t < self.cache_size:
            return self._state_cdfs_cache[:, t].copy()
        return calc_cdf(self.calc_state_distribution(t))

    def _check_state(self, k: int) -> None:
        if not (0 <= k < self._dim):
            raise ValueError(
                f"state must be in {{0, …, {self._dim - 1}}}. Got {k}"
            )

    def draw_initial_state(self, u: float) -> int:
        """
        Draw X_0.

        ``u`` is also the percentile of X_0 in its distribution.
        """
        check_uniform(u)
        return draw_from_cdf(self._initial_state_cdf, u)

    def draw_next_state(self, k: int, t: int, u: float) -> int:
        """Draw X_{t+1} conditioned on X_t = k."""
        check_uniform(u)
        self._check_state(k)
        cum_pi = self._transition_cdf_matrix(t)
        return draw_from_cdf(cum_pi[:, k], u)

    def draw_next_state_and_percentile(
        self,
        k: int,
        t: int,
        u: float
    ) -> Tuple[int, float]:
        """
        Draw X_{t+1} conditioned on X_t = k, and its percentile.

        Assumes X is ordinal. ``u`` is rescaled from the bracket [a, b] of
        the drawn state l in the conditional CDF to its bracket [c, d] in
        the CDF of X_{t+1}.

        Returns
        -------
        state : int
            Next state l
        percentile : float
            c + (d - c) (u - a) / (b - a), or (c + d) / 2 if a == b
        """
        check_uniform(u)
        self._check_state(k)
        cum_pi_k = self._transition_cdf_matrix(t)[:, k]
        l = draw_from_cdf(cum_pi_k, u)
        next_cdf = self.calc_state_cdf(t + 1)
        a = cum_pi_k[l - 1] if l > 0 else 0.0
        b = cum_pi_k[l]
        c = next_cdf[l - 1] if l > 0 else 0.0
        d = next_cdf[l]
        r = (u - a) / (b - a) if a != b else 0.5
        p = max(0.0, min(1.0, c + (d - c) * r))
        return l, float(p)

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"StitchedMarkovModel(dim={self._dim}, nbr_models={self.nbr_models}, "
            f"cache_size={self.cache_size})"
        )
