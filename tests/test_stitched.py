"""
Unit tests for the stitched Markov model.

Tests cover:
- Initialization and validation
- Segment lookup and transition draws across segment boundaries
- State distributions, CDFs and the cache
- Percentile-to-percentile mapping and ordinal stitching
- Percentile-preserving draws
"""

import copy

import pytest
import numpy as np
from numpy.testing import assert_allclose

from microsim.exceptions import InvalidModel
from microsim.regimes.stitched import StitchedMarkovModel, percentile_to_percentile


@pytest.fixture
def two_segments():
    """Two 2-state segments joined after 10 steps."""
    p0 = np.array([0.4, 0.6])
    intra = [
        np.array([
            [0.9, 0.8],
            [0.1, 0.2]
        ]),
        np.array([
            [0.7, 0.25],
            [0.3, 0.75]
        ]),
    ]
    inter = [
        np.array([
            [0.1, 0.85],
            [0.9, 0.15]
        ]),
    ]
    return p0, intra, inter, [10]


@pytest.fixture
def smm(two_segments) -> StitchedMarkovModel:
    p0, intra, inter, lens = two_segments
    return StitchedMarkovModel(2, intra, inter, p0, lens)


def _three_state_model() -> StitchedMarkovModel:
    """Four segments of 3 states, including one of zero length."""
    a0 = np.array([
        [0.8, 0.1, 0.0],
        [0.15, 0.7, 0.2],
        [0.05, 0.2, 0.8]
    ])
    a1 = np.array([
        [0.6, 0.3, 0.1],
        [0.3, 0.4, 0.3],
        [0.1, 0.3, 0.6]
    ])
    a2 = np.array([
        [0.5, 0.25, 0.25],
        [0.25, 0.5, 0.25],
        [0.25, 0.25, 0.5]
    ])
    b = np.array([
        [0.9, 0.05, 0.0],
        [0.1, 0.9, 0.1],
        [0.0, 0.05, 0.9]
    ])
    return StitchedMarkovModel(3, [a0, a1, a2, a1], [b, b, b], [0.2, 0.5, 0.3], [3, 0, 4])


class TestStitchedMarkovModelInitialization:
    """Tests for construction and validation."""

    def test_properties(self, smm: StitchedMarkovModel) -> None:
        """Test basic properties."""
        assert smm.dim == 2
        assert smm.nbr_models == 2
        assert smm.cache_size == 0

    def test_single_segment(self) -> None:
        """Test a model with one open-ended segment."""
        m = StitchedMarkovModel(2, [np.eye(2)], [], [0.5, 0.5], [])
        assert m.nbr_models == 1
        assert m.calc_model_index(1000) == 0

    def test_non_positive_dim_raises(self, two_segments) -> None:
        """Test that dim must be positive."""
        p0, intra, inter, lens = two_segments
        with pytest.raises(InvalidModel, match="Dimension must be positive"):
            StitchedMarkovModel(0, intra, inter, p0, lens)

    def test_no_models_raises(self) -> None:
        """Test that at least one segment is needed."""
        with pytest.raises(InvalidModel, match="at least 1 model"):
            StitchedMarkovModel(2, [], [], [0.5, 0.5], [])

    def test_wrong_number_of_inter_matrices_raises(self, two_segments) -> None:
        """Test that M - 1 inter-segment matrices are required."""
        p0, intra, inter, lens = two_segments
        with pytest.raises(InvalidModel, match="inter-model transition matrices"):
            StitchedMarkovModel(2, intra, [], p0, lens)

    def test_wrong_number_of_lengths_raises(self, two_segments) -> None:
        """Test that M - 1 segment lengths are required."""
        p0, intra, inter, lens = two_segments
        with pytest.raises(InvalidModel, match="model lengths"):
            StitchedMarkovModel(2, intra, inter, p0, [10, 5])

    def test_negative_length_raises(self, two_segments) -> None:
        """Test that segment lengths cannot be negative."""
        p0, intra, inter, lens = two_segments
        with pytest.raises(InvalidModel, match="non-negative"):
            StitchedMarkovModel(2, intra, inter, p0, [-1])

    def test_wrong_matrix_shape_raises(self, two_segments) -> None:
        """Test that matrices must be dim x dim."""
        p0, intra, inter, lens = two_segments
        with pytest.raises(InvalidModel, match="shape"):
            StitchedMarkovModel(2, [intra[0], np.eye(3)], inter, p0, lens)

    def test_non_stochastic_matrix_raises(self, two_segments) -> None:
        """Test that columns must be probability distributions."""
        p0, intra, inter, lens = two_segments
        bad = np.array([
            [0.9, 0.8],
            [0.2, 0.2]
        ])
        with pytest.raises(InvalidModel, match="not normalized"):
            StitchedMarkovModel(2, [bad, intra[1]], inter, p0, lens)

    def test_bad_initial_distribution_raises(self, two_segments) -> None:
        """Test that the initial distribution must have length dim."""
        p0, intra, inter, lens = two_segments
        with pytest.raises(InvalidModel, match="length 2"):
            StitchedMarkovModel(2, intra, inter, [1.0], lens)

    def test_inputs_not_aliased(self, two_segments) -> None:
        """Test that changing the inputs later does not affect the model."""
        p0, intra, inter, lens = two_segments
        m = StitchedMarkovModel(2, intra, inter, p0, lens)
        intra[0][0, 0] = 0.0
        p0[0] = 0.0
        assert m.draw_next_state(0, 5, 0.89) == 0
        assert_allclose(m.calc_state_distribution(0), [0.4, 0.6])


class TestDraws:
    """Tests for initial and next state draws."""

    def test_draw_initial_state(self, smm: StitchedMarkovModel) -> None:
        """Test draws from the initial distribution [0.4, 0.6]."""
        assert smm.draw_initial_state(0.0) == 0
        assert smm.draw_initial_state(1.0) == 1
        assert smm.draw_initial_state(0.39) == 0
        assert smm.draw_initial_state(0.4) == 0
        assert smm.draw_initial_state(0.41) == 1

    def test_calc_model_index(self, smm: StitchedMarkovModel) -> None:
        """Test segment lookup via the first boundary greater than t."""
        assert smm.calc_model_index(0) == 0
        assert smm.calc_model_index(9) == 0
        assert smm.calc_model_index(10) == 1
        assert smm.calc_model_index(1000) == 1

    def test_draw_within_first_segment(self, smm: StitchedMarkovModel) -> None:
        """Test draws using the first intra-segment matrix."""
        assert smm.draw_next_state(0, 5, 0.89) == 0
        assert smm.draw_next_state(0, 5, 0.91) == 1
        assert smm.draw_next_state(1, 5, 0.79) == 0
        assert smm.draw_next_state(1, 5, 0.81) == 1

    def test_draw_within_last_segment(self, smm: StitchedMarkovModel) -> None:
        """Test draws using the last intra-segment matrix."""
        assert smm.draw_next_state(0, 15, 0.69) == 0
        assert smm.draw_next_state(0, 15, 0.71) == 1
        assert smm.draw_next_state(1, 15, 0.24) == 0
        assert smm.draw_next_state(1, 15, 0.26) == 1

    def test_draw_across_boundary(self, smm: StitchedMarkovModel) -> None:
        """Test that the step into the next segment uses inter @ intra."""
        # inter @ intra = [[0.175, 0.25], [0.825, 0.75]]
        assert smm.draw_next_state(0, 9, 0.174) == 0
        assert smm.draw_next_state(0, 9, 0.176) == 1
        assert smm.draw_next_state(1, 9, 0.24) == 0
        assert smm.draw_next_state(1, 9, 0.26) == 1

    def test_bad_arguments_raise(self, smm: StitchedMarkovModel) -> None:
        """Test call-time domain errors."""
        with pytest.raises(ValueError, match="Random number"):
            smm.draw_next_state(0, 0, 1.5)
        with pytest.raises(ValueError, match="state must be in"):
            smm.draw_next_state(2, 0, 0.5)
        with pytest.raises(ValueError, match="non-negative"):
            smm.draw_next_state(0, -1, 0.5)
        with pytest.raises(ValueError, match="Random number"):
            smm.draw_initial_state(-0.1)


class TestStateDistributions:
    """Tests for marginal distributions, CDFs and caching."""

    def test_forward_propagation(self, two_segments, smm: StitchedMarkovModel) -> None:
        """Test distributions without a cache."""
        p0, intra, inter, lens = two_segments
        assert_allclose(smm.calc_state_distribution(0), p0, atol=1e-12)
        assert_allclose(smm.calc_state_distribution(1), intra[0] @ p0, atol=1e-12)
        assert_allclose(
            smm.calc_state_distribution(2), intra[0] @ intra[0] @ p0, atol=1e-12
        )

    def test_boundary_propagation(self, two_segments, smm: StitchedMarkovModel) -> None:
        """Test that the inter-segment matrix is applied when entering segment 1."""
        p0, intra, inter, lens = two_segments
        x9 = np.linalg.matrix_power(intra[0], 9) @ p0
        assert_allclose(smm.calc_state_distribution(10), inter[0] @ intra[0] @ x9, atol=1e-12)
        assert_allclose(
            smm.calc_state_distribution(11),
            intra[1] @ inter[0] @ intra[0] @ x9,
            atol=1e-12
        )

    def test_precalculate(self, two_segments, smm: StitchedMarkovModel) -> None:
        """Test that cached distributions match the uncached ones."""
        p0, intra, inter, lens = two_segments
        smm.precalculate_state_distributions(2)
        assert smm.cache_size == 2
        assert_allclose(smm.calc_state_distribution(0), p0, atol=1e-12)
        assert_allclose(smm.calc_state_distribution(1), intra[0] @ p0, atol=1e-12)
        assert_allclose(
            smm.calc_state_distribution(2), intra[0] @ intra[0] @ p0, atol=1e-12
        )

    def test_precalculate_is_idempotent(self, smm: StitchedMarkovModel) -> None:
        """Test repeated and resized cache builds."""
        smm.precalculate_state_distributions(5)
        before = smm.calc_state_distribution(4)
        smm.precalculate_state_distributions(5)
        assert_allclose(smm.calc_state_distribution(4), before)
        smm.precalculate_state_distributions(3)
        assert smm.cache_size == 3
        smm.precalculate_state_distributions(0)
        assert smm.cache_size == 0

    @pytest.mark.parametrize("cache_size", [1, 3, 8, 20])
    def test_cache_matches_forward_propagation(self, cache_size: int) -> None:
        """Test cached and uncached distributions agree, zero-length segment included."""
        uncached = _three_state_model()
        cached = _three_state_model()
        cached.precalculate_state_distributions(cache_size)
        for t in range(25):
            assert_allclose(
                cached.calc_state_distribution(t),
                uncached.calc_state_distribution(t),
                atol=1e-9
            )
            assert_allclose(
                cached.calc_state_cdf(t), uncached.calc_state_cdf(t), atol=1e-9
            )

    def test_cdf_properties(self) -> None:
        """Test that CDFs are non-decreasing and end exactly at 1."""
        m = _three_state_model()
        for with_cache in (False, True):
            if with_cache:
                m.precalculate_state_distributions(12)
            for t in range(25):
                cdf = m.calc_state_cdf(t)
                assert np.all(np.diff(cdf) >= 0)
                assert cdf[-1] == 1.0

    def test_distributions_stay_normalized(self) -> None:
        """Test that every marginal distribution sums to 1."""
        m = _three_state_model()
        for t in range(25):
            distr = m.calc_state_distribution(t)
            assert_allclose(distr.sum(), 1.0, atol=1e-12)
            assert np.all(distr >= 0)

    def test_returned_arrays_are_copies(self, smm: StitchedMarkovModel) -> None:
        """Test that callers cannot change cached values."""
        smm.precalculate_state_distributions(3)
        distr = smm.calc_state_distribution(1)
        distr[0] = 5.0
        assert smm.calc_state_distribution(1)[0] != 5.0

    def test_copy_keeps_cache(self, smm: StitchedMarkovModel) -> None:
        """Test that copies share the (read-only) cache."""
        smm.precalculate_state_distributions(2)
        other = copy.deepcopy(smm)
        assert other.cache_size == 2
        assert other.dim == 2
        assert other.nbr_models == 2


class TestPercentileToPercentile:
    """Tests for the ordinal inter-segment mapping."""

    def test_three_states(self) -> None:
        """Test mapping [0.1, 0.5, 0.4] onto [0.2, 0.1, 0.7]."""
        pi = percentile_to_percentile([0.1, 0.6, 1.0], [0.2, 0.3, 1.0])
        assert pi.shape == (3, 3)
        assert_allclose(pi.sum(axis=0), 1.0, atol=1e-8)
        assert np.all(pi >= 0)
        assert pi[0, 0] == 1.0
        assert_allclose(pi[0, 1], 0.2, atol=1e-8)
        assert_allclose(pi[1, 1], 0.2, atol=1e-8)
        assert_allclose(pi[2, 1], 0.6, atol=1e-8)
        assert pi[2, 2] == 1.0

    def test_zero_probability_origin(self) -> None:
        """Test that an origin state with zero mass maps to one state."""
        pi = percentile_to_percentile([0.5, 0.5, 1.0], [0.2, 0.3, 1.0])
        assert_allclose(pi[:, 0], [0.4, 0.2, 0.4], atol=1e-8)
        assert pi[2, 1] == 1.0
        assert pi[2, 2] == 1.0

    def test_zero_probability_destination(self) -> None:
        """Test mapping onto a distribution with an empty last state."""
        pi = percentile_to_percentile([0.5, 0.5, 1.0], [0.2, 1.0, 1.0])
        assert_allclose(pi[:, 0], [0.4, 0.6, 0.0], atol=1e-8)
        assert pi[1, 1] == 1.0
        assert pi[1, 2] == 1.0

    def test_maps_distribution_onto_target(self) -> None:
        """Test that the matrix moves the origin distribution onto the target."""
        prev = np.array([0.3, 0.1, 0.6])
        target = np.array([0.25, 0.5, 0.25])
        pi = percentile_to_percentile(np.cumsum(prev), np.cumsum(target))
        assert_allclose(pi @ prev, target, atol=1e-12)

    def test_size_mismatch_raises(self) -> None:
        """Test that CDFs of different sizes are rejected."""
        with pytest.raises(ValueError, match="sizes differ"):
            percentile_to_percentile([0.5, 1.0], [0.2, 0.3, 1.0])

    def test_zero_width_origin_on_breakpoint(self) -> None:
        """Test that a zero-width origin on a breakpoint maps to the state above."""
        pi = percentile_to_percentile([0.5, 0.5, 1.0], [0.5, 1.0, 1.0])
        assert_allclose(pi[:, 1], [0.0, 1.0, 0.0])

    def test_zero_width_origin_skips_empty_destination(self) -> None:
        """Test that an empty origin state never lands on an empty destination state."""
        pi = percentile_to_percentile([0.0, 1.0], [0.0, 1.0])
        assert_allclose(pi, [[0.0, 0.0], [1.0, 1.0]])


class TestOrdinal:
    """Tests for ordinal stitching."""

    def test_identity_segments(self) -> None:
        """Test derived matrix for terminal [0.5, 0.5] onto [0.2, 0.8]."""
        intra = [np.eye(2), np.eye(2)]
        m = StitchedMarkovModel.ordinal(2, intra, [[0.5, 0.5], [0.2, 0.8]], [1])
        pi = m.inter_model_transition_matrices[0]
        assert_allclose(pi[:, 0], [0.4, 0.6], atol=1e-12)
        assert_allclose(pi[:, 1], [0.0, 1.0], atol=1e-12)
        assert_allclose(m.calc_state_distribution(1), [0.2, 0.8], atol=1e-12)

    def test_ordinal_distributions(self, two_segments) -> None:
        """Test that segment 1 starts from its own initial distribution."""
        p0, intra, inter, lens = two_segments
        isd = [np.array([0.4, 0.6]), np.array([1.0, 0.0])]
        m = StitchedMarkovModel.ordinal(2, intra, isd, lens)
        assert m.dim == 2
        assert m.nbr_models == 2
        assert_allclose(m.calc_state_distribution(0), isd[0], atol=1e-10)
        assert_allclose(m.calc_state_distribution(1), intra[0] @ isd[0], atol=1e-10)
        assert_allclose(m.calc_state_distribution(lens[0]), isd[1], atol=1e-10)
        assert_allclose(
            m.calc_state_distribution(lens[0] + 1), intra[1] @ isd[1], atol=1e-10
        )

    def test_size_mismatch_raises(self, two_segments) -> None:
        """Test that one initial distribution per segment is required."""
        p0, intra, inter, lens = two_segments
        with pytest.raises(InvalidModel, match="mismatch"):
            StitchedMarkovModel.ordinal(2, intra, [p0], lens)
        with pytest.raises(InvalidModel, match="at least 1"):
            StitchedMarkovModel.ordinal(2, intra, [], lens)

    @pytest.mark.parametrize("bad, message", [
        ([0.3, 0.3], "not normalized"),
        ([1.2, -0.2], "outside bounds"),
        ([np.nan, 1.0], "outside bounds"),
    ])
    def test_invalid_later_distribution_raises(self, bad, message: str) -> None:
        """Test that every segment's initial distribution is validated."""
        intra = [np.eye(2), np.eye(2)]
        with pytest.raises(InvalidModel, match=message):
            StitchedMarkovModel.ordinal(2, intra, [[0.5, 0.5], bad], [1])

    def test_wrong_length_distribution_raises(self) -> None:
        """Test that a distribution of the wrong length raises InvalidModel."""
        intra = [np.eye(2), np.eye(2)]
        with pytest.raises(InvalidModel, match="must have length 2"):
            StitchedMarkovModel.ordinal(2, intra, [[0.2, 0.3, 0.5], [0.5, 0.5]], [1])
        with pytest.raises(InvalidModel, match="must have length 2"):
            StitchedMarkovModel.ordinal(2, intra, [[0.5, 0.5], [1.0]], [1])


class TestDrawNextStateAndPercentile:
    """Tests for percentile-preserving draws."""

    def test_identity_chain_keeps_percentile(self) -> None:
        """Test that an absorbing, non-mixing chain returns u unchanged."""
        m = StitchedMarkovModel(2, [np.eye(2)], [], [1.0, 0.0], [])
        for t in (0, 3, 10):
            for u in (0.0, 0.25, 0.5, 0.999, 1.0):
                state, p = m.draw_next_state_and_percentile(0, t, u)
                assert state == 0
                assert p == u

    def test_percentile_within_state_bracket(self) -> None:
        """Test that the percentile is rescaled into the state's bracket."""
        m = StitchedMarkovModel(2, [np.eye(2)], [], [0.4, 0.6], [])
        state, p = m.draw_next_state_and_percentile(1, 0, 0.5)
        assert state == 1
        assert_allclose(p, 0.7, atol=1e-12)

    def test_next_percentiles_are_uniform(self) -> None:
        """Test that uniform inputs give uniform output percentiles."""
        p0 = np.array([0.4, 0.6])
        intra = np.array([
            [0.9, 0.8],
            [0.1, 0.2]
        ])
        m = StitchedMarkovModel(2, [intra], [], p0, [])
        grid = (np.arange(100) + 0.5) / 100
        states = []
        percentiles = []
        for v in grid:
            k0 = m.draw_initial_state(v)
            for u in grid:
                k1, p = m.draw_next_state_and_percentile(k0, 0, u)
                states.append(k1)
                percentiles.append(p)
        states = np.array(states)
        percentiles = np.array(percentiles)
        p1 = intra @ p0
        assert_allclose(np.mean(states == 0), p1[0], atol=1e-3)
        assert np.all((percentiles >= 0) & (percentiles <= 1))
        counts, _ = np.histogram(percentiles, bins=10, range=(0.0, 1.0))
        assert_allclose(counts / len(percentiles), 0.1, atol=0.025)

    def test_percentile_consistent_with_next_cdf(self) -> None:
        """Test that the returned percentile selects the drawn state again."""
        m = _three_state_model()
        for t in range(10):
            for u in (0.05, 0.33, 0.5, 0.77, 0.95):
                for k in range(3):
                    state, p = m.draw_next_state_and_percentile(k, t, u)
                    assert state == m.draw_next_state(k, t, u)
                    cdf = m.calc_state_cdf(t + 1)
                    lower = cdf[state - 1] if state > 0 else 0.0
                    assert lower - 1e-12 <= p <= cdf[state] + 1e-12
