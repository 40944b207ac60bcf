"""
Tests for 3PL ability estimation (MLE with EAP fallback).

Tests cover:
- 3PL response probability and item information
- Edge cases: 0 responses, all correct, all incorrect
- Method selection: MLE for mixed patterns, EAP when MLE has no interior maximum
- Recovery of a known theta from simulated responses
- SE behavior: decreases with more items
- Theta bounds and numerical stability with extreme parameters
- Validation: rejects invalid item parameters
"""

import math
from types import SimpleNamespace

import numpy as np
import pytest

from app.core.cat.ability_estimation import (
    METHOD_EAP,
    METHOD_MLE,
    METHOD_PRIOR,
    MIN_SE,
    THETA_BOUND,
    estimate_ability,
    estimate_ability_eap,
    estimate_ability_mle,
    item_information_3pl,
    log_likelihood,
    probability_3pl,
    responses_to_tuples,
    standard_error,
    total_information,
)
from app.core.cat.errors import EstimationError


def _simulate(true_theta: float, difficulties, a: float = 1.2, seed: int = 7):
    """Responses drawn from the 3PL model (c = 0) at ``true_theta``."""
    rng = np.random.default_rng(seed)
    return [
        (a, b, 0.0, bool(rng.random() < probability_3pl(true_theta, a, b)))
        for b in difficulties
    ]


class TestProbability3PL:
    """Tests for probability_3pl()."""

    def test_half_at_difficulty_without_guessing(self):
        assert probability_3pl(0.5, 1.3, 0.5) == pytest.approx(0.5)

    def test_guessing_raises_floor(self):
        # P = c + (1 - c) * 0.5 at theta = b
        assert probability_3pl(0.0, 1.0, 0.0, 0.2) == pytest.approx(0.6)

    def test_lower_asymptote_is_guessing(self):
        assert probability_3pl(-1000.0, 1.0, 0.0, 0.25) == pytest.approx(0.25)

    def test_extreme_logits_do_not_overflow(self):
        assert probability_3pl(1000.0, 2.0, 0.0) == pytest.approx(1.0)
        assert probability_3pl(-1000.0, 2.0, 0.0) == pytest.approx(0.0)

    def test_monotone_in_theta(self):
        thetas = np.linspace(-4, 4, 41)
        probs = [probability_3pl(t, 1.5, 0.3, 0.1) for t in thetas]
        assert all(p1 < p2 for p1, p2 in zip(probs, probs[1:]))


class TestItemInformation:
    """Tests for item_information_3pl()."""

    def test_reduces_to_2pl_without_guessing(self):
        # a^2 * P * Q = 1.5^2 * 0.25 at theta = b
        assert item_information_3pl(0.0, 1.5, 0.0) == pytest.approx(0.5625)

    def test_guessing_lowers_information(self):
        assert item_information_3pl(0.0, 1.5, 0.0, 0.2) < item_information_3pl(
            0.0, 1.5, 0.0, 0.0
        )

    def test_peaks_near_difficulty(self):
        thetas = np.linspace(-3, 3, 61)
        info = [item_information_3pl(t, 1.0, 1.0) for t in thetas]
        assert thetas[int(np.argmax(info))] == pytest.approx(1.0, abs=0.11)

    def test_non_negative_far_from_difficulty(self):
        assert item_information_3pl(50.0, 2.0, -3.0, 0.2) >= 0.0
        assert item_information_3pl(-50.0, 2.0, 3.0, 0.2) >= 0.0

    @pytest.mark.parametrize("a", [0.0, -1.0])
    def test_rejects_non_positive_discrimination(self, a):
        with pytest.raises(ValueError, match="Discrimination"):
            item_information_3pl(0.0, a, 0.0)

    @pytest.mark.parametrize("c", [-0.1, 1.0])
    def test_rejects_guessing_out_of_range(self, c):
        with pytest.raises(ValueError, match="Guessing"):
            item_information_3pl(0.0, 1.0, 0.0, c)


class TestEdgeCases:
    """Tests for edge cases in estimate_ability()."""

    def test_no_responses_returns_prior(self):
        estimate = estimate_ability([], prior_mean=0.0, prior_sd=1.0)
        assert estimate.theta == pytest.approx(0.0)
        assert estimate.se == pytest.approx(1.0)
        assert estimate.method == METHOD_PRIOR

    def test_no_responses_custom_prior(self):
        estimate = estimate_ability([], prior_mean=0.5, prior_sd=0.8)
        assert estimate.theta == pytest.approx(0.5)
        assert estimate.se == pytest.approx(0.8)

    def test_all_correct_is_finite_and_positive(self):
        responses = [(1.2, b, 0.0, True) for b in np.linspace(-1, 2, 20)]
        estimate = estimate_ability(responses)
        assert math.isfinite(estimate.theta)
        assert 0.0 < estimate.theta <= THETA_BOUND
        assert estimate.method == METHOD_EAP

    def test_all_incorrect_is_finite_and_negative(self):
        responses = [(1.2, b, 0.0, False) for b in np.linspace(-2, 1, 20)]
        estimate = estimate_ability(responses)
        assert math.isfinite(estimate.theta)
        assert -THETA_BOUND <= estimate.theta < 0.0
        assert estimate.method == METHOD_EAP

    def test_all_correct_on_easy_items_stays_bounded(self):
        responses = [(2.5, -3.0, 0.0, True) for _ in range(100)]
        estimate = estimate_ability(responses)
        assert -THETA_BOUND <= estimate.theta <= THETA_BOUND
        assert estimate.se > 0.0

    def test_single_correct_response_moves_above_prior(self):
        estimate = estimate_ability([(1.0, 0.0, 0.0, True)])
        assert estimate.theta > 0.0

    def test_single_incorrect_response_moves_below_prior(self):
        estimate = estimate_ability([(1.0, 0.0, 0.0, False)])
        assert estimate.theta < 0.0


class TestMethodSelection:
    """Tests for the MLE / EAP hybrid."""

    def test_mixed_pattern_uses_mle(self):
        responses = [
            (1.5, -1.0, 0.0, True),
            (1.5, 0.0, 0.0, True),
            (1.5, 1.0, 0.0, False),
        ]
        estimate = estimate_ability(responses)
        assert estimate.method == METHOD_MLE
        assert estimate.theta == pytest.approx(
            estimate_ability_mle(responses, theta_start=0.0), abs=1e-3
        )

    def test_mle_maximizes_likelihood(self):
        responses = _simulate(0.5, np.linspace(-2, 2, 30))
        theta = estimate_ability_mle(responses)
        assert theta is not None
        assert log_likelihood(theta, responses) >= log_likelihood(
            theta + 0.05, responses
        )
        assert log_likelihood(theta, responses) >= log_likelihood(
            theta - 0.05, responses
        )

    def test_mle_returns_none_without_interior_maximum(self):
        responses = [(1.0, 0.0, 0.0, True) for _ in range(10)]
        assert estimate_ability_mle(responses) is None

    def test_mle_returns_none_for_empty(self):
        assert estimate_ability_mle([]) is None


class TestRecovery:
    """Tests that estimates recover a known ability."""

    @pytest.mark.parametrize("true_theta", [-1.5, 0.0, 1.0, 2.0])
    def test_recovers_true_theta(self, true_theta):
        responses = _simulate(true_theta, np.linspace(-3, 3, 300), seed=11)
        estimate = estimate_ability(responses)
        assert estimate.theta == pytest.approx(true_theta, abs=0.5)

    def test_se_decreases_with_more_items(self):
        responses = _simulate(0.0, np.linspace(-1, 1, 60))
        se_short = estimate_ability(responses[:10]).se
        se_long = estimate_ability(responses).se
        assert se_long < se_short

    def test_se_matches_test_information(self):
        responses = _simulate(0.0, np.linspace(-1, 1, 40))
        estimate = estimate_ability(responses)
        expected = 1.0 / math.sqrt(total_information(estimate.theta, responses))
        assert estimate.se == pytest.approx(expected)


class TestBoundsProperty:
    """Theta stays in bounds and SE stays positive for any pattern."""

    def test_random_patterns(self):
        rng = np.random.default_rng(2024)
        for _ in range(50):
            n = int(rng.integers(1, 40))
            responses = [
                (
                    float(rng.uniform(0.5, 2.5)),
                    float(rng.uniform(-3, 3)),
                    float(rng.uniform(0.0, 0.25)),
                    bool(rng.random() < 0.5),
                )
                for _ in range(n)
            ]
            estimate = estimate_ability(responses)
            assert -THETA_BOUND <= estimate.theta <= THETA_BOUND
            assert estimate.se >= MIN_SE
            assert math.isfinite(estimate.se)

    def test_custom_bound_is_respected(self):
        responses = [(2.0, 1.5, 0.0, True) for _ in range(50)]
        estimate = estimate_ability(responses, theta_bound=2.0)
        assert estimate.theta <= 2.0


class TestEAP:
    """Tests for estimate_ability_eap()."""

    def test_no_responses_returns_prior(self):
        assert estimate_ability_eap([], prior_mean=0.3, prior_sd=0.7) == (0.3, 0.7)

    def test_posterior_sd_shrinks_with_items(self):
        _, sd_one = estimate_ability_eap([(1.0, 0.0, 0.0, True)])
        _, sd_many = estimate_ability_eap(_simulate(0.0, np.linspace(-1, 1, 30)))
        assert sd_many < sd_one < 1.0


class TestValidation:
    """Tests for parameter validation."""

    def test_rejects_non_positive_discrimination(self):
        with pytest.raises(ValueError, match="Discrimination"):
            estimate_ability([(0.0, 0.0, 0.0, True)])

    def test_rejects_guessing_out_of_range(self):
        with pytest.raises(ValueError, match="Guessing"):
            estimate_ability([(1.0, 0.0, 1.2, True)])

    def test_non_finite_parameters_raise_estimation_error(self):
        with pytest.raises(EstimationError):
            estimate_ability([(1.0, float("nan"), 0.0, True)])


class TestHelpers:
    """Tests for standard_error() and responses_to_tuples()."""

    def test_standard_error_without_information_is_prior_sd(self):
        assert standard_error(0.0, [], prior_sd=0.9) == pytest.approx(0.9)

    def test_responses_to_tuples(self):
        records = [
            SimpleNamespace(
                discrimination=1.1, difficulty=-0.2, guessing=0.1, is_correct=True
            ),
            SimpleNamespace(
                discrimination=0.9, difficulty=0.4, guessing=0.0, is_correct=False
            ),
        ]
        assert responses_to_tuples(records) == [
            (1.1, -0.2, 0.1, True),
            (0.9, 0.4, 0.0, False),
        ]
