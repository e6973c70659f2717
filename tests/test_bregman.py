"""Tests for LMSR utilities and the Bregman divergence."""

import numpy as np
import pytest

from comboarb.services.optimization.bregman import (
    MarketState,
    bregman_divergence,
    compute_mispricing,
    compute_price_sum,
    divergence_gradient,
    lmsr_cost,
    lmsr_gradient,
    log_sum_exp,
    prices_to_theta,
    softmax,
    theta_to_prices,
)


class TestNumerics:
    def test_log_sum_exp_stable_for_large_inputs(self):
        x = np.array([1000.0, 1000.0])
        assert log_sum_exp(x) == pytest.approx(1000.0 + np.log(2))

    def test_log_sum_exp_empty(self):
        assert log_sum_exp(np.array([])) == -np.inf

    def test_softmax_sums_to_one(self):
        p = softmax(np.array([1.0, 2.0, 3.0]))
        assert p.sum() == pytest.approx(1.0)
        assert np.all(np.diff(p) > 0)

    def test_softmax_shift_invariant(self):
        x = np.array([0.3, -1.2, 2.0])
        np.testing.assert_allclose(softmax(x), softmax(x + 500.0))


class TestLMSR:
    def test_cost_of_uniform_theta(self):
        """C(0) = b log n"""
        assert lmsr_cost(np.zeros(4), 100.0) == pytest.approx(100.0 * np.log(4))

    def test_gradient_is_price_vector(self):
        theta = np.array([10.0, -5.0])
        p = lmsr_gradient(theta, 100.0)
        assert p.sum() == pytest.approx(1.0)
        assert p[0] > p[1]

    @pytest.mark.parametrize("yes", [0.05, 0.2, 0.5, 0.73, 0.95])
    def test_theta_round_trip(self, yes):
        prices = np.array([yes, 1 - yes])
        recovered = theta_to_prices(prices_to_theta(prices, 100.0), 100.0)
        np.testing.assert_allclose(recovered, prices, atol=0.01)

    def test_prices_to_theta_floors_zero(self):
        theta = prices_to_theta(np.array([0.0, 1.0]), 100.0)
        assert np.all(np.isfinite(theta))

    def test_unnormalized_prices_are_renormalized(self):
        theta = prices_to_theta(np.array([0.55, 0.55]))
        np.testing.assert_allclose(theta_to_prices(theta), [0.5, 0.5])


class TestMispricing:
    def test_price_sum(self):
        assert compute_price_sum(np.array([0.2, 0.3, 0.4])) == pytest.approx(0.9)

    def test_fair_prices_have_no_mispricing(self):
        assert compute_mispricing(np.array([0.4, 0.6])) == pytest.approx(0.0)

    def test_overpriced_pair(self):
        assert compute_mispricing(np.array([0.55, 0.55])) == pytest.approx(0.10)

    def test_underpriced_pair(self):
        assert compute_mispricing(np.array([0.45, 0.45])) == pytest.approx(0.10)


class TestBregmanDivergence:
    def test_zero_at_market_prices(self):
        prices = np.array([0.6, 0.4])
        theta = prices_to_theta(prices)
        assert bregman_divergence(prices, theta, 100.0) == pytest.approx(0.0, abs=1e-12)

    def test_known_value(self):
        theta = prices_to_theta(np.array([0.5, 0.5]))
        mu = np.array([0.6, 0.4])
        expected = 0.6 * np.log(0.6 / 0.5) + 0.4 * np.log(0.4 / 0.5)
        assert bregman_divergence(mu, theta, 100.0) == pytest.approx(expected)

    def test_non_negative_on_simplex(self):
        rng = np.random.RandomState(42)
        for _ in range(50):
            mu = rng.dirichlet(np.ones(4))
            theta = prices_to_theta(rng.dirichlet(np.ones(4)))
            assert bregman_divergence(mu, theta, 100.0) >= -1e-12

    def test_finite_at_extremes(self):
        theta = prices_to_theta(np.array([1e-15, 1.0]))
        assert np.isfinite(bregman_divergence(np.array([0.999, 0.001]), theta, 100.0))
        assert np.isfinite(bregman_divergence(np.array([0.0, 1.0]), theta, 100.0))

    def test_gradient_matches_finite_difference(self):
        theta = prices_to_theta(np.array([0.3, 0.7]))
        mu = np.array([0.45, 0.5])
        grad = divergence_gradient(mu, theta, 100.0)
        h = 1e-6
        for i in range(2):
            bump = np.zeros(2)
            bump[i] = h
            numeric = (
                bregman_divergence(mu + bump, theta, 100.0)
                - bregman_divergence(mu - bump, theta, 100.0)
            ) / (2 * h)
            # d/dμ_i [μ_i log(μ_i / p_i)] = log(μ_i / p_i) + 1
            assert numeric == pytest.approx(grad[i] + 1.0, rel=1e-4)


class TestMarketState:
    def test_from_prices(self):
        state = MarketState.from_prices(np.array([0.25, 0.75]), liquidity_param=50.0)
        assert state.liquidity_param == 50.0
        np.testing.assert_allclose(state.prices, [0.25, 0.75])
        assert state.divergence(np.array([0.25, 0.75])) == pytest.approx(0.0, abs=1e-12)

    def test_default_liquidity(self):
        assert MarketState.from_prices(np.array([0.5, 0.5])).liquidity_param == 100.0

    def test_rejects_non_positive_liquidity(self):
        with pytest.raises(ValueError):
            MarketState.from_prices(np.array([0.5, 0.5]), liquidity_param=0.0)

    def test_cost_matches_lmsr_cost(self):
        state = MarketState.from_prices(np.array([0.5, 0.5]))
        assert state.cost == pytest.approx(lmsr_cost(state.theta, 100.0))
