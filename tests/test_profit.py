"""Tests for the guaranteed-profit bound and trade decision rule."""

import pytest

from comboarb.config import ArbitrageConfig
from comboarb.services.optimization.profit import ProfitCalculator


class TestProfitCalculator:
    def setup_method(self):
        self.calc = ProfitCalculator(
            ArbitrageConfig(
                alpha=0.9,
                min_divergence=0.025,
                execution_cost=0.02,
                min_profit_after_costs=0.01,
            )
        )

    def test_guaranteed_profit(self):
        # Divergence 5%, gap 0.5% = 4.5% guaranteed profit
        assert self.calc.compute_guaranteed_profit(0.05, 0.005) == pytest.approx(0.045)

    def test_guaranteed_profit_floored_at_zero(self):
        assert self.calc.compute_guaranteed_profit(0.01, 0.02) == 0.0

    def test_alpha_extraction(self):
        assert self.calc.check_alpha_extraction(0.10, 0.005)
        assert not self.calc.check_alpha_extraction(0.10, 0.05)

    def test_alpha_extraction_non_positive_divergence(self):
        assert self.calc.check_alpha_extraction(0.0, 0.5)
        assert self.calc.check_alpha_extraction(-0.01, 0.5)

    def test_near_arb_free(self):
        assert self.calc.check_near_arb_free(0.01)
        assert not self.calc.check_near_arb_free(0.05)

    def test_trade_approved(self):
        # profit after costs = 0.076 - 0.02 = 0.056 > 0.01
        decision = self.calc.should_trade(0.08, 0.004, 0.02)
        assert decision.should_trade
        assert decision.reason.startswith("Trade approved")
        assert decision.guaranteed_profit == pytest.approx(0.076)
        assert decision.profit_after_costs == pytest.approx(0.056)
        assert decision.capture_ratio == pytest.approx(0.05)

    def test_near_arbitrage_free_rejected(self):
        decision = self.calc.should_trade(0.02, 0.001, 0.01)
        assert not decision.should_trade
        assert "Near arbitrage-free" in decision.reason

    def test_alpha_threshold_rejected(self):
        decision = self.calc.should_trade(0.10, 0.05, 0.01)
        assert not decision.should_trade
        assert "Alpha threshold not met" in decision.reason

    def test_insufficient_profit_rejected(self):
        # Profit = 0.029, cost = 0.025, net = 0.004 < 0.01
        decision = self.calc.should_trade(0.03, 0.001, 0.025)
        assert not decision.should_trade
        assert "Insufficient profit after costs" in decision.reason
        assert decision.profit_after_costs == pytest.approx(0.004)

    def test_checks_short_circuit_in_order(self):
        """A near-arb-free market is rejected for that reason even if alpha also fails."""
        decision = self.calc.should_trade(0.01, 0.009, 0.0)
        assert "Near arbitrage-free" in decision.reason

    def test_default_config(self):
        assert ProfitCalculator().config.alpha == 0.9
