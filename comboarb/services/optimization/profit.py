"""
Profit guarantees and the trade/no-trade decision.

Profit >= D(μ̂||θ) - g(μ̂): after Frank-Wolfe stops at μ̂ with gap g, at least
the divergence minus the gap is extractable risk-free.
"""

from dataclasses import dataclass
from typing import Optional

from comboarb.config import ArbitrageConfig


@dataclass
class TradeDecision:
    should_trade: bool
    reason: str
    guaranteed_profit: float = 0.0
    profit_after_costs: float = 0.0
    # gap / divergence; α-extraction requires this <= 1 - alpha
    capture_ratio: Optional[float] = None


class ProfitCalculator:
    """Apply near-arb-free, α-extraction and net-profit checks in order."""

    def __init__(self, config: Optional[ArbitrageConfig] = None):
        self.config = config or ArbitrageConfig()

    def compute_guaranteed_profit(self, divergence: float, gap: float) -> float:
        return max(0.0, divergence - gap)

    def check_near_arb_free(self, divergence: float) -> bool:
        return divergence < self.config.min_divergence

    def check_alpha_extraction(self, divergence: float, gap: float) -> bool:
        if divergence <= 0:
            return True
        return gap / divergence <= (1 - self.config.alpha)

    def should_trade(self, divergence: float, gap: float, execution_cost: float) -> TradeDecision:
        cfg = self.config
        ratio = gap / divergence if divergence > 0 else None

        if self.check_near_arb_free(divergence):
            return TradeDecision(
                should_trade=False,
                reason=(
                    f"Near arbitrage-free: divergence {divergence * 100:.2f}% "
                    f"< threshold {cfg.min_divergence * 100:.2f}%"
                ),
                capture_ratio=ratio,
            )

        if not self.check_alpha_extraction(divergence, gap):
            return TradeDecision(
                should_trade=False,
                reason=(
                    f"Alpha threshold not met: gap/divergence = {ratio * 100:.2f}% "
                    f"> {(1 - cfg.alpha) * 100:.2f}%"
                ),
                capture_ratio=ratio,
            )

        guaranteed = self.compute_guaranteed_profit(divergence, gap)
        after_costs = guaranteed - execution_cost

        if after_costs < cfg.min_profit_after_costs:
            return TradeDecision(
                should_trade=False,
                reason=(
                    f"Insufficient profit after costs: {after_costs * 100:.2f}% "
                    f"< {cfg.min_profit_after_costs * 100:.2f}%"
                ),
                guaranteed_profit=guaranteed,
                profit_after_costs=after_costs,
                capture_ratio=ratio,
            )

        return TradeDecision(
            should_trade=True,
            reason=(
                f"Trade approved: guaranteed profit {guaranteed * 100:.2f}%, "
                f"after costs {after_costs * 100:.2f}%"
            ),
            guaranteed_profit=guaranteed,
            profit_after_costs=after_costs,
            capture_ratio=ratio,
        )
