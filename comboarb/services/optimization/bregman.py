"""
LMSR cost function and its Bregman divergence.

For the Logarithmic Market Scoring Rule with liquidity b:

    C(θ) = b · log Σ exp(θ_i / b)          (market maker cost)
    ∇C(θ) = softmax(θ / b)                 (instantaneous prices p)

The Bregman divergence induced by C is the KL divergence between a candidate
marginal μ and the market-implied prices:

    D(μ||θ) = Σ μ_i · log(μ_i / p_i)

Key insight:
- The maximum guaranteed profit from any trade equals D(μ*||θ), where μ* is
  the projection of θ onto the arbitrage-free marginal polytope
- ∇_μ D = log μ - log p gives the trading direction
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

# Floor for probabilities inside logs and divisions
EPSILON = 1e-10


def log_sum_exp(x: np.ndarray) -> float:
    """Numerically stable log Σ exp(x_i)"""
    x = np.asarray(x, dtype=float)
    if x.size == 0:
        return -np.inf
    x_max = np.max(x)
    if not np.isfinite(x_max):
        return float(x_max)
    return float(x_max + np.log(np.sum(np.exp(x - x_max))))


def softmax(x: np.ndarray) -> np.ndarray:
    x = np.asarray(x, dtype=float)
    exps = np.exp(x - np.max(x))
    return exps / np.sum(exps)


def lmsr_cost(theta: np.ndarray, liquidity_param: float) -> float:
    """C(θ) = b · log Σ exp(θ_i / b)"""
    return liquidity_param * log_sum_exp(np.asarray(theta, dtype=float) / liquidity_param)


def lmsr_gradient(theta: np.ndarray, liquidity_param: float) -> np.ndarray:
    """∇C(θ) = softmax(θ / b), the price vector implied by θ"""
    return softmax(np.asarray(theta, dtype=float) / liquidity_param)


def bregman_divergence(mu: np.ndarray, theta: np.ndarray, liquidity_param: float) -> float:
    """
    D(μ||θ) = Σ μ_i · log(μ_i / p_i) with p = softmax(θ / b).

    Coordinates with μ_i at or below the floor contribute nothing
    (μ log μ → 0); prices are floored before division.
    """
    mu = np.asarray(mu, dtype=float)
    p = np.maximum(lmsr_gradient(theta, liquidity_param), EPSILON)
    active = mu > EPSILON
    return float(np.sum(mu[active] * np.log(mu[active] / p[active])))


def divergence_gradient(mu: np.ndarray, theta: np.ndarray, liquidity_param: float) -> np.ndarray:
    """∇_μ D(μ||θ) = log μ - log p (the constant +1 drops out of every FW step)"""
    p = lmsr_gradient(theta, liquidity_param)
    return np.log(np.maximum(np.asarray(mu, dtype=float), EPSILON)) - np.log(np.maximum(p, EPSILON))


def prices_to_theta(prices: np.ndarray, liquidity_param: float = 100.0) -> np.ndarray:
    """θ_i = b · log p_i (any additive constant cancels in the softmax)"""
    return liquidity_param * np.log(np.maximum(np.asarray(prices, dtype=float), EPSILON))


def theta_to_prices(theta: np.ndarray, liquidity_param: float = 100.0) -> np.ndarray:
    return lmsr_gradient(theta, liquidity_param)


def compute_price_sum(prices: np.ndarray) -> float:
    return float(np.sum(prices))


def compute_mispricing(prices: np.ndarray) -> float:
    """|Σp - 1|, the naive deviation from an arbitrage-free price vector"""
    return abs(compute_price_sum(prices) - 1.0)


@dataclass
class MarketState:
    """LMSR view of a market group: θ, b and the implied prices."""

    theta: np.ndarray
    liquidity_param: float

    @property
    def prices(self) -> np.ndarray:
        return theta_to_prices(self.theta, self.liquidity_param)

    @property
    def cost(self) -> float:
        return lmsr_cost(self.theta, self.liquidity_param)

    def divergence(self, mu: np.ndarray) -> float:
        return bregman_divergence(mu, self.theta, self.liquidity_param)

    @classmethod
    def from_prices(cls, prices: np.ndarray, liquidity_param: Optional[float] = None) -> "MarketState":
        b = 100.0 if liquidity_param is None else liquidity_param
        if b <= 0:
            raise ValueError(f"liquidity_param must be positive, got {b}")
        return cls(theta=prices_to_theta(prices, b), liquidity_param=b)
