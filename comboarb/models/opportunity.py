import hashlib

from pydantic import BaseModel, Field
from datetime import datetime, timezone
from enum import Enum


class TradeSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class PriceTick(BaseModel):
    """A single price observation from the feed collaborator"""

    instrument_id: str
    price: float = Field(gt=0.0, lt=1.0)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ArbitrageTrade(BaseModel):
    """One leg of a recommended arbitrage bundle"""

    market_id: str
    instrument_id: str
    side: TradeSide
    quantity: float = Field(ge=0.0)
    price: float


class ArbitrageOpportunity(BaseModel):
    """Result of analysing one market group.

    ``guaranteed_profit`` is the Frank-Wolfe lower bound D(μ̂||θ) - g(μ̂),
    floored at zero.
    """

    id: str = ""
    group_id: str
    market_ids: list[str]

    # Optimizer output
    mu_optimal: list[float]
    divergence: float
    gap: float
    guaranteed_profit: float = Field(ge=0.0)
    iterations: int = 0
    converged: bool = False

    # Naive |Σp - 1| pre-screen, reported alongside the divergence
    mispricing: float = 0.0

    trades: list[ArbitrageTrade] = []

    # Decision
    should_trade: bool
    reason: str

    detected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def __init__(self, **data):
        super().__init__(**data)
        if not self.id:
            fingerprint = "|".join(sorted(self.market_ids))
            market_hash = hashlib.sha256(fingerprint.encode()).hexdigest()[:16]
            self.id = f"{self.group_id}_{market_hash}_{int(self.detected_at.timestamp())}"

    @property
    def total_notional(self) -> float:
        return sum(t.quantity * t.price for t in self.trades)
