from .market import Market
from .opportunity import (
    ArbitrageOpportunity,
    ArbitrageTrade,
    PriceTick,
    TradeSide,
)

__all__ = [
    "Market",
    "ArbitrageOpportunity",
    "ArbitrageTrade",
    "PriceTick",
    "TradeSide",
]
