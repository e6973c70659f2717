from .combinatorial import (
    ArbitrageEvent,
    CombinatorialStrategy,
    EventType,
    GroupState,
    MarketGroup,
)

__all__ = [
    "ArbitrageEvent",
    "CombinatorialStrategy",
    "EventType",
    "GroupState",
    "MarketGroup",
]
