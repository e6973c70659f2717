"""
Combinatorial Arbitrage Strategy

Detects risk-free opportunities across groups of logically linked binary
securities using Barrier Frank-Wolfe projection onto the marginal polytope.

Key insight: markets that look independent may have logical dependencies.
"Trump wins PA" implies "Republican wins PA"; when prices violate the
implied constraints, the Bregman divergence between the market prices and
their projection onto the arbitrage-free polytope is extractable profit.

For each registered group this strategy:
1. Builds the constraint graph once at registration
2. Runs InitFW on the first analysis and caches the vertex set once a run
   completes without a solver timeout
3. Runs Barrier Frank-Wolfe on every price update
4. Applies the profit decision rule and emits trades for mispriced legs
"""

from __future__ import annotations

import asyncio
import hashlib
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Optional

import numpy as np

from comboarb.config import ArbitrageConfig, settings
from comboarb.models import ArbitrageOpportunity, ArbitrageTrade, Market, PriceTick, TradeSide
from comboarb.services.optimization import (
    BarrierFrankWolfe,
    ConstraintGraph,
    InitFW,
    InitFWResult,
    ProfitCalculator,
    SolverBackend,
    compute_mispricing,
    create_solver,
    prices_to_theta,
)
from comboarb.utils.logger import get_logger

logger = get_logger(__name__)

# Price assumed for a security that has not ticked yet
DEFAULT_PRICE = 0.5

# Hex digits of the sha256 fingerprint used in correlated group ids
GROUP_ID_HASH_LENGTH = 16


class GroupState(str, Enum):
    UNINITIALIZED = "uninitialized"  # InitFW not run yet (or timed out)
    READY = "ready"
    ANALYZING = "analyzing"
    UNANALYZABLE = "unanalyzable"  # No feasible vertex; skipped until reset


class EventType(str, Enum):
    ANALYSIS_COMPLETE = "analysis_complete"
    OPPORTUNITY_DETECTED = "opportunity_detected"
    GROUP_UNANALYZABLE = "group_unanalyzable"
    ERROR = "error"


@dataclass
class ArbitrageEvent:
    type: EventType
    group_id: str
    opportunity: Optional[ArbitrageOpportunity] = None
    mispricing: Optional[float] = None
    error: Optional[BaseException] = None
    context: str = ""


EventHandler = Callable[[ArbitrageEvent], Any]


@dataclass
class MarketGroup:
    """A constraint graph plus the security <-> instrument mapping for it."""

    id: str
    markets: list[Market]
    graph: ConstraintGraph
    token_to_index: dict[str, int]
    prices: dict[str, float] = field(default_factory=dict)
    state: GroupState = GroupState.UNINITIALIZED
    init_result: Optional[InitFWResult] = None
    last_opportunity: Optional[ArbitrageOpportunity] = None
    analysis_count: int = 0
    dropped_ticks: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        self.index_to_token = {idx: token for token, idx in self.token_to_index.items()}
        self.token_to_market = {
            token: market for market in self.markets for token in market.token_ids
        }

    @property
    def dimension(self) -> int:
        return self.graph.dimension

    @property
    def market_ids(self) -> list[str]:
        return [m.condition_id for m in self.markets]

    def price_vector(self) -> np.ndarray:
        snapshot = dict(self.prices)
        prices = np.full(self.dimension, DEFAULT_PRICE)
        for token, idx in self.token_to_index.items():
            if token in snapshot:
                prices[idx] = snapshot[token]
        return prices


class CombinatorialStrategy:
    """
    Registers market groups, ingests price ticks and emits opportunities.

    Analyses of different groups are independent and may run concurrently
    (``handle_price_tick`` / ``analyze_all_async`` use worker threads). At
    most one analysis runs per group; a tick arriving while its group is
    being analysed is dropped.

    Event handlers may be invoked from worker threads.
    """

    def __init__(
        self,
        config: Optional[ArbitrageConfig] = None,
        solver: Optional[SolverBackend] = None,
    ):
        self._config = config or ArbitrageConfig()
        self._custom_solver = solver is not None
        self._solver = solver or create_solver(
            self._config.solver_timeout_seconds, self._config.solver_backend
        )
        self._build_pipeline()

        self._groups: dict[str, MarketGroup] = {}
        self._handlers: list[EventHandler] = []

        self._stats_lock = threading.Lock()
        self._stats = {
            "ticks_processed": 0,
            "analyses_run": 0,
            "opportunities_detected": 0,
            "dropped_ticks": 0,
            "errors": 0,
        }
        self._last_analysis_at: Optional[datetime] = None

        self._running = False
        self._loop_task: Optional[asyncio.Task] = None

    def _build_pipeline(self) -> None:
        self._init_fw = InitFW(self._solver)
        self._barrier_fw = BarrierFrankWolfe(self._solver, self._config)
        self._profit_calc = ProfitCalculator(self._config)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on_event(self, handler: EventHandler) -> Callable[[], None]:
        """Subscribe to strategy events. Returns an unsubscribe callable."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def _emit(self, event: ArbitrageEvent) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Event handler error",
                    event_type=event.type.value,
                    group_id=event.group_id,
                )

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add_market_group(
        self,
        group_id: str,
        markets: list[Market],
        graph: ConstraintGraph,
        token_to_index: dict[str, int],
    ) -> MarketGroup:
        for token, idx in token_to_index.items():
            if not 0 <= idx < graph.dimension:
                raise IndexError(
                    f"Token {token} maps to index {idx}, outside dimension {graph.dimension}"
                )
        if len(set(token_to_index.values())) != len(token_to_index):
            raise ValueError(f"Group {group_id} maps several tokens to the same index")

        if group_id in self._groups:
            logger.info("Replacing market group", group_id=group_id)

        group = MarketGroup(
            id=group_id,
            markets=list(markets),
            graph=graph,
            token_to_index=dict(token_to_index),
        )
        self._groups[group_id] = group
        logger.info(
            "Added market group",
            group_id=group_id,
            dimension=graph.dimension,
            constraints=len(graph.constraints),
            markets=len(group.markets),
        )
        return group

    def add_binary_market(self, market: Market) -> MarketGroup:
        """YES + NO = 1"""
        if not market.is_binary:
            raise ValueError(
                f"Market {market.condition_id} has {len(market.token_ids)} outcomes; "
                "use add_multi_outcome_market"
            )
        graph = ConstraintGraph(2)
        graph.add_exactly_one_constraint([0, 1])
        return self.add_market_group(
            f"binary_{market.condition_id}",
            [market],
            graph,
            {market.yes_token_id: 0, market.no_token_id: 1},
        )

    def add_multi_outcome_market(self, market: Market) -> MarketGroup:
        """Exactly one of the market's outcomes resolves YES."""
        graph = ConstraintGraph(len(market.token_ids))
        graph.add_exactly_one_constraint(range(len(market.token_ids)))
        return self.add_market_group(
            f"multi_{market.condition_id}",
            [market],
            graph,
            {token: i for i, token in enumerate(market.token_ids)},
        )

    def add_correlated_markets(
        self,
        markets: list[Market],
        implications: Iterable[tuple[str, str]],
        exclusions: Iterable[Iterable[str]] = (),
    ) -> MarketGroup:
        """
        Binary markets linked by cross-market logic.

        Args:
            markets: Binary markets; each contributes a YES/NO security pair
            implications: (from_token, to_token) edges, "from resolves YES
                implies to resolves YES"
            exclusions: Token sets of which at most one can resolve YES
        """
        if not markets:
            raise ValueError("add_correlated_markets needs at least one market")

        graph = ConstraintGraph(len(markets) * 2)
        token_to_index: dict[str, int] = {}

        for i, market in enumerate(markets):
            if not market.is_binary:
                raise ValueError(f"Market {market.condition_id} is not binary")
            yes_idx, no_idx = 2 * i, 2 * i + 1
            token_to_index[market.yes_token_id] = yes_idx
            token_to_index[market.no_token_id] = no_idx
            graph.add_exactly_one_constraint([yes_idx, no_idx])

        def resolve(token: str) -> int:
            if token not in token_to_index:
                raise ValueError(f"Unknown token in constraint: {token}")
            return token_to_index[token]

        for from_token, to_token in implications:
            graph.add_implication_constraint(resolve(from_token), resolve(to_token))

        for tokens in exclusions:
            graph.add_mutex_constraint([resolve(t) for t in tokens])

        # Market order fixes the index layout, so it is part of the fingerprint
        fingerprint = "|".join(m.condition_id for m in markets)
        digest = hashlib.sha256(fingerprint.encode()).hexdigest()[:GROUP_ID_HASH_LENGTH]
        return self.add_market_group(f"correlated_{digest}", markets, graph, token_to_index)

    def remove_group(self, group_id: str) -> bool:
        removed = self._groups.pop(group_id, None)
        if removed is not None:
            logger.info("Removed market group", group_id=group_id)
        return removed is not None

    def reset_group(self, group_id: str) -> None:
        """Drop the cached InitFW result so the next tick re-initializes."""
        group = self._groups[group_id]
        group.init_result = None
        group.state = GroupState.UNINITIALIZED

    # ------------------------------------------------------------------
    # Price ingestion
    # ------------------------------------------------------------------

    def update_price(self, instrument_id: str, price: float) -> list[MarketGroup]:
        """Record a price in every group that trades ``instrument_id``."""
        if not 0.0 < price < 1.0:
            raise ValueError(f"Price for {instrument_id} must be in (0, 1), got {price}")
        affected = []
        for group in list(self._groups.values()):
            if instrument_id in group.token_to_index:
                group.prices[instrument_id] = price
                affected.append(group)
        return affected

    def process_price_tick(self, tick: PriceTick) -> list[ArbitrageOpportunity]:
        """Apply a tick and synchronously analyse every affected group."""
        groups = self.update_price(tick.instrument_id, tick.price)
        self._bump("ticks_processed")
        results = [self._run_group(group) for group in groups]
        return [opp for opp in results if opp is not None]

    async def handle_price_tick(self, tick: PriceTick) -> list[ArbitrageOpportunity]:
        """Apply a tick and analyse affected groups concurrently."""
        groups = self.update_price(tick.instrument_id, tick.price)
        self._bump("ticks_processed")
        results = await asyncio.gather(
            *(asyncio.to_thread(self._run_group, group) for group in groups)
        )
        return [opp for opp in results if opp is not None]

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze_all(self) -> list[ArbitrageOpportunity]:
        results = [self._run_group(group) for group in list(self._groups.values())]
        return [opp for opp in results if opp is not None]

    async def analyze_all_async(self) -> list[ArbitrageOpportunity]:
        results = await asyncio.gather(
            *(asyncio.to_thread(self._run_group, group) for group in list(self._groups.values()))
        )
        return [opp for opp in results if opp is not None]

    def _run_group(self, group: MarketGroup) -> Optional[ArbitrageOpportunity]:
        if group.state == GroupState.UNANALYZABLE:
            return None

        if not group.lock.acquire(blocking=False):
            group.dropped_ticks += 1
            self._bump("dropped_ticks")
            logger.debug("Analysis in flight, dropping tick", group_id=group.id)
            return None

        try:
            return self._analyze_group(group)
        except Exception as e:
            self._bump("errors")
            logger.exception("Group analysis failed", group_id=group.id)
            self._emit(
                ArbitrageEvent(
                    type=EventType.ERROR,
                    group_id=group.id,
                    error=e,
                    context=f"Analyzing group {group.id}",
                )
            )
            return None
        finally:
            group.lock.release()

    def _initialize_group(self, group: MarketGroup) -> Optional[InitFWResult]:
        log = logger.with_context(group_id=group.id)
        init = self._init_fw.initialize(group.dimension, group.graph)

        if init.num_vertices == 0:
            if init.timed_out:
                log.warning("InitFW timed out without vertices; retrying next tick")
                return None
            group.state = GroupState.UNANALYZABLE
            log.warning("No feasible outcome for group; marking unanalyzable")
            self._emit(ArbitrageEvent(type=EventType.GROUP_UNANALYZABLE, group_id=group.id))
            return None

        if init.timed_out:
            # Vertices found so far are valid; use them this tick only
            log.warning(
                "InitFW timed out; re-initializing next tick",
                num_vertices=init.num_vertices,
            )
            return init

        group.init_result = init
        group.state = GroupState.READY
        log.info(
            "Group initialized",
            num_vertices=init.num_vertices,
            settled=len(init.partial_outcome),
            compute_time=round(init.compute_time, 4),
        )
        return init

    def _analyze_group(self, group: MarketGroup) -> Optional[ArbitrageOpportunity]:
        log = logger.with_context(group_id=group.id)

        # Snapshot so a concurrent update_config cannot mix parameter sets
        config = self._config
        barrier_fw = self._barrier_fw
        profit_calc = self._profit_calc

        init = group.init_result or self._initialize_group(group)
        if init is None:
            return None

        group.state = GroupState.ANALYZING
        try:
            prices = group.price_vector()
            mispricing = compute_mispricing(prices)
            theta = prices_to_theta(prices, config.liquidity_param)

            result = barrier_fw.optimize(theta, init, group.graph, config.liquidity_param)
            decision = profit_calc.should_trade(
                result.final_divergence, result.final_gap, config.execution_cost
            )

            opportunity = ArbitrageOpportunity(
                group_id=group.id,
                market_ids=group.market_ids,
                mu_optimal=[float(m) for m in result.mu_optimal],
                divergence=result.final_divergence,
                gap=result.final_gap,
                guaranteed_profit=profit_calc.compute_guaranteed_profit(
                    result.final_divergence, result.final_gap
                ),
                iterations=result.iterations,
                converged=result.converged,
                mispricing=mispricing,
                trades=self._compute_trades(group, prices, result.mu_optimal, config),
                should_trade=decision.should_trade,
                reason=decision.reason,
            )
        finally:
            if group.init_result is not None:
                group.state = GroupState.READY
            else:
                group.state = GroupState.UNINITIALIZED

        group.analysis_count += 1
        group.last_opportunity = opportunity
        self._bump("analyses_run")
        self._last_analysis_at = datetime.now(timezone.utc)

        log.debug(
            "Analysis complete",
            mispricing=round(mispricing, 6),
            divergence=opportunity.divergence,
            gap=opportunity.gap,
            iterations=opportunity.iterations,
            should_trade=opportunity.should_trade,
        )
        self._emit(
            ArbitrageEvent(
                type=EventType.ANALYSIS_COMPLETE,
                group_id=group.id,
                opportunity=opportunity,
                mispricing=mispricing,
            )
        )

        if opportunity.should_trade:
            self._bump("opportunities_detected")
            log.info(
                "Arbitrage opportunity detected",
                guaranteed_profit=opportunity.guaranteed_profit,
                legs=len(opportunity.trades),
                total_notional=round(opportunity.total_notional, 4),
                reason=opportunity.reason,
            )
            self._emit(
                ArbitrageEvent(
                    type=EventType.OPPORTUNITY_DETECTED,
                    group_id=group.id,
                    opportunity=opportunity,
                    mispricing=mispricing,
                )
            )

        return opportunity

    @staticmethod
    def _compute_trades(
        group: MarketGroup,
        prices: np.ndarray,
        mu_optimal: np.ndarray,
        config: ArbitrageConfig,
    ) -> list[ArbitrageTrade]:
        trades = []
        for idx, optimal in enumerate(mu_optimal):
            token = group.index_to_token.get(idx)
            if token is None:
                continue

            diff = float(optimal - prices[idx])
            if abs(diff) <= config.trade_threshold:
                continue

            market = group.token_to_market.get(token)
            trades.append(
                ArbitrageTrade(
                    market_id=market.condition_id if market else group.id,
                    instrument_id=token,
                    side=TradeSide.BUY if diff > 0 else TradeSide.SELL,
                    quantity=abs(diff) * config.trade_quantity_scale,
                    price=float(prices[idx]),
                )
            )
        return trades

    # ------------------------------------------------------------------
    # Periodic analysis
    # ------------------------------------------------------------------

    async def start(self, interval_seconds: Optional[float] = None) -> None:
        """Run analyze_all_async every ``interval_seconds`` in the background."""
        if self._running:
            return
        interval = interval_seconds or settings.ANALYSIS_INTERVAL_SECONDS
        self._running = True
        self._loop_task = asyncio.create_task(self._analysis_loop(interval))
        logger.info("Strategy started", interval_seconds=interval, groups=len(self._groups))

    async def stop(self) -> None:
        self._running = False
        task, self._loop_task = self._loop_task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Strategy stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def _analysis_loop(self, interval: float) -> None:
        while self._running:
            try:
                await self.analyze_all_async()
            except Exception:
                logger.exception("Periodic analysis failed")
            await asyncio.sleep(interval)

    # ------------------------------------------------------------------
    # Config / introspection
    # ------------------------------------------------------------------

    def get_config(self) -> ArbitrageConfig:
        return self._config.model_copy()

    def update_config(self, **changes: Any) -> ArbitrageConfig:
        """Validate ``changes`` and apply them; on error the old config stays."""
        new_config = self._config.with_updates(**changes)

        solver_changed = (
            new_config.solver_timeout_seconds != self._config.solver_timeout_seconds
            or new_config.solver_backend != self._config.solver_backend
        )
        self._config = new_config
        if solver_changed and not self._custom_solver:
            self._solver = create_solver(new_config.solver_timeout_seconds, new_config.solver_backend)
        self._build_pipeline()

        logger.info("Config updated", changes=sorted(changes))
        return self.get_config()

    def get_group(self, group_id: str) -> MarketGroup:
        return self._groups[group_id]

    def get_group_state(self, group_id: str) -> GroupState:
        return self._groups[group_id].state

    @property
    def group_ids(self) -> list[str]:
        return list(self._groups)

    def get_statistics(self) -> dict:
        with self._stats_lock:
            stats = dict(self._stats)
        states = {state.value: 0 for state in GroupState}
        for group in list(self._groups.values()):
            states[group.state.value] += 1
        return {
            **stats,
            "groups": len(self._groups),
            "group_states": states,
            "event_handlers": len(self._handlers),
            "running": self._running,
            "last_analysis_at": self._last_analysis_at.isoformat() if self._last_analysis_at else None,
        }

    def _bump(self, key: str, amount: int = 1) -> None:
        with self._stats_lock:
            self._stats[key] += amount
