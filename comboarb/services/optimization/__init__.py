"""
Optimization module for combinatorial arbitrage detection.

Components:
- constraints: linear constraint model over binary securities
- constraint_solver: branch-and-bound / MILP feasibility and LP oracle
- bregman: LMSR cost function and its Bregman (KL) divergence
- frank_wolfe: InitFW and Barrier Frank-Wolfe projection onto conv(Z)
- profit: guaranteed-profit bound and trade decision rule

Key insights:
1. Marginal polytope: arbitrage-free prices must lie within M = conv(Z)
2. Bregman projection: optimal profit equals D(μ*||θ) for the LMSR divergence
3. Frank-Wolfe: only needs a linear minimization oracle over Z, never all of Z
4. Profit >= D(μ̂||θ) - g(μ̂) at any iterate, so stopping early is safe
"""

from .constraints import (
    Constraint, ConstraintGraph, ConstraintOperator, PartialOutcome, constraint_matrix
)
from .constraint_solver import (
    BranchAndBoundSolver, MilpSolver, SolverBackend, SolverResult, SolverStatus, create_solver
)
from .bregman import (
    MarketState,
    bregman_divergence,
    compute_mispricing,
    compute_price_sum,
    divergence_gradient,
    log_sum_exp,
    lmsr_cost,
    lmsr_gradient,
    prices_to_theta,
    softmax,
    theta_to_prices,
)
from .frank_wolfe import BarrierFrankWolfe, BarrierFWResult, InitFW, InitFWResult, VertexSet
from .profit import ProfitCalculator, TradeDecision

__all__ = [
    # Constraint model
    "Constraint",
    "ConstraintGraph",
    "ConstraintOperator",
    "PartialOutcome",
    "constraint_matrix",
    # Solver
    "BranchAndBoundSolver",
    "MilpSolver",
    "SolverBackend",
    "SolverResult",
    "SolverStatus",
    "create_solver",
    # LMSR / Bregman
    "MarketState",
    "bregman_divergence",
    "compute_mispricing",
    "compute_price_sum",
    "divergence_gradient",
    "log_sum_exp",
    "lmsr_cost",
    "lmsr_gradient",
    "prices_to_theta",
    "softmax",
    "theta_to_prices",
    # Frank-Wolfe
    "BarrierFrankWolfe",
    "BarrierFWResult",
    "InitFW",
    "InitFWResult",
    "VertexSet",
    # Decision rule
    "ProfitCalculator",
    "TradeDecision",
]
