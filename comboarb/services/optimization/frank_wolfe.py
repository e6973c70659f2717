"""
Frank-Wolfe algorithm for Bregman projection onto marginal polytopes.

Computing the Bregman projection directly is intractable when the marginal
polytope has exponentially many vertices. Frank-Wolfe reduces it to a
sequence of linear minimizations, growing the active vertex set on demand
via the oracle call:

    z_t = argmin_{z ∈ Z} ∇D(μ_t) · z

Two stages:
- InitFW: probe every unsettled security with fixed 0/1 feasibility checks to
  collect an initial vertex set, detect logically settled securities and build
  an interior point u = average(Z_0)
- Barrier Frank-Wolfe: iterate from u with a barrier line search that keeps μ
  strictly inside (0, 1), stopping on gap convergence or α-extraction
"""

import math
import time
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from comboarb.config import ArbitrageConfig
from comboarb.services.optimization.bregman import (
    bregman_divergence,
    divergence_gradient,
)
from comboarb.services.optimization.constraint_solver import SolverBackend, SolverStatus
from comboarb.services.optimization.constraints import ConstraintGraph, PartialOutcome
from comboarb.utils.logger import get_logger

logger = get_logger(__name__)

# Iterates are kept inside [MU_MIN, MU_MAX] so log μ stays finite
MU_MIN = 0.01
MU_MAX = 0.99

_GOLDEN_RATIO = (1 + math.sqrt(5)) / 2
_LINE_SEARCH_MAX_ITER = 50
_LINE_SEARCH_TOL = 1e-6


def _vertex_key(candidate: np.ndarray) -> tuple[int, ...]:
    return tuple(int(v > 0.5) for v in candidate)


class VertexSet:
    """Ordered, deduplicated set of binary vertices.

    Candidates are rounded to 0/1 and keyed by their tuple, so membership is
    exact binary equality.
    """

    def __init__(self, vertices: Optional[List[np.ndarray]] = None):
        self._vertices: List[np.ndarray] = []
        self._keys: set[tuple[int, ...]] = set()
        for v in vertices or []:
            self.add(v)

    def add(self, candidate: np.ndarray) -> bool:
        key = _vertex_key(candidate)
        if key in self._keys:
            return False
        self._keys.add(key)
        self._vertices.append(np.array(key, dtype=float))
        return True

    def __contains__(self, candidate: np.ndarray) -> bool:
        return _vertex_key(candidate) in self._keys

    def __len__(self) -> int:
        return len(self._vertices)

    def __iter__(self):
        return iter(self._vertices)

    def as_list(self) -> List[np.ndarray]:
        return list(self._vertices)


@dataclass
class InitFWResult:
    """Result of InitFW initialization."""

    vertices: List[np.ndarray]
    num_vertices: int
    interior_point: np.ndarray
    partial_outcome: PartialOutcome
    unsettled_indices: List[int]
    compute_time: float  # seconds
    timed_out: bool = False  # At least one probe hit the solver deadline

    @property
    def is_analyzable(self) -> bool:
        return self.num_vertices > 0


@dataclass
class BarrierFWResult:
    """Result of Barrier Frank-Wolfe optimization."""

    mu_optimal: np.ndarray
    final_gap: float
    final_divergence: float
    iterations: int
    vertices: List[np.ndarray]
    converged: bool
    compute_time: float  # seconds
    alpha_extraction_met: bool = False
    gap_history: List[float] = field(default_factory=list)


class InitFW:
    """
    Vertex initialization for Barrier Frank-Wolfe.

    For each unsettled security i:
    1. Ask the solver: "Can z_i = 0?"
    2. Ask the solver: "Can z_i = 1?"
    3. If exactly one is feasible (and the other provably infeasible), the
       security is logically settled to the feasible value

    Every probe runs with the settlements known so far as fixed values, so
    each discovered vertex respects them. A probe that times out is
    inconclusive and never settles a security.
    """

    def __init__(self, solver: SolverBackend):
        self.solver = solver

    def initialize(
        self,
        dimension: int,
        graph: ConstraintGraph,
        partial_outcome: Optional[PartialOutcome] = None,
    ) -> InitFWResult:
        start_time = time.monotonic()
        settled = partial_outcome.copy() if partial_outcome is not None else PartialOutcome()
        vertices = VertexSet()
        timed_out = False

        for i in range(dimension):
            if settled.is_settled(i):
                continue

            fixed = settled.as_fixed_values()
            result_zero = self.solver.find_vertex_with_fixed_coordinate(
                dimension, graph.constraints, i, 0, fixed
            )
            result_one = self.solver.find_vertex_with_fixed_coordinate(
                dimension, graph.constraints, i, 1, fixed
            )

            statuses = (result_zero.status, result_one.status)
            if SolverStatus.TIMEOUT in statuses:
                timed_out = True
            elif statuses == (SolverStatus.FEASIBLE, SolverStatus.INFEASIBLE):
                settled.settle(i, 0)
            elif statuses == (SolverStatus.INFEASIBLE, SolverStatus.FEASIBLE):
                settled.settle(i, 1)

            for result in (result_zero, result_one):
                if result.status == SolverStatus.FEASIBLE and result.solution is not None:
                    vertices.add(result.solution)

        if not len(vertices):
            result = self.solver.find_feasible_binary_vector(
                dimension, graph.constraints, settled.as_fixed_values()
            )
            if result.status == SolverStatus.FEASIBLE and result.solution is not None:
                vertices.add(result.solution)
            elif result.status == SolverStatus.TIMEOUT:
                timed_out = True

        if len(vertices):
            interior_point = np.mean(vertices.as_list(), axis=0)
        else:
            interior_point = np.full(dimension, 0.5)

        unsettled = settled.unsettled_indices(dimension)
        compute_time = time.monotonic() - start_time

        logger.debug(
            "InitFW complete",
            dimension=dimension,
            num_vertices=len(vertices),
            settled=len(settled),
            timed_out=timed_out,
            compute_time=round(compute_time, 4),
        )

        return InitFWResult(
            vertices=vertices.as_list(),
            num_vertices=len(vertices),
            interior_point=interior_point,
            partial_outcome=settled,
            unsettled_indices=unsettled,
            compute_time=compute_time,
            timed_out=timed_out,
        )


class BarrierFrankWolfe:
    """
    Barrier Frank-Wolfe minimizing D(μ||θ) over conv(Z).

    Each iteration:
    1. ∇D = log μ - log p
    2. Oracle: best of the known vertices and the rounded LP candidate
    3. Gap g = -⟨∇D, v - μ⟩; stop when g < tolerance
    4. Golden-section line search on [0, 1] with a +inf barrier outside
       (0, 1)^n, capped at max_step_size
    5. μ ← (1-α)μ + αv, clamped into [0.01, 0.99]
    6. α-extraction: stop once g / D < 1 - alpha
    """

    def __init__(self, solver: SolverBackend, config: Optional[ArbitrageConfig] = None):
        self.solver = solver
        self.config = config or ArbitrageConfig()

    def optimize(
        self,
        theta: np.ndarray,
        init_result: InitFWResult,
        graph: ConstraintGraph,
        liquidity_param: Optional[float] = None,
    ) -> BarrierFWResult:
        start_time = time.monotonic()
        b = liquidity_param or self.config.liquidity_param
        theta = np.asarray(theta, dtype=float)
        dimension = theta.size

        constraints = graph.with_settlement(init_result.partial_outcome)

        mu = np.clip(np.asarray(init_result.interior_point, dtype=float), MU_MIN, MU_MAX)
        vertices = VertexSet(init_result.vertices)

        converged = False
        alpha_met = False
        iterations = 0
        final_gap = float("inf")
        gap_history: List[float] = []

        for _ in range(self.config.max_iterations):
            gradient = divergence_gradient(mu, theta, b)

            v = self._linear_minimization_oracle(gradient, vertices, dimension, constraints)
            if v is None:
                logger.warning("Oracle returned no vertex; stopping", iteration=iterations)
                break

            gap = float(-np.dot(gradient, v - mu))
            final_gap = gap
            gap_history.append(gap)

            if gap < self.config.tolerance:
                converged = True
                break

            vertices.add(v)

            step = self._line_search_with_barrier(mu, v, theta, b)
            mu = np.clip((1 - step) * mu + step * v, MU_MIN, MU_MAX)
            iterations += 1

            divergence = bregman_divergence(mu, theta, b)
            if divergence > 0 and gap / divergence < (1 - self.config.alpha):
                converged = True
                alpha_met = True
                break

        final_divergence = bregman_divergence(mu, theta, b)

        return BarrierFWResult(
            mu_optimal=mu,
            final_gap=final_gap,
            final_divergence=final_divergence,
            iterations=iterations,
            vertices=vertices.as_list(),
            converged=converged,
            compute_time=time.monotonic() - start_time,
            alpha_extraction_met=alpha_met,
            gap_history=gap_history,
        )

    def _linear_minimization_oracle(
        self,
        gradient: np.ndarray,
        vertices: VertexSet,
        dimension: int,
        constraints: list,
    ) -> Optional[np.ndarray]:
        best_vertex: Optional[np.ndarray] = None
        best_value = float("inf")

        for v in vertices:
            value = float(np.dot(gradient, v))
            if value < best_value:
                best_value = value
                best_vertex = v

        result = self.solver.minimize_linear(
            gradient, constraints, (np.zeros(dimension), np.ones(dimension))
        )
        if result.status == SolverStatus.OPTIMAL and result.solution is not None:
            candidate = np.array(_vertex_key(result.solution), dtype=float)
            # Rounding can leave the polytope; only real vertices compete
            if all(c.is_satisfied(candidate) for c in constraints):
                value = float(np.dot(gradient, candidate))
                if value < best_value:
                    best_value = value
                    best_vertex = candidate

        return best_vertex

    def _line_search_with_barrier(
        self, mu: np.ndarray, v: np.ndarray, theta: np.ndarray, b: float
    ) -> float:
        """Golden-section search for the step, capped at max_step_size."""

        def objective(alpha: float) -> float:
            candidate = (1 - alpha) * mu + alpha * v
            if np.any(candidate <= 0) or np.any(candidate >= 1):
                return float("inf")
            return bregman_divergence(candidate, theta, b)

        lo, hi = 0.0, 1.0
        c = hi - (hi - lo) / _GOLDEN_RATIO
        e = lo + (hi - lo) / _GOLDEN_RATIO
        fc = objective(c)
        fe = objective(e)

        for _ in range(_LINE_SEARCH_MAX_ITER):
            if hi - lo <= _LINE_SEARCH_TOL:
                break
            if fc < fe:
                hi, e, fe = e, c, fc
                c = hi - (hi - lo) / _GOLDEN_RATIO
                fc = objective(c)
            else:
                lo, c, fc = c, e, fe
                e = lo + (hi - lo) / _GOLDEN_RATIO
                fe = objective(e)

        return min((lo + hi) / 2, self.config.max_step_size)
