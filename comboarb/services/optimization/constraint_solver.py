"""
Binary integer programming for the Frank-Wolfe oracle.

For markets with logical dependencies, instead of checking 2^n combinations
(exponentially many), valid outcomes are described by linear constraints:

Z = {z ∈ {0,1}^n : A z {<=, >=, ==} b}

Two jobs are needed from a solver:
- Feasibility: "is there any valid outcome with z_i fixed to v?" (InitFW)
- Linear minimization: argmin_z c·z over the polytope (Frank-Wolfe oracle)

BranchAndBoundSolver is the default. It is a depth-first search with interval
pruning and an approximate projection-based LP, suitable for the small groups
we analyse (< 50 securities). MilpSolver answers the same questions exactly
through scipy's HiGHS bindings.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np
from scipy.optimize import Bounds, LinearConstraint, linprog, milp

from comboarb.services.optimization.constraints import (
    FEASIBILITY_TOL,
    Constraint,
    ConstraintOperator,
    constraint_matrix,
)
from comboarb.utils.logger import get_logger

logger = get_logger(__name__)

# Sweeps of the iterative projection in minimize_linear
MAX_PROJECTION_SWEEPS = 1000

_FREE = -1


class SolverStatus(str, Enum):
    OPTIMAL = "OPTIMAL"
    FEASIBLE = "FEASIBLE"
    INFEASIBLE = "INFEASIBLE"
    TIMEOUT = "TIMEOUT"  # Deadline hit; not a proof of infeasibility
    ERROR = "ERROR"


@dataclass
class SolverResult:
    """Result of a solver call."""

    status: SolverStatus
    solution: Optional[np.ndarray] = None
    objective: Optional[float] = None
    solve_time: float = 0.0  # seconds
    iterations: int = 0

    @property
    def is_feasible(self) -> bool:
        return self.status in (SolverStatus.FEASIBLE, SolverStatus.OPTIMAL) and self.solution is not None


class SolverBackend(ABC):
    """Interface shared by all solver backends."""

    name: str = "abstract"

    def __init__(self, timeout_seconds: float = 10.0):
        if timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {timeout_seconds}")
        self.timeout_seconds = timeout_seconds

    @property
    def is_available(self) -> bool:
        return True

    @abstractmethod
    def find_feasible_binary_vector(
        self,
        dimension: int,
        constraints: list[Constraint],
        fixed_values: Optional[dict[int, int]] = None,
    ) -> SolverResult:
        """Find a binary vector satisfying all constraints."""

    @abstractmethod
    def minimize_linear(
        self,
        objective: np.ndarray,
        constraints: list[Constraint],
        bounds: Optional[tuple[np.ndarray, np.ndarray]] = None,
    ) -> SolverResult:
        """Minimize objective · x over the continuous relaxation."""

    def check_feasibility(self, dimension: int, constraints: list[Constraint]) -> bool:
        return self.find_feasible_binary_vector(dimension, constraints).status == SolverStatus.FEASIBLE

    def find_vertex_with_fixed_coordinate(
        self,
        dimension: int,
        constraints: list[Constraint],
        index: int,
        value: int,
        fixed_values: Optional[dict[int, int]] = None,
    ) -> SolverResult:
        """Find any valid outcome where z[index] = value.

        ``fixed_values`` pins additional coordinates (e.g. settled securities).
        """
        fixed = dict(fixed_values or {})
        fixed[index] = value
        return self.find_feasible_binary_vector(dimension, constraints, fixed)


def _validate_fixed(dimension: int, fixed_values: Optional[dict[int, int]]) -> dict[int, int]:
    fixed: dict[int, int] = {}
    for idx, val in (fixed_values or {}).items():
        if not 0 <= idx < dimension:
            raise IndexError(f"Fixed index {idx} out of range for dimension {dimension}")
        if val not in (0, 1):
            raise ValueError(f"Fixed value for index {idx} must be 0 or 1, got {val!r}")
        fixed[idx] = int(val)
    return fixed


def _default_bounds(
    dimension: int, bounds: Optional[tuple[np.ndarray, np.ndarray]]
) -> tuple[np.ndarray, np.ndarray]:
    if bounds is None:
        return np.zeros(dimension), np.ones(dimension)
    lb, ub = bounds
    return np.asarray(lb, dtype=float), np.asarray(ub, dtype=float)


class BranchAndBoundSolver(SolverBackend):
    """
    Depth-first branch-and-bound for binary feasibility problems.

    Every node is an immutable assignment tuple (-1 = free). Before a node is
    expanded, the achievable interval [minLHS, maxLHS] of every constraint is
    recomputed from the partial assignment (free variables contribute their
    most extreme value per constraint); any constraint whose bound lies
    outside its interval prunes the subtree.

    Variables are branched in index order, 0 before 1, so results are
    deterministic for a given constraint set.
    """

    name = "BranchAndBound"

    def find_feasible_binary_vector(
        self,
        dimension: int,
        constraints: list[Constraint],
        fixed_values: Optional[dict[int, int]] = None,
    ) -> SolverResult:
        start = time.monotonic()
        deadline = start + self.timeout_seconds
        fixed = _validate_fixed(dimension, fixed_values)

        A, ops, rhs = constraint_matrix(constraints, dimension)
        is_le = ops == ConstraintOperator.LE.value
        is_ge = ops == ConstraintOperator.GE.value
        is_eq = ops == ConstraintOperator.EQ.value
        pos = np.clip(A, 0.0, None)
        neg = np.clip(A, None, 0.0)

        def can_satisfy(node: tuple[int, ...]) -> bool:
            assignment = np.asarray(node)
            free = assignment == _FREE
            values = np.where(free, 0.0, assignment)
            base = A @ values
            min_lhs = base + neg @ free
            max_lhs = base + pos @ free
            broken = (
                ((is_le | is_eq) & (min_lhs > rhs + FEASIBILITY_TOL))
                | ((is_ge | is_eq) & (max_lhs < rhs - FEASIBILITY_TOL))
            )
            return not broken.any()

        root = tuple(fixed.get(i, _FREE) for i in range(dimension))
        stack: list[tuple[int, ...]] = [root]
        nodes = 0

        while stack:
            if time.monotonic() > deadline:
                logger.warning(
                    "Feasibility search hit deadline",
                    dimension=dimension,
                    nodes=nodes,
                    timeout_seconds=self.timeout_seconds,
                )
                return SolverResult(
                    status=SolverStatus.TIMEOUT,
                    solve_time=time.monotonic() - start,
                    iterations=nodes,
                )

            node = stack.pop()
            nodes += 1

            if not can_satisfy(node):
                continue

            try:
                branch_idx = node.index(_FREE)
            except ValueError:
                # Fully assigned and every interval collapsed onto a satisfied bound
                return SolverResult(
                    status=SolverStatus.FEASIBLE,
                    solution=np.asarray(node, dtype=float),
                    solve_time=time.monotonic() - start,
                    iterations=nodes,
                )

            # LIFO: push 1 first so the 0 branch is explored first
            for value in (1, 0):
                stack.append(node[:branch_idx] + (value,) + node[branch_idx + 1:])

        return SolverResult(
            status=SolverStatus.INFEASIBLE,
            solve_time=time.monotonic() - start,
            iterations=nodes,
        )

    def minimize_linear(
        self,
        objective: np.ndarray,
        constraints: list[Constraint],
        bounds: Optional[tuple[np.ndarray, np.ndarray]] = None,
    ) -> SolverResult:
        """
        Approximate LP: greedy bound choice followed by iterative projection.

        Each coordinate starts at whichever bound minimises its own objective
        term. Violated constraints are then corrected by moving along their
        coefficient vector, scaled by violation / ||a||², and clipped into the
        bounds. Not an exact simplex; the Frank-Wolfe oracle rounds the result
        and compares it against known vertices anyway.
        """
        start = time.monotonic()
        objective = np.asarray(objective, dtype=float)
        lb, ub = _default_bounds(objective.size, bounds)

        x = np.where(objective >= 0, lb, ub)

        sweeps = 0
        if not all(c.is_satisfied(x) for c in constraints):
            x, sweeps = self._project_to_feasible(x, constraints, lb, ub)
            if x is None:
                return SolverResult(
                    status=SolverStatus.INFEASIBLE,
                    solve_time=time.monotonic() - start,
                    iterations=sweeps,
                )

        return SolverResult(
            status=SolverStatus.OPTIMAL,
            solution=x,
            objective=float(objective @ x),
            solve_time=time.monotonic() - start,
            iterations=sweeps,
        )

    @staticmethod
    def _project_to_feasible(
        x: np.ndarray,
        constraints: list[Constraint],
        lb: np.ndarray,
        ub: np.ndarray,
    ) -> tuple[Optional[np.ndarray], int]:
        solution = x.copy()

        for sweep in range(1, MAX_PROJECTION_SWEEPS + 1):
            satisfied = True

            for constraint in constraints:
                if constraint.is_satisfied(solution):
                    continue
                satisfied = False

                norm_sq = float(constraint.coefficients @ constraint.coefficients)
                if norm_sq <= FEASIBILITY_TOL:
                    continue

                violation = constraint.violation(solution)
                if constraint.operator == ConstraintOperator.GE:
                    step = violation / norm_sq
                else:
                    step = -violation / norm_sq
                solution = np.clip(solution + step * constraint.coefficients, lb, ub)

            if satisfied:
                return solution, sweep

        return None, MAX_PROJECTION_SWEEPS


class MilpSolver(SolverBackend):
    """
    Exact backend on scipy's HiGHS (milp for feasibility, linprog for LP).

    Drop-in replacement for BranchAndBoundSolver when exact answers matter
    on larger or denser constraint graphs.
    """

    name = "MILP"

    @staticmethod
    def _linear_constraint(
        constraints: list[Constraint], dimension: int
    ) -> Optional[LinearConstraint]:
        if not constraints:
            return None
        A, ops, rhs = constraint_matrix(constraints, dimension)
        lower = np.where(ops == ConstraintOperator.LE.value, -np.inf, rhs).astype(float)
        upper = np.where(ops == ConstraintOperator.GE.value, np.inf, rhs).astype(float)
        return LinearConstraint(A, lower, upper)

    def find_feasible_binary_vector(
        self,
        dimension: int,
        constraints: list[Constraint],
        fixed_values: Optional[dict[int, int]] = None,
    ) -> SolverResult:
        start = time.monotonic()
        fixed = _validate_fixed(dimension, fixed_values)

        lower = np.zeros(dimension)
        upper = np.ones(dimension)
        for idx, val in fixed.items():
            lower[idx] = upper[idx] = val

        result = milp(
            c=np.zeros(dimension),
            integrality=np.ones(dimension),
            bounds=Bounds(lower, upper),
            constraints=self._linear_constraint(constraints, dimension),
            options={"time_limit": self.timeout_seconds},
        )
        elapsed = time.monotonic() - start

        if result.status == 0 and result.x is not None:
            return SolverResult(
                status=SolverStatus.FEASIBLE,
                solution=np.round(result.x).astype(float),
                objective=0.0,
                solve_time=elapsed,
            )
        if result.status == 2:
            return SolverResult(status=SolverStatus.INFEASIBLE, solve_time=elapsed)
        if result.status == 1:
            return SolverResult(status=SolverStatus.TIMEOUT, solve_time=elapsed)

        logger.error("MILP feasibility solve failed", status=result.status, message=result.message)
        return SolverResult(status=SolverStatus.ERROR, solve_time=elapsed)

    def minimize_linear(
        self,
        objective: np.ndarray,
        constraints: list[Constraint],
        bounds: Optional[tuple[np.ndarray, np.ndarray]] = None,
    ) -> SolverResult:
        start = time.monotonic()
        objective = np.asarray(objective, dtype=float)
        n = objective.size
        lb, ub = _default_bounds(n, bounds)

        A_ub, b_ub, A_eq, b_eq = [], [], [], []
        for c in constraints:
            if c.operator == ConstraintOperator.LE:
                A_ub.append(c.coefficients)
                b_ub.append(c.rhs)
            elif c.operator == ConstraintOperator.GE:
                A_ub.append(-c.coefficients)
                b_ub.append(-c.rhs)
            else:
                A_eq.append(c.coefficients)
                b_eq.append(c.rhs)

        result = linprog(
            objective,
            A_ub=np.array(A_ub) if A_ub else None,
            b_ub=np.array(b_ub) if b_ub else None,
            A_eq=np.array(A_eq) if A_eq else None,
            b_eq=np.array(b_eq) if b_eq else None,
            bounds=list(zip(lb, ub)),
            method="highs",
            options={"time_limit": self.timeout_seconds},
        )
        elapsed = time.monotonic() - start

        if result.status == 0:
            return SolverResult(
                status=SolverStatus.OPTIMAL,
                solution=np.asarray(result.x, dtype=float),
                objective=float(result.fun),
                solve_time=elapsed,
                iterations=int(getattr(result, "nit", 0) or 0),
            )
        if result.status == 2:
            return SolverResult(status=SolverStatus.INFEASIBLE, solve_time=elapsed)
        if result.status == 1:
            return SolverResult(status=SolverStatus.TIMEOUT, solve_time=elapsed)

        logger.error("LP solve failed", status=result.status, message=result.message)
        return SolverResult(status=SolverStatus.ERROR, solve_time=elapsed)


def create_solver(timeout_seconds: float = 10.0, backend: str = "branch_and_bound") -> SolverBackend:
    """Build a solver backend by name ("branch_and_bound" or "milp")."""
    backend = getattr(backend, "value", backend)
    if backend == "branch_and_bound":
        return BranchAndBoundSolver(timeout_seconds)
    if backend == "milp":
        return MilpSolver(timeout_seconds)
    raise ValueError(f"Unknown solver backend: {backend!r}")
