"""
Linear constraint model for combinatorial markets.

A market group's valid outcomes are the binary vectors satisfying

    Z = {z ∈ {0,1}^n : a_k · z {<=, >=, ==} b_k  for every constraint k}

and arbitrage-free prices live in the marginal polytope M = conv(Z).

Three builder patterns cover the relationships seen in practice:
- exactly-one: mutually exclusive and exhaustive outcomes of one market
- implication: "x_i = 1 implies x_j = 1" (e.g. Trump wins PA -> GOP wins PA)
- mutex: at most one of a set is true
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

import numpy as np

FEASIBILITY_TOL = 1e-9


class ConstraintOperator(str, Enum):
    LE = "<="
    GE = ">="
    EQ = "=="


@dataclass(frozen=True, eq=False)
class Constraint:
    """Linear constraint: coefficients · x {<=, >=, ==} rhs"""

    coefficients: np.ndarray
    operator: ConstraintOperator
    rhs: float

    def lhs(self, x: np.ndarray) -> float:
        return float(np.dot(self.coefficients, x))

    def is_satisfied(self, x: np.ndarray, tol: float = FEASIBILITY_TOL) -> bool:
        value = self.lhs(x)
        if self.operator == ConstraintOperator.LE:
            return value <= self.rhs + tol
        if self.operator == ConstraintOperator.GE:
            return value >= self.rhs - tol
        return abs(value - self.rhs) < tol

    def violation(self, x: np.ndarray) -> float:
        """Signed violation; positive means the constraint is broken.

        For equalities the sign tells the direction: positive when the lhs is
        too large, negative when it is too small.
        """
        value = self.lhs(x)
        if self.operator == ConstraintOperator.GE:
            return self.rhs - value
        return value - self.rhs


def constraint_matrix(
    constraints: list[Constraint], dimension: int
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Stack constraints into (A, operators, rhs) for vectorised checks.

    ``operators`` is a plain unicode array of operator strings ("<=", ">=",
    "==") so masks like ``ops == ConstraintOperator.LE.value`` are elementwise.
    """
    if not constraints:
        return (
            np.zeros((0, dimension)),
            np.array([], dtype="<U2"),
            np.zeros(0),
        )
    A = np.vstack([c.coefficients for c in constraints]).astype(float)
    ops = np.array([c.operator.value for c in constraints], dtype="<U2")
    rhs = np.array([c.rhs for c in constraints], dtype=float)
    return A, ops, rhs


class PartialOutcome:
    """Securities whose value is already forced (settled) to 0 or 1.

    Once settled, a security may be re-settled only to the same value; a
    conflicting settlement means the constraint graph is contradictory and
    raises instead of overwriting.
    """

    def __init__(self, values: Optional[dict[int, int]] = None):
        self._values: dict[int, int] = {}
        for index, value in (values or {}).items():
            self.settle(index, value)

    def is_settled(self, index: int) -> bool:
        return index in self._values

    def get_value(self, index: int) -> int:
        if index not in self._values:
            raise KeyError(f"Security {index} is not settled")
        return self._values[index]

    def settle(self, index: int, value: int) -> None:
        if value not in (0, 1):
            raise ValueError(f"Settlement value must be 0 or 1, got {value!r}")
        previous = self._values.get(index)
        if previous is not None and previous != value:
            raise ValueError(
                f"Security {index} already settled to {previous}, cannot settle to {value}"
            )
        self._values[index] = int(value)

    def unsettled_indices(self, dimension: int) -> list[int]:
        return [i for i in range(dimension) if i not in self._values]

    def as_fixed_values(self) -> dict[int, int]:
        return dict(self._values)

    def copy(self) -> "PartialOutcome":
        return PartialOutcome(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, index: object) -> bool:
        return index in self._values

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PartialOutcome):
            return NotImplemented
        return self._values == other._values

    def __repr__(self) -> str:
        return f"PartialOutcome({self._values!r})"


@dataclass
class ConstraintGraph:
    """Logical structure of a market group as linear constraints."""

    dimension: int
    constraints: list[Constraint] = field(default_factory=list)

    def __post_init__(self):
        if self.dimension <= 0:
            raise ValueError(f"dimension must be positive, got {self.dimension}")

    def _check_index(self, index: int) -> None:
        if not 0 <= index < self.dimension:
            raise IndexError(
                f"Security index {index} out of range for dimension {self.dimension}"
            )

    def _indicator(self, indices: Iterable[int]) -> np.ndarray:
        coefficients = np.zeros(self.dimension)
        for idx in indices:
            self._check_index(idx)
            coefficients[idx] = 1.0
        return coefficients

    def add_constraint(
        self, coefficients: Iterable[float], operator: ConstraintOperator, rhs: float
    ) -> Constraint:
        coefficients = np.asarray(list(coefficients), dtype=float)
        if coefficients.shape != (self.dimension,):
            raise IndexError(
                f"Constraint has {coefficients.size} coefficients, expected {self.dimension}"
            )
        constraint = Constraint(coefficients, ConstraintOperator(operator), float(rhs))
        self.constraints.append(constraint)
        return constraint

    def add_exactly_one_constraint(self, indices: Iterable[int]) -> Constraint:
        """Σ x_i == 1 over ``indices``"""
        return self.add_constraint(self._indicator(indices), ConstraintOperator.EQ, 1.0)

    def add_implication_constraint(self, i: int, j: int) -> Constraint:
        """x_i <= x_j, i.e. if i resolves YES then j must too"""
        self._check_index(i)
        self._check_index(j)
        coefficients = np.zeros(self.dimension)
        coefficients[i] = 1.0
        coefficients[j] = -1.0
        return self.add_constraint(coefficients, ConstraintOperator.LE, 0.0)

    def add_mutex_constraint(self, indices: Iterable[int]) -> Constraint:
        """Σ x_i <= 1 over ``indices``"""
        return self.add_constraint(self._indicator(indices), ConstraintOperator.LE, 1.0)

    def is_satisfied_by(self, x: np.ndarray) -> bool:
        return all(c.is_satisfied(x) for c in self.constraints)

    def as_matrix(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        return constraint_matrix(self.constraints, self.dimension)

    def with_settlement(self, partial: Optional[PartialOutcome]) -> list[Constraint]:
        """Constraints plus one equality pinning each settled security."""
        if partial is None or len(partial) == 0:
            return list(self.constraints)
        pinned = []
        for index, value in sorted(partial.as_fixed_values().items()):
            self._check_index(index)
            coefficients = np.zeros(self.dimension)
            coefficients[index] = 1.0
            pinned.append(Constraint(coefficients, ConstraintOperator.EQ, float(value)))
        return list(self.constraints) + pinned
