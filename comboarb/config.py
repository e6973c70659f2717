from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Get the directory where this config file is located.
_PACKAGE_DIR = Path(__file__).parent.resolve()
_PROJECT_ROOT = _PACKAGE_DIR.parent.resolve()


class SolverBackendName(str, Enum):
    BRANCH_AND_BOUND = "branch_and_bound"  # Pure-python DFS with interval pruning
    MILP = "milp"  # scipy.optimize.milp / linprog (HiGHS)


class ArbitrageConfig(BaseModel):
    """Validated parameters for the Frank-Wolfe arbitrage pipeline.

    Every field is range-checked at construction and on assignment, so an
    invalid value is rejected before any analysis runs.
    """

    model_config = ConfigDict(validate_assignment=True, frozen=False, extra="forbid")

    # Fraction of extractable arbitrage to capture before stopping (α-extraction)
    alpha: float = Field(default=0.9, gt=0.0, lt=1.0)
    # Minimum Bregman divergence worth trading (near-arbitrage-free cutoff)
    min_divergence: float = Field(default=0.025, ge=0.0)
    max_iterations: int = Field(default=100, gt=0)
    # Frank-Wolfe gap convergence tolerance
    tolerance: float = Field(default=1e-6, gt=0.0)
    solver_timeout_seconds: float = Field(default=10.0, gt=0.0)
    min_profit_after_costs: float = Field(default=0.01, ge=0.0)
    # Estimated execution cost (fees + slippage) as a fraction of notional
    execution_cost: float = Field(default=0.02, ge=0.0)
    # LMSR liquidity parameter b
    liquidity_param: float = Field(default=100.0, gt=0.0)

    # Line-search step cap. Stability heuristic, kept configurable.
    max_step_size: float = Field(default=0.5, gt=0.0, le=1.0)
    # Minimum |mu_i - p_i| before a leg is emitted
    trade_threshold: float = Field(default=0.01, ge=0.0)
    # Quantity per unit of |mu_i - p_i|
    trade_quantity_scale: float = Field(default=100.0, gt=0.0)
    solver_backend: SolverBackendName = SolverBackendName.BRANCH_AND_BOUND

    def with_updates(self, **changes) -> "ArbitrageConfig":
        """Return a validated copy with ``changes`` applied.

        ``model_copy(update=...)`` skips validation, so the merged values are
        re-validated through the constructor.
        """
        return ArbitrageConfig(**{**self.model_dump(), **changes})


class Settings(BaseSettings):
    """Environment-driven settings (``ARB_*`` overrides, optional ``.env``)."""

    # Arbitrage pipeline
    ARB_ALPHA: float = 0.9
    ARB_MIN_DIVERGENCE: float = 0.025
    ARB_MAX_ITERATIONS: int = 100
    ARB_TOLERANCE: float = 1e-6
    ARB_SOLVER_TIMEOUT_SECONDS: float = 10.0
    ARB_MIN_PROFIT_AFTER_COSTS: float = 0.01
    ARB_EXECUTION_COST: float = 0.02
    ARB_LIQUIDITY_PARAM: float = 100.0
    ARB_MAX_STEP_SIZE: float = 0.5
    ARB_TRADE_THRESHOLD: float = 0.01
    ARB_TRADE_QUANTITY_SCALE: float = 100.0
    ARB_SOLVER_BACKEND: str = SolverBackendName.BRANCH_AND_BOUND.value

    # Periodic analyze_all() cadence
    ANALYSIS_INTERVAL_SECONDS: float = 5.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    LOG_FILE: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=str(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("ARB_SOLVER_BACKEND", "LOG_LEVEL", mode="before")
    @classmethod
    def _normalize_choice(cls, value: object) -> object:
        """Trim accidental quotes/whitespace from enum-like env vars."""
        if value is None:
            return value
        return str(value).strip().strip('"').strip("'")

    def arbitrage_config(self) -> ArbitrageConfig:
        """Build the validated pipeline config from environment settings."""
        return ArbitrageConfig(
            alpha=self.ARB_ALPHA,
            min_divergence=self.ARB_MIN_DIVERGENCE,
            max_iterations=self.ARB_MAX_ITERATIONS,
            tolerance=self.ARB_TOLERANCE,
            solver_timeout_seconds=self.ARB_SOLVER_TIMEOUT_SECONDS,
            min_profit_after_costs=self.ARB_MIN_PROFIT_AFTER_COSTS,
            execution_cost=self.ARB_EXECUTION_COST,
            liquidity_param=self.ARB_LIQUIDITY_PARAM,
            max_step_size=self.ARB_MAX_STEP_SIZE,
            trade_threshold=self.ARB_TRADE_THRESHOLD,
            trade_quantity_scale=self.ARB_TRADE_QUANTITY_SCALE,
            solver_backend=self.ARB_SOLVER_BACKEND,
        )


settings = Settings()
