"""Tests for configuration validation and environment settings."""

import pytest
from pydantic import ValidationError

from comboarb.config import ArbitrageConfig, Settings, SolverBackendName


class TestArbitrageConfig:
    def test_defaults(self):
        cfg = ArbitrageConfig()
        assert cfg.alpha == 0.9
        assert cfg.min_divergence == 0.025
        assert cfg.max_iterations == 100
        assert cfg.tolerance == 1e-6
        assert cfg.solver_timeout_seconds == 10.0
        assert cfg.min_profit_after_costs == 0.01
        assert cfg.execution_cost == 0.02
        assert cfg.liquidity_param == 100.0
        assert cfg.max_step_size == 0.5
        assert cfg.solver_backend == SolverBackendName.BRANCH_AND_BOUND

    @pytest.mark.parametrize(
        "field,value",
        [
            ("alpha", 0.0),
            ("alpha", 1.0),
            ("min_divergence", -0.01),
            ("max_iterations", 0),
            ("tolerance", 0.0),
            ("solver_timeout_seconds", -1.0),
            ("min_profit_after_costs", -0.5),
            ("execution_cost", -0.01),
            ("liquidity_param", 0.0),
            ("max_step_size", 1.5),
        ],
    )
    def test_invalid_values_rejected(self, field, value):
        with pytest.raises(ValidationError):
            ArbitrageConfig(**{field: value})

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            ArbitrageConfig(solver_timeout=5)

    def test_assignment_is_validated(self):
        cfg = ArbitrageConfig()
        with pytest.raises(ValidationError):
            cfg.alpha = 2.0
        assert cfg.alpha == 0.9

    def test_with_updates_returns_validated_copy(self):
        cfg = ArbitrageConfig()
        updated = cfg.with_updates(alpha=0.95, solver_backend="milp")
        assert updated.alpha == 0.95
        assert updated.solver_backend == SolverBackendName.MILP
        assert cfg.alpha == 0.9

    def test_with_updates_rejects_invalid(self):
        with pytest.raises(ValidationError):
            ArbitrageConfig().with_updates(max_iterations=-5)


class TestSettings:
    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("ARB_ALPHA", "0.8")
        monkeypatch.setenv("ARB_MAX_ITERATIONS", "200")
        monkeypatch.setenv("ARB_SOLVER_BACKEND", '"milp"')
        cfg = Settings().arbitrage_config()
        assert cfg.alpha == 0.8
        assert cfg.max_iterations == 200
        assert cfg.solver_backend == SolverBackendName.MILP

    def test_invalid_environment_fails_fast(self, monkeypatch):
        monkeypatch.setenv("ARB_ALPHA", "1.5")
        with pytest.raises(ValidationError):
            Settings().arbitrage_config()
