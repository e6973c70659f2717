"""Shared fixtures for combinatorial arbitrage tests."""

import pytest

from comboarb.config import ArbitrageConfig
from comboarb.models import Market
from comboarb.services.optimization import BranchAndBoundSolver, ConstraintGraph


@pytest.fixture
def config():
    return ArbitrageConfig()


@pytest.fixture
def solver():
    return BranchAndBoundSolver(timeout_seconds=5.0)


@pytest.fixture
def binary_graph():
    graph = ConstraintGraph(2)
    graph.add_exactly_one_constraint([0, 1])
    return graph


@pytest.fixture
def three_way_graph():
    graph = ConstraintGraph(3)
    graph.add_exactly_one_constraint([0, 1, 2])
    return graph


@pytest.fixture
def btc_market():
    return Market.binary("0xbtc", "btc_yes", "btc_no", question="Will BTC exceed $100k?")


@pytest.fixture
def trump_pa_market():
    return Market.binary("0xtrump_pa", "trump_pa_yes", "trump_pa_no", question="Trump wins PA?")


@pytest.fixture
def gop_pa_market():
    return Market.binary("0xgop_pa", "gop_pa_yes", "gop_pa_no", question="Republican wins PA?")


@pytest.fixture
def election_market():
    return Market(
        condition_id="0xelection",
        question="Who wins the election?",
        token_ids=["cand_a", "cand_b", "cand_c"],
        outcomes=["A", "B", "C"],
    )
