"""Combinatorial arbitrage detection for logically linked prediction markets."""

__version__ = "0.1.0"
