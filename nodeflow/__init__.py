"""
nodeflow - visual trading strategy graphs compiled into blueprints and
backtested bar by bar.
"""

from nodeflow.backtest.backtest_core import SimulationResult, Trade, run_simulation
from nodeflow.indicators.technical import IndicatorKind, compute_indicator
from nodeflow.integrations.price_data import PriceBar, normalize_prices
from nodeflow.workflows.parser import Blueprint, compile_graph

__all__ = [
    'Blueprint', 'compile_graph',
    'IndicatorKind', 'compute_indicator',
    'PriceBar', 'normalize_prices',
    'SimulationResult', 'Trade', 'run_simulation',
]
