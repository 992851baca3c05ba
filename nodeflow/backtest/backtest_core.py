"""
Pure backtest runner: feeds bars to the interpreter, keeps the portfolio
state and derives summary statistics. No I/O, no shared state, so it can be
unit-tested directly and called from the worker, the API and the CLI.

PnL:
- buy spends all cash net of the fee fraction: position = cash * (1 - fee) / price
- sell liquidates the whole position net of the fee: cash = position * price * (1 - fee)
- net_return per trade: (exit / entry) * (1 - fee)^2 - 1
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from nodeflow import config
from nodeflow.indicators.technical import calc_max_drawdown
from nodeflow.integrations.price_data import PriceBar, to_price_bar
from nodeflow.workflows.interpreter import BarContext, SubgraphWalker, build_data_series
from nodeflow.workflows.parser import Blueprint

logger = logging.getLogger(__name__)


@dataclass
class Trade:
    entry_index: int
    entry_price: float
    exit_index: Optional[int] = None
    exit_price: Optional[float] = None
    net_return: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.exit_index is None

    def close(self, index: int, price: float, fee_fraction: float):
        self.exit_index = index
        self.exit_price = price
        self.net_return = (price / self.entry_price) * (1 - fee_fraction) ** 2 - 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'entryIndex': self.entry_index,
            'entryPrice': self.entry_price,
            'exitIndex': self.exit_index,
            'exitPrice': self.exit_price,
            'netReturn': self.net_return,
        }


@dataclass
class SimulationResult:
    equity_series: List[float] = field(default_factory=list)
    trades: List[Trade] = field(default_factory=list)
    total_return: float = 0.0
    win_rate: float = 0.0
    avg_duration: float = 0.0
    max_drawdown: float = 0.0
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'equitySeries': list(self.equity_series),
            'trades': [t.to_dict() for t in self.trades],
            'totalReturn': self.total_return,
            'winRate': self.win_rate,
            'avgDuration': self.avg_duration,
            'maxDrawdown': self.max_drawdown,
            'warnings': list(self.warnings),
            'error': self.error,
        }


def _option(options: Dict[str, Any], camel: str, snake: str, default: float) -> Any:
    if options.get(camel) is not None:
        return options[camel]
    if options.get(snake) is not None:
        return options[snake]
    return default


def _failure(error: str, warnings: List[str], flat_bars: int = 0, capital: float = 1.0,
             equity: Optional[List[float]] = None, trades: Optional[List[Trade]] = None) -> SimulationResult:
    logger.warning(f"[BACKTEST] {error}")
    return SimulationResult(
        equity_series=equity if equity is not None else [capital] * flat_bars,
        trades=trades or [],
        warnings=warnings,
        error=error,
    )


def _validate_prices(prices: Optional[List[Any]]):
    """Returns (bars, error)."""
    bars: List[PriceBar] = []
    for idx, raw in enumerate(prices or []):
        bar = to_price_bar(raw)
        if bar is None:
            return bars, f"Price series contains an invalid bar at index {idx}"
        if bar.price <= 0:
            return bars, f"Price series contains a non-positive price at index {idx}"
        if bars and bar.time is not None and bars[-1].time is not None and bar.time < bars[-1].time:
            return bars, f"Price series is not ordered by time at index {idx}"
        bars.append(bar)
    return bars, None


def summarize(equity: List[float], trades: List[Trade], initial_capital: float) -> Dict[str, float]:
    closed = [t for t in trades if not t.is_open]
    wins = sum(1 for t in closed if t.net_return is not None and t.net_return > 0)
    total_duration = sum(t.exit_index - t.entry_index for t in closed)
    return {
        'total_return': (equity[-1] / initial_capital - 1) if equity else 0.0,
        'win_rate': wins / len(closed) if closed else 0.0,
        'avg_duration': total_duration / len(closed) if closed else 0.0,
        'max_drawdown': calc_max_drawdown(equity),
    }


def run_simulation(blueprint: Optional[Blueprint], prices: Optional[List[Any]],
                   options: Optional[Dict[str, Any]] = None,
                   cancel_check: Optional[Callable[[], bool]] = None) -> SimulationResult:
    """
    Run a compiled strategy over a price series.

    Args:
        blueprint: output of compile_graph
        prices: PriceBar list (raw bar dicts / [ts, price] pairs are accepted too)
        options: {feePercent, initialCapital}
        cancel_check: called once per bar; returning True stops the run

    Returns:
        SimulationResult; failures are reported through .error, never raised
    """
    opts = options or {}
    warnings = list(blueprint.warnings) if blueprint is not None else []

    try:
        fee_percent = float(_option(opts, 'feePercent', 'fee_percent', config.DEFAULT_FEE_PERCENT))
        initial_capital = float(_option(opts, 'initialCapital', 'initial_capital', config.DEFAULT_INITIAL_CAPITAL))
    except (TypeError, ValueError):
        return _failure("feePercent and initialCapital must be numbers", warnings)
    if not math.isfinite(fee_percent) or not 0 <= fee_percent < 100:
        return _failure(f"feePercent must be in [0, 100), got {fee_percent}", warnings)
    if not math.isfinite(initial_capital) or initial_capital <= 0:
        return _failure(f"initialCapital must be positive, got {initial_capital}", warnings)
    fee_fraction = fee_percent / 100.0

    if blueprint is None:
        return _failure("No blueprint to simulate", warnings)
    if not prices:
        return _failure("Price series is empty", warnings)
    bars, error = _validate_prices(prices)
    if error:
        return _failure(error, warnings, len(prices), initial_capital)
    if len(bars) < config.MIN_BARS:
        return _failure(
            f"Price series has {len(bars)} bars; at least {config.MIN_BARS} are required",
            warnings, len(bars), initial_capital
        )
    if blueprint.entry_graph.is_empty:
        return _failure("Strategy has no resolvable entry condition", warnings, len(bars), initial_capital)

    series = build_data_series(blueprint, bars)
    entry_walker = SubgraphWalker(blueprint.entry_graph, blueprint.conditions)
    exit_walker = SubgraphWalker(blueprint.in_trade_graph, blueprint.conditions)

    cash = initial_capital
    position = 0.0
    open_trade: Optional[Trade] = None
    trades: List[Trade] = []
    equity: List[float] = []
    last = len(bars) - 1

    for i, bar in enumerate(bars):
        if cancel_check is not None and cancel_check():
            return _failure("Simulation cancelled", warnings, equity=equity, trades=trades)

        price = bar.price
        ctx = BarContext(
            index=i,
            price=price,
            entry_price=open_trade.entry_price if open_trade is not None else None,
            series=series,
        )

        if open_trade is None:
            # The last bar only liquidates; an entry there would be closed at the same price
            if i < last:
                action = entry_walker.next_action(ctx)
                if action is not None and action.kind == 'buy':
                    position = cash * (1 - fee_fraction) / price
                    cash = 0.0
                    open_trade = Trade(entry_index=i, entry_price=price)
                    if config.DEBUG:
                        logger.info(f"  📍 Bar {i}: BUY @ {price} via node {action.node_id}")
        else:
            action = exit_walker.next_action(ctx)
            if action is not None and action.kind == 'sell':
                cash = position * price * (1 - fee_fraction)
                position = 0.0
                open_trade.close(i, price, fee_fraction)
                trades.append(open_trade)
                open_trade = None
                if config.DEBUG:
                    logger.info(f"  📍 Bar {i}: SELL @ {price} via node {action.node_id}")

        equity.append(cash if open_trade is None else position * price)

    if open_trade is not None:
        price = bars[last].price
        cash = position * price * (1 - fee_fraction)
        position = 0.0
        open_trade.close(last, price, fee_fraction)
        trades.append(open_trade)
        equity[last] = cash

    stats = summarize(equity, trades, initial_capital)
    logger.info(
        f"[BACKTEST] {len(bars)} bars, {len(trades)} trades, "
        f"return={stats['total_return']:.4f}, max_dd={stats['max_drawdown']:.4f}"
    )
    return SimulationResult(
        equity_series=equity,
        trades=trades,
        warnings=warnings,
        **stats,
    )
