#!/usr/bin/env python3
"""
CLI strategy runner.

Runs a saved editor graph ({nodes, edges, parameters?} JSON) against a price
file or a seeded synthetic random walk and prints the trade ledger and stats.

Usage examples:
  nodeflow-backtest --graph strategy.json --prices btc_daily.json --fee 0.1
  nodeflow-backtest --graph strategy.json --synthetic 365 --seed 7 --json
"""
import argparse
import json
import logging
import sys
from typing import List, Optional

from tabulate import tabulate

from nodeflow import config
from nodeflow.backtest.backtest_core import run_simulation
from nodeflow.integrations.price_data import generate_synthetic_prices, normalize_prices
from nodeflow.workflows.parser import compile_graph


def _load_json(path: str):
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Backtest a visual strategy graph")
    parser.add_argument('--graph', required=True, help="JSON file with nodes/edges")
    source = parser.add_mutually_exclusive_group()
    source.add_argument('--prices', help="JSON price file ([[ts, price], ...] or bar dicts)")
    source.add_argument('--synthetic', type=int, default=None, help="generate N synthetic bars")
    parser.add_argument('--seed', type=int, default=None, help="seed for synthetic prices")
    parser.add_argument('--resolution', default='1d', choices=['1d', '1h', '1m'])
    parser.add_argument('--fee', type=float, default=config.DEFAULT_FEE_PERCENT, help="fee percent per side")
    parser.add_argument('--capital', type=float, default=config.DEFAULT_INITIAL_CAPITAL)
    parser.add_argument('--json', action='store_true', help="print the raw result as JSON")
    parser.add_argument('-v', '--verbose', action='store_true')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO if args.verbose else logging.ERROR,
                        format='[%(asctime)s] %(levelname)s %(message)s')

    graph = _load_json(args.graph)
    if args.prices:
        prices = normalize_prices(_load_json(args.prices))
    else:
        prices = generate_synthetic_prices(args.synthetic or 180, resolution=args.resolution, seed=args.seed)

    blueprint = compile_graph(graph.get('nodes'), graph.get('edges') or [], graph.get('parameters'))
    result = run_simulation(blueprint, prices, {'feePercent': args.fee, 'initialCapital': args.capital})

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
        return 0 if result.success else 1

    for warning in result.warnings:
        print(f"⚠️  {warning}")
    if result.error:
        print(f"❌ {result.error}")

    rows = [
        [n + 1, t.entry_index, f"{t.entry_price:.2f}", t.exit_index, f"{t.exit_price:.2f}",
         f"{(t.net_return or 0) * 100:.2f}%", t.exit_index - t.entry_index]
        for n, t in enumerate(result.trades)
    ]
    if rows:
        print(tabulate(rows, headers=["#", "Entry", "Entry $", "Exit", "Exit $", "Net", "Bars"], tablefmt="pretty"))
    summary = [
        ["Bars", len(prices)],
        ["Trades", len(result.trades)],
        ["Total return", f"{result.total_return * 100:.2f}%"],
        ["Win rate", f"{result.win_rate * 100:.1f}%"],
        ["Avg duration", f"{result.avg_duration:.1f} bars"],
        ["Max drawdown", f"{result.max_drawdown * 100:.2f}%"],
    ]
    print(tabulate(summary, tablefmt="plain"))
    return 0 if result.success else 1


if __name__ == '__main__':
    sys.exit(main())
