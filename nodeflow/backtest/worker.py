"""
One-shot request/response contract for running a strategy off the caller's thread.

Request:  {nodes, edges, prices, feePercent, initialCapital?, parameters?}
Messages: zero or one {status: "progress", data: str}, then exactly one
          {status: "complete", data: <SimulationResult dict>} or
          {status: "error", data: str}
"""

import logging
import traceback
from typing import Any, Callable, Dict, Iterator, Optional

from nodeflow import config
from nodeflow.backtest.backtest_core import run_simulation
from nodeflow.integrations.price_data import normalize_prices
from nodeflow.workflows.parser import compile_graph

logger = logging.getLogger(__name__)

STATUS_PROGRESS = 'progress'
STATUS_COMPLETE = 'complete'
STATUS_ERROR = 'error'


def _message(status: str, data: Any) -> Dict[str, Any]:
    return {'status': status, 'data': data}


def handle_request(request: Optional[Dict[str, Any]],
                   cancel_check: Optional[Callable[[], bool]] = None) -> Iterator[Dict[str, Any]]:
    """Yield the progress/terminal messages for one backtest request."""
    if not isinstance(request, dict):
        yield _message(STATUS_ERROR, "Request must be an object.")
        return
    nodes = request.get('nodes')
    edges = request.get('edges')
    prices = request.get('prices')
    if nodes is None or edges is None or prices is None:
        yield _message(STATUS_ERROR, "Worker did not receive necessary data.")
        return

    try:
        blueprint = compile_graph(nodes, edges, request.get('parameters'))
        bars = normalize_prices(prices)
        if len(bars) != len(prices):
            blueprint.warnings.append(f"Dropped {len(prices) - len(bars)} price entries without a usable price")

        yield _message(STATUS_PROGRESS, "Simulation started...")

        options = {
            'feePercent': request.get('feePercent', config.DEFAULT_FEE_PERCENT),
            'initialCapital': request.get('initialCapital', config.DEFAULT_INITIAL_CAPITAL),
        }
        result = run_simulation(blueprint, bars, options, cancel_check=cancel_check)
        # Data errors travel inside a complete message so callers can render partial results
        yield _message(STATUS_COMPLETE, result.to_dict())
    except Exception as e:
        logger.error(f"[WORKER] Backtest request failed: {e}")
        if config.DEBUG:
            traceback.print_exc()
        yield _message(STATUS_ERROR, str(e))


def run_request(request: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Synchronous helper returning only the terminal message"""
    terminal = None
    for message in handle_request(request):
        if message['status'] != STATUS_PROGRESS:
            terminal = message
    return terminal
