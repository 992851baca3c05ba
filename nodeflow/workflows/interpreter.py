"""
Per-bar interpreter for compiled sub-graphs.

Given a bar index, its price, the open trade's entry price and the prepared
data series, SubgraphWalker walks a sub-graph from each of its entry nodes and
returns the first Buy/Sell action reached.
"""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from nodeflow import config
from nodeflow.indicators.technical import Series, compute_indicator
from nodeflow.integrations.price_data import PriceBar
from nodeflow.workflows.expressions import ExpressionError, evaluate, references
from nodeflow.workflows.graph_model import Edge, Node, ParameterBinding, classify
from nodeflow.workflows.parser import Blueprint, CompiledCondition, SubGraph

logger = logging.getLogger(__name__)

PRICE_NAMES = ('close', 'price', 'live_price')
OPERATORS = ('>', '<', '>=', '<=', '==')


@dataclass(frozen=True)
class BarContext:
    index: int
    price: float
    entry_price: Optional[float]
    series: Dict[str, Series]


@dataclass(frozen=True)
class Action:
    kind: str       # 'buy' | 'sell'
    node_id: str


def build_data_series(blueprint: Blueprint, prices: List[PriceBar]) -> Dict[str, Series]:
    """Compute every producer's full series up front, keyed by output name."""
    series: Dict[str, Series] = {}
    for producer in blueprint.data_producers:
        if producer.kind == 'price':
            series[producer.output_key] = [bar.price for bar in prices]
        else:
            series[producer.output_key] = compute_indicator(prices, producer.indicator, producer.window)
    return series


def _finite(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    return num if math.isfinite(num) else None


def resolve_operand(binding: Optional[ParameterBinding], ctx: BarContext) -> Optional[float]:
    """
    Resolve one If operand at the current bar.

    Order: producer series, close-price expression, entry-price expression,
    numeric literal. None when nothing resolves or the result is not finite.
    """
    if binding is None or not binding.bound:
        return None

    value = binding.value
    keys = [binding.parameter_id, binding.label]
    if isinstance(value, str):
        keys.append(value.strip())
    for key in keys:
        if key and key in ctx.series:
            return _finite(ctx.series[key][ctx.index])

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return _finite(value)

    text = str(value).strip() if value is not None else ''
    label = (binding.label or '').lower()
    variables: Dict[str, float] = {}

    if not text:
        return ctx.price if 'close' in label else None
    if any(references(text, name) for name in PRICE_NAMES):
        variables.update({name: ctx.price for name in PRICE_NAMES})
    if references(text, 'entry'):
        if ctx.entry_price is None:
            return None
        variables['entry'] = ctx.entry_price

    try:
        return _finite(evaluate(text, variables))
    except ExpressionError:
        return None


def compare(left: Optional[float], right: Optional[float], operator: Optional[str]) -> bool:
    if left is None or right is None:
        return False
    if operator == '>':
        return left > right
    if operator == '<':
        return left < right
    if operator == '>=':
        return left >= right
    if operator == '<=':
        return left <= right
    if operator == '==':
        return left == right
    return False


def evaluate_condition(condition: Optional[CompiledCondition], ctx: BarContext) -> bool:
    if condition is None:
        return False
    left = resolve_operand(condition.left, ctx)
    right = resolve_operand(condition.right, ctx)
    result = compare(left, right, condition.operator)
    if config.DEBUG:
        logger.info(
            f"  [IF] Node {condition.node_id} bar {ctx.index}: {left} {condition.operator} {right} = {result}"
        )
    return result


def _takes_branch(edge: Edge, node_id: str, outcome: bool) -> bool:
    handle = (edge.source_handle or '').strip().lower()
    label = (edge.label or '').strip().lower()
    want = 'true' if outcome else 'false'
    if handle == want or handle == f"{node_id.lower()}-{want}" or handle.endswith(f"-{want}"):
        return True
    if label == want:
        return True
    if _is_tagged(handle) or label in ('true', 'false'):
        return False
    # Older editor versions tagged the branches by handle side
    side = 'bottom' if outcome else 'right'
    return handle == side or handle.endswith(f"-{side}")


def _is_tagged(handle: str) -> bool:
    return any(handle == tag or handle.endswith(f"-{tag}") for tag in ('true', 'false'))


class SubgraphWalker:
    """Walks one compiled sub-graph. Build once per run, call next_action() per bar."""

    def __init__(self, graph: SubGraph, conditions: Dict[str, CompiledCondition]):
        self.graph = graph
        self.conditions = conditions
        self.nodes: Dict[str, Node] = {n.id: n for n in graph.nodes}
        self.outgoing: Dict[str, List[Edge]] = defaultdict(list)
        for edge in graph.edges:
            self.outgoing[edge.source].append(edge)

    def next_action(self, ctx: BarContext) -> Optional[Action]:
        for entry_id in self.graph.entry_node_ids:
            action = self._walk(entry_id, ctx)
            if action is not None:
                return action
        return None

    def _walk(self, start_id: str, ctx: BarContext) -> Optional[Action]:
        visited = set()
        stack = [start_id]
        while stack:
            node_id = stack.pop()
            if node_id in visited:
                continue
            visited.add(node_id)
            node = self.nodes.get(node_id)
            if node is None:
                continue

            role = classify(node.kind)
            if role == 'action':
                kind = node.action()
                if kind is not None:
                    return Action(kind, node.id)
            elif role == 'condition':
                outcome = evaluate_condition(self.conditions.get(node.id), ctx)
                for edge in self.outgoing.get(node.id, []):
                    if _takes_branch(edge, node.id, outcome):
                        stack.append(edge.target)
                        break
            else:
                # producer / pass-through / container: continue along every edge, first edge first
                for edge in reversed(self.outgoing.get(node.id, [])):
                    stack.append(edge.target)
        return None
