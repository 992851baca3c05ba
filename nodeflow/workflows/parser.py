"""
Graph compiler.

Turns the raw node/edge snapshot of the visual editor into a Blueprint:
- data producers: nodes that emit a named series (price pass-through, indicators)
- entry graph: everything upstream of the Buy action, rooted at one If condition
- in-trade graph: the "In a trade" block, every If inside is an exit trigger
- compiled conditions: If operands with their parameter bindings resolved

Compilation never raises on malformed input. Whatever cannot be resolved is
left out and described in Blueprint.warnings.
"""

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from nodeflow import config
from nodeflow.indicators.technical import IndicatorKind
from nodeflow.workflows.graph_model import (
    Edge,
    Node,
    NodeKind,
    ParameterBinding,
    classify,
    normalize_edges,
    normalize_nodes,
    operator_of,
)

logger = logging.getLogger(__name__)

DEFAULT_INDICATOR_KEY = 'indicator_output'
DEFAULT_PRICE_KEY = 'live_price'
IN_TRADE_LABEL = 'in a trade'


@dataclass(frozen=True)
class DataProducer:
    node_id: str
    kind: str                       # 'indicator' | 'price'
    output_key: str
    indicator: Optional[IndicatorKind] = None
    window: Optional[int] = None
    price_format: str = 'close'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'nodeId': self.node_id,
            'type': self.kind,
            'indicatorType': self.indicator.value if self.indicator else None,
            'lookback': self.window,
            'format': self.price_format if self.kind == 'price' else None,
            'outputParamName': self.output_key,
        }


@dataclass(frozen=True)
class CompiledCondition:
    node_id: str
    left: Optional[ParameterBinding]
    right: Optional[ParameterBinding]
    operator: Optional[str]


@dataclass(frozen=True)
class SubGraph:
    nodes: Tuple[Node, ...] = ()
    edges: Tuple[Edge, ...] = ()
    entry_node_ids: Tuple[str, ...] = ()

    @property
    def entry_node_id(self) -> Optional[str]:
        return self.entry_node_ids[0] if len(self.entry_node_ids) == 1 else None

    @property
    def is_empty(self) -> bool:
        return not self.entry_node_ids

    def to_dict(self) -> Dict[str, Any]:
        return {
            'nodes': [{'id': n.id, 'type': n.kind.value} for n in self.nodes],
            'edges': [
                {'id': e.id, 'source': e.source, 'target': e.target,
                 'sourceHandle': e.source_handle, 'label': e.label}
                for e in self.edges
            ],
            'entryNodeId': self.entry_node_id,
            'entryNodeIds': list(self.entry_node_ids),
        }


@dataclass
class Blueprint:
    data_producers: List[DataProducer] = field(default_factory=list)
    entry_graph: SubGraph = field(default_factory=SubGraph)
    in_trade_graph: SubGraph = field(default_factory=SubGraph)
    conditions: Dict[str, CompiledCondition] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'dataProducers': [p.to_dict() for p in self.data_producers],
            'entryGraph': self.entry_graph.to_dict(),
            'inTradeGraph': self.in_trade_graph.to_dict(),
            'warnings': list(self.warnings),
        }


class _GraphIndex:
    """Adjacency lookups over the normalized snapshot"""

    def __init__(self, nodes: List[Node], edges: List[Edge]):
        self.nodes = nodes
        self.edges = edges
        self.by_id = {n.id: n for n in nodes}
        self.order = {n.id: i for i, n in enumerate(nodes)}
        self.outgoing: Dict[str, List[Edge]] = defaultdict(list)
        self.incoming: Dict[str, List[Edge]] = defaultdict(list)
        for edge in edges:
            self.outgoing[edge.source].append(edge)
            self.incoming[edge.target].append(edge)

    def of_kind(self, kind: NodeKind) -> List[Node]:
        return [n for n in self.nodes if n.kind == kind]

    def downstream_first(self, start_id: str, kind: NodeKind) -> Optional[Node]:
        """Breadth-first search along edges for the first node of `kind`"""
        seen = {start_id}
        queue = deque(e.target for e in self.outgoing.get(start_id, []))
        while queue:
            node_id = queue.popleft()
            if node_id in seen:
                continue
            seen.add(node_id)
            node = self.by_id[node_id]
            if node.kind == kind:
                return node
            queue.extend(e.target for e in self.outgoing.get(node_id, []))
        return None

    def upstream(self, start_ids: Iterable[str]) -> Tuple[List[str], Set[str]]:
        """Reverse breadth-first search. Returns (node ids in discovery order, edge ids)."""
        visited: List[str] = []
        seen: Set[str] = set()
        edge_ids: Set[str] = set()
        queue = deque(start_ids)
        while queue:
            node_id = queue.popleft()
            if node_id in seen:
                continue
            seen.add(node_id)
            visited.append(node_id)
            for edge in self.incoming.get(node_id, []):
                edge_ids.add(edge.id)
                if edge.source not in seen:
                    queue.append(edge.source)
        return visited, edge_ids

    def connected(self, start_id: str) -> List[str]:
        """Undirected breadth-first component of start_id, excluding start_id"""
        seen = {start_id}
        found: List[str] = []
        queue = deque([start_id])
        while queue:
            node_id = queue.popleft()
            neighbours = [e.target for e in self.outgoing.get(node_id, [])]
            neighbours += [e.source for e in self.incoming.get(node_id, [])]
            for other in neighbours:
                if other not in seen:
                    seen.add(other)
                    found.append(other)
                    queue.append(other)
        return found

    def subgraph(self, member_ids: Iterable[str], entry_ids: Sequence[str],
                 edge_ids: Optional[Set[str]] = None) -> SubGraph:
        members = set(member_ids)
        nodes = tuple(n for n in self.nodes if n.id in members)
        edges = tuple(
            e for e in self.edges
            if e.source in members and e.target in members and (edge_ids is None or e.id in edge_ids)
        )
        return SubGraph(nodes=nodes, edges=edges, entry_node_ids=tuple(entry_ids))


def _parameter_snapshot(parameters: Optional[List[Any]], nodes: List[Node]) -> Dict[str, Dict[str, Any]]:
    """id -> {label, value}. Explicit parameters win over ones carried by nodes."""
    raw = parameters
    if raw is None:
        for node in nodes:
            if isinstance(node.data.get('parameters'), list):
                raw = node.data['parameters']
                break
    snapshot: Dict[str, Dict[str, Any]] = {}
    for p in raw or []:
        if isinstance(p, dict) and p.get('id') is not None:
            snapshot[str(p['id'])] = {'label': p.get('label'), 'value': p.get('value', '')}
    return snapshot


def _refresh(binding: Optional[ParameterBinding], snapshot: Dict[str, Dict[str, Any]]) -> Optional[ParameterBinding]:
    if binding is None or not binding.parameter_id or binding.parameter_id not in snapshot:
        return binding
    entry = snapshot[binding.parameter_id]
    return replace(binding, label=entry['label'] if entry['label'] is not None else binding.label,
                   value=entry['value'])


def _snapshot_by_label(snapshot: Dict[str, Dict[str, Any]], label: Any) -> Optional[Any]:
    for entry in snapshot.values():
        if entry['label'] == label:
            return entry['value']
    return None


def _as_window(raw: Any) -> Optional[int]:
    if raw is None or isinstance(raw, bool) or raw == '':
        return None
    try:
        window = int(float(raw))
    except (TypeError, ValueError):
        return None
    return window if window >= 1 else None


def _lookback(node: Node, snapshot: Dict[str, Dict[str, Any]], warnings: List[str]) -> int:
    candidates = []
    lookback_var = node.data.get('lookbackVariable')
    if isinstance(lookback_var, dict):
        binding = _refresh(ParameterBinding.from_raw(lookback_var.get('parameterData')), snapshot)
        if binding is not None:
            candidates.append(binding.value)
    name = node.data.get('lookbackParamName') or node.data.get('lookbackParam')
    if name:
        candidates.append(_snapshot_by_label(snapshot, name))
    window_var = node.variable('window')
    if window_var is not None:
        binding = _refresh(window_var.binding, snapshot)
        if binding is not None:
            candidates.append(binding.value)
    candidates += [node.data.get('lookback'), node.data.get('window')]

    raw_values = [c for c in candidates if c is not None and c != '']
    for raw in raw_values:
        window = _as_window(raw)
        if window is not None:
            return window
    if raw_values:
        warnings.append(
            f"Indicator node '{node.id}' has an invalid lookback {raw_values[0]!r}; "
            f"using {config.DEFAULT_LOOKBACK}"
        )
    return config.DEFAULT_LOOKBACK


def _output_key(node: Node, graph: _GraphIndex, default: str, warnings: List[str]) -> str:
    explicit = node.data.get('outputParamName')
    if explicit:
        return str(explicit)
    if node.kind == NodeKind.INDICATOR:
        out_var = node.variable('output')
        if out_var is not None and out_var.binding is not None:
            key = out_var.binding.parameter_id or out_var.binding.label
            if key:
                return str(key)
    setter = graph.downstream_first(node.id, NodeKind.SET_PARAMETER)
    if setter is not None:
        name = setter.data.get('parameterName') or setter.data.get('outputParamName')
        if name:
            return str(name)
    warnings.append(
        f"Could not resolve an output parameter for node '{node.id}'; using default '{default}'"
    )
    return default


def _discover_producers(graph: _GraphIndex, snapshot: Dict[str, Dict[str, Any]],
                        warnings: List[str]) -> List[DataProducer]:
    producers: List[DataProducer] = []
    for node in graph.nodes:
        if classify(node.kind) != 'producer':
            continue
        if node.kind == NodeKind.INPUT_PRICE:
            producer = DataProducer(
                node_id=node.id,
                kind='price',
                output_key=_output_key(node, graph, DEFAULT_PRICE_KEY, warnings),
                price_format=str(node.data.get('format') or 'close'),
            )
        else:
            raw_name = node.data.get('indicator') or node.data.get('type') or 'sma'
            indicator = IndicatorKind.parse(raw_name)
            if indicator is None:
                warnings.append(
                    f"Unknown indicator '{raw_name}' on node '{node.id}'; using rolling high"
                )
                indicator = IndicatorKind.ROLLING_HIGH
            producer = DataProducer(
                node_id=node.id,
                kind='indicator',
                output_key=_output_key(node, graph, DEFAULT_INDICATOR_KEY, warnings),
                indicator=indicator,
                window=_lookback(node, snapshot, warnings),
            )
        if any(p.output_key == producer.output_key for p in producers):
            warnings.append(
                f"Output '{producer.output_key}' of node '{node.id}' is already produced; ignoring it"
            )
            continue
        producers.append(producer)
    return producers


def _compile_conditions(graph: _GraphIndex, snapshot: Dict[str, Dict[str, Any]],
                        producer_keys: Set[str], warnings: List[str]) -> Dict[str, CompiledCondition]:
    conditions: Dict[str, CompiledCondition] = {}
    for node in graph.of_kind(NodeKind.IF):
        slots = node.variables()
        operands: List[Optional[ParameterBinding]] = []
        for idx in (0, 1):
            var = slots[idx] if idx < len(slots) else None
            binding = var.binding if var is not None else None
            pid = binding.parameter_id if binding is not None else None
            if pid and snapshot:
                if pid in snapshot:
                    binding = _refresh(binding, snapshot)
                elif pid not in producer_keys and binding.label not in producer_keys:
                    warnings.append(
                        f"If node '{node.id}' references deleted parameter '{pid}'"
                        f" ({binding.label}); operand is unbound"
                    )
                    binding = binding.unbind()
            if binding is None:
                warnings.append(f"If node '{node.id}' has no {'left' if idx == 0 else 'right'} operand")
            operands.append(binding)
        operator = operator_of(node)
        if operator is None:
            warnings.append(f"If node '{node.id}' has no operator")
        conditions[node.id] = CompiledCondition(node.id, operands[0], operands[1], operator)
    return conditions


def _roots(if_ids: Sequence[str], graph: _GraphIndex, edge_ids: Optional[Set[str]] = None) -> List[str]:
    """If nodes that are not the branch target of another If in the same set"""
    members = set(if_ids)
    roots = []
    for node_id in if_ids:
        parents = [
            e.source for e in graph.incoming.get(node_id, [])
            if (edge_ids is None or e.id in edge_ids) and e.source in members and e.source != node_id
        ]
        if not parents:
            roots.append(node_id)
    return roots


def _choose_entry(if_ids: List[str], graph: _GraphIndex, edge_ids: Set[str],
                  warnings: List[str]) -> Optional[str]:
    masters = [i for i in if_ids if graph.by_id[i].is_master]
    if masters:
        if len(masters) > 1:
            warnings.append(
                f"Several If nodes are marked as master ({', '.join(masters)}); using '{masters[0]}'"
            )
        return masters[0]
    if len(if_ids) == 1:
        return if_ids[0]
    roots = _roots(if_ids, graph, edge_ids)
    if len(roots) == 1:
        return roots[0]
    if roots:
        warnings.append(
            f"Ambiguous entry condition: root If nodes {', '.join(roots)}; using '{roots[0]}'"
        )
        return roots[0]
    warnings.append(
        f"Ambiguous entry condition: every If node has a parent condition; using '{if_ids[0]}'"
    )
    return if_ids[0]


def _entry_graph(graph: _GraphIndex, warnings: List[str]) -> SubGraph:
    buys = graph.of_kind(NodeKind.BUY)
    if not buys:
        buys = [n for n in graph.of_kind(NodeKind.EXECUTE) if n.action() == 'buy']
    if not buys:
        warnings.append("Strategy is missing a 'Buy' node.")
        return SubGraph()
    if len(buys) > 1:
        warnings.append(
            f"Strategy has {len(buys)} Buy nodes; entry logic is taken from '{buys[0].id}'"
        )
    buy = buys[0]
    member_ids, edge_ids = graph.upstream([buy.id])
    if_ids = [i for i in member_ids if graph.by_id[i].kind == NodeKind.IF]
    if not if_ids:
        warnings.append(f"Buy node '{buy.id}' is not reached from any If condition; strategy cannot enter")
        return graph.subgraph(member_ids, (), edge_ids)
    entry = _choose_entry(if_ids, graph, edge_ids, warnings)
    return graph.subgraph(member_ids, (entry,), edge_ids)


def _in_block(node: Node, block: Node) -> bool:
    if node.position is None:
        return False
    bx, by = block.position
    width, height = block.size or (config.DEFAULT_BLOCK_WIDTH, config.DEFAULT_BLOCK_HEIGHT)
    x, y = node.position
    return bx <= x <= bx + width and by <= y <= by + height


def _in_trade_graph(graph: _GraphIndex, warnings: List[str]) -> SubGraph:
    blocks = [
        n for n in graph.of_kind(NodeKind.BLOCK)
        if n.label.strip().lower() == IN_TRADE_LABEL or n.data.get('inTrade') is True
    ]
    if blocks:
        block = blocks[0]
        if len(blocks) > 1:
            warnings.append(f"Several 'In a trade' blocks found; using '{block.id}'")
        if block.position is not None:
            member_ids = [n.id for n in graph.nodes if n.id != block.id and _in_block(n, block)]
        else:
            member_ids = graph.connected(block.id)
        members = set(member_ids)
        entry_ids = [n.id for n in graph.nodes if n.id in members and n.kind == NodeKind.IF]
        if not entry_ids:
            warnings.append(f"'In a trade' block '{block.id}' contains no If conditions")
        return graph.subgraph(member_ids, entry_ids)

    sells = [n for n in graph.nodes if n.kind in (NodeKind.SELL, NodeKind.EXECUTE) and n.action() == 'sell']
    if not sells:
        warnings.append(
            "No 'In a trade' block or Sell node; open positions are only closed at the end of the series"
        )
        return SubGraph()
    member_ids, edge_ids = graph.upstream([n.id for n in sells])
    if_ids = [n.id for n in graph.nodes if n.id in set(member_ids) and n.kind == NodeKind.IF]
    entry_ids = _roots(if_ids, graph, edge_ids) or if_ids
    warnings.append("No 'In a trade' block; exit logic is taken from the conditions upstream of Sell nodes")
    return graph.subgraph(member_ids, entry_ids, edge_ids)


def _find_cycle(sub: SubGraph) -> Optional[str]:
    """Return a node on a directed cycle of the sub-graph, if any"""
    children: Dict[str, List[str]] = defaultdict(list)
    for e in sub.edges:
        children[e.source].append(e.target)
    state: Dict[str, int] = {}
    for root in (n.id for n in sub.nodes):
        if root in state:
            continue
        state[root] = 1
        stack = [(root, iter(children[root]))]
        while stack:
            node_id, it = stack[-1]
            child = next(it, None)
            if child is None:
                state[node_id] = 2
                stack.pop()
            elif state.get(child) == 1:
                return child
            elif child not in state:
                state[child] = 1
                stack.append((child, iter(children[child])))
    return None


def compile_graph(nodes: Optional[List[Any]], edges: Optional[List[Any]],
                  parameters: Optional[List[Any]] = None) -> Blueprint:
    """
    Compile an editor graph snapshot into a Blueprint.

    Args:
        nodes: raw node dicts (or Node objects)
        edges: raw edge dicts (or Edge objects)
        parameters: explicit parameter snapshot [{id, label, value}], optional

    Returns:
        Blueprint; problems are reported in Blueprint.warnings
    """
    warnings: List[str] = []
    if not nodes:
        warnings.append("Graph has no nodes.")
        return _finish(Blueprint(warnings=warnings))

    node_list = normalize_nodes(nodes, warnings)
    if not node_list:
        warnings.append("Graph has no usable nodes.")
        return _finish(Blueprint(warnings=warnings))
    edge_list = normalize_edges(edges, {n.id for n in node_list}, warnings)
    graph = _GraphIndex(node_list, edge_list)

    snapshot = _parameter_snapshot(parameters, node_list)
    producers = _discover_producers(graph, snapshot, warnings)
    producer_keys = {p.output_key for p in producers}
    conditions = _compile_conditions(graph, snapshot, producer_keys, warnings)

    entry_graph = _entry_graph(graph, warnings)
    in_trade_graph = _in_trade_graph(graph, warnings)
    for name, sub in (('entry', entry_graph), ('in-trade', in_trade_graph)):
        on_cycle = _find_cycle(sub)
        if on_cycle is not None:
            warnings.append(
                f"Cycle detected in the {name} graph at node '{on_cycle}'; traversal stops at revisited nodes"
            )

    return _finish(Blueprint(
        data_producers=producers,
        entry_graph=entry_graph,
        in_trade_graph=in_trade_graph,
        conditions=conditions,
        warnings=warnings,
    ))


def _finish(blueprint: Blueprint) -> Blueprint:
    for warning in blueprint.warnings:
        logger.warning(f"[COMPILER] {warning}")
    if config.DEBUG:
        logger.info(
            f"[COMPILER] producers={[p.output_key for p in blueprint.data_producers]} "
            f"entry={blueprint.entry_graph.entry_node_ids} in_trade={blueprint.in_trade_graph.entry_node_ids}"
        )
    return blueprint
