"""
Strategy graph model.

Normalizes the node/edge payloads produced by the visual editor into typed,
immutable objects the compiler and interpreter can rely on.

Handles:
- ReactFlow style node types ("ifNode", "buyNode", ...) and plain names ("if", "If")
- {source, target, sourceHandle} edges as well as {from: {nodeId, port}, to: {...}}
- Operand slots stored as {parameterData: {...}}, bare strings or {paramName}/{value}
"""

import copy
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class NodeKind(Enum):
    """Closed set of node kinds the editor can emit"""
    INPUT = "input"
    INPUT_INDICATOR = "inputIndicator"
    INPUT_PRICE = "inputPrice"
    INDICATOR = "indicator"
    IF = "if"
    BUY = "buy"
    SELL = "sell"
    BLOCK = "block"
    SET_PARAMETER = "setParameter"
    RECORD = "record"
    EXECUTE = "execute"

    @classmethod
    def from_raw(cls, raw: Any) -> Optional['NodeKind']:
        if isinstance(raw, NodeKind):
            return raw
        if not isinstance(raw, str):
            return None
        key = raw.strip()
        if key.endswith('Node'):
            key = key[:-4]
        return _KIND_LOOKUP.get(key.lower().replace('_', ''))


_KIND_LOOKUP = {k.value.lower(): k for k in NodeKind}


# Every kind lives in exactly one of these sets; see classify()
PRODUCER_KINDS = frozenset({NodeKind.INPUT_INDICATOR, NodeKind.INPUT_PRICE, NodeKind.INDICATOR})
PASS_THROUGH_KINDS = frozenset({NodeKind.INPUT, NodeKind.SET_PARAMETER, NodeKind.RECORD})
CONDITION_KINDS = frozenset({NodeKind.IF})
ACTION_KINDS = frozenset({NodeKind.BUY, NodeKind.SELL, NodeKind.EXECUTE})
CONTAINER_KINDS = frozenset({NodeKind.BLOCK})

_CLASSES = (
    ('producer', PRODUCER_KINDS),
    ('pass_through', PASS_THROUGH_KINDS),
    ('condition', CONDITION_KINDS),
    ('action', ACTION_KINDS),
    ('container', CONTAINER_KINDS),
)


def classify(kind: NodeKind) -> str:
    """Return the role of a node kind. Raises if a kind was added without a role."""
    for name, kinds in _CLASSES:
        if kind in kinds:
            return name
    raise ValueError(f"Node kind {kind!r} has no execution role")


@dataclass(frozen=True)
class ParameterBinding:
    """Reference from an operand or node to a named strategy parameter"""
    parameter_id: Optional[str]
    label: Optional[str]
    value: Any
    source: str = 'user'
    bound: bool = True

    @classmethod
    def from_raw(cls, raw: Any) -> Optional['ParameterBinding']:
        if raw is None:
            return None
        if isinstance(raw, (str, int, float)) and not isinstance(raw, bool):
            return cls(parameter_id=None, label=None, value=raw)
        if not isinstance(raw, dict) or not raw:
            return None
        if 'paramName' in raw and raw.get('paramName'):
            return cls(parameter_id=None, label=str(raw['paramName']), value=raw.get('value', ''))
        pid = raw.get('parameterId', raw.get('id'))
        label = raw.get('label')
        source = raw.get('source') or ('system' if raw.get('family') == 'system' else 'user')
        return cls(
            parameter_id=str(pid) if pid is not None else None,
            label=str(label) if label is not None else None,
            value=raw.get('value', ''),
            source=source,
        )

    def unbind(self) -> 'ParameterBinding':
        return replace(self, bound=False)


@dataclass(frozen=True)
class Variable:
    """One slot of a node's variable list"""
    label: Optional[str]
    binding: Optional[ParameterBinding]

    @classmethod
    def from_raw(cls, raw: Any) -> Optional['Variable']:
        if raw is None:
            return None
        if isinstance(raw, dict) and 'parameterData' in raw:
            return cls(label=raw.get('label'), binding=ParameterBinding.from_raw(raw.get('parameterData')))
        # Worker-normalized shape ({paramName} / {value}) or a bare dropped string
        return cls(label=None, binding=ParameterBinding.from_raw(raw))


@dataclass(frozen=True)
class Node:
    id: str
    kind: NodeKind
    position: Optional[Tuple[float, float]] = None
    size: Optional[Tuple[float, float]] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return str(self.data.get('label') or '')

    @property
    def is_master(self) -> bool:
        return self.data.get('isMaster') is True

    def variables(self) -> List[Optional[Variable]]:
        return [Variable.from_raw(v) for v in (self.data.get('variables') or [])]

    def variable(self, label: str) -> Optional[Variable]:
        for raw in self.data.get('variables') or []:
            if isinstance(raw, dict) and raw.get('label') == label:
                return Variable.from_raw(raw)
        return None

    def action(self) -> Optional[str]:
        """'buy' / 'sell' for action nodes, None otherwise"""
        if self.kind == NodeKind.BUY:
            return 'buy'
        if self.kind == NodeKind.SELL:
            return 'sell'
        if self.kind == NodeKind.EXECUTE:
            action = str(self.data.get('action') or 'buy').strip().lower()
            return action if action in ('buy', 'sell') else None
        return None


@dataclass(frozen=True)
class Edge:
    id: str
    source: str
    target: str
    source_handle: Optional[str] = None
    label: Optional[str] = None


def _coerce_pair(raw: Any, keys: Tuple[str, str]) -> Optional[Tuple[float, float]]:
    if not isinstance(raw, dict):
        return None
    try:
        a = float(raw[keys[0]])
        b = float(raw[keys[1]])
    except (KeyError, TypeError, ValueError):
        return None
    return (a, b)


def _node_size(raw: Dict[str, Any]) -> Optional[Tuple[float, float]]:
    direct = _coerce_pair(raw, ('width', 'height'))
    if direct:
        return direct
    for key in ('measured', 'style'):
        pair = _coerce_pair(raw.get(key), ('width', 'height'))
        if pair:
            return pair
    return _coerce_pair(raw.get('size'), ('w', 'h'))


def normalize_node(raw: Any) -> Tuple[Optional[Node], Optional[str]]:
    """Convert one raw node payload. Returns (node, warning)."""
    if isinstance(raw, Node):
        return raw, None
    if not isinstance(raw, dict):
        return None, f"Skipped node payload of type {type(raw).__name__}"
    node_id = raw.get('id')
    if node_id is None or str(node_id) == '':
        return None, "Skipped node without an id"
    kind = NodeKind.from_raw(raw.get('type') or raw.get('kind'))
    if kind is None:
        return None, f"Skipped node '{node_id}' with unknown type '{raw.get('type')}'"
    data = raw.get('data') or raw.get('params') or {}
    return Node(
        id=str(node_id),
        kind=kind,
        position=_coerce_pair(raw.get('position'), ('x', 'y')),
        size=_node_size(raw),
        data=copy.deepcopy(data) if isinstance(data, dict) else {},
    ), None


def normalize_nodes(raw_nodes: Optional[List[Any]], warnings: List[str]) -> List[Node]:
    nodes: List[Node] = []
    seen = set()
    for raw in raw_nodes or []:
        node, warning = normalize_node(raw)
        if warning:
            warnings.append(warning)
        if node is None:
            continue
        if node.id in seen:
            warnings.append(f"Duplicate node id '{node.id}'; keeping the first occurrence")
            continue
        seen.add(node.id)
        nodes.append(node)
    return nodes


def _edge_endpoints(raw: Dict[str, Any]) -> Tuple[Any, Any, Optional[str]]:
    if 'from' in raw and 'to' in raw:
        src = raw.get('from') or {}
        dst = raw.get('to') or {}
        return src.get('nodeId'), dst.get('nodeId'), src.get('port')
    if 'sourceNode' in raw and 'targetNode' in raw:
        return raw.get('sourceNode'), raw.get('targetNode'), raw.get('sourcePort')
    return raw.get('source'), raw.get('target'), raw.get('sourceHandle') or raw.get('sourcePort')


def normalize_edges(raw_edges: Optional[List[Any]], node_ids, warnings: List[str]) -> List[Edge]:
    """Convert raw edges, dropping those whose endpoints are not known nodes."""
    edges: List[Edge] = []
    for idx, raw in enumerate(raw_edges or []):
        if isinstance(raw, Edge):
            edge = raw
        elif isinstance(raw, dict):
            source, target, handle = _edge_endpoints(raw)
            if source is None or target is None:
                warnings.append(f"Skipped edge #{idx} without source/target")
                continue
            edge = Edge(
                id=str(raw.get('id') or f"e{idx}"),
                source=str(source),
                target=str(target),
                source_handle=str(handle) if handle is not None else None,
                label=str(raw['label']) if raw.get('label') is not None else None,
            )
        else:
            warnings.append(f"Skipped edge #{idx} of type {type(raw).__name__}")
            continue
        if edge.source not in node_ids or edge.target not in node_ids:
            warnings.append(
                f"Skipped edge '{edge.id}': {edge.source} -> {edge.target} references a missing node"
            )
            continue
        edges.append(edge)
    return edges


def operator_of(node: Node) -> Optional[str]:
    """Operator of an If node, from its third variable or its 'operator' attribute"""
    raw_vars = node.data.get('variables') or []
    candidates = []
    if len(raw_vars) >= 3:
        slot = raw_vars[2]
        if isinstance(slot, dict):
            candidates.append(slot.get('parameterData', slot.get('value')))
        else:
            candidates.append(slot)
    candidates.append(node.data.get('operator'))
    for cand in candidates:
        if isinstance(cand, dict):
            cand = cand.get('value')
        if isinstance(cand, str) and cand.strip():
            return cand.strip()
    return None
