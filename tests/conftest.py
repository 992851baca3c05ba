"""Shared graph builders for the strategy tests."""

import pytest


def variable(slot, value, **extra):
    """Operand slot; extra keys (parameterId, label, ...) go into parameterData."""
    data = {'value': value}
    data.update(extra)
    return {'label': slot, 'parameterData': data}


def if_node(node_id, left, right, op, position=None, **data):
    data['variables'] = [variable('left', left), variable('right', right), variable('operator', op)]
    node = {'id': node_id, 'type': 'ifNode', 'data': data}
    if position is not None:
        node['position'] = {'x': position[0], 'y': position[1]}
    return node


def action_node(node_id, kind, position=None):
    node = {'id': node_id, 'type': f'{kind}Node', 'data': {}}
    if position is not None:
        node['position'] = {'x': position[0], 'y': position[1]}
    return node


def edge(edge_id, source, target, handle=None):
    raw = {'id': edge_id, 'source': source, 'target': target}
    if handle is not None:
        raw['sourceHandle'] = handle
    return raw


def breakout_graph(window=2, stop='entry * 0.95'):
    """Buy when close breaks the prior `window`-bar high, sell on a stop below entry."""
    nodes = [
        {'id': 'hi', 'type': 'inputIndicator',
         'data': {'indicator': 'rolling_high', 'lookback': window, 'outputParamName': 'high_n'}},
        if_node('entry', 'close', 'high_n', '>'),
        action_node('buy', 'buy'),
        {'id': 'trade', 'type': 'block', 'position': {'x': 0, 'y': 1000},
         'width': 400, 'height': 400, 'data': {'label': 'In a trade'}},
        if_node('stop', 'close', stop, '<', position=(40, 1040)),
        action_node('sell', 'sell', position=(40, 1200)),
    ]
    edges = [
        edge('e1', 'hi', 'entry'),
        edge('e2', 'entry', 'buy', 'entry-true'),
        edge('e3', 'stop', 'sell', 'stop-true'),
    ]
    return nodes, edges


@pytest.fixture
def breakout():
    return breakout_graph()


@pytest.fixture
def scenario_prices():
    return [10.0, 11.0, 12.0, 9.0, 13.0]
