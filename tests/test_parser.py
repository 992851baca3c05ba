"""Graph compilation: producers, entry/in-trade sub-graphs, bindings, warnings."""

from conftest import action_node, breakout_graph, edge, if_node, variable

from nodeflow.indicators.technical import IndicatorKind
from nodeflow.workflows.graph_model import NodeKind, classify
from nodeflow.workflows.parser import compile_graph


def test_every_node_kind_has_a_role():
    for kind in NodeKind:
        assert classify(kind) in ('producer', 'pass_through', 'condition', 'action', 'container')


def test_node_kind_from_editor_names():
    assert NodeKind.from_raw('ifNode') == NodeKind.IF
    assert NodeKind.from_raw('InputIndicator') == NodeKind.INPUT_INDICATOR
    assert NodeKind.from_raw('set_parameter') == NodeKind.SET_PARAMETER
    assert NodeKind.from_raw('macd') is None


class TestBreakoutGraph:
    def setup_method(self):
        nodes, edges = breakout_graph(window=2)
        self.blueprint = compile_graph(nodes, edges)

    def test_producer(self):
        [producer] = self.blueprint.data_producers
        assert producer.node_id == 'hi'
        assert producer.indicator == IndicatorKind.ROLLING_HIGH
        assert producer.window == 2
        assert producer.output_key == 'high_n'

    def test_entry_graph(self):
        entry = self.blueprint.entry_graph
        assert entry.entry_node_id == 'entry'
        assert {n.id for n in entry.nodes} == {'hi', 'entry', 'buy'}

    def test_in_trade_graph_by_position(self):
        in_trade = self.blueprint.in_trade_graph
        assert {n.id for n in in_trade.nodes} == {'stop', 'sell'}
        assert in_trade.entry_node_ids == ('stop',)
        assert [e.id for e in in_trade.edges] == ['e3']

    def test_conditions(self):
        cond = self.blueprint.conditions['stop']
        assert cond.operator == '<'
        assert cond.left.value == 'close'
        assert cond.right.value == 'entry * 0.95'

    def test_no_warnings(self):
        assert self.blueprint.warnings == []

    def test_to_dict(self):
        out = self.blueprint.to_dict()
        assert out['entryGraph']['entryNodeId'] == 'entry'
        assert out['dataProducers'][0]['indicatorType'] == 'rolling_high'
        assert out['dataProducers'][0]['lookback'] == 2
        assert out['warnings'] == []


def test_missing_buy_node():
    nodes = [if_node('c', 'close', '10', '>'), action_node('sell', 'sell')]
    blueprint = compile_graph(nodes, [edge('e1', 'c', 'sell', 'true')])
    assert blueprint.entry_graph.entry_node_id is None
    assert blueprint.entry_graph.is_empty
    assert any('Buy' in w for w in blueprint.warnings)


def test_empty_graph():
    blueprint = compile_graph([], [])
    assert blueprint.entry_graph.is_empty
    assert blueprint.warnings == ["Graph has no nodes."]


def test_in_trade_block_by_connectivity():
    nodes, edges = breakout_graph()
    for node in nodes:
        node.pop('position', None)
    edges.append(edge('e4', 'trade', 'stop'))
    blueprint = compile_graph(nodes, edges)
    assert {n.id for n in blueprint.in_trade_graph.nodes} == {'stop', 'sell'}
    assert blueprint.in_trade_graph.entry_node_ids == ('stop',)


def test_in_trade_falls_back_to_sell_upstream():
    nodes, edges = breakout_graph()
    nodes = [n for n in nodes if n['id'] != 'trade']
    blueprint = compile_graph(nodes, edges)
    assert blueprint.in_trade_graph.entry_node_ids == ('stop',)
    assert any("No 'In a trade' block" in w for w in blueprint.warnings)


def test_master_if_wins():
    nodes = [
        if_node('a', 'close', '1', '>'),
        if_node('b', 'close', '2', '>', isMaster=True),
        action_node('buy', 'buy'),
    ]
    edges = [edge('e1', 'a', 'buy', 'true'), edge('e2', 'b', 'buy', 'true')]
    assert compile_graph(nodes, edges).entry_graph.entry_node_id == 'b'


def test_root_if_chosen_over_child():
    nodes = [
        if_node('child', 'close', '2', '>'),
        if_node('root', 'close', '1', '>'),
        action_node('buy', 'buy'),
    ]
    edges = [edge('e1', 'root', 'child', 'true'), edge('e2', 'child', 'buy', 'true')]
    blueprint = compile_graph(nodes, edges)
    assert blueprint.entry_graph.entry_node_id == 'root'
    assert not any('Ambiguous' in w for w in blueprint.warnings)


def test_ambiguous_roots_warn_and_pick_first_discovered():
    nodes = [
        if_node('a', 'close', '1', '>'),
        if_node('b', 'close', '2', '>'),
        action_node('buy', 'buy'),
    ]
    edges = [edge('e1', 'a', 'buy', 'true'), edge('e2', 'b', 'buy', 'true')]
    blueprint = compile_graph(nodes, edges)
    assert blueprint.entry_graph.entry_node_id == 'a'
    assert any('Ambiguous' in w for w in blueprint.warnings)


def test_parameter_snapshot_refreshes_binding():
    nodes = [
        if_node('entry', 'close', '1', '>'),
        action_node('buy', 'buy'),
    ]
    nodes[0]['data']['variables'][1] = variable('right', '5', parameterId='p1', label='threshold')
    params = [{'id': 'p1', 'label': 'threshold', 'value': '7'}]
    blueprint = compile_graph(nodes, [edge('e1', 'entry', 'buy', 'true')], params)
    assert blueprint.conditions['entry'].right.value == '7'
    assert blueprint.conditions['entry'].right.bound


def test_deleted_parameter_is_unbound():
    nodes = [
        if_node('entry', 'close', '1', '>'),
        action_node('buy', 'buy'),
    ]
    nodes[0]['data']['variables'][1] = variable('right', '5', parameterId='gone', label='threshold')
    params = [{'id': 'other', 'label': 'x', 'value': '1'}]
    blueprint = compile_graph(nodes, [edge('e1', 'entry', 'buy', 'true')], params)
    assert not blueprint.conditions['entry'].right.bound
    assert any('deleted parameter' in w for w in blueprint.warnings)


def test_indicator_lookback_from_parameter():
    nodes, edges = breakout_graph()
    data = nodes[0]['data']
    del data['lookback']
    data['lookbackParamName'] = 'Lookback'
    blueprint = compile_graph(nodes, edges, [{'id': 'p9', 'label': 'Lookback', 'value': 12}])
    assert blueprint.data_producers[0].window == 12


def test_invalid_lookback_defaults_with_warning():
    nodes, edges = breakout_graph()
    nodes[0]['data']['lookback'] = 'abc'
    blueprint = compile_graph(nodes, edges)
    assert blueprint.data_producers[0].window == 30
    assert any('invalid lookback' in w for w in blueprint.warnings)


def test_output_key_default_warns():
    nodes, edges = breakout_graph()
    del nodes[0]['data']['outputParamName']
    blueprint = compile_graph(nodes, edges)
    assert blueprint.data_producers[0].output_key == 'indicator_output'
    assert any("default 'indicator_output'" in w for w in blueprint.warnings)


def test_output_key_from_set_parameter():
    nodes, edges = breakout_graph()
    del nodes[0]['data']['outputParamName']
    nodes.append({'id': 'setp', 'type': 'setParameter', 'data': {'parameterName': 'hh'}})
    edges.append(edge('e9', 'hi', 'setp'))
    blueprint = compile_graph(nodes, edges)
    assert blueprint.data_producers[0].output_key == 'hh'


def test_dangling_edges_and_bad_nodes_are_reported():
    nodes, edges = breakout_graph()
    nodes.append({'id': 'weird', 'type': 'teleporter'})
    edges.append(edge('bad', 'entry', 'nowhere'))
    blueprint = compile_graph(nodes, edges)
    assert blueprint.entry_graph.entry_node_id == 'entry'
    assert any("unknown type 'teleporter'" in w for w in blueprint.warnings)
    assert any("Skipped edge 'bad'" in w for w in blueprint.warnings)


def test_legacy_from_to_edges():
    nodes = [if_node('c', 'close', '1', '>'), action_node('buy', 'buy')]
    edges = [{'from': {'nodeId': 'c', 'port': 'true'}, 'to': {'nodeId': 'buy', 'port': 'in'}}]
    blueprint = compile_graph(nodes, edges)
    assert blueprint.entry_graph.entry_node_id == 'c'
    assert blueprint.entry_graph.edges[0].source_handle == 'true'


def test_cycle_is_reported():
    nodes = [
        if_node('a', 'close', '1', '>'),
        if_node('b', 'close', '2', '>'),
        action_node('buy', 'buy'),
    ]
    edges = [
        edge('e1', 'a', 'b', 'true'),
        edge('e2', 'b', 'a', 'false'),
        edge('e3', 'b', 'buy', 'true'),
    ]
    blueprint = compile_graph(nodes, edges)
    assert blueprint.entry_graph.entry_node_id is not None
    assert any('Cycle detected in the entry graph' in w for w in blueprint.warnings)


def test_compile_does_not_mutate_input():
    nodes, edges = breakout_graph()
    before = repr((nodes, edges))
    compile_graph(nodes, edges)
    assert repr((nodes, edges)) == before
