import pytest

from conftest import breakout_graph

from nodeflow.backtest.backtest_manager import BacktestManager
from nodeflow.backtest.worker import handle_request, run_request


def request_for(prices=None, **extra):
    nodes, edges = breakout_graph(window=2)
    req = {'nodes': nodes, 'edges': edges, 'prices': prices if prices is not None else [10, 11, 12, 9, 13],
           'feePercent': 0}
    req.update(extra)
    return req


class TestWorker:
    def test_progress_then_complete(self):
        messages = list(handle_request(request_for()))
        assert [m['status'] for m in messages] == ['progress', 'complete']
        result = messages[-1]['data']
        assert result['error'] is None
        assert result['trades'][0]['entryPrice'] == 12.0
        assert result['trades'][0]['exitPrice'] == 9.0

    @pytest.mark.parametrize('missing', ['nodes', 'edges', 'prices'])
    def test_missing_fields(self, missing):
        req = request_for()
        del req[missing]
        messages = list(handle_request(req))
        assert messages == [{'status': 'error', 'data': 'Worker did not receive necessary data.'}]

    def test_not_an_object(self):
        assert run_request(None)['status'] == 'error'

    def test_data_errors_complete_with_error(self):
        message = run_request(request_for(prices=[]))
        assert message['status'] == 'complete'
        assert message['data']['error'] == 'Price series is empty'

    def test_dropped_prices_are_warned(self):
        message = run_request(request_for(prices=[10, 11, 'x', 12, 9, 13]))
        assert message['status'] == 'complete'
        assert any('Dropped 1 price' in w for w in message['data']['warnings'])
        assert len(message['data']['equitySeries']) == 5


class TestBacktestManager:
    def setup_method(self):
        self.manager = BacktestManager(poll_interval=0.01)

    def teardown_method(self):
        self.manager.shutdown()

    def test_job_completes(self):
        job_id = self.manager.submit_job(request_for())['job_id']
        job = self.manager.wait(job_id, timeout=10)
        assert job['status'] == 'completed'
        assert job['result']['trades'][0]['entryIndex'] == 2
        assert [m['status'] for m in job['messages']] == ['progress', 'complete']
        assert 'request' not in job

    def test_bad_request_fails(self):
        job_id = self.manager.submit_job({'nodes': []})['job_id']
        job = self.manager.wait(job_id, timeout=10)
        assert job['status'] == 'failed'
        assert job['error'] == 'Worker did not receive necessary data.'

    def test_unknown_job(self):
        assert self.manager.get_job('nope') is None
        assert self.manager.cancel_job('nope') is False

    def test_cancel_finished_job(self):
        job_id = self.manager.submit_job(request_for())['job_id']
        self.manager.wait(job_id, timeout=10)
        assert self.manager.cancel_job(job_id) is False

    def test_cancel_queued_job(self):
        manager = BacktestManager(poll_interval=0.01)
        manager.shutdown()
        job_id = manager.submit_job(request_for())['job_id']
        assert manager.cancel_job(job_id) is True
        assert manager.get_job(job_id)['status'] == 'cancelled'
        assert manager.queue == []

    def test_cancel_after_dequeue_clears_flag(self):
        manager = BacktestManager(poll_interval=0.01)
        manager.shutdown()
        job_id = manager.submit_job(request_for())['job_id']
        # the worker has taken the job off the queue but not started it yet
        manager.queue.remove(job_id)
        assert manager.cancel_job(job_id) is True
        assert job_id in manager._cancelled
        manager._run_job(job_id)
        job = manager.get_job(job_id)
        assert job['status'] == 'cancelled'
        assert job['error'] == 'Simulation cancelled'
        assert manager._cancelled == set()
