#!/usr/bin/env python3
"""
Smoke test against a running backend: queues a breakout strategy on synthetic
prices, polls the job and writes the result JSON under ./outputs.
"""
import json
import os
import sys
import time

import requests

from nodeflow.integrations.price_data import generate_synthetic_prices

BASE = os.environ.get('NODEFLOW_BASE_URL', 'http://127.0.0.1:5000')

GRAPH = {
    'nodes': [
        {'id': 'hi', 'type': 'inputIndicator', 'data': {'indicator': 'rolling_high', 'lookback': 20,
                                                        'outputParamName': 'breakout'}},
        {'id': 'entry', 'type': 'ifNode', 'data': {'variables': [
            {'label': 'close', 'parameterData': {'value': 'close'}},
            {'label': 'high', 'parameterData': {'value': 'breakout'}},
            {'label': 'op', 'parameterData': {'value': '>'}},
        ]}},
        {'id': 'buy', 'type': 'buyNode', 'data': {}},
        {'id': 'block', 'type': 'block', 'position': {'x': 0, 'y': 500},
         'data': {'label': 'In a trade'}},
        {'id': 'stop', 'type': 'ifNode', 'position': {'x': 50, 'y': 550}, 'data': {'variables': [
            {'label': 'close', 'parameterData': {'value': 'close'}},
            {'label': 'stop', 'parameterData': {'value': 'entry * 0.95'}},
            {'label': 'op', 'parameterData': {'value': '<'}},
        ]}},
        {'id': 'sell', 'type': 'sellNode', 'position': {'x': 50, 'y': 700}, 'data': {}},
    ],
    'edges': [
        {'id': 'e1', 'source': 'entry', 'target': 'buy', 'sourceHandle': 'true'},
        {'id': 'e2', 'source': 'stop', 'target': 'sell', 'sourceHandle': 'true'},
    ],
}


def main():
    try:
        h = requests.get(f'{BASE}/health', timeout=5).json()
        print('Health:', h)
    except requests.RequestException as e:
        print('Backend health check failed:', e)
        return 2

    prices = [bar.to_dict() for bar in generate_synthetic_prices(250, seed=42)]
    payload = dict(GRAPH, prices=prices, feePercent=0.1)
    try:
        r = requests.post(f'{BASE}/api/backtest/start', json=payload, timeout=10)
        r.raise_for_status()
        job_id = r.json().get('job_id')
        print('Started job:', job_id)
    except requests.RequestException as e:
        print('Failed to start backtest:', e)
        return 3

    for i in range(60):
        try:
            s = requests.get(f'{BASE}/api/backtest/status/{job_id}', timeout=5).json()
        except requests.RequestException as e:
            print('Status request failed:', e)
            break
        status = s.get('status')
        print(f'[{i}] status:', status)
        if status in ('completed', 'failed', 'cancelled'):
            break
        time.sleep(1)

    try:
        res = requests.get(f'{BASE}/api/backtest/results/{job_id}', timeout=10)
        res.raise_for_status()
        data = res.json()
    except requests.RequestException as e:
        print('Failed to fetch results:', e)
        return 4

    outdir = os.path.join(os.getcwd(), 'outputs')
    os.makedirs(outdir, exist_ok=True)
    outpath = os.path.join(outdir, f'backtest_smoke_{job_id}.json')
    with open(outpath, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)
    print('Wrote results to', outpath)

    result = data.get('result') or {}
    print('Trades:', len(result.get('trades') or []),
          'Total return:', result.get('totalReturn'),
          'Max drawdown:', result.get('maxDrawdown'))
    return 0


if __name__ == '__main__':
    sys.exit(main())
