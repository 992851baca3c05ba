"""
nodeflow - Backend API Server
Compiles strategy graphs and runs backtests for the browser editor.
"""

import logging

from flask import Flask, jsonify, request
from flask_cors import CORS

from nodeflow import config
from nodeflow.backtest.backtest_manager import get_manager
from nodeflow.backtest.worker import run_request
from nodeflow.indicators.technical import compute_indicator
from nodeflow.integrations.price_data import normalize_prices
from nodeflow.workflows.parser import compile_graph

logger = logging.getLogger('nodeflow.backend')
logger.setLevel(logging.INFO)


def create_app(manager=None) -> Flask:
    app = Flask(__name__)
    CORS(app, origins=config.CORS_ORIGINS)

    def backtest_manager():
        return manager if manager is not None else get_manager()

    @app.route('/health', methods=['GET'])
    def health():
        """Health check endpoint"""
        return jsonify({'status': 'ok', 'message': 'nodeflow backend is running'})

    @app.route('/compile', methods=['POST'])
    def compile_endpoint():
        """Compile {nodes, edges, parameters?} and return the blueprint"""
        try:
            req = request.get_json(silent=True) or {}
            if 'nodes' not in req:
                return jsonify({'error': 'nodes required'}), 400
            blueprint = compile_graph(req.get('nodes'), req.get('edges') or [], req.get('parameters'))
            return jsonify(blueprint.to_dict()), 200
        except Exception as e:
            logger.exception("Error compiling graph")
            return jsonify({'error': str(e)}), 500

    @app.route('/indicators', methods=['POST'])
    def indicators_endpoint():
        """Compute one indicator series: {prices, kind, window}"""
        try:
            req = request.get_json(silent=True) or {}
            bars = normalize_prices(req.get('prices'))
            if not bars:
                return jsonify({'error': 'prices required'}), 400
            try:
                series = compute_indicator(bars, req.get('kind'), req.get('window', config.DEFAULT_LOOKBACK))
            except ValueError as e:
                return jsonify({'error': str(e)}), 400
            return jsonify({'kind': req.get('kind'), 'series': series}), 200
        except Exception as e:
            logger.exception("Error computing indicator")
            return jsonify({'error': str(e)}), 500

    @app.route('/execute_backtest', methods=['POST'])
    def execute_backtest():
        """Run {nodes, edges, prices, feePercent} synchronously; returns the terminal worker message"""
        req = request.get_json(silent=True)
        message = run_request(req)
        logger.info(f"/execute_backtest finished with status {message['status']}")
        return jsonify(message), (200 if message['status'] == 'complete' else 400)

    # --- Backtest jobs (background worker thread) ---------------------------------------
    @app.route('/api/backtest/start', methods=['POST'])
    def api_backtest_start():
        """Queue a backtest. Body: {nodes, edges, prices, feePercent, initialCapital?}"""
        try:
            req = request.get_json(silent=True) or {}
            meta = backtest_manager().submit_job(req)
            job_id = meta['job_id']
            return jsonify({
                'job_id': job_id,
                'status_url': f"/api/backtest/status/{job_id}",
                'results_url': f"/api/backtest/results/{job_id}",
            }), 202
        except Exception as e:
            logger.exception("Error starting backtest job")
            return jsonify({'error': str(e)}), 500

    @app.route('/api/backtest/status/<job_id>', methods=['GET'])
    def api_backtest_status(job_id):
        meta = backtest_manager().get_job(job_id)
        if not meta:
            return jsonify({'error': 'job not found'}), 404
        return jsonify({
            'job_id': job_id,
            'status': meta.get('status'),
            'messages': [m for m in meta.get('messages', []) if m['status'] == 'progress'],
            'updated_at': meta.get('updated_at'),
            'error': meta.get('error'),
        }), 200

    @app.route('/api/backtest/results/<job_id>', methods=['GET'])
    def api_backtest_results(job_id):
        meta = backtest_manager().get_job(job_id)
        if not meta:
            return jsonify({'error': 'job not found'}), 404
        return jsonify({'job_id': job_id, 'status': meta.get('status'), 'result': meta.get('result')}), 200

    @app.route('/api/backtest/cancel/<job_id>', methods=['POST'])
    def api_backtest_cancel(job_id):
        if not backtest_manager().cancel_job(job_id):
            return jsonify({'error': 'job not found or already finished'}), 404
        return jsonify({'job_id': job_id, 'status': 'cancelling'}), 202

    return app


app = create_app()
