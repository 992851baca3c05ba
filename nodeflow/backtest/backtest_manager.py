"""
Lightweight BacktestManager.
- In-memory job store keyed by job id
- Background worker thread that processes queued requests sequentially
- Each job records the worker messages (progress, then complete/error)
- Cooperative cancellation through the simulator's per-bar check
"""

import copy
import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from nodeflow import config
from nodeflow.backtest.worker import STATUS_COMPLETE, STATUS_ERROR, STATUS_PROGRESS, handle_request

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


class BacktestManager:
    def __init__(self, poll_interval: Optional[float] = None):
        self.jobs_index: Dict[str, Dict[str, Any]] = {}
        self.queue: List[str] = []
        self.lock = threading.Lock()
        self.poll_interval = poll_interval if poll_interval is not None else config.JOB_POLL_INTERVAL
        self._cancelled = set()
        self._stop = threading.Event()
        self.worker_thread = threading.Thread(target=self._worker_loop, daemon=True, name='backtest-worker')
        self.worker_thread.start()

    def submit_job(self, job_request: Dict[str, Any]) -> Dict[str, Any]:
        job_id = job_request.get('job_id') or str(uuid.uuid4())
        now = _now()
        meta = {
            'job_id': job_id,
            'status': 'queued',
            'created_at': now,
            'updated_at': now,
            'request': job_request,
            'messages': [],
            'result': None,
            'error': None,
        }
        with self.lock:
            self.jobs_index[job_id] = meta
            self.queue.append(job_id)
        logger.info(f"[JOBS] Queued backtest job {job_id}")
        return self.get_job(job_id)

    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        with self.lock:
            meta = self.jobs_index.get(job_id)
            if meta is None:
                return None
            snapshot = {k: v for k, v in meta.items() if k != 'request'}
            return copy.deepcopy(snapshot)

    def cancel_job(self, job_id: str) -> bool:
        """Flag a job for cancellation. Returns False for unknown or finished jobs."""
        with self.lock:
            meta = self.jobs_index.get(job_id)
            if meta is None or meta['status'] in ('completed', 'failed', 'cancelled'):
                return False
            if job_id in self.queue:
                self.queue.remove(job_id)
                self._update(meta, status='cancelled', error='Simulation cancelled')
            else:
                self._cancelled.add(job_id)
        return True

    def wait(self, job_id: str, timeout: float = 10.0) -> Optional[Dict[str, Any]]:
        """Block until the job leaves the queued/running states (or timeout)."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            job = self.get_job(job_id)
            if job is None or job['status'] not in ('queued', 'running'):
                return job
            time.sleep(self.poll_interval / 4)
        return self.get_job(job_id)

    def shutdown(self):
        self._stop.set()
        self.worker_thread.join(timeout=5)

    def _update(self, meta: Dict[str, Any], **changes):
        meta.update(changes)
        meta['updated_at'] = _now()

    def _worker_loop(self):
        while not self._stop.is_set():
            job_id = None
            with self.lock:
                if self.queue:
                    job_id = self.queue.pop(0)
            if not job_id:
                time.sleep(self.poll_interval)
                continue
            try:
                self._run_job(job_id)
            except Exception as e:
                logger.exception(f"[JOBS] Job {job_id} crashed")
                with self.lock:
                    self._cancelled.discard(job_id)
                    self._update(self.jobs_index[job_id], status='failed', error=str(e))

    def _run_job(self, job_id: str):
        with self.lock:
            meta = self.jobs_index.get(job_id)
            if meta is None:
                return
            self._update(meta, status='running')
            request = meta['request']

        def cancel_check() -> bool:
            with self.lock:
                return job_id in self._cancelled

        for message in handle_request(request, cancel_check=cancel_check):
            with self.lock:
                meta['messages'].append(message)
                if message['status'] == STATUS_PROGRESS:
                    self._update(meta)
                elif message['status'] == STATUS_COMPLETE:
                    result = message['data']
                    if result.get('error') == 'Simulation cancelled':
                        self._update(meta, status='cancelled', result=result, error=result['error'])
                    else:
                        self._update(meta, status='completed', result=result, error=result.get('error'))
                elif message['status'] == STATUS_ERROR:
                    self._update(meta, status='failed', error=message['data'])
        with self.lock:
            self._cancelled.discard(job_id)
            status = meta['status']
        logger.info(f"[JOBS] Job {job_id} finished with status {status}")


# Create a singleton manager for the running server
_manager = None
_manager_lock = threading.Lock()


def get_manager() -> BacktestManager:
    global _manager
    with _manager_lock:
        if _manager is None:
            _manager = BacktestManager()
        return _manager
