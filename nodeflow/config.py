"""
nodeflow - runtime configuration

All knobs are read from the environment once at import time.
"""

import os


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        return default


# Toggle verbose per-node logging when NODEFLOW_DEBUG=1 in env
DEBUG = os.environ.get('NODEFLOW_DEBUG', '0') == '1'

# Fee charged on notional at entry and at exit, in percent (0.05 = 0.05%)
DEFAULT_FEE_PERCENT = _env_float('NODEFLOW_FEE_PERCENT', 0.05)

# Equity is normalized to 1.0 unless a run asks for an explicit capital
DEFAULT_INITIAL_CAPITAL = _env_float('NODEFLOW_INITIAL_CAPITAL', 1.0)

# Shortest price series a simulation accepts
MIN_BARS = max(1, _env_int('NODEFLOW_MIN_BARS', 2))

# Lookback used when an indicator node carries no usable window
DEFAULT_LOOKBACK = 30

# In-trade block rectangle when the editor did not report the block size
DEFAULT_BLOCK_WIDTH = 400.0
DEFAULT_BLOCK_HEIGHT = 500.0

JOB_POLL_INTERVAL = _env_float('NODEFLOW_JOB_POLL_INTERVAL', 0.2)

CORS_ORIGINS = [
    o.strip() for o in os.environ.get(
        'NODEFLOW_CORS_ORIGINS',
        'http://localhost:5173,http://127.0.0.1:5173'
    ).split(',') if o.strip()
]

PORT = _env_int('PORT', 5000)
