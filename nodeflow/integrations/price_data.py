"""
Price series ingestion.

The network fetch of historical prices lives outside this package; callers hand
us whatever payload they got (CoinGecko [[ts, price], ...] pairs, Alpaca style
bars, or plain dicts) and we normalize it into ascending PriceBar objects.
A seeded random walk generator is provided for demos and tests.
"""

import math
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

PRICE_KEYS = ('live_price', 'close', 'price', 'c')
TIME_KEYS = ('time', 'timestamp', 't')

# CoinGecko style resolutions for synthetic data
SYNTHETIC_CONFIG = {
    '1d': {'step_ms': 24 * 60 * 60 * 1000, 'volatility': 0.02, 'drift': 0.0006},
    '1h': {'step_ms': 60 * 60 * 1000, 'volatility': 0.0125, 'drift': 0.0002},
    '1m': {'step_ms': 60 * 1000, 'volatility': 0.004, 'drift': 0.00005},
}


@dataclass(frozen=True)
class PriceBar:
    """One bar: epoch milliseconds plus the close-style price (optional high/low)"""
    time: Optional[int]
    price: float
    high: Optional[float] = None
    low: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {'time': self.time, 'price': self.price}
        if self.high is not None:
            out['high'] = self.high
        if self.low is not None:
            out['low'] = self.low
        return out


def _finite(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    return num if math.isfinite(num) else None


def parse_time_ms(tval: Any) -> Optional[int]:
    """Timestamps as ms. Second-resolution epochs (10 digits) are promoted."""
    if tval is None or isinstance(tval, bool):
        return None
    if isinstance(tval, datetime):
        if tval.tzinfo is None:
            tval = tval.replace(tzinfo=timezone.utc)
        return int(tval.timestamp() * 1000)
    if isinstance(tval, str):
        s = tval.strip()
        num = _finite(s)
        if num is None:
            try:
                dt = datetime.fromisoformat(s.replace('Z', '+00:00'))
            except ValueError:
                return None
            return parse_time_ms(dt)
        tval = num
    num = _finite(tval)
    if num is None:
        return None
    if 0 < num < 1e12:
        num *= 1000
    return int(num)


def to_price_bar(raw: Any) -> Optional[PriceBar]:
    if isinstance(raw, PriceBar):
        return raw
    if isinstance(raw, (list, tuple)) and len(raw) >= 2:
        price = _finite(raw[1])
        if price is None:
            return None
        return PriceBar(time=parse_time_ms(raw[0]), price=price)
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        price = _finite(raw)
        return PriceBar(time=None, price=price) if price is not None else None
    if not isinstance(raw, dict):
        return None
    price = None
    for key in PRICE_KEYS:
        price = _finite(raw.get(key))
        if price is not None:
            break
    if price is None:
        return None
    tval = None
    for key in TIME_KEYS:
        if raw.get(key) is not None:
            tval = raw.get(key)
            break
    return PriceBar(
        time=parse_time_ms(tval),
        price=price,
        high=_finite(raw.get('high', raw.get('h'))),
        low=_finite(raw.get('low', raw.get('l'))),
    )


def normalize_prices(raw_prices: Optional[Iterable[Any]]) -> List[PriceBar]:
    """Drop unusable entries and sort ascending by time (stable for equal/missing times)."""
    bars = [b for b in (to_price_bar(p) for p in (raw_prices or [])) if b is not None]
    if all(b.time is not None for b in bars):
        bars.sort(key=lambda b: b.time)
    return bars


def generate_synthetic_prices(points: int = 180, start_price: float = 20000.0,
                              resolution: str = '1d', seed: Optional[int] = None,
                              end_ms: Optional[int] = None) -> List[PriceBar]:
    """Geometric random walk, reproducible for a given seed."""
    config = SYNTHETIC_CONFIG.get(resolution, SYNTHETIC_CONFIG['1d'])
    points = max(2, int(points))
    rng = random.Random(seed)
    if end_ms is None:
        end_ms = int(datetime.now(timezone.utc).timestamp() * 1000)
    start_ms = end_ms - config['step_ms'] * (points - 1)

    price = start_price if start_price and start_price > 0 else 1000.0
    bars = []
    for i in range(points):
        shock = config['drift'] + (rng.random() - 0.5) * config['volatility']
        price = max(1.0, price * (1 + shock))
        bars.append(PriceBar(time=start_ms + i * config['step_ms'], price=round(price, 2)))
    return bars


def closes(prices: Iterable[Any]) -> List[float]:
    """Close-style values of a PriceBar list (plain numbers pass through)"""
    out = []
    for p in prices:
        if isinstance(p, PriceBar):
            out.append(p.price)
        else:
            out.append(float(p))
    return out
