"""
Technical indicator series over a close-style price list.

Every function returns a list as long as its input, with None where there is
not enough history yet. All functions are pure and sum left to right so the
same input always produces bit-identical output.

Warm-up behaviour:
- rolling high/low: extreme of the `window` bars BEFORE bar i (a breakout level),
  None until that many bars exist
- SMA / Bollinger: progressive window at the start, visible from the first bar
- EMA: seeded with the SMA of the first `window` bars
- RSI: simple average gain/loss over min(14, window) changes
- ATR: progressive mean true range; close-to-close proxy unless high/low exist
"""

import math
from enum import Enum
from typing import Any, Iterable, List, Optional, Sequence

from nodeflow.integrations.price_data import PriceBar, closes

Series = List[Optional[float]]

RSI_MAX_PERIOD = 14
BOLLINGER_STDDEV = 2.0


class IndicatorKind(Enum):
    ROLLING_HIGH = "rolling_high"
    ROLLING_LOW = "rolling_low"
    SMA = "sma"
    EMA = "ema"
    RSI = "rsi"
    BOLLINGER_UPPER = "bollinger_upper"
    BOLLINGER_LOWER = "bollinger_lower"
    ATR = "atr"

    @classmethod
    def parse(cls, raw: Any) -> Optional['IndicatorKind']:
        if isinstance(raw, IndicatorKind):
            return raw
        if not isinstance(raw, str):
            return None
        key = raw.strip().lower().replace('-', '_').replace(' ', '_')
        return _ALIASES.get(key)


_ALIASES = {k.value: k for k in IndicatorKind}
_ALIASES.update({
    '30d_high': IndicatorKind.ROLLING_HIGH,
    'high': IndicatorKind.ROLLING_HIGH,
    'highest': IndicatorKind.ROLLING_HIGH,
    'rollinghigh': IndicatorKind.ROLLING_HIGH,
    '30d_low': IndicatorKind.ROLLING_LOW,
    'low': IndicatorKind.ROLLING_LOW,
    'lowest': IndicatorKind.ROLLING_LOW,
    'rollinglow': IndicatorKind.ROLLING_LOW,
    'bb_upper': IndicatorKind.BOLLINGER_UPPER,
    'bollingerupper': IndicatorKind.BOLLINGER_UPPER,
    'bb_lower': IndicatorKind.BOLLINGER_LOWER,
    'bollingerlower': IndicatorKind.BOLLINGER_LOWER,
})


def rolling_high(values: Sequence[float], window: int) -> Series:
    series: Series = [None] * len(values)
    for i in range(window, len(values)):
        highest = values[i - window]
        for j in range(i - window + 1, i):
            if values[j] > highest:
                highest = values[j]
        series[i] = highest
    return series


def rolling_low(values: Sequence[float], window: int) -> Series:
    series: Series = [None] * len(values)
    for i in range(window, len(values)):
        lowest = values[i - window]
        for j in range(i - window + 1, i):
            if values[j] < lowest:
                lowest = values[j]
        series[i] = lowest
    return series


def sma(values: Sequence[float], window: int) -> Series:
    series: Series = [None] * len(values)
    for i in range(len(values)):
        start = max(0, i - window + 1)
        total = 0.0
        for j in range(start, i + 1):
            total += values[j]
        series[i] = total / (i - start + 1)
    return series


def ema(values: Sequence[float], window: int) -> Series:
    series: Series = [None] * len(values)
    if len(values) < window:
        return series
    multiplier = 2.0 / (window + 1)
    total = 0.0
    for j in range(window):
        total += values[j]
    current = total / window
    series[window - 1] = current
    for i in range(window, len(values)):
        current = (values[i] - current) * multiplier + current
        series[i] = current
    return series


def rsi(values: Sequence[float], window: int) -> Series:
    period = min(RSI_MAX_PERIOD, window)
    series: Series = [None] * len(values)
    for i in range(period, len(values)):
        gains = 0.0
        losses = 0.0
        for j in range(i - period + 1, i + 1):
            change = values[j] - values[j - 1]
            if change > 0:
                gains += change
            else:
                losses -= change
        avg_gain = gains / period
        avg_loss = losses / period
        if avg_loss == 0:
            series[i] = 100.0
        else:
            series[i] = 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)
    return series


def bollinger(values: Sequence[float], window: int, upper: bool = True,
              num_std: float = BOLLINGER_STDDEV) -> Series:
    series: Series = [None] * len(values)
    for i in range(len(values)):
        start = max(0, i - window + 1)
        count = i - start + 1
        total = 0.0
        for j in range(start, i + 1):
            total += values[j]
        mean = total / count
        variance = 0.0
        for j in range(start, i + 1):
            variance += (values[j] - mean) ** 2
        sd = math.sqrt(variance / count)
        series[i] = mean + num_std * sd if upper else mean - num_std * sd
    return series


def atr(values: Sequence[float], window: int,
        highs: Optional[Sequence[float]] = None,
        lows: Optional[Sequence[float]] = None) -> Series:
    """
    Progressive average true range from bar 1 onward.

    Without high/low data the true range collapses to |close - prev close|.
    """
    n = len(values)
    use_range = highs is not None and lows is not None and len(highs) == n and len(lows) == n
    true_ranges: Series = [None] * n
    for j in range(1, n):
        prev_close = values[j - 1]
        if use_range:
            true_ranges[j] = max(highs[j] - lows[j], abs(highs[j] - prev_close), abs(lows[j] - prev_close))
        else:
            true_ranges[j] = abs(values[j] - prev_close)

    series: Series = [None] * n
    for i in range(1, n):
        start = max(1, i - window + 1)
        total = 0.0
        for j in range(start, i + 1):
            total += true_ranges[j]
        series[i] = total / (i - start + 1)
    return series


def _ranges(prices: Iterable[Any]):
    bars = list(prices)
    if bars and all(isinstance(b, PriceBar) and b.high is not None and b.low is not None for b in bars):
        return [b.high for b in bars], [b.low for b in bars]
    return None, None


def compute_indicator(prices: Iterable[Any], kind: Any, window: int) -> Series:
    """
    Compute one indicator series.

    Args:
        prices: PriceBar list (or plain close values)
        kind: IndicatorKind or one of its names/aliases ("sma", "30d_high", ...)
        window: lookback in bars, >= 1

    Raises:
        ValueError: unknown indicator or invalid window
    """
    indicator = IndicatorKind.parse(kind)
    if indicator is None:
        raise ValueError(f"Unknown indicator '{kind}'")
    try:
        window = int(window)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid indicator window {window!r}")
    if window < 1:
        raise ValueError(f"Indicator window must be >= 1, got {window}")

    bars = list(prices)
    values = closes(bars)

    if indicator == IndicatorKind.ROLLING_HIGH:
        return rolling_high(values, window)
    if indicator == IndicatorKind.ROLLING_LOW:
        return rolling_low(values, window)
    if indicator == IndicatorKind.SMA:
        return sma(values, window)
    if indicator == IndicatorKind.EMA:
        return ema(values, window)
    if indicator == IndicatorKind.RSI:
        return rsi(values, window)
    if indicator == IndicatorKind.BOLLINGER_UPPER:
        return bollinger(values, window, upper=True)
    if indicator == IndicatorKind.BOLLINGER_LOWER:
        return bollinger(values, window, upper=False)
    if indicator == IndicatorKind.ATR:
        highs, lows = _ranges(bars)
        return atr(values, window, highs, lows)
    raise ValueError(f"Indicator '{indicator.value}' has no implementation")


def calc_max_drawdown(equity_series: Iterable[float]) -> float:
    """Largest peak-to-trough fractional decline, one pass."""
    peak = -math.inf
    max_dd = 0.0
    for v in equity_series:
        if v > peak:
            peak = v
        if peak > 0:
            dd = (peak - v) / peak
            if dd > max_dd:
                max_dd = dd
    return max_dd
