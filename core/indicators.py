"""
Technical Indicators — EMA, RSI, MACD, Bollinger Bands, ATR.
Pure functions over Decimal series (oldest first). Each returns the full
output series; an input shorter than the lookback returns an empty list.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Sequence


@dataclass
class MACDPoint:
    macd: Decimal
    signal: Decimal
    histogram: Decimal


@dataclass
class BollingerPoint:
    upper: Decimal
    middle: Decimal
    lower: Decimal


def sma(values: Sequence[Decimal], period: int) -> List[Decimal]:
    if period <= 0 or len(values) < period:
        return []
    p = Decimal(period)
    window = sum(values[:period], Decimal("0"))
    out = [window / p]
    for i in range(period, len(values)):
        window += values[i] - values[i - period]
        out.append(window / p)
    return out


def ema(values: Sequence[Decimal], period: int) -> List[Decimal]:
    """
    Exponential moving average, seeded with the SMA of the first `period`.

    EMA_t = (price_t - EMA_t-1) * k + EMA_t-1,  k = 2 / (period + 1)
    """
    if period <= 0 or len(values) < period:
        return []
    k = Decimal(2) / Decimal(period + 1)
    prev = sum(values[:period], Decimal("0")) / Decimal(period)
    out = [prev]
    for price in values[period:]:
        prev = (price - prev) * k + prev
        out.append(prev)
    return out


def _wilder(values: Sequence[Decimal], period: int) -> List[Decimal]:
    """SMA seed, then avg_t = (avg_t-1 * (period - 1) + x_t) / period."""
    if period <= 0 or len(values) < period:
        return []
    p = Decimal(period)
    prev = sum(values[:period], Decimal("0")) / p
    out = [prev]
    for value in values[period:]:
        prev = (prev * (p - 1) + value) / p
        out.append(prev)
    return out


def rsi(values: Sequence[Decimal], period: int = 14) -> List[Decimal]:
    """Relative Strength Index with Wilder smoothing. 100 when no losses."""
    if len(values) < period + 1:
        return []

    zero = Decimal("0")
    gains = []
    losses = []
    for i in range(1, len(values)):
        change = values[i] - values[i - 1]
        gains.append(change if change > zero else zero)
        losses.append(-change if change < zero else zero)

    avg_gains = _wilder(gains, period)
    avg_losses = _wilder(losses, period)

    out = []
    for gain, loss in zip(avg_gains, avg_losses):
        if loss == zero:
            out.append(Decimal("100"))
        else:
            rs = gain / loss
            out.append(Decimal("100") - Decimal("100") / (1 + rs))
    return out


def macd(
    values: Sequence[Decimal],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> List[MACDPoint]:
    """MACD line = EMA(fast) - EMA(slow); signal = EMA(signal) of the line."""
    fast_ema = ema(values, fast)
    slow_ema = ema(values, slow)
    if not slow_ema:
        return []

    # Align: slow EMA starts (slow - fast) points later than the fast one
    offset = slow - fast
    line = [f - s for f, s in zip(fast_ema[offset:], slow_ema)]

    signal_line = ema(line, signal)
    if not signal_line:
        return []

    line = line[signal - 1:]
    return [
        MACDPoint(macd=m, signal=s, histogram=m - s)
        for m, s in zip(line, signal_line)
    ]


def bollinger(values: Sequence[Decimal], period: int = 20, std_dev: Decimal = Decimal(2)) -> List[BollingerPoint]:
    """SMA(period) +/- std_dev population standard deviations."""
    if period <= 0 or len(values) < period:
        return []

    p = Decimal(period)
    out = []
    for start, mean in enumerate(sma(values, period)):
        window = values[start:start + period]
        variance = sum(((v - mean) ** 2 for v in window), Decimal("0")) / p
        sd = variance.sqrt()
        out.append(BollingerPoint(
            upper=mean + std_dev * sd,
            middle=mean,
            lower=mean - std_dev * sd,
        ))
    return out


def true_range(highs: Sequence[Decimal], lows: Sequence[Decimal], closes: Sequence[Decimal]) -> List[Decimal]:
    """
    TR = max(H - L, |H - prev_C|, |L - prev_C|).
    The first bar has no previous close and uses H - L.
    """
    out = []
    for i in range(len(closes)):
        hl = highs[i] - lows[i]
        if i == 0:
            out.append(hl)
            continue
        prev_close = closes[i - 1]
        out.append(max(hl, abs(highs[i] - prev_close), abs(lows[i] - prev_close)))
    return out


def atr(
    highs: Sequence[Decimal],
    lows: Sequence[Decimal],
    closes: Sequence[Decimal],
    period: int = 14,
) -> List[Decimal]:
    """Average True Range: Wilder-smoothed true range."""
    if not (len(highs) == len(lows) == len(closes)):
        return []
    return _wilder(true_range(highs, lows, closes), period)
