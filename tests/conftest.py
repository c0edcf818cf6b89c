import os
import sys
from decimal import Decimal
from typing import List, Sequence

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from data.bar_cache import BarCache  # noqa: E402
from exchange.models import Candle, Timeframe  # noqa: E402

# 2024-01-01T00:00:00Z, aligned to every timeframe
T0 = 1704067200000


def D(value) -> Decimal:
    return Decimal(str(value))


def make_bars(
    closes: Sequence,
    timeframe: Timeframe = Timeframe.H1,
    start: int = T0,
    spread: str = "0.5",
) -> List[Candle]:
    """Candles with the given closes; open = previous close, high/low = +/- spread."""
    bars = []
    prev = D(closes[0])
    for i, close in enumerate(closes):
        c = D(close)
        bars.append(Candle(
            timestamp=start + i * timeframe.ms,
            open=prev,
            high=max(prev, c) + D(spread),
            low=min(prev, c) - D(spread),
            close=c,
            volume=D(10),
        ))
        prev = c
    return bars


def trending(n: int, start: float = 100.0, step: float = 1.0) -> List[Decimal]:
    return [D(round(start + i * step, 4)) for i in range(n)]


@pytest.fixture
def cache():
    return BarCache(max_bars=500)


@pytest.fixture
def small_cache():
    return BarCache(max_bars=5)
