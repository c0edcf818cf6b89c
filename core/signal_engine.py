"""
Strategy Engine — Multi-indicator, multi-timeframe voting.
Reads bars from the BarCache on demand; stateless per call.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import TYPE_CHECKING, Any, Dict, List, Optional
from core import indicators
from core.indicators import BollingerPoint, MACDPoint
from exchange.models import Direction, Symbol, Timeframe
import logging

if TYPE_CHECKING:
    from config import Plan
    from data.bar_cache import BarCache

logger = logging.getLogger(__name__)

BARS_PER_TIMEFRAME = 200
MIN_BARS = 50
HOLD_VOTE = Decimal("0.1")          # Keeps HOLD comparable instead of zero
CONSENSUS_PCT = Decimal("40")

MIN_ATR_PCT = Decimal("0.001")      # ATR below 0.1% of price is meaningless
MIN_DISTANCE_PCT = Decimal("0.005")
FLOOR_SL_PCT = Decimal("0.02")
FLOOR_TP_PCT = Decimal("0.05")

EMA_PERIODS = (8, 21, 50, 200)


@dataclass
class IndicatorVote:
    direction: Direction
    strength: Decimal = Decimal("0")


@dataclass
class TimeframeAnalysis:
    timeframe: Timeframe
    price: Decimal
    emas: Dict[str, Optional[Decimal]]
    rsi: Optional[Decimal]
    macd: Optional[MACDPoint]
    bb: Optional[BollingerPoint]
    atr: Optional[Decimal]
    signals: Dict[str, IndicatorVote]


@dataclass
class RiskLevels:
    stop_loss: Decimal
    take_profit: Decimal
    atr_based: bool


@dataclass
class AnalysisResult:
    symbol: Symbol
    plan: str
    signal: Direction = Direction.HOLD
    confidence: int = 0
    votes: Dict[Direction, Decimal] = field(default_factory=dict)
    timeframes: Dict[Timeframe, TimeframeAnalysis] = field(default_factory=dict)
    indicators: Dict[str, Any] = field(default_factory=dict)
    risk_levels: Optional[RiskLevels] = None


def _last(series: List[Any]) -> Optional[Any]:
    return series[-1] if series else None


class StrategyEngine:
    """
    Combines trend, RSI, MACD and Bollinger votes across 1m/5m/15m/1h
    into one BUY/SELL/HOLD decision with plan-specific weights.
    """

    def __init__(
        self,
        cache: "BarCache",
        plans: Dict[str, "Plan"],
        default_plan: str = "mid",
        bars_per_timeframe: int = BARS_PER_TIMEFRAME,
        min_bars: int = MIN_BARS,
    ):
        self.cache = cache
        self.plans = plans
        self.default_plan = default_plan
        self.bars_per_timeframe = bars_per_timeframe
        self.min_bars = min_bars
        self.timeframes = [Timeframe.M1, Timeframe.M5, Timeframe.M15, Timeframe.H1]

    def get_plan(self, plan_name: str) -> "Plan":
        plan = self.plans.get(plan_name)
        if plan is None:
            logger.warning(f"[STRATEGY] Unknown plan '{plan_name}', using '{self.default_plan}'")
            plan = self.plans[self.default_plan]
        return plan

    def analyze_symbol(self, symbol: Symbol, plan_name: str = "mid") -> AnalysisResult:
        plan = self.get_plan(plan_name)
        result = AnalysisResult(symbol=symbol, plan=plan.name)

        for tf in self.timeframes:
            try:
                analysis = self.analyze_timeframe(symbol, tf)
            except Exception as e:
                # Treated like missing data: the timeframe simply does not vote
                logger.error(f"[STRATEGY] {symbol} {tf.value}: analysis failed: {e}", exc_info=True)
                continue
            if analysis is not None:
                result.timeframes[tf] = analysis

        result.votes = self.calculate_votes(result.timeframes, plan)
        result.signal, result.confidence = self.determine_signal(result.votes)

        hourly = result.timeframes.get(Timeframe.H1)
        if hourly is not None:
            result.indicators = {
                "price": hourly.price,
                "rsi": hourly.rsi,
                "emas": hourly.emas,
                "macd": hourly.macd,
                "bb": hourly.bb,
                "atr": hourly.atr,
            }
            if result.signal != Direction.HOLD:
                result.risk_levels = self.calculate_risk_levels(
                    hourly.price, hourly.atr, result.signal, plan
                )

        return result

    def analyze_timeframe(self, symbol: Symbol, timeframe: Timeframe) -> Optional[TimeframeAnalysis]:
        bars = self.cache.get_bars(symbol, timeframe, self.bars_per_timeframe)
        if len(bars) < self.min_bars:
            return None     # Not enough data

        closes = [b.close for b in bars]
        highs = [b.high for b in bars]
        lows = [b.low for b in bars]

        emas = {f"ema{p}": _last(indicators.ema(closes, p)) for p in EMA_PERIODS}
        rsi = _last(indicators.rsi(closes, 14))
        macd = _last(indicators.macd(closes, 12, 26, 9))
        bb = _last(indicators.bollinger(closes, 20, Decimal(2)))
        atr = _last(indicators.atr(highs, lows, closes, 14))
        price = closes[-1]

        signals = {
            "trend": self.evaluate_trend(emas),
            "rsi": self.evaluate_rsi(rsi),
            "macd": self.evaluate_macd(macd),
            "bb": self.evaluate_bb(price, bb, rsi),
        }

        return TimeframeAnalysis(
            timeframe=timeframe,
            price=price,
            emas=emas,
            rsi=rsi,
            macd=macd,
            bb=bb,
            atr=atr,
            signals=signals,
        )

    # ==================== Evaluators ====================

    def evaluate_trend(self, emas: Dict[str, Optional[Decimal]]) -> IndicatorVote:
        """
        Full stack 8 > 21 > 50 > 200 (or reverse) -> 1.0, 8 vs 21 alone -> 0.5.
        A missing EMA50/EMA200 is replaced by the next shorter one.
        """
        ema8, ema21 = emas.get("ema8"), emas.get("ema21")
        if ema8 is None or ema21 is None:
            return IndicatorVote(Direction.HOLD)

        ema50 = emas.get("ema50")
        if ema50 is None:
            ema50 = ema21
        ema200 = emas.get("ema200")
        if ema200 is None:
            ema200 = ema50

        if ema8 > ema21 > ema50 > ema200:
            return IndicatorVote(Direction.BUY, Decimal("1.0"))
        if ema8 < ema21 < ema50 < ema200:
            return IndicatorVote(Direction.SELL, Decimal("1.0"))
        if ema8 > ema21:
            return IndicatorVote(Direction.BUY, Decimal("0.5"))
        if ema8 < ema21:
            return IndicatorVote(Direction.SELL, Decimal("0.5"))
        return IndicatorVote(Direction.HOLD)

    def evaluate_rsi(self, rsi: Optional[Decimal]) -> IndicatorVote:
        if rsi is None:
            return IndicatorVote(Direction.HOLD)
        if rsi > 60:
            return IndicatorVote(Direction.BUY, min((rsi - 60) / 20, Decimal(1)))
        if rsi < 40:
            return IndicatorVote(Direction.SELL, min((40 - rsi) / 20, Decimal(1)))
        return IndicatorVote(Direction.HOLD)

    def evaluate_macd(self, macd: Optional[MACDPoint]) -> IndicatorVote:
        if macd is None:
            return IndicatorVote(Direction.HOLD)

        if macd.macd == 0:
            strength = Decimal(1)
        else:
            strength = min(abs(macd.histogram / macd.macd) * 2, Decimal(1))

        if macd.macd > macd.signal and macd.histogram > 0:
            return IndicatorVote(Direction.BUY, strength)
        if macd.macd < macd.signal and macd.histogram < 0:
            return IndicatorVote(Direction.SELL, strength)
        return IndicatorVote(Direction.HOLD)

    def evaluate_bb(
        self,
        price: Decimal,
        bb: Optional[BollingerPoint],
        rsi: Optional[Decimal],
    ) -> IndicatorVote:
        if bb is None or rsi is None:
            return IndicatorVote(Direction.HOLD)
        if price < bb.lower and rsi < 40:
            return IndicatorVote(Direction.BUY, Decimal("0.8"))     # Oversold
        if price > bb.upper and rsi > 60:
            return IndicatorVote(Direction.SELL, Decimal("0.8"))    # Overbought
        return IndicatorVote(Direction.HOLD)

    # ==================== Voting ====================

    def calculate_votes(
        self,
        timeframes: Dict[Timeframe, TimeframeAnalysis],
        plan: "Plan",
    ) -> Dict[Direction, Decimal]:
        votes = {d: Decimal("0") for d in Direction}

        for tf, analysis in timeframes.items():
            weight = plan.weight(tf)
            tf_votes = {d: Decimal("0") for d in Direction}

            for vote in analysis.signals.values():
                if vote.direction == Direction.HOLD:
                    tf_votes[Direction.HOLD] += HOLD_VOTE
                else:
                    tf_votes[vote.direction] += vote.strength

            for d in Direction:
                votes[d] += tf_votes[d] * weight

        return votes

    def determine_signal(self, votes: Dict[Direction, Decimal]) -> tuple[Direction, int]:
        """Strictly more than 40% of the vote and ahead of the other side."""
        buy = votes.get(Direction.BUY, Decimal("0"))
        sell = votes.get(Direction.SELL, Decimal("0"))
        total = buy + sell + votes.get(Direction.HOLD, Decimal("0"))

        if total == 0:
            return Direction.HOLD, 0

        buy_pct = buy / total * 100
        sell_pct = sell / total * 100

        if buy_pct > CONSENSUS_PCT and buy_pct > sell_pct:
            return Direction.BUY, self._confidence(buy_pct)
        if sell_pct > CONSENSUS_PCT and sell_pct > buy_pct:
            return Direction.SELL, self._confidence(sell_pct)
        return Direction.HOLD, 0

    @staticmethod
    def _confidence(pct: Decimal) -> int:
        return min(int(pct.quantize(Decimal("1"), rounding=ROUND_HALF_UP)), 100)

    # ==================== Risk Levels ====================

    def calculate_risk_levels(
        self,
        price: Decimal,
        atr: Optional[Decimal],
        signal: Direction,
        plan: "Plan",
    ) -> Optional[RiskLevels]:
        """
        ATR-based stop/target when ATR >= 0.1% of price, otherwise the plan's
        fixed percentages. Both legs are then kept at least 0.5% from entry
        and on the correct side of it.
        """
        if signal == Direction.HOLD or price <= 0:
            return None

        long = signal == Direction.BUY
        use_atr = atr is not None and atr >= price * MIN_ATR_PCT

        if use_atr:
            sl_dist = atr * plan.sl_multiplier
            tp_dist = atr * plan.tp_multiplier
        else:
            sl_dist = price * plan.fallback_sl_pct
            tp_dist = price * plan.fallback_tp_pct

        if long:
            stop_loss, take_profit = price - sl_dist, price + tp_dist
        else:
            stop_loss, take_profit = price + sl_dist, price - tp_dist

        min_distance = price * MIN_DISTANCE_PCT
        if abs(stop_loss - price) < min_distance:
            stop_loss = self._floor_stop(price, long)
        if abs(take_profit - price) < min_distance:
            take_profit = self._floor_target(price, long)

        # Hard sanity floor: stop strictly worse, target strictly better
        if (long and stop_loss >= price) or (not long and stop_loss <= price):
            stop_loss = self._floor_stop(price, long)
        if (long and take_profit <= price) or (not long and take_profit >= price):
            take_profit = self._floor_target(price, long)

        return RiskLevels(stop_loss=stop_loss, take_profit=take_profit, atr_based=use_atr)

    @staticmethod
    def _floor_stop(price: Decimal, long: bool) -> Decimal:
        return price * (1 - FLOOR_SL_PCT) if long else price * (1 + FLOOR_SL_PCT)

    @staticmethod
    def _floor_target(price: Decimal, long: bool) -> Decimal:
        return price * (1 + FLOOR_TP_PCT) if long else price * (1 - FLOOR_TP_PCT)
