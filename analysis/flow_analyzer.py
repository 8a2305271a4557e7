#!/usr/bin/env python3
from __future__ import annotations

from datetime import datetime, timezone, tzinfo
from typing import Any, Dict, Iterable, List, Optional, Sequence
from zoneinfo import ZoneInfo

from analysis.models import (
    AnalysisSummary,
    DetectedPattern,
    FlowAnalysisResult,
    FlowAnomaly,
    Insight,
    TradeRecord,
)
from constants import (
    AFTER_HOURS_FRACTION,
    BEARISH_RATIO,
    BLOCK_MIN_COUNT,
    BLOCK_MIN_TOTAL_PREMIUM,
    BULLISH_RATIO,
    DEFAULT_MARKET_TIMEZONE,
    HIGH_RISK_MIN_HIGH_SEVERITY,
    HIGH_VALUE_CONFIDENCE,
    HIGH_VALUE_PREMIUM,
    HISTORICAL_WINDOW_DAYS,
    MARKET_CLOSE_HOUR,
    MARKET_OPEN_HOUR,
    MARKET_TICKER,
    MEDIUM_RISK_MIN_ANOMALIES,
    MOMENTUM_MIN_INCREASES,
    MOMENTUM_MIN_RECORDS,
    PREMIUM_CHANGE_HIGH,
    PREMIUM_CHANGE_MEDIUM,
    SENTIMENT_SHIFT_CONFIDENCE,
    SENTIMENT_SHIFT_THRESHOLD,
    SWEEP_HIGH_VALUE_PREMIUM,
    SWEEP_MIN_COUNT,
    SWEEP_MIN_HIGH_VALUE,
    TOP_TICKER_COUNT,
    UNUSUAL_VOLUME_BASE_CONFIDENCE,
    UNUSUAL_VOLUME_MAX_CONFIDENCE,
    UNUSUAL_VOLUME_MIN_COUNT,
    UNUSUAL_VOLUME_RATIO,
    UNUSUAL_VOLUME_SAMPLE_SIZE,
)


def group_by_ticker(records: Iterable[TradeRecord]) -> Dict[str, List[TradeRecord]]:
    """Group records by ticker, keeping tickers in order of first appearance."""
    grouped: Dict[str, List[TradeRecord]] = {}
    for record in records:
        grouped.setdefault(record.ticker_symbol or 'UNKNOWN', []).append(record)
    return grouped


def call_put_ratio(records: Iterable[TradeRecord]) -> float:
    """Calls divided by puts; the raw call count when there are no puts."""
    calls = 0
    puts = 0
    for record in records:
        if record.option_type == 'call':
            calls += 1
        elif record.option_type == 'put':
            puts += 1
    if puts == 0:
        return float(calls)
    return calls / puts


def record_data_point(record: TradeRecord) -> Dict[str, Any]:
    return {
        'time_of_trade': record.time_of_trade.isoformat(),
        'ticker': record.ticker_symbol,
        'premium': record.premium,
        'option_type': record.option_type,
        'trade_type': record.trade_type,
    }


class FlowAnalyzer:
    """Heuristic flow analysis over a current window and its 30-day history.

    The analyzer is a pure function of its inputs: it never mutates the
    record sequences it is given and holds no state between calls.
    """

    def __init__(self, market_timezone: str | tzinfo = DEFAULT_MARKET_TIMEZONE):
        self._tz: tzinfo = ZoneInfo(market_timezone) if isinstance(market_timezone, str) else market_timezone

    def analyze(
        self,
        current: Sequence[TradeRecord],
        historical: Sequence[TradeRecord],
        now: Optional[datetime] = None,
    ) -> FlowAnalysisResult:
        """Runs every stage and returns the combined result."""
        detected_at = now or datetime.now(timezone.utc)
        insights = self.generate_insights(current, historical)
        patterns = self.detect_patterns(current, historical)
        anomalies = self.detect_anomalies(current, historical, detected_at)
        summary = self.generate_summary(current, patterns, anomalies)
        return FlowAnalysisResult(
            insights=insights,
            patterns=patterns,
            anomalies=anomalies,
            summary=summary,
        )

    # --- Insights ---

    def generate_insights(self, current: Sequence[TradeRecord], historical: Sequence[TradeRecord]) -> List[Insight]:
        insights: List[Insight] = []

        high_value = self._high_value_insight(current, historical)
        if high_value:
            insights.append(high_value)
        insights.extend(self._unusual_volume_insights(current, historical))
        sentiment_shift = self._sentiment_shift_insight(current, historical)
        if sentiment_shift:
            insights.append(sentiment_shift)

        return insights

    def _high_value_insight(self, current: Sequence[TradeRecord], historical: Sequence[TradeRecord]) -> Optional[Insight]:
        high_value_flows = [r for r in current if r.premium > HIGH_VALUE_PREMIUM]
        if not high_value_flows:
            return None

        historical_count = sum(1 for r in historical if r.premium > HIGH_VALUE_PREMIUM)
        if historical_count > 0:
            change_pct = (len(high_value_flows) - historical_count) / historical_count * 100
        else:
            change_pct = 100.0

        return Insight(
            insight_type='trend',
            title='High-Value Flow Activity',
            description=(
                f"Detected {len(high_value_flows)} high-value flows (>$500K) today, "
                f"{'up' if change_pct > 0 else 'down'} {abs(change_pct):.1f}% from recent average."
            ),
            confidence=HIGH_VALUE_CONFIDENCE,
            data_points=[
                {
                    'ticker': r.ticker_symbol,
                    'premium': r.premium,
                    'option_type': r.option_type,
                    'trade_type': r.trade_type,
                }
                for r in high_value_flows
            ],
            metadata={'historical_count': historical_count, 'change_pct': round(change_pct, 2)},
        )

    def _unusual_volume_insights(self, current: Sequence[TradeRecord], historical: Sequence[TradeRecord]) -> List[Insight]:
        insights: List[Insight] = []
        historical_by_ticker = group_by_ticker(historical)

        for ticker, trades in group_by_ticker(current).items():
            today_count = len(trades)
            historical_avg = len(historical_by_ticker.get(ticker, [])) / HISTORICAL_WINDOW_DAYS
            volume_ratio = today_count / max(historical_avg, 1)
            if volume_ratio <= UNUSUAL_VOLUME_RATIO or today_count <= UNUSUAL_VOLUME_MIN_COUNT:
                continue

            confidence = min(
                UNUSUAL_VOLUME_MAX_CONFIDENCE,
                UNUSUAL_VOLUME_BASE_CONFIDENCE + (volume_ratio - UNUSUAL_VOLUME_RATIO) * 0.1,
            )
            insights.append(Insight(
                insight_type='trend',
                title=f'Unusual Volume in {ticker}',
                description=(
                    f"{ticker} printed {today_count} flows, {volume_ratio:.1f}x its "
                    f"{HISTORICAL_WINDOW_DAYS}-day daily average of {historical_avg:.1f}."
                ),
                confidence=confidence,
                data_points=[record_data_point(r) for r in trades[:UNUSUAL_VOLUME_SAMPLE_SIZE]],
                metadata={'volume_ratio': round(volume_ratio, 2), 'historical_daily_avg': round(historical_avg, 2)},
            ))

        return insights

    def _sentiment_shift_insight(self, current: Sequence[TradeRecord], historical: Sequence[TradeRecord]) -> Optional[Insight]:
        today_ratio = call_put_ratio(current)
        historical_ratio = call_put_ratio(historical)
        if abs(today_ratio - historical_ratio) <= SENTIMENT_SHIFT_THRESHOLD:
            return None

        direction = 'bullish' if today_ratio > historical_ratio else 'bearish'
        return Insight(
            insight_type='trend',
            title=f'{direction.capitalize()} Sentiment Shift',
            description=(
                f"Call/put ratio moved from {historical_ratio:.2f} over the last "
                f"{HISTORICAL_WINDOW_DAYS} days to {today_ratio:.2f}, a {direction} shift in positioning."
            ),
            confidence=SENTIMENT_SHIFT_CONFIDENCE,
            data_points=[
                {'period': 'current', 'call_put_ratio': today_ratio},
                {'period': 'historical', 'call_put_ratio': historical_ratio},
            ],
            metadata={'direction': direction},
        )

    # --- Patterns ---

    def detect_patterns(self, current: Sequence[TradeRecord], historical: Sequence[TradeRecord]) -> List[DetectedPattern]:
        combined = list(current) + list(historical)
        patterns: List[DetectedPattern] = []
        patterns.extend(self._sweep_patterns(combined))
        patterns.extend(self._block_patterns(combined))
        patterns.extend(self._momentum_patterns(combined))
        return patterns

    def _sweep_patterns(self, records: List[TradeRecord]) -> List[DetectedPattern]:
        patterns: List[DetectedPattern] = []
        sweeps_by_ticker = group_by_ticker(r for r in records if r.trade_type == 'sweep')

        for ticker, sweeps in sweeps_by_ticker.items():
            if len(sweeps) < SWEEP_MIN_COUNT:
                continue
            high_value_sweeps = [s for s in sweeps if s.premium > SWEEP_HIGH_VALUE_PREMIUM]
            if len(high_value_sweeps) < SWEEP_MIN_HIGH_VALUE:
                continue

            avg_premium = sum(s.premium for s in sweeps) / len(sweeps)
            patterns.append(DetectedPattern(
                pattern_type='sweep',
                ticker=ticker,
                name=f'{ticker} Large Sweep Activity',
                description=(
                    f"Pattern of {len(high_value_sweeps)} high-value sweeps detected "
                    f"across {len(sweeps)} sweeps averaging ${avg_premium:,.0f}."
                ),
                conditions={
                    'min_sweeps': SWEEP_MIN_COUNT,
                    'min_high_value_sweeps': SWEEP_MIN_HIGH_VALUE,
                    'min_premium': SWEEP_HIGH_VALUE_PREMIUM,
                },
                occurrences=len(high_value_sweeps),
            ))

        return patterns

    def _block_patterns(self, records: List[TradeRecord]) -> List[DetectedPattern]:
        patterns: List[DetectedPattern] = []
        blocks_by_ticker = group_by_ticker(r for r in records if r.trade_type == 'block')

        for ticker, blocks in blocks_by_ticker.items():
            total_premium = sum(b.premium for b in blocks)
            if len(blocks) < BLOCK_MIN_COUNT or total_premium <= BLOCK_MIN_TOTAL_PREMIUM:
                continue
            patterns.append(DetectedPattern(
                pattern_type='block',
                ticker=ticker,
                name=f'{ticker} Block Accumulation',
                description=f"{len(blocks)} block trades totalling ${total_premium:,.0f}.",
                conditions={
                    'min_blocks': BLOCK_MIN_COUNT,
                    'min_total_premium': BLOCK_MIN_TOTAL_PREMIUM,
                },
                occurrences=len(blocks),
            ))

        return patterns

    def _momentum_patterns(self, records: List[TradeRecord]) -> List[DetectedPattern]:
        patterns: List[DetectedPattern] = []

        for ticker, trades in group_by_ticker(records).items():
            if len(trades) < MOMENTUM_MIN_RECORDS:
                continue
            ordered = sorted(trades, key=lambda r: r.time_of_trade)
            increases = sum(1 for prev, nxt in zip(ordered, ordered[1:]) if nxt.premium > prev.premium)
            if increases < MOMENTUM_MIN_INCREASES:
                continue
            patterns.append(DetectedPattern(
                pattern_type='momentum',
                ticker=ticker,
                name=f'{ticker} Premium Momentum',
                description=f"Premium stepped up on {increases} of {len(ordered) - 1} consecutive {ticker} trades.",
                conditions={
                    'min_records': MOMENTUM_MIN_RECORDS,
                    'min_increases': MOMENTUM_MIN_INCREASES,
                },
                occurrences=increases,
            ))

        return patterns

    # --- Anomalies ---

    def detect_anomalies(
        self,
        current: Sequence[TradeRecord],
        historical: Sequence[TradeRecord],
        detected_at: Optional[datetime] = None,
    ) -> List[FlowAnomaly]:
        detected_at = detected_at or datetime.now(timezone.utc)
        anomalies: List[FlowAnomaly] = []

        timing = self._timing_anomaly(current, detected_at)
        if timing:
            anomalies.append(timing)
        premium = self._premium_anomaly(current, historical, detected_at)
        if premium:
            anomalies.append(premium)

        return anomalies

    def _local_hour(self, moment: datetime) -> int:
        if moment.tzinfo is None:
            return moment.hour
        return moment.astimezone(self._tz).hour

    def _timing_anomaly(self, current: Sequence[TradeRecord], detected_at: datetime) -> Optional[FlowAnomaly]:
        if not current:
            return None

        hour_counts = {hour: 0 for hour in range(24)}
        for record in current:
            hour_counts[self._local_hour(record.time_of_trade)] += 1

        after_hours = sum(
            count for hour, count in hour_counts.items()
            if hour < MARKET_OPEN_HOUR or hour > MARKET_CLOSE_HOUR
        )
        if after_hours <= len(current) * AFTER_HOURS_FRACTION:
            return None

        return FlowAnomaly(
            anomaly_type='timing',
            ticker=MARKET_TICKER,
            description=f"Unusual after-hours activity: {after_hours} of {len(current)} flows outside {MARKET_OPEN_HOUR}:00-{MARKET_CLOSE_HOUR}:59.",
            severity='medium',
            data_points=[{'hour': hour, 'count': count} for hour, count in hour_counts.items()],
            detected_at=detected_at,
        )

    def _premium_anomaly(
        self,
        current: Sequence[TradeRecord],
        historical: Sequence[TradeRecord],
        detected_at: datetime,
    ) -> Optional[FlowAnomaly]:
        if not current or not historical:
            return None

        current_mean = sum(r.premium for r in current) / len(current)
        historical_mean = sum(r.premium for r in historical) / len(historical)
        if historical_mean == 0:
            return None

        change = (current_mean - historical_mean) / historical_mean
        if abs(change) <= PREMIUM_CHANGE_MEDIUM:
            return None

        return FlowAnomaly(
            anomaly_type='premium',
            ticker=MARKET_TICKER,
            description=(
                f"Average premium {'up' if change > 0 else 'down'} {abs(change) * 100:.0f}% "
                f"versus the {HISTORICAL_WINDOW_DAYS}-day baseline (${current_mean:,.0f} vs ${historical_mean:,.0f})."
            ),
            severity='high' if abs(change) > PREMIUM_CHANGE_HIGH else 'medium',
            data_points=[{
                'current_mean': current_mean,
                'historical_mean': historical_mean,
                'change': change,
            }],
            detected_at=detected_at,
        )

    # --- Summary ---

    def generate_summary(
        self,
        current: Sequence[TradeRecord],
        patterns: List[DetectedPattern],
        anomalies: List[FlowAnomaly],
    ) -> AnalysisSummary:
        activity = sorted(
            ((ticker, len(trades)) for ticker, trades in group_by_ticker(current).items()),
            key=lambda item: item[1],
            reverse=True,
        )

        ratio = call_put_ratio(current)
        if ratio > BULLISH_RATIO:
            sentiment = 'bullish'
        elif ratio < BEARISH_RATIO:
            sentiment = 'bearish'
        else:
            sentiment = 'neutral'

        high_severity = sum(1 for a in anomalies if a.severity == 'high')
        if high_severity > HIGH_RISK_MIN_HIGH_SEVERITY:
            risk_level = 'high'
        elif len(anomalies) > MEDIUM_RISK_MIN_ANOMALIES:
            risk_level = 'medium'
        else:
            risk_level = 'low'

        return AnalysisSummary(
            total_flows_analyzed=len(current),
            patterns_detected=len(patterns),
            anomalies_found=len(anomalies),
            top_tickers=activity[:TOP_TICKER_COUNT],
            market_sentiment=sentiment,
            risk_level=risk_level,
        )
