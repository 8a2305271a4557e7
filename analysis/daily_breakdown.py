"""One-day views over stored flows: sentiment, intraday timing, top flows and notable flows.

All functions are pure. Records are expected to belong to a single market
day; hours are bucketed in the market timezone passed in.
"""
from __future__ import annotations

from datetime import date, tzinfo
from typing import Dict, List, Optional, Sequence

from analysis.flow_analyzer import group_by_ticker
from analysis.models import (
    DailyBreakdown,
    HourlyBreakdown,
    HourlyMetrics,
    NotableFlow,
    SentimentBreakdown,
    TickerSentiment,
    TopFlows,
    TradeRecord,
)
from constants import (
    HOURLY_BEARISH_SHARE,
    HOURLY_BULLISH_SHARE,
    MARKET_CLOSE_HOUR,
    MARKET_OPEN_HOUR,
    NOTABLE_AFTER_HOURS,
    NOTABLE_HIGH_SCORE,
    NOTABLE_LARGE_FLOW,
    NOTABLE_LARGE_SWEEP,
    SENTIMENT_SCORE_BEARISH,
    SENTIMENT_SCORE_BULLISH,
    TOP_FLOWS_LIMIT,
    TOP_SENTIMENT_TICKERS,
)

_SEVERITY_RANK = {'high': 3, 'medium': 2, 'low': 1}


def _premium_split(records: Sequence[TradeRecord]) -> tuple[float, float]:
    calls = sum(r.premium for r in records if r.option_type == 'call')
    puts = sum(r.premium for r in records if r.option_type == 'put')
    return calls, puts


def _share(part: float, total: float) -> float:
    return part * 100 / total if total > 0 else 50.0


def _is_after_hours(hour: int) -> bool:
    return hour < MARKET_OPEN_HOUR or hour > MARKET_CLOSE_HOUR


def sentiment_breakdown(records: Sequence[TradeRecord]) -> SentimentBreakdown:
    call_premium, put_premium = _premium_split(records)
    total = call_premium + put_premium
    bullish_score = _share(call_premium, total)
    bearish_score = _share(put_premium, total)

    if bullish_score > SENTIMENT_SCORE_BULLISH:
        net = 'bullish'
    elif bearish_score > SENTIMENT_SCORE_BULLISH:
        net = 'bearish'
    else:
        net = 'neutral'

    tickers: List[TickerSentiment] = []
    for ticker, trades in group_by_ticker(records).items():
        calls, puts = _premium_split(trades)
        tickers.append(TickerSentiment(ticker, calls, puts, _share(calls, calls + puts)))

    top_bullish = sorted(
        (t for t in tickers if t.score > SENTIMENT_SCORE_BULLISH),
        key=lambda t: t.call_premium,
        reverse=True,
    )[:TOP_SENTIMENT_TICKERS]
    top_bearish = sorted(
        (t for t in tickers if t.score < SENTIMENT_SCORE_BEARISH),
        key=lambda t: t.put_premium,
        reverse=True,
    )[:TOP_SENTIMENT_TICKERS]

    return SentimentBreakdown(
        bullish_score=bullish_score,
        bearish_score=bearish_score,
        net_sentiment=net,
        call_premium=call_premium,
        put_premium=put_premium,
        top_bullish=top_bullish,
        top_bearish=top_bearish,
    )


def _first_max(hours: List[HourlyMetrics], attr: str) -> Optional[int]:
    best: Optional[HourlyMetrics] = None
    for metrics in hours:
        if best is None or getattr(metrics, attr) > getattr(best, attr):
            best = metrics
    return best.hour if best else None


def hourly_breakdown(records: Sequence[TradeRecord], tz: tzinfo) -> HourlyBreakdown:
    buckets: Dict[int, List[TradeRecord]] = {}
    for record in records:
        buckets.setdefault(record.time_of_trade.astimezone(tz).hour, []).append(record)

    hours: List[HourlyMetrics] = []
    for hour in sorted(buckets):
        trades = buckets[hour]
        call_premium, put_premium = _premium_split(trades)
        total = sum(r.premium for r in trades)
        sentiment = 'neutral'
        if total > 0:
            share = call_premium / total
            if share > HOURLY_BULLISH_SHARE:
                sentiment = 'bullish'
            elif share < HOURLY_BEARISH_SHARE:
                sentiment = 'bearish'
        hours.append(HourlyMetrics(
            hour=hour,
            flows=len(trades),
            total_premium=total,
            call_premium=call_premium,
            put_premium=put_premium,
            sweeps=sum(1 for r in trades if r.trade_type == 'sweep'),
            blocks=sum(1 for r in trades if r.trade_type == 'block'),
            avg_score=sum(r.score or 0.0 for r in trades) / len(trades),
            sentiment=sentiment,
        ))

    return HourlyBreakdown(
        hours=hours,
        busiest_hour=_first_max(hours, 'flows'),
        highest_premium_hour=_first_max(hours, 'total_premium'),
        most_bullish_hour=_first_max(hours, 'call_premium'),
        most_bearish_hour=_first_max(hours, 'put_premium'),
        after_hours_activity=any(_is_after_hours(h.hour) for h in hours),
    )


def top_flows(records: Sequence[TradeRecord], limit: int = TOP_FLOWS_LIMIT) -> TopFlows:
    ranked = sorted(records, key=lambda r: r.premium, reverse=True)
    return TopFlows(
        largest=ranked[:limit],
        bullish=[r for r in ranked if r.option_type == 'call'][:limit],
        bearish=[r for r in ranked if r.option_type == 'put'][:limit],
        sweeps=[r for r in ranked if r.trade_type == 'sweep'][:limit],
        blocks=[r for r in ranked if r.trade_type == 'block'][:limit],
    )


def notable_flows(records: Sequence[TradeRecord], tz: tzinfo) -> List[NotableFlow]:
    """Flag individual flows worth a second look, most severe first.

    One flow can be flagged for several reasons; each reason is its own entry.
    """
    large_premium, large_severity, large_confidence = NOTABLE_LARGE_FLOW
    sweep_premium, sweep_severity, sweep_confidence = NOTABLE_LARGE_SWEEP
    min_score, score_severity, score_confidence = NOTABLE_HIGH_SCORE
    late_severity, late_confidence = NOTABLE_AFTER_HOURS

    flagged: List[NotableFlow] = []
    for record in records:
        if record.premium > large_premium:
            flagged.append(NotableFlow(
                record, f"Large {record.trade_type} (${record.premium:,.0f})", large_severity, large_confidence,
            ))
        if record.trade_type == 'sweep' and record.premium > sweep_premium:
            flagged.append(NotableFlow(record, "High-value sweep", sweep_severity, sweep_confidence))
        if record.score is not None and record.score > min_score:
            flagged.append(NotableFlow(
                record, f"High score ({record.score:.2f})", score_severity, score_confidence,
            ))
        if _is_after_hours(record.time_of_trade.astimezone(tz).hour):
            flagged.append(NotableFlow(record, "After-hours activity", late_severity, late_confidence))

    flagged.sort(key=lambda f: (_SEVERITY_RANK.get(f.severity, 0), f.confidence), reverse=True)
    return flagged


def build_daily_breakdown(day: date, records: Sequence[TradeRecord], tz: tzinfo) -> DailyBreakdown:
    # Chronological order keeps ties deterministic whatever order storage returns.
    ordered = sorted(records, key=lambda r: r.time_of_trade)
    return DailyBreakdown(
        day=day,
        total_flows=len(ordered),
        sentiment=sentiment_breakdown(ordered),
        hourly=hourly_breakdown(ordered, tz),
        top_flows=top_flows(ordered),
        notable=notable_flows(ordered, tz),
    )
