from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from analysis.daily_breakdown import (
    build_daily_breakdown,
    hourly_breakdown,
    notable_flows,
    sentiment_breakdown,
    top_flows,
)
from analysis.models import TradeRecord

NY = ZoneInfo("America/New_York")


def trade(ticker, premium, option_type='call', trade_type='buy', hour=10, minute=0, score=None):
    return TradeRecord(
        time_of_trade=datetime(2026, 10, 16, hour, minute, tzinfo=NY),
        ticker_symbol=ticker,
        premium=premium,
        option_type=option_type,
        trade_type=trade_type,
        score=score,
    )


def test_sentiment_is_premium_weighted():
    records = [trade('AAA', 700), trade('BBB', 300, 'put')]

    sentiment = sentiment_breakdown(records)

    assert sentiment.bullish_score == pytest.approx(70.0)
    assert sentiment.bearish_score == pytest.approx(30.0)
    assert sentiment.net_sentiment == 'bullish'
    assert [t.ticker for t in sentiment.top_bullish] == ['AAA']
    assert [t.ticker for t in sentiment.top_bearish] == ['BBB']


def test_sentiment_without_premium_is_even():
    sentiment = sentiment_breakdown([trade('AAA', 0), trade('BBB', 0, 'put')])

    assert sentiment.bullish_score == 50.0
    assert sentiment.bearish_score == 50.0
    assert sentiment.net_sentiment == 'neutral'
    # A ticker with no premium scores 50 and lands in neither list.
    assert sentiment.top_bullish == []
    assert sentiment.top_bearish == []


def test_sentiment_at_sixty_percent_is_neutral():
    sentiment = sentiment_breakdown([trade('AAA', 600), trade('AAA', 400, 'put')])
    assert sentiment.net_sentiment == 'neutral'

    sentiment = sentiment_breakdown([trade('AAA', 390), trade('AAA', 610, 'put')])
    assert sentiment.net_sentiment == 'bearish'


def test_top_sentiment_tickers_rank_by_side_premium_and_cap_at_five():
    records = [trade(f'C{i}', 100 * (i + 1)) for i in range(7)]
    records += [trade('P1', 900, 'put'), trade('P1', 100), trade('P2', 2000, 'put')]
    # MIX sits at 50% and belongs to neither side.
    records += [trade('MIX', 500), trade('MIX', 500, 'put')]

    sentiment = sentiment_breakdown(records)

    assert [t.ticker for t in sentiment.top_bullish] == ['C6', 'C5', 'C4', 'C3', 'C2']
    assert [t.ticker for t in sentiment.top_bearish] == ['P2', 'P1']
    assert sentiment.top_bearish[1].score == pytest.approx(10.0)


def test_hourly_breakdown_lists_only_active_hours():
    records = [
        trade('AAA', 100, trade_type='sweep', hour=9, score=0.5),
        trade('AAA', 300, 'put', trade_type='block', hour=9, minute=30),
        trade('BBB', 1000, hour=11, score=0.9),
        trade('CCC', 50, 'put', hour=11, minute=5),
        trade('DDD', 100, hour=14),
        trade('EEE', 400, 'put', hour=14, minute=10),
    ]

    hourly = hourly_breakdown(records, NY)

    assert [h.hour for h in hourly.hours] == [9, 11, 14]
    nine = hourly.hours[0]
    assert (nine.flows, nine.sweeps, nine.blocks) == (2, 1, 1)
    assert nine.total_premium == 400
    assert nine.avg_score == pytest.approx(0.25)
    assert nine.sentiment == 'bearish'
    assert hourly.hours[1].sentiment == 'bullish'
    assert hourly.hours[2].sentiment == 'bearish'

    # First hour wins ties on flow count.
    assert hourly.busiest_hour == 9
    assert hourly.highest_premium_hour == 11
    assert hourly.most_bullish_hour == 11
    assert hourly.most_bearish_hour == 14
    assert hourly.after_hours_activity is False


def test_hourly_sentiment_is_neutral_without_premium():
    hourly = hourly_breakdown([trade('AAA', 0, 'put')], NY)
    assert hourly.hours[0].sentiment == 'neutral'


def test_hourly_breakdown_flags_after_hours_and_handles_empty_day():
    hourly = hourly_breakdown([trade('AAA', 100, hour=17)], NY)
    assert hourly.after_hours_activity is True

    empty = hourly_breakdown([], NY)
    assert empty.hours == []
    assert empty.busiest_hour is None
    assert empty.after_hours_activity is False


def test_top_flows_by_category():
    records = [
        trade('AAA', 100),
        trade('BBB', 500, 'put', 'sweep'),
        trade('CCC', 300, trade_type='block'),
        trade('DDD', 900, trade_type='sweep'),
    ]

    flows = top_flows(records, limit=2)

    assert [r.ticker_symbol for r in flows.largest] == ['DDD', 'BBB']
    assert [r.ticker_symbol for r in flows.bullish] == ['DDD', 'CCC']
    assert [r.ticker_symbol for r in flows.bearish] == ['BBB']
    assert [r.ticker_symbol for r in flows.sweeps] == ['DDD', 'BBB']
    assert [r.ticker_symbol for r in flows.blocks] == ['CCC']


def test_notable_flows_sorted_by_severity_then_confidence():
    records = [
        trade('LATE', 100, hour=18),
        trade('SCORE', 100, score=0.85),
        trade('SWEEP', 600_000, trade_type='sweep'),
        trade('BIG', 1_500_000, 'put', 'block'),
        trade('EDGE', 1_000_000, score=0.8),
    ]

    flagged = notable_flows(records, NY)

    assert [(f.record.ticker_symbol, f.severity, f.confidence) for f in flagged] == [
        ('BIG', 'high', 0.85),
        ('SCORE', 'medium', 0.78),
        ('SWEEP', 'medium', 0.72),
        ('LATE', 'low', 0.65),
    ]
    assert flagged[0].reason == "Large block ($1,500,000)"


def test_one_flow_can_be_notable_for_several_reasons():
    flagged = notable_flows([trade('XYZ', 2_000_000, trade_type='sweep', hour=8, score=0.9)], NY)
    assert [f.severity for f in flagged] == ['high', 'medium', 'medium', 'low']
    assert [f.confidence for f in flagged] == [0.85, 0.78, 0.72, 0.65]


def test_build_daily_breakdown_orders_records_chronologically():
    newest_first = [trade('BBB', 100, hour=11), trade('AAA', 100, hour=10)]

    breakdown = build_daily_breakdown(date(2026, 10, 16), newest_first, NY)

    assert breakdown.day == date(2026, 10, 16)
    assert breakdown.total_flows == 2
    assert [r.ticker_symbol for r in breakdown.top_flows.largest] == ['AAA', 'BBB']
    assert [t.ticker for t in breakdown.sentiment.top_bullish] == ['AAA', 'BBB']
    assert breakdown.notable == []
