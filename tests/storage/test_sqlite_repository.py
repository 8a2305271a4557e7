from datetime import date, datetime, timedelta, timezone

import pytest

from analysis.models import DetectedPattern, Insight, TradeRecord
from storage import SQLiteRepository


def trade(ticker, premium, moment, option_type='call', trade_type='buy'):
    return TradeRecord(
        time_of_trade=moment,
        ticker_symbol=ticker,
        premium=premium,
        option_type=option_type,
        trade_type=trade_type,
    )


def pattern(occurrences, description="sweeps"):
    return DetectedPattern(
        pattern_type='sweep',
        ticker='XYZ',
        name='XYZ Large Sweep Activity',
        description=description,
        conditions={'min_sweeps': 3},
        occurrences=occurrences,
    )


@pytest.mark.asyncio
async def test_fetch_records_respects_half_open_window(tmp_path):
    repository = SQLiteRepository(db_path=tmp_path / "flows.db")
    base = datetime(2026, 10, 16, 14, 0, tzinfo=timezone.utc)

    inserted = await repository.insert_trade_records('alice', [
        trade('AAA', 1_000, base - timedelta(hours=1)),
        trade('BBB', 2_000, base),
        trade('CCC', 3_000, base + timedelta(hours=1)),
        trade('DDD', 4_000, base + timedelta(hours=2)),
    ])
    await repository.insert_trade_records('bob', [trade('EEE', 5_000, base)])
    assert inserted == 4

    window = await repository.fetch_records('alice', base, base + timedelta(hours=2))
    assert [r.ticker_symbol for r in window] == ['CCC', 'BBB']
    assert window[0].time_of_trade == base + timedelta(hours=1)
    assert window[0].time_of_trade.tzinfo is not None

    open_ended = await repository.fetch_records('alice', base)
    assert [r.ticker_symbol for r in open_ended] == ['DDD', 'CCC', 'BBB']

    await repository.close()


@pytest.mark.asyncio
async def test_optional_trade_fields_round_trip(tmp_path):
    repository = SQLiteRepository(db_path=tmp_path / "flows.db")
    moment = datetime(2026, 10, 16, 14, 0, tzinfo=timezone.utc)
    record = TradeRecord(
        time_of_trade=moment,
        ticker_symbol='SPY',
        premium=125_000.5,
        option_type='put',
        trade_type='sweep',
        score=0.8,
        spot_price=580.12,
        strike_price=575.0,
        implied_volatility=0.21,
        open_interest=1200,
    )
    await repository.insert_trade_records('alice', [record])

    fetched = await repository.fetch_records('alice', moment - timedelta(minutes=1))
    assert fetched == [record]

    await repository.close()


@pytest.mark.asyncio
async def test_upsert_pattern_adds_occurrences(tmp_path):
    repository = SQLiteRepository(db_path=tmp_path / "flows.db")
    first_seen = datetime(2026, 10, 15, 20, 0, tzinfo=timezone.utc)
    second_seen = datetime(2026, 10, 16, 20, 0, tzinfo=timezone.utc)

    await repository.upsert_pattern('alice', pattern(3), seen_at=first_seen)
    await repository.upsert_pattern('alice', pattern(2, description="later"), seen_at=second_seen)
    await repository.upsert_pattern('bob', pattern(7), seen_at=second_seen)

    stored = await repository.fetch_patterns('alice')
    assert len(stored) == 1
    assert stored[0].occurrences == 5
    assert stored[0].first_seen == first_seen
    assert stored[0].last_seen == second_seen
    assert stored[0].conditions == {'min_sweeps': 3}

    assert await repository.fetch_patterns('alice', ticker='abc') == []
    assert [p.occurrences for p in await repository.fetch_patterns('bob', ticker='xyz')] == [7]

    await repository.close()


@pytest.mark.asyncio
async def test_recent_insights_skip_expired(tmp_path):
    repository = SQLiteRepository(db_path=tmp_path / "flows.db")
    now = datetime.now(timezone.utc)
    insight = Insight(
        insight_type='trend',
        title='High-Value Flow Activity',
        description='Detected 2 high-value flows',
        confidence=0.85,
        data_points=[{'ticker': 'AAA', 'premium': 750_000.0}],
        metadata={'historical_count': 0},
    )

    await repository.insert_insights('alice', [insight])
    await repository.insert_insights('alice', [insight], expires_at=now - timedelta(minutes=5))

    records = await repository.fetch_recent_insights('alice', now=now)
    assert len(records) == 1
    assert records[0].title == 'High-Value Flow Activity'
    assert records[0].confidence_score == pytest.approx(0.85)
    assert records[0].data_points == [{'ticker': 'AAA', 'premium': 750_000.0}]
    assert records[0].metadata == {'historical_count': 0}
    assert records[0].expires_at is None

    await repository.close()


@pytest.mark.asyncio
async def test_daily_upload_accumulates_per_day(tmp_path):
    repository = SQLiteRepository(db_path=tmp_path / "flows.db")
    day = date(2026, 10, 16)
    moment = datetime(2026, 10, 16, 14, 0, tzinfo=timezone.utc)

    await repository.insert_trade_records('alice', [trade('AAA', 1_000, moment), trade('BBB', 2_000, moment)], upload_date=day)
    await repository.record_daily_upload(
        user_id='alice', upload_date=day, file_name='morning.csv', total_flows=2, total_premium=3_000.0,
    )
    await repository.insert_trade_records('alice', [trade('CCC', 4_000, moment)], upload_date=day)
    await repository.record_daily_upload(
        user_id='alice', upload_date=day, file_name='afternoon.csv', total_flows=1, total_premium=4_000.0,
    )

    uploads = await repository.fetch_daily_uploads('alice')
    assert len(uploads) == 1
    assert uploads[0].upload_date == day
    assert uploads[0].total_flows == 3
    assert uploads[0].total_premium == pytest.approx(7_000.0)
    assert uploads[0].unique_tickers == 3
    assert uploads[0].file_names == ['afternoon.csv', 'morning.csv']

    assert await repository.fetch_daily_uploads('bob') == []

    await repository.close()
