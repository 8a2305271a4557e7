import sqlite3
from datetime import date, datetime, timezone

import pytest

from config import AppConfig
from ingest.uploader import FlowUploader
from storage import SQLiteRepository

NOW = datetime(2026, 10, 16, 16, 0, tzinfo=timezone.utc)

CSV = (
    "Time,Ticker,Premium,Type,Side\n"
    "09:30:00,AAA,\"$100,000\",call,buy\n"
    "09:31:00,BBB,200000,put,sell\n"
    "09:32:00,AAA,300000,C,sweep\n"
    "09:33:00,,400000,call,buy\n"
    "09:34:00,CCC,500000,call,hold\n"
)


@pytest.fixture
def config():
    return AppConfig(
        db_path=':memory:',
        user_id='tester',
        ingest_files=[],
        analyze_range=None,
        show_patterns=False,
        show_insights=False,
        show_uploads=False,
        daily_date=None,
        limit=10,
        bot_enabled=False,
        market_timezone='America/New_York',
        lenient_timestamps=False,
        ai_analysis_enabled=False,
        gemini_api_key=None,
        telegram_bot_token=None,
        log_level='INFO',
    )


class FlakyRepository:
    """Fails every second batch insert."""

    def __init__(self):
        self.batches = []
        self.calls = 0
        self.daily = []

    async def insert_trade_records(self, user_id, records, upload_date=None):
        self.calls += 1
        if self.calls % 2 == 0:
            raise sqlite3.OperationalError("database is locked")
        self.batches.append(list(records))
        return len(records)

    async def record_daily_upload(self, **kwargs):
        self.daily.append(kwargs)


@pytest.mark.asyncio
async def test_ingest_stores_valid_rows_and_reports_errors(tmp_path, config):
    repository = SQLiteRepository(db_path=tmp_path / "flows.db")
    uploader = FlowUploader(repository, config, batch_size=2)

    stats = await uploader.ingest('tester', 'flows.csv', CSV.encode("utf-8"), now=NOW)

    assert stats.succeeded
    assert stats.processed == 3
    assert stats.errors == 2
    assert stats.total_records == 5
    assert stats.error_samples[0] == "Row 4: Missing required fields: ticker_symbol"

    uploads = await repository.fetch_daily_uploads('tester')
    assert len(uploads) == 1
    assert uploads[0].upload_date == date(2026, 10, 16)
    assert uploads[0].total_flows == 3
    assert uploads[0].total_premium == pytest.approx(600_000)
    assert uploads[0].unique_tickers == 2
    assert uploads[0].file_names == ['flows.csv']

    await repository.close()


@pytest.mark.asyncio
async def test_failed_batches_count_as_errors(config):
    repository = FlakyRepository()
    uploader = FlowUploader(repository, config, batch_size=1)

    stats = await uploader.ingest('tester', 'flows.csv', CSV, now=NOW)

    assert [len(batch) for batch in repository.batches] == [1, 1]
    assert stats.processed == 2
    assert stats.errors == 3
    assert repository.daily[0]['total_flows'] == 2
    assert repository.daily[0]['total_premium'] == pytest.approx(400_000)


@pytest.mark.asyncio
async def test_unparsable_file_stores_nothing(config):
    repository = FlakyRepository()
    uploader = FlowUploader(repository, config)

    stats = await uploader.ingest('tester', 'bad.csv', "time,ticker,premium,type,side\n,,,,\n,,,,\n", now=NOW)

    assert not stats.succeeded
    assert stats.processed == 0
    assert stats.errors == 2
    assert repository.calls == 0
    assert repository.daily == []


@pytest.mark.asyncio
async def test_error_samples_are_capped(config):
    repository = FlakyRepository()
    uploader = FlowUploader(repository, config)
    rows = "".join(f"09:30:00,T{i},100,straddle,buy\n" for i in range(6))

    stats = await uploader.ingest('tester', 'bad.csv', "time,ticker,premium,type,side\n" + rows, now=NOW)

    assert stats.errors == 6
    assert len(stats.error_samples) == 3


@pytest.mark.asyncio
async def test_ingest_survives_oversized_open_interest(tmp_path, config):
    repository = SQLiteRepository(db_path=tmp_path / "flows.db")
    uploader = FlowUploader(repository, config)
    content = (
        "Time,Ticker,Premium,Type,Side,Open Interest\n"
        "09:30:00,AAA,100000,call,buy,1e20\n"
        "09:31:00,BBB,200000,put,sell,1500\n"
    )

    stats = await uploader.ingest('tester', 'flows.csv', content, now=NOW)

    assert stats.processed == 2
    assert stats.errors == 0
    records = await repository.fetch_records('tester', datetime(2026, 10, 16, tzinfo=timezone.utc))
    assert {r.ticker_symbol: r.open_interest for r in records} == {'AAA': None, 'BBB': 1500}

    await repository.close()
