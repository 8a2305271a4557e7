from datetime import datetime
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

import pytest

from analysis.models import TradeRecord
from bot.handlers import analyze_command, csv_upload_handler, daily_command, patterns_command, ticker_command
from config import AppConfig
from ingest.uploader import FlowUploader
from storage import SQLiteRepository

NY = ZoneInfo("America/New_York")


@pytest.fixture
def config():
    return AppConfig(
        db_path=':memory:',
        user_id='local',
        ingest_files=[],
        analyze_range=None,
        show_patterns=False,
        show_insights=False,
        show_uploads=False,
        daily_date=None,
        limit=10,
        bot_enabled=True,
        market_timezone='America/New_York',
        lenient_timestamps=False,
        ai_analysis_enabled=False,
        gemini_api_key=None,
        telegram_bot_token='token',
        log_level='INFO',
    )


@pytest.fixture
def repository(tmp_path):
    return SQLiteRepository(db_path=tmp_path / "bot.db")


@pytest.fixture
def context(config, repository):
    context = MagicMock()
    context.args = []
    context.application.bot_data = {
        'config': config,
        'repository': repository,
        'uploader': FlowUploader(repository, config),
        'gemini_client': None,
    }
    return context


@pytest.fixture
def update():
    update = MagicMock()
    update.effective_user.id = 42
    update.message.reply_text = AsyncMock()
    update.message.reply_html = AsyncMock()
    return update


@pytest.mark.asyncio
async def test_analyze_command_rejects_unknown_range(update, context):
    context.args = ['year']
    await analyze_command(update, context)
    update.message.reply_text.assert_awaited_once_with("Usage: /analyze [today|week|month]")
    update.message.reply_html.assert_not_awaited()


@pytest.mark.asyncio
async def test_csv_upload_then_analyze(update, context, repository):
    csv_bytes = (
        "Time,Ticker,Premium,Type,Side\n"
        "10:00:00,XYZ,150000,call,sweep\n"
        "10:01:00,XYZ,160000,call,sweep\n"
        "10:02:00,XYZ,170000,call,sweep\n"
    ).encode("utf-8")
    telegram_file = MagicMock()
    telegram_file.download_as_bytearray = AsyncMock(return_value=bytearray(csv_bytes))
    update.message.document.file_name = "flows.csv"
    update.message.document.get_file = AsyncMock(return_value=telegram_file)

    await csv_upload_handler(update, context)

    reply = update.message.reply_text.await_args.args[0]
    assert reply == "✅ Processed 3 records from flows.csv"

    context.args = ['week']
    await analyze_command(update, context)

    report = update.message.reply_html.await_args.args[0]
    assert "<b>Flow Analysis (week)</b>" in report
    assert "XYZ Large Sweep Activity x3" in report

    await patterns_command(update, context)
    table = update.message.reply_html.await_args.args[0]
    assert table.startswith("<pre>")
    assert "XYZ" in table

    await repository.close()


@pytest.mark.asyncio
async def test_csv_upload_rejects_other_files(update, context):
    update.message.document.file_name = "flows.xlsx"
    await csv_upload_handler(update, context)
    update.message.reply_text.assert_awaited_once_with("Please upload CSV files only.")


@pytest.mark.asyncio
async def test_ticker_command_requires_symbol(update, context):
    await ticker_command(update, context)
    update.message.reply_text.assert_awaited_once_with("Usage: /ticker SYMBOL")


@pytest.mark.asyncio
async def test_daily_command_replies_with_breakdown(update, context, repository):
    await repository.insert_trade_records('42', [
        TradeRecord(datetime(2026, 10, 16, 10, 0, tzinfo=NY), 'XYZ', 2_000_000, 'call', 'block'),
    ])
    context.args = ['2026-10-16']

    await daily_command(update, context)

    reply = update.message.reply_html.await_args.args[0]
    assert reply.startswith("<pre>Daily breakdown 2026-10-16")
    assert "[high] XYZ Large block ($2,000,000) (85%)" in reply

    await repository.close()


@pytest.mark.asyncio
async def test_daily_command_rejects_bad_date(update, context):
    context.args = ['yesterday']
    await daily_command(update, context)
    update.message.reply_text.assert_awaited_once_with("Usage: /daily [YYYY-MM-DD]")
