# bot/handlers.py
import html
import time

from telegram import Update
from telegram.ext import ContextTypes

from analysis.service import FlowAnalysisError, FlowAnalysisService, parse_day
from constants import TIME_RANGES
from reports.flow_report import (
    format_analysis_html,
    format_daily_breakdown,
    format_insights_table,
    format_patterns_table,
    format_ticker_snapshot,
    format_upload_stats,
    format_uploads_table,
)

TELEGRAM_MESSAGE_LIMIT = 4000


def _user_id(update: Update) -> str:
    return str(update.effective_user.id)


def _clip(text: str) -> str:
    return text if len(text) <= TELEGRAM_MESSAGE_LIMIT else text[:TELEGRAM_MESSAGE_LIMIT - 3] + "..."


def _service_for(update: Update, context: ContextTypes.DEFAULT_TYPE) -> FlowAnalysisService:
    bot_data = context.application.bot_data
    return FlowAnalysisService(bot_data['repository'], bot_data['config'], _user_id(update))

# --- Command Handlers ---

async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Displays a help message with all available commands."""
    help_text = """
    <b>Welcome to the Options Flow Insights Bot!</b>

    Send a CSV flow export as a document to upload it, then ask for an analysis.

    <b><u>Available Commands:</u></b>
    /analyze [today|week|month] - Run flow analysis
    /patterns - Show stored flow patterns
    /insights - Show recent insights
    /uploads - Show daily upload sessions
    /ticker SYMBOL - Activity for one ticker (last 30 days)
    /daily [YYYY-MM-DD] - Sentiment, timing and top flows for one day
    /status - Get bot status
    /help - Show this help message
    """
    await update.message.reply_html(help_text)

async def status_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Reports uptime and the active configuration."""
    config = context.application.bot_data.get('config')
    start_time = context.application.bot_data.get('start_time', 0)

    uptime_seconds = time.time() - start_time
    uptime_str = time.strftime('%H:%M:%S', time.gmtime(uptime_seconds))
    ai_status = "✅ Enabled" if context.application.bot_data.get('gemini_client') else "🚫 Disabled"

    status_message = (
        f"<b>Bot Status</b>\n"
        f"Uptime: {uptime_str}\n"
        f"AI commentary: {ai_status}\n"
        f"Market timezone: {html.escape(config.market_timezone) if config else 'n/a'}"
    )
    await update.message.reply_html(status_message)

async def analyze_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Runs the flow analysis for the requesting user."""
    time_range = context.args[0].lower() if context.args else 'today'
    if time_range not in TIME_RANGES:
        await update.message.reply_text(f"Usage: /analyze [{'|'.join(TIME_RANGES)}]")
        return

    await update.message.reply_text(f"Analyzing your {time_range} flow data...")
    service = _service_for(update, context)
    try:
        result = await service.analyze(time_range)
    except FlowAnalysisError as exc:
        await update.message.reply_text(f"❌ Failed to analyze flow data: {exc}")
        return

    commentary = None
    gemini_client = context.application.bot_data.get('gemini_client')
    if gemini_client is not None:
        commentary = await gemini_client.generate_flow_commentary(result)

    await update.message.reply_html(_clip(format_analysis_html(result, time_range, commentary)))

async def patterns_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Lists the user's stored patterns, most recently seen first."""
    repository = context.application.bot_data['repository']
    records = await repository.fetch_patterns(_user_id(update), limit=10)
    if not records:
        await update.message.reply_text("No recent patterns found. Try /analyze first, or upload some recent flow data.")
        return
    await update.message.reply_html(f"<pre>{html.escape(_clip(format_patterns_table(records)))}</pre>")

async def insights_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Lists the user's most recent stored insights."""
    repository = context.application.bot_data['repository']
    records = await repository.fetch_recent_insights(_user_id(update), limit=10)
    if not records:
        await update.message.reply_text("No stored insights yet. Run /analyze to generate some.")
        return
    await update.message.reply_html(f"<pre>{html.escape(_clip(format_insights_table(records)))}</pre>")

async def uploads_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Lists the user's daily upload sessions."""
    repository = context.application.bot_data['repository']
    records = await repository.fetch_daily_uploads(_user_id(update), limit=10)
    await update.message.reply_html(f"<pre>{html.escape(_clip(format_uploads_table(records)))}</pre>")

async def ticker_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Summarizes one ticker's recent flow."""
    if not context.args:
        await update.message.reply_text("Usage: /ticker SYMBOL")
        return

    service = _service_for(update, context)
    try:
        snapshot = await service.ticker_snapshot(context.args[0])
    except FlowAnalysisError as exc:
        await update.message.reply_text(f"❌ Failed to load ticker data: {exc}")
        return
    await update.message.reply_text(format_ticker_snapshot(snapshot))

async def daily_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Sentiment, intraday timing, top flows and notable flows for one day."""
    try:
        day = parse_day(context.args[0] if context.args else None)
    except ValueError:
        await update.message.reply_text("Usage: /daily [YYYY-MM-DD]")
        return

    service = _service_for(update, context)
    try:
        breakdown = await service.daily_breakdown(day)
    except FlowAnalysisError as exc:
        await update.message.reply_text(f"❌ Failed to load daily flow data: {exc}")
        return
    await update.message.reply_html(f"<pre>{html.escape(_clip(format_daily_breakdown(breakdown)))}</pre>")

async def csv_upload_handler(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Ingests a CSV export sent as a document."""
    document = update.message.document
    filename = document.file_name or "upload.csv"
    if not filename.lower().endswith('.csv'):
        await update.message.reply_text("Please upload CSV files only.")
        return

    telegram_file = await document.get_file()
    content = await telegram_file.download_as_bytearray()

    uploader = context.application.bot_data['uploader']
    stats = await uploader.ingest(_user_id(update), filename, bytes(content))
    prefix = "✅" if stats.succeeded else "❌"
    await update.message.reply_text(_clip(f"{prefix} {format_upload_stats(stats)}"))
