#!/usr/bin/env python3
import asyncio
import logging
import time
from pathlib import Path

import aiohttp
from telegram import BotCommand
from telegram.ext import Application, CommandHandler, MessageHandler, filters
from telegram.error import TimedOut, TelegramError

import constants
from config import AppConfig, load_config
from bot.handlers import (
    help_command,
    status_command,
    analyze_command,
    patterns_command,
    insights_command,
    uploads_command,
    ticker_command,
    daily_command,
    csv_upload_handler,
)
from analysis.service import FlowAnalysisError, FlowAnalysisService, parse_day
from ingest.uploader import FlowUploader
from reports.flow_report import (
    format_analysis_text,
    format_daily_breakdown,
    format_insights_table,
    format_patterns_table,
    format_upload_stats,
    format_uploads_table,
)
from services.gemini_client import GeminiClient
from storage import SQLiteRepository

async def post_init_hook(application: Application) -> None:
    """A hook that runs after the bot is initialized to set up shared clients."""
    # Create and store a single, shared aiohttp session
    session = aiohttp.ClientSession(headers={'User-Agent': 'FlowInsightsBot/1.0'})
    application.bot_data['http_session'] = session

    config = application.bot_data['config']
    gemini_client = None
    if config.ai_analysis_enabled and config.gemini_api_key:
        gemini_client = GeminiClient(session, config.gemini_api_key)
    application.bot_data['gemini_client'] = gemini_client

    commands = [
        BotCommand("analyze", "Run flow analysis (today, week or month)"),
        BotCommand("patterns", "Show stored flow patterns"),
        BotCommand("insights", "Show recent insights"),
        BotCommand("uploads", "Show daily upload sessions"),
        BotCommand("ticker", "Recent flow for one ticker"),
        BotCommand("daily", "Sentiment, timing and top flows for one day"),
        BotCommand("status", "Check bot status"),
        BotCommand("help", "Show help message"),
    ]
    try:
        await application.bot.set_my_commands(commands)
    except (TimedOut, TelegramError) as exc:
        print(
            f"{constants.C_YELLOW}Warning: unable to set Telegram bot commands ({exc})."
            f" Continuing startup without updating commands.{constants.C_RESET}"
        )

async def post_shutdown_hook(application: Application) -> None:
    """A hook that runs on application shutdown to clean up resources."""
    session = application.bot_data.get('http_session')
    if session:
        await session.close()
    repository = application.bot_data.get('repository')
    if repository:
        await repository.close()


async def run_cli(config: AppConfig, repository: SQLiteRepository) -> int:
    """Runs the selected CLI modes in order; returns a process exit code."""
    exit_code = 0

    if config.ingest_files:
        uploader = FlowUploader(repository, config)
        total_processed = 0
        for file_name in config.ingest_files:
            path = Path(file_name)
            if not path.is_file():
                print(f"{constants.C_RED}CSV file not found: {path}{constants.C_RESET}")
                exit_code = 1
                continue
            stats = await uploader.ingest(config.user_id, path.name, path.read_bytes())
            total_processed += stats.processed
            colour = constants.C_GREEN if stats.succeeded else constants.C_RED
            print(f"{colour}{format_upload_stats(stats)}{constants.C_RESET}")
        if total_processed == 0:
            exit_code = 1

    if config.analyze_range:
        service = FlowAnalysisService(repository, config, config.user_id)
        try:
            result = await service.analyze(config.analyze_range)
        except FlowAnalysisError as exc:
            print(f"{constants.C_RED}Analysis failed: {exc}{constants.C_RESET}")
            return 1
        print(format_analysis_text(result, config.analyze_range))

        if config.ai_analysis_enabled and config.gemini_api_key:
            async with aiohttp.ClientSession(headers={'User-Agent': 'FlowInsightsBot/1.0'}) as session:
                commentary = await GeminiClient(session, config.gemini_api_key).generate_flow_commentary(result)
            print(f"\n{constants.C_BLUE}{commentary}{constants.C_RESET}")

    if config.daily_date:
        try:
            day = parse_day(config.daily_date)
        except ValueError:
            print(f"{constants.C_RED}Invalid --daily date {config.daily_date!r}; expected YYYY-MM-DD.{constants.C_RESET}")
            return 1
        service = FlowAnalysisService(repository, config, config.user_id)
        try:
            breakdown = await service.daily_breakdown(day)
        except FlowAnalysisError as exc:
            print(f"{constants.C_RED}Daily breakdown failed: {exc}{constants.C_RESET}")
            return 1
        print(format_daily_breakdown(breakdown))

    if config.show_patterns:
        records = await repository.fetch_patterns(config.user_id, limit=config.limit)
        _print_heading(f"Showing up to {config.limit} stored patterns (user={config.user_id})")
        print(format_patterns_table(records))

    if config.show_insights:
        records = await repository.fetch_recent_insights(config.user_id, limit=config.limit)
        _print_heading(f"Showing up to {config.limit} recent insights (user={config.user_id})")
        print(format_insights_table(records))

    if config.show_uploads:
        records = await repository.fetch_daily_uploads(config.user_id, limit=config.limit)
        _print_heading(f"Showing up to {config.limit} daily uploads (user={config.user_id})")
        print(format_uploads_table(records))

    return exit_code


def _print_heading(heading: str) -> None:
    print(heading)
    print("=" * len(heading))


def main() -> None:
    """The main synchronous entry point for the application."""
    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    repository = SQLiteRepository(config.db_path)

    if not config.bot_enabled:
        try:
            exit_code = asyncio.run(run_cli(config, repository))
        finally:
            asyncio.run(repository.close())
        if exit_code:
            exit(exit_code)
        return

    if config.ingest_files or config.analyze_range or config.show_patterns or config.show_insights or config.show_uploads or config.daily_date:
        exit_code = asyncio.run(run_cli(config, repository))
        if exit_code:
            print(f"{constants.C_YELLOW}CLI tasks reported errors; starting the bot anyway.{constants.C_RESET}")

    application = (
        Application.builder()
        .token(config.telegram_bot_token)
        .post_init(post_init_hook)
        .post_shutdown(post_shutdown_hook)
        .build()
    )

    # Store config and other shared data
    application.bot_data['config'] = config
    application.bot_data['start_time'] = time.time()
    application.bot_data['repository'] = repository
    application.bot_data['uploader'] = FlowUploader(repository, config)

    # Register command handlers
    application.add_handler(CommandHandler("start", help_command))
    application.add_handler(CommandHandler("help", help_command))
    application.add_handler(CommandHandler("status", status_command))
    application.add_handler(CommandHandler("analyze", analyze_command))
    application.add_handler(CommandHandler("patterns", patterns_command))
    application.add_handler(CommandHandler("insights", insights_command))
    application.add_handler(CommandHandler("uploads", uploads_command))
    application.add_handler(CommandHandler("ticker", ticker_command))
    application.add_handler(CommandHandler("daily", daily_command))
    application.add_handler(MessageHandler(filters.Document.ALL, csv_upload_handler))

    application.run_polling()


if __name__ == "__main__":
    main()
