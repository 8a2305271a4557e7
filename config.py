#!/usr/bin/env python3
import os
import argparse
from typing import NamedTuple
import constants

class AppConfig(NamedTuple):
    """Typed configuration object."""
    db_path: str
    user_id: str
    ingest_files: list[str]
    analyze_range: str | None
    show_patterns: bool
    show_insights: bool
    show_uploads: bool
    daily_date: str | None
    limit: int
    bot_enabled: bool
    market_timezone: str
    lenient_timestamps: bool
    ai_analysis_enabled: bool
    gemini_api_key: str | None
    telegram_bot_token: str | None
    log_level: str


def load_config() -> AppConfig:
    """
    Parses command-line arguments and loads environment variables to create a configuration object.
    """
    parser = argparse.ArgumentParser(
        description="Ingest options flow CSV exports and surface flow insights, patterns and anomalies.",
        epilog="Example: ./main.py --ingest flows.csv --analyze today"
    )
    # --- Modes ---
    parser.add_argument('--ingest', nargs='+', metavar='CSV', help='One or more CSV flow exports to ingest.')
    parser.add_argument('--analyze', choices=constants.TIME_RANGES, help='Run flow analysis for the given window.')
    parser.add_argument('--show-patterns', action='store_true', help='Display stored flow patterns and exit.')
    parser.add_argument('--show-insights', action='store_true', help='Display recent stored insights and exit.')
    parser.add_argument('--show-uploads', action='store_true', help='Display recent daily upload sessions and exit.')
    parser.add_argument('--daily', nargs='?', const='today', metavar='YYYY-MM-DD', help='Show the sentiment, intraday timing, top flows and notable flows for one day (default: today).')
    parser.add_argument('--bot', action='store_true', help='Run the Telegram bot.')

    # --- Options ---
    parser.add_argument('--db-path', type=str, help=f'SQLite database path (default: {constants.DEFAULT_DB_PATH}).')
    parser.add_argument('--user', type=str, help='User id that owns ingested and analyzed records (default: local).')
    parser.add_argument('--limit', type=int, default=10, help='Number of stored records to display (default: 10).')
    parser.add_argument('--timezone', type=str, default=constants.DEFAULT_MARKET_TIMEZONE, help=f'Market timezone for naive timestamps and hour buckets (default: {constants.DEFAULT_MARKET_TIMEZONE}).')
    parser.add_argument('--lenient-timestamps', action='store_true', help='Substitute the current time for unparsable trade timestamps instead of rejecting the row.')
    parser.add_argument('--disable-ai-analysis', action='store_true', help='Disable AI-generated commentary for analysis results.')
    parser.add_argument('--log-level', default='INFO', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], help='Logging level (default: INFO).')

    args = parser.parse_args()

    if not (args.ingest or args.analyze or args.show_patterns or args.show_insights or args.show_uploads or args.daily or args.bot):
        parser.error('one of --ingest, --analyze, --show-patterns, --show-insights, --show-uploads, --daily or --bot is required.')

    # Load from environment
    telegram_bot_token = os.environ.get(constants.TELEGRAM_BOT_TOKEN_ENV_VAR)
    gemini_api_key = os.environ.get(constants.GEMINI_API_KEY_ENV_VAR)
    user_id = args.user or os.environ.get(constants.FLOW_USER_ID_ENV_VAR) or 'local'
    db_path = args.db_path or os.environ.get(constants.FLOW_DB_PATH_ENV_VAR) or constants.DEFAULT_DB_PATH

    ai_analysis_env = os.environ.get(constants.AI_ANALYSIS_ENABLED_ENV_VAR)
    ai_analysis_enabled = not args.disable_ai_analysis
    if ai_analysis_env is not None:
        ai_analysis_enabled = ai_analysis_env.lower() not in {"0", "false", "no", "off"}

    if args.bot and not telegram_bot_token:
        print(f"{constants.C_RED}--bot requires the {constants.TELEGRAM_BOT_TOKEN_ENV_VAR} environment variable.{constants.C_RESET}")
        exit(1)

    return AppConfig(
        db_path=db_path,
        user_id=user_id,
        ingest_files=args.ingest or [],
        analyze_range=args.analyze,
        show_patterns=args.show_patterns,
        show_insights=args.show_insights,
        show_uploads=args.show_uploads,
        daily_date=args.daily,
        limit=args.limit,
        bot_enabled=args.bot,
        market_timezone=args.timezone,
        lenient_timestamps=args.lenient_timestamps,
        ai_analysis_enabled=ai_analysis_enabled,
        gemini_api_key=gemini_api_key,
        telegram_bot_token=telegram_bot_token,
        log_level=args.log_level,
    )
