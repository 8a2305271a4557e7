#!/usr/bin/env python3
from typing import Dict

# --- ANSI Color Codes ---
C_GREEN = '\033[92m'
C_RED = '\033[91m'
C_YELLOW = '\033[93m'
C_BLUE = '\033[94m'
C_RESET = '\033[0m'

# --- API Configuration ---
GEMINI_API_BASE_URL = 'https://generativelanguage.googleapis.com/v1beta/models/gemini-2.5-flash:generateContent'

# --- Environment Variable Names ---
TELEGRAM_BOT_TOKEN_ENV_VAR = 'TELEGRAM_BOT_TOKEN'
GEMINI_API_KEY_ENV_VAR = 'GEMINI_API_KEY'
AI_ANALYSIS_ENABLED_ENV_VAR = 'AI_ANALYSIS_ENABLED'
FLOW_USER_ID_ENV_VAR = 'FLOW_USER_ID'
FLOW_DB_PATH_ENV_VAR = 'FLOW_DB_PATH'

# --- Storage Defaults ---
DEFAULT_DB_PATH = 'data/flow_insights.db'
INSERT_BATCH_SIZE = 1000
MAX_ERRORS_SHOWN = 3

# --- Market Defaults ---
DEFAULT_MARKET_TIMEZONE = 'America/New_York'
MARKET_TICKER = 'MARKET'
TIME_RANGES = ('today', 'week', 'month')
HISTORICAL_WINDOW_DAYS = 30

# --- CSV Header Aliases (normalized header -> canonical field) ---
HEADER_ALIASES: Dict[str, str] = {
    # time
    'time_of_trade': 'time_of_trade',
    'time': 'time_of_trade',
    'timestamp': 'time_of_trade',
    'trade_time': 'time_of_trade',
    # ticker
    'tickersymbol': 'ticker_symbol',
    'ticker_symbol': 'ticker_symbol',
    'ticker': 'ticker_symbol',
    'symbol': 'ticker_symbol',
    # premium
    'premium': 'premium',
    'option_premium': 'premium',
    'trade_premium': 'premium',
    # option type
    'optiontype': 'option_type',
    'option_type': 'option_type',
    'type': 'option_type',
    'call_put': 'option_type',
    # trade type
    'tradetype': 'trade_type',
    'trade_type': 'trade_type',
    'side': 'trade_type',
    'buy_sell': 'trade_type',
    # score
    'score': 'score',
    'flow_score': 'score',
    'bullflow_score': 'score',
    # spot price
    'spotprice': 'spot_price',
    'spot_price': 'spot_price',
    'underlying_price': 'spot_price',
    'stock_price': 'spot_price',
    # strike price
    'strikeprice': 'strike_price',
    'strike_price': 'strike_price',
    'strike': 'strike_price',
    # implied volatility
    'impliedvolatility': 'implied_volatility',
    'implied_volatility': 'implied_volatility',
    'iv': 'implied_volatility',
    'volatility': 'implied_volatility',
    # open interest
    'openinterest': 'open_interest',
    'open_interest': 'open_interest',
    'oi': 'open_interest',
}

REQUIRED_FIELDS = ('time_of_trade', 'ticker_symbol', 'premium', 'option_type', 'trade_type')
OPTIONAL_NUMERIC_FIELDS = ('score', 'spot_price', 'strike_price', 'implied_volatility', 'open_interest')

VALID_OPTION_TYPES = {'call', 'put', 'c', 'p'}
VALID_TRADE_TYPES = {'buy', 'sell', 'block', 'sweep'}

# --- Insight Thresholds ---
HIGH_VALUE_PREMIUM = 500_000.0
HIGH_VALUE_CONFIDENCE = 0.85
UNUSUAL_VOLUME_RATIO = 3.0
UNUSUAL_VOLUME_MIN_COUNT = 5
UNUSUAL_VOLUME_BASE_CONFIDENCE = 0.6
UNUSUAL_VOLUME_MAX_CONFIDENCE = 0.9
UNUSUAL_VOLUME_SAMPLE_SIZE = 5
SENTIMENT_SHIFT_THRESHOLD = 0.3
SENTIMENT_SHIFT_CONFIDENCE = 0.75

# --- Pattern Thresholds ---
SWEEP_MIN_COUNT = 3
SWEEP_MIN_HIGH_VALUE = 2
SWEEP_HIGH_VALUE_PREMIUM = 100_000.0
BLOCK_MIN_COUNT = 2
BLOCK_MIN_TOTAL_PREMIUM = 1_000_000.0
MOMENTUM_MIN_RECORDS = 5
MOMENTUM_MIN_INCREASES = 3

# --- Anomaly Thresholds ---
MARKET_OPEN_HOUR = 9
MARKET_CLOSE_HOUR = 16
AFTER_HOURS_FRACTION = 0.3
PREMIUM_CHANGE_MEDIUM = 0.5
PREMIUM_CHANGE_HIGH = 1.0

# --- Summary Thresholds ---
TOP_TICKER_COUNT = 5
BULLISH_RATIO = 1.2
BEARISH_RATIO = 0.8
HIGH_RISK_MIN_HIGH_SEVERITY = 2
MEDIUM_RISK_MIN_ANOMALIES = 3

# --- Daily Breakdown ---
SENTIMENT_SCORE_BULLISH = 60.0
SENTIMENT_SCORE_BEARISH = 40.0
TOP_SENTIMENT_TICKERS = 5
HOURLY_BULLISH_SHARE = 0.6
HOURLY_BEARISH_SHARE = 0.4
TOP_FLOWS_LIMIT = 10
# (premium threshold, severity, confidence)
NOTABLE_LARGE_FLOW = (1_000_000.0, 'high', 0.85)
NOTABLE_LARGE_SWEEP = (500_000.0, 'medium', 0.72)
NOTABLE_HIGH_SCORE = (0.8, 'medium', 0.78)
NOTABLE_AFTER_HOURS = ('low', 0.65)

# open_interest is stored as a signed 64-bit SQLite INTEGER
MAX_OPEN_INTEREST = 2**63 - 1
