"""Normalize vendor options-flow CSV exports into TradeRecord values.

Vendor exports are loosely structured: header spellings vary between
exports, numbers carry currency symbols and thousands separators, and
trade times are sometimes a bare ``HH:MM:SS``. Every row is processed
independently; a bad row is reported and dropped without failing the batch.

Usage:
    from ingest.csv_parser import parse_flow_csv

    result = parse_flow_csv(Path("flows.csv").read_text())
    for record in result.records:
        print(record.ticker_symbol, record.premium)
"""
from __future__ import annotations

import csv
import io
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

from dateutil import parser as date_parser

from analysis.models import TradeRecord
from constants import (
    DEFAULT_MARKET_TIMEZONE,
    HEADER_ALIASES,
    MAX_OPEN_INTEREST,
    OPTIONAL_NUMERIC_FIELDS,
    REQUIRED_FIELDS,
    VALID_OPTION_TYPES,
    VALID_TRADE_TYPES,
)

logger = logging.getLogger(__name__)

_TIME_ONLY = re.compile(r"^\d{1,2}:\d{2}:\d{2}$")
_WHITESPACE = re.compile(r"\s+")
_NUMERIC_NOISE = re.compile(r"[$,\s]")
_NUMERIC_PREFIX = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


class TimestampParseError(ValueError):
    """Raised when a trade time is neither a date-time nor a bare time of day."""


@dataclass
class ParseResult:
    success: bool
    records: list[TradeRecord] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    total_records: int = 0

    @property
    def failed_rows(self) -> int:
        return self.total_records - len(self.records)


def normalize_header(header: str) -> str:
    """Map a raw CSV header onto its canonical field name.

    Examples:
        "Ticker Symbol" -> "ticker_symbol"
        "tickerSymbol"  -> "ticker_symbol"
        "Notes"         -> "notes"
    """
    normalized = _WHITESPACE.sub("_", header.lower().strip())
    return HEADER_ALIASES.get(normalized, normalized)


def parse_numeric(value: object) -> Optional[float]:
    """Parse a vendor number such as "$1,250,000.00"; None when unparsable.

    Only the leading number is read, so "1.2M" gives 1.2 and
    "100 contracts" gives 100.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    match = _NUMERIC_PREFIX.match(_NUMERIC_NOISE.sub("", str(value)))
    if not match:
        return None
    number = float(match.group(0))
    return number if math.isfinite(number) else None


def parse_open_interest(value: object) -> Optional[int]:
    """Whole contract count, or None when missing, fractional or out of range."""
    number = parse_numeric(value)
    if number is None or not number.is_integer() or abs(number) > MAX_OPEN_INTEREST:
        return None
    return int(number)


def normalize_option_type(value: str) -> str:
    normalized = value.lower().strip()
    if "call" in normalized or normalized == "c":
        return "call"
    if "put" in normalized or normalized == "p":
        return "put"
    return normalized


def normalize_trade_type(value: str) -> str:
    normalized = value.lower().strip()
    if "buy" in normalized or normalized == "b":
        return "buy"
    if "sell" in normalized or normalized == "s":
        return "sell"
    return normalized


def parse_trade_time(value: str, *, tz: tzinfo, now: Optional[datetime] = None) -> datetime:
    """Parse a trade time into an aware datetime.

    A bare ``HH:MM:SS`` is placed on today's date in ``tz``; naive date-times
    are interpreted in ``tz``.

    Raises:
        TimestampParseError: If the value cannot be parsed at all.
    """
    text = value.strip()
    local_now = (now or datetime.now(tz)).astimezone(tz)

    if _TIME_ONLY.match(text):
        hours, minutes, seconds = (int(part) for part in text.split(":"))
        try:
            return local_now.replace(hour=hours, minute=minutes, second=seconds, microsecond=0)
        except ValueError as exc:
            raise TimestampParseError(f'Invalid time of day "{value}"') from exc

    default = local_now.replace(hour=0, minute=0, second=0, microsecond=0, tzinfo=None)
    try:
        parsed = date_parser.parse(text, default=default)
    except (ValueError, OverflowError) as exc:
        raise TimestampParseError(f'Unparsable time_of_trade "{value}"') from exc

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def parse_flow_csv(
    content: str | bytes,
    *,
    timestamp_fallback: bool = False,
    tz: Optional[tzinfo] = None,
    now: Optional[datetime] = None,
) -> ParseResult:
    """Parse a vendor CSV export into validated trade records.

    Args:
        content: Raw CSV text (or UTF-8 bytes) with a header row.
        timestamp_fallback: Substitute the current time for unparsable trade
            times instead of rejecting the row.
        tz: Market timezone for naive and time-only values.
        now: Reference instant, mostly for tests.

    Returns:
        ParseResult with the valid records, one error string per rejected row
        and the number of data rows read.
    """
    tz = tz or ZoneInfo(DEFAULT_MARKET_TIMEZONE)

    try:
        if isinstance(content, (bytes, bytearray)):
            content = bytes(content).decode("utf-8-sig")
        content = content.lstrip("\ufeff")
        reader = csv.DictReader(io.StringIO(content))
        if not reader.fieldnames:
            raise ValueError("CSV file is empty or has no header row")
        header_mapping = {header: normalize_header(header) for header in reader.fieldnames}
        raw_rows = list(reader)
    except (csv.Error, UnicodeDecodeError, ValueError) as exc:
        logger.warning("CSV parse failed: %s", exc)
        return ParseResult(success=False, errors=[f"Failed to parse CSV: {exc}"], total_records=0)

    logger.debug("Header mapping: %s", header_mapping)

    records: list[TradeRecord] = []
    errors: list[str] = []

    for index, raw_row in enumerate(raw_rows, start=1):
        row: dict[str, str] = {}
        for header, value in raw_row.items():
            if header is None:
                continue
            row[header_mapping.get(header, header)] = (value or "").strip()

        missing = [name for name in REQUIRED_FIELDS if not row.get(name)]
        if missing:
            errors.append(f"Row {index}: Missing required fields: {', '.join(missing)}")
            continue

        try:
            time_of_trade = parse_trade_time(row["time_of_trade"], tz=tz, now=now)
        except TimestampParseError as exc:
            if not timestamp_fallback:
                errors.append(f"Row {index}: {exc}")
                continue
            logger.warning("Row %d: %s; using current time", index, exc)
            time_of_trade = (now or datetime.now(tz)).astimezone(tz)

        option_type = normalize_option_type(row["option_type"])
        if option_type not in VALID_OPTION_TYPES:
            errors.append(f'Row {index}: Invalid option_type "{option_type}" (must be "call", "put", "c", or "p")')
            continue

        trade_type = normalize_trade_type(row["trade_type"])
        if trade_type not in VALID_TRADE_TYPES:
            errors.append(f'Row {index}: Invalid trade_type "{trade_type}" (must be "buy", "sell", "block", or "sweep")')
            continue

        premium = parse_numeric(row["premium"]) or 0.0
        if premium < 0:
            errors.append(f'Row {index}: Invalid premium "{row["premium"]}" (must be non-negative)')
            continue

        optional = {name: parse_numeric(row.get(name)) for name in OPTIONAL_NUMERIC_FIELDS}
        open_interest = parse_open_interest(row.get("open_interest"))
        if open_interest is None and optional["open_interest"] is not None:
            logger.warning("Row %d: ignoring open_interest %r (not a whole contract count)", index, row["open_interest"])

        records.append(TradeRecord(
            time_of_trade=time_of_trade,
            ticker_symbol=row["ticker_symbol"].upper().strip(),
            premium=premium,
            option_type=option_type,
            trade_type=trade_type,
            score=optional["score"],
            spot_price=optional["spot_price"],
            strike_price=optional["strike_price"],
            implied_volatility=optional["implied_volatility"],
            open_interest=open_interest,
        ))

    logger.info("Parsed %d of %d CSV rows (%d errors)", len(records), len(raw_rows), len(errors))
    return ParseResult(
        success=len(records) > 0,
        records=records,
        errors=errors,
        total_records=len(raw_rows),
    )
