"""Run flow analysis for one user against stored records and persist the output."""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta

from analysis.daily_breakdown import build_daily_breakdown
from analysis.flow_analyzer import FlowAnalyzer
from analysis.models import DailyBreakdown, FlowAnalysisResult, TradeRecord
from config import AppConfig
from constants import HISTORICAL_WINDOW_DAYS, TIME_RANGES
from storage.sqlite_repository import SQLiteRepository

logger = logging.getLogger(__name__)


class FlowAnalysisError(RuntimeError):
    """Raised when the records needed for an analysis run cannot be read."""


@dataclass
class TickerSnapshot:
    ticker: str
    flows: int
    total_premium: float
    calls: int
    puts: int
    largest: List[TradeRecord] = field(default_factory=list)


def window_start(time_range: str, now: datetime, tz: ZoneInfo) -> datetime:
    """Start of the current window for ``today``, ``week`` or ``month``."""
    local_now = now.astimezone(tz)
    if time_range == 'week':
        return local_now - timedelta(days=7)
    if time_range == 'month':
        return local_now - relativedelta(months=1)
    return local_now.replace(hour=0, minute=0, second=0, microsecond=0)


def parse_day(value: Optional[str]) -> Optional[date]:
    """``None`` or ``'today'`` mean the current market day; otherwise ``YYYY-MM-DD``.

    Raises:
        ValueError: If the value is not an ISO date.
    """
    if value is None or value.strip().lower() == 'today':
        return None
    return date.fromisoformat(value.strip())


class FlowAnalysisService:
    """Fetches the current and historical windows, analyzes them and stores the results.

    Reads are fatal to the run; writes are best-effort because the caller
    already holds the in-memory result.
    """

    def __init__(self, repository: SQLiteRepository, config: AppConfig, user_id: str) -> None:
        self._repository = repository
        self._config = config
        self._user_id = user_id
        self._tz = ZoneInfo(config.market_timezone)
        self._analyzer = FlowAnalyzer(self._tz)

    @property
    def user_id(self) -> str:
        return self._user_id

    async def analyze(self, time_range: str = 'today', *, now: Optional[datetime] = None) -> FlowAnalysisResult:
        if time_range not in TIME_RANGES:
            raise ValueError(f"Unknown time range {time_range!r}; expected one of {', '.join(TIME_RANGES)}")

        now = now or datetime.now(timezone.utc)
        start = window_start(time_range, now, self._tz)
        historical_start = start - timedelta(days=HISTORICAL_WINDOW_DAYS)

        try:
            current = await self._repository.fetch_records(self._user_id, start)
            historical = await self._repository.fetch_records(self._user_id, historical_start, start)
        except sqlite3.Error as exc:
            raise FlowAnalysisError(f"Failed to load flow records for {self._user_id}: {exc}") from exc

        logger.info(
            "Analyzing %d current and %d historical records for user %s (%s)",
            len(current),
            len(historical),
            self._user_id,
            time_range,
        )
        result = self._analyzer.analyze(current, historical, now=now)

        await self._persist(result, now)
        return result

    async def ticker_snapshot(self, ticker: str, *, now: Optional[datetime] = None) -> TickerSnapshot:
        """Activity for one ticker over the trailing 30 days."""
        now = now or datetime.now(timezone.utc)
        ticker = ticker.upper().strip()
        try:
            records = await self._repository.fetch_records(self._user_id, now - timedelta(days=HISTORICAL_WINDOW_DAYS))
        except sqlite3.Error as exc:
            raise FlowAnalysisError(f"Failed to load flow records for {self._user_id}: {exc}") from exc

        trades = [r for r in records if r.ticker_symbol == ticker]
        return TickerSnapshot(
            ticker=ticker,
            flows=len(trades),
            total_premium=sum(r.premium for r in trades),
            calls=sum(1 for r in trades if r.option_type == 'call'),
            puts=sum(1 for r in trades if r.option_type == 'put'),
            largest=sorted(trades, key=lambda r: r.premium, reverse=True)[:3],
        )

    async def daily_breakdown(self, day: Optional[date] = None, *, now: Optional[datetime] = None) -> DailyBreakdown:
        """Breakdown of one market-local day; defaults to today."""
        if day is None:
            day = (now or datetime.now(timezone.utc)).astimezone(self._tz).date()
        start = datetime.combine(day, time.min, tzinfo=self._tz)
        end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=self._tz)
        try:
            records = await self._repository.fetch_records(self._user_id, start, end)
        except sqlite3.Error as exc:
            raise FlowAnalysisError(f"Failed to load flow records for {self._user_id}: {exc}") from exc

        logger.info("Building daily breakdown for user %s on %s (%d flows)", self._user_id, day, len(records))
        return build_daily_breakdown(day, records, self._tz)

    async def _persist(self, result: FlowAnalysisResult, seen_at: datetime) -> None:
        if result.insights:
            try:
                await self._repository.insert_insights(self._user_id, result.insights)
            except sqlite3.Error as exc:
                logger.error("Failed to store %d insights for user %s: %s", len(result.insights), self._user_id, exc)

        for pattern in result.patterns:
            try:
                await self._repository.upsert_pattern(self._user_id, pattern, seen_at=seen_at)
            except sqlite3.Error as exc:
                logger.error(
                    "Failed to store %s pattern for %s (user %s): %s",
                    pattern.pattern_type,
                    pattern.ticker,
                    self._user_id,
                    exc,
                )
