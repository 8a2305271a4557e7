"""SQLite-backed persistence layer for options flow records and analysis output."""
from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from analysis.models import DetectedPattern, Insight, TradeRecord
from storage.models import DailyUploadRecord, InsightRecord, PatternRecord

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def _to_iso(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime(ISO_FORMAT)


def _from_iso(value: str) -> datetime:
    return datetime.strptime(value, ISO_FORMAT).replace(tzinfo=timezone.utc)


def _serialize_list(values: Iterable[str]) -> str:
    return ",".join(sorted(set(values)))


class SQLiteRepository:
    """Provides async-friendly helpers for persisting flow records, insights and patterns."""

    def __init__(self, db_path: Path | str = Path("data/flow_insights.db")) -> None:
        self.db_path = Path(db_path)
        if self.db_path != Path(":memory:"):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._connection = sqlite3.connect(
            str(self.db_path),
            detect_types=sqlite3.PARSE_DECLTYPES,
            check_same_thread=False,
        )
        self._connection.row_factory = sqlite3.Row
        self._configure()
        self._create_schema()

    def _configure(self) -> None:
        with self._lock:
            cursor = self._connection.cursor()
            try:
                cursor.execute("PRAGMA journal_mode=WAL;")
            except sqlite3.DatabaseError:
                pass
            cursor.execute("PRAGMA foreign_keys=ON;")
            cursor.close()

    def _create_schema(self) -> None:
        statements = [
            """
            CREATE TABLE IF NOT EXISTS options_flow (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                time_of_trade TEXT NOT NULL,
                ticker_symbol TEXT NOT NULL,
                premium REAL NOT NULL CHECK (premium >= 0),
                option_type TEXT NOT NULL CHECK (option_type IN ('call', 'put')),
                trade_type TEXT NOT NULL CHECK (trade_type IN ('buy', 'sell', 'block', 'sweep')),
                score REAL,
                spot_price REAL,
                strike_price REAL,
                implied_volatility REAL,
                open_interest INTEGER,
                upload_date TEXT NOT NULL,
                created_at TEXT NOT NULL
            );
            """,
            """
            CREATE TABLE IF NOT EXISTS ai_insights (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                insight_type TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT NOT NULL,
                confidence_score REAL NOT NULL CHECK (confidence_score >= 0 AND confidence_score <= 1),
                data_points TEXT NOT NULL,
                metadata TEXT NOT NULL DEFAULT '{}',
                created_at TEXT NOT NULL,
                expires_at TEXT,
                is_active INTEGER NOT NULL DEFAULT 1
            );
            """,
            """
            CREATE TABLE IF NOT EXISTS flow_patterns (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                pattern_type TEXT NOT NULL,
                ticker_symbol TEXT NOT NULL,
                pattern_name TEXT NOT NULL,
                description TEXT,
                occurrences INTEGER NOT NULL DEFAULT 1 CHECK (occurrences >= 1),
                success_rate REAL,
                avg_return REAL,
                time_horizon INTEGER,
                conditions TEXT NOT NULL,
                last_seen TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1
            );
            """,
            """
            CREATE TABLE IF NOT EXISTS daily_uploads (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                upload_date TEXT NOT NULL,
                total_flows INTEGER NOT NULL DEFAULT 0,
                total_premium REAL NOT NULL DEFAULT 0,
                unique_tickers INTEGER NOT NULL DEFAULT 0,
                file_names TEXT NOT NULL DEFAULT '',
                upload_timestamp TEXT NOT NULL
            );
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_options_flow_user_time
                ON options_flow(user_id, time_of_trade);
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_options_flow_user_upload_date
                ON options_flow(user_id, upload_date);
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_ai_insights_user_created
                ON ai_insights(user_id, created_at);
            """,
            """
            CREATE UNIQUE INDEX IF NOT EXISTS idx_flow_patterns_user_ticker_type
                ON flow_patterns(user_id, ticker_symbol, pattern_type);
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_flow_patterns_last_seen
                ON flow_patterns(last_seen);
            """,
            """
            CREATE UNIQUE INDEX IF NOT EXISTS idx_daily_uploads_user_date
                ON daily_uploads(user_id, upload_date);
            """,
        ]

        with self._lock:
            cursor = self._connection.cursor()
            for statement in statements:
                cursor.execute(statement)
            self._connection.commit()
            cursor.close()

    # --- Trade records ---

    async def insert_trade_records(
        self,
        user_id: str,
        records: Iterable[TradeRecord],
        upload_date: Optional[date] = None,
    ) -> int:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            self._insert_trade_records_sync,
            user_id,
            list(records),
            upload_date or date.today(),
        )

    def _insert_trade_records_sync(self, user_id: str, records: list[TradeRecord], upload_date: date) -> int:
        created_at = _to_iso(datetime.now(timezone.utc))
        rows = [
            (
                user_id,
                _to_iso(record.time_of_trade),
                record.ticker_symbol,
                record.premium,
                record.option_type,
                record.trade_type,
                record.score,
                record.spot_price,
                record.strike_price,
                record.implied_volatility,
                record.open_interest,
                upload_date.isoformat(),
                created_at,
            )
            for record in records
        ]
        with self._lock:
            cursor = self._connection.cursor()
            try:
                cursor.executemany(
                    """
                    INSERT INTO options_flow (
                        user_id,
                        time_of_trade,
                        ticker_symbol,
                        premium,
                        option_type,
                        trade_type,
                        score,
                        spot_price,
                        strike_price,
                        implied_volatility,
                        open_interest,
                        upload_date,
                        created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
                self._connection.commit()
            except sqlite3.Error:
                self._connection.rollback()
                raise
            finally:
                cursor.close()
        return len(rows)

    async def fetch_records(
        self,
        user_id: str,
        start: datetime,
        end: Optional[datetime] = None,
    ) -> list[TradeRecord]:
        """Records with ``start <= time_of_trade < end``, newest first; ``end=None`` is open-ended."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._fetch_records_sync, user_id, start, end)

    def _fetch_records_sync(self, user_id: str, start: datetime, end: Optional[datetime]) -> list[TradeRecord]:
        end_iso = _to_iso(end) if end is not None else None
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                SELECT * FROM options_flow
                WHERE user_id = ?
                  AND time_of_trade >= ?
                  AND (? IS NULL OR time_of_trade < ?)
                ORDER BY time_of_trade DESC, id DESC
                """,
                (user_id, _to_iso(start), end_iso, end_iso),
            )
            rows = cursor.fetchall()
            cursor.close()
        return [
            TradeRecord(
                time_of_trade=_from_iso(row["time_of_trade"]),
                ticker_symbol=row["ticker_symbol"],
                premium=row["premium"],
                option_type=row["option_type"],
                trade_type=row["trade_type"],
                score=row["score"],
                spot_price=row["spot_price"],
                strike_price=row["strike_price"],
                implied_volatility=row["implied_volatility"],
                open_interest=row["open_interest"],
            )
            for row in rows
        ]

    # --- Insights ---

    async def insert_insights(
        self,
        user_id: str,
        insights: Iterable[Insight],
        expires_at: Optional[datetime] = None,
    ) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._insert_insights_sync, user_id, list(insights), expires_at)

    def _insert_insights_sync(self, user_id: str, insights: list[Insight], expires_at: Optional[datetime]) -> None:
        created_at = _to_iso(datetime.now(timezone.utc))
        expires_iso = _to_iso(expires_at) if expires_at is not None else None
        rows = [
            (
                user_id,
                insight.insight_type,
                insight.title,
                insight.description,
                insight.confidence,
                json.dumps(insight.data_points, default=str),
                json.dumps(insight.metadata or {}, default=str),
                created_at,
                expires_iso,
            )
            for insight in insights
        ]
        with self._lock:
            cursor = self._connection.cursor()
            try:
                cursor.executemany(
                    """
                    INSERT INTO ai_insights (
                        user_id,
                        insight_type,
                        title,
                        description,
                        confidence_score,
                        data_points,
                        metadata,
                        created_at,
                        expires_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
                self._connection.commit()
            except sqlite3.Error:
                self._connection.rollback()
                raise
            finally:
                cursor.close()

    async def fetch_recent_insights(
        self,
        user_id: str,
        limit: int = 10,
        now: Optional[datetime] = None,
    ) -> list[InsightRecord]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            self._fetch_recent_insights_sync,
            user_id,
            limit,
            now or datetime.now(timezone.utc),
        )

    def _fetch_recent_insights_sync(self, user_id: str, limit: int, now: datetime) -> list[InsightRecord]:
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                SELECT * FROM ai_insights
                WHERE user_id = ?
                  AND is_active = 1
                  AND (expires_at IS NULL OR expires_at > ?)
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (user_id, _to_iso(now), limit),
            )
            rows = cursor.fetchall()
            cursor.close()
        return [
            InsightRecord(
                id=row["id"],
                user_id=row["user_id"],
                insight_type=row["insight_type"],
                title=row["title"],
                description=row["description"],
                confidence_score=row["confidence_score"],
                data_points=json.loads(row["data_points"]),
                metadata=json.loads(row["metadata"]) if row["metadata"] else {},
                created_at=_from_iso(row["created_at"]),
                expires_at=_from_iso(row["expires_at"]) if row["expires_at"] else None,
            )
            for row in rows
        ]

    # --- Patterns ---

    async def upsert_pattern(
        self,
        user_id: str,
        pattern: DetectedPattern,
        seen_at: Optional[datetime] = None,
    ) -> None:
        """Insert the pattern or add its occurrences to the stored row for (user, ticker, type)."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            self._upsert_pattern_sync,
            user_id,
            pattern,
            seen_at or datetime.now(timezone.utc),
        )

    def _upsert_pattern_sync(self, user_id: str, pattern: DetectedPattern, seen_at: datetime) -> None:
        seen_iso = _to_iso(seen_at)
        with self._lock:
            cursor = self._connection.cursor()
            try:
                # Single statement so concurrent runs cannot lose an increment.
                cursor.execute(
                    """
                    INSERT INTO flow_patterns (
                        user_id,
                        pattern_type,
                        ticker_symbol,
                        pattern_name,
                        description,
                        occurrences,
                        success_rate,
                        avg_return,
                        time_horizon,
                        conditions,
                        last_seen,
                        created_at,
                        updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(user_id, ticker_symbol, pattern_type) DO UPDATE SET
                        occurrences = flow_patterns.occurrences + excluded.occurrences,
                        last_seen = excluded.last_seen,
                        updated_at = excluded.updated_at
                    """,
                    (
                        user_id,
                        pattern.pattern_type,
                        pattern.ticker,
                        pattern.name,
                        pattern.description,
                        pattern.occurrences,
                        pattern.success_rate,
                        pattern.avg_return,
                        pattern.time_horizon,
                        json.dumps(pattern.conditions),
                        seen_iso,
                        seen_iso,
                        seen_iso,
                    ),
                )
                self._connection.commit()
            except sqlite3.Error:
                self._connection.rollback()
                raise
            finally:
                cursor.close()

    async def fetch_patterns(
        self,
        user_id: str,
        *,
        limit: int = 10,
        ticker: Optional[str] = None,
    ) -> list[PatternRecord]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            self._fetch_patterns_sync,
            user_id,
            limit,
            ticker.upper() if ticker else None,
        )

    def _fetch_patterns_sync(self, user_id: str, limit: int, ticker: Optional[str]) -> list[PatternRecord]:
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                SELECT * FROM flow_patterns
                WHERE user_id = ?
                  AND is_active = 1
                  AND (? IS NULL OR ticker_symbol = ?)
                ORDER BY last_seen DESC, id DESC
                LIMIT ?
                """,
                (user_id, ticker, ticker, limit),
            )
            rows = cursor.fetchall()
            cursor.close()
        return [
            PatternRecord(
                id=row["id"],
                user_id=row["user_id"],
                pattern_type=row["pattern_type"],
                ticker_symbol=row["ticker_symbol"],
                pattern_name=row["pattern_name"],
                description=row["description"],
                occurrences=row["occurrences"],
                conditions=json.loads(row["conditions"]),
                success_rate=row["success_rate"],
                avg_return=row["avg_return"],
                time_horizon=row["time_horizon"],
                first_seen=_from_iso(row["created_at"]),
                last_seen=_from_iso(row["last_seen"]),
            )
            for row in rows
        ]

    # --- Daily uploads ---

    async def record_daily_upload(
        self,
        *,
        user_id: str,
        upload_date: date,
        file_name: str,
        total_flows: int,
        total_premium: float,
    ) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            self._record_daily_upload_sync,
            user_id,
            upload_date,
            file_name,
            total_flows,
            total_premium,
        )

    def _record_daily_upload_sync(
        self,
        user_id: str,
        upload_date: date,
        file_name: str,
        total_flows: int,
        total_premium: float,
    ) -> None:
        uploaded_at = _to_iso(datetime.now(timezone.utc))
        day = upload_date.isoformat()
        with self._lock:
            cursor = self._connection.cursor()
            try:
                cursor.execute(
                    """
                    SELECT COUNT(DISTINCT ticker_symbol) AS tickers FROM options_flow
                    WHERE user_id = ? AND upload_date = ?
                    """,
                    (user_id, day),
                )
                unique_tickers = cursor.fetchone()["tickers"]
                cursor.execute(
                    "SELECT file_names FROM daily_uploads WHERE user_id = ? AND upload_date = ?",
                    (user_id, day),
                )
                existing = cursor.fetchone()
                names = [n for n in existing["file_names"].split(",") if n] if existing else []
                names.append(file_name.replace(",", "_"))
                cursor.execute(
                    """
                    INSERT INTO daily_uploads (
                        user_id,
                        upload_date,
                        total_flows,
                        total_premium,
                        unique_tickers,
                        file_names,
                        upload_timestamp
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(user_id, upload_date) DO UPDATE SET
                        total_flows = daily_uploads.total_flows + excluded.total_flows,
                        total_premium = daily_uploads.total_premium + excluded.total_premium,
                        unique_tickers = excluded.unique_tickers,
                        file_names = excluded.file_names,
                        upload_timestamp = excluded.upload_timestamp
                    """,
                    (
                        user_id,
                        day,
                        total_flows,
                        total_premium,
                        unique_tickers,
                        _serialize_list(names),
                        uploaded_at,
                    ),
                )
                self._connection.commit()
            except sqlite3.Error:
                self._connection.rollback()
                raise
            finally:
                cursor.close()

    async def fetch_daily_uploads(self, user_id: str, limit: int = 10) -> list[DailyUploadRecord]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._fetch_daily_uploads_sync, user_id, limit)

    def _fetch_daily_uploads_sync(self, user_id: str, limit: int) -> list[DailyUploadRecord]:
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                SELECT * FROM daily_uploads
                WHERE user_id = ?
                ORDER BY upload_date DESC
                LIMIT ?
                """,
                (user_id, limit),
            )
            rows = cursor.fetchall()
            cursor.close()
        return [
            DailyUploadRecord(
                id=row["id"],
                user_id=row["user_id"],
                upload_date=date.fromisoformat(row["upload_date"]),
                total_flows=row["total_flows"],
                total_premium=row["total_premium"],
                unique_tickers=row["unique_tickers"],
                file_names=[n for n in row["file_names"].split(",") if n],
                upload_timestamp=_from_iso(row["upload_timestamp"]),
            )
            for row in rows
        ]

    async def close(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._close_sync)

    def _close_sync(self) -> None:
        with self._lock:
            self._connection.commit()
            self._connection.close()


__all__ = ["SQLiteRepository", "PatternRecord", "InsightRecord", "DailyUploadRecord"]
