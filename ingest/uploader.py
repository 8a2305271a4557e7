"""Parse uploaded CSV exports and store their records for a user."""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional
from zoneinfo import ZoneInfo

from config import AppConfig
from constants import INSERT_BATCH_SIZE, MAX_ERRORS_SHOWN
from ingest.csv_parser import parse_flow_csv
from storage.sqlite_repository import SQLiteRepository

logger = logging.getLogger(__name__)


@dataclass
class UploadStats:
    filename: str
    processed: int = 0
    errors: int = 0
    total_records: int = 0
    error_samples: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.processed > 0


class FlowUploader:
    """Ingests CSV exports: parse, insert in batches, then roll up the day's upload stats."""

    def __init__(self, repository: SQLiteRepository, config: AppConfig, batch_size: int = INSERT_BATCH_SIZE) -> None:
        self._repository = repository
        self._config = config
        self._tz = ZoneInfo(config.market_timezone)
        self._batch_size = batch_size

    async def ingest(
        self,
        user_id: str,
        filename: str,
        content: str | bytes,
        *,
        now: Optional[datetime] = None,
    ) -> UploadStats:
        now = now or datetime.now(timezone.utc)
        result = parse_flow_csv(
            content,
            timestamp_fallback=self._config.lenient_timestamps,
            tz=self._tz,
            now=now,
        )
        stats = UploadStats(filename=filename, total_records=result.total_records)

        if not result.success:
            stats.errors = max(result.total_records, len(result.errors))
            stats.error_samples = result.errors[:MAX_ERRORS_SHOWN]
            logger.warning("No valid records in %s: %s", filename, "; ".join(stats.error_samples))
            return stats

        upload_date = now.astimezone(self._tz).date()
        stored_premium = 0.0
        for offset in range(0, len(result.records), self._batch_size):
            batch = result.records[offset:offset + self._batch_size]
            try:
                await self._repository.insert_trade_records(user_id, batch, upload_date=upload_date)
            except sqlite3.Error as exc:
                logger.error("Database insert failed for %d records from %s: %s", len(batch), filename, exc)
                stats.errors += len(batch)
                continue
            stats.processed += len(batch)
            stored_premium += sum(r.premium for r in batch)

        stats.errors += len(result.errors)
        stats.error_samples = result.errors[:MAX_ERRORS_SHOWN]

        if stats.processed:
            try:
                await self._repository.record_daily_upload(
                    user_id=user_id,
                    upload_date=upload_date,
                    file_name=filename,
                    total_flows=stats.processed,
                    total_premium=stored_premium,
                )
            except sqlite3.Error as exc:
                logger.error("Failed to record daily upload for %s: %s", filename, exc)

        logger.info("Ingested %s: %d stored, %d errors", filename, stats.processed, stats.errors)
        return stats
