"""Dataclasses representing stored flow-analysis records."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional


@dataclass(slots=True)
class PatternRecord:
    id: int
    user_id: str
    pattern_type: str
    ticker_symbol: str
    pattern_name: str
    description: Optional[str]
    occurrences: int
    conditions: dict
    success_rate: Optional[float]
    avg_return: Optional[float]
    time_horizon: Optional[int]
    first_seen: datetime
    last_seen: datetime


@dataclass(slots=True)
class InsightRecord:
    id: int
    user_id: str
    insight_type: str
    title: str
    description: str
    confidence_score: float
    data_points: list
    metadata: dict
    created_at: datetime
    expires_at: Optional[datetime]


@dataclass(slots=True)
class DailyUploadRecord:
    id: int
    user_id: str
    upload_date: date
    total_flows: int
    total_premium: float
    unique_tickers: int
    file_names: list[str]
    upload_timestamp: datetime
