#!/usr/bin/env python3
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

@dataclass(frozen=True)
class TradeRecord:
    """Represents a single observed options trade."""
    time_of_trade: datetime
    ticker_symbol: str
    premium: float
    option_type: str  # 'call' or 'put'
    trade_type: str  # 'buy', 'sell', 'block' or 'sweep'
    score: Optional[float] = None
    spot_price: Optional[float] = None
    strike_price: Optional[float] = None
    implied_volatility: Optional[float] = None
    open_interest: Optional[int] = None

@dataclass
class Insight:
    """A natural-language observation backed by the trades that produced it."""
    insight_type: str  # 'pattern', 'anomaly', 'trend' or 'prediction'
    title: str
    description: str
    confidence: float
    data_points: List[Dict[str, Any]] = field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None

@dataclass
class DetectedPattern:
    """A recurring structural signature in the trades of one ticker."""
    pattern_type: str  # 'sweep', 'block', 'unusual_volume', 'price_movement' or 'momentum'
    ticker: str
    name: str
    description: str
    conditions: Dict[str, Any]
    occurrences: int
    success_rate: Optional[float] = None
    avg_return: Optional[float] = None
    time_horizon: Optional[int] = None

@dataclass
class FlowAnomaly:
    """A deviation flagged for a ticker or the whole market."""
    anomaly_type: str  # 'volume', 'premium', 'timing' or 'unusual_activity'
    ticker: str
    description: str
    severity: str  # 'low', 'medium' or 'high'
    data_points: List[Dict[str, Any]]
    detected_at: datetime

@dataclass
class AnalysisSummary:
    """Rollup of one analysis run."""
    total_flows_analyzed: int
    patterns_detected: int
    anomalies_found: int
    top_tickers: List[Tuple[str, int]]
    market_sentiment: str  # 'bullish', 'bearish' or 'neutral'
    risk_level: str  # 'low', 'medium' or 'high'

@dataclass
class FlowAnalysisResult:
    """Everything produced by a single analysis run."""
    insights: List[Insight]
    patterns: List[DetectedPattern]
    anomalies: List[FlowAnomaly]
    summary: AnalysisSummary

@dataclass
class TickerSentiment:
    """Call/put premium split for one ticker."""
    ticker: str
    call_premium: float
    put_premium: float
    score: float  # call share of premium, 0-100; 50 when there is no premium

@dataclass
class SentimentBreakdown:
    """Premium-weighted sentiment for one trading day."""
    bullish_score: float  # 0-100
    bearish_score: float  # 0-100
    net_sentiment: str  # 'bullish', 'bearish' or 'neutral'
    call_premium: float
    put_premium: float
    top_bullish: List[TickerSentiment] = field(default_factory=list)
    top_bearish: List[TickerSentiment] = field(default_factory=list)

@dataclass
class HourlyMetrics:
    hour: int  # market-local hour, 0-23
    flows: int
    total_premium: float
    call_premium: float
    put_premium: float
    sweeps: int
    blocks: int
    avg_score: float  # missing scores count as 0
    sentiment: str  # 'bullish', 'bearish' or 'neutral'

@dataclass
class HourlyBreakdown:
    """Per-hour activity; only hours with at least one flow are listed."""
    hours: List[HourlyMetrics]
    busiest_hour: Optional[int]
    highest_premium_hour: Optional[int]
    most_bullish_hour: Optional[int]
    most_bearish_hour: Optional[int]
    after_hours_activity: bool

@dataclass
class TopFlows:
    """The day's flows by category, each sorted by premium descending."""
    largest: List[TradeRecord]
    bullish: List[TradeRecord]
    bearish: List[TradeRecord]
    sweeps: List[TradeRecord]
    blocks: List[TradeRecord]

@dataclass
class NotableFlow:
    record: TradeRecord
    reason: str
    severity: str  # 'low', 'medium' or 'high'
    confidence: float

@dataclass
class DailyBreakdown:
    """Sentiment, timing, top flows and notable flows for one market day."""
    day: date
    total_flows: int
    sentiment: SentimentBreakdown
    hourly: HourlyBreakdown
    top_flows: TopFlows
    notable: List[NotableFlow]
