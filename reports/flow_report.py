"""Render analysis results and stored records for the CLI and Telegram."""
from __future__ import annotations

import html
from datetime import timezone
from typing import List, Sequence

from analysis.models import DailyBreakdown, FlowAnalysisResult, TradeRecord
from analysis.service import TickerSnapshot
from ingest.uploader import UploadStats
from storage.models import DailyUploadRecord, InsightRecord, PatternRecord

_SEVERITY_ICONS = {'high': '🔴', 'medium': '🟠', 'low': '🟡'}
_SENTIMENT_ICONS = {'bullish': '📈', 'bearish': '📉', 'neutral': '➖'}


def format_premium(value: float) -> str:
    if value >= 1_000_000:
        return f"${value / 1_000_000:.2f}M"
    if value >= 1_000:
        return f"${value / 1_000:.0f}K"
    return f"${value:,.0f}"


def render_table(headers: List[str], rows: List[List[str]]) -> str:
    widths = [len(h) for h in headers]
    for row in rows:
        for idx, cell in enumerate(row):
            widths[idx] = max(widths[idx], len(cell))

    def _format_line(row: List[str]) -> str:
        return "  ".join(cell.ljust(widths[idx]) for idx, cell in enumerate(row)).rstrip()

    lines = [_format_line(headers), "  ".join('-' * w for w in widths)]
    lines.extend(_format_line(row) for row in rows)
    return "\n".join(lines)


def format_analysis_text(result: FlowAnalysisResult, time_range: str) -> str:
    summary = result.summary
    heading = f"Flow analysis ({time_range})"
    lines = [heading, "=" * len(heading)]
    lines.append(
        f"Flows analyzed: {summary.total_flows_analyzed} | Patterns: {summary.patterns_detected} | "
        f"Anomalies: {summary.anomalies_found}"
    )
    lines.append(f"Market sentiment: {summary.market_sentiment} | Risk level: {summary.risk_level}")
    if summary.top_tickers:
        lines.append("Top tickers: " + ", ".join(f"{t} ({n})" for t, n in summary.top_tickers))

    lines.append("")
    lines.append("Insights:")
    if result.insights:
        for insight in result.insights:
            lines.append(f"  - [{insight.confidence:.0%}] {insight.title}: {insight.description}")
    else:
        lines.append("  none")

    lines.append("Patterns:")
    if result.patterns:
        rows = [
            [p.pattern_type, p.ticker, str(p.occurrences), p.description]
            for p in result.patterns
        ]
        lines.extend("  " + line for line in render_table(["Type", "Ticker", "Count", "Description"], rows).splitlines())
    else:
        lines.append("  none")

    lines.append("Anomalies:")
    if result.anomalies:
        for anomaly in result.anomalies:
            lines.append(f"  - [{anomaly.severity}] {anomaly.ticker} {anomaly.anomaly_type}: {anomaly.description}")
    else:
        lines.append("  none")

    return "\n".join(lines)


def format_analysis_html(result: FlowAnalysisResult, time_range: str, commentary: str | None = None) -> str:
    summary = result.summary
    parts = [
        f"<b>Flow Analysis ({html.escape(time_range)})</b>",
        f"Flows: {summary.total_flows_analyzed} | Patterns: {summary.patterns_detected} | Anomalies: {summary.anomalies_found}",
        f"Sentiment: {_SENTIMENT_ICONS.get(summary.market_sentiment, '')} {summary.market_sentiment} | Risk: {summary.risk_level}",
    ]
    if summary.top_tickers:
        parts.append("Top tickers: " + ", ".join(f"${html.escape(t)} ({n})" for t, n in summary.top_tickers))

    if result.insights:
        parts.append("\n<b><u>Insights</u></b>")
        for insight in result.insights:
            parts.append(
                f"• <b>{html.escape(insight.title)}</b> ({insight.confidence:.0%}): {html.escape(insight.description)}"
            )

    if result.patterns:
        parts.append("\n<b><u>Patterns</u></b>")
        for pattern in result.patterns:
            parts.append(f"• {html.escape(pattern.name)} x{pattern.occurrences}: {html.escape(pattern.description)}")

    if result.anomalies:
        parts.append("\n<b><u>Anomalies</u></b>")
        for anomaly in result.anomalies:
            icon = _SEVERITY_ICONS.get(anomaly.severity, '')
            parts.append(f"{icon} {html.escape(anomaly.description)}")

    if commentary:
        parts.append(f"\n<i>{html.escape(commentary)}</i>")

    return "\n".join(parts)


def format_patterns_table(records: Sequence[PatternRecord]) -> str:
    if not records:
        return "No stored patterns found."
    rows = [
        [
            record.last_seen.strftime("%Y-%m-%d %H:%M"),
            record.ticker_symbol,
            record.pattern_type,
            str(record.occurrences),
            record.pattern_name,
        ]
        for record in records
    ]
    return render_table(["Last Seen (UTC)", "Ticker", "Type", "Count", "Name"], rows)


def format_insights_table(records: Sequence[InsightRecord]) -> str:
    if not records:
        return "No stored insights found."
    rows = [
        [
            record.created_at.strftime("%Y-%m-%d %H:%M"),
            record.insight_type,
            f"{record.confidence_score:.2f}",
            record.title,
        ]
        for record in records
    ]
    return render_table(["Created (UTC)", "Type", "Conf", "Title"], rows)


def format_uploads_table(records: Sequence[DailyUploadRecord]) -> str:
    if not records:
        return "No uploads recorded."
    rows = [
        [
            record.upload_date.isoformat(),
            str(record.total_flows),
            format_premium(record.total_premium),
            str(record.unique_tickers),
            ", ".join(record.file_names) or "-",
        ]
        for record in records
    ]
    return render_table(["Date", "Flows", "Premium", "Tickers", "Files"], rows)


def format_upload_stats(stats: UploadStats) -> str:
    if not stats.succeeded:
        detail = ", ".join(stats.error_samples) or "no records were successfully processed"
        return f"Failed to ingest {stats.filename}: {detail}"
    message = f"Processed {stats.processed} records from {stats.filename}"
    if stats.errors:
        message += f" with {stats.errors} errors"
        if stats.error_samples:
            message += " (" + "; ".join(stats.error_samples) + ")"
    return message


def format_ticker_snapshot(snapshot: TickerSnapshot) -> str:
    if snapshot.flows == 0:
        return f"No flows recorded for {snapshot.ticker} in the last 30 days."
    lines = [
        f"{snapshot.ticker}: {snapshot.flows} flows, {format_premium(snapshot.total_premium)} total premium",
        f"Calls {snapshot.calls} / Puts {snapshot.puts}",
    ]
    for record in snapshot.largest:
        lines.append(
            f"  {record.time_of_trade.strftime('%Y-%m-%d %H:%M')} {record.option_type} {record.trade_type} "
            f"{format_premium(record.premium)}"
        )
    return "\n".join(lines)


def _flow_line(record: TradeRecord) -> str:
    return (
        f"{record.time_of_trade.astimezone(timezone.utc).strftime('%H:%M')} {record.ticker_symbol} {record.option_type} "
        f"{record.trade_type} {format_premium(record.premium)}"
    )


def _hour_label(hour: int | None) -> str:
    return f"{hour:02d}:00" if hour is not None else "-"


def format_daily_breakdown(breakdown: DailyBreakdown) -> str:
    """Plain-text daily breakdown, shared by the CLI and the bot's <pre> reply."""
    heading = f"Daily breakdown {breakdown.day.isoformat()}"
    lines = [heading, "=" * len(heading)]
    if breakdown.total_flows == 0:
        lines.append("No flows recorded for this day.")
        return "\n".join(lines)

    sentiment = breakdown.sentiment
    lines.append(
        f"Flows: {breakdown.total_flows} | Sentiment: {sentiment.net_sentiment} "
        f"(bullish {sentiment.bullish_score:.1f}% / bearish {sentiment.bearish_score:.1f}%)"
    )
    lines.append(
        f"Call premium {format_premium(sentiment.call_premium)} | Put premium {format_premium(sentiment.put_premium)}"
    )
    if sentiment.top_bullish:
        lines.append("Top bullish: " + ", ".join(f"{t.ticker} ({t.score:.0f}%)" for t in sentiment.top_bullish))
    if sentiment.top_bearish:
        lines.append("Top bearish: " + ", ".join(f"{t.ticker} ({t.score:.0f}%)" for t in sentiment.top_bearish))

    hourly = breakdown.hourly
    lines.append("")
    lines.append(
        f"Busiest hour {_hour_label(hourly.busiest_hour)} | Highest premium {_hour_label(hourly.highest_premium_hour)} | "
        f"Most bullish {_hour_label(hourly.most_bullish_hour)} | Most bearish {_hour_label(hourly.most_bearish_hour)}"
    )
    if hourly.after_hours_activity:
        lines.append("After-hours activity detected")
    rows = [
        [
            _hour_label(h.hour),
            str(h.flows),
            format_premium(h.total_premium),
            str(h.sweeps),
            str(h.blocks),
            f"{h.avg_score:.2f}",
            h.sentiment,
        ]
        for h in hourly.hours
    ]
    lines.extend(render_table(["Hour", "Flows", "Premium", "Sweeps", "Blocks", "Score", "Sentiment"], rows).splitlines())

    lines.append("")
    lines.append("Largest flows (UTC):")
    lines.extend(f"  {_flow_line(record)}" for record in breakdown.top_flows.largest)

    if breakdown.notable:
        lines.append("Notable flows:")
        for flagged in breakdown.notable:
            lines.append(
                f"  [{flagged.severity}] {flagged.record.ticker_symbol} {flagged.reason} ({flagged.confidence:.0%})"
            )

    return "\n".join(lines)
