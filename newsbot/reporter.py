"""
Read projections and console rendering for stored markets and reports.

The projection functions return plain dictionaries suitable for printing or
JSON serialization: the market overview with current anomalies, recent
reports, a market's price history and a market's current anomalies. The
rendering functions format them for the command line.
"""

import logging
from dataclasses import asdict
from datetime import datetime, timedelta
from typing import Optional

from newsbot.detector import detect
from newsbot.models import Anomaly, MarketSnapshot, Report
from newsbot.storage import Storage
from newsbot.utils import format_currency, format_percentage, to_utc_iso, utc_now

# Configure module logger
logger = logging.getLogger(__name__)


# Projections

def market_overview(storage: Storage, limit: Optional[int] = None) -> list[dict]:
    """
    All stored markets with the anomalies their latest snapshot shows.

    Args:
        storage: Snapshot store
        limit: Maximum number of markets

    Returns:
        List of market dictionaries with ``anomalies`` and ``has_anomaly`` keys
    """
    overview = []
    for snapshot in storage.list_snapshots(limit=limit):
        anomalies = detect(snapshot)
        entry = _snapshot_to_dict(snapshot)
        entry["anomalies"] = [_anomaly_to_dict(anomaly) for anomaly in anomalies]
        entry["has_anomaly"] = bool(anomalies)
        overview.append(entry)
    return overview


def recent_reports(storage: Storage, limit: int = 50) -> list[dict]:
    """Most recent reports, newest first."""
    return [_report_to_dict(report) for report in storage.list_reports(limit=limit)]


def market_history(
    storage: Storage,
    market_id: str,
    hours: int = 24,
    now: Optional[datetime] = None
) -> list[dict]:
    """
    Price history of one market over the last ``hours`` hours.

    Returns:
        List of {"price", "volume", "timestamp"} dictionaries, oldest first
    """
    now = now or utc_now()
    points = storage.query_history(market_id, now - timedelta(hours=hours))
    return [
        {
            "price": point.price,
            "volume": point.volume,
            "timestamp": to_utc_iso(point.timestamp),
        }
        for point in points
    ]


def market_anomalies(storage: Storage, market_id: str) -> list[dict]:
    """Anomalies on a market's latest snapshot; empty if the market is unknown."""
    snapshot = storage.get_snapshot(market_id)
    if snapshot is None:
        return []
    return [_anomaly_to_dict(anomaly) for anomaly in detect(snapshot)]


def _snapshot_to_dict(snapshot: MarketSnapshot) -> dict:
    data = asdict(snapshot)
    data["observed_at"] = to_utc_iso(snapshot.observed_at)
    return data


def _anomaly_to_dict(anomaly: Anomaly) -> dict:
    return asdict(anomaly)


def _report_to_dict(report: Report) -> dict:
    data = asdict(report)
    data["event_time"] = to_utc_iso(report.event_time)
    data["created_at"] = to_utc_iso(report.created_at)
    return data


# Console rendering

def format_reports(reports: list[Report]) -> str:
    """
    Format reports for the console.

    Args:
        reports: Reports to render, in display order

    Returns:
        Formatted text
    """
    if not reports:
        return "No reports found."

    sections = [
        "=" * 80,
        f"  NEWS REPORTS ({len(reports)})",
        "=" * 80,
    ]

    for report in reports:
        sections.append(format_report(report))
        sections.append("-" * 80)

    return "\n".join(sections)


def format_report(report: Report) -> str:
    """Format a single report with its metrics and text."""
    event_time = report.event_time.strftime("%Y-%m-%d %H:%M UTC")

    lines = [
        f"[{report.id}] {report.headline}",
        f"    Market ID: {report.market_id}",
        f"    Event Time: {event_time}",
        f"    Price Change: {format_percentage(report.price_change, signed=True)} | "
        f"Volume Change: {format_percentage(report.volume_change, decimals=0, signed=True)} | "
        f"Confidence: {report.confidence:.0%}",
        "",
        "    SUMMARY:",
        f"      {report.summary}",
        "",
        "    KEY TAKEAWAYS:",
    ]
    lines.extend(f"      {line}" for line in report.key_takeaways.splitlines() if line.strip())

    if report.reasons:
        lines.append("")
        lines.append("    WHY FLAGGED:")
        lines.extend(f"      • {reason}" for reason in report.reasons)

    return "\n".join(lines)


def format_market_overview(overview: list[dict]) -> str:
    """Format the market overview as a table, anomalous markets marked with '!'."""
    if not overview:
        return "No markets stored yet."

    flagged = sum(1 for entry in overview if entry["has_anomaly"])
    lines = [
        f"{'':1} {'PRICE':>7} {'1H AGO':>7} {'VOL 24H':>12} {'CATEGORY':<16} QUESTION",
        "-" * 80,
    ]

    for entry in overview:
        marker = "!" if entry["has_anomaly"] else " "
        previous = entry["previous_price_1h"]
        previous_text = format_percentage(previous) if previous is not None else "-"
        lines.append(
            f"{marker} {format_percentage(entry['current_price']):>7} {previous_text:>7} "
            f"{format_currency(entry['volume_24h']):>12} {entry['category'][:16]:<16} "
            f"{entry['question'][:60]}"
        )
        for anomaly in entry["anomalies"]:
            lines.append(f"{'':40}-> {anomaly['kind']}: {anomaly['description']}")

    lines.append("-" * 80)
    lines.append(f"{len(overview)} markets, {flagged} with anomalies")
    return "\n".join(lines)


def format_history(market_id: str, history: list[dict]) -> str:
    """Format a market's price history, oldest first."""
    if not history:
        return f"No history for market {market_id}."

    lines = [f"History for market {market_id} ({len(history)} points)", "-" * 50]
    for point in history:
        lines.append(
            f"{point['timestamp'][:19].replace('T', ' ')}  "
            f"{format_percentage(point['price']):>7}  {format_currency(point['volume']):>12}"
        )
    return "\n".join(lines)
