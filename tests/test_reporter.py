from __future__ import annotations

from datetime import datetime, timedelta, timezone

from newsbot.models import HistoryPoint, MarketSnapshot, Report
from newsbot.reporter import (
    format_history,
    format_market_overview,
    format_reports,
    market_anomalies,
    market_history,
    market_overview,
    recent_reports,
)
from newsbot.storage import Storage
from newsbot.telegram_notifier import format_report_message

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _snapshot(market_id: str, current: float, prev_1h: float, volume: float) -> MarketSnapshot:
    return MarketSnapshot(
        market_id=market_id,
        question=f"Will {market_id} happen?",
        category="Politics",
        current_price=current,
        previous_price_1h=prev_1h,
        previous_price_24h=current,
        volume_24h=volume,
        volume_average=volume,
        liquidity=100.0,
        observed_at=NOW,
    )


def _report(market_id: str = "hot") -> Report:
    return Report(
        market_id=market_id,
        headline="Odds_jump *fast*",
        summary="Traders moved.",
        analysis="Details.",
        key_takeaways="• One\n• Two",
        reasons=["Price spike of +40.0% (90% confidence)"],
        confidence=0.9,
        price_change=0.4,
        volume_change=2.0,
        event_time=NOW,
        created_at=NOW,
    )


def _seeded_storage(tmp_path) -> Storage:
    storage = Storage(tmp_path / "read.db")
    storage.upsert_snapshot(_snapshot("hot", current=0.65, prev_1h=0.50, volume=20000.0))
    storage.upsert_snapshot(_snapshot("calm", current=0.50, prev_1h=0.50, volume=10000.0))
    storage.append_history(HistoryPoint("hot", 0.50, 100.0, NOW - timedelta(hours=1)))
    storage.append_history(HistoryPoint("hot", 0.65, 200.0, NOW))
    storage.insert_report(_report())
    return storage


def test_market_overview_flags_anomalies(tmp_path) -> None:
    overview = market_overview(_seeded_storage(tmp_path))

    by_id = {entry["market_id"]: entry for entry in overview}
    assert by_id["hot"]["has_anomaly"] is True
    assert by_id["hot"]["anomalies"][0]["kind"] == "price_spike"
    assert by_id["calm"]["has_anomaly"] is False
    assert by_id["calm"]["anomalies"] == []
    assert by_id["hot"]["observed_at"].startswith("2026-03-01T12:00:00")

    rendered = format_market_overview(overview)
    assert "2 markets, 1 with anomalies" in rendered


def test_market_anomalies_for_unknown_market(tmp_path) -> None:
    storage = _seeded_storage(tmp_path)

    assert market_anomalies(storage, "missing") == []
    assert [a["kind"] for a in market_anomalies(storage, "hot")] == ["price_spike"]


def test_recent_reports_and_history(tmp_path) -> None:
    storage = _seeded_storage(tmp_path)

    reports = recent_reports(storage, limit=5)
    assert len(reports) == 1
    assert reports[0]["reasons"] == ["Price spike of +40.0% (90% confidence)"]
    assert reports[0]["event_time"].startswith("2026-03-01T12:00:00")

    history = market_history(storage, "hot", hours=2, now=NOW)
    assert [point["price"] for point in history] == [0.5, 0.65]
    assert market_history(storage, "hot", hours=2, now=NOW + timedelta(hours=5)) == []

    assert "History for market hot (2 points)" in format_history("hot", history)
    assert "Odds_jump" in format_reports(storage.list_reports())


def test_empty_renderings() -> None:
    assert format_reports([]) == "No reports found."
    assert format_market_overview([]) == "No markets stored yet."
    assert format_history("m1", []) == "No history for market m1."


def test_telegram_message_escapes_markdown() -> None:
    message = format_report_message(_report(), question="Will hot happen?")

    assert message.startswith("📰 *Odds\\_jump \\*fast\\**")
    assert "Price: +40.0%" in message
    assert "Confidence: 90%" in message
    assert "• Price spike of +40.0% (90% confidence)" in message
