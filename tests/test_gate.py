from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from newsbot.gate import EscalationGate, decide_escalation, report_magnitude
from newsbot.models import Report
from newsbot.storage import Storage

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _report(market_id: str = "m1", price_change: float = 0.2, volume_change: float = 2.0, event_time: datetime = NOW) -> Report:
    return Report(
        market_id=market_id,
        headline="Odds jump",
        summary="summary",
        analysis="analysis",
        key_takeaways="• takeaway",
        reasons=["Price spike"],
        confidence=0.8,
        price_change=price_change,
        volume_change=volume_change,
        event_time=event_time,
        created_at=event_time,
    )


def test_magnitude_uses_absolute_changes() -> None:
    assert report_magnitude(_report(price_change=-0.2, volume_change=-2.0)) == pytest.approx(30.0)


def test_emit_when_no_recent_reports() -> None:
    decision = decide_escalation(10.0, [])

    assert decision.emit is True
    assert decision.previous_max_score is None
    assert decision.threshold is None


def test_suppress_unless_score_exceeds_factor_times_previous_max() -> None:
    # magnitude = 0.2*100 + 2.0*5 = 30, threshold = 45
    reports = [_report(), _report(price_change=0.1, volume_change=1.0)]

    at_threshold = decide_escalation(45.0, reports)
    above = decide_escalation(45.1, reports)

    assert at_threshold.emit is False
    assert at_threshold.previous_max_score == pytest.approx(30.0)
    assert at_threshold.threshold == pytest.approx(45.0)
    assert above.emit is True


def test_gate_only_considers_reports_inside_window(tmp_path) -> None:
    storage = Storage(tmp_path / "gate.db")
    storage.insert_report(_report(event_time=NOW - timedelta(hours=25)))
    gate = EscalationGate(storage, window=timedelta(hours=24), factor=1.5)

    assert gate.check("m1", 31.0, now=NOW).emit is True

    storage.insert_report(_report(event_time=NOW - timedelta(hours=2)))
    decision = gate.check("m1", 31.0, now=NOW)
    assert decision.emit is False
    assert decision.threshold == pytest.approx(45.0)

    # other markets are unaffected
    assert gate.check("m2", 31.0, now=NOW).emit is True


@pytest.mark.parametrize(("score", "emit"), [(20.0, False), (22.5, False), (23.0, True)])
def test_single_prior_report_threshold(score: float, emit: bool) -> None:
    # magnitude = 0.10*100 + 1.0*5 = 15, threshold = 22.5
    decision = decide_escalation(score, [_report(price_change=0.10, volume_change=1.0)], factor=1.5)

    assert decision.threshold == pytest.approx(22.5)
    assert decision.emit is emit


def test_gate_suppresses_when_recent_reports_cannot_be_read(tmp_path, monkeypatch) -> None:
    storage = Storage(tmp_path / "gate.db")
    monkeypatch.setattr(storage, "list_recent_reports", lambda market_id, since: None)
    gate = EscalationGate(storage, window=timedelta(hours=24), factor=1.5)

    decision = gate.check("m1", 500.0, now=NOW)

    assert decision.emit is False
    assert decision.previous_max_score is None


def test_recent_reports_read_failure_returns_none(tmp_path) -> None:
    storage = Storage(tmp_path / "gate.db")
    storage.db_path = tmp_path / "missing-dir" / "gate.db"

    assert storage.list_recent_reports("m1", NOW - timedelta(hours=24)) is None
