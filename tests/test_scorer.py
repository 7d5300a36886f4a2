from __future__ import annotations

from datetime import datetime, timezone

import pytest

from newsbot.detector import detect
from newsbot.models import Anomaly, AnomalyKind, MarketSnapshot, NoiseScore, Severity
from newsbot.scorer import filter_noisiest, score_market

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _snapshot(market_id: str = "m1", volume: float = 10000.0, **overrides) -> MarketSnapshot:
    fields = dict(
        market_id=market_id,
        question=f"Question {market_id}?",
        category="Other",
        current_price=0.5,
        previous_price_1h=None,
        previous_price_24h=0.5,
        volume_24h=volume,
        volume_average=volume,
        liquidity=1000.0,
        observed_at=NOW,
    )
    fields.update(overrides)
    return MarketSnapshot(**fields)


def _anomaly(kind: str, price_change: float = 0.0, volume_change: float = 0.0, confidence: float = 0.7) -> Anomaly:
    return Anomaly("m1", kind, Severity.HIGH, price_change, volume_change, confidence, kind)


def _noise(market_id: str, score: float, with_anomaly: bool = True) -> NoiseScore:
    anomalies = [_anomaly(AnomalyKind.NEW_TREND)] if with_anomaly else []
    return NoiseScore(snapshot=_snapshot(market_id), score=score, anomalies=anomalies, reasons=[])


def test_combined_spike_with_high_volume() -> None:
    snap = _snapshot(
        current_price=0.80,
        previous_price_1h=0.60,
        previous_price_24h=0.30,
        volume_24h=60000.0,
        volume_average=5000.0,
    )
    anomalies = detect(snap)

    noise = score_market(snap, anomalies)

    price_part = (1 / 3) * 100 + (0.7 + (1 / 3) * 0.5) * 10
    volume_part = 50.0 + 0.74 * 10
    assert noise.score == pytest.approx((price_part + volume_part) * 1.5 + 10)
    assert len(noise.reasons) == 4
    assert "Combined signal" in noise.reasons[2]
    assert "High absolute volume" in noise.reasons[3]


def test_volume_bonus_is_capped_at_fifty() -> None:
    snap = _snapshot(volume=40000.0)

    small = score_market(snap, [_anomaly(AnomalyKind.VOLUME_SPIKE, volume_change=9.0, confidence=0.7)])
    large = score_market(snap, [_anomaly(AnomalyKind.VOLUME_SPIKE, volume_change=40.0, confidence=0.7)])

    assert small.score == pytest.approx(45.0 + 7.0)
    assert large.score == pytest.approx(50.0 + 7.0)


def test_fixed_bonuses_for_volatility_and_new_trend() -> None:
    snap = _snapshot(volume=30000.0)

    volatility = score_market(snap, [_anomaly(AnomalyKind.VOLATILITY, confidence=0.75)])
    trend = score_market(snap, [_anomaly(AnomalyKind.NEW_TREND, confidence=0.70)])

    assert volatility.score == pytest.approx(27.5)
    assert trend.score == pytest.approx(22.0)


def test_no_combined_multiplier_for_single_spike() -> None:
    snap = _snapshot(volume=30000.0)
    noise = score_market(snap, [_anomaly(AnomalyKind.PRICE_SPIKE, price_change=-0.4, confidence=0.9)])

    assert noise.score == pytest.approx(40.0 + 9.0)
    assert len(noise.reasons) == 1


def test_no_anomalies_scores_zero_below_volume_bonus() -> None:
    noise = score_market(_snapshot(volume=1000.0), [])
    assert noise.score == 0.0
    assert noise.reasons == []


def test_filter_drops_low_and_empty_and_truncates() -> None:
    scores = [
        _noise("a", 29.9),
        _noise("b", 80.0),
        _noise("c", 95.0, with_anomaly=False),
        _noise("d", 30.0),
        _noise("e", 60.0),
        _noise("f", 45.0),
    ]

    selected = filter_noisiest(scores, max_reports=3, min_score=30.0)

    assert [s.market_id for s in selected] == ["b", "e", "f"]


def test_filter_keeps_batch_order_on_ties() -> None:
    scores = [_noise("x", 50.0), _noise("y", 70.0), _noise("z", 50.0)]

    selected = filter_noisiest(scores, max_reports=3)

    assert [s.market_id for s in selected] == ["y", "x", "z"]


def test_filter_with_zero_max_reports() -> None:
    assert filter_noisiest([_noise("a", 90.0)], max_reports=0) == []
