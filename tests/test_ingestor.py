from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from newsbot.ingestor import (
    MarketIngestor,
    enrich_market,
    resolve_reference_prices,
    rolling_volume_average,
)
from newsbot.models import FeedMarket, HistoryPoint
from newsbot.storage import Storage

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _point(minutes_ago: float, price: float, volume: float = 1000.0, market_id: str = "m1") -> HistoryPoint:
    return HistoryPoint(market_id, price, volume, NOW - timedelta(minutes=minutes_ago))


def _market(market_id: str = "m1", price: float = 0.5, volume: float = 12000.0) -> FeedMarket:
    return FeedMarket(
        id=market_id,
        question=f"Question {market_id}?",
        category="Sports",
        price=price,
        volume_24h=volume,
        liquidity=3000.0,
    )


def test_reference_prices_use_most_recent_point_in_each_window() -> None:
    history = [
        _point(24 * 60 + 50, 0.10),   # inside day window
        _point(24 * 60 + 10, 0.20),   # inside day window, most recent
        _point(23 * 60, 0.25),        # between windows
        _point(85, 0.30),             # inside hour window
        _point(31, 0.35),             # inside hour window, most recent
        _point(10, 0.45),             # too recent
    ]

    prev_1h, prev_24h = resolve_reference_prices(history, NOW)

    assert prev_1h == pytest.approx(0.35)
    assert prev_24h == pytest.approx(0.20)


def test_reference_windows_are_open_at_the_old_end() -> None:
    history = [_point(90, 0.3), _point(25 * 60, 0.1)]
    assert resolve_reference_prices(history, NOW) == (None, None)

    history = [_point(30, 0.3), _point(24 * 60, 0.1)]
    assert resolve_reference_prices(history, NOW) == (pytest.approx(0.3), pytest.approx(0.1))


def test_rolling_volume_average_ignores_non_positive_and_falls_back() -> None:
    history = [_point(10, 0.5, 1000.0), _point(20, 0.5, 0.0), _point(30, 0.5, 3000.0)]

    assert rolling_volume_average(history, 9999.0) == pytest.approx(2000.0)
    assert rolling_volume_average([], 9999.0) == pytest.approx(9999.0)


def test_enrich_market_without_history() -> None:
    snap = enrich_market(_market(price=0.7, volume=5000.0), [], NOW)

    assert snap.previous_price_1h is None
    assert snap.previous_price_24h is None
    assert snap.volume_average == pytest.approx(5000.0)
    assert snap.observed_at == NOW


def test_ingest_persists_and_uses_prior_history(tmp_path) -> None:
    storage = Storage(tmp_path / "ingest.db")
    storage.append_history(_point(60, 0.40, 2000.0))

    ingestor = MarketIngestor(storage, max_workers=2)
    snapshots = ingestor.ingest([_market("m1", price=0.6), _market("m2", price=0.2)], now=NOW)

    assert [s.market_id for s in snapshots] == ["m1", "m2"]
    assert snapshots[0].previous_price_1h == pytest.approx(0.40)
    assert snapshots[0].volume_average == pytest.approx(2000.0)
    assert storage.get_snapshot("m2").current_price == pytest.approx(0.2)
    assert len(storage.query_history("m1", NOW - timedelta(hours=2))) == 2


def test_ingest_isolates_per_market_failures(tmp_path, monkeypatch) -> None:
    storage = Storage(tmp_path / "ingest.db")
    real_save = storage.save_observation

    def _flaky_save(snapshot, point):
        if snapshot.market_id == "bad":
            return False
        return real_save(snapshot, point)

    monkeypatch.setattr(storage, "save_observation", _flaky_save)

    snapshots = MarketIngestor(storage).ingest(
        [_market("a"), _market("bad"), _market("c")], now=NOW
    )

    assert [s.market_id for s in snapshots] == ["a", "c"]
    assert storage.get_snapshot("bad") is None


def test_ingest_isolates_exceptions(tmp_path, monkeypatch) -> None:
    storage = Storage(tmp_path / "ingest.db")
    real_query = storage.query_history

    def _exploding_query(market_id, since):
        if market_id == "boom":
            raise RuntimeError("history unavailable")
        return real_query(market_id, since)

    monkeypatch.setattr(storage, "query_history", _exploding_query)

    snapshots = MarketIngestor(storage).ingest([_market("boom"), _market("ok")], now=NOW)

    assert [s.market_id for s in snapshots] == ["ok"]
