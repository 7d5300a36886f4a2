from __future__ import annotations

from datetime import datetime, timezone

import pytest
import requests

from newsbot.scanner import (
    extract_book_price,
    extract_markets,
    extract_price,
    fetch_markets,
    is_current_market,
    normalize_market,
)
from newsbot.utils import parse_datetime

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class _FakeResponse:
    def __init__(self, payload, status: int = 200):
        self._payload = payload
        self.status_code = status
        self.text = str(payload)

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)

    def json(self):
        return self._payload


class _FakeSession:
    def __init__(self, responses: dict):
        self.responses = responses
        self.calls: list[tuple[str, dict]] = []

    def get(self, url, params=None, timeout=None, headers=None):
        self.calls.append((url, params))
        path = url.rsplit("/", 1)[-1]
        key = (path, tuple(sorted((params or {}).items())))
        for (candidate_path, must_have), response in self.responses.items():
            if candidate_path == path and all(item in key[1] for item in must_have):
                if isinstance(response, Exception):
                    raise response
                return response
        return _FakeResponse([])


def _raw(market_id: str, volume: float, **extra) -> dict:
    data = {
        "id": market_id,
        "question": f"Will the Lakers win game {market_id}?",
        "outcomePrices": '["0.65", "0.35"]',
        "volume24hr": volume,
        "liquidityNum": "1500",
        "active": True,
        "archived": False,
        "endDate": "2026-06-01T00:00:00Z",
    }
    data.update(extra)
    return data


def test_extract_markets_handles_wrappers_and_events() -> None:
    assert extract_markets([{"id": "1"}]) == [{"id": "1"}]
    assert extract_markets({"data": [{"id": "2"}]}) == [{"id": "2"}]
    assert extract_markets({"results": [{"id": "3"}]}) == [{"id": "3"}]

    events = [{"title": "Event", "markets": [{"id": "4"}, {"id": "5"}]}, {"title": "Empty"}]
    assert extract_markets(events, from_events=True) == [{"id": "4"}, {"id": "5"}]

    assert extract_markets("unexpected") == []


def test_extract_price_fallback_chain() -> None:
    assert extract_price({"outcomePrices": '["0.72", "0.28"]'}) == pytest.approx(0.72)
    assert extract_price({"outcomePrices": ["65", "35"]}) == pytest.approx(0.65)
    assert extract_price({"outcomePrices": '["0", "1"]', "bestBid": "0.4"}) == pytest.approx(0.4)
    assert extract_price({"bestBid": 0, "bestAsk": 0.3}) == pytest.approx(0.3)
    assert extract_price({"lastTradePrice": "0.55"}) == pytest.approx(0.55)
    assert extract_price({}) is None
    assert extract_price({"outcomePrices": "[]", "bestBid": "0", "bestAsk": "1"}) is None


def test_normalize_market_parses_strings_and_category() -> None:
    market = normalize_market(_raw("9", "25000.5", tags=[{"label": "NBA"}]))

    assert market is not None
    assert market.id == "9"
    assert market.price == pytest.approx(0.65)
    assert market.volume_24h == pytest.approx(25000.5)
    assert market.liquidity == pytest.approx(1500.0)
    assert market.category == "Sports"
    assert market.end_date == datetime(2026, 6, 1, tzinfo=timezone.utc)

    assert normalize_market({"question": "no id"}) is None


def test_is_current_market_rules() -> None:
    active = normalize_market(_raw("1", 100))
    assert is_current_market(active, NOW)

    recently_ended = normalize_market(_raw("2", 100, endDate="2026-02-25T00:00:00Z"))
    assert is_current_market(recently_ended, NOW)

    long_ended = normalize_market(_raw("3", 100, endDate="2026-02-01T00:00:00Z"))
    assert not is_current_market(long_ended, NOW)

    archived = normalize_market(_raw("4", 100, archived=True))
    assert not is_current_market(archived, NOW)

    inactive = normalize_market(_raw("5", 100, active=False))
    assert not is_current_market(inactive, NOW)

    old_no_end = normalize_market(_raw("6", 100, endDate=None, createdAt="2025-10-01T00:00:00Z"))
    assert not is_current_market(old_no_end, NOW)

    new_no_end = normalize_market(_raw("7", 100, endDate=None, createdAt="2026-02-01T00:00:00Z"))
    assert is_current_market(new_no_end, NOW)


def test_fetch_markets_sorts_filters_and_truncates() -> None:
    events = [
        {"title": "E1", "markets": [_raw("a", 500), _raw("b", 9000), _raw("c", 9000, archived=True)]},
        {"title": "E2", "markets": [_raw("d", 3000), _raw("a", 500)]},
    ]
    session = _FakeSession({("events", ()): _FakeResponse(events)})

    markets = fetch_markets(limit=2, session=session, now=NOW)

    assert [m.id for m in markets] == ["b", "d"]
    assert session.calls[0][1]["limit"] == 6


def test_fetch_markets_falls_back_to_next_endpoint() -> None:
    session = _FakeSession({
        ("events", ()): _FakeResponse({"error": "boom"}, status=500),
        ("markets", (("active", "true"),)): _FakeResponse({"data": [_raw("x", 100)]}),
    })

    markets = fetch_markets(limit=5, session=session, now=NOW)

    assert [m.id for m in markets] == ["x"]
    assert [url.rsplit("/", 1)[-1] for url, _ in session.calls] == ["events", "markets"]


def test_fetch_markets_returns_empty_when_all_endpoints_fail(monkeypatch) -> None:
    monkeypatch.setattr("newsbot.utils.time.sleep", lambda _: None)
    session = _FakeSession({
        ("events", ()): requests.ConnectionError("down"),
        ("markets", ()): requests.ConnectionError("down"),
    })

    assert fetch_markets(limit=5, session=session, now=NOW) == []


class _ClosingSession(_FakeSession):
    def __init__(self, responses: dict):
        super().__init__(responses)
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.closed = True


def test_out_of_range_timestamp_does_not_drop_batch() -> None:
    good = _raw("g", 9000)
    bad = _raw("bad", 100, endDate=None, createdAt=float("inf"))
    session = _FakeSession({("events", ()): _FakeResponse([{"title": "E", "markets": [good, bad]}])})

    markets = fetch_markets(limit=5, session=session, now=NOW)

    assert [m.id for m in markets] == ["g", "bad"]
    assert markets[1].created_at is None


def test_parse_datetime_rejects_unrepresentable_epochs() -> None:
    assert parse_datetime(float("inf")) is None
    assert parse_datetime(float("nan")) is None
    assert parse_datetime(1_700_000_000_000) == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)


def test_unpriced_market_uses_order_book() -> None:
    raw = _raw("ob", 9000, outcomePrices=None, clobTokenIds='["tok-1", "tok-2"]')
    book = {"bids": [{"price": "0.41", "size": "10"}, {"price": "0.43", "size": "5"}], "asks": [{"price": "0.47"}]}
    session = _FakeSession({("book", (("token_id", "tok-1"),)): _FakeResponse(book)})

    market = normalize_market(raw, session)

    assert market is not None
    assert market.price == pytest.approx(0.43)
    assert session.calls[0][0].endswith("/book")


def test_market_without_any_price_is_skipped() -> None:
    raw = _raw("none", 9000, outcomePrices=None)
    session = _FakeSession({("book", ()): _FakeResponse({"bids": [], "asks": []})})

    assert normalize_market(raw) is None
    assert normalize_market(raw, session) is None

    events = [{"title": "E", "markets": [raw, _raw("priced", 100)]}]
    feed = _FakeSession({("events", ()): _FakeResponse(events)})
    assert [m.id for m in fetch_markets(limit=5, session=feed, now=NOW)] == ["priced"]


def test_extract_book_price_formats() -> None:
    assert extract_book_price({"bids": [], "asks": [{"price": "0.62"}, {"price": "0.60"}]}) == pytest.approx(0.60)
    assert extract_book_price({"price": "55"}) == pytest.approx(0.55)
    assert extract_book_price([{"outcome": "Yes", "price": "0.3"}]) == pytest.approx(0.3)
    assert extract_book_price({}) is None
    assert extract_book_price("garbage") is None


def test_fetch_markets_closes_its_own_session(monkeypatch) -> None:
    owned = _ClosingSession({("events", ()): _FakeResponse([_raw("x", 100)])})
    monkeypatch.setattr("newsbot.scanner.requests.Session", lambda: owned)

    markets = fetch_markets(limit=5, now=NOW)

    assert [m.id for m in markets] == ["x"]
    assert owned.closed is True
