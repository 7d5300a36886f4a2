"""
Market scanner for fetching current markets from Polymarket.

This module handles the retrieval and normalization of market data from the
Polymarket Gamma API. It performs no business logic - only data fetching,
relevance filtering and transformation of the heterogeneous upstream payloads
into FeedMarket objects.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

import requests
from requests.exceptions import RequestException, Timeout, ConnectionError

from newsbot.categories import map_category
from newsbot.config import Config
from newsbot.models import FeedMarket
from newsbot.utils import clamp, parse_datetime, parse_json_list, retry_with_backoff, safe_float, utc_now

# Configure module logger
logger = logging.getLogger(__name__)

# Markets that ended longer ago than this are no longer news
MAX_DAYS_SINCE_END = 7

# Markets without an end date are only considered if created recently
MAX_DAYS_SINCE_CREATION = 90

REQUEST_HEADERS = {
    "Accept": "application/json",
    "User-Agent": "PolymarketNewsMonitor/1.0",
}


def _endpoints(fetch_limit: int) -> list[tuple[str, dict]]:
    """Endpoints tried in order until one yields markets."""
    return [
        ("/events", {"active": "true", "closed": "false", "limit": fetch_limit}),
        ("/markets", {"active": "true", "closed": "false", "limit": fetch_limit}),
        ("/markets", {"status": "open", "limit": fetch_limit}),
        ("/markets", {"limit": fetch_limit}),
    ]


def fetch_markets(
    limit: Optional[int] = None,
    session: Optional[requests.Session] = None,
    now: Optional[datetime] = None
) -> list[FeedMarket]:
    """
    Fetch current markets from the Polymarket Gamma API.

    Tries each known endpoint in turn; the first one that yields markets wins.
    Raw records are normalized, filtered to currently relevant markets, sorted
    by recent activity and truncated to ``limit``.

    Args:
        limit: Maximum number of markets to return. If None, uses Config.MAX_MARKETS_TO_SCAN.
        session: Optional requests session (a short-lived one is opened if omitted)
        now: Reference time for relevance filtering (defaults to current UTC time)

    Returns:
        List of FeedMarket objects. Returns an empty list when every endpoint
        fails or returns nothing.

    Raises:
        No exceptions are raised - all errors are logged and handled gracefully.
    """
    if limit is None:
        limit = Config.MAX_MARKETS_TO_SCAN

    now = now or utc_now()

    if session is not None:
        return _fetch_from_endpoints(session, limit, now)

    with requests.Session() as owned:
        return _fetch_from_endpoints(owned, limit, now)


def _fetch_from_endpoints(session: requests.Session, limit: int, now: datetime) -> list[FeedMarket]:
    logger.info(f"Fetching up to {limit} current markets from Polymarket")

    for path, params in _endpoints(limit * 3):
        url = f"{Config.GAMMA_API_URL}{path}"

        try:
            logger.debug(f"Requesting markets from {url} with params: {params}")
            payload = _get_json(session, url, params)

        except Timeout:
            logger.warning(f"Request to {url} timed out after {Config.FEED_TIMEOUT}s")
            continue

        except ConnectionError as e:
            logger.warning(f"Connection error while fetching {url}: {e}")
            continue

        except RequestException as e:
            logger.warning(f"Request to {url} failed: {e}")
            if getattr(e, "response", None) is not None:
                logger.debug(f"Response status: {e.response.status_code}")
                logger.debug(f"Response body: {e.response.text[:500]}")
            continue

        except ValueError as e:
            logger.warning(f"Failed to parse JSON response from {url}: {e}")
            continue

        raw_markets = extract_markets(payload, from_events=(path == "/events"))
        if not raw_markets:
            logger.debug(f"No markets returned by {url}")
            continue

        markets = _normalize_markets(raw_markets, session)
        current = [market for market in markets if is_current_market(market, now)]

        filtered_out = len(markets) - len(current)
        if filtered_out:
            logger.debug(f"Filtered out {filtered_out} stale or inactive markets")

        current.sort(
            key=lambda m: (m.volume_24h, m.liquidity, m.total_volume),
            reverse=True
        )

        result = current[:limit]
        logger.info(
            f"Fetched {len(raw_markets)} records from {path}, "
            f"{len(current)} current, returning {len(result)}"
        )
        return result

    logger.warning("All Polymarket feed endpoints failed or returned no markets")
    return []


@retry_with_backoff(max_retries=1, initial_delay=1.0, exceptions=(Timeout, ConnectionError))
def _get_json(session: requests.Session, url: str, params: dict) -> Any:
    response = session.get(
        url,
        params=params,
        timeout=Config.FEED_TIMEOUT,
        headers=REQUEST_HEADERS
    )
    response.raise_for_status()
    return response.json()


def extract_markets(payload: Any, from_events: bool = False) -> list[dict]:
    """
    Pull market dictionaries out of an upstream payload.

    Handles bare arrays, ``{"data"|"markets"|"results": [...]}`` wrappers and
    event objects carrying a nested ``markets`` array.

    Args:
        payload: Decoded JSON response body
        from_events: Whether the payload came from the /events endpoint

    Returns:
        List of raw market dictionaries
    """
    items: list = []

    if isinstance(payload, list):
        items = payload
    elif isinstance(payload, dict):
        for key in ("data", "markets", "results"):
            value = payload.get(key)
            if isinstance(value, list):
                items = value
                break

    markets: list[dict] = []
    for item in items:
        if not isinstance(item, dict):
            continue

        nested = item.get("markets")
        if isinstance(nested, list):
            markets.extend(m for m in nested if isinstance(m, dict))
            continue

        # Events occasionally carry the market fields directly
        if not from_events or (item.get("id") and item.get("question")):
            markets.append(item)

    return markets


def _normalize_markets(api_data: list[dict], session: Optional[requests.Session] = None) -> list[FeedMarket]:
    """
    Normalize raw API records into FeedMarket objects.

    Invalid entries, and entries whose price cannot be resolved, are skipped
    and logged.

    Args:
        api_data: List of market dictionaries from the Gamma API.
        session: Session used for order book price lookups, if any.

    Returns:
        List of normalized FeedMarket objects.
    """
    markets: list[FeedMarket] = []
    seen: set[str] = set()

    for idx, market_data in enumerate(api_data):
        try:
            market = normalize_market(market_data, session)
        except (TypeError, ValueError, AttributeError, OverflowError) as e:
            logger.warning(f"Failed to parse market at index {idx}: {e}")
            logger.debug(f"Market data: {market_data}", exc_info=True)
            continue

        if market and market.id not in seen:
            seen.add(market.id)
            markets.append(market)

    return markets


def normalize_market(data: dict, session: Optional[requests.Session] = None) -> Optional[FeedMarket]:
    """
    Parse a single raw market dictionary into a FeedMarket.

    When the record carries no usable price and a session is given, the
    CLOB order book is consulted.

    Args:
        data: Dictionary containing market data from the API.
        session: Optional session for the order book lookup.

    Returns:
        FeedMarket, or None if the record lacks an id, a question or a price.
    """
    market_id = data.get("id")
    question = data.get("question") or data.get("title")
    if not market_id or not question:
        logger.debug("Market missing 'id' or 'question' field, skipping")
        return None

    price = extract_price(data)
    if price is None and session is not None:
        price = fetch_book_price(session, data)
    if price is None:
        logger.debug(f"No price found for market {market_id}, skipping")
        return None

    tags = _extract_tags(data)

    volume_24h = _first_positive(data, "volume24hr", "volume24h", "volumeNum", "volume")
    liquidity = _first_positive(data, "liquidityNum", "liquidity")
    total_volume = _first_positive(data, "volumeNum", "volume")

    return FeedMarket(
        id=str(market_id),
        question=str(question),
        category=map_category(tags, str(question)),
        price=price,
        volume_24h=volume_24h,
        liquidity=liquidity,
        total_volume=total_volume,
        tags=tags,
        created_at=parse_datetime(data.get("createdAt")),
        end_date=parse_datetime(data.get("endDate") or data.get("end_date")),
        active=_is_true(data.get("active")),
        archived=_is_true(data.get("archived")),
    )


def extract_price(data: dict) -> Optional[float]:
    """
    Extract the YES probability from a raw market record.

    Tries, in order: the first positive entry of ``outcomePrices`` (values
    above 1 are treated as cents), ``bestBid``, ``bestAsk`` and
    ``lastTradePrice``. An empty book (bid 0, ask 1) has no price.

    Args:
        data: Market data dictionary.

    Returns:
        Probability between 0.0 and 1.0, or None if the record has no price.
    """
    price: Optional[float] = None

    prices = [safe_float(p, 0.0) for p in parse_json_list(data.get("outcomePrices"))]
    if prices and prices[0] > 0:
        price = prices[0]

    best_bid = data.get("bestBid")
    best_ask = data.get("bestAsk")
    last_trade = data.get("lastTradePrice")

    if price is None:
        if best_bid is not None and safe_float(best_bid) > 0:
            price = safe_float(best_bid)
        elif best_ask is not None and safe_float(best_ask, 1.0) < 1:
            price = safe_float(best_ask)
        elif last_trade is not None and safe_float(last_trade) > 0:
            price = safe_float(last_trade)

    return _as_probability(price)


def fetch_book_price(session: requests.Session, data: dict) -> Optional[float]:
    """
    Look up a market's YES price on the CLOB order book.

    The first ``clobTokenIds`` entry is queried when present, otherwise the
    condition id (or market id). The best bid wins, then the best ask.

    Args:
        session: Requests session
        data: Raw market record

    Returns:
        Probability between 0.0 and 1.0, or None if the book has no price
    """
    token_ids = parse_json_list(data.get("clobTokenIds"))
    if token_ids:
        params = {"token_id": str(token_ids[0])}
    else:
        params = {"market": str(data.get("conditionId") or data.get("id"))}

    url = f"{Config.CLOB_API_URL}/book"

    try:
        book = _get_json(session, url, params)

    except Timeout:
        logger.warning(f"Order book request for {params} timed out after {Config.FEED_TIMEOUT}s")
        return None

    except ConnectionError as e:
        logger.warning(f"Connection error fetching order book for {params}: {e}")
        return None

    except RequestException as e:
        logger.debug(f"Order book request for {params} failed: {e}")
        return None

    except ValueError as e:
        logger.debug(f"Failed to parse order book for {params}: {e}")
        return None

    return extract_book_price(book)


def extract_book_price(book: Any) -> Optional[float]:
    """Best bid, else best ask, else a bare ``price`` field of a CLOB book payload."""
    if isinstance(book, list):
        for item in book:
            if isinstance(item, dict) and safe_float(item.get("price")) > 0:
                return _as_probability(safe_float(item.get("price")))
        return None

    if not isinstance(book, dict):
        return None

    bids = _level_prices(book.get("bids"))
    asks = _level_prices(book.get("asks"))

    if bids:
        return _as_probability(max(bids))
    if asks:
        return _as_probability(min(asks))
    return _as_probability(safe_float(book.get("price")) or None)


def _level_prices(levels: Any) -> list[float]:
    if not isinstance(levels, list):
        return []
    prices = [safe_float(level.get("price")) for level in levels if isinstance(level, dict)]
    return [price for price in prices if price > 0]


def _as_probability(price: Optional[float]) -> Optional[float]:
    if price is None or price <= 0:
        return None
    if price > 1:
        price = price / 100.0
    return clamp(price, 0.0, 1.0)


def is_current_market(market: FeedMarket, now: datetime) -> bool:
    """
    Decide whether a market is currently relevant for news monitoring.

    A market is current when it is active, not archived, and either ends in
    the future (or ended within the last week) or, lacking an end date, was
    created within the last 90 days.

    Args:
        market: Normalized market
        now: Reference time (UTC)

    Returns:
        True if the market should be monitored
    """
    if not market.active or market.archived:
        return False

    if market.end_date:
        return now - market.end_date <= timedelta(days=MAX_DAYS_SINCE_END)

    if market.created_at:
        return now - market.created_at <= timedelta(days=MAX_DAYS_SINCE_CREATION)

    return True


def _extract_tags(data: dict) -> list[str]:
    raw_tags = data.get("tags")
    tags: list[str] = []

    for tag in parse_json_list(raw_tags):
        if isinstance(tag, dict):
            label = tag.get("label") or tag.get("slug") or tag.get("name")
            if label:
                tags.append(str(label))
        elif tag:
            tags.append(str(tag))

    if not tags and data.get("category"):
        tags.append(str(data["category"]))

    return tags


def _first_positive(data: dict, *keys: str) -> float:
    for key in keys:
        value = safe_float(data.get(key), 0.0)
        if value > 0:
            return value
    return 0.0


def _is_true(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True
