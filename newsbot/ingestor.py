"""
Market ingestor for turning feed markets into persisted snapshots.

For each market returned by the scanner, the ingestor looks up recent price
history, resolves the one-hour and one-day reference prices, computes a
rolling volume average, and persists the resulting snapshot together with a
new history point.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Iterable, Optional

from newsbot.config import Config
from newsbot.models import FeedMarket, HistoryPoint, MarketSnapshot
from newsbot.storage import Storage
from newsbot.utils import utc_now

# Configure module logger
logger = logging.getLogger(__name__)

# How far back history is read for each market
HISTORY_LOOKBACK = timedelta(hours=25)

# Reference windows, as (older bound, newer bound] offsets from now
ONE_HOUR_WINDOW = (timedelta(minutes=90), timedelta(minutes=30))
ONE_DAY_WINDOW = (timedelta(hours=25), timedelta(hours=24))


def resolve_reference_prices(
    history: Iterable[HistoryPoint],
    now: datetime
) -> tuple[Optional[float], Optional[float]]:
    """
    Resolve the one-hour and one-day reference prices from history.

    The one-hour price is the most recent point in (now-90m, now-30m]; the
    one-day price is the most recent point in (now-25h, now-24h].

    Args:
        history: History points of one market, in any order
        now: Reference time

    Returns:
        Tuple (previous_price_1h, previous_price_24h); either may be None
    """
    return (
        _latest_in_window(history, now, ONE_HOUR_WINDOW),
        _latest_in_window(history, now, ONE_DAY_WINDOW),
    )


def _latest_in_window(
    history: Iterable[HistoryPoint],
    now: datetime,
    window: tuple[timedelta, timedelta]
) -> Optional[float]:
    oldest, newest = now - window[0], now - window[1]
    latest: Optional[HistoryPoint] = None

    for point in history:
        if oldest < point.timestamp <= newest:
            if latest is None or point.timestamp >= latest.timestamp:
                latest = point

    return latest.price if latest else None


def rolling_volume_average(history: Iterable[HistoryPoint], current_volume: float) -> float:
    """Mean of the positive volumes in history, or the current volume if there are none."""
    volumes = [point.volume for point in history if point.volume > 0]
    if not volumes:
        return current_volume
    return sum(volumes) / len(volumes)


def enrich_market(market: FeedMarket, history: list[HistoryPoint], now: datetime) -> MarketSnapshot:
    """
    Build a snapshot for a feed market from its recent history.

    Args:
        market: Normalized feed market
        history: The market's history points from the lookback window
        now: Observation time

    Returns:
        MarketSnapshot with reference prices and volume average resolved
    """
    previous_1h, previous_24h = resolve_reference_prices(history, now)

    return MarketSnapshot(
        market_id=market.id,
        question=market.question,
        category=market.category,
        current_price=market.price,
        previous_price_1h=previous_1h,
        previous_price_24h=previous_24h,
        volume_24h=market.volume_24h,
        volume_average=rolling_volume_average(history, market.volume_24h),
        liquidity=market.liquidity,
        observed_at=now,
    )


class MarketIngestor:
    """
    Ingests a batch of feed markets into the snapshot store.

    Markets are processed on a small thread pool. A failure for one market is
    logged and that market is left out of the batch; the rest continue.
    """

    def __init__(self, storage: Storage, max_workers: Optional[int] = None):
        self.storage = storage
        self.max_workers = max_workers or Config.INGEST_WORKERS

    def ingest(self, markets: list[FeedMarket], now: Optional[datetime] = None) -> list[MarketSnapshot]:
        """
        Enrich and persist a batch of markets.

        Args:
            markets: Feed markets from the scanner
            now: Observation time shared by the whole batch (defaults to current UTC time)

        Returns:
            Snapshots of the successfully ingested markets, in input order
        """
        if not markets:
            return []

        now = now or utc_now()

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            results = list(executor.map(lambda market: self.ingest_one(market, now), markets))

        snapshots = [snapshot for snapshot in results if snapshot is not None]

        failed = len(markets) - len(snapshots)
        if failed:
            logger.warning(f"Ingested {len(snapshots)}/{len(markets)} markets ({failed} failed)")
        else:
            logger.info(f"Ingested {len(snapshots)} markets")

        return snapshots

    def ingest_one(self, market: FeedMarket, now: datetime) -> Optional[MarketSnapshot]:
        """
        Enrich and persist a single market.

        Returns:
            The snapshot, or None if enrichment or persistence failed
        """
        try:
            history = self.storage.query_history(market.id, now - HISTORY_LOOKBACK)
            snapshot = enrich_market(market, history, now)

            point = HistoryPoint(
                market_id=market.id,
                price=snapshot.current_price,
                volume=market.volume_24h,
                timestamp=now,
            )

            if not self.storage.save_observation(snapshot, point):
                logger.warning(f"Could not persist observation for market {market.id}, skipping")
                return None

            return snapshot

        except Exception as e:
            logger.error(f"Error ingesting market {market.id}: {e}", exc_info=True)
            return None
