"""
Anomaly detector for market snapshots.

Applies a fixed set of threshold rules to a single snapshot. Detection is
pure and deterministic: the same snapshot always yields the same anomalies,
in the order price_spike, volume_spike, volatility, new_trend.
"""

import logging

from newsbot.models import Anomaly, AnomalyKind, MarketSnapshot, Severity
from newsbot.utils import format_currency, format_percentage

# Configure module logger
logger = logging.getLogger(__name__)

# Markets trading less than this over 24h are ignored entirely
MIN_VOLUME_24H = 5000.0

# Relative 1h move that counts as a price spike
PRICE_SPIKE_THRESHOLD = 0.25

# 24h volume as a multiple of the rolling average that counts as a volume spike
VOLUME_SPIKE_MULTIPLIER = 10.0

# Absolute 1h move (in probability points) that counts as volatility
VOLATILITY_THRESHOLD = 0.20

# Volatility requires the 24h move to stay below this multiple of the 1h move
VOLATILITY_REVERSAL_RATIO = 1.5

# 24h volume above which a market with no day-old history is a new trend
NEW_TREND_MIN_VOLUME = 20000.0

MAX_CONFIDENCE = 0.95
VOLATILITY_CONFIDENCE = 0.75
NEW_TREND_CONFIDENCE = 0.70


def detect(snapshot: MarketSnapshot) -> list[Anomaly]:
    """
    Detect anomalies on a market snapshot.

    Args:
        snapshot: Enriched market snapshot

    Returns:
        List of anomalies, possibly empty, each rule contributing at most one
    """
    if snapshot.volume_24h < MIN_VOLUME_24H:
        return []

    current = snapshot.current_price
    prev_1h = snapshot.previous_price_1h
    prev_24h = snapshot.previous_price_24h

    price_change = _relative_change(current, prev_1h)
    volume_change = _volume_change(snapshot)

    anomalies: list[Anomaly] = []

    # Price spike: large relative move within the last hour
    if prev_1h is not None and prev_1h > 0:
        delta = abs(price_change)
        if delta >= PRICE_SPIKE_THRESHOLD:
            anomalies.append(Anomaly(
                market_id=snapshot.market_id,
                kind=AnomalyKind.PRICE_SPIKE,
                severity=Severity.HIGH,
                price_change=price_change,
                volume_change=volume_change,
                confidence=min(MAX_CONFIDENCE, 0.7 + delta * 0.5),
                description=(
                    f"Price moved {format_percentage(price_change, signed=True)} in the last hour "
                    f"({prev_1h:.2f} -> {current:.2f})"
                ),
            ))

    # Volume spike: 24h volume far above the rolling average
    if snapshot.volume_average > 0:
        ratio = snapshot.volume_24h / snapshot.volume_average
        if ratio >= VOLUME_SPIKE_MULTIPLIER:
            anomalies.append(Anomaly(
                market_id=snapshot.market_id,
                kind=AnomalyKind.VOLUME_SPIKE,
                severity=Severity.HIGH,
                price_change=price_change,
                volume_change=volume_change,
                confidence=min(MAX_CONFIDENCE, 0.7 + (ratio - VOLUME_SPIKE_MULTIPLIER) * 0.02),
                description=(
                    f"Volume is {ratio:.1f}x its recent average "
                    f"({format_currency(snapshot.volume_24h)} vs {format_currency(snapshot.volume_average)})"
                ),
            ))

    # Volatility: sharp 1h swing that the 24h move does not explain
    if prev_1h is not None and prev_24h is not None:
        move_1h = abs(current - prev_1h)
        move_24h = abs(current - prev_24h)
        if move_1h >= VOLATILITY_THRESHOLD and move_24h < VOLATILITY_REVERSAL_RATIO * move_1h:
            anomalies.append(Anomaly(
                market_id=snapshot.market_id,
                kind=AnomalyKind.VOLATILITY,
                severity=Severity.HIGH,
                price_change=price_change,
                volume_change=volume_change,
                confidence=VOLATILITY_CONFIDENCE,
                description=(
                    f"Price swung {move_1h * 100:.1f} points in an hour "
                    f"against a {move_24h * 100:.1f} point move over the day"
                ),
            ))

    # New trend: heavy trading on a market with no day-old reference
    if prev_24h is None and snapshot.volume_24h > NEW_TREND_MIN_VOLUME:
        anomalies.append(Anomaly(
            market_id=snapshot.market_id,
            kind=AnomalyKind.NEW_TREND,
            severity=Severity.HIGH,
            price_change=price_change,
            volume_change=volume_change,
            confidence=NEW_TREND_CONFIDENCE,
            description=(
                f"New activity: {format_currency(snapshot.volume_24h)} traded "
                f"with no price history from a day ago"
            ),
        ))

    if anomalies:
        kinds = ", ".join(anomaly.kind for anomaly in anomalies)
        logger.debug(f"Market {snapshot.market_id}: detected {kinds}")

    return anomalies


def primary_anomaly(anomalies: list[Anomaly]) -> Anomaly:
    """
    The anomaly a report leads with: the first high-severity one, else the first.

    Raises:
        ValueError: If the list is empty
    """
    if not anomalies:
        raise ValueError("primary_anomaly() requires at least one anomaly")

    for anomaly in anomalies:
        if anomaly.severity == Severity.HIGH:
            return anomaly
    return anomalies[0]


def _relative_change(current: float, reference) -> float:
    if reference is None or reference <= 0:
        return 0.0
    return (current - reference) / reference


def _volume_change(snapshot: MarketSnapshot) -> float:
    if snapshot.volume_average <= 0:
        return 0.0
    return (snapshot.volume_24h - snapshot.volume_average) / snapshot.volume_average
