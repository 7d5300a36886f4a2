"""
Noise scorer for ranking anomalous markets by newsworthiness.

Each market's anomalies are folded into a single noise score with a
deterministic formula, and the noisiest markets of a cycle are selected as
report candidates.
"""

import logging

from newsbot.models import Anomaly, AnomalyKind, MarketSnapshot, NoiseScore
from newsbot.utils import format_currency, format_percentage

# Configure module logger
logger = logging.getLogger(__name__)

# Scoring constants
PRICE_SPIKE_WEIGHT = 100.0    # points per unit of relative price change
VOLUME_SPIKE_WEIGHT = 5.0     # points per unit of relative volume change
VOLUME_SPIKE_CAP = 50.0
VOLATILITY_BONUS = 20.0
NEW_TREND_BONUS = 15.0
CONFIDENCE_WEIGHT = 10.0
COMBINED_SIGNAL_MULTIPLIER = 1.5
HIGH_VOLUME_THRESHOLD = 50000.0
HIGH_VOLUME_BONUS = 10.0

DEFAULT_MIN_SCORE = 30.0
DEFAULT_MAX_REPORTS = 3


def score_market(snapshot: MarketSnapshot, anomalies: list[Anomaly]) -> NoiseScore:
    """
    Compute the noise score of one market.

    Formula:
    - price_spike: |price_change| * 100
    - volume_spike: min(volume_change * 5, 50)
    - volatility: +20
    - new_trend: +15
    - every anomaly: + confidence * 10
    - price_spike and volume_spike together: total * 1.5
    - 24h volume above $50,000: +10

    Args:
        snapshot: Market snapshot the anomalies were detected on
        anomalies: Anomalies in detection order

    Returns:
        NoiseScore with the total and one reason per contribution
    """
    score = 0.0
    reasons: list[str] = []

    for anomaly in anomalies:
        score += _type_bonus(anomaly) + anomaly.confidence * CONFIDENCE_WEIGHT
        reasons.append(_describe(anomaly))

    kinds = {anomaly.kind for anomaly in anomalies}
    if AnomalyKind.PRICE_SPIKE in kinds and AnomalyKind.VOLUME_SPIKE in kinds:
        score *= COMBINED_SIGNAL_MULTIPLIER
        reasons.append("Combined signal: price and volume spiking together")

    if snapshot.volume_24h > HIGH_VOLUME_THRESHOLD:
        score += HIGH_VOLUME_BONUS
        reasons.append(f"High absolute volume: {format_currency(snapshot.volume_24h)} in 24h")

    return NoiseScore(snapshot=snapshot, score=max(0.0, score), anomalies=list(anomalies), reasons=reasons)


def _type_bonus(anomaly: Anomaly) -> float:
    if anomaly.kind == AnomalyKind.PRICE_SPIKE:
        return abs(anomaly.price_change) * PRICE_SPIKE_WEIGHT
    if anomaly.kind == AnomalyKind.VOLUME_SPIKE:
        return min(anomaly.volume_change * VOLUME_SPIKE_WEIGHT, VOLUME_SPIKE_CAP)
    if anomaly.kind == AnomalyKind.VOLATILITY:
        return VOLATILITY_BONUS
    if anomaly.kind == AnomalyKind.NEW_TREND:
        return NEW_TREND_BONUS
    return 0.0


def _describe(anomaly: Anomaly) -> str:
    confidence = f"{anomaly.confidence:.0%} confidence"

    if anomaly.kind == AnomalyKind.PRICE_SPIKE:
        return f"Price spike of {format_percentage(anomaly.price_change, signed=True)} ({confidence})"
    if anomaly.kind == AnomalyKind.VOLUME_SPIKE:
        return f"Volume spike of {format_percentage(anomaly.volume_change, decimals=0, signed=True)} vs average ({confidence})"
    if anomaly.kind == AnomalyKind.VOLATILITY:
        return f"Unusual volatility ({confidence})"
    if anomaly.kind == AnomalyKind.NEW_TREND:
        return f"Emerging trend on a new market ({confidence})"
    return f"{anomaly.kind} ({confidence})"


def filter_noisiest(
    scores: list[NoiseScore],
    max_reports: int = DEFAULT_MAX_REPORTS,
    min_score: float = DEFAULT_MIN_SCORE
) -> list[NoiseScore]:
    """
    Select the noisiest markets of a cycle.

    Drops scores below ``min_score`` and markets without anomalies, sorts the
    rest by score descending (ties keep their batch order) and keeps the first
    ``max_reports``.

    Args:
        scores: Noise scores in batch order
        max_reports: Maximum number of candidates to return
        min_score: Minimum score for a candidate

    Returns:
        Ranked list of candidates
    """
    eligible = [s for s in scores if s.anomalies and s.score >= min_score]

    # list.sort is stable, so equal scores keep batch order even with reverse=True
    eligible.sort(key=lambda s: s.score, reverse=True)

    selected = eligible[:max(0, max_reports)]

    logger.info(
        f"Selected {len(selected)} of {len(eligible)} eligible markets "
        f"({len(scores)} scored, min score {min_score})"
    )
    for rank, noise in enumerate(selected, 1):
        logger.debug(f"#{rank} {noise.market_id}: score {noise.score:.1f}")

    return selected
