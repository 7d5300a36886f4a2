"""
Data models for the prediction market news monitor.

This module defines the core dataclasses used throughout the application
for representing markets, their history, detected anomalies, noise scores
and the news reports generated from them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


class AnomalyKind:
    PRICE_SPIKE = "price_spike"
    VOLUME_SPIKE = "volume_spike"
    VOLATILITY = "volatility"
    NEW_TREND = "new_trend"


class Severity:
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class FeedMarket:
    """
    A market record as normalized from the upstream feed.

    Attributes:
        id: Unique market identifier
        question: Market question text
        category: Category from the fixed taxonomy
        price: Current implied probability (0.0 to 1.0)
        volume_24h: 24-hour trading volume in USD
        liquidity: Available liquidity in USD
        total_volume: Lifetime trading volume in USD
        tags: Upstream tags used for categorization
        created_at: Market creation time
        end_date: Market resolution date
        active: Whether the market is open for trading
        archived: Whether the market has been archived
    """
    id: str
    question: str
    category: str
    price: float
    volume_24h: float
    liquidity: float
    total_volume: float = 0.0
    tags: list[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    end_date: Optional[datetime] = None
    active: bool = True
    archived: bool = False


@dataclass
class MarketSnapshot:
    """
    Latest known state of one market, enriched with reference prices.

    Attributes:
        market_id: Unique market identifier
        question: Market question text
        category: Category from the fixed taxonomy
        current_price: Current implied probability, clamped to [0.0, 1.0]
        previous_price_1h: Price roughly one hour ago, if history has it
        previous_price_24h: Price roughly 24 hours ago, if history has it
        volume_24h: 24-hour trading volume in USD
        volume_average: Rolling average of recent volume samples
        liquidity: Available liquidity in USD
        observed_at: When this snapshot was taken (UTC)
    """
    market_id: str
    question: str
    category: str
    current_price: float
    previous_price_1h: Optional[float]
    previous_price_24h: Optional[float]
    volume_24h: float
    volume_average: float
    liquidity: float
    observed_at: datetime

    def __post_init__(self) -> None:
        self.current_price = max(0.0, min(1.0, float(self.current_price)))


@dataclass(frozen=True)
class HistoryPoint:
    """One immutable price/volume observation of a market."""
    market_id: str
    price: float
    volume: float
    timestamp: datetime


@dataclass
class Anomaly:
    """
    A rule-triggered deviation detected on one snapshot.

    Attributes:
        market_id: ID of the market the anomaly was detected on
        kind: One of the AnomalyKind constants
        severity: One of the Severity constants
        price_change: Signed relative price change that triggered the rule
        volume_change: Relative volume change versus the rolling average
        confidence: Confidence in the signal (0.0 to 1.0)
        description: Human-readable description
    """
    market_id: str
    kind: str
    severity: str
    price_change: float
    volume_change: float
    confidence: float
    description: str


@dataclass
class NoiseScore:
    """Aggregated newsworthiness of one market within a cycle."""
    snapshot: MarketSnapshot
    score: float
    anomalies: list[Anomaly]
    reasons: list[str]

    @property
    def market_id(self) -> str:
        return self.snapshot.market_id


@dataclass
class GeneratedReport:
    """Text returned by a report generator."""
    headline: str
    summary: str
    analysis: str
    key_takeaways: str
    reasons: list[str] = field(default_factory=list)


@dataclass
class Report:
    """
    A persisted news report about one market.

    Attributes:
        market_id: ID of the market the report is about
        headline: Short factual headline
        summary: Two to three sentence summary
        analysis: Longer analysis body
        key_takeaways: Bullet list text
        reasons: Why the move was judged significant
        confidence: Confidence of the primary anomaly
        price_change: Realized relative price change
        volume_change: Realized relative volume change
        event_time: When the move was observed
        created_at: When the report row was written
        id: Database identifier, assigned on insert
    """
    market_id: str
    headline: str
    summary: str
    analysis: str
    key_takeaways: str
    reasons: list[str]
    confidence: float
    price_change: float
    volume_change: float
    event_time: datetime
    created_at: datetime
    id: Optional[int] = None


@dataclass
class EscalationDecision:
    """Outcome of the dedup check for one candidate market."""
    emit: bool
    current_score: float
    previous_max_score: Optional[float]
    threshold: Optional[float]
    reason: str


@dataclass
class CycleResult:
    """Counters and outputs of one ingest-to-emit cycle."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    fetched: int = 0
    ingested: int = 0
    anomalous: int = 0
    candidates: int = 0
    suppressed: int = 0
    emitted: int = 0
    failed: int = 0
    report_ids: list[int] = field(default_factory=list)
