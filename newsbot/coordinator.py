"""
Report emission coordinator.

Runs one monitoring cycle end to end: fetch the feed, ingest snapshots,
detect and score anomalies, gate the noisiest markets against recent
reports, and generate and persist a news report for each market that passes.
Report generation is strictly serialized with a fixed delay between calls.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from newsbot import scanner
from newsbot.config import Config
from newsbot.detector import detect, primary_anomaly
from newsbot.gate import EscalationGate
from newsbot.ingestor import MarketIngestor
from newsbot.models import CycleResult, FeedMarket, NoiseScore, Report
from newsbot.report_writer import ReportGenerator
from newsbot.scorer import filter_noisiest, score_market
from newsbot.storage import Storage
from newsbot.utils import utc_now

# Configure module logger
logger = logging.getLogger(__name__)


class CycleState:
    IDLE = "idle"
    INGESTING = "ingesting"
    SCORING = "scoring"
    EMITTING = "emitting"


class ReportCoordinator:
    """
    Drives the ingest -> detect -> score -> gate -> emit cycle.

    Args:
        storage: Snapshot store
        generator: Text generator used for every emitted report
        fetch_markets: Callable returning feed markets (defaults to scanner.fetch_markets)
        on_report: Optional callback invoked with each persisted report
        max_reports: Maximum reports per cycle (defaults to Config.MAX_REPORTS_PER_CYCLE)
        min_score: Minimum noise score for a candidate (defaults to Config.MIN_NOISE_SCORE)
        report_delay: Seconds to wait after each persisted report (defaults to Config.REPORT_DELAY_SECONDS)
    """

    def __init__(
        self,
        storage: Storage,
        generator: ReportGenerator,
        fetch_markets: Optional[Callable[[], list[FeedMarket]]] = None,
        on_report: Optional[Callable[[Report], None]] = None,
        ingestor: Optional[MarketIngestor] = None,
        gate: Optional[EscalationGate] = None,
        max_reports: Optional[int] = None,
        min_score: Optional[float] = None,
        report_delay: Optional[float] = None
    ):
        self.storage = storage
        self.generator = generator
        self.fetch_markets = fetch_markets or scanner.fetch_markets
        self.on_report = on_report
        self.ingestor = ingestor or MarketIngestor(storage)
        self.gate = gate or EscalationGate(storage)
        self.max_reports = max_reports if max_reports is not None else Config.MAX_REPORTS_PER_CYCLE
        self.min_score = min_score if min_score is not None else Config.MIN_NOISE_SCORE
        self.report_delay = report_delay if report_delay is not None else Config.REPORT_DELAY_SECONDS

        self.state = CycleState.IDLE
        self._stop_event = threading.Event()

    def request_stop(self) -> None:
        """Ask the coordinator to finish the in-flight write and skip remaining candidates."""
        logger.info("Stop requested, remaining candidates will be skipped")
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def run_cycle(self, now: Optional[datetime] = None) -> CycleResult:
        """
        Run one complete monitoring cycle.

        Nothing in the cycle is fatal: feed, ingestion, generation and
        persistence failures are logged and reflected in the counters.

        Args:
            now: Observation time for the cycle (defaults to current UTC time)

        Returns:
            CycleResult with counters and emitted report ids
        """
        now = now or utc_now()
        result = CycleResult(started_at=now)

        logger.info("=" * 60)
        logger.info(f"Starting news cycle at {now.isoformat()}")
        logger.info("=" * 60)

        try:
            # Step 1: Fetch and ingest
            self.state = CycleState.INGESTING
            try:
                markets = self.fetch_markets()
            except Exception as e:
                logger.warning(f"Market feed failed, continuing with no markets: {e}", exc_info=True)
                markets = []
            result.fetched = len(markets)

            if not markets:
                logger.warning("No markets fetched from feed")
                return result

            snapshots = self.ingestor.ingest(markets, now=now)
            result.ingested = len(snapshots)

            # Step 2: Detect and score
            self.state = CycleState.SCORING
            scores: list[NoiseScore] = []
            for snapshot in snapshots:
                anomalies = detect(snapshot)
                if anomalies:
                    result.anomalous += 1
                scores.append(score_market(snapshot, anomalies))

            candidates = filter_noisiest(scores, max_reports=self.max_reports, min_score=self.min_score)
            result.candidates = len(candidates)

            if not candidates:
                logger.info("No markets noisy enough to report")
                return result

            # Step 3: Gate and emit
            self.state = CycleState.EMITTING
            self._emit_candidates(candidates, now, result)

            return result

        finally:
            self.state = CycleState.IDLE
            result.finished_at = utc_now()
            logger.info(
                f"Cycle finished: fetched={result.fetched} ingested={result.ingested} "
                f"anomalous={result.anomalous} candidates={result.candidates} "
                f"suppressed={result.suppressed} emitted={result.emitted} failed={result.failed}"
            )

    def _emit_candidates(self, candidates: list[NoiseScore], now: datetime, result: CycleResult) -> None:
        for noise in candidates:
            if self.stop_requested:
                logger.info("Stop requested, skipping remaining candidates")
                break

            decision = self.gate.check(noise.market_id, noise.score, now=now)
            if not decision.emit:
                result.suppressed += 1
                continue

            report_id = self._emit_one(noise, now)
            if report_id is None:
                result.failed += 1
                continue

            result.emitted += 1
            result.report_ids.append(report_id)

            # Interruptible wait before the next generator call
            if self.report_delay > 0 and self._stop_event.wait(self.report_delay):
                logger.info("Stop requested during report delay")
                break

    def _emit_one(self, noise: NoiseScore, now: datetime) -> Optional[int]:
        """
        Generate and persist a report for one candidate.

        Returns:
            The new report id, or None if generation or persistence failed
        """
        snapshot = noise.snapshot

        try:
            generated = self.generator.generate(snapshot, noise.anomalies, noise.reasons)
        except Exception as e:
            logger.error(f"Report generation raised for market {snapshot.market_id}: {e}", exc_info=True)
            return None

        if generated is None:
            logger.warning(f"Report generation failed for market {snapshot.market_id}, skipping")
            return None

        lead = primary_anomaly(noise.anomalies)

        report = Report(
            market_id=snapshot.market_id,
            headline=generated.headline,
            summary=generated.summary,
            analysis=generated.analysis,
            key_takeaways=generated.key_takeaways,
            reasons=list(generated.reasons or noise.reasons),
            confidence=lead.confidence,
            price_change=realized_price_change(noise),
            volume_change=realized_volume_change(noise),
            event_time=now,
            created_at=utc_now(),
        )

        report_id = self.storage.insert_report(report)
        if report_id is None:
            logger.error(f"Failed to persist report for market {snapshot.market_id}")
            return None

        report.id = report_id
        logger.info(f"Emitted report {report_id} for market {snapshot.market_id}: {report.headline}")

        if self.on_report:
            try:
                self.on_report(report)
            except Exception as e:
                logger.error(f"Report callback failed for report {report_id}: {e}", exc_info=True)

        return report_id


def realized_price_change(noise: NoiseScore) -> float:
    """Relative price change against the 1h reference, else the 24h one, else the primary anomaly's."""
    snapshot = noise.snapshot
    current = snapshot.current_price

    if snapshot.previous_price_1h:
        return (current - snapshot.previous_price_1h) / snapshot.previous_price_1h
    if snapshot.previous_price_24h:
        return (current - snapshot.previous_price_24h) / snapshot.previous_price_24h
    return primary_anomaly(noise.anomalies).price_change


def realized_volume_change(noise: NoiseScore) -> float:
    """Relative volume change against the rolling average, else the primary anomaly's."""
    snapshot = noise.snapshot
    if snapshot.volume_average > 0:
        return (snapshot.volume_24h - snapshot.volume_average) / snapshot.volume_average
    return primary_anomaly(noise.anomalies).volume_change
