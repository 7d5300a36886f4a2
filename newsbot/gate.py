"""
Escalation gate for suppressing repeat reports.

A market that was already reported in the dedup window only gets a new
report when its current noise score clearly exceeds the magnitude of the
moves already covered.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from newsbot.config import Config
from newsbot.models import EscalationDecision, Report
from newsbot.storage import Storage
from newsbot.utils import utc_now

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_ESCALATION_FACTOR = 1.5


def report_magnitude(report: Report) -> float:
    """Magnitude of a past report on the noise score scale: |price|*100 + |volume|*5."""
    return abs(report.price_change) * 100.0 + abs(report.volume_change) * 5.0


def decide_escalation(
    current_score: float,
    recent_reports: list[Report],
    factor: float = DEFAULT_ESCALATION_FACTOR
) -> EscalationDecision:
    """
    Decide whether a candidate deserves a new report.

    Args:
        current_score: Noise score of the candidate in this cycle
        recent_reports: The market's reports within the dedup window
        factor: How much the score must exceed the largest past magnitude

    Returns:
        EscalationDecision with the verdict and its explanation
    """
    if not recent_reports:
        return EscalationDecision(
            emit=True,
            current_score=current_score,
            previous_max_score=None,
            threshold=None,
            reason="No recent reports for this market",
        )

    previous_max = max(report_magnitude(report) for report in recent_reports)
    threshold = previous_max * factor

    if current_score > threshold:
        return EscalationDecision(
            emit=True,
            current_score=current_score,
            previous_max_score=previous_max,
            threshold=threshold,
            reason=f"Escalation: score {current_score:.1f} exceeds {threshold:.1f} ({factor}x previous max {previous_max:.1f})",
        )

    return EscalationDecision(
        emit=False,
        current_score=current_score,
        previous_max_score=previous_max,
        threshold=threshold,
        reason=f"Suppressed: score {current_score:.1f} does not exceed {threshold:.1f} ({factor}x previous max {previous_max:.1f})",
    )


class EscalationGate:
    """Applies the escalation rule to a market using its stored reports."""

    def __init__(
        self,
        storage: Storage,
        window: Optional[timedelta] = None,
        factor: Optional[float] = None
    ):
        self.storage = storage
        self.window = window or timedelta(hours=Config.DEDUP_WINDOW_HOURS)
        self.factor = factor if factor is not None else Config.ESCALATION_FACTOR

    def check(self, market_id: str, current_score: float, now: Optional[datetime] = None) -> EscalationDecision:
        """
        Decide whether ``market_id`` may be reported again.

        Args:
            market_id: Candidate market
            current_score: Its noise score in this cycle
            now: Reference time for the dedup window (defaults to current UTC time)

        Returns:
            EscalationDecision
        """
        now = now or utc_now()
        recent = self.storage.list_recent_reports(market_id, now - self.window)

        if recent is None:
            decision = EscalationDecision(
                emit=False,
                current_score=current_score,
                previous_max_score=None,
                threshold=None,
                reason="Suppressed: recent reports could not be read",
            )
            logger.warning(f"Market {market_id}: {decision.reason}")
            return decision

        decision = decide_escalation(current_score, recent, self.factor)

        if decision.emit:
            logger.debug(f"Market {market_id}: {decision.reason}")
        else:
            logger.info(f"Market {market_id}: {decision.reason}")

        return decision
