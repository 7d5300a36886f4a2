"""
Report writer for turning market anomalies into neutral news text.

This module defines the text generator interface used by the coordinator and
its implementations: Claude (Anthropic Messages API), OpenAI (Chat
Completions API) and an offline template writer. The provider is chosen once
from configuration and passed to the coordinator as an explicit instance.
"""

import json
import logging
import re
from typing import Optional

import requests
from requests.exceptions import RequestException, Timeout, ConnectionError

from newsbot.config import Config
from newsbot.detector import primary_anomaly
from newsbot.models import Anomaly, GeneratedReport, MarketSnapshot
from newsbot.utils import format_currency, format_percentage, safe_json_loads

# Configure module logger
logger = logging.getLogger(__name__)

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
OPENAI_URL = "https://api.openai.com/v1/chat/completions"

DEFAULT_HEADLINE = "Market Movement Detected"
DEFAULT_TAKEAWAYS = "• Market showing unusual activity"

_HEADLINE_RE = re.compile(r"HEADLINE:\s*(.+?)(?:\n|SUMMARY:|$)", re.IGNORECASE)
_SUMMARY_RE = re.compile(r"SUMMARY:\s*(.+?)(?:\n[\W\d]*ANALYSIS:|$)", re.IGNORECASE | re.DOTALL)
_ANALYSIS_RE = re.compile(r"ANALYSIS:\s*(.+?)(?:\n[\W\d]*KEY[_ ]TAKEAWAYS:|$)", re.IGNORECASE | re.DOTALL)
_TAKEAWAYS_RE = re.compile(r"KEY[_ ]TAKEAWAYS:\s*(.+?)$", re.IGNORECASE | re.DOTALL)


class ReportGenerator:
    """
    Interface for news text generators.

    ``generate`` returns None when no usable text could be produced; callers
    treat that as a failed candidate.
    """

    name = "base"

    def generate(
        self,
        snapshot: MarketSnapshot,
        anomalies: list[Anomaly],
        reasons: list[str]
    ) -> Optional[GeneratedReport]:
        raise NotImplementedError


class ClaudeReportGenerator(ReportGenerator):
    """Generates reports with the Anthropic Messages API."""

    name = "anthropic"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        session: Optional[requests.Session] = None
    ):
        self.api_key = api_key or Config.ANTHROPIC_API_KEY
        self.model = model or Config.CLAUDE_MODEL
        self.session = session or requests.Session()

    def generate(self, snapshot, anomalies, reasons):
        if not self.api_key:
            logger.error("ANTHROPIC_API_KEY not configured")
            return None

        logger.info(f"Generating report with Claude for market {snapshot.market_id}")
        prompt = build_report_prompt(snapshot, anomalies, reasons)

        text = self._call_api(prompt)
        if not text:
            return None

        return parse_generated_report(text)

    def _call_api(self, prompt: str) -> Optional[str]:
        """
        Call the Anthropic Messages API.

        Args:
            prompt: Report prompt string

        Returns:
            Response text, or None on failure
        """
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": "2023-06-01",
            "Content-Type": "application/json",
        }

        payload = {
            "model": self.model,
            "max_tokens": Config.REPORT_MAX_TOKENS,
            "temperature": Config.REPORT_TEMPERATURE,
            "messages": [
                {
                    "role": "user",
                    "content": prompt
                }
            ],
        }

        try:
            logger.debug(f"Calling Claude API with model {self.model}")

            response = self.session.post(
                ANTHROPIC_URL,
                json=payload,
                headers=headers,
                timeout=Config.API_TIMEOUT,
            )
            response.raise_for_status()
            data = response.json()

            for block in data.get("content") or []:
                if block.get("type", "text") == "text" and block.get("text"):
                    logger.debug(f"Received response of length {len(block['text'])}")
                    return block["text"]

            logger.warning("Unexpected Claude API response structure")
            logger.debug(f"Response data: {json.dumps(data)[:500]}")
            return None

        except Timeout:
            logger.error(f"Claude API request timed out after {Config.API_TIMEOUT}s")
            return None

        except ConnectionError as e:
            logger.error(f"Connection error calling Claude API: {e}")
            return None

        except RequestException as e:
            logger.error(f"Claude API request failed: {e}")
            _log_error_response(e)
            return None

        except ValueError as e:
            logger.error(f"Invalid JSON from Claude API: {e}")
            return None


class OpenAIReportGenerator(ReportGenerator):
    """Generates reports with the OpenAI Chat Completions API."""

    name = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        session: Optional[requests.Session] = None
    ):
        self.api_key = api_key or Config.OPENAI_API_KEY
        self.model = model or Config.OPENAI_MODEL
        self.session = session or requests.Session()

    def generate(self, snapshot, anomalies, reasons):
        if not self.api_key:
            logger.error("OPENAI_API_KEY not configured")
            return None

        logger.info(f"Generating report with OpenAI for market {snapshot.market_id}")
        prompt = build_report_prompt(snapshot, anomalies, reasons)

        text = self._call_api(prompt)
        if not text:
            return None

        return parse_generated_report(text)

    def _call_api(self, prompt: str) -> Optional[str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": Config.REPORT_MAX_TOKENS,
            "temperature": Config.REPORT_TEMPERATURE,
        }

        try:
            logger.debug(f"Calling OpenAI API with model {self.model}")

            response = self.session.post(
                OPENAI_URL,
                json=payload,
                headers=headers,
                timeout=Config.API_TIMEOUT,
            )
            response.raise_for_status()
            data = response.json()

            choices = data.get("choices") or []
            if choices:
                content = (choices[0].get("message") or {}).get("content")
                if content:
                    return content

            logger.warning("Unexpected OpenAI API response structure")
            logger.debug(f"Response data: {json.dumps(data)[:500]}")
            return None

        except Timeout:
            logger.error(f"OpenAI API request timed out after {Config.API_TIMEOUT}s")
            return None

        except ConnectionError as e:
            logger.error(f"Connection error calling OpenAI API: {e}")
            return None

        except RequestException as e:
            logger.error(f"OpenAI API request failed: {e}")
            _log_error_response(e)
            return None

        except ValueError as e:
            logger.error(f"Invalid JSON from OpenAI API: {e}")
            return None


class TemplateReportGenerator(ReportGenerator):
    """
    Deterministic offline writer.

    Produces plain factual text from the snapshot and anomalies without any
    network call. Used for dry runs and when no model provider is configured.
    """

    name = "template"

    def generate(self, snapshot, anomalies, reasons):
        if not anomalies:
            return None

        lead = primary_anomaly(anomalies)
        probability = format_percentage(snapshot.current_price)

        if snapshot.previous_price_1h is not None:
            direction = "climb" if snapshot.current_price >= snapshot.previous_price_1h else "slip"
            headline = f"Odds {direction} to {probability}: {snapshot.question}"
        else:
            headline = f"Unusual activity at {probability}: {snapshot.question}"

        summary = (
            f"Traders on Polymarket now price \"{snapshot.question}\" at {probability}. "
            f"{lead.description}."
        )

        analysis_lines = [
            f"The market sits in the {snapshot.category} category and traded "
            f"{format_currency(snapshot.volume_24h)} over the last 24 hours "
            f"against a recent average of {format_currency(snapshot.volume_average)}.",
            "",
            "Signals detected:",
        ]
        analysis_lines.extend(f"- {anomaly.description}" for anomaly in anomalies)
        analysis_lines.extend([
            "",
            "Prediction market prices reflect what traders are pricing in, not a forecast; "
            "thin markets can move sharply on a few large orders.",
        ])

        takeaways = "\n".join(f"• {reason}" for reason in reasons) or DEFAULT_TAKEAWAYS

        return GeneratedReport(
            headline=headline[:120],
            summary=summary,
            analysis="\n".join(analysis_lines),
            key_takeaways=takeaways,
        )


def build_report_generator(provider: Optional[str] = None) -> ReportGenerator:
    """
    Build the report generator for a provider name.

    Args:
        provider: "anthropic", "openai" or "template". If None, uses Config.REPORT_PROVIDER.

    Returns:
        ReportGenerator instance

    Raises:
        ValueError: If the provider name is unknown
    """
    provider = (provider or Config.REPORT_PROVIDER).lower()

    if provider == "anthropic":
        return ClaudeReportGenerator()
    if provider == "openai":
        return OpenAIReportGenerator()
    if provider == "template":
        return TemplateReportGenerator()

    raise ValueError(f"Unknown report provider: {provider!r}")


def build_report_prompt(snapshot: MarketSnapshot, anomalies: list[Anomaly], reasons: list[str]) -> str:
    """
    Build the prompt asking a model for a neutral news report.

    Args:
        snapshot: Market snapshot
        anomalies: Detected anomalies
        reasons: Scorer reasons explaining why the move was selected

    Returns:
        Formatted prompt string
    """
    def pct(value: Optional[float]) -> str:
        return format_percentage(value) if value is not None else "N/A"

    def change(reference: Optional[float]) -> str:
        if reference is None or reference <= 0:
            return "N/A"
        return format_percentage((snapshot.current_price - reference) / reference, signed=True)

    volume_spike = (
        format_percentage(snapshot.volume_24h / snapshot.volume_average - 1, signed=True)
        if snapshot.volume_average > 0 else "N/A"
    )

    anomaly_lines = "\n".join(
        f"- {anomaly.kind}: {anomaly.description} ({anomaly.severity} severity)"
        for anomaly in anomalies
    ) or "- none"

    reason_lines = "\n".join(f"- {reason}" for reason in reasons) or "- none"

    return f"""A prediction market on Polymarket is showing unusual activity. Generate a neutral news report explaining this to a general audience:

Market Question: {snapshot.question}
Category: {snapshot.category}
Current Probability: {pct(snapshot.current_price)}
Previous Probability (1h ago): {pct(snapshot.previous_price_1h)}
Previous Probability (24h ago): {pct(snapshot.previous_price_24h)}
Price Change (1h): {change(snapshot.previous_price_1h)}
Price Change (24h): {change(snapshot.previous_price_24h)}
Volume (24h): {format_currency(snapshot.volume_24h)}
Volume Spike: {volume_spike}

Detected Anomalies:
{anomaly_lines}

Why this move was flagged:
{reason_lines}

Write a news report with the following structure:
1. HEADLINE: A clear, factual headline (max 80 characters)
2. SUMMARY: A 2-3 sentence summary paragraph explaining what happened
3. ANALYSIS: A detailed 3-4 paragraph analysis that:
   - Explains what the market is about in plain language
   - Describes the price movement and what it likely signals
   - Provides context on why this matters
   - Notes any limitations or caveats
4. KEY_TAKEAWAYS: 3-4 bullet points highlighting the most important information

Keep the tone neutral, factual, and accessible to non-traders. Focus on "markets are pricing in" language rather than making predictions. Avoid speculation and sensationalism."""


def parse_generated_report(text: str) -> Optional[GeneratedReport]:
    """
    Parse model output into a GeneratedReport.

    Accepts either a JSON object with headline/summary/analysis/key_takeaways
    keys or plain text with HEADLINE:, SUMMARY:, ANALYSIS: and KEY_TAKEAWAYS:
    sections. Missing sections fall back to defaults.

    Args:
        text: Raw model output

    Returns:
        GeneratedReport, or None if the text is empty
    """
    if not text or not text.strip():
        return None

    data = safe_json_loads(text)
    if isinstance(data, dict) and data.get("headline"):
        takeaways = data.get("key_takeaways") or data.get("keyTakeaways") or DEFAULT_TAKEAWAYS
        if isinstance(takeaways, list):
            takeaways = "\n".join(f"• {item}" for item in takeaways)

        reasons = data.get("reasons") or []
        if not isinstance(reasons, list):
            reasons = [str(reasons)]

        return GeneratedReport(
            headline=str(data["headline"]).strip(),
            summary=str(data.get("summary") or "").strip(),
            analysis=str(data.get("analysis") or "").strip(),
            key_takeaways=str(takeaways).strip(),
            reasons=[str(reason) for reason in reasons],
        )

    headline = _section(_HEADLINE_RE, text)
    summary = _section(_SUMMARY_RE, text)
    analysis = _section(_ANALYSIS_RE, text)
    takeaways = _section(_TAKEAWAYS_RE, text)

    if not headline:
        logger.warning("Generated text has no HEADLINE section, using default")

    return GeneratedReport(
        headline=headline or DEFAULT_HEADLINE,
        summary=summary or text.strip()[:200],
        analysis=analysis or text.strip(),
        key_takeaways=takeaways or DEFAULT_TAKEAWAYS,
    )


def _section(pattern: re.Pattern, text: str) -> Optional[str]:
    match = pattern.search(text)
    if not match:
        return None
    # Models often bold the section labels
    value = match.group(1).strip().strip("*").strip()
    return value or None


def _log_error_response(error: RequestException) -> None:
    response = getattr(error, "response", None)
    if response is None:
        return

    logger.error(f"Response status: {response.status_code}")
    try:
        logger.error(f"Error details: {json.dumps(response.json())[:500]}")
    except ValueError:
        logger.error(f"Response text: {response.text[:500]}")
