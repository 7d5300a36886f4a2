"""
Configuration management for the prediction market news monitor.

Every setting is read once from the environment (or a .env file) into
class attributes on Config, which the rest of the package reads directly.
"""

import os
from typing import Optional
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()


class Config:
    """
    Centralized configuration class for the news monitor.

    Thresholds, intervals and paths have defaults; provider API keys and
    the Telegram credentials only come from the environment.
    """

    # API Keys (one is required, depending on REPORT_PROVIDER)
    ANTHROPIC_API_KEY: Optional[str] = os.getenv("ANTHROPIC_API_KEY")
    OPENAI_API_KEY: Optional[str] = os.getenv("OPENAI_API_KEY")

    # Report generator selection: "anthropic", "openai" or "template"
    REPORT_PROVIDER: str = os.getenv("REPORT_PROVIDER", "anthropic").lower()

    # Polymarket Configuration
    GAMMA_API_URL: str = os.getenv(
        "GAMMA_API_URL",
        "https://gamma-api.polymarket.com"
    )
    CLOB_API_URL: str = os.getenv("CLOB_API_URL", "https://clob.polymarket.com")

    # AI Model Configuration
    CLAUDE_MODEL: str = os.getenv("CLAUDE_MODEL", "claude-3-5-sonnet-20241022")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4-turbo-preview")
    REPORT_MAX_TOKENS: int = int(os.getenv("REPORT_MAX_TOKENS", "2000"))
    REPORT_TEMPERATURE: float = float(os.getenv("REPORT_TEMPERATURE", "0.7"))

    # Request Timeouts (seconds)
    FEED_TIMEOUT: int = int(os.getenv("FEED_TIMEOUT", "10"))
    API_TIMEOUT: int = int(os.getenv("API_TIMEOUT", "30"))

    # Ingestion Parameters
    MAX_MARKETS_TO_SCAN: int = int(os.getenv("MAX_MARKETS_TO_SCAN", "30"))
    INGEST_WORKERS: int = int(os.getenv("INGEST_WORKERS", "4"))

    # Ranking and Escalation
    MIN_NOISE_SCORE: float = float(os.getenv("MIN_NOISE_SCORE", "30"))
    MAX_REPORTS_PER_CYCLE: int = int(os.getenv("MAX_REPORTS_PER_CYCLE", "3"))
    ESCALATION_FACTOR: float = float(os.getenv("ESCALATION_FACTOR", "1.5"))
    DEDUP_WINDOW_HOURS: int = int(os.getenv("DEDUP_WINDOW_HOURS", "24"))

    # Delay between generator calls within one cycle (rate limit contract)
    REPORT_DELAY_SECONDS: float = float(os.getenv("REPORT_DELAY_SECONDS", "2"))

    # Database Configuration
    DB_PATH: Path = Path(os.getenv("DB_PATH", "data/newsbot.db"))

    # Scheduler Configuration
    SCAN_INTERVAL_MINUTES: int = int(os.getenv("SCAN_INTERVAL_MINUTES", "5"))
    SCHEDULER_TIMEZONE: str = os.getenv("SCHEDULER_TIMEZONE", "UTC")

    # Telegram Configuration (optional)
    TELEGRAM_BOT_TOKEN: Optional[str] = os.getenv("TELEGRAM_BOT_TOKEN")
    TELEGRAM_CHAT_ID: Optional[str] = os.getenv("TELEGRAM_CHAT_ID")

    # Logging Configuration
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: Optional[Path] = Path(os.getenv("LOG_FILE", "logs/newsbot.log")) if os.getenv("LOG_FILE") else None

    @classmethod
    def validate(cls) -> tuple[bool, list[str]]:
        """
        Check the settings a news cycle depends on.

        Returns:
            (is_valid, errors) where errors lists every problem found
        """
        errors: list[str] = []

        if cls.REPORT_PROVIDER not in ("anthropic", "openai", "template"):
            errors.append(
                f"REPORT_PROVIDER must be one of anthropic, openai, template (got {cls.REPORT_PROVIDER!r})"
            )

        if cls.REPORT_PROVIDER == "anthropic" and not cls.ANTHROPIC_API_KEY:
            errors.append("ANTHROPIC_API_KEY is required when REPORT_PROVIDER=anthropic")

        if cls.REPORT_PROVIDER == "openai" and not cls.OPENAI_API_KEY:
            errors.append("OPENAI_API_KEY is required when REPORT_PROVIDER=openai")

        # Validate numeric ranges
        if cls.MAX_MARKETS_TO_SCAN < 1:
            errors.append("MAX_MARKETS_TO_SCAN must be at least 1")

        if cls.INGEST_WORKERS < 1:
            errors.append("INGEST_WORKERS must be at least 1")

        if cls.MAX_REPORTS_PER_CYCLE < 0:
            errors.append("MAX_REPORTS_PER_CYCLE cannot be negative")

        if cls.MIN_NOISE_SCORE < 0:
            errors.append("MIN_NOISE_SCORE cannot be negative")

        if cls.ESCALATION_FACTOR < 1.0:
            errors.append("ESCALATION_FACTOR must be >= 1.0")

        if cls.REPORT_DELAY_SECONDS < 0:
            errors.append("REPORT_DELAY_SECONDS cannot be negative")

        if cls.SCAN_INTERVAL_MINUTES < 1:
            errors.append("SCAN_INTERVAL_MINUTES must be at least 1")

        if not (0.0 <= cls.REPORT_TEMPERATURE <= 1.0):
            errors.append("REPORT_TEMPERATURE must be between 0.0 and 1.0")

        return (len(errors) == 0, errors)

    @classmethod
    def ensure_directories(cls) -> None:
        """Create the database and log directories if missing."""
        cls.DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        if cls.LOG_FILE:
            cls.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
