"""
Telegram notifier for delivering emitted news reports.

Each report persisted by the coordinator can be pushed to a Telegram chat as
a short Markdown message. Delivery is optional and best effort: failures are
logged and never affect the news cycle.
"""

import asyncio
import logging
from typing import Optional

from telegram import Bot
from telegram.error import TelegramError, TimedOut, NetworkError
from telegram.helpers import escape_markdown

from newsbot.config import Config
from newsbot.models import Report
from newsbot.utils import format_percentage

# Configure module logger
logger = logging.getLogger(__name__)

MAX_SUMMARY_LENGTH = 300


def is_configured() -> bool:
    """Whether both the bot token and the chat id are set."""
    return bool(Config.TELEGRAM_BOT_TOKEN and Config.TELEGRAM_CHAT_ID)


def format_report_message(report: Report, question: Optional[str] = None) -> str:
    """
    Format a news report as a short Telegram message.

    Args:
        report: Persisted report
        question: Market question, if known

    Returns:
        Markdown message text
    """
    lines = [f"📰 *{escape_markdown(report.headline)}*", ""]

    if question:
        lines.append(f"❓ {escape_markdown(question)}")

    lines.append(
        f"📈 Price: {format_percentage(report.price_change, signed=True)} | "
        f"📊 Volume: {format_percentage(report.volume_change, decimals=0, signed=True)} | "
        f"🎲 Confidence: {report.confidence:.0%}"
    )

    summary = report.summary
    if len(summary) > MAX_SUMMARY_LENGTH:
        summary = summary[:MAX_SUMMARY_LENGTH - 3] + "..."
    if summary:
        lines.append("")
        lines.append(escape_markdown(summary))

    if report.reasons:
        lines.append("")
        for reason in report.reasons[:4]:
            lines.append(f"• {escape_markdown(reason)}")

    return "\n".join(lines)


def send_telegram_message(message: str) -> bool:
    """
    Deliver one Markdown message to the configured chat.

    Args:
        message: Message text to send (Markdown formatting)

    Returns:
        True if Telegram accepted the message
    """
    if not is_configured():
        logger.debug("Telegram delivery skipped: token or chat id not set")
        return False

    if not message or not message.strip():
        logger.warning("Refusing to send an empty Telegram message")
        return False

    try:
        bot = Bot(token=Config.TELEGRAM_BOT_TOKEN)

        # Numeric chat ids must be sent as ints, channel names as strings
        try:
            chat_id = int(Config.TELEGRAM_CHAT_ID)
        except ValueError:
            chat_id = Config.TELEGRAM_CHAT_ID

        logger.debug(f"Sending message to Telegram chat {chat_id}")

        asyncio.run(bot.send_message(
            chat_id=chat_id,
            text=message,
            parse_mode="Markdown",
            read_timeout=Config.API_TIMEOUT,
        ))

        logger.info("Telegram message sent")
        return True

    except TimedOut:
        logger.error(f"Telegram API request timed out after {Config.API_TIMEOUT}s")
        return False

    except NetworkError as e:
        logger.error(f"Network error sending Telegram message: {e}")
        return False

    except TelegramError as e:
        logger.error(f"Telegram API error: {e}")
        return False

    except Exception as e:
        logger.error(f"Unexpected error sending Telegram message: {e}", exc_info=True)
        return False


class TelegramReportNotifier:
    """Report callback that pushes each emitted report to Telegram."""

    def __init__(self, storage=None):
        self.storage = storage

    def __call__(self, report: Report) -> bool:
        question = None
        if self.storage is not None:
            snapshot = self.storage.get_snapshot(report.market_id)
            question = snapshot.question if snapshot else None

        return send_telegram_message(format_report_message(report, question))
