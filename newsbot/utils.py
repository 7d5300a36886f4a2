"""
Utility functions for the prediction market news monitor.

Feed value coercion, UTC timestamp handling, retries for HTTP calls and
the number formatting shared by reports and the console.
"""

import json
import logging
import re
import time
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

# Configure module logger
logger = logging.getLogger(__name__)

T = TypeVar("T")

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def safe_json_loads(text: str, default: Optional[Any] = None) -> Optional[Any]:
    """
    Parse the JSON object embedded in a model reply.

    Replies often wrap the object in a ```json fence or surround it with
    prose, so the outermost {...} span is cut out before decoding.

    Returns:
        Decoded dict, or ``default`` if the text holds no valid object
    """
    if not text or not isinstance(text, str):
        return default

    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1)

    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        return default

    try:
        return json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        logger.debug(f"Model reply is not valid JSON ({e}): {text[:200]}")
        return default


def parse_json_list(value: Any) -> list:
    """
    Coerce an upstream field that may be a JSON-encoded string or a list.

    Polymarket returns fields such as ``outcomePrices`` and ``outcomes``
    either as real arrays or as strings like ``'["0.65", "0.35"]'``.

    Args:
        value: Raw field value

    Returns:
        List of items, empty if the value cannot be interpreted
    """
    if value is None:
        return []

    if isinstance(value, (list, tuple)):
        return list(value)

    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return [value] if value.strip() else []
        if isinstance(parsed, list):
            return parsed
        return [parsed]

    return [value]


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_utc_iso(value: datetime) -> str:
    """
    Serialize a datetime as a fixed-width UTC ISO 8601 string.

    Naive datetimes are assumed to already be in UTC. The fixed width keeps
    lexicographic order equal to chronological order in SQLite.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a timestamp from the feed or the database into an aware UTC datetime.

    Handles ISO 8601 strings (with or without a trailing ``Z``), epoch seconds
    and epoch milliseconds.

    Args:
        value: Raw timestamp value

    Returns:
        Datetime in UTC, or None if the value cannot be parsed
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        seconds = float(value)
        # Millisecond epochs are ~1000x larger than second epochs
        if seconds > 1e11:
            seconds /= 1000.0
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            logger.debug(f"Epoch timestamp out of range: {value}")
            return None
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            parsed = None
            for fmt in ("%Y-%m-%dT%H:%M:%S", "%Y-%m-%dT%H:%M:%S.%f", "%Y-%m-%d %H:%M:%S", "%Y-%m-%d"):
                try:
                    parsed = datetime.strptime(value.strip(), fmt)
                    break
                except ValueError:
                    continue
            if parsed is None:
                logger.debug(f"Could not parse datetime: {value}")
                return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    exceptions: tuple = (Exception,)
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Retry the decorated call on ``exceptions``, doubling the pause each time.

    The last exception is re-raised once ``max_retries`` extra attempts have
    failed, so callers keep their own error handling.
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            delay = initial_delay
            attempt = 0

            while True:
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_retries:
                        logger.error(f"{func.__name__} gave up after {attempt + 1} attempt(s): {e}")
                        raise

                    attempt += 1
                    logger.warning(f"{func.__name__} failed ({e}), retry {attempt}/{max_retries} in {delay:.1f}s")
                    time.sleep(delay)
                    delay = min(delay * 2, max_delay)

        return wrapper

    return decorator


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(value, high))


def safe_float(value: Any, default: float = 0.0) -> float:
    """
    Convert a feed value (number or numeric string) to float.

    Booleans, None and unparseable strings yield ``default``.
    """
    if value is None or isinstance(value, bool):
        return default

    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def format_percentage(value: float, decimals: int = 1, signed: bool = False) -> str:
    """
    Format a ratio as a percentage string.

    Args:
        value: Ratio value (0.25 -> "25.0%")
        decimals: Number of decimal places (default: 1)
        signed: Prefix positive values with "+"

    Returns:
        Formatted percentage string (e.g., "+33.3%")
    """
    sign = "+" if signed else ""
    return f"{value * 100.0:{sign}.{decimals}f}%"


def format_currency(value: float, decimals: int = 0) -> str:
    """Format a dollar amount with thousands separators ("$1,235")."""
    return f"${value:,.{decimals}f}"
