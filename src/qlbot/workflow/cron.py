"""Cron expression helpers for uploaded scripts.

Scripts written for Qinglong usually declare their schedule in a header
comment (``// 0 8 * * * demo.js``). This module finds such an expression
in arbitrary script text and offers advisory previews of it. Nothing here
validates a schedule; the panel does that when the job is registered.
"""

import logging
import re
from datetime import datetime, timezone

from croniter import croniter

logger = logging.getLogger(__name__)

DEFAULT_SCHEDULE = "0 0 * * *"

# Five or six space separated fields built from cron characters.
_CRON_PATTERN = re.compile(r"(?:[0-9*/,-]+ ){4,5}[0-9*/,-]+")


def extract_cron(text: str) -> str | None:
    """Find the first cron-like expression in a block of text.

    A six-field match is treated as having a leading seconds field,
    which is dropped.

    Args:
        text: Script content or any free-form text.

    Returns:
        A five-field expression, or None if nothing plausible was found.
    """
    match = _CRON_PATTERN.search(text)
    if not match:
        logger.debug("No cron expression found in %d chars of content", len(text))
        return None

    parts = match.group(0).split()
    if len(parts) < 5:
        return None
    if len(parts) == 6:
        parts = parts[1:]

    expression = " ".join(parts)
    logger.debug("Extracted cron expression: %s", expression)
    return expression


def next_run(expression: str, now: datetime | None = None) -> datetime | None:
    """Compute the next time a cron expression fires.

    Args:
        expression: Five-field cron expression.
        now: Reference time (defaults to UTC now).

    Returns:
        Next run as an aware datetime, or None if the expression
        cannot be parsed.
    """
    now = now or datetime.now(timezone.utc)
    try:
        return croniter(expression, now).get_next(datetime)
    except Exception as e:
        logger.debug(f"Cannot compute next run for {expression!r}: {e}")
        return None


def describe_cron(expression: str) -> str:
    """Get a short human-readable description of a cron expression."""
    parts = expression.split()
    if len(parts) != 5:
        return "Invalid cron expression"

    minute, hour, day, month, dow = parts

    if parts == ["*"] * 5:
        return "every minute"

    descriptions = []

    if minute == "*":
        descriptions.append("every minute")
    else:
        descriptions.append(f"at minute {minute}")

    if hour == "*":
        descriptions.append("of every hour")
    else:
        descriptions.append(f"past hour {hour}")

    if day != "*":
        descriptions.append(f"on day {day}")

    if month != "*":
        descriptions.append(f"in month {month}")

    dow_names = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    if dow != "*":
        try:
            descriptions.append(f"on {dow_names[int(dow)]}")
        except (ValueError, IndexError):
            descriptions.append(f"on weekday {dow}")

    return " ".join(descriptions)
