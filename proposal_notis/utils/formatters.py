"""
Data formatting utilities.
"""

from datetime import datetime, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .. import config


def format_address(address: str) -> str:
    """
    Format Ethereum address for display.

    Args:
        address: Ethereum address, with or without the 0x prefix

    Returns:
        Formatted address
    """
    if not address:
        return ""

    if not address.startswith("0x"):
        address = f"0x{address}"

    return address


def format_local_time(
    when: Optional[Union[datetime, int, float]] = None,
    tz_name: str = config.DISPLAY_TIMEZONE,
    label: str = config.DISPLAY_TIMEZONE_LABEL
) -> str:
    """
    Format a moment in the display timezone, e.g. "18 Oct 2026, 14:03:07 (UK)".

    Args:
        when: datetime or unix timestamp; defaults to now
        tz_name: IANA timezone name
        label: Suffix shown in parentheses (omitted when empty)

    Returns:
        Formatted time string
    """
    try:
        tzinfo = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        tzinfo = timezone.utc
        label = "UTC"

    if when is None:
        moment = datetime.now(tz=tzinfo)
    elif isinstance(when, datetime):
        moment = when.astimezone(tzinfo)
    else:
        moment = datetime.fromtimestamp(when, tz=tzinfo)

    text = moment.strftime("%d %b %Y, %H:%M:%S")
    return f"{text} ({label})" if label else text


def truncate_text(text: str, max_length: int = config.MAX_DESCRIPTION_LENGTH) -> str:
    """Shorten text to max_length characters, marking the cut with an ellipsis."""
    if not text or len(text) <= max_length:
        return text or ""
    return text[:max_length - 1].rstrip() + "…"
