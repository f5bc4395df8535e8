"""
Common utilities for review source fetchers.
"""
from __future__ import annotations

import hashlib
import random
import re
from datetime import datetime, timezone
from typing import Optional, Sequence

from dateutil import parser as dateparser

from reviewpulse.config import USER_AGENTS

_TAG_RE = re.compile(r"<[^>]+>")


def make_source_id(*parts: object) -> str:
    """
    Synthesize a deterministic source id for an entry the provider left unnamed.

    Args:
        *parts: Values identifying the review (app id, body, author, ...)

    Returns:
        16-character hexadecimal string ID
    """
    key = "_".join(str(part) for part in parts).encode("utf-8", "ignore")
    return hashlib.md5(key).hexdigest()[:16]


def parse_utc_datetime(date_string: Optional[str]) -> datetime:
    """
    Parse a date string and convert to UTC datetime.

    Args:
        date_string: Date string in various formats, or None

    Returns:
        UTC datetime object, or current UTC time if input is None/empty/unparseable
    """
    if not date_string:
        return datetime.now(timezone.utc)

    try:
        parsed_date = dateparser.parse(date_string)
    except (ValueError, OverflowError):
        return datetime.now(timezone.utc)

    if parsed_date.tzinfo:
        return parsed_date.astimezone(timezone.utc)
    return parsed_date.replace(tzinfo=timezone.utc)


def clean_text(text: Optional[str]) -> str:
    if not text:
        return ""
    return text.strip()


def strip_html(markup: Optional[str]) -> str:
    """
    Reduce an HTML review body to its text.

    The feed appends a layout table after the review text; everything from
    the first <table is dropped before tags are removed.
    """
    if not markup:
        return ""
    cut = markup.find("<table")
    if cut != -1:
        markup = markup[:cut]
    return clean_text(_TAG_RE.sub("", markup))


def parse_rating(value: object) -> int:
    """Star rating as int; 0 when missing or unparseable."""
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return 0


def random_user_agent(pool: Sequence[str] = USER_AGENTS) -> str:
    return random.choice(pool)


def random_delay(minimum: float, maximum: float) -> float:
    """Jittered wait in seconds, uniform within [minimum, maximum]."""
    if maximum <= minimum:
        return max(minimum, 0.0)
    return random.uniform(minimum, maximum)
