"""
Content fingerprinting used as the logical dedup key for reviews.
"""
from __future__ import annotations

import hashlib
import re

MAX_NORMALIZED_LENGTH = 200

_NON_WORD_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_review_text(text: str | None) -> str:
    """
    Normalize review text for comparison.

    Lowercases, drops punctuation, collapses whitespace and keeps the first
    200 characters.

    Args:
        text: Raw review body (can be None)

    Returns:
        Normalized text, empty string if input is None
    """
    if not text:
        return ""
    normalized = _NON_WORD_RE.sub("", text.lower())
    normalized = _WHITESPACE_RE.sub(" ", normalized).strip()
    return normalized[:MAX_NORMALIZED_LENGTH]


def content_fingerprint(text: str | None, author: str, rating: int) -> str:
    """
    Generate a stable fingerprint from normalized text, author and rating.

    Args:
        text: Review body
        author: Review author name
        rating: Star rating

    Returns:
        32-character hexadecimal MD5 digest
    """
    key = f"{normalize_review_text(text)}_{author}_{rating}".encode("utf-8", "ignore")
    return hashlib.md5(key).hexdigest()
