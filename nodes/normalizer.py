"""
Text Normalizer

Canonical form used before any string comparison in the resolver and
classifier: lower-cased, punctuation stripped, whitespace collapsed.
"""

import re
from typing import List, Optional

_NON_WORD_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_text(value: Optional[str]) -> str:
    """
    Normalize a string for comparison.

    Args:
        value: Raw text (None is treated as empty)

    Returns:
        Lower-cased text with punctuation removed and whitespace collapsed
    """
    if not value:
        return ""
    text = _NON_WORD_RE.sub("", value.lower())
    return _WHITESPACE_RE.sub(" ", text).strip()


def significant_words(value: Optional[str], min_length: int = 3) -> List[str]:
    """Split normalized text into words of at least ``min_length`` characters."""
    return [word for word in normalize_text(value).split(" ") if len(word) >= min_length]
