"""
String Similarity Engine

Edit-distance ratio between two strings:

    (max(len1, len2) - levenshtein(a, b)) / max(len1, len2)

Two empty strings are considered identical (1.0).
"""

from rapidfuzz.distance import Levenshtein

from nodes.normalizer import normalize_text


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance (insert/delete/substitute, unit cost)."""
    return Levenshtein.distance(a, b)


def similarity(a: str, b: str, normalize: bool = True) -> float:
    """
    Similarity ratio in [0, 1] between two strings.

    Args:
        a: First string
        b: Second string
        normalize: Apply normalize_text() to both inputs first

    Returns:
        1.0 for identical strings, 0.0 for completely different ones
    """
    if normalize:
        a = normalize_text(a)
        b = normalize_text(b)
    else:
        a = a or ""
        b = b or ""

    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return (longest - edit_distance(a, b)) / longest
