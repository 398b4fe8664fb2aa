"""Keyword extraction for statistical tool scoring and keyword-weight training."""
import re
from typing import List

_PUNCTUATION = re.compile(r"[^\w\s]")


def extract_keywords(text: str, min_length: int = 3) -> List[str]:
    """
    Lowercased words of at least ``min_length`` characters, punctuation stripped.

    Order of first appearance is kept and duplicates are dropped.
    """
    if not text:
        return []
    cleaned = _PUNCTUATION.sub(" ", text.lower())
    seen = []
    for word in cleaned.split():
        if len(word) >= min_length and word not in seen:
            seen.append(word)
    return seen
