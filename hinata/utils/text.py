"""
Lexical helpers shared by the stores.

Similarity and keyword extraction are purely lexical. There is no
embedding model behind any of these functions.
"""

import re
from collections import Counter

_PUNCTUATION = re.compile(r"[^\w\s]")


def index_tokens(text: str) -> set[str]:
    """Lower-cased whitespace tokens longer than two characters, as used by the text index."""
    return {word for word in text.lower().split() if len(word) > 2}


def word_set(text: str) -> set[str]:
    """Lower-cased whitespace tokens of any length."""
    return set(text.lower().split())


def jaccard(a: set, b: set) -> float:
    """Jaccard index of two sets. Two empty sets score 0."""
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def keyword_counts(content: str, limit: int = 10, min_length: int = 4) -> list[tuple[str, int]]:
    """
    Frequency-ranked keywords with their counts.

    Punctuation is stripped, words are lower-cased and words shorter than
    ``min_length`` are dropped. Ties keep first-occurrence order.

    Args:
        content: Free text
        limit: Maximum number of keywords
        min_length: Minimum word length to keep

    Returns:
        (keyword, count) pairs, most frequent first
    """
    counts = Counter(word for word in words(content) if len(word) >= min_length)
    # Counter preserves insertion order and most_common is a stable sort
    return counts.most_common(limit)


def extract_keywords(content: str, limit: int = 10, min_length: int = 4) -> list[str]:
    """Frequency-ranked keywords, most frequent first."""
    return [word for word, _ in keyword_counts(content, limit, min_length)]


def words(content: str) -> list[str]:
    """Lower-cased words with punctuation stripped."""
    return _PUNCTUATION.sub(" ", content.lower()).split()


def matches_all_terms(blob: str, query: str) -> bool:
    """AND-of-terms substring match. An empty query matches everything."""
    haystack = blob.lower()
    return all(term in haystack for term in query.lower().split())
