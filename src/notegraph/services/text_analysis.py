"""Keyword extraction and text similarity.

Every function here is total over arbitrary strings: empty or
punctuation-only input yields an empty keyword list or a similarity of 0.0.
"""

import math
import re
from collections import Counter
from typing import AbstractSet, FrozenSet, List

# Runs of characters that are not letters, digits or underscore
_NON_WORD = re.compile(r"\W+")

STOP_WORDS: FrozenSet[str] = frozenset(
    [
        "i", "me", "my", "myself", "we", "our", "ours", "ourselves", "you",
        "your", "yours", "yourself", "yourselves", "he", "him", "his",
        "himself", "she", "her", "hers", "herself", "it", "its", "itself",
        "they", "them", "their", "theirs", "themselves", "what", "which",
        "who", "whom", "this", "that", "these", "those", "am", "is", "are",
        "was", "were", "be", "been", "being", "have", "has", "had", "having",
        "do", "does", "did", "doing", "a", "an", "the", "and", "but", "if",
        "or", "because", "as", "until", "while", "of", "at", "by", "for",
        "with", "about", "against", "between", "into", "through", "during",
        "before", "after", "above", "below", "to", "from", "up", "down", "in",
        "out", "on", "off", "over", "under", "again", "further", "then",
        "once", "here", "there", "when", "where", "why", "how", "all", "any",
        "both", "each", "few", "more", "most", "other", "some", "such", "no",
        "nor", "not", "only", "own", "same", "so", "than", "too", "very", "s",
        "t", "can", "will", "just", "don", "should", "now",
    ]
)


def tokenize(text: str) -> List[str]:
    """Split text into lowercase word tokens, dropping empty pieces."""
    if not text:
        return []
    return [token for token in _NON_WORD.split(text.lower()) if token]


def token_set(text: str) -> FrozenSet[str]:
    """Distinct lowercase tokens of ``text``."""
    return frozenset(tokenize(text))


def extract_keywords(text: str, max_keywords: int = 10) -> List[str]:
    """Return the most frequent significant terms of ``text``.

    Tokens of two characters or fewer and English stop words are ignored.
    Terms are ranked by descending frequency; ties keep the order in which
    the terms first appear.

    Args:
        text: Raw note text.
        max_keywords: Maximum number of terms to return.

    Returns:
        Up to ``max_keywords`` lowercase terms.
    """
    if max_keywords <= 0:
        return []
    words = (
        word
        for word in tokenize(text)
        if len(word) > 2 and word not in STOP_WORDS
    )
    # Counter preserves first-seen order and most_common() is a stable sort
    return [word for word, _ in Counter(words).most_common(max_keywords)]


def jaccard(tokens_a: AbstractSet[str], tokens_b: AbstractSet[str]) -> float:
    """Intersection over union of two token sets; 0.0 when both are empty."""
    union = len(tokens_a | tokens_b)
    if union == 0:
        return 0.0
    return len(tokens_a & tokens_b) / union


def overlap_similarity(text_a: str, text_b: str) -> float:
    """Word-set overlap between two texts, in [0, 1].

    Used as the strength of note connections.
    """
    return jaccard(token_set(text_a), token_set(text_b))


def cosine_similarity(text_a: str, text_b: str) -> float:
    """Cosine of the term-frequency vectors of two texts, in [0, 1].

    Only tokens longer than two characters count. Used to detect overlap
    between category names.
    """
    counts_a = Counter(word for word in tokenize(text_a) if len(word) > 2)
    counts_b = Counter(word for word in tokenize(text_b) if len(word) > 2)
    if not counts_a or not counts_b:
        return 0.0

    dot = sum(count * counts_b[word] for word, count in counts_a.items())
    squared_a = sum(count * count for count in counts_a.values())
    squared_b = sum(count * count for count in counts_b.values())
    if squared_a == 0 or squared_b == 0:
        return 0.0

    # Integer products keep identical texts at exactly 1.0
    return min(1.0, max(0.0, dot / math.sqrt(squared_a * squared_b)))
