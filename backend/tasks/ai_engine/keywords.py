"""Keyword extraction shared by candidate retrieval and history fingerprints."""

import re
from typing import List

MIN_KEYWORD_LENGTH = 3
MAX_KEYWORDS = 10

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9\s]")

STOP_WORDS = frozenset([
    # Articles
    "a", "an", "the",
    # Pronouns
    "i", "me", "my", "myself", "we", "our", "ours", "ourselves",
    "you", "your", "yours", "yourself", "yourselves",
    "he", "him", "his", "himself", "she", "her", "hers", "herself",
    "it", "its", "itself", "they", "them", "their", "theirs", "themselves",
    "what", "which", "who", "whom", "this", "that", "these", "those",
    # Prepositions
    "in", "on", "at", "by", "for", "with", "about", "against", "between",
    "into", "through", "during", "before", "after", "above", "below",
    "to", "from", "up", "down", "out", "off", "over", "under",
    "again", "further", "then", "once",
    # Conjunctions
    "and", "but", "or", "nor", "so", "yet", "both", "either", "neither",
    "not", "only", "own", "same", "than", "too", "very",
    # Auxiliary verbs
    "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "having", "do", "does", "did", "doing",
    "would", "should", "could", "ought", "will", "shall", "can",
    "may", "might", "must",
    # Generic task words
    "task", "tasks", "todo", "item", "items", "work", "need", "needs",
    "make", "get", "got", "go", "going", "went", "thing", "things",
    "some", "any", "all", "each", "every", "more", "most", "other",
    "such", "no", "just", "also",
])


def extract_keywords(text: str) -> List[str]:
    """
    Return up to ten distinct keywords from ``text`` in first-seen order.

    An empty result means keyword retrieval is impossible; callers return an
    empty result set instead of matching everything.
    """
    if not text or not text.strip():
        return []

    normalized = _NON_ALPHANUMERIC.sub(" ", text.lower())

    keywords: List[str] = []
    seen = set()
    for word in normalized.split():
        if len(word) < MIN_KEYWORD_LENGTH or word in STOP_WORDS or word in seen:
            continue
        seen.add(word)
        keywords.append(word)
        if len(keywords) == MAX_KEYWORDS:
            break

    return keywords
