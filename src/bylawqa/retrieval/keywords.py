"""Keyword extraction and lexical scoring used to rerank vector matches."""

import re

# Vector similarity dominates; keyword overlap nudges ties
VECTOR_WEIGHT = 0.7
KEYWORD_WEIGHT = 0.3

STOP_WORDS = frozenset({
    "a", "an", "the", "in", "on", "at", "of", "for", "to", "with", "by",
    "and", "or", "but", "if", "then", "else", "when", "up", "down",
    "is", "are", "was", "were", "be", "been", "being", "have", "has", "had",
    "do", "does", "did", "shall", "will", "should", "would", "may", "might",
    "must", "can", "could",
})

_PUNCTUATION = re.compile(r"[^\w\s]", re.ASCII)
_WHITESPACE = re.compile(r"\s+")
_BYLAW_REFERENCE = re.compile(r"bylaw\s+(?:no\.?\s*)?(\d{4})", re.IGNORECASE)


def extract_keywords(query: str, stop_words: frozenset[str] = STOP_WORDS) -> list[str]:
    """Lowercase, strip punctuation, drop stop words and tokens of two chars or less.

    Order of first appearance is kept; duplicates are dropped.
    """
    if not query:
        return []
    cleaned = _WHITESPACE.sub(" ", _PUNCTUATION.sub(" ", query.lower())).strip()
    keywords: dict[str, None] = {}
    for word in cleaned.split(" "):
        if len(word) > 2 and word not in stop_words:
            keywords.setdefault(word)
    return list(keywords)


def keyword_score(query: str, passage: str) -> float:
    """Fraction of query keywords that occur as substrings of the passage."""
    keywords = extract_keywords(query)
    if not keywords:
        return 0.0
    text = passage.lower()
    hits = sum(1 for kw in keywords if kw in text)
    return hits / len(keywords)


def position_weighted_score(query: str, passage: str) -> float:
    """Match rate blended with how early the keywords first appear.

    0.7 * match_rate + 0.3 * (1 - mean first-hit position / passage length).
    """
    keywords = extract_keywords(query)
    text = passage.lower()
    if not keywords or not text:
        return 0.0

    matches = 0
    total_position = 0
    for kw in keywords:
        pos = text.find(kw)
        if pos != -1:
            matches += 1
            total_position += pos

    if matches == 0:
        return 0.0

    match_rate = matches / len(keywords)
    position_score = 1 - total_position / (len(text) * matches)
    return 0.7 * match_rate + 0.3 * position_score


def extract_bylaw_references(query: str) -> list[str]:
    """Bylaw numbers named explicitly in the query ("Bylaw No. 4742", "bylaw 3210")."""
    seen: dict[str, None] = {}
    for match in _BYLAW_REFERENCE.finditer(query or ""):
        seen.setdefault(match.group(1))
    return list(seen)


def blend_scores(vector_score: float, kw_score: float) -> float:
    return VECTOR_WEIGHT * vector_score + KEYWORD_WEIGHT * kw_score
