"""
Text similarity primitives.

Token-set (Jaccard) and term-frequency (cosine) similarity used by the
relevance ranker, the semantic cache, and the template answer. Pure
functions, no state, no models.
"""

import math
import re
from collections import Counter
from typing import AbstractSet

_NON_WORD_RE = re.compile(r"\W+")
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")

MIN_TOKEN_LENGTH = 3
MIN_SENTENCE_LENGTH = 10
MAX_SENTENCE_LENGTH = 200


def tokenize(text: str) -> list[str]:
    """Lowercase word tokens longer than two characters."""
    if not text:
        return []
    return [w for w in _NON_WORD_RE.split(text.lower()) if len(w) >= MIN_TOKEN_LENGTH]


def jaccard(a: AbstractSet[str], b: AbstractSet[str]) -> float:
    """
    Intersection over union of two token sets.

    1.0 when both are empty, 0.0 when exactly one is.
    """
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def _term_frequency(text: str) -> dict[str, float]:
    counts = Counter(tokenize(text))
    total = sum(counts.values())
    if total == 0:
        return {}
    return {term: n / total for term, n in counts.items()}


def cosine(text_a: str, text_b: str) -> float:
    """Cosine similarity of normalized term-frequency vectors, in [0, 1]."""
    vec_a = _term_frequency(text_a)
    vec_b = _term_frequency(text_b)
    if not vec_a or not vec_b:
        return 0.0

    dot = sum(weight * vec_b.get(term, 0.0) for term, weight in vec_a.items())
    norm_a = math.sqrt(sum(w * w for w in vec_a.values()))
    norm_b = math.sqrt(sum(w * w for w in vec_b.values()))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    # Float error can push identical vectors a hair above 1.0
    return min(1.0, dot / (norm_a * norm_b))


def most_relevant_sentence(text: str, query: str) -> str:
    """
    Pick the sentence of text that best matches query.

    Sentences shorter than 10 characters are ignored. Falls back to the first
    sentence when nothing scores above zero. Truncated to 200 characters.
    """
    sentences = _SENTENCE_SPLIT_RE.split(text or "")
    best = ""
    best_score = 0.0

    for sentence in sentences:
        sentence = sentence.strip()
        if len(sentence) < MIN_SENTENCE_LENGTH:
            continue
        score = cosine(query, sentence)
        if score > best_score:
            best_score = score
            best = sentence

    if not best and sentences:
        best = sentences[0].strip()

    if len(best) > MAX_SENTENCE_LENGTH:
        best = best[: MAX_SENTENCE_LENGTH - 3] + "..."
    return best
