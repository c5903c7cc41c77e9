"""
RAKE keyword extraction.

Rapid Automatic Keyword Extraction: candidate phrases are maximal runs of
non-stop-words inside a sentence; each word is scored by
(degree + frequency) / frequency and a phrase scores the sum of its words.
"""

import re

STOP_WORDS = frozenset({
    "a", "about", "above", "after", "again", "against", "all", "also", "am", "an",
    "and", "are", "as", "at", "be", "because", "been", "before", "being", "below",
    "between", "but", "by", "can", "come", "could", "dare", "did", "do", "does",
    "doing", "don", "down", "during", "each", "few", "for", "from", "further",
    "get", "go", "got", "had", "has", "have", "having", "he", "her", "here",
    "hers", "herself", "him", "himself", "his", "how", "i", "if", "in", "into",
    "is", "it", "its", "itself", "just", "know", "like", "look", "make", "may",
    "me", "might", "more", "most", "must", "my", "myself", "need", "no", "nor",
    "not", "now", "of", "off", "on", "once", "only", "or", "other", "ought",
    "our", "ours", "ourselves", "out", "over", "own", "s", "same", "see", "shall",
    "she", "should", "so", "some", "such", "t", "take", "than", "that", "the",
    "their", "theirs", "them", "themselves", "then", "there", "these", "they",
    "think", "this", "those", "through", "to", "too", "under", "until", "up",
    "use", "used", "very", "want", "was", "we", "were", "what", "when", "where",
    "which", "while", "who", "whom", "why", "will", "with", "would", "you",
    "your", "yours", "yourself", "yourselves",
})

_SENTENCE_DELIMITERS_RE = re.compile(r"[.!?;:\n\r]+")
_WORD_RE = re.compile(r"[a-z]+")


def _split_phrases(sentence: str) -> list[list[str]]:
    """Maximal runs of non-stop-words. Words of two letters or fewer are skipped."""
    phrases = []
    current: list[str] = []
    for word in _WORD_RE.findall(sentence):
        if word in STOP_WORDS:
            if current:
                phrases.append(current)
                current = []
        elif len(word) > 2:
            current.append(word)
    if current:
        phrases.append(current)
    return phrases


def extract_keywords(text: str, top_n: int = 5) -> list[str]:
    """
    Return the top_n highest-scoring phrases of text.

    Ties keep first-encounter order, so output is stable for a given input.
    Blank input returns [].
    """
    if not text or not text.strip() or top_n <= 0:
        return []

    phrases = []
    for sentence in _SENTENCE_DELIMITERS_RE.split(text.lower()):
        phrases.extend(_split_phrases(sentence))

    frequency: dict[str, int] = {}
    degree: dict[str, int] = {}
    for phrase in phrases:
        phrase_degree = len(phrase) - 1
        for word in phrase:
            frequency[word] = frequency.get(word, 0) + 1
            degree[word] = degree.get(word, 0) + phrase_degree

    word_score = {w: (degree[w] + f) / f for w, f in frequency.items()}

    # dicts keep insertion order: first occurrence decides tie position
    phrase_scores: dict[str, float] = {}
    for phrase in phrases:
        key = " ".join(phrase)
        score = sum(word_score[w] for w in phrase)
        if key not in phrase_scores or score > phrase_scores[key]:
            phrase_scores[key] = score

    ranked = sorted(phrase_scores.items(), key=lambda item: item[1], reverse=True)
    return [phrase for phrase, _ in ranked[:top_n]]
