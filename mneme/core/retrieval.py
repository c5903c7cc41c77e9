"""
mneme Relevance Ranking

Keyword-driven full-text retrieval over an owner's notes, with a substring
fallback when the ranked query cannot run. Each candidate's final score is
max(text rank, cosine(question, title + body)).

Search implementations are strategies selected by name from config:
    fulltext  -> FullTextStrategy (falls back to substring on failure)
    substring -> SubstringFallbackStrategy
"""

import logging
import re
import threading
from typing import Optional, Protocol

from mneme.core.db import _sanitize_fts_term
from mneme.core.keywords import STOP_WORDS, extract_keywords
from mneme.core.similarity import cosine
from mneme.models import ScoredNote
from mneme.protocols import IntentExpander, MemoryStore

logger = logging.getLogger(__name__)

MAX_RETRIEVAL_LIMIT = 200

_WORD_RE = re.compile(r"\w+")


class RetrievalFailure(Exception):
    """The ranked query could not be executed."""


# ============================================================================
# SEARCH EXPRESSION
# ============================================================================

def _quote(term: str) -> Optional[str]:
    clean = _sanitize_fts_term(term)
    return f'"{clean}"' if clean else None


def _clause(keyword: str) -> Optional[str]:
    """One keyword as an FTS5 clause; multi-word keywords become an AND group."""
    words = [q for q in (_quote(w) for w in keyword.split()) if q]
    if not words:
        return None
    if len(words) == 1:
        return words[0]
    return "(" + " AND ".join(words) + ")"


def significant_words(question: str) -> list[str]:
    """Lowercase question words longer than two characters, minus stop words."""
    words = []
    for w in _WORD_RE.findall(question.lower()):
        if len(w) > 2 and w not in STOP_WORDS and w not in words:
            words.append(w)
    return words


def build_search_expression(keywords: list[str], question: str) -> str:
    """
    Disjunctive FTS5 expression from keywords plus the question's own words.

    "rust ownership" + "borrow checker?" ->
        ("rust" AND "ownership") OR "borrow" OR "checker"

    Returns "" when nothing searchable remains.
    """
    clauses: list[str] = []
    for term in list(keywords) + significant_words(question):
        clause = _clause(term.lower())
        if clause and clause not in clauses:
            clauses.append(clause)
    return " OR ".join(clauses)


# ============================================================================
# STRATEGIES
# ============================================================================

class SearchStrategy(Protocol):
    name: str

    def search(
        self,
        question: str,
        owner_id: str,
        limit: int,
        keywords: Optional[list[str]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> list[ScoredNote]:
        ...


class SubstringFallbackStrategy:
    """Whole-question substring match, scored purely by cosine similarity."""

    name = "substring"

    def __init__(self, memory_store: MemoryStore):
        self.memory_store = memory_store

    def search(
        self,
        question: str,
        owner_id: str,
        limit: int,
        keywords: Optional[list[str]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> list[ScoredNote]:
        needle = question.lower().strip()
        if not needle:
            return []
        notes = self.memory_store.find_active_by_owner_matching(owner_id, needle, limit)
        return [ScoredNote(note=n, score=cosine(question, n.text)) for n in notes]


class FullTextStrategy:
    """
    Ranked keyword search.

    Keywords come from RAKE over the question (or are handed in by the
    caller), optionally enriched by an intent expander. Any failure of the
    ranked query hands the request to the substring fallback.
    """

    name = "fulltext"

    def __init__(
        self,
        memory_store: MemoryStore,
        intent_expander: Optional[IntentExpander] = None,
        keyword_count: int = 5,
        fallback: Optional[SubstringFallbackStrategy] = None,
    ):
        self.memory_store = memory_store
        self.intent_expander = intent_expander
        self.keyword_count = keyword_count
        self.fallback = fallback or SubstringFallbackStrategy(memory_store)

    def gather_keywords(
        self,
        question: str,
        keywords: Optional[list[str]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> list[str]:
        if keywords is None:
            keywords = extract_keywords(question, self.keyword_count)
        else:
            keywords = list(keywords)
        if self.intent_expander is None:
            return keywords
        if cancel is not None and cancel.is_set():
            logger.debug("Cancelled, skipping intent expansion")
            return keywords

        try:
            extra = self.intent_expander.expand(question, cancel=cancel) or []
        except Exception:
            logger.debug("Intent expansion failed, using local keywords only", exc_info=True)
            extra = []

        for term in extra:
            term = term.strip().lower()
            if term and term not in keywords:
                keywords.append(term)
        return keywords

    def _ranked(
        self,
        question: str,
        owner_id: str,
        limit: int,
        keywords: Optional[list[str]],
        cancel: Optional[threading.Event],
    ) -> list[ScoredNote]:
        expression = build_search_expression(
            self.gather_keywords(question, keywords, cancel), question
        )
        logger.debug("Ranked search expression: %s", expression)
        if not expression:
            raise RetrievalFailure("no searchable terms in question")

        try:
            rows = self.memory_store.find_active_by_owner_ranked(owner_id, expression, limit)
        except Exception as exc:
            raise RetrievalFailure(str(exc)) from exc

        return [
            ScoredNote(note=note, score=max(rank, cosine(question, note.text)))
            for note, rank in rows
        ]

    def search(
        self,
        question: str,
        owner_id: str,
        limit: int,
        keywords: Optional[list[str]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> list[ScoredNote]:
        try:
            return self._ranked(question, owner_id, limit, keywords, cancel)
        except RetrievalFailure as exc:
            logger.warning("Full-text search failed, falling back to substring match: %s", exc)
            return self.fallback.search(question, owner_id, limit)


_STRATEGIES = {
    FullTextStrategy.name: FullTextStrategy,
    SubstringFallbackStrategy.name: SubstringFallbackStrategy,
}


def create_strategy(
    name: str,
    memory_store: MemoryStore,
    intent_expander: Optional[IntentExpander] = None,
    keyword_count: int = 5,
) -> SearchStrategy:
    """Factory for search strategies by configured name."""
    if name == FullTextStrategy.name:
        return FullTextStrategy(memory_store, intent_expander, keyword_count)
    if name == SubstringFallbackStrategy.name:
        return SubstringFallbackStrategy(memory_store)
    raise ValueError(
        f"Unknown search strategy {name!r}. Available: {', '.join(sorted(_STRATEGIES))}"
    )


# ============================================================================
# RANKER
# ============================================================================

class RelevanceRanker:
    """Runs a strategy and returns at most limit notes, best first. Never raises."""

    def __init__(self, strategy: SearchStrategy):
        self.strategy = strategy

    def rank(
        self,
        question: str,
        owner_id: str,
        limit: int = 10,
        keywords: Optional[list[str]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> list[ScoredNote]:
        """
        Args:
            keywords: Already-extracted question keywords; extracted here when None
            cancel: Set to skip or cut short intent expansion
        """
        limit = max(1, min(limit, MAX_RETRIEVAL_LIMIT))
        try:
            scored = self.strategy.search(question, owner_id, limit, keywords=keywords, cancel=cancel)
        except Exception:
            logger.warning("Search strategy %s failed", self.strategy.name, exc_info=True)
            return []

        for s in scored:
            s.score = max(0.0, min(1.0, s.score))
        # Stable sort keeps the store's importance order among equal scores
        scored.sort(key=lambda s: s.score, reverse=True)
        return scored[:limit]
