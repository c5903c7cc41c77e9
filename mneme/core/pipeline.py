"""
mneme Answer Pipeline

The single "ask" entry point. One invocation moves through:

    RECEIVED -> KEYWORDS_EXTRACTED -> RETRIEVED -> EXPANDED -> CACHE_CHECKED
        -> CACHE_HIT -> DONE
        -> SYNTHESIZED -> CACHED -> DONE

The answer cache is consulted after retrieval because every entry carries a
hash of the retrieved note ids as its context, and only lookups with the
same context may match it: an answer cached before a relevant note existed
stops matching once that note is retrieved. A hit therefore saves
the generation call, not the store queries.

No lock is held across any step; concurrent asks for equivalent questions
may both miss and both generate.
"""

import hashlib
import logging
import re
import threading
import time
from enum import Enum
from typing import Optional

from mneme.config import MnemeConfig
from mneme.core.cache import SemanticCache
from mneme.core.graph import expand_context
from mneme.core.keywords import extract_keywords
from mneme.core.retrieval import RelevanceRanker
from mneme.core.synthesis import AnswerSynthesizer, NO_MEMORIES_ANSWER, is_cacheable
from mneme.models import AnswerResult, ScoredNote, SourceReference
from mneme.protocols import MemoryStore, RelationshipStore

logger = logging.getLogger(__name__)

ANSWERS_NAMESPACE = "answers"
MAX_SOURCES_LIMIT = 20
CONTEXT_HASH_LENGTH = 12

_SAFE_OWNER_RE = re.compile(r"^[\w.+-]{1,64}$")


class QuestionValidationError(ValueError):
    """The question is blank or outside the allowed length."""


class PipelineState(Enum):
    RECEIVED = "received"
    KEYWORDS_EXTRACTED = "keywords_extracted"
    RETRIEVED = "retrieved"
    EXPANDED = "expanded"
    CACHE_CHECKED = "cache_checked"
    CACHE_HIT = "cache_hit"
    SYNTHESIZED = "synthesized"
    CACHED = "cached"
    DONE = "done"


# ============================================================================
# CONFIDENCE
# ============================================================================

def confidence(ranked: list[ScoredNote], count_bonus: bool = False) -> float:
    """
    Mean relevance of the directly retrieved notes, clamped to [0, 1].

    With count_bonus, min(0.2, 0.05 * n) is added before clamping.
    Monotonic in both the mean score and the result count.
    """
    if not ranked:
        return 0.0
    mean = sum(max(0.0, min(1.0, s.score)) for s in ranked) / len(ranked)
    if count_bonus:
        mean += min(0.2, 0.05 * len(ranked))
    return min(1.0, mean)


def context_hash(notes: list[ScoredNote]) -> str:
    """Stable short hash of the set of note ids an answer was built from."""
    ids = sorted({s.note.id for s in notes})
    digest = hashlib.sha256("|".join(ids).encode("utf-8")).hexdigest()
    return digest[:CONTEXT_HASH_LENGTH]


def answer_namespace(owner_id: str, partition_by_owner: bool = True) -> str:
    """Cache namespace holding one owner's answers."""
    if not partition_by_owner:
        return ANSWERS_NAMESPACE
    if _SAFE_OWNER_RE.match(owner_id):
        return f"{ANSWERS_NAMESPACE}@{owner_id}"
    # Owner ids with glob or separator characters never reach a key
    return f"{ANSWERS_NAMESPACE}@{hashlib.sha1(owner_id.encode('utf-8')).hexdigest()[:16]}"


# ============================================================================
# PIPELINE
# ============================================================================

class AnswerPipeline:
    """Composes ranking, expansion, caching and synthesis into ask()."""

    def __init__(
        self,
        config: MnemeConfig,
        memory_store: MemoryStore,
        relationship_store: RelationshipStore,
        ranker: RelevanceRanker,
        synthesizer: AnswerSynthesizer,
        cache: SemanticCache,
    ):
        self.config = config
        self.memory_store = memory_store
        self.relationship_store = relationship_store
        self.ranker = ranker
        self.synthesizer = synthesizer
        self.cache = cache

    def validate(self, question: str) -> str:
        if question is None or not question.strip():
            raise QuestionValidationError("Question must not be blank")
        question = question.strip()
        if len(question) < self.config.question_min_length:
            raise QuestionValidationError(
                f"Question must be at least {self.config.question_min_length} characters"
            )
        if len(question) > self.config.question_max_length:
            raise QuestionValidationError(
                f"Question must be at most {self.config.question_max_length} characters"
            )
        return question

    def _enter(self, state: PipelineState, request_id: str) -> PipelineState:
        logger.debug("ask[%s] -> %s", request_id, state.value)
        return state

    def ask(
        self,
        question: str,
        owner_id: str,
        include_related: bool = True,
        max_sources: Optional[int] = None,
        cancel: Optional[threading.Event] = None,
    ) -> AnswerResult:
        """
        Answer a question from one owner's notes.

        Args:
            question: 3-500 characters after stripping
            owner_id: Only this owner's notes are read
            include_related: Add graph-connected notes to the context
            max_sources: Cap on returned sources (1-20, default from config)
            cancel: Set to abort intent expansion and generation retries early

        Raises:
            QuestionValidationError: blank or out-of-range question
        """
        question = self.validate(question)
        if not owner_id:
            raise QuestionValidationError("Owner id is required")
        if max_sources is None:
            max_sources = self.config.max_sources
        max_sources = max(1, min(max_sources, MAX_SOURCES_LIMIT))

        start = time.perf_counter()
        request_id = hashlib.sha1(f"{owner_id}:{question}:{start}".encode("utf-8")).hexdigest()[:8]
        self._enter(PipelineState.RECEIVED, request_id)
        logger.info("Processing question for owner %s: %r", owner_id, question)

        keywords = extract_keywords(question, self.config.keyword_count)
        self._enter(PipelineState.KEYWORDS_EXTRACTED, request_id)
        logger.debug("Question keywords: %s", keywords)

        ranked = self.ranker.rank(
            question, owner_id, self.config.retrieval_limit, keywords=keywords, cancel=cancel
        )
        self._enter(PipelineState.RETRIEVED, request_id)

        expanded: list[ScoredNote] = []
        if include_related and self.config.expansion_enabled and ranked:
            expanded = expand_context(
                ranked,
                owner_id,
                self.memory_store,
                self.relationship_store,
                decay=self.config.expansion_decay,
            )
        self._enter(PipelineState.EXPANDED, request_id)

        score = confidence(ranked, self.config.confidence_count_bonus)
        answer: Optional[str] = None
        cached = False

        if not ranked:
            answer = NO_MEMORIES_ANSWER
        else:
            namespace = answer_namespace(owner_id, self.config.cache_partition_by_owner)
            ctx = context_hash(ranked + expanded)

            lookup = self.cache.lookup(namespace, question, context=ctx)
            self._enter(PipelineState.CACHE_CHECKED, request_id)

            if lookup.hit:
                self._enter(PipelineState.CACHE_HIT, request_id)
                logger.info("Using cached answer (similarity: %.2f)", lookup.similarity)
                answer = lookup.value
                cached = True
            else:
                answer = self.synthesizer.synthesize(
                    question, ranked, expanded, confidence=score, cancel=cancel
                )
                self._enter(PipelineState.SYNTHESIZED, request_id)
                stored = is_cacheable(answer) and self.cache.store(
                    namespace, question, answer, score, context=ctx
                )
                if stored:
                    self._enter(PipelineState.CACHED, request_id)

        self._enter(PipelineState.DONE, request_id)
        logger.info(
            "Answered in %.1fms: %d sources, %d related, confidence=%.2f, cached=%s",
            (time.perf_counter() - start) * 1000, len(ranked), len(expanded), score, cached,
        )

        return AnswerResult(
            question=question,
            answer=answer,
            confidence=score,
            sources=[
                SourceReference(note_id=s.note.id, title=s.note.title, score=s.score)
                for s in ranked[:max_sources]
            ],
            related_note_ids=[s.note.id for s in expanded],
            cached=cached,
        )

    # ------------------------------------------------------------------
    # cache administration
    # ------------------------------------------------------------------

    def clear_cache(self, namespace: str) -> int:
        return self.cache.clear(namespace)

    def cache_stats(self, namespace: str) -> dict:
        return self.cache.stats(namespace)
