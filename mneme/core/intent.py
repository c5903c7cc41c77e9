"""
LLM-backed intent expansion.

Asks the generation backend for lateral search terms ("list" -> collections,
arrays, streams) so retrieval finds notes that never use the question's
exact words. Results are cached in their own semantic-cache namespace as a
pipe-separated string, so rephrased questions skip the model call.

Expansion is an enrichment: every failure returns [].
"""

import logging
import threading
from typing import Optional

from mneme.core.cache import SemanticCache
from mneme.core.synthesis import complete_with_retry
from mneme.protocols import GenerationBackend

logger = logging.getLogger(__name__)

SEARCH_TERMS_NAMESPACE = "search-terms"
MAX_TERMS = 15

EXPANSION_PROMPT = """You are an intelligent memory retrieval assistant.
Your goal is to generate search terms that will find RELEVANT memories for the user's question, even if they don't use the exact same words.

Think laterally and associatively.
- If the user asks about a specific concept (e.g., "list"), include related higher-level concepts (e.g., "collections", "streams", "arrays") and connected topics.
- Include synonyms, technical terms, and broader contexts.

USER QUESTION:
{question}

OUTPUT FORMAT:
Return ONLY a pipe-separated list of terms. Example: term1|term 2|term3
Do not include any other text.
"""


def parse_terms(raw: str) -> list[str]:
    terms = []
    for part in (raw or "").split("|"):
        term = part.strip().strip("\"'`").strip()
        if term and term.lower() not in (t.lower() for t in terms):
            terms.append(term)
    return terms[:MAX_TERMS]


class LLMIntentExpander:
    """IntentExpander over a GenerationBackend with semantic caching."""

    def __init__(
        self,
        generator: GenerationBackend,
        cache: Optional[SemanticCache] = None,
        max_attempts: int = 3,
        initial_backoff: float = 1.0,
        namespace: str = SEARCH_TERMS_NAMESPACE,
    ):
        self.generator = generator
        self.cache = cache
        self.max_attempts = max_attempts
        self.initial_backoff = initial_backoff
        self.namespace = namespace

    def expand(self, question: str, cancel: Optional[threading.Event] = None) -> list[str]:
        if not question or not question.strip():
            return []

        if self.cache is not None:
            cached = self.cache.lookup(self.namespace, question)
            if cached.hit:
                logger.info("Using cached search terms (similarity: %.2f)", cached.similarity)
                return parse_terms(cached.value)

        try:
            raw = complete_with_retry(
                self.generator,
                EXPANSION_PROMPT.format(question=question.strip()),
                max_attempts=self.max_attempts,
                initial_backoff=self.initial_backoff,
                cancel=cancel,
            )
        except Exception as exc:
            logger.warning("Intent expansion failed: %s", exc)
            return []

        terms = parse_terms(raw if isinstance(raw, str) else "")
        logger.debug("Expanded %r to %s", question, terms)
        if terms and self.cache is not None:
            self.cache.store(self.namespace, question, "|".join(terms), 1.0)
        return terms
