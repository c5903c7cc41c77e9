"""
mneme Answer Synthesis

Builds a grounded prompt from ranked and graph-expanded notes and calls the
generation backend with bounded retry. Never raises: every failure ends in
one of the fixed user-facing strings below.

Retry policy: GenerationError (overload, rate limit) is retried up to
max_attempts total, sleeping initial_backoff then doubling. Any other
exception fails immediately.
"""

import logging
import re
import threading
import time
from typing import Callable, Optional

from mneme.core.similarity import most_relevant_sentence
from mneme.models import ScoredNote
from mneme.protocols import GenerationBackend, GenerationError

logger = logging.getLogger(__name__)

NO_MEMORIES_ANSWER = (
    "I don't have any memories related to this question. "
    "Try creating some memories first with relevant information."
)
NOT_CONFIGURED_ANSWER = (
    "I am unable to generate an intelligent answer because the AI service is not configured."
)
EMPTY_ANSWER = "I couldn't generate an answer from the AI model."
OVERLOADED_ANSWER = "Sorry, the AI service is currently overloaded. Please try again later."
ERROR_ANSWER = "Sorry, I encountered an error while communicating with the AI service."
MISSING_INFO_ANSWER = "I don't have enough information in your memories to answer that."

# Markers of answers that must never be cached
_UNCACHEABLE_MARKERS = (
    "Sorry",
    "I don't have enough",
    NO_MEMORIES_ANSWER,
    NOT_CONFIGURED_ANSWER,
    EMPTY_ANSWER,
)

TEMPLATE_MAX_NOTES = 5
TEMPLATE_MAX_RELATED = 3
LOW_CONFIDENCE = 0.3

PROMPT_TEMPLATE = """You are a helpful personal memory assistant. You have access to the user's digital memories.
Answer the user's question based ONLY on the provided memories.
If the answer is not in the memories, say "{missing}"
Do not make up information.

USER MEMORIES:
{memories}
{related}
USER QUESTION:
{question}

ANSWER:
"""


class GenerationCancelled(GenerationError):
    """The caller's cancel signal fired while waiting to retry."""


def is_cacheable(answer: str) -> bool:
    """False for fallback and error strings."""
    return bool(answer) and not any(marker in answer for marker in _UNCACHEABLE_MARKERS)


def _clean(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def build_prompt(question: str, ranked: list[ScoredNote], expanded: list[ScoredNote]) -> str:
    memories = "\n".join(f"- {_clean(s.note.title)}: {_clean(s.note.body)}" for s in ranked)
    related = ""
    if expanded:
        lines = "\n".join(
            f"- (related) {_clean(s.note.title)}: {_clean(s.note.body)}" for s in expanded
        )
        related = f"\nRELATED MEMORIES:\n{lines}\n"
    return PROMPT_TEMPLATE.format(
        missing=MISSING_INFO_ANSWER,
        memories=memories,
        related=related,
        question=question.strip(),
    )


def complete_with_retry(
    backend: GenerationBackend,
    prompt: str,
    max_attempts: int = 3,
    initial_backoff: float = 1.0,
    cancel: Optional[threading.Event] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    """
    Call backend.complete with exponential backoff on GenerationError.

    Raises the last GenerationError once attempts run out, GenerationCancelled
    if cancel is set before an attempt or during a backoff wait, and lets any
    other exception through untouched.
    """
    attempts = max(1, max_attempts)
    delay = initial_backoff
    for attempt in range(1, attempts + 1):
        if cancel is not None and cancel.is_set():
            raise GenerationCancelled("cancelled before attempt %d" % attempt)
        try:
            return backend.complete(prompt)
        except GenerationError as exc:
            if attempt == attempts:
                raise
            logger.warning(
                "Generation overloaded or rate limited (attempt %d/%d), retrying in %.1fs: %s",
                attempt, attempts, delay, exc,
            )
            if cancel is not None:
                if cancel.wait(delay):
                    raise GenerationCancelled("cancelled during backoff") from exc
            else:
                sleep(delay)
            delay *= 2
    # unreachable: the loop either returns or raises
    raise GenerationError("no attempts made")


# ============================================================================
# TEMPLATED ANSWER
# ============================================================================

_OPENINGS = {
    "what": "Based on your memories, here's what I found:",
    "why": "Looking at your memories for the reasons:",
    "how": "Here's how, according to your memories:",
    "when": "From your memories, regarding timing:",
    "list": "Here are the relevant items from your memories:",
}


def question_type(question: str) -> str:
    q = question.strip().lower()
    for word in ("what", "why", "how", "when", "who"):
        if q.startswith(word):
            return word
    if "list" in q or "show" in q or "all" in q:
        return "list"
    return "general"


def template_answer(
    question: str,
    ranked: list[ScoredNote],
    expanded: list[ScoredNote],
    confidence: float = 1.0,
) -> str:
    """
    Answer without a model: the best-matching sentence of each top note,
    attributed to its title, plus up to three related titles.
    """
    if not ranked:
        return NO_MEMORIES_ANSWER

    lines = [_OPENINGS.get(question_type(question), "From your memories:"), ""]
    for scored in ranked[:TEMPLATE_MAX_NOTES]:
        note = scored.note
        lines.append(f"• {most_relevant_sentence(note.body, question)}")
        lines.append(f'  (from: "{note.title}", importance: {note.importance}/10)')
        lines.append("")

    if expanded:
        lines.append("---")
        lines.append("Related memories:")
        for related in expanded[:TEMPLATE_MAX_RELATED]:
            lines.append(f"  → {related.note.title}")

    if confidence < LOW_CONFIDENCE:
        lines.append("")
        lines.append("Note: Low confidence match. Consider adding more relevant memories.")

    return "\n".join(lines).rstrip() + "\n"


# ============================================================================
# SYNTHESIZER
# ============================================================================

class AnswerSynthesizer:
    """Turns ranked + expanded notes into an answer string."""

    def __init__(
        self,
        generator: Optional[GenerationBackend] = None,
        max_attempts: int = 3,
        initial_backoff: float = 1.0,
        template_fallback: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.generator = generator
        self.max_attempts = max_attempts
        self.initial_backoff = initial_backoff
        self.template_fallback = template_fallback
        self._sleep = sleep

    def synthesize(
        self,
        question: str,
        ranked: list[ScoredNote],
        expanded: list[ScoredNote],
        confidence: float = 1.0,
        cancel: Optional[threading.Event] = None,
    ) -> str:
        if not ranked:
            return NO_MEMORIES_ANSWER

        if self.generator is None:
            if self.template_fallback:
                return template_answer(question, ranked, expanded, confidence)
            logger.warning("No generation backend configured, returning fallback response")
            return NOT_CONFIGURED_ANSWER

        prompt = build_prompt(question, ranked, expanded)
        try:
            text = complete_with_retry(
                self.generator,
                prompt,
                max_attempts=self.max_attempts,
                initial_backoff=self.initial_backoff,
                cancel=cancel,
                sleep=self._sleep,
            )
        except GenerationCancelled:
            logger.warning("Generation cancelled by caller")
            return OVERLOADED_ANSWER
        except GenerationError:
            logger.error("Generation failed after %d attempts", self.max_attempts, exc_info=True)
            return OVERLOADED_ANSWER
        except Exception:
            logger.error("Error calling generation backend", exc_info=True)
            return ERROR_ANSWER

        if not isinstance(text, str) or not text.strip():
            return EMPTY_ANSWER
        return text.strip()
