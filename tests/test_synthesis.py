"""Tests for answer synthesis: prompt, retry/backoff, fallbacks, template."""

import threading

import pytest

from mneme.core.synthesis import (
    EMPTY_ANSWER,
    ERROR_ANSWER,
    NO_MEMORIES_ANSWER,
    NOT_CONFIGURED_ANSWER,
    OVERLOADED_ANSWER,
    AnswerSynthesizer,
    build_prompt,
    complete_with_retry,
    is_cacheable,
    question_type,
    template_answer,
)
from mneme.models import Note, ScoredNote
from mneme.protocols import GenerationError, GenerationRateLimited, GenerationUnavailable


# ============================================================================
# MOCK PROVIDERS
# ============================================================================

class ScriptedGenerator:
    """Plays back a script of results; exceptions in the script are raised."""

    def __init__(self, *script):
        self.script = list(script)
        self.prompts = []

    @property
    def call_count(self):
        return len(self.prompts)

    def complete(self, prompt):
        self.prompts.append(prompt)
        item = self.script.pop(0) if self.script else "default answer"
        if isinstance(item, BaseException):
            raise item
        return item


class RecordingSleep:
    def __init__(self):
        self.delays = []

    def __call__(self, seconds):
        self.delays.append(seconds)


def _scored(title, body, score=0.8, importance=5, note_id=None):
    note = Note(id=note_id or f"note_{title.lower().replace(' ', '_')}", owner_id="alice",
                title=title, body=body, importance=importance)
    return ScoredNote(note, score)


RANKED = [
    _scored("Rust ownership", "Every value has a single owner. Moves transfer ownership.", 0.9, 8),
    _scored("Borrow checker", "References must not outlive data.", 0.6, 6),
]
EXPANDED = [_scored("Lifetimes", "Annotations describe how long references live.", 0.5)]


# ============================================================================
# prompt
# ============================================================================

class TestPrompt:
    def test_contains_notes_related_and_instruction(self):
        prompt = build_prompt("What is ownership?", RANKED, EXPANDED)
        assert "- Rust ownership: Every value has a single owner." in prompt
        assert "- Borrow checker: References must not outlive data." in prompt
        assert "- (related) Lifetimes:" in prompt
        assert "based ONLY on the provided memories" in prompt
        assert "I don't have enough information in your memories to answer that." in prompt
        assert prompt.rstrip().endswith("ANSWER:")

    def test_no_related_section_without_expanded(self):
        assert "RELATED MEMORIES" not in build_prompt("q?", RANKED, [])


# ============================================================================
# complete_with_retry
# ============================================================================

class TestRetry:
    def test_success_first_try(self):
        gen = ScriptedGenerator("hello")
        sleep = RecordingSleep()
        assert complete_with_retry(gen, "p", sleep=sleep) == "hello"
        assert sleep.delays == []

    def test_exponential_backoff_then_success(self):
        gen = ScriptedGenerator(GenerationUnavailable("503"), GenerationRateLimited("429"), "ok")
        sleep = RecordingSleep()
        assert complete_with_retry(gen, "p", max_attempts=3, initial_backoff=1.0, sleep=sleep) == "ok"
        assert gen.call_count == 3
        assert sleep.delays == [1.0, 2.0]

    def test_exhaustion_raises_last_error(self):
        gen = ScriptedGenerator(*[GenerationUnavailable("503")] * 3)
        sleep = RecordingSleep()
        with pytest.raises(GenerationUnavailable):
            complete_with_retry(gen, "p", max_attempts=3, sleep=sleep)
        assert gen.call_count == 3
        assert sleep.delays == [1.0, 2.0]

    def test_other_errors_not_retried(self):
        gen = ScriptedGenerator(KeyError("bad payload"))
        sleep = RecordingSleep()
        with pytest.raises(KeyError):
            complete_with_retry(gen, "p", sleep=sleep)
        assert gen.call_count == 1
        assert sleep.delays == []

    def test_cancel_during_backoff(self):
        cancel = threading.Event()

        class CancellingGenerator:
            calls = 0

            def complete(self, prompt):
                self.calls += 1
                cancel.set()
                raise GenerationUnavailable("503")

        gen = CancellingGenerator()
        with pytest.raises(GenerationError):
            complete_with_retry(gen, "p", max_attempts=3, initial_backoff=30.0, cancel=cancel)
        assert gen.calls == 1


# ============================================================================
# AnswerSynthesizer
# ============================================================================

class TestSynthesizer:
    def test_no_notes_skips_generation(self):
        gen = ScriptedGenerator("should not be used")
        synth = AnswerSynthesizer(gen)
        assert synth.synthesize("What is ownership?", [], []) == NO_MEMORIES_ANSWER
        assert gen.call_count == 0

    def test_returns_generated_text_stripped(self):
        gen = ScriptedGenerator("  Values have one owner.\n")
        assert AnswerSynthesizer(gen).synthesize("q?", RANKED, EXPANDED) == "Values have one owner."

    def test_overload_after_retries(self):
        gen = ScriptedGenerator(*[GenerationUnavailable("529")] * 3)
        sleep = RecordingSleep()
        synth = AnswerSynthesizer(gen, max_attempts=3, initial_backoff=1.0, sleep=sleep)
        assert synth.synthesize("q?", RANKED, []) == OVERLOADED_ANSWER
        assert gen.call_count == 3
        assert sleep.delays == [1.0, 2.0]

    def test_generic_error_no_retry(self):
        gen = ScriptedGenerator(RuntimeError("boom"))
        sleep = RecordingSleep()
        synth = AnswerSynthesizer(gen, sleep=sleep)
        assert synth.synthesize("q?", RANKED, []) == ERROR_ANSWER
        assert gen.call_count == 1
        assert sleep.delays == []

    @pytest.mark.parametrize("payload", ["", "   \n", None])
    def test_empty_payload(self, payload):
        gen = ScriptedGenerator(payload)
        assert AnswerSynthesizer(gen).synthesize("q?", RANKED, []) == EMPTY_ANSWER

    def test_cancelled_returns_overload_message(self):
        cancel = threading.Event()
        cancel.set()
        gen = ScriptedGenerator("never")
        synth = AnswerSynthesizer(gen)
        assert synth.synthesize("q?", RANKED, [], cancel=cancel) == OVERLOADED_ANSWER
        assert gen.call_count == 0

    def test_not_configured(self):
        assert AnswerSynthesizer(None).synthesize("q?", RANKED, []) == NOT_CONFIGURED_ANSWER

    def test_template_when_not_configured_and_enabled(self):
        synth = AnswerSynthesizer(None, template_fallback=True)
        answer = synth.synthesize("What is ownership?", RANKED, EXPANDED, confidence=0.75)
        assert answer.startswith("Based on your memories, here's what I found:")


# ============================================================================
# template + cacheability
# ============================================================================

class TestTemplate:
    @pytest.mark.parametrize("question,expected", [
        ("What is Rust?", "what"),
        ("Why did the build fail?", "why"),
        ("How do lifetimes work?", "how"),
        ("When did I start?", "when"),
        ("Who owns Atlas?", "who"),
        ("List my Rust notes", "list"),
        ("Rust ownership", "general"),
    ])
    def test_question_type(self, question, expected):
        assert question_type(question) == expected

    def test_template_layout(self):
        answer = template_answer("Why ownership?", RANKED, EXPANDED, confidence=0.75)
        lines = answer.splitlines()
        assert lines[0] == "Looking at your memories for the reasons:"
        assert '  (from: "Rust ownership", importance: 8/10)' in lines
        assert "Related memories:" in lines
        assert "  → Lifetimes" in lines
        assert "Low confidence" not in answer

    def test_template_low_confidence_note(self):
        answer = template_answer("Rust?", RANKED, [], confidence=0.1)
        assert answer.startswith("From your memories:")
        assert "Low confidence match" in answer

    def test_template_limits(self):
        ranked = [_scored(f"Note {i}", f"Sentence number {i} about rust.", note_id=f"n{i}") for i in range(8)]
        related = [_scored(f"Rel {i}", "x", note_id=f"r{i}") for i in range(6)]
        answer = template_answer("rust?", ranked, related)
        assert answer.count("(from: ") == 5
        assert answer.count("  → ") == 3

    def test_template_without_notes(self):
        assert template_answer("q?", [], []) == NO_MEMORIES_ANSWER

    @pytest.mark.parametrize("answer,expected", [
        ("Values have one owner.", True),
        (OVERLOADED_ANSWER, False),
        (ERROR_ANSWER, False),
        (NO_MEMORIES_ANSWER, False),
        (NOT_CONFIGURED_ANSWER, False),
        (EMPTY_ANSWER, False),
        ("I don't have enough information in your memories to answer that.", False),
        ("", False),
    ])
    def test_is_cacheable(self, answer, expected):
        assert is_cacheable(answer) is expected
