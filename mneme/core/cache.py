"""
mneme Semantic Cache

Maps a question's normalized keyword set, not its raw text, to a previously
computed value. Two tiers:

    L1  bounded in-process LRU with TTL (per worker)
    L2  shared CacheBackend with the same TTL, plus an inverted index
        token -> entry keys used to find candidates without listing
        every entry

A lookup unions the postings of the query's tokens, fetches the candidates
(L1 first, then one batched L2 round trip), and accepts the best Jaccard
match at or above the threshold. Entry keys are built from the sorted
tokens plus an optional context, so rephrasings that normalize identically
under the same context overwrite one entry. Entries stored under one
context are invisible to lookups carrying another.

Backend failures are never surfaced: lookups miss, stores are dropped.
"""

import json
import logging
import re
import threading
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Optional

from mneme.core.keywords import STOP_WORDS, extract_keywords
from mneme.core.similarity import jaccard
from mneme.protocols import CacheBackend, CacheBackendError

logger = logging.getLogger(__name__)

ENTRY_PREFIX = "semantic:entry"
INDEX_PREFIX = "semantic:index"

DEFAULT_THRESHOLD = 0.70
DEFAULT_TTL_SECONDS = 3600
DEFAULT_L1_MAX_SIZE = 1000
DEFAULT_MAX_CANDIDATES = 500

# Question filler that says nothing about intent
QUESTION_STOP_WORDS = frozenset({
    "did", "do", "does", "what", "when", "where", "which", "who", "why", "how",
    "is", "are", "was", "were", "will", "would", "could", "should", "can", "may",
    "i", "you", "we", "they", "he", "she", "it", "my", "your", "our", "their",
    "learn", "learned", "learning", "know", "knew", "knowing", "remember",
    "anything", "something", "nothing", "everything", "thing", "things",
    "related", "about", "regarding", "concerning", "to", "for", "with", "from",
    "a", "an", "the", "and", "or", "but", "have", "has", "had", "any", "some",
    "tell", "explain", "describe", "show", "give", "please",
    # "X's <noun> model" phrasing; lets "Rust's ownership model" match "Rust ownership"
    "model",
}) | STOP_WORDS

# Short tokens that carry meaning in technical questions
SHORT_TERMS = frozenset({
    "go", "ai", "db", "ml", "ui", "ux", "os", "js", "ts", "qa", "ci", "cd",
    "vm", "io", "c", "r", "c#", "f#",
})

_POSSESSIVE_RE = re.compile(r"['’]s\b")
_DISALLOWED_RE = re.compile(r"[^a-z0-9+#\s]")
_HAS_ALNUM_RE = re.compile(r"[a-z0-9]")
_NAMESPACE_RE = re.compile(r"^[\w.@+-]+$")


# ============================================================================
# NORMALIZATION
# ============================================================================

def _keep(token: str) -> bool:
    if token in SHORT_TERMS:
        return True
    return len(token) > 2 and token not in QUESTION_STOP_WORDS and bool(_HAS_ALNUM_RE.search(token))


def normalize_question(question: str) -> frozenset[str]:
    """
    Reduce a question to its intent fingerprint.

    Lowercase, drop possessive 's, strip punctuation except + and #
    (c++, c#), then keep tokens longer than two characters that are not
    stop words, plus allow-listed short terms. With fewer than two tokens
    the RAKE phrases of the raw question are merged in to boost recall.
    """
    if not question or not question.strip():
        return frozenset()

    text = _POSSESSIVE_RE.sub("", question.lower())
    text = _DISALLOWED_RE.sub(" ", text)
    tokens = {t for t in text.split() if _keep(t)}

    if len(tokens) < 2:
        for phrase in extract_keywords(question, 5):
            for word in phrase.split():
                if word not in QUESTION_STOP_WORDS:
                    tokens.add(word)

    return frozenset(tokens)


def _check_namespace(namespace: str, context: Optional[str] = None) -> None:
    if not namespace or not _NAMESPACE_RE.match(namespace):
        raise ValueError(
            f"Invalid cache namespace {namespace!r}: use letters, digits, and _ . @ + -"
        )
    if context is not None and not _NAMESPACE_RE.match(context):
        raise ValueError(f"Invalid cache context {context!r}")


def entry_key(namespace: str, tokens: frozenset[str], context: Optional[str] = None) -> str:
    key = f"{ENTRY_PREFIX}:{namespace}:{'_'.join(sorted(tokens))}"
    return f"{key}:ctx{context}" if context else key


def index_key(namespace: str, token: str) -> str:
    return f"{INDEX_PREFIX}:{namespace}:{token}"


# ============================================================================
# VALUE TYPES
# ============================================================================

@dataclass
class CacheEntry:
    original_question: str
    keywords: frozenset[str]
    value: str
    relevance_score: float = 1.0
    created_at: float = field(default_factory=time.time)
    # Only lookups carrying the same context may match this entry
    context: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps({
            "original_question": self.original_question,
            "keywords": sorted(self.keywords),
            "value": self.value,
            "relevance_score": self.relevance_score,
            "created_at": self.created_at,
            "context": self.context,
        })

    @classmethod
    def from_json(cls, raw: str) -> "CacheEntry":
        data = json.loads(raw)
        return cls(
            original_question=data["original_question"],
            keywords=frozenset(data["keywords"]),
            value=data["value"],
            relevance_score=data.get("relevance_score", 1.0),
            created_at=data.get("created_at", 0.0),
            context=data.get("context"),
        )


@dataclass(frozen=True)
class CacheLookup:
    hit: bool
    value: Optional[str] = None
    similarity: float = 0.0
    matched_question: Optional[str] = None

    @classmethod
    def miss(cls, similarity: float = 0.0) -> "CacheLookup":
        return cls(hit=False, similarity=similarity)


# ============================================================================
# L1 TIER
# ============================================================================

class L1Cache:
    """Bounded LRU with expire-after-write, safe for concurrent use."""

    def __init__(
        self,
        max_size: int = DEFAULT_L1_MAX_SIZE,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._data: "OrderedDict[str, tuple[CacheEntry, float]]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            item = self._data.get(key)
            if item is not None and item[1] <= self._clock():
                del self._data[key]
                item = None
            if item is None:
                self._misses += 1
                return None
            self._data.move_to_end(key)
            self._hits += 1
            return item[0]

    def put(self, key: str, entry: CacheEntry, expires_at: Optional[float] = None) -> None:
        """
        Insert or refresh key. expires_at caps the local TTL so an entry
        never outlives its copy in the shared tier.
        """
        if self.max_size <= 0:
            return
        with self._lock:
            deadline = self._clock() + self.ttl_seconds
            if expires_at is not None:
                deadline = min(deadline, expires_at)
            self._data[key] = (entry, deadline)
            self._data.move_to_end(key)
            while len(self._data) > self.max_size:
                self._data.popitem(last=False)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._data if k.startswith(prefix)]
            for k in doomed:
                del self._data[k]
        return len(doomed)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    @property
    def hit_rate(self) -> float:
        with self._lock:
            total = self._hits + self._misses
            return self._hits / total if total else 0.0


# ============================================================================
# SEMANTIC CACHE
# ============================================================================

class SemanticCache:
    """Two-tier approximate-match cache keyed by normalized keyword sets."""

    def __init__(
        self,
        backend: CacheBackend,
        threshold: float = DEFAULT_THRESHOLD,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        l1_max_size: int = DEFAULT_L1_MAX_SIZE,
        max_candidates: int = DEFAULT_MAX_CANDIDATES,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend
        self.threshold = threshold
        self.ttl_seconds = ttl_seconds
        self.max_candidates = max_candidates
        self.enabled = enabled
        # Wall clock: entry created_at stamps are shared across processes through L2
        self._clock = clock
        self.l1 = L1Cache(max_size=l1_max_size, ttl_seconds=ttl_seconds, clock=clock)
        self._cleanup = ThreadPoolExecutor(max_workers=1, thread_name_prefix="mneme-cache-cleanup")
        logger.info(
            "Semantic cache ready: threshold=%.2f ttl=%ds l1_max=%d",
            threshold, ttl_seconds, l1_max_size,
        )

    def normalize(self, question: str) -> frozenset[str]:
        return normalize_question(question)

    # ------------------------------------------------------------------
    # lookup
    # ------------------------------------------------------------------

    def lookup(self, namespace: str, question: str, context: Optional[str] = None) -> CacheLookup:
        """
        Best cached match for question in namespace, or a miss.

        With a context, only entries stored under the same context are
        eligible; similarity is still measured on the question tokens alone.
        """
        if not self.enabled:
            return CacheLookup.miss()
        try:
            _check_namespace(namespace, context)
        except ValueError as exc:
            logger.warning("Cache lookup skipped: %s", exc)
            return CacheLookup.miss()

        start = time.perf_counter()
        tokens = self.normalize(question)
        logger.debug("Normalized %r to %s", question, sorted(tokens))
        if not tokens:
            return CacheLookup.miss()

        posting_keys = [index_key(namespace, t) for t in sorted(tokens)]

        try:
            candidates = sorted(self.backend.union(posting_keys))
            if len(candidates) > self.max_candidates:
                logger.debug(
                    "Capping %d cache candidates to %d", len(candidates), self.max_candidates
                )
                candidates = candidates[: self.max_candidates]

            entries: list[CacheEntry] = []
            to_fetch: list[str] = []
            for key in candidates:
                cached = self.l1.get(key)
                if cached is not None:
                    entries.append(cached)
                else:
                    to_fetch.append(key)

            stale: list[str] = []
            if to_fetch:
                for key, raw in zip(to_fetch, self.backend.get_many(to_fetch)):
                    if raw is None:
                        stale.append(key)
                        continue
                    try:
                        entry = CacheEntry.from_json(raw)
                    except (ValueError, KeyError, TypeError):
                        logger.debug("Unreadable cache entry %s", key, exc_info=True)
                        stale.append(key)
                        continue
                    self.l1.put(key, entry, expires_at=entry.created_at + self.ttl_seconds)
                    entries.append(entry)
        except CacheBackendError as exc:
            logger.warning("Cache lookup failed, treating as miss: %s", exc)
            return CacheLookup.miss()

        if stale:
            self._schedule_prune(posting_keys, stale)

        best: Optional[CacheEntry] = None
        best_similarity = 0.0
        for entry in entries:
            if entry.context != context:
                continue
            similarity = jaccard(tokens, entry.keywords)
            if similarity > best_similarity:
                best_similarity = similarity
                best = entry

        elapsed_ms = (time.perf_counter() - start) * 1000
        if best is not None and best_similarity >= self.threshold:
            logger.info(
                "Cache HIT in %.1fms: similarity=%.2f for %r", elapsed_ms, best_similarity, question
            )
            return CacheLookup(
                hit=True,
                value=best.value,
                similarity=best_similarity,
                matched_question=best.original_question,
            )

        logger.debug("Cache MISS in %.1fms: best similarity=%.2f", elapsed_ms, best_similarity)
        return CacheLookup.miss(best_similarity)

    # ------------------------------------------------------------------
    # lazy index cleanup
    # ------------------------------------------------------------------

    def _schedule_prune(self, posting_keys: list[str], stale: list[str]) -> None:
        try:
            self._cleanup.submit(self._prune, posting_keys, stale)
        except RuntimeError:
            # executor already shut down
            logger.debug("Cache closed, skipping index cleanup")

    def _prune(self, posting_keys: list[str], stale: list[str]) -> None:
        logger.debug("Pruning %d stale keys from %d postings", len(stale), len(posting_keys))
        for posting_key in posting_keys:
            try:
                self.backend.remove_members(posting_key, stale)
            except CacheBackendError:
                logger.debug("Index cleanup failed for %s", posting_key, exc_info=True)

    # ------------------------------------------------------------------
    # store / clear / stats
    # ------------------------------------------------------------------

    def store(
        self,
        namespace: str,
        question: str,
        value: str,
        relevance_score: float = 1.0,
        context: Optional[str] = None,
    ) -> Optional[str]:
        """
        Cache value under question's keyword set. Returns the entry key,
        or None if nothing was stored.

        A context (e.g. a hash of the data the value was derived from) is
        part of the entry key and must match on lookup.
        """
        if not self.enabled:
            return None
        try:
            _check_namespace(namespace, context)
        except ValueError as exc:
            logger.warning("Cache store skipped: %s", exc)
            return None

        tokens = self.normalize(question)
        if not tokens:
            return None

        entry = CacheEntry(
            original_question=question,
            keywords=tokens,
            value=value,
            relevance_score=relevance_score,
            created_at=self._clock(),
            context=context,
        )
        key = entry_key(namespace, tokens, context)
        posting_keys = [index_key(namespace, t) for t in sorted(tokens)]

        try:
            self.backend.put_entry(key, entry.to_json(), posting_keys, self.ttl_seconds)
        except CacheBackendError as exc:
            logger.warning("Cache store failed: %s", exc)
            return None

        self.l1.put(key, entry, expires_at=entry.created_at + self.ttl_seconds)
        logger.info("Stored in cache %r: keywords=%s", namespace, sorted(tokens))
        return key

    def clear(self, namespace: str) -> int:
        """
        Remove every entry and posting of namespace. Returns keys deleted.

        Raises ValueError for an invalid namespace.
        """
        _check_namespace(namespace)
        removed = 0
        for prefix in (ENTRY_PREFIX, INDEX_PREFIX):
            batch: list[str] = []
            try:
                for key in self.backend.scan(f"{prefix}:{namespace}:*"):
                    batch.append(key)
                    if len(batch) >= 500:
                        self.backend.delete(batch)
                        removed += len(batch)
                        batch = []
                if batch:
                    self.backend.delete(batch)
                    removed += len(batch)
            except CacheBackendError as exc:
                logger.warning("Cache clear of %r incomplete: %s", namespace, exc)
        self.l1.invalidate_prefix(f"{ENTRY_PREFIX}:{namespace}:")
        logger.info("Cleared cache %r (%d keys)", namespace, removed)
        return removed

    def stats(self, namespace: str) -> dict:
        _check_namespace(namespace)
        stats = {
            "entry_count": 0,
            "l1_size": len(self.l1),
            "l1_hit_rate": self.l1.hit_rate,
            "enabled": self.enabled,
            "threshold": self.threshold,
        }
        try:
            stats["entry_count"] = sum(1 for _ in self.backend.scan(f"{ENTRY_PREFIX}:{namespace}:*"))
        except CacheBackendError as exc:
            stats["error"] = str(exc)
        return stats

    def close(self, wait: bool = True) -> None:
        """Stop the cleanup worker. Pending cleanups finish when wait is True."""
        self._cleanup.shutdown(wait=wait)
