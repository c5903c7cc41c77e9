"""
Collaborator protocols for dependency injection.

The answer pipeline never talks to a database, cache server, or LLM vendor
directly. Host applications implement these (or use the defaults in
mneme.core.store, mneme.core.backends, and mneme.providers) and pass them
to mneme.init().
"""

import threading
from typing import Iterable, Iterator, Optional, Protocol, runtime_checkable

from mneme.models import Edge, Note


# ============================================================================
# ERROR TAXONOMY
# ============================================================================

class GenerationError(Exception):
    """Base class for retryable generation backend failures."""


class GenerationUnavailable(GenerationError):
    """Backend is overloaded or temporarily unreachable (HTTP 503/529)."""


class GenerationRateLimited(GenerationError):
    """Backend rejected the call for rate limiting (HTTP 429)."""


class CacheBackendError(Exception):
    """The shared cache tier could not be reached or returned garbage."""


# ============================================================================
# STORES
# ============================================================================

@runtime_checkable
class MemoryStore(Protocol):
    """Read access to notes. Writes happen elsewhere."""

    def find_active_by_owner_ranked(
        self, owner_id: str, search_expr: str, limit: int
    ) -> list[tuple[Note, float]]:
        """
        Ranked full-text query over an owner's non-archived notes.

        Args:
            owner_id: Only notes owned by this id are returned
            search_expr: Disjunctive search expression (see retrieval.build_search_expression)
            limit: Maximum rows

        Returns:
            (note, rank) pairs, rank in [0, 1], ordered by rank then importance.
            Raises on malformed expressions or backend errors.
        """
        ...

    def find_active_by_owner_matching(
        self, owner_id: str, needle: str, limit: int
    ) -> list[Note]:
        """Case-insensitive substring match over title/body, ordered by importance."""
        ...

    def find_by_ids(self, note_ids: Iterable[str]) -> list[Note]:
        """Batch lookup. Missing ids are silently skipped."""
        ...

    def find_by_id(self, note_id: str) -> Optional[Note]:
        ...


@runtime_checkable
class RelationshipStore(Protocol):
    """Read access to the note relationship graph."""

    def find_all_touching(self, note_ids: set[str]) -> list[Edge]:
        """Every edge whose source or target is in note_ids, in one round trip."""
        ...


# ============================================================================
# GENERATION
# ============================================================================

@runtime_checkable
class GenerationBackend(Protocol):
    """Opaque text-generation endpoint."""

    def complete(self, prompt: str) -> str:
        """
        Generate text for a prompt.

        Raises:
            GenerationUnavailable: overloaded / unreachable, worth retrying
            GenerationRateLimited: rate limited, worth retrying
            Exception: anything else, not retried
        """
        ...


@runtime_checkable
class IntentExpander(Protocol):
    """Optional enrichment: related search terms for a question."""

    def expand(self, question: str, cancel: Optional[threading.Event] = None) -> list[str]:
        """Return related terms. Empty list on failure or cancellation, never raises."""
        ...


# ============================================================================
# SHARED CACHE TIER
# ============================================================================

@runtime_checkable
class CacheBackend(Protocol):
    """
    Shared key/value + set store backing the L2 cache tier.

    Every method raises CacheBackendError when the store is unreachable.
    """

    def get_many(self, keys: list[str]) -> list[Optional[str]]:
        """Fetch string values in one round trip; None for missing keys."""
        ...

    def put_entry(self, key: str, value: str, set_keys: list[str], ttl_seconds: int) -> None:
        """
        Write value under key and add key to every set in set_keys, as one
        atomic operation. Both the value and each set get ttl_seconds.
        """
        ...

    def union(self, set_keys: list[str]) -> set[str]:
        """Union of the members of several sets in one round trip."""
        ...

    def remove_members(self, set_key: str, members: Iterable[str]) -> None:
        ...

    def delete(self, keys: list[str]) -> None:
        ...

    def scan(self, pattern: str) -> Iterator[str]:
        """Incrementally iterate keys matching a glob pattern."""
        ...

    def close(self) -> None:
        ...
