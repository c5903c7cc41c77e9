"""
mneme: question answering over personal notes.

Retrieves relevant notes, expands context through the note graph,
synthesizes a grounded answer, and caches equivalent-intent questions.

Usage:
    import mneme
    from mneme.config import MnemeConfig

    config = MnemeConfig(db_path=Path("data/notes.db"))
    mneme.init(config, generator=my_generation_backend)

    result = mneme.get_pipeline().ask("What did I learn about Rust?", owner_id="alice")
"""

import logging
import threading
from typing import Optional

from mneme.config import MnemeConfig
from mneme.protocols import (
    CacheBackend,
    GenerationBackend,
    IntentExpander,
    MemoryStore,
    RelationshipStore,
)

__version__ = "0.1.0"

_log = logging.getLogger(__name__)

_config: MnemeConfig | None = None
_pipeline = None
_cache = None
_initialized: bool = False
_init_lock = threading.Lock()


def init(
    config: MnemeConfig,
    generator: Optional[GenerationBackend] = None,
    *,
    memory_store: Optional[MemoryStore] = None,
    relationship_store: Optional[RelationshipStore] = None,
    cache_backend: Optional[CacheBackend] = None,
    intent_expander: Optional[IntentExpander] = None,
) -> None:
    """
    Initialize mneme with configuration and collaborators.

    Must be called before get_pipeline()/get_cache(). Calling it again
    replaces the previous pipeline and closes its cache.

    Args:
        config: Database path, cache and retrieval tuning
        generator: Text generation backend. None answers with the fixed
            "not configured" message (or the template, if enabled)
        memory_store: Defaults to SqliteMemoryStore(config.db_path)
        relationship_store: Defaults to SqliteRelationshipStore(config.db_path)
        cache_backend: Defaults to the backend named by config.cache_backend
        intent_expander: Defaults to an LLM expander over generator when
            config.intent_expansion_enabled and a generator is given
    """
    global _config, _pipeline, _cache, _initialized

    from mneme.core.backends import create_backend
    from mneme.core.cache import SemanticCache
    from mneme.core.graph import SqliteRelationshipStore
    from mneme.core.intent import LLMIntentExpander
    from mneme.core.pipeline import AnswerPipeline
    from mneme.core.retrieval import RelevanceRanker, create_strategy
    from mneme.core.store import SqliteMemoryStore
    from mneme.core.synthesis import AnswerSynthesizer

    if memory_store is None:
        memory_store = SqliteMemoryStore(config.db_path)
    if relationship_store is None:
        relationship_store = SqliteRelationshipStore(config.db_path)
    if cache_backend is None:
        cache_backend = create_backend(config.cache_backend, config.redis_url)

    cache = SemanticCache(
        cache_backend,
        threshold=config.cache_similarity_threshold,
        ttl_seconds=config.cache_ttl_seconds,
        l1_max_size=config.cache_l1_max_size,
        max_candidates=config.cache_max_candidates,
        enabled=config.cache_enabled,
    )

    if intent_expander is None and generator is not None and config.intent_expansion_enabled:
        intent_expander = LLMIntentExpander(
            generator,
            cache=cache,
            max_attempts=config.generation_max_attempts,
            initial_backoff=config.generation_initial_backoff,
        )

    strategy = create_strategy(
        config.search_strategy,
        memory_store,
        intent_expander=intent_expander,
        keyword_count=config.keyword_count,
    )
    synthesizer = AnswerSynthesizer(
        generator,
        max_attempts=config.generation_max_attempts,
        initial_backoff=config.generation_initial_backoff,
        template_fallback=config.template_fallback,
    )
    pipeline = AnswerPipeline(
        config,
        memory_store,
        relationship_store,
        RelevanceRanker(strategy),
        synthesizer,
        cache,
    )

    with _init_lock:
        previous = _cache
        _config = config
        _pipeline = pipeline
        _cache = cache
        _initialized = True

    if previous is not None and previous is not cache:
        previous.close(wait=False)

    _log.info(
        "mneme initialized: strategy=%s, cache=%s (enabled=%s), generator=%s",
        config.search_strategy, config.cache_backend, config.cache_enabled,
        type(generator).__name__ if generator is not None else None,
    )


def get_config() -> MnemeConfig:
    """Get the current config. Raises if not initialized."""
    if not _initialized or _config is None:
        raise RuntimeError("mneme not initialized. Call mneme.init() first.")
    return _config


def get_pipeline():
    """Get the answer pipeline. Raises if not initialized."""
    if not _initialized or _pipeline is None:
        raise RuntimeError("mneme not initialized. Call mneme.init() first.")
    return _pipeline


def get_cache():
    """Get the semantic cache. Raises if not initialized."""
    if not _initialized or _cache is None:
        raise RuntimeError("mneme not initialized. Call mneme.init() first.")
    return _cache


def shutdown() -> None:
    """Stop background cache work and release the L2 connection."""
    global _config, _pipeline, _cache, _initialized

    with _init_lock:
        cache = _cache
        _config = None
        _pipeline = None
        _cache = None
        _initialized = False

    if cache is not None:
        cache.close()
        cache.backend.close()
