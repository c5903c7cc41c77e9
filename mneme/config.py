"""
mneme configuration.

All paths, thresholds, and tuning parameters are set here.
No hardcoded values in the rest of the package.
"""

from dataclasses import dataclass
from pathlib import Path


@dataclass
class MnemeConfig:
    """Configuration for the mneme question-answering core."""

    # Database (default SQLite note/edge store)
    db_path: Path

    # Semantic cache
    cache_enabled: bool = True
    cache_similarity_threshold: float = 0.70
    cache_ttl_seconds: int = 3600
    cache_l1_max_size: int = 1000
    cache_max_candidates: int = 500  # fan-out bound on inverted-index unions
    cache_backend: str = "memory"  # "memory" or "redis"
    redis_url: str = "redis://localhost:6379/0"
    # Suffix cache namespaces with the owner id so keyword collisions
    # can never surface another owner's answer.
    cache_partition_by_owner: bool = True

    # Retrieval
    search_strategy: str = "fulltext"  # "fulltext" or "substring"
    retrieval_limit: int = 10
    keyword_count: int = 5
    intent_expansion_enabled: bool = True

    # Graph expansion
    expansion_enabled: bool = True
    expansion_decay: float = 0.5  # flat second-degree score

    # Generation
    generation_max_attempts: int = 3
    generation_initial_backoff: float = 1.0  # seconds, doubles per attempt
    generation_model: str = ""
    generation_max_tokens: int = 1024
    # Answer with the classical template when no generation backend is set
    template_fallback: bool = False

    # Answer pipeline
    max_sources: int = 5
    question_min_length: int = 3
    question_max_length: int = 500
    # Add min(0.2, 0.05 * n) to mean score before clamping
    confidence_count_bonus: bool = False
