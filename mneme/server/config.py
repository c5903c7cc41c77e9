"""Server configuration via environment variables."""

from pathlib import Path
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """mneme-server configuration. All values from env vars or .env file."""

    # Server
    host: str = "127.0.0.1"
    port: int = 18791
    log_level: str = "info"

    # Auth
    api_key: str = ""  # empty = no auth required

    # Note database
    db_path: str = "mneme.db"

    # Generation provider: "anthropic", "openai", or "gemini"
    generation_provider: str = "anthropic"
    generation_api_key: str = ""  # empty = answers report "not configured"
    generation_model: str = ""
    generation_max_tokens: int = 1024
    template_fallback: bool = False

    # Semantic cache
    cache_enabled: bool = True
    cache_backend: str = "memory"  # "memory" or "redis"
    redis_url: str = "redis://localhost:6379/0"
    cache_ttl_seconds: int = 3600
    cache_similarity_threshold: float = 0.70
    cache_partition_by_owner: bool = True

    # Retrieval
    search_strategy: str = "fulltext"
    intent_expansion_enabled: bool = True

    model_config = {"env_prefix": "MNEME_", "env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def db_path_resolved(self) -> Path:
        return Path(self.db_path).resolve()


# Singleton: import this everywhere instead of creating new Settings()
settings = Settings()
