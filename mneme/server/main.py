"""mneme-server: HTTP API for question answering over notes."""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI

from mneme.server.auth import require_auth
from mneme.server.config import settings

logger = logging.getLogger("mneme_server")


def _init_mneme():
    """Initialize mneme with the configured generation provider."""
    import mneme
    from mneme.config import MnemeConfig
    from mneme.server.providers import create_generator

    config = MnemeConfig(
        db_path=settings.db_path_resolved,
        cache_enabled=settings.cache_enabled,
        cache_similarity_threshold=settings.cache_similarity_threshold,
        cache_ttl_seconds=settings.cache_ttl_seconds,
        cache_backend=settings.cache_backend,
        redis_url=settings.redis_url,
        cache_partition_by_owner=settings.cache_partition_by_owner,
        search_strategy=settings.search_strategy,
        intent_expansion_enabled=settings.intent_expansion_enabled,
        generation_model=settings.generation_model,
        generation_max_tokens=settings.generation_max_tokens,
        template_fallback=settings.template_fallback,
    )

    generator = create_generator(
        settings.generation_provider,
        settings.generation_api_key,
        model=settings.generation_model,
        max_tokens=settings.generation_max_tokens,
    )

    mneme.init(config, generator=generator)
    logger.info(
        "mneme initialized: db=%s, generation=%s, cache=%s",
        config.db_path,
        settings.generation_provider if generator is not None else "none",
        config.cache_backend,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    _init_mneme()
    logger.info("mneme-server ready on %s:%d", settings.host, settings.port)
    yield
    logger.info("mneme-server shutting down")
    import mneme
    mneme.shutdown()


app = FastAPI(
    title="mneme-server",
    description="HTTP API for question answering over personal notes",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if not settings.api_key else None,
    openapi_url="/openapi.json" if not settings.api_key else None,
)


# --- Register routers ---

from mneme.server.routers import ask, cache, health  # noqa: E402

# Protected routers: auth enforced via dependency injection
app.include_router(
    ask.router, prefix="/v1", tags=["ask"],
    dependencies=[Depends(require_auth)],
)
app.include_router(
    cache.router, prefix="/v1/cache", tags=["cache"],
    dependencies=[Depends(require_auth)],
)

# Health router is public
app.include_router(health.router, prefix="/v1", tags=["health"])


def run():
    """Entry point for `mneme-server` CLI command."""
    import uvicorn

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    uvicorn.run(
        "mneme.server.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    run()
