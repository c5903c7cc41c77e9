"""Health endpoint."""

import logging

from fastapi import APIRouter

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
def health():
    """Health check: note DB accessible, cache backend reachable."""
    import mneme
    from mneme.core.db import _db
    from mneme.protocols import CacheBackendError

    status = {"status": "healthy", "version": mneme.__version__}
    try:
        with _db(mneme.get_config().db_path) as db:
            db.execute("SELECT 1").fetchone()
    except Exception:
        logger.exception("Health check failed")
        return {"status": "unhealthy", "version": mneme.__version__}

    try:
        cache = mneme.get_cache()
        cache.backend.get_many(["semantic:health"])
        status["cache"] = "ok" if cache.enabled else "disabled"
    except CacheBackendError:
        logger.warning("Cache backend unreachable", exc_info=True)
        status["cache"] = "unreachable"
    return status
