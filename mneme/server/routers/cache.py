"""Semantic cache administration endpoints."""

import logging

from fastapi import APIRouter, HTTPException

router = APIRouter()
logger = logging.getLogger(__name__)


@router.delete("/{namespace}")
def clear(namespace: str):
    """Drop every entry and index posting in a namespace."""
    import mneme

    try:
        removed = mneme.get_pipeline().clear_cache(namespace)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    logger.info("Cache namespace %r cleared via API (%d keys)", namespace, removed)
    return {"namespace": namespace, "removed": removed}


@router.get("/{namespace}/stats")
def stats(namespace: str):
    """Entry count, L1 size and hit rate, threshold."""
    import mneme

    try:
        return {"namespace": namespace, **mneme.get_pipeline().cache_stats(namespace)}
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
