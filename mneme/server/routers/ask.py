"""Ask endpoints: answer a question from the caller's notes."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from mneme.server.auth import require_owner

router = APIRouter()
logger = logging.getLogger(__name__)


# --- Request/Response models ---

class AskRequest(BaseModel):
    question: str = Field(..., min_length=3, max_length=500, description="Question to answer")
    include_related: bool = Field(True, description="Add graph-connected notes to the context")
    max_sources: int = Field(5, ge=1, le=20, description="Max sources in the response")


class SourceModel(BaseModel):
    note_id: str
    title: str
    score: float


class AskResponse(BaseModel):
    question: str
    answer: str
    confidence: float
    sources: list[SourceModel]
    related_note_ids: list[str]
    cached: bool = False


# --- Endpoints ---
# `def` routes: the pipeline is synchronous, FastAPI runs these in a threadpool.

def _ask(question: str, owner_id: str, include_related: bool, max_sources: Optional[int]) -> dict:
    import mneme
    from mneme.core.pipeline import QuestionValidationError

    try:
        result = mneme.get_pipeline().ask(
            question,
            owner_id,
            include_related=include_related,
            max_sources=max_sources,
        )
    except QuestionValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return result.to_dict()


@router.post("/ask", response_model=AskResponse)
def ask(req: AskRequest, owner_id: str = Depends(require_owner)):
    """Answer a question using the caller's notes."""
    return _ask(req.question, owner_id, req.include_related, req.max_sources)


@router.get("/ask", response_model=AskResponse)
def ask_quick(
    q: str = Query(..., min_length=3, max_length=500, description="Question to answer"),
    owner_id: str = Depends(require_owner),
):
    """Quick-ask via query string, default options."""
    return _ask(q, owner_id, True, None)
