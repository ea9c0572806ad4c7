"""
Matches API Router
Single-pair scoring, batch runs, discovery, and the review workflow
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import structlog

from app.database import get_engine, get_store
from app.middleware.correlation_id import get_correlation_id
from app.models.match import MatchStatus
from app.services.matching_engine import MatchingEngine
from app.services.mongodb_client import MongoDBService

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/matches", tags=["matches"])


class ScoreMatchRequest(BaseModel):
    """Request body for scoring one pair"""
    lost_item_id: str
    found_item_id: str


class BatchMatchRequest(BaseModel):
    """Request body for a batch run"""
    min_score: Optional[float] = Field(None, ge=0, le=100)
    categories: Optional[List[str]] = None
    background: bool = False  # Enqueue on the worker instead of running inline


class StatusUpdateRequest(BaseModel):
    """Request body for updating one match or many"""
    status: MatchStatus
    match_id: Optional[str] = None
    match_ids: List[str] = Field(default_factory=list)
    notes: Optional[str] = None


@router.post("")
def create_match(
    request: ScoreMatchRequest,
    engine: MatchingEngine = Depends(get_engine)
):
    """
    Score one (lost, found) pair and store the match

    Returns 201 with the new match, or 200 with the existing match when the
    pair was already scored.
    """
    match, created = engine.score_single(request.lost_item_id, request.found_item_id)

    return JSONResponse(
        content={
            "created": created,
            "match": match.to_response(),
            "message": "Match created successfully" if created else "Match already exists",
        },
        status_code=201 if created else 200
    )


@router.get("")
def list_matches(
    status: Optional[str] = Query("all", description="pending, confirmed, rejected, resolved or all"),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=1000, description="Maximum matches to return"),
    store: MongoDBService = Depends(get_store)
):
    """
    List matches, highest score first

    Args:
        status: Review status filter ("all" for no filter)
        skip: Pagination offset
        limit: Page size
    """
    status_filter = None
    if status and status != "all":
        try:
            status_filter = MatchStatus(status)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid status: {status}")

    matches = store.list_matches(status=status_filter, skip=skip, limit=limit)
    total = store.count_matches(status=status_filter)

    return {
        "total": total,
        "matches": [match.to_response() for match in matches],
        "pagination": {
            "skip": skip,
            "limit": limit,
            "has_more": skip + limit < total,
        },
    }


@router.patch("/status")
def update_match_status(
    request: StatusUpdateRequest,
    store: MongoDBService = Depends(get_store)
):
    """
    Update review status for one match (match_id) or many (match_ids)
    """
    match_ids = list(request.match_ids)
    if request.match_id:
        match_ids.append(request.match_id)

    if not match_ids:
        raise HTTPException(status_code=400, detail="Provide match_id or match_ids")

    updated = store.update_match_status(match_ids, request.status, notes=request.notes)

    if updated == 0:
        raise HTTPException(status_code=404, detail="No matching matches found")

    return {
        "updated": updated,
        "status": request.status.value,
        "message": f"Updated {updated} match(es) to {request.status.value}",
    }


@router.post("/batch")
def run_batch(
    request: BatchMatchRequest,
    engine: MatchingEngine = Depends(get_engine)
):
    """
    Run batch matching across all active lost and found items

    With background=true the run is queued on the worker and 202 is
    returned immediately.
    """
    if request.background:
        from app.actors.batch_matcher import run_batch_matching

        message = run_batch_matching.send(
            min_score=request.min_score,
            categories=request.categories,
            correlation_id=get_correlation_id()
        )
        logger.info("batch_matching_enqueued", message_id=message.message_id)
        return JSONResponse(
            content={"status": "queued", "message_id": message.message_id},
            status_code=202
        )

    stats = engine.run_batch(min_score=request.min_score, categories=request.categories)
    return {
        "status": "completed",
        "stats": stats.to_dict(),
        "message": f"Created {stats.matches_created} matches from {stats.total_analyzed} lost items",
    }


@router.get("/potential")
def discover_potential_matches(
    min_score: Optional[float] = Query(None, ge=0, le=100, description="Defaults to the potential-match threshold"),
    category: Optional[List[str]] = Query(None, description="Category allow-list"),
    user_id: Optional[str] = Query(None, description="Only this user's lost items"),
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Maximum lost items to analyze"),
    engine: MatchingEngine = Depends(get_engine)
):
    """
    Rank potential matches without storing anything

    Pairs that already have a match carry its review status.
    """
    result = engine.discover_potential(
        min_score=min_score,
        categories=category,
        user_id=user_id,
        limit=limit
    )
    data = result.to_dict()
    data["message"] = (
        f"Found {len(result.matches)} potential matches from {result.total_analyzed} analyzed items"
    )
    return data


@router.get("/stats")
def get_match_stats(store: MongoDBService = Depends(get_store)):
    """
    Match statistics: totals by status and confidence tier, average score
    """
    return store.match_stats()
