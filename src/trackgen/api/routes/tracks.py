"""Track generation trigger, progress and query routes."""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session, select

from trackgen.api.deps import get_cache, get_db_engine, get_queue, get_session
from trackgen.config import get_settings
from trackgen.models.track import Track
from trackgen.tracks.deduplicator import Deduplicator
from trackgen.tracks.generator import MODES
from trackgen.tracks.parallel import ParallelGenerator
from trackgen.tracks.realtime import IncrementalGenerator
from trackgen.tracks.session import GenerationSession
from trackgen.tracks.thresholds import resolve_thresholds

router = APIRouter()


class GenerateRequest(BaseModel):
    user_id: int
    mode: str = "bulk"
    start_at: Optional[datetime] = None  # naive UTC
    end_at: Optional[datetime] = None


class GenerateResponse(BaseModel):
    mode: str
    session_id: Optional[str] = None
    tracks_created: Optional[int] = None


class DeduplicateRequest(BaseModel):
    user_id: int


@router.post("/generate", response_model=GenerateResponse, status_code=202)
def generate_tracks(
    request: GenerateRequest,
    engine=Depends(get_db_engine),
    cache=Depends(get_cache),
    queue=Depends(get_queue),
):
    """
    Start track generation.

    bulk / daily fan out to chunk jobs and return a session id to poll;
    incremental runs immediately and returns the number of tracks created.
    """
    if request.mode not in MODES:
        raise HTTPException(status_code=422, detail=f"Unknown mode: {request.mode}")

    thresholds = resolve_thresholds(engine, request.user_id)
    if request.mode == "incremental":
        settings = get_settings()
        created = IncrementalGenerator(
            engine,
            request.user_id,
            thresholds,
            lookback_hours=settings.realtime_lookback_hours,
            grace_period_minutes=settings.realtime_grace_period_minutes,
            cache=cache,
        ).call()
        return GenerateResponse(mode=request.mode, tracks_created=created)

    session = ParallelGenerator(
        engine,
        cache,
        queue,
        request.user_id,
        thresholds,
        start_at=request.start_at,
        end_at=request.end_at,
        mode=request.mode,
    ).call()
    return GenerateResponse(
        mode=request.mode,
        session_id=session.session_id if session and session.tracked else None,
    )


@router.get("/sessions/{user_id}/{session_id}")
def session_progress(user_id: int, session_id: str, cache=Depends(get_cache)):
    """Progress of a parallel generation run."""
    session = GenerationSession.find_session(cache, user_id, session_id)
    progress = session.progress() if session else None
    if progress is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return progress


@router.post("/deduplicate")
def deduplicate_tracks(request: DeduplicateRequest, engine=Depends(get_db_engine)):
    removed = Deduplicator(engine, request.user_id).call()
    return {"user_id": request.user_id, "removed": removed}


@router.get("/", response_model=List[Track])
def list_tracks(
    user_id: int,
    start_at: Optional[datetime] = None,
    end_at: Optional[datetime] = None,
    limit: int = 100,
    offset: int = 0,
    session: Session = Depends(get_session),
):
    """List a user's tracks in start order, optionally limited to a time range."""
    query = select(Track).where(Track.user_id == user_id)
    if start_at is not None:
        query = query.where(Track.end_at >= start_at)
    if end_at is not None:
        query = query.where(Track.start_at <= end_at)
    return session.exec(
        query.order_by(Track.start_at, Track.id).offset(offset).limit(limit)
    ).all()
