"""Point ingestion route."""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session

from trackgen.api.deps import get_cache, get_db_engine, get_queue
from trackgen.config import get_settings
from trackgen.models.point import Point
from trackgen.tracks.realtime import RealtimeDebouncer, on_point_created

router = APIRouter()


class PointCreate(BaseModel):
    user_id: int
    timestamp: int
    latitude: float
    longitude: float
    altitude: Optional[float] = None
    import_id: Optional[int] = None


@router.post("/", response_model=Point, status_code=201)
def create_point(
    request: PointCreate,
    engine=Depends(get_db_engine),
    cache=Depends(get_cache),
    queue=Depends(get_queue),
):
    """Persist a point. Live (non-imported) points schedule realtime generation."""
    with Session(engine, expire_on_commit=False) as s:
        point = Point(**request.model_dump())
        s.add(point)
        s.commit()
        s.refresh(point)

    settings = get_settings()
    debouncer = RealtimeDebouncer(
        cache, queue, settings.debounce_delay_seconds, settings.debounce_ttl_seconds
    )
    on_point_created(point, debouncer)
    return point
