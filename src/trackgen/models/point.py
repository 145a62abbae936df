"""GPS point model."""
from datetime import datetime
from typing import Optional

from sqlmodel import Field, Relationship, SQLModel

from trackgen.timeutils import utcnow


class Point(SQLModel, table=True):
    """
    One GPS sample. Immutable apart from track_id, which the track engine
    sets when a track claims the point and clears/reassigns during cleanup
    and merges.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    timestamp: int = Field(index=True)  # unix seconds, ordering key
    latitude: float
    longitude: float
    altitude: Optional[float] = None  # meters

    track_id: Optional[int] = Field(default=None, foreign_key="track.id", index=True)

    # Set for points that arrived through a backfill import; those never
    # trigger the realtime path.
    import_id: Optional[int] = None

    created_at: datetime = Field(default_factory=utcnow)

    track: Optional["Track"] = Relationship(back_populates="points")  # noqa: F821
