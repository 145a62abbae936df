"""Track models: reconstructed movements and their mode-detection segments."""
from datetime import datetime
from typing import List, Optional

from sqlmodel import Field, Relationship, SQLModel

from trackgen.models.point import Point
from trackgen.timeutils import utcnow


class Track(SQLModel, table=True):
    """
    A contiguous movement reconstructed from two or more points.

    (user_id, start_at, end_at) is expected to be unique per user, but it is
    not a DB constraint: concurrent generation runs may briefly produce
    duplicates, which the Deduplicator removes.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    start_at: datetime = Field(index=True)  # naive UTC
    end_at: datetime = Field(index=True)

    distance: int = 0  # meters
    duration: int = 0  # seconds
    avg_speed: float = 0.0  # km/h

    elevation_gain: float = 0.0
    elevation_loss: float = 0.0
    elevation_max: float = 0.0
    elevation_min: float = 0.0

    # WKT LINESTRING(lon lat, ...) rounded to 5 decimals
    original_path: str = ""

    # Written by mode detection, absent until a classifier has run
    dominant_mode: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow, index=True)

    points: List[Point] = Relationship(back_populates="track")
    segments: List["TrackSegment"] = Relationship(back_populates="track")


class TrackSegment(SQLModel, table=True):
    """One transportation-mode sub-segment of a track (index range into its points)."""

    id: Optional[int] = Field(default=None, primary_key=True)
    track_id: int = Field(foreign_key="track.id", index=True)

    mode: str  # "walking", "cycling", "driving", ...
    start_index: int
    end_index: int
    distance: int = 0  # meters
    duration: int = 0  # seconds
    avg_speed: float = 0.0  # km/h
    confidence: Optional[float] = None

    track: Optional[Track] = Relationship(back_populates="segments")
