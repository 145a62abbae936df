"""
Split a historical range into buffered time chunks for parallel jobs.

Each chunk has its true window [start, end] plus a buffered window widened
by ``buffer_size`` on both sides (clamped to the overall range), so a chunk
job sees the full extent of tracks that straddle its edges. Chunks with no
points anywhere in their buffered window are dropped.
"""
import logging
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlmodel import Session, select

from trackgen.models.point import Point
from trackgen.timeutils import from_timestamp, to_timestamp

logger = logging.getLogger(__name__)


@dataclass
class TimeChunk:
    """One unit of parallel work. Timestamps are unix seconds."""
    start_timestamp: int
    end_timestamp: int
    buffer_start_timestamp: int
    buffer_end_timestamp: int
    chunk_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def start_time(self) -> datetime:
        return from_timestamp(self.start_timestamp)

    @property
    def end_time(self) -> datetime:
        return from_timestamp(self.end_timestamp)

    @property
    def buffer_start_time(self) -> datetime:
        return from_timestamp(self.buffer_start_timestamp)

    @property
    def buffer_end_time(self) -> datetime:
        return from_timestamp(self.buffer_end_timestamp)

    def overlaps(self, segment: Sequence) -> bool:
        """True if a segment's time span intersects the chunk's true window."""
        if not segment:
            return False
        return (
            segment[0].timestamp <= self.end_timestamp
            and segment[-1].timestamp >= self.start_timestamp
        )

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "TimeChunk":
        return cls(
            start_timestamp=int(data["start_timestamp"]),
            end_timestamp=int(data["end_timestamp"]),
            buffer_start_timestamp=int(data["buffer_start_timestamp"]),
            buffer_end_timestamp=int(data["buffer_end_timestamp"]),
            chunk_id=data.get("chunk_id") or str(uuid.uuid4()),
        )


class TimeChunker:
    """Produces the ordered list of TimeChunks for a user's range."""

    def __init__(
        self,
        engine,
        user_id: int,
        start_at: Optional[datetime] = None,
        end_at: Optional[datetime] = None,
        chunk_size: timedelta = timedelta(days=1),
        buffer_size: timedelta = timedelta(hours=6),
        now: Optional[float] = None,
    ):
        """
        Args:
            start_at / end_at: Optional naive-UTC bounds. A missing start
                falls back to the user's first point; a missing end falls
                back to "now" when a start was given, otherwise to the
                user's last point.
        """
        self.engine = engine
        self.user_id = user_id
        self.start_at = start_at
        self.end_at = end_at
        self.chunk_size = chunk_size
        self.buffer_size = buffer_size
        self.now = now

    def call(self) -> List[TimeChunk]:
        with Session(self.engine) as s:
            bounds = self._resolve_range(s)
            if bounds is None:
                return []
            start_ts, end_ts = bounds
            if start_ts >= end_ts:
                return []

            step = int(self.chunk_size.total_seconds())
            buffer = int(self.buffer_size.total_seconds())
            if step <= 0:
                raise ValueError("chunk_size must be positive")

            chunks: List[TimeChunk] = []
            current = start_ts
            while current < end_ts:
                chunk_end = min(current + step, end_ts)
                chunk = TimeChunk(
                    start_timestamp=current,
                    end_timestamp=chunk_end,
                    buffer_start_timestamp=max(current - buffer, start_ts),
                    buffer_end_timestamp=min(chunk_end + buffer, end_ts),
                )
                if self._has_points(s, chunk):
                    chunks.append(chunk)
                current = chunk_end

        logger.debug(
            "Generated %d chunks for user %s (%s..%s)",
            len(chunks), self.user_id, start_ts, end_ts,
        )
        return chunks

    def _resolve_range(self, s: Session) -> Optional[Tuple[int, int]]:
        start_ts = to_timestamp(self.start_at) if self.start_at else None
        end_ts = to_timestamp(self.end_at) if self.end_at else None

        if start_ts is not None and end_ts is None:
            end_ts = int(self.now if self.now is not None else time.time())

        if start_ts is None or end_ts is None:
            first, last = s.exec(
                select(func.min(Point.timestamp), func.max(Point.timestamp)).where(
                    Point.user_id == self.user_id
                )
            ).one()
            if first is None:
                return None
            if start_ts is None:
                start_ts = first
            if end_ts is None:
                end_ts = last

        return start_ts, end_ts

    def _has_points(self, s: Session, chunk: TimeChunk) -> bool:
        return s.exec(
            select(Point.id)
            .where(
                Point.user_id == self.user_id,
                Point.timestamp >= chunk.buffer_start_timestamp,
                Point.timestamp <= chunk.buffer_end_timestamp,
            )
            .limit(1)
        ).first() is not None
