"""
BoundaryDetector — stitch together tracks split at chunk edges.

Parallel chunk jobs cut tracks wherever a chunk ends. After the chunk jobs
have (presumably) finished, this pass looks at the user's recently created
tracks and merges the pieces back:

  1. Candidates: tracks created within the last hour, ordered by start.
  2. Two tracks are connected when one starts within 30 minutes of the
     other's end (either direction) AND some pair of their endpoints lies
     within the user's distance threshold.
  3. Connected tracks are grouped transitively (union-find).
  4. A group is merged only if, sorted by start, no consecutive pair is
     separated by more than one hour; this keeps unrelated journeys that
     merely share a spatial cluster apart.
  5. Each valid group becomes one brand-new track built from the union of
     its points; the originals are destroyed. Mode re-detection follows and
     is best-effort.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlmodel import Session, select

from trackgen.analysis.geo import haversine_m
from trackgen.analysis.segmentation import Thresholds
from trackgen.config import get_settings
from trackgen.models.point import Point
from trackgen.models.track import Track
from trackgen.timeutils import to_timestamp, utcnow
from trackgen.tracks.builder import TrackBuilder
from trackgen.tracks.merger import MergeError
from trackgen.tracks.modes import ModeClassifier, redetect_modes
from trackgen.tracks.store import destroy_tracks, track_endpoints

logger = logging.getLogger(__name__)


@dataclass
class TrackEnds:
    """A candidate track reduced to what boundary detection compares."""
    id: int
    start_ts: int
    end_ts: int
    first: tuple  # (lat, lon)
    last: tuple


class BoundaryDetector:
    def __init__(
        self,
        engine,
        user_id: int,
        thresholds: Thresholds,
        classifier: Optional[ModeClassifier] = None,
        now: Optional[datetime] = None,
    ):
        settings = get_settings()
        self.engine = engine
        self.user_id = user_id
        self.thresholds = thresholds
        self.classifier = classifier
        self.now = now
        self.lookback = timedelta(minutes=settings.boundary_lookback_minutes)
        self.time_window = settings.boundary_time_window_minutes * 60
        self.max_gap = settings.boundary_max_gap_minutes * 60

    def resolve_cross_chunk_tracks(self) -> int:
        """Merge every valid boundary group. Returns the number of groups merged."""
        groups = self.find_boundary_groups()
        if not groups:
            return 0

        resolved = 0
        for group in groups:
            if self.merge_boundary_tracks([t.id for t in group]):
                resolved += 1

        logger.info(
            "Resolved %d of %d boundary groups for user %s", resolved, len(groups), self.user_id
        )
        return resolved

    def find_boundary_groups(self) -> List[List[TrackEnds]]:
        candidates = self._load_candidates()
        if len(candidates) < 2:
            return []

        parent = {t.id: t.id for t in candidates}

        def find(tid: int) -> int:
            while parent[tid] != tid:
                parent[tid] = parent[parent[tid]]
                tid = parent[tid]
            return tid

        for i, a in enumerate(candidates):
            for b in candidates[i + 1:]:
                if self.tracks_connected(a, b):
                    parent[find(b.id)] = find(a.id)

        grouped: Dict[int, List[TrackEnds]] = {}
        for t in candidates:
            grouped.setdefault(find(t.id), []).append(t)

        return [g for g in grouped.values() if self.valid_boundary_group(g)]

    def tracks_connected(self, a: TrackEnds, b: TrackEnds) -> bool:
        temporally_adjacent = (
            abs(b.start_ts - a.end_ts) <= self.time_window
            or abs(a.start_ts - b.end_ts) <= self.time_window
        )
        if not temporally_adjacent:
            return False

        limit = self.thresholds.distance_threshold_meters
        return any(
            haversine_m(p[0], p[1], q[0], q[1]) <= limit
            for p, q in ((a.last, b.first), (b.last, a.first), (a.first, b.first), (a.last, b.last))
        )

    def valid_boundary_group(self, group: List[TrackEnds]) -> bool:
        if len(group) < 2:
            return False
        ordered = sorted(group, key=lambda t: t.start_ts)
        return all(nxt.start_ts - prev.end_ts <= self.max_gap for prev, nxt in zip(ordered, ordered[1:]))

    def merge_boundary_tracks(self, track_ids: List[int]) -> bool:
        """Replace a group of tracks with one track built from all their points."""
        if len(track_ids) < 2:
            return False

        try:
            with Session(self.engine) as s:
                with s.begin():
                    points = s.exec(
                        select(Point)
                        .where(Point.track_id.in_(track_ids))
                        .order_by(Point.timestamp, Point.id)
                    ).all()
                    unique = list({p.id: p for p in points}.values())
                    unique.sort(key=lambda p: (p.timestamp, p.id))
                    if len(unique) < 2:
                        raise MergeError(f"only {len(unique)} points in group")

                    merged = TrackBuilder(s).create_track_from_points(self.user_id, unique)
                    if merged is None:
                        raise MergeError("merged track could not be built")
                    destroy_tracks(s, track_ids)
                    merged_id = merged.id
        except Exception as exc:
            logger.error("Failed to merge boundary tracks %s: %s", track_ids, exc)
            return False

        logger.debug("Merged boundary tracks %s into track %s", track_ids, merged_id)
        redetect_modes(self.engine, merged_id, self.classifier)
        return True

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _load_candidates(self) -> List[TrackEnds]:
        since = (self.now or utcnow()) - self.lookback
        candidates = []
        with Session(self.engine) as s:
            tracks = s.exec(
                select(Track)
                .where(Track.user_id == self.user_id, Track.created_at >= since)
                .order_by(Track.start_at, Track.id)
            ).all()
            for track in tracks:
                first, last = track_endpoints(s, track.id)
                if first is None:
                    continue
                candidates.append(
                    TrackEnds(
                        id=track.id,
                        start_ts=to_timestamp(track.start_at),
                        end_ts=to_timestamp(track.end_at),
                        first=(first.latitude, first.longitude),
                        last=(last.latitude, last.longitude),
                    )
                )
        return candidates
