"""
Bridge to the transportation-mode classifier.

The classifier itself lives outside this package. Given a finished track
and its ordered points it returns sub-segments:

    {"mode", "start_index", "end_index", "distance", "duration",
     "avg_speed", "confidence"}

which are stored as TrackSegment rows; the track's dominant_mode becomes
the mode of the longest-duration sub-segment.
"""
import logging
from typing import Dict, List, Optional, Protocol, Sequence

from sqlalchemy import delete
from sqlmodel import Session

from trackgen.models.track import Track, TrackSegment
from trackgen.tracks.store import track_points

logger = logging.getLogger(__name__)


class ModeClassifier(Protocol):
    def classify(self, track: Track, points: Sequence) -> List[Dict]:
        ...


class ModeDetection:
    def __init__(self, classifier: Optional[ModeClassifier] = None):
        self.classifier = classifier

    def apply(self, session: Session, track: Track, points: Sequence) -> Optional[str]:
        """Replace the track's segments with fresh classifier output. Does not commit."""
        if self.classifier is None:
            return None

        segments = self.classifier.classify(track, points) or []
        session.exec(delete(TrackSegment).where(TrackSegment.track_id == track.id))
        for seg in segments:
            session.add(
                TrackSegment(
                    track_id=track.id,
                    mode=seg["mode"],
                    start_index=seg["start_index"],
                    end_index=seg["end_index"],
                    distance=int(seg.get("distance") or 0),
                    duration=int(seg.get("duration") or 0),
                    avg_speed=float(seg.get("avg_speed") or 0.0),
                    confidence=seg.get("confidence"),
                )
            )

        track.dominant_mode = (
            max(segments, key=lambda seg: seg.get("duration") or 0)["mode"] if segments else None
        )
        session.add(track)
        return track.dominant_mode


def redetect_modes(engine, track_id: int, classifier: Optional[ModeClassifier]) -> bool:
    """
    Re-run mode detection for one track in its own transaction.

    Best-effort: failures are logged and reported as False, never raised,
    so a finished merge is never undone by the classifier.
    """
    if classifier is None:
        return False
    try:
        with Session(engine) as s:
            with s.begin():
                track = s.get(Track, track_id)
                if track is None:
                    return False
                ModeDetection(classifier).apply(s, track, track_points(s, track_id))
    except Exception as exc:
        logger.error("Mode detection failed for track %s: %s", track_id, exc)
        return False
    return True
