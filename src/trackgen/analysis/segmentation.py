"""
Track segmentation: where one track ends and the next begins.

Two consecutive points belong to different segments when the time gap
between them exceeds the time threshold or the great-circle distance
between them exceeds the distance threshold. A segment needs at least two
points to become a track; isolated points are dropped.
"""
from dataclasses import dataclass
from typing import List, Optional, Sequence

from trackgen.analysis.geo import distance_between

MIN_SEGMENT_POINTS = 2


@dataclass(frozen=True)
class Thresholds:
    """Segmentation thresholds, resolved once per generation run."""
    time_threshold_minutes: int = 60
    distance_threshold_meters: int = 500

    @property
    def time_threshold_seconds(self) -> int:
        return self.time_threshold_minutes * 60

    def as_dict(self) -> dict:
        return {
            "time_threshold_minutes": self.time_threshold_minutes,
            "distance_threshold_meters": self.distance_threshold_meters,
        }


def should_start_new_segment(current, previous: Optional[object], thresholds: Thresholds) -> bool:
    """
    True if ``current`` cannot continue the segment ending at ``previous``.

    Args:
        current: Point being placed (needs timestamp/latitude/longitude).
        previous: Last point of the segment being built, or None at the
            start of a run.
        thresholds: Time/distance limits.
    """
    if previous is None:
        return True

    if current.timestamp - previous.timestamp > thresholds.time_threshold_seconds:
        return True

    return distance_between(previous, current) > thresholds.distance_threshold_meters


def split_points_into_segments(points: Sequence, thresholds: Thresholds) -> List[List]:
    """
    Split an ascending-timestamp point run into segments.

    Returns:
        Segments in input order; each has at least two points.
    """
    segments: List[List] = []
    current: List = []

    for point in points:
        if should_start_new_segment(point, current[-1] if current else None, thresholds):
            if len(current) >= MIN_SEGMENT_POINTS:
                segments.append(current)
            current = [point]
        else:
            current.append(point)

    if len(current) >= MIN_SEGMENT_POINTS:
        segments.append(current)

    return segments
