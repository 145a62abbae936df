"""
Track statistics computed from an ordered point run.

All values are stored in metric units regardless of user display
preferences: distance in meters (int), duration in seconds, average speed
in km/h, elevation in meters.
"""
import math
from dataclasses import dataclass
from typing import Dict, List, Sequence

from trackgen.analysis.geo import build_linestring, path_distance_m


@dataclass
class TrackStats:
    start_timestamp: int
    end_timestamp: int
    distance: int
    duration: int
    avg_speed: float
    elevation_gain: float
    elevation_loss: float
    elevation_max: float
    elevation_min: float
    original_path: str


def calculate_average_speed(distance_m: float, duration_s: float) -> float:
    """km/h, rounded to 2 decimals; 0.0 for non-positive inputs."""
    if duration_s <= 0 or distance_m <= 0:
        return 0.0
    return round(distance_m / duration_s * 3.6, 2)


def calculate_elevation_stats(points: Sequence) -> Dict[str, float]:
    """Gain/loss over consecutive non-null altitudes, plus extremes."""
    altitudes: List[float] = [p.altitude for p in points if p.altitude is not None]
    if not altitudes:
        return {"gain": 0, "loss": 0, "max": 0, "min": 0}

    gain = 0.0
    loss = 0.0
    for prev, cur in zip(altitudes, altitudes[1:]):
        diff = cur - prev
        if diff > 0:
            gain += diff
        else:
            loss += -diff

    return {
        "gain": round(gain),
        "loss": round(loss),
        "max": max(altitudes),
        "min": min(altitudes),
    }


def compute_track_stats(points: Sequence) -> TrackStats:
    """
    Compute stats for an ascending-timestamp run of at least two points.

    Distance is accumulated pairwise in the run's order, so callers merging
    tracks must pass the combined, re-sorted run rather than summing the
    parts.
    """
    first, last = points[0], points[-1]
    distance_m = path_distance_m(points)
    if not math.isfinite(distance_m) or distance_m < 0:
        raise ValueError(f"invalid track distance {distance_m!r} for {len(points)} points")
    duration = last.timestamp - first.timestamp
    elevation = calculate_elevation_stats(points)

    return TrackStats(
        start_timestamp=first.timestamp,
        end_timestamp=last.timestamp,
        distance=int(round(distance_m)),
        duration=duration,
        avg_speed=calculate_average_speed(distance_m, duration),
        elevation_gain=elevation["gain"],
        elevation_loss=elevation["loss"],
        elevation_max=elevation["max"],
        elevation_min=elevation["min"],
        original_path=build_linestring(points),
    )
