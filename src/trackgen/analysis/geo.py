"""Geodesic helpers for GPS points (no external dependencies)."""
import math
from typing import Sequence

EARTH_RADIUS_M = 6_371_000.0  # mean Earth radius
PATH_PRECISION = 5


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters between two lat/lon points (degrees)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_M * c


def distance_between(p1, p2) -> float:
    """Distance in meters between two objects with latitude/longitude attributes."""
    return haversine_m(p1.latitude, p1.longitude, p2.latitude, p2.longitude)


def path_distance_m(points: Sequence) -> float:
    """Sum of consecutive pairwise distances, in the given order."""
    total = 0.0
    for prev, cur in zip(points, points[1:]):
        total += distance_between(prev, cur)
    return total


def build_linestring(points: Sequence) -> str:
    """
    WKT LINESTRING through the points, lon/lat order, rounded to 5 decimals
    (~1 m) to bound storage size and float noise.
    """
    coords = ", ".join(
        f"{round(p.longitude, PATH_PRECISION)} {round(p.latitude, PATH_PRECISION)}"
        for p in points
    )
    return f"LINESTRING({coords})"
