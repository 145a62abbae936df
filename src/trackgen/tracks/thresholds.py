"""Resolve per-user segmentation thresholds once per run."""
from sqlmodel import Session

from trackgen.analysis.segmentation import Thresholds
from trackgen.config import get_settings
from trackgen.models.user import User


def resolve_thresholds(engine, user_id: int) -> Thresholds:
    """
    Read the user's thresholds, falling back to application defaults for
    missing or non-positive values.

    Components receive the returned value explicitly rather than re-reading
    the (mutable) user row, so one run always uses one consistent pair.
    """
    settings = get_settings()
    with Session(engine) as s:
        user = s.get(User, user_id)

    minutes = user.minutes_between_routes if user else None
    meters = user.meters_between_routes if user else None

    return Thresholds(
        time_threshold_minutes=minutes if minutes and minutes > 0 else settings.time_threshold_minutes,
        distance_threshold_meters=meters if meters and meters > 0 else settings.distance_threshold_meters,
    )
