# app/stops.py
from dataclasses import replace
from typing import Optional

from config import DWELL_SEC, MOVING_SPEED_THRESHOLD_KMH
from motion import is_moving
from trip_types import MotionState, Stop, TelemetrySample, TripSession


# =====================================================================
# MOVING <-> STOPPED state machine, one step per accepted sample
# =====================================================================
def detect_stop(
    session: TripSession,
    sample: TelemetrySample,
    *,
    moving_threshold_kmh: float = MOVING_SPEED_THRESHOLD_KMH,
    dwell_sec: float = DWELL_SEC,
) -> Optional[Stop]:
    """
    MOVING -> STOPPED once speed has stayed at or below the threshold for
    dwell_sec of consecutive samples. The stop is anchored to the first
    below-threshold sample, not the one that confirmed it.

    STOPPED -> MOVING on the first sample above the threshold; the open stop
    is closed at that sample's timestamp and appended to session.stops.

    Returns the Stop that was opened or closed by this sample, else None.
    """
    if is_moving(sample.speed_kmh, moving_threshold_kmh):
        session.below_threshold_since = None

        if session.current_motion_state is MotionState.STOPPED:
            stop = replace(session.current_stop, ended_at=sample.timestamp)
            session.stops.append(stop)
            session.current_stop = None
            session.current_motion_state = MotionState.MOVING
            return stop
        return None

    # at or below threshold
    if session.current_motion_state is MotionState.STOPPED:
        return None

    anchor = session.below_threshold_since
    if anchor is None:
        anchor = session.below_threshold_since = sample

    if (sample.timestamp - anchor.timestamp) / 1000.0 >= dwell_sec:
        stop = Stop(
            latitude=anchor.latitude,
            longitude=anchor.longitude,
            started_at=anchor.timestamp,
        )
        session.current_stop = stop
        session.current_motion_state = MotionState.STOPPED
        session.below_threshold_since = None
        return stop

    return None


def close_open_stop(session: TripSession, at: Optional[int] = None) -> Optional[Stop]:
    """Close a still-open stop at finalize time (defaults to last_sample_at)."""
    open_stop = session.current_stop
    if open_stop is None:
        return None

    end = at if at is not None else session.last_sample_at
    stop = replace(open_stop, ended_at=max(end, open_stop.started_at))
    session.stops.append(stop)
    session.current_stop = None
    session.current_motion_state = MotionState.MOVING
    return stop
