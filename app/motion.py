# app/motion.py
from config import GAP_THRESHOLD_SEC, MOVING_SPEED_THRESHOLD_KMH, NOISE_FLOOR_M
from geo import haversine_km
from trip_types import TelemetrySample, TripSession


def is_moving(speed_kmh: float, threshold_kmh: float = MOVING_SPEED_THRESHOLD_KMH) -> bool:
    # exactly-at-threshold counts as stationary
    return speed_kmh > threshold_kmh


# =====================================================================
# Distance / duration bookkeeping for one accepted sample
# =====================================================================
def apply_motion(
    session: TripSession,
    sample: TelemetrySample,
    *,
    moving_threshold_kmh: float = MOVING_SPEED_THRESHOLD_KMH,
    gap_threshold_sec: float = GAP_THRESHOLD_SEC,
    noise_floor_m: float = NOISE_FLOOR_M,
) -> float:
    """
    Fold one validated sample into the session's running totals.

    - distance: haversine from the previous point, added even while stopped;
      deltas under the noise floor count as zero
    - duration: seconds since the previous sample go to moving or idle time
      depending on this sample's speed; gaps longer than gap_threshold_sec are
      a connectivity outage and are not counted at all
    - top speed, path, last_sample_at

    Returns the distance delta in km.
    """
    prev = session.last_sample
    delta_km = 0.0

    if prev is None:
        session.started_at = sample.timestamp
    else:
        delta_km = haversine_km(prev.position, sample.position)
        if delta_km * 1000.0 < noise_floor_m:
            delta_km = 0.0
        session.distance_km += delta_km

        dt_sec = (sample.timestamp - prev.timestamp) / 1000.0
        if dt_sec <= gap_threshold_sec:
            if is_moving(sample.speed_kmh, moving_threshold_kmh):
                session.moving_duration_sec += dt_sec
            else:
                session.idle_duration_sec += dt_sec

    session.top_speed_kmh = max(session.top_speed_kmh, sample.speed_kmh)
    session.path.append(sample)
    session.last_sample_at = sample.timestamp

    return delta_km
