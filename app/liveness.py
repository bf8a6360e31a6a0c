# app/liveness.py
import time
from typing import Optional

from config import LIVENESS_THRESHOLD_SEC
from trip_types import Liveness

BATTERY_WEAK_V = 12.0
BATTERY_REPLACE_V = 11.5
ALTERNATOR_CHARGING_V = 13.2


def now_ms() -> int:
    return int(time.time() * 1000)


def liveness(now: int, last_sample_at: Optional[int],
             threshold_sec: float = LIVENESS_THRESHOLD_SEC) -> Liveness:
    """ONLINE while the newest sample is strictly fresher than the threshold."""
    if last_sample_at is None:
        return Liveness.OFFLINE
    if (now - last_sample_at) / 1000.0 < threshold_sec:
        return Liveness.ONLINE
    return Liveness.OFFLINE


def signal_bars(satellite_count: int) -> int:
    bars = 1
    if satellite_count > 3:
        bars = 2
    if satellite_count > 6:
        bars = 3
    if satellite_count > 9:
        bars = 4
    return bars


def battery_health(voltage: Optional[float]) -> Optional[str]:
    if voltage is None:
        return None
    if voltage < BATTERY_REPLACE_V:
        return "REPLACE"
    if voltage < BATTERY_WEAK_V:
        return "WEAK"
    return "GOOD"


def is_charging(voltage: Optional[float]) -> bool:
    return voltage is not None and voltage > ALTERNATOR_CHARGING_V
