# app/trip_types.py
"""
In-memory types of the trip engine.

Timestamps are epoch milliseconds throughout; durations are seconds.
"""
import enum
from dataclasses import dataclass, field
from typing import List, Optional, Tuple


class MotionState(str, enum.Enum):
    MOVING = "MOVING"
    STOPPED = "STOPPED"


class Liveness(str, enum.Enum):
    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"


@dataclass(frozen=True)
class TelemetrySample:
    timestamp: int
    latitude: float
    longitude: float
    speed_kmh: float = 0.0
    satellite_count: int = 0
    fuel_level_percent: Optional[float] = None
    battery_voltage: Optional[float] = None

    @property
    def position(self) -> Tuple[float, float]:
        return (self.latitude, self.longitude)


@dataclass(frozen=True)
class Rejected:
    """A sample the validator dropped. `reason` is the error class name."""
    reason: str
    detail: str


@dataclass(frozen=True)
class Stop:
    latitude: float
    longitude: float
    started_at: int
    ended_at: Optional[int] = None

    @property
    def duration_sec(self) -> Optional[float]:
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at) / 1000.0


@dataclass
class TripSession:
    session_id: str
    device_id: str
    created_at: int
    started_at: Optional[int] = None
    last_sample_at: Optional[int] = None
    path: List[TelemetrySample] = field(default_factory=list)
    distance_km: float = 0.0
    moving_duration_sec: float = 0.0
    idle_duration_sec: float = 0.0
    top_speed_kmh: float = 0.0
    stops: List[Stop] = field(default_factory=list)
    fuel_start_percent: Optional[float] = None
    fuel_last_percent: Optional[float] = None
    current_motion_state: MotionState = MotionState.MOVING
    current_stop: Optional[Stop] = None       # open stop, only while STOPPED
    below_threshold_since: Optional[TelemetrySample] = None  # dwell candidate

    @property
    def current_stop_started_at(self) -> Optional[int]:
        return self.current_stop.started_at if self.current_stop else None

    @property
    def last_sample(self) -> Optional[TelemetrySample]:
        return self.path[-1] if self.path else None


@dataclass(frozen=True)
class TripRecord:
    trip_id: str
    device_id: str
    started_at: int
    ended_at: int
    total_duration_sec: float
    distance_km: float
    moving_duration_sec: float
    idle_duration_sec: float
    top_speed_kmh: float
    path: Tuple[TelemetrySample, ...]
    stops: Tuple[Stop, ...]
    fuel_start_percent: Optional[float]
    fuel_last_percent: Optional[float]
    fuel_used_liters: Optional[float]
    cost_currency: Optional[float]
    consumption_per_100km: Optional[float]
    closed_by: str = "manual"
    trip_name: Optional[str] = None
    notes: Optional[str] = None

    @property
    def stop_count(self) -> int:
        return len(self.stops)


@dataclass(frozen=True)
class LiveState:
    device_id: str
    liveness: Liveness
    session_id: Optional[str] = None
    location: Optional[Tuple[float, float]] = None
    speed_kmh: float = 0.0
    distance_so_far_km: float = 0.0
    stops_so_far: int = 0
    motion_state: Optional[MotionState] = None
    satellites: int = 0
    signal_bars: int = 0
    fuel_level_percent: Optional[float] = None
    fuel_range_km: Optional[float] = None
    battery_voltage: Optional[float] = None
    battery_health: Optional[str] = None
    charging: bool = False
    last_sample_at: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "deviceId": self.device_id,
            "sessionId": self.session_id,
            "liveness": self.liveness.value,
            "location": {"lat": self.location[0], "lng": self.location[1]} if self.location else None,
            "speed": self.speed_kmh,
            "distanceSoFar": round(self.distance_so_far_km, 3),
            "stopsSoFar": self.stops_so_far,
            "motionState": self.motion_state.value if self.motion_state else None,
            "satellites": self.satellites,
            "signalBars": self.signal_bars,
            "fuelLevel": self.fuel_level_percent,
            "fuelRangeKm": self.fuel_range_km,
            "batteryVoltage": self.battery_voltage,
            "batteryHealth": self.battery_health,
            "charging": self.charging,
            "lastSampleAt": self.last_sample_at,
        }


@dataclass(frozen=True)
class CloseResult:
    record: TripRecord
    persisted: bool
