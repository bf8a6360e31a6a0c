"""Shared fixtures for the trip engine tests."""

import pytest
from tenacity import wait_none

from sessions import TripSessionManager
from trip_types import Stop, TelemetrySample, TripRecord
from vehicles import VehicleConfig, VehicleConfigProvider

BASE_TS = 1_767_225_600_000  # 2026-01-01T00:00:00Z in ms
COLOMBO = (6.9271, 79.8612)


class FakeClock:
    def __init__(self, now: int = BASE_TS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1000)


class FakeStore:
    """In-memory trip store; fails the next `failures` saves."""

    def __init__(self, failures: int = 0, exc: Exception = None):
        self.failures = failures
        self.exc = exc or OSError("database unavailable")
        self.calls = 0
        self.saved = []

    async def save_trip_record(self, device_id, record):
        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise self.exc
        self.saved.append((device_id, record))

    async def list_trips(self, device_id, limit=50):
        return [r for d, r in self.saved if d == str(device_id)][:limit]

    async def get_trip(self, device_id, trip_id):
        for d, r in self.saved:
            if d == str(device_id) and r.trip_id == trip_id:
                return r
        return None

    async def delete_trip(self, device_id, trip_id):
        before = len(self.saved)
        self.saved = [(d, r) for d, r in self.saved
                      if not (d == str(device_id) and r.trip_id == trip_id)]
        return len(self.saved) < before


@pytest.fixture
def make_sample():
    """Raw feed dict at BASE_TS + t seconds."""
    def _make(t, lat=COLOMBO[0], lon=COLOMBO[1], speed=0.0, **extra):
        raw = {
            "timestamp": BASE_TS + int(t * 1000),
            "latitude": lat,
            "longitude": lon,
            "speedKmh": speed,
            "satelliteCount": 8,
        }
        raw.update(extra)
        return raw
    return _make


@pytest.fixture
def make_point():
    """Validated TelemetrySample at BASE_TS + t seconds."""
    def _make(t, lat=COLOMBO[0], lon=COLOMBO[1], speed=0.0, fuel=None):
        return TelemetrySample(
            timestamp=BASE_TS + int(t * 1000),
            latitude=lat,
            longitude=lon,
            speed_kmh=speed,
            satellite_count=8,
            fuel_level_percent=fuel,
        )
    return _make


@pytest.fixture
def make_record():
    def _make(trip_id="trip-1", device_id="dev-1", start_s=0, end_s=600,
              distance_km=5.0, fuel_used=None, cost=None, stops=(), **extra):
        started = BASE_TS + start_s * 1000
        ended = BASE_TS + end_s * 1000
        fields = dict(
            trip_id=trip_id,
            device_id=device_id,
            started_at=started,
            ended_at=ended,
            total_duration_sec=(ended - started) / 1000.0,
            distance_km=distance_km,
            moving_duration_sec=(ended - started) / 2000.0,
            idle_duration_sec=(ended - started) / 4000.0,
            top_speed_kmh=62.0,
            path=(
                TelemetrySample(started, COLOMBO[0], COLOMBO[1], 0.0, 8),
                TelemetrySample(ended, 6.9400, 79.8700, 12.0, 9),
            ),
            stops=tuple(stops),
            fuel_start_percent=80.0 if fuel_used is not None else None,
            fuel_last_percent=60.0 if fuel_used is not None else None,
            fuel_used_liters=fuel_used,
            cost_currency=cost,
            consumption_per_100km=(fuel_used / distance_km * 100.0
                                   if fuel_used is not None and distance_km else None),
        )
        fields.update(extra)
        return TripRecord(**fields)
    return _make


@pytest.fixture
def a_stop():
    return Stop(latitude=6.93, longitude=79.86, started_at=BASE_TS + 60_000,
                ended_at=BASE_TS + 105_000)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def vehicles():
    provider = VehicleConfigProvider()
    provider.set("dev-1", VehicleConfig(tank_capacity_liters=10.0, price_per_liter=380.0,
                                        km_per_liter=10.0))
    return provider


@pytest.fixture
def manager(store, vehicles, clock):
    return TripSessionManager(
        store,
        vehicles,
        moving_threshold_kmh=5.0,
        dwell_sec=30.0,
        gap_threshold_sec=300.0,
        noise_floor_m=2.0,
        liveness_threshold_sec=120.0,
        idle_timeout_sec=600.0,
        persist_attempts=3,
        persist_wait=wait_none(),
        clock=clock,
    )
