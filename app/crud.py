from typing import List, Optional
import datetime as dt

from sqlalchemy import select, delete
from sqlalchemy.orm import selectinload

from database import AsyncSessionLocal
from models import Trip, TripStop
from trip_types import Stop, TelemetrySample, TripRecord
from logging_config import get_logger

logger = get_logger("crud", "crud.log")

UTC = dt.timezone.utc


def ms_to_dt(ms: int) -> dt.datetime:
    return dt.datetime.fromtimestamp(ms / 1000.0, tz=UTC)


def dt_to_ms(v: dt.datetime) -> int:
    # ensure tz-aware
    v = v if v.tzinfo else v.replace(tzinfo=UTC)
    return int(v.timestamp() * 1000)


def _opt_float(v):
    return float(v) if v is not None else None


# ---------------------------------------------------
#          TripRecord <-> rows
# ---------------------------------------------------
def record_to_row(record: TripRecord) -> Trip:
    trip = Trip(
        trip_id=record.trip_id,
        device_id=str(record.device_id),
        trip_name=record.trip_name,
        notes=record.notes,
        start_time=ms_to_dt(record.started_at),
        end_time=ms_to_dt(record.ended_at),
        total_duration_s=record.total_duration_sec,
        moving_duration_s=record.moving_duration_sec,
        idle_duration_s=record.idle_duration_sec,
        distance_km=record.distance_km,
        max_speed=record.top_speed_kmh,
        fuel_start_percent=record.fuel_start_percent,
        fuel_last_percent=record.fuel_last_percent,
        fuel_used_l=record.fuel_used_liters,
        cost=record.cost_currency,
        consumption_l100km=record.consumption_per_100km,
        closed_by=record.closed_by,
        path=[
            {"lat": p.latitude, "lng": p.longitude, "t": p.timestamp, "speed": p.speed_kmh}
            for p in record.path
        ],
    )
    trip.stops = [
        TripStop(
            lat=s.latitude,
            lon=s.longitude,
            stop_time=ms_to_dt(s.started_at),
            resume_time=ms_to_dt(s.ended_at),
            duration_s=int(s.duration_sec),
        )
        for s in record.stops
    ]
    return trip


def row_to_record(trip: Trip) -> TripRecord:
    path = tuple(
        TelemetrySample(timestamp=p["t"], latitude=p["lat"], longitude=p["lng"],
                        speed_kmh=p.get("speed") or 0.0)
        for p in (trip.path or [])
    )
    stops = tuple(
        Stop(latitude=float(s.lat), longitude=float(s.lon),
             started_at=dt_to_ms(s.stop_time), ended_at=dt_to_ms(s.resume_time))
        for s in trip.stops
    )
    return TripRecord(
        trip_id=trip.trip_id,
        device_id=trip.device_id,
        started_at=dt_to_ms(trip.start_time),
        ended_at=dt_to_ms(trip.end_time),
        total_duration_sec=float(trip.total_duration_s or 0),
        distance_km=float(trip.distance_km or 0),
        moving_duration_sec=float(trip.moving_duration_s or 0),
        idle_duration_sec=float(trip.idle_duration_s or 0),
        top_speed_kmh=float(trip.max_speed or 0),
        path=path,
        stops=stops,
        fuel_start_percent=_opt_float(trip.fuel_start_percent),
        fuel_last_percent=_opt_float(trip.fuel_last_percent),
        fuel_used_liters=_opt_float(trip.fuel_used_l),
        cost_currency=_opt_float(trip.cost),
        consumption_per_100km=_opt_float(trip.consumption_l100km),
        closed_by=trip.closed_by or "manual",
        trip_name=trip.trip_name,
        notes=trip.notes,
    )


def record_to_dict(record: TripRecord, with_path: bool = True) -> dict:
    d = {
        "tripId": record.trip_id,
        "deviceId": record.device_id,
        "tripName": record.trip_name,
        "notes": record.notes,
        "startedAt": record.started_at,
        "endedAt": record.ended_at,
        "totalDuration": record.total_duration_sec,
        "movingDuration": record.moving_duration_sec,
        "idleDuration": record.idle_duration_sec,
        "distance": round(record.distance_km, 3),
        "topSpeed": record.top_speed_kmh,
        "fuelUsed": record.fuel_used_liters,
        "cost": record.cost_currency,
        "consumption": record.consumption_per_100km,
        "closedBy": record.closed_by,
        "stops": [
            {"lat": s.latitude, "lng": s.longitude, "startedAt": s.started_at,
             "endedAt": s.ended_at, "duration": s.duration_sec}
            for s in record.stops
        ],
    }
    if with_path:
        d["path"] = [{"lat": p.latitude, "lng": p.longitude} for p in record.path]
    return d


# ---------------------------------------------------
#          Trip store (insert-only)
# ---------------------------------------------------
class SqlTripStore:
    def __init__(self, session_factory=AsyncSessionLocal):
        self._session_factory = session_factory

    async def save_trip_record(self, device_id, record: TripRecord) -> None:
        """Insert the trip and its stops in one transaction. Raises on failure."""
        async with self._session_factory() as db:
            db.add(record_to_row(record))
            await db.commit()
        logger.info(
            f"[persist] Saved trip {record.trip_id} device={device_id} "
            f"distance={record.distance_km:.3f}km stops={record.stop_count}"
        )

    async def list_trips(self, device_id, limit: int = 50) -> List[TripRecord]:
        async with self._session_factory() as db:
            q = await db.execute(
                select(Trip)
                .where(Trip.device_id == str(device_id))
                .options(selectinload(Trip.stops))
                .order_by(Trip.start_time.desc())
                .limit(limit)
            )
            return [row_to_record(t) for t in q.scalars().all()]

    async def get_trip(self, device_id, trip_id: str) -> Optional[TripRecord]:
        async with self._session_factory() as db:
            q = await db.execute(
                select(Trip)
                .where(Trip.device_id == str(device_id), Trip.trip_id == trip_id)
                .options(selectinload(Trip.stops))
            )
            trip = q.scalar_one_or_none()
            return row_to_record(trip) if trip else None

    async def delete_trip(self, device_id, trip_id: str) -> bool:
        async with self._session_factory() as db:
            res = await db.execute(
                delete(Trip).where(Trip.device_id == str(device_id), Trip.trip_id == trip_id)
            )
            await db.commit()
        deleted = (res.rowcount or 0) > 0
        if deleted:
            logger.info(f"[persist] Deleted trip {trip_id} device={device_id}")
        return deleted
