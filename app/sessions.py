# app/sessions.py
import asyncio
import uuid
from collections import deque
from typing import Deque, Dict, List, Optional, Tuple

import asyncpg
from sqlalchemy.exc import DBAPIError, IntegrityError
from tenacity import (AsyncRetrying, retry_if_exception_type, retry_if_not_exception_type,
                      stop_after_attempt, wait_exponential_jitter)

from config import (DWELL_SEC, GAP_THRESHOLD_SEC, IDLE_TIMEOUT_SEC, LIVENESS_THRESHOLD_SEC,
                    MOVING_SPEED_THRESHOLD_KMH, NOISE_FLOOR_M, PERSIST_BACKOFF_INITIAL_SEC,
                    PERSIST_BACKOFF_MAX_SEC, PERSIST_MAX_ATTEMPTS)
from errors import AlreadyActive, NoActiveSession, PersistenceFailure
from fuel import estimate_fuel, estimate_range_km, track_fuel
from liveness import battery_health, is_charging, liveness, now_ms, signal_bars
from motion import apply_motion
from stops import close_open_stop, detect_stop
from trip_types import (CloseResult, LiveState, MotionState, Rejected, TelemetrySample,
                        TripRecord, TripSession)
from validator import validate
from vehicles import VehicleConfigProvider
from logging_config import get_logger

logger = get_logger("sessions", "sessions.log")

RETRYABLE_ERRORS = (DBAPIError, OSError, asyncpg.CannotConnectNowError)


class TripSessionManager:
    """
    Sole owner of the open TripSession per device.

    Every mutation of a device's session (ingest, close, idle sweep) runs under
    that device's asyncio.Lock, so samples apply one at a time in arrival
    order and a session is never fed while it is being finalized. Devices
    never share a lock; a device gets its lock on its first start, and calls
    for devices that never had a session are refused before any state is
    created for them. Aggregation itself is synchronous, so live-state reads
    always see a whole sample applied or not at all.
    """

    def __init__(
        self,
        store,
        vehicles: Optional[VehicleConfigProvider] = None,
        *,
        moving_threshold_kmh: float = MOVING_SPEED_THRESHOLD_KMH,
        dwell_sec: float = DWELL_SEC,
        gap_threshold_sec: float = GAP_THRESHOLD_SEC,
        noise_floor_m: float = NOISE_FLOOR_M,
        liveness_threshold_sec: float = LIVENESS_THRESHOLD_SEC,
        idle_timeout_sec: float = IDLE_TIMEOUT_SEC,
        persist_attempts: int = PERSIST_MAX_ATTEMPTS,
        persist_wait=None,
        clock=now_ms,
    ):
        self._store = store
        self._vehicles = vehicles or VehicleConfigProvider()
        self.moving_threshold_kmh = moving_threshold_kmh
        self.dwell_sec = dwell_sec
        self.gap_threshold_sec = gap_threshold_sec
        self.noise_floor_m = noise_floor_m
        self.liveness_threshold_sec = liveness_threshold_sec
        self.idle_timeout_sec = idle_timeout_sec
        self._persist_attempts = persist_attempts
        self._persist_wait = persist_wait or wait_exponential_jitter(
            initial=PERSIST_BACKOFF_INITIAL_SEC, max=PERSIST_BACKOFF_MAX_SEC
        )
        self._clock = clock

        self._sessions: Dict[str, TripSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._last_seen: Dict[str, TelemetrySample] = {}
        self._pending: Deque[Tuple[str, TripRecord]] = deque()

    # =====================================================================
    # Session lifecycle
    # =====================================================================
    async def start(self, device_id) -> str:
        key = str(device_id)
        async with self._locks.setdefault(key, asyncio.Lock()):
            existing = self._sessions.get(key)
            if existing is not None:
                raise AlreadyActive(key, existing.session_id)

            session = TripSession(
                session_id=uuid.uuid4().hex,
                device_id=key,
                created_at=self._clock(),
            )
            self._sessions[key] = session

        logger.info(f"[trip] Started session {session.session_id} device={key}")
        return session.session_id

    def _device_lock(self, key: str) -> asyncio.Lock:
        # locks exist only for devices that have had a session
        lock = self._locks.get(key)
        if lock is None:
            raise NoActiveSession(key)
        return lock

    async def ensure_session(self, device_id) -> str:
        """Start a session, or return the id of the one already open."""
        try:
            return await self.start(device_id)
        except AlreadyActive as e:
            return e.session_id

    async def ingest(self, device_id, raw: dict) -> None:
        """
        Validate and apply one raw sample to the device's open session.
        Dropped samples (invalid, out of order) return normally.
        """
        key = str(device_id)
        async with self._device_lock(key):
            session = self._sessions.get(key)
            if session is None:
                raise NoActiveSession(key)

            result = validate(raw, session.last_sample_at)
            if isinstance(result, Rejected):
                if result.reason == "OutOfOrderSample":
                    logger.debug(f"[ingest] device={key} dropped out-of-order sample: {result.detail}")
                else:
                    logger.warning(f"[ingest] device={key} dropped invalid sample: {result.detail}")
                return None

            self._apply(session, result)
        return None

    async def close(self, device_id, trip_name: Optional[str] = None,
                    notes: Optional[str] = None) -> CloseResult:
        key = str(device_id)
        async with self._device_lock(key):
            session = self._sessions.get(key)
            if session is None:
                raise NoActiveSession(key)
            record = self._detach_and_finalize(session, "manual", trip_name, notes)

        persisted = await self._persist(key, record)
        return CloseResult(record=record, persisted=persisted)

    async def auto_close(self, now: Optional[int] = None) -> List[CloseResult]:
        """Close every session idle for longer than idle_timeout_sec."""
        now = now if now is not None else self._clock()
        results = []

        for key in list(self._sessions):
            if not self._is_idle(self._sessions.get(key), now):
                continue

            async with self._locks[key]:
                # a sample or a manual close may have landed while we waited
                session = self._sessions.get(key)
                if not self._is_idle(session, now):
                    continue
                record = self._detach_and_finalize(session, "idle_timeout")

            logger.info(
                f"[sweep] Auto-closed idle session {record.trip_id} device={key} "
                f"last_sample_at={session.last_sample_at}"
            )
            persisted = await self._persist(key, record)
            results.append(CloseResult(record=record, persisted=persisted))

        return results

    # =====================================================================
    # Per-sample pipeline: aggregator -> stop detector -> fuel estimator
    # =====================================================================
    def _apply(self, session: TripSession, sample: TelemetrySample) -> None:
        apply_motion(
            session, sample,
            moving_threshold_kmh=self.moving_threshold_kmh,
            gap_threshold_sec=self.gap_threshold_sec,
            noise_floor_m=self.noise_floor_m,
        )

        stop = detect_stop(
            session, sample,
            moving_threshold_kmh=self.moving_threshold_kmh,
            dwell_sec=self.dwell_sec,
        )
        if stop is not None and stop.ended_at is None:
            logger.info(
                f"[stop] Opened stop device={session.device_id} at={stop.started_at} "
                f"pos=({stop.latitude:.5f},{stop.longitude:.5f})"
            )
        elif stop is not None:
            logger.info(
                f"[stop] Closed stop device={session.device_id} "
                f"duration={stop.duration_sec:.0f}s"
            )

        if track_fuel(session, sample):
            logger.info(
                f"[ingest] Refuel detected device={session.device_id} "
                f"new baseline={session.fuel_start_percent}%"
            )

        self._last_seen[session.device_id] = sample

    def _is_idle(self, session: Optional[TripSession], now: int) -> bool:
        if session is None:
            return False
        last = session.last_sample_at if session.last_sample_at is not None else session.created_at
        return (now - last) / 1000.0 > self.idle_timeout_sec

    # =====================================================================
    # Finalize: caller holds the device lock
    # =====================================================================
    def _detach_and_finalize(self, session: TripSession, closed_by: str,
                             trip_name: Optional[str] = None,
                             notes: Optional[str] = None) -> TripRecord:
        self._sessions.pop(session.device_id, None)
        close_open_stop(session)

        started_at = session.started_at if session.started_at is not None else session.created_at
        ended_at = session.last_sample_at if session.last_sample_at is not None else started_at

        vehicle = self._vehicles.lookup(session.device_id)
        fuel = estimate_fuel(
            session.fuel_start_percent,
            session.fuel_last_percent,
            session.distance_km,
            vehicle.tank_capacity_liters,
            vehicle.price_per_liter,
        )

        record = TripRecord(
            trip_id=session.session_id,
            device_id=session.device_id,
            started_at=started_at,
            ended_at=ended_at,
            total_duration_sec=(ended_at - started_at) / 1000.0,
            distance_km=session.distance_km,
            moving_duration_sec=session.moving_duration_sec,
            idle_duration_sec=session.idle_duration_sec,
            top_speed_kmh=session.top_speed_kmh,
            path=tuple(session.path),
            stops=tuple(session.stops),
            fuel_start_percent=session.fuel_start_percent,
            fuel_last_percent=session.fuel_last_percent,
            fuel_used_liters=fuel.fuel_used_liters,
            cost_currency=fuel.cost_currency,
            consumption_per_100km=fuel.consumption_per_100km,
            closed_by=closed_by,
            trip_name=trip_name,
            notes=notes,
        )

        logger.info(
            f"[trip] Ended trip {record.trip_id} device={record.device_id} "
            f"distance={record.distance_km:.3f}km duration={record.total_duration_sec:.0f}s "
            f"moving={record.moving_duration_sec:.0f}s idle={record.idle_duration_sec:.0f}s "
            f"stops={record.stop_count} max_speed={record.top_speed_kmh} "
            f"fuel_used={record.fuel_used_liters} cost={record.cost_currency}"
        )
        return record

    # =====================================================================
    # Persistence with bounded retry; never drops a record
    # =====================================================================
    async def _persist(self, device_id: str, record: TripRecord) -> bool:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._persist_attempts),
                wait=self._persist_wait,
                retry=(retry_if_exception_type(RETRYABLE_ERRORS)
                       & retry_if_not_exception_type(IntegrityError)),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.info(
                            f"[persist] Retry {attempt.retry_state.attempt_number} "
                            f"for trip {record.trip_id} device={device_id}"
                        )
                    await self._store.save_trip_record(device_id, record)
        except Exception as e:
            if isinstance(e, IntegrityError) and await self._already_saved(device_id, record):
                return True
            failure = PersistenceFailure(device_id, record.trip_id, e)
            logger.error(f"[persist] {failure}; queued for later retry")
            self._pending.append((device_id, record))
            return False
        return True

    async def _already_saved(self, device_id: str, record: TripRecord) -> bool:
        """
        A duplicate trip_id means an earlier attempt committed but its
        acknowledgement was lost. Confirm against the store before trusting it.
        """
        try:
            found = await self._store.get_trip(device_id, record.trip_id)
        except Exception as e:
            logger.warning(f"[persist] Could not check trip {record.trip_id} device={device_id}: {e}")
            return False
        if found is None:
            return False
        logger.info(f"[persist] Trip {record.trip_id} device={device_id} already stored")
        return True

    async def flush_pending(self) -> int:
        """One save attempt per queued record; failures go back on the queue."""
        saved = 0
        for _ in range(len(self._pending)):
            device_id, record = self._pending.popleft()
            try:
                await self._store.save_trip_record(device_id, record)
            except Exception as e:
                if isinstance(e, IntegrityError) and await self._already_saved(device_id, record):
                    saved += 1
                    continue
                logger.warning(f"[persist] Pending trip {record.trip_id} still failing: {e}")
                self._pending.append((device_id, record))
            else:
                saved += 1

        if saved:
            logger.info(f"[persist] Flushed {saved} pending trips, {len(self._pending)} left")
        return saved

    # =====================================================================
    # Read side
    # =====================================================================
    def get_live_state(self, device_id, now: Optional[int] = None) -> LiveState:
        key = str(device_id)
        now = now if now is not None else self._clock()
        session = self._sessions.get(key)
        last = self._last_seen.get(key)
        status = liveness(now, last.timestamp if last else None, self.liveness_threshold_sec)

        if last is None:
            return LiveState(
                device_id=key,
                liveness=status,
                session_id=session.session_id if session else None,
                motion_state=session.current_motion_state if session else None,
            )

        fuel_level = session.fuel_last_percent if session else last.fuel_level_percent
        vehicle = self._vehicles.lookup(key)

        return LiveState(
            device_id=key,
            liveness=status,
            session_id=session.session_id if session else None,
            location=last.position,
            speed_kmh=last.speed_kmh,
            distance_so_far_km=session.distance_km if session else 0.0,
            stops_so_far=self._stops_so_far(session),
            motion_state=session.current_motion_state if session else None,
            satellites=last.satellite_count,
            signal_bars=signal_bars(last.satellite_count),
            fuel_level_percent=fuel_level,
            fuel_range_km=estimate_range_km(fuel_level, vehicle.tank_capacity_liters,
                                            vehicle.km_per_liter),
            battery_voltage=last.battery_voltage,
            battery_health=battery_health(last.battery_voltage),
            charging=is_charging(last.battery_voltage),
            last_sample_at=last.timestamp,
        )

    @staticmethod
    def _stops_so_far(session: Optional[TripSession]) -> int:
        if session is None:
            return 0
        open_stop = 1 if session.current_motion_state is MotionState.STOPPED else 0
        return len(session.stops) + open_stop

    def active_session_id(self, device_id) -> Optional[str]:
        session = self._sessions.get(str(device_id))
        return session.session_id if session else None

    def active_devices(self) -> List[str]:
        return list(self._sessions)

    def pending_count(self) -> int:
        return len(self._pending)
