# app/validator.py
import datetime as dt
import math
from typing import Any, Optional, Union

from errors import InvalidSample, OutOfOrderSample
from trip_types import Rejected, TelemetrySample

UTC = dt.timezone.utc

# accepted spellings in the device feed, first match wins
LAT_KEYS = ("latitude", "lat")
LON_KEYS = ("longitude", "lng", "lon")
SPEED_KEYS = ("speedKmh", "speed_kmh", "speed")
SATELLITE_KEYS = ("satelliteCount", "satellite_count", "satellites")
FUEL_KEYS = ("fuelLevelPercent", "fuel_level_percent", "fuel", "fuel_sensor")
BATTERY_KEYS = ("batteryVoltage", "battery_voltage", "battery")


def _pick(raw: dict, keys) -> Any:
    for k in keys:
        if k in raw and raw[k] is not None:
            v = raw[k]
            # feed leaves sometimes arrive as {"value": x}
            if isinstance(v, dict):
                v = v.get("value")
            return v
    return None


def _as_float(v) -> Optional[float]:
    if v is None or isinstance(v, bool):
        return None
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def to_epoch_ms(v) -> Optional[int]:
    """
    Epoch milliseconds from an int/float (already ms) or an ISO-8601 string.
    Naive datetimes are taken as UTC.
    """
    if isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        return int(v) if math.isfinite(v) else None

    if isinstance(v, dt.datetime):
        d = v if v.tzinfo else v.replace(tzinfo=UTC)
        return int(d.timestamp() * 1000)

    if isinstance(v, str):
        s = v.strip()
        if s.isdigit():
            return int(s)
        try:
            d = dt.datetime.fromisoformat(s.replace("Z", "+00:00"))
        except ValueError:
            return None
        d = d if d.tzinfo else d.replace(tzinfo=UTC)
        return int(d.timestamp() * 1000)

    return None


def _reject(exc_type, detail: str) -> Rejected:
    return Rejected(reason=exc_type.__name__, detail=detail)


def validate(raw: dict, last_sample_at: Optional[int] = None) -> Union[TelemetrySample, Rejected]:
    """
    Normalise one raw reading. Pure: returns the sample or a Rejected value.
    """
    if not isinstance(raw, dict):
        return _reject(InvalidSample, f"sample is {type(raw).__name__}, not an object")

    lat = _as_float(_pick(raw, LAT_KEYS))
    lon = _as_float(_pick(raw, LON_KEYS))
    if lat is None or lon is None:
        return _reject(InvalidSample, "missing latitude/longitude")
    if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lon <= 180.0):
        return _reject(InvalidSample, f"position out of range lat={lat} lon={lon}")

    ts = to_epoch_ms(raw.get("timestamp"))
    if ts is None:
        return _reject(InvalidSample, f"bad timestamp {raw.get('timestamp')!r}")
    if last_sample_at is not None and ts <= last_sample_at:
        return _reject(OutOfOrderSample, f"timestamp {ts} <= last {last_sample_at}")

    raw_speed = _pick(raw, SPEED_KEYS)
    speed = 0.0 if raw_speed is None else _as_float(raw_speed)
    if speed is None or speed < 0:
        return _reject(InvalidSample, f"bad speed {raw_speed!r}")

    raw_sats = _pick(raw, SATELLITE_KEYS)
    sats = 0.0 if raw_sats is None else _as_float(raw_sats)
    if sats is None or sats < 0 or sats != int(sats):
        return _reject(InvalidSample, f"bad satellite count {raw_sats!r}")

    # auxiliary readings degrade to "unknown" instead of rejecting the position
    fuel = _as_float(_pick(raw, FUEL_KEYS))
    if fuel is not None and not (0.0 <= fuel <= 100.0):
        fuel = None
    battery = _as_float(_pick(raw, BATTERY_KEYS))

    return TelemetrySample(
        timestamp=ts,
        latitude=lat,
        longitude=lon,
        speed_kmh=speed,
        satellite_count=int(sats),
        fuel_level_percent=fuel,
        battery_voltage=battery,
    )
