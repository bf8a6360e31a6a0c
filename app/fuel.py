# app/fuel.py
from dataclasses import dataclass
from typing import Optional

from trip_types import TelemetrySample, TripSession


@dataclass(frozen=True)
class FuelEstimate:
    fuel_used_percent: Optional[float]
    fuel_used_liters: Optional[float]
    cost_currency: Optional[float]
    consumption_per_100km: Optional[float]


NO_ESTIMATE = FuelEstimate(None, None, None, None)


def track_fuel(session: TripSession, sample: TelemetrySample) -> bool:
    """
    Record the sample's fuel level, if it has one.

    First reading sets the baseline. A reading above the previous one is a
    refuel: the baseline moves up to it. Returns True on a refuel.
    """
    level = sample.fuel_level_percent
    if level is None:
        return False

    if session.fuel_start_percent is None:
        session.fuel_start_percent = level
        session.fuel_last_percent = level
        return False

    refuel = session.fuel_last_percent is not None and level > session.fuel_last_percent
    if refuel:
        session.fuel_start_percent = level
    session.fuel_last_percent = level
    return refuel


def estimate_fuel(
    fuel_start_percent: Optional[float],
    fuel_last_percent: Optional[float],
    distance_km: float,
    tank_capacity_liters: float,
    price_per_liter: float,
) -> FuelEstimate:
    """Fuel used, cost and L/100km at finalize time. No readings, no estimate."""
    if fuel_start_percent is None or fuel_last_percent is None:
        return NO_ESTIMATE

    used_percent = max(0.0, fuel_start_percent - fuel_last_percent)
    used_liters = used_percent / 100.0 * tank_capacity_liters
    cost = used_liters * price_per_liter
    consumption = used_liters / distance_km * 100.0 if distance_km > 0 else 0.0

    return FuelEstimate(
        fuel_used_percent=used_percent,
        fuel_used_liters=used_liters,
        cost_currency=cost,
        consumption_per_100km=consumption,
    )


def estimate_range_km(
    level_percent: Optional[float],
    tank_capacity_liters: float,
    km_per_liter: float,
) -> Optional[float]:
    """Remaining range on the current fuel level, for the live view."""
    if level_percent is None:
        return None
    level = max(0.0, min(100.0, level_percent))
    return round(level / 100.0 * tank_capacity_liters * km_per_liter, 1)
