# app/vehicles.py
from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy import select

from config import DEFAULT_KM_PER_LITER, DEFAULT_PRICE_PER_LITER, DEFAULT_TANK_CAPACITY_L
from logging_config import get_logger

logger = get_logger("vehicles", "vehicles.log")


@dataclass(frozen=True)
class VehicleConfig:
    tank_capacity_liters: float = DEFAULT_TANK_CAPACITY_L
    price_per_liter: float = DEFAULT_PRICE_PER_LITER
    km_per_liter: float = DEFAULT_KM_PER_LITER


DEFAULT_VEHICLE = VehicleConfig()


def _num(v, fallback: float) -> float:
    return float(v) if v is not None else fallback


class VehicleConfigProvider:
    """
    Per-device tank capacity / fuel price. lookup() is synchronous and never
    fails: it serves the cached row or the defaults. refresh() reloads the
    cache from the vehicles table.
    """

    def __init__(self, session_factory=None, default: VehicleConfig = DEFAULT_VEHICLE):
        self._session_factory = session_factory
        self._default = default
        self._cache: Dict[str, VehicleConfig] = {}

    def lookup(self, device_id) -> VehicleConfig:
        return self._cache.get(str(device_id), self._default)

    def set(self, device_id, config: VehicleConfig) -> None:
        self._cache[str(device_id)] = config

    async def refresh(self) -> Optional[int]:
        """Reload from the DB. Keeps the previous cache if the load fails."""
        if self._session_factory is None:
            return None

        from models import Vehicle

        try:
            async with self._session_factory() as db:
                rows = (await db.execute(select(Vehicle))).scalars().all()
        except Exception as e:
            logger.warning(f"[vehicles] refresh failed, keeping {len(self._cache)} cached rows: {e}")
            return None

        fresh = {}
        for v in rows:
            fresh[str(v.device_id)] = VehicleConfig(
                tank_capacity_liters=_num(v.tank_capacity_l, self._default.tank_capacity_liters),
                price_per_liter=_num(v.price_per_liter, self._default.price_per_liter),
                km_per_liter=_num(v.km_per_liter, self._default.km_per_liter),
            )
        self._cache = fresh
        logger.info(f"[vehicles] loaded config for {len(fresh)} vehicles")
        return len(fresh)
