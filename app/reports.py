#!/usr/bin/env python3
"""
DriveLink - trip report export

Usage:
    python reports.py <device_id> [--limit 100] [--out trips_<device>.csv]

Times are reported in REPORT_TIMEZONE (default Asia/Colombo).
"""
import argparse
import asyncio
import datetime as dt
from typing import Iterable

import pandas as pd
import pytz

from config import REPORT_TIMEZONE
from trip_types import TripRecord

UTC = pytz.utc

COLUMNS = [
    "trip_id", "device_id", "trip_name", "start_local", "end_local",
    "total_min", "moving_min", "idle_min", "distance_km", "max_speed",
    "stops", "fuel_used_l", "cost", "consumption_l100km", "closed_by",
]


def _local(ms: int, tz) -> dt.datetime:
    return dt.datetime.fromtimestamp(ms / 1000.0, tz=UTC).astimezone(tz)


def trips_dataframe(records: Iterable[TripRecord], tz_name: str = REPORT_TIMEZONE) -> pd.DataFrame:
    tz = pytz.timezone(tz_name)
    rows = []
    for t in records:
        rows.append({
            "trip_id": t.trip_id,
            "device_id": t.device_id,
            "trip_name": t.trip_name or "Unnamed Trip",
            "start_local": _local(t.started_at, tz),
            "end_local": _local(t.ended_at, tz),
            "total_min": t.total_duration_sec / 60.0,
            "moving_min": t.moving_duration_sec / 60.0,
            "idle_min": t.idle_duration_sec / 60.0,
            "distance_km": t.distance_km,
            "max_speed": t.top_speed_kmh,
            "stops": t.stop_count,
            # no fuel readings -> NaN, never 0
            "fuel_used_l": t.fuel_used_liters if t.fuel_used_liters is not None else float("nan"),
            "cost": t.cost_currency if t.cost_currency is not None else float("nan"),
            "consumption_l100km": (t.consumption_per_100km
                                   if t.consumption_per_100km is not None else float("nan")),
            "closed_by": t.closed_by,
        })

    if not rows:
        return pd.DataFrame(columns=COLUMNS)

    df = pd.DataFrame(rows, columns=COLUMNS)
    df.sort_values("start_local", inplace=True)
    df.reset_index(drop=True, inplace=True)
    return df


def summarize_trips(df: pd.DataFrame) -> dict:
    """Fleet-style totals over a trips dataframe."""
    if df.empty:
        return {"trips": 0, "distance_km": 0.0, "moving_min": 0.0, "idle_min": 0.0,
                "stops": 0, "fuel_used_l": None, "cost": None, "max_speed": 0.0}

    fuel = df["fuel_used_l"].dropna()
    cost = df["cost"].dropna()
    return {
        "trips": int(len(df)),
        "distance_km": round(float(df["distance_km"].sum()), 3),
        "moving_min": round(float(df["moving_min"].sum()), 2),
        "idle_min": round(float(df["idle_min"].sum()), 2),
        "stops": int(df["stops"].sum()),
        "fuel_used_l": round(float(fuel.sum()), 2) if not fuel.empty else None,
        "cost": round(float(cost.sum()), 2) if not cost.empty else None,
        "max_speed": float(df["max_speed"].max()),
    }


async def export_trip_report(store, device_id, out_path: str, limit: int = 100,
                             tz_name: str = REPORT_TIMEZONE) -> pd.DataFrame:
    records = await store.list_trips(device_id, limit=limit)
    df = trips_dataframe(records, tz_name)
    df.to_csv(out_path, index=False)
    return df


# ----------------- CLI -----------------
def parse_args():
    p = argparse.ArgumentParser(description="Export stored trips for one device to CSV.")
    p.add_argument("device_id", help="Device id as used by the telemetry feed")
    p.add_argument("--limit", type=int, default=100, help="Most recent N trips")
    p.add_argument("--out", default=None, help="Output CSV path. Defaults to trips_<device>.csv")
    p.add_argument("--tz", default=REPORT_TIMEZONE, help="Report timezone")
    return p.parse_args()


def main():
    from crud import SqlTripStore

    args = parse_args()
    out = args.out or f"trips_{args.device_id}.csv"
    df = asyncio.run(export_trip_report(SqlTripStore(), args.device_id, out, args.limit, args.tz))
    print(f"Wrote {len(df)} trips to {out}")
    print(summarize_trips(df))


if __name__ == "__main__":
    main()
