"""Tests for the trip report export."""

import math

import pandas as pd
import pytest

from conftest import FakeStore
from reports import COLUMNS, export_trip_report, summarize_trips, trips_dataframe


def test_dataframe_in_local_time(make_record, a_stop):
    df = trips_dataframe([make_record(stops=[a_stop], trip_name="Market")], "Asia/Colombo")

    assert list(df.columns) == COLUMNS
    row = df.iloc[0]
    # 2026-01-01T00:00Z is 05:30 in Colombo
    assert row["start_local"].hour == 5
    assert row["start_local"].minute == 30
    assert row["trip_name"] == "Market"
    assert row["total_min"] == 10.0
    assert row["stops"] == 1


def test_missing_fuel_is_nan_not_zero(make_record):
    df = trips_dataframe([make_record()])

    assert math.isnan(df.iloc[0]["fuel_used_l"])
    assert df.iloc[0]["trip_name"] == "Unnamed Trip"


def test_rows_sorted_by_start(make_record):
    df = trips_dataframe([make_record(trip_id="late", start_s=3600, end_s=4200),
                          make_record(trip_id="early")])

    assert list(df["trip_id"]) == ["early", "late"]


def test_summary(make_record, a_stop):
    df = trips_dataframe([
        make_record(trip_id="a", distance_km=5.0, fuel_used=1.0, cost=380.0, stops=[a_stop]),
        make_record(trip_id="b", start_s=3600, end_s=4200, distance_km=7.5),
    ])

    s = summarize_trips(df)

    assert s["trips"] == 2
    assert s["distance_km"] == 12.5
    assert s["stops"] == 1
    assert s["fuel_used_l"] == 1.0
    assert s["cost"] == 380.0
    assert s["max_speed"] == 62.0


def test_summary_without_fuel_or_trips(make_record):
    assert summarize_trips(trips_dataframe([make_record()]))["fuel_used_l"] is None
    assert summarize_trips(trips_dataframe([]))["trips"] == 0


@pytest.mark.asyncio
async def test_export_writes_csv(tmp_path, make_record):
    store = FakeStore()
    await store.save_trip_record("dev-1", make_record(trip_id="t-1"))
    await store.save_trip_record("dev-2", make_record(trip_id="t-2"))
    out = tmp_path / "trips.csv"

    df = await export_trip_report(store, "dev-1", str(out))

    assert len(df) == 1
    written = pd.read_csv(out)
    assert list(written.columns) == COLUMNS
    assert written.iloc[0]["trip_id"] == "t-1"
