"""Tests for TripRecord <-> row mapping and the SQL trip store."""

import datetime as dt
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import BASE_TS
from crud import SqlTripStore, dt_to_ms, ms_to_dt, record_to_dict, record_to_row, row_to_record


def test_ms_datetime_conversion():
    d = ms_to_dt(BASE_TS)

    assert d == dt.datetime(2026, 1, 1, tzinfo=dt.timezone.utc)
    assert dt_to_ms(d) == BASE_TS
    # naive values are read as UTC
    assert dt_to_ms(dt.datetime(2026, 1, 1)) == BASE_TS


def test_record_to_row(make_record, a_stop):
    rec = make_record(fuel_used=2.0, cost=760.0, stops=[a_stop], trip_name="School run")

    row = record_to_row(rec)

    assert row.trip_id == "trip-1"
    assert row.device_id == "dev-1"
    assert row.trip_name == "School run"
    assert row.start_time == ms_to_dt(BASE_TS)
    assert row.total_duration_s == 600.0
    assert row.fuel_used_l == 2.0
    assert row.cost == 760.0
    assert row.closed_by == "manual"
    assert row.path[0] == {"lat": 6.9271, "lng": 79.8612, "t": BASE_TS, "speed": 0.0}
    assert len(row.stops) == 1
    assert row.stops[0].duration_s == 45
    assert row.stops[0].resume_time == ms_to_dt(BASE_TS + 105_000)


def test_row_back_to_record(make_record, a_stop):
    rec = make_record(fuel_used=2.0, cost=760.0, stops=[a_stop], notes="rain")

    back = row_to_record(record_to_row(rec))

    assert back.trip_id == rec.trip_id
    assert back.started_at == rec.started_at
    assert back.ended_at == rec.ended_at
    assert back.stops == rec.stops
    assert [p.position for p in back.path] == [p.position for p in rec.path]
    assert back.fuel_used_liters == 2.0
    assert back.notes == "rain"


def test_missing_fuel_stays_null(make_record):
    row = record_to_row(make_record())

    assert row.fuel_used_l is None
    assert row_to_record(row).cost_currency is None


def test_record_to_dict(make_record, a_stop):
    d = record_to_dict(make_record(distance_km=12.34567, stops=[a_stop]))

    assert d["distance"] == 12.346
    assert d["tripName"] is None
    assert d["stops"] == [{"lat": 6.93, "lng": 79.86, "startedAt": BASE_TS + 60_000,
                           "endedAt": BASE_TS + 105_000, "duration": 45.0}]
    assert "path" not in record_to_dict(make_record(), with_path=False)


def fake_session_factory(db):
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = db
    return factory


@pytest.mark.asyncio
async def test_save_trip_record_adds_and_commits(make_record):
    db = MagicMock()
    db.commit = AsyncMock()
    store = SqlTripStore(fake_session_factory(db))

    await store.save_trip_record("dev-1", make_record())

    row = db.add.call_args.args[0]
    assert row.trip_id == "trip-1"
    db.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_save_trip_record_propagates_errors(make_record):
    db = MagicMock()
    db.commit = AsyncMock(side_effect=OSError("connection refused"))
    store = SqlTripStore(fake_session_factory(db))

    with pytest.raises(OSError):
        await store.save_trip_record("dev-1", make_record())


@pytest.mark.asyncio
async def test_delete_trip_reports_rowcount():
    db = MagicMock()
    db.execute = AsyncMock(return_value=MagicMock(rowcount=0))
    db.commit = AsyncMock()
    store = SqlTripStore(fake_session_factory(db))

    assert await store.delete_trip("dev-1", "nope") is False
