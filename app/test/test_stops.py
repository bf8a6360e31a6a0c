"""Tests for the MOVING/STOPPED state machine."""

import pytest

from conftest import BASE_TS
from stops import close_open_stop, detect_stop
from trip_types import MotionState, TripSession


@pytest.fixture
def session():
    return TripSession(session_id="s-1", device_id="dev-1", created_at=0)


def feed(session, points, **kw):
    for p in points:
        session.last_sample_at = p.timestamp
        detect_stop(session, p, moving_threshold_kmh=5.0, dwell_sec=30.0, **kw)


def test_45s_standstill_gives_one_stop(session, make_point):
    points = [make_point(0, speed=40)]
    points += [make_point(t, 6.9300, 79.8650, speed=0) for t in range(5, 50, 5)]  # 5..45
    points += [make_point(50, speed=30)]
    feed(session, points)

    assert len(session.stops) == 1
    stop = session.stops[0]
    assert stop.started_at == BASE_TS + 5_000
    assert stop.ended_at == BASE_TS + 50_000
    assert stop.duration_sec == pytest.approx(45.0)
    assert (stop.latitude, stop.longitude) == (6.9300, 79.8650)
    assert session.current_motion_state is MotionState.MOVING
    assert session.current_stop is None


def test_short_dwell_is_not_a_stop(session, make_point):
    points = [make_point(0, speed=40)]
    points += [make_point(t, speed=0) for t in (5, 10, 15, 20, 25)]  # 20s span
    points += [make_point(30, speed=40)]
    feed(session, points)

    assert session.stops == []
    assert session.current_motion_state is MotionState.MOVING


def test_stop_anchored_to_first_slow_sample(session, make_point):
    feed(session, [make_point(0, 6.91, 79.85, speed=3), make_point(10, 6.92, 79.86, speed=1),
                   make_point(30, 6.93, 79.87, speed=0)])

    assert session.current_motion_state is MotionState.STOPPED
    assert session.current_stop.started_at == BASE_TS
    assert (session.current_stop.latitude, session.current_stop.longitude) == (6.91, 79.85)
    # open stops are not in the list until closed
    assert session.stops == []
    assert session.current_stop_started_at == BASE_TS


def test_speed_at_threshold_counts_as_stationary(session, make_point):
    feed(session, [make_point(t, speed=5.0) for t in (0, 15, 30)])

    assert session.current_motion_state is MotionState.STOPPED


def test_motion_resets_dwell_candidate(session, make_point):
    feed(session, [
        make_point(0, speed=0), make_point(20, speed=0),
        make_point(25, speed=10),                     # resets
        make_point(30, speed=0), make_point(50, speed=0),
    ])

    assert session.current_motion_state is MotionState.MOVING
    assert session.below_threshold_since.timestamp == BASE_TS + 30_000


def test_close_open_stop_uses_last_sample(session, make_point):
    feed(session, [make_point(t, speed=0) for t in (0, 30, 60, 90)])
    assert session.current_motion_state is MotionState.STOPPED

    stop = close_open_stop(session)

    assert stop.ended_at == BASE_TS + 90_000
    assert session.stops == [stop]
    assert session.current_stop is None


def test_close_open_stop_without_open_stop(session):
    assert close_open_stop(session) is None
    assert session.stops == []


def test_two_stops_in_order(session, make_point):
    points = [make_point(0, speed=30)]
    points += [make_point(t, speed=0) for t in (10, 40)]
    points += [make_point(50, speed=30)]
    points += [make_point(t, speed=0) for t in (60, 100)]
    points += [make_point(110, speed=30)]
    feed(session, points)

    assert [s.started_at for s in session.stops] == [BASE_TS + 10_000, BASE_TS + 60_000]
    assert all(s.ended_at >= s.started_at for s in session.stops)
