import numpy as np
import pytest
import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))
from patchedconics.dynamics.vectors import (
    TWO_PI, X_DIR, Y_DIR, Z_DIR, CalendarDate, TimeSettings, align_vectors_angle_axis,
    calendar_date_to_duration_string, calendar_date_to_string, calendar_date_to_time,
    cartesian_to_spherical, counter_clockwise_angle_in_plane, copysign, deg_to_rad, lerp, linspace, rad_to_deg,
    rodrigues, spherical_to_cartesian, time_to_calendar_date, wrap_angle, zxz,
)
from patchedconics.dynamics.kerbol import KERBIN_TIME


def test_wrap_angle():
    assert np.isclose(wrap_angle(3 * np.pi), np.pi)
    assert np.isclose(wrap_angle(-np.pi / 2), 1.5 * np.pi)
    assert wrap_angle(0.0) == 0.0
    # Upper end is excluded
    assert np.isclose(wrap_angle(TWO_PI), 0.0)
    assert np.isclose(wrap_angle(1.5 * np.pi, -np.pi), -0.5 * np.pi)


def test_linspace_single_sample_is_stop():
    np.testing.assert_allclose(linspace(2.0, 5.0, 1), [5.0])
    np.testing.assert_allclose(linspace(0.0, 1.0, 5), [0.0, 0.25, 0.5, 0.75, 1.0])


def test_lerp_and_copysign():
    assert lerp(10.0, 20.0, 0.25) == 12.5
    assert copysign(2.0, -0.0) == 2.0
    assert copysign(2.0, -1.0) == -2.0


def test_rodrigues_quarter_turn():
    np.testing.assert_allclose(rodrigues(X_DIR, Z_DIR, np.pi / 2), Y_DIR, atol=1e-15)


def test_align_vectors_parallel_gives_nan_axis():
    axis, angle = align_vectors_angle_axis(X_DIR, 2 * X_DIR)
    assert np.isnan(axis[0])
    assert angle == 0.0


def test_counter_clockwise_angle_in_plane():
    assert np.isclose(counter_clockwise_angle_in_plane(X_DIR, Y_DIR, Z_DIR), np.pi / 2)
    assert np.isclose(counter_clockwise_angle_in_plane(Y_DIR, X_DIR, Z_DIR), 1.5 * np.pi)
    # Seen from below, the sense reverses
    assert np.isclose(counter_clockwise_angle_in_plane(X_DIR, Y_DIR, -Z_DIR), 1.5 * np.pi)


def test_zxz_inverse():
    v = np.array([1.0, -2.0, 0.5])
    a1, a2, a3 = 0.3, 1.1, -2.0
    back = zxz(zxz(v, a1, a2, a3), -a3, -a2, -a1)
    np.testing.assert_allclose(back, v, atol=1e-12)


def test_spherical_coordinates():
    r, theta, phi = cartesian_to_spherical(np.array([0.0, 3.0, 0.0]))
    assert r == 3.0
    assert np.isclose(theta, np.pi / 2)
    assert np.isclose(phi, np.pi / 2)

    p = np.array([1.0, -2.0, 3.0])
    np.testing.assert_allclose(spherical_to_cartesian(*cartesian_to_spherical(p)), p, atol=1e-12)


def test_time_settings():
    assert KERBIN_TIME.seconds_per_day == 21600.0
    assert TimeSettings(hours_per_day=24).seconds_per_day == 86400.0


def test_calendar_date():
    date = time_to_calendar_date(12345678, KERBIN_TIME)
    assert date == CalendarDate(year=2, day=146, hour=3, minute=21, second=18)
    assert calendar_date_to_string(date) == "Year 2, Day 146, 03:21:18"
    assert calendar_date_to_time(date, KERBIN_TIME, 1, 1) == 12345678

    assert time_to_calendar_date(0, KERBIN_TIME) == CalendarDate(1, 1, 0, 0, 0)


def test_duration_string():
    duration = time_to_calendar_date(21600 + 3600 + 61, KERBIN_TIME, 0, 0)
    assert calendar_date_to_duration_string(duration) == "0 Years, 1 Day, 1 hour, 1 minute, and 1 second"


def test_degree_conversions():
    assert np.isclose(deg_to_rad(180.0), np.pi)
    assert np.isclose(rad_to_deg(deg_to_rad(37.5)), 37.5)
