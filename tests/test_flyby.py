import numpy as np
import pytest
import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))
from patchedconics.dynamics.kepler import orbit_to_velocity_at_date, sidereal_period
from patchedconics.dynamics.kerbol import kerbol_system
from patchedconics.dynamics.vectors import Z_DIR, rodrigues
from patchedconics.trajectory.flyby import (
    flyby_from_parameters, flyby_parameters, leg_duration_bounds, max_flyby_radius, min_flyby_radius,
)

FLYBY_TIME = 5.0e6


@pytest.fixture(scope="module")
def system():
    return kerbol_system()


@pytest.fixture(scope="module")
def kerbin(system):
    return system.body_from_id(4)


def unit(v):
    return v / np.linalg.norm(v)


def test_flyby_radius_bounds(kerbin):
    assert min_flyby_radius(kerbin) < max_flyby_radius(kerbin) == kerbin.soi


def test_unpowered_flyby(kerbin):
    vel_in = np.array([1000.0, 0.0, 0.0])
    vel_out = rodrigues(vel_in, Z_DIR, np.radians(30.0))

    params = flyby_parameters(vel_in, vel_out, kerbin, FLYBY_TIME)

    assert params.error < 1e-6
    assert np.isclose(params.delta_v, 0.0, atol=1e-6)
    assert min_flyby_radius(kerbin) <= params.periapsis <= kerbin.soi
    assert params.in_eccentricity > 1
    np.testing.assert_allclose(params.normal_direction, Z_DIR, atol=1e-12)


def test_powered_flyby_delta_v(kerbin):
    vel_in = np.array([1000.0, 0.0, 0.0])
    vel_out = rodrigues(np.array([1100.0, 0.0, 0.0]), Z_DIR, np.radians(20.0))

    params = flyby_parameters(vel_in, vel_out, kerbin, FLYBY_TIME)

    mu = kerbin.std_grav_param
    rp = params.periapsis
    speed_in = np.sqrt(1000.0 ** 2 + 2 * mu * (1 / rp - 1 / kerbin.soi))
    speed_out = np.sqrt(1100.0 ** 2 + 2 * mu * (1 / rp - 1 / kerbin.soi))
    assert np.isclose(params.delta_v, speed_out - speed_in, rtol=1e-6)


def test_infeasible_turn_reports_error(kerbin):
    vel_in = np.array([5000.0, 0.0, 0.0])
    vel_out = rodrigues(vel_in, Z_DIR, np.radians(170.0))

    params = flyby_parameters(vel_in, vel_out, kerbin, FLYBY_TIME)

    assert params.error > 0.1
    # The best the body can do is the lowest pass
    assert np.isclose(params.periapsis, min_flyby_radius(kerbin), rtol=1e-3)


def test_flyby_from_parameters(kerbin):
    vel_in = np.array([1000.0, 0.0, 0.0])
    vel_out = rodrigues(vel_in, Z_DIR, np.radians(30.0))
    params = flyby_parameters(vel_in, vel_out, kerbin, FLYBY_TIME)

    flyby = flyby_from_parameters(params, kerbin)

    assert len(flyby.orbits) == 2
    assert len(flyby.maneuvers) == 1
    in_date, time, out_date = flyby.intersect_times
    assert in_date < time < out_date
    assert time == FLYBY_TIME
    # Symmetric unpowered flyby
    assert np.isclose(time - in_date, out_date - time, rtol=1e-6)

    v_entry = orbit_to_velocity_at_date(flyby.orbits[0], kerbin, in_date)
    v_exit = orbit_to_velocity_at_date(flyby.orbits[1], kerbin, out_date)
    assert np.dot(unit(v_entry), unit(vel_in)) > 0.9999
    assert np.dot(unit(v_exit), unit(vel_out)) > 0.9999
    assert np.isclose(np.linalg.norm(v_exit), 1000.0, rtol=1e-4)


def test_leg_duration_bounds(system):
    kerbin = system.body_from_id(4)
    duna = system.body_from_id(7)
    lo, hi = leg_duration_bounds(kerbin.orbit, duna.orbit, system.sun)

    mid = sidereal_period(0.5 * (kerbin.orbit.semi_major_axis + duna.orbit.semi_major_axis),
                          system.sun.std_grav_param)
    assert np.isclose(lo, mid / 25)
    assert np.isclose(hi, 2 * mid)


def test_zero_turn_flyby(kerbin):
    vel = np.array([800.0, 300.0, 0.0])
    params = flyby_parameters(vel, vel.copy(), kerbin, FLYBY_TIME)

    assert params.delta_v == 0.0
    assert params.error < 1e-3
