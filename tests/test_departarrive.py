"""
Tests for ejections and insertions between a parking orbit and the SOI boundary.
"""
import numpy as np
import pytest
import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))
from patchedconics.dynamics.kepler import orbit_from_elements, orbit_to_position_at_date, orbit_to_state_at_date
from patchedconics.dynamics.kerbol import kerbol_system
from patchedconics.trajectory.departarrive import (
    ejection_date, ejection_position, ejection_velocity, fast_arrival, fast_departure, fast_oberth_departure,
    insertion_date, insertion_position, insertion_velocity,
    min_flyby_radius, optimal_departure,
)

SOI_DATE = 1.0e6
V_INF = np.array([600.0, 800.0, 0.0])


@pytest.fixture(scope="module")
def kerbin():
    return kerbol_system().body_from_id(4)


@pytest.fixture(scope="module")
def lko(kerbin):
    return orbit_from_elements(kerbin, 700000.0, 0.0)


def expected_direct_delta_v(body, r, v_inf):
    mu = body.std_grav_param
    periapsis_speed = np.sqrt(np.dot(v_inf, v_inf) + 2 * mu * (1 / r - 1 / body.soi))
    return periapsis_speed - np.sqrt(mu / r)


def test_min_flyby_radius(kerbin):
    # Radius + atmosphere + 1 km
    assert min_flyby_radius(kerbin) == 671000.0


def test_fast_departure_reaches_soi(kerbin, lko):
    traj = fast_departure(lko, kerbin, V_INF, SOI_DATE, match_park_mo=False)

    assert len(traj.orbits) == 1
    assert len(traj.maneuvers) == 1
    assert traj.orbits[0].eccentricity > 1
    assert np.isclose(traj.end_date, SOI_DATE)

    state = orbit_to_state_at_date(traj.orbits[0], kerbin, traj.end_date)
    assert np.isclose(np.linalg.norm(state.pos), kerbin.soi, rtol=1e-6)
    np.testing.assert_allclose(state.vel, V_INF, rtol=1e-4, atol=1e-2)


def test_fast_departure_delta_v(kerbin, lko):
    traj = fast_departure(lko, kerbin, V_INF, SOI_DATE, match_park_mo=False)
    assert np.isclose(traj.maneuvers[0].delta_v_mag, expected_direct_delta_v(kerbin, 700000.0, V_INF), rtol=1e-6)


def test_fast_arrival_mirrors_departure(kerbin, lko):
    departure = fast_departure(lko, kerbin, V_INF, SOI_DATE, match_park_mo=False)
    arrival = fast_arrival(lko, kerbin, -V_INF, SOI_DATE, match_park_mo=False)

    assert np.isclose(arrival.start_date, SOI_DATE)
    assert arrival.end_date > arrival.start_date
    assert np.isclose(arrival.maneuvers[0].delta_v_mag, departure.maneuvers[0].delta_v_mag, rtol=1e-6)
    # The capture burn ends on the parking orbit
    assert np.isclose(np.linalg.norm(arrival.maneuvers[0].post_state.vel),
                      np.sqrt(kerbin.std_grav_param / 700000.0))


def test_fast_departure_matches_parking_orbit_timing(kerbin, lko):
    traj = fast_departure(lko, kerbin, V_INF, SOI_DATE, match_park_mo=True)
    burn = traj.maneuvers[0]

    np.testing.assert_allclose(burn.pre_state.pos, orbit_to_position_at_date(lko, burn.date), atol=1.0)
    assert abs(traj.end_date - SOI_DATE) <= lko.sidereal_period


def test_soi_crossing_helpers(kerbin, lko):
    traj = fast_departure(lko, kerbin, V_INF, SOI_DATE, match_park_mo=False)
    orbit = traj.orbits[0]
    assert np.isclose(ejection_date(orbit, kerbin), traj.end_date)
    assert np.isclose(np.linalg.norm(ejection_position(orbit, kerbin)), kerbin.soi, rtol=1e-9)
    assert insertion_date(orbit, kerbin) < orbit.epoch

    exit_state = orbit_to_state_at_date(orbit, kerbin, traj.end_date)
    np.testing.assert_allclose(ejection_velocity(orbit, kerbin), exit_state.vel, rtol=1e-6)

    # Entry mirrors exit across the apse line
    entry = insertion_position(orbit, kerbin)
    assert np.isclose(np.linalg.norm(entry), kerbin.soi, rtol=1e-9)
    assert np.isclose(np.linalg.norm(insertion_velocity(orbit, kerbin)),
                      np.linalg.norm(ejection_velocity(orbit, kerbin)))


def test_optimal_direct_departure(kerbin, lko):
    fast = fast_departure(lko, kerbin, V_INF, SOI_DATE, match_park_mo=False)
    optimal = optimal_departure(lko, kerbin, V_INF, SOI_DATE, match_park_mo=False, type="direct")

    assert len(optimal.maneuvers) == 1
    assert np.isclose(optimal.maneuvers[0].delta_v_mag, fast.maneuvers[0].delta_v_mag, rtol=0.02)

    vel = orbit_to_state_at_date(optimal.orbits[0], kerbin, optimal.end_date).vel
    assert np.dot(vel, V_INF) / (np.linalg.norm(vel) * np.linalg.norm(V_INF)) > 0.99


def test_optimal_departure_rejects_unknown_type(kerbin, lko):
    with pytest.raises(ValueError):
        optimal_departure(lko, kerbin, V_INF, SOI_DATE, type="sideways")


def test_fast_oberth_departure(kerbin, lko):
    traj = fast_oberth_departure(lko, kerbin, V_INF, SOI_DATE, match_park_mo=False)

    assert len(traj.orbits) == 2
    assert len(traj.maneuvers) == 2
    assert traj.intersect_times[0] < traj.intersect_times[1] < traj.intersect_times[2]
    # The drop arc bottoms out at the minimum flyby radius
    assert np.isclose(traj.orbits[0].periapsis, min_flyby_radius(kerbin), rtol=1e-6)
    assert traj.orbits[1].eccentricity > 1
    assert np.all(np.isfinite([m.delta_v_mag for m in traj.maneuvers]))
