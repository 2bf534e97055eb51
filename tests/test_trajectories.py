"""
Tests for the trajectory assembler: Lambert legs, plane changes and SOI chains.
"""
import numpy as np
import pytest
import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))
from patchedconics.dynamics.kepler import (
    orbit_from_elements, orbit_to_position_at_date, orbit_to_state_at_date, orbit_to_velocity_at_date,
)
from patchedconics.dynamics.kerbol import kerbol_system
from patchedconics.trajectory.arcs import (
    FlightPlan, Trajectory, current_orbit_for_flight_plan, current_orbit_for_trajectory,
    current_trajectory_for_flight_plan,
)
from patchedconics.trajectory.trajectories import (
    EJECTION_INSERTION_TYPES, check_ejection_insertion_type, ejection_trajectories, insertion_trajectories,
    transfer_trajectory,
)

START_DATE = 5.0e6
FLIGHT_TIME = 6.0e6


@pytest.fixture(scope="module")
def system():
    return kerbol_system()


@pytest.fixture(scope="module")
def leg(system):
    kerbin = system.body_from_id(4)
    duna = system.body_from_id(7)
    return transfer_trajectory(kerbin.orbit, duna.orbit, system.sun, START_DATE, FLIGHT_TIME,
                               START_DATE + FLIGHT_TIME)


def test_check_ejection_insertion_type():
    for ei_type in EJECTION_INSERTION_TYPES:
        assert check_ejection_insertion_type(ei_type) == ei_type
    with pytest.raises(ValueError):
        check_ejection_insertion_type("slingshot")


def test_direct_transfer_leg(system, leg):
    kerbin = system.body_from_id(4)
    duna = system.body_from_id(7)
    end_date = START_DATE + FLIGHT_TIME

    assert len(leg.orbits) == 1
    assert len(leg.maneuvers) == 2
    assert leg.intersect_times == [START_DATE, end_date]

    # Departs from Kerbin and arrives at Duna
    np.testing.assert_allclose(leg.maneuvers[0].pre_state.pos, orbit_to_position_at_date(kerbin.orbit, START_DATE))
    np.testing.assert_allclose(orbit_to_position_at_date(leg.orbits[0], end_date),
                               orbit_to_position_at_date(duna.orbit, end_date), rtol=1e-6)
    np.testing.assert_allclose(leg.maneuvers[-1].post_state.vel,
                               orbit_to_velocity_at_date(duna.orbit, system.sun, end_date))


@pytest.mark.parametrize("plane_change", [1, 2, True])
def test_plane_change_leg(system, plane_change):
    kerbin = system.body_from_id(4)
    duna = system.body_from_id(7)
    end_date = START_DATE + FLIGHT_TIME
    leg = transfer_trajectory(kerbin.orbit, duna.orbit, system.sun, START_DATE, FLIGHT_TIME, end_date, plane_change)

    assert len(leg.orbits) == 2
    assert len(leg.maneuvers) == 3
    assert leg.intersect_times[0] <= leg.intersect_times[1] <= leg.intersect_times[2]
    np.testing.assert_allclose(orbit_to_position_at_date(leg.orbits[-1], end_date),
                               orbit_to_position_at_date(duna.orbit, end_date), rtol=1e-5)


@pytest.mark.parametrize("plane_change", [1, 2])
@pytest.mark.parametrize("start_date", [0.0, 3.0e6])
def test_plane_change_burn_within_leg(system, plane_change, start_date):
    kerbin = system.body_from_id(4)
    duna = system.body_from_id(7)
    leg = transfer_trajectory(kerbin.orbit, duna.orbit, system.sun, start_date, FLIGHT_TIME,
                              start_date + FLIGHT_TIME, plane_change)

    assert leg.intersect_times[0] == start_date
    assert np.all(np.diff(leg.intersect_times) >= 0)
    assert start_date <= leg.maneuvers[1].date <= start_date + FLIGHT_TIME


def test_ejection_chain_single_level(system, leg):
    kerbin = system.body_from_id(4)
    lko = orbit_from_elements(kerbin, 700000.0, 0.0)

    ejections = ejection_trajectories(system, lko, leg.orbits[0], [4, 0], START_DATE, match_start_mo=False)

    assert len(ejections) == 1
    ejection = ejections[0]
    assert ejection.orbits[0].orbiting == 4
    assert np.isclose(ejection.end_date, START_DATE)

    # SOI exit velocity plus Kerbin's velocity is the leg's departure velocity
    exit_vel = orbit_to_velocity_at_date(ejection.orbits[-1], kerbin, ejection.end_date)
    np.testing.assert_allclose(exit_vel + orbit_to_velocity_at_date(kerbin.orbit, system.sun, START_DATE),
                               leg.maneuvers[0].post_state.vel, rtol=1e-3, atol=0.1)


def test_insertion_chain_single_level(system, leg):
    duna = system.body_from_id(7)
    low_duna = orbit_from_elements(duna, 420000.0, 0.0)
    end_date = START_DATE + FLIGHT_TIME

    insertions = insertion_trajectories(system, low_duna, leg.orbits[-1], [0, 7], end_date, match_end_mo=False)

    assert len(insertions) == 1
    assert insertions[0].orbits[0].orbiting == 7
    assert np.isclose(insertions[0].start_date, end_date)
    assert insertions[0].end_date > insertions[0].start_date


def test_ejection_chain_two_levels(system):
    mun = system.body_from_id(5)
    duna = system.body_from_id(7)
    low_mun = orbit_from_elements(mun, 250000.0, 0.0)
    leg = transfer_trajectory(system.body_from_id(4).orbit, duna.orbit, system.sun, START_DATE, FLIGHT_TIME,
                              START_DATE + FLIGHT_TIME)

    ejections = ejection_trajectories(system, low_mun, leg.orbits[0], [5, 4, 0], START_DATE)

    assert [e.orbits[0].orbiting for e in ejections] == [5, 4]
    assert ejections[0].end_date <= ejections[1].end_date


@pytest.mark.parametrize("ei_type", ["direct", "fastoberth", "oberth"])
def test_ejection_types(system, leg, ei_type):
    lko = orbit_from_elements(system.body_from_id(4), 700000.0, 0.0)
    ejections = ejection_trajectories(system, lko, leg.orbits[0], [4, 0], START_DATE, False, ei_type)
    assert len(ejections) == 1
    assert all(np.isfinite(m.delta_v_mag) for m in ejections[0].maneuvers)


def test_flight_plan_lookups(system, leg):
    plan = FlightPlan("Test", [leg])
    mid = START_DATE + FLIGHT_TIME / 2

    assert current_trajectory_for_flight_plan(plan, mid) is leg
    assert current_orbit_for_flight_plan(plan, mid) is leg.orbits[0]
    assert current_orbit_for_trajectory(leg, START_DATE - 1) is None
    assert current_orbit_for_flight_plan(plan, START_DATE + FLIGHT_TIME + 1) is None


def test_trajectory_as_dict(leg):
    data = leg.as_dict()
    assert len(data['orbits']) == 1
    assert data['intersect_times'] == [START_DATE, START_DATE + FLIGHT_TIME]
    assert len(data['maneuvers']) == 2
    assert Trajectory().orbits == []
