"""
Tests for flight plan propagation: burns, moon encounters and SOI escapes.
"""
import numpy as np
import pytest
import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))
from patchedconics.dynamics.kepler import orbit_from_elements, orbit_to_position_at_date, orbit_to_state_at_date
from patchedconics.dynamics.kerbol import kerbol_system
from patchedconics.trajectory.maneuver import ManeuverComponents
from patchedconics.trajectory.propagate import find_next_orbit, propagate_flight_plan

KERBIN = 4
MUN = 5
APOAPSIS_DATE = 2.0e5


@pytest.fixture(scope="module")
def system():
    return kerbol_system()


@pytest.fixture(scope="module")
def mun_crossing(system):
    """
    Equatorial ellipse from 700 km up to 11,000 km whose apoapsis is passed
    1,000 km below the Mun.
    """
    kerbin = system.body_from_id(KERBIN)
    mun = system.body_from_id(MUN)
    mun_pos = orbit_to_position_at_date(mun.orbit, APOAPSIS_DATE)
    periapsis, apoapsis = 700000.0, 11000000.0
    return orbit_from_elements(
        kerbin,
        0.5 * (periapsis + apoapsis),
        (apoapsis - periapsis) / (apoapsis + periapsis),
        arg_of_periapsis=np.arctan2(mun_pos[1], mun_pos[0]) + np.pi,
        mean_anomaly_epoch=np.pi,
        epoch=APOAPSIS_DATE,
    )


def test_parking_orbit_stays_put(system):
    lko = orbit_from_elements(system.body_from_id(KERBIN), 700000.0, 0.0)
    assert find_next_orbit(lko, system, 0.0) is None

    plan = propagate_flight_plan(lko, system, 0.0, [])
    assert len(plan.trajectories) == 1
    assert plan.trajectories[0].orbits == [lko]
    assert plan.trajectories[0].intersect_times == [0.0, lko.sidereal_period]


def test_burns_must_be_chronological(system):
    lko = orbit_from_elements(system.body_from_id(KERBIN), 700000.0, 0.0)
    burns = [ManeuverComponents(10.0, 0.0, 0.0, 2000.0), ManeuverComponents(10.0, 0.0, 0.0, 1000.0)]
    with pytest.raises(ValueError):
        propagate_flight_plan(lko, system, 0.0, burns)
    with pytest.raises(ValueError):
        propagate_flight_plan(lko, system, 5000.0, burns[:1])


def test_mun_encounter(system, mun_crossing):
    mun = system.body_from_id(MUN)
    start_date = APOAPSIS_DATE - mun_crossing.sidereal_period / 2

    plan = propagate_flight_plan(mun_crossing, system, start_date, [])
    first, second = plan.trajectories[:2]

    assert first.orbits == [mun_crossing]
    assert second.orbits[0].orbiting == MUN
    entry = second.start_date
    assert first.end_date == entry
    assert start_date < entry < APOAPSIS_DATE

    # Entered on the Mun's SOI boundary, at the same point seen from Kerbin
    relative = orbit_to_position_at_date(second.orbits[0], entry)
    assert np.isclose(np.linalg.norm(relative), mun.soi, rtol=1e-6)
    np.testing.assert_allclose(relative + orbit_to_position_at_date(mun.orbit, entry),
                               orbit_to_position_at_date(mun_crossing, entry), rtol=1e-6)


def test_mun_flyby_leaves_mun_soi(system, mun_crossing):
    mun = system.body_from_id(MUN)
    start_date = APOAPSIS_DATE - mun_crossing.sidereal_period / 2

    plan = propagate_flight_plan(mun_crossing, system, start_date, [])
    flyby = plan.trajectories[1]

    assert flyby.orbits[0].eccentricity > 1
    assert plan.trajectories[2].orbits[0].orbiting == KERBIN
    exit_state = orbit_to_state_at_date(flyby.orbits[0], mun, flyby.end_date)
    assert np.isclose(np.linalg.norm(exit_state.pos), mun.soi, rtol=1e-6)
    assert np.dot(exit_state.pos, exit_state.vel) > 0


def test_escape_from_kerbin(system):
    kerbin = system.body_from_id(KERBIN)
    # Inclined so the escape passes well clear of the Mun and Minmus
    lko = orbit_from_elements(kerbin, 700000.0, 0.0, inclination=0.6)
    burn_date = 2 * lko.sidereal_period

    plan = propagate_flight_plan(lko, system, 0.0, [ManeuverComponents(1200.0, 0.0, 0.0, burn_date)])
    departure, cruise = plan.trajectories[:2]

    assert len(departure.orbits) == 2
    assert len(departure.maneuvers) == 1
    assert np.isclose(departure.maneuvers[0].delta_v_mag, 1200.0)
    assert departure.intersect_times[1] == burn_date
    assert departure.orbits[1].eccentricity > 1

    assert cruise.orbits[0].orbiting == 0
    exit_date = cruise.start_date
    assert departure.end_date == exit_date > burn_date

    exit_state = orbit_to_state_at_date(departure.orbits[1], kerbin, exit_date)
    assert np.isclose(np.linalg.norm(exit_state.pos), kerbin.soi, rtol=1e-6)
    np.testing.assert_allclose(orbit_to_position_at_date(cruise.orbits[0], exit_date),
                               exit_state.pos + orbit_to_position_at_date(kerbin.orbit, exit_date), rtol=1e-6)
