import pytest
import numpy as np
import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))
from patchedconics.dynamics.kepler import OrbitalState
from patchedconics.trajectory.maneuver import (
    ManeuverComponents, components_to_maneuver, maneuver_from_orbital_states, maneuver_to_components,
)


@pytest.fixture
def pre_state():
    return OrbitalState(100.0, np.array([1000.0, 0.0, 0.0]), np.array([0.0, 10.0, 0.0]))


def test_maneuver_from_states(pre_state):
    post_state = OrbitalState(100.0, pre_state.pos, np.array([1.0, 12.0, 0.0]))
    man = maneuver_from_orbital_states(pre_state, post_state)

    np.testing.assert_allclose(man.delta_v, [1.0, 2.0, 0.0])
    assert np.isclose(man.delta_v_mag, np.sqrt(5.0))
    assert man.date == 100.0
    assert man.context is None


def test_with_context_returns_copy(pre_state):
    man = maneuver_from_orbital_states(pre_state, pre_state)
    tagged = man.with_context("Departure Burn")
    assert tagged.context == "Departure Burn"
    assert man.context is None
    assert tagged.as_dict()['context'] == "Departure Burn"


def test_maneuver_components(pre_state):
    # Prograde is +y, normal +z (r x v), radial +x
    post_state = OrbitalState(100.0, pre_state.pos, pre_state.vel + np.array([3.0, 2.0, 1.0]))
    comps = maneuver_to_components(maneuver_from_orbital_states(pre_state, post_state))

    assert np.isclose(comps.prograde, 2.0)
    assert np.isclose(comps.normal, 1.0)
    assert np.isclose(comps.radial, 3.0)
    assert comps.date == 100.0


def test_components_round_trip(pre_state):
    comps = ManeuverComponents(prograde=5.0, normal=-1.0, radial=0.5, date=100.0)
    man = components_to_maneuver(comps, pre_state)
    back = maneuver_to_components(man)

    assert np.isclose(back.prograde, 5.0)
    assert np.isclose(back.normal, -1.0)
    assert np.isclose(back.radial, 0.5)
    assert np.isclose(man.delta_v_mag, np.sqrt(25 + 1 + 0.25))
