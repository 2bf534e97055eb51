import numpy as np
import pytest
import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))
from patchedconics.dynamics.bodies import (
    NEWTON_GRAVITY, CelestialBody, SolarSystem, is_orbiting_body, orbiting_body_from_inputs,
)
from patchedconics.dynamics.kerbol import KERBOL, kerbol_system
from patchedconics.errors import BodyNotFoundError, CommonAttractorError, PatchedConicsError, SequenceError


@pytest.fixture(scope="module")
def system():
    return kerbol_system()


def test_kerbol_system(system):
    assert len(system) == 17
    assert system.sun is KERBOL
    assert not is_orbiting_body(system.sun)
    kerbin = system.body_from_name("Kerbin")
    assert kerbin.id == 4
    assert is_orbiting_body(kerbin)
    assert kerbin.orbit.orbiting == 0
    assert [b.id for b in system.orbiters_of(4)] == [5, 6]


def test_body_not_found(system):
    with pytest.raises(BodyNotFoundError, match="No body with id 99"):
        system.body_from_id(99)
    with pytest.raises(BodyNotFoundError):
        system.body_from_name("Nibiru")


def test_sequences(system):
    assert system.sequence_to_sun(5) == [5, 4, 0]
    assert system.sequence_up(5, 0) == [5, 4, 0]
    assert system.sequence_up(4, 0) == [4, 0]
    assert system.sequence_down(0, 11) == [0, 10, 11]
    assert system.sequence_between(5, 7) == ([5, 4, 0], [0, 7])
    assert system.sequence_between(5, 6) == ([5, 4], [4, 6])


def test_common_attractor(system):
    assert system.common_attractor_id(5, 6) == 4
    assert system.common_attractor_id(5, 11) == 0
    assert system.common_attractor_id(4, 5) == 4


def test_sequence_error(system):
    with pytest.raises(SequenceError):
        system.sequence_up(7, 4)


def test_common_attractor_error():
    sun_a = CelestialBody(id=0, name="A", radius=1.0, std_grav_param=1.0)
    other_sun = CelestialBody(id=1, name="B", radius=1.0, std_grav_param=1.0)
    system = SolarSystem(sun_a, [])
    system._by_id[1] = other_sun
    with pytest.raises(CommonAttractorError):
        system.common_attractor_id(0, 1)


def test_orbiters_must_follow_parents():
    moon = orbiting_body_from_inputs(id=2, name="Moon", radius=1.0e5, attractor=CelestialBody(
        id=1, name="Planet", radius=1.0e6, std_grav_param=1.0e12), orbit_elements={
        'semi_major_axis': 1.0e7, 'eccentricity': 0.0}, std_grav_param=1.0e9)
    with pytest.raises(BodyNotFoundError):
        SolarSystem(KERBOL, [moon])


def test_body_from_partial_inputs():
    elements = {'semi_major_axis': 1.0e10, 'eccentricity': 0.0}
    from_mass = orbiting_body_from_inputs(id=1, name="P", radius=5.0e5, attractor=KERBOL,
                                          orbit_elements=elements, mass=1.0e22)
    assert np.isclose(from_mass.std_grav_param, 1.0e22 * NEWTON_GRAVITY)
    assert np.isclose(from_mass.mass, 1.0e22)
    # Laplace SOI approximation
    assert np.isclose(from_mass.soi, 1.0e10 * (from_mass.std_grav_param / KERBOL.std_grav_param) ** 0.4)

    from_gee = orbiting_body_from_inputs(id=1, name="P", radius=5.0e5, attractor=KERBOL,
                                         orbit_elements=elements, gee_asl=1.0)
    assert np.isclose(from_gee.gee_asl, 1.0)

    with pytest.raises(PatchedConicsError):
        orbiting_body_from_inputs(id=1, name="P", radius=5.0e5, attractor=KERBOL, orbit_elements=elements)
