import numpy as np
from dataclasses import dataclass

from patchedconics.dynamics.kepler import Orbit, orbit_from_elements
from patchedconics.errors import BodyNotFoundError, CommonAttractorError, PatchedConicsError, SequenceError

GRAVITY_SEA_LEVEL = 9.80665
NEWTON_GRAVITY = 6.7430e-11


@dataclass(frozen=True, kw_only=True)
class CelestialBody:
    """
    A body of the system. Only the root of the system (the sun) has no orbit.

    Distances are in meters, the standard gravitational parameter in m^3/s^2.
    """
    id: int
    name: str
    radius: float
    std_grav_param: float
    soi: float = np.inf
    atmosphere_height: float = 0.0
    max_terrain_height: float = 0.0

    @property
    def mass(self) -> float:
        return self.std_grav_param / NEWTON_GRAVITY

    @property
    def gee_asl(self) -> float:
        """Surface gravity in units of g0."""
        return self.std_grav_param / (self.radius * self.radius * GRAVITY_SEA_LEVEL)


@dataclass(frozen=True, kw_only=True)
class OrbitingBody(CelestialBody):
    orbit: Orbit
    orbiting: int


def is_orbiting_body(body: CelestialBody) -> bool:
    return isinstance(body, OrbitingBody)


def orbiting_body_from_inputs(id: int, name: str, radius: float, attractor: CelestialBody, orbit_elements: dict,
                              mass: float = None, std_grav_param: float = None, gee_asl: float = None,
                              soi: float = None, atmosphere_height: float = 0.0,
                              max_terrain_height: float = 0.0) -> OrbitingBody:
    """
    Builds an OrbitingBody from partial physical data.

    The gravitational parameter is taken from std_grav_param, else from mass,
    else from the surface gravity gee_asl. A missing SOI radius is estimated
    with the Laplace approximation a * (mu / mu_attractor)^(2/5).

    Args:
        id (int): Body id, unique within the system.
        name (str): Body name.
        radius (float): Mean radius [m].
        attractor (CelestialBody): Parent body.
        orbit_elements (dict): Keyword arguments for `orbit_from_elements`.
        mass (float, optional): [kg].
        std_grav_param (float, optional): [m^3/s^2].
        gee_asl (float, optional): Surface gravity [g0].
        soi (float, optional): Sphere of influence radius [m].
        atmosphere_height (float): [m].
        max_terrain_height (float): [m].

    Raises:
        PatchedConicsError: If none of mass, gee_asl or std_grav_param is given.
    """
    if not mass and not std_grav_param and not gee_asl:
        raise PatchedConicsError("A mass, 'sea level' gravity, or standard gravitational parameter is needed.")

    orbit = orbit_from_elements(attractor, **orbit_elements)
    if not std_grav_param:
        if mass:
            std_grav_param = mass * NEWTON_GRAVITY
        else:
            std_grav_param = gee_asl * radius * radius * GRAVITY_SEA_LEVEL

    if not soi:
        soi = orbit.semi_major_axis * (std_grav_param / attractor.std_grav_param) ** (2 / 5)

    return OrbitingBody(
        id=id,
        name=name,
        radius=radius,
        std_grav_param=std_grav_param,
        soi=soi,
        atmosphere_height=atmosphere_height,
        max_terrain_height=max_terrain_height,
        orbit=orbit,
        orbiting=attractor.id,
    )


class SolarSystem:
    """
    Tree of bodies rooted at the sun (id 0).

    Orbiters must be given parents first, so that every `orbiting` id
    resolves to a body already in the system.
    """

    def __init__(self, sun: CelestialBody, orbiters: list[OrbitingBody]):
        self.sun = sun
        self.orbiters = list(orbiters)
        self._by_id = {sun.id: sun}
        for body in self.orbiters:
            if body.orbiting not in self._by_id:
                raise BodyNotFoundError(f"No body with id {body.orbiting}")
            self._by_id[body.id] = body

    @property
    def bodies(self) -> list[CelestialBody]:
        return [self.sun, *self.orbiters]

    def __len__(self):
        return len(self._by_id)

    def body_from_id(self, id: int) -> CelestialBody:
        try:
            return self._by_id[id]
        except KeyError:
            raise BodyNotFoundError(f"No body with id {id}") from None

    def body_from_name(self, name: str) -> CelestialBody:
        for body in self.bodies:
            if body.name == name:
                return body
        raise BodyNotFoundError(f"No body with name {name}")

    def orbiters_of(self, id: int) -> list[OrbitingBody]:
        return [body for body in self.orbiters if body.orbiting == id]

    def sequence_to_sun(self, id: int) -> list[int]:
        body = self.body_from_id(id)
        seq = [body.id]
        while is_orbiting_body(body):
            body = self.body_from_id(body.orbiting)
            seq.append(body.id)
        return seq

    def common_attractor_id(self, id1: int, id2: int) -> int:
        seq2 = self.sequence_to_sun(id2)
        for id in self.sequence_to_sun(id1):
            if id in seq2:
                return id
        raise CommonAttractorError("Bodies do not share a common attractor")

    def sequence_up(self, start_id: int, transfer_id: int) -> list[int]:
        """Ids from start_id up to transfer_id, both included."""
        body = self.body_from_id(start_id)
        seq = [body.id]
        while body.id != transfer_id:
            if not is_orbiting_body(body):
                raise SequenceError(f"Body {start_id} does not orbit around the transfer body {transfer_id}")
            body = self.body_from_id(body.orbiting)
            seq.append(body.id)
        return seq

    def sequence_down(self, transfer_id: int, end_id: int) -> list[int]:
        """Ids from transfer_id down to end_id, both included."""
        return self.sequence_up(end_id, transfer_id)[::-1]

    def sequence_between(self, start_id: int, end_id: int) -> tuple[list[int], list[int]]:
        """Up and down chains through the common attractor of two bodies."""
        transfer_id = self.common_attractor_id(start_id, end_id)
        return self.sequence_up(start_id, transfer_id), self.sequence_down(transfer_id, end_id)
