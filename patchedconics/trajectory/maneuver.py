import numpy as np
from dataclasses import dataclass, field, replace

from patchedconics.dynamics.kepler import OrbitalState
from patchedconics.dynamics.vectors import normalize


@dataclass(eq=False)
class Maneuver:
    """
    An impulsive velocity change.

    The pre- and post-maneuver states share date and position; their
    velocities differ by delta_v.
    """
    pre_state: OrbitalState
    post_state: OrbitalState
    delta_v: np.ndarray = field(repr=False)
    delta_v_mag: float
    context: str = None

    @property
    def date(self) -> float:
        return self.pre_state.date

    def with_context(self, context: str) -> "Maneuver":
        return replace(self, context=context)

    def as_dict(self) -> dict:
        return {
            'pre_state': self.pre_state.as_dict(),
            'post_state': self.post_state.as_dict(),
            'delta_v': self.delta_v.tolist(),
            'delta_v_mag': self.delta_v_mag,
            'context': self.context,
        }


@dataclass(frozen=True)
class ManeuverComponents:
    """Delta-v [m/s] split along the pre-maneuver prograde, normal and radial directions."""
    prograde: float
    normal: float
    radial: float
    date: float


def maneuver_from_orbital_states(pre_state: OrbitalState, post_state: OrbitalState) -> Maneuver:
    delta_v = post_state.vel - pre_state.vel
    return Maneuver(pre_state, post_state, delta_v, float(np.linalg.norm(delta_v)))


def _local_frame(state: OrbitalState) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    prograde = normalize(state.vel)
    normal = normalize(np.cross(state.pos, prograde))
    radial = np.cross(prograde, normal)
    return prograde, normal, radial


def maneuver_to_components(maneuver: Maneuver) -> ManeuverComponents:
    """
    Projects a maneuver onto the local orbital frame of its pre-maneuver state.

    Args:
        maneuver (Maneuver): The maneuver.

    Returns:
        ManeuverComponents: Prograde, normal and radial delta-v [m/s] and the date [s].
    """
    prograde, normal, radial = _local_frame(maneuver.pre_state)
    return ManeuverComponents(
        prograde=float(np.dot(maneuver.delta_v, prograde)),
        normal=float(np.dot(maneuver.delta_v, normal)),
        radial=float(np.dot(maneuver.delta_v, radial)),
        date=maneuver.pre_state.date,
    )


def components_to_maneuver(components: ManeuverComponents, pre_state: OrbitalState) -> Maneuver:
    prograde, normal, radial = _local_frame(pre_state)
    delta_v = prograde * components.prograde + normal * components.normal + radial * components.radial
    post_state = OrbitalState(pre_state.date, pre_state.pos, pre_state.vel + delta_v)
    return Maneuver(pre_state, post_state, delta_v, float(np.linalg.norm(delta_v)))
