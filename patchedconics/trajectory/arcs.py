from dataclasses import dataclass, field
from typing import Optional

from patchedconics.dynamics.kepler import Orbit
from patchedconics.trajectory.maneuver import Maneuver


@dataclass(frozen=True, eq=False)
class Trajectory:
    """
    A chain of conic arcs.

    Arc i is flown over [intersect_times[i], intersect_times[i+1]), so there is
    one more intersect time than orbits. Maneuvers sit at arc boundaries.
    """
    orbits: list[Orbit] = field(default_factory=list)
    intersect_times: list[float] = field(default_factory=list)
    maneuvers: list[Maneuver] = field(default_factory=list)

    @property
    def start_date(self) -> float:
        return self.intersect_times[0]

    @property
    def end_date(self) -> float:
        return self.intersect_times[-1]

    def as_dict(self) -> dict:
        return {
            'orbits': [o.as_dict() for o in self.orbits],
            'intersect_times': list(self.intersect_times),
            'maneuvers': [m.as_dict() for m in self.maneuvers],
        }


@dataclass(frozen=True, eq=False)
class FlightPlan:
    """Trajectories of a mission in chronological order."""
    name: str
    trajectories: list[Trajectory]
    maneuver_contexts: list[str] = field(default_factory=list)


def current_orbit_for_trajectory(trajectory: Trajectory, date: float) -> Optional[Orbit]:
    for i, orbit in enumerate(trajectory.orbits):
        if trajectory.intersect_times[i] <= date < trajectory.intersect_times[i + 1]:
            return orbit
    return None


def current_trajectory_for_flight_plan(flight_plan: FlightPlan, date: float) -> Optional[Trajectory]:
    for trajectory in flight_plan.trajectories:
        if trajectory.intersect_times[0] <= date < trajectory.intersect_times[-1]:
            return trajectory
    return None


def current_orbit_for_flight_plan(flight_plan: FlightPlan, date: float) -> Optional[Orbit]:
    trajectory = current_trajectory_for_flight_plan(flight_plan, date)
    if trajectory is None:
        return None
    return current_orbit_for_trajectory(trajectory, date)
