"""
Result records of the mission calculators.

Records are frozen snapshots: refining a mission produces a new record, it
never edits one in place. `as_dict` gives a plain-data view (lists, floats,
ints and strings only) suitable for JSON or for crossing a process boundary.
"""
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from patchedconics.dynamics.kepler import Orbit, angle_in_orbit_plane, orbit_to_position_at_date
from patchedconics.dynamics.vectors import wrap_angle
from patchedconics.trajectory.arcs import FlightPlan, Trajectory
from patchedconics.trajectory.maneuver import Maneuver


def _with_start_orbit(trajectory: Trajectory, start_orbit: Orbit) -> tuple[list, list]:
    return [start_orbit, *trajectory.orbits], [-np.inf, *trajectory.intersect_times]


def _with_end_orbit(orbits: list, times: list, end_orbit: Orbit) -> tuple[list, list]:
    return [*orbits, end_orbit], [*times, np.inf]


def _ejection_plan_entries(ejections: list[Trajectory], start_orbit: Orbit) -> list[Trajectory]:
    entries = []
    for i, ejection in enumerate(ejections):
        maneuvers = list(ejection.maneuvers)
        if i == 0:
            orbits, times = _with_start_orbit(ejection, start_orbit)
        else:
            orbits, times = list(ejection.orbits), list(ejection.intersect_times)
            maneuvers = maneuvers[1:]
        entries.append(Trajectory(orbits, times, maneuvers))
    return entries


def _insertion_plan_entries(insertions: list[Trajectory], end_orbit: Orbit) -> list[Trajectory]:
    entries = []
    for i, insertion in enumerate(insertions):
        orbits, times = list(insertion.orbits), list(insertion.intersect_times)
        maneuvers = list(insertion.maneuvers)
        if i == len(insertions) - 1:
            orbits, times = _with_end_orbit(orbits, times, end_orbit)
        else:
            maneuvers = maneuvers[:-1]
        entries.append(Trajectory(orbits, times, maneuvers))
    return entries


def _leg_plan_entry(leg: Trajectory, start_orbit: Optional[Orbit], end_orbit: Optional[Orbit]) -> Trajectory:
    """Interplanetary leg; the departure/arrival burn stays only when no chain owns it."""
    orbits, times = list(leg.orbits), list(leg.intersect_times)
    maneuvers = list(leg.maneuvers)
    if start_orbit is not None:
        orbits, times = [start_orbit, *orbits], [-np.inf, *times]
    else:
        maneuvers = maneuvers[1:]
    if end_orbit is not None:
        orbits, times = _with_end_orbit(orbits, times, end_orbit)
    else:
        maneuvers = maneuvers[:-1]
    return Trajectory(orbits, times, maneuvers)


@dataclass(frozen=True, eq=False)
class Transfer:
    """
    A single transfer: ejections, one interplanetary leg, insertions.

    Attributes:
        system (SolarSystem): Bodies the transfer was computed in.
        start_orbit (Orbit): Parking orbit (the achieved one when match_start_mo is False).
        end_orbit (Orbit): Target orbit (the achieved one when match_end_mo is False).
        start_date (float): Start of the interplanetary leg [s].
        flight_time (float): Duration of the interplanetary leg [s].
        end_date (float): End of the interplanetary leg [s].
        transfer_trajectory (Trajectory): The interplanetary leg.
        ejections (list[Trajectory]): Ejection chain, chronological.
        insertions (list[Trajectory]): Insertion chain, chronological.
        maneuvers (list[Maneuver]): Every burn in order, context attached.
        delta_v (float): Total burn [m/s].
        soi_patch_positions (list[np.ndarray]): SOI patch offsets [m].
        patch_position_error (float): Summed SOI patch position mismatch [m].
        patch_time_error (float): Summed SOI patch timing mismatch [s].
    """
    system: object = field(repr=False)
    start_orbit: Orbit
    end_orbit: Orbit
    start_date: float
    flight_time: float
    end_date: float
    transfer_trajectory: Trajectory = field(repr=False)
    ejections: list[Trajectory] = field(repr=False)
    insertions: list[Trajectory] = field(repr=False)
    maneuvers: list[Maneuver] = field(repr=False)
    delta_v: float
    soi_patch_positions: list[np.ndarray] = field(repr=False)
    ejection_insertion_type: str = "fastdirect"
    plane_change: int = 0
    match_start_mo: bool = True
    match_end_mo: bool = False
    no_insertion_burn: bool = False
    patch_position_error: float = 0.0
    patch_time_error: float = 0.0

    @property
    def maneuver_contexts(self) -> list[str]:
        return [m.context for m in self.maneuvers]

    @property
    def start_body(self):
        return self.system.body_from_id(self.start_orbit.orbiting)

    @property
    def end_body(self):
        return self.system.body_from_id(self.end_orbit.orbiting)

    @property
    def transfer_body(self):
        return self.system.body_from_id(self.system.common_attractor_id(self.start_orbit.orbiting,
                                                                        self.end_orbit.orbiting))

    @property
    def phase_angle(self) -> float:
        """
        Angle [rad] from the departed orbit to the target, at the start date,
        measured in the departed orbit's plane around the transfer body.
        """
        if self.ejections:
            s_orb = self.system.body_from_id(self.ejections[-1].orbits[0].orbiting).orbit
        else:
            s_orb = self.start_orbit
        if self.insertions:
            e_orb = self.system.body_from_id(self.insertions[0].orbits[0].orbiting).orbit
        else:
            e_orb = self.end_orbit
        s_pos = orbit_to_position_at_date(s_orb, self.start_date)
        e_pos = orbit_to_position_at_date(e_orb, self.start_date)
        return wrap_angle(angle_in_orbit_plane(e_pos, s_orb) - angle_in_orbit_plane(s_pos, s_orb))

    def flight_plan(self, name: str = "Transfer") -> FlightPlan:
        trajectories = _ejection_plan_entries(self.ejections, self.start_orbit)
        trajectories.append(_leg_plan_entry(
            self.transfer_trajectory,
            None if self.ejections else self.start_orbit,
            None if self.insertions else self.end_orbit,
        ))
        trajectories.extend(_insertion_plan_entries(self.insertions, self.end_orbit))
        return FlightPlan(name, trajectories, self.maneuver_contexts)

    def as_dict(self) -> dict:
        return {
            'start_orbit': self.start_orbit.as_dict(),
            'end_orbit': self.end_orbit.as_dict(),
            'start_date': self.start_date,
            'flight_time': self.flight_time,
            'end_date': self.end_date,
            'transfer_trajectory': self.transfer_trajectory.as_dict(),
            'ejections': [t.as_dict() for t in self.ejections],
            'insertions': [t.as_dict() for t in self.insertions],
            'maneuvers': [m.as_dict() for m in self.maneuvers],
            'maneuver_contexts': self.maneuver_contexts,
            'delta_v': self.delta_v,
            'soi_patch_positions': [p.tolist() for p in self.soi_patch_positions],
            'ejection_insertion_type': self.ejection_insertion_type,
            'plane_change': self.plane_change,
            'match_start_mo': self.match_start_mo,
            'match_end_mo': self.match_end_mo,
            'no_insertion_burn': self.no_insertion_burn,
            'patch_position_error': self.patch_position_error,
            'patch_time_error': self.patch_time_error,
        }


@dataclass(frozen=True)
class FlybyDuration:
    """Time spent inside a flyby body's SOI [s], split at periapsis."""
    in_time: float = 0.0
    out_time: float = 0.0

    @property
    def total(self) -> float:
        return self.in_time + self.out_time

    def as_dict(self) -> dict:
        return {'in_time': self.in_time, 'out_time': self.out_time, 'total': self.total}


@dataclass(frozen=True, eq=False)
class MultiFlyby:
    """
    A transfer with gravity assists between the interplanetary legs.

    Leg i runs from the start (or flyby i-1's SOI exit) to flyby i's SOI
    entry (or the end), so there is one more leg than flybys.
    """
    system: object = field(repr=False)
    start_orbit: Orbit
    end_orbit: Orbit
    flyby_id_sequence: list[int]
    start_date: float
    flight_times: list[float]
    end_date: float
    transfer_body_id: int
    ejections: list[Trajectory] = field(repr=False)
    insertions: list[Trajectory] = field(repr=False)
    transfers: list[Trajectory] = field(repr=False)
    flybys: list[Trajectory] = field(repr=False)
    maneuvers: list[Maneuver] = field(repr=False)
    delta_v: float
    soi_patch_positions: list[np.ndarray] = field(repr=False)
    flyby_durations: list[FlybyDuration] = field(repr=False)
    ejection_insertion_type: str = "fastdirect"
    plane_change: int = 0
    match_start_mo: bool = True
    match_end_mo: bool = False
    no_insertion_burn: bool = False
    patch_position_error: float = 0.0
    patch_time_error: float = 0.0

    @property
    def maneuver_contexts(self) -> list[str]:
        return [m.context for m in self.maneuvers]

    def flight_plan(self, name: str = "Multi-Flyby") -> FlightPlan:
        trajectories = _ejection_plan_entries(self.ejections, self.start_orbit)
        n_legs = len(self.transfers)
        for i, leg in enumerate(self.transfers):
            trajectories.append(_leg_plan_entry(
                leg,
                self.start_orbit if i == 0 and not self.ejections else None,
                self.end_orbit if i == n_legs - 1 and not self.insertions else None,
            ))
            if i < n_legs - 1 and i < len(self.flybys):
                trajectories.append(self.flybys[i])
        trajectories.extend(_insertion_plan_entries(self.insertions, self.end_orbit))
        return FlightPlan(name, trajectories, self.maneuver_contexts)

    def as_dict(self) -> dict:
        return {
            'start_orbit': self.start_orbit.as_dict(),
            'end_orbit': self.end_orbit.as_dict(),
            'flyby_id_sequence': list(self.flyby_id_sequence),
            'start_date': self.start_date,
            'flight_times': list(self.flight_times),
            'end_date': self.end_date,
            'transfer_body_id': self.transfer_body_id,
            'ejections': [t.as_dict() for t in self.ejections],
            'insertions': [t.as_dict() for t in self.insertions],
            'transfers': [t.as_dict() for t in self.transfers],
            'flybys': [t.as_dict() for t in self.flybys],
            'maneuvers': [m.as_dict() for m in self.maneuvers],
            'maneuver_contexts': self.maneuver_contexts,
            'delta_v': self.delta_v,
            'soi_patch_positions': [p.tolist() for p in self.soi_patch_positions],
            'flyby_durations': [d.as_dict() for d in self.flyby_durations],
            'ejection_insertion_type': self.ejection_insertion_type,
            'plane_change': self.plane_change,
            'match_start_mo': self.match_start_mo,
            'match_end_mo': self.match_end_mo,
            'no_insertion_burn': self.no_insertion_burn,
            'patch_position_error': self.patch_position_error,
            'patch_time_error': self.patch_time_error,
        }


@dataclass(frozen=True, eq=False)
class Porkchop:
    """
    Delta-v over a grid of start dates and flight times.

    delta_vs[j, i] is the transfer starting at start_dates[i] with
    flight time flight_times[j].
    """
    system: object = field(repr=False)
    start_orbit: Orbit
    end_orbit: Orbit
    start_dates: np.ndarray = field(repr=False)
    flight_times: np.ndarray = field(repr=False)
    delta_vs: np.ndarray = field(repr=False)
    ejection_insertion_type: str = "fastdirect"
    plane_change: int = 0
    match_start_mo: bool = True
    match_end_mo: bool = False
    no_insertion_burn: bool = False

    @property
    def best_indices(self) -> tuple[int, int]:
        """(row, column) of the lowest delta-v; the first one in row-major order on ties."""
        j, i = np.unravel_index(np.argmin(self.delta_vs), self.delta_vs.shape)
        return int(j), int(i)

    @property
    def best_times(self) -> tuple[float, float]:
        """(start date, flight time) [s] of the lowest delta-v cell."""
        j, i = self.best_indices
        return float(self.start_dates[i]), float(self.flight_times[j])

    @property
    def best_delta_v(self) -> float:
        j, i = self.best_indices
        return float(self.delta_vs[j, i])

    @property
    def best_transfer(self) -> Transfer:
        """The transfer of the lowest delta-v cell, rebuilt with the grid's settings."""
        from patchedconics.mission.transfer import TransferCalculator, TransferInputs

        start_date, flight_time = self.best_times
        inputs = TransferInputs(
            system=self.system,
            start_orbit=self.start_orbit,
            end_orbit=self.end_orbit,
            start_date=start_date,
            flight_time=flight_time,
            ejection_insertion_type=self.ejection_insertion_type,
            plane_change=self.plane_change,
            match_start_mo=self.match_start_mo,
            match_end_mo=self.match_end_mo,
            no_insertion_burn=self.no_insertion_burn,
        )
        return TransferCalculator(inputs).transfer

    def as_dict(self) -> dict:
        return {
            'start_orbit': self.start_orbit.as_dict(),
            'end_orbit': self.end_orbit.as_dict(),
            'start_dates': self.start_dates.tolist(),
            'flight_times': self.flight_times.tolist(),
            'delta_vs': self.delta_vs.tolist(),
            'ejection_insertion_type': self.ejection_insertion_type,
            'plane_change': self.plane_change,
            'match_start_mo': self.match_start_mo,
            'match_end_mo': self.match_end_mo,
            'no_insertion_burn': self.no_insertion_burn,
        }
