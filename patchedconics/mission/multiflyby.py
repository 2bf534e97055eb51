"""
Transfers with gravity assists.

The interplanetary part is a chain of Lambert legs around the transfer body,
one more than there are flybys. Each flyby joins the arrival velocity of one
leg to the departure velocity of the next; when the flyby body cannot turn the
velocity that far, the mismatch is reported as a flyby error and penalized in
the fitness instead of raising.
"""
import logging
import sys
from dataclasses import dataclass, replace
from typing import Optional

import numpy as np

from patchedconics.dynamics.kepler import Orbit, orbit_to_position_at_date
from patchedconics.dynamics.vectors import lerp
from patchedconics.mission.records import FlybyDuration, MultiFlyby
from patchedconics.mission.refinement import PatchedCalculator, refine_patches
from patchedconics.mission.settings import RefinementSettings
from patchedconics.trajectory.flyby import flyby_from_parameters, flyby_parameters
from patchedconics.trajectory.trajectories import (
    check_ejection_insertion_type, ejection_trajectories, insertion_trajectories, transfer_trajectory,
)

logger = logging.getLogger(__name__)

FLYBY_ERROR_WEIGHT = 1e6


@dataclass(frozen=True, eq=False)
class MultiFlybyInputs:
    """
    Everything that defines a multi-flyby transfer.

    Attributes:
        system (SolarSystem): Bodies.
        start_orbit (Orbit): Parking orbit.
        end_orbit (Orbit): Target orbit.
        flyby_id_sequence (list[int]): Flyby body ids, in order. They must
                                       orbit the transfer body.
        start_date (float): Start of the first leg [s].
        flight_times (list[float]): Duration of each leg [s], one more than flybys.
        ejection_insertion_type (str): One of EJECTION_INSERTION_TYPES.
        plane_change (int): 0, 1 or 2, see `transfer_trajectory`.
        match_start_mo (bool): Depart from the start orbit at its own timing.
        match_end_mo (bool): Arrive at the end orbit at its own timing.
        no_insertion_burn (bool): Leave the final burn out of the delta-v.
        soi_patch_positions (list[np.ndarray], optional): SOI patch offsets [m].
        flyby_durations (list[FlybyDuration], optional): Time spent inside each
                                                         flyby SOI, zeros when not given.
    """
    system: object
    start_orbit: Orbit
    end_orbit: Orbit
    flyby_id_sequence: list
    start_date: float
    flight_times: list
    ejection_insertion_type: str = "fastdirect"
    plane_change: int = 0
    match_start_mo: bool = True
    match_end_mo: bool = False
    no_insertion_burn: bool = False
    soi_patch_positions: Optional[list] = None
    flyby_durations: Optional[list] = None


class MultiFlybyCalculator(PatchedCalculator):
    """
    Solves the legs, flyby hyperbolas and SOI chains of a multi-flyby transfer.

    Construction solves the legs, the flyby parameters and arcs, the
    ejections and insertions, and the ordered maneuver list.
    """

    def __init__(self, inputs: MultiFlybyInputs):
        n_flybys = len(inputs.flyby_id_sequence)
        if len(inputs.flight_times) != n_flybys + 1:
            raise ValueError(f"Expected {n_flybys + 1} flight times for {n_flybys} flybys, "
                             f"got {len(inputs.flight_times)}")

        self.inputs = inputs
        self.system = inputs.system
        self.ejection_insertion_type = check_ejection_insertion_type(inputs.ejection_insertion_type)
        self.match_start_mo = inputs.match_start_mo
        self.match_end_mo = inputs.match_end_mo

        self.start_orbit = inputs.start_orbit
        self.end_orbit = inputs.end_orbit
        self.flyby_bodies = [self.system.body_from_id(i) for i in inputs.flyby_id_sequence]
        self.start_body = self.system.body_from_id(self.start_orbit.orbiting)
        self.end_body = self.system.body_from_id(self.end_orbit.orbiting)
        transfer_id = self.system.common_attractor_id(self.start_body.id, self.end_body.id)
        self.transfer_body = self.system.body_from_id(transfer_id)
        self.sequence_up = self.system.sequence_up(self.start_body.id, transfer_id)
        self.sequence_down = self.system.sequence_down(transfer_id, self.end_body.id)

        patch_ids = list(self.sequence_up[:-1])
        for flyby_id in inputs.flyby_id_sequence:
            patch_ids.extend([flyby_id, flyby_id])
        patch_ids.extend(self.sequence_down[1:])
        self.soi_patch_bodies = [self.system.body_from_id(i) for i in patch_ids]
        if inputs.soi_patch_positions is None:
            self.soi_patch_positions = [np.zeros(3) for _ in patch_ids]
        else:
            self.soi_patch_positions = [np.asarray(p, dtype=float) for p in inputs.soi_patch_positions]
        if len(self.soi_patch_positions) != len(patch_ids):
            raise ValueError(f"Expected {len(patch_ids)} SOI patch positions, got {len(self.soi_patch_positions)}")

        if inputs.flyby_durations is None:
            self.flyby_durations = [FlybyDuration() for _ in range(n_flybys)]
        else:
            self.flyby_durations = list(inputs.flyby_durations)

        self.start_date = float(inputs.start_date)
        self.flight_times = [float(t) for t in inputs.flight_times]
        self.end_date = self.start_date + sum(self.flight_times) + sum(d.total for d in self.flyby_durations)

        self._compute_transfer_legs()
        self._compute_flyby_params()
        self._compute_ejections()
        self._compute_insertions()
        self.flybys = [flyby_from_parameters(params, body)
                       for params, body in zip(self.flyby_params, self.flyby_bodies)]
        self.maneuvers = self._collect_maneuvers()
        self.delta_v = self._total_delta_v()

    # Trajectory calculation

    def _leg_orbits(self, i: int) -> tuple[Orbit, Orbit]:
        up, down = self.sequence_up, self.sequence_down
        last = len(self.flight_times) - 1

        if i == 0:
            start_orbit = self.start_orbit if len(up) == 1 else self.system.body_from_id(up[-2]).orbit
        else:
            start_orbit = self.flyby_bodies[i - 1].orbit
        if i == last:
            end_orbit = self.end_orbit if len(down) == 1 else self.system.body_from_id(down[1]).orbit
        else:
            end_orbit = self.flyby_bodies[i].orbit
        return start_orbit, end_orbit

    def _compute_transfer_legs(self):
        """
        Legs in order. Leg i starts when the previous flyby leaves its SOI and
        ends at flyby i's SOI entry, which is recorded as the encounter date.
        """
        self.transfers = []
        self.flyby_encounter_dates = []
        self.transfer_velocities = []

        n_legs = len(self.flight_times)
        n_patches = len(self.soi_patch_positions)
        patch_idx = len(self.sequence_up) - 2
        end_date = self.start_date
        for i, flight_time in enumerate(self.flight_times):
            start_date = end_date + (self.flyby_durations[i - 1].total if i > 0 else 0.0)
            end_date = start_date + flight_time
            if i < n_legs - 1:
                self.flyby_encounter_dates.append(end_date)

            start_orbit, end_orbit = self._leg_orbits(i)
            start_patch = self.soi_patch_positions[patch_idx] if patch_idx >= 0 else np.zeros(3)
            end_patch = self.soi_patch_positions[patch_idx + 1] if patch_idx + 1 < n_patches else np.zeros(3)
            patch_idx += 2

            leg = transfer_trajectory(start_orbit, end_orbit, self.transfer_body, start_date, flight_time, end_date,
                                      self.inputs.plane_change, start_patch, end_patch)
            self.transfers.append(leg)
            # Excess velocities relative to the departed and reached bodies
            self.transfer_velocities.append((leg.maneuvers[0].delta_v, -leg.maneuvers[-1].delta_v))

    def _compute_flyby_params(self):
        self.flyby_params = []
        for i, body in enumerate(self.flyby_bodies):
            vel_in = self.transfer_velocities[i][1]
            vel_out = self.transfer_velocities[i + 1][0]
            time = self.flyby_encounter_dates[i] + self.flyby_durations[i].in_time
            self.flyby_params.append(flyby_parameters(vel_in, vel_out, body, time))

    def _compute_ejections(self):
        self.ejections = []
        if self.start_body.id != self.transfer_body.id:
            patches = self.soi_patch_positions[:len(self.sequence_up) - 1]
            self.ejections = ejection_trajectories(
                self.system, self.start_orbit, self.transfers[0].orbits[0], self.sequence_up, self.start_date,
                self.match_start_mo, self.ejection_insertion_type, patches,
            )

    def _compute_insertions(self):
        self.insertions = []
        if self.end_body.id != self.transfer_body.id:
            patches = self.soi_patch_positions[len(self.sequence_up) - 1 + 2 * len(self.flyby_bodies):]
            self.insertions = insertion_trajectories(
                self.system, self.end_orbit, self.transfers[-1].orbits[-1], self.sequence_down, self.end_date,
                self.match_end_mo, self.ejection_insertion_type, patches,
            )

    def _total_delta_v(self) -> float:
        delta_v = sum(params.delta_v for params in self.flyby_params)

        if self.ejections:
            for i, ejection in enumerate(self.ejections):
                delta_v += sum(burn.delta_v_mag for burn in ejection.maneuvers[1:])
                if i == 0:
                    delta_v += ejection.maneuvers[0].delta_v_mag
        else:
            delta_v += np.linalg.norm(self.transfer_velocities[0][0])

        if self.inputs.plane_change:
            delta_v += sum(leg.maneuvers[1].delta_v_mag for leg in self.transfers)

        if self.insertions:
            for i, insertion in enumerate(self.insertions):
                delta_v += sum(burn.delta_v_mag for burn in insertion.maneuvers[:-1])
                if i == len(self.insertions) - 1 and not self.inputs.no_insertion_burn:
                    delta_v += insertion.maneuvers[-1].delta_v_mag
        else:
            delta_v += np.linalg.norm(self.transfer_velocities[-1][1])

        if np.isnan(delta_v):
            return sys.float_info.max
        return float(delta_v)

    @property
    def flyby_error(self) -> float:
        return float(sum(params.error for params in self.flyby_params))

    def compute_fitness(self) -> float:
        """Delta-v [m/s] plus a 1e6 penalty per radian of unachievable flyby turn."""
        return self.delta_v + FLYBY_ERROR_WEIGHT * self.flyby_error

    def _collect_maneuvers(self) -> list:
        maneuvers = []
        if self.ejections:
            for i, ejection in enumerate(self.ejections):
                name = self.system.body_from_id(ejection.orbits[0].orbiting).name
                burns = ejection.maneuvers if i == 0 else ejection.maneuvers[1:]
                for j, burn in enumerate(burns):
                    context = "Departure Burn" if i == 0 and j == 0 else f"Oberth Maneuver Burn over {name}"
                    maneuvers.append(burn.with_context(context))
        else:
            maneuvers.append(self.transfers[0].maneuvers[0].with_context("Departure Burn"))

        for i, leg in enumerate(self.transfers):
            maneuvers.extend(burn.with_context("Plane Change Burn") for burn in leg.maneuvers[1:-1])
            if i < len(self.transfers) - 1:
                name = self.flyby_bodies[i].name
                maneuvers.extend(burn.with_context(f"Flyby Burn over {name}") for burn in self.flybys[i].maneuvers)

        if self.insertions:
            for i, insertion in enumerate(self.insertions):
                name = self.system.body_from_id(insertion.orbits[0].orbiting).name
                last = i == len(self.insertions) - 1
                burns = insertion.maneuvers if last else insertion.maneuvers[:-1]
                for j, burn in enumerate(burns):
                    context = "Arrival Burn" if last and j == len(burns) - 1 else f"Oberth Maneuver Burn over {name}"
                    maneuvers.append(burn.with_context(context))
        else:
            maneuvers.append(self.transfers[-1].maneuvers[-1].with_context("Arrival Burn"))

        return maneuvers

    def calculate_flyby_durations(self) -> list[FlybyDuration]:
        """In/out SOI durations of the solved flyby arcs."""
        return [FlybyDuration(flyby.intersect_times[1] - flyby.intersect_times[0],
                              flyby.intersect_times[2] - flyby.intersect_times[1])
                for flyby in self.flybys]

    # SOI patch refinement hooks

    @property
    def time_parameters(self) -> np.ndarray:
        return np.array([self.start_date, *self.flight_times])

    @property
    def cost(self) -> float:
        return self.compute_fitness()

    @property
    def leg_periods(self) -> list[float]:
        return [leg.orbits[0].sidereal_period for leg in self.transfers]

    @property
    def summed_periods(self) -> float:
        """Chain periods plus the time spent inside the flyby SOIs [s]."""
        return super().summed_periods + sum(d.total for d in self.calculate_flyby_durations())

    def calculate_soi_patches(self) -> list[np.ndarray]:
        flyby_crossings = []
        for flyby in self.flybys:
            flyby_crossings.append(orbit_to_position_at_date(flyby.orbits[0], flyby.intersect_times[0]))
            flyby_crossings.append(orbit_to_position_at_date(flyby.orbits[1], flyby.intersect_times[2]))
        return self._ejection_crossings() + flyby_crossings + self._insertion_crossings()

    def flyby_encounter_time_errors(self) -> list[float]:
        """SOI entry and exit of each flyby against the ends of the adjacent legs [s]."""
        errors = []
        for i, flyby in enumerate(self.flybys):
            errors.append(flyby.intersect_times[0] - self.transfers[i].end_date)
            errors.append(flyby.intersect_times[2] - self.transfers[i + 1].start_date)
        return errors

    @property
    def soi_patch_time_error(self) -> float:
        return super().soi_patch_time_error + float(sum(abs(e) for e in self.flyby_encounter_time_errors()))

    def with_parameters(self, time_parameters, soi_patch_positions) -> "MultiFlybyCalculator":
        inputs = replace(
            self.inputs,
            start_date=float(time_parameters[0]),
            flight_times=[float(t) for t in time_parameters[1:]],
            soi_patch_positions=list(soi_patch_positions),
            flyby_durations=self.calculate_flyby_durations(),
        )
        return MultiFlybyCalculator(inputs)

    def naive_step(self) -> "MultiFlybyCalculator":
        """
        Adopts the solved crossings and flyby durations, moves the start to the
        last ejection's SOI exit and the end to the first insertion's SOI
        entry, and re-derives the flight times so the flyby encounter dates
        stay where they are.
        """
        durations = self.calculate_flyby_durations()
        start_date = self.ejections[-1].end_date if self.ejections else self.start_date
        end_date = self.insertions[0].start_date if self.insertions else self.end_date

        leg_starts = [start_date] + [date + d.total for date, d in zip(self.flyby_encounter_dates, durations)]
        leg_ends = self.flyby_encounter_dates + [end_date]
        flight_times = [end - start for start, end in zip(leg_starts, leg_ends)]

        return self.with_parameters([start_date, *flight_times], self.calculate_soi_patches())

    def optimize_soi_patches(self, delta_v_weight: float = 1000.0, include_times: bool = True,
                             tol: float = 0.001, max_iters: int = None,
                             rng: np.random.Generator = None) -> "MultiFlybyCalculator":
        """
        Nelder-Mead on [patch angles..., start date, flight times...] minimizing
        posErr + 10 * timeErr + delta_v_weight * delta-v.
        """
        return super().optimize_soi_patches(delta_v_weight, include_times, tol, max_iters, rng)

    @property
    def multi_flyby(self) -> MultiFlyby:
        return MultiFlyby(
            system=self.system,
            start_orbit=self.start_orbit,
            end_orbit=self.end_orbit,
            flyby_id_sequence=list(self.inputs.flyby_id_sequence),
            start_date=self.start_date,
            flight_times=list(self.flight_times),
            end_date=self.end_date,
            transfer_body_id=self.transfer_body.id,
            ejections=self.ejections,
            insertions=self.insertions,
            transfers=self.transfers,
            flybys=self.flybys,
            maneuvers=self.maneuvers,
            delta_v=self.delta_v,
            soi_patch_positions=self.soi_patch_positions,
            flyby_durations=self.flyby_durations,
            ejection_insertion_type=self.ejection_insertion_type,
            plane_change=self.inputs.plane_change,
            match_start_mo=self.match_start_mo,
            match_end_mo=self.match_end_mo,
            no_insertion_burn=self.inputs.no_insertion_burn,
            patch_position_error=self.soi_patch_position_error,
            patch_time_error=self.soi_patch_time_error,
        )

    @classmethod
    def from_multi_flyby(cls, multi_flyby: MultiFlyby) -> "MultiFlybyCalculator":
        inputs = MultiFlybyInputs(
            system=multi_flyby.system,
            start_orbit=multi_flyby.start_orbit,
            end_orbit=multi_flyby.end_orbit,
            flyby_id_sequence=list(multi_flyby.flyby_id_sequence),
            start_date=multi_flyby.start_date,
            flight_times=list(multi_flyby.flight_times),
            ejection_insertion_type=multi_flyby.ejection_insertion_type,
            plane_change=multi_flyby.plane_change,
            match_start_mo=multi_flyby.match_start_mo,
            match_end_mo=multi_flyby.match_end_mo,
            no_insertion_burn=multi_flyby.no_insertion_burn,
            soi_patch_positions=list(multi_flyby.soi_patch_positions),
            flyby_durations=list(multi_flyby.flyby_durations),
        )
        return cls(inputs)


@dataclass(frozen=True, eq=False)
class MultiFlybySearchInputs:
    """
    Search space of a multi-flyby transfer.

    Attributes:
        start_date_min (float): Earliest start [s].
        start_date_max (float): Latest start [s].
        flight_times_min (list[float]): Shortest duration of each leg [s].
        flight_times_max (list[float]): Longest duration of each leg [s].

    The remaining attributes are as in MultiFlybyInputs.
    """
    system: object
    start_orbit: Orbit
    end_orbit: Orbit
    flyby_id_sequence: list
    start_date_min: float
    start_date_max: float
    flight_times_min: list
    flight_times_max: list
    ejection_insertion_type: str = "fastdirect"
    plane_change: int = 0
    match_start_mo: bool = True
    match_end_mo: bool = False
    no_insertion_burn: bool = False

    @property
    def agent_dim(self) -> int:
        return 1 + len(self.flight_times_min)


def multi_flyby_inputs_from_agent(agent, inputs: MultiFlybySearchInputs) -> MultiFlybyInputs:
    """
    Decodes an agent in [0, 1]^n: component 0 is the start date, component
    i > 0 the flight time of leg i-1, each scaled into its bounds.
    """
    start_date = lerp(inputs.start_date_min, inputs.start_date_max, agent[0])
    flight_times = [lerp(lo, hi, a) for lo, hi, a in zip(inputs.flight_times_min, inputs.flight_times_max, agent[1:])]
    return MultiFlybyInputs(
        system=inputs.system,
        start_orbit=inputs.start_orbit,
        end_orbit=inputs.end_orbit,
        flyby_id_sequence=list(inputs.flyby_id_sequence),
        start_date=start_date,
        flight_times=flight_times,
        ejection_insertion_type=inputs.ejection_insertion_type,
        plane_change=inputs.plane_change,
        match_start_mo=inputs.match_start_mo,
        match_end_mo=inputs.match_end_mo,
        no_insertion_burn=inputs.no_insertion_burn,
    )


def refine_multi_flyby(inputs: MultiFlybyInputs, settings: RefinementSettings = None) -> MultiFlyby:
    """
    Runs the full SOI patch refinement pipeline on a multi-flyby transfer.

    Returns:
        MultiFlyby: The best solution seen, never worse than the unrefined one.
    """
    settings = settings or RefinementSettings()
    logger.info("Optimizing multi-flyby SoI patch positions and times.")
    calc = MultiFlybyCalculator(inputs)
    calc = refine_patches(calc, settings, settings.multi_flyby_de_threshold)
    return calc.multi_flyby
