"""
Single transfers between two orbits anywhere in a solar system.

The start and end orbits may sit several levels below their common attractor
(the transfer body): the calculator climbs out of the start body's hierarchy
with a chain of ejections, flies one Lambert leg around the transfer body,
and descends into the end body's hierarchy with a chain of insertions.
"""
import logging
import sys
from dataclasses import dataclass, replace
from typing import Optional

import numpy as np

from patchedconics.dynamics.kepler import Orbit, state_to_orbit
from patchedconics.mission.records import Transfer
from patchedconics.mission.refinement import PatchedCalculator, refine_patches
from patchedconics.mission.settings import RefinementSettings
from patchedconics.trajectory.trajectories import (
    check_ejection_insertion_type, ejection_trajectories, insertion_trajectories, transfer_trajectory,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class TransferInputs:
    """
    Everything that defines a transfer.

    Attributes:
        system (SolarSystem): Bodies.
        start_orbit (Orbit): Parking orbit; its `orbiting` id is the start body.
        end_orbit (Orbit): Target orbit; its `orbiting` id is the end body.
        start_date (float): Start of the interplanetary leg [s].
        flight_time (float): Duration of the interplanetary leg [s].
        ejection_insertion_type (str): One of EJECTION_INSERTION_TYPES.
        plane_change (int): 0, 1 or 2, see `transfer_trajectory`.
        match_start_mo (bool): Depart from the start orbit at its own timing;
                               otherwise the start orbit is re-phased to suit.
        match_end_mo (bool): Same for the end orbit.
        no_insertion_burn (bool): Leave the final burn out of the delta-v.
        soi_patch_positions (list[np.ndarray], optional): SOI patch offsets [m],
                                                          zeros when not given.
        sequence_up (list[int], optional): Precomputed ejection body chain.
        sequence_down (list[int], optional): Precomputed insertion body chain.
    """
    system: object
    start_orbit: Orbit
    end_orbit: Orbit
    start_date: float
    flight_time: float
    ejection_insertion_type: str = "fastdirect"
    plane_change: int = 0
    match_start_mo: bool = True
    match_end_mo: bool = False
    no_insertion_burn: bool = False
    soi_patch_positions: Optional[list] = None
    sequence_up: Optional[list] = None
    sequence_down: Optional[list] = None


class TransferCalculator(PatchedCalculator):
    """
    Solves a transfer on construction.

    The calculator is never modified afterwards; refinement methods return new
    calculators. `transfer` gives the result record.
    """

    def __init__(self, inputs: TransferInputs):
        self.inputs = inputs
        self.system = inputs.system
        self.ejection_insertion_type = check_ejection_insertion_type(inputs.ejection_insertion_type)
        self.match_start_mo = inputs.match_start_mo
        self.match_end_mo = inputs.match_end_mo

        self.start_orbit = inputs.start_orbit
        self.end_orbit = inputs.end_orbit
        self.start_body = self.system.body_from_id(self.start_orbit.orbiting)
        self.end_body = self.system.body_from_id(self.end_orbit.orbiting)
        transfer_id = self.system.common_attractor_id(self.start_body.id, self.end_body.id)
        self.transfer_body = self.system.body_from_id(transfer_id)

        self.sequence_up = inputs.sequence_up or self.system.sequence_up(self.start_body.id, transfer_id)
        self.sequence_down = inputs.sequence_down or self.system.sequence_down(transfer_id, self.end_body.id)

        patch_ids = self.sequence_up[:-1] + self.sequence_down[1:]
        self.soi_patch_bodies = [self.system.body_from_id(i) for i in patch_ids]
        if inputs.soi_patch_positions is None:
            self.soi_patch_positions = [np.zeros(3) for _ in patch_ids]
        else:
            self.soi_patch_positions = [np.asarray(p, dtype=float) for p in inputs.soi_patch_positions]
        if len(self.soi_patch_positions) != len(patch_ids):
            raise ValueError(f"Expected {len(patch_ids)} SOI patch positions, got {len(self.soi_patch_positions)}")

        self.start_date = float(inputs.start_date)
        self.flight_time = float(inputs.flight_time)
        self.end_date = self.start_date + self.flight_time

        self.transfer_trajectory = self._compute_transfer_leg()
        self._compute_ejections()
        self._compute_insertions()
        self.maneuvers = self._collect_maneuvers()
        self.delta_v = self._total_delta_v()

    # Trajectory calculation

    def _compute_transfer_leg(self):
        up, down = self.sequence_up, self.sequence_down
        start_orbit = self.start_orbit if len(up) == 1 else self.system.body_from_id(up[-2]).orbit
        end_orbit = self.end_orbit if len(down) == 1 else self.system.body_from_id(down[1]).orbit

        start_idx = len(up) - 2
        end_idx = start_idx + 1
        start_patch = self.soi_patch_positions[start_idx] if start_idx >= 0 else np.zeros(3)
        end_patch = self.soi_patch_positions[end_idx] if end_idx < len(self.soi_patch_positions) else np.zeros(3)

        return transfer_trajectory(start_orbit, end_orbit, self.transfer_body, self.start_date, self.flight_time,
                                   self.end_date, self.inputs.plane_change, start_patch, end_patch)

    def _compute_ejections(self):
        n_ejections = len(self.sequence_up) - 1
        self.ejections = ejection_trajectories(
            self.system, self.start_orbit, self.transfer_trajectory.orbits[0], self.sequence_up, self.start_date,
            self.match_start_mo, self.ejection_insertion_type, self.soi_patch_positions[:n_ejections],
        )
        if self.ejections and not self.match_start_mo:
            self.start_orbit = state_to_orbit(self.ejections[0].maneuvers[0].pre_state, self.start_body)

    def _compute_insertions(self):
        n_ejections = len(self.sequence_up) - 1
        self.insertions = insertion_trajectories(
            self.system, self.end_orbit, self.transfer_trajectory.orbits[-1], self.sequence_down, self.end_date,
            self.match_end_mo, self.ejection_insertion_type, self.soi_patch_positions[n_ejections:],
        )
        if self.insertions and not self.match_end_mo:
            self.end_orbit = state_to_orbit(self.insertions[-1].maneuvers[-1].post_state, self.end_body)

    def _collect_maneuvers(self) -> list:
        """Every burn in order, each tagged with what it is for."""
        leg = self.transfer_trajectory
        maneuvers = []

        if self.ejections:
            for i, ejection in enumerate(self.ejections):
                name = self.system.body_from_id(ejection.orbits[0].orbiting).name
                burns = ejection.maneuvers if i == 0 else ejection.maneuvers[1:]
                for j, burn in enumerate(burns):
                    context = "Departure Burn" if i == 0 and j == 0 else f"Oberth Maneuver Burn over {name}"
                    maneuvers.append(burn.with_context(context))
        else:
            maneuvers.append(leg.maneuvers[0].with_context("Departure Burn"))

        maneuvers.extend(burn.with_context("Plane Change Burn") for burn in leg.maneuvers[1:-1])

        if self.insertions:
            for i, insertion in enumerate(self.insertions):
                name = self.system.body_from_id(insertion.orbits[0].orbiting).name
                last = i == len(self.insertions) - 1
                burns = insertion.maneuvers if last else insertion.maneuvers[:-1]
                for j, burn in enumerate(burns):
                    context = "Arrival Burn" if last and j == len(burns) - 1 else f"Oberth Maneuver Burn over {name}"
                    maneuvers.append(burn.with_context(context))
        else:
            maneuvers.append(leg.maneuvers[-1].with_context("Arrival Burn"))

        return maneuvers

    def _total_delta_v(self) -> float:
        burns = self.maneuvers[:-1] if self.inputs.no_insertion_burn else self.maneuvers
        delta_v = float(sum(burn.delta_v_mag for burn in burns))
        if np.isnan(delta_v):
            return sys.float_info.max
        return delta_v

    @property
    def ejection_delta_v(self) -> float:
        return float(self.maneuvers[0].delta_v_mag)

    @property
    def insertion_delta_v(self) -> float:
        return float(self.maneuvers[-1].delta_v_mag)

    # SOI patch refinement hooks

    @property
    def time_parameters(self) -> np.ndarray:
        return np.array([self.start_date, self.flight_time])

    @property
    def cost(self) -> float:
        return self.delta_v

    @property
    def leg_periods(self) -> list[float]:
        return [self.transfer_trajectory.orbits[0].sidereal_period]

    def calculate_soi_patches(self) -> list[np.ndarray]:
        return self._ejection_crossings() + self._insertion_crossings()

    def with_parameters(self, time_parameters, soi_patch_positions) -> "TransferCalculator":
        inputs = replace(
            self.inputs,
            start_date=float(time_parameters[0]),
            flight_time=float(time_parameters[1]),
            soi_patch_positions=list(soi_patch_positions),
            sequence_up=self.sequence_up,
            sequence_down=self.sequence_down,
        )
        return TransferCalculator(inputs)

    def naive_step(self) -> "TransferCalculator":
        """
        Moves the leg to start at the last ejection's SOI exit and end at the
        first insertion's SOI entry, and adopts the solved crossings as patches.
        """
        start_date = self.ejections[-1].end_date if self.ejections else self.start_date
        end_date = self.insertions[0].start_date if self.insertions else self.end_date
        return self.with_parameters([start_date, end_date - start_date], self.calculate_soi_patches())

    def optimize_soi_patches(self, delta_v_weight: float = 5000.0, include_times: bool = None,
                             tol: float = 0.001, max_iters: int = None,
                             rng: np.random.Generator = None) -> "TransferCalculator":
        """
        Nelder-Mead on the SOI patch angles minimizing
        posErr + 10 * timeErr + delta_v_weight * delta-v.

        The start date and flight time are optimized as well when either chain
        is more than one level deep, unless include_times says otherwise.
        """
        if include_times is None:
            include_times = len(self.sequence_up) > 2 or len(self.sequence_down) > 2
        return super().optimize_soi_patches(delta_v_weight, include_times, tol, max_iters, rng)

    @property
    def transfer(self) -> Transfer:
        return Transfer(
            system=self.system,
            start_orbit=self.start_orbit,
            end_orbit=self.end_orbit,
            start_date=self.start_date,
            flight_time=self.flight_time,
            end_date=self.end_date,
            transfer_trajectory=self.transfer_trajectory,
            ejections=self.ejections,
            insertions=self.insertions,
            maneuvers=self.maneuvers,
            delta_v=self.delta_v,
            soi_patch_positions=self.soi_patch_positions,
            ejection_insertion_type=self.ejection_insertion_type,
            plane_change=self.inputs.plane_change,
            match_start_mo=self.match_start_mo,
            match_end_mo=self.match_end_mo,
            no_insertion_burn=self.inputs.no_insertion_burn,
            patch_position_error=self.soi_patch_position_error,
            patch_time_error=self.soi_patch_time_error,
        )

    @classmethod
    def from_transfer(cls, transfer: Transfer, start_orbit: Orbit = None, end_orbit: Orbit = None) -> "TransferCalculator":
        """
        Rebuilds the calculator of a transfer record.

        Pass the original orbits when the record holds achieved ones
        (match_start_mo or match_end_mo False).
        """
        inputs = TransferInputs(
            system=transfer.system,
            start_orbit=start_orbit or transfer.start_orbit,
            end_orbit=end_orbit or transfer.end_orbit,
            start_date=transfer.start_date,
            flight_time=transfer.flight_time,
            ejection_insertion_type=transfer.ejection_insertion_type,
            plane_change=transfer.plane_change,
            match_start_mo=transfer.match_start_mo,
            match_end_mo=transfer.match_end_mo,
            no_insertion_burn=transfer.no_insertion_burn,
            soi_patch_positions=list(transfer.soi_patch_positions),
        )
        return cls(inputs)


def refine_transfer(inputs: TransferInputs, settings: RefinementSettings = None) -> Transfer:
    """
    Runs the full SOI patch refinement pipeline on a transfer.

    Returns:
        Transfer: The best solution seen, never worse than the unrefined one.
    """
    settings = settings or RefinementSettings()
    logger.info("Optimizing transfer SoI patch positions and times.")
    calc = refine_patches(TransferCalculator(inputs), settings, settings.transfer_de_threshold)
    return calc.transfer
