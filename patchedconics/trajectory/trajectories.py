"""
Trajectory assembly.

A mission is assembled from three kinds of pieces:
    - the interplanetary leg(s), solved with Lambert's problem around the
      transfer body, optionally with a mid-course plane change,
    - the chain of ejections climbing from the start body to the transfer body,
    - the chain of insertions descending from the transfer body to the end body.

Ejections are built from the top of the chain downward, since each level needs
the velocity the level above requires at its SOI exit. Insertions are built
top-down as well, following the arrival.
"""
import logging
from dataclasses import replace

import numpy as np

from patchedconics.dynamics.kepler import (
    OrbitalState, angle_in_orbit_plane, orbit_to_state_at_date, orbit_to_velocity_at_date,
    position_at_true_anomaly, rotate_to_inertial_from_perifocal, rotate_to_perifocal_from_inertial,
    state_to_orbit, true_anomaly_to_orbit_date, velocity_at_true_anomaly,
)
from patchedconics.dynamics.vectors import HALF_PI, Z_DIR, acos_clamped, normalize, rodrigues, wrap_angle
from patchedconics.trajectory import departarrive
from patchedconics.trajectory.arcs import (
    FlightPlan, Trajectory, current_orbit_for_flight_plan, current_orbit_for_trajectory,
    current_trajectory_for_flight_plan,
)
from patchedconics.trajectory.lambert import LambertSolver
from patchedconics.trajectory.maneuver import maneuver_from_orbital_states

__all__ = [
    'EJECTION_INSERTION_TYPES', 'FlightPlan', 'Trajectory', 'transfer_trajectory', 'ejection_trajectories',
    'insertion_trajectories', 'current_orbit_for_trajectory', 'current_trajectory_for_flight_plan',
    'current_orbit_for_flight_plan', 'check_ejection_insertion_type',
]

logger = logging.getLogger(__name__)

EJECTION_INSERTION_TYPES = ("fastdirect", "direct", "fastoberth", "oberth")


def check_ejection_insertion_type(ei_type: str) -> str:
    if ei_type not in EJECTION_INSERTION_TYPES:
        raise ValueError(f"Unknown ejection/insertion type '{ei_type}', expected one of {EJECTION_INSERTION_TYPES}")
    return ei_type


# Interplanetary legs

def _plane_change_rotation(n1: np.ndarray, n2: np.ndarray) -> tuple[np.ndarray, float]:
    angle = acos_clamped(np.dot(n1, n2))
    if angle == 0:
        return Z_DIR, angle
    with np.errstate(invalid='ignore', divide='ignore'):
        axis = normalize(np.cross(n1, n2))
    if np.isnan(axis[0]):
        axis = Z_DIR
    return axis, angle


def _plane_change_true_anomaly(start_nu: float, end_nu: float) -> float:
    """A quarter turn before the encounter, or the start when the leg is shorter than that."""
    return start_nu + max(0.0, wrap_angle(end_nu - start_nu) - HALF_PI)


def transfer_trajectory(start_orbit, end_orbit, transfer_body, start_date: float, flight_time: float,
                        end_date: float, plane_change=0, start_patch_position: np.ndarray = None,
                        end_patch_position: np.ndarray = None) -> Trajectory:
    """
    Lambert leg between two orbits around the transfer body.

    Args:
        start_orbit (Orbit): Orbit departed from (around transfer_body).
        end_orbit (Orbit): Orbit arrived at (around transfer_body).
        transfer_body (CelestialBody): Attractor of the leg.
        start_date (float): Departure date [s].
        flight_time (float): Time of flight [s].
        end_date (float): Arrival date [s].
        plane_change (int | bool): 0 for a direct leg; 1 to fly in the start
                                   orbit's plane and turn toward the target
                                   before arrival; 2 to leave toward the end
                                   orbit's plane and turn into it en route.
                                   True is treated as 1.
        start_patch_position (np.ndarray, optional): Offset of the departure point [m].
        end_patch_position (np.ndarray, optional): Offset of the arrival point [m].

    Returns:
        Trajectory: One or two arcs; maneuvers at departure, (plane change,) arrival.
    """
    mu = transfer_body.std_grav_param
    start_patch_position = np.zeros(3) if start_patch_position is None else start_patch_position
    end_patch_position = np.zeros(3) if end_patch_position is None else end_patch_position

    start_state = orbit_to_state_at_date(start_orbit, transfer_body, start_date)
    end_state = orbit_to_state_at_date(end_orbit, transfer_body, end_date)
    start_pos = start_state.pos + start_patch_position
    end_pos = end_state.pos + end_patch_position

    variant = int(plane_change)
    if variant == 1:
        return _plane_change_first(start_orbit, transfer_body, start_state, end_state, start_pos, end_pos,
                                   start_date, flight_time, end_date)
    if variant == 2:
        return _plane_change_second(end_orbit, transfer_body, start_state, end_state, start_pos, end_pos,
                                    start_date, flight_time, end_date)

    v1, v2 = LambertSolver.solve(start_pos, end_pos, flight_time, mu)
    depart_state = OrbitalState(start_date, start_pos, v1)
    arrive_state = OrbitalState(end_date, end_pos, v2)
    return Trajectory(
        [state_to_orbit(depart_state, transfer_body)],
        [start_date, end_date],
        [maneuver_from_orbital_states(start_state, depart_state),
         maneuver_from_orbital_states(arrive_state, end_state)],
    )


def _plane_change_first(start_orbit, transfer_body, start_state, end_state, start_pos, end_pos,
                        start_date, flight_time, end_date) -> Trajectory:
    mu = transfer_body.std_grav_param

    # Target the end position projected into the start orbit's plane
    plane_end_pos = rotate_to_perifocal_from_inertial(end_pos, start_orbit)
    plane_end_pos = rotate_to_inertial_from_perifocal(np.array([plane_end_pos[0], plane_end_pos[1], 0.0]), start_orbit)

    v1, _ = LambertSolver.solve(start_pos, plane_end_pos, flight_time, mu)
    depart_state = OrbitalState(start_date, start_pos, v1)
    transfer_orbit1 = state_to_orbit(depart_state, transfer_body)

    start_nu = angle_in_orbit_plane(start_pos, transfer_orbit1)
    end_nu = angle_in_orbit_plane(plane_end_pos, transfer_orbit1)
    plane_change_nu = _plane_change_true_anomaly(start_nu, end_nu)
    plane_change_date = true_anomaly_to_orbit_date(plane_change_nu, transfer_orbit1, start_date)

    pre_state = OrbitalState(plane_change_date,
                             position_at_true_anomaly(transfer_orbit1, plane_change_nu),
                             velocity_at_true_anomaly(transfer_orbit1, mu, plane_change_nu))
    n1 = normalize(np.cross(pre_state.pos, pre_state.vel))
    n2 = normalize(np.cross(pre_state.pos, end_pos))
    axis, angle = _plane_change_rotation(n1, n2)
    post_state = OrbitalState(plane_change_date, pre_state.pos, rodrigues(pre_state.vel, axis, angle))
    transfer_orbit2 = state_to_orbit(post_state, transfer_body)

    arrive_state = orbit_to_state_at_date(transfer_orbit2, transfer_body, end_date)
    if np.isnan(arrive_state.pos[0]):
        arrive_nu = angle_in_orbit_plane(end_pos, transfer_orbit2)
        arrive_state = OrbitalState(end_date, end_pos, velocity_at_true_anomaly(transfer_orbit2, mu, arrive_nu))

    return Trajectory(
        [transfer_orbit1, transfer_orbit2],
        [start_date, plane_change_date, end_date],
        [maneuver_from_orbital_states(start_state, depart_state),
         maneuver_from_orbital_states(pre_state, post_state),
         maneuver_from_orbital_states(arrive_state, end_state)],
    )


def _plane_change_second(end_orbit, transfer_body, start_state, end_state, start_pos, end_pos,
                         start_date, flight_time, end_date) -> Trajectory:
    mu = transfer_body.std_grav_param

    # Leave from the start position projected into the end orbit's plane
    plane_start_pos = rotate_to_perifocal_from_inertial(start_pos, end_orbit)
    plane_start_pos = rotate_to_inertial_from_perifocal(np.array([plane_start_pos[0], plane_start_pos[1], 0.0]),
                                                        end_orbit)

    _, v2 = LambertSolver.solve(plane_start_pos, end_pos, flight_time, mu)
    arrive_state = OrbitalState(end_date, end_pos, v2)
    transfer_orbit2 = state_to_orbit(arrive_state, transfer_body)

    end_nu = angle_in_orbit_plane(end_pos, transfer_orbit2)
    start_nu = angle_in_orbit_plane(plane_start_pos, transfer_orbit2)
    plane_change_nu = _plane_change_true_anomaly(start_nu, end_nu)
    plane_change_date = true_anomaly_to_orbit_date(plane_change_nu, transfer_orbit2, start_date)

    post_state = OrbitalState(plane_change_date,
                              position_at_true_anomaly(transfer_orbit2, plane_change_nu),
                              velocity_at_true_anomaly(transfer_orbit2, mu, plane_change_nu))
    n1 = normalize(np.cross(post_state.pos, start_pos))
    n2 = normalize(np.cross(post_state.pos, post_state.vel))
    axis, angle = _plane_change_rotation(n1, n2)
    pre_state = OrbitalState(plane_change_date, post_state.pos, rodrigues(post_state.vel, axis, angle))
    transfer_orbit1 = state_to_orbit(pre_state, transfer_body)

    depart_state = orbit_to_state_at_date(transfer_orbit1, transfer_body, start_date)
    if np.isnan(depart_state.pos[0]):
        depart_nu = angle_in_orbit_plane(start_pos, transfer_orbit1)
        depart_state = OrbitalState(start_date, start_pos, velocity_at_true_anomaly(transfer_orbit1, mu, depart_nu))

    return Trajectory(
        [transfer_orbit1, transfer_orbit2],
        [start_date, plane_change_date, end_date],
        [maneuver_from_orbital_states(start_state, depart_state),
         maneuver_from_orbital_states(pre_state, post_state),
         maneuver_from_orbital_states(arrive_state, end_state)],
    )


# Ejection and insertion chains

def _oberth_is_worse(relative_vel: np.ndarray, body, park_sma: float, ejection: bool) -> bool:
    """
    Quick circular-orbit estimate of whether a direct burn beats an Oberth maneuver.
    """
    soi = body.soi
    mu = body.std_grav_param
    soi_speed_sq = float(np.dot(relative_vel, relative_vel))
    apoapsis = park_sma
    periapsis = departarrive.min_flyby_radius(body)

    energy = soi_speed_sq / 2 - mu / soi
    park_speed = np.sqrt(mu / apoapsis)

    if ejection:
        obr_ecc = (apoapsis - periapsis) / (periapsis + apoapsis)
        obr_sma = periapsis / (1 - obr_ecc)
    else:
        obr_sma = (apoapsis + periapsis) / 2
    obr_energy = -mu / (2 * obr_sma)

    with np.errstate(invalid='ignore'):
        obr_periapsis_speed = np.sqrt((obr_energy + mu / periapsis) * 2)
        hyp_periapsis_speed = np.sqrt((energy + mu / periapsis) * 2)
        obr_apoapsis_speed = np.sqrt((obr_energy + mu / apoapsis) * 2)
        direct_speed = np.sqrt((energy + mu / apoapsis) * 2)

    direct_delta_v = abs(park_speed - direct_speed)
    oberth_delta_v = abs(hyp_periapsis_speed - obr_periapsis_speed) + abs(obr_apoapsis_speed - park_speed)
    return bool(direct_delta_v < oberth_delta_v)


def _ejection(ei_type, previous_orbit, body, relative_vel, escape_date, match_orbit, patch_pos) -> Trajectory:
    if ei_type == "direct":
        return departarrive.optimal_departure(previous_orbit, body, relative_vel, escape_date, match_orbit,
                                              "direct", patch_pos)
    if ei_type == "fastoberth":
        return departarrive.fast_oberth_departure(previous_orbit, body, relative_vel, escape_date, match_orbit,
                                                  patch_pos)
    if ei_type == "oberth":
        return departarrive.optimal_departure(previous_orbit, body, relative_vel, escape_date, match_orbit,
                                              "oberth", patch_pos)
    return departarrive.fast_departure(previous_orbit, body, relative_vel, escape_date, match_orbit)


def _insertion(ei_type, next_orbit, body, relative_vel, encounter_date, match_orbit, patch_pos) -> Trajectory:
    if ei_type == "direct":
        return departarrive.optimal_arrival(next_orbit, body, relative_vel, encounter_date, match_orbit,
                                            "direct", patch_pos)
    if ei_type == "fastoberth":
        return departarrive.fast_oberth_arrival(next_orbit, body, relative_vel, encounter_date, match_orbit,
                                                patch_pos)
    if ei_type == "oberth":
        return departarrive.optimal_arrival(next_orbit, body, relative_vel, encounter_date, match_orbit,
                                            "oberth", patch_pos)
    return departarrive.fast_arrival(next_orbit, body, relative_vel, encounter_date, match_orbit)


def ejection_trajectories(system, start_orbit, transfer_orbit, ejection_sequence: list[int],
                          transfer_start_date: float, match_start_mo: bool = True, ei_type: str = "fastdirect",
                          soi_patch_positions: list[np.ndarray] = None) -> list[Trajectory]:
    """
    Ejection chain from the start orbit up to the transfer orbit.

    Args:
        system (SolarSystem): Body lookup.
        start_orbit (Orbit): Parking orbit around ejection_sequence[0].
        transfer_orbit (Orbit): First arc of the interplanetary leg.
        ejection_sequence (list[int]): Body ids from the start body up to the transfer body.
        transfer_start_date (float): Start of the interplanetary leg [s].
        match_start_mo (bool): Keep the start orbit's timing; intermediate
                               levels always keep their body's timing.
        ei_type (str): One of EJECTION_INSERTION_TYPES.
        soi_patch_positions (list[np.ndarray], optional): SOI exit offsets, one per ejection.

    Returns:
        list[Trajectory]: One trajectory per ejection, in chronological order.
    """
    check_ejection_insertion_type(ei_type)
    n_ejections = len(ejection_sequence) - 1
    if soi_patch_positions is None:
        soi_patch_positions = [np.zeros(3) for _ in range(max(n_ejections, 1))]

    ejections = []
    escape_date = transfer_start_date
    for i in range(n_ejections - 1, -1, -1):
        current_body = system.body_from_id(ejection_sequence[i])
        next_body = system.body_from_id(ejection_sequence[i + 1])

        # Orbit departed from: the start orbit, or the orbit of the body just escaped
        if i == 0:
            previous_orbit = start_orbit
        else:
            previous_orbit = system.body_from_id(ejection_sequence[i - 1]).orbit

        # Orbit escaped into: the transfer orbit, or the ejection one level up
        if i == n_ejections - 1:
            next_orbit_vel = orbit_to_velocity_at_date(transfer_orbit, next_body, escape_date)
            current_body_vel = orbit_to_velocity_at_date(current_body.orbit, next_body, escape_date)
        else:
            next_maneuver = ejections[-1].maneuvers[0]
            next_orbit_vel = next_maneuver.post_state.vel
            escape_date = next_maneuver.post_state.date
            current_body_vel = next_maneuver.pre_state.vel

        relative_vel = next_orbit_vel - current_body_vel
        match_orbit = True if i > 0 else match_start_mo

        level_type = ei_type
        if level_type == "fastoberth" and _oberth_is_worse(relative_vel, current_body, previous_orbit.semi_major_axis,
                                                           ejection=True):
            level_type = "fastdirect"
            logger.debug("Direct ejection is cheaper than an Oberth maneuver over %s", current_body.name)

        patch_pos = np.zeros(3) if i == 0 else soi_patch_positions[i - 1]
        ejection = _ejection(level_type, previous_orbit, current_body, relative_vel, escape_date, match_orbit,
                             patch_pos)

        # Re-solve a fast direct ejection from the offset SOI exit point of the level below
        if i > 0 and level_type == "fastdirect" and np.linalg.norm(patch_pos) > 0:
            ejection = _patched_ejection(ejection, previous_orbit, current_body, relative_vel, escape_date, patch_pos)

        ejections.append(ejection)

    return ejections[::-1]


def _patched_ejection(ejection: Trajectory, previous_orbit, body, relative_vel, escape_date, patch_pos) -> Trajectory:
    burn_pos = ejection.maneuvers[0].pre_state.pos
    _, orbit = departarrive.depart_arrive_for_position(burn_pos + patch_pos, body, relative_vel, escape_date, 1)

    previous_nu = angle_in_orbit_plane(burn_pos, previous_orbit)
    epoch = true_anomaly_to_orbit_date(previous_nu, previous_orbit, orbit.epoch - previous_orbit.sidereal_period / 2)
    soi_date = escape_date + epoch - orbit.epoch
    orbit = replace(orbit, epoch=epoch)

    pre_state = OrbitalState(epoch, burn_pos,
                             velocity_at_true_anomaly(previous_orbit, body.std_grav_param, previous_nu))
    post_state = orbit_to_state_at_date(orbit, body, epoch)
    return Trajectory([orbit], [epoch, soi_date], [maneuver_from_orbital_states(pre_state, post_state)])


def insertion_trajectories(system, end_orbit, transfer_orbit, insertion_sequence: list[int],
                           transfer_end_date: float, match_end_mo: bool = True, ei_type: str = "fastdirect",
                           soi_patch_positions: list[np.ndarray] = None) -> list[Trajectory]:
    """
    Insertion chain from the transfer orbit down to the end orbit.

    Args:
        system (SolarSystem): Body lookup.
        end_orbit (Orbit): Target orbit around insertion_sequence[-1].
        transfer_orbit (Orbit): Last arc of the interplanetary leg.
        insertion_sequence (list[int]): Body ids from the transfer body down to the end body.
        transfer_end_date (float): End of the interplanetary leg [s].
        match_end_mo (bool): Keep the end orbit's timing.
        ei_type (str): One of EJECTION_INSERTION_TYPES.
        soi_patch_positions (list[np.ndarray], optional): SOI entry offsets, one per insertion.

    Returns:
        list[Trajectory]: One trajectory per insertion, in chronological order.
    """
    check_ejection_insertion_type(ei_type)
    n_insertions = len(insertion_sequence) - 1
    if soi_patch_positions is None:
        soi_patch_positions = [np.zeros(3) for _ in range(max(n_insertions, 1))]

    insertions = []
    encounter_date = transfer_end_date
    for i in range(n_insertions):
        current_body = system.body_from_id(insertion_sequence[i + 1])
        previous_body = system.body_from_id(insertion_sequence[i])

        if i == n_insertions - 1:
            next_orbit = end_orbit
        else:
            next_orbit = system.body_from_id(insertion_sequence[i + 2]).orbit

        if i == 0:
            previous_orbit_vel = orbit_to_velocity_at_date(transfer_orbit, previous_body, encounter_date)
            current_body_vel = orbit_to_velocity_at_date(current_body.orbit, previous_body, encounter_date)
        else:
            previous_maneuver = insertions[-1].maneuvers[-1]
            previous_orbit_vel = previous_maneuver.pre_state.vel
            encounter_date = previous_maneuver.pre_state.date
            current_body_vel = previous_maneuver.post_state.vel

        relative_vel = previous_orbit_vel - current_body_vel
        match_orbit = True if i < n_insertions - 1 else match_end_mo

        level_type = ei_type
        if level_type == "fastoberth" and _oberth_is_worse(relative_vel, current_body, next_orbit.semi_major_axis,
                                                           ejection=False):
            level_type = "fastdirect"
            logger.debug("Direct insertion is cheaper than an Oberth maneuver over %s", current_body.name)

        patch_pos = np.zeros(3) if i == n_insertions - 1 else soi_patch_positions[i + 1]
        insertion = _insertion(level_type, next_orbit, current_body, relative_vel, encounter_date, match_orbit,
                               patch_pos)

        if level_type == "fastdirect" and np.linalg.norm(patch_pos) > 0:
            insertion = _patched_insertion(insertion, next_orbit, current_body, relative_vel, encounter_date,
                                           patch_pos)

        insertions.append(insertion)

    return insertions


def _patched_insertion(insertion: Trajectory, next_orbit, body, relative_vel, encounter_date, patch_pos) -> Trajectory:
    burn_pos = insertion.maneuvers[-1].post_state.pos
    _, orbit = departarrive.depart_arrive_for_position(burn_pos + patch_pos, body, relative_vel, encounter_date, -1)

    next_nu = angle_in_orbit_plane(burn_pos, next_orbit)
    epoch = true_anomaly_to_orbit_date(next_nu, next_orbit, orbit.epoch - next_orbit.sidereal_period / 2)
    soi_date = encounter_date + epoch - orbit.epoch
    orbit = replace(orbit, epoch=epoch)

    post_state = OrbitalState(epoch, burn_pos, velocity_at_true_anomaly(next_orbit, body.std_grav_param, next_nu))
    pre_state = orbit_to_state_at_date(orbit, body, epoch)
    return Trajectory([orbit], [soi_date, epoch], [maneuver_from_orbital_states(pre_state, post_state)])
