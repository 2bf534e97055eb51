"""
Unpowered and powered gravity assists.

The flyby is modeled as two hyperbolas sharing their periapsis: the incoming
arc from SOI entry to periapsis and the outgoing arc from periapsis to SOI
exit, with a single tangential burn at periapsis making up any difference in
hyperbolic excess energy.
"""
from dataclasses import dataclass, field

import numpy as np

from patchedconics.dynamics.kepler import (
    OrbitalState, motion_angle_at_true_anomaly, motion_direction_at_true_anomaly, sidereal_period,
    state_to_orbit, true_anomaly_at_distance,
)
from patchedconics.dynamics.vectors import X_DIR, acos_clamped, align_vectors_angle_axis, normalize, rodrigues, wrap_angle
from patchedconics.optimization.root_finding import brent_minimize
from patchedconics.trajectory.arcs import Trajectory
from patchedconics.trajectory.departarrive import ejection_date, insertion_date, min_flyby_radius
from patchedconics.trajectory.maneuver import maneuver_from_orbital_states

__all__ = [
    'FlybyParams', 'min_flyby_radius', 'max_flyby_radius', 'leg_duration_bounds',
    'flyby_parameters', 'flyby_from_parameters',
]


@dataclass(frozen=True, eq=False)
class FlybyParams:
    """
    Incoming and outgoing hyperbolas of a flyby.

    Attributes:
        in_semi_major_axis (float): Incoming semi-major axis [m] (negative).
        in_eccentricity (float): Incoming eccentricity.
        in_direction (np.ndarray): Unit incoming velocity direction at SOI entry.
        out_semi_major_axis (float): Outgoing semi-major axis [m] (negative).
        out_eccentricity (float): Outgoing eccentricity.
        out_direction (np.ndarray): Unit outgoing velocity direction at SOI exit.
        normal_direction (np.ndarray): Unit normal of the flyby plane.
        delta_v (float): Periapsis burn [m/s].
        error (float): Turn-angle mismatch [rad], near zero for a feasible flyby.
        time (float): Periapsis date [s].
    """
    in_semi_major_axis: float
    in_eccentricity: float
    in_direction: np.ndarray = field(repr=False)
    out_semi_major_axis: float
    out_eccentricity: float
    out_direction: np.ndarray = field(repr=False)
    normal_direction: np.ndarray = field(repr=False)
    delta_v: float
    error: float
    time: float

    @property
    def periapsis(self) -> float:
        return self.in_semi_major_axis * (1 - self.in_eccentricity)


def max_flyby_radius(body) -> float:
    return body.soi


def leg_duration_bounds(orbit1, orbit2, attractor) -> tuple[float, float]:
    """Loose flight time bounds [s] for a leg between two orbits around the same attractor."""
    mean_sma = 0.5 * (orbit1.semi_major_axis + orbit2.semi_major_axis)
    mid_period = sidereal_period(mean_sma, attractor.std_grav_param)
    return mid_period / 25, mid_period * 2


def flyby_parameters(vel_in: np.ndarray, vel_out: np.ndarray, body, time: float) -> FlybyParams:
    """
    Solves for the periapsis radius giving the turn between two SOI velocities.

    Both hyperbolas are fully determined by their energies and the shared
    periapsis; Brent's method searches the periapsis between the minimum flyby
    radius and the SOI radius. A turn larger than the body allows is reported
    through the error field rather than raised.

    Args:
        vel_in (np.ndarray): Velocity relative to the body at SOI entry [m/s].
        vel_out (np.ndarray): Velocity relative to the body at SOI exit [m/s].
        body (OrbitingBody): Flyby body.
        time (float): Periapsis date [s].

    Returns:
        FlybyParams: The flyby hyperbolas, burn and residual.
    """
    mu = body.std_grav_param
    soi = body.soi

    in_vel_sq = float(np.dot(vel_in, vel_in))
    out_vel_sq = float(np.dot(vel_out, vel_out))
    in_dir = vel_in / np.sqrt(in_vel_sq)
    out_dir = vel_out / np.sqrt(out_vel_sq)

    # Energies include the potential at the SOI boundary
    in_energy = in_vel_sq / 2 - mu / soi
    out_energy = out_vel_sq / 2 - mu / soi
    in_sma = -mu / (2 * in_energy)
    out_sma = -mu / (2 * out_energy)

    with np.errstate(invalid='ignore', divide='ignore'):
        h_dir = normalize(np.cross(in_dir, out_dir))
    delta = acos_clamped(np.dot(in_dir, out_dir))

    def objective(periapsis):
        in_ecc = 1 - periapsis / in_sma
        out_ecc = 1 - periapsis / out_sma
        in_slr = in_sma * (1 - in_ecc * in_ecc)
        out_slr = out_sma * (1 - out_ecc * out_ecc)
        in_nu = -true_anomaly_at_distance(soi, in_ecc, in_slr)
        out_nu = true_anomaly_at_distance(soi, out_ecc, out_slr)

        delta_in = motion_angle_at_true_anomaly(in_nu, in_ecc)
        delta_out = motion_angle_at_true_anomaly(out_nu, out_ecc)
        obj = abs(delta - wrap_angle(delta_out - delta_in))
        return np.pi if np.isnan(obj) else obj

    periapsis = brent_minimize(objective, min_flyby_radius(body), max_flyby_radius(body), 1e-8)
    error = objective(periapsis)

    periapsis_speed_in = np.sqrt((in_energy + mu / periapsis) * 2)
    periapsis_speed_out = np.sqrt((out_energy + mu / periapsis) * 2)

    return FlybyParams(
        in_semi_major_axis=in_sma,
        in_eccentricity=1 - periapsis / in_sma,
        in_direction=in_dir,
        out_semi_major_axis=out_sma,
        out_eccentricity=1 - periapsis / out_sma,
        out_direction=out_dir,
        normal_direction=h_dir,
        delta_v=float(abs(periapsis_speed_out - periapsis_speed_in)),
        error=float(error),
        time=time,
    )


def flyby_from_parameters(params: FlybyParams, body) -> Trajectory:
    """
    Builds the two flyby arcs and the periapsis maneuver.

    Returns:
        Trajectory: [incoming, outgoing] orbits over [SOI entry, periapsis, SOI exit].
    """
    soi = body.soi
    mu = body.std_grav_param

    in_sma = params.in_semi_major_axis
    out_sma = params.out_semi_major_axis
    in_ecc = params.in_eccentricity
    periapsis = params.periapsis

    in_slr = in_sma * (1 - in_ecc * in_ecc)
    in_nu = -true_anomaly_at_distance(soi, in_ecc, in_slr)
    in_perifocal_dir = motion_direction_at_true_anomaly(in_nu, in_ecc)

    # Match the incoming direction
    axis1, angle1 = align_vectors_angle_axis(in_perifocal_dir, params.in_direction)
    if np.isnan(axis1[0]):
        axis1 = X_DIR
    temp_periapsis_pos = rodrigues(np.array([periapsis, 0.0, 0.0]), axis1, angle1)

    # Spin about the incoming direction to match the flyby plane
    axis2, angle2 = align_vectors_angle_axis(np.cross(temp_periapsis_pos, params.in_direction), params.normal_direction)
    if np.isnan(axis2[0]):
        axis2 = params.in_direction
        angle2 = 0.0 if np.isnan(params.normal_direction[0]) else angle2
    periapsis_pos = rodrigues(temp_periapsis_pos, axis2, angle2)

    in_periapsis_speed = np.sqrt(mu * (2 / periapsis - 1 / in_sma))
    out_periapsis_speed = np.sqrt(mu * (2 / periapsis - 1 / out_sma))

    in_periapsis_vel = rodrigues(rodrigues(np.array([0.0, in_periapsis_speed, 0.0]), axis1, angle1), axis2, angle2)
    out_periapsis_vel = rodrigues(rodrigues(np.array([0.0, out_periapsis_speed, 0.0]), axis1, angle1), axis2, angle2)

    in_state = OrbitalState(params.time, periapsis_pos, in_periapsis_vel)
    out_state = OrbitalState(params.time, periapsis_pos, out_periapsis_vel)

    in_orbit = state_to_orbit(in_state, body)
    out_orbit = state_to_orbit(out_state, body)
    maneuver = maneuver_from_orbital_states(in_state, out_state)

    in_date = insertion_date(in_orbit, body)
    out_date = ejection_date(out_orbit, body)
    return Trajectory([in_orbit, out_orbit], [in_date, params.time, out_date], [maneuver])
