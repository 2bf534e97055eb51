"""
Ejection and insertion trajectories between a parking orbit and a body's SOI boundary.

Strategies:
    - fast direct: the hyperbola's periapsis lies on the parking orbit.
    - optimal direct: Brent search over the parking true anomaly of the burn.
    - fast / optimal Oberth: a half-ellipse drop to the minimum flyby radius,
      then a burn at periapsis onto the escape (or capture) hyperbola.

Every function takes c = +1 for an ejection and c = -1 for an insertion.
"""
from dataclasses import replace
from typing import NamedTuple

import numpy as np

from patchedconics.dynamics.kepler import (
    Orbit, OrbitalState, angle_in_orbit_plane, angle_in_plane, distance_at_orbit_true_anomaly,
    motion_angle_at_true_anomaly, motion_direction_at_true_anomaly, orbit_to_state_at_date,
    position_at_true_anomaly, reanchor_orbit, rotate_to_inertial_from_perifocal,
    rotate_to_perifocal_from_inertial, sidereal_period, state_to_orbit, true_anomaly_at_distance,
    true_anomaly_to_date, true_anomaly_to_orbit_date, true_to_mean_anomaly, velocity_at_true_anomaly,
)
from patchedconics.dynamics.vectors import (
    TWO_PI, X_DIR, Y_DIR, Z_DIR, acos_clamped, align_vectors_angle_axis, clamp, copysign,
    counter_clockwise_angle_in_plane, normalize, rodrigues, wrap_angle,
)
from patchedconics.optimization.root_finding import brent_minimize, brent_root_find
from patchedconics.trajectory.arcs import Trajectory
from patchedconics.trajectory.maneuver import maneuver_from_orbital_states

EPS = np.finfo(float).eps
ECCENTRICITY_TOL = 1e-8


def min_flyby_radius(body) -> float:
    """Lowest safe periapsis [m]: clears the atmosphere and the terrain by 1 km."""
    margin = 1000.0
    return body.radius + max(body.atmosphere_height, body.max_terrain_height) + margin


def _direction(c: int) -> int:
    return 1 if c >= 0 else -1


def _safe_align(x: np.ndarray, y: np.ndarray, fallback_axis: np.ndarray) -> tuple[np.ndarray, float]:
    axis, angle = align_vectors_angle_axis(x, y)
    if np.isnan(axis[0]):
        axis = fallback_axis
    return axis, angle


def _rotate_twice(v: np.ndarray, rot1: tuple[np.ndarray, float], rot2: tuple[np.ndarray, float]) -> np.ndarray:
    return rodrigues(rodrigues(v, rot1[0], rot1[1]), rot2[0], rot2[1])


def _patch_trajectory(orbits: list[Orbit], intersect_times: list[float], maneuvers: list, c: int) -> Trajectory:
    """Orders arcs and maneuvers chronologically (insertions are built in reverse)."""
    if c == 1:
        return Trajectory(orbits, intersect_times, maneuvers)
    return Trajectory(orbits[::-1], intersect_times[::-1], maneuvers[::-1])


# Fast direct

class _FastPatch(NamedTuple):
    err: float
    park_nu: float
    e: float
    soi_nu: float
    p_pos: np.ndarray
    p_vel: np.ndarray


def _fast_patch_for_periapsis(periapsis: float, park_orbit: Orbit, mu: float, soi: float,
                              relative_vel_plane: np.ndarray, soi_speed_sq: float, a: float, c: int) -> _FastPatch:
    p_speed_sq = soi_speed_sq + 2 * mu * (1 / periapsis - 1 / soi)
    p_speed = np.sqrt(p_speed_sq)

    e = np.sqrt(1 + 2 * (0.5 * p_speed_sq - mu / periapsis) * periapsis * periapsis * p_speed_sq / mu / mu)
    p = a * (1 - e * e)

    # Perifocal frame of the hyperbola, periapsis on the parking orbit
    soi_nu = c * true_anomaly_at_distance(soi, e, p)
    soi_vel = motion_direction_at_true_anomaly(soi_nu, e) * np.sqrt(soi_speed_sq)
    p_pos = X_DIR * periapsis
    p_vel = Y_DIR * p_speed

    # Tilt about x to match the out-of-plane part of the relative velocity
    rot1 = np.arctan2(relative_vel_plane[2], np.sqrt(abs(soi_vel[1] ** 2 - relative_vel_plane[2] ** 2)))
    soi_vel = rodrigues(soi_vel, X_DIR, rot1)
    p_pos = rodrigues(p_pos, X_DIR, rot1)
    p_vel = rodrigues(p_vel, X_DIR, rot1)

    # Turn about z to match its in-plane direction
    rot2 = np.arctan2(relative_vel_plane[1], relative_vel_plane[0]) - np.arctan2(soi_vel[1], soi_vel[0])
    soi_vel = rodrigues(soi_vel, Z_DIR, rot2)
    p_pos = rodrigues(p_pos, Z_DIR, rot2)
    p_vel = rodrigues(p_vel, Z_DIR, rot2)

    p_pos = rotate_to_inertial_from_perifocal(p_pos, park_orbit)
    p_vel = rotate_to_inertial_from_perifocal(p_vel, park_orbit)

    park_nu = angle_in_orbit_plane(p_pos, park_orbit)
    park_radius = distance_at_orbit_true_anomaly(park_nu, park_orbit)
    return _FastPatch(periapsis - park_radius, park_nu, e, soi_nu, p_pos, p_vel)


def fast_departure_arrival(park_orbit: Orbit, park_body, relative_vel: np.ndarray, soi_date: float,
                           ejection: bool, match_park_mo: bool = True) -> Trajectory:
    """
    Single-burn ejection or insertion whose periapsis lies on the parking orbit.

    For non-circular parking orbits the periapsis radius is root-found so that
    the burn point sits exactly on the parking orbit.

    Args:
        park_orbit (Orbit): Parking orbit about park_body.
        park_body (OrbitingBody): Body being left or reached.
        relative_vel (np.ndarray): Velocity relative to park_body at the SOI boundary [m/s].
        soi_date (float): Date of the SOI crossing [s].
        ejection (bool): True for an ejection, False for an insertion.
        match_park_mo (bool): Shift the burn to the next date the parking orbit
                              actually passes the burn point.

    Returns:
        Trajectory: One hyperbolic arc and one maneuver.
    """
    c = 1 if ejection else -1
    mu = park_body.std_grav_param
    soi = park_body.soi
    soi_speed_sq = float(np.dot(relative_vel, relative_vel))
    a = 1 / (2 / soi - soi_speed_sq / mu)

    relative_vel_plane = rotate_to_perifocal_from_inertial(relative_vel, park_orbit)

    periapsis = park_orbit.semi_major_axis
    if park_orbit.eccentricity > ECCENTRICITY_TOL:
        lo = park_orbit.semi_major_axis * (1 - park_orbit.eccentricity)
        hi = soi if park_orbit.eccentricity > 1 else park_orbit.semi_major_axis * (1 + park_orbit.eccentricity)
        periapsis = brent_root_find(
            lambda rp: _fast_patch_for_periapsis(rp, park_orbit, mu, soi, relative_vel_plane, soi_speed_sq, a, c).err,
            lo, hi,
        )
    patch = _fast_patch_for_periapsis(periapsis, park_orbit, mu, soi, relative_vel_plane, soi_speed_sq, a, c)

    delta_t = true_anomaly_to_date(patch.soi_nu, patch.e, sidereal_period(a, mu), 0.0, 0.0)
    if match_park_mo:
        periapsis_date = true_anomaly_to_orbit_date(patch.park_nu, park_orbit,
                                                    soi_date - delta_t - park_orbit.sidereal_period / 2)
    else:
        periapsis_date = soi_date - delta_t

    periapsis_state = OrbitalState(periapsis_date, patch.p_pos, patch.p_vel)
    park_state = OrbitalState(periapsis_date, patch.p_pos, velocity_at_true_anomaly(park_orbit, mu, patch.park_nu))
    orbit = state_to_orbit(periapsis_state, park_body)

    if c == 1:
        maneuver = maneuver_from_orbital_states(park_state, periapsis_state)
        return Trajectory([orbit], [orbit.epoch, orbit.epoch + delta_t], [maneuver])
    maneuver = maneuver_from_orbital_states(periapsis_state, park_state)
    return Trajectory([orbit], [orbit.epoch + delta_t, orbit.epoch], [maneuver])


def fast_departure(park_orbit: Orbit, park_body, relative_vel: np.ndarray, soi_date: float,
                   match_park_mo: bool = True) -> Trajectory:
    return fast_departure_arrival(park_orbit, park_body, relative_vel, soi_date, True, match_park_mo)


def fast_arrival(park_orbit: Orbit, park_body, relative_vel: np.ndarray, soi_date: float,
                 match_park_mo: bool = True) -> Trajectory:
    return fast_departure_arrival(park_orbit, park_body, relative_vel, soi_date, False, match_park_mo)


# Fast Oberth

def fast_oberth_departure_arrival(park_orbit: Orbit, park_body, relative_vel: np.ndarray, soi_date: float,
                                  ejection: bool, match_park_mo: bool = True,
                                  soi_patch_position: np.ndarray = None) -> Trajectory:
    """
    Two-burn ejection or insertion through the minimum flyby radius.

    The first burn (on the parking orbit) drops into a half-ellipse whose
    periapsis is the minimum flyby radius; the second burn at that periapsis
    joins the escape or capture hyperbola.
    """
    c = 1 if ejection else -1
    soi_patch_position = np.zeros(3) if soi_patch_position is None else soi_patch_position
    mu = park_body.std_grav_param
    soi = park_body.soi
    soi_speed_sq = float(np.dot(relative_vel, relative_vel))

    periapsis = min_flyby_radius(park_body)

    hyp_sma = 1 / (2 / soi - soi_speed_sq / mu)
    hyp_ecc = 1 - periapsis / hyp_sma
    hyp_slr = hyp_sma * (1 - hyp_ecc * hyp_ecc)
    hyp_nu = c * true_anomaly_at_distance(soi, hyp_ecc, hyp_slr)
    obr_nu = -c * np.pi
    hyp_delta = motion_angle_at_true_anomaly(hyp_nu, hyp_ecc)
    delta = c * (hyp_delta - obr_nu)

    def trajectory_normal(start_pos):
        n_dir = normalize(np.cross(start_pos, relative_vel))
        return -n_dir if n_dir[2] < 0 else n_dir

    # Parking true anomaly for which the Oberth arc is a half-ellipse
    def park_nu_objective(nu):
        start_pos = position_at_true_anomaly(park_orbit, nu) + soi_patch_position
        n_dir = trajectory_normal(start_pos)
        if c == 1:
            delta_for_nu = counter_clockwise_angle_in_plane(start_pos, relative_vel, n_dir)
        else:
            delta_for_nu = counter_clockwise_angle_in_plane(relative_vel, start_pos, n_dir)
        return abs(delta_for_nu - delta)

    park_nu = wrap_angle(angle_in_orbit_plane(relative_vel, park_orbit) - c * delta)
    if park_orbit.eccentricity < 1:
        park_nu = brent_minimize(park_nu_objective, park_nu - np.pi, park_nu + np.pi)
    else:
        park_nu = brent_minimize(park_nu_objective, insertion_true_anomaly(park_orbit, park_body),
                                 ejection_true_anomaly(park_orbit, park_body))

    start_pos = position_at_true_anomaly(park_orbit, park_nu) + soi_patch_position
    n_dir = trajectory_normal(start_pos)
    apoapsis = np.linalg.norm(start_pos)

    hyp_energy = soi_speed_sq / 2 - mu / soi
    obr_ecc = (apoapsis - periapsis) / (periapsis + apoapsis)
    obr_sma = periapsis / (1 - obr_ecc)
    obr_energy = -mu / (2 * obr_sma)
    obr_periapsis_speed = np.sqrt((obr_energy + mu / periapsis) * 2)
    hyp_periapsis_speed = np.sqrt((hyp_energy + mu / periapsis) * 2)

    # Align the perifocal frame with the trajectory plane, then with the SOI direction
    rot_inc = _safe_align(Z_DIR, n_dir, X_DIR)
    tilt_soi_dir = rodrigues(np.array([np.cos(hyp_delta), np.sin(hyp_delta), 0.0]), *rot_inc)
    rot_arg = _safe_align(tilt_soi_dir, normalize(relative_vel), n_dir)

    periapsis_pos = _rotate_twice(X_DIR * periapsis, rot_inc, rot_arg)
    periapsis_vel_dir = _rotate_twice(Y_DIR, rot_inc, rot_arg)
    hyp_duration = abs(true_anomaly_to_date(hyp_nu, hyp_ecc, sidereal_period(hyp_sma, mu), 0.0, 0.0))
    obr_duration = abs(true_anomaly_to_date(obr_nu, obr_ecc, sidereal_period(obr_sma, mu), 0.0, 0.0))

    periapsis_date = soi_date - c * hyp_duration
    obr_date = periapsis_date - c * obr_duration
    if match_park_mo:
        obr_epoch = true_anomaly_to_orbit_date(park_nu, park_orbit, obr_date - park_orbit.sidereal_period / 2)
    else:
        obr_epoch = obr_date
    shift = obr_epoch - obr_date

    hyp_pre_state = OrbitalState(periapsis_date + shift, periapsis_pos, periapsis_vel_dir * obr_periapsis_speed)
    hyp_post_state = OrbitalState(periapsis_date + shift, periapsis_pos, periapsis_vel_dir * hyp_periapsis_speed)

    obr_orbit = reanchor_orbit(state_to_orbit(hyp_pre_state, park_body), obr_epoch)
    hyp_orbit = state_to_orbit(hyp_post_state, park_body)

    # Oberth burn on the parking orbit
    park_vel = velocity_at_true_anomaly(park_orbit, mu, park_nu)
    obr_vel = velocity_at_true_anomaly(obr_orbit, mu, obr_nu)
    obr_pre_state = OrbitalState(obr_epoch, start_pos, park_vel)
    obr_post_state = OrbitalState(obr_epoch, start_pos, obr_vel)

    if c == 1:
        obr_maneuver = maneuver_from_orbital_states(obr_pre_state, obr_post_state)
        hyp_maneuver = maneuver_from_orbital_states(hyp_pre_state, hyp_post_state)
    else:
        obr_maneuver = maneuver_from_orbital_states(obr_post_state, obr_pre_state)
        hyp_maneuver = maneuver_from_orbital_states(hyp_post_state, hyp_pre_state)
    return _patch_trajectory([obr_orbit, hyp_orbit], [obr_orbit.epoch, hyp_orbit.epoch, soi_date + shift],
                             [obr_maneuver, hyp_maneuver], c)


def fast_oberth_departure(park_orbit: Orbit, park_body, relative_vel: np.ndarray, soi_date: float,
                          match_park_mo: bool = True, soi_patch_position: np.ndarray = None) -> Trajectory:
    return fast_oberth_departure_arrival(park_orbit, park_body, relative_vel, soi_date, True,
                                         match_park_mo, soi_patch_position)


def fast_oberth_arrival(park_orbit: Orbit, park_body, relative_vel: np.ndarray, soi_date: float,
                        match_park_mo: bool = True, soi_patch_position: np.ndarray = None) -> Trajectory:
    return fast_oberth_departure_arrival(park_orbit, park_body, relative_vel, soi_date, False,
                                         match_park_mo, soi_patch_position)


# Optimal (direct or Oberth)

def optimal_departure_arrival(park_orbit: Orbit, park_body, relative_vel: np.ndarray, soi_date: float,
                              ejection: bool, match_park_mo: bool = True, type: str = "direct",
                              soi_patch_position: np.ndarray = None) -> Trajectory:
    """
    Searches the parking true anomaly of the burn with Brent's method.

    The objective is deltaV * exp(min(100 * err, 10)), where err is the
    direction mismatch (1 - cos) between the achieved and the requested SOI
    velocity.

    Args:
        park_orbit (Orbit): Parking orbit.
        park_body (OrbitingBody): Body being left or reached.
        relative_vel (np.ndarray): Requested velocity at the SOI boundary [m/s].
        soi_date (float): Date of the SOI crossing [s].
        ejection (bool): True for an ejection.
        match_park_mo (bool): Keep the parking orbit's timing.
        type (str): "direct" or "oberth".
        soi_patch_position (np.ndarray, optional): Offset of the burn point [m].

    Returns:
        Trajectory: The best trajectory found.
    """
    c = 1 if ejection else -1
    soi_patch_position = np.zeros(3) if soi_patch_position is None else soi_patch_position
    mu = park_body.std_grav_param
    soi = park_body.soi

    min_nu = -TWO_PI
    max_nu = TWO_PI - EPS
    if type == "direct":
        soi_speed_sq = float(np.dot(relative_vel, relative_vel))
        a = 1 / (2 / soi - soi_speed_sq / mu)
        relative_vel_plane = rotate_to_perifocal_from_inertial(relative_vel, park_orbit)
        park_nu = _fast_patch_for_periapsis(park_orbit.semi_major_axis, park_orbit, mu, soi,
                                            relative_vel_plane, soi_speed_sq, a, c).park_nu
        min_nu, max_nu = park_nu - np.pi, park_nu + np.pi
    elif type == "oberth":
        periapsis = min_flyby_radius(park_body)
        hyp_energy = float(np.dot(relative_vel, relative_vel)) / 2 - mu / soi
        hyp_sma = -mu / (2 * hyp_energy)
        hyp_ecc = 1 - periapsis / hyp_sma
        hyp_slr = hyp_sma * (1 - hyp_ecc * hyp_ecc)
        hyp_nu = true_anomaly_at_distance(soi, hyp_ecc, hyp_slr)
        delta = motion_angle_at_true_anomaly(hyp_nu, hyp_ecc) + np.pi
        park_nu = wrap_angle(angle_in_orbit_plane(relative_vel, park_orbit) - c * delta)
        min_nu, max_nu = park_nu - np.pi, park_nu + np.pi
    else:
        raise ValueError(f"Unknown optimal ejection/insertion type '{type}'")

    if park_orbit.eccentricity > 1:
        max_nu = ejection_true_anomaly(park_orbit, park_body) - 2 * EPS
        min_nu = -max_nu

    nu_fun = direct_depart_arrive_for_true_anomaly if type == "direct" else oberth_depart_arrive_for_true_anomaly

    def nu_objective(nu):
        delta_v, err, _ = nu_fun(nu, park_orbit, park_body, relative_vel, soi_date, c, match_park_mo,
                                 soi_patch_position, False)
        return delta_v * np.exp(min(100 * err, 10))

    nu = brent_minimize(nu_objective, min_nu, max_nu, 1e-4)
    _, _, trajectory = nu_fun(nu, park_orbit, park_body, relative_vel, soi_date, c, match_park_mo,
                              soi_patch_position, True)
    return trajectory


def optimal_departure(park_orbit: Orbit, park_body, relative_vel: np.ndarray, soi_date: float,
                      match_park_mo: bool = True, type: str = "direct",
                      soi_patch_position: np.ndarray = None) -> Trajectory:
    return optimal_departure_arrival(park_orbit, park_body, relative_vel, soi_date, True,
                                     match_park_mo, type, soi_patch_position)


def optimal_arrival(park_orbit: Orbit, park_body, relative_vel: np.ndarray, soi_date: float,
                    match_park_mo: bool = True, type: str = "direct",
                    soi_patch_position: np.ndarray = None) -> Trajectory:
    return optimal_departure_arrival(park_orbit, park_body, relative_vel, soi_date, False,
                                     match_park_mo, type, soi_patch_position)


def direct_depart_arrive_for_true_anomaly(nu: float, park_orbit: Orbit, park_body, relative_vel: np.ndarray,
                                          soi_date: float, c: int, match_park_mo: bool = True,
                                          soi_patch_position: np.ndarray = None,
                                          full_result: bool = True) -> tuple[float, float, Trajectory]:
    """
    Single-burn ejection/insertion from the parking orbit at true anomaly nu.

    The burn timing is always resolved, since the burn velocity depends on it;
    full_result is accepted for symmetry with the Oberth variant.

    Returns:
        tuple: (delta-v [m/s], direction error, trajectory).
    """
    c = _direction(c)
    soi_patch_position = np.zeros(3) if soi_patch_position is None else soi_patch_position
    mu = park_body.std_grav_param
    park_pos = position_at_true_anomaly(park_orbit, nu) + soi_patch_position
    err, orbit = depart_arrive_for_position(park_pos, park_body, relative_vel, soi_date, c, True)

    if match_park_mo:
        epoch = true_anomaly_to_orbit_date(nu, park_orbit, orbit.epoch - park_orbit.sidereal_period / 2)
    else:
        epoch = orbit.epoch
    adjusted_soi_date = soi_date + epoch - orbit.epoch
    orbit = replace(orbit, epoch=epoch)

    pre_state = OrbitalState(epoch, position_at_true_anomaly(park_orbit, nu),
                             velocity_at_true_anomaly(park_orbit, mu, nu))
    post_state = orbit_to_state_at_date(orbit, park_body, epoch)

    if c == 1:
        maneuver = maneuver_from_orbital_states(pre_state, post_state)
        trajectory = Trajectory([orbit], [epoch, adjusted_soi_date], [maneuver])
    else:
        maneuver = maneuver_from_orbital_states(post_state, pre_state)
        trajectory = Trajectory([orbit], [adjusted_soi_date, epoch], [maneuver])
    return maneuver.delta_v_mag, err, trajectory


def depart_arrive_for_position(park_pos: np.ndarray, park_body, relative_vel: np.ndarray, soi_date: float,
                               c: int, full_result: bool = True) -> tuple[float, Orbit]:
    """
    Conic through park_pos whose velocity at the SOI boundary points along relative_vel.

    The energy fixes the semi-major axis and the plane of (park_pos, relative_vel)
    fixes inclination and node; the eccentricity is found by minimizing the
    direction error 1 - cos(angle) with Brent's method.

    Args:
        park_pos (np.ndarray): Burn position [m].
        park_body (OrbitingBody): Body being left or reached.
        relative_vel (np.ndarray): Requested SOI velocity [m/s].
        soi_date (float): SOI crossing date [s].
        c (int): +1 for an ejection, -1 for an insertion.
        full_result (bool): Fill in the mean anomaly and epoch so that the burn
                            happens at the orbit epoch.

    Returns:
        tuple[float, Orbit]: (direction error, orbit).
    """
    c = _direction(c)
    mu = park_body.std_grav_param
    mr = float(np.linalg.norm(park_pos))
    soi = park_body.soi

    h_hat = normalize(np.cross(park_pos, relative_vel))
    n = np.cross(Z_DIR, h_hat)
    n_mag = np.linalg.norm(n)
    n_hat = X_DIR if n_mag == 0 else n / n_mag

    a = 1 / (2 / soi - float(np.dot(relative_vel, relative_vel)) / mu)
    i = acos_clamped(h_hat[2])
    lan = wrap_angle(copysign(1, n_hat[1]) * acos_clamped(n_hat[0]))

    # Elliptical bounds
    e_max = 1 - 2 * EPS
    e_min = clamp(soi / a - 1 + EPS, 0, e_max)
    # Hyperbolic bounds
    if a < 0:
        e_min = 1 + 2 * EPS
        e_max = max(1 - mr / a, mr / a - 1)
        e_max = 1 + 4 * EPS if e_max == 1 else e_max

    def e_objective(e):
        if np.isnan(e):
            return 2.0
        return _depart_arrive_for_eccentricity(e, a, lan, i, park_pos, mr, soi, mu, relative_vel, park_body.id, c)[0]

    e = brent_minimize(e_objective, e_min, e_max, 1e-6)
    err, orbit = _depart_arrive_for_eccentricity(e, a, lan, i, park_pos, mr, soi, mu, relative_vel, park_body.id, c)

    if full_result:
        p = orbit.semi_latus_rectum
        m_nu = c * true_anomaly_at_distance(mr, e, p)
        soi_nu = c * true_anomaly_at_distance(soi, e, p)
        m_mean = true_to_mean_anomaly(m_nu, e)
        delta_t = true_anomaly_to_date(soi_nu, e, orbit.sidereal_period, m_mean, 0.0)
        orbit = replace(orbit, mean_anomaly_epoch=m_mean, epoch=soi_date - delta_t)
    return err, orbit


def _depart_arrive_for_eccentricity(e, a, lan, i, park_pos, mr, soi, mu, relative_vel, orbiting, c):
    p = a * (1 - e * e)
    m_nu = c * true_anomaly_at_distance(mr, e, p)
    soi_nu = c * true_anomaly_at_distance(soi, e, p)

    # Argument of periapsis placing the burn point at park_pos
    arg = wrap_angle(angle_in_plane(park_pos, lan, i, 0.0) - m_nu)

    orbit = Orbit(
        orbiting=orbiting,
        semi_major_axis=a,
        eccentricity=float(e),
        inclination=i,
        arg_of_periapsis=float(arg),
        asc_node_longitude=float(lan),
        mean_anomaly_epoch=0.0,
        epoch=0.0,
        semi_latus_rectum=p,
        sidereal_period=float(sidereal_period(a, mu)),
    )
    soi_vel = velocity_at_true_anomaly(orbit, mu, soi_nu)
    with np.errstate(invalid='ignore', divide='ignore'):
        err = 1 - np.dot(normalize(relative_vel), normalize(soi_vel))
    if np.isnan(err):
        err = 2.0
    return float(err), orbit


def oberth_depart_arrive_for_true_anomaly(nu: float, park_orbit: Orbit, park_body, relative_vel: np.ndarray,
                                          soi_date: float, c: int, match_park_mo: bool = True,
                                          soi_patch_position: np.ndarray = None,
                                          full_result: bool = True) -> tuple[float, float, Trajectory]:
    """
    Oberth ejection/insertion from the parking orbit at true anomaly nu.

    Returns:
        tuple: (delta-v [m/s], 0, trajectory). The trajectory is empty unless full_result.
    """
    c = _direction(c)
    soi_patch_position = np.zeros(3) if soi_patch_position is None else soi_patch_position
    park_pos = position_at_true_anomaly(park_orbit, nu) + soi_patch_position
    park_vel = velocity_at_true_anomaly(park_orbit, park_body.std_grav_param, nu)

    delta_v, obr_pre, obr_post, hyp_pre, hyp_post = oberth_depart_arrive_for_position(
        park_pos, park_vel, park_body, relative_vel, soi_date, c, full_result)

    if not full_result:
        return delta_v, 0.0, Trajectory()

    if match_park_mo:
        obr_epoch = true_anomaly_to_orbit_date(nu, park_orbit, obr_pre.date - park_orbit.sidereal_period / 2)
    else:
        obr_epoch = obr_pre.date
    shift = obr_epoch - obr_pre.date
    adjusted_soi_date = soi_date + shift

    hyp_pre = replace(hyp_pre, date=hyp_pre.date + shift)
    hyp_post = replace(hyp_post, date=hyp_pre.date)
    obr_pre = replace(obr_pre, date=obr_epoch)
    obr_post = replace(obr_post, date=obr_epoch)

    obr_orbit = reanchor_orbit(state_to_orbit(hyp_pre, park_body), obr_epoch)
    hyp_orbit = state_to_orbit(hyp_post, park_body)

    if c == 1:
        obr_maneuver = maneuver_from_orbital_states(obr_pre, obr_post)
        hyp_maneuver = maneuver_from_orbital_states(hyp_pre, hyp_post)
    else:
        obr_maneuver = maneuver_from_orbital_states(obr_post, obr_pre)
        hyp_maneuver = maneuver_from_orbital_states(hyp_post, hyp_pre)
    trajectory = _patch_trajectory([obr_orbit, hyp_orbit], [obr_orbit.epoch, hyp_orbit.epoch, adjusted_soi_date],
                                   [obr_maneuver, hyp_maneuver], c)
    return delta_v, 0.0, trajectory


def oberth_depart_arrive_for_position(park_pos: np.ndarray, park_vel: np.ndarray, park_body, relative_vel: np.ndarray,
                                      soi_date: float, c: int, full_result: bool = True):
    """
    Oberth maneuver from a given burn point.

    Finds the periapsis radius, between the minimum flyby radius and the burn
    radius, that gives the requested turn from the burn point to the SOI
    direction at the lowest delta-v.

    Returns:
        tuple: (delta-v, Oberth pre-state, Oberth post-state, periapsis pre-state,
                periapsis post-state). Periapsis states are zero-filled unless full_result.
    """
    c = _direction(c)
    mu = park_body.std_grav_param
    soi = park_body.soi

    mr = float(np.linalg.norm(park_pos))
    park_pos_dir = park_pos / mr

    soi_vel_sq = float(np.dot(relative_vel, relative_vel))
    soi_dir = relative_vel / np.sqrt(soi_vel_sq)
    hyp_energy = soi_vel_sq / 2 - mu / soi
    hyp_sma = -mu / (2 * hyp_energy)

    n_dir = normalize(np.cross(park_pos_dir, soi_dir))
    if n_dir[2] < 0:
        n_dir = -n_dir
    if c == 1:
        delta = counter_clockwise_angle_in_plane(park_pos_dir, soi_dir, n_dir)
    else:
        delta = counter_clockwise_angle_in_plane(soi_dir, park_pos_dir, n_dir)

    def hyperbola(periapsis):
        hyp_ecc = 1 - periapsis / hyp_sma
        hyp_slr = hyp_sma * (1 - hyp_ecc * hyp_ecc)
        hyp_nu = c * true_anomaly_at_distance(soi, hyp_ecc, hyp_slr)
        hyp_delta = motion_angle_at_true_anomaly(hyp_nu, hyp_ecc)
        obr_nu = wrap_angle(hyp_delta - c * delta, -np.pi * (c + 1))
        return hyp_ecc, hyp_nu, hyp_delta, obr_nu

    def denominator(periapsis):
        obr_nu = hyperbola(periapsis)[3]
        return periapsis - mr * np.cos(obr_nu)

    # Drop periapses that would give a negative Oberth-arc eccentricity
    min_periapsis = min_flyby_radius(park_body)
    min_denom_periapsis = brent_minimize(denominator, min_periapsis, mr)
    if denominator(min_denom_periapsis) < 0:
        min_periapsis = brent_root_find(denominator, min_denom_periapsis, mr) + 1

    rot_inc = _safe_align(Z_DIR, n_dir, X_DIR)

    def objective(periapsis, full=False):
        hyp_ecc, hyp_nu, hyp_delta, obr_nu = hyperbola(periapsis)
        obr_ecc = (mr - periapsis) / (periapsis - mr * np.cos(obr_nu))
        obr_sma = periapsis / (1 - obr_ecc)
        obr_energy = -mu / (2 * obr_sma)

        with np.errstate(invalid='ignore'):
            obr_periapsis_speed = np.sqrt((obr_energy + mu / periapsis) * 2)
            hyp_periapsis_speed = np.sqrt((hyp_energy + mu / periapsis) * 2)
            obr_speed = np.sqrt((obr_energy + mu / mr) * 2)

        tilt_soi_dir = rodrigues(np.array([np.cos(hyp_delta), np.sin(hyp_delta), 0.0]), *rot_inc)
        rot_arg = _safe_align(tilt_soi_dir, soi_dir, n_dir)

        # Oberth arc velocity where it meets the parking orbit
        obr_dir = _rotate_twice(motion_direction_at_true_anomaly(obr_nu, obr_ecc), rot_inc, rot_arg)
        obr_vel = obr_dir * obr_speed
        delta_v = abs(obr_periapsis_speed - hyp_periapsis_speed) + float(np.linalg.norm(obr_vel - park_vel))

        result = {'delta_v': delta_v, 'obr_vel': obr_vel, 'periapsis_pos': np.zeros(3),
                  'hyp_periapsis_vel': np.zeros(3), 'obr_periapsis_vel': np.zeros(3),
                  'hyp_duration': 0.0, 'obr_duration': 0.0}
        if full:
            periapsis_vel_dir = _rotate_twice(Y_DIR, rot_inc, rot_arg)
            result['periapsis_pos'] = _rotate_twice(X_DIR * periapsis, rot_inc, rot_arg)
            result['hyp_periapsis_vel'] = periapsis_vel_dir * hyp_periapsis_speed
            result['obr_periapsis_vel'] = periapsis_vel_dir * obr_periapsis_speed
            result['hyp_duration'] = abs(true_anomaly_to_date(hyp_nu, hyp_ecc, sidereal_period(hyp_sma, mu), 0.0, 0.0))
            result['obr_duration'] = abs(true_anomaly_to_date(obr_nu, obr_ecc, sidereal_period(obr_sma, mu), 0.0, 0.0))
        return result

    periapsis = brent_minimize(lambda rp: objective(rp)['delta_v'], min_periapsis, mr, 1e-8)
    res = objective(periapsis, full_result)

    periapsis_date = soi_date - c * res['hyp_duration']
    obr_date = periapsis_date - c * res['obr_duration']

    obr_pre_state = OrbitalState(obr_date, park_pos, park_vel)
    obr_post_state = OrbitalState(obr_date, park_pos, res['obr_vel'])
    hyp_pre_state = OrbitalState(periapsis_date, res['periapsis_pos'], res['obr_periapsis_vel'])
    hyp_post_state = OrbitalState(periapsis_date, res['periapsis_pos'], res['hyp_periapsis_vel'])
    return res['delta_v'], obr_pre_state, obr_post_state, hyp_pre_state, hyp_post_state


# SOI boundary crossings

def _patch_true_anomaly(orbit: Orbit, attractor, c: int) -> float:
    return c * true_anomaly_at_distance(attractor.soi, orbit.eccentricity, orbit.semi_latus_rectum)


def ejection_true_anomaly(orbit: Orbit, attractor) -> float:
    return _patch_true_anomaly(orbit, attractor, 1)


def insertion_true_anomaly(orbit: Orbit, attractor) -> float:
    return _patch_true_anomaly(orbit, attractor, -1)


def _patch_date(orbit: Orbit, attractor, c: int) -> float:
    t_min = None
    # Periodic orbits: exit after the epoch, entry within the preceding period
    if orbit.eccentricity < 1:
        t_min = orbit.epoch if c == 1 else orbit.epoch - orbit.sidereal_period
    return true_anomaly_to_date(_patch_true_anomaly(orbit, attractor, c), orbit.eccentricity,
                                orbit.sidereal_period, orbit.mean_anomaly_epoch, orbit.epoch, t_min)


def ejection_date(orbit: Orbit, attractor) -> float:
    return _patch_date(orbit, attractor, 1)


def insertion_date(orbit: Orbit, attractor) -> float:
    return _patch_date(orbit, attractor, -1)


def ejection_position(orbit: Orbit, attractor) -> np.ndarray:
    return position_at_true_anomaly(orbit, ejection_true_anomaly(orbit, attractor))


def insertion_position(orbit: Orbit, attractor) -> np.ndarray:
    return position_at_true_anomaly(orbit, insertion_true_anomaly(orbit, attractor))


def ejection_velocity(orbit: Orbit, attractor) -> np.ndarray:
    return velocity_at_true_anomaly(orbit, attractor.std_grav_param, ejection_true_anomaly(orbit, attractor))


def insertion_velocity(orbit: Orbit, attractor) -> np.ndarray:
    return velocity_at_true_anomaly(orbit, attractor.std_grav_param, insertion_true_anomaly(orbit, attractor))
