import numpy as np
from dataclasses import dataclass, field, replace

from patchedconics.dynamics.vectors import (
    TWO_PI, HALF_PI, X_DIR, Z_DIR, acos_clamped, copysign, wrap_angle, zxz,
)
from patchedconics.optimization.root_finding import newton_root_solve

NULL_EPS = 1e-12
KEPLER_TOL = 1e-12


@dataclass(frozen=True)
class Orbit:
    """
    Keplerian orbit about an attractor body.

    Angles are in radians, distances in meters, times in seconds. The semi-major
    axis is negative for hyperbolic orbits, and for those the sidereal period is
    only used as the time scale of the mean motion.
    """
    orbiting: int
    semi_major_axis: float
    eccentricity: float
    inclination: float
    arg_of_periapsis: float
    asc_node_longitude: float
    mean_anomaly_epoch: float
    epoch: float
    semi_latus_rectum: float
    sidereal_period: float

    @property
    def periapsis(self) -> float:
        return self.semi_major_axis * (1 - self.eccentricity)

    @property
    def apoapsis(self) -> float:
        if self.eccentricity < 1:
            return self.semi_major_axis * (1 + self.eccentricity)
        return np.inf

    def as_dict(self) -> dict:
        return {
            'orbiting': self.orbiting,
            'semi_major_axis': self.semi_major_axis,
            'eccentricity': self.eccentricity,
            'inclination': self.inclination,
            'arg_of_periapsis': self.arg_of_periapsis,
            'asc_node_longitude': self.asc_node_longitude,
            'mean_anomaly_epoch': self.mean_anomaly_epoch,
            'epoch': self.epoch,
            'semi_latus_rectum': self.semi_latus_rectum,
            'sidereal_period': self.sidereal_period,
        }


@dataclass(eq=False)
class OrbitalState:
    """Position [m] and velocity [m/s] relative to the attractor, at a date [s]."""
    date: float
    pos: np.ndarray = field(repr=False)
    vel: np.ndarray = field(repr=False)

    def as_dict(self) -> dict:
        return {'date': self.date, 'pos': self.pos.tolist(), 'vel': self.vel.tolist()}


def sidereal_period(a: float, mu: float) -> float:
    return TWO_PI * np.sqrt(abs(a * a * a) / mu)


def orbit_from_elements(attractor, semi_major_axis: float, eccentricity: float, inclination: float = 0.0,
                        arg_of_periapsis: float = 0.0, asc_node_longitude: float = 0.0,
                        mean_anomaly_epoch: float = 0.0, epoch: float = 0.0,
                        semi_latus_rectum: float = None, period: float = None) -> Orbit:
    """
    Builds an Orbit from Keplerian elements, filling in the derived quantities.

    Args:
        attractor: Body being orbited (needs `id` and `std_grav_param`).
        semi_major_axis (float): [m], negative for hyperbolas.
        eccentricity (float): Eccentricity (e = 1 is not supported).
        inclination (float): [rad].
        arg_of_periapsis (float): [rad].
        asc_node_longitude (float): [rad].
        mean_anomaly_epoch (float): Mean anomaly at epoch [rad].
        epoch (float): [s].
        semi_latus_rectum (float, optional): [m], computed when omitted.
        period (float, optional): Sidereal period [s], computed when omitted.

    Returns:
        Orbit: The orbit.
    """
    p = semi_latus_rectum if semi_latus_rectum else semi_major_axis * (1 - eccentricity * eccentricity)
    T = period if period else sidereal_period(semi_major_axis, attractor.std_grav_param)
    return Orbit(
        orbiting=attractor.id,
        semi_major_axis=semi_major_axis,
        eccentricity=eccentricity,
        inclination=inclination,
        arg_of_periapsis=arg_of_periapsis,
        asc_node_longitude=asc_node_longitude,
        mean_anomaly_epoch=mean_anomaly_epoch,
        epoch=epoch,
        semi_latus_rectum=p,
        sidereal_period=T,
    )


def orbits_are_equal(o1: Orbit, o2: Orbit, rtol: float = 1e-9) -> bool:
    if o1.orbiting != o2.orbiting:
        return False
    a1 = np.array([o1.semi_major_axis, o1.eccentricity, o1.inclination, o1.arg_of_periapsis,
                   o1.asc_node_longitude, o1.mean_anomaly_epoch, o1.epoch])
    a2 = np.array([o2.semi_major_axis, o2.eccentricity, o2.inclination, o2.arg_of_periapsis,
                   o2.asc_node_longitude, o2.mean_anomaly_epoch, o2.epoch])
    return bool(np.allclose(a1, a2, rtol=rtol, atol=rtol))


# Frame rotations

def rotate_to_inertial_from_perifocal(x: np.ndarray, orbit: Orbit) -> np.ndarray:
    return zxz(x, orbit.asc_node_longitude, orbit.inclination, orbit.arg_of_periapsis)


def rotate_to_perifocal_from_inertial(x: np.ndarray, orbit: Orbit) -> np.ndarray:
    return zxz(x, -orbit.arg_of_periapsis, -orbit.inclination, -orbit.asc_node_longitude)


def angle_in_plane(pos: np.ndarray, lan: float, i: float, arg: float) -> float:
    perifocal_pos = zxz(pos, -arg, -i, -lan)
    return float(np.arctan2(perifocal_pos[1], perifocal_pos[0]))


def angle_in_orbit_plane(pos: np.ndarray, orbit: Orbit) -> float:
    return angle_in_plane(pos, orbit.asc_node_longitude, orbit.inclination, orbit.arg_of_periapsis)


# Conic geometry

def flight_path_angle_at_true_anomaly(nu: float, e: float) -> float:
    return float(np.arctan(e * np.sin(nu) / (1 + e * np.cos(nu))))


def motion_angle_at_true_anomaly(nu: float, e: float) -> float:
    return nu + HALF_PI - flight_path_angle_at_true_anomaly(nu, e)


def motion_direction_at_true_anomaly(nu: float, e: float) -> np.ndarray:
    angle = motion_angle_at_true_anomaly(nu, e)
    return np.array([np.cos(angle), np.sin(angle), 0.0])


def distance_at_true_anomaly(nu: float, e: float, p: float) -> float:
    return p / (1 + e * np.cos(nu))


def distance_at_orbit_true_anomaly(nu: float, orbit: Orbit) -> float:
    return distance_at_true_anomaly(nu, orbit.eccentricity, orbit.semi_latus_rectum)


def true_anomaly_at_distance(r: float, e: float, p: float) -> float:
    """Non-negative true anomaly [rad] at which the conic reaches distance r."""
    return acos_clamped((p / r - 1) / e)


# Anomalies and dates

def date_to_mean_anomaly(date: float, T: float, M0: float, epoch: float) -> float:
    return M0 + TWO_PI * (date - epoch) / T


def mean_anomaly_to_date(M: float, T: float, M0: float, epoch: float, t_min: float = None) -> float:
    """
    Date at which the mean anomaly reaches M.

    When t_min is given, the date is rolled forward by whole periods to the
    first occurrence at or after t_min.
    """
    t = epoch + (M - M0) * T / TWO_PI
    if t_min is not None:
        n_periods = np.ceil((t_min - t) / T)
        t += T * n_periods
    return t


def true_to_mean_anomaly(nu: float, e: float) -> float:
    if e < 1:
        E = 2 * np.arctan2(np.sin(nu / 2) * np.sqrt(1 - e), np.cos(nu / 2) * np.sqrt(1 + e))
        return float(E - e * np.sin(E))
    with np.errstate(invalid='ignore', divide='ignore'):
        H = 2 * np.arctanh(np.tan(nu / 2) * np.sqrt((e - 1) / (e + 1)))
        return float(e * np.sinh(H) - H)


def mean_to_true_anomaly(M: float, e: float) -> float:
    """
    Solves Kepler's equation (or its hyperbolic form) with Newton's method and
    returns the true anomaly [rad].
    """
    if e < 1:
        E = newton_root_solve(
            lambda E: E - e * np.sin(E) - M,
            lambda E: 1 - e * np.cos(E),
            M,
            KEPLER_TOL,
        )
        return float(2 * np.arctan(np.sqrt((1 + e) / (1 - e)) * np.tan(E * 0.5)))

    # sinh grows too fast for Newton to recover from large starting points
    H0 = np.sign(M) * 4 * np.pi if abs(M) > 4 * np.pi else M
    H = newton_root_solve(
        lambda H: e * np.sinh(H) - H - M,
        lambda H: e * np.cosh(H) - 1,
        H0,
        KEPLER_TOL,
    )
    return float(2 * np.arctan(np.sqrt((e + 1) / (e - 1)) * np.tanh(H * 0.5)))


def date_to_true_anomaly(date: float, e: float, T: float, M0: float, epoch: float) -> float:
    M = date_to_mean_anomaly(date, T, M0, epoch)
    return mean_to_true_anomaly(M, e)


def true_anomaly_to_date(nu: float, e: float, T: float, M0: float, epoch: float, t_min: float = None) -> float:
    M = true_to_mean_anomaly(nu, e)
    return mean_anomaly_to_date(M, T, M0, epoch, t_min)


def date_to_orbit_true_anomaly(date: float, orbit: Orbit) -> float:
    return date_to_true_anomaly(date, orbit.eccentricity, orbit.sidereal_period,
                                orbit.mean_anomaly_epoch, orbit.epoch)


def true_anomaly_to_orbit_date(nu: float, orbit: Orbit, t_min: float = None) -> float:
    """Next date [s] at or after t_min (default: the orbit epoch) at true anomaly nu."""
    t_min = orbit.epoch if t_min is None else t_min
    return true_anomaly_to_date(nu, orbit.eccentricity, orbit.sidereal_period,
                                orbit.mean_anomaly_epoch, orbit.epoch, t_min)


# States

def position_at_true_anomaly(orbit: Orbit, nu: float) -> np.ndarray:
    r = distance_at_true_anomaly(nu, orbit.eccentricity, orbit.semi_latus_rectum)
    perifocal_pos = np.array([r * np.cos(nu), r * np.sin(nu), 0.0])
    return rotate_to_inertial_from_perifocal(perifocal_pos, orbit)


def velocity_at_true_anomaly(orbit: Orbit, mu: float, nu: float) -> np.ndarray:
    r = distance_at_true_anomaly(nu, orbit.eccentricity, orbit.semi_latus_rectum)
    with np.errstate(invalid='ignore'):
        v = np.sqrt(mu * (2 / r - 1 / orbit.semi_major_axis))
    perifocal_vel = motion_direction_at_true_anomaly(nu, orbit.eccentricity) * v
    return rotate_to_inertial_from_perifocal(perifocal_vel, orbit)


def orbit_to_position_at_date(orbit: Orbit, date: float) -> np.ndarray:
    nu = date_to_orbit_true_anomaly(date, orbit)
    return position_at_true_anomaly(orbit, nu)


def orbit_to_velocity_at_date(orbit: Orbit, attractor, date: float) -> np.ndarray:
    nu = date_to_orbit_true_anomaly(date, orbit)
    return velocity_at_true_anomaly(orbit, attractor.std_grav_param, nu)


def orbit_to_state_at_date(orbit: Orbit, attractor, date: float) -> OrbitalState:
    nu = date_to_orbit_true_anomaly(date, orbit)
    pos = position_at_true_anomaly(orbit, nu)
    vel = velocity_at_true_anomaly(orbit, attractor.std_grav_param, nu)
    return OrbitalState(date, pos, vel)


def state_to_orbit(state: OrbitalState, attractor) -> Orbit:
    """
    Converts a Cartesian state to Keplerian elements, with the state date as epoch.

    Circular and equatorial orbits are degenerate: the periapsis direction
    defaults to +x and the ascending node to the periapsis direction.

    Args:
        state (OrbitalState): State relative to the attractor.
        attractor: Attractor body (needs `id` and `std_grav_param`).

    Returns:
        Orbit: Osculating orbit.
    """
    mu = attractor.std_grav_param
    pos = np.asarray(state.pos, dtype=float)
    vel = np.asarray(state.vel, dtype=float)
    r = np.linalg.norm(pos)
    v2 = np.dot(vel, vel)

    # Vis-viva
    a = 1 / (2 / r - v2 / mu)

    h = np.cross(pos, vel)
    i = acos_clamped(h[2] / np.linalg.norm(h))

    # Eccentricity vector, pointing at periapsis
    e_vec = np.cross(vel, h) / mu - pos / r
    e = float(np.linalg.norm(e_vec))
    if e <= NULL_EPS:
        e_hat = X_DIR
        e = 0.0
    else:
        e_hat = e_vec / e

    # Ascending node direction
    n_vec = np.cross(Z_DIR, h)
    n = np.linalg.norm(n_vec)
    if n <= NULL_EPS:
        n_hat = e_hat
    else:
        n_hat = n_vec / n

    lan = wrap_angle(copysign(acos_clamped(n_hat[0]), n_hat[1]))
    arg = wrap_angle(copysign(acos_clamped(np.dot(n_hat, e_hat)), e_hat[2]))
    nu = wrap_angle(angle_in_plane(pos, lan, i, arg))
    M = true_to_mean_anomaly(nu, e)

    return Orbit(
        orbiting=attractor.id,
        semi_major_axis=float(a),
        eccentricity=e,
        inclination=i,
        arg_of_periapsis=float(arg),
        asc_node_longitude=float(lan),
        mean_anomaly_epoch=M,
        epoch=state.date,
        semi_latus_rectum=float(a * (1 - e * e)),
        sidereal_period=float(sidereal_period(a, mu)),
    )


def reanchor_orbit(orbit: Orbit, epoch: float) -> Orbit:
    """Same orbit with its mean anomaly at epoch re-expressed at a new epoch."""
    M = date_to_mean_anomaly(epoch, orbit.sidereal_period, orbit.mean_anomaly_epoch, orbit.epoch)
    return replace(orbit, mean_anomaly_epoch=M, epoch=epoch)
