"""
Propagation of a flight plan through burns and sphere of influence changes.

Starting from an orbit, each burn is applied at its date, and between burns
the current conic is searched for the next SOI change: an encounter with one
of the attractor's satellites, or an escape into the attractor's own parent.
Every SOI change closes the current trajectory and opens a new one.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from patchedconics.dynamics.kepler import (
    Orbit, OrbitalState, orbit_to_position_at_date, orbit_to_state_at_date, state_to_orbit,
    true_anomaly_at_distance, true_anomaly_to_date, true_anomaly_to_orbit_date,
)
from patchedconics.optimization.root_finding import brent_minimize, brent_root_find
from patchedconics.trajectory.arcs import FlightPlan, Trajectory
from patchedconics.trajectory.departarrive import ejection_date, ejection_true_anomaly
from patchedconics.trajectory.maneuver import ManeuverComponents, components_to_maneuver

__all__ = ['SoiChange', 'find_next_orbit', 'propagate_flight_plan']

logger = logging.getLogger(__name__)

N_SAMPLES = 200
SOI_TOL = 1e-6
MAX_SOI_CHANGES = 32


@dataclass(frozen=True)
class SoiChange:
    """The orbit entered at an SOI boundary and the date it is entered [s]."""
    orbit: Orbit
    date: float


def _distance_to_soi(orbit: Orbit, satellite, date: float) -> float:
    """Distance [m] from the satellite's SOI boundary, negative inside it."""
    offset = orbit_to_position_at_date(satellite.orbit, date) - orbit_to_position_at_date(orbit, date)
    return float(np.linalg.norm(offset)) - satellite.soi


def _first_entry(orbit: Orbit, satellite, lo: float, hi: float) -> Optional[float]:
    """
    Earliest date in [lo, hi] at which the orbit enters the satellite's SOI.

    The window is sampled first, and the sample minimum is refined with
    Brent's method to catch grazing passes between samples. An entry needs
    the distance to go from positive to clearly negative, so an orbit that
    has just left the SOI does not re-enter it at once.
    """
    def dist(t):
        return _distance_to_soi(orbit, satellite, t)

    tol = SOI_TOL * satellite.soi
    dates = np.linspace(lo, hi, N_SAMPLES)
    values = np.array([dist(t) for t in dates])

    last_outside = None
    for k, value in enumerate(values):
        if value > 0:
            last_outside = k
        elif value < -tol and last_outside is not None:
            return brent_root_find(dist, dates[last_outside], dates[k])

    k = int(np.argmin(values))
    if k == 0 or values[k - 1] <= 0:
        return None
    closest = brent_minimize(dist, dates[k - 1], dates[min(k + 1, N_SAMPLES - 1)])
    if dist(closest) < -tol:
        return brent_root_find(dist, dates[k - 1], closest)
    return None


def _search_windows(orbit: Orbit, start_date: float, end_date: float, exit_date: float,
                    n_revs: int) -> list[tuple[float, float]]:
    if np.isfinite(exit_date):
        return [(start_date, min(end_date, exit_date))]
    windows = []
    for rev in range(n_revs + 1):
        lo = start_date + rev * orbit.sidereal_period
        if lo >= end_date:
            break
        windows.append((lo, min(end_date, lo + orbit.sidereal_period)))
    return windows


def _exit_date(orbit: Orbit, attractor, satellites, start_date: float) -> float:
    """
    Date [s] the orbit leaves the attractor's SOI, infinite when it never does.

    Around the sun an escaping orbit is followed until it is beyond every
    planet's SOI.
    """
    if np.isfinite(attractor.soi):
        if orbit.apoapsis <= attractor.soi:
            return np.inf
        if orbit.eccentricity < 1:
            return true_anomaly_to_orbit_date(ejection_true_anomaly(orbit, attractor), orbit, start_date)
        return max(start_date, ejection_date(orbit, attractor))
    if orbit.eccentricity < 1 or not satellites:
        return np.inf
    max_dist = max(body.orbit.apoapsis + body.soi for body in satellites)
    nu = true_anomaly_at_distance(max_dist, orbit.eccentricity, orbit.semi_latus_rectum)
    return max(start_date, true_anomaly_to_date(nu, orbit.eccentricity, orbit.sidereal_period,
                                                orbit.mean_anomaly_epoch, orbit.epoch))


def find_next_orbit(orbit: Orbit, system, start_date: float, end_date: float = np.inf,
                    n_revs: int = 0) -> Optional[SoiChange]:
    """
    Next SOI change of a conic between start_date and end_date.

    Bound orbits are searched one revolution at a time for up to n_revs + 1
    revolutions; escaping orbits up to their SOI exit.

    Args:
        orbit (Orbit): Current conic.
        system (SolarSystem): Bodies.
        start_date (float): Start of the search [s].
        end_date (float): End of the search, usually the next burn [s].
        n_revs (int): Extra revolutions of a bound orbit to search.

    Returns:
        SoiChange: The orbit after the change, or None when the conic stays
                   in the current SOI (or leaves the sun's) before end_date.
    """
    attractor = system.body_from_id(orbit.orbiting)
    satellites = system.orbiters_of(attractor.id)
    exit_date = _exit_date(orbit, attractor, satellites, start_date)

    for lo, hi in _search_windows(orbit, start_date, end_date, exit_date, n_revs):
        entries = []
        for body in satellites:
            entry = _first_entry(orbit, body, lo, hi)
            if entry is not None:
                entries.append((entry, body))
        if entries:
            date, body = min(entries, key=lambda e: e[0])
            state = orbit_to_state_at_date(orbit, attractor, date)
            body_state = orbit_to_state_at_date(body.orbit, attractor, date)
            relative = OrbitalState(date, state.pos - body_state.pos, state.vel - body_state.vel)
            logger.debug("Encounter with %s at %.1f", body.name, date)
            return SoiChange(state_to_orbit(relative, body), date)

    if exit_date <= end_date and np.isfinite(attractor.soi):
        parent = system.body_from_id(attractor.orbiting)
        state = orbit_to_state_at_date(orbit, attractor, exit_date)
        body_state = orbit_to_state_at_date(attractor.orbit, parent, exit_date)
        absolute = OrbitalState(exit_date, state.pos + body_state.pos, state.vel + body_state.vel)
        logger.debug("Escape from %s at %.1f", attractor.name, exit_date)
        return SoiChange(state_to_orbit(absolute, parent), exit_date)
    return None


def propagate_flight_plan(start_orbit: Orbit, system, start_date: float, burns: list[ManeuverComponents],
                          n_revs: int = 0, name: str = "Flight Plan") -> FlightPlan:
    """
    Flies a start orbit through a list of burns, patching conics at every SOI change.

    Args:
        start_orbit (Orbit): Orbit at start_date.
        system (SolarSystem): Bodies.
        start_date (float): Start of the plan [s].
        burns (list[ManeuverComponents]): Burns in chronological order, each
                                          split along its pre-burn local frame.
        n_revs (int): Extra revolutions of a bound orbit searched for encounters.
        name (str): Flight plan name.

    Returns:
        FlightPlan: One trajectory per SOI, in order. The last one ends one
                    period after its final orbit's epoch.

    Raises:
        ValueError: If the burns are not in chronological order after start_date.
    """
    dates = [start_date] + [burn.date for burn in burns]
    if any(b < a for a, b in zip(dates, dates[1:])):
        raise ValueError("Burns must be in chronological order after the start date")

    trajectories = []
    orbits = [start_orbit]
    intersect_times = [start_date]
    maneuvers = []
    current = start_orbit
    date = start_date

    for i in range(len(burns) + 1):
        end_date = burns[i].date if i < len(burns) else np.inf
        for _ in range(MAX_SOI_CHANGES):
            change = find_next_orbit(current, system, date, end_date, n_revs)
            if change is None:
                break
            intersect_times.append(change.date)
            trajectories.append(Trajectory(orbits, intersect_times, maneuvers))
            current = change.orbit
            date = change.date
            orbits = [current]
            intersect_times = [date]
            maneuvers = []
        else:
            logger.warning("Stopped after %d SOI changes before %.1f", MAX_SOI_CHANGES, end_date)

        if i < len(burns):
            attractor = system.body_from_id(current.orbiting)
            pre_state = orbit_to_state_at_date(current, attractor, burns[i].date)
            maneuver = components_to_maneuver(burns[i], pre_state)
            current = state_to_orbit(maneuver.post_state, attractor)
            date = current.epoch
            orbits.append(current)
            intersect_times.append(date)
            maneuvers.append(maneuver)

    intersect_times.append(current.epoch + current.sidereal_period)
    trajectories.append(Trajectory(orbits, intersect_times, maneuvers))
    return FlightPlan(name, trajectories)
