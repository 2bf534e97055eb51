"""
SOI patch refinement.

A patched-conic mission is solved level by level, and each level assumes where
(and when) the spacecraft crosses the SOI boundary to the next one. The
assumed crossing points are the SOI patch positions; the points and dates the
solved arcs actually produce rarely agree with them at first. Refinement moves
the patch positions and the leg dates until both sides agree, without giving
away delta-v.

Three strategies are combined by `refine_patches`:
    - naive fixed-point iteration, feeding each solution's crossings back in,
    - Differential Evolution over a bounded agent space, seeded with the
      current solution so it can never do worse,
    - Nelder-Mead polishing with a shrinking simplex.

Calculators are never edited: each step builds a new calculator from new
inputs, and every stage keeps the better of its input and its output.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

import numpy as np

from patchedconics.dynamics.kepler import orbit_to_position_at_date
from patchedconics.dynamics.vectors import TWO_PI, cartesian_to_spherical, clamp, random_sign, spherical_to_cartesian, wrap_angle
from patchedconics.errors import LambertGeometryError
from patchedconics.mission.settings import RefinementSettings
from patchedconics.optimization.evolution import (
    create_random_population, evaluate_population_fitness, evolve_population, population_statistics,
)
from patchedconics.optimization.nelder_mead import nelder_mead_minimize

logger = logging.getLogger(__name__)


def _relative_change(previous: float, current: float) -> float:
    if previous + current == 0:
        return 0.0
    return 2 * (previous - current) / (previous + current)


def _gap_converged(best: float, mean: float, rtol: float) -> bool:
    if best == 0:
        return True
    return (mean - best) / best < rtol


class PatchedCalculator(ABC):
    """
    Base of mission calculators stitched at SOI patches.

    Subclasses solve the whole mission in their constructor and set
    `system`, `start_orbit`, `end_orbit`, `match_start_mo`, `match_end_mo`,
    `ejections`, `insertions`, `soi_patch_bodies` and `soi_patch_positions`.
    """

    @property
    @abstractmethod
    def time_parameters(self) -> np.ndarray:
        """[start date, flight time(s)...] [s]."""

    @property
    @abstractmethod
    def cost(self) -> float:
        """Quantity the patch fitness scales (delta-v, possibly penalized)."""

    @property
    @abstractmethod
    def leg_periods(self) -> list[float]:
        """Sidereal period of the first arc of each interplanetary leg [s]."""

    @abstractmethod
    def with_parameters(self, time_parameters, soi_patch_positions) -> "PatchedCalculator":
        """A new calculator with other dates and patch positions, same settings."""

    @abstractmethod
    def calculate_soi_patches(self) -> list[np.ndarray]:
        """SOI crossing points of the solved arcs, in patch order."""

    @abstractmethod
    def naive_step(self) -> "PatchedCalculator":
        """One fixed-point step: re-solve with the crossings of this solution."""

    # Errors

    def _ejection_crossings(self) -> list[np.ndarray]:
        return [orbit_to_position_at_date(e.orbits[-1], e.intersect_times[-1]) for e in self.ejections]

    def _insertion_crossings(self) -> list[np.ndarray]:
        return [orbit_to_position_at_date(i.orbits[0], i.intersect_times[0]) for i in self.insertions]

    def soi_patch_position_errors(self) -> list[float]:
        crossings = self.calculate_soi_patches()
        return [float(np.linalg.norm(p - c)) for p, c in zip(self.soi_patch_positions, crossings)]

    @property
    def soi_patch_position_error(self) -> float:
        return float(sum(self.soi_patch_position_errors()))

    def soi_patch_up_time_errors(self) -> list[float]:
        errors = []
        for i, ejection in enumerate(self.ejections):
            if i == len(self.ejections) - 1:
                errors.append(ejection.end_date - self.start_date)
            else:
                errors.append(ejection.end_date - self.ejections[i + 1].orbits[0].epoch)
        return errors

    def soi_patch_down_time_errors(self) -> list[float]:
        errors = []
        for i, insertion in enumerate(self.insertions):
            if i == 0:
                errors.append(insertion.start_date - self.end_date)
            else:
                errors.append(insertion.start_date - self.insertions[i - 1].end_date)
        return errors

    @property
    def soi_patch_time_error(self) -> float:
        errors = self.soi_patch_up_time_errors() + self.soi_patch_down_time_errors()
        return float(sum(abs(e) for e in errors))

    @property
    def summed_periods(self) -> float:
        """
        Time scale [s] of the patch timing errors.

        The start and end orbits only count when a chain departs or arrives at
        them and their timing must be kept; every intermediate level counts
        the period of the body it leaves or reaches.
        """
        total = 0.0
        if self.ejections and self.match_start_mo:
            total += self.start_orbit.sidereal_period
        if self.insertions and self.match_end_mo:
            total += self.end_orbit.sidereal_period
        for i in range(1, len(self.ejections)):
            total += self.system.body_from_id(self.ejections[i - 1].orbits[0].orbiting).orbit.sidereal_period
        for i in range(len(self.insertions) - 1):
            total += self.system.body_from_id(self.insertions[i + 1].orbits[0].orbiting).orbit.sidereal_period
        return total

    @property
    def soi_patch_fitness(self) -> float:
        """
        (mean relative patch position error + time error / summed periods) * cost.

        Each position error is halved and scaled by its body's SOI radius.
        """
        n_patches = len(self.soi_patch_bodies)
        position_term = 0.0
        if n_patches > 0:
            errors = self.soi_patch_position_errors()
            position_term = sum(0.5 * err / body.soi for err, body in zip(errors, self.soi_patch_bodies)) / n_patches
        periods = self.summed_periods
        time_term = self.soi_patch_time_error / periods if periods > 0 else 0.0
        return (position_term + time_term) * self.cost

    # Refinement strategies

    def with_cached_patches(self) -> "PatchedCalculator":
        """Adopts the solved crossings as patch positions when none were given."""
        if self.soi_patch_positions and not np.any(self.soi_patch_positions[0]):
            return self.with_parameters(self.time_parameters, self.calculate_soi_patches())
        return self

    def iterate_soi_patches(self, rtol: float = 1e-6, max_iters: int = 100) -> "PatchedCalculator":
        """
        Naive fixed-point iteration on the patch positions and dates.

        Returns:
            PatchedCalculator: The last iterate, which is not necessarily the best one.
        """
        calc = self
        fitness = np.inf
        for _ in range(max_iters):
            previous = fitness
            calc = calc.naive_step()
            fitness = calc.soi_patch_fitness
            if _relative_change(previous, fitness) < rtol:
                break
        return calc

    def optimize_de(self, population_size: int = None, max_generations: int = 500, rtol: float = 0.01,
                    cr: float = 0.9, f: float = 0.3, rng: np.random.Generator = None) -> "PatchedCalculator":
        """
        Differential Evolution over dates and patch angles.

        The current solution is agent 0 of the initial population, and it is
        returned unchanged when the evolved optimum scores worse.

        Args:
            population_size (int, optional): Defaults to 25 + 25 per patch.
            max_generations (int): Generation budget.
            rtol (float): Stop once (mean - best) / best drops below this.
            cr (float): Crossover probability.
            f (float): Differential weight.
            rng (np.random.Generator, optional): Random source.

        Returns:
            PatchedCalculator: The better of the current and the evolved solution.
        """
        if not self.soi_patch_bodies:
            return self
        rng = rng if rng is not None else np.random.default_rng()
        calc = self.with_cached_patches()
        if population_size is None:
            population_size = 25 + 25 * len(calc.soi_patch_bodies)

        space = PatchAgentSpace.around(calc)
        fitness_fun = AgentFitness(calc, space)
        initial_agent = space.encode(calc.time_parameters, calc.soi_patch_positions)

        population = create_random_population(population_size, space.dim, rng)
        population[0] = initial_agent
        fitnesses = evaluate_population_fitness(population, fitness_fun)

        best, mean = population_statistics(fitnesses)
        for generation in range(max_generations):
            if _gap_converged(best, mean, rtol):
                break
            population, fitnesses = evolve_population(population, fitnesses, fitness_fun, cr, f, rng)
            best, mean = population_statistics(fitnesses)
            logger.debug("DE generation %d: best %.6g, mean %.6g", generation + 1, best, mean)

        if not np.any(np.isfinite(fitnesses)):
            return calc
        optimized = space.apply(calc, population[int(np.nanargmin(fitnesses))])
        return _better(calc, optimized)

    def optimize_nm(self, step: float = 0.1, tol: float = 1e-9, max_iters: int = None,
                    rng: np.random.Generator = None) -> "PatchedCalculator":
        """
        Nelder-Mead over dates and patch angles, starting from a simplex of
        the current agent and one vertex per dimension moved by +-step.

        Returns:
            PatchedCalculator: The better of the current and the polished solution.
        """
        if not self.soi_patch_bodies:
            return self
        rng = rng if rng is not None else np.random.default_rng()
        calc = self.with_cached_patches()
        if max_iters is None:
            max_iters = (len(calc.soi_patch_bodies) + 2) * 200

        space = PatchAgentSpace.around(calc)
        current = space.encode(calc.time_parameters, calc.soi_patch_positions)
        simplex = [current]
        for i in range(space.dim):
            vertex = current.copy()
            vertex[i] = clamp(vertex[i] + random_sign(rng) * step, 0.0, 1.0)
            simplex.append(vertex)

        optimized_agent = nelder_mead_minimize(simplex, AgentFitness(calc, space), tol, max_iters)
        try:
            return _better(calc, space.apply(calc, optimized_agent))
        except LambertGeometryError:
            return calc

    def optimize_soi_patches(self, delta_v_weight: float, include_times: bool, tol: float = 0.001,
                             max_iters: int = None, rng: np.random.Generator = None) -> "PatchedCalculator":
        """
        Nelder-Mead directly on patch angles (and optionally dates), minimizing
        posErr + 10 * timeErr + delta_v_weight * delta-v.

        Args:
            delta_v_weight (float): Weight of the delta-v term.
            include_times (bool): Also move the start date and flight time(s).
            tol (float): Objective value that stops the search.
            max_iters (int, optional): Defaults to 100 per patch.
            rng (np.random.Generator, optional): Random source.

        Returns:
            PatchedCalculator: The better of the current and the optimized solution.
        """
        rng = rng if rng is not None else np.random.default_rng()
        calc = self.with_cached_patches()
        n_patches = len(calc.soi_patch_bodies)
        if n_patches == 0 and not include_times:
            return self
        if max_iters is None:
            max_iters = max(100 * n_patches, 100)

        radii = np.array([body.soi for body in calc.soi_patch_bodies])
        n_angles = 2 * n_patches

        def decode(x):
            angles = x[:n_angles]
            positions = [spherical_to_cartesian(radii[k], angles[2 * k], angles[2 * k + 1]) for k in range(n_patches)]
            times = x[n_angles:] if include_times else calc.time_parameters
            return times, positions

        def objective(x):
            try:
                return _patch_objective(calc.with_parameters(*decode(x)), delta_v_weight)
            except LambertGeometryError:
                return np.inf

        x0 = np.array(patch_positions_to_angles(calc.soi_patch_positions), dtype=float)
        if include_times:
            x0 = np.concatenate([x0, calc.time_parameters])

        simplex = [x0]
        for k in range(n_patches):
            theta_vertex = x0.copy()
            phi_vertex = x0.copy()
            theta_vertex[2 * k] += random_sign(rng) * rng.random() * np.pi / 24
            phi_vertex[2 * k + 1] += random_sign(rng) * rng.random() * np.pi / 12
            simplex.extend([theta_vertex, phi_vertex])
        if include_times:
            periods = calc.leg_periods
            start_vertex = x0.copy()
            start_vertex[n_angles] += random_sign(rng) * rng.random() * periods[0] / 4
            simplex.append(start_vertex)
            for k, period in enumerate(periods):
                vertex = x0.copy()
                vertex[n_angles + 1 + k] += max(1.0, random_sign(rng) * rng.random() * period / 4)
                simplex.append(vertex)

        try:
            optimized = calc.with_parameters(*decode(nelder_mead_minimize(simplex, objective, tol, max_iters)))
        except LambertGeometryError:
            return calc
        if _patch_objective(calc, delta_v_weight) <= _patch_objective(optimized, delta_v_weight):
            return calc
        return optimized


def _patch_objective(calc: PatchedCalculator, delta_v_weight: float) -> float:
    score = calc.soi_patch_position_error + 10 * calc.soi_patch_time_error + delta_v_weight * calc.delta_v
    return np.inf if np.isnan(score) else score


def _better(baseline: PatchedCalculator, candidate: PatchedCalculator) -> PatchedCalculator:
    if candidate.soi_patch_fitness < baseline.soi_patch_fitness:
        return candidate
    return baseline


def patch_positions_to_angles(positions) -> list[float]:
    """[theta_1, phi_1, theta_2, phi_2, ...] with phi wrapped into [0, 2pi)."""
    angles = []
    for position in positions:
        _, theta, phi = cartesian_to_spherical(position)
        angles.extend([theta, wrap_angle(phi)])
    return angles


@dataclass(frozen=True, eq=False)
class PatchAgentSpace:
    """
    Maps agents in [0, 1]^n to dates and patch positions.

    Dimension k is linearly scaled into bounds[k]: first the time parameters,
    each within +-summed periods of its current value, then (theta, phi) of
    each patch over [0, pi] x [0, 2pi].
    """
    bounds: np.ndarray
    n_time_parameters: int
    soi_radii: np.ndarray

    @classmethod
    def around(cls, calc: PatchedCalculator) -> "PatchAgentSpace":
        spread = calc.summed_periods
        rows = [[t - spread, t + spread] for t in calc.time_parameters]
        for _ in calc.soi_patch_bodies:
            rows.extend([[0.0, np.pi], [0.0, TWO_PI]])
        radii = np.array([body.soi for body in calc.soi_patch_bodies])
        return cls(np.array(rows, dtype=float), len(calc.time_parameters), radii)

    @property
    def dim(self) -> int:
        return len(self.bounds)

    def encode(self, time_parameters, soi_patch_positions) -> np.ndarray:
        values = np.concatenate([np.asarray(time_parameters, dtype=float),
                                 patch_positions_to_angles(soi_patch_positions)])
        lo, hi = self.bounds[:, 0], self.bounds[:, 1]
        width = hi - lo
        return np.divide(values - lo, width, out=np.full(self.dim, 0.5), where=width > 0)

    def decode(self, agent: np.ndarray) -> tuple[np.ndarray, list[np.ndarray]]:
        lo, hi = self.bounds[:, 0], self.bounds[:, 1]
        values = lo + (hi - lo) * np.asarray(agent, dtype=float)
        times = values[:self.n_time_parameters]
        angles = values[self.n_time_parameters:]
        positions = [spherical_to_cartesian(r, angles[2 * k], angles[2 * k + 1]) for k, r in enumerate(self.soi_radii)]
        return times, positions

    def apply(self, calc: PatchedCalculator, agent: np.ndarray) -> PatchedCalculator:
        return calc.with_parameters(*self.decode(agent))


class AgentFitness:
    """Picklable agent -> patch fitness function around a fixed baseline."""

    def __init__(self, calc: PatchedCalculator, space: PatchAgentSpace):
        self.calc = calc
        self.space = space

    def __call__(self, agent: np.ndarray) -> float:
        try:
            return self.space.apply(self.calc, agent).soi_patch_fitness
        except LambertGeometryError:
            return np.nan


def _log_state(label: str, calc: PatchedCalculator):
    logger.info("%s errors: %.6g m, %.6g s", label, calc.soi_patch_position_error, calc.soi_patch_time_error)
    logger.info("%s delta v: %.6g m/s", label, calc.delta_v)
    logger.info("%s fitness score: %.6g", label, calc.soi_patch_fitness)


def refine_patches(calc: PatchedCalculator, settings: RefinementSettings, de_threshold: float) -> PatchedCalculator:
    """
    Naive iteration, then DE while the errors exceed de_threshold, then
    Nelder-Mead with shrinking steps. Each stage continues from the previous
    stage's output, and the best solution seen is returned.
    """
    rng = np.random.default_rng(settings.seed)
    best = calc
    _log_state("Initial", best)

    logger.info("Performing naive iteration...")
    current = calc.iterate_soi_patches(settings.iterate_rtol, settings.iterate_max_iters)
    if current.soi_patch_fitness < best.soi_patch_fitness:
        best = current
        _log_state("Iterated", best)
    else:
        logger.info("Naive iteration failed to improve the SoI patch fitness.")

    if current.soi_patch_position_error + current.soi_patch_time_error > de_threshold:
        logger.info("Performing global optimization via differential evolution...")
        current = current.optimize_de(settings.population_size(len(current.soi_patch_bodies)),
                                      settings.de_max_generations, settings.de_rtol,
                                      settings.de_cr, settings.de_f, rng)
        if current.soi_patch_fitness < best.soi_patch_fitness:
            best = current
            _log_state("Evolved", best)
        else:
            logger.info("DE failed to improve the SoI patch fitness.")

    logger.info("Performing local optimization via Nelder-Mead...")
    changed = False
    for step in settings.nm_steps():
        current = current.optimize_nm(step, settings.nm_tol, rng=rng)
        if current.soi_patch_fitness < best.soi_patch_fitness:
            best = current
            changed = True
    if not changed:
        logger.info("NM failed to improve the SoI patch fitness.")

    _log_state("Final", best)
    return best
