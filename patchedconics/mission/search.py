"""
Global search for multi-flyby transfers.

Agents live in the unit hypercube: component 0 is the start date and component
i > 0 the flight time of leg i-1, each scaled into its bounds by
`multi_flyby_inputs_from_agent`. Populations are evaluated and evolved on an
`EvolutionPool`, one fork-join per generation.
"""
import logging
import time
from dataclasses import dataclass, field

import numpy as np

from patchedconics.errors import LambertGeometryError
from patchedconics.mission.multiflyby import MultiFlybyCalculator, MultiFlybySearchInputs, multi_flyby_inputs_from_agent
from patchedconics.mission.records import MultiFlyby
from patchedconics.mission.settings import SearchSettings
from patchedconics.optimization.evolution import create_random_population, population_statistics
from patchedconics.optimization.parallel import EvolutionPool
from patchedconics.trajectory.flyby import leg_duration_bounds

logger = logging.getLogger(__name__)

AGENTS_PER_DIMENSION = 50


class SearchFitness:
    """Fitness of a search agent: delta-v plus the flyby error penalty."""

    def __init__(self, inputs: MultiFlybySearchInputs):
        self.inputs = inputs

    def __call__(self, agent: np.ndarray) -> float:
        try:
            calc = MultiFlybyCalculator(multi_flyby_inputs_from_agent(agent, self.inputs))
        except LambertGeometryError:
            return np.nan
        return calc.compute_fitness()


@dataclass
class SearchHistory:
    """Best and mean fitness of every generation, generation 0 being the initial population."""
    best: list[float] = field(default_factory=list)
    mean: list[float] = field(default_factory=list)

    @property
    def generations(self) -> int:
        return len(self.best)

    def record(self, fitnesses: np.ndarray) -> tuple[float, float]:
        best, mean = population_statistics(fitnesses)
        self.best.append(best)
        self.mean.append(mean)
        return best, mean


@dataclass(eq=False)
class SearchResult:
    multi_flyby: MultiFlyby
    best_agent: np.ndarray
    history: SearchHistory
    population: np.ndarray
    fitnesses: np.ndarray


def _transfer_level_orbits(system, start_orbit, end_orbit, flyby_ids: list[int]) -> tuple[list, object]:
    start_body = system.body_from_id(start_orbit.orbiting)
    end_body = system.body_from_id(end_orbit.orbiting)
    transfer_id = system.common_attractor_id(start_body.id, end_body.id)
    up = system.sequence_up(start_body.id, transfer_id)
    down = system.sequence_down(transfer_id, end_body.id)

    first = start_orbit if len(up) == 1 else system.body_from_id(up[-2]).orbit
    last = end_orbit if len(down) == 1 else system.body_from_id(down[1]).orbit
    orbits = [first] + [system.body_from_id(i).orbit for i in flyby_ids] + [last]
    return orbits, system.body_from_id(transfer_id)


def flight_time_bounds(system, start_orbit, end_orbit, flyby_ids: list[int]) -> tuple[list[float], list[float]]:
    """
    Default (min, max) flight time of every leg [s].

    Each leg runs between the orbits its endpoints have around the transfer
    body; see `leg_duration_bounds`.
    """
    orbits, transfer_body = _transfer_level_orbits(system, start_orbit, end_orbit, flyby_ids)
    bounds = [leg_duration_bounds(o1, o2, transfer_body) for o1, o2 in zip(orbits[:-1], orbits[1:])]
    return [lo for lo, _ in bounds], [hi for _, hi in bounds]


class MultiFlybySearch:
    """
    Differential Evolution over the start date and the leg flight times.

    The search stops after `max_generations`, when the relative gap between the
    mean and best fitness drops to `rtol`, or when the wall-clock `timeout`
    runs out. The timeout is checked between generations only.

    Example:
        >>> search = MultiFlybySearch(inputs, SearchSettings(n_workers=0, seed=1))
        >>> result = search.run()
        >>> result.multi_flyby.delta_v
    """

    def __init__(self, inputs: MultiFlybySearchInputs, settings: SearchSettings = None):
        n_legs = len(inputs.flyby_id_sequence) + 1
        if len(inputs.flight_times_min) != n_legs or len(inputs.flight_times_max) != n_legs:
            raise ValueError(f"Expected flight time bounds for {n_legs} legs")
        self.inputs = inputs
        self.settings = settings or SearchSettings()
        self.fitness = SearchFitness(inputs)

    @property
    def population_size(self) -> int:
        if self.settings.population_size is not None:
            return self.settings.population_size
        return AGENTS_PER_DIMENSION * self.inputs.agent_dim

    def _converged(self, best: float, mean: float) -> bool:
        if not np.isfinite(best):
            return False
        if best == 0:
            return True
        return (mean - best) / best <= self.settings.rtol

    def run(self) -> SearchResult:
        settings = self.settings
        history = SearchHistory()
        started = time.monotonic()

        with EvolutionPool(self.fitness, settings.n_workers, settings.seed) as pool:
            population = create_random_population(self.population_size, self.inputs.agent_dim, pool.rng())
            fitnesses = pool.evaluate(population)
            best, mean = history.record(fitnesses)
            logger.info("Initial population: best fitness %.2f, mean fitness %.2f", best, mean)

            while history.generations <= settings.max_generations and not self._converged(best, mean):
                if time.monotonic() - started > settings.timeout:
                    logger.warning("Search timed out after %d generations", history.generations - 1)
                    break
                population, fitnesses = pool.evolve(population, fitnesses, settings.cr, settings.f)
                best, mean = history.record(fitnesses)
                logger.debug("Generation %d: best %.4f, mean %.4f", history.generations - 1, best, mean)

        finite = np.where(np.isnan(fitnesses), np.inf, fitnesses)
        best_agent = population[int(np.argmin(finite))].copy()
        logger.info("Search finished after %d generations, best fitness %.2f", history.generations - 1, best)

        calc = MultiFlybyCalculator(multi_flyby_inputs_from_agent(best_agent, self.inputs))
        return SearchResult(
            multi_flyby=calc.multi_flyby,
            best_agent=best_agent,
            history=history,
            population=population,
            fitnesses=fitnesses,
        )
