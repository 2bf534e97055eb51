"""
Worker pool for population-based search.

Each generation is a fork-join: the population is split into roughly equal
chunks, each chunk is evaluated or evolved by one worker process, and the
results are concatenated before the next generation starts. Fitness functions
must be picklable (module-level functions or functools.partial of them).
"""
import os
import logging
from multiprocessing import Pool
from typing import Any, Callable, Tuple

import numpy as np

from patchedconics.optimization.evolution import evaluate_population_fitness, evolve_population

logger = logging.getLogger(__name__)

MAX_WORKERS = 4


def default_worker_count() -> int:
    """Available cores minus one (for the caller), capped at MAX_WORKERS."""
    return max(1, min((os.cpu_count() or 2) - 1, MAX_WORKERS))


def _evaluate_chunk(args: Tuple[Callable, np.ndarray]) -> np.ndarray:
    """Top-level function for pickling by multiprocessing.Pool."""
    fitness_fun, chunk = args
    return evaluate_population_fitness(chunk, fitness_fun)


def _evolve_chunk(args: Tuple[Callable, np.ndarray, np.ndarray, np.ndarray, float, float, Any]):
    fitness_fun, population, fitnesses, indices, cr, f, seed = args
    rng = np.random.default_rng(seed)
    pop, fit = evolve_population(population, fitnesses, fitness_fun, cr, f, rng, indices)
    return pop[indices], fit[indices]


class EvolutionPool:
    """
    Evaluates and evolves Differential Evolution populations across processes.

    Use as a context manager so the worker processes are released. With
    n_workers = 0 everything runs in the calling process, which is what tests
    and small searches use.
    """

    def __init__(self, fitness_fun: Callable[[np.ndarray], float], n_workers: int = None, seed: int = None):
        self.fitness_fun = fitness_fun
        self.n_workers = default_worker_count() if n_workers is None else n_workers
        self._seeds = np.random.SeedSequence(seed)
        self._pool = None

    def __enter__(self):
        if self.n_workers > 0:
            self._pool = Pool(processes=self.n_workers)
            logger.debug("Started %d worker processes", self.n_workers)
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def close(self):
        if self._pool is not None:
            self._pool.close()
            self._pool.join()
            self._pool = None

    def _chunks(self, n_agents: int) -> list[np.ndarray]:
        n_chunks = max(1, min(self.n_workers, n_agents))
        return [c for c in np.array_split(np.arange(n_agents), n_chunks) if c.size > 0]

    def _map(self, func, tasks):
        if self._pool is None:
            return [func(task) for task in tasks]
        return self._pool.map(func, tasks)

    def rng(self) -> np.random.Generator:
        """A fresh generator drawn from the pool's seed sequence."""
        return np.random.default_rng(self._seeds.spawn(1)[0])

    def evaluate(self, population: np.ndarray) -> np.ndarray:
        chunks = self._chunks(len(population))
        results = self._map(_evaluate_chunk, [(self.fitness_fun, population[c]) for c in chunks])
        return np.concatenate(results)

    def evolve(self, population: np.ndarray, fitnesses: np.ndarray, cr: float = 0.9,
               f: float = 0.8) -> tuple[np.ndarray, np.ndarray]:
        """One generation. Each chunk draws its donors from the whole population."""
        chunks = self._chunks(len(population))
        seeds = self._seeds.spawn(len(chunks))
        tasks = [(self.fitness_fun, population, fitnesses, c, cr, f, s) for c, s in zip(chunks, seeds)]
        results = self._map(_evolve_chunk, tasks)
        next_pop = np.concatenate([pop for pop, _ in results])
        next_fit = np.concatenate([fit for _, fit in results])
        return next_pop, next_fit
