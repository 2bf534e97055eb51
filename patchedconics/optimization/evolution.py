import numpy as np
from typing import Callable

Agent = np.ndarray
FitnessFunction = Callable[[Agent], float]


def create_random_population(size: int, dim: int, rng: np.random.Generator = None) -> np.ndarray:
    """Population of `size` agents with components drawn uniformly in [0, 1)."""
    rng = rng if rng is not None else np.random.default_rng()
    return rng.random((size, dim))


def evaluate_population_fitness(population: np.ndarray, fitness_fun: FitnessFunction) -> np.ndarray:
    return np.array([fitness_fun(agent) for agent in population], dtype=float)


def pick3(n_agents: int, parent_index: int, rng: np.random.Generator) -> np.ndarray:
    """Three distinct agent indices, none equal to parent_index."""
    candidates = np.delete(np.arange(n_agents), parent_index)
    return rng.choice(candidates, size=3, replace=False)


def evolve_population(population: np.ndarray, fitnesses: np.ndarray, fitness_fun: FitnessFunction,
                      cr: float = 0.9, f: float = 0.8, rng: np.random.Generator = None,
                      indices=None) -> tuple[np.ndarray, np.ndarray]:
    """
    One generation of DE/rand/1/bin with greedy replacement.

    Trial vectors are clamped to [0, 1]. A trial replaces its parent only when
    its fitness is strictly lower (or the parent is NaN), so NaN trials never
    survive.

    Args:
        population (np.ndarray): (n_agents, dim) agents, n_agents >= 4.
        fitnesses (np.ndarray): (n_agents,) fitness of each agent.
        fitness_fun (callable): Fitness of a single agent (lower is better).
        cr (float): Crossover probability.
        f (float): Differential weight.
        rng (np.random.Generator, optional): Random source.
        indices (array-like, optional): Agents to evolve; donors are still drawn
                                        from the whole population. Defaults to all.

    Returns:
        tuple: (next population, next fitnesses), full size.
    """
    rng = rng if rng is not None else np.random.default_rng()
    n_agents, dim = population.shape
    indices = range(n_agents) if indices is None else indices

    next_pop = population.copy()
    next_fit = np.array(fitnesses, dtype=float)

    for j in indices:
        x = population[j]
        a, b, c = population[pick3(n_agents, j, rng)]
        forced = rng.integers(0, dim)
        crossover = rng.random(dim) < cr
        crossover[forced] = True

        y = np.where(crossover, a + f * (b - c), x)
        y = np.clip(y, 0.0, 1.0)

        fy = fitness_fun(y)
        if fy < next_fit[j] or (np.isnan(next_fit[j]) and not np.isnan(fy)):
            next_pop[j] = y
            next_fit[j] = fy

    return next_pop, next_fit


def population_statistics(fitnesses: np.ndarray) -> tuple[float, float]:
    """(best, mean) of the finite fitness values; (inf, inf) when none is finite."""
    finite = fitnesses[np.isfinite(fitnesses)]
    if finite.size == 0:
        return np.inf, np.inf
    return float(finite.min()), float(finite.mean())
