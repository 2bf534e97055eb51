from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RefinementSettings:
    """
    Tunables of the SOI patch refinement pipeline.

    Attributes:
        iterate_rtol (float): Relative fitness change that stops naive iteration.
        iterate_max_iters (int): Naive iteration budget.
        de_population_base (int): DE population size with no patches.
        de_population_per_patch (int): Extra DE agents per SOI patch.
        de_max_generations (int): DE generation budget.
        de_rtol (float): Relative mean/best gap that stops DE.
        de_cr (float): DE crossover probability.
        de_f (float): DE differential weight.
        transfer_de_threshold (float): posErr + timeErr above which a transfer
                                       refinement runs DE [m + s].
        multi_flyby_de_threshold (float): Same for multi-flyby refinement.
        nm_initial_step (float): First Nelder-Mead simplex size (agent units).
        nm_step_factor (float): Step shrink factor between Nelder-Mead passes.
        nm_min_step (float): Smallest Nelder-Mead step.
        nm_tol (float): Nelder-Mead stopping value.
        seed (int, optional): Seed of the random source.
    """
    iterate_rtol: float = 1e-6
    iterate_max_iters: int = 100
    de_population_base: int = 25
    de_population_per_patch: int = 25
    de_max_generations: int = 500
    de_rtol: float = 0.01
    de_cr: float = 0.9
    de_f: float = 0.3
    transfer_de_threshold: float = 50.0
    multi_flyby_de_threshold: float = 500.0
    nm_initial_step: float = 0.1
    nm_step_factor: float = 0.1
    nm_min_step: float = 1e-3
    nm_tol: float = 1e-9
    seed: Optional[int] = None

    def population_size(self, n_patches: int) -> int:
        return self.de_population_base + self.de_population_per_patch * n_patches

    def nm_steps(self) -> list[float]:
        """Nelder-Mead steps, largest first, down to nm_min_step."""
        steps = []
        step = self.nm_initial_step
        while step >= self.nm_min_step * (1 - 1e-9):
            steps.append(step)
            step *= self.nm_step_factor
        return steps


@dataclass(frozen=True)
class SearchSettings:
    """
    Tunables of the multi-flyby global search.

    Attributes:
        n_workers (int, optional): Worker processes; None picks
                                   min(cpu_count - 1, 4), 0 runs in-process.
        population_size (int, optional): Agents per generation; None picks
                                         50 per agent dimension.
        max_generations (int): Generation budget.
        rtol (float): Relative mean/best gap that ends the search.
        cr (float): Crossover probability.
        f (float): Differential weight.
        timeout (float): Wall-clock budget [s], checked between generations.
        seed (int, optional): Seed of the random source.
    """
    n_workers: Optional[int] = None
    population_size: Optional[int] = None
    max_generations: int = 500
    rtol: float = 0.01
    cr: float = 0.9
    f: float = 0.8
    timeout: float = 120.0
    seed: Optional[int] = None
