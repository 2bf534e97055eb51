import numpy as np
from typing import Callable


def nelder_mead_minimize(initial_points, objective: Callable[[np.ndarray], float], tol: float = 1.0,
                         max_it: int = None, alpha: float = 1.0, gamma: float = 2.0,
                         rho: float = 0.5, sigma: float = 0.5) -> np.ndarray:
    """
    Nelder-Mead simplex minimization.

    Terminates as soon as the best vertex scores below tol, which assumes an
    objective whose ideal value is 0 (position/time errors, penalized costs).
    Otherwise runs for max_it iterations.

    Args:
        initial_points (array-like): n+1 starting vertices of dimension n.
        objective (callable): Function of an (n,) array.
        tol (float): Objective value below which the search stops.
        max_it (int, optional): Iteration budget. Defaults to 250*n.
        alpha (float): Reflection coefficient.
        gamma (float): Expansion coefficient.
        rho (float): Contraction coefficient.
        sigma (float): Shrink coefficient.

    Returns:
        np.ndarray: Best vertex found.
    """
    simplex = np.array(initial_points, dtype=float)
    n = simplex.shape[1]
    if max_it is None:
        max_it = 250 * n
    values = np.array([objective(x) for x in simplex])

    for _ in range(max_it):
        order = np.argsort(values, kind='stable')
        simplex = simplex[order]
        values = values[order]
        if values[0] < tol:
            break

        centroid = simplex[:n].mean(axis=0)

        reflect = centroid + alpha * (centroid - simplex[n])
        f_reflect = objective(reflect)

        if values[0] <= f_reflect < values[n - 1]:
            simplex[n], values[n] = reflect, f_reflect
            continue

        if f_reflect < values[0]:
            expand = centroid + gamma * (reflect - centroid)
            f_expand = objective(expand)
            if f_expand < f_reflect:
                simplex[n], values[n] = expand, f_expand
            else:
                simplex[n], values[n] = reflect, f_reflect
            continue

        if f_reflect > values[n]:
            # Inside contraction
            contract = centroid + rho * (simplex[n] - centroid)
            f_contract = objective(contract)
            if f_contract < values[n]:
                simplex[n], values[n] = contract, f_contract
                continue
        else:
            # Outside contraction
            contract = centroid + rho * (reflect - centroid)
            f_contract = objective(contract)
            if f_contract < f_reflect:
                simplex[n], values[n] = contract, f_contract
                continue

        # Shrink toward the best vertex
        for i in range(1, n + 1):
            simplex[i] = simplex[0] + sigma * (simplex[i] - simplex[0])
            values[i] = objective(simplex[i])

    # NaN scores sort last
    best = np.argsort(values, kind='stable')[0]
    return simplex[best].copy()
