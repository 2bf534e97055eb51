import warnings
from typing import Callable

import numpy as np
from scipy.optimize import brentq, minimize_scalar

from patchedconics.errors import ConvergenceWarning, RootBracketError

GOLDEN_RATIO = (1 + np.sqrt(5)) / 2


def golden_section_search(func: Callable[[float], float], lo: float, hi: float, tol: float = 1e-5) -> float:
    """
    Minimizes a unimodal function on [lo, hi] by golden-section search.

    Args:
        func (callable): Scalar objective.
        lo (float): Lower bound.
        hi (float): Upper bound.
        tol (float): Width of the final bracket.

    Returns:
        float: Midpoint of the final bracket.
    """
    gr = GOLDEN_RATIO - 1
    gr_sq = 2 - GOLDEN_RATIO
    a, b = lo, hi
    h = b - a
    if h < tol:
        return (a + b) / 2

    c = a + gr_sq * h
    d = a + gr * h
    fc = func(c)
    fd = func(d)

    while h > tol:
        if fc < fd:
            b, d, fd = d, c, fc
            h = gr * h
            c = a + gr_sq * h
            fc = func(c)
        else:
            a, c, fc = c, d, fd
            h = gr * h
            d = a + gr * h
            fd = func(d)

    if fc < fd:
        return (a + d) / 2
    return (c + b) / 2


def brent_root_find(func: Callable[[float], float], lo: float, hi: float, tol: float = 1e-12,
                    max_iters: int = 100, warntol: float = 1.0) -> float:
    """
    Finds a root of func inside [lo, hi] with Brent's method.

    Args:
        func (callable): Scalar function.
        lo (float): One end of the bracket.
        hi (float): Other end of the bracket.
        tol (float): Absolute tolerance on the root.
        max_iters (int): Iteration budget.
        warntol (float): A ConvergenceWarning is issued when the budget runs out
                         and |func(root)| is still above this value.

    Returns:
        float: The root, or the best estimate after max_iters.

    Raises:
        RootBracketError: If func(lo) and func(hi) have the same sign.
    """
    fa = func(lo)
    fb = func(hi)
    if np.sign(fa) == np.sign(fb):
        raise RootBracketError("The provided bounds do not bracket a root.")

    root, result = brentq(func, lo, hi, xtol=tol, maxiter=max_iters, full_output=True, disp=False)
    if not result.converged:
        residual = func(root)
        if abs(residual) > warntol:
            warnings.warn(f"Brent's method failed to find a root. Function value of {residual} at {root}",
                          ConvergenceWarning, stacklevel=2)
    return float(root)


def brent_minimize(func: Callable[[float], float], lo: float, hi: float, tol: float = 1e-8,
                   max_iters: int = 100) -> float:
    """
    Bounded scalar minimization with Brent's method (golden section + parabolic steps).

    Args:
        func (callable): Scalar objective.
        lo (float): Lower bound.
        hi (float): Upper bound (swapped with lo if smaller).
        tol (float): Absolute tolerance on the minimizer.
        max_iters (int): Function evaluation budget.

    Returns:
        float: Location of the minimum.
    """
    if lo > hi:
        lo, hi = hi, lo
    if hi - lo < tol:
        return (lo + hi) / 2
    res = minimize_scalar(func, bounds=(lo, hi), method='bounded',
                          options={'xatol': tol, 'maxiter': max_iters})
    return float(res.x)


def newton_root_solve(f: Callable[[float], float], df: Callable[[float], float], x0: float,
                      eps: float, max_iters: int = 1000) -> float:
    """
    Newton's method, averaging the step with the previous iterate whenever the
    step size grows. This keeps poor initial guesses from overshooting forever.

    Returns the last iterate with a ConvergenceWarning when max_iters is exhausted.
    """
    n = 0
    x = x0
    err = eps + 1
    while err > eps and n < max_iters:
        prev_x = x
        x = x - f(x) / df(x)
        prev_err = err
        err = abs(x - prev_x)
        if prev_err < err:
            x = (x + prev_x) / 2
        n += 1
    if n >= max_iters:
        warnings.warn(f"Newton's method failed to find a root. Error of {err}.", ConvergenceWarning, stacklevel=2)
    return x
