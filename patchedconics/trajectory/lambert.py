import warnings

import numpy as np

from patchedconics.dynamics.vectors import TWO_PI, X_DIR, Z_DIR, normalize, wrap_angle
from patchedconics.errors import ConvergenceWarning, LambertGeometryError

BATTIN_THRESHOLD = 0.01
LAGRANGE_THRESHOLD = 0.2
ZERO_REV_TOL = 1e-15
MULTI_REV_TOL = 1e-8
HOUSEHOLDER_ITERS = 15


def _transfer_normal(ir1: np.ndarray, ir2: np.ndarray) -> np.ndarray:
    """Unit normal of the transfer plane, with a fallback for collinear position vectors."""
    h = np.cross(ir1, ir2)
    h_mag = np.linalg.norm(h)
    if h_mag > 1e-12:
        return h / h_mag
    # Collinear: any plane containing r1 works, prefer the one closest to the ecliptic
    for ref in (Z_DIR, X_DIR):
        n = ref - np.dot(ref, ir1) * ir1
        n_mag = np.linalg.norm(n)
        if n_mag > 1e-12:
            return n / n_mag
    return Z_DIR


def _dtdx(x: float, T: float, lam: float) -> tuple[float, float, float]:
    l2 = lam * lam
    l3 = l2 * lam
    umx2 = 1.0 - x * x
    y = np.sqrt(1.0 - l2 * umx2)
    y2 = y * y
    y3 = y2 * y
    DT = 1.0 / umx2 * (3.0 * T * x - 2.0 + 2.0 * l3 * x / y)
    DDT = 1.0 / umx2 * (3.0 * T + 5.0 * x * DT + 2.0 * (1.0 - l2) * l3 / y3)
    DDDT = 1.0 / umx2 * (7.0 * x * DDT + 8.0 * DT - 6.0 * (1.0 - l2) * l2 * l3 * x / y3 / y2)
    return DT, DDT, DDDT


def _x2tof_lagrange(x: float, lam: float, N: int) -> float:
    a = 1.0 / (1.0 - x * x)
    if a > 0:
        alfa = 2.0 * np.arccos(x)
        beta = 2.0 * np.arcsin(np.sqrt(lam * lam / a))
        if lam < 0.0:
            beta = -beta
        return a * np.sqrt(a) * ((alfa - np.sin(alfa)) - (beta - np.sin(beta)) + TWO_PI * N) / 2.0
    alfa = 2.0 * np.arccosh(x)
    beta = 2.0 * np.arcsinh(np.sqrt(-lam * lam / a))
    if lam < 0.0:
        beta = -beta
    return -a * np.sqrt(-a) * ((beta - np.sinh(beta)) - (alfa - np.sinh(alfa))) / 2.0


def _hypergeometric_f(z: float, tol: float = 1e-11) -> float:
    Sj = 1.0
    Cj = 1.0
    err = 1.0
    j = 0
    while err > tol:
        Cj = Cj * (3.0 + j) * (1.0 + j) / (2.5 + j) * z / (j + 1)
        Sj = Sj + Cj
        err = abs(Cj)
        j += 1
    return Sj


def _x2tof(x: float, lam: float, N: int) -> float:
    """
    Non-dimensional time of flight as a function of x.

    Uses Lagrange's expression away from x = 1, Battin's series very close to
    it, and Lancaster's expression otherwise.
    """
    dist = abs(x - 1)
    if LAGRANGE_THRESHOLD > dist > BATTIN_THRESHOLD:
        return _x2tof_lagrange(x, lam, N)
    K = lam * lam
    E = x * x - 1.0
    rho = abs(E)
    z = np.sqrt(1 + K * E)
    if dist < BATTIN_THRESHOLD:
        eta = z - lam * x
        S1 = 0.5 * (1.0 - lam - x * eta)
        Q = 4.0 / 3.0 * _hypergeometric_f(S1)
        return (eta ** 3 * Q + 4.0 * lam * eta) / 2.0 + N * np.pi / rho ** 1.5
    y = np.sqrt(rho)
    g = x * z - lam * E
    if E < 0:
        d = N * np.pi + np.arccos(g)
    else:
        f = y * (z - lam * x)
        d = np.log(f + g)
    return (x - lam * z - d / y) / E


def _householder(T: float, x0: float, N: int, eps: float, lam: float, max_iters: int) -> float:
    for _ in range(max_iters):
        tof = _x2tof(x0, lam, N)
        DT, DDT, DDDT = _dtdx(x0, tof, lam)
        delta = tof - T
        DT2 = DT * DT
        x_new = x0 - delta * (DT2 - delta * DDT / 2.0) / (DT * (DT2 - delta * DDT) + DDDT * delta * delta / 6.0)
        err = abs(x0 - x_new)
        x0 = x_new
        if err < eps:
            break
    return x0


class LambertSolver:
    """
    Solvers for Lambert's problem: the conic joining two positions in a given time.
    """

    @staticmethod
    def solve(r1: np.ndarray, r2: np.ndarray, tof: float, mu: float, revs: int = 0,
              retrograde: bool = False, left: bool = False) -> tuple[np.ndarray, np.ndarray]:
        """
        Izzo's algorithm with Householder iterations.

        The transfer direction follows the z component of r1 x r2: the short way
        when it is positive, the long way otherwise, and reversed when retrograde.
        The revolution count is cropped to the largest one for which a solution
        exists at this time of flight.

        Args:
            r1 (np.ndarray): Initial position vector [m].
            r2 (np.ndarray): Final position vector [m].
            tof (float): Time of flight [s].
            mu (float): Gravitational parameter of the attractor [m^3/s^2].
            revs (int): Requested number of complete revolutions.
            retrograde (bool): Solve for a clockwise transfer.
            left (bool): Use the left branch of multi-revolution solutions.

        Returns:
            tuple[np.ndarray, np.ndarray]: (v1, v2) - Velocities at r1 and r2 [m/s].

        Raises:
            LambertGeometryError: If tof is not positive or r1 equals r2.
        """
        r1 = np.asarray(r1, dtype=float)
        r2 = np.asarray(r2, dtype=float)
        if not tof > 0:
            raise LambertGeometryError(f"Time of flight must be positive, got {tof}")

        r1_mag = np.linalg.norm(r1)
        r2_mag = np.linalg.norm(r2)
        c = np.linalg.norm(r2 - r1)
        if c == 0:
            raise LambertGeometryError("Start and end positions coincide (zero chord)")
        s = 0.5 * (r1_mag + r2_mag + c)

        ir1 = r1 / r1_mag
        ir2 = r2 / r2_mag
        ih = _transfer_normal(ir1, ir2)

        lam2 = 1.0 - c / s
        lam = np.sqrt(lam2)
        if ih[2] < 0:
            # Transfer angle larger than 180 degrees
            lam = -lam
            it1 = np.cross(ir1, ih)
            it2 = np.cross(ir2, ih)
        else:
            it1 = np.cross(ih, ir1)
            it2 = np.cross(ih, ir2)
        it1 = normalize(it1)
        it2 = normalize(it2)

        if retrograde:
            lam = -lam
            it1 = -it1
            it2 = -it2

        lam3 = lam * lam2
        T = np.sqrt(2.0 * mu / s ** 3) * tof

        # Largest revolution count with a solution
        n_max = int(np.floor(T / np.pi))
        T00 = np.arccos(lam) + lam * np.sqrt(1.0 - lam2)
        T0 = T00 + n_max * np.pi
        T1 = 2.0 / 3.0 * (1.0 - lam3)
        if n_max > 0 and T < T0:
            # Halley iterations for the minimum time of flight
            T_min = T0
            x_old = 0.0
            x_new = 0.0
            for _ in range(13):
                DT, DDT, DDDT = _dtdx(x_old, T_min, lam)
                if DT != 0:
                    x_new = x_old - DT * DDT / (DDT * DDT - DT * DDDT / 2.0)
                if abs(x_old - x_new) < 1e-13:
                    break
                T_min = _x2tof(x_new, lam, n_max)
                x_old = x_new
            if T_min > T:
                n_max -= 1
        n_revs = min(revs, n_max)

        if n_revs <= 0:
            if T >= T00:
                x0 = -(T - T00) / (T - T00 + 4)
            elif T <= T1:
                x0 = T1 * (T1 - T) / (2.0 / 5.0 * (1 - lam2 * lam3) * T) + 1
            else:
                x0 = (T / T00) ** (0.69314718055994529 / np.log(T1 / T00)) - 1
            x = _householder(T, x0, 0, ZERO_REV_TOL, lam, HOUSEHOLDER_ITERS)
        else:
            if left:
                tmp = ((n_revs * np.pi + np.pi) / (8.0 * T)) ** (2.0 / 3.0)
            else:
                tmp = ((8.0 * T) / (n_revs * np.pi)) ** (2.0 / 3.0)
            x = _householder(T, (tmp - 1) / (tmp + 1), n_revs, MULTI_REV_TOL, lam, HOUSEHOLDER_ITERS)

        # Terminal velocities
        gamma = np.sqrt(mu * s / 2.0)
        rho = (r1_mag - r2_mag) / c
        sigma = np.sqrt(1 - rho * rho)
        y = np.sqrt(1.0 - lam2 + lam2 * x * x)
        vr1 = gamma * ((lam * y - x) - rho * (lam * y + x)) / r1_mag
        vr2 = -gamma * ((lam * y - x) + rho * (lam * y + x)) / r2_mag
        vt = gamma * sigma * (y + lam * x)

        v1 = ir1 * vr1 + it1 * (vt / r1_mag)
        v2 = ir2 * vr2 + it2 * (vt / r2_mag)
        return v1, v2

    @staticmethod
    def solve_p_iteration(r1: np.ndarray, r2: np.ndarray, tof: float, mu: float,
                          retrograde: bool = False, tol: float = 1e-12,
                          max_iter: int = 200) -> tuple[np.ndarray, np.ndarray]:
        """
        Zero-revolution Lambert solver by Newton iteration on the semi-latus rectum p.

        Steps that leave the admissible range of p are replaced by bisection
        toward the violated bound. A ConvergenceWarning is issued when the
        relative time-of-flight error is still above 1e-9 at the end.

        Args:
            r1 (np.ndarray): Initial position vector [m].
            r2 (np.ndarray): Final position vector [m].
            tof (float): Time of flight [s].
            mu (float): Gravitational parameter [m^3/s^2].
            retrograde (bool): Solve for a clockwise transfer.
            tol (float): Relative time-of-flight tolerance.
            max_iter (int): Iteration budget.

        Returns:
            tuple[np.ndarray, np.ndarray]: (v1, v2) [m/s].
        """
        r1 = np.asarray(r1, dtype=float)
        r2 = np.asarray(r2, dtype=float)
        if not tof > 0:
            raise LambertGeometryError(f"Time of flight must be positive, got {tof}")
        r1_mag = np.linalg.norm(r1)
        r2_mag = np.linalg.norm(r2)
        if np.linalg.norm(r2 - r1) == 0:
            raise LambertGeometryError("Start and end positions coincide (zero chord)")

        d_theta = np.arctan2(np.linalg.norm(np.cross(r1, r2)), np.dot(r1, r2))
        ih = _transfer_normal(r1 / r1_mag, r2 / r2_mag)
        if (ih[2] < 0) != retrograde:
            d_theta = TWO_PI - d_theta

        k = r1_mag * r2_mag * (1 - np.cos(d_theta))
        L = r1_mag + r2_mag
        m = r1_mag * r2_mag * (1 + np.cos(d_theta))

        pj = k / (L + np.sqrt(2 * m))
        pjj = k / (L - np.sqrt(2 * m))
        if d_theta > np.pi:
            p_min, p_max = 0.0, pjj
        else:
            p_min, p_max = pj, np.inf

        err = tol + 1
        p_next = (pj + pjj) / 2
        f = g = df = 0.0
        it = 0
        while err > tol and it < max_iter:
            it += 1
            p = p_next
            a = m * k * p / ((2 * m - L * L) * p * p + 2 * k * L * p - k * k)
            # keep away from the parabolic case
            a = 1e-100 if a == 0 else a
            f = 1 - r2_mag / p * (1 - np.cos(d_theta))
            g = r1_mag * r2_mag * np.sin(d_theta) / np.sqrt(mu * p)
            df = np.sqrt(mu / p) * np.tan(d_theta / 2) * ((1 - np.cos(d_theta)) / p - 1 / r1_mag - 1 / r2_mag)

            if a > 0:
                sin_dE = -r1_mag * r2_mag * df / np.sqrt(mu * a)
                cos_dE = 1 - r1_mag / a * (1 - f)
                dE = wrap_angle(np.arctan2(sin_dE, cos_dE))
                angular_speed = np.sqrt(a ** 3 / mu)
                t = g + angular_speed * (dE - sin_dE)
                dtdp = -g / 2 / p - 1.5 * a * (t - g) * (k * k + (2 * m - L * L) * p * p) / (m * k * p * p) \
                    + angular_speed * (2 * k * sin_dE) / (p * (k - L * p))
            else:
                dF = np.arccosh(1 - r1_mag / a * (1 - f))
                angular_speed = np.sqrt(-a ** 3 / mu)
                t = g + angular_speed * (np.sinh(dF) - dF)
                dtdp = -g / 2 / p - 1.5 * a * (t - g) * (k * k + (2 * m - L * L) * p * p) / (m * k * p * p) \
                    - angular_speed * (2 * k * np.sinh(dF)) / (p * (k - L * p))

            err = abs(tof - t) / tof
            p_next = p + (tof - t) / dtdp
            if p_next < p_min:
                p_next = (p + p_min) / 2
            elif p_next > p_max:
                p_next = (p + p_max) / 2

        if err > 1e-9:
            warnings.warn(f"Lambert p-iteration failed to converge. Relative error of {err}.",
                          ConvergenceWarning, stacklevel=2)

        gdot = 1 - r1_mag / p * (1 - np.cos(d_theta))
        v1 = (r2 - r1 * f) / g
        v2 = r1 * df + v1 * gdot
        return v1, v2
