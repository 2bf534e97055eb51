import numpy as np
from dataclasses import dataclass

X_DIR = np.array([1.0, 0.0, 0.0])
Y_DIR = np.array([0.0, 1.0, 0.0])
Z_DIR = np.array([0.0, 0.0, 1.0])

TWO_PI = 2.0 * np.pi
HALF_PI = 0.5 * np.pi


def linspace(start: float, stop: float, n: int) -> np.ndarray:
    """
    Evenly spaced samples over [start, stop].

    A single sample returns the stop value rather than the start value,
    which keeps one-cell porkchop grids anchored at the upper bound.
    """
    n = int(np.floor(n))
    if n == 1:
        return np.array([stop], dtype=float)
    return np.linspace(start, stop, n)


def clamp(x: float, lo: float, hi: float) -> float:
    return hi if x > hi else lo if x < lo else x


def lerp(x: float, y: float, t: float) -> float:
    return x + t * (y - x)


def wrap_angle(angle: float, min_angle: float = 0.0) -> float:
    """
    Wraps an angle into [min_angle, min_angle + 2*pi).

    Args:
        angle (float): Angle to wrap [rad].
        min_angle (float): Lower end of the output interval [rad].

    Returns:
        float: Wrapped angle [rad].
    """
    max_angle = min_angle + TWO_PI
    if min_angle <= angle < max_angle:
        return angle
    circles = np.floor((angle - min_angle) / TWO_PI)
    return angle - TWO_PI * circles


def acos_clamped(x: float) -> float:
    return float(np.arccos(clamp(x, -1.0, 1.0)))


def copysign(x: float, y: float) -> float:
    # zero counts as positive, unlike math.copysign(-0.0)
    return -x if y < 0 else x


def random_sign(rng: np.random.Generator = None) -> int:
    rng = rng if rng is not None else np.random.default_rng()
    return 1 if rng.random() < 0.5 else -1


def deg_to_rad(deg: float) -> float:
    return deg * np.pi / 180.0


def rad_to_deg(rad: float) -> float:
    return rad * 180.0 / np.pi


def normalize(v: np.ndarray) -> np.ndarray:
    return v / np.linalg.norm(v)


def rodrigues(vec: np.ndarray, axis: np.ndarray, angle: float) -> np.ndarray:
    """
    Rotates a vector about a unit axis using Rodrigues' rotation formula.

    Args:
        vec (np.ndarray): Vector to rotate (3,).
        axis (np.ndarray): Unit rotation axis (3,).
        angle (float): Rotation angle [rad], right-handed about the axis.

    Returns:
        np.ndarray: Rotated vector.
    """
    # v_rot = v*cos(a) + (k x v)*sin(a) + k*(k.v)*(1 - cos(a))
    cos_a = np.cos(angle)
    sin_a = np.sin(angle)
    return vec * cos_a + np.cross(axis, vec) * sin_a + axis * np.dot(axis, vec) * (1.0 - cos_a)


def align_vectors_angle_axis(x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, float]:
    """
    Returns the (axis, angle) pair that rotates the direction of x onto y.

    The axis is NaN-valued when x and y are parallel; callers that can hit
    that case substitute a reference axis.
    """
    x_hat = normalize(x)
    y_hat = normalize(y)
    with np.errstate(invalid='ignore', divide='ignore'):
        axis = normalize(np.cross(x, y))
    angle = acos_clamped(np.dot(x_hat, y_hat))
    return axis, angle


def counter_clockwise_angle_in_plane(x: np.ndarray, y: np.ndarray, normal_direction: np.ndarray) -> float:
    """
    Angle from x to y measured counter-clockwise about normal_direction, in [0, 2*pi).
    """
    axis, angle = align_vectors_angle_axis(normal_direction, Z_DIR)
    if np.isnan(axis[0]):
        axis = X_DIR
    x_plane = rodrigues(x, axis, angle)
    y_plane = rodrigues(y, axis, angle)
    x_angle = np.arctan2(x_plane[1], x_plane[0])
    y_angle = np.arctan2(y_plane[1], y_plane[0])
    return wrap_angle(y_angle - x_angle)


def zxz(v: np.ndarray, a1: float, a2: float, a3: float) -> np.ndarray:
    """
    Applies the proper Euler rotation Z(a1) X(a2) Z(a3) to a vector.

    With (a1, a2, a3) = (lan, i, arg) this maps perifocal coordinates to the
    inertial frame; (-arg, -i, -lan) maps back.

    Args:
        v (np.ndarray): Vector (3,).
        a1 (float): First rotation about z [rad].
        a2 (float): Rotation about the intermediate x axis [rad].
        a3 (float): Final rotation about z [rad].

    Returns:
        np.ndarray: Rotated vector (3,).
    """
    c1, c2, c3 = np.cos(a1), np.cos(a2), np.cos(a3)
    s1, s2, s3 = np.sin(a1), np.sin(a2), np.sin(a3)
    rot = np.array([
        [c1*c3 - s1*c2*s3, -c1*s3 - s1*c2*c3,  s1*s2],
        [s1*c3 + c1*c2*s3,  c1*c2*c3 - s1*s3, -c1*s2],
        [s2*s3,             s2*c3,             c2],
    ])
    return rot @ v


def cartesian_to_spherical(p: np.ndarray) -> tuple[float, float, float]:
    """
    Returns (r, theta, phi): theta measured from +z, phi in the x-y plane.
    """
    r = float(np.linalg.norm(p))
    theta = float(np.arctan2(np.sqrt(p[0]**2 + p[1]**2), p[2]))
    phi = float(np.arctan2(p[1], p[0]))
    return r, theta, phi


def spherical_to_cartesian(r: float, theta: float, phi: float) -> np.ndarray:
    return np.array([
        r * np.cos(phi) * np.sin(theta),
        r * np.sin(phi) * np.sin(theta),
        r * np.cos(theta),
    ])


# Dates & times

@dataclass(frozen=True)
class TimeSettings:
    """Length of a day and a year on the reference calendar."""
    hours_per_day: float = 6.0
    days_per_year: float = 426.0

    @property
    def seconds_per_day(self) -> float:
        return 3600.0 * self.hours_per_day


@dataclass(frozen=True)
class CalendarDate:
    year: int
    day: int
    hour: int
    minute: int
    second: int


def time_to_calendar_date(time: float, settings: TimeSettings, year_offset: int = 1, day_offset: int = 1) -> CalendarDate:
    """
    Splits a time [s] into calendar fields.

    Offsets of 1 give dates (Year 1, Day 1 at t=0); offsets of 0 give durations.
    """
    m = 60
    h = 3600
    d = settings.hours_per_day * h
    y = settings.days_per_year * d

    remaining = time
    year = int(np.floor(remaining / y)) + year_offset
    remaining -= y * (year - year_offset)
    day = int(np.floor(remaining / d)) + day_offset
    remaining -= d * (day - day_offset)
    hour = int(np.floor(remaining / h))
    remaining -= h * hour
    minute = int(np.floor(remaining / m))
    remaining -= m * minute
    second = int(round(remaining))
    return CalendarDate(year, day, hour, minute, second)


def calendar_date_to_time(date: CalendarDate, settings: TimeSettings, year_offset: int = 0, day_offset: int = 0) -> float:
    years = date.year - year_offset
    days = date.day - day_offset
    return ((settings.days_per_year * years + days) * settings.hours_per_day + date.hour) * 3600.0 \
        + date.minute * 60.0 + date.second


def calendar_date_to_string(date: CalendarDate) -> str:
    return f"Year {date.year}, Day {date.day}, {date.hour:02d}:{date.minute:02d}:{date.second:02d}"


def calendar_date_to_duration_string(date: CalendarDate) -> str:
    def plural(n, unit):
        return f"{n} {unit}" if n == 1 else f"{n} {unit}s"
    return (f"{plural(date.year, 'Year')}, {plural(date.day, 'Day')}, {plural(date.hour, 'hour')}, "
            f"{plural(date.minute, 'minute')}, and {plural(date.second, 'second')}")
