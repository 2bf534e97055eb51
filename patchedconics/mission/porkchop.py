import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
import matplotlib.pyplot as plt

from patchedconics.dynamics.kepler import Orbit
from patchedconics.dynamics.vectors import (
    TimeSettings, calendar_date_to_duration_string, calendar_date_to_string, linspace, time_to_calendar_date,
)
from patchedconics.errors import LambertGeometryError
from patchedconics.mission.records import Porkchop
from patchedconics.mission.transfer import TransferCalculator, TransferInputs

logger = logging.getLogger(__name__)

LEVEL_SCALE = 1.1
N_LEVELS = 16


@dataclass(frozen=True, eq=False)
class PorkchopInputs:
    """
    Grid of transfers to evaluate.

    Attributes:
        system (SolarSystem): Bodies.
        start_orbit (Orbit): Parking orbit.
        end_orbit (Orbit): Target orbit.
        start_date_min (float): First start date [s].
        start_date_max (float): Last start date [s].
        flight_time_min (float): Shortest flight time [s].
        flight_time_max (float): Longest flight time [s].
        n_times (int): Grid points along each axis.

    The remaining attributes are as in TransferInputs.
    """
    system: object
    start_orbit: Orbit
    end_orbit: Orbit
    start_date_min: float
    start_date_max: float
    flight_time_min: float
    flight_time_max: float
    n_times: int = 100
    ejection_insertion_type: str = "fastdirect"
    plane_change: int = 0
    match_start_mo: bool = True
    match_end_mo: bool = False
    no_insertion_burn: bool = False


class PorkchopCalculator:
    """
    Transfer delta-v over an n_times x n_times grid of start dates and flight times.

    The body chains between the two orbits are resolved once and shared by
    every cell.
    """

    def __init__(self, inputs: PorkchopInputs):
        if inputs.n_times < 1:
            raise ValueError("n_times must be at least 1")
        self.inputs = inputs
        system = inputs.system
        start_id = inputs.start_orbit.orbiting
        end_id = inputs.end_orbit.orbiting
        self.sequence_up, self.sequence_down = system.sequence_between(start_id, end_id)

        self.start_dates = np.array(linspace(inputs.start_date_min, inputs.start_date_max, inputs.n_times))
        self.flight_times = np.array(linspace(inputs.flight_time_min, inputs.flight_time_max, inputs.n_times))

    def transfer_inputs(self, start_date: float, flight_time: float) -> TransferInputs:
        inputs = self.inputs
        return TransferInputs(
            system=inputs.system,
            start_orbit=inputs.start_orbit,
            end_orbit=inputs.end_orbit,
            start_date=start_date,
            flight_time=flight_time,
            ejection_insertion_type=inputs.ejection_insertion_type,
            plane_change=inputs.plane_change,
            match_start_mo=inputs.match_start_mo,
            match_end_mo=inputs.match_end_mo,
            no_insertion_burn=inputs.no_insertion_burn,
            sequence_up=self.sequence_up,
            sequence_down=self.sequence_down,
        )

    def delta_v(self, start_date: float, flight_time: float) -> float:
        try:
            return TransferCalculator(self.transfer_inputs(start_date, flight_time)).delta_v
        except LambertGeometryError:
            return np.inf

    def compute_all_delta_vs(self) -> Porkchop:
        """
        Evaluates every cell.

        Returns:
            Porkchop: delta_vs[j, i] holds the transfer starting at
                      start_dates[i] with flight time flight_times[j].
        """
        n = self.inputs.n_times
        logger.info("Computing porkchop delta v over a %dx%d grid", n, n)
        delta_vs = np.full((n, n), np.inf)
        for j, flight_time in enumerate(self.flight_times):
            for i, start_date in enumerate(self.start_dates):
                delta_vs[j, i] = self.delta_v(start_date, flight_time)

        inputs = self.inputs
        return Porkchop(
            system=inputs.system,
            start_orbit=inputs.start_orbit,
            end_orbit=inputs.end_orbit,
            start_dates=self.start_dates,
            flight_times=self.flight_times,
            delta_vs=delta_vs,
            ejection_insertion_type=inputs.ejection_insertion_type,
            plane_change=inputs.plane_change,
            match_start_mo=inputs.match_start_mo,
            match_end_mo=inputs.match_end_mo,
            no_insertion_burn=inputs.no_insertion_burn,
        )


def best_cell_readout(porkchop: Porkchop, time_settings: TimeSettings) -> str:
    """Departure date, flight time and delta-v of the best cell, one per line."""
    start_date, flight_time = porkchop.best_times
    departure = calendar_date_to_string(time_to_calendar_date(start_date, time_settings))
    duration = calendar_date_to_duration_string(time_to_calendar_date(flight_time, time_settings, 0, 0))
    return f"Departure: {departure}\nFlight time: {duration}\nTotal $\\Delta v$: {porkchop.best_delta_v:.1f} m/s"


def porkchop_plot_data(porkchop: Porkchop, time_settings: TimeSettings) -> dict:
    """
    Contour-ready data of a porkchop grid.

    Contour levels grow geometrically from the best delta-v by LEVEL_SCALE, and
    both the levels and the grid are given on that log scale so the contours
    are evenly spaced. Times are converted to days of `time_settings`.

    Args:
        porkchop (Porkchop): Evaluated grid.
        time_settings (TimeSettings): Calendar of the axes.

    Returns:
        dict: {
            'start_days', 'flight_days': axes [days],
            'delta_vs': grid [m/s],
            'log_delta_vs': log-scaled grid,
            'levels': contour levels [m/s],
            'log_levels': log-scaled levels,
            'tick_labels': level labels,
            'best_delta_v': [m/s],
            'transfer_start_day', 'transfer_flight_day': best cell [days],
            'best_cell_text': readout of the best cell
        }
    """
    seconds_per_day = time_settings.seconds_per_day
    min_delta_v = porkchop.best_delta_v

    levels = np.array([min_delta_v * LEVEL_SCALE ** i for i in range(N_LEVELS)])
    log_scale = np.log(LEVEL_SCALE)
    with np.errstate(divide='ignore'):
        log_levels = np.log(levels) / log_scale
        log_delta_vs = np.log(porkchop.delta_vs) / log_scale

    start_date, flight_time = porkchop.best_times
    return {
        'start_days': porkchop.start_dates / seconds_per_day,
        'flight_days': porkchop.flight_times / seconds_per_day,
        'delta_vs': porkchop.delta_vs,
        'log_delta_vs': log_delta_vs,
        'levels': levels,
        'log_levels': log_levels,
        'tick_labels': [str(int(np.floor(level))) for level in levels],
        'best_delta_v': min_delta_v,
        'transfer_start_day': start_date / seconds_per_day,
        'transfer_flight_day': flight_time / seconds_per_day,
        'best_cell_text': best_cell_readout(porkchop, time_settings),
    }


class PorkchopPlotter:
    """
    Generates porkchop plots of transfer delta-v against start date and flight time.
    """

    def __init__(self, time_settings: TimeSettings = None):
        """
        Args:
            time_settings (TimeSettings): Calendar used for the day axes.
        """
        self.time_settings = time_settings or TimeSettings()

    def generate_data(self, inputs: PorkchopInputs) -> dict:
        """
        Evaluates the grid and prepares it for plotting.

        Returns:
            dict: `porkchop_plot_data` plus the 'porkchop' record itself.
        """
        porkchop = PorkchopCalculator(inputs).compute_all_delta_vs()
        data = porkchop_plot_data(porkchop, self.time_settings)
        data['porkchop'] = porkchop
        return data

    def plot(self, data: dict, title: Optional[str] = None, filename: Optional[str] = None):
        """
        Filled delta-v map on the log-scaled levels, with a colour bar in m/s
        and a readout of the best cell.

        Args:
            data (dict): Result from generate_data.
            title (str): Plot title.
            filename (str): If provided, save to file.
        """
        X, Y = np.meshgrid(data['start_days'], data['flight_days'])
        log_dv = np.where(np.isfinite(data['log_delta_vs']), data['log_delta_vs'], np.nan)
        log_levels = data['log_levels']

        fig, ax = plt.subplots(figsize=(11, 8))

        filled = ax.contourf(X, Y, log_dv, levels=log_levels, cmap='magma_r', extend='max')
        ax.contour(X, Y, log_dv, levels=log_levels[::3], colors='white', linewidths=0.6, alpha=0.7)

        cbar = fig.colorbar(filled, ax=ax, ticks=log_levels[::3])
        cbar.ax.set_yticklabels(data['tick_labels'][::3])
        cbar.set_label(r'Total $\Delta v$ (m/s)')

        best_x = data['transfer_start_day']
        best_y = data['transfer_flight_day']
        ax.scatter([best_x], [best_y], marker='X', s=90, color='cyan', edgecolors='black', zorder=3)
        ax.text(0.02, 0.98, data['best_cell_text'], transform=ax.transAxes, va='top', ha='left', fontsize=9,
                bbox=dict(boxstyle='round', facecolor='white', alpha=0.85))

        ax.set_title(title or "Porkchop Plot")
        ax.set_xlabel("Departure (days)")
        ax.set_ylabel("Flight time (days)")
        fig.tight_layout()

        if filename:
            fig.savefig(filename, dpi=150)
            logger.info("Plot saved to %s", filename)
            plt.close(fig)
        return fig
