"""
Tests for porkchop grids and their plots.
"""
import matplotlib
matplotlib.use("Agg")

import numpy as np
import pytest
import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))
from patchedconics.dynamics.kepler import orbit_from_elements
from patchedconics.dynamics.kerbol import kerbol_system
from patchedconics.dynamics.vectors import TimeSettings, calendar_date_to_string, time_to_calendar_date
from patchedconics.mission.porkchop import (
    LEVEL_SCALE, N_LEVELS, PorkchopCalculator, PorkchopInputs, PorkchopPlotter, best_cell_readout,
    porkchop_plot_data,
)

N = 5


@pytest.fixture(scope="module")
def system():
    return kerbol_system()


@pytest.fixture(scope="module")
def inputs(system):
    kerbin = system.body_from_id(4)
    duna = system.body_from_id(7)
    return PorkchopInputs(system, kerbin.orbit, duna.orbit, 1.0e6, 9.0e6, 4.0e6, 8.0e6, n_times=N)


@pytest.fixture(scope="module")
def porkchop(inputs):
    return PorkchopCalculator(inputs).compute_all_delta_vs()


def test_grid_axes(inputs, porkchop):
    np.testing.assert_allclose(porkchop.start_dates, np.linspace(1.0e6, 9.0e6, N))
    np.testing.assert_allclose(porkchop.flight_times, np.linspace(4.0e6, 8.0e6, N))
    assert porkchop.delta_vs.shape == (N, N)
    assert np.all(porkchop.delta_vs > 0)


def test_grid_orientation(inputs, porkchop):
    calc = PorkchopCalculator(inputs)
    # Rows are flight times, columns start dates
    assert porkchop.delta_vs[1, 3] == calc.delta_v(porkchop.start_dates[3], porkchop.flight_times[1])


def test_best_cell(porkchop):
    j, i = porkchop.best_indices
    assert porkchop.best_delta_v == porkchop.delta_vs[j, i] == np.min(porkchop.delta_vs)
    assert porkchop.best_times == (porkchop.start_dates[i], porkchop.flight_times[j])

    transfer = porkchop.best_transfer
    assert transfer.start_date == porkchop.start_dates[i]
    assert transfer.flight_time == porkchop.flight_times[j]
    assert np.isclose(transfer.delta_v, porkchop.best_delta_v)


def test_single_cell_grid_uses_upper_bounds(inputs):
    calc = PorkchopCalculator(PorkchopInputs(inputs.system, inputs.start_orbit, inputs.end_orbit,
                                             1.0e6, 9.0e6, 4.0e6, 8.0e6, n_times=1))
    porkchop = calc.compute_all_delta_vs()
    assert porkchop.best_times == (9.0e6, 8.0e6)


def test_empty_grid_rejected(inputs):
    with pytest.raises(ValueError):
        PorkchopCalculator(PorkchopInputs(inputs.system, inputs.start_orbit, inputs.end_orbit,
                                          1.0e6, 9.0e6, 4.0e6, 8.0e6, n_times=0))


def test_chains_resolved_once(system):
    lko = orbit_from_elements(system.body_from_id(4), 700000.0, 0.0)
    low_duna = orbit_from_elements(system.body_from_id(7), 420000.0, 0.0)
    calc = PorkchopCalculator(PorkchopInputs(system, lko, low_duna, 1.0e6, 9.0e6, 4.0e6, 8.0e6, n_times=2))

    assert calc.sequence_up == [4, 0]
    assert calc.sequence_down == [0, 7]
    assert calc.transfer_inputs(1.0e6, 4.0e6).sequence_up is calc.sequence_up


def test_plot_data(porkchop):
    time_settings = TimeSettings()
    data = porkchop_plot_data(porkchop, time_settings)

    assert len(data['levels']) == N_LEVELS
    assert data['levels'][0] == porkchop.best_delta_v
    np.testing.assert_allclose(data['levels'][1:] / data['levels'][:-1], LEVEL_SCALE)
    np.testing.assert_allclose(np.diff(data['log_levels']), 1.0)
    assert data['tick_labels'][0] == str(int(np.floor(porkchop.best_delta_v)))

    start_date, flight_time = porkchop.best_times
    assert np.isclose(data['transfer_start_day'], start_date / time_settings.seconds_per_day)
    assert np.isclose(data['transfer_flight_day'], flight_time / time_settings.seconds_per_day)
    np.testing.assert_allclose(data['start_days'], porkchop.start_dates / time_settings.seconds_per_day)
    assert data['best_cell_text'] == best_cell_readout(porkchop, time_settings)


def test_plotter_saves_figure(inputs, tmp_path):
    plotter = PorkchopPlotter()
    data = plotter.generate_data(inputs)
    assert 'porkchop' in data

    filename = tmp_path / "porkchop.png"
    fig = plotter.plot(data, title="Kerbin to Duna", filename=str(filename))

    assert filename.exists()
    # Main axes plus the delta-v colour bar
    assert len(fig.axes) == 2
    assert fig.axes[0].texts[0].get_text() == data['best_cell_text']


def test_best_cell_readout(porkchop):
    time_settings = TimeSettings()
    lines = best_cell_readout(porkchop, time_settings).splitlines()

    start_date, _ = porkchop.best_times
    assert lines[0] == "Departure: " + calendar_date_to_string(time_to_calendar_date(start_date, time_settings))
    assert lines[1].startswith("Flight time: ")
    assert lines[2].endswith(f"{porkchop.best_delta_v:.1f} m/s")
