import numpy as np
import pytest
import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))
from patchedconics.dynamics.kepler import orbit_from_elements
from patchedconics.dynamics.kerbol import kerbol_system
from patchedconics.mission.multiflyby import MultiFlybySearchInputs
from patchedconics.mission.search import (
    AGENTS_PER_DIMENSION, MultiFlybySearch, SearchFitness, SearchHistory, flight_time_bounds,
)
from patchedconics.mission.settings import SearchSettings
from patchedconics.trajectory.flyby import leg_duration_bounds

EVE = 2


@pytest.fixture(scope="module")
def system():
    return kerbol_system()


@pytest.fixture(scope="module")
def search_inputs(system):
    kerbin = system.body_from_id(4)
    duna = system.body_from_id(7)
    mins, maxs = flight_time_bounds(system, kerbin.orbit, duna.orbit, [EVE])
    return MultiFlybySearchInputs(system, kerbin.orbit, duna.orbit, [EVE], 1.0e6, 1.0e7, mins, maxs)


def test_flight_time_bounds(system):
    kerbin = system.body_from_id(4)
    eve = system.body_from_id(EVE)
    duna = system.body_from_id(7)
    mins, maxs = flight_time_bounds(system, kerbin.orbit, duna.orbit, [EVE])

    assert len(mins) == len(maxs) == 2
    assert (mins[0], maxs[0]) == leg_duration_bounds(kerbin.orbit, eve.orbit, system.sun)
    assert (mins[1], maxs[1]) == leg_duration_bounds(eve.orbit, duna.orbit, system.sun)


def test_flight_time_bounds_use_planet_orbits_for_moons(system):
    kerbin = system.body_from_id(4)
    duna = system.body_from_id(7)
    low_mun = orbit_from_elements(system.body_from_id(5), 250000.0, 0.0)
    # Starting at the Mun, the first leg still leaves from Kerbin's orbit
    assert flight_time_bounds(system, low_mun, duna.orbit, []) == flight_time_bounds(system, kerbin.orbit,
                                                                                     duna.orbit, [])


def test_search_rejects_bad_bounds(search_inputs, system):
    bad = MultiFlybySearchInputs(system, search_inputs.start_orbit, search_inputs.end_orbit, [EVE],
                                 1.0e6, 1.0e7, [1.0e6], [1.0e7])
    with pytest.raises(ValueError):
        MultiFlybySearch(bad)


def test_default_population_size(search_inputs):
    assert MultiFlybySearch(search_inputs).population_size == AGENTS_PER_DIMENSION * 3


def test_search_fitness(search_inputs):
    fitness = SearchFitness(search_inputs)
    value = fitness(np.array([0.5, 0.5, 0.5]))
    assert np.isnan(value) or value > 0


def test_search_history():
    history = SearchHistory()
    best, mean = history.record(np.array([3.0, 1.0, np.nan, 2.0]))
    assert best == 1.0
    assert np.isclose(mean, 2.0)
    assert history.generations == 1


def test_search_runs_in_process(search_inputs):
    settings = SearchSettings(n_workers=0, population_size=12, max_generations=2, seed=3)
    result = MultiFlybySearch(search_inputs, settings).run()

    assert 1 <= result.history.generations <= settings.max_generations + 1
    assert all(b2 <= b1 for b1, b2 in zip(result.history.best, result.history.best[1:]))
    assert result.population.shape == (12, 3)
    assert np.all((result.best_agent >= 0) & (result.best_agent <= 1))

    record = result.multi_flyby
    assert record.flyby_id_sequence == [EVE]
    assert len(record.flybys) == 1
    assert np.isfinite(record.delta_v)
    assert result.history.best[-1] == np.min(result.fitnesses[np.isfinite(result.fitnesses)])


def test_search_is_reproducible(search_inputs):
    settings = SearchSettings(n_workers=0, population_size=8, max_generations=1, seed=11)
    first = MultiFlybySearch(search_inputs, settings).run()
    second = MultiFlybySearch(search_inputs, settings).run()
    np.testing.assert_array_equal(first.best_agent, second.best_agent)


def test_search_timeout(search_inputs):
    settings = SearchSettings(n_workers=0, population_size=8, max_generations=50, rtol=0.0, timeout=0.0, seed=5)
    result = MultiFlybySearch(search_inputs, settings).run()
    # Only the initial population is evaluated
    assert result.history.generations == 1
