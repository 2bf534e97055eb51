"""
Tests for multi-flyby transfers: leg chaining, flyby penalties and refinement.
"""
from dataclasses import replace

import numpy as np
import pytest
import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))
from patchedconics.dynamics.kepler import orbit_from_elements
from patchedconics.dynamics.kerbol import kerbol_system
from patchedconics.mission import multiflyby
from patchedconics.mission.multiflyby import (
    FLYBY_ERROR_WEIGHT, MultiFlybyCalculator, MultiFlybyInputs, MultiFlybySearchInputs, multi_flyby_inputs_from_agent,
    refine_multi_flyby,
)
from patchedconics.mission.records import FlybyDuration
from patchedconics.mission.refinement import refine_patches
from patchedconics.mission.settings import RefinementSettings
from patchedconics.trajectory.flyby import flyby_parameters

START_DATE = 5.0e6
FLIGHT_TIMES = [3.0e6, 8.0e6]
EVE = 2

FAST_SETTINGS = RefinementSettings(
    iterate_max_iters=3,
    de_population_base=8,
    de_population_per_patch=2,
    de_max_generations=2,
    nm_min_step=0.1,
    seed=7,
)


@pytest.fixture(scope="module")
def system():
    return kerbol_system()


@pytest.fixture(scope="module")
def inputs(system):
    kerbin = system.body_from_id(4)
    duna = system.body_from_id(7)
    return MultiFlybyInputs(system, kerbin.orbit, duna.orbit, [EVE], START_DATE, FLIGHT_TIMES)


@pytest.fixture(scope="module")
def calc(inputs):
    return MultiFlybyCalculator(inputs)


def test_flight_time_count_must_match_flybys(inputs):
    with pytest.raises(ValueError):
        MultiFlybyCalculator(MultiFlybyInputs(inputs.system, inputs.start_orbit, inputs.end_orbit, [EVE],
                                              START_DATE, [FLIGHT_TIMES[0]]))


def test_legs_are_chained(calc):
    assert len(calc.transfers) == 2
    assert calc.flyby_encounter_dates == [START_DATE + FLIGHT_TIMES[0]]
    assert calc.transfers[0].start_date == START_DATE
    assert calc.transfers[1].start_date == calc.transfers[0].end_date
    assert np.isclose(calc.end_date, START_DATE + sum(FLIGHT_TIMES))
    assert [b.id for b in calc.soi_patch_bodies] == [EVE, EVE]


def test_fitness_penalizes_flyby_error(calc):
    assert calc.flyby_error >= 0
    assert calc.compute_fitness() == calc.delta_v + FLYBY_ERROR_WEIGHT * calc.flyby_error
    assert calc.cost == calc.compute_fitness()


def test_delta_v_without_chains(calc):
    expected = (np.linalg.norm(calc.transfer_velocities[0][0])
                + calc.flyby_params[0].delta_v
                + np.linalg.norm(calc.transfer_velocities[-1][1]))
    assert np.isclose(calc.delta_v, expected)


def test_flybys_built_on_construction(calc):
    assert len(calc.flybys) == 1
    assert len(calc.maneuvers) == 3
    flyby = calc.flybys[0]
    assert flyby.intersect_times[0] < flyby.intersect_times[1] < flyby.intersect_times[2]
    assert np.isclose(flyby.intersect_times[1], calc.flyby_params[0].time)


def test_maneuver_contexts(calc):
    assert [m.context for m in calc.maneuvers] == ["Departure Burn", "Flyby Burn over Eve", "Arrival Burn"]


def test_flyby_durations(calc):
    durations = calc.calculate_flyby_durations()
    assert len(durations) == 1
    assert durations[0].in_time > 0
    assert durations[0].out_time > 0
    assert durations[0].total == durations[0].in_time + durations[0].out_time


def test_with_parameters_carries_flyby_durations(calc):
    moved = calc.with_parameters(calc.time_parameters, calc.calculate_soi_patches())
    total = calc.calculate_flyby_durations()[0].total
    assert np.isclose(moved.end_date, START_DATE + sum(FLIGHT_TIMES) + total)
    assert np.isclose(moved.transfers[1].start_date, moved.transfers[0].end_date + total)


def test_record_and_flight_plan(calc):
    record = calc.multi_flyby
    assert record.maneuver_contexts == ["Departure Burn", "Flyby Burn over Eve", "Arrival Burn"]
    assert record.transfer_body_id == 0

    plan = record.flight_plan()
    assert plan.name == "Multi-Flyby"
    # leg, flyby, leg
    assert len(plan.trajectories) == 3
    assert plan.trajectories[1] is record.flybys[0]

    data = record.as_dict()
    assert data['flyby_id_sequence'] == [EVE]
    assert data['flight_times'] == FLIGHT_TIMES
    assert len(data['flyby_durations']) == 1

    rebuilt = MultiFlybyCalculator.from_multi_flyby(record)
    assert np.isclose(rebuilt.delta_v, calc.delta_v)


def test_planet_to_planet_chains(system):
    lko = orbit_from_elements(system.body_from_id(4), 700000.0, 0.0)
    low_duna = orbit_from_elements(system.body_from_id(7), 420000.0, 0.0)
    calc = MultiFlybyCalculator(MultiFlybyInputs(system, lko, low_duna, [EVE], START_DATE, FLIGHT_TIMES))

    assert [b.id for b in calc.soi_patch_bodies] == [4, EVE, EVE, 7]
    assert len(calc.ejections) == 1
    assert len(calc.insertions) == 1
    contexts = [m.context for m in calc.maneuvers]
    assert contexts[0] == "Departure Burn"
    assert "Flyby Burn over Eve" in contexts
    assert contexts[-1] == "Arrival Burn"


def test_inputs_from_agent(system):
    kerbin = system.body_from_id(4)
    duna = system.body_from_id(7)
    search_inputs = MultiFlybySearchInputs(system, kerbin.orbit, duna.orbit, [EVE], 1.0e6, 2.0e6,
                                           [1.0e6, 4.0e6], [3.0e6, 9.0e6])
    assert search_inputs.agent_dim == 3

    inputs = multi_flyby_inputs_from_agent(np.array([0.0, 1.0, 0.5]), search_inputs)
    assert inputs.start_date == 1.0e6
    assert inputs.flight_times == [3.0e6, 6.5e6]
    assert inputs.flyby_id_sequence == [EVE]


def test_flyby_duration_record():
    duration = FlybyDuration(10.0, 20.0)
    assert duration.total == 30.0
    assert duration.as_dict() == {'in_time': 10.0, 'out_time': 20.0, 'total': 30.0}


def test_refinement_never_regresses(calc):
    refined = refine_patches(calc, FAST_SETTINGS, FAST_SETTINGS.multi_flyby_de_threshold)
    assert refined.soi_patch_fitness <= calc.soi_patch_fitness


def test_refine_multi_flyby(inputs):
    record = refine_multi_flyby(inputs, FAST_SETTINGS)
    assert np.isfinite(record.delta_v)
    assert len(record.flybys) == 1
    assert len(record.soi_patch_positions) == 2


def test_nan_delta_v_scores_as_worst(monkeypatch, inputs, calc):
    def unreachable_flyby(vel_in, vel_out, body, time):
        params = flyby_parameters(vel_in, vel_out, body, time)
        return replace(params, delta_v=np.nan)

    monkeypatch.setattr(multiflyby, "flyby_parameters", unreachable_flyby)
    infeasible = MultiFlybyCalculator(inputs)

    assert infeasible.delta_v == sys.float_info.max
    assert np.isfinite(infeasible.compute_fitness())
    assert infeasible.compute_fitness() > calc.compute_fitness()
